"""Outbound response writer capability.

A ``ResponseWriter`` exposes what a handler needs to produce a response
incrementally: a status code, mutable headers, and ``write`` calls for
the body. Status and headers are committed on the first write, so they
can be changed freely until then. Decorators such as the rewriter wrap
any implementation of this capability.
"""

from typing import List, Optional, Protocol, Tuple

from starlette.datastructures import MutableHeaders
from starlette.types import Message, Send

from relay.app.exceptions import ResponseWriteError


class ResponseWriter(Protocol):
    status_code: int
    headers: MutableHeaders

    @property
    def started(self) -> bool: ...

    async def write(self, data: bytes) -> int: ...

    async def close(self) -> None: ...


class ASGIResponseWriter:
    """ResponseWriter over an ASGI ``send`` callable."""

    def __init__(
        self,
        send: Send,
        status_code: int = 200,
        raw_headers: Optional[List[Tuple[bytes, bytes]]] = None,
    ):
        self._send = send
        self.status_code = status_code
        self.headers = MutableHeaders(raw=list(raw_headers or []))
        self._started = False
        self._closed = False

    @property
    def started(self) -> bool:
        return self._started

    async def _emit(self, message: Message) -> None:
        try:
            await self._send(message)
        except OSError as exc:
            # Client went away or the transport refused the bytes
            raise ResponseWriteError(str(exc) or type(exc).__name__) from exc

    async def _start(self) -> None:
        if self._started:
            return
        await self._emit(
            {
                "type": "http.response.start",
                "status": self.status_code,
                "headers": self.headers.raw,
            }
        )
        self._started = True

    async def write(self, data: bytes) -> int:
        """Send one body chunk and return the number of bytes sent."""
        if self._closed:
            raise ResponseWriteError("write after close")
        await self._start()
        if not data:
            return 0
        await self._emit({"type": "http.response.body", "body": data, "more_body": True})
        return len(data)

    async def close(self) -> None:
        """Finish the response; sends status and headers if nothing was written."""
        if self._closed:
            return
        await self._start()
        await self._emit({"type": "http.response.body", "body": b"", "more_body": False})
        self._closed = True
