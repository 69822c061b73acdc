"""Response body rewriting.

Rules are pure functions of (content type, bytes of one write call). The
``RewritingWriter`` decorator applies a rule to every write issued
against the writer it wraps; nothing is buffered across calls, so a
pattern split over two chunks is not matched.
"""

from abc import ABC, abstractmethod
from typing import Iterable

from starlette.datastructures import MutableHeaders

from relay.app.core.config import Settings
from relay.app.exceptions import ResponseWriteError
from relay.app.services.writer import ResponseWriter


class RewriteRule(ABC):
    """Stateless transformation of outbound body bytes."""

    @abstractmethod
    def rewrite(self, content_type: str, body: bytes) -> bytes:
        """Return the bytes to send in place of ``body``."""


class TextSubstitutionRule(RewriteRule):
    """Replaces every non-overlapping occurrence of ``search`` in textual bodies."""

    def __init__(
        self,
        search: str,
        replacement: str,
        content_types: Iterable[str] = ("text/",),
    ):
        if not search:
            raise ValueError("search string must not be empty")
        self.search = search.encode("utf-8")
        self.replacement = replacement.encode("utf-8")
        self.content_types = tuple(ct.lower() for ct in content_types)

    def applies_to(self, content_type: str) -> bool:
        media_type = content_type.split(";", 1)[0].strip().lower()
        return any(media_type.startswith(prefix) for prefix in self.content_types)

    def rewrite(self, content_type: str, body: bytes) -> bytes:
        if not self.applies_to(content_type):
            return body
        return body.replace(self.search, self.replacement)


class ScriptInjectionRule(RewriteRule):
    """Appends an inline script after each chunk of an HTML body."""

    def __init__(self, snippet: str = "<script>alert('Modified Message');</script>"):
        self.snippet = snippet.encode("utf-8")

    def rewrite(self, content_type: str, body: bytes) -> bytes:
        if "text/html" not in content_type.lower():
            return body
        return body + self.snippet


def build_rewrite_rule(config: Settings) -> RewriteRule:
    """Create the rule selected by ``config.rewrite_mode``."""
    if config.rewrite_mode == "html":
        return ScriptInjectionRule(config.rewrite_script)
    if config.rewrite_mode == "text":
        return TextSubstitutionRule(
            config.rewrite_search,
            config.rewrite_replacement,
            config.rewrite_content_types,
        )
    raise ValueError(f"Unknown rewrite mode: {config.rewrite_mode!r}")


class RewritingWriter:
    """ResponseWriter decorator that runs every write through a RewriteRule.

    The marker header is set as soon as the writer is wrapped, which is
    before any status line or body byte can reach the caller.
    """

    def __init__(
        self,
        inner: ResponseWriter,
        rule: RewriteRule,
        marker_header: str = "X-Custom-Response-Header",
        marker_value: str = "Modified-Response",
    ):
        self._inner = inner
        self.rule = rule
        self._inner.headers[marker_header] = marker_value

    @property
    def status_code(self) -> int:
        return self._inner.status_code

    @status_code.setter
    def status_code(self, value: int) -> None:
        self._inner.status_code = value

    @property
    def headers(self) -> MutableHeaders:
        return self._inner.headers

    @property
    def started(self) -> bool:
        return self._inner.started

    async def write(self, data: bytes) -> int:
        """Rewrite ``data`` and forward it.

        Returns the number of rewritten bytes the caller actually
        received, which differs from ``len(data)`` whenever the rule
        changed the chunk.

        Raises:
            ResponseWriteError: If the inner writer accepted fewer bytes
                than it was given
        """
        content_type = self._inner.headers.get("content-type", "")
        body = self.rule.rewrite(content_type, data)
        written = await self._inner.write(body)
        if written != len(body):
            raise ResponseWriteError(
                f"short write: {written} of {len(body)} bytes delivered"
            )
        return written

    async def close(self) -> None:
        await self._inner.close()
