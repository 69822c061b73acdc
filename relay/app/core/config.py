from typing import Annotated, Any, Literal

from pydantic import field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


def _parse_csv(raw: Any) -> list[str]:
    if raw is None:
        return []
    if isinstance(raw, (list, tuple)):
        items = [str(v).strip() for v in raw]
        return [v for v in items if v]
    return [p.strip() for p in str(raw).split(",") if p.strip()]


class Settings(BaseSettings):
    """Relay settings loaded from environment variables.

    All settings can be configured via environment variables or .env file.
    """

    # Debug mode - enables detailed error responses
    debug: bool = False

    # Listen address
    host: str = "0.0.0.0"
    port: int = 3000

    # Upstream resolution: "query" reads TARGET_QUERY_PARAM, "header" reads TARGET_HEADER
    target_source: Literal["query", "header"] = "query"
    target_query_param: str = "target"
    target_header: str = "Target-URL"
    upstream_scheme: str = "http"

    # Rate limiting settings (fixed window, per client IP)
    rate_limit_requests: int = 10
    rate_limit_window_seconds: float = 60.0
    rate_limit_trust_forwarded_for: bool = False
    rate_limit_cleanup_interval_seconds: float = 0.0  # 0 disables the sweep

    # Response rewriting: "text" substitutes REWRITE_SEARCH, "html" appends REWRITE_SCRIPT
    rewrite_mode: Literal["text", "html"] = "text"
    rewrite_search: str = "Hello"
    rewrite_replacement: str = "Modified Hello"
    rewrite_content_types: Annotated[list[str], NoDecode] = [
        "text/",
        "application/json",
        "application/javascript",
        "application/xml",
    ]
    rewrite_script: str = "<script>alert('Modified Message');</script>"
    rewrite_marker_header: str = "X-Custom-Response-Header"
    rewrite_marker_value: str = "Modified-Response"

    # HTTP Client connection pool settings
    httpx_connect_timeout: float = 10.0  # Time to establish connection
    httpx_read_timeout: float = 60.0  # Time to read response data
    httpx_write_timeout: float = 10.0  # Time to send request data
    httpx_pool_timeout: float = 5.0  # Time to acquire connection from pool
    httpx_keepalive_expiry: float = 30.0
    httpx_max_connections: int = 100
    httpx_max_keepalive_connections: int = 20

    # Logging settings
    log_level: str = "INFO"
    log_format: str = "text"  # text | structured | json

    @field_validator("rewrite_content_types", mode="before")
    @classmethod
    def decode_rewrite_content_types(cls, v: Any) -> list[str]:
        return [item.lower() for item in _parse_csv(v)]

    @field_validator("rate_limit_requests")
    @classmethod
    def validate_rate_limit_positive(cls, v: int) -> int:
        """Validate rate limit is positive."""
        if v < 1:
            raise ValueError("rate_limit_requests must be at least 1")
        return v

    @field_validator("rate_limit_window_seconds")
    @classmethod
    def validate_window_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("rate_limit_window_seconds must be positive")
        return v

    @field_validator("rate_limit_cleanup_interval_seconds")
    @classmethod
    def validate_cleanup_interval(cls, v: float) -> float:
        if v < 0:
            raise ValueError("rate_limit_cleanup_interval_seconds cannot be negative")
        return v

    @field_validator("port")
    @classmethod
    def validate_port(cls, v: int) -> int:
        if not 0 < v < 65536:
            raise ValueError("port must be between 1 and 65535")
        return v

    @field_validator("target_query_param", "target_header", "upstream_scheme")
    @classmethod
    def validate_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("value must not be empty")
        return v

    @field_validator(
        "httpx_connect_timeout",
        "httpx_read_timeout",
        "httpx_write_timeout",
        "httpx_pool_timeout",
    )
    @classmethod
    def validate_timeout_positive(cls, v: float) -> float:
        """Validate timeout values are positive."""
        if v <= 0:
            raise ValueError("Timeout values must be positive")
        return v

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


# Global settings instance
settings = Settings()
