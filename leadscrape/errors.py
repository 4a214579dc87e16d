"""Error taxonomy shared by the ingestion stack."""

from __future__ import annotations

from typing import Any

RETRYABLE_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})


class LeadScrapeError(Exception):
    """Base error carrying a machine code, retryability flag and context."""

    code = "LEADSCRAPE_ERROR"
    default_retryable = True

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        retryable: bool | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.retryable = self.default_retryable if retryable is None else retryable
        self.metadata: dict[str, Any] = dict(metadata or {})

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": type(self).__name__,
            "code": self.code,
            "message": self.message,
            "retryable": self.retryable,
            "metadata": self.metadata,
        }


class ConfigurationError(LeadScrapeError):
    """Missing or invalid configuration, such as an absent API key."""

    code = "CONFIGURATION_ERROR"
    default_retryable = False

    def __init__(self, message: str, config_key: str | None = None) -> None:
        super().__init__(message, metadata={"config_key": config_key} if config_key else None)
        self.config_key = config_key


class RateLimitError(LeadScrapeError):
    """Upstream asked us to slow down (HTTP 429)."""

    code = "RATE_LIMITED"

    def __init__(self, source: str, retry_after_ms: int | None = None) -> None:
        wait = f" (retry after {retry_after_ms}ms)" if retry_after_ms is not None else ""
        super().__init__(
            f"Rate limited by {source}{wait}",
            metadata={"source": source, "retry_after_ms": retry_after_ms},
        )
        self.source = source
        self.retry_after_ms = retry_after_ms


class BlockedError(LeadScrapeError):
    """Upstream served a block page or captcha; retry through a fresh identity."""

    code = "BLOCKED"

    def __init__(self, source: str, block_type: str = "unknown") -> None:
        super().__init__(
            f"Blocked by {source}: {block_type}",
            metadata={"source": source, "block_type": block_type},
        )
        self.source = source
        self.block_type = block_type


class UpstreamHTTPError(LeadScrapeError):
    """Non-success HTTP status that is neither a rate limit nor a block."""

    code = "UPSTREAM_HTTP_ERROR"

    def __init__(
        self,
        source: str,
        status_code: int,
        message: str | None = None,
        *,
        retryable: bool | None = None,
    ) -> None:
        if retryable is None:
            retryable = status_code in RETRYABLE_STATUS_CODES
        super().__init__(
            message or f"{source} responded with HTTP {status_code}",
            retryable=retryable,
            metadata={"source": source, "status_code": status_code},
        )
        self.source = source
        self.status_code = status_code


class CircuitOpenError(LeadScrapeError):
    """Call rejected without a network attempt because the breaker is open."""

    code = "CIRCUIT_OPEN"
    default_retryable = False

    def __init__(self, name: str) -> None:
        super().__init__(f"Circuit '{name}' is open", metadata={"circuit": name})
        self.name = name


class CircuitTimeoutError(LeadScrapeError):
    """Call exceeded the breaker's per-call timeout."""

    code = "CIRCUIT_TIMEOUT"

    def __init__(self, name: str, timeout_ms: int) -> None:
        super().__init__(
            f"Call through circuit '{name}' timed out after {timeout_ms}ms",
            metadata={"circuit": name, "timeout_ms": timeout_ms},
        )
        self.name = name
        self.timeout_ms = timeout_ms


class ValidationError(LeadScrapeError):
    """Malformed input: a candidate record or an ingest request."""

    code = "VALIDATION_ERROR"
    default_retryable = False

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message, metadata={"field": field} if field else None)
        self.field = field


class StorageError(LeadScrapeError):
    """Repository operation failed."""

    code = "STORAGE_ERROR"
    default_retryable = False

    def __init__(self, message: str, operation: str | None = None) -> None:
        super().__init__(message, metadata={"operation": operation} if operation else None)
        self.operation = operation


__all__ = [
    "RETRYABLE_STATUS_CODES",
    "LeadScrapeError",
    "ConfigurationError",
    "RateLimitError",
    "BlockedError",
    "UpstreamHTTPError",
    "CircuitOpenError",
    "CircuitTimeoutError",
    "ValidationError",
    "StorageError",
]
