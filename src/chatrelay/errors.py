"""Structured error taxonomy for chatrelay.

Every error carries a machine-readable code, severity and retryability
flag, plus the HTTP status and JSON body it is rendered as. The API
registers one exception handler for RelayError that answers with
``http_status`` and ``response_body()``; nothing else builds error bodies.

Error code format: RELAY_<DOMAIN>_<ISSUE>
Domains: CONFIG, UPSTREAM, API, ROUTING
"""

from __future__ import annotations

from enum import StrEnum
from typing import Any

import httpx


class Severity(StrEnum):
    CRITICAL = "critical"  # request cannot proceed at all
    ERROR = "error"  # operation failed
    WARN = "warn"  # rejected, caller may retry later


class ErrorDomain(StrEnum):
    CONFIG = "CONFIG"
    UPSTREAM = "UPSTREAM"
    API = "API"
    ROUTING = "ROUTING"


# ── Base exception ─────────────────────────────────────────────────────────


class RelayError(Exception):
    """Base exception for all chatrelay errors."""

    code: str = "RELAY_UNKNOWN"
    domain: ErrorDomain = ErrorDomain.API
    severity: Severity = Severity.ERROR
    is_retryable: bool = False
    http_status: int = 500

    def __init__(
        self,
        message: str = "",
        *,
        context: dict[str, Any] | None = None,
    ) -> None:
        self.message = message or self.code
        self.context: dict[str, Any] = context or {}
        super().__init__(self.message)

    def response_body(self) -> dict[str, Any]:
        """JSON body sent to API callers alongside ``http_status``."""
        return {"error": "Internal Server Error", "details": self.message}


# ── Config errors ──────────────────────────────────────────────────────────


class ConfigurationError(RelayError):
    """A credential or endpoint required by the selected provider is missing."""

    code = "RELAY_CONFIG_MISSING_CREDENTIAL"
    domain = ErrorDomain.CONFIG
    severity = Severity.CRITICAL
    is_retryable = False
    http_status = 500


# ── Upstream errors ────────────────────────────────────────────────────────


class UpstreamError(RelayError):
    """Non-success response or malformed payload from a provider.

    Callers see a plain 500; the provider and upstream status stay in
    ``context`` for logs.
    """

    code = "RELAY_UPSTREAM_FAILED"
    domain = ErrorDomain.UPSTREAM
    severity = Severity.ERROR
    is_retryable = False
    http_status = 500

    def __init__(
        self,
        message: str = "",
        *,
        provider: str = "",
        status_code: int | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        ctx = dict(context or {})
        if provider:
            ctx.setdefault("provider", provider)
        if status_code is not None:
            ctx.setdefault("status_code", status_code)
        super().__init__(message, context=ctx)
        self.provider = provider
        self.status_code = status_code


class UpstreamTimeoutError(UpstreamError):
    code = "RELAY_UPSTREAM_TIMEOUT"
    is_retryable = True


# ── API errors ─────────────────────────────────────────────────────────────


class RequestValidationError(RelayError):
    """Malformed ``/chat`` body. ``details`` lists one entry per field error."""

    code = "RELAY_API_VALIDATION"
    domain = ErrorDomain.API
    severity = Severity.WARN
    is_retryable = False
    http_status = 400

    def __init__(self, message: str = "", *, details: list[str] | None = None) -> None:
        super().__init__(message or "Invalid request", context={"details": details or []})
        self.details = details

    def response_body(self) -> dict[str, Any]:
        body: dict[str, Any] = {"error": self.message}
        if self.details:
            body["details"] = self.details
        return body


class RateLimitExceededError(RelayError):
    code = "RELAY_API_RATE_LIMIT"
    domain = ErrorDomain.API
    severity = Severity.WARN
    is_retryable = True
    http_status = 429

    def __init__(
        self,
        *,
        limit: int,
        remaining: int,
        reset_at: str,
        retry_after: int | None = None,
    ) -> None:
        super().__init__(
            "Rate limit exceeded",
            context={"limit": limit, "reset_at": reset_at},
        )
        self.limit = limit
        self.remaining = remaining
        self.reset_at = reset_at
        self.retry_after = retry_after

    def response_body(self) -> dict[str, Any]:
        return {
            "error": self.message,
            "limit": self.limit,
            "remaining": self.remaining,
            "resetAt": self.reset_at,
            "retryAfter": self.retry_after,
        }


# ── Routing errors ─────────────────────────────────────────────────────────


class InvalidRouteTransition(RelayError):
    """Raised when the routing state machine is driven illegally."""

    code = "RELAY_ROUTING_INVALID_TRANSITION"
    domain = ErrorDomain.ROUTING
    severity = Severity.CRITICAL
    is_retryable = False
    http_status = 500


# ── Error classification helper ────────────────────────────────────────────

_UPSTREAM_KEYWORDS: dict[str, type[UpstreamError]] = {
    "timeout": UpstreamTimeoutError,
    "timed out": UpstreamTimeoutError,
    "rate limit": UpstreamError,
    "rate_limit": UpstreamError,
    "429": UpstreamError,
    "503": UpstreamError,
    "connection": UpstreamError,
}


def classify_error(exc: Exception, *, provider: str = "") -> RelayError:
    """Classify a raw exception into a structured RelayError.

    httpx transport errors are mapped by type; SDK exceptions (litellm
    raises its own hierarchy) are matched on their message. Anything
    unrecognised becomes a plain UpstreamError so callers only ever see
    the taxonomy above.
    """
    if isinstance(exc, RelayError):
        return exc

    if isinstance(exc, httpx.TimeoutException):
        return UpstreamTimeoutError(
            f"{provider or 'upstream'} request timed out", provider=provider
        )
    if isinstance(exc, httpx.HTTPStatusError):
        return UpstreamError(
            str(exc), provider=provider, status_code=exc.response.status_code
        )

    status_code = getattr(exc, "status_code", None)
    msg = str(exc).lower()
    for keyword, error_cls in _UPSTREAM_KEYWORDS.items():
        if keyword in msg:
            return error_cls(
                str(exc),
                provider=provider,
                status_code=status_code if isinstance(status_code, int) else None,
            )

    return UpstreamError(
        str(exc) or type(exc).__name__,
        provider=provider,
        status_code=status_code if isinstance(status_code, int) else None,
    )
