"""Orchestration error hierarchy.

Every error carries typed fields (not just a message string),
supports ``to_dict()`` for serialisation into API error payloads,
and has a readable ``__str__`` for logging.

Backend-local failures (``BackendError`` subclasses) are handled inside
the request executor; only ``AllBackendsExhausted``,
``NoBackendAvailable`` and malformed-input errors reach callers.
"""

from __future__ import annotations


class LayerForgeError(Exception):
    """Base error for all orchestration failures."""

    def __init__(self, message: str, *, detail: dict | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.detail = detail or {}

    def to_dict(self) -> dict:
        return {"error": type(self).__name__, "message": self.message, **self.detail}

    def __str__(self) -> str:
        return self.message


# ---------------------------------------------------------------------------
# Backend-local failures
# ---------------------------------------------------------------------------


class BackendError(LayerForgeError):
    """A single backend failed a single attempt.

    ``kind`` is the stable classification used in logs, stats and the
    exhaustion report.  ``retryable`` tells the executor whether the
    *same* backend may be tried again inside one logical call.
    """

    kind = "backend_error"
    retryable = False

    def __init__(
        self,
        message: str,
        *,
        backend_name: str = "",
        http_status: int | None = None,
        retry_after: float | None = None,
    ) -> None:
        self.backend_name = backend_name
        self.http_status = http_status
        self.retry_after = retry_after
        detail: dict = {"kind": self.kind, "backend_name": backend_name}
        if http_status is not None:
            detail["http_status"] = http_status
        if retry_after is not None:
            detail["retry_after"] = retry_after
        super().__init__(message, detail=detail)

    def with_backend(self, backend_name: str) -> "BackendError":
        """Return the same error bound to *backend_name*."""
        self.backend_name = backend_name
        self.detail["backend_name"] = backend_name
        return self

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "backend_name": self.backend_name,
            "http_status": self.http_status,
            "message": self.message,
        }


class RateLimited(BackendError):
    """Backend answered 429 / quota exhausted."""

    kind = "rate_limited"
    retryable = True


class AuthenticationFailed(BackendError):
    """Credential rejected (401/403).  Retrying cannot succeed."""

    kind = "authentication_failed"


class ServerError(BackendError):
    """Backend answered with a 5xx status."""

    kind = "server_error"
    retryable = True


class ContentBlocked(BackendError):
    """Backend refused the content (safety / recitation filtering).

    Not retryable on the same backend for the same request, but a
    different backend may accept it.
    """

    kind = "content_blocked"

    def __init__(
        self,
        message: str,
        *,
        backend_name: str = "",
        finish_reason: str = "",
        safety_ratings: list | None = None,
    ) -> None:
        self.finish_reason = finish_reason
        self.safety_ratings = safety_ratings or []
        super().__init__(message, backend_name=backend_name)


class NetworkOrTimeout(BackendError):
    """Connection failure, read error or timeout before a response arrived."""

    kind = "network_or_timeout"
    retryable = True


class MalformedResponse(BackendError):
    """Response arrived but could not be translated into an envelope."""

    kind = "malformed_response"


class RequestRejected(BackendError):
    """Any other 4xx answer (bad request, unknown model, ...)."""

    kind = "request_rejected"


# ---------------------------------------------------------------------------
# Terminal failures
# ---------------------------------------------------------------------------


class NoBackendAvailable(LayerForgeError):
    """Every configured backend is excluded or disabled."""

    def __init__(self, excluded: list[str], configured: list[str]) -> None:
        self.excluded = excluded
        self.configured = configured
        if not configured:
            msg = "No backends configured"
        else:
            msg = (
                f"No backend available (configured: {', '.join(configured)}; "
                f"already tried or disabled: {', '.join(excluded) or 'none'})"
            )
        super().__init__(msg, detail={"excluded": excluded, "configured": configured})


class AllBackendsExhausted(LayerForgeError):
    """Every reachable backend failed one logical call.

    ``attempts`` lists each classified failure in the order it happened,
    so operators can tell "everyone is rate limited" apart from
    "credentials are wrong everywhere".
    """

    def __init__(self, attempts: list[BackendError]) -> None:
        self.attempts = list(attempts)
        self.last_error = self.attempts[-1] if self.attempts else None
        if self.attempts:
            summary = "; ".join(
                f"{a.backend_name or '?'}: {a.kind}"
                + (f" ({a.http_status})" if a.http_status is not None else "")
                for a in self.attempts
            )
            msg = f"All backends exhausted after {len(self.attempts)} attempt(s): {summary}"
        else:
            msg = "All backends exhausted (no attempt could be made)"
        super().__init__(msg, detail={"attempts": [a.to_dict() for a in self.attempts]})

    @property
    def kind(self) -> str:
        return self.last_error.kind if self.last_error else "no_backend"

    @property
    def backend_name(self) -> str:
        return self.last_error.backend_name if self.last_error else ""

    @property
    def http_status(self) -> int | None:
        return self.last_error.http_status if self.last_error else None

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "backend_name": self.backend_name,
            "http_status": self.http_status,
            "message": self.message,
            "attempts": [a.to_dict() for a in self.attempts],
        }


# ---------------------------------------------------------------------------
# Input / budget
# ---------------------------------------------------------------------------


class DuplicateArtifactError(LayerForgeError):
    """The artifact list contains the same path more than once."""

    def __init__(self, duplicates: list[str]) -> None:
        self.duplicates = duplicates
        super().__init__(
            f"Duplicate artifact path(s): {', '.join(duplicates)}",
            detail={"duplicates": duplicates},
        )


class TokenBudgetExceeded(LayerForgeError):
    """Cumulative token usage went over the configured ceiling."""

    def __init__(self, used: int, limit: int) -> None:
        self.used = used
        self.limit = limit
        super().__init__(
            f"Token usage exceeded limit: {used} / {limit}",
            detail={"used": used, "limit": limit},
        )


class CircularDependencyWarning(UserWarning):
    """Scheduling found a dependency cycle and fell back to input order."""
