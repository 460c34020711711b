"""Service exception hierarchy and error-payload formatting.

Route handlers raise these instead of ``HTTPException`` so that the
global exception handler can map them to the correct HTTP status code.
Core ``LayerForgeError`` subclasses are mapped through
``status_for`` without being wrapped.
"""

from layerforge.errors import (
    AllBackendsExhausted,
    DuplicateArtifactError,
    LayerForgeError,
    NoBackendAvailable,
    TokenBudgetExceeded,
)


class ServiceError(Exception):
    """Base for all service-level exceptions."""

    def __init__(self, message: str = "An unexpected error occurred", *, status_code: int = 500):
        super().__init__(message)
        self.status_code = status_code


class ServiceUnavailableError(ServiceError):
    """No backend can serve the request right now (503)."""

    def __init__(self, message: str = "Service unavailable"):
        super().__init__(message, status_code=503)


# Core error type → HTTP status.  First match wins, so subclasses go first.
_CORE_STATUS: tuple[tuple[type[LayerForgeError], int], ...] = (
    (DuplicateArtifactError, 400),
    (TokenBudgetExceeded, 429),
    (AllBackendsExhausted, 503),
    (NoBackendAvailable, 503),
)


def status_for(exc: LayerForgeError) -> int:
    """Return the HTTP status code for a core error."""
    for exc_type, status in _CORE_STATUS:
        if isinstance(exc, exc_type):
            return status
    return 500


def format_error_response(
    *,
    error: str,
    detail: object = None,
    request_id: str = "",
) -> dict:
    """Build a structured error response dict.

    Parameters
    ----------
    error : str
        Short error title (e.g. ``"Internal Server Error"``).
    detail : object
        Human-readable detail string, validation error list, or the
        ``to_dict()`` of a core error.
    request_id : str
        The request ID for tracing.

    Returns
    -------
    dict
        ``{"error": ..., "detail": ..., "request_id": ...}``
    """
    return {
        "error": error,
        "detail": detail if detail is not None else error,
        "request_id": request_id,
    }
