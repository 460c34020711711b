"""Global exception handlers for the FastAPI application.

Catches all unhandled exceptions, logs full stack traces server-side,
and returns structured JSON error responses to clients.  Stack traces
are **never** leaked to the client.
"""

import logging
import uuid

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.errors import ServiceError, format_error_response, status_for
from layerforge.errors import LayerForgeError

logger = logging.getLogger(__name__)


def _get_request_id(request: Request) -> str:
    """Extract the request ID injected by :class:`RequestIDMiddleware`.

    Falls back to a freshly generated UUID-4 if the middleware has not
    run (e.g. during unit tests with a bare ``FastAPI()`` app).
    """
    return getattr(request.state, "request_id", None) or str(uuid.uuid4())


# ------------------------------------------------------------------
# Individual exception handlers
# ------------------------------------------------------------------

async def global_exception_handler(
    request: Request, exc: Exception
) -> JSONResponse:
    """Catch-all for any unhandled exception — returns 500."""
    request_id = _get_request_id(request)
    logger.error(
        "Unhandled exception on %s %s [request_id=%s]",
        request.method,
        request.url.path,
        request_id,
        exc_info=exc,
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=format_error_response(
            error="Internal Server Error",
            detail="Internal server error",
            request_id=request_id,
        ),
    )


async def http_exception_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    """Handle Starlette/FastAPI ``HTTPException`` — preserves status code."""
    request_id = _get_request_id(request)
    logger.warning(
        "HTTP %s on %s %s [request_id=%s]: %s",
        exc.status_code,
        request.method,
        request.url.path,
        request_id,
        exc.detail,
    )
    return JSONResponse(
        status_code=exc.status_code,
        content=format_error_response(
            error=str(exc.detail) if exc.detail else "Error",
            detail=str(exc.detail) if exc.detail else None,
            request_id=request_id,
        ),
    )


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Handle Pydantic / request-validation errors — returns 422."""
    request_id = _get_request_id(request)
    errors = exc.errors()
    logger.warning(
        "Validation error on %s %s [request_id=%s]: %s",
        request.method,
        request.url.path,
        request_id,
        errors,
    )
    return JSONResponse(
        status_code=422,
        content=format_error_response(
            error="Validation failed",
            detail=[
                {"loc": list(e.get("loc", ())), "msg": e.get("msg", ""), "type": e.get("type", "")}
                for e in errors
            ],
            request_id=request_id,
        ),
    )


async def service_error_handler(
    request: Request, exc: ServiceError
) -> JSONResponse:
    """Handle :class:`ServiceError` subclasses — maps to HTTP status."""
    request_id = _get_request_id(request)
    return JSONResponse(
        status_code=exc.status_code,
        content=format_error_response(
            error=str(exc),
            detail=str(exc),
            request_id=request_id,
        ),
    )


async def core_error_handler(
    request: Request, exc: LayerForgeError
) -> JSONResponse:
    """Handle core :class:`LayerForgeError` — typed fields go in ``detail``."""
    request_id = _get_request_id(request)
    status_code = status_for(exc)
    log = logger.error if status_code >= 500 else logger.warning
    log(
        "%s on %s %s [request_id=%s]: %s",
        type(exc).__name__,
        request.method,
        request.url.path,
        request_id,
        exc,
    )
    return JSONResponse(
        status_code=status_code,
        content=format_error_response(
            error=str(exc),
            detail=exc.to_dict(),
            request_id=request_id,
        ),
    )


# ------------------------------------------------------------------
# Registration helper
# ------------------------------------------------------------------

def setup_exception_handlers(app: FastAPI) -> None:
    """Register all global exception handlers on *app*.

    Call this **after** the app is created but **before** routers are
    included so that every route is covered.
    """
    app.add_exception_handler(RequestValidationError, validation_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(ServiceError, service_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(LayerForgeError, core_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, global_exception_handler)  # type: ignore[arg-type]
