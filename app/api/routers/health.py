"""Health check router."""

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from app.api.deps import get_registry
from app.config import VERSION
from layerforge.backends import BackendRegistry

router = APIRouter()


@router.get("/health")
async def health_check(registry: BackendRegistry = Depends(get_registry)):
    """Return health status with the number of ready backends.

    Degraded (503) when backends are configured but none is ready.
    """
    total = len(registry)
    ready = len(registry.ready_backends())
    body = {"status": "ok", "backends": total, "ready": ready}
    if total and not ready:
        return JSONResponse({**body, "status": "degraded"}, status_code=503)
    return body


@router.get("/health/version")
async def health_version() -> dict:
    """Return application version."""
    return {"version": VERSION}
