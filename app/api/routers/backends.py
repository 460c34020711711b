"""Backends router -- registry stats and operator recovery actions."""

import logging

from fastapi import APIRouter, Depends, Request

from app.api.deps import get_registry
from app.errors import ServiceUnavailableError
from layerforge.backends import BackendRegistry

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/backends", tags=["backends"])


@router.get("")
async def list_backends(registry: BackendRegistry = Depends(get_registry)) -> dict:
    """Return per-backend health and counters."""
    return registry.stats()


@router.post("/reset")
async def reset_backends(registry: BackendRegistry = Depends(get_registry)) -> dict:
    """Clear cooldowns, disabled flags and counters of every backend."""
    registry.reset()
    return registry.stats()


@router.post("/reload")
async def reload_backends(
    request: Request,
    registry: BackendRegistry = Depends(get_registry),
) -> dict:
    """Re-read settings and rebuild the backend list.

    This is the recovery path for backends disabled after their
    credential was rejected.  When the new settings configure no backend
    at all, the current registry is kept and 503 is returned.
    """
    settings = request.app.state.settings_loader()
    configs = settings.backend_configs()
    if not configs:
        raise ServiceUnavailableError(
            "Reloaded settings configure no backend; keeping the current registry"
        )
    request.app.state.settings = settings
    registry.reload(configs, settings.API_ROUTING_STRATEGY)
    logger.info("Reloaded %d backend(s) from settings", len(registry))
    return registry.stats()
