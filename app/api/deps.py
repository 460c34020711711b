"""Request dependencies -- hand out the objects wired onto ``app.state``."""

from fastapi import Depends, Request

from app.config import Settings
from layerforge.backends import BackendRegistry
from layerforge.executor import RequestExecutor
from layerforge.orchestrator import Orchestrator
from layerforge.usage import UsageTracker


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_registry(request: Request) -> BackendRegistry:
    return request.app.state.registry


def get_executor(request: Request) -> RequestExecutor:
    return request.app.state.executor


def get_usage(request: Request) -> UsageTracker:
    return request.app.state.usage


def get_orchestrator(
    executor: RequestExecutor = Depends(get_executor),
    settings: Settings = Depends(get_settings),
) -> Orchestrator:
    """Build an orchestrator for one run from the current settings."""
    return Orchestrator(
        executor,
        max_concurrency=settings.MAX_CONCURRENCY or None,
        layer_delay_s=settings.LAYER_DELAY_SECONDS,
    )
