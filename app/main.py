"""LayerForge -- FastAPI application entry point."""

import logging
import sys
from contextlib import asynccontextmanager

from fastapi import FastAPI

from app.api.routers.backends import router as backends_router
from app.api.routers.generation import router as generation_router
from app.api.routers.health import router as health_router
from app.config import VERSION, Settings, settings as default_settings
from app.middleware import RequestIDMiddleware
from app.middleware.exception_handler import setup_exception_handlers
from layerforge.backends import BackendRegistry
from layerforge.clock import Clock
from layerforge.executor import RequestExecutor
from layerforge.transport import HttpTransport, Transport
from layerforge.usage import UsageTracker

logger = logging.getLogger(__name__)


class _ColorFormatter(logging.Formatter):
    """ANSI-colored log formatter for terminal output."""

    _COLORS = {
        logging.DEBUG:    "\033[36m",     # cyan
        logging.INFO:     "\033[32m",     # green
        logging.WARNING:  "\033[33m",     # yellow
        logging.ERROR:    "\033[31m",     # red
        logging.CRITICAL: "\033[1;31m",   # bold red
    }
    _RESET = "\033[0m"
    _DIM = "\033[2m"

    def format(self, record: logging.LogRecord) -> str:
        color = self._COLORS.get(record.levelno, "")
        ts = self.formatTime(record, "%H:%M:%S")
        name = record.name.split(".")[-1][:20]
        msg = record.getMessage()
        if record.exc_info:
            msg = f"{msg}\n{self.formatException(record.exc_info)}"
        return (
            f"{self._DIM}{ts}{self._RESET} "
            f"{color}{record.levelname:<8s}{self._RESET} "
            f"{self._DIM}[{name:>20s}]{self._RESET} "
            f"{color}{msg}{self._RESET}"
        )


class _PlainFormatter(logging.Formatter):
    """Plain-text formatter for file logs (no ANSI codes)."""

    def format(self, record: logging.LogRecord) -> str:
        ts = self.formatTime(record, "%Y-%m-%d %H:%M:%S")
        name = record.name.split(".")[-1][:20]
        msg = record.getMessage()
        if record.exc_info:
            msg = f"{msg}\n{self.formatException(record.exc_info)}"
        return f"{ts} {record.levelname:<8s} [{name:>20s}] {msg}"


def configure_logging(settings: Settings) -> None:
    """Install the console (and optional rotating file) log handlers."""
    log_level = getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(_ColorFormatter())
    handlers: list[logging.Handler] = [handler]

    # Persistent file log.  Set LOG_FILE in .env (e.g. LOG_FILE=logs/layerforge.log).
    if settings.LOG_FILE:
        from logging.handlers import RotatingFileHandler
        from pathlib import Path as _LogPath
        log_path = _LogPath(settings.LOG_FILE)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            str(log_path),
            maxBytes=10 * 1024 * 1024,  # 10 MB per file
            backupCount=3,
            encoding="utf-8",
        )
        file_handler.setFormatter(_PlainFormatter())
        handlers.append(file_handler)

    logging.basicConfig(level=log_level, handlers=handlers, force=True)

    # Quiet noisy loggers
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


@asynccontextmanager
async def lifespan(application: FastAPI):
    """Application lifespan: startup and shutdown hooks."""
    settings: Settings = application.state.settings
    if "pytest" not in sys.modules:
        configure_logging(settings)

    check = settings.validate_backends()
    for err in check["errors"]:
        logger.warning("Configuration: %s", err)
    for tip in check["warnings"]:
        logger.info("Configuration: %s", tip)
    logger.info(
        "LayerForge %s started with %d backend(s), strategy=%s",
        VERSION, len(application.state.registry), application.state.registry.strategy.value,
    )
    yield
    transport = application.state.transport
    if isinstance(transport, HttpTransport):
        await transport.aclose()


def create_app(
    settings: Settings | None = None,
    *,
    registry: BackendRegistry | None = None,
    transport: Transport | None = None,
    clock: Clock | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Every argument is optional; tests inject a prepared registry, a
    scripted transport and a manual clock.
    """
    cfg = settings or default_settings
    application = FastAPI(
        title="LayerForge",
        version=VERSION,
        description="Dependency-layered generation over failover completion backends",
        lifespan=lifespan,
        docs_url="/docs" if cfg.DEBUG else None,
        redoc_url="/redoc" if cfg.DEBUG else None,
    )

    if registry is None:
        registry = BackendRegistry.from_settings(cfg, clock=clock)
    if transport is None:
        transport = HttpTransport()
    usage = UsageTracker(cfg.TOKEN_LIMIT_TOTAL, cfg.TOKEN_WARNING_THRESHOLD)

    application.state.settings = cfg
    application.state.settings_loader = (lambda: cfg) if settings is not None else Settings
    application.state.registry = registry
    application.state.transport = transport
    application.state.usage = usage
    application.state.executor = RequestExecutor(
        registry, transport=transport, clock=clock, usage=usage,
    )

    # Register all global exception handlers (structured JSON responses
    # with request_id tracing in app/middleware/exception_handler.py).
    setup_exception_handlers(application)

    application.add_middleware(RequestIDMiddleware)

    application.include_router(health_router)
    application.include_router(backends_router)
    application.include_router(generation_router)
    return application


app = create_app()
