"""Shared test fixtures — reduces boilerplate across test modules.

Provides:
- ``clock`` — a ``ManualClock`` so cooldowns and backoff are deterministic
- ``chat_config`` / ``gemini_config`` — one backend of each family
- ``make_registry`` — factory building a ``BackendRegistry`` on ``clock``
- ``ScriptedTransport`` — fake transport replaying canned wire responses
- ``chat_ok`` / ``gemini_ok`` / ``http_error`` — canned response builders
- ``test_client`` — ``TestClient`` against an app wired to the fakes
"""

from __future__ import annotations

from collections import defaultdict, deque
from typing import Any, Callable, Iterable, Union

import pytest
from fastapi.testclient import TestClient

from app.config import Settings
from app.main import create_app
from layerforge.backends import BackendRegistry
from layerforge.clock import ManualClock
from layerforge.contracts import (
    BackendConfig,
    BackendFamily,
    RoutingStrategy,
    WireRequest,
    WireResponse,
)
from layerforge.errors import BackendError


def pytest_configure(config):
    """Register custom markers.

    Tests that need a real upstream backend should be decorated with
    ``@pytest.mark.integration`` and are skipped with
    ``-m 'not integration'``.
    """
    config.addinivalue_line(
        "markers",
        "integration: tests requiring a real completion backend",
    )


# ---------------------------------------------------------------------------
# Canned wire responses
# ---------------------------------------------------------------------------


def chat_ok(
    content: str = "ok",
    *,
    finish_reason: str = "stop",
    prompt_tokens: int = 10,
    completion_tokens: int = 5,
) -> dict:
    """A successful chat-completions body."""
    return {
        "id": "chatcmpl-test",
        "model": "gpt-4o-mini",
        "choices": [{
            "index": 0,
            "message": {"role": "assistant", "content": content},
            "finish_reason": finish_reason,
        }],
        "usage": {
            "prompt_tokens": prompt_tokens,
            "completion_tokens": completion_tokens,
            "total_tokens": prompt_tokens + completion_tokens,
        },
    }


def gemini_ok(
    content: str = "ok",
    *,
    finish_reason: str = "STOP",
    prompt_tokens: int = 12,
    completion_tokens: int = 6,
) -> dict:
    """A successful generateContent body."""
    return {
        "candidates": [{
            "content": {"role": "model", "parts": [{"text": content}]},
            "finishReason": finish_reason,
        }],
        "usageMetadata": {
            "promptTokenCount": prompt_tokens,
            "candidatesTokenCount": completion_tokens,
            "totalTokenCount": prompt_tokens + completion_tokens,
        },
        "modelVersion": "gemini-2.5-flash",
    }


def http_error(status: int, message: str = "error", headers: dict | None = None) -> tuple:
    """A failed answer: ``(status, body, headers)``."""
    return (status, {"error": {"message": message, "code": status}}, headers or {})


Scripted = Union[dict, tuple, BackendError, Callable[[WireRequest], Any]]


class ScriptedTransport:
    """Fake transport: replays scripted answers per backend name.

    Each script item is a success body (``dict``), an error tuple from
    ``http_error``, a ``BackendError`` instance to raise, or a callable
    receiving the ``WireRequest``.  When a backend's script runs out
    the ``default`` item (if any) is used.
    """

    def __init__(self, default: Scripted | None = None) -> None:
        self.scripts: dict[str, deque] = defaultdict(deque)
        self.default = default
        self.requests: list[WireRequest] = []

    def script(self, backend: str, *items: Scripted) -> "ScriptedTransport":
        self.scripts[backend].extend(items)
        return self

    def calls_to(self, backend: str) -> int:
        return sum(1 for r in self.requests if r.backend == backend)

    @property
    def backends_called(self) -> list[str]:
        return [r.backend for r in self.requests]

    async def send(self, request: WireRequest) -> WireResponse:
        self.requests.append(request)
        queue = self.scripts.get(request.backend)
        if queue:
            item = queue.popleft()
        elif self.default is not None:
            item = self.default
        else:
            raise AssertionError(f"No scripted response left for {request.backend!r}")

        if callable(item) and not isinstance(item, BackendError):
            item = item(request)
        if isinstance(item, BackendError):
            raise item
        if isinstance(item, tuple):
            status, body, headers = item
        else:
            status, body, headers = 200, item, {}
        return WireResponse(
            family=request.family,
            status_code=status,
            body=body,
            headers=headers,
            backend=request.backend,
            model=request.model,
        )


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def chat_config() -> BackendConfig:
    return BackendConfig(
        name="openai",
        family=BackendFamily.CHAT_COMPLETIONS,
        base_url="https://chat.test/v1",
        credential="sk-test",
        model="gpt-4o-mini",
        max_retries=2,
        retry_delay_s=0.5,
    )


@pytest.fixture
def gemini_config() -> BackendConfig:
    return BackendConfig(
        name="gemini",
        family=BackendFamily.GENERATE_CONTENT,
        base_url="https://gen.test/v1beta",
        credential="g-test",
        model="gemini-2.5-flash",
        max_retries=2,
        retry_delay_s=0.5,
    )


@pytest.fixture
def make_registry(clock) -> Callable[..., BackendRegistry]:
    """Factory: ``make_registry(*configs, strategy="failover")``."""

    def _make(
        *configs: BackendConfig,
        strategy: RoutingStrategy | str = RoutingStrategy.FAILOVER,
        **kwargs: Any,
    ) -> BackendRegistry:
        return BackendRegistry(configs, strategy=strategy, clock=clock, **kwargs)

    return _make


@pytest.fixture
def registry(make_registry, chat_config, gemini_config) -> BackendRegistry:
    """Two backends, chat-completions primary."""
    return make_registry(chat_config, gemini_config)


@pytest.fixture
def transport() -> ScriptedTransport:
    return ScriptedTransport()


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        _env_file=None,
        OPENAI_API_KEY="sk-test",
        OPENAI_BASE_URL="https://chat.test/v1",
        GEMINI_API_KEY="g-test",
        GEMINI_BASE_URL="https://gen.test/v1beta",
        LAYER_DELAY_SECONDS=0,
    )


def build_client(
    settings: Settings,
    registry: BackendRegistry,
    transport: ScriptedTransport,
    clock: ManualClock,
) -> TestClient:
    app = create_app(settings, registry=registry, transport=transport, clock=clock)
    return TestClient(app)


@pytest.fixture
def test_client(test_settings, registry, transport, clock) -> TestClient:
    """A ``TestClient`` whose backends answer from ``transport``."""
    return build_client(test_settings, registry, transport, clock)


def artifacts(*paths: str) -> list[dict]:
    return [{"path": p} for p in paths]


def layer_index(layers: Iterable[Iterable[str]], path: str) -> int:
    for idx, layer in enumerate(layers):
        if path in layer:
            return idx
    raise KeyError(path)
