"""Unit tests for the global exception handlers.

All tests use a standalone FastAPI app with inline routes so that no
backends or real routers are needed.
"""

from unittest.mock import patch

import pytest
from fastapi import FastAPI, HTTPException
from fastapi.testclient import TestClient
from pydantic import BaseModel

from app.errors import ServiceUnavailableError, status_for
from app.middleware.exception_handler import setup_exception_handlers
from layerforge.errors import (
    AllBackendsExhausted,
    DuplicateArtifactError,
    LayerForgeError,
    NoBackendAvailable,
    RateLimited,
    ServerError,
    TokenBudgetExceeded,
)


@pytest.fixture()
def test_app() -> FastAPI:
    """Create a minimal FastAPI app with exception handlers registered."""
    app = FastAPI()
    setup_exception_handlers(app)

    @app.get("/raise-unhandled")
    async def _raise_unhandled() -> None:
        raise RuntimeError("something went very wrong")

    @app.get("/raise-http-404")
    async def _raise_http_404() -> None:
        raise HTTPException(status_code=404, detail="Item not found")

    class Item(BaseModel):
        name: str
        price: float

    @app.post("/validate")
    async def _validate(item: Item) -> dict:
        return item.model_dump()

    @app.get("/raise-unavailable")
    async def _raise_unavailable() -> None:
        raise ServiceUnavailableError("Nothing configured")

    @app.get("/raise-duplicate")
    async def _raise_duplicate() -> None:
        raise DuplicateArtifactError(["a.py"])

    @app.get("/raise-exhausted")
    async def _raise_exhausted() -> None:
        raise AllBackendsExhausted([
            RateLimited("quota", backend_name="openai", http_status=429),
            ServerError("down", backend_name="gemini", http_status=503),
        ])

    @app.get("/ok")
    async def _ok() -> dict:
        return {"status": "ok"}

    return app


@pytest.fixture()
def client(test_app: FastAPI) -> TestClient:
    return TestClient(test_app, raise_server_exceptions=False)


# ------------------------------------------------------------------
# Generic unhandled exception → 500
# ------------------------------------------------------------------

def test_unhandled_exception_returns_500(client: TestClient) -> None:
    response = client.get("/raise-unhandled")
    assert response.status_code == 500
    body = response.json()
    assert body["error"] == "Internal Server Error"
    assert body["request_id"]


def test_unhandled_exception_does_not_leak_traceback(client: TestClient) -> None:
    body = client.get("/raise-unhandled").json()
    assert "something went very wrong" not in str(body)


# ------------------------------------------------------------------
# HTTPException → preserved status code
# ------------------------------------------------------------------

def test_http_exception_preserves_status_404(client: TestClient) -> None:
    response = client.get("/raise-http-404")
    assert response.status_code == 404
    body = response.json()
    assert body["error"] == "Item not found"
    assert body["detail"] == "Item not found"


# ------------------------------------------------------------------
# Validation errors → 422
# ------------------------------------------------------------------

def test_validation_error_returns_422(client: TestClient) -> None:
    response = client.post("/validate", json={"name": 123})
    assert response.status_code == 422
    body = response.json()
    assert body["error"] == "Validation failed"
    assert isinstance(body["detail"], list)
    assert {"loc", "msg", "type"} <= set(body["detail"][0])


# ------------------------------------------------------------------
# Service and core errors → mapped status
# ------------------------------------------------------------------

def test_service_unavailable_returns_503(client: TestClient) -> None:
    response = client.get("/raise-unavailable")
    assert response.status_code == 503
    assert response.json()["detail"] == "Nothing configured"


def test_duplicate_artifact_returns_400(client: TestClient) -> None:
    response = client.get("/raise-duplicate")
    assert response.status_code == 400
    assert response.json()["detail"]["duplicates"] == ["a.py"]


def test_exhausted_returns_503_with_attempts(client: TestClient) -> None:
    response = client.get("/raise-exhausted")
    assert response.status_code == 503
    detail = response.json()["detail"]
    assert detail["kind"] == "server_error"
    assert [a["backend_name"] for a in detail["attempts"]] == ["openai", "gemini"]
    assert detail["attempts"][0]["http_status"] == 429


@pytest.mark.parametrize("exc,expected", [
    (DuplicateArtifactError(["x"]), 400),
    (TokenBudgetExceeded(11, 10), 429),
    (NoBackendAvailable([], []), 503),
    (AllBackendsExhausted([]), 503),
    (LayerForgeError("other"), 500),
])
def test_status_for(exc, expected) -> None:
    assert status_for(exc) == expected


# ------------------------------------------------------------------
# Logging verification
# ------------------------------------------------------------------

def test_exception_handler_logs_traceback(client: TestClient) -> None:
    with patch("app.middleware.exception_handler.logger") as mock_logger:
        client.get("/raise-unhandled")
        mock_logger.error.assert_called_once()
        call_args = mock_logger.error.call_args
        assert "GET" in str(call_args)
        assert "/raise-unhandled" in str(call_args)
        assert call_args.kwargs.get("exc_info") is not None


# ------------------------------------------------------------------
# Happy path still works
# ------------------------------------------------------------------

def test_successful_request_not_affected(client: TestClient) -> None:
    response = client.get("/ok")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}
