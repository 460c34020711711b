"""HTTP transport -- sends ``WireRequest`` objects over httpx."""

from __future__ import annotations

import logging
from typing import Protocol, runtime_checkable

import httpx

from layerforge.contracts import WireRequest, WireResponse
from layerforge.errors import MalformedResponse, NetworkOrTimeout

logger = logging.getLogger(__name__)

# ── Shared HTTP client (connection pooling) ─────────────────────────────────

_client: httpx.AsyncClient | None = None


def _get_client() -> httpx.AsyncClient:
    """Return (or create) the shared httpx client for backend calls."""
    global _client
    if _client is None:
        _client = httpx.AsyncClient(timeout=300.0)
    return _client


async def close_client() -> None:
    """Close the shared HTTP client.  Called during app shutdown."""
    global _client
    if _client is not None:
        await _client.aclose()
        _client = None


@runtime_checkable
class Transport(Protocol):
    async def send(self, request: WireRequest) -> WireResponse: ...


class HttpTransport:
    """Dispatches wire requests with a per-request timeout.

    Pass *client* to use a dedicated ``httpx.AsyncClient`` (tests hand in
    one built on ``httpx.MockTransport``); otherwise the module-level
    shared client is used.
    """

    def __init__(self, client: httpx.AsyncClient | None = None) -> None:
        self._client = client

    @property
    def client(self) -> httpx.AsyncClient:
        return self._client if self._client is not None else _get_client()

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
        else:
            await close_client()

    async def send(self, request: WireRequest) -> WireResponse:
        try:
            response = await self.client.post(
                request.url,
                headers=request.headers,
                json=request.body,
                timeout=request.timeout_s,
            )
        except httpx.TimeoutException as exc:
            raise NetworkOrTimeout(
                f"Request timed out after {request.timeout_s:.0f}s ({type(exc).__name__})"
            ) from exc
        except httpx.TransportError as exc:
            raise NetworkOrTimeout(f"{type(exc).__name__}: {exc}") from exc

        try:
            body = response.json()
        except ValueError:
            if response.status_code < 400:
                raise MalformedResponse(
                    "Response body is not JSON", http_status=response.status_code,
                ) from None
            body = {"error": {"message": response.text[:500] or f"HTTP {response.status_code}"}}
        if not isinstance(body, dict):
            if response.status_code < 400:
                raise MalformedResponse(
                    "Response body is not a JSON object", http_status=response.status_code,
                )
            body = {"error": {"message": str(body)[:500]}}

        if response.status_code >= 400:
            logger.debug(
                "Backend call to %s returned %d", request.url, response.status_code,
            )

        return WireResponse(
            family=request.family,
            status_code=response.status_code,
            body=body,
            headers={k.lower(): v for k, v in response.headers.items()},
            backend=request.backend,
            model=request.model,
        )
