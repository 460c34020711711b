"""Tests for the httpx transport (driven by httpx.MockTransport)."""

import json

import httpx
import pytest

from layerforge.contracts import BackendFamily, WireRequest
from layerforge.errors import MalformedResponse, NetworkOrTimeout
from layerforge.transport import HttpTransport


def _request(**overrides) -> WireRequest:
    data = dict(
        family=BackendFamily.CHAT_COMPLETIONS,
        url="https://chat.test/v1/chat/completions",
        backend="openai",
        headers={"Authorization": "Bearer sk-test"},
        body={"model": "gpt-4o-mini", "messages": []},
        timeout_s=5.0,
        model="gpt-4o-mini",
    )
    data.update(overrides)
    return WireRequest(**data)


def _transport(handler) -> HttpTransport:
    return HttpTransport(httpx.AsyncClient(transport=httpx.MockTransport(handler)))


class TestHttpTransport:
    @pytest.mark.asyncio
    async def test_posts_json_and_tags_response(self) -> None:
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["method"] = request.method
            seen["auth"] = request.headers["authorization"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"ok": True}, headers={"X-Trace": "abc"})

        transport = _transport(handler)
        resp = await transport.send(_request())
        await transport.aclose()

        assert seen["method"] == "POST"
        assert seen["auth"] == "Bearer sk-test"
        assert seen["body"]["model"] == "gpt-4o-mini"
        assert resp.status_code == 200
        assert resp.body == {"ok": True}
        assert resp.headers["x-trace"] == "abc"
        assert resp.backend == "openai"
        assert resp.family is BackendFamily.CHAT_COMPLETIONS

    @pytest.mark.asyncio
    async def test_error_status_is_returned_not_raised(self) -> None:
        def handler(request):
            return httpx.Response(
                429, json={"error": {"message": "slow"}}, headers={"Retry-After": "3"},
            )

        resp = await _transport(handler).send(_request())
        assert resp.status_code == 429
        assert resp.headers["retry-after"] == "3"

    @pytest.mark.asyncio
    async def test_non_json_error_body_wrapped(self) -> None:
        def handler(request):
            return httpx.Response(502, text="Bad Gateway")

        resp = await _transport(handler).send(_request())
        assert resp.status_code == 502
        assert resp.body == {"error": {"message": "Bad Gateway"}}

    @pytest.mark.asyncio
    async def test_non_json_success_is_malformed(self) -> None:
        def handler(request):
            return httpx.Response(200, text="<html>")

        with pytest.raises(MalformedResponse):
            await _transport(handler).send(_request())

    @pytest.mark.asyncio
    async def test_json_array_success_is_malformed(self) -> None:
        def handler(request):
            return httpx.Response(200, json=[1, 2])

        with pytest.raises(MalformedResponse):
            await _transport(handler).send(_request())

    @pytest.mark.asyncio
    async def test_timeout_maps_to_network_error(self) -> None:
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(NetworkOrTimeout, match="timed out after 5s"):
            await _transport(handler).send(_request())

    @pytest.mark.asyncio
    async def test_connect_error_maps_to_network_error(self) -> None:
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(NetworkOrTimeout, match="ConnectError"):
            await _transport(handler).send(_request())
