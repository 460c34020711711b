"""Request-ID and access-log middleware.

Implemented as pure ASGI middleware (not BaseHTTPMiddleware) so the
response body is streamed through untouched.
"""

import json
import logging
import time
import uuid

from starlette.types import ASGIApp, Receive, Scope, Send

access_logger = logging.getLogger("layerforge.access")

_SKIP_PREFIXES = ("/health", "/docs", "/openapi.json", "/favicon.ico")


class RequestIDMiddleware:
    """Injects ``X-Request-ID`` into every HTTP request/response cycle.

    If the client already provides one, it is reused (useful for
    distributed tracing).  Otherwise a random UUID-4 is generated.

    Each non-health request is also logged as one ``METRIC`` line on the
    ``layerforge.access`` logger with method, path, status and wall time;
    4xx/5xx lines include the ``error`` field of the JSON body.
    """

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        headers = dict(scope.get("headers", []))
        request_id = (
            headers.get(b"x-request-id", b"").decode() or str(uuid.uuid4())
        )
        scope.setdefault("state", {})["request_id"] = request_id

        path: str = scope.get("path", "")
        log_request = not path.startswith(_SKIP_PREFIXES)
        t0 = time.perf_counter()
        status_code = 0
        error_detail = ""

        async def send_with_id(message: dict) -> None:
            nonlocal status_code, error_detail
            if message["type"] == "http.response.start":
                status_code = message.get("status", 0)
                raw_headers: list = list(message.get("headers", []))
                raw_headers.append((b"x-request-id", request_id.encode()))
                message = {**message, "headers": raw_headers}
            elif message["type"] == "http.response.body" and status_code >= 400:
                error_detail = _error_of(message.get("body", b"")) or error_detail
            await send(message)

        try:
            await self.app(scope, receive, send_with_id)
        except Exception:
            if status_code == 0:
                status_code = 500
            raise
        finally:
            if log_request:
                _emit(
                    scope.get("method", "?"), path, status_code,
                    (time.perf_counter() - t0) * 1000, request_id, error_detail,
                )


def _error_of(body: bytes) -> str:
    if not body:
        return ""
    try:
        data = json.loads(body)
    except ValueError:
        return ""
    if not isinstance(data, dict):
        return ""
    value = data.get("error") or data.get("detail") or ""
    return str(value)[:200]


def _emit(
    method: str,
    path: str,
    status_code: int,
    wall_ms: float,
    request_id: str,
    error_detail: str,
) -> None:
    parts = [
        "METRIC | type=http_request",
        f"method={method}",
        f"path={path}",
        f"status={status_code}",
        f"wall_ms={wall_ms:.0f}",
        f"req_id={request_id}",
    ]
    if error_detail:
        parts.append(f"error={error_detail.replace('|', '/')}")
    line = " | ".join(parts)

    if status_code >= 500:
        access_logger.error(line)
    elif status_code >= 400:
        access_logger.warning(line)
    else:
        access_logger.info(line)
