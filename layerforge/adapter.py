"""Backend adapter — translation between envelopes and wire payloads.

Two wire families are supported:

* ``chat_completions`` — ``POST {base}/chat/completions`` with a bearer
  token; turns and usage counters map one to one.
* ``generate_content`` — ``POST {base}/models/{model}:generateContent``
  with an ``x-goog-api-key`` header.  System turns have no native slot
  and are prepended to the first user turn; assistant turns become
  ``model`` turns; usage is read from ``usageMetadata``.

Responses arrive as tagged ``WireResponse`` objects, so ``from_wire``
dispatches on ``response.family`` and never sniffs the payload shape.
HTTP status codes >= 400 are classified into ``BackendError``
subclasses here as well, keeping all wire knowledge in one module.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Mapping

from layerforge.contracts import (
    BackendConfig,
    BackendFamily,
    Message,
    RequestEnvelope,
    ResponseEnvelope,
    Usage,
    WireRequest,
    WireResponse,
)
from layerforge.errors import (
    AuthenticationFailed,
    BackendError,
    ContentBlocked,
    MalformedResponse,
    NetworkOrTimeout,
    RateLimited,
    RequestRejected,
    ServerError,
)

logger = logging.getLogger(__name__)

GEMINI_API_KEY_HEADER = "x-goog-api-key"

# Finish reasons that mean the candidate was withheld by a filter
BLOCKED_FINISH_REASONS = frozenset({
    "SAFETY", "RECITATION", "BLOCKLIST", "PROHIBITED_CONTENT", "SPII",
})

# ---------------------------------------------------------------------------
# Model resolution
# ---------------------------------------------------------------------------

TIER_FAST = "fast"
TIER_STRONG = "strong"

MODEL_TIERS: dict[BackendFamily, dict[str, str]] = {
    BackendFamily.CHAT_COMPLETIONS: {
        TIER_FAST: "gpt-4o-mini",
        TIER_STRONG: "gpt-4o",
    },
    BackendFamily.GENERATE_CONTENT: {
        TIER_FAST: "gemini-2.5-flash",
        TIER_STRONG: "gemini-2.5-pro",
    },
}

_FAMILY_PREFIXES: tuple[tuple[str, BackendFamily], ...] = (
    ("gpt-", BackendFamily.CHAT_COMPLETIONS),
    ("chatgpt", BackendFamily.CHAT_COMPLETIONS),
    ("o1", BackendFamily.CHAT_COMPLETIONS),
    ("o3", BackendFamily.CHAT_COMPLETIONS),
    ("o4", BackendFamily.CHAT_COMPLETIONS),
    ("gemini", BackendFamily.GENERATE_CONTENT),
)

_FAST_MARKERS = ("mini", "flash", "lite", "nano")


def model_family(model: str) -> BackendFamily | None:
    """Return the family a model name belongs to, or None if unknown."""
    name = model.strip().lower()
    if name.startswith("models/"):
        name = name[len("models/"):]
    for prefix, family in _FAMILY_PREFIXES:
        if name.startswith(prefix):
            return family
    return None


def model_tier(model: str) -> str:
    """Guess the abstract tier of a concrete model name."""
    tokens = set(re.split(r"[^a-z0-9]+", model.lower()))
    return TIER_FAST if tokens & set(_FAST_MARKERS) else TIER_STRONG


def resolve_model(family: BackendFamily, requested: str | None, default: str) -> str:
    """Map a requested model onto something *family* can serve.

    * empty → the backend's default model
    * ``"fast"`` / ``"strong"`` → the family's model for that tier
    * a model name of the other family → same-tier model of this family
    * anything else → passed through unchanged
    """
    if not requested or not requested.strip():
        return default
    name = requested.strip()
    tiers = MODEL_TIERS[family]
    if name.lower() in tiers:
        return tiers[name.lower()]
    owner = model_family(name)
    if owner is not None and owner is not family:
        mapped = tiers[model_tier(name)]
        logger.debug("Mapped model %s to %s for %s", name, mapped, family.value)
        return mapped
    return name


# ---------------------------------------------------------------------------
# Error classification
# ---------------------------------------------------------------------------


def parse_retry_after(headers: Mapping[str, str]) -> float | None:
    """Return the ``Retry-After`` header in seconds (numeric form only)."""
    for key, value in headers.items():
        if key.lower() == "retry-after":
            try:
                return max(float(value), 0.0)
            except (TypeError, ValueError):
                return None
    return None


def _error_message(body: Mapping[str, Any], status_code: int) -> str:
    err = body.get("error")
    if isinstance(err, Mapping):
        msg = err.get("message")
        if msg:
            return str(msg)
    elif isinstance(err, str) and err:
        return err
    return f"HTTP {status_code}"


def classify_http_error(response: WireResponse) -> BackendError:
    """Turn a >= 400 ``WireResponse`` into the matching ``BackendError``."""
    status = response.status_code
    msg = _error_message(response.body, status)
    kwargs: dict[str, Any] = {"backend_name": response.backend, "http_status": status}
    if status == 429:
        return RateLimited(
            msg, retry_after=parse_retry_after(response.headers), **kwargs,
        )
    if status in (401, 403):
        return AuthenticationFailed(msg, **kwargs)
    if status == 408:
        return NetworkOrTimeout(msg, **kwargs)
    if status >= 500:
        return ServerError(msg, **kwargs)
    return RequestRejected(msg, **kwargs)


# ---------------------------------------------------------------------------
# Adapter
# ---------------------------------------------------------------------------


def _read_usage(response: WireResponse, key: str, fields: tuple[str, str, str]) -> Usage:
    """Read the usage counters under *key*, rejecting malformed shapes."""
    raw = response.body.get(key)
    if raw is None:
        return Usage()
    if not isinstance(raw, Mapping):
        raise MalformedResponse(
            f"'{key}' is not an object",
            backend_name=response.backend,
            http_status=response.status_code,
        )
    try:
        return Usage.from_counts(*(raw.get(f) for f in fields))
    except (TypeError, ValueError) as exc:
        raise MalformedResponse(
            f"Invalid token counts in '{key}'",
            backend_name=response.backend,
            http_status=response.status_code,
        ) from exc


class BackendAdapter:
    """Builds ``WireRequest`` objects and normalises ``WireResponse`` ones."""

    def to_wire(
        self,
        backend: BackendConfig,
        envelope: RequestEnvelope,
        *,
        model: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> WireRequest:
        """Build the HTTP request for *backend*.

        Explicit keyword overrides win over the envelope's own fields.
        """
        resolved = resolve_model(backend.family, model or envelope.model, backend.model)
        temp = temperature if temperature is not None else envelope.temperature
        limit = max_tokens if max_tokens is not None else envelope.max_tokens

        if backend.family is BackendFamily.GENERATE_CONTENT:
            return self._gemini_request(backend, envelope.messages, resolved, temp, limit)
        return self._chat_request(backend, envelope.messages, resolved, temp, limit)

    def from_wire(self, response: WireResponse) -> ResponseEnvelope:
        """Normalise *response*, raising a ``BackendError`` on failure."""
        if response.status_code >= 400:
            raise classify_http_error(response)
        if response.family is BackendFamily.GENERATE_CONTENT:
            return self._gemini_response(response)
        return self._chat_response(response)

    # -- chat completions ----------------------------------------------------

    @staticmethod
    def _chat_request(
        backend: BackendConfig,
        messages: list[Message],
        model: str,
        temperature: float,
        max_tokens: int | None,
    ) -> WireRequest:
        body: dict[str, Any] = {
            "model": model,
            "messages": [{"role": m.role, "content": m.content} for m in messages],
            "temperature": temperature,
        }
        if max_tokens:
            body["max_tokens"] = max_tokens
        return WireRequest(
            family=backend.family,
            url=f"{backend.base_url}/chat/completions",
            headers={
                "Authorization": f"Bearer {backend.credential}",
                "Content-Type": "application/json",
            },
            body=body,
            backend=backend.name,
            timeout_s=backend.timeout_s,
            model=model,
        )

    @staticmethod
    def _chat_response(response: WireResponse) -> ResponseEnvelope:
        data = response.body
        choices = data.get("choices")
        if not isinstance(choices, list) or not choices:
            raise MalformedResponse(
                "Empty response from chat-completions backend",
                backend_name=response.backend,
                http_status=response.status_code,
            )
        choice = choices[0] if isinstance(choices[0], Mapping) else {}
        finish_reason = str(choice.get("finish_reason") or "stop")
        message = choice.get("message")
        content = message.get("content") if isinstance(message, Mapping) else None

        if finish_reason == "content_filter":
            raise ContentBlocked(
                "Content blocked by backend filter",
                backend_name=response.backend,
                finish_reason=finish_reason,
            )
        if not isinstance(content, str):
            raise MalformedResponse(
                "No content in chat-completions response",
                backend_name=response.backend,
                http_status=response.status_code,
            )

        warnings: list[str] = []
        if finish_reason == "length":
            warnings.append("Response truncated at max_tokens")
            logger.warning("Response from %s truncated at max_tokens", response.backend)

        usage = _read_usage(
            response, "usage", ("prompt_tokens", "completion_tokens", "total_tokens"),
        )
        return ResponseEnvelope(
            content=content,
            finish_reason=finish_reason,
            usage=usage,
            backend=response.backend,
            model=str(data.get("model") or response.model),
            warnings=warnings,
        )

    # -- generate content ----------------------------------------------------

    @staticmethod
    def gemini_contents(messages: list[Message]) -> list[dict[str, Any]]:
        """Convert turns into ``contents``, folding system turns into the first user turn."""
        system_parts: list[str] = []
        contents: list[dict[str, Any]] = []
        for m in messages:
            if m.role == "system":
                system_parts.append(m.content)
                continue
            contents.append({
                "role": "model" if m.role == "assistant" else "user",
                "parts": [{"text": m.content}],
            })

        if system_parts:
            preamble = "\n\n".join(system_parts)
            first_user = next((c for c in contents if c["role"] == "user"), None)
            if first_user is None:
                contents.insert(0, {"role": "user", "parts": [{"text": preamble}]})
            else:
                first_user["parts"][0]["text"] = f"{preamble}\n\n{first_user['parts'][0]['text']}"
        return contents

    @classmethod
    def _gemini_request(
        cls,
        backend: BackendConfig,
        messages: list[Message],
        model: str,
        temperature: float,
        max_tokens: int | None,
    ) -> WireRequest:
        generation_config: dict[str, Any] = {"temperature": temperature}
        if max_tokens:
            generation_config["maxOutputTokens"] = max_tokens
        model_path = model if "/" in model else f"models/{model}"
        return WireRequest(
            family=backend.family,
            url=f"{backend.base_url}/{model_path}:generateContent",
            headers={
                GEMINI_API_KEY_HEADER: backend.credential,
                "Content-Type": "application/json",
            },
            body={
                "contents": cls.gemini_contents(messages),
                "generationConfig": generation_config,
            },
            backend=backend.name,
            timeout_s=backend.timeout_s,
            model=model,
        )

    @staticmethod
    def _gemini_response(response: WireResponse) -> ResponseEnvelope:
        data = response.body
        candidates = data.get("candidates")
        if not isinstance(candidates, list) or not candidates:
            feedback = data.get("promptFeedback") or {}
            block_reason = feedback.get("blockReason") if isinstance(feedback, Mapping) else None
            if block_reason:
                raise ContentBlocked(
                    f"Prompt blocked: {block_reason}",
                    backend_name=response.backend,
                    finish_reason=str(block_reason),
                    safety_ratings=list(feedback.get("safetyRatings") or []),
                )
            raise MalformedResponse(
                "No candidates in generate-content response",
                backend_name=response.backend,
                http_status=response.status_code,
            )

        candidate = candidates[0] if isinstance(candidates[0], Mapping) else {}
        raw_reason = str(candidate.get("finishReason") or "STOP")
        if raw_reason in BLOCKED_FINISH_REASONS:
            raise ContentBlocked(
                f"Content blocked: {raw_reason}",
                backend_name=response.backend,
                finish_reason=raw_reason,
                safety_ratings=list(candidate.get("safetyRatings") or []),
            )

        content = candidate.get("content") or {}
        parts = (content.get("parts") or []) if isinstance(content, Mapping) else None
        if not isinstance(parts, list):
            raise MalformedResponse(
                "Candidate content is not an object with a parts list",
                backend_name=response.backend,
                http_status=response.status_code,
            )
        texts = [p["text"] for p in parts if isinstance(p, Mapping) and isinstance(p.get("text"), str)]
        if not texts and raw_reason == "STOP":
            raise MalformedResponse(
                "No text parts in generate-content response",
                backend_name=response.backend,
                http_status=response.status_code,
            )

        warnings: list[str] = []
        if raw_reason == "MAX_TOKENS":
            finish_reason = "length"
            warnings.append("Response truncated at maxOutputTokens")
            logger.warning("Response from %s truncated due to MAX_TOKENS", response.backend)
        elif raw_reason == "STOP":
            finish_reason = "stop"
        else:
            finish_reason = raw_reason.lower()

        usage = _read_usage(
            response,
            "usageMetadata",
            ("promptTokenCount", "candidatesTokenCount", "totalTokenCount"),
        )
        return ResponseEnvelope(
            content="".join(texts),
            finish_reason=finish_reason,
            usage=usage,
            backend=response.backend,
            model=str(data.get("modelVersion") or response.model),
            warnings=warnings,
        )
