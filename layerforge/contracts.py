"""Orchestration contracts — Pydantic models shared by every stage.

Artifacts, schedules, backend configuration and the normalised
request/response envelopes all live here.  Everything that crosses a
module boundary is one of these models; all of them are frozen
(immutable after creation) except where noted.

Wire-level payloads (``WireRequest`` / ``WireResponse``) are tagged
with their ``BackendFamily`` so the adapter dispatches on an explicit
tag instead of guessing from the shape of a response.
"""

from __future__ import annotations

import enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from layerforge.rules import Category, classify


# ---------------------------------------------------------------------------
# Artifacts & scheduling
# ---------------------------------------------------------------------------


class Artifact(BaseModel):
    """One requested output unit (normally one file).

    ``category`` is derived from the path extension unless an explicit
    hint (a ``Category`` value or a language name such as ``"css"``) is
    supplied as ``category`` or ``language``.
    """

    model_config = ConfigDict(frozen=True)

    path: str = Field(..., min_length=1)
    category: Category = Category.UNKNOWN
    description: str = ""

    @model_validator(mode="before")
    @classmethod
    def _derive_category(cls, data: Any) -> Any:
        if isinstance(data, dict):
            data = dict(data)
            hint = data.get("category") or data.pop("language", None)
            data["category"] = classify(str(data.get("path", "")), hint)
        return data


DependencyGraph = dict[str, list[str]]
"""Artifact path → paths it depends on (must exist before it)."""


class CircularDependency(BaseModel):
    """Non-fatal scheduling warning: a cycle was broken by input order."""

    model_config = ConfigDict(frozen=True)

    paths: list[str]
    message: str


class ScheduleResult(BaseModel):
    """Output of the layer scheduler."""

    model_config = ConfigDict(frozen=True)

    order: list[str] = Field(default_factory=list)
    layers: list[list[str]] = Field(default_factory=list)
    cycles: list[CircularDependency] = Field(default_factory=list)
    forced: list[str] = Field(
        default_factory=list,
        description="Artifacts placed in singleton layers by the deadlock safeguard",
    )

    @property
    def has_cycles(self) -> bool:
        return bool(self.cycles)

    def layer_of(self, path: str) -> int:
        """Return the 0-based layer index of *path* (``-1`` if absent)."""
        for idx, layer in enumerate(self.layers):
            if path in layer:
                return idx
        return -1


# ---------------------------------------------------------------------------
# Backends
# ---------------------------------------------------------------------------


class BackendFamily(str, enum.Enum):
    """Wire-protocol variant spoken by a backend."""

    CHAT_COMPLETIONS = "chat_completions"
    GENERATE_CONTENT = "generate_content"

    @classmethod
    def parse(cls, value: "str | BackendFamily") -> "BackendFamily":
        """Accept enum values plus the common provider names."""
        if isinstance(value, BackendFamily):
            return value
        key = str(value).strip().lower().replace("-", "_")
        alias = _FAMILY_ALIASES.get(key)
        if alias is not None:
            return alias
        return cls(key)


_FAMILY_ALIASES: dict[str, BackendFamily] = {
    "openai": BackendFamily.CHAT_COMPLETIONS,
    "chat": BackendFamily.CHAT_COMPLETIONS,
    "family1": BackendFamily.CHAT_COMPLETIONS,
    "gemini": BackendFamily.GENERATE_CONTENT,
    "google": BackendFamily.GENERATE_CONTENT,
    "family2": BackendFamily.GENERATE_CONTENT,
}


class RoutingStrategy(str, enum.Enum):
    """How the registry picks among several ready backends."""

    FAILOVER = "failover"
    ROUND_ROBIN = "round_robin"
    RANDOM = "random"
    LEAST_ERRORS = "least_errors"

    @classmethod
    def parse(cls, value: "str | RoutingStrategy | None") -> "RoutingStrategy":
        if isinstance(value, RoutingStrategy):
            return value
        if not value:
            return cls.FAILOVER
        return cls(str(value).strip().lower().replace("-", "_"))


class BackendConfig(BaseModel):
    """Static definition of one upstream completion backend."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1)
    family: BackendFamily
    base_url: str
    credential: str = Field(default="", repr=False)
    model: str
    timeout_s: float = Field(default=60.0, gt=0)
    max_retries: int = Field(default=2, ge=0)
    retry_delay_s: float = Field(default=0.5, ge=0)

    @field_validator("family", mode="before")
    @classmethod
    def _parse_family(cls, v: Any) -> BackendFamily:
        return BackendFamily.parse(v)

    @field_validator("base_url")
    @classmethod
    def _strip_slash(cls, v: str) -> str:
        return v.rstrip("/")


# ---------------------------------------------------------------------------
# Normalised envelopes
# ---------------------------------------------------------------------------


class Message(BaseModel):
    """One conversation turn."""

    model_config = ConfigDict(frozen=True)

    role: Literal["system", "user", "assistant"]
    content: str


class RequestEnvelope(BaseModel):
    """Backend-independent completion request."""

    model_config = ConfigDict(frozen=True)

    messages: list[Message] = Field(..., min_length=1)
    temperature: float = Field(default=0.3, ge=0.0, le=2.0)
    max_tokens: int | None = Field(default=None, ge=1)
    model: str | None = None

    @classmethod
    def from_prompt(
        cls, prompt: str, *, system_prompt: str = "", **kwargs: Any
    ) -> "RequestEnvelope":
        """Build a two-turn (system + user) envelope."""
        messages: list[Message] = []
        if system_prompt:
            messages.append(Message(role="system", content=system_prompt))
        messages.append(Message(role="user", content=prompt))
        return cls(messages=messages, **kwargs)


class Usage(BaseModel):
    """Token counters in normalised names."""

    model_config = ConfigDict(frozen=True)

    prompt_tokens: int = Field(default=0, ge=0)
    completion_tokens: int = Field(default=0, ge=0)
    total_tokens: int = Field(default=0, ge=0)

    @classmethod
    def from_counts(
        cls, prompt: Any = 0, completion: Any = 0, total: Any = 0
    ) -> "Usage":
        """Build from possibly-missing counters; derive total when absent."""
        p = int(prompt or 0)
        c = int(completion or 0)
        t = int(total or 0) or p + c
        return cls(prompt_tokens=p, completion_tokens=c, total_tokens=t)


class ResponseEnvelope(BaseModel):
    """Backend-independent completion result."""

    model_config = ConfigDict(frozen=True)

    content: str
    finish_reason: str = "stop"
    usage: Usage = Field(default_factory=Usage)
    backend: str = ""
    model: str = ""
    warnings: list[str] = Field(default_factory=list)

    @property
    def truncated(self) -> bool:
        return self.finish_reason == "length"


class ExecuteOptions(BaseModel):
    """Per-call overrides for the request executor."""

    model_config = ConfigDict(frozen=True)

    provider: BackendFamily | None = None
    model: str | None = None
    temperature: float | None = Field(default=None, ge=0.0, le=2.0)
    max_tokens: int | None = Field(default=None, ge=1)
    max_provider_retries: int | None = Field(default=None, ge=1)
    label: str = "default"

    @field_validator("provider", mode="before")
    @classmethod
    def _parse_provider(cls, v: Any) -> BackendFamily | None:
        if v is None or v == "":
            return None
        return BackendFamily.parse(v)


# ---------------------------------------------------------------------------
# Tagged wire payloads
# ---------------------------------------------------------------------------


class WireRequest(BaseModel):
    """A fully-built HTTP request for one backend family."""

    model_config = ConfigDict(frozen=True)

    family: BackendFamily
    url: str
    backend: str = ""
    headers: dict[str, str] = Field(default_factory=dict, repr=False)
    body: dict[str, Any] = Field(default_factory=dict)
    timeout_s: float = 60.0
    model: str = ""


class WireResponse(BaseModel):
    """A raw backend answer, tagged with the family that produced it."""

    model_config = ConfigDict(frozen=True)

    family: BackendFamily
    status_code: int = 200
    body: dict[str, Any] = Field(default_factory=dict)
    headers: dict[str, str] = Field(default_factory=dict)
    backend: str = ""
    model: str = ""


# ---------------------------------------------------------------------------
# Orchestrator results
# ---------------------------------------------------------------------------


class ArtifactOutcome(BaseModel):
    """Result of generating one artifact."""

    model_config = ConfigDict(frozen=True)

    path: str
    layer: int = Field(..., ge=0)
    success: bool
    content: str = ""
    response: ResponseEnvelope | None = None
    error: dict[str, Any] | None = None
    skipped: bool = False


class GenerationReport(BaseModel):
    """Aggregate result of one orchestrated run."""

    model_config = ConfigDict(frozen=True)

    schedule: ScheduleResult
    outcomes: list[ArtifactOutcome] = Field(default_factory=list)
    stopped_early: bool = False

    @property
    def succeeded(self) -> list[ArtifactOutcome]:
        return [o for o in self.outcomes if o.success]

    @property
    def failed(self) -> list[ArtifactOutcome]:
        return [o for o in self.outcomes if not o.success and not o.skipped]

    def total_usage(self) -> Usage:
        p = c = t = 0
        for o in self.outcomes:
            if o.response is not None:
                p += o.response.usage.prompt_tokens
                c += o.response.usage.completion_tokens
                t += o.response.usage.total_tokens
        return Usage(prompt_tokens=p, completion_tokens=c, total_tokens=t)
