"""Generation router -- scheduling, single completions and layered runs."""

from typing import Literal

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field, field_validator

from app.api.deps import get_executor, get_orchestrator, get_usage
from layerforge.contracts import (
    Artifact,
    BackendFamily,
    ExecuteOptions,
    Message,
    RequestEnvelope,
    ResponseEnvelope,
)
from layerforge.executor import RequestExecutor
from layerforge.orchestrator import Orchestrator
from layerforge.scheduler import plan
from layerforge.usage import UsageTracker

router = APIRouter(tags=["generation"])

DEFAULT_SYSTEM_PROMPT = (
    "You are a senior software engineer. Reply with the complete contents "
    "of the requested file only, without explanations or markdown fences."
)


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class ArtifactIn(BaseModel):
    """One requested file."""

    path: str = Field(..., min_length=1, description="Relative file path")
    category: str | None = Field(None, description="Category or language hint")
    description: str = Field("", max_length=4000)

    def to_artifact(self) -> Artifact:
        return Artifact.model_validate(self.model_dump(exclude_none=True))


class PlanRequest(BaseModel):
    """Request body for scheduling a batch of artifacts."""

    artifacts: list[ArtifactIn] = Field(..., min_length=1)
    skeletons: dict[str, str] | None = Field(
        None, description="Optional draft content per path, scanned for imports"
    )


class MessageIn(BaseModel):
    role: Literal["system", "user", "assistant"]
    content: str


class CompleteRequest(BaseModel):
    """Request body for a single completion with failover."""

    messages: list[MessageIn] = Field(..., min_length=1)
    temperature: float = Field(0.3, ge=0.0, le=2.0)
    max_tokens: int | None = Field(None, ge=1)
    model: str | None = Field(None, description="Model name or tier ('fast' / 'strong')")
    provider: BackendFamily | None = Field(None, description="Restrict to one backend family")
    max_provider_retries: int | None = Field(None, ge=1)
    label: str = "complete"

    @field_validator("provider", mode="before")
    @classmethod
    def _parse_provider(cls, v):
        if v is None or v == "":
            return None
        return BackendFamily.parse(v)


class GenerateRequest(BaseModel):
    """Request body for a layered generation run."""

    artifacts: list[ArtifactIn] = Field(..., min_length=1)
    instructions: str = Field(..., min_length=1, description="What to build")
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    skeletons: dict[str, str] | None = None
    model: str | None = None
    max_tokens: int | None = Field(None, ge=1)


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------


@router.post("/plan")
async def plan_artifacts(body: PlanRequest) -> dict:
    """Build the dependency graph and generation layers."""
    graph, result = plan([a.to_artifact() for a in body.artifacts], body.skeletons)
    return {
        "order": result.order,
        "layers": result.layers,
        "cycles": [c.model_dump() for c in result.cycles],
        "forced": result.forced,
        "graph": graph,
    }


@router.post("/complete")
async def complete(
    body: CompleteRequest,
    executor: RequestExecutor = Depends(get_executor),
) -> ResponseEnvelope:
    """Run one completion against the backend pool."""
    envelope = RequestEnvelope(
        messages=[Message(role=m.role, content=m.content) for m in body.messages],
        temperature=body.temperature,
        max_tokens=body.max_tokens,
        model=body.model,
    )
    options = ExecuteOptions(
        provider=body.provider,
        max_provider_retries=body.max_provider_retries,
        label=body.label,
    )
    return await executor.execute(envelope, options)


def _file_prompt(instructions: str, artifact: Artifact, context: dict[str, str]) -> str:
    sections = [instructions.strip(), "", f"Write the file `{artifact.path}`."]
    if artifact.description:
        sections.append(artifact.description)
    for path, content in context.items():
        sections.extend(["", f"Already generated `{path}`:", content])
    return "\n".join(sections)


@router.post("/generate")
async def generate(
    body: GenerateRequest,
    orchestrator: Orchestrator = Depends(get_orchestrator),
) -> dict:
    """Generate every artifact, layer by layer."""

    def envelope_for(artifact: Artifact, context: dict[str, str]) -> RequestEnvelope:
        return RequestEnvelope.from_prompt(
            _file_prompt(body.instructions, artifact, context),
            system_prompt=body.system_prompt,
            model=body.model,
            max_tokens=body.max_tokens,
        )

    report = await orchestrator.run(
        [a.to_artifact() for a in body.artifacts],
        envelope_for,
        skeletons=body.skeletons,
        options=ExecuteOptions(label="generate"),
    )
    by_layer: list[list[dict]] = [[] for _ in report.schedule.layers]
    for outcome in report.outcomes:
        by_layer[outcome.layer].append(outcome.model_dump(exclude={"response"}))
    return {
        "layers": by_layer,
        "succeeded": [o.path for o in report.succeeded],
        "failed": [o.path for o in report.failed],
        "stopped_early": report.stopped_early,
        "cycles": [c.model_dump() for c in report.schedule.cycles],
        "usage": report.total_usage().model_dump(),
    }


@router.get("/usage")
async def usage_stats(usage: UsageTracker = Depends(get_usage)) -> dict:
    """Return cumulative token usage."""
    return usage.stats()
