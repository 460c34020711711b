"""Orchestrator — runs a scheduled batch of artifacts layer by layer.

Layers run strictly in sequence.  Inside a layer every artifact is
dispatched concurrently with ``asyncio.gather`` (optionally capped by a
``ConcurrencyLimiter``), and the orchestrator waits for every outcome
of the layer before moving on.  A failed artifact never cancels its
siblings.

The caller supplies an *envelope factory* that turns an artifact plus
the generated content of its already-completed dependencies into a
``RequestEnvelope``; prompt wording is entirely the caller's business.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Iterable, Mapping, Union

from layerforge.backoff import ConcurrencyLimiter
from layerforge.clock import Clock
from layerforge.contracts import (
    Artifact,
    ArtifactOutcome,
    DependencyGraph,
    ExecuteOptions,
    GenerationReport,
    RequestEnvelope,
)
from layerforge.errors import LayerForgeError
from layerforge.executor import RequestExecutor
from layerforge.graph import DependencyGraphBuilder, coerce_artifacts
from layerforge.scheduler import LayerScheduler

logger = logging.getLogger(__name__)

EnvelopeFactory = Callable[
    [Artifact, Mapping[str, str]],
    Union[RequestEnvelope, Awaitable[RequestEnvelope]],
]
"""``(artifact, {dependency path: generated content}) -> RequestEnvelope``."""


class Orchestrator:
    """Plans a batch of artifacts and generates them layer by layer.

    Parameters
    ----------
    executor:
        Executes each artifact's request with failover.
    max_concurrency:
        Cap on simultaneous requests within one layer (``None`` = no cap).
    layer_delay_s:
        Pause between consecutive layers, taken through the executor's
        clock.
    stop_on_failure:
        When True, layers after the first one containing a failure are
        not started; their artifacts are reported as skipped.
    """

    def __init__(
        self,
        executor: RequestExecutor,
        *,
        builder: DependencyGraphBuilder | None = None,
        scheduler: LayerScheduler | None = None,
        max_concurrency: int | None = None,
        layer_delay_s: float = 0.0,
        stop_on_failure: bool = False,
        clock: Clock | None = None,
    ) -> None:
        self.executor = executor
        self.builder = builder or DependencyGraphBuilder()
        self.scheduler = scheduler or LayerScheduler()
        self.limiter = ConcurrencyLimiter(max_concurrency) if max_concurrency else None
        self.layer_delay_s = layer_delay_s
        self.stop_on_failure = stop_on_failure
        self.clock: Clock = clock or executor.clock

    async def run(
        self,
        artifacts: Iterable[Artifact | Mapping[str, Any] | str],
        envelope_factory: EnvelopeFactory,
        *,
        skeletons: Mapping[str, str] | None = None,
        options: ExecuteOptions | None = None,
    ) -> GenerationReport:
        items = coerce_artifacts(artifacts)
        graph = self.builder.build(items, skeletons)
        schedule = self.scheduler.schedule(graph, items)
        by_path = {a.path: a for a in items}

        outputs: dict[str, str] = {}
        outcomes: list[ArtifactOutcome] = []
        stopped = False

        for idx, layer in enumerate(schedule.layers):
            if stopped:
                outcomes.extend(
                    ArtifactOutcome(path=p, layer=idx, success=False, skipped=True)
                    for p in layer
                )
                continue

            if idx > 0 and self.layer_delay_s > 0:
                await self.clock.sleep(self.layer_delay_s)

            logger.info(
                "Layer %d/%d: generating %d artifact(s) concurrently",
                idx + 1, len(schedule.layers), len(layer),
            )
            results = await asyncio.gather(*(
                self._generate(by_path[p], idx, graph, outputs, envelope_factory, options)
                for p in layer
            ))
            for outcome in results:
                outcomes.append(outcome)
                if outcome.success:
                    outputs[outcome.path] = outcome.content

            failures = [o.path for o in results if not o.success]
            if failures:
                logger.warning(
                    "Layer %d finished with %d failure(s): %s",
                    idx + 1, len(failures), failures,
                )
                if self.stop_on_failure:
                    stopped = True

        report = GenerationReport(schedule=schedule, outcomes=outcomes, stopped_early=stopped)
        logger.info(
            "Generation finished: %d succeeded, %d failed, %d skipped",
            len(report.succeeded), len(report.failed),
            sum(1 for o in outcomes if o.skipped),
        )
        return report

    async def _generate(
        self,
        artifact: Artifact,
        layer: int,
        graph: DependencyGraph,
        outputs: Mapping[str, str],
        envelope_factory: EnvelopeFactory,
        options: ExecuteOptions | None,
    ) -> ArtifactOutcome:
        context = {d: outputs[d] for d in graph.get(artifact.path, []) if d in outputs}
        try:
            envelope = envelope_factory(artifact, context)
            if inspect.isawaitable(envelope):
                envelope = await envelope
            if self.limiter is not None:
                async with self.limiter:
                    response = await self.executor.execute(envelope, options)
            else:
                response = await self.executor.execute(envelope, options)
        except LayerForgeError as exc:
            logger.error("Artifact %s failed: %s", artifact.path, exc)
            return ArtifactOutcome(
                path=artifact.path, layer=layer, success=False, error=exc.to_dict(),
            )
        except Exception as exc:
            logger.exception("Artifact %s failed unexpectedly", artifact.path)
            return ArtifactOutcome(
                path=artifact.path,
                layer=layer,
                success=False,
                error={"kind": type(exc).__name__, "message": str(exc)},
            )
        return ArtifactOutcome(
            path=artifact.path,
            layer=layer,
            success=True,
            content=response.content,
            response=response,
        )
