"""Layer scheduler — topological order plus concurrency grouping.

``LayerScheduler.schedule`` runs in two steps:

1. Kahn's algorithm over in-batch edges (edges to paths outside the
   batch are ignored).  If a cycle stops the queue early, the remaining
   artifacts are appended in their original input order and a
   ``CircularDependency`` warning is recorded; scheduling never raises.
2. Layering: repeatedly collect *every* unprocessed artifact whose
   in-batch dependencies are all processed and emit them as one layer.
   If a scan finds nothing while artifacts remain, the first remaining
   artifact (input order) is forced into a singleton layer so the loop
   always terminates.

The flattened layers are always a permutation of the input; for an
acyclic graph they are a true topological order.
"""

from __future__ import annotations

import logging
import warnings
from collections import deque
from typing import Any, Iterable, Mapping, Sequence

from layerforge.contracts import (
    Artifact,
    CircularDependency,
    DependencyGraph,
    ScheduleResult,
)
from layerforge.errors import CircularDependencyWarning, DuplicateArtifactError
from layerforge.graph import DependencyGraphBuilder, coerce_artifacts, describe

logger = logging.getLogger(__name__)


def _paths_of(artifacts: Iterable[Artifact | str]) -> list[str]:
    paths = [a if isinstance(a, str) else a.path for a in artifacts]
    seen: set[str] = set()
    duplicates: list[str] = []
    for p in paths:
        if p in seen and p not in duplicates:
            duplicates.append(p)
        seen.add(p)
    if duplicates:
        raise DuplicateArtifactError(duplicates)
    return paths


class LayerScheduler:
    """Converts a dependency graph into ordered, concurrency-safe layers."""

    def schedule(
        self,
        graph: Mapping[str, Sequence[str]],
        artifacts: Iterable[Artifact | str],
    ) -> ScheduleResult:
        paths = _paths_of(artifacts)
        in_batch = set(paths)

        # In-batch dependency sets, deduplicated, self-edges dropped
        deps: dict[str, list[str]] = {
            p: [d for d in dict.fromkeys(graph.get(p, ())) if d in in_batch and d != p]
            for p in paths
        }

        order, cycles = self._topological_order(paths, deps)
        layers, forced = self._layer(order, paths, deps)

        if forced:
            logger.warning(
                "Deadlock safeguard forced %d artifact(s) into singleton layers: %s",
                len(forced), forced,
            )
        logger.info(
            "Scheduled %d artifact(s) into %d layer(s) (largest layer: %d)",
            len(paths), len(layers), max((len(l) for l in layers), default=0),
        )
        return ScheduleResult(order=order, layers=layers, cycles=cycles, forced=forced)

    # ------------------------------------------------------------------
    # Step 1: Kahn's algorithm
    # ------------------------------------------------------------------

    def _topological_order(
        self, paths: list[str], deps: dict[str, list[str]]
    ) -> tuple[list[str], list[CircularDependency]]:
        in_degree = {p: len(deps[p]) for p in paths}
        used_by: dict[str, list[str]] = {p: [] for p in paths}
        for p in paths:
            for d in deps[p]:
                used_by[d].append(p)

        queue = deque(p for p in paths if in_degree[p] == 0)
        order: list[str] = []
        while queue:
            node = queue.popleft()
            order.append(node)
            for parent in used_by[node]:
                in_degree[parent] -= 1
                if in_degree[parent] == 0:
                    queue.append(parent)

        cycles: list[CircularDependency] = []
        if len(order) < len(paths):
            placed = set(order)
            remaining = [p for p in paths if p not in placed]
            remaining_set = set(remaining)
            cyclic = any(
                d in remaining_set for p in remaining for d in deps[p]
            )
            if cyclic:
                message = (
                    f"Circular dependency among {len(remaining)} artifact(s); "
                    f"appending in input order: {', '.join(remaining)}"
                )
                logger.warning(message)
                warnings.warn(message, CircularDependencyWarning, stacklevel=3)
                cycles.append(CircularDependency(paths=remaining, message=message))
            else:
                logger.info("Appending remaining artifacts in input order: %s", remaining)
            order.extend(remaining)

        return order, cycles

    # ------------------------------------------------------------------
    # Step 2: layering
    # ------------------------------------------------------------------

    def _layer(
        self, order: list[str], paths: list[str], deps: dict[str, list[str]]
    ) -> tuple[list[list[str]], list[str]]:
        layers: list[list[str]] = []
        forced: list[str] = []
        processed: set[str] = set()

        while len(processed) < len(order):
            layer = [
                p for p in order
                if p not in processed and all(d in processed for d in deps[p])
            ]
            if not layer:
                # Only reachable when the cycle fallback left an inconsistency
                victim = next(p for p in paths if p not in processed)
                layer = [victim]
                forced.append(victim)
            layers.append(layer)
            processed.update(layer)

        return layers, forced


def plan(
    artifacts: Iterable[Artifact | Mapping[str, Any] | str],
    skeletons: Mapping[str, str] | None = None,
    *,
    builder: DependencyGraphBuilder | None = None,
    scheduler: LayerScheduler | None = None,
) -> tuple[DependencyGraph, ScheduleResult]:
    """Build the graph for *artifacts* and schedule it in one call."""
    items = coerce_artifacts(artifacts)
    graph = (builder or DependencyGraphBuilder()).build(items, skeletons)
    result = (scheduler or LayerScheduler()).schedule(graph, items)
    if logger.isEnabledFor(logging.DEBUG):
        logger.debug("%s", describe(graph, result.layers))
    return graph, result
