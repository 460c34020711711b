"""Dependency graph builder.

Turns an ordered artifact list into a ``DependencyGraph`` (path → paths
that must exist first) from three sources, applied in this order:

1. the static category table (``rules.CATEGORY_PREREQUISITES``),
2. the intra-category heuristics (``rules.IntraCategoryRule``),
3. optional skeleton import scanning (``imports.scan_dependencies``).

Edge lists are deduplicated per artifact and never contain self-edges.
Every input path is a key in the result, even with no dependencies.
"""

from __future__ import annotations

import logging
from collections import Counter
from pathlib import PurePosixPath
from typing import Any, Iterable, Mapping, Sequence

from layerforge.contracts import Artifact, DependencyGraph
from layerforge.errors import DuplicateArtifactError
from layerforge.imports import scan_dependencies
from layerforge.rules import DEFAULT_RULES, Category, IntraCategoryRule, prerequisites

logger = logging.getLogger(__name__)


def coerce_artifacts(items: Iterable[Artifact | Mapping[str, Any] | str]) -> list[Artifact]:
    """Accept ``Artifact`` instances, ``{path, category?}`` dicts or bare paths."""
    artifacts: list[Artifact] = []
    for item in items:
        if isinstance(item, Artifact):
            artifacts.append(item)
        elif isinstance(item, str):
            artifacts.append(Artifact(path=item))
        else:
            artifacts.append(Artifact.model_validate(dict(item)))
    return artifacts


def ensure_unique(artifacts: Sequence[Artifact]) -> None:
    """Raise :class:`DuplicateArtifactError` if any path repeats."""
    counts = Counter(a.path for a in artifacts)
    duplicates = [path for path, n in counts.items() if n > 1]
    if duplicates:
        raise DuplicateArtifactError(duplicates)


class DependencyGraphBuilder:
    """Builds "must exist before" edges for a batch of artifacts.

    The builder is stateless apart from its rule set, so one instance
    can be shared across requests.
    """

    def __init__(self, rules: Sequence[IntraCategoryRule] | None = None) -> None:
        self.rules: tuple[IntraCategoryRule, ...] = (
            tuple(rules) if rules is not None else DEFAULT_RULES
        )

    def build(
        self,
        artifacts: Iterable[Artifact | Mapping[str, Any] | str],
        skeletons: Mapping[str, str] | None = None,
    ) -> DependencyGraph:
        items = coerce_artifacts(artifacts)
        ensure_unique(items)

        by_category: dict[Category, list[Artifact]] = {}
        for artifact in items:
            by_category.setdefault(artifact.category, []).append(artifact)

        known_paths = {a.path for a in items}
        graph: DependencyGraph = {}

        for artifact in items:
            deps: list[str] = []

            # 1. static category table
            for required in prerequisites(artifact.category):
                deps.extend(
                    other.path
                    for other in by_category.get(required, [])
                    if other.path != artifact.path
                )

            # 2. intra-category heuristics
            peers = [
                other for other in by_category.get(artifact.category, [])
                if other.path != artifact.path
            ]
            for rule in self.rules:
                if rule.applies_to(artifact.category):
                    deps.extend(rule.dependencies(artifact, peers))

            # 3. skeleton imports
            if skeletons:
                content = skeletons.get(artifact.path)
                if content:
                    deps.extend(
                        scan_dependencies(
                            artifact.path, content, artifact.category, known_paths
                        )
                    )

            graph[artifact.path] = [
                d for d in dict.fromkeys(deps) if d != artifact.path
            ]

        logger.debug(
            "Built dependency graph: %d artifacts, %d edges",
            len(graph),
            sum(len(v) for v in graph.values()),
        )
        return graph


# ---------------------------------------------------------------------------
# Graph queries
# ---------------------------------------------------------------------------


def has_dependency(graph: DependencyGraph, path: str, dependency: str) -> bool:
    """True if *path* directly depends on *dependency*."""
    return dependency in graph.get(path, [])


def all_dependencies(graph: DependencyGraph, path: str) -> list[str]:
    """Return every transitive dependency of *path* (cycle-safe)."""
    result: list[str] = []
    visited: set[str] = {path}
    stack = list(reversed(graph.get(path, [])))
    while stack:
        dep = stack.pop()
        if dep in visited:
            continue
        visited.add(dep)
        result.append(dep)
        stack.extend(reversed(graph.get(dep, [])))
    return result


def dependents(graph: DependencyGraph, path: str) -> list[str]:
    """Return artifacts that directly depend on *path*."""
    return [p for p, deps in graph.items() if path in deps]


def describe(graph: DependencyGraph, layers: Sequence[Sequence[str]] = ()) -> str:
    """Render the graph and generation layers as readable text."""
    lines = ["=== Dependency graph (A depends on B) ==="]
    for path, deps in graph.items():
        if deps:
            lines.append(f"{PurePosixPath(path).name} depends on:")
            lines.extend(f"  -> {PurePosixPath(d).name}" for d in deps)
    if layers:
        lines.append("")
        lines.append("=== Generation order ===")
        for idx, layer in enumerate(layers, start=1):
            lines.append(f"Layer {idx} ({len(layer)} concurrent):")
            lines.extend(f"  - {PurePosixPath(p).name}" for p in layer)
    return "\n".join(lines)
