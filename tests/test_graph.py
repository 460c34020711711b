"""Tests for the dependency graph builder and graph queries."""

import pytest

from layerforge.contracts import Artifact
from layerforge.errors import DuplicateArtifactError
from layerforge.graph import (
    DependencyGraphBuilder,
    all_dependencies,
    coerce_artifacts,
    dependents,
    describe,
    has_dependency,
)
from layerforge.rules import Category


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _web_batch() -> list[Artifact]:
    return [
        Artifact(path="index.html"),
        Artifact(path="style.css"),
        Artifact(path="app.js"),
    ]


def _python_batch() -> list[Artifact]:
    return [
        Artifact(path="utils.py"),
        Artifact(path="config.py"),
        Artifact(path="service.py"),
    ]


class _NeverRule:
    def applies_to(self, category: Category) -> bool:
        return False

    def dependencies(self, artifact, peers):
        raise AssertionError("should not be called")


# ===========================================================================
# Coercion
# ===========================================================================


class TestCoerceArtifacts:
    def test_accepts_mixed_inputs(self) -> None:
        items = coerce_artifacts([
            "index.html",
            {"path": "notes.txt", "category": "stylesheet"},
            Artifact(path="app.js"),
        ])
        assert [a.path for a in items] == ["index.html", "notes.txt", "app.js"]
        assert items[1].category == Category.STYLESHEET

    def test_language_key_is_a_hint(self) -> None:
        (item,) = coerce_artifacts([{"path": "x.txt", "language": "python"}])
        assert item.category == Category.PYTHON


# ===========================================================================
# Builder
# ===========================================================================


class TestDependencyGraphBuilder:
    def test_static_table_web_batch(self) -> None:
        graph = DependencyGraphBuilder().build(_web_batch())
        assert graph == {
            "index.html": [],
            "style.css": ["index.html"],
            "app.js": ["index.html", "style.css"],
        }

    def test_foundation_modules(self) -> None:
        graph = DependencyGraphBuilder().build(_python_batch())
        assert graph["utils.py"] == []
        assert graph["config.py"] == []
        assert graph["service.py"] == ["utils.py", "config.py"]

    def test_every_path_is_a_key(self) -> None:
        graph = DependencyGraphBuilder().build(["README.md", "data.json"])
        assert graph == {"README.md": [], "data.json": []}

    def test_duplicate_paths_rejected(self) -> None:
        with pytest.raises(DuplicateArtifactError) as exc_info:
            DependencyGraphBuilder().build(["a.py", "b.py", "a.py"])
        assert exc_info.value.duplicates == ["a.py"]

    def test_skeleton_imports_add_edges(self) -> None:
        items = ["pkg/service.py", "pkg/repo.py", "pkg/handlers.py"]
        skeletons = {
            "pkg/handlers.py": "from .service import Service\n",
            "pkg/service.py": "from .repo import Repo\n",
        }
        graph = DependencyGraphBuilder().build(items, skeletons)
        assert graph["pkg/handlers.py"] == ["pkg/service.py"]
        assert graph["pkg/service.py"] == ["pkg/repo.py"]
        assert graph["pkg/repo.py"] == []

    def test_edges_deduplicated(self) -> None:
        items = ["utils.py", "service.py"]
        skeletons = {"service.py": "import utils\nfrom utils import helper\n"}
        graph = DependencyGraphBuilder().build(items, skeletons)
        assert graph["service.py"] == ["utils.py"]

    def test_no_self_edges(self) -> None:
        skeletons = {"a.js": "import './a.js';"}
        graph = DependencyGraphBuilder().build(["a.js"], skeletons)
        assert graph["a.js"] == []

    def test_custom_rules_replace_defaults(self) -> None:
        graph = DependencyGraphBuilder(rules=[_NeverRule()]).build(_python_batch())
        assert graph["service.py"] == []

    def test_cross_category_only_in_batch(self) -> None:
        graph = DependencyGraphBuilder().build(["app.js"])
        assert graph == {"app.js": []}


# ===========================================================================
# Queries
# ===========================================================================


class TestGraphQueries:
    def test_has_dependency(self) -> None:
        graph = {"b": ["a"], "a": []}
        assert has_dependency(graph, "b", "a")
        assert not has_dependency(graph, "a", "b")

    def test_all_dependencies_transitive(self) -> None:
        graph = {"c": ["b"], "b": ["a"], "a": []}
        assert all_dependencies(graph, "c") == ["b", "a"]

    def test_all_dependencies_cycle_safe(self) -> None:
        graph = {"a": ["b"], "b": ["c"], "c": ["a"]}
        assert sorted(all_dependencies(graph, "a")) == ["b", "c"]

    def test_dependents(self) -> None:
        graph = {"a": [], "b": ["a"], "c": ["a", "b"]}
        assert dependents(graph, "a") == ["b", "c"]

    def test_describe(self) -> None:
        graph = {"index.html": [], "style.css": ["index.html"]}
        text = describe(graph, [["index.html"], ["style.css"]])
        assert "style.css depends on:" in text
        assert "-> index.html" in text
        assert "Layer 2 (1 concurrent):" in text
