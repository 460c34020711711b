"""Tests for the layer scheduler (topological order + concurrency layers)."""

import pytest

from layerforge.errors import CircularDependencyWarning, DuplicateArtifactError
from layerforge.scheduler import LayerScheduler, plan
from tests.conftest import layer_index


def _flatten(layers):
    return [p for layer in layers for p in layer]


def _assert_topological(graph, layers):
    for path, deps in graph.items():
        for dep in deps:
            if dep in graph:
                assert layer_index(layers, dep) < layer_index(layers, path), (
                    f"{dep} must come before {path}"
                )


class TestSchedule:
    def test_web_batch_three_layers(self) -> None:
        graph, result = plan(["index.html", "style.css", "app.js"])
        assert result.layers == [["index.html"], ["style.css"], ["app.js"]]
        assert result.order == ["index.html", "style.css", "app.js"]
        assert not result.has_cycles
        _assert_topological(graph, result.layers)

    def test_foundation_modules_share_a_layer(self) -> None:
        _, result = plan(["utils.py", "config.py", "service.py"])
        assert result.layers == [["utils.py", "config.py"], ["service.py"]]

    def test_independent_artifacts_one_layer(self) -> None:
        _, result = plan(["README.md", "data.json", "main.go"])
        assert result.layers == [["README.md", "data.json", "main.go"]]

    def test_layers_follow_input_order_within_layer(self) -> None:
        graph = {"c": [], "a": [], "b": ["c"]}
        result = LayerScheduler().schedule(graph, ["c", "a", "b"])
        assert result.layers == [["c", "a"], ["b"]]

    def test_external_edges_ignored(self) -> None:
        graph = {"a.js": ["vendor/lib.js"], "b.js": ["a.js"]}
        result = LayerScheduler().schedule(graph, ["a.js", "b.js"])
        assert result.layers == [["a.js"], ["b.js"]]

    def test_missing_graph_entry_is_a_leaf(self) -> None:
        result = LayerScheduler().schedule({}, ["x", "y"])
        assert result.layers == [["x", "y"]]

    def test_empty_input(self) -> None:
        result = LayerScheduler().schedule({}, [])
        assert result.layers == []
        assert result.order == []

    def test_duplicates_rejected(self) -> None:
        with pytest.raises(DuplicateArtifactError):
            LayerScheduler().schedule({}, ["a", "a"])

    def test_layer_of(self) -> None:
        _, result = plan(["index.html", "style.css"])
        assert result.layer_of("style.css") == 1
        assert result.layer_of("missing") == -1

    def test_mixed_batch_is_topological_permutation(self) -> None:
        paths = [
            "app.js", "pkg/service.py", "index.html", "pkg/models.py",
            "style.css", "README.md", "pkg/config.py", "theme.css",
        ]
        graph, result = plan(paths)
        flat = _flatten(result.layers)
        assert sorted(flat) == sorted(paths)
        assert len(flat) == len(set(flat))
        _assert_topological(graph, result.layers)


class TestCycles:
    def test_three_cycle_warns_and_completes(self) -> None:
        graph = {"a": ["b"], "b": ["c"], "c": ["a"]}
        with pytest.warns(CircularDependencyWarning):
            result = LayerScheduler().schedule(graph, ["a", "b", "c"])

        assert result.has_cycles
        assert result.cycles[0].paths == ["a", "b", "c"]
        assert result.order == ["a", "b", "c"]
        assert sorted(_flatten(result.layers)) == ["a", "b", "c"]
        assert result.forced

    def test_cycle_does_not_block_acyclic_part(self) -> None:
        graph = {"root": [], "x": ["y"], "y": ["x"], "leaf": ["root"]}
        with pytest.warns(CircularDependencyWarning):
            result = LayerScheduler().schedule(graph, ["root", "x", "y", "leaf"])

        assert result.order[:2] == ["root", "leaf"]
        assert result.cycles[0].paths == ["x", "y"]
        assert result.layers[0] == ["root"]
        assert sorted(_flatten(result.layers)) == ["leaf", "root", "x", "y"]

    def test_self_edge_is_not_a_cycle(self) -> None:
        result = LayerScheduler().schedule({"a": ["a"]}, ["a"])
        assert not result.has_cycles
        assert result.layers == [["a"]]


class TestPlan:
    def test_plan_uses_skeletons(self) -> None:
        skeletons = {"main.py": "from helpers import run\n"}
        graph, result = plan(["main.py", "helpers.py"], skeletons)
        assert graph["main.py"] == ["helpers.py"]
        assert result.layers == [["helpers.py"], ["main.py"]]

    def test_plan_accepts_dicts(self) -> None:
        graph, result = plan([{"path": "a.txt", "category": "markup"}, "b.css"])
        assert graph["b.css"] == ["a.txt"]
        assert result.layers == [["a.txt"], ["b.css"]]
