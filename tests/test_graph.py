"""Tests for graph.py."""

import pytest

from boxwright.kernel.errors import CycleDetected, DefinitionNotFound, UnknownDependency
from boxwright.kernel.graph import DependencyGraph, suggest_name

from conftest import make_definition


def _defs(edges):
    return {name: make_definition(name, deps) for name, deps in edges.items()}


def _assert_topological(graph, order):
    position = {name: i for i, name in enumerate(order)}
    for node in graph.nodes:
        for dep in graph.get_dependencies(node):
            assert position[dep] < position[node], f"{dep} must come before {node}"


def test_build_graph():
    definitions = _defs({"base": [], "app": ["base"]})
    graph = DependencyGraph(definitions)

    assert graph.nodes == {"base", "app"}
    assert graph.get_dependencies("app") == {"base"}
    assert graph.get_dependents("base") == {"app"}
    assert graph.get_dependencies("base") == set()


def test_build_order_dependencies_first_ties_by_name():
    definitions = _defs({
        "tool": [],
        "app2": ["base"],
        "app1": ["base"],
        "base": [],
    })
    order = DependencyGraph(definitions).build_order()
    assert order == ["base", "app1", "app2", "tool"]


def test_build_order_is_deterministic_across_insertion_order():
    edges = {"d": ["b", "c"], "c": ["a"], "b": ["a"], "a": [], "e": []}
    forward = DependencyGraph(_defs(edges)).build_order()
    backward = DependencyGraph(_defs(dict(reversed(list(edges.items()))))).build_order()
    assert forward == backward
    _assert_topological(DependencyGraph(_defs(edges)), forward)


def test_diamond_order_is_valid():
    graph = DependencyGraph(_defs({"a": [], "b": ["a"], "c": ["a"], "d": ["b", "c"]}))
    order = graph.build_order()
    assert order[0] == "a" and order[-1] == "d"
    _assert_topological(graph, order)


def test_targets_limit_graph_to_their_closure():
    definitions = _defs({"base": [], "app": ["base"], "other": []})
    graph = DependencyGraph(definitions, ["app"])
    assert graph.nodes == {"base", "app"}
    assert graph.build_order() == ["base", "app"]


def test_transitive_dependencies():
    graph = DependencyGraph(_defs({"a": [], "b": ["a"], "c": ["b"]}))
    assert graph.get_transitive_dependencies("c") == {"a", "b"}
    assert graph.get_transitive_dependents("a") == {"b", "c"}
    assert graph.get_transitive_dependencies("a") == set()


def test_two_node_cycle():
    with pytest.raises(CycleDetected) as exc:
        DependencyGraph(_defs({"a": ["b"], "b": ["a"]}))
    assert exc.value.cycle == ["a", "b"]
    assert "a -> b -> a" in str(exc.value)


def test_self_cycle():
    with pytest.raises(CycleDetected) as exc:
        DependencyGraph(_defs({"a": ["a"]}))
    assert exc.value.cycle == ["a"]


def test_cycle_outside_targets_is_not_reported():
    definitions = _defs({"a": ["b"], "b": ["a"], "c": []})
    graph = DependencyGraph(definitions, ["c"])
    assert graph.build_order() == ["c"]


def test_unknown_dependency():
    with pytest.raises(UnknownDependency) as exc:
        DependencyGraph(_defs({"app": ["bsae"]}))
    assert exc.value.name == "bsae"
    assert exc.value.dependent == "app"


def test_missing_target_suggests_closest_name():
    with pytest.raises(DefinitionNotFound) as exc:
        DependencyGraph(_defs({"base": []}), ["bsae"])
    assert exc.value.suggestion == "base"
    assert "Did you mean 'base'?" in str(exc.value)


def test_suggest_name_returns_none_when_nothing_close():
    assert suggest_name("zzz", ["base", "app"]) is None
