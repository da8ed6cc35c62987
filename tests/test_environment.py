"""Tests for the layered environment context."""

import pytest

from stageflow.engine.environment import EnvironmentContext
from stageflow.engine.exceptions import LayerOrderError


def test_resolve_walks_layers_innermost_first():
    env = EnvironmentContext({"REGISTRY": "registry.local", "TAG": "latest"})
    outer = env.push({"TAG": "1.2.3"}, label="build")
    inner = env.push({"REGISTRY": "mirror.local"}, label="deploy")

    assert env.resolve("REGISTRY") == "mirror.local"
    assert env.resolve("TAG") == "1.2.3"
    assert env.depth == 2

    env.pop(inner)
    assert env.resolve("REGISTRY") == "registry.local"
    env.pop(outer)
    assert env.resolve("TAG") == "latest"
    assert env.depth == 0


def test_resolve_missing_key_returns_none():
    env = EnvironmentContext()
    assert env.resolve("MISSING") is None
    assert "MISSING" not in env


def test_popped_layer_never_leaks_to_parent():
    env = EnvironmentContext({"A": "1"})
    handle = env.push({"B": "2"})
    env.pop(handle)

    assert env.resolve("B") is None
    assert env.resolved() == {"A": "1"}


def test_push_copies_layer():
    env = EnvironmentContext()
    values = {"KEY": "before"}
    env.push(values)
    values["KEY"] = "after"

    assert env.resolve("KEY") == "before"


def test_values_are_stringified():
    env = EnvironmentContext({"PORT": 8080, "DEBUG": True, "EMPTY": None})

    assert env.resolve("PORT") == "8080"
    assert env.resolve("DEBUG") == "True"
    assert env.resolve("EMPTY") == ""


def test_pop_out_of_order_raises():
    env = EnvironmentContext()
    outer = env.push({"A": "1"}, label="outer")
    env.push({"B": "2"}, label="inner")

    with pytest.raises(LayerOrderError, match="outer"):
        env.pop(outer)


def test_pop_handle_of_other_context_raises():
    first = EnvironmentContext()
    second = EnvironmentContext()
    handle = first.push({"A": "1"})
    second.push({"B": "2"})

    with pytest.raises(LayerOrderError):
        second.pop(handle)


def test_layer_context_manager_pops_on_exception():
    env = EnvironmentContext()

    with pytest.raises(RuntimeError):
        with env.layer({"SECRET": "value"}, label="scope"):
            assert env.resolve("SECRET") == "value"
            raise RuntimeError("boom")

    assert env.resolve("SECRET") is None
    assert env.depth == 0


def test_fork_sees_parent_layers_but_pushes_privately():
    env = EnvironmentContext({"BASE": "b"})
    env.push({"SHARED": "s"}, label="group")

    left = env.fork()
    right = env.fork()
    left.push({"ONLY_LEFT": "l"})

    assert left.resolve("SHARED") == "s"
    assert right.resolve("SHARED") == "s"
    assert right.resolve("ONLY_LEFT") is None
    assert env.resolve("ONLY_LEFT") is None
    assert left.depth == 2
    assert env.depth == 1


def test_resolved_flattens_with_innermost_winning():
    env = EnvironmentContext({"A": "base", "B": "base"})
    env.push({"B": "layer", "C": "layer"})

    assert env.resolved() == {"A": "base", "B": "layer", "C": "layer"}
