"""
Layered environment context for stage execution.

The context is a base mapping plus a stack of override layers. Scopes push a
layer on entry and pop it on exit; lookups walk from the innermost layer
outward, so inner scopes override outer ones without ever mutating them.

Concurrent branches never share a layer stack: a parallel group gives each
child a ``fork()`` of its own context. A fork sees the parent's layers at
fork time (by reference, read-only) and pushes its own layers onto a
private stack.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any

from .exceptions import LayerOrderError


@dataclass(frozen=True)
class LayerHandle:
    """Token returned by ``push``; required to ``pop`` the same layer."""

    depth: int
    label: str
    _layer: dict[str, str] = field(repr=False, compare=False)


class EnvironmentContext:
    """
    Immutable base mapping with scoped override layers.

    Example:
        env = EnvironmentContext({"REGISTRY": "registry.local"})
        with env.layer({"REGISTRY": "mirror.local"}, label="deploy"):
            env.resolve("REGISTRY")  # "mirror.local"
        env.resolve("REGISTRY")  # "registry.local"
    """

    def __init__(self, base: Mapping[str, Any] | None = None):
        self._layers: list[dict[str, str]] = [stringify_env(base or {})]
        self._labels: list[str] = ["base"]

    # Layer management

    def push(self, layer: Mapping[str, Any], label: str = "") -> LayerHandle:
        """Push a new innermost layer (copied; later edits to ``layer`` are ignored)."""
        frozen = stringify_env(layer)
        self._layers.append(frozen)
        self._labels.append(label)
        return LayerHandle(depth=len(self._layers) - 1, label=label, _layer=frozen)

    def pop(self, handle: LayerHandle) -> None:
        """
        Pop the innermost layer.

        Raises:
            LayerOrderError: If ``handle`` is not the innermost layer of this context
        """
        if (
            handle.depth == 0
            or handle.depth != len(self._layers) - 1
            or self._layers[-1] is not handle._layer
        ):
            raise LayerOrderError(
                f"Cannot pop layer '{handle.label}' (depth {handle.depth}); "
                f"innermost layer is '{self._labels[-1]}' (depth {len(self._layers) - 1})"
            )
        self._layers.pop()
        self._labels.pop()

    @contextmanager
    def layer(self, values: Mapping[str, Any], label: str = "") -> Iterator[LayerHandle]:
        """Scoped push/pop; the layer is popped on normal exit, exception or cancellation."""
        handle = self.push(values, label)
        try:
            yield handle
        finally:
            self.pop(handle)

    def fork(self) -> EnvironmentContext:
        """Create an independent context for a concurrent branch."""
        child = EnvironmentContext.__new__(EnvironmentContext)
        child._layers = list(self._layers)
        child._labels = list(self._labels)
        return child

    # Lookup

    def resolve(self, key: str) -> str | None:
        """Resolve ``key`` from the innermost layer outward; ``None`` if absent."""
        for layer in reversed(self._layers):
            if key in layer:
                return layer[key]
        return None

    def resolved(self) -> dict[str, str]:
        """Flattened view of all layers (innermost wins)."""
        merged: dict[str, str] = {}
        for layer in self._layers:
            merged.update(layer)
        return merged

    @property
    def depth(self) -> int:
        """Number of pushed layers (0 when only the base is present)."""
        return len(self._layers) - 1

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and self.resolve(key) is not None

    def __repr__(self) -> str:
        return f"EnvironmentContext(layers={self._labels!r})"


def stringify_env(values: Mapping[str, Any]) -> dict[str, str]:
    # Environment values are strings, as they end up in process environments
    return {str(key): "" if value is None else str(value) for key, value in values.items()}


__all__ = ["EnvironmentContext", "LayerHandle", "stringify_env"]
