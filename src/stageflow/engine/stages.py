"""
Stage Node tree: the read-only description of what a run executes.

Three node kinds share a common base (name, environment overlay,
credentials, optional condition):

- LeafStage: an ordered list of actions
- SequentialStage: children executed one after another
- ParallelStage: children executed concurrently, optionally fail-fast

Definition files may omit ``kind``; it is inferred from the key that holds
the node's content (``steps`` -> leaf, ``stages`` -> sequential,
``parallel`` -> parallel).
"""

from __future__ import annotations

from collections.abc import Iterator
from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field, field_validator, model_validator

from .actions import Action, EnvValue, normalize_actions
from .credentials import CredentialBinding
from .exceptions import InvalidPipelineError


class StageBase(BaseModel):
    """Fields shared by every stage node."""

    model_config = {"extra": "forbid"}

    name: str = Field(description="Human-readable stage name", min_length=1, max_length=200)
    environment: dict[str, EnvValue] = Field(
        default_factory=dict, description="Environment overlay pushed on entry"
    )
    credentials: list[CredentialBinding] = Field(
        default_factory=list, description="Credentials materialized for this sub-tree"
    )
    when: str | None = Field(
        default=None,
        description="Environment key that must resolve truthy, otherwise the stage is skipped",
    )

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        if "/" in v:
            raise ValueError(f"Stage name must not contain '/': '{v}'")
        return v


class LeafStage(StageBase):
    """Leaf unit of work: actions run in order, first failure stops the leaf."""

    kind: Literal["leaf"] = "leaf"
    actions: list[Action] = Field(default_factory=list)

    @field_validator("actions", mode="before")
    @classmethod
    def normalize_steps(cls, v: Any) -> Any:  # noqa: ANN401
        return normalize_actions(v)


class SequentialStage(StageBase):
    """Children run one after another; the first failure skips the rest."""

    kind: Literal["sequential"] = "sequential"
    children: list[StageNode] = Field(default_factory=list)

    @field_validator("children", mode="before")
    @classmethod
    def normalize_children(cls, v: Any) -> Any:  # noqa: ANN401
        return normalize_nodes(v)


class ParallelStage(StageBase):
    """Children run concurrently; ``fail_fast=None`` uses the run default."""

    kind: Literal["parallel"] = "parallel"
    children: list[StageNode] = Field(default_factory=list)
    fail_fast: bool | None = Field(
        default=None, description="Cancel running siblings on the first failure"
    )

    @field_validator("children", mode="before")
    @classmethod
    def normalize_children(cls, v: Any) -> Any:  # noqa: ANN401
        return normalize_nodes(v)

    @model_validator(mode="after")
    def validate_unique_children(self) -> ParallelStage:
        seen: set[str] = set()
        for child in self.children:
            if child.name in seen:
                raise ValueError(
                    f"Parallel stage '{self.name}' has duplicate child name '{child.name}'"
                )
            seen.add(child.name)
        return self


StageNode = Annotated[
    LeafStage | SequentialStage | ParallelStage,
    Field(discriminator="kind"),
]

SequentialStage.model_rebuild()
ParallelStage.model_rebuild()


def normalize_node(raw: Any) -> Any:  # noqa: ANN401
    """Infer ``kind`` from definition-file keys.

    ``{"name": "Build", "steps": [...]}`` -> leaf
    ``{"name": "CI", "stages": [...]}`` -> sequential
    ``{"name": "Images", "parallel": [...]}`` -> parallel
    """
    if not isinstance(raw, dict) or "kind" in raw:
        return raw
    data = dict(raw)
    if "steps" in data:
        data["kind"] = "leaf"
        data["actions"] = data.pop("steps")
    elif "stages" in data:
        data["kind"] = "sequential"
        data["children"] = data.pop("stages")
    elif "parallel" in data:
        data["kind"] = "parallel"
        data["children"] = data.pop("parallel")
    elif "actions" in data:
        data["kind"] = "leaf"
    return data


def normalize_nodes(raw: Any) -> Any:  # noqa: ANN401
    if isinstance(raw, list):
        return [normalize_node(item) for item in raw]
    return raw


def iter_nodes(
    node: LeafStage | SequentialStage | ParallelStage,
) -> Iterator[LeafStage | SequentialStage | ParallelStage]:
    """Depth-first traversal in declaration order."""
    yield node
    if not isinstance(node, LeafStage):
        for child in node.children:
            yield from iter_nodes(child)


def validate_tree(root: LeafStage | SequentialStage | ParallelStage) -> None:
    """
    Check that every node instance has exactly one parent.

    Node instances built in code can be shared between groups (or nested
    inside themselves); such trees are rejected before execution.

    Raises:
        InvalidPipelineError: If a node instance appears more than once
    """
    seen: set[int] = set()
    stack: list[tuple[LeafStage | SequentialStage | ParallelStage, tuple[str, ...]]] = [
        (root, (root.name,))
    ]
    while stack:
        node, path = stack.pop()
        if id(node) in seen:
            raise InvalidPipelineError(
                f"Stage '{' / '.join(path)}' appears more than once in the tree; "
                "each stage node must have exactly one parent"
            )
        seen.add(id(node))
        if not isinstance(node, LeafStage):
            for child in node.children:
                stack.append((child, path + (child.name,)))


__all__ = [
    "LeafStage",
    "ParallelStage",
    "SequentialStage",
    "StageBase",
    "StageNode",
    "iter_nodes",
    "normalize_node",
    "validate_tree",
]
