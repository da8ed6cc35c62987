"""
Result model for one pipeline run.

- FailureCause: why a node failed (kind + message + path of stage names)
- StepRecord: one executed action inside a leaf or hook
- StageRecord: per-node result tree, mutated only while the run is in flight
- StepResult/StageResult: frozen snapshots of those records
- HookRecord: result of one post-run hook
- RunOutcome: frozen final value returned by ``PipelineRunner.run()``

Every failure state of a run is represented here as a value; nothing is
raised to the caller.
"""

from __future__ import annotations

import time
from collections.abc import Iterator, Sequence
from datetime import UTC, datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr

from .exceptions import CommandFailure, StageFailure
from .stage_status import FailureKind, StageStatus

NodeKind = Literal["leaf", "sequential", "parallel"]
HookKind = Literal["on_success", "on_failure", "always"]


def _now() -> str:
    return datetime.now(UTC).isoformat()


class FailureCause(BaseModel):
    """
    Failure description attached to a FAILED (or ABORTED) node.

    ``path`` lists stage names from the root to the node where the failure
    originated. A non-fail-fast parallel group produces a composite cause:
    its ``causes`` hold every failed child's cause in declaration order and
    its ``kind`` is that of the first one.
    """

    model_config = ConfigDict(frozen=True)

    kind: FailureKind
    message: str
    path: list[str] = Field(default_factory=list)
    exit_code: int | None = None
    causes: list[FailureCause] = Field(default_factory=list)

    @classmethod
    def from_exception(
        cls, exc: StageFailure, path: Sequence[str], message: str | None = None
    ) -> FailureCause:
        """Convert a raised StageFailure into a value, keeping its kind."""
        return cls(
            kind=exc.kind,
            message=message if message is not None else exc.message,
            path=list(path),
            exit_code=exc.exit_code if isinstance(exc, CommandFailure) else None,
        )

    @classmethod
    def composite(cls, path: Sequence[str], causes: Sequence[FailureCause]) -> FailureCause:
        """Aggregate the causes of several failed parallel children."""
        if not causes:
            raise ValueError("composite failure needs at least one cause")
        if len(causes) == 1:
            return causes[0]
        names = ", ".join(c.path[len(path)] if len(c.path) > len(path) else c.path_str for c in causes)
        return cls(
            kind=causes[0].kind,
            message=f"{len(causes)} parallel stages failed: {names}",
            path=list(path),
            causes=list(causes),
        )

    @property
    def path_str(self) -> str:
        return " / ".join(self.path)

    @property
    def is_composite(self) -> bool:
        return bool(self.causes)

    def primary(self) -> FailureCause:
        """Innermost cause, following the first child of composites."""
        cause = self
        while cause.causes:
            cause = cause.causes[0]
        return cause

    def describe(self) -> str:
        return f"[{self.kind.value}] {self.path_str}: {self.message}"


class StepRecord(BaseModel):
    """One executed action."""

    type: str
    description: str
    status: StageStatus = StageStatus.RUNNING
    started_at: str = Field(default_factory=_now)
    duration_ms: int = 0
    exit_code: int | None = None
    output: str = ""
    message: str | None = None

    _t0: float = PrivateAttr(default_factory=time.monotonic)

    def finish(
        self,
        status: StageStatus,
        *,
        exit_code: int | None = None,
        output: str = "",
        message: str | None = None,
    ) -> None:
        self.status = status
        self.duration_ms = int((time.monotonic() - self._t0) * 1000)
        self.exit_code = exit_code
        self.output = output
        self.message = message

    def freeze(self) -> StepResult:
        return StepResult.model_validate(self.model_dump())


class StepResult(BaseModel):
    """Frozen copy of a StepRecord, as carried by outcomes and hook records."""

    model_config = ConfigDict(frozen=True)

    type: str
    description: str
    status: StageStatus
    started_at: str
    duration_ms: int = 0
    exit_code: int | None = None
    output: str = ""
    message: str | None = None


class _ResultTree:
    """Traversal shared by the working record tree and its frozen snapshot."""

    @property
    def path_str(self) -> str:
        return " / ".join(self.path)

    def walk(self) -> Iterator[Any]:
        """Depth-first, declaration-order traversal including self."""
        yield self
        for child in self.children:
            yield from child.walk()

    def find(self, name: str) -> Any:
        """First record named ``name`` (or whose joined path equals it)."""
        for record in self.walk():
            if record.name == name or record.path_str == name:
                return record
        return None


class StageRecord(_ResultTree, BaseModel):
    """
    Result node mirroring one Stage Node.

    Built for the whole tree before execution (all PENDING) so that nodes
    which never run still carry a terminal status afterwards.
    """

    name: str
    kind: NodeKind
    path: list[str]
    status: StageStatus = StageStatus.PENDING
    cause: FailureCause | None = None
    message: str | None = None
    warnings: list[str] = Field(default_factory=list)
    started_at: str | None = None
    duration_ms: int | None = None
    steps: list[StepRecord] = Field(default_factory=list)
    children: list[StageRecord] = Field(default_factory=list)

    _t0: float | None = PrivateAttr(default=None)

    def mark_running(self) -> None:
        self.status = StageStatus.RUNNING
        self.started_at = _now()
        self._t0 = time.monotonic()

    def finish(
        self,
        status: StageStatus,
        cause: FailureCause | None = None,
        message: str | None = None,
    ) -> None:
        self.status = status
        self.cause = cause
        if message is not None:
            self.message = message
        if self._t0 is not None:
            self.duration_ms = int((time.monotonic() - self._t0) * 1000)

    def mark_subtree(
        self,
        status: StageStatus,
        message: str | None = None,
        cause: FailureCause | None = None,
    ) -> None:
        """Give every non-terminal node of this sub-tree ``status``.

        Used for skip and abort decisions taken by an ancestor; nodes that
        already finished keep their result.
        """
        for record in self.walk():
            if not record.status.is_terminal():
                record.finish(status, cause, message)

    def freeze(self) -> StageResult:
        """Immutable snapshot of this sub-tree."""
        return StageResult.model_validate(self.model_dump())


class StageResult(_ResultTree, BaseModel):
    """Frozen result node of a finished run."""

    model_config = ConfigDict(frozen=True)

    name: str
    kind: NodeKind
    path: tuple[str, ...]
    status: StageStatus
    cause: FailureCause | None = None
    message: str | None = None
    warnings: tuple[str, ...] = ()
    started_at: str | None = None
    duration_ms: int | None = None
    steps: tuple[StepResult, ...] = ()
    children: tuple[StageResult, ...] = ()


class HookRecord(BaseModel):
    """Result of one post-run hook."""

    model_config = ConfigDict(frozen=True)

    hook: HookKind
    name: str
    status: StageStatus
    cause: FailureCause | None = None
    warnings: tuple[str, ...] = ()
    steps: tuple[StepResult, ...] = ()
    duration_ms: int = 0


class RunOutcome(BaseModel):
    """
    Final, immutable value of one pipeline run.

    ``result`` and ``cause`` mirror the root record; ``root`` holds the full
    per-node result tree for inspection.
    """

    model_config = ConfigDict(frozen=True)

    pipeline: str
    run_id: str
    result: StageStatus
    cause: FailureCause | None = None
    started_at: str
    duration_seconds: float
    root: StageResult
    warnings: tuple[str, ...] = ()
    hooks: tuple[HookRecord, ...] = ()

    @property
    def succeeded(self) -> bool:
        return self.result == StageStatus.SUCCEEDED

    def find(self, name: str) -> StageResult | None:
        return self.root.find(name)

    def hook(self, kind: HookKind) -> HookRecord | None:
        for record in self.hooks:
            if record.hook == kind:
                return record
        return None

    def with_hooks(self, records: Sequence[HookRecord]) -> RunOutcome:
        """New outcome with hook records attached; failed hooks become warnings."""
        warnings = list(self.warnings)
        for record in records:
            warnings.extend(f"hook '{record.name}': {w}" for w in record.warnings)
            if record.status == StageStatus.FAILED and record.cause is not None:
                warnings.append(f"hook '{record.name}' ({record.hook}) failed: {record.cause.message}")
        return self.model_copy(update={"hooks": tuple(records), "warnings": tuple(warnings)})


__all__ = [
    "FailureCause",
    "HookKind",
    "HookRecord",
    "NodeKind",
    "RunOutcome",
    "StageRecord",
    "StageResult",
    "StepRecord",
    "StepResult",
]
