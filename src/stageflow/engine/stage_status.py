"""Stage result and gate enums for the stage-tree execution model."""

from enum import Enum


class StageStatus(str, Enum):
    """
    Lifecycle and result states of a stage node.

    PENDING and RUNNING only appear while a run is in flight; every node of a
    finished run carries one of the four terminal states.
    """

    PENDING = "pending"
    """Not started yet."""

    RUNNING = "running"
    """Currently executing."""

    SUCCEEDED = "succeeded"
    """All actions (or children) completed successfully."""

    FAILED = "failed"
    """An action failed; the record carries the cause."""

    ABORTED = "aborted"
    """Cancelled while running, or never started because an ancestor aborted."""

    SKIPPED = "skipped"
    """Never executed (an earlier sibling failed or its condition was false)."""

    def is_terminal(self) -> bool:
        """Check if this is a final result."""
        return self not in (StageStatus.PENDING, StageStatus.RUNNING)

    def is_succeeded(self) -> bool:
        """Check if the stage succeeded."""
        return self == StageStatus.SUCCEEDED

    def is_failed(self) -> bool:
        """Check if the stage failed."""
        return self == StageStatus.FAILED

    def is_aborted(self) -> bool:
        """Check if the stage was aborted."""
        return self == StageStatus.ABORTED

    def is_skipped(self) -> bool:
        """Check if the stage was skipped."""
        return self == StageStatus.SKIPPED


class FailureKind(str, Enum):
    """Classification of a stage failure."""

    COMMAND = "command"
    """External command exited non-zero."""

    TIMEOUT = "timeout"
    """A bounded wait (gate, command, pipeline) was exceeded."""

    GATE = "gate"
    """The external quality gate reported a failing decision."""

    CREDENTIAL = "credential"
    """A credential binding could not be materialized."""

    CANCELLED = "cancelled"
    """Aborted because a sibling failed in a fail-fast group."""

    ERROR = "error"
    """Unexpected exception raised by an action."""


class GateResult(str, Enum):
    """Result of a bounded gate wait."""

    PASSED = "passed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


class TimeoutPolicy(str, Enum):
    """What a gate timeout does to the enclosing stage."""

    FAIL = "fail"
    """Timeout is fatal: the stage fails with a TIMEOUT cause."""

    CONTINUE = "continue"
    """Timeout is recorded as a warning and the stage continues."""
