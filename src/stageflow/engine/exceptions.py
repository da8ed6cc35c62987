"""Stage failure exceptions for the stage-tree execution model.

Actions raise these exceptions to signal that the enclosing stage failed.
The pipeline runner catches them at the leaf boundary and converts them into
``FailureCause`` values, so no failure ever escapes ``PipelineRunner.run()``.

Exception Hierarchy:
    StageFailure (base)
    ├── CommandFailure (non-zero external exit)
    ├── TimeoutFailure (bounded wait exceeded)
    ├── GateFailure (quality gate reported FAIL)
    ├── CredentialResolutionFailure (binding cannot be materialized)
    └── CancelledFailure (aborted by a sibling's fail-fast trigger)
"""

from __future__ import annotations

from .stage_status import FailureKind


class StageFailure(Exception):
    """Base exception for failures that end a stage as FAILED.

    Attributes:
        kind: Failure classification carried into the FailureCause
        message: Human-readable description
    """

    kind: FailureKind = FailureKind.ERROR

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def __repr__(self) -> str:
        """Developer-friendly representation."""
        return f"{type(self).__name__}({self.message!r})"


class CommandFailure(StageFailure):
    """
    External command exited with a non-zero status.

    Attributes:
        command: Command line that was executed
        exit_code: Process exit code
        stderr: Captured (redacted) standard error, possibly truncated
    """

    kind = FailureKind.COMMAND

    def __init__(self, command: str, exit_code: int, stderr: str = ""):
        self.command = command
        self.exit_code = exit_code
        self.stderr = stderr
        message = f"Command exited with code {exit_code}: {command}"
        if stderr:
            message += f"\n{stderr}"
        super().__init__(message)

    def __repr__(self) -> str:
        """Developer-friendly representation."""
        return f"CommandFailure(command={self.command!r}, exit_code={self.exit_code})"


class TimeoutFailure(StageFailure):
    """
    A bounded wait exceeded its limit.

    Attributes:
        operation: What was being waited for (gate check, command, pipeline)
        seconds: The configured bound
    """

    kind = FailureKind.TIMEOUT

    def __init__(self, operation: str, seconds: float):
        self.operation = operation
        self.seconds = seconds
        super().__init__(f"{operation} timed out after {seconds:g}s")


class GateFailure(StageFailure):
    """Quality gate reported a failing decision."""

    kind = FailureKind.GATE

    def __init__(self, check: str, detail: str | None = None):
        self.check = check
        self.detail = detail
        message = f"Quality gate '{check}' failed"
        if detail:
            message += f": {detail}"
        super().__init__(message)


class CredentialResolutionFailure(StageFailure):
    """
    Credential binding could not be materialized into the environment.

    Attributes:
        binding: Name of the credential binding
        reason: Why resolution failed (never contains secret values)
    """

    kind = FailureKind.CREDENTIAL

    def __init__(self, binding: str, reason: str):
        self.binding = binding
        self.reason = reason
        super().__init__(f"Credential '{binding}' could not be resolved: {reason}")


class CancelledFailure(StageFailure):
    """Stage was aborted because a sibling failed in a fail-fast group."""

    kind = FailureKind.CANCELLED

    def __init__(self, trigger: str):
        self.trigger = trigger
        super().__init__(f"Aborted after sibling '{trigger}' failed")


class InvalidPipelineError(ValueError):
    """Stage tree violates a structural invariant (shared node, duplicate name)."""


class LayerOrderError(RuntimeError):
    """Environment layer popped out of order."""
