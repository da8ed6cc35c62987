"""
Action models: the units of work inside a leaf stage or a post-run hook.

Actions are data; the matching executor in ``executors.py`` performs them.
Definition files use short forms which ``normalize_action`` expands:

    steps:
      - run: npm ci && npm run build        # CommandAction
        working_dir: frontend
      - gate: sonar-quality-gate            # GateAction
        max_duration: 300
        on_timeout: continue
      - notify: "Build {{ RUN_RESULT }}"    # NotifyAction
        channel: "#builds"
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field

from .stage_status import TimeoutPolicy

EnvValue = str | int | float | bool


class CommandAction(BaseModel):
    """Run one external command through the command adapter."""

    model_config = {"extra": "forbid"}

    type: Literal["command"] = "command"
    run: str = Field(description="Command line to execute", min_length=1)
    working_dir: str = Field(default="", description="Working directory (empty = workspace)")
    env: dict[str, EnvValue] = Field(
        default_factory=dict, description="Step-only environment overrides"
    )
    timeout: float | None = Field(
        default=None, gt=0, description="Timeout in seconds (default: STAGEFLOW_COMMAND_TIMEOUT)"
    )

    def describe(self) -> str:
        return f"run: {self.run}"


class GateAction(BaseModel):
    """Wait, bounded, for an external quality decision."""

    model_config = {"extra": "forbid"}

    type: Literal["gate"] = "gate"
    check: str = Field(description="Name of the external check", min_length=1)
    max_duration: float = Field(gt=0, description="Maximum wait in seconds")
    on_timeout: TimeoutPolicy = Field(
        default=TimeoutPolicy.FAIL, description="fail: stage fails; continue: warning only"
    )
    poll_interval: float | None = Field(
        default=None, gt=0, description="Polling interval for polling signals"
    )

    def describe(self) -> str:
        return f"gate: {self.check} (max {self.max_duration:g}s, on timeout {self.on_timeout.value})"


class NotifyAction(BaseModel):
    """Send a message to a notification sink."""

    model_config = {"extra": "forbid"}

    type: Literal["notify"] = "notify"
    message: str = Field(description="Message template (jinja2, environment as variables)")
    title: str | None = Field(default=None, description="Optional title/heading")
    channel: str | None = Field(default=None, description="Channel or recipient")
    sink: str = Field(default="default", description="Registered sink name")
    endpoint_env: str | None = Field(
        default=None,
        description="Environment key holding the endpoint URL (typically from a credential)",
    )

    def describe(self) -> str:
        target = f" -> {self.channel}" if self.channel else ""
        return f"notify: {self.sink}{target}"


class CallableAction(BaseModel):
    """
    Engine-internal operation given as a Python callable.

    The callable receives the StageContext and may be sync or async. It
    signals failure by raising a StageFailure; any other exception fails the
    stage with an ``error`` cause. Not loadable from definition files.
    """

    model_config = {"extra": "forbid", "arbitrary_types_allowed": True}

    type: Literal["callable"] = "callable"
    name: str = Field(description="Display name")
    func: Callable[..., Awaitable[None] | None] = Field(exclude=True)

    def describe(self) -> str:
        return f"call: {self.name}"


Action = Annotated[
    CommandAction | GateAction | NotifyAction | CallableAction,
    Field(discriminator="type"),
]

_SHORTHAND = {"run": "command", "gate": "gate", "notify": "notify"}


def normalize_action(raw: Any) -> Any:  # noqa: ANN401
    """Expand definition-file shorthand into the discriminated form.

    ``{"run": "make"}`` -> ``{"type": "command", "run": "make"}``
    ``{"gate": "q"}`` -> ``{"type": "gate", "check": "q"}``
    ``{"notify": "m"}`` -> ``{"type": "notify", "message": "m"}``
    ``"make"`` -> ``{"type": "command", "run": "make"}``
    """
    if isinstance(raw, str):
        return {"type": "command", "run": raw}
    if not isinstance(raw, dict) or "type" in raw:
        return raw

    for key, action_type in _SHORTHAND.items():
        if key in raw:
            data = dict(raw)
            if action_type == "gate":
                data["check"] = data.pop("gate")
            elif action_type == "notify":
                data["message"] = data.pop("notify")
            if "timeout" in data and action_type == "gate":
                data["max_duration"] = data.pop("timeout")
            if "dir" in data and action_type == "command":
                data["working_dir"] = data.pop("dir")
            data["type"] = action_type
            return data
    return raw


def normalize_actions(raw: Any) -> Any:  # noqa: ANN401
    if isinstance(raw, list):
        return [normalize_action(item) for item in raw]
    return raw


__all__ = [
    "Action",
    "CallableAction",
    "CommandAction",
    "EnvValue",
    "GateAction",
    "NotifyAction",
    "normalize_action",
    "normalize_actions",
]
