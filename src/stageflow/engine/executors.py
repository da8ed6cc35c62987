"""Action executors.

Executors implement action logic as stateless, reusable components. One
instance serves every action of its type.

Key principles:
- Execute returns a StepOutput on success
- Exceptions indicate failure (StageFailure subclasses carry the failure kind)
- Non-fatal conditions are recorded on the context as warnings
"""

from __future__ import annotations

import inspect
import logging
from abc import ABC, abstractmethod
from typing import Any, ClassVar

from jinja2 import StrictUndefined, TemplateError
from jinja2.sandbox import SandboxedEnvironment
from pydantic import BaseModel, PrivateAttr

from .actions import CallableAction, CommandAction, GateAction, NotifyAction
from .environment import stringify_env
from .exceptions import CommandFailure, GateFailure, StageFailure, TimeoutFailure
from .execution_context import StageContext
from .gate import wait_for_gate
from .notify import NotificationError, NotificationMessage
from .stage_status import GateResult, TimeoutPolicy

logger = logging.getLogger(__name__)

STDERR_TAIL_LINES = 20


class StepOutput(BaseModel):
    """What an executor reports for a successful action."""

    exit_code: int | None = None
    output: str = ""
    message: str | None = None


class ActionExecutor(ABC):
    """Base class for action executors.

    Subclasses set ``type_name`` (the action's ``type`` discriminator) and
    ``action_type`` and implement ``execute``.
    """

    type_name: ClassVar[str]
    action_type: ClassVar[type[BaseModel]]

    @abstractmethod
    async def execute(self, action: Any, context: StageContext) -> StepOutput:  # noqa: ANN401
        """Perform ``action``.

        Returns:
            StepOutput on success

        Raises:
            StageFailure: The enclosing stage fails with the exception's kind
            Exception: Anything else fails the stage with an ``error`` cause
        """
        pass


class ExecutorRegistry(BaseModel):
    """
    Registry of executors.

    Maps action type names to executor instances.
    """

    model_config = {"arbitrary_types_allowed": True}

    _executors: dict[str, ActionExecutor] = PrivateAttr(default_factory=dict)

    def register(self, executor: ActionExecutor) -> None:
        """Register executor using executor.type_name as key."""
        if executor.type_name in self._executors:
            raise ValueError(f"Executor already registered: {executor.type_name}")
        self._executors[executor.type_name] = executor

    def get(self, type_name: str) -> ActionExecutor:
        """Get executor by type name."""
        if type_name not in self._executors:
            available = list(self._executors.keys())
            raise ValueError(f"Unknown action type: {type_name}. Available: {available}")
        return self._executors[type_name]

    def list_types(self) -> list[str]:
        return list(self._executors.keys())

    def has(self, type_name: str) -> bool:
        return type_name in self._executors


class CommandExecutor(ActionExecutor):
    """Runs a CommandAction through the run's command adapter.

    The process environment is the stage's resolved environment plus the
    action's own ``env``. A non-zero exit code raises CommandFailure carrying
    the (redacted) tail of stderr.
    """

    type_name = "command"
    action_type = CommandAction

    async def execute(self, action: CommandAction, context: StageContext) -> StepOutput:
        services = context.services
        env = context.env.resolved()
        env.update(stringify_env(action.env))
        timeout = action.timeout or services.settings.command_timeout
        working_dir = action.working_dir or services.settings.workspace

        logger.debug(f"[{context.path_str}] {services.redact(action.run)}")
        result = await services.command_adapter.execute(
            action.run, working_dir, env, timeout=timeout
        )

        output = services.redact(result.stdout)
        if not result.succeeded:
            stderr = services.redact(result.stderr)
            tail = "\n".join(stderr.strip().splitlines()[-STDERR_TAIL_LINES:])
            raise CommandFailure(services.redact(action.run), result.exit_code, tail)

        return StepOutput(exit_code=result.exit_code, output=output)


class GateExecutor(ActionExecutor):
    """Waits for the external quality decision named by a GateAction.

    PASSED: step succeeds.
    FAILED: GateFailure.
    TIMED_OUT: TimeoutFailure under policy ``fail``; a warning under ``continue``.
    """

    type_name = "gate"
    action_type = GateAction

    async def execute(self, action: GateAction, context: StageContext) -> StepOutput:
        signal = context.services.gate_signal
        if signal is None:
            raise StageFailure(f"No gate signal configured for check '{action.check}'")

        outcome = await wait_for_gate(
            signal,
            action.check,
            action.max_duration,
            poll_interval=action.poll_interval or context.services.settings.gate_poll_interval,
        )

        if outcome.result == GateResult.PASSED:
            return StepOutput(message=f"Gate '{action.check}' passed after {outcome.waited_seconds:.1f}s")

        if outcome.result == GateResult.FAILED:
            raise GateFailure(action.check, outcome.detail)

        operation = f"Quality gate '{action.check}'"
        if action.on_timeout == TimeoutPolicy.FAIL:
            raise TimeoutFailure(operation, action.max_duration)

        message = f"{operation} timed out after {action.max_duration:g}s; continuing"
        context.warn(message)
        return StepOutput(message=message)


class NotifyExecutor(ActionExecutor):
    """Renders a NotifyAction and hands it to a notification sink.

    The message and title are jinja2 templates rendered in a sandbox with
    the resolved environment as variables. Rendering and delivery problems
    are warnings; a notification never fails its stage.
    """

    type_name = "notify"
    action_type = NotifyAction

    def __init__(self) -> None:
        self.jinja = SandboxedEnvironment(undefined=StrictUndefined, autoescape=False)

    def render(self, template: str, variables: dict[str, str], context: StageContext) -> str:
        try:
            return self.jinja.from_string(template).render(**variables)
        except TemplateError as e:
            context.warn(f"Notification template error ({type(e).__name__}: {e}); sent unrendered")
            return template

    async def execute(self, action: NotifyAction, context: StageContext) -> StepOutput:
        services = context.services
        variables = context.env.resolved()

        sink = services.sinks.get(action.sink)
        if sink is None:
            context.warn(f"Notification sink '{action.sink}' is not configured; message dropped")
            return StepOutput(message="not delivered")

        endpoint = None
        if action.endpoint_env:
            endpoint = context.env.resolve(action.endpoint_env)
            if not endpoint:
                context.warn(f"Environment key '{action.endpoint_env}' is not set; using sink default")

        message = NotificationMessage(
            text=services.redact(self.render(action.message, variables, context)),
            title=(
                services.redact(self.render(action.title, variables, context))
                if action.title
                else None
            ),
            channel=action.channel,
            pipeline=services.pipeline,
            status=variables.get("RUN_RESULT"),
            endpoint=endpoint or None,
        )

        try:
            receipt = await sink.send(message)
        except NotificationError as e:
            context.warn(str(e))
            return StepOutput(message="not delivered")
        except Exception as e:
            context.warn(f"Notification sink '{action.sink}' failed: {type(e).__name__}: {e}")
            return StepOutput(message="not delivered")

        return StepOutput(output=message.text, message=f"delivered via {receipt.sink}")


class CallableExecutor(ActionExecutor):
    """Invokes the Python callable of a CallableAction with the StageContext."""

    type_name = "callable"
    action_type = CallableAction

    async def execute(self, action: CallableAction, context: StageContext) -> StepOutput:
        result = action.func(context)
        if inspect.isawaitable(result):
            await result
        return StepOutput()


def create_default_registry() -> ExecutorRegistry:
    """Registry with the built-in executors."""
    registry = ExecutorRegistry()
    registry.register(CommandExecutor())
    registry.register(GateExecutor())
    registry.register(NotifyExecutor())
    registry.register(CallableExecutor())
    return registry


__all__ = [
    "ActionExecutor",
    "CallableExecutor",
    "CommandExecutor",
    "ExecutorRegistry",
    "GateExecutor",
    "NotifyExecutor",
    "StepOutput",
    "create_default_registry",
]
