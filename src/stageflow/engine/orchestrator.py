"""
Action orchestration for leaf stages and post-run hooks.

Bridges executors (which return StepOutput or raise) and the result tree
(which needs StepRecord values and a FailureCause):

- Call executor.execute() for each action in order
- Catch StageFailure -> FAILED step + cause of the failure's kind
- Catch other exceptions -> FAILED step + ``error`` cause (logged with traceback)
- Let cancellation through after marking the running step ABORTED
- Redact and truncate captured output
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence

from .actions import Action
from .exceptions import StageFailure
from .execution_context import StageContext
from .outcome import FailureCause, StepRecord
from .stage_status import FailureKind, StageStatus

logger = logging.getLogger(__name__)


def truncate(text: str, limit: int) -> str:
    """Keep the last ``limit`` characters (the end of a log is the interesting part)."""
    if limit <= 0 or len(text) <= limit:
        return text
    return f"...[{len(text) - limit} chars truncated]...\n{text[-limit:]}"


class ActionOrchestrator:
    """Runs an ordered list of actions; the first failure stops the list."""

    async def run_actions(
        self,
        actions: Sequence[Action],
        context: StageContext,
        steps: list[StepRecord],
    ) -> FailureCause | None:
        """
        Execute ``actions`` in order, appending one StepRecord per started action.

        Returns:
            None if every action succeeded, otherwise the failure cause

        Raises:
            asyncio.CancelledError: If the run (or a fail-fast sibling) cancels this stage
        """
        services = context.services
        registry = services.executor_registry
        limit = services.settings.output_limit

        for action in actions:
            step = StepRecord(type=action.type, description=services.redact(action.describe()))
            steps.append(step)
            executor = registry.get(action.type)

            try:
                output = await executor.execute(action, context)
            except asyncio.CancelledError:
                step.finish(StageStatus.ABORTED, message="cancelled")
                raise
            except StageFailure as e:
                message = services.redact(e.message)
                exit_code = getattr(e, "exit_code", None)
                step.finish(StageStatus.FAILED, exit_code=exit_code, message=message)
                logger.info(f"[{context.path_str}] {action.type} failed: {message}")
                return FailureCause.from_exception(e, context.path, message=message)
            except Exception as e:
                message = services.redact(f"{type(e).__name__}: {e}")
                step.finish(StageStatus.FAILED, message=message)
                logger.exception(f"[{context.path_str}] {action.type} crashed")
                return FailureCause(kind=FailureKind.ERROR, message=message, path=list(context.path))

            step.finish(
                StageStatus.SUCCEEDED,
                exit_code=output.exit_code,
                output=truncate(services.redact(output.output), limit),
                message=output.message,
            )

        return None


__all__ = ["ActionOrchestrator", "truncate"]
