"""
Stage-tree executor (PipelineRunner).

Walks a Stage Node tree, applies the scheduling and failure-propagation
rules, then hands the outcome to the post-run hook dispatcher.

Design Principles:
- The stage tree is read-only data; results live in a parallel StageRecord tree
- Collaborators (command adapter, gate signal, sinks, secrets) are injected
- Failures are values: ``run()`` always returns a RunOutcome
- Parallel children are asyncio tasks, each with a forked environment context
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from collections.abc import Mapping, Sequence
from datetime import UTC, datetime
from typing import Any

from ..config import Settings
from .command import CommandAdapter, SubprocessCommandAdapter
from .credentials import credential_scopes
from .environment import EnvironmentContext
from .exceptions import CancelledFailure, CredentialResolutionFailure, TimeoutFailure
from .execution_context import RunServices, StageContext
from .executors import ExecutorRegistry, create_default_registry
from .gate import GateSignal
from .hooks import HookDispatcher, PostRunHooks
from .notify import LoggingNotificationSink, NotificationSink
from .orchestrator import ActionOrchestrator
from .outcome import FailureCause, RunOutcome, StageRecord
from .schema import PipelineDefinition
from .secrets import EnvVarSecretProvider, SecretAuditLog, SecretProvider, SecretRedactor
from .stage_status import FailureKind, StageStatus
from .stages import LeafStage, ParallelStage, SequentialStage, validate_tree

logger = logging.getLogger(__name__)

Node = LeafStage | SequentialStage | ParallelStage

FALSE_VALUES = frozenset({"", "0", "false", "no", "off"})


def build_record(node: Node, parent_path: Sequence[str] = ()) -> StageRecord:
    """PENDING result tree mirroring ``node``."""
    path = [*parent_path, node.name]
    children = [] if isinstance(node, LeafStage) else [build_record(c, path) for c in node.children]
    return StageRecord(name=node.name, kind=node.kind, path=path, children=children)


def is_truthy(value: str | None) -> bool:
    return value is not None and value.strip().lower() not in FALSE_VALUES


class PipelineRunner:
    """
    Executes one run of a stage tree.

    Usage:
        runner = PipelineRunner(gate_signal=HttpGateSignal(url))
        outcome = await runner.run(pipeline)
        if not outcome.succeeded:
            print(outcome.cause.describe())
    """

    def __init__(
        self,
        *,
        command_adapter: CommandAdapter | None = None,
        secret_provider: SecretProvider | None = None,
        gate_signal: GateSignal | None = None,
        sinks: Mapping[str, NotificationSink] | None = None,
        executor_registry: ExecutorRegistry | None = None,
        settings: Settings | None = None,
        audit_log: SecretAuditLog | None = None,
    ):
        self.settings = settings or Settings()
        self.command_adapter = command_adapter or SubprocessCommandAdapter()
        self.secret_provider = secret_provider or EnvVarSecretProvider(self.settings.secret_prefix)
        self.gate_signal = gate_signal
        self.sinks: dict[str, NotificationSink] = {"default": LoggingNotificationSink()}
        self.sinks.update(sinks or {})
        self.executor_registry = executor_registry or create_default_registry()
        self.audit_log = audit_log or SecretAuditLog()
        self.orchestrator = ActionOrchestrator()

    # Public API

    async def run(
        self,
        pipeline: PipelineDefinition | Node,
        base_env: Mapping[str, Any] | None = None,
        hooks: PostRunHooks | None = None,
        *,
        run_id: str | None = None,
        timeout: float | None = None,
    ) -> RunOutcome:
        """
        Execute ``pipeline`` and dispatch its post-run hooks.

        Args:
            pipeline: Loaded definition or a bare stage tree
            base_env: Base environment (overrides the definition's environment)
            hooks: Post-run hooks (default: the definition's ``post``)
            run_id: Run identifier (default: random)
            timeout: Whole-run timeout in seconds (default: the definition's options.timeout)

        Returns:
            RunOutcome with the full result tree and hook records

        Raises:
            InvalidPipelineError: If the stage tree shares a node between parents
        """
        if isinstance(pipeline, PipelineDefinition):
            root = pipeline.root_stage
            env_values: dict[str, Any] = {**pipeline.environment, **(base_env or {})}
            hooks = hooks if hooks is not None else pipeline.post
            timeout = timeout or pipeline.options.timeout
            fail_fast = pipeline.options.fail_fast
        else:
            root = pipeline
            env_values = dict(base_env or {})
            fail_fast = None

        validate_tree(root)

        services = self._services(
            root.name,
            run_id or uuid.uuid4().hex[:12],
            self.settings.fail_fast if fail_fast is None else fail_fast,
        )
        base = {**env_values, "PIPELINE_NAME": services.pipeline, "RUN_ID": services.run_id}

        outcome = await self._execute_tree(root, base, services, timeout)
        logger.info(
            f"Pipeline '{outcome.pipeline}' {outcome.result.value} "
            f"in {outcome.duration_seconds:.1f}s"
        )
        return await self._dispatch(outcome, hooks, services, base)

    async def dispatch_hooks(
        self,
        outcome: RunOutcome,
        hooks: PostRunHooks | None,
        base_env: Mapping[str, Any] | None = None,
    ) -> RunOutcome:
        """Run post-run hooks for an existing outcome; returns the outcome with hook records."""
        services = self._services(outcome.pipeline, outcome.run_id, self.settings.fail_fast)
        base = {
            **(base_env or {}),
            "PIPELINE_NAME": outcome.pipeline,
            "RUN_ID": outcome.run_id,
        }
        return await self._dispatch(outcome, hooks, services, base)

    # Run assembly

    def _services(self, pipeline: str, run_id: str, fail_fast: bool) -> RunServices:
        return RunServices(
            pipeline=pipeline,
            run_id=run_id,
            command_adapter=self.command_adapter,
            executor_registry=self.executor_registry,
            secret_provider=self.secret_provider,
            redactor=SecretRedactor(),
            audit_log=self.audit_log,
            settings=self.settings,
            fail_fast=fail_fast,
            gate_signal=self.gate_signal,
            sinks=dict(self.sinks),
        )

    async def _execute_tree(
        self,
        root: Node,
        base: Mapping[str, Any],
        services: RunServices,
        timeout: float | None,
    ) -> RunOutcome:
        started_at = datetime.now(UTC).isoformat()
        started = time.monotonic()
        record = build_record(root)
        top = StageContext(services=services, env=EnvironmentContext(base), path=())

        logger.info(f"Starting pipeline '{services.pipeline}' (run {services.run_id})")
        try:
            async with asyncio.timeout(timeout):
                await self._run_node(root, record, top)
        except TimeoutError:
            failure = TimeoutFailure(f"Pipeline '{services.pipeline}'", timeout or 0)
            record.mark_subtree(StageStatus.ABORTED, message="run timed out")
            record.finish(StageStatus.ABORTED, FailureCause.from_exception(failure, record.path))
            logger.warning(failure.message)
        except Exception as e:
            # _run_node converts failures into records; anything here is an engine bug
            logger.exception(f"Pipeline '{services.pipeline}' crashed")
            cause = FailureCause(
                kind=FailureKind.ERROR, message=f"{type(e).__name__}: {e}", path=record.path
            )
            record.mark_subtree(StageStatus.ABORTED, message="run crashed")
            record.finish(StageStatus.FAILED, cause)

        warnings = tuple(f"{r.path_str}: {w}" for r in record.walk() for w in r.warnings)
        return RunOutcome(
            pipeline=services.pipeline,
            run_id=services.run_id,
            result=record.status,
            cause=record.cause,
            started_at=started_at,
            duration_seconds=round(time.monotonic() - started, 3),
            root=record.freeze(),
            warnings=warnings,
        )

    async def _dispatch(
        self,
        outcome: RunOutcome,
        hooks: PostRunHooks | None,
        services: RunServices,
        base: Mapping[str, Any],
    ) -> RunOutcome:
        if hooks is None:
            return outcome
        dispatcher = HookDispatcher(services, base, self.orchestrator)
        records = await dispatcher.dispatch(outcome, hooks)
        return outcome.with_hooks(records)

    # Tree walk

    async def _run_node(
        self,
        node: Node,
        record: StageRecord,
        parent: StageContext,
        env: EnvironmentContext | None = None,
    ) -> StageStatus:
        """
        Execute one node; its record ends in a terminal state.

        ``env`` replaces the parent's environment context (a fork, for
        parallel children). Cancellation marks the sub-tree ABORTED and
        propagates.
        """
        services = parent.services
        env = env if env is not None else parent.env

        if node.when is not None and not is_truthy(env.resolve(node.when)):
            record.mark_subtree(StageStatus.SKIPPED, message=f"condition '{node.when}' is false")
            logger.info(f"[{record.path_str}] skipped: condition '{node.when}' is false")
            return record.status

        context = parent.child(node.name, env=env, warnings=record.warnings)
        record.mark_running()
        logger.debug(f"[{record.path_str}] started")

        try:
            with env.layer({"STAGE_NAME": node.name, **node.environment}, label=f"stage:{node.name}"):
                async with credential_scopes(
                    env,
                    node.credentials,
                    services.secret_provider,
                    redactor=services.redactor,
                    audit_log=services.audit_log,
                    pipeline=services.pipeline,
                    stage=record.path_str,
                ):
                    if isinstance(node, LeafStage):
                        cause = await self.orchestrator.run_actions(
                            node.actions, context, record.steps
                        )
                        record.finish(
                            StageStatus.FAILED if cause else StageStatus.SUCCEEDED, cause
                        )
                    elif isinstance(node, SequentialStage):
                        await self._run_sequential(node, record, context)
                    else:
                        await self._run_parallel(node, record, context)
        except CredentialResolutionFailure as e:
            record.finish(StageStatus.FAILED, FailureCause.from_exception(e, record.path))
            record.mark_subtree(StageStatus.SKIPPED, message="not run: credentials unavailable")
        except asyncio.CancelledError:
            record.mark_subtree(StageStatus.ABORTED, message="cancelled")
            raise
        except Exception as e:
            logger.exception(f"[{record.path_str}] crashed")
            cause = FailureCause(
                kind=FailureKind.ERROR,
                message=services.redact(f"{type(e).__name__}: {e}"),
                path=record.path,
            )
            record.finish(StageStatus.FAILED, cause)
            record.mark_subtree(StageStatus.SKIPPED, message="not run: stage crashed")

        level = logging.INFO if record.status == StageStatus.SUCCEEDED else logging.WARNING
        logger.log(level, f"[{record.path_str}] {record.status.value}")
        return record.status

    async def _run_sequential(
        self, node: SequentialStage, record: StageRecord, context: StageContext
    ) -> None:
        """Children in order; the first FAILED/ABORTED child skips the rest."""
        for index, child in enumerate(node.children):
            child_record = record.children[index]
            status = await self._run_node(child, child_record, context)
            if status in (StageStatus.FAILED, StageStatus.ABORTED):
                for later in record.children[index + 1 :]:
                    later.mark_subtree(
                        StageStatus.SKIPPED, message=f"not run: '{child.name}' {status.value}"
                    )
                record.finish(status, child_record.cause)
                return
        record.finish(StageStatus.SUCCEEDED)

    async def _run_parallel(
        self, node: ParallelStage, record: StageRecord, context: StageContext
    ) -> None:
        """
        Children concurrently, each on a forked environment.

        fail-fast: the first FAILED child (lowest declaration index among
        children finishing in the same tick) cancels the others, which end
        ABORTED; the group carries the trigger's cause.

        Otherwise every child runs to completion and the group carries a
        composite of all failed children's causes in declaration order.
        """
        if not node.children:
            record.finish(StageStatus.SUCCEEDED)
            return

        fail_fast = context.services.fail_fast if node.fail_fast is None else node.fail_fast
        tasks = [
            asyncio.create_task(
                self._run_node(child, child_record, context, env=context.env.fork()),
                name=f"stage:{child_record.path_str}",
            )
            for child, child_record in zip(node.children, record.children, strict=True)
        ]
        index = {task: i for i, task in enumerate(tasks)}
        trigger: int | None = None

        try:
            pending = set(tasks)
            while pending:
                done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
                if not fail_fast:
                    continue
                failed = sorted(
                    index[t] for t in done if record.children[index[t]].status == StageStatus.FAILED
                )
                if failed:
                    trigger = failed[0]
                    break
            if pending:
                for task in pending:
                    task.cancel()
                await asyncio.gather(*pending, return_exceptions=True)
        except asyncio.CancelledError:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        if trigger is not None:
            trigger_record = record.children[trigger]
            aborted = CancelledFailure(trigger_record.name)
            for child_record in record.children:
                if child_record.status == StageStatus.ABORTED or not child_record.status.is_terminal():
                    child_record.mark_subtree(StageStatus.ABORTED, message=aborted.message)
                    child_record.cause = FailureCause.from_exception(aborted, child_record.path)
                    child_record.message = aborted.message
            logger.info(f"[{record.path_str}] fail-fast triggered by '{trigger_record.name}'")
            record.finish(StageStatus.FAILED, trigger_record.cause)
            return

        causes = [
            c.cause
            for c in record.children
            if c.status == StageStatus.FAILED and c.cause is not None
        ]
        if causes:
            record.finish(StageStatus.FAILED, FailureCause.composite(record.path, causes))
        else:
            record.finish(StageStatus.SUCCEEDED)


__all__ = ["PipelineRunner", "build_record", "is_truthy"]
