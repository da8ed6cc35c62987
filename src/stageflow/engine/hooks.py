"""
Post-run hooks: condition-gated scopes executed after the stage tree.

Exactly one of ``on_success`` / ``on_failure`` runs, chosen by the run
result (SUCCEEDED selects ``on_success``; FAILED and ABORTED select
``on_failure``). ``always`` runs afterwards from a ``finally`` block, so it
runs even if the conditional hook failed. Hook failures are recorded,
never raised.

Example (YAML):
    post:
      failure:
        credentials:
          - name: chat
            variables: {CHAT_WEBHOOK: chat_webhook}
        steps:
          - notify: "{{ PIPELINE_NAME }} failed at {{ FAILED_STAGE }}"
            sink: webhook
            endpoint_env: CHAT_WEBHOOK
      always:
        - run: docker system prune -f
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Mapping
from typing import Any

from pydantic import AliasChoices, BaseModel, Field, field_validator, model_validator

from .actions import Action, EnvValue, normalize_actions
from .credentials import CredentialBinding, credential_scopes
from .environment import EnvironmentContext
from .exceptions import CredentialResolutionFailure
from .execution_context import RunServices, StageContext
from .orchestrator import ActionOrchestrator
from .outcome import FailureCause, HookKind, HookRecord, RunOutcome, StepRecord
from .stage_status import FailureKind, StageStatus

logger = logging.getLogger(__name__)


class Hook(BaseModel):
    """One post-run hook: a named scope with credentials, environment and actions."""

    model_config = {"extra": "forbid"}

    name: str = Field(default="", description="Display name (defaults to the hook kind)")
    environment: dict[str, EnvValue] = Field(default_factory=dict)
    credentials: list[CredentialBinding] = Field(default_factory=list)
    actions: list[Action] = Field(
        default_factory=list, validation_alias=AliasChoices("actions", "steps")
    )

    @field_validator("actions", mode="before")
    @classmethod
    def normalize_steps(cls, v: Any) -> Any:  # noqa: ANN401
        return normalize_actions(v)


def _hook_shorthand(v: Any) -> Any:  # noqa: ANN401
    # A bare list of steps is a hook without credentials or environment
    if isinstance(v, list):
        return {"steps": v}
    return v


class PostRunHooks(BaseModel):
    """The hook set handed to the dispatcher."""

    model_config = {"extra": "forbid"}

    on_success: Hook | None = Field(
        default=None, validation_alias=AliasChoices("on_success", "success")
    )
    on_failure: Hook | None = Field(
        default=None, validation_alias=AliasChoices("on_failure", "failure")
    )
    always: Hook | None = None

    @field_validator("on_success", "on_failure", "always", mode="before")
    @classmethod
    def expand_shorthand(cls, v: Any) -> Any:  # noqa: ANN401
        return _hook_shorthand(v)

    @model_validator(mode="after")
    def default_names(self) -> PostRunHooks:
        for kind in ("on_success", "on_failure", "always"):
            hook = getattr(self, kind)
            if hook is not None and not hook.name:
                hook.name = kind
        return self


def hook_environment(outcome: RunOutcome) -> dict[str, str]:
    """Variables describing the finished run, visible to every hook."""
    primary = outcome.cause.primary() if outcome.cause is not None else None
    return {
        "RUN_RESULT": outcome.result.value.upper(),
        "RUN_DURATION": f"{outcome.duration_seconds:.1f}",
        "FAILED_STAGE": primary.path_str if primary is not None else "",
        "FAILURE_MESSAGE": primary.message if primary is not None else "",
    }


class HookDispatcher:
    """Runs the post-run hooks of one run in the guaranteed order."""

    def __init__(
        self,
        services: RunServices,
        base_env: Mapping[str, Any],
        orchestrator: ActionOrchestrator | None = None,
    ):
        self.services = services
        self.base_env = dict(base_env)
        self.orchestrator = orchestrator or ActionOrchestrator()

    async def dispatch(self, outcome: RunOutcome, hooks: PostRunHooks | None) -> list[HookRecord]:
        """
        Run the conditional hook for ``outcome`` followed by ``always``.

        Returns:
            One HookRecord per hook that was declared and run, in run order
        """
        records: list[HookRecord] = []
        if hooks is None:
            return records

        env = EnvironmentContext(self.base_env)
        env.push(hook_environment(outcome), label="run-result")

        kind: HookKind = "on_success" if outcome.succeeded else "on_failure"
        conditional = hooks.on_success if outcome.succeeded else hooks.on_failure

        try:
            if conditional is not None:
                records.append(await self._run_hook(kind, conditional, env.fork()))
        finally:
            if hooks.always is not None:
                records.append(await self._run_hook("always", hooks.always, env.fork()))

        return records

    async def _run_hook(self, kind: HookKind, hook: Hook, env: EnvironmentContext) -> HookRecord:
        started = time.monotonic()
        context = StageContext(services=self.services, env=env, path=(hook.name,))
        steps: list[StepRecord] = []
        cause: FailureCause | None = None
        status = StageStatus.SUCCEEDED

        logger.info(f"Running {kind} hook '{hook.name}'")
        try:
            with env.layer(hook.environment, label=f"hook:{hook.name}"):
                async with credential_scopes(
                    env,
                    hook.credentials,
                    self.services.secret_provider,
                    redactor=self.services.redactor,
                    audit_log=self.services.audit_log,
                    pipeline=self.services.pipeline,
                    stage=hook.name,
                ):
                    cause = await self.orchestrator.run_actions(hook.actions, context, steps)
        except CredentialResolutionFailure as e:
            cause = FailureCause.from_exception(e, context.path)
        except asyncio.CancelledError:
            logger.warning(f"{kind} hook '{hook.name}' cancelled")
            raise
        except Exception as e:
            logger.exception(f"{kind} hook '{hook.name}' crashed")
            cause = FailureCause(
                kind=FailureKind.ERROR,
                message=self.services.redact(f"{type(e).__name__}: {e}"),
                path=list(context.path),
            )

        if cause is not None:
            status = StageStatus.FAILED
            logger.warning(f"{kind} hook '{hook.name}' failed: {cause.message}")

        return HookRecord(
            hook=kind,
            name=hook.name,
            status=status,
            cause=cause,
            warnings=tuple(context.warnings),
            steps=tuple(step.freeze() for step in steps),
            duration_ms=int((time.monotonic() - started) * 1000),
        )


__all__ = ["Hook", "HookDispatcher", "PostRunHooks", "hook_environment"]
