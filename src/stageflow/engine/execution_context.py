"""
Execution context for dependency injection into action executors.

Provides access to:
- Run-wide services (command adapter, gate signal, sinks, secrets, settings)
- The stage's environment context (layered, forked per parallel branch)
- The stage's path and warning list

Design:
- RunServices is shared by every stage of one run
- StageContext is per stage; ``child()`` derives the context of a sub-stage
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from ..config import Settings
from .command import CommandAdapter
from .environment import EnvironmentContext
from .secrets import SecretAuditLog, SecretProvider, SecretRedactor

if TYPE_CHECKING:
    from .executors import ExecutorRegistry
    from .gate import GateSignal
    from .notify import NotificationSink

logger = logging.getLogger(__name__)


@dataclass
class RunServices:
    """Collaborators shared by every stage of one run."""

    pipeline: str
    run_id: str
    command_adapter: CommandAdapter
    executor_registry: ExecutorRegistry
    secret_provider: SecretProvider
    redactor: SecretRedactor
    audit_log: SecretAuditLog
    settings: Settings
    fail_fast: bool = False  # default for parallel groups that do not declare it
    gate_signal: GateSignal | None = None
    sinks: dict[str, NotificationSink] = field(default_factory=dict)

    def redact(self, text: str) -> str:
        return self.redactor.redact(text)


@dataclass
class StageContext:
    """
    Context handed to action executors.

    ``warnings`` is the list of the owning record, so executors can record
    non-fatal conditions (gate timeout with policy continue, failed
    notification) directly.
    """

    services: RunServices
    env: EnvironmentContext
    path: tuple[str, ...]
    warnings: list[str] = field(default_factory=list)

    @property
    def path_str(self) -> str:
        return " / ".join(self.path)

    @property
    def stage_name(self) -> str:
        return self.path[-1] if self.path else ""

    def child(
        self,
        name: str,
        env: EnvironmentContext | None = None,
        warnings: list[str] | None = None,
    ) -> StageContext:
        """Context for a sub-stage; ``env`` defaults to this stage's context."""
        return StageContext(
            services=self.services,
            env=env if env is not None else self.env,
            path=self.path + (name,),
            warnings=warnings if warnings is not None else [],
        )

    def warn(self, message: str) -> None:
        message = self.services.redact(message)
        logger.warning(f"[{self.path_str}] {message}")
        self.warnings.append(message)


__all__ = ["RunServices", "StageContext"]
