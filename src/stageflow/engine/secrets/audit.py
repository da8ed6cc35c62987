"""Trail of credential scope entries and exits.

A scope writes one ``materialize`` event per secret key when it opens and
one ``revoke`` event per key when it closes, including on failure. Events
name the key and the stage path that declared the binding; the value never
appears. ``stageflow run --audit-log FILE`` dumps the trail as JSON.
"""

import json
import logging
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)

AuditAction = Literal["materialize", "revoke"]

AUDIT_FORMAT_VERSION = "1.0"


def _now() -> str:
    return datetime.now(UTC).isoformat()


class SecretAccessEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    timestamp: str = Field(default_factory=_now)
    pipeline: str
    stage: str = Field(description="Stage or hook path that declared the binding")
    binding: str
    secret_key: str
    action: AuditAction
    success: bool
    error_message: str | None = None

    def describe(self) -> str:
        state = "ok" if self.success else "FAILED"
        text = (
            f"{self.action} {self.binding}.{self.secret_key} [{state}] "
            f"at {self.pipeline} / {self.stage}"
        )
        return f"{text}: {self.error_message}" if self.error_message else text


class SecretAuditLog:
    """Append-only, in-memory list of ``SecretAccessEvent``."""

    def __init__(self) -> None:
        self.events: list[SecretAccessEvent] = []

    async def log_access(
        self,
        pipeline: str,
        stage: str,
        binding: str,
        secret_key: str,
        action: AuditAction,
        success: bool,
        error_message: str | None = None,
    ) -> None:
        event = SecretAccessEvent(
            pipeline=pipeline,
            stage=stage,
            binding=binding,
            secret_key=secret_key,
            action=action,
            success=success,
            error_message=error_message,
        )
        self.events.append(event)
        logger.log(logging.DEBUG if success else logging.WARNING, f"Credential {event.describe()}")

    def get_events(self, **filters: Any) -> list[SecretAccessEvent]:
        """Events whose fields equal every given filter (``stage="Push"``).

        Unknown filter names raise ``KeyError`` instead of matching nothing.
        """
        unknown = set(filters) - set(SecretAccessEvent.model_fields)
        if unknown:
            raise KeyError(f"Unknown audit field(s): {', '.join(sorted(unknown))}")
        return [
            event
            for event in self.events
            if all(getattr(event, name) == wanted for name, wanted in filters.items())
        ]

    def get_summary(self) -> dict[str, Any]:
        return {
            "total_events": len(self.events),
            "materialized": len(self.get_events(action="materialize", success=True)),
            "revoked": len(self.get_events(action="revoke")),
            "failed": len(self.get_events(success=False)),
            "unique_secrets": len({event.secret_key for event in self.events}),
        }

    async def export_to_file(self, file_path: str | Path) -> None:
        """Write the trail as JSON, creating parent directories.

        Raises:
            OSError: The file could not be written
        """
        target = Path(file_path)
        target.parent.mkdir(parents=True, exist_ok=True)
        document = {
            "audit_log_version": AUDIT_FORMAT_VERSION,
            "total_events": len(self.events),
            "events": [event.model_dump() for event in self.events],
        }
        target.write_text(json.dumps(document, indent=2), encoding="utf-8")
        logger.info(f"Wrote {len(self.events)} credential audit events to {target}")
