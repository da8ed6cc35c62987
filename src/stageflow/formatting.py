"""Formatting of run outcomes for the command line.

- Text format: indented result tree, failure cause, warnings and hooks
- JSON format: ``RunOutcome.model_dump(mode="json")``
"""

import json
from typing import Any

from .engine.outcome import RunOutcome, StageResult
from .engine.stage_status import StageStatus

STATUS_MARKERS = {
    StageStatus.SUCCEEDED: "ok",
    StageStatus.FAILED: "FAILED",
    StageStatus.ABORTED: "ABORTED",
    StageStatus.SKIPPED: "skipped",
    StageStatus.PENDING: "pending",
    StageStatus.RUNNING: "running",
}


def _format_duration(duration_ms: int | None) -> str:
    if duration_ms is None:
        return ""
    if duration_ms < 1000:
        return f" ({duration_ms}ms)"
    return f" ({duration_ms / 1000:.1f}s)"


def format_stage_tree(record: StageResult, indent: int = 0) -> list[str]:
    """One line per node, children indented under their group."""
    marker = STATUS_MARKERS[record.status]
    line = f"{'  ' * indent}[{marker}] {record.name}{_format_duration(record.duration_ms)}"
    if record.status in (StageStatus.FAILED, StageStatus.SKIPPED) and record.message:
        line += f": {record.message}"
    elif record.status == StageStatus.FAILED and record.cause and not record.children:
        line += f": {record.cause.message.splitlines()[0]}"
    lines = [line]
    for child in record.children:
        lines.extend(format_stage_tree(child, indent + 1))
    return lines


def format_outcome_text(outcome: RunOutcome) -> str:
    """Human-readable report of one run."""
    lines = [
        f"Pipeline: {outcome.pipeline} (run {outcome.run_id})",
        f"Result: {outcome.result.value.upper()} in {outcome.duration_seconds:.1f}s",
        "",
        *format_stage_tree(outcome.root),
    ]

    if outcome.cause is not None:
        lines.extend(["", "Cause:"])
        if outcome.cause.is_composite:
            lines.extend(f"  - {cause.describe()}" for cause in outcome.cause.causes)
        else:
            lines.append(f"  {outcome.cause.describe()}")

    if outcome.hooks:
        lines.extend(["", "Hooks:"])
        for hook in outcome.hooks:
            lines.append(f"  [{STATUS_MARKERS[hook.status]}] {hook.hook}: {hook.name}")

    if outcome.warnings:
        lines.extend(["", "Warnings:"])
        lines.extend(f"  - {warning}" for warning in outcome.warnings)

    return "\n".join(lines)


def outcome_to_dict(outcome: RunOutcome) -> dict[str, Any]:
    return outcome.model_dump(mode="json")


def format_outcome_json(outcome: RunOutcome) -> str:
    return json.dumps(outcome_to_dict(outcome), indent=2)
