"""Command line interface for stageflow.

Commands:
    stageflow run PIPELINE.yaml [--env K=V ...] [--json] [--webhook-url URL]
                                [--gate-url TEMPLATE | --gate-command CMD]
    stageflow validate PIPELINE.yaml

Exit codes: 0 run succeeded, 1 run failed or aborted, 2 invalid definition
or arguments.
"""

from __future__ import annotations

import asyncio
import logging
import sys
from pathlib import Path

import typer

from .config import VALID_LOG_LEVELS, Settings, get_log_level
from .engine.command import SubprocessCommandAdapter
from .engine.gate import CommandGateSignal, GateSignal, HttpGateSignal
from .engine.loader import load_pipeline_from_file
from .engine.notify import WebhookNotificationSink
from .engine.outcome import RunOutcome
from .engine.pipeline_runner import PipelineRunner
from .engine.schema import PipelineDefinition
from .engine.secrets import SecretAuditLog
from .engine.stages import LeafStage, iter_nodes
from .formatting import format_outcome_json, format_outcome_text

logger = logging.getLogger(__name__)

EXIT_FAILED = 1
EXIT_INVALID = 2

app = typer.Typer(help="Run declarative stage pipelines.", no_args_is_help=True)


def configure_logging() -> None:
    """Log to stderr at STAGEFLOW_LOG_LEVEL (INFO when unset or invalid)."""
    log_level_str, valid = get_log_level()
    if not valid:
        print(
            "Warning: Invalid STAGEFLOW_LOG_LEVEL. "
            f"Valid levels: {', '.join(sorted(VALID_LOG_LEVELS))}. "
            "Using INFO.",
            file=sys.stderr,
        )
    logging.basicConfig(
        level=getattr(logging, log_level_str),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )


def parse_env_pairs(pairs: list[str]) -> dict[str, str]:
    """``["A=1", "B=x=y"]`` -> ``{"A": "1", "B": "x=y"}``."""
    env: dict[str, str] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise typer.BadParameter(f"expected KEY=VALUE, got '{pair}'", param_hint="--env")
        env[key] = value
    return env


def _load(pipeline_file: Path) -> PipelineDefinition:
    result = load_pipeline_from_file(pipeline_file)
    if not result.is_success or result.value is None:
        typer.echo(result.error, err=True)
        raise typer.Exit(code=EXIT_INVALID)
    return result.value


def _gate_signal(
    gate_url: str | None, gate_command: str | None, settings: Settings
) -> GateSignal | None:
    if gate_url:
        return HttpGateSignal(gate_url, poll_interval=settings.gate_poll_interval)
    if gate_command:
        return CommandGateSignal(
            SubprocessCommandAdapter(),
            gate_command,
            working_dir=settings.workspace,
            poll_interval=settings.gate_poll_interval,
        )
    return None


async def _execute(
    runner: PipelineRunner,
    pipeline: PipelineDefinition,
    base_env: dict[str, str],
    timeout: float | None,
    audit_log: Path | None,
) -> RunOutcome:
    outcome = await runner.run(pipeline, base_env, timeout=timeout)
    if audit_log is not None:
        await runner.audit_log.export_to_file(audit_log)
    return outcome


@app.callback()
def main_callback() -> None:
    configure_logging()


@app.command()
def run(
    pipeline_file: Path = typer.Argument(..., help="Pipeline definition (YAML)"),
    env: list[str] = typer.Option(
        [], "--env", "-e", help="KEY=VALUE added to the base environment (repeatable)"
    ),
    json_output: bool = typer.Option(False, "--json", help="Print the outcome as JSON"),
    webhook_url: str | None = typer.Option(
        None, help="Webhook URL of the 'webhook' notification sink (default: STAGEFLOW_WEBHOOK_URL)"
    ),
    gate_url: str | None = typer.Option(
        None, help="Quality-gate status URL template; {check} is replaced by the check name"
    ),
    gate_command: str | None = typer.Option(
        None, help="Command printing PASS/FAIL/PENDING for a check; {check} is replaced"
    ),
    fail_fast: bool | None = typer.Option(
        None, "--fail-fast/--no-fail-fast", help="Default fail-fast for parallel groups"
    ),
    timeout: float | None = typer.Option(None, help="Whole-run timeout in seconds"),
    workspace: Path | None = typer.Option(None, help="Default working directory for commands"),
    audit_log: Path | None = typer.Option(
        None, help="Write the credential access audit log (JSON) to this file"
    ),
) -> None:
    """Execute a pipeline and its post-run hooks."""
    pipeline = _load(pipeline_file)
    base_env = parse_env_pairs(env)

    settings = Settings.from_env()
    if workspace is not None:
        settings = settings.model_copy(update={"workspace": str(workspace)})
    if fail_fast is not None:
        pipeline.options.fail_fast = fail_fast

    runner = PipelineRunner(
        gate_signal=_gate_signal(gate_url, gate_command, settings),
        sinks={"webhook": WebhookNotificationSink(webhook_url or settings.webhook_url)},
        settings=settings,
        audit_log=SecretAuditLog(),
    )
    outcome = asyncio.run(_execute(runner, pipeline, base_env, timeout, audit_log))

    typer.echo(format_outcome_json(outcome) if json_output else format_outcome_text(outcome))
    raise typer.Exit(code=0 if outcome.succeeded else EXIT_FAILED)


@app.command()
def validate(
    pipeline_file: Path = typer.Argument(..., help="Pipeline definition (YAML)"),
) -> None:
    """Check a pipeline definition without running it."""
    pipeline = _load(pipeline_file)
    nodes = list(iter_nodes(pipeline.root_stage))[1:]
    actions = sum(len(n.actions) for n in nodes if isinstance(n, LeafStage))
    typer.echo(f"Valid pipeline '{pipeline.name}': {len(nodes)} stages, {actions} actions")


def main() -> None:
    app()


__all__ = ["app", "configure_logging", "main", "parse_env_pairs"]
