"""Tests for post-run hook dispatch."""

import pytest
from test_utils import leaf, seq

from stageflow.engine.actions import CallableAction, GateAction
from stageflow.engine.credentials import CredentialBinding
from stageflow.engine.hooks import Hook, PostRunHooks, hook_environment
from stageflow.engine.notify import WebhookNotificationSink
from stageflow.engine.pipeline_runner import PipelineRunner
from stageflow.engine.secrets import StaticSecretProvider
from stageflow.engine.stage_status import FailureKind, StageStatus
from stageflow.engine.stages import LeafStage

HOOKS = {
    "success": ["notify-success"],
    "failure": ["notify-failure"],
    "always": ["cleanup"],
}


def _succeeded(adapter, gate_signal):
    return seq("CI", leaf("Build", "make")), {}


def _command_failure(adapter, gate_signal):
    adapter.fail("make test")
    return seq("CI", leaf("Build", "make"), leaf("Test", "make test")), {}


def _gate_failure(adapter, gate_signal):
    gate_signal.resolve("quality", False)
    gate = LeafStage(name="Gate", actions=[GateAction(check="quality", max_duration=1)])
    return seq("CI", gate), {}


def _gate_timeout(adapter, gate_signal):
    gate = LeafStage(name="Gate", actions=[GateAction(check="quality", max_duration=0.05)])
    return seq("CI", gate), {}


def _credential_failure(adapter, gate_signal):
    binding = CredentialBinding(name="deploy", variables={"KEY": "not_configured"})
    return seq("CI", leaf("Deploy", "deploy", credentials=[binding])), {}


def _aborted(adapter, gate_signal):
    adapter.script("integration", delay=5)
    return seq("CI", leaf("Test", "integration")), {"timeout": 0.1}


SCENARIOS = {
    "succeeded": (_succeeded, StageStatus.SUCCEEDED, None),
    "command-failure": (_command_failure, StageStatus.FAILED, FailureKind.COMMAND),
    "gate-failure": (_gate_failure, StageStatus.FAILED, FailureKind.GATE),
    "gate-timeout": (_gate_timeout, StageStatus.FAILED, FailureKind.TIMEOUT),
    "credential-failure": (_credential_failure, StageStatus.FAILED, FailureKind.CREDENTIAL),
    "aborted": (_aborted, StageStatus.ABORTED, FailureKind.TIMEOUT),
}


@pytest.mark.asyncio
@pytest.mark.parametrize("scenario", list(SCENARIOS))
async def test_always_hook_runs_for_every_outcome(runner, adapter, gate_signal, scenario):
    build, expected_result, expected_kind = SCENARIOS[scenario]
    tree, kwargs = build(adapter, gate_signal)

    outcome = await runner.run(tree, hooks=PostRunHooks.model_validate(HOOKS), **kwargs)

    assert outcome.result == expected_result
    assert (outcome.cause.kind if outcome.cause else None) == expected_kind
    assert adapter.commands[-1] == "cleanup"
    conditional = "notify-success" if expected_result == StageStatus.SUCCEEDED else "notify-failure"
    other = "notify-failure" if conditional == "notify-success" else "notify-success"
    assert conditional in adapter.commands
    assert other not in adapter.commands
    assert [h.hook for h in outcome.hooks] == [
        "on_success" if expected_result == StageStatus.SUCCEEDED else "on_failure",
        "always",
    ]


@pytest.mark.asyncio
async def test_always_runs_after_failing_conditional_hook(runner, adapter):
    adapter.fail("notify-success", stderr="chat service down")

    outcome = await runner.run(seq("CI", leaf("Build", "make")), hooks=PostRunHooks.model_validate(HOOKS))

    assert outcome.result == StageStatus.SUCCEEDED
    success_hook = outcome.hook("on_success")
    assert success_hook.status == StageStatus.FAILED
    assert success_hook.cause.kind == FailureKind.COMMAND
    assert outcome.hook("always").status == StageStatus.SUCCEEDED
    assert adapter.commands[-1] == "cleanup"
    assert any("on_success" in w and "failed" in w for w in outcome.warnings)


@pytest.mark.asyncio
async def test_always_runs_after_crashing_conditional_hook(runner, adapter):
    def crash(context):
        raise RuntimeError("hook bug")

    hooks = PostRunHooks(
        on_failure=Hook(actions=[CallableAction(name="crash", func=crash)]),
        always=Hook(steps=["cleanup"]),
    )
    adapter.fail("make")

    outcome = await runner.run(seq("CI", leaf("Build", "make")), hooks=hooks)

    assert outcome.hook("on_failure").cause.kind == FailureKind.ERROR
    assert outcome.hook("always").status == StageStatus.SUCCEEDED
    assert outcome.result == StageStatus.FAILED
    assert outcome.cause.kind == FailureKind.COMMAND


@pytest.mark.asyncio
async def test_hook_credential_failure_is_recorded(runner, adapter):
    hooks = PostRunHooks.model_validate(
        {
            "success": {
                "credentials": [{"name": "chat", "variables": {"HOOK_URL": "not_configured"}}],
                "steps": ["notify-success"],
            },
            "always": ["cleanup"],
        }
    )

    outcome = await runner.run(seq("CI", leaf("Build", "make")), hooks=hooks)

    assert outcome.hook("on_success").cause.kind == FailureKind.CREDENTIAL
    assert "notify-success" not in adapter.commands
    assert adapter.commands[-1] == "cleanup"


@pytest.mark.asyncio
async def test_hook_environment_describes_run(runner, adapter):
    adapter.fail("make test", stderr="2 tests failed")
    hooks = PostRunHooks.model_validate({"failure": ["notify-failure"]})

    await runner.run(
        seq("CI", leaf("Build", "make"), leaf("Test", "make test")),
        {"BRANCH": "main"},
        hooks=hooks,
        run_id="run-7",
    )

    env = adapter.env_of("notify-failure")
    assert env["RUN_RESULT"] == "FAILED"
    assert env["FAILED_STAGE"] == "CI / Test"
    assert "2 tests failed" in env["FAILURE_MESSAGE"]
    assert env["PIPELINE_NAME"] == "CI"
    assert env["RUN_ID"] == "run-7"
    assert env["BRANCH"] == "main"
    assert float(env["RUN_DURATION"]) >= 0


@pytest.mark.asyncio
async def test_aborted_run_selects_failure_hook(runner, adapter, sink):
    adapter.script("integration", delay=5)
    hooks = PostRunHooks.model_validate(
        {"failure": [{"notify": "{{ PIPELINE_NAME }} {{ RUN_RESULT }}"}]}
    )

    outcome = await runner.run(seq("CI", leaf("Test", "integration")), hooks=hooks, timeout=0.1)

    assert outcome.result == StageStatus.ABORTED
    assert sink.texts == ["CI ABORTED"]
    assert sink.messages[0].status == "ABORTED"


@pytest.mark.asyncio
async def test_webhook_endpoint_from_hook_credential(adapter, settings, webhook_server):
    provider = StaticSecretProvider({"chat_webhook": webhook_server.url_for("/hook")})
    runner = PipelineRunner(
        command_adapter=adapter,
        secret_provider=provider,
        sinks={"webhook": WebhookNotificationSink()},
        settings=settings,
    )
    hooks = PostRunHooks.model_validate(
        {
            "failure": {
                "credentials": [{"name": "chat", "variables": {"CHAT_WEBHOOK": "chat_webhook"}}],
                "steps": [
                    {
                        "notify": "{{ PIPELINE_NAME }} failed at {{ FAILED_STAGE }}",
                        "title": "Build {{ RUN_RESULT }}",
                        "channel": "#builds",
                        "sink": "webhook",
                        "endpoint_env": "CHAT_WEBHOOK",
                    }
                ],
            }
        }
    )
    adapter.fail("make")

    outcome = await runner.run(seq("CI", leaf("Build", "make")), hooks=hooks)

    assert outcome.hook("on_failure").status == StageStatus.SUCCEEDED
    assert webhook_server.payloads == [
        {"text": "*Build FAILED*\nCI failed at CI / Build", "channel": "#builds", "username": "CI"}
    ]


@pytest.mark.asyncio
async def test_dispatch_hooks_for_existing_outcome(runner, adapter):
    outcome = await runner.run(seq("CI", leaf("Build", "make")))
    assert outcome.hooks == ()

    with_hooks = await runner.dispatch_hooks(outcome, PostRunHooks.model_validate(HOOKS))

    assert [h.hook for h in with_hooks.hooks] == ["on_success", "always"]
    assert adapter.commands == ["make", "notify-success", "cleanup"]
    assert outcome.hooks == ()


@pytest.mark.asyncio
async def test_hook_environment_overlay(runner, adapter):
    hooks = PostRunHooks.model_validate(
        {"always": {"environment": {"KEEP_IMAGES": 3}, "steps": ["prune"]}}
    )

    await runner.run(seq("CI", leaf("Build", "make")), hooks=hooks)

    assert adapter.env_of("prune")["KEEP_IMAGES"] == "3"
    assert adapter.env_of("prune")["RUN_RESULT"] == "SUCCEEDED"


def test_hook_shorthand_and_default_names():
    hooks = PostRunHooks.model_validate(
        {"on_success": ["deploy-docs"], "failure": {"name": "page-oncall", "steps": ["page"]}}
    )

    assert hooks.on_success.name == "on_success"
    assert hooks.on_success.actions[0].run == "deploy-docs"
    assert hooks.on_failure.name == "page-oncall"
    assert hooks.always is None


def test_hooks_reject_unknown_kind():
    with pytest.raises(ValueError):
        PostRunHooks.model_validate({"on_abort": ["x"]})


@pytest.mark.asyncio
async def test_hook_environment_for_success(runner):
    outcome = await runner.run(seq("CI", leaf("Build", "make")))

    env = hook_environment(outcome)

    assert env["RUN_RESULT"] == "SUCCEEDED"
    assert env["FAILED_STAGE"] == ""
    assert env["FAILURE_MESSAGE"] == ""
