"""Shared test configuration for stageflow tests.

Configures test environment including:
- Test secrets in the process environment (EnvVarSecretProvider)
- Scripted command adapter, recording sink and manual gate signal
- A PipelineRunner wired to those fakes
- HTTP mock endpoints for webhook and quality-gate tests
"""

import json
from collections.abc import Iterator

import pytest
from pytest_httpserver import HTTPServer
from test_secrets import TEST_SECRET_VALUES
from test_secrets import setup_test_secrets as _setup_secrets
from test_secrets import teardown_test_secrets as _teardown_secrets
from test_utils import RecordingSink, ScriptedCommandAdapter
from werkzeug.wrappers import Request, Response

from stageflow.config import Settings
from stageflow.engine.gate import ManualGateSignal
from stageflow.engine.pipeline_runner import PipelineRunner
from stageflow.engine.secrets import SecretAuditLog, StaticSecretProvider


@pytest.fixture(scope="session", autouse=True)
def setup_test_secrets() -> Iterator[None]:
    """Configure test secrets (STAGEFLOW_SECRET_*) for all tests."""
    _setup_secrets()
    yield
    _teardown_secrets()


@pytest.fixture
def adapter() -> ScriptedCommandAdapter:
    return ScriptedCommandAdapter()


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def gate_signal() -> ManualGateSignal:
    return ManualGateSignal()


@pytest.fixture
def secret_provider() -> StaticSecretProvider:
    return StaticSecretProvider(TEST_SECRET_VALUES)


@pytest.fixture
def audit_log() -> SecretAuditLog:
    return SecretAuditLog()


@pytest.fixture
def settings() -> Settings:
    return Settings(gate_poll_interval=0.01)


@pytest.fixture
def runner(adapter, sink, gate_signal, secret_provider, audit_log, settings) -> PipelineRunner:
    """Runner wired to scripted collaborators; the recording sink is the default sink."""
    return PipelineRunner(
        command_adapter=adapter,
        secret_provider=secret_provider,
        gate_signal=gate_signal,
        sinks={"default": sink},
        settings=settings,
        audit_log=audit_log,
    )


@pytest.fixture
def webhook_server(httpserver: HTTPServer) -> HTTPServer:
    """
    Local chat-webhook endpoint recording every JSON payload.

    POST /hook -> 200, payloads available as ``webhook_server.payloads``
    POST /broken -> 500
    """
    payloads: list[dict] = []

    def hook_handler(request: Request) -> Response:
        payloads.append(request.get_json())
        return Response("ok", status=200)

    httpserver.expect_request("/hook", method="POST").respond_with_handler(hook_handler)
    httpserver.expect_request("/broken", method="POST").respond_with_data("boom", status=500)
    httpserver.payloads = payloads  # type: ignore[attr-defined]
    return httpserver


@pytest.fixture
def quality_gate_server(httpserver: HTTPServer) -> HTTPServer:
    """
    Quality-gate status endpoint in the SonarQube response shape.

    /api/qualitygates/project_status?projectKey=<check> answers
    ``IN_PROGRESS`` for the first ``pending_polls`` requests of a check, then
    the status configured in ``verdicts`` (default OK).
    """
    polls: dict[str, int] = {}
    verdicts: dict[str, str] = {}
    settings = {"pending_polls": 2}

    def status_handler(request: Request) -> Response:
        check = request.args.get("projectKey", "")
        polls[check] = polls.get(check, 0) + 1
        if polls[check] <= settings["pending_polls"]:
            status = "IN_PROGRESS"
        else:
            status = verdicts.get(check, "OK")
        body = {"projectStatus": {"status": status}}
        return Response(json.dumps(body), content_type="application/json")

    httpserver.expect_request("/api/qualitygates/project_status").respond_with_handler(
        status_handler
    )
    httpserver.polls = polls  # type: ignore[attr-defined]
    httpserver.verdicts = verdicts  # type: ignore[attr-defined]
    httpserver.gate_settings = settings  # type: ignore[attr-defined]
    return httpserver
