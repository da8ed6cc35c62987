"""
Bounded wait for an asynchronous external quality decision.

A GateSignal reports PASS/FAIL for a named check, either by subscription
(``ManualGateSignal``) or by polling (``HttpGateSignal``, ``CommandGateSignal``).
``wait_for_gate`` bounds the wait with ``asyncio.wait_for``; the wait only
suspends the awaiting task, and cancelling that task (an ancestor abort)
cancels the wait.
"""

from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any
from urllib.parse import quote

import httpx

from .command import CommandAdapter
from .stage_status import GateResult

logger = logging.getLogger(__name__)

PASS_VALUES = frozenset({"OK", "PASS", "PASSED", "SUCCESS"})
FAIL_VALUES = frozenset({"ERROR", "FAIL", "FAILED", "FAILURE"})


@dataclass(frozen=True)
class GateDecision:
    """Final decision reported by the external system."""

    passed: bool
    detail: str | None = None


@dataclass(frozen=True)
class GateOutcome:
    """Result of one bounded wait."""

    result: GateResult
    waited_seconds: float
    detail: str | None = None


def parse_verdict(value: Any) -> GateDecision | None:  # noqa: ANN401
    """Map a raw status value to a decision; None while still pending."""
    if value is None:
        return None
    text = str(value).strip().upper()
    if text in PASS_VALUES:
        return GateDecision(passed=True, detail=text)
    if text in FAIL_VALUES:
        return GateDecision(passed=False, detail=text)
    return None


class GateSignal(ABC):
    """Source of PASS/FAIL decisions keyed by check name."""

    @abstractmethod
    async def wait(self, check: str, poll_interval: float | None = None) -> GateDecision:
        """Suspend until the decision for ``check`` is known."""
        pass


class ManualGateSignal(GateSignal):
    """
    Subscription signal resolved programmatically.

    Example:
        signal = ManualGateSignal()
        loop.call_later(10, signal.resolve, "quality-gate", True)
        outcome = await wait_for_gate(signal, "quality-gate", max_duration=60)
    """

    def __init__(self) -> None:
        self._events: dict[str, asyncio.Event] = {}
        self._decisions: dict[str, GateDecision] = {}

    def _event(self, check: str) -> asyncio.Event:
        if check not in self._events:
            self._events[check] = asyncio.Event()
        return self._events[check]

    def resolve(self, check: str, passed: bool, detail: str | None = None) -> None:
        self._decisions[check] = GateDecision(passed=passed, detail=detail)
        self._event(check).set()

    async def wait(self, check: str, poll_interval: float | None = None) -> GateDecision:
        await self._event(check).wait()
        return self._decisions[check]


class PollingGateSignal(GateSignal):
    """Signal that asks the external system repeatedly until it decides."""

    def __init__(self, poll_interval: float = 5.0):
        self.poll_interval = poll_interval

    @abstractmethod
    async def poll(self, check: str) -> GateDecision | None:
        """One status query; None while the decision is pending."""
        pass

    async def wait(self, check: str, poll_interval: float | None = None) -> GateDecision:
        interval = poll_interval or self.poll_interval
        attempt = 0
        while True:
            attempt += 1
            decision = await self.poll(check)
            if decision is not None:
                logger.debug(f"Gate '{check}' decided after {attempt} poll(s): {decision.detail}")
                return decision
            await asyncio.sleep(interval)


class HttpGateSignal(PollingGateSignal):
    """
    Polls a quality-gate status endpoint over HTTP.

    The response JSON is walked along ``status_path`` (dot-separated) and the
    value is mapped with ``parse_verdict`` (OK/PASS -> pass, ERROR/FAIL -> fail,
    anything else -> pending). Transport errors and non-2xx responses count as
    pending; the bounded wait decides when to give up.

    Example:
        signal = HttpGateSignal(
            "https://sonar.example.com/api/qualitygates/project_status?projectKey={check}",
            headers={"Authorization": "Bearer ..."},
        )
    """

    def __init__(
        self,
        url_template: str,
        *,
        status_path: str = "projectStatus.status",
        headers: Mapping[str, str] | None = None,
        poll_interval: float = 5.0,
        request_timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ):
        super().__init__(poll_interval)
        self.url_template = url_template
        self.status_path = status_path
        self.headers = dict(headers or {})
        self.request_timeout = request_timeout
        self._client = client

    async def poll(self, check: str) -> GateDecision | None:
        url = self.url_template.replace("{check}", quote(check, safe=""))
        try:
            if self._client is not None:
                response = await self._client.get(
                    url, headers=self.headers, timeout=self.request_timeout
                )
            else:
                async with httpx.AsyncClient(timeout=self.request_timeout) as client:
                    response = await client.get(url, headers=self.headers)
        except httpx.HTTPError as e:
            logger.warning(f"Gate '{check}' poll failed: {type(e).__name__}: {e}")
            return None

        if not response.is_success:
            logger.warning(f"Gate '{check}' poll returned HTTP {response.status_code}")
            return None

        try:
            value: Any = response.json()
        except ValueError:
            logger.warning(f"Gate '{check}' poll returned non-JSON body")
            return None

        for part in self.status_path.split("."):
            if not isinstance(value, dict):
                return None
            value = value.get(part)
        return parse_verdict(value)


class CommandGateSignal(PollingGateSignal):
    """
    Polls by running a command; its stdout is the verdict.

    Parsing contract: the last non-empty stdout line is the status
    (PASS/OK -> pass, FAIL/ERROR -> fail, anything else such as PENDING ->
    still pending). ``{check}`` in the command template is replaced by the
    check name.
    """

    def __init__(
        self,
        adapter: CommandAdapter,
        command_template: str,
        *,
        working_dir: str = "",
        env: Mapping[str, str] | None = None,
        poll_interval: float = 5.0,
    ):
        super().__init__(poll_interval)
        self.adapter = adapter
        self.command_template = command_template
        self.working_dir = working_dir
        self.env = dict(env or {})

    async def poll(self, check: str) -> GateDecision | None:
        command = self.command_template.replace("{check}", check)
        result = await self.adapter.execute(command, self.working_dir, self.env)
        lines = [line.strip() for line in result.stdout.splitlines() if line.strip()]
        decision = parse_verdict(lines[-1]) if lines else None
        if decision is None and not result.succeeded:
            logger.warning(f"Gate '{check}' command exited {result.exit_code} without a verdict")
        return decision


async def wait_for_gate(
    signal: GateSignal,
    check: str,
    max_duration: float,
    poll_interval: float | None = None,
) -> GateOutcome:
    """
    Wait at most ``max_duration`` seconds for the decision on ``check``.

    Returns PASSED/FAILED as soon as the signal decides, TIMED_OUT otherwise.
    Cancellation of the calling task propagates (the wait is abandoned).
    """
    started = time.monotonic()
    logger.info(f"Waiting for gate '{check}' (max {max_duration:g}s)")
    try:
        decision = await asyncio.wait_for(
            signal.wait(check, poll_interval=poll_interval), timeout=max_duration
        )
    except TimeoutError:
        waited = time.monotonic() - started
        logger.warning(f"Gate '{check}' timed out after {waited:.1f}s")
        return GateOutcome(result=GateResult.TIMED_OUT, waited_seconds=waited)

    waited = time.monotonic() - started
    result = GateResult.PASSED if decision.passed else GateResult.FAILED
    logger.info(f"Gate '{check}' {result.value} after {waited:.1f}s")
    return GateOutcome(result=result, waited_seconds=waited, detail=decision.detail)


__all__ = [
    "CommandGateSignal",
    "GateDecision",
    "GateOutcome",
    "GateSignal",
    "HttpGateSignal",
    "ManualGateSignal",
    "PollingGateSignal",
    "parse_verdict",
    "wait_for_gate",
]
