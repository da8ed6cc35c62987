"""Notification sinks: the engine's "send message M" boundary.

Sinks:
    - LoggingNotificationSink: writes messages to the log (default sink)
    - WebhookNotificationSink: POSTs a chat-webhook JSON payload with httpx

Delivery failures raise NotificationError; the notify executor turns them
into warnings, so a failing chat service never aborts a run.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any

import httpx
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class NotificationError(Exception):
    """Message could not be delivered.

    Attributes:
        sink: Name of the sink
        details: Transport-level error description
    """

    def __init__(self, sink: str, details: str) -> None:
        self.sink = sink
        self.details = details
        super().__init__(f"Notification sink '{sink}' failed: {details}")


class NotificationMessage(BaseModel):
    """Structured payload handed to a sink."""

    text: str
    title: str | None = None
    channel: str | None = None
    pipeline: str = ""
    status: str | None = Field(default=None, description="Run result when sent from a hook")
    endpoint: str | None = Field(
        default=None, exclude=True, repr=False, description="Per-message endpoint override"
    )


class DeliveryReceipt(BaseModel):
    """Acknowledgement returned by a sink."""

    sink: str
    delivered: bool = True
    detail: str | None = None


class NotificationSink(ABC):
    """Destination for notifications."""

    name: str = "sink"

    @abstractmethod
    async def send(self, message: NotificationMessage) -> DeliveryReceipt:
        """Deliver ``message``.

        Raises:
            NotificationError: If delivery fails
        """
        pass


class LoggingNotificationSink(NotificationSink):
    """Writes notifications to the log."""

    def __init__(self, name: str = "log", level: int = logging.INFO):
        self.name = name
        self.level = level

    async def send(self, message: NotificationMessage) -> DeliveryReceipt:
        prefix = f"[{message.channel}] " if message.channel else ""
        title = f"{message.title}: " if message.title else ""
        logger.log(self.level, f"Notification {prefix}{title}{message.text}")
        return DeliveryReceipt(sink=self.name)


class WebhookNotificationSink(NotificationSink):
    """
    POSTs notifications to an incoming-webhook endpoint.

    The payload follows the common chat-webhook shape
    (``{"text": ..., "channel": ...}``). The URL comes from the message's
    ``endpoint`` (typically resolved from a credential scope) or from the
    sink's configured ``url``.
    """

    def __init__(
        self,
        url: str | None = None,
        *,
        name: str = "webhook",
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.url = url
        self.name = name
        self.timeout = timeout
        self._client = client

    def build_payload(self, message: NotificationMessage) -> dict[str, Any]:
        text = f"*{message.title}*\n{message.text}" if message.title else message.text
        payload: dict[str, Any] = {"text": text}
        if message.channel:
            payload["channel"] = message.channel
        if message.pipeline:
            payload["username"] = message.pipeline
        return payload

    async def send(self, message: NotificationMessage) -> DeliveryReceipt:
        url = message.endpoint or self.url
        if not url:
            raise NotificationError(self.name, "no webhook URL configured")

        payload = self.build_payload(message)
        try:
            if self._client is not None:
                response = await self._client.post(url, json=payload, timeout=self.timeout)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(url, json=payload)
        except (httpx.HTTPError, httpx.InvalidURL, OSError) as e:
            raise NotificationError(self.name, f"{type(e).__name__}: {e}") from e

        if not response.is_success:
            raise NotificationError(self.name, f"HTTP {response.status_code}")

        return DeliveryReceipt(sink=self.name, detail=f"HTTP {response.status_code}")


__all__ = [
    "DeliveryReceipt",
    "LoggingNotificationSink",
    "NotificationError",
    "NotificationMessage",
    "NotificationSink",
    "WebhookNotificationSink",
]
