"""Alert dispatcher for routing security alerts to channels."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

import httpx

from content_firewall.logging import get_logger
from content_firewall.models import utc_now

log = get_logger("content_firewall.sinks.alerts")


class AlertType(Enum):
    """Types of alerts."""

    HIGH_RISK_EVENT = "high_risk_event"
    SOURCE_AUTO_BLOCKED = "source_auto_blocked"
    SINK_FAILURE = "sink_failure"


class AlertPriority(Enum):
    """Priority levels for alerts."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


_PRIORITY_ORDER = {
    AlertPriority.LOW: 0,
    AlertPriority.MEDIUM: 1,
    AlertPriority.HIGH: 2,
    AlertPriority.CRITICAL: 3,
}


@dataclass
class Alert:
    """An alert to be sent."""

    type: AlertType
    title: str
    message: str
    priority: AlertPriority = AlertPriority.HIGH
    timestamp: datetime = field(default_factory=utc_now)
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "title": self.title,
            "message": self.message,
            "priority": self.priority.value,
            "timestamp": self.timestamp.isoformat(),
            "metadata": self.metadata,
        }


class AlertChannel(ABC):
    """Abstract base class for alert channels."""

    def __init__(self, min_priority: AlertPriority = AlertPriority.LOW) -> None:
        self._min_priority = min_priority

    @abstractmethod
    async def send(self, alert: Alert) -> bool:
        """Send an alert.

        Args:
            alert: The alert to send.

        Returns:
            True if sent successfully, False otherwise.
        """

    def supports_priority(self, priority: AlertPriority) -> bool:
        """Check if this channel accepts alerts of *priority*."""
        return _PRIORITY_ORDER[priority] >= _PRIORITY_ORDER[self._min_priority]


class LoggingAlertChannel(AlertChannel):
    """Writes alerts to the structured log."""

    async def send(self, alert: Alert) -> bool:
        log.warning(
            "security_alert",
            alert_type=alert.type.value,
            priority=alert.priority.value,
            title=alert.title,
            message=alert.message,
            metadata=alert.metadata,
        )
        return True


class WebhookAlertChannel(AlertChannel):
    """POSTs alerts as JSON to a webhook endpoint."""

    def __init__(
        self,
        url: str,
        *,
        timeout: float = 5.0,
        min_priority: AlertPriority = AlertPriority.MEDIUM,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(min_priority)
        self._url = url
        self._timeout = timeout
        self._client = client

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def send(self, alert: Alert) -> bool:
        try:
            client = await self._get_client()
            response = await client.post(self._url, json=alert.to_dict())
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            log.error(
                "webhook_alert_rejected",
                status_code=e.response.status_code,
                alert_type=alert.type.value,
            )
            return False
        except httpx.RequestError as e:
            log.error("webhook_alert_failed", error=str(e), alert_type=alert.type.value)
            return False
        return True


class AlertDispatcher:
    """Dispatches alerts to registered channels.

    Channel failures never propagate. Any failing channel triggers a
    separate ``SINK_FAILURE`` alert; if that also fails it is only logged.
    """

    def __init__(self, channels: list[AlertChannel] | None = None) -> None:
        self._channels: list[AlertChannel] = list(channels or [])

    def register_channel(self, channel: AlertChannel) -> None:
        """Register an alert channel."""
        self._channels.append(channel)
        log.info("alert_channel_registered", channel=channel.__class__.__name__)

    @property
    def channels(self) -> list[AlertChannel]:
        return list(self._channels)

    async def dispatch(self, alert: Alert) -> int:
        """Dispatch *alert* to all channels that accept its priority.

        Returns:
            Number of channels that successfully received the alert.
        """
        sent_count = 0
        failed: list[str] = []
        for channel in self._channels:
            if not channel.supports_priority(alert.priority):
                continue
            name = channel.__class__.__name__
            try:
                if await channel.send(alert):
                    sent_count += 1
                else:
                    failed.append(name)
            except Exception as e:
                log.error("alert_channel_failed", channel=name, error=str(e))
                failed.append(name)

        if sent_count:
            log.info(
                "alert_dispatched",
                type=alert.type.value,
                priority=alert.priority.value,
                channels=sent_count,
            )
        else:
            log.warning("alert_not_sent", type=alert.type.value, failed=failed)

        if failed and alert.type != AlertType.SINK_FAILURE:
            await self.report_sink_failure("alert", failed=failed, alert_type=alert.type.value)

        return sent_count

    async def report_sink_failure(self, sink: str, **details: Any) -> None:
        """Raise an operational alert about a failing audit or alert sink."""
        log.error("sink_failure", sink=sink, **details)
        await self.dispatch(
            Alert(
                type=AlertType.SINK_FAILURE,
                title="Security sink failure",
                message=f"The {sink} sink failed; events may be missing downstream.",
                priority=AlertPriority.CRITICAL,
                metadata={"sink": sink, **details},
            )
        )
