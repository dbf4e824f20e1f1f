"""Audit sinks for execution records and threat events.

Sinks receive the shape-stable ``to_dict()`` form of every record.
:class:`AuditTrail` wraps a sink so that a failing backend is logged and
reported as an operational alert instead of breaking the pipeline.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from content_firewall.logging import get_logger
from content_firewall.models import ExecutionRecord, ThreatEvent
from content_firewall.redaction import redact
from content_firewall.sinks.alerts import AlertDispatcher

log = get_logger("content_firewall.sinks.audit")


class AuditSink(ABC):
    """Append-only destination for audit records."""

    @abstractmethod
    async def write_execution(self, record: ExecutionRecord) -> None:
        """Persist an executor call record."""

    @abstractmethod
    async def write_threat_event(self, event: ThreatEvent) -> None:
        """Persist a threat event."""


class LoggingAuditSink(AuditSink):
    """Writes audit records to the structured log (JSON in production)."""

    async def write_execution(self, record: ExecutionRecord) -> None:
        data = record.to_dict()
        data["command"]["args"] = [redact(a) for a in data["command"]["args"]]
        log.info("audit_execution", **data)

    async def write_threat_event(self, event: ThreatEvent) -> None:
        log.info("audit_threat_event", **event.to_dict())


class MemoryAuditSink(AuditSink):
    """Keeps records in memory; for tests and single-process tooling."""

    def __init__(self) -> None:
        self.executions: list[ExecutionRecord] = []
        self.threat_events: list[ThreatEvent] = []

    async def write_execution(self, record: ExecutionRecord) -> None:
        self.executions.append(record)

    async def write_threat_event(self, event: ThreatEvent) -> None:
        self.threat_events.append(event)


class AuditTrail:
    """Failure-isolating front for an :class:`AuditSink`."""

    def __init__(self, sink: AuditSink, alerts: AlertDispatcher | None = None) -> None:
        self._sink = sink
        self._alerts = alerts

    async def record_execution(self, record: ExecutionRecord) -> bool:
        """Write *record*; returns False if the sink failed."""
        try:
            await self._sink.write_execution(record)
        except Exception as e:
            await self._sink_failed(e, record="execution", actor_source=record.actor_source)
            return False
        return True

    async def record_threat_event(self, event: ThreatEvent) -> bool:
        """Write *event*; returns False if the sink failed."""
        try:
            await self._sink.write_threat_event(event)
        except Exception as e:
            await self._sink_failed(e, record="threat_event", source_id=event.source_id)
            return False
        return True

    async def _sink_failed(self, error: Exception, **details: Any) -> None:
        sink_name = self._sink.__class__.__name__
        if self._alerts is None:
            log.error("audit_sink_failed", sink=sink_name, error=str(error), **details)
            return
        await self._alerts.report_sink_failure(
            "audit", sink_class=sink_name, error=str(error), **details
        )
