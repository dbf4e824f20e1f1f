"""Threat monitor: per-source sliding-window abuse tracking.

Sources move ``unseen -> active -> blocked``. A source is auto-blocked once
it accumulates ``autoblock_threshold`` violations (``blocked`` events or
events at or above ``high_risk_score``) inside the sliding window. Blocked
is terminal until an administrator calls :meth:`ThreatMonitor.unblock_source`.

Updates for one source are serialized with a per-source lock so two
concurrent violations cannot both observe "below threshold". Different
sources never contend.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import timedelta

from content_firewall.config import get_settings
from content_firewall.logging import get_logger
from content_firewall.models import (
    DenyReason,
    ExecutionOutcome,
    ExecutionRecord,
    SourceState,
    SourceStatus,
    ThreatEvent,
    ThreatEventType,
)
from content_firewall.monitor.store import InMemorySourceStateStore, SourceStateStore
from content_firewall.sinks.alerts import Alert, AlertDispatcher, AlertPriority, AlertType
from content_firewall.sinks.audit import AuditTrail

log = get_logger("content_firewall.monitor.threat_monitor")


class ThreatMonitor:
    """Track threat events per source and decide auto-blocking and alerting."""

    def __init__(
        self,
        store: SourceStateStore | None = None,
        *,
        audit: AuditTrail | None = None,
        alerts: AlertDispatcher | None = None,
        autoblock_threshold: int | None = None,
        window_seconds: float | None = None,
        high_risk_score: int | None = None,
        alert_score: int | None = None,
    ) -> None:
        settings = get_settings()
        self._store = store or InMemorySourceStateStore()
        self._audit = audit
        self._alerts = alerts
        self._threshold = autoblock_threshold or settings.autoblock_threshold
        self._window = timedelta(seconds=window_seconds or settings.autoblock_window_seconds)
        self._high_risk = (
            high_risk_score if high_risk_score is not None else settings.high_risk_score
        )
        self._alert_score = alert_score if alert_score is not None else settings.alert_score
        # Per-source lock plus the number of tasks holding or awaiting it
        self._locks: dict[str, tuple[asyncio.Lock, int]] = {}

    @property
    def store(self) -> SourceStateStore:
        return self._store

    def is_violation(self, event: ThreatEvent) -> bool:
        """Return True if *event* counts toward the auto-block threshold."""
        return event.event_type == ThreatEventType.BLOCKED or event.risk_score >= self._high_risk

    async def record_event(self, event: ThreatEvent) -> SourceState:
        """Record *event*, auto-blocking its source if the threshold is crossed.

        Returns:
            The source state after the event was applied.
        """
        newly_blocked = False
        async with self._source_lock(event.source_id):
            state = await self._store.append_event(event, self._window)
            violations = sum(1 for e in state.window_events if self.is_violation(e))
            if not state.blocked and violations >= self._threshold:
                state = await self._store.set_blocked(event.source_id, True)
                newly_blocked = True

        log.info(
            "threat_event_recorded",
            source_id=event.source_id,
            event_type=event.event_type.value,
            risk_score=event.risk_score,
            patterns=list(event.pattern_ids),
            window_events=len(state.window_events),
            blocked=state.blocked,
        )

        if self._audit is not None:
            await self._audit.record_threat_event(event)

        if event.risk_score >= self._alert_score:
            await self._alert(
                Alert(
                    type=AlertType.HIGH_RISK_EVENT,
                    title="High-risk content detected",
                    message=(
                        f"Source {event.source_id} sent content scoring {event.risk_score}/100."
                    ),
                    priority=AlertPriority.HIGH,
                    metadata=event.to_dict(),
                )
            )

        if newly_blocked:
            log.warning(
                "source_auto_blocked",
                source_id=event.source_id,
                threshold=self._threshold,
                window_seconds=self._window.total_seconds(),
            )
            await self._alert(
                Alert(
                    type=AlertType.SOURCE_AUTO_BLOCKED,
                    title="Source auto-blocked",
                    message=(
                        f"Source {event.source_id} reached {self._threshold} violations "
                        f"within {int(self._window.total_seconds())}s and is now blocked."
                    ),
                    priority=AlertPriority.CRITICAL,
                    metadata={"source_id": event.source_id, "threshold": self._threshold},
                )
            )

        return state

    async def record_execution(
        self,
        record: ExecutionRecord,
        *,
        risk_score: int = 0,
        is_external: bool = True,
    ) -> SourceState | None:
        """Take note of an executor call.

        Policy denials for external contexts become ``suspicious`` events.
        Allowed calls and spawn failures are only logged.
        """
        if (
            record.outcome == ExecutionOutcome.DENIED
            and record.deny_reason not in (None, DenyReason.SPAWN_FAILURE)
            and is_external
        ):
            pattern_ids = (record.deny_reason.value,) if record.deny_reason else ()
            return await self.record_event(
                ThreatEvent(
                    source_id=record.actor_source,
                    event_type=ThreatEventType.SUSPICIOUS,
                    risk_score=risk_score,
                    pattern_ids=pattern_ids,
                    timestamp=record.timestamp,
                )
            )
        log.debug(
            "execution_observed",
            actor_source=record.actor_source,
            outcome=record.outcome.value,
            deny_reason=record.deny_reason.value if record.deny_reason else None,
        )
        return None

    async def is_source_blocked(self, source_id: str) -> bool:
        """Return True if *source_id* is currently blocked."""
        state = await self._store.get(source_id)
        return state is not None and state.blocked

    async def source_status(self, source_id: str) -> SourceStatus:
        state = await self._store.get(source_id)
        if state is None:
            return SourceStatus.UNSEEN
        return state.status

    async def snapshot(self, source_id: str) -> SourceState | None:
        """Return the stored state for *source_id* (``None`` if unseen)."""
        return await self._store.get(source_id)

    async def unblock_source(self, source_id: str, *, actor: str = "admin") -> None:
        """Administrative reset: forget the source's window and block flag."""
        async with self._source_lock(source_id):
            await self._store.reset(source_id)
        log.warning("source_unblocked", source_id=source_id, actor=actor)

    @asynccontextmanager
    async def _source_lock(self, source_id: str) -> AsyncIterator[None]:
        """Serialize updates for one source.

        The lock is dropped once no task holds or waits for it, so sources
        that stop sending do not keep an entry.
        """
        lock, users = self._locks.get(source_id, (asyncio.Lock(), 0))
        self._locks[source_id] = (lock, users + 1)
        try:
            async with lock:
                yield
        finally:
            lock, users = self._locks[source_id]
            if users == 1:
                del self._locks[source_id]
            else:
                self._locks[source_id] = (lock, users - 1)

    async def _alert(self, alert: Alert) -> None:
        if self._alerts is None:
            log.warning(
                "security_alert_unrouted",
                alert_type=alert.type.value,
                title=alert.title,
                message=alert.message,
            )
            return
        await self._alerts.dispatch(alert)
