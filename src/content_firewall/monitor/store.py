"""Per-source state stores for the threat monitor.

The monitor only talks to :class:`SourceStateStore`. Tests and single
instances use :class:`InMemorySourceStateStore`; deployments with several
instances share :class:`PostgresSourceStateStore`.
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from datetime import datetime, timedelta

import asyncpg  # type: ignore[import-not-found,import-untyped]

from content_firewall.logging import get_logger
from content_firewall.models import SourceState, ThreatEvent, ThreatEventType, utc_now

log = get_logger("content_firewall.monitor.store")


class SourceStateStore(ABC):
    """Storage for per-source event windows and block flags."""

    @abstractmethod
    async def get(self, source_id: str) -> SourceState | None:
        """Return the state for *source_id*, or ``None`` if never seen."""

    @abstractmethod
    async def append_event(self, event: ThreatEvent, window: timedelta) -> SourceState:
        """Add *event* and drop events older than *window* before it.

        Creates the source on first use and returns the updated state. The
        returned window always includes *event*.
        """

    @abstractmethod
    async def set_blocked(self, source_id: str, blocked: bool = True) -> SourceState:
        """Set or clear the block flag for *source_id*."""

    @abstractmethod
    async def reset(self, source_id: str) -> None:
        """Forget everything about *source_id*."""


class InMemorySourceStateStore(SourceStateStore):
    """Process-local store backed by a dict.

    Callers serialize access per source; the store itself does no locking.
    At most once per window, sources that are not blocked and have no event
    left inside the window are evicted, so their state does not accumulate.
    """

    def __init__(self) -> None:
        self._states: dict[str, SourceState] = {}
        self._last_sweep: datetime | None = None

    async def get(self, source_id: str) -> SourceState | None:
        return self._states.get(source_id)

    async def append_event(self, event: ThreatEvent, window: timedelta) -> SourceState:
        self._evict_idle(event.timestamp, window)
        state = self._states.get(event.source_id)
        if state is None:
            state = SourceState(source_id=event.source_id)
            self._states[event.source_id] = state

        cutoff = event.timestamp - window
        state.window_events = [e for e in state.window_events if e.timestamp > cutoff]
        state.window_events.append(event)
        return state

    async def set_blocked(self, source_id: str, blocked: bool = True) -> SourceState:
        state = self._states.get(source_id)
        if state is None:
            state = SourceState(source_id=source_id)
            self._states[source_id] = state
        state.blocked = blocked
        state.blocked_at = utc_now() if blocked else None
        return state

    async def reset(self, source_id: str) -> None:
        self._states.pop(source_id, None)

    def _evict_idle(self, now: datetime, window: timedelta) -> None:
        if self._last_sweep is not None and now - self._last_sweep < window:
            return
        self._last_sweep = now
        cutoff = now - window
        idle = [
            source_id
            for source_id, state in self._states.items()
            if not state.blocked and all(e.timestamp <= cutoff for e in state.window_events)
        ]
        for source_id in idle:
            del self._states[source_id]
        if idle:
            log.debug("idle_sources_evicted", count=len(idle))


# ---------------------------------------------------------------------------
# PostgreSQL
# ---------------------------------------------------------------------------
_SCHEMA_SQL = """\
CREATE TABLE IF NOT EXISTS firewall_sources (
    source_id    TEXT         PRIMARY KEY,
    blocked      BOOLEAN      NOT NULL DEFAULT FALSE,
    blocked_at   TIMESTAMPTZ,
    created_at   TIMESTAMPTZ  NOT NULL DEFAULT now()
);

CREATE TABLE IF NOT EXISTS firewall_threat_events (
    id           BIGSERIAL    PRIMARY KEY,
    source_id    TEXT         NOT NULL
                 REFERENCES firewall_sources (source_id) ON DELETE CASCADE,
    event_type   VARCHAR(20)  NOT NULL
                 CHECK (event_type IN ('blocked', 'warned', 'suspicious')),
    risk_score   INTEGER      NOT NULL,
    pattern_ids  JSONB        NOT NULL DEFAULT '[]'::jsonb,
    occurred_at  TIMESTAMPTZ  NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_firewall_events_source_time
    ON firewall_threat_events (source_id, occurred_at);
"""


def _row_to_event(source_id: str, row: asyncpg.Record) -> ThreatEvent:
    pattern_ids = row["pattern_ids"]
    if isinstance(pattern_ids, str):
        pattern_ids = json.loads(pattern_ids)
    return ThreatEvent(
        source_id=source_id,
        event_type=ThreatEventType(row["event_type"]),
        risk_score=row["risk_score"],
        pattern_ids=tuple(pattern_ids),
        timestamp=row["occurred_at"],
    )


class PostgresSourceStateStore(SourceStateStore):
    """Shared store for multi-instance deployments.

    ``append_event`` locks the source row (``SELECT ... FOR UPDATE``) so
    concurrent writers on different instances see each other's events.
    """

    def __init__(self, pool: asyncpg.Pool) -> None:  # type: ignore[type-arg]
        """Initialise with an existing asyncpg connection pool."""
        self._pool = pool

    async def ensure_schema(self) -> None:
        """Create tables and indexes if they do not exist."""
        async with self._pool.acquire() as conn:
            await conn.execute(_SCHEMA_SQL)
        log.info("source_store_schema_ready")

    async def get(self, source_id: str) -> SourceState | None:
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(
                "SELECT blocked, blocked_at FROM firewall_sources WHERE source_id = $1",
                source_id,
            )
            if row is None:
                return None
            events = await conn.fetch(
                """
                    SELECT event_type, risk_score, pattern_ids, occurred_at
                    FROM firewall_threat_events
                    WHERE source_id = $1
                    ORDER BY occurred_at
                    """,
                source_id,
            )
        return SourceState(
            source_id=source_id,
            window_events=[_row_to_event(source_id, r) for r in events],
            blocked=row["blocked"],
            blocked_at=row["blocked_at"],
        )

    async def append_event(self, event: ThreatEvent, window: timedelta) -> SourceState:
        cutoff: datetime = event.timestamp - window
        try:
            async with self._pool.acquire() as conn, conn.transaction():
                await conn.execute(
                    """
                        INSERT INTO firewall_sources (source_id)
                        VALUES ($1)
                        ON CONFLICT (source_id) DO NOTHING
                        """,
                    event.source_id,
                )
                source = await conn.fetchrow(
                    """
                        SELECT blocked, blocked_at FROM firewall_sources
                        WHERE source_id = $1
                        FOR UPDATE
                        """,
                    event.source_id,
                )
                await conn.execute(
                    """
                        DELETE FROM firewall_threat_events
                        WHERE source_id = $1 AND occurred_at <= $2
                        """,
                    event.source_id,
                    cutoff,
                )
                await conn.execute(
                    """
                        INSERT INTO firewall_threat_events
                            (source_id, event_type, risk_score, pattern_ids, occurred_at)
                        VALUES ($1, $2, $3, $4::jsonb, $5)
                        """,
                    event.source_id,
                    event.event_type.value,
                    event.risk_score,
                    json.dumps(list(event.pattern_ids)),
                    event.timestamp,
                )
                rows = await conn.fetch(
                    """
                        SELECT event_type, risk_score, pattern_ids, occurred_at
                        FROM firewall_threat_events
                        WHERE source_id = $1
                        ORDER BY occurred_at
                        """,
                    event.source_id,
                )
        except asyncpg.PostgresError as exc:
            log.error("append_event_failed", source_id=event.source_id, error=str(exc))
            raise

        return SourceState(
            source_id=event.source_id,
            window_events=[_row_to_event(event.source_id, r) for r in rows],
            blocked=source["blocked"],
            blocked_at=source["blocked_at"],
        )

    async def set_blocked(self, source_id: str, blocked: bool = True) -> SourceState:
        blocked_at = utc_now() if blocked else None
        async with self._pool.acquire() as conn:
            await conn.execute(
                """
                    INSERT INTO firewall_sources (source_id, blocked, blocked_at)
                    VALUES ($1, $2, $3)
                    ON CONFLICT (source_id)
                    DO UPDATE SET blocked = EXCLUDED.blocked, blocked_at = EXCLUDED.blocked_at
                    """,
                source_id,
                blocked,
                blocked_at,
            )
        state = await self.get(source_id)
        return state or SourceState(source_id=source_id, blocked=blocked, blocked_at=blocked_at)

    async def reset(self, source_id: str) -> None:
        async with self._pool.acquire() as conn:
            await conn.execute("DELETE FROM firewall_sources WHERE source_id = $1", source_id)
        log.info("source_state_reset", source_id=source_id)
