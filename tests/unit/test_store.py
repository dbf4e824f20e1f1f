"""Unit tests for the per-source state stores."""

from __future__ import annotations

import json
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import asyncpg  # type: ignore[import-not-found,import-untyped]
import pytest

from content_firewall.models import SourceStatus, ThreatEvent, ThreatEventType
from content_firewall.monitor.store import InMemorySourceStateStore, PostgresSourceStateStore

_SOURCE = "webhook:partner-feed"
_WINDOW = timedelta(hours=1)
_NOW = datetime(2026, 10, 19, 12, 0, tzinfo=UTC)


def _event(
    at: datetime = _NOW, event_type: ThreatEventType = ThreatEventType.BLOCKED
) -> ThreatEvent:
    return ThreatEvent(
        source_id=_SOURCE,
        event_type=event_type,
        risk_score=90,
        pattern_ids=("reverse_shell",),
        timestamp=at,
    )


def _make_pool() -> tuple[MagicMock, AsyncMock]:
    """Build a mock asyncpg.Pool and return ``(pool, conn)``.

    ``pool.acquire()`` returns an async context manager (not a coroutine),
    matching asyncpg's real behaviour.
    """
    pool = MagicMock()
    conn = AsyncMock()

    ctx = MagicMock()
    ctx.__aenter__ = AsyncMock(return_value=conn)
    ctx.__aexit__ = AsyncMock(return_value=False)
    pool.acquire.return_value = ctx

    tx_ctx = MagicMock()
    tx_ctx.__aenter__ = AsyncMock(return_value=conn)
    tx_ctx.__aexit__ = AsyncMock(return_value=False)
    conn.transaction = MagicMock(return_value=tx_ctx)

    conn.fetch.return_value = []
    conn.execute.return_value = "INSERT 0 1"
    return pool, conn


def _event_row(at: datetime = _NOW, pattern_ids: object = '["reverse_shell"]') -> dict:
    return {
        "event_type": "blocked",
        "risk_score": 90,
        "pattern_ids": pattern_ids,
        "occurred_at": at,
    }


# ---------------------------------------------------------------------------
# In-memory
# ---------------------------------------------------------------------------


class TestInMemoryStore:
    """Tests for InMemorySourceStateStore."""

    @pytest.mark.asyncio
    async def test_unknown_source(self) -> None:
        assert await InMemorySourceStateStore().get(_SOURCE) is None

    @pytest.mark.asyncio
    async def test_append_creates_source(self) -> None:
        store = InMemorySourceStateStore()
        state = await store.append_event(_event(), _WINDOW)
        assert state.source_id == _SOURCE
        assert state.status == SourceStatus.ACTIVE
        assert state.window_events == [_event()]

    @pytest.mark.asyncio
    async def test_prunes_relative_to_new_event(self) -> None:
        store = InMemorySourceStateStore()
        await store.append_event(_event(_NOW - timedelta(minutes=90)), _WINDOW)
        await store.append_event(_event(_NOW - timedelta(minutes=30)), _WINDOW)
        state = await store.append_event(_event(_NOW), _WINDOW)
        assert [e.timestamp for e in state.window_events] == [
            _NOW - timedelta(minutes=30),
            _NOW,
        ]

    @pytest.mark.asyncio
    async def test_event_exactly_at_window_edge_dropped(self) -> None:
        store = InMemorySourceStateStore()
        await store.append_event(_event(_NOW - _WINDOW), _WINDOW)
        state = await store.append_event(_event(_NOW), _WINDOW)
        assert len(state.window_events) == 1

    @pytest.mark.asyncio
    async def test_set_blocked_and_clear(self) -> None:
        store = InMemorySourceStateStore()
        state = await store.set_blocked(_SOURCE)
        assert state.blocked
        assert state.blocked_at is not None
        state = await store.set_blocked(_SOURCE, False)
        assert not state.blocked
        assert state.blocked_at is None

    @pytest.mark.asyncio
    async def test_reset(self) -> None:
        store = InMemorySourceStateStore()
        await store.append_event(_event(), _WINDOW)
        await store.set_blocked(_SOURCE)
        await store.reset(_SOURCE)
        assert await store.get(_SOURCE) is None
        await store.reset("never-seen")

    @pytest.mark.asyncio
    async def test_idle_sources_evicted(self) -> None:
        store = InMemorySourceStateStore()
        old = _NOW - timedelta(hours=2)
        for i in range(100):
            await store.append_event(
                ThreatEvent(f"sender-{i}", ThreatEventType.WARNED, 10, timestamp=old), _WINDOW
            )
        await store.set_blocked("sender-0")
        await store.append_event(
            ThreatEvent("recent", ThreatEventType.WARNED, 10, timestamp=_NOW - _WINDOW / 2),
            _WINDOW,
        )

        await store.append_event(_event(_NOW), _WINDOW)

        assert set(store._states) == {"sender-0", "recent", _SOURCE}
        assert await store.get("sender-1") is None


# ---------------------------------------------------------------------------
# PostgreSQL
# ---------------------------------------------------------------------------


class TestPostgresStore:
    """Tests for PostgresSourceStateStore against a mocked pool."""

    @pytest.mark.asyncio
    async def test_ensure_schema(self) -> None:
        pool, conn = _make_pool()
        await PostgresSourceStateStore(pool).ensure_schema()
        sql = conn.execute.call_args[0][0]
        assert "CREATE TABLE IF NOT EXISTS firewall_sources" in sql
        assert "CREATE TABLE IF NOT EXISTS firewall_threat_events" in sql

    @pytest.mark.asyncio
    async def test_get_unknown(self) -> None:
        pool, conn = _make_pool()
        conn.fetchrow.return_value = None
        assert await PostgresSourceStateStore(pool).get(_SOURCE) is None
        conn.fetch.assert_not_called()

    @pytest.mark.asyncio
    async def test_get_builds_state(self) -> None:
        pool, conn = _make_pool()
        conn.fetchrow.return_value = {"blocked": True, "blocked_at": _NOW}
        conn.fetch.return_value = [_event_row()]

        state = await PostgresSourceStateStore(pool).get(_SOURCE)

        assert state is not None
        assert state.blocked
        assert state.blocked_at == _NOW
        assert state.window_events == [_event()]

    @pytest.mark.asyncio
    async def test_get_accepts_decoded_jsonb(self) -> None:
        pool, conn = _make_pool()
        conn.fetchrow.return_value = {"blocked": False, "blocked_at": None}
        conn.fetch.return_value = [_event_row(pattern_ids=["reverse_shell"])]

        state = await PostgresSourceStateStore(pool).get(_SOURCE)

        assert state is not None
        assert state.window_events[0].pattern_ids == ("reverse_shell",)

    @pytest.mark.asyncio
    async def test_append_event_runs_in_transaction(self) -> None:
        pool, conn = _make_pool()
        conn.fetchrow.return_value = {"blocked": False, "blocked_at": None}
        conn.fetch.return_value = [_event_row()]
        event = _event()

        state = await PostgresSourceStateStore(pool).append_event(event, _WINDOW)

        conn.transaction.assert_called_once()
        assert state.window_events == [event]
        assert not state.blocked

        statements = [c.args for c in conn.execute.call_args_list]
        delete = next(args for args in statements if "DELETE" in args[0])
        assert delete[1:] == (_SOURCE, _NOW - _WINDOW)
        insert = next(
            args for args in statements if "INSERT INTO firewall_threat_events" in args[0]
        )
        assert insert[1:] == (_SOURCE, "blocked", 90, json.dumps(["reverse_shell"]), _NOW)

    @pytest.mark.asyncio
    async def test_append_event_locks_source_row(self) -> None:
        pool, conn = _make_pool()
        conn.fetchrow.return_value = {"blocked": True, "blocked_at": _NOW}
        await PostgresSourceStateStore(pool).append_event(_event(), _WINDOW)
        assert "FOR UPDATE" in conn.fetchrow.call_args[0][0]

    @pytest.mark.asyncio
    async def test_append_event_reraises_database_errors(self) -> None:
        pool, conn = _make_pool()
        conn.execute.side_effect = asyncpg.PostgresError("connection reset")
        with pytest.raises(asyncpg.PostgresError):
            await PostgresSourceStateStore(pool).append_event(_event(), _WINDOW)

    @pytest.mark.asyncio
    async def test_set_blocked_upserts(self) -> None:
        pool, conn = _make_pool()
        conn.fetchrow.return_value = {"blocked": True, "blocked_at": _NOW}

        state = await PostgresSourceStateStore(pool).set_blocked(_SOURCE)

        sql, source_id, blocked, blocked_at = conn.execute.call_args[0]
        assert "ON CONFLICT (source_id)" in sql
        assert source_id == _SOURCE
        assert blocked is True
        assert blocked_at is not None
        assert state.blocked

    @pytest.mark.asyncio
    async def test_reset_deletes_source(self) -> None:
        pool, conn = _make_pool()
        await PostgresSourceStateStore(pool).reset(_SOURCE)
        conn.execute.assert_awaited_once()
        assert conn.execute.call_args[0] == (
            "DELETE FROM firewall_sources WHERE source_id = $1",
            _SOURCE,
        )
