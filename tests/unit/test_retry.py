"""Unit tests for invoke_with_retry."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, call, patch

import pytest

from content_firewall.errors import DisallowedBinaryError, SpawnFailureError
from content_firewall.execution.retry import invoke_with_retry
from content_firewall.models import AnalysisResult, Command, ExecOutput

_SLEEP = "content_firewall.execution.retry.asyncio.sleep"


def _executor(side_effect: list[object]) -> MagicMock:
    executor = MagicMock()
    executor.invoke = AsyncMock(side_effect=side_effect)
    return executor


@pytest.fixture
def context() -> MagicMock:
    ctx = MagicMock()
    ctx.source_id = "chat:operator"
    ctx.analysis = AnalysisResult(risk_score=0)
    return ctx


class TestInvokeWithRetry:
    """Only spawn failures are retried."""

    @pytest.mark.asyncio
    async def test_succeeds_first_time(self, context: MagicMock) -> None:
        executor = _executor([ExecOutput(exit_code=0)])
        with patch(_SLEEP, new_callable=AsyncMock) as sleep:
            output = await invoke_with_retry(executor, Command("ls"), context, max_attempts=3)
        assert output.exit_code == 0
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_retries_spawn_failure(self, context: MagicMock) -> None:
        executor = _executor([SpawnFailureError("EAGAIN"), ExecOutput(exit_code=0)])
        with patch(_SLEEP, new_callable=AsyncMock) as sleep:
            output = await invoke_with_retry(executor, Command("ls"), context, max_attempts=3)
        assert output.exit_code == 0
        assert executor.invoke.await_count == 2
        sleep.assert_awaited_once_with(0.5)

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self, context: MagicMock) -> None:
        executor = _executor([SpawnFailureError("EAGAIN")] * 3)
        with patch(_SLEEP, new_callable=AsyncMock) as sleep:
            with pytest.raises(SpawnFailureError):
                await invoke_with_retry(executor, Command("ls"), context, max_attempts=3)
        assert executor.invoke.await_count == 3
        assert sleep.await_args_list == [call(0.5), call(1.0)]

    @pytest.mark.asyncio
    async def test_delay_capped(self, context: MagicMock) -> None:
        executor = _executor([SpawnFailureError("EAGAIN")] * 4)
        with patch(_SLEEP, new_callable=AsyncMock) as sleep:
            with pytest.raises(SpawnFailureError):
                await invoke_with_retry(
                    executor,
                    Command("ls"),
                    context,
                    max_attempts=4,
                    initial_delay=4.0,
                    max_delay=5.0,
                )
        assert sleep.await_args_list == [call(4.0), call(5.0), call(5.0)]

    @pytest.mark.asyncio
    async def test_policy_denial_not_retried(self, context: MagicMock) -> None:
        executor = _executor([DisallowedBinaryError("binary not in allowlist: nc")])
        with patch(_SLEEP, new_callable=AsyncMock) as sleep:
            with pytest.raises(DisallowedBinaryError):
                await invoke_with_retry(executor, Command("nc"), context, max_attempts=5)
        assert executor.invoke.await_count == 1
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_attempts_from_settings(
        self, context: MagicMock, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("CONTENT_FIREWALL_SPAWN_RETRY_ATTEMPTS", "2")
        executor = _executor([SpawnFailureError("EAGAIN")] * 2)
        with patch(_SLEEP, new_callable=AsyncMock):
            with pytest.raises(SpawnFailureError):
                await invoke_with_retry(executor, Command("ls"), context)
        assert executor.invoke.await_count == 2
