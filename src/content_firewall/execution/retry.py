"""Caller-side retry for OS-level spawn failures.

Only :class:`SpawnFailureError` is retried. Policy denials raise on the
first attempt.
"""

from __future__ import annotations

import asyncio

from content_firewall.config import get_settings
from content_firewall.errors import SpawnFailureError
from content_firewall.execution.executor import SecureExecutor
from content_firewall.logging import get_logger
from content_firewall.models import AgentContext, Command, ExecOutput

log = get_logger("content_firewall.execution.retry")


async def invoke_with_retry(
    executor: SecureExecutor,
    command: Command,
    context: AgentContext,
    *,
    max_attempts: int | None = None,
    initial_delay: float = 0.5,
    max_delay: float = 10.0,
    exponential_base: float = 2.0,
) -> ExecOutput:
    """Invoke *command*, retrying spawn failures with exponential backoff.

    Args:
        executor: The executor to call.
        command: Command to run.
        context: Agent context the command runs under.
        max_attempts: Total attempts (default from settings).
        initial_delay: Initial delay in seconds.
        max_delay: Maximum delay in seconds.
        exponential_base: Base for exponential backoff.

    Raises:
        SpawnFailureError: The last spawn failure if all attempts fail.
        SecurityError: Immediately, on any policy denial.
    """
    attempts = max_attempts or get_settings().spawn_retry_attempts
    delay = initial_delay

    for attempt in range(attempts):
        try:
            return await executor.invoke(command, context)
        except SpawnFailureError as e:
            if attempt >= attempts - 1:
                log.error(
                    "spawn_failed_max_retries",
                    binary=command.binary,
                    max_attempts=attempts,
                    error=str(e),
                )
                raise
            log.warning(
                "spawn_failed_retrying",
                binary=command.binary,
                attempt=attempt + 1,
                max_attempts=attempts,
                delay=delay,
                error=str(e),
            )
            await asyncio.sleep(delay)
            delay = min(delay * exponential_base, max_delay)

    raise RuntimeError("invoke_with_retry made no attempts")
