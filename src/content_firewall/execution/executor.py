"""Secure executor: the only path by which a command may run.

Every call is re-validated here regardless of what the analyzer concluded:
schema, binary allowlist, argument blocklist and the context's execution
capability. Processes are started with a discrete argument vector (never
through a shell), a sanitized environment and a hard wall-clock timeout.
Each call, allowed or denied, produces one :class:`ExecutionRecord` that is
sent to the audit trail and the threat monitor before returning.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Mapping
from typing import TYPE_CHECKING

from content_firewall.config import get_settings
from content_firewall.errors import (
    BlockedArgumentPatternError,
    CapabilityDeniedError,
    DisallowedBinaryError,
    InvalidCommandError,
    SecurityError,
    SpawnFailureError,
)
from content_firewall.execution.environment import sanitize_env
from content_firewall.logging import get_logger
from content_firewall.models import (
    AgentContext,
    Command,
    DenyReason,
    ExecOutput,
    ExecutionOutcome,
    ExecutionRecord,
)
from content_firewall.rules import RuleTable, get_rule_table

if TYPE_CHECKING:
    from content_firewall.monitor.threat_monitor import ThreatMonitor
    from content_firewall.sinks.audit import AuditTrail

log = get_logger("content_firewall.execution.executor")


class SecureExecutor:
    """Policy-enforcing process launcher."""

    def __init__(
        self,
        rules: RuleTable | None = None,
        *,
        monitor: ThreatMonitor | None = None,
        audit: AuditTrail | None = None,
        binary_paths: Mapping[str, str] | None = None,
        base_env: Mapping[str, str] | None = None,
        default_timeout_ms: int | None = None,
        max_timeout_ms: int | None = None,
        max_output_bytes: int | None = None,
    ) -> None:
        """Initialize the executor.

        Args:
            rules: Rule table with the allowlist and argument blocklist.
            monitor: Threat monitor notified of every call.
            audit: Audit trail receiving every execution record.
            binary_paths: Optional pinning of allowlisted names to absolute
                paths. Unpinned names are resolved through ``PATH``.
            base_env: Environment to sanitize for children (default:
                ``os.environ`` at call time).
            default_timeout_ms: Timeout used when a command sets none.
            max_timeout_ms: Upper bound accepted for ``Command.timeout_ms``.
            max_output_bytes: Captured output is truncated past this size.
        """
        settings = get_settings()
        self._rules = rules or get_rule_table()
        self._monitor = monitor
        self._audit = audit
        self._binary_paths = dict(binary_paths or {})
        self._base_env = base_env
        self._default_timeout_ms = default_timeout_ms or settings.default_timeout_ms
        self._max_timeout_ms = max_timeout_ms or settings.max_timeout_ms
        self._max_output = max_output_bytes or settings.max_output_bytes

    async def invoke(self, command: Command, context: AgentContext) -> ExecOutput:
        """Validate and run *command* on behalf of *context*.

        Raises:
            SecurityError: On any policy violation (never retryable).
            SpawnFailureError: If the OS could not start the process.
        """
        try:
            timeout_ms = self.check(command, context)
        except SecurityError as e:
            log.warning(
                "execution_denied",
                actor_source=context.source_id,
                binary=command.binary,
                reason=e.reason.value,
                detail=str(e),
            )
            await self._report(
                ExecutionRecord(
                    command=command,
                    actor_source=context.source_id,
                    outcome=ExecutionOutcome.DENIED,
                    deny_reason=e.reason,
                    detail=str(e),
                ),
                context,
            )
            raise

        try:
            output = await self._spawn(command, timeout_ms)
        except SpawnFailureError as e:
            log.error(
                "execution_spawn_failed",
                actor_source=context.source_id,
                binary=command.binary,
                error=str(e),
            )
            await self._report(
                ExecutionRecord(
                    command=command,
                    actor_source=context.source_id,
                    outcome=ExecutionOutcome.DENIED,
                    deny_reason=DenyReason.SPAWN_FAILURE,
                    detail=str(e),
                ),
                context,
            )
            raise
        except asyncio.CancelledError:
            # The child is already killed; the call still leaves a record
            log.warning(
                "execution_cancelled", actor_source=context.source_id, binary=command.binary
            )
            await asyncio.shield(
                self._report(
                    ExecutionRecord(
                        command=command,
                        actor_source=context.source_id,
                        outcome=ExecutionOutcome.ALLOWED,
                        detail="cancelled",
                    ),
                    context,
                )
            )
            raise

        log.info(
            "execution_completed",
            actor_source=context.source_id,
            binary=command.binary,
            exit_code=output.exit_code,
            timed_out=output.timed_out,
            duration_ms=round(output.duration_ms, 2),
        )
        await self._report(
            ExecutionRecord(
                command=command,
                actor_source=context.source_id,
                outcome=ExecutionOutcome.ALLOWED,
                exit_code=output.exit_code,
                timed_out=output.timed_out,
                detail="timeout" if output.timed_out else None,
            ),
            context,
        )
        return output

    def check(self, command: Command, context: AgentContext) -> int:
        """Run the policy checks without spawning anything.

        Schema, allowlist and argument checks run in that order and stop at
        the first violation. A context without the execution capability is
        always denied with :class:`CapabilityDeniedError`, whatever those
        checks found.

        Returns:
            The effective timeout in milliseconds.
        """
        violation: SecurityError | None = None
        timeout_ms = self._default_timeout_ms
        try:
            timeout_ms = self._check_schema(command)
            self._check_allowlist(command)
            self._check_arguments(command)
        except SecurityError as e:
            violation = e

        if not context.restrictions.allow_execution:
            detail = "execution capability not granted to this context"
            if violation is not None:
                detail += f" (also: {violation})"
            raise CapabilityDeniedError(detail, binary=command.binary)
        if violation is not None:
            raise violation
        return timeout_ms

    def _check_schema(self, command: Command) -> int:
        binary = command.binary
        if not isinstance(binary, str) or not self._rules.binary_name_regex.match(binary):
            raise InvalidCommandError(f"invalid binary name: {binary!r}", binary=str(binary))
        if not isinstance(command.args, (list, tuple)):
            raise InvalidCommandError("args must be a list of strings", binary=binary)
        for arg in command.args:
            if not isinstance(arg, str):
                raise InvalidCommandError("args must be a list of strings", binary=binary)
            if "\x00" in arg:
                raise InvalidCommandError("NUL byte in argument", binary=binary)
        if command.cwd is not None and (not isinstance(command.cwd, str) or "\x00" in command.cwd):
            raise InvalidCommandError("invalid working directory", binary=binary)

        timeout_ms = command.timeout_ms
        if timeout_ms is None:
            return self._default_timeout_ms
        if isinstance(timeout_ms, bool) or not isinstance(timeout_ms, int) or timeout_ms <= 0:
            raise InvalidCommandError(f"invalid timeout: {timeout_ms!r}", binary=binary)
        if timeout_ms > self._max_timeout_ms:
            raise InvalidCommandError(
                f"timeout {timeout_ms}ms exceeds maximum {self._max_timeout_ms}ms",
                binary=binary,
            )
        return timeout_ms

    def _check_allowlist(self, command: Command) -> None:
        if command.binary not in self._rules.allowed_binaries:
            raise DisallowedBinaryError(
                f"binary not in allowlist: {command.binary}", binary=command.binary
            )

    def _check_arguments(self, command: Command) -> None:
        # Joined for matching only; never executed as a string
        command_line = " ".join([command.binary, *command.args])
        for rule in self._rules.argument_rules:
            if rule.regex.search(command_line):
                raise BlockedArgumentPatternError(
                    f"blocked argument pattern: {rule.rule_id}",
                    binary=command.binary,
                    rule_id=rule.rule_id,
                )

    async def _spawn(self, command: Command, timeout_ms: int) -> ExecOutput:
        program = self._binary_paths.get(command.binary, command.binary)
        env = sanitize_env(self._base_env, self._rules.sensitive_env_patterns)
        start = time.perf_counter()
        try:
            proc = await asyncio.create_subprocess_exec(
                program,
                *command.args,
                cwd=command.cwd,
                env=env,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise SpawnFailureError(
                f"failed to start {command.binary}: {e}", binary=command.binary
            ) from e

        timed_out = False
        stdout = b""
        stderr = b""
        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout_ms / 1000)
        except TimeoutError:
            timed_out = True
            log.warning("execution_timeout", binary=command.binary, timeout_ms=timeout_ms)
        finally:
            # Also runs on cancellation: the child must not outlive the call
            if proc.returncode is None:
                proc.kill()
                await asyncio.shield(proc.wait())

        out_text, out_truncated = self._decode(stdout)
        err_text, err_truncated = self._decode(stderr)
        return ExecOutput(
            exit_code=proc.returncode,
            stdout=out_text,
            stderr=err_text,
            duration_ms=(time.perf_counter() - start) * 1000,
            timed_out=timed_out,
            truncated=out_truncated or err_truncated,
        )

    def _decode(self, data: bytes) -> tuple[str, bool]:
        if len(data) <= self._max_output:
            return data.decode("utf-8", errors="replace"), False
        return data[: self._max_output].decode("utf-8", errors="replace"), True

    async def _report(self, record: ExecutionRecord, context: AgentContext) -> None:
        if self._audit is not None:
            await self._audit.record_execution(record)
        if self._monitor is not None:
            try:
                await self._monitor.record_execution(
                    record,
                    risk_score=context.analysis.risk_score,
                    is_external=context.is_external,
                )
            except Exception as e:
                log.error(
                    "threat_monitor_report_failed",
                    actor_source=record.actor_source,
                    error=str(e),
                )
