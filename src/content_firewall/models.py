"""Data models for the content firewall pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any


class Severity(StrEnum):
    """Severity attached to every pattern rule."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class PatternKind(StrEnum):
    """Which rule set a pattern belongs to."""

    COMMAND = "command"
    INJECTION = "injection"
    ARGUMENT = "argument"  # Executor-side argument blocklist


class ObfuscationLevel(StrEnum):
    """How many decoding layers were needed to reveal the plain text."""

    NONE = "none"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @classmethod
    def from_layers(cls, layers: int) -> ObfuscationLevel:
        if layers <= 0:
            return cls.NONE
        if layers == 1:
            return cls.LOW
        if layers == 2:
            return cls.MEDIUM
        return cls.HIGH


class Recommendation(StrEnum):
    """Action recommended by the content analyzer."""

    ALLOW = "allow"
    WARN = "warn"  # Allow but log and restrict
    BLOCK = "block"  # Drop the item


class BlockReason(StrEnum):
    """Why the ingress validator rejected content."""

    OVERSIZED_CONTENT = "oversized_content"
    ENCODING_BOMB_DETECTED = "encoding_bomb_detected"
    SOURCE_BLOCKED = "source_blocked"


class ExecutionOutcome(StrEnum):
    """Outcome of an executor call as seen by the audit trail."""

    ALLOWED = "allowed"
    DENIED = "denied"


class DenyReason(StrEnum):
    """Policy (or OS) reason an executor call did not complete."""

    INVALID_COMMAND = "invalid_command"
    DISALLOWED_BINARY = "disallowed_binary"
    BLOCKED_ARGUMENT_PATTERN = "blocked_argument_pattern"
    CAPABILITY_DENIED = "capability_denied"
    SPAWN_FAILURE = "spawn_failure"


class ThreatEventType(StrEnum):
    """Types of events tracked by the threat monitor."""

    BLOCKED = "blocked"
    WARNED = "warned"
    SUSPICIOUS = "suspicious"


class SourceStatus(StrEnum):
    """Lifecycle of a content source inside the threat monitor."""

    UNSEEN = "unseen"
    ACTIVE = "active"
    BLOCKED = "blocked"


def utc_now() -> datetime:
    return datetime.now(UTC)


# ---------------------------------------------------------------------------
# Ingress
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RawContent:
    """A single item of untrusted content produced by a channel adapter."""

    source_type: str  # email, webhook, chat, ...
    source_id: str
    text: str
    received_at: datetime = field(default_factory=utc_now)


@dataclass
class ValidationResult:
    """Result of the structural ingress checks."""

    valid: bool
    sanitized_text: str
    warnings: list[str] = field(default_factory=list)
    blocked: bool = False
    block_reason: BlockReason | None = None


# ---------------------------------------------------------------------------
# Analysis
# ---------------------------------------------------------------------------


@dataclass
class DetectedPattern:
    """A single rule match found by the content analyzer."""

    kind: PatternKind
    pattern_id: str
    matched_text: str
    offset: int
    severity: Severity

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "pattern_id": self.pattern_id,
            "matched_text": self.matched_text,
            "offset": self.offset,
            "severity": self.severity.value,
        }


@dataclass
class AnalysisResult:
    """The analyzer's verdict on one piece of content."""

    risk_score: int  # 0..100
    detected: list[DetectedPattern] = field(default_factory=list)
    obfuscation_level: ObfuscationLevel = ObfuscationLevel.NONE
    recommendation: Recommendation = Recommendation.ALLOW
    decoded_text: str = ""

    @property
    def pattern_ids(self) -> list[str]:
        return [p.pattern_id for p in self.detected]

    @property
    def has_critical_command(self) -> bool:
        return any(
            p.kind == PatternKind.COMMAND and p.severity == Severity.CRITICAL
            for p in self.detected
        )


# ---------------------------------------------------------------------------
# Agent context
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Restrictions:
    """Coarse capability flags handed to the agent orchestrator."""

    allow_execution: bool
    allow_file_write: bool
    allow_network_access: bool
    allow_credential_access: bool
    max_response_length: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "allow_execution": self.allow_execution,
            "allow_file_write": self.allow_file_write,
            "allow_network_access": self.allow_network_access,
            "allow_credential_access": self.allow_credential_access,
            "max_response_length": self.max_response_length,
        }


@dataclass(frozen=True)
class AgentAdvisory:
    """Structured advisory the orchestrator renders into its own prompt format."""

    is_external: bool
    source_id: str
    risk_score: int
    restrictions: Restrictions
    directives: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "is_external": self.is_external,
            "source_id": self.source_id,
            "risk_score": self.risk_score,
            "restrictions": self.restrictions.to_dict(),
            "directives": list(self.directives),
        }


@dataclass(frozen=True)
class AgentContext:
    """Capabilities granted to an agent acting on one piece of content."""

    is_external: bool
    source_id: str
    analysis: AnalysisResult
    restrictions: Restrictions
    advisory: AgentAdvisory


# ---------------------------------------------------------------------------
# Execution
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Command:
    """A command request from the tool-invocation layer.

    ``args`` is a discrete argument list and is never joined into a shell string
    for execution.
    """

    binary: str
    args: list[str] = field(default_factory=list)
    cwd: str | None = None
    timeout_ms: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "binary": self.binary,
            "args": list(self.args),
            "cwd": self.cwd,
            "timeout_ms": self.timeout_ms,
        }


@dataclass
class ExecOutput:
    """Output of a completed (or timed-out) process."""

    exit_code: int | None
    stdout: str = ""
    stderr: str = ""
    duration_ms: float = 0.0
    timed_out: bool = False
    truncated: bool = False

    @property
    def success(self) -> bool:
        return self.exit_code == 0 and not self.timed_out


@dataclass(frozen=True)
class ExecutionRecord:
    """Write-once audit entry for a single executor call."""

    command: Command
    actor_source: str
    outcome: ExecutionOutcome
    timestamp: datetime = field(default_factory=utc_now)
    deny_reason: DenyReason | None = None
    detail: str | None = None
    exit_code: int | None = None
    timed_out: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "command": self.command.to_dict(),
            "actor_source": self.actor_source,
            "timestamp": self.timestamp.isoformat(),
            "outcome": self.outcome.value,
            "deny_reason": self.deny_reason.value if self.deny_reason else None,
            "detail": self.detail,
            "exit_code": self.exit_code,
            "timed_out": self.timed_out,
        }


# ---------------------------------------------------------------------------
# Threat tracking
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ThreatEvent:
    """A security-relevant event attributed to one content source."""

    source_id: str
    event_type: ThreatEventType
    risk_score: int
    pattern_ids: tuple[str, ...] = ()
    timestamp: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "source_id": self.source_id,
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "risk_score": self.risk_score,
            "pattern_ids": list(self.pattern_ids),
        }


@dataclass
class SourceState:
    """Per-source tracking state owned by the threat monitor."""

    source_id: str
    window_events: list[ThreatEvent] = field(default_factory=list)
    blocked: bool = False
    blocked_at: datetime | None = None

    @property
    def status(self) -> SourceStatus:
        if self.blocked:
            return SourceStatus.BLOCKED
        return SourceStatus.ACTIVE
