"""Exception taxonomy for the content firewall.

Policy rejections (:class:`SecurityError` subclasses) are never retryable.
:class:`SpawnFailureError` is an OS-level failure and may be retried by the
caller.
"""

from __future__ import annotations

from content_firewall.models import DenyReason


class ContentFirewallError(Exception):
    """Base exception for content firewall errors."""

    retryable: bool = False


class RuleTableError(ContentFirewallError):
    """A rule table could not be read or failed validation."""


class SecurityError(ContentFirewallError):
    """An executor call was rejected by policy."""

    reason: DenyReason = DenyReason.INVALID_COMMAND

    def __init__(self, message: str, *, binary: str | None = None) -> None:
        super().__init__(message)
        self.binary = binary


class InvalidCommandError(SecurityError):
    """Command failed schema validation."""

    reason = DenyReason.INVALID_COMMAND


class DisallowedBinaryError(SecurityError):
    """Binary is not on the allowlist."""

    reason = DenyReason.DISALLOWED_BINARY


class BlockedArgumentPatternError(SecurityError):
    """Command line matched a blocked argument pattern."""

    reason = DenyReason.BLOCKED_ARGUMENT_PATTERN

    def __init__(self, message: str, *, binary: str | None = None, rule_id: str = "") -> None:
        super().__init__(message, binary=binary)
        self.rule_id = rule_id


class CapabilityDeniedError(SecurityError):
    """Agent context does not grant execution."""

    reason = DenyReason.CAPABILITY_DENIED


class SpawnFailureError(ContentFirewallError):
    """The OS refused to start the process."""

    retryable = True
    reason = DenyReason.SPAWN_FAILURE

    def __init__(self, message: str, *, binary: str | None = None) -> None:
        super().__init__(message)
        self.binary = binary
