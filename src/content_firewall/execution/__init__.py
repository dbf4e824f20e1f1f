"""Mediated command execution."""

from content_firewall.execution.environment import sanitize_env
from content_firewall.execution.executor import SecureExecutor
from content_firewall.execution.retry import invoke_with_retry

__all__ = ["SecureExecutor", "invoke_with_retry", "sanitize_env"]
