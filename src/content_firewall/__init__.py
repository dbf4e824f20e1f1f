"""Content firewall: defense pipeline between untrusted content and agent tools.

Public API
----------
- :class:`DefensePipeline`: ingress, analysis, threat tracking, agent context
- :class:`IngressValidator`: size, encoding-bomb and blocked-source checks
- :class:`ContentAnalyzer` / :func:`analyze`: obfuscation-aware risk scoring
- :class:`ContextBuilder` / :func:`build_context`: capability sets
- :class:`SecureExecutor`: the only path to process execution
- :class:`ThreatMonitor`: per-source auto-blocking and alerting
"""

from content_firewall.analysis import ContentAnalyzer, analyze
from content_firewall.context import ContextBuilder, build_context
from content_firewall.execution import SecureExecutor, invoke_with_retry, sanitize_env
from content_firewall.ingress import IngressValidator
from content_firewall.logging import get_logger, setup_logging
from content_firewall.monitor import ThreatMonitor
from content_firewall.pipeline import DefensePipeline, PipelineOutcome

__version__ = "0.1.0"

__all__ = [
    "ContentAnalyzer",
    "ContextBuilder",
    "DefensePipeline",
    "IngressValidator",
    "PipelineOutcome",
    "SecureExecutor",
    "ThreatMonitor",
    "analyze",
    "build_context",
    "get_logger",
    "invoke_with_retry",
    "sanitize_env",
    "setup_logging",
]
