"""Stateful per-source threat tracking."""

from content_firewall.monitor.store import (
    InMemorySourceStateStore,
    PostgresSourceStateStore,
    SourceStateStore,
)
from content_firewall.monitor.threat_monitor import ThreatMonitor

__all__ = [
    "InMemorySourceStateStore",
    "PostgresSourceStateStore",
    "SourceStateStore",
    "ThreatMonitor",
]
