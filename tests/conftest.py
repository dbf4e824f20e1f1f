"""Pytest fixtures for content firewall tests."""

from __future__ import annotations

import os

import pytest

from content_firewall.analysis.analyzer import ContentAnalyzer
from content_firewall.monitor.store import InMemorySourceStateStore
from content_firewall.monitor.threat_monitor import ThreatMonitor
from content_firewall.rules import RuleTable, load_rule_table
from content_firewall.sinks.alerts import AlertDispatcher
from content_firewall.sinks.audit import AuditTrail, MemoryAuditSink


@pytest.fixture(scope="session", autouse=True)
def setup_test_environment():
    """Pin the environment name so development console rendering stays off."""
    os.environ.setdefault("CONTENT_FIREWALL_ENVIRONMENT", "test")
    yield


@pytest.fixture(autouse=True)
def _clear_caches():
    """Settings patched by one test must not leak into the next."""
    from content_firewall.config import get_settings
    from content_firewall.rules import get_rule_table

    get_settings.cache_clear()
    get_rule_table.cache_clear()
    yield
    get_settings.cache_clear()
    get_rule_table.cache_clear()


@pytest.fixture(scope="session")
def rules() -> RuleTable:
    """The packaged default rule table."""
    return load_rule_table()


@pytest.fixture
def analyzer(rules: RuleTable) -> ContentAnalyzer:
    return ContentAnalyzer(rules, block_score=70, warn_score=30, max_rounds=10)


@pytest.fixture
def audit_sink() -> MemoryAuditSink:
    return MemoryAuditSink()


@pytest.fixture
def alerts() -> AlertDispatcher:
    """Dispatcher with no channels; tests register mocks as needed."""
    return AlertDispatcher()


@pytest.fixture
def monitor(audit_sink: MemoryAuditSink, alerts: AlertDispatcher) -> ThreatMonitor:
    return ThreatMonitor(
        InMemorySourceStateStore(),
        audit=AuditTrail(audit_sink, alerts),
        alerts=alerts,
        autoblock_threshold=3,
        window_seconds=3600,
        high_risk_score=70,
        alert_score=80,
    )

