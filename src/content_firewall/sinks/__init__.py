"""Audit and alert sinks (injectable collaborators)."""

from content_firewall.sinks.alerts import (
    Alert,
    AlertChannel,
    AlertDispatcher,
    AlertPriority,
    AlertType,
    LoggingAlertChannel,
    WebhookAlertChannel,
)
from content_firewall.sinks.audit import AuditSink, AuditTrail, LoggingAuditSink, MemoryAuditSink

__all__ = [
    "Alert",
    "AlertChannel",
    "AlertDispatcher",
    "AlertPriority",
    "AlertType",
    "AuditSink",
    "AuditTrail",
    "LoggingAlertChannel",
    "LoggingAuditSink",
    "MemoryAuditSink",
    "WebhookAlertChannel",
]
