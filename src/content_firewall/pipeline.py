"""Defense pipeline: ingress -> analysis -> threat tracking -> agent context.

Each stage short-circuits: content rejected by one stage is never handed
to the next. Commands issued later by the orchestrator go through
:class:`~content_firewall.execution.executor.SecureExecutor`, which re-checks
everything independently.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from enum import StrEnum

from content_firewall.analysis.analyzer import ContentAnalyzer
from content_firewall.config import Settings, get_settings
from content_firewall.context.builder import ContextBuilder
from content_firewall.execution.executor import SecureExecutor
from content_firewall.forensics import log_security_event
from content_firewall.ingress.validator import IngressValidator
from content_firewall.logging import get_logger
from content_firewall.models import (
    AgentContext,
    AnalysisResult,
    BlockReason,
    RawContent,
    Recommendation,
    ThreatEvent,
    ThreatEventType,
    ValidationResult,
)
from content_firewall.monitor.store import SourceStateStore
from content_firewall.monitor.threat_monitor import ThreatMonitor
from content_firewall.rules import RuleTable, load_rule_table
from content_firewall.sinks.alerts import AlertDispatcher, LoggingAlertChannel, WebhookAlertChannel
from content_firewall.sinks.audit import AuditSink, AuditTrail, LoggingAuditSink

log = get_logger("content_firewall.pipeline")


class Stage(StrEnum):
    """Last pipeline stage an item reached."""

    INGRESS = "ingress"
    ANALYSIS = "analysis"
    CONTEXT = "context"


@dataclass
class PipelineOutcome:
    """What happened to one item of inbound content."""

    request_id: str
    source_id: str
    stage: Stage
    validation: ValidationResult
    analysis: AnalysisResult | None = None
    context: AgentContext | None = None
    processing_time_ms: float = 0.0
    warnings: list[str] = field(default_factory=list)

    @property
    def accepted(self) -> bool:
        return self.context is not None

    @property
    def block_reason(self) -> BlockReason | None:
        return self.validation.block_reason


class DefensePipeline:
    """Run inbound content through every defense stage."""

    def __init__(
        self,
        *,
        validator: IngressValidator,
        analyzer: ContentAnalyzer,
        builder: ContextBuilder,
        monitor: ThreatMonitor,
        executor: SecureExecutor | None = None,
    ) -> None:
        self._validator = validator
        self._analyzer = analyzer
        self._builder = builder
        self._monitor = monitor
        self._executor = executor

    @classmethod
    def from_settings(
        cls,
        settings: Settings | None = None,
        *,
        rules: RuleTable | None = None,
        store: SourceStateStore | None = None,
        audit_sink: AuditSink | None = None,
        alerts: AlertDispatcher | None = None,
    ) -> DefensePipeline:
        """Wire a pipeline (and its executor) from settings.

        Unspecified collaborators default to in-memory state and
        logging-only sinks; a webhook alert channel is added when
        ``alert_webhook_url`` is set.
        """
        settings = settings or get_settings()
        rules = rules or load_rule_table(
            settings.rules_path, extra_binaries=settings.app_cli_binaries
        )

        if alerts is None:
            alerts = AlertDispatcher([LoggingAlertChannel()])
            if settings.alert_webhook_url:
                alerts.register_channel(
                    WebhookAlertChannel(
                        settings.alert_webhook_url, timeout=settings.alert_webhook_timeout
                    )
                )
        audit = AuditTrail(audit_sink or LoggingAuditSink(), alerts)

        monitor = ThreatMonitor(
            store,
            audit=audit,
            alerts=alerts,
            autoblock_threshold=settings.autoblock_threshold,
            window_seconds=settings.autoblock_window_seconds,
            high_risk_score=settings.high_risk_score,
            alert_score=settings.alert_score,
        )
        return cls(
            validator=IngressValidator(
                max_content_length=settings.max_content_length,
                max_decode_depth=settings.max_decode_depth,
                monitor=monitor,
            ),
            analyzer=ContentAnalyzer(
                rules,
                block_score=settings.block_score,
                warn_score=settings.warn_score,
                max_rounds=settings.max_decode_depth,
            ),
            builder=ContextBuilder(
                trusted_score_ceiling=settings.trusted_score_ceiling,
                trusted_max_response_length=settings.trusted_max_response_length,
                restricted_max_response_length=settings.restricted_max_response_length,
            ),
            monitor=monitor,
            executor=SecureExecutor(
                rules,
                monitor=monitor,
                audit=audit,
                default_timeout_ms=settings.default_timeout_ms,
                max_timeout_ms=settings.max_timeout_ms,
                max_output_bytes=settings.max_output_bytes,
            ),
        )

    @property
    def monitor(self) -> ThreatMonitor:
        return self._monitor

    @property
    def executor(self) -> SecureExecutor | None:
        return self._executor

    async def process(
        self,
        content: RawContent,
        *,
        is_trusted_sender: bool = False,
        request_id: str = "",
    ) -> PipelineOutcome:
        """Process one item of inbound content.

        Args:
            content: Raw content from a channel adapter.
            is_trusted_sender: Whether the adapter vouches for the sender.
            request_id: Correlation ID for logs (generated if empty).

        Returns:
            A :class:`PipelineOutcome`; ``accepted`` is False if dropped.
        """
        start = time.perf_counter()
        request_id = request_id or uuid.uuid4().hex

        # ---- Ingress ----
        validation = await self._validator.admit(content)
        if validation.blocked:
            await self._record_ingress_rejection(content, validation)
            elapsed = (time.perf_counter() - start) * 1000
            if validation.block_reason != BlockReason.SOURCE_BLOCKED:
                log_security_event(
                    content=content,
                    request_id=request_id,
                    validation=validation,
                    processing_ms=elapsed,
                )
            return PipelineOutcome(
                request_id=request_id,
                source_id=content.source_id,
                stage=Stage.INGRESS,
                validation=validation,
                processing_time_ms=elapsed,
            )

        # ---- Analysis ----
        # The analyzer repeats normalization itself and counts it as a layer
        analysis = self._analyzer.analyze(content.text)

        if analysis.recommendation == Recommendation.BLOCK:
            await self._monitor.record_event(
                ThreatEvent(
                    source_id=content.source_id,
                    event_type=ThreatEventType.BLOCKED,
                    risk_score=analysis.risk_score,
                    pattern_ids=tuple(analysis.pattern_ids),
                )
            )
            elapsed = (time.perf_counter() - start) * 1000
            log_security_event(
                content=content,
                request_id=request_id,
                validation=validation,
                analysis=analysis,
                processing_ms=elapsed,
            )
            return PipelineOutcome(
                request_id=request_id,
                source_id=content.source_id,
                stage=Stage.ANALYSIS,
                validation=validation,
                analysis=analysis,
                processing_time_ms=elapsed,
                warnings=list(validation.warnings),
            )

        if analysis.recommendation == Recommendation.WARN:
            await self._monitor.record_event(
                ThreatEvent(
                    source_id=content.source_id,
                    event_type=ThreatEventType.WARNED,
                    risk_score=analysis.risk_score,
                    pattern_ids=tuple(analysis.pattern_ids),
                )
            )

        # ---- Agent context ----
        context = self._builder.build(content.source_id, is_trusted_sender, analysis)
        elapsed = (time.perf_counter() - start) * 1000

        if analysis.recommendation == Recommendation.WARN:
            log_security_event(
                content=content,
                request_id=request_id,
                validation=validation,
                analysis=analysis,
                processing_ms=elapsed,
            )

        log.debug(
            "content_admitted",
            request_id=request_id,
            source_id=content.source_id,
            risk_score=analysis.risk_score,
            allow_execution=context.restrictions.allow_execution,
            processing_ms=round(elapsed, 2),
        )
        return PipelineOutcome(
            request_id=request_id,
            source_id=content.source_id,
            stage=Stage.CONTEXT,
            validation=validation,
            analysis=analysis,
            context=context,
            processing_time_ms=elapsed,
            warnings=list(validation.warnings),
        )

    async def _record_ingress_rejection(
        self, content: RawContent, validation: ValidationResult
    ) -> None:
        # Known-hostile sources are not re-counted
        if validation.block_reason == BlockReason.ENCODING_BOMB_DETECTED:
            event_type = ThreatEventType.BLOCKED
        elif validation.block_reason == BlockReason.OVERSIZED_CONTENT:
            event_type = ThreatEventType.SUSPICIOUS
        else:
            return
        await self._monitor.record_event(
            ThreatEvent(
                source_id=content.source_id,
                event_type=event_type,
                risk_score=0,
                pattern_ids=(validation.block_reason.value,) if validation.block_reason else (),
            )
        )
