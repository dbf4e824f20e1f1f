"""Forensic logging for dropped or flagged content.

Raw content is never logged: only a hash, the length and a redacted
preview of the raw and decoded text.
"""

from __future__ import annotations

from content_firewall.logging import get_logger
from content_firewall.models import AnalysisResult, RawContent, ValidationResult
from content_firewall.redaction import content_hash, preview

log = get_logger("content_firewall.forensics")


def log_security_event(
    *,
    content: RawContent,
    request_id: str,
    validation: ValidationResult | None = None,
    analysis: AnalysisResult | None = None,
    processing_ms: float = 0.0,
) -> None:
    """Log a detailed forensic record for a security event."""
    log.warning(
        "security_event",
        request_id=request_id,
        source_type=content.source_type,
        source_id=content.source_id,
        received_at=content.received_at.isoformat(),
        block_reason=(
            validation.block_reason.value if validation and validation.block_reason else None
        ),
        recommendation=analysis.recommendation.value if analysis else None,
        risk_score=analysis.risk_score if analysis else None,
        obfuscation=analysis.obfuscation_level.value if analysis else None,
        patterns=(
            [
                {
                    "kind": p.kind.value,
                    "pattern": p.pattern_id,
                    "severity": p.severity.value,
                    "matched": preview(p.matched_text, 100),
                }
                for p in analysis.detected
            ]
            if analysis
            else []
        ),
        content_hash=content_hash(content.text),
        content_length=len(content.text),
        content_preview=preview(content.text),
        decoded_preview=preview(analysis.decoded_text) if analysis else None,
        processing_ms=round(processing_ms, 2),
    )
