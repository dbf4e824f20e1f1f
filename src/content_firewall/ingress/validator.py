"""Ingress validation: cheap structural checks before any analysis.

Rejects oversized content and nested base64 "encoding bombs", and
normalizes Unicode so confusable characters cannot hide keywords from the
analyzer. Content from a source the threat monitor has blocked is turned
away here, before the analyzer ever sees it.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from content_firewall.analysis.decoders import b64decode_text, is_base64_blob, normalize_unicode
from content_firewall.config import get_settings
from content_firewall.logging import get_logger
from content_firewall.models import BlockReason, RawContent, ValidationResult
from content_firewall.redaction import content_hash

if TYPE_CHECKING:
    from content_firewall.monitor.threat_monitor import ThreatMonitor

log = get_logger("content_firewall.ingress.validator")


class IngressValidator:
    """Structural gatekeeper for raw inbound content."""

    def __init__(
        self,
        *,
        max_content_length: int | None = None,
        max_decode_depth: int | None = None,
        monitor: ThreatMonitor | None = None,
    ) -> None:
        settings = get_settings()
        self._max_length = max_content_length or settings.max_content_length
        self._max_depth = max_decode_depth or settings.max_decode_depth
        self._monitor = monitor

    async def admit(self, content: RawContent) -> ValidationResult:
        """Short-circuit blocked sources, then run :meth:`validate`."""
        if self._monitor is not None and await self._monitor.is_source_blocked(content.source_id):
            log.warning(
                "content_rejected",
                reason=BlockReason.SOURCE_BLOCKED.value,
                source_type=content.source_type,
                source_id=content.source_id,
                content_hash=content_hash(content.text),
            )
            return _rejected(BlockReason.SOURCE_BLOCKED)
        return self.validate(content)

    def validate(self, content: RawContent) -> ValidationResult:
        """Run the structural checks on *content*.

        Pure: touches no shared state and never calls the analyzer.
        """
        text = content.text

        if len(text) > self._max_length:
            log.warning(
                "content_rejected",
                reason=BlockReason.OVERSIZED_CONTENT.value,
                source_id=content.source_id,
                length=len(text),
                max_length=self._max_length,
            )
            return _rejected(BlockReason.OVERSIZED_CONTENT)

        depth = self._base64_depth(text)
        if depth >= self._max_depth:
            log.warning(
                "content_rejected",
                reason=BlockReason.ENCODING_BOMB_DETECTED.value,
                source_id=content.source_id,
                decode_depth=depth,
                content_hash=content_hash(text),
            )
            return _rejected(BlockReason.ENCODING_BOMB_DETECTED)

        warnings: list[str] = []
        if depth:
            warnings.append(f"base64_layers={depth}")

        sanitized = normalize_unicode(text)
        if sanitized != text:
            warnings.append("unicode_normalized")

        return ValidationResult(valid=True, sanitized_text=sanitized, warnings=warnings)

    def _base64_depth(self, text: str) -> int:
        """Count whole-content base64 layers, stopping at the depth cap.

        Returning the cap means the content was still decodable on the last
        permitted iteration.
        """
        current = text
        for depth in range(self._max_depth):
            if not is_base64_blob(current):
                return depth
            decoded = b64decode_text(current)
            if decoded is None:
                return depth
            current = decoded
        return self._max_depth


def _rejected(reason: BlockReason) -> ValidationResult:
    return ValidationResult(
        valid=False,
        sanitized_text="",
        blocked=True,
        block_reason=reason,
    )
