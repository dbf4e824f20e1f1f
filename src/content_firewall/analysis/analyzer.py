"""Content analyzer: obfuscation-aware risk scoring of untrusted text.

The analyzer is a pure function of its input and rule table. It peels
encoding layers off the text, runs the command and injection rule sets
against the decoded and the original text and turns the matches into a
clamped 0-100 risk score and a recommendation.
"""

from __future__ import annotations

from content_firewall.analysis.decoders import normalize_unicode, peel_layers
from content_firewall.config import get_settings
from content_firewall.logging import get_logger
from content_firewall.models import (
    AnalysisResult,
    DetectedPattern,
    ObfuscationLevel,
    Recommendation,
)
from content_firewall.rules import RuleTable, get_rule_table

log = get_logger("content_firewall.analysis.analyzer")

_MAX_SCORE = 100


class ContentAnalyzer:
    """Score untrusted text against a rule table.

    Holds no mutable state, so one instance can serve concurrent callers.
    """

    def __init__(
        self,
        rules: RuleTable | None = None,
        *,
        block_score: int | None = None,
        warn_score: int | None = None,
        max_rounds: int | None = None,
    ) -> None:
        settings = get_settings()
        self._rules = rules or get_rule_table()
        self._block_score = block_score if block_score is not None else settings.block_score
        self._warn_score = warn_score if warn_score is not None else settings.warn_score
        self._max_rounds = max_rounds if max_rounds is not None else settings.max_decode_depth

    @property
    def rules(self) -> RuleTable:
        return self._rules

    def analyze(self, text: str) -> AnalysisResult:
        """Decode, match and score *text*.

        Args:
            text: Content that already passed ingress validation.

        Returns:
            An :class:`AnalysisResult` carrying the decoded text.
        """
        decoded = peel_layers(text, max_rounds=self._max_rounds)
        level = ObfuscationLevel.from_layers(decoded.layers)

        # Decoding can also break a pattern apart, so the undecoded form is
        # matched too
        detected = self.match(decoded.text, normalize_unicode(text))

        scoring = self._rules.scoring
        score = scoring.obfuscation_base[level]
        for pattern in detected:
            score += scoring.severity_weights[pattern.severity]
        score = max(0, min(_MAX_SCORE, score))

        result = AnalysisResult(
            risk_score=score,
            detected=detected,
            obfuscation_level=level,
            recommendation=Recommendation.ALLOW,
            decoded_text=decoded.text,
        )
        result.recommendation = self._recommend(result)

        if result.recommendation != Recommendation.ALLOW:
            log.info(
                "content_flagged",
                recommendation=result.recommendation.value,
                risk_score=score,
                obfuscation=level.value,
                decode_steps=decoded.steps,
                patterns=result.pattern_ids,
                rules_version=self._rules.version,
            )
        return result

    def match(self, *texts: str) -> list[DetectedPattern]:
        """Run both content rule sets over *texts*; one entry per matching rule.

        The first text a rule matches supplies its offset and matched text.
        """
        detected: list[DetectedPattern] = []
        for rule in self._rules.content_rules:
            match = next(filter(None, (rule.regex.search(t) for t in texts)), None)
            if match:
                detected.append(
                    DetectedPattern(
                        kind=rule.kind,
                        pattern_id=rule.rule_id,
                        matched_text=match.group(0)[:200],
                        offset=match.start(),
                        severity=rule.severity,
                    )
                )
        return detected

    def _recommend(self, result: AnalysisResult) -> Recommendation:
        if result.risk_score >= self._block_score or result.has_critical_command:
            return Recommendation.BLOCK
        if result.risk_score >= self._warn_score or result.detected:
            return Recommendation.WARN
        return Recommendation.ALLOW


def analyze(text: str) -> AnalysisResult:
    """Analyze *text* with the configured rule table and thresholds."""
    return ContentAnalyzer().analyze(text)
