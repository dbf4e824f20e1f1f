"""Content analysis: obfuscation decoding and rule-based risk scoring."""

from content_firewall.analysis.analyzer import ContentAnalyzer, analyze
from content_firewall.analysis.decoders import DecodeResult, peel_layers

__all__ = [
    "ContentAnalyzer",
    "DecodeResult",
    "analyze",
    "peel_layers",
]
