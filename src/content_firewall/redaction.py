"""Redaction of credential-shaped strings before they reach logs or sinks."""

from __future__ import annotations

import hashlib
import re

# (pattern, replacement); group references keep the surrounding syntax
_SECRET_PATTERNS: list[tuple[re.Pattern[str], str]] = [
    (
        re.compile(
            r"-----BEGIN (?:RSA |EC |DSA |OPENSSH )?PRIVATE KEY-----"
            r"[\s\S]*?(?:-----END [A-Z ]*PRIVATE KEY-----|$)"
        ),
        "[REDACTED]",
    ),
    (re.compile(r"\bAKIA[0-9A-Z]{16}\b"), "[REDACTED]"),
    (re.compile(r"\bgh[pousr]_[A-Za-z0-9]{36,}\b"), "[REDACTED]"),
    (re.compile(r"\bglpat-[A-Za-z0-9_-]{20,}\b"), "[REDACTED]"),
    (re.compile(r"\b(?:sk|pk|rk)_(?:test|live)_[A-Za-z0-9]{24,}\b"), "[REDACTED]"),
    (re.compile(r"\bsk-[A-Za-z0-9_-]{20,}\b"), "[REDACTED]"),
    (re.compile(r"\bBearer\s+[A-Za-z0-9._~+/=-]{20,}", re.IGNORECASE), "Bearer [REDACTED]"),
    (re.compile(r"\beyJ[A-Za-z0-9_-]{10,}\.[A-Za-z0-9_-]{10,}\.[A-Za-z0-9_-]{10,}"), "[REDACTED]"),
    (
        re.compile(
            r"((?:postgres(?:ql)?|mysql|mongodb(?:\+srv)?|redis)://[^:\s/]+:)[^@\s]+(@)",
            re.IGNORECASE,
        ),
        r"\1[REDACTED]\2",
    ),
    (
        re.compile(
            r"""((?:api[_-]?key|secret|password|passwd|pwd|token)["']?\s*[:=]\s*["']?)"""
            r"""[^"'\s,;]{8,}""",
            re.IGNORECASE,
        ),
        r"\1[REDACTED]",
    ),
]


def redact(text: str) -> str:
    """Replace anything that looks like a credential with a placeholder."""
    for pattern, replacement in _SECRET_PATTERNS:
        text = pattern.sub(replacement, text)
    return text


def preview(text: str, limit: int = 200) -> str:
    """Redacted, length-limited preview of *text* for forensic logs."""
    return redact(text[: limit * 2])[:limit]


def content_hash(text: str) -> str:
    """SHA-256 hex digest used to correlate content without storing it."""
    return hashlib.sha256(text.encode("utf-8", errors="replace")).hexdigest()
