"""Obfuscation decoders: percent-encoding, base64 and Unicode tricks.

Each decoder is a pure ``str -> str`` function that returns its input
unchanged when there is nothing to decode. :func:`peel_layers` applies them
in order until the text stops changing and counts the layers removed.
"""

from __future__ import annotations

import base64
import binascii
import re
import unicodedata
from dataclasses import dataclass, field
from urllib.parse import unquote

# Candidate base64 tokens: 8+ chars of the alphabet, optional padding
_BASE64_TOKEN = re.compile(r"(?<![A-Za-z0-9+/=])[A-Za-z0-9+/]{8,}={0,2}(?![A-Za-z0-9+/=])")

# Whole-content base64 (whitespace allowed, as in wrapped email bodies)
_BASE64_BLOB = re.compile(r"^[A-Za-z0-9+/\s]+={0,2}\s*$")

_PERCENT_ESCAPE = re.compile(r"%[0-9a-fA-F]{2}")

# Characters kept by Unicode normalization even though they are controls
_ALLOWED_CONTROLS = frozenset("\n\r\t")


@dataclass
class DecodeResult:
    """Outcome of peeling obfuscation layers off a text."""

    text: str
    layers: int = 0
    steps: list[str] = field(default_factory=list)


def _is_printable_ascii(text: str) -> bool:
    return bool(text) and all(c in _ALLOWED_CONTROLS or " " <= c <= "~" for c in text)


def _looks_encoded(token: str) -> bool:
    """Skip plain words: real base64 mixes case, digits or symbols."""
    stripped = token.rstrip("=")
    if stripped.isalpha() and (stripped.islower() or stripped.isupper()):
        return False
    return True


def b64decode_text(data: str, *, printable_only: bool = False) -> str | None:
    """Decode *data* as base64 text, or return ``None`` if it is not.

    Whitespace is ignored and missing padding is tolerated. With
    *printable_only* the decoded text must be printable ASCII.
    """
    compact = "".join(data.split())
    if len(compact) < 4:
        return None
    if "=" not in compact:
        if len(compact) % 4 == 1:
            return None
        compact += "=" * (-len(compact) % 4)
    try:
        raw = base64.b64decode(compact, validate=True)
        decoded = raw.decode("utf-8")
    except (binascii.Error, ValueError):
        return None
    if not decoded:
        return None
    if printable_only and not _is_printable_ascii(decoded):
        return None
    return decoded


def is_base64_blob(text: str) -> bool:
    """Return True if the whole of *text* is a decodable base64 blob."""
    stripped = text.strip()
    if not stripped or not _BASE64_BLOB.match(stripped):
        return False
    return b64decode_text(stripped) is not None


def percent_decode(text: str) -> str:
    """Decode ``%XX`` escapes."""
    if not _PERCENT_ESCAPE.search(text):
        return text
    return unquote(text)


def base64_decode_segments(text: str) -> str:
    """Replace every base64 token that decodes to printable ASCII.

    Tokens that decode to binary are left alone so ordinary identifiers and
    hashes are not corrupted.
    """

    def _replace(match: re.Match[str]) -> str:
        token = match.group(0)
        if not _looks_encoded(token):
            return token
        decoded = b64decode_text(token, printable_only=True)
        return decoded if decoded is not None else token

    return _BASE64_TOKEN.sub(_replace, text)


def normalize_unicode(text: str) -> str:
    """NFKC-normalize and drop invisible format/control characters.

    Collapses full-width and other confusable forms and removes zero-width
    joiners, bidi overrides and similar characters used to split keywords.
    """
    normalized = unicodedata.normalize("NFKC", text)
    return "".join(
        c
        for c in normalized
        if c in _ALLOWED_CONTROLS or unicodedata.category(c) not in ("Cf", "Cc")
    )


_DECODERS = (
    ("percent", percent_decode),
    ("base64", base64_decode_segments),
    ("unicode", normalize_unicode),
)


def peel_layers(text: str, max_rounds: int = 10) -> DecodeResult:
    """Apply all decoders repeatedly until the text reaches a fixed point.

    Every decoder application that changed the text counts as one layer.
    At most *max_rounds* passes are made over the decoder chain.
    """
    result = DecodeResult(text=text)
    for _ in range(max_rounds):
        changed = False
        for name, decoder in _DECODERS:
            decoded = decoder(result.text)
            if decoded != result.text:
                result.text = decoded
                result.layers += 1
                result.steps.append(name)
                changed = True
        if not changed:
            break
    return result
