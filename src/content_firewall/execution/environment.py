"""Child-process environment sanitizing."""

from __future__ import annotations

import os
import re
from collections.abc import Iterable, Mapping


def is_sensitive_name(name: str, patterns: Iterable[re.Pattern[str]]) -> bool:
    """Return True if the variable *name* matches any sensitive pattern."""
    return any(p.search(name) for p in patterns)


def sanitize_env(
    env: Mapping[str, str] | None,
    patterns: Iterable[re.Pattern[str]],
) -> dict[str, str]:
    """Copy *env* (default: ``os.environ``) without sensitive variables.

    No key in the returned mapping matches any of *patterns*.
    """
    source = os.environ if env is None else env
    compiled = tuple(patterns)
    return {k: v for k, v in source.items() if not is_sensitive_name(k, compiled)}
