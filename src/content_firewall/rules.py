"""Versioned rule tables.

Detection rules, the executor allowlist and the sensitive environment names
are data, loaded from JSON so operators can update them without a code
change. The packaged ``default_rules.json`` is used when no path is given.
"""

from __future__ import annotations

import json
import re
from collections.abc import Iterable
from dataclasses import dataclass, field, replace
from functools import lru_cache
from importlib import resources
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, ValidationError, field_validator

from content_firewall.config import get_settings
from content_firewall.errors import RuleTableError
from content_firewall.logging import get_logger
from content_firewall.models import ObfuscationLevel, PatternKind, Severity

log = get_logger("content_firewall.rules")

_DEFAULT_RULES_RESOURCE = "default_rules.json"


# ---------------------------------------------------------------------------
# Public rule types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PatternRule:
    """A single severity-tagged matcher."""

    rule_id: str
    kind: PatternKind
    regex: re.Pattern[str]
    severity: Severity
    description: str = ""


@dataclass(frozen=True)
class ScoringTable:
    """Weights used by the analyzer's risk score."""

    obfuscation_base: dict[ObfuscationLevel, int]
    severity_weights: dict[Severity, int]


@dataclass(frozen=True)
class RuleTable:
    """A complete, versioned set of detection and execution rules."""

    version: str
    scoring: ScoringTable
    command_rules: tuple[PatternRule, ...]
    injection_rules: tuple[PatternRule, ...]
    argument_rules: tuple[PatternRule, ...]
    allowed_binaries: frozenset[str]
    binary_name_regex: re.Pattern[str]
    sensitive_env_patterns: tuple[re.Pattern[str], ...] = field(default=())

    @property
    def content_rules(self) -> tuple[PatternRule, ...]:
        """Both analyzer rule sets, command rules first."""
        return self.command_rules + self.injection_rules


# ---------------------------------------------------------------------------
# JSON schema (validated with pydantic)
# ---------------------------------------------------------------------------


class _RuleSpec(BaseModel):
    rule_id: str = Field(min_length=1)
    severity: Severity
    pattern: str = Field(min_length=1)
    description: str = ""
    case_sensitive: bool = False

    @field_validator("pattern")
    @classmethod
    def validate_pattern(cls, v: str) -> str:
        try:
            re.compile(v)
        except re.error as e:
            raise ValueError(f"invalid regular expression: {e}") from e
        return v


class _ScoringSpec(BaseModel):
    obfuscation_base: dict[ObfuscationLevel, int]
    severity_weights: dict[Severity, int]

    @field_validator("obfuscation_base")
    @classmethod
    def validate_levels(cls, v: dict[ObfuscationLevel, int]) -> dict[ObfuscationLevel, int]:
        missing = set(ObfuscationLevel) - set(v)
        if missing:
            raise ValueError(f"missing obfuscation levels: {sorted(m.value for m in missing)}")
        return v

    @field_validator("severity_weights")
    @classmethod
    def validate_severities(cls, v: dict[Severity, int]) -> dict[Severity, int]:
        missing = set(Severity) - set(v)
        if missing:
            raise ValueError(f"missing severities: {sorted(m.value for m in missing)}")
        return v


class _RuleTableSpec(BaseModel):
    version: str = Field(min_length=1)
    scoring: _ScoringSpec
    command_rules: list[_RuleSpec]
    injection_rules: list[_RuleSpec]
    argument_rules: list[_RuleSpec]
    allowed_binaries: list[str]
    binary_name_pattern: str
    sensitive_env_patterns: list[str] = Field(default_factory=list)


def _compile_rules(specs: list[_RuleSpec], kind: PatternKind) -> tuple[PatternRule, ...]:
    rules: list[PatternRule] = []
    seen: set[str] = set()
    for spec in specs:
        if spec.rule_id in seen:
            raise RuleTableError(f"duplicate {kind.value} rule id: {spec.rule_id}")
        seen.add(spec.rule_id)
        flags = 0 if spec.case_sensitive else re.IGNORECASE
        rules.append(
            PatternRule(
                rule_id=spec.rule_id,
                kind=kind,
                regex=re.compile(spec.pattern, flags),
                severity=spec.severity,
                description=spec.description,
            )
        )
    return tuple(rules)


def parse_rule_table(data: dict[str, Any]) -> RuleTable:
    """Validate raw rule-table data and compile it.

    Raises:
        RuleTableError: If the data does not describe a valid rule table.
    """
    try:
        spec = _RuleTableSpec.model_validate(data)
        binary_name_regex = re.compile(spec.binary_name_pattern)
        env_patterns = tuple(re.compile(p, re.IGNORECASE) for p in spec.sensitive_env_patterns)
    except ValidationError as e:
        raise RuleTableError(f"invalid rule table: {e}") from e
    except re.error as e:
        raise RuleTableError(f"invalid rule table pattern: {e}") from e

    return RuleTable(
        version=spec.version,
        scoring=ScoringTable(
            obfuscation_base=dict(spec.scoring.obfuscation_base),
            severity_weights=dict(spec.scoring.severity_weights),
        ),
        command_rules=_compile_rules(spec.command_rules, PatternKind.COMMAND),
        injection_rules=_compile_rules(spec.injection_rules, PatternKind.INJECTION),
        argument_rules=_compile_rules(spec.argument_rules, PatternKind.ARGUMENT),
        allowed_binaries=frozenset(spec.allowed_binaries),
        binary_name_regex=binary_name_regex,
        sensitive_env_patterns=env_patterns,
    )


def load_rule_table(
    path: str | Path | None = None, *, extra_binaries: Iterable[str] = ()
) -> RuleTable:
    """Load a rule table from *path*, or the packaged defaults.

    *extra_binaries* are added to the table's allowlist; deployments use it
    to allow their own CLI without editing the rule file.

    Raises:
        RuleTableError: If the file cannot be read or is invalid.
    """
    try:
        if path is None:
            raw = (
                resources.files("content_firewall")
                .joinpath(_DEFAULT_RULES_RESOURCE)
                .read_text(encoding="utf-8")
            )
            origin = f"package:{_DEFAULT_RULES_RESOURCE}"
        else:
            raw = Path(path).read_text(encoding="utf-8")
            origin = str(path)
        data = json.loads(raw)
    except (OSError, json.JSONDecodeError) as e:
        raise RuleTableError(f"could not load rule table from {path or 'package'}: {e}") from e

    table = parse_rule_table(data)
    extra = frozenset(extra_binaries) - table.allowed_binaries
    if extra:
        table = replace(table, allowed_binaries=table.allowed_binaries | extra)
    log.info(
        "rule_table_loaded",
        origin=origin,
        version=table.version,
        command_rules=len(table.command_rules),
        injection_rules=len(table.injection_rules),
        argument_rules=len(table.argument_rules),
        allowed_binaries=len(table.allowed_binaries),
        extra_binaries=sorted(extra),
    )
    return table


@lru_cache
def get_rule_table() -> RuleTable:
    """Get the cached rule table named by settings (packaged defaults if unset)."""
    settings = get_settings()
    return load_rule_table(settings.rules_path, extra_binaries=settings.app_cli_binaries)
