"""Configuration management for the content firewall."""

from __future__ import annotations

from functools import lru_cache
from typing import Self

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Firewall settings loaded from environment variables.

    Rule content (allowlist, pattern tables, sensitive env names) lives in
    the rule table file, not here. ``app_cli_binaries`` only extends the
    table's allowlist with the host application's own CLI.
    """

    model_config = SettingsConfigDict(
        env_prefix="CONTENT_FIREWALL_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        env_parse_none_str="",
    )

    # Application
    environment: str = Field(default="production", description="Environment name")
    log_level: str = Field(default="INFO", description="Logging level")
    log_to_file: bool = Field(default=False, description="Enable file-based logging")
    log_directory: str = Field(default="logs", description="Directory for log files")
    log_file_max_bytes: int = Field(
        default=10485760, description="Max bytes per log file before rotation (10MB)"
    )
    log_file_backup_count: int = Field(
        default=5, description="Number of rotated log files to keep"
    )

    # Rule table
    rules_path: str | None = Field(
        default=None, description="Path to a JSON rule table (packaged defaults if unset)"
    )
    app_cli_binaries: list[str] = Field(
        default_factory=list,
        description="Names of the host application's own CLI, added to the binary allowlist",
    )

    # Ingress
    max_content_length: int = Field(
        default=100_000, description="Maximum accepted content length in characters"
    )
    max_decode_depth: int = Field(
        default=10, description="Base64 decode iterations before declaring an encoding bomb"
    )

    # Analysis
    block_score: int = Field(default=70, description="Risk score at which content is blocked")
    warn_score: int = Field(default=30, description="Risk score at which content is flagged")

    # Agent context
    trusted_score_ceiling: int = Field(
        default=50, description="Trusted senders keep capabilities below this risk score"
    )
    trusted_max_response_length: int = Field(
        default=100_000, description="Response ceiling for trusted, low-risk contexts"
    )
    restricted_max_response_length: int = Field(
        default=10_000, description="Response ceiling for restricted contexts"
    )

    # Execution
    default_timeout_ms: int = Field(default=30_000, description="Command timeout when unset")
    max_timeout_ms: int = Field(default=300_000, description="Upper bound for command timeouts")
    max_output_bytes: int = Field(
        default=50_000, description="Captured stdout/stderr is truncated past this size"
    )
    spawn_retry_attempts: int = Field(
        default=3, description="Attempts made by invoke_with_retry on spawn failures"
    )

    # Threat monitor
    autoblock_threshold: int = Field(
        default=3, description="Violations inside the window that trigger an auto-block"
    )
    autoblock_window_seconds: float = Field(
        default=3600.0, description="Sliding window for violation counting (seconds)"
    )
    high_risk_score: int = Field(
        default=70, description="Events at or above this score count as violations"
    )
    alert_score: int = Field(default=80, description="Events at or above this score alert")

    # Alerting
    alert_webhook_url: str | None = Field(
        default=None, description="Webhook receiving JSON alerts (logging only if unset)"
    )
    alert_webhook_timeout: float = Field(default=5.0, description="Webhook timeout in seconds")

    @field_validator(
        "block_score",
        "warn_score",
        "trusted_score_ceiling",
        "high_risk_score",
        "alert_score",
    )
    @classmethod
    def validate_score(cls, v: int) -> int:
        """Validate risk scores are between 0 and 100."""
        if not 0 <= v <= 100:
            raise ValueError(f"Score must be between 0 and 100, got: {v}")
        return v

    @field_validator(
        "max_content_length",
        "max_decode_depth",
        "default_timeout_ms",
        "max_timeout_ms",
        "max_output_bytes",
        "autoblock_threshold",
        "spawn_retry_attempts",
    )
    @classmethod
    def validate_positive(cls, v: int) -> int:
        """Validate counts and limits are positive."""
        if v <= 0:
            raise ValueError(f"Value must be positive, got: {v}")
        return v

    @field_validator("autoblock_window_seconds")
    @classmethod
    def validate_window(cls, v: float) -> float:
        """Validate the auto-block window is positive."""
        if v <= 0:
            raise ValueError(f"autoblock_window_seconds must be positive, got: {v}")
        return v

    @model_validator(mode="after")
    def validate_thresholds(self) -> Self:
        """Validate cross-field consistency."""
        if self.warn_score > self.block_score:
            raise ValueError("warn_score must not exceed block_score")
        if self.default_timeout_ms > self.max_timeout_ms:
            raise ValueError("default_timeout_ms must not exceed max_timeout_ms")
        return self

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.environment.lower() == "development"

    @property
    def log_file_path(self) -> str:
        """Get the full path to the main log file."""
        return f"{self.log_directory}/content_firewall.log"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
