# src/config/settings.py — v1
"""Typed configuration loaded from .env via pydantic-settings.

Single source of truth for retention limits, defaults applied to new
phases and tasks, audit log limits and logging.
"""

from __future__ import annotations

import getpass
from pathlib import Path
from typing import Literal

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from planvault.logging.handlers import parse_size


class ConfigurationError(Exception):
    """Raised when configuration is internally inconsistent."""


class Settings(BaseSettings):
    """Application settings loaded from .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # === Backups ===
    backup_retention: int = 5
    logs_backup_retention: int = 5

    # === Defaults for new structure ===
    default_phase_estimated_tokens: int = 5000
    default_phase_estimated_duration: str = "1h"
    default_task_estimated_tokens: int = 1000

    # === Audit log ===
    audit_log_enabled: bool = True
    audit_log_rotation: str = "10MB"
    audit_log_retention: int = 5
    audit_snapshot_max_size: str = "50KB"
    audit_actor: str = ""
    audit_source: Literal["api", "cli", "nl", "scheduler"] = "api"

    # === Scheduler ===
    parallel_token_factor: float = 1.5

    # === Logging ===
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_format: Literal["json", "text"] = "json"
    log_file: Path | None = None
    log_rotation: str = "10MB"
    log_retention: int = 30

    # --- Validators ---

    @field_validator(
        "backup_retention", "logs_backup_retention", "audit_log_retention"
    )
    @classmethod
    def validate_retention(cls, v: int) -> int:  # noqa: N805
        if v < 1:
            raise ValueError("retention counts must be >= 1")
        return v

    @field_validator(
        "default_phase_estimated_tokens", "default_task_estimated_tokens"
    )
    @classmethod
    def validate_token_defaults(cls, v: int) -> int:  # noqa: N805
        if v < 0:
            raise ValueError("default token estimates must be >= 0")
        return v

    @model_validator(mode="after")
    def validate_config_consistency(self) -> Settings:
        """Validate size strings and cross-field rules."""
        errors: list[str] = []

        for name in ("audit_log_rotation", "audit_snapshot_max_size", "log_rotation"):
            try:
                parse_size(getattr(self, name))
            except ValueError as exc:
                errors.append(f"{name.upper()}: {exc}")

        if not errors and self.audit_snapshot_bytes >= self.audit_log_max_bytes:
            errors.append("AUDIT_SNAPSHOT_MAX_SIZE must be < AUDIT_LOG_ROTATION")

        if self.parallel_token_factor <= 0:
            errors.append("PARALLEL_TOKEN_FACTOR must be > 0")

        if errors:
            raise ConfigurationError("; ".join(errors))

        return self

    # --- Helpers ---

    @property
    def audit_log_max_bytes(self) -> int:
        return parse_size(self.audit_log_rotation)

    @property
    def audit_snapshot_bytes(self) -> int:
        return parse_size(self.audit_snapshot_max_size)

    @property
    def actor(self) -> str:
        """Audit actor: explicit override, else the OS user."""
        if self.audit_actor:
            return self.audit_actor
        try:
            return getpass.getuser()
        except (KeyError, OSError):
            return "unknown"


def load_settings(**overrides: object) -> Settings:
    """Load settings from .env with optional overrides.

    Args:
        **overrides: Field-level overrides (for testing or per-call config).

    Returns:
        Validated Settings instance.

    Raises:
        ConfigurationError: If configuration is internally inconsistent.
    """
    return Settings(**overrides)  # type: ignore[arg-type]
