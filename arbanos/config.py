"""
ArbanOS -- Configuration System

All configuration is Pydantic-validated and loaded from:
1. default.yaml (defaults)
2. Environment variables (overrides)

Every tunable parameter of the trust core lives here.
"""

from __future__ import annotations

import os
from decimal import Decimal
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# ─── Sub-configs ──────────────────────────────────────────────────


class VerificationConfig(BaseModel):
    # Outbound vouches an ordinary citizen may grant
    default_quota: int = Field(default=5, ge=0)
    # Safety bounds against cyclic or pathological graphs, not business rules
    chain_max_depth: int = Field(default=10, ge=1)
    cascade_max_depth: int = Field(default=10, ge=1)
    # Target must have accepted the constitution before being vouched for
    require_constitution: bool = True


class LevelConfig(BaseModel):
    unverified_emission_limit: Decimal = Decimal("100")
    group_verified_emission_limit: Decimal = Decimal("1000")

    @model_validator(mode="after")
    def _limits_ascend(self) -> LevelConfig:
        if self.group_verified_emission_limit < self.unverified_emission_limit:
            raise ValueError("group_verified_emission_limit must be >= unverified_emission_limit")
        return self


class GroupConfig(BaseModel):
    size: int = Field(default=5, ge=2)

    @property
    def required_edges(self) -> int:
        """Each member verifies every other member once: n * (n - 1)."""
        return self.size * (self.size - 1)


class LoggingConfig(BaseModel):
    level: str = "INFO"
    format: str = "console"  # "console" | "json"


# ─── Root Configuration ──────────────────────────────────────────


class ArbanOSConfig(BaseSettings):
    """
    Root configuration. Loads from YAML, overridable by env vars.
    """

    model_config = SettingsConfigDict(
        env_prefix="ARBANOS_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    instance_id: str = "arbanos-default"

    verification: VerificationConfig = Field(default_factory=VerificationConfig)
    levels: LevelConfig = Field(default_factory=LevelConfig)
    groups: GroupConfig = Field(default_factory=GroupConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge override into base."""
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def load_config(config_path: str | Path | None = None) -> ArbanOSConfig:
    """
    Load configuration from YAML file, then apply environment variable overrides.
    """
    raw: dict[str, Any] = {}

    if config_path:
        path = Path(config_path)
        if path.exists():
            with open(path) as f:
                raw = yaml.safe_load(f) or {}

    overrides: dict[str, Any] = {}
    if instance_id := os.environ.get("ARBANOS_INSTANCE_ID"):
        overrides["instance_id"] = instance_id
    if quota := os.environ.get("ARBANOS_VERIFICATION__DEFAULT_QUOTA"):
        overrides.setdefault("verification", {})["default_quota"] = int(quota)
    if cascade_depth := os.environ.get("ARBANOS_VERIFICATION__CASCADE_MAX_DEPTH"):
        overrides.setdefault("verification", {})["cascade_max_depth"] = int(cascade_depth)
    if chain_depth := os.environ.get("ARBANOS_VERIFICATION__CHAIN_MAX_DEPTH"):
        overrides.setdefault("verification", {})["chain_max_depth"] = int(chain_depth)
    if require_constitution := os.environ.get("ARBANOS_VERIFICATION__REQUIRE_CONSTITUTION"):
        overrides.setdefault("verification", {})["require_constitution"] = (
            require_constitution.lower() in ("true", "1", "yes")
        )
    if unverified_limit := os.environ.get("ARBANOS_LEVELS__UNVERIFIED_EMISSION_LIMIT"):
        overrides.setdefault("levels", {})["unverified_emission_limit"] = Decimal(unverified_limit)
    if group_limit := os.environ.get("ARBANOS_LEVELS__GROUP_VERIFIED_EMISSION_LIMIT"):
        overrides.setdefault("levels", {})["group_verified_emission_limit"] = Decimal(group_limit)
    if group_size := os.environ.get("ARBANOS_GROUPS__SIZE"):
        overrides.setdefault("groups", {})["size"] = int(group_size)
    if log_level := os.environ.get("ARBANOS_LOGGING__LEVEL"):
        overrides.setdefault("logging", {})["level"] = log_level
    if log_format := os.environ.get("ARBANOS_LOGGING__FORMAT"):
        overrides.setdefault("logging", {})["format"] = log_format

    return ArbanOSConfig(**_deep_merge(raw, overrides))
