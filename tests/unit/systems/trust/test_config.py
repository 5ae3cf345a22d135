"""
Unit tests for configuration loading.
"""

from __future__ import annotations

from decimal import Decimal
from pathlib import Path

import pytest
from pydantic import ValidationError

from arbanos.config import ArbanOSConfig, GroupConfig, LevelConfig, load_config

DEFAULT_YAML = Path(__file__).resolve().parents[4] / "config" / "default.yaml"


class TestDefaults:
    def test_defaults(self):
        config = ArbanOSConfig()
        assert config.verification.default_quota == 5
        assert config.verification.cascade_max_depth == 10
        assert config.verification.chain_max_depth == 10
        assert config.verification.require_constitution
        assert config.levels.unverified_emission_limit == Decimal("100")
        assert config.levels.group_verified_emission_limit == Decimal("1000")
        assert config.groups.size == 5

    def test_required_edges(self):
        assert GroupConfig().required_edges == 20
        assert GroupConfig(size=3).required_edges == 6

    def test_limits_must_ascend(self):
        with pytest.raises(ValidationError):
            LevelConfig(
                unverified_emission_limit=Decimal("500"),
                group_verified_emission_limit=Decimal("100"),
            )


class TestLoadConfig:
    def test_yaml_values(self, tmp_path):
        path = tmp_path / "arbanos.yaml"
        path.write_text(
            "instance_id: steppe-1\n"
            "verification:\n"
            "  default_quota: 3\n"
            "levels:\n"
            "  unverified_emission_limit: '50'\n"
        )

        config = load_config(path)

        assert config.instance_id == "steppe-1"
        assert config.verification.default_quota == 3
        assert config.verification.cascade_max_depth == 10
        assert config.levels.unverified_emission_limit == Decimal("50")

    def test_missing_file_gives_defaults(self, tmp_path):
        config = load_config(tmp_path / "absent.yaml")
        assert config.verification.default_quota == 5

    def test_env_overrides_yaml(self, tmp_path, monkeypatch):
        path = tmp_path / "arbanos.yaml"
        path.write_text("verification:\n  default_quota: 3\n")
        monkeypatch.setenv("ARBANOS_VERIFICATION__DEFAULT_QUOTA", "7")
        monkeypatch.setenv("ARBANOS_VERIFICATION__CASCADE_MAX_DEPTH", "4")
        monkeypatch.setenv("ARBANOS_LOGGING__FORMAT", "json")

        config = load_config(path)

        assert config.verification.default_quota == 7
        assert config.verification.cascade_max_depth == 4
        assert config.logging.format == "json"

    def test_shipped_default_yaml(self):
        config = load_config(DEFAULT_YAML)
        assert config.groups.size == 5

    def test_env_overrides_every_section(self, monkeypatch):
        monkeypatch.setenv("ARBANOS_LEVELS__UNVERIFIED_EMISSION_LIMIT", "150")
        monkeypatch.setenv("ARBANOS_LEVELS__GROUP_VERIFIED_EMISSION_LIMIT", "2000")
        monkeypatch.setenv("ARBANOS_GROUPS__SIZE", "7")
        monkeypatch.setenv("ARBANOS_VERIFICATION__REQUIRE_CONSTITUTION", "false")

        config = load_config(DEFAULT_YAML)

        assert config.levels.unverified_emission_limit == Decimal("150")
        assert config.levels.group_verified_emission_limit == Decimal("2000")
        assert config.groups.size == 7
        assert config.groups.required_edges == 42
        assert not config.verification.require_constitution
