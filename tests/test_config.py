"""Tests for runtime configuration."""

import pytest
from pydantic import ValidationError

from botcalc import ConfigError, RuntimeConfig, load_config


class TestRuntimeConfig:
    def test_defaults(self):
        config = RuntimeConfig()
        assert config.log_formula_errors is False
        assert config.energy == 100_000
        assert config.max_depth == 50

    def test_frozen(self):
        config = RuntimeConfig()
        with pytest.raises(ValidationError):
            config.energy = 5

    def test_rejects_unknown_fields(self):
        with pytest.raises(ValidationError):
            RuntimeConfig(energy_budget=5)

    def test_rejects_non_positive_limits(self):
        with pytest.raises(ValidationError):
            RuntimeConfig(energy=0)


class TestLoadConfig:
    def test_no_path(self):
        assert load_config(None) == RuntimeConfig()

    def test_missing_file(self, tmp_path):
        assert load_config(tmp_path / "missing.yaml") == RuntimeConfig()

    def test_top_level_mapping(self, tmp_path):
        path = tmp_path / "runtime.yaml"
        path.write_text("energy: 500\nlog_formula_errors: true\n")

        config = load_config(path)

        assert config.energy == 500
        assert config.log_formula_errors is True

    def test_runtime_section(self, tmp_path):
        path = tmp_path / "runtime.yaml"
        path.write_text("runtime:\n  max_depth: 7\n")
        assert load_config(path).max_depth == 7

    def test_empty_file(self, tmp_path):
        path = tmp_path / "runtime.yaml"
        path.write_text("")
        assert load_config(path) == RuntimeConfig()

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "runtime.yaml"
        path.write_text("energy: [1, 2\n")
        with pytest.raises(ConfigError, match="invalid YAML"):
            load_config(path)

    def test_not_a_mapping(self, tmp_path):
        path = tmp_path / "runtime.yaml"
        path.write_text("- energy\n")
        with pytest.raises(ConfigError, match="expected a mapping"):
            load_config(path)

    def test_invalid_value(self, tmp_path):
        path = tmp_path / "runtime.yaml"
        path.write_text("energy: -1\n")
        with pytest.raises(ConfigError, match="invalid configuration"):
            load_config(path)
