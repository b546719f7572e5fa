"""Runtime configuration.

Settings are frozen after construction. They can be loaded from a YAML
file, either as a top-level mapping or under a ``runtime:`` section:

    runtime:
      log_formula_errors: true
      energy: 50000
"""

from pathlib import Path

import yaml
from pydantic import BaseModel, Field, ValidationError


class ConfigError(Exception):
    """Raised when a configuration file cannot be loaded or is invalid."""


class RuntimeConfig(BaseModel):
    """Limits and diagnostics for formula evaluation."""

    model_config = {"frozen": True, "extra": "forbid"}

    log_formula_errors: bool = Field(
        default=False,
        description="Also log formula evaluation errors (never changes returned values)",
    )
    energy: int = Field(
        default=100_000,
        gt=0,
        description="Evaluation steps allowed for one top-level formula read",
    )
    max_depth: int = Field(
        default=50,
        gt=0,
        description="Maximum nesting of formula reads through other bots' tags",
    )
    max_write_rounds: int = Field(
        default=10,
        ge=0,
        description="Follow-up batches applied for tags written by formulas",
    )


def load_config(path: str | Path | None = None) -> RuntimeConfig:
    """Load a RuntimeConfig from YAML. A missing path yields the defaults."""
    if path is None:
        return RuntimeConfig()

    config_path = Path(path)
    if not config_path.exists():
        return RuntimeConfig()

    try:
        with open(config_path) as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid YAML in {config_path}: {e}") from e

    if data is None:
        return RuntimeConfig()
    if not isinstance(data, dict):
        raise ConfigError(f"expected a mapping in {config_path}")
    if "runtime" in data:
        data = data["runtime"] or {}

    try:
        return RuntimeConfig(**data)
    except ValidationError as e:
        raise ConfigError(f"invalid configuration in {config_path}: {e}") from e
