"""
SlashKeeper TOML Configuration Loader

Loads the [stake] section of config.toml with environment variable overrides.
Each section is a dataclass with from_dict / apply_env / validate / to_dict.

Environment variable mapping:
    [stake.slashing] slashing_ratio     → SLASHKEEPER_SLASHING_RATIO
    [stake.slashing] max_absence_blocks → SLASHKEEPER_MAX_ABSENCE_BLOCKS

Defaults come from slashkeeper.constants (and therefore from `.env`).
"""

from __future__ import annotations

import logging
import os
import sys
from dataclasses import dataclass, field
from fractions import Fraction
from pathlib import Path
from typing import Any, Dict, Optional, Union

if sys.version_info >= (3, 11):
    import tomllib as tomli
else:
    import tomli

from ..constants import SLASHING_RATIO, MAX_ABSENCE_BLOCKS
from ..exceptions import ConfigurationError

logger = logging.getLogger(__name__)


def parse_ratio(value: Union[str, int, float, Fraction]) -> Fraction:
    """
    Parse a slashing ratio into an exact Fraction.

    Accepts "1/1000", "0.001", integers and Fractions. Floats are converted
    through their string form so that 0.1 stays 1/10.
    """
    if isinstance(value, Fraction):
        return value
    if isinstance(value, float):
        value = repr(value)
    try:
        return Fraction(str(value).strip())
    except (ValueError, ZeroDivisionError) as e:
        raise ConfigurationError(f"Invalid slashing ratio: {value!r}") from e


def parse_blocks(value: Union[str, int]) -> int:
    try:
        return int(str(value).strip())
    except ValueError as e:
        raise ConfigurationError(f"Invalid max_absence_blocks: {value!r}") from e


# ---------------------------------------------------------------------------
# Section dataclasses
# ---------------------------------------------------------------------------


@dataclass
class SlashingParams:
    """[stake.slashing] section: the parameters the slashing engine consumes."""
    slashing_ratio: Fraction = field(default_factory=lambda: parse_ratio(SLASHING_RATIO))
    max_absence_blocks: int = field(default_factory=lambda: parse_blocks(MAX_ABSENCE_BLOCKS))

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SlashingParams":
        params = cls()
        if "slashing_ratio" in data:
            params.slashing_ratio = parse_ratio(data["slashing_ratio"])
        if "max_absence_blocks" in data:
            params.max_absence_blocks = parse_blocks(data["max_absence_blocks"])
        return params

    def apply_env(self) -> None:
        """Override from environment variables."""
        if v := os.environ.get("SLASHKEEPER_SLASHING_RATIO"):
            self.slashing_ratio = parse_ratio(v)
        if v := os.environ.get("SLASHKEEPER_MAX_ABSENCE_BLOCKS"):
            self.max_absence_blocks = parse_blocks(v)

    def validate(self) -> bool:
        """
        Validate slashing parameters.

        Raises:
            ConfigurationError: if the ratio is outside [0, 1] or the block
                threshold is below 1
        """
        if not 0 <= self.slashing_ratio <= 1:
            raise ConfigurationError(
                f"slashing_ratio must be within [0, 1], got {self.slashing_ratio}"
            )
        if self.max_absence_blocks < 1:
            raise ConfigurationError(
                f"max_absence_blocks must be >= 1, got {self.max_absence_blocks}"
            )
        return True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "slashing_ratio": str(self.slashing_ratio),
            "max_absence_blocks": self.max_absence_blocks,
        }


@dataclass
class StakeConfig:
    """
    [stake] section.

    Only the slashing parameters live here today; the section is kept so
    that other stake settings can sit beside them in config.toml.
    """
    slashing: SlashingParams = field(default_factory=SlashingParams)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StakeConfig":
        return cls(slashing=SlashingParams.from_dict(data.get("slashing", {})))

    @classmethod
    def from_file(cls, config_path: str) -> "StakeConfig":
        """
        Load configuration from a TOML file.

        A missing file yields the defaults (with env overrides applied).
        """
        path = Path(config_path)
        if not path.exists():
            logger.warning("Config file not found: %s, using defaults", config_path)
            cfg = cls()
            cfg.apply_env()
            return cfg

        with open(path, "rb") as f:
            try:
                raw = tomli.load(f)
            except tomli.TOMLDecodeError as e:
                raise ConfigurationError(f"Malformed config file {config_path}: {e}") from e

        cfg = cls.from_dict(raw.get("stake", {}))
        cfg.apply_env()
        return cfg

    def apply_env(self) -> None:
        self.slashing.apply_env()

    def validate(self) -> bool:
        return self.slashing.validate()

    def to_dict(self) -> Dict[str, Any]:
        return {"slashing": self.slashing.to_dict()}


def load_config(path: Optional[str] = None) -> StakeConfig:
    """
    Load and validate stake configuration.

    Resolution order:
        1. Explicit *path* argument
        2. SLASHKEEPER_CONFIG env var
        3. ./config.toml in current directory
        4. Defaults (with env overrides)
    """
    if path is None:
        path = os.environ.get("SLASHKEEPER_CONFIG", "config.toml")

    cfg = StakeConfig.from_file(path)
    cfg.validate()
    return cfg
