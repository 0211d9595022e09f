"""
SlashKeeper Configuration

Loads the [stake] section of config.toml.
Environment variables override TOML values.
"""

from .loader import (
    SlashingParams,
    StakeConfig,
    load_config,
    parse_ratio,
)

__all__ = [
    "SlashingParams",
    "StakeConfig",
    "load_config",
    "parse_ratio",
]
