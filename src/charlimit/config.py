"""
Configuration for charlimit.

All tunable parameters in one place. Loaded from:
1. Defaults (this file)
2. Config file (~/.config/charlimit/config.toml) if exists
3. Environment variables (CHARLIMIT_*) override file
4. CLI flags override everything
"""

from __future__ import annotations

import contextlib
import logging
import os
import tomllib  # stdlib in 3.11+
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)


@dataclass
class LimitConfig:
    """How the budget is counted."""
    max_characters: int = 280
    measure: str = "utf16"  # utf16 | codepoint | grapheme | utf8
    segmentation: str = "grapheme"  # grapheme | codepoint


@dataclass
class RenderConfig:
    """Markers the CLI puts around overflowed text."""
    overflow_open: str = "[["
    overflow_close: str = "]]"


@dataclass
class Config:
    """Root config with all settings."""
    limit: LimitConfig = field(default_factory=LimitConfig)
    render: RenderConfig = field(default_factory=RenderConfig)


def get_config_path() -> Path:
    """Get config file path, respecting XDG."""
    xdg = os.environ.get("XDG_CONFIG_HOME")
    if xdg:
        return Path(xdg) / "charlimit" / "config.toml"
    return Path.home() / ".config" / "charlimit" / "config.toml"


def load_config() -> Config:
    """Load config from file if exists, else return defaults."""
    config = Config()
    path = get_config_path()

    if path.exists():
        try:
            with open(path, "rb") as f:
                data = tomllib.load(f)
            config = _apply_toml(config, data)
        except (OSError, tomllib.TOMLDecodeError, ValueError, TypeError) as e:
            logger.warning("Ignoring config file %s: %s", path, e)
            config = Config()

    # env var overrides
    config = _apply_env(config)

    return config


def _apply_toml(config: Config, data: dict) -> Config:
    """Apply toml data to config."""
    if "limit" in data:
        lim = data["limit"]
        if "max_characters" in lim:
            config.limit.max_characters = int(lim["max_characters"])
        if "measure" in lim:
            config.limit.measure = str(lim["measure"])
        if "segmentation" in lim:
            config.limit.segmentation = str(lim["segmentation"])

    if "render" in data:
        r = data["render"]
        if "overflow_open" in r:
            config.render.overflow_open = str(r["overflow_open"])
        if "overflow_close" in r:
            config.render.overflow_close = str(r["overflow_close"])

    return config


def _apply_env(config: Config) -> Config:
    """Apply environment variable overrides."""
    env_map: dict[str, tuple[str, str, type]] = {
        "CHARLIMIT_MAX_CHARACTERS": ("limit", "max_characters", int),
        "CHARLIMIT_MEASURE": ("limit", "measure", str),
        "CHARLIMIT_SEGMENTATION": ("limit", "segmentation", str),
        "CHARLIMIT_OVERFLOW_OPEN": ("render", "overflow_open", str),
        "CHARLIMIT_OVERFLOW_CLOSE": ("render", "overflow_close", str),
    }

    for env_key, (section, attr, conv) in env_map.items():
        val = os.environ.get(env_key)
        if val is not None:
            with contextlib.suppress(ValueError):
                setattr(getattr(config, section), attr, conv(val))

    return config


# Module-level config instance, loaded once on first use
_config: Config | None = None


def get_config() -> Config:
    """Get the global config instance."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reset_config() -> None:
    """Drop the cached config so the next get_config() reloads it."""
    global _config
    _config = None
