"""YAML configuration for the remapcov command line."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

__all__ = [
    "DEFAULT_CONFIG_NAME",
    "ConfigError",
    "DiscoverySettings",
    "LoggingSettings",
    "RemapOptions",
    "RemapSettings",
    "load_config",
]

DEFAULT_CONFIG_NAME = "remapcov.yaml"

_LOG_LEVELS = {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}


class ConfigError(RuntimeError):
    """Raised when the configuration file is missing or invalid."""


class SettingsModel(BaseModel):
    """Base settings model rejecting unknown keys."""

    model_config = ConfigDict(extra="forbid")


class DiscoverySettings(SettingsModel):
    """Where to look for source maps of generated files."""

    inline: bool = True
    sibling: bool = True
    embedded: bool = True


class RemapOptions(SettingsModel):
    enforce_line_bounds: bool = True


class LoggingSettings(SettingsModel):
    level: str = "WARNING"

    @field_validator("level")
    @classmethod
    def _known_level(cls, value: str) -> str:
        normalised = value.strip().upper()
        if normalised not in _LOG_LEVELS:
            raise ValueError(f"Unknown log level {value!r}; expected one of {sorted(_LOG_LEVELS)}")
        return normalised


class RemapSettings(SettingsModel):
    """Top-level configuration document."""

    report: Optional[Path] = None
    output: Optional[Path] = None
    discovery: DiscoverySettings = Field(default_factory=DiscoverySettings)
    remap: RemapOptions = Field(default_factory=RemapOptions)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    def resolve_paths(self, base: Path) -> "RemapSettings":
        """Return a copy with relative report/output paths anchored at ``base``."""

        updates = {}
        for name in ("report", "output"):
            value = getattr(self, name)
            if value is not None and not value.is_absolute():
                updates[name] = (base / value).resolve()
        return self.model_copy(update=updates)


def load_config(config_path: Path, *, required: bool = True) -> RemapSettings:
    """Load and validate ``config_path``.

    When ``required`` is false a missing file yields the default settings.
    """

    if not config_path.exists():
        if required:
            raise ConfigError(f"Config file not found: {config_path}")
        return RemapSettings()

    try:
        with config_path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
    except yaml.YAMLError as error:
        raise ConfigError(f"Failed to parse config: {error}") from error

    if not isinstance(data, dict):
        raise ConfigError("Configuration must be a mapping at the top level.")

    try:
        settings = RemapSettings.model_validate(data)
    except ValidationError as error:
        raise ConfigError(f"Invalid configuration in {config_path}: {error}") from error
    return settings.resolve_paths(config_path.resolve().parent)
