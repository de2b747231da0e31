"""
pyblockdev configuration management.

Provides centralized configuration with validation using Pydantic.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, field_validator

from blockdev.core.models import PluginName, PluginSpec

DEFAULT_CONFIG_PATH = Path.home() / ".blockdev" / "config.json"


class LoggingConfig(BaseModel):
    """Configuration for structured logging."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "WARNING"
    file_enabled: bool = False
    console_enabled: bool = True
    json_format: bool = False
    log_directory: Path = Field(default_factory=lambda: Path.home() / ".blockdev" / "logs")

    @field_validator("log_directory", mode="before")
    @classmethod
    def expand_path(cls, v: str | Path) -> Path:
        return Path(v).expanduser().resolve()


class PluginsConfig(BaseModel):
    """Configuration for backend plugin discovery."""

    # Module paths used for the best-effort default set only; explicit
    # PluginSpec requests always carry their own so_name.
    overrides: dict[PluginName, str] = Field(default_factory=dict)
    required: list[PluginName] = Field(default_factory=list)

    @field_validator("overrides", mode="before")
    @classmethod
    def expand_overrides(cls, v: dict[str, str]) -> dict[str, str]:
        # an empty path keeps the default location
        return {key: str(Path(path).expanduser()) if path else "" for key, path in (v or {}).items()}

    def default_specs(self) -> list[PluginSpec]:
        """Specs for every known backend, honouring configured overrides."""
        return [PluginSpec(name, self.overrides.get(name, "")) for name in PluginName]

    def required_specs(self) -> list[PluginSpec]:
        """Specs for the backends listed as required."""
        return [PluginSpec(name, self.overrides.get(name, "")) for name in self.required]


class ExecConfig(BaseModel):
    """Configuration for external tool invocations."""

    locale: str = "C"
    diagnostic_limit: int = Field(default=500, ge=0, le=100_000)


class BlockDevConfig(BaseModel):
    """Main pyblockdev configuration."""

    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    plugins: PluginsConfig = Field(default_factory=PluginsConfig)
    exec: ExecConfig = Field(default_factory=ExecConfig)

    @classmethod
    def load(cls, config_path: Path | None = None) -> BlockDevConfig:
        """Load configuration from file or create default."""
        if config_path is None:
            config_path = DEFAULT_CONFIG_PATH

        if config_path.exists():
            with open(config_path) as f:
                data = json.load(f)
            return cls.model_validate(data)

        return cls()

    def save(self, config_path: Path | None = None) -> None:
        """Save configuration to file."""
        if config_path is None:
            config_path = DEFAULT_CONFIG_PATH

        config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(config_path, "w") as f:
            json.dump(self.model_dump(mode="json"), f, indent=2, default=str)

    def ensure_directories(self) -> None:
        """Create all required directories."""
        if self.logging.file_enabled:
            self.logging.log_directory.mkdir(parents=True, exist_ok=True)


def get_default_config() -> BlockDevConfig:
    """Get the default configuration."""
    return BlockDevConfig()


def load_config(config_path: Path | None = None) -> BlockDevConfig:
    """Load or create configuration."""
    config = BlockDevConfig.load(config_path)
    config.ensure_directories()
    return config
