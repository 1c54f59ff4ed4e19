"""Configuration management for wasmedgeup.

This module provides YAML-based configuration loading and saving,
following the XDG Base Directory Specification.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import structlog
import yaml
from pydantic import ValidationError

from .models import GlobalConfig

logger = structlog.get_logger(__name__)


def get_config_dir() -> Path:
    """Get the configuration directory following XDG spec.

    Returns:
        Path to the configuration directory.
    """
    xdg_config_home = os.environ.get("XDG_CONFIG_HOME")
    base = Path(xdg_config_home) if xdg_config_home else Path.home() / ".config"
    return base / "wasmedgeup"


def get_default_config_path() -> Path:
    """Get the default configuration file path."""
    return get_config_dir() / "config.yaml"


class ConfigManager:
    """Loads and saves the wasmedgeup configuration file.

    A missing file is not an error: defaults are used instead.
    """

    def __init__(self, config_path: Path | None = None) -> None:
        """Initialize the configuration manager.

        Args:
            config_path: Optional path to configuration file.
                        Uses default path if not provided.
        """
        self.config_path = config_path or get_default_config_path()
        self._config: GlobalConfig | None = None

    def load(self) -> GlobalConfig:
        """Load configuration from file.

        Returns:
            GlobalConfig with loaded values, or defaults if the file doesn't exist.

        Raises:
            ValueError: If the file is not valid YAML or does not describe a
                valid configuration.
        """
        if not self.config_path.exists():
            logger.debug("using_default_config", path=str(self.config_path))
            self._config = GlobalConfig()
            return self._config

        try:
            data = yaml.safe_load(self.config_path.read_text()) or {}
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in {self.config_path}: {e}") from e
        if not isinstance(data, dict):
            raise ValueError(f"Configuration file {self.config_path} must contain a mapping")

        try:
            self._config = GlobalConfig(**data)
        except ValidationError as e:
            raise ValueError(f"Invalid configuration in {self.config_path}: {e}") from e

        logger.debug("config_loaded", path=str(self.config_path))
        return self._config

    def save(self, config: GlobalConfig | None = None) -> None:
        """Save configuration to file.

        Only values that differ from the defaults are written.

        Args:
            config: Configuration to save. Uses current config if not provided.
        """
        if config is not None:
            self._config = config
        if self._config is None:
            self._config = GlobalConfig()

        self.config_path.parent.mkdir(parents=True, exist_ok=True)
        content = yaml.safe_dump(
            self._serialize_config(self._config), default_flow_style=False, sort_keys=False
        )
        self.config_path.write_text(content)
        logger.info("config_saved", path=str(self.config_path))

    def get_config(self) -> GlobalConfig:
        """Get the current configuration, loading it from file if needed."""
        if self._config is None:
            self.load()
        return self._config or GlobalConfig()

    def with_overrides(self, **overrides: Any) -> GlobalConfig:
        """Return the configuration with non-None overrides applied.

        Args:
            **overrides: Field values, typically taken from command-line flags.
        """
        updates = {key: value for key, value in overrides.items() if value is not None}
        return self.get_config().model_copy(update=updates)

    def _serialize_config(self, config: GlobalConfig) -> dict[str, Any]:
        return config.model_dump(mode="json", exclude_defaults=True)
