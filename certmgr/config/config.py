"""Configuration management for certmgr.

Provides centralized configuration with TOML support, validation and
hierarchical loading from defaults → config file → environment.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

import toml

from certmgr.models import (
    BatchConfig,
    Config,
    ExecutionConfig,
    ToolkitConfig,
)
from certmgr.utils.exceptions import ConfigurationError
from certmgr.utils.logging_config import setup_logging

# Global configuration instance
_config_manager: ConfigManager | None = None

# Mapping of environment variables to config paths
ENV_MAPPINGS: dict[str, str] = {
    # Toolkits
    "CERTMGR_OPENSSL_PATH": "toolkits.openssl_path",
    "CERTMGR_JDK_ROOT": "toolkits.jdk_root_path",
    # Execution
    "CERTMGR_DEFAULT_TIMEOUT": "execution.default_timeout",
    "CERTMGR_PROMPT_BUFFER_SIZE": "execution.prompt_buffer_size",
    "CERTMGR_ALLOW_INLINE_SECRET_FALLBACK": "execution.allow_inline_secret_fallback",
    "CERTMGR_TEMP_DIR_NAME": "execution.temp_dir_name",
    # Batch
    "CERTMGR_BATCH_INTER_ITEM_DELAY": "batch.inter_item_delay",
    "CERTMGR_BATCH_TRUSTSTORE_IMPORT_DELAY": "batch.truststore_import_delay",
    "CERTMGR_BATCH_WARNING_DAYS": "batch.warning_days",
    "CERTMGR_BATCH_DEFAULT_EXTENSIONS": "batch.default_extensions",
    # Observability
    "CERTMGR_LOG_LEVEL": "observability.log_level",
    "CERTMGR_LOG_FILE": "observability.log_file",
    "CERTMGR_STRUCTURED_LOGGING": "observability.structured_logging",
    "CERTMGR_LOG_CORRELATION_ID": "observability.log_correlation_id",
}

# Paths whose values are strings even when they look numeric or boolean
_STRING_PATHS = {
    "toolkits.openssl_path",
    "toolkits.jdk_root_path",
    "execution.temp_dir_name",
    "observability.log_file",
    "observability.log_level",
}

_LIST_PATHS = {"batch.default_extensions"}


class ConfigManager:
    """Manages configuration loading and validation."""

    def __init__(self, config_file: str | Path | None = None, setup_log: bool = True):
        """Initialize configuration manager.

        Args:
            config_file: Path to TOML config file. If None, searches for certmgr.toml
            setup_log: Configure logging from the loaded observability section

        """
        self.config_file = self._find_config_file(config_file)
        self.config = self._load_config()
        if setup_log:
            self._setup_logging()

    def _find_config_file(
        self,
        config_file: str | Path | None,
    ) -> Path | None:
        """Find configuration file in standard locations."""
        if config_file:
            return Path(config_file)

        # Search in current directory, then home directory
        search_paths = [
            Path.cwd() / "certmgr.toml",
            Path.home() / ".config" / "certmgr" / "certmgr.toml",
            Path.home() / ".certmgr.toml",
        ]

        for path in search_paths:
            if path.exists():
                return path

        return None

    def _load_config(self) -> Config:
        """Load configuration from file and environment."""
        config_data: dict[str, Any] = {}

        if self.config_file and self.config_file.exists():
            try:
                with open(self.config_file, encoding="utf-8") as f:
                    config_data.update(toml.load(f))
            except (OSError, toml.TomlDecodeError) as e:
                msg = f"Failed to load config file {self.config_file}: {e}"
                raise ConfigurationError(msg, {"path": str(self.config_file)}) from e

            extensions = config_data.get("batch", {}).get("default_extensions")
            if isinstance(extensions, str):
                config_data["batch"]["default_extensions"] = _split_list(extensions)

        env_config = self._get_env_config()
        config_data = self._merge_config(config_data, env_config)

        try:
            return Config(**config_data)
        except Exception as e:
            msg = f"Invalid configuration: {e}"
            raise ConfigurationError(msg) from e

    def _get_env_config(self) -> dict[str, Any]:
        """Get configuration from environment variables."""
        env_config: dict[str, Any] = {}

        def _parse_env_value(raw: str, path: str) -> bool | int | float | str | list[str]:
            if path in _LIST_PATHS:
                return _split_list(raw)
            if path == "observability.log_level":
                return raw.upper()
            if path in _STRING_PATHS:
                return raw

            low = raw.lower()
            if low in {"true", "1", "yes", "on"}:
                return True
            if low in {"false", "0", "no", "off"}:
                return False
            try:
                if "." in raw:
                    return float(raw)
                return int(raw)
            except ValueError:
                return raw

        def _set_nested(d: dict[str, Any], path: str, value: Any) -> None:
            parts = path.split(".")
            cur = d
            for p in parts[:-1]:
                cur = cur.setdefault(p, {})
            cur[parts[-1]] = value

        for env_name, cfg_path in ENV_MAPPINGS.items():
            raw = os.getenv(env_name)
            if raw is None:
                continue
            _set_nested(env_config, cfg_path, _parse_env_value(raw, cfg_path))

        return env_config

    def _merge_config(
        self,
        base: dict[str, Any],
        override: dict[str, Any],
    ) -> dict[str, Any]:
        """Merge configuration dictionaries recursively."""
        result = base.copy()

        for key, value in override.items():
            if (
                key in result
                and isinstance(result[key], dict)
                and isinstance(value, dict)
            ):
                result[key] = self._merge_config(result[key], value)
            else:
                result[key] = value

        return result

    def export(self) -> str:
        """Export the current configuration as TOML."""
        return toml.dumps(self.config.model_dump(mode="json", exclude_none=True))

    def _setup_logging(self) -> None:
        """Set up logging configuration."""
        setup_logging(self.config.observability)


def _split_list(raw: str) -> list[str]:
    return [item.strip() for item in raw.split(",") if item.strip()]


def get_config() -> Config:
    """Get the global configuration instance."""
    global _config_manager
    if _config_manager is None:
        _config_manager = ConfigManager(setup_log=False)
    return _config_manager.config


def init_config(config_file: str | Path | None = None) -> ConfigManager:
    """Initialize the global configuration manager."""
    global _config_manager
    _config_manager = ConfigManager(config_file)
    return _config_manager


def set_config(new_config: Config) -> None:
    """Replace the global configuration at runtime.

    Components that snapshot config must re-read values to pick up changes.
    """
    global _config_manager
    if _config_manager is None:
        _config_manager = ConfigManager(setup_log=False)
    _config_manager.config = new_config
    logging.getLogger(__name__).debug("Configuration replaced at runtime")


def reset_config() -> None:
    """Drop the global configuration so the next get_config() reloads it."""
    global _config_manager
    _config_manager = None


def get_toolkit_config() -> ToolkitConfig:
    """Get toolkit configuration."""
    return get_config().toolkits


def get_execution_config() -> ExecutionConfig:
    """Get execution configuration."""
    return get_config().execution


def get_batch_config() -> BatchConfig:
    """Get batch configuration."""
    return get_config().batch