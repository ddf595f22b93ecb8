"""
pipecall Configuration Management

This module provides configuration management with JSON-only persistence,
environment variable overrides and secure defaults.
"""

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union

from pipecall.utils.errors import ConfigError
from pipecall.utils.logging import get_logger

logger = get_logger(__name__)

ENV_PREFIX = "PIPECALL_"
DEFAULT_HANDLE_ENV_VAR = "PIPECALL_HANDLES"
# Tells a command worker which variable holds its handles when not the default
HANDLE_VAR_SETTING = "PIPECALL_HANDLE_ENV_VAR"
WIRE_MAX_MESSAGE_SIZE = 2 ** 32 - 1

DEFAULTS: Dict[str, Any] = {
    'log_level': 'INFO',
    'log_file': None,
    'max_message_size': WIRE_MAX_MESSAGE_SIZE,
    'exit_on_fatal': True,
    'handle_env_var': DEFAULT_HANDLE_ENV_VAR,
    'wait_timeout': None,
}


class ConfigManager:
    """
    Configuration management using only JSON - no pickle security risks.

    Values are resolved in order: environment variables (``PIPECALL_<KEY>``),
    the JSON configuration file, then defaults.
    """

    def __init__(
        self,
        config_file: Optional[Union[str, Path]] = None,
        environ: Optional[Mapping[str, str]] = None,
        **default_config
    ):
        """
        Initialize configuration manager.

        Args:
            config_file: Optional path to a JSON configuration file
            environ: Environment mapping, defaults to ``os.environ``
            **default_config: Default configuration values
        """
        self.config_file = Path(config_file) if config_file else None
        self._environ = os.environ if environ is None else environ
        self._defaults: Dict[str, Any] = dict(default_config)
        self._config: Dict[str, Any] = {}

        self._load_config()
        logger.debug(f"ConfigManager initialized from {self.config_file}")

    def _load_config(self):
        """Load configuration from file."""
        if self.config_file is None:
            self._config = {}
            return

        if not self.config_file.exists():
            raise ConfigError(
                f"Config file does not exist: {self.config_file}",
                details={'config_file': str(self.config_file)}
            )

        try:
            with open(self.config_file, 'r') as f:
                loaded = json.load(f)
        except (json.JSONDecodeError, IOError) as e:
            raise ConfigError(
                f"Failed to load configuration from {self.config_file}: {str(e)}",
                details={'config_file': str(self.config_file), 'error': str(e)}
            ) from e

        if not isinstance(loaded, dict):
            raise ConfigError(
                "Configuration file must contain a JSON object",
                details={'config_file': str(self.config_file)}
            )
        self._config = loaded
        logger.debug(f"Loaded configuration from {self.config_file}")

    def _from_env(self, key: str) -> Optional[str]:
        env_key = ENV_PREFIX + key.replace('.', '_').upper()
        return self._environ.get(env_key)

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get configuration value.

        Args:
            key: Configuration key (supports dot notation)
            default: Default value if key not found

        Returns:
            Configuration value
        """
        env_value = self._from_env(key)
        if env_value is not None:
            return env_value

        try:
            # Support dot notation for nested keys
            value = self._config
            for part in key.split('.'):
                value = value[part]
            return value
        except (KeyError, TypeError):
            pass

        return self._defaults.get(key, default)

    def has(self, key: str) -> bool:
        """Check if configuration key resolves from any source."""
        sentinel = object()
        return self.get(key, sentinel) is not sentinel

    def get_all(self) -> Dict[str, Any]:
        """Get the merged configuration for every known top-level key."""
        keys = set(self._defaults) | set(self._config)
        return {key: self.get(key) for key in sorted(keys)}

    def reload(self):
        """Reload configuration from file."""
        self._load_config()
        logger.info("Configuration reloaded from file")

    def __getitem__(self, key: str) -> Any:
        """Dictionary-style access for getting values."""
        if not self.has(key):
            raise KeyError(key)
        return self.get(key)

    def __contains__(self, key: str) -> bool:
        """Dictionary-style membership testing."""
        return self.has(key)

    def __repr__(self) -> str:
        """String representation."""
        return f"ConfigManager(file='{self.config_file}', keys={len(self.get_all())})"


def _as_bool(key: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in ('1', 'true', 'yes', 'on'):
        return True
    if isinstance(value, str) and value.strip().lower() in ('0', 'false', 'no', 'off'):
        return False
    raise ConfigError(f"Invalid boolean for {key}: {value!r}", details={'key': key})


def _as_optional_number(key: str, value: Any, kind: type) -> Any:
    if value is None or value == '':
        return None
    try:
        return kind(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(
            f"Invalid {kind.__name__} for {key}: {value!r}",
            details={'key': key}
        ) from e


@dataclass
class RuntimeConfig:
    """Settings shared by host and worker processes."""

    log_level: str = 'INFO'
    log_file: Optional[str] = None
    max_message_size: int = WIRE_MAX_MESSAGE_SIZE
    exit_on_fatal: bool = True
    handle_env_var: str = DEFAULT_HANDLE_ENV_VAR
    wait_timeout: Optional[float] = None

    def __post_init__(self):
        """Validate configuration after initialization."""
        if not 0 <= self.max_message_size <= WIRE_MAX_MESSAGE_SIZE:
            raise ConfigError(
                f"max_message_size must be between 0 and {WIRE_MAX_MESSAGE_SIZE}",
                details={'max_message_size': self.max_message_size}
            )
        if not self.handle_env_var:
            raise ConfigError("handle_env_var cannot be empty")
        if self.wait_timeout is not None and self.wait_timeout < 0:
            raise ConfigError(
                "wait_timeout cannot be negative",
                details={'wait_timeout': self.wait_timeout}
            )


def load_config(
    config_file: Optional[Union[str, Path]] = None,
    environ: Optional[Mapping[str, str]] = None,
    **overrides
) -> RuntimeConfig:
    """
    Build a RuntimeConfig from defaults, an optional JSON file and the environment.

    Args:
        config_file: Optional JSON configuration file
        environ: Environment mapping, defaults to ``os.environ``
        **overrides: Explicit values that win over every other source

    Returns:
        RuntimeConfig: Validated runtime settings
    """
    if config_file is None:
        env = os.environ if environ is None else environ
        config_file = env.get(ENV_PREFIX + "CONFIG") or None

    manager = ConfigManager(config_file=config_file, environ=environ, **DEFAULTS)
    values = manager.get_all()
    values.update(overrides)

    unknown = set(values) - set(DEFAULTS)
    if unknown:
        logger.warning(f"Ignoring unknown configuration keys: {sorted(unknown)}")

    max_size = _as_optional_number('max_message_size', values['max_message_size'], int)
    return RuntimeConfig(
        log_level=str(values['log_level']).upper(),
        log_file=values['log_file'] or None,
        max_message_size=WIRE_MAX_MESSAGE_SIZE if max_size is None else max_size,
        exit_on_fatal=_as_bool('exit_on_fatal', values['exit_on_fatal']),
        handle_env_var=str(values['handle_env_var']),
        wait_timeout=_as_optional_number('wait_timeout', values['wait_timeout'], float),
    )
