"""Configuration loading for cache facades and drivers.

Configuration is a mapping of the shape accepted by
:meth:`cachedrive.cache.Cache.from_config`::

    enabled: true
    driver:
      backend: redis
      host: cache.internal
      namespace: reports
      lifetime: 300

It can come from a YAML, JSON or TOML file and from environment variables.
Environment variables take precedence over the file:

    CACHEDRIVE_ENABLED=true
    CACHEDRIVE_DRIVER__BACKEND=filesystem
    CACHEDRIVE_DRIVER__PATH=/var/cache/app
    CACHEDRIVE_DRIVER__LIFETIME=120

A double underscore separates nesting levels, so option names containing a
single underscore (``delete_expired_on_read``) stay intact.

Example:
    >>> config = load_config("cache.yaml")
    >>> cache = Cache.from_config(config)
"""

from __future__ import annotations

import json
import logging
import os
import tomllib
from abc import ABC, abstractmethod
from collections.abc import Collection, Mapping
from pathlib import Path
from typing import Any

import yaml

from cachedrive.backends.filesystem import FileSystemConfig
from cachedrive.base import InvalidConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_ENV_PREFIX = "CACHEDRIVE"
CONFIG_PATH_VARIABLE = "CONFIG"


def string_option_keys() -> set[str]:
    """Dotted paths of driver options that must stay text in the environment."""
    from cachedrive.backends.redis import RedisConfig

    names = FileSystemConfig.string_options() | RedisConfig.string_options()
    return {"driver.backend"} | {f"driver.{name}" for name in names}


# =============================================================================
# Exceptions
# =============================================================================


class ConfigSourceError(InvalidConfigurationError):
    """Raised when a configuration source cannot be read."""

    pass


# =============================================================================
# Configuration Sources
# =============================================================================


class ConfigSource(ABC):
    """Abstract base class for configuration sources.

    Sources are merged in ascending priority; later sources override
    earlier ones.
    """

    def __init__(self, priority: int = 0) -> None:
        self._priority = priority

    @property
    def priority(self) -> int:
        return self._priority

    @abstractmethod
    def load(self) -> dict[str, Any]:
        """Load configuration from the source."""
        pass


class EnvConfigSource(ConfigSource):
    """Environment variable configuration source.

    Example:
        CACHEDRIVE_DRIVER__HOST=localhost
        CACHEDRIVE_DRIVER__PORT=6379

        Will produce:
        {"driver": {"host": "localhost", "port": 6379}}
    """

    def __init__(
        self,
        prefix: str = DEFAULT_ENV_PREFIX,
        separator: str = "__",
        priority: int = 100,
        environ: Mapping[str, str] | None = None,
        raw_keys: Collection[str] = (),
    ) -> None:
        """Initialize environment source.

        Args:
            prefix: Environment variable prefix.
            separator: Separator for nested keys.
            priority: Source priority.
            environ: Mapping to read instead of ``os.environ``.
            raw_keys: Dotted lowercase paths (``driver.namespace``) whose
                values are kept as strings instead of being parsed.
        """
        super().__init__(priority)
        self._prefix = prefix
        self._separator = separator
        self._environ = environ
        self._raw_keys = frozenset(raw_keys)

    def load(self) -> dict[str, Any]:
        environ = os.environ if self._environ is None else self._environ
        result: dict[str, Any] = {}
        prefix = f"{self._prefix}_"
        skip = f"{prefix}{CONFIG_PATH_VARIABLE}"

        for key, value in environ.items():
            if not key.startswith(prefix) or key == skip:
                continue
            parts = key[len(prefix) :].lower().split(self._separator)
            if not all(parts):
                logger.debug("Ignoring malformed configuration variable %s", key)
                continue

            current = result
            for part in parts[:-1]:
                child = current.setdefault(part, {})
                if not isinstance(child, dict):
                    raise ConfigSourceError(f"Conflicting configuration variable: {key}")
                current = child
            if ".".join(parts) in self._raw_keys:
                current[parts[-1]] = value
            else:
                current[parts[-1]] = self._parse_value(value)

        return result

    def _parse_value(self, value: str) -> Any:
        """Parse string value to appropriate type."""
        lowered = value.strip().lower()
        if lowered in ("true", "yes", "on"):
            return True
        if lowered in ("false", "no", "off"):
            return False
        if lowered in ("null", "none"):
            return None

        try:
            return int(value)
        except ValueError:
            pass
        try:
            return float(value)
        except ValueError:
            pass

        if value.startswith(("[", "{")):
            try:
                return json.loads(value)
            except json.JSONDecodeError:
                pass

        return value


class FileConfigSource(ConfigSource):
    """File-based configuration source.

    Supports YAML, JSON and TOML, detected from the file extension.
    """

    def __init__(
        self,
        path: str | Path,
        *,
        required: bool = True,
        priority: int = 50,
    ) -> None:
        """Initialize file source.

        Args:
            path: Path to configuration file.
            required: Raise an error if the file does not exist.
            priority: Source priority.
        """
        super().__init__(priority)
        self._path = Path(path)
        self._required = required

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> dict[str, Any]:
        if not self._path.exists():
            if self._required:
                raise ConfigSourceError(f"Configuration file not found: {self._path}")
            return {}

        suffix = self._path.suffix.lower()
        try:
            content = self._path.read_text(encoding="utf-8")
            if suffix in (".yaml", ".yml"):
                data = yaml.safe_load(content) or {}
            elif suffix == ".json":
                data = json.loads(content)
            elif suffix == ".toml":
                data = tomllib.loads(content)
            else:
                raise ConfigSourceError(f"Unsupported file format: {suffix}")
        except ConfigSourceError:
            raise
        except (OSError, ValueError, yaml.YAMLError) as e:
            raise ConfigSourceError(f"Failed to load config {self._path}: {e}") from e

        if not isinstance(data, dict):
            raise ConfigSourceError(f"Configuration root must be a mapping: {self._path}")
        return data


# =============================================================================
# Loading
# =============================================================================


def merge_config(base: dict[str, Any], override: Mapping[str, Any]) -> dict[str, Any]:
    """Deep merge ``override`` into ``base`` in place and return ``base``."""
    for key, value in override.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, Mapping):
            merge_config(base[key], value)
        elif isinstance(value, Mapping):
            base[key] = merge_config({}, value)
        else:
            base[key] = value
    return base


def load_config(
    path: str | Path | None = None,
    *,
    env_prefix: str = DEFAULT_ENV_PREFIX,
    environ: Mapping[str, str] | None = None,
) -> dict[str, Any]:
    """Load cache configuration from a file and the environment.

    Args:
        path: Configuration file. None falls back to the file named by
            ``{env_prefix}_CONFIG``; without either only the environment is
            read.
        env_prefix: Prefix of configuration environment variables.
        environ: Mapping to read instead of ``os.environ``.

    Returns:
        The merged configuration mapping.

    Raises:
        ConfigSourceError: If the file is missing or malformed.
    """
    env = os.environ if environ is None else environ
    if path is None:
        path = env.get(f"{env_prefix}_{CONFIG_PATH_VARIABLE}") or None

    sources: list[ConfigSource] = [
        EnvConfigSource(prefix=env_prefix, environ=env, raw_keys=string_option_keys())
    ]
    if path is not None:
        sources.append(FileConfigSource(path))

    config: dict[str, Any] = {}
    for source in sorted(sources, key=lambda s: s.priority):
        merge_config(config, source.load())

    logger.debug("Loaded cache configuration from %d source(s)", len(sources))
    return config
