"""Cache facade forwarding to a configured driver.

The facade holds one driver and an enabled flag. While disabled every
operation short-circuits to its empty result (``False`` or ``None``) without
touching storage, so caching can be switched off by configuration alone.

Example:
    >>> cache = Cache.from_config({
    ...     "enabled": True,
    ...     "driver": {"backend": "filesystem", "path": ".cache", "lifetime": 300},
    ... })
    >>> cache.save("report:2024", report)
    >>> cache.get("report:2024")
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from cachedrive.base import CacheDriver, EntryMetadata, InvalidConfigurationError
from cachedrive.factory import create_driver

logger = logging.getLogger(__name__)

DEFAULT_PATH = Path(".cachedrive") / "cache"


class Cache:
    """Enable/disable gate in front of a cache driver.

    Attributes:
        enabled: Whether operations are forwarded to the driver.
    """

    def __init__(
        self,
        driver: CacheDriver[Any] | Mapping[str, Any] | None = None,
        *,
        enabled: bool = False,
    ) -> None:
        """Initialize the facade.

        Args:
            driver: Driver instance or driver configuration mapping. None
                builds a default filesystem driver on first use.
            enabled: Whether caching starts enabled.

        Raises:
            InvalidConfigurationError: If the driver configuration is invalid.
        """
        self._driver: CacheDriver[Any] | None = None
        self.enabled = enabled
        if driver is not None:
            self.set_driver(driver)

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "Cache":
        """Build a facade from ``{"enabled": bool, "driver": {...}}``.

        Raises:
            InvalidConfigurationError: If the configuration is malformed.
        """
        if not isinstance(config, Mapping):
            raise InvalidConfigurationError(
                f"Cache configuration must be a mapping, got {type(config).__name__}"
            )
        unknown = set(config) - {"enabled", "driver"}
        if unknown:
            raise InvalidConfigurationError(
                f"Unknown cache option(s): {', '.join(sorted(unknown))}"
            )
        enabled = config.get("enabled", False)
        if not isinstance(enabled, bool):
            raise InvalidConfigurationError(f"enabled must be a boolean, got {enabled!r}")
        return cls(config.get("driver"), enabled=enabled)

    # -------------------------------------------------------------------------
    # Driver handling
    # -------------------------------------------------------------------------

    @property
    def driver(self) -> CacheDriver[Any]:
        """The configured driver, creating the default one if needed."""
        if self._driver is None:
            self._driver = self._default_driver()
        return self._driver

    def set_driver(self, driver: CacheDriver[Any] | Mapping[str, Any]) -> "Cache":
        """Replace the driver.

        Args:
            driver: Driver instance or configuration mapping.

        Returns:
            The facade, for chaining.

        Raises:
            InvalidConfigurationError: If the driver is invalid.
        """
        self._driver = create_driver(driver)
        return self

    def _default_driver(self) -> CacheDriver[Any]:
        from cachedrive.backends.filesystem import FileSystemDriver

        logger.debug("No cache driver configured, using filesystem at %s", DEFAULT_PATH)
        return FileSystemDriver(path=DEFAULT_PATH, lifetime=60)

    def is_enabled(self) -> bool:
        return self.enabled is True

    def set_enabled(self, enabled: bool) -> "Cache":
        self.enabled = enabled
        return self

    # -------------------------------------------------------------------------
    # Forwarded operations
    # -------------------------------------------------------------------------

    def has(self, id: str) -> bool:
        if not self.is_enabled():
            return False
        return self.driver.has(id)

    def get(self, id: str) -> Any | None:
        if not self.is_enabled():
            return None
        return self.driver.get(id)

    def save(self, id: str, value: Any) -> bool:
        if not self.is_enabled():
            return False
        return self.driver.save(id, value)

    def delete(self, id: str) -> bool:
        if not self.is_enabled():
            return False
        return self.driver.delete(id)

    def get_metadata(self, id: str) -> EntryMetadata | None:
        if not self.is_enabled():
            return None
        return self.driver.get_metadata(id)

    def clean(self) -> bool:
        if not self.is_enabled():
            return False
        return self.driver.clean()

    def close(self) -> None:
        if self._driver is not None:
            self._driver.close()

    def __contains__(self, id: object) -> bool:
        return isinstance(id, str) and self.has(id)

    def __enter__(self) -> "Cache":
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"Cache(enabled={self.enabled}, driver={self._driver!r})"
