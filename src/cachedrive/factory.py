"""Factory functions for creating cache drivers.

Drivers are selected by a backend name. The set of backends is closed:
``filesystem`` (aliases ``file``, ``fs``) and ``redis``. Configuration errors
are raised here, before any cache operation runs.

Example:
    >>> driver = get_driver("filesystem", path=".cache", lifetime=120)
    >>>
    >>> driver = create_driver({"backend": "redis", "host": "cache", "namespace": "app"})
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from cachedrive.base import CacheDriver, InvalidConfigurationError

BACKEND_KEY = "backend"

_BACKEND_ALIASES: dict[str, str] = {
    "filesystem": "filesystem",
    "file": "filesystem",
    "fs": "filesystem",
    "redis": "redis",
}


def normalize_backend(backend: str) -> str:
    """Resolve a backend name or alias to its canonical name.

    Raises:
        InvalidConfigurationError: If the backend is unknown.
    """
    if not isinstance(backend, str):
        raise InvalidConfigurationError(f"Backend name must be a string, got {backend!r}")
    name = backend.lower().strip()
    try:
        return _BACKEND_ALIASES[name]
    except KeyError:
        raise InvalidConfigurationError(
            f"Unknown cache backend: {backend}. "
            f"Available backends: {', '.join(sorted(set(_BACKEND_ALIASES.values())))}"
        ) from None


def get_driver(backend: str, **options: Any) -> CacheDriver[Any]:
    """Create a driver instance for the specified backend.

    Args:
        backend: Name of the backend. Options:
            - "filesystem": one file per entry on local disk (default)
            - "redis": Redis hashes with native TTL (requires redis)
        **options: Backend-specific configuration options.

    Returns:
        Configured driver instance.

    Raises:
        InvalidConfigurationError: If the backend is unknown, its dependency
            is missing, or an option is invalid.
    """
    name = normalize_backend(backend)

    if name == "filesystem":
        from cachedrive.backends.filesystem import FileSystemDriver

        return FileSystemDriver(**options)

    if not is_backend_available(name):
        raise InvalidConfigurationError(
            "Redis backend requires redis. Install with: pip install cachedrive[redis]"
        )
    from cachedrive.backends.redis import RedisDriver

    return RedisDriver(**options)


def create_driver(config: Mapping[str, Any] | CacheDriver[Any]) -> CacheDriver[Any]:
    """Create a driver from a configuration mapping.

    The mapping names the backend under ``backend``; every other key is
    passed to the driver as an option. A driver instance is returned as is.

    Args:
        config: Configuration mapping or driver instance.

    Returns:
        Configured driver instance.

    Raises:
        InvalidConfigurationError: If the mapping is malformed.
    """
    if isinstance(config, CacheDriver):
        return config
    if not isinstance(config, Mapping):
        raise InvalidConfigurationError(
            f"Driver configuration must be a mapping, got {type(config).__name__}"
        )

    options = dict(config)
    backend = options.pop(BACKEND_KEY, None)
    if backend is None:
        raise InvalidConfigurationError(f"Driver configuration is missing '{BACKEND_KEY}'")
    return get_driver(backend, **options)


def list_available_backends() -> list[str]:
    """List the backends that can be used with :func:`get_driver`."""
    backends = ["filesystem"]
    if is_backend_available("redis"):
        backends.append("redis")
    return backends


def is_backend_available(backend: str) -> bool:
    """Check if a backend is known and its dependencies are installed."""
    try:
        name = normalize_backend(backend)
    except InvalidConfigurationError:
        return False

    if name == "filesystem":
        return True

    try:
        import redis  # noqa: F401

        return True
    except ImportError:
        return False
