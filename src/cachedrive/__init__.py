"""cachedrive: key-value caching with expiry over pluggable storage drivers.

Example:
    >>> import cachedrive
    >>> cache = cachedrive.Cache.from_config({
    ...     "enabled": True,
    ...     "driver": {"backend": "filesystem", "path": ".cache", "lifetime": 300},
    ... })
    >>> cache.save("answer", 42)
    True
    >>> cache.get("answer")
    42
"""

from cachedrive.base import (
    BackendUnavailableError,
    CacheDriver,
    CacheError,
    CorruptEntryError,
    DriverConfig,
    EntryMetadata,
    InvalidConfigurationError,
)
from cachedrive.backends.filesystem import FileSystemConfig, FileSystemDriver
from cachedrive.cache import Cache
from cachedrive.codec import (
    Codec,
    CodecError,
    TypeRegistry,
    default_codec,
    register_type,
)
from cachedrive.config import load_config
from cachedrive.factory import (
    create_driver,
    get_driver,
    is_backend_available,
    list_available_backends,
)

# Version: Single source of truth from pyproject.toml
try:
    from importlib.metadata import version, PackageNotFoundError

    __version__ = version("cachedrive")
except PackageNotFoundError:
    # Package not installed (development mode)
    __version__ = "0.0.0.dev"

__all__ = [
    # Facade
    "Cache",
    "load_config",
    # Drivers
    "CacheDriver",
    "DriverConfig",
    "EntryMetadata",
    "FileSystemConfig",
    "FileSystemDriver",
    "RedisConfig",
    "RedisDriver",
    "create_driver",
    "get_driver",
    "is_backend_available",
    "list_available_backends",
    # Codec
    "Codec",
    "CodecError",
    "TypeRegistry",
    "default_codec",
    "register_type",
    # Exceptions
    "CacheError",
    "InvalidConfigurationError",
    "BackendUnavailableError",
    "CorruptEntryError",
]


def __getattr__(name: str):
    """Lazily expose the Redis driver, which needs the optional redis package."""
    if name in ("RedisConfig", "RedisDriver"):
        from cachedrive.backends import redis as redis_backend

        return getattr(redis_backend, name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
