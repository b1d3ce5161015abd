"""Cache driver backends.

The filesystem driver has no extra dependencies. The Redis driver requires
the ``redis`` package and is imported lazily.
"""

from cachedrive.backends.filesystem import FileSystemConfig, FileSystemDriver

__all__ = [
    "FileSystemConfig",
    "FileSystemDriver",
    "RedisConfig",
    "RedisDriver",
]


def __getattr__(name: str):
    """Lazily expose the Redis driver."""
    if name in ("RedisConfig", "RedisDriver"):
        from cachedrive.backends import redis as redis_backend

        return getattr(redis_backend, name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
