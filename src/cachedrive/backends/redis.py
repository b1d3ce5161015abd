"""Redis-backed cache driver.

Entries are stored as Redis hashes under ``{namespace}{separator}{id}`` with
the fields ``time``, ``expire`` and ``data``. Expiry is delegated to Redis'
native key TTL, so ``has`` and ``get`` need no client-side check; expired
keys simply disappear. The namespace lets several caches share one database.

Requires the ``redis`` package (``pip install cachedrive[redis]``).
"""

from __future__ import annotations

import logging
import re
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from cachedrive.base import (
    BackendUnavailableError,
    CacheDriver,
    DriverConfig,
    EntryMetadata,
    InvalidConfigurationError,
)
from cachedrive.codec import Codec, CodecError

logger = logging.getLogger(__name__)

FIELD_TIME = "time"
FIELD_EXPIRE = "expire"
FIELD_DATA = "data"

_GLOB_SPECIAL = re.compile(r"([\\*?\[\]])")


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


@dataclass
class RedisConfig(DriverConfig):
    """Configuration for the Redis driver.

    Attributes:
        host: Redis server hostname.
        port: Redis server port.
        db: Logical database index.
        password: Optional password.
        url: Connection URL; overrides host, port, db and password when set.
        namespace: Key prefix isolating this cache from other data.
        separator: Separator placed between namespace and id.
        socket_timeout: Socket timeout in seconds.
        connect_timeout: Connection timeout in seconds.
        max_connections: Connection pool size.
        scan_on_clean: Whether ``clean`` scans the namespace for keys that
            lost their native TTL.
    """

    host: str = "localhost"
    port: int = 6379
    db: int = 0
    password: str | None = None
    url: str | None = None
    namespace: str = "cachedrive"
    separator: str = ":"
    socket_timeout: float = 2.0
    connect_timeout: float = 5.0
    max_connections: int = 10
    scan_on_clean: bool = True

    def validate(self) -> None:
        super().validate()
        if not isinstance(self.host, str) or not self.host:
            raise InvalidConfigurationError("host must be a non-empty string")
        if not _is_int(self.port) or not 0 < self.port < 65536:
            raise InvalidConfigurationError(
                f"port must be an integer in 1..65535, got {self.port!r}"
            )
        if not _is_int(self.db) or self.db < 0:
            raise InvalidConfigurationError(
                f"db must be a non-negative integer, got {self.db!r}"
            )
        if not isinstance(self.namespace, str) or not self.namespace:
            raise InvalidConfigurationError("namespace must be a non-empty string")
        if not isinstance(self.separator, str):
            raise InvalidConfigurationError("separator must be a string")
        if self.url is not None and (not isinstance(self.url, str) or not self.url):
            raise InvalidConfigurationError("url must be a non-empty string")
        for name in ("socket_timeout", "connect_timeout"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
                raise InvalidConfigurationError(
                    f"{name} must be a positive number, got {value!r}"
                )
        if not _is_int(self.max_connections) or self.max_connections <= 0:
            raise InvalidConfigurationError("max_connections must be positive")

    def key_prefix(self) -> str:
        return f"{self.namespace}{self.separator}"


class RedisDriver(CacheDriver[RedisConfig]):
    """Cache driver storing entries in Redis.

    The client is created lazily from a connection pool; no connection is
    made until the first operation. An existing client can be injected with
    ``client=``, in which case the caller owns its lifecycle.

    Example:
        >>> driver = RedisDriver(host="localhost", namespace="myapp", lifetime=300)
        >>> driver.save("user:42", {"name": "Ada"})
        True
        >>> driver.get_metadata("user:42")
        EntryMetadata(time=1760000000, expire=1760000300)
    """

    backend_id = "redis"
    config_class = RedisConfig

    def __init__(
        self,
        host: str = "localhost",
        port: int = 6379,
        db: int = 0,
        namespace: str = "cachedrive",
        lifetime: int = 60,
        *,
        client: Any | None = None,
        codec: Codec | None = None,
        **kwargs: Any,
    ) -> None:
        """Initialize the Redis driver.

        Args:
            host: Redis server hostname.
            port: Redis server port.
            db: Logical database index.
            namespace: Key prefix isolating this cache.
            lifetime: Seconds an entry stays valid.
            client: Existing ``redis.Redis`` client to use.
            codec: Codec for payloads. None uses the default codec.
            **kwargs: Further :class:`RedisConfig` options.

        Raises:
            InvalidConfigurationError: If an option is invalid or the
                ``redis`` package is missing.
        """
        config = RedisConfig.from_options(
            {
                "host": host,
                "port": port,
                "db": db,
                "namespace": namespace,
                "lifetime": lifetime,
                **kwargs,
            }
        )
        super().__init__(config, codec=codec)

        try:
            import redis
            from redis.connection import parse_url
            from redis.exceptions import RedisError, ResponseError
        except ImportError as e:
            raise InvalidConfigurationError(
                "Redis support requires the 'redis' package. "
                "Install with: pip install cachedrive[redis]"
            ) from e

        if config.url is not None:
            try:
                parse_url(config.url)
            except ValueError as e:
                raise InvalidConfigurationError(f"Invalid Redis url: {e}") from e

        self._redis_module = redis
        self._failures = (RedisError, BackendUnavailableError)
        self._ResponseError = ResponseError
        self._lock = threading.RLock()
        self._errors = 0
        self._last_error: str | None = None
        self._last_error_time: datetime | None = None

        self._pool: Any | None = None
        self._client = client
        self._owns_client = client is None

    # -------------------------------------------------------------------------
    # Connection handling
    # -------------------------------------------------------------------------

    def _get_client(self) -> Any:
        """Return the Redis client, creating the pool on first use."""
        with self._lock:
            if self._client is None:
                self._pool = self._create_pool()
                self._client = self._redis_module.Redis(connection_pool=self._pool)
            return self._client

    def _create_pool(self) -> Any:
        cfg = self._config
        options: dict[str, Any] = {
            "decode_responses": False,
            "socket_timeout": cfg.socket_timeout,
            "socket_connect_timeout": cfg.connect_timeout,
            "max_connections": cfg.max_connections,
        }
        if cfg.url:
            try:
                return self._redis_module.ConnectionPool.from_url(cfg.url, **options)
            except ValueError as e:
                raise BackendUnavailableError(self.backend_id, str(e)) from e
        return self._redis_module.ConnectionPool(
            host=cfg.host,
            port=cfg.port,
            db=cfg.db,
            password=cfg.password,
            **options,
        )

    def _handle_error(self, e: Exception, operation: str) -> None:
        """Record a Redis failure."""
        with self._lock:
            self._errors += 1
            self._last_error = f"{operation}: {e}"
            self._last_error_time = datetime.now()
        logger.warning("Redis %s failed: %s", operation, e)

    def _make_key(self, id: str) -> str:
        return f"{self._config.key_prefix()}{id}"

    def close(self) -> None:
        """Disconnect the connection pool created by this driver."""
        with self._lock:
            if self._owns_client and self._pool is not None:
                self._pool.disconnect()
                self._pool = None
                self._client = None

    def ping(self) -> bool:
        """Check if Redis is reachable."""
        try:
            return bool(self._get_client().ping())
        except self._failures as e:
            self._handle_error(e, "ping")
            return False

    # -------------------------------------------------------------------------
    # Contract
    # -------------------------------------------------------------------------

    def has(self, id: str) -> bool:
        try:
            return self._get_client().exists(self._make_key(id)) > 0
        except self._failures as e:
            self._handle_error(e, "has")
            return False

    def get(self, id: str) -> Any | None:
        key = self._make_key(id)
        try:
            data = self._get_client().hget(key, FIELD_DATA)
        except self._failures as e:
            self._handle_error(e, "get")
            return None

        if data is None:
            return None
        try:
            return self._codec.decode(data)
        except CodecError as e:
            logger.debug("Ignoring undecodable entry %s: %s", key, e)
            return None

    def save(self, id: str, value: Any) -> bool:
        key = self._make_key(id)
        now = self._now()

        try:
            payload = self._codec.encode(value)
        except CodecError as e:
            logger.warning("Failed to encode cache entry %r: %s", id, e)
            return False

        try:
            with self._get_client().pipeline(transaction=True) as pipe:
                pipe.delete(key)
                pipe.hset(
                    key,
                    mapping={
                        FIELD_TIME: now,
                        FIELD_EXPIRE: now + self.lifetime,
                        FIELD_DATA: payload,
                    },
                )
                pipe.expire(key, self.lifetime)
                pipe.execute()
        except self._failures as e:
            self._handle_error(e, "save")
            return False
        return True

    def delete(self, id: str) -> bool:
        try:
            self._get_client().delete(self._make_key(id))
        except self._failures as e:
            self._handle_error(e, "delete")
            return False
        return True

    def get_metadata(self, id: str) -> EntryMetadata | None:
        key = self._make_key(id)
        try:
            client = self._get_client()
            with client.pipeline(transaction=True) as pipe:
                pipe.hmget(key, [FIELD_TIME, FIELD_EXPIRE])
                pipe.ttl(key)
                (created, stored_expire), ttl = pipe.execute()
        except self._failures as e:
            self._handle_error(e, "get_metadata")
            return None

        if created is None:
            return None

        now = self._now()
        try:
            created_at = int(created)
            if ttl >= 0:
                expire = now + ttl
            elif ttl == -1 and stored_expire is not None:
                # key without native TTL, e.g. written by another client
                expire = int(stored_expire)
            else:
                return None
        except (TypeError, ValueError) as e:
            logger.debug("Ignoring corrupt entry %s: %s", key, e)
            return None

        metadata = EntryMetadata(time=created_at, expire=expire)
        if metadata.is_expired(now):
            return None
        return metadata

    def clean(self) -> bool:
        """Remove namespace keys that lost their native TTL and are expired.

        Keys with a native TTL are evicted by Redis itself.
        """
        if not self._config.scan_on_clean:
            return True

        pattern = _GLOB_SPECIAL.sub(r"\\\1", self._config.key_prefix()) + "*"
        now = self._now()
        removed = 0
        try:
            client = self._get_client()
            for key in client.scan_iter(match=pattern, count=500):
                if client.ttl(key) != -1:
                    continue
                try:
                    stored_expire = client.hget(key, FIELD_EXPIRE)
                except self._ResponseError:
                    # not a hash, foreign data under the namespace
                    continue
                try:
                    expire = int(stored_expire)
                except (TypeError, ValueError):
                    continue
                if expire <= now:
                    client.delete(key)
                    removed += 1
        except self._failures as e:
            self._handle_error(e, "clean")
            return False

        logger.debug("Removed %d stale keys under %s", removed, pattern)
        return True

    # -------------------------------------------------------------------------
    # Introspection
    # -------------------------------------------------------------------------

    @property
    def connection_info(self) -> dict[str, Any]:
        """Get connection details for diagnostics."""
        cfg = self._config
        return {
            "host": cfg.host,
            "port": cfg.port,
            "db": cfg.db,
            "namespace": cfg.namespace,
            "last_error": self._last_error,
            "last_error_time": (
                self._last_error_time.isoformat() if self._last_error_time else None
            ),
        }

    def stats(self) -> dict[str, Any]:
        with self._lock:
            return {
                "backend": self.backend_id,
                "host": self._config.host,
                "port": self._config.port,
                "db": self._config.db,
                "namespace": self._config.namespace,
                "errors": self._errors,
                "last_error": self._last_error,
            }

    def __repr__(self) -> str:
        cfg = self._config
        return (
            f"RedisDriver(host={cfg.host!r}, port={cfg.port}, db={cfg.db}, "
            f"namespace={cfg.namespace!r}, lifetime={self.lifetime})"
        )
