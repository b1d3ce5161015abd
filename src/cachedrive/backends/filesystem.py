"""Filesystem-based cache driver.

Each entry lives in its own file under the configured directory. The file
name is the SHA-256 digest of the entry id, sharded into sub-directories by
the first two hex characters, so any id maps to a safe and stable location.

File layout::

    CACHEDRIVE/1 <time> <expire> <encoding>\\n
    <payload>

The header is a single ASCII line, which lets ``has`` and ``get_metadata``
read the timestamps without touching the payload. ``<encoding>`` is ``json``
or ``json+gzip``.

Expired files are removed by :meth:`FileSystemDriver.clean` and, when
``delete_expired_on_read`` is enabled, by any read that finds them. Removal
first moves the file to a private tombstone and re-checks it, so an entry
rewritten concurrently by another writer is never lost.
"""

from __future__ import annotations

import gzip
import hashlib
import logging
import os
import uuid
import zlib
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from cachedrive.atomic import AtomicFileWriter, is_temp_file
from cachedrive.base import (
    CacheDriver,
    CorruptEntryError,
    DriverConfig,
    EntryMetadata,
    InvalidConfigurationError,
)
from cachedrive.codec import Codec, CodecError

logger = logging.getLogger(__name__)

MAGIC = "CACHEDRIVE/1"
HEADER_LIMIT = 256
ENCODING_JSON = "json"
ENCODING_GZIP = "json+gzip"
TOMBSTONE_SUFFIX = ".expired"


@dataclass
class FileSystemConfig(DriverConfig):
    """Configuration for the filesystem driver.

    Attributes:
        path: Base directory holding the entry files.
        file_extension: Extension of entry files.
        compression: Whether to gzip payloads.
        delete_expired_on_read: Whether reads discard expired files they find.
        create_dirs: Whether to create missing directories on save.
        sync_writes: Whether to fsync entry files before publishing them.
    """

    path: str | Path = ".cachedrive/cache"
    file_extension: str = ".cache"
    compression: bool = False
    delete_expired_on_read: bool = True
    create_dirs: bool = True
    sync_writes: bool = True

    def validate(self) -> None:
        super().validate()
        if not isinstance(self.path, (str, Path)) or not str(self.path):
            raise InvalidConfigurationError("path must be a non-empty directory path")
        if (
            not isinstance(self.file_extension, str)
            or not self.file_extension.startswith(".")
            or len(self.file_extension) < 2
            or self.file_extension.endswith(TOMBSTONE_SUFFIX)
        ):
            raise InvalidConfigurationError(
                f"file_extension must look like '.cache', got {self.file_extension!r}"
            )

    def get_base_path(self) -> Path:
        return Path(self.path)


class FileSystemDriver(CacheDriver[FileSystemConfig]):
    """Cache driver storing one file per entry on the local filesystem.

    Example:
        >>> driver = FileSystemDriver(path="/var/cache/myapp", lifetime=300)
        >>> driver.save("user:42", {"name": "Ada"})
        True
        >>> driver.get("user:42")
        {'name': 'Ada'}
    """

    backend_id = "filesystem"
    config_class = FileSystemConfig

    def __init__(
        self,
        path: str | Path = ".cachedrive/cache",
        lifetime: int = 60,
        *,
        codec: Codec | None = None,
        **kwargs: Any,
    ) -> None:
        """Initialize the filesystem driver.

        Args:
            path: Base directory for entry files.
            lifetime: Seconds an entry stays valid.
            codec: Codec for payloads. None uses the default codec.
            **kwargs: Further :class:`FileSystemConfig` options.

        Raises:
            InvalidConfigurationError: If an option is unknown or invalid.
        """
        config = FileSystemConfig.from_options({"path": path, "lifetime": lifetime, **kwargs})
        super().__init__(config, codec=codec)

    @property
    def path(self) -> Path:
        """Base directory of the entry files."""
        return self._config.get_base_path()

    # -------------------------------------------------------------------------
    # Layout
    # -------------------------------------------------------------------------

    def _get_file_path(self, id: str) -> Path:
        """Map an entry id to its file path."""
        digest = hashlib.sha256(id.encode("utf-8", "surrogatepass")).hexdigest()
        return self.path / digest[:2] / f"{digest}{self._config.file_extension}"

    def _build_header(self, metadata: EntryMetadata, encoding: str) -> bytes:
        return f"{MAGIC} {metadata.time} {metadata.expire} {encoding}\n".encode("ascii")

    def _parse_header(self, line: bytes) -> tuple[EntryMetadata, str]:
        """Parse a header line.

        Raises:
            CorruptEntryError: If the line is not a valid header.
        """
        if not line.endswith(b"\n"):
            raise CorruptEntryError("Missing or truncated header")
        try:
            magic, created, expire, encoding = line.decode("ascii").split()
            metadata = EntryMetadata(time=int(created), expire=int(expire))
        except ValueError as e:
            raise CorruptEntryError(f"Malformed header: {line[:64]!r}") from e
        if magic != MAGIC:
            raise CorruptEntryError(f"Unknown header magic: {magic!r}")
        if encoding not in (ENCODING_JSON, ENCODING_GZIP):
            raise CorruptEntryError(f"Unknown payload encoding: {encoding!r}")
        return metadata, encoding

    def _read_metadata(self, path: Path) -> EntryMetadata:
        """Read only the header of an entry file.

        Raises:
            FileNotFoundError: If the file does not exist.
            OSError: If the file cannot be read.
            CorruptEntryError: If the header is invalid.
        """
        with open(path, "rb") as f:
            metadata, _ = self._parse_header(f.readline(HEADER_LIMIT))
        return metadata

    def _decode_payload(self, payload: bytes, encoding: str) -> Any:
        if encoding == ENCODING_GZIP:
            try:
                payload = gzip.decompress(payload)
            except (OSError, EOFError, zlib.error) as e:
                raise CodecError(f"Cannot decompress payload: {e}") from e
        return self._codec.decode(payload)

    # -------------------------------------------------------------------------
    # Expired file removal
    # -------------------------------------------------------------------------

    def _discard_expired(self, path: Path) -> bool:
        """Remove an expired entry file without racing concurrent writers.

        The file is renamed to a tombstone and its header is checked again.
        If a writer replaced the file in the meantime the tombstone holds a
        live entry; it is linked back unless a newer file already exists.

        Returns:
            True if an expired file was removed.
        """
        tombstone = path.with_name(f".{path.name}.{uuid.uuid4().hex}{TOMBSTONE_SUFFIX}")
        try:
            os.rename(path, tombstone)
        except FileNotFoundError:
            return False
        except OSError as e:
            logger.debug("Could not discard expired entry %s: %s", path, e)
            return False

        try:
            expired = self._read_metadata(tombstone).is_expired(self._now())
        except (OSError, CorruptEntryError):
            expired = False

        try:
            if not expired:
                try:
                    os.link(tombstone, path)
                except FileExistsError:
                    pass
                except OSError as e:
                    logger.debug("Could not restore live entry %s: %s", path, e)
        finally:
            try:
                tombstone.unlink(missing_ok=True)
            except OSError as e:
                logger.debug("Could not remove tombstone %s: %s", tombstone, e)

        return expired

    def _on_expired_read(self, path: Path) -> None:
        if self._config.delete_expired_on_read:
            self._discard_expired(path)

    # -------------------------------------------------------------------------
    # Contract
    # -------------------------------------------------------------------------

    def has(self, id: str) -> bool:
        return self.get_metadata(id) is not None

    def get(self, id: str) -> Any | None:
        path = self._get_file_path(id)

        try:
            with open(path, "rb") as f:
                metadata, encoding = self._parse_header(f.readline(HEADER_LIMIT))
                if metadata.is_expired(self._now()):
                    payload = None
                else:
                    payload = f.read()
        except FileNotFoundError:
            return None
        except CorruptEntryError as e:
            logger.debug("Ignoring corrupt entry %s: %s", path, e)
            return None
        except OSError as e:
            logger.warning("Failed to read cache entry %s: %s", path, e)
            return None

        if payload is None:
            self._on_expired_read(path)
            return None

        try:
            return self._decode_payload(payload, encoding)
        except CodecError as e:
            logger.debug("Ignoring undecodable entry %s: %s", path, e)
            return None

    def save(self, id: str, value: Any) -> bool:
        now = self._now()
        metadata = EntryMetadata(time=now, expire=now + self.lifetime)

        try:
            payload = self._codec.encode(value).encode("utf-8")
        except CodecError as e:
            logger.warning("Failed to encode cache entry %r: %s", id, e)
            return False

        encoding = ENCODING_JSON
        if self._config.compression:
            payload = gzip.compress(payload)
            encoding = ENCODING_GZIP

        path = self._get_file_path(id)
        try:
            with AtomicFileWriter(
                path,
                sync_on_commit=self._config.sync_writes,
                create_dirs=self._config.create_dirs,
            ) as writer:
                writer.write(self._build_header(metadata, encoding))
                writer.write(payload)
                result = writer.commit()
        except OSError as e:
            logger.warning("Failed to write cache entry %s: %s", path, e)
            return False

        if not result.success:
            logger.warning("Failed to write cache entry %s: %s", path, result.error)
            return False
        return True

    def delete(self, id: str) -> bool:
        path = self._get_file_path(id)
        try:
            path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning("Failed to delete cache entry %s: %s", path, e)
            return False
        return True

    def get_metadata(self, id: str) -> EntryMetadata | None:
        path = self._get_file_path(id)

        try:
            metadata = self._read_metadata(path)
        except FileNotFoundError:
            return None
        except CorruptEntryError as e:
            logger.debug("Ignoring corrupt entry %s: %s", path, e)
            return None
        except OSError as e:
            logger.warning("Failed to read cache entry %s: %s", path, e)
            return None

        if metadata.is_expired(self._now()):
            self._on_expired_read(path)
            return None
        return metadata

    def clean(self) -> bool:
        """Remove every expired entry file under the base directory.

        Files without a valid header are foreign or corrupt and are left
        untouched, as are temp files of in-flight writes.
        """
        base = self.path
        if not base.exists():
            return True

        try:
            candidates = sorted(base.rglob(f"*{self._config.file_extension}"))
        except OSError as e:
            logger.warning("Failed to list cache directory %s: %s", base, e)
            return False

        now = self._now()
        removed = 0
        for file_path in candidates:
            if file_path.name.startswith(".") or is_temp_file(file_path):
                continue
            try:
                metadata = self._read_metadata(file_path)
            except FileNotFoundError:
                continue
            except (OSError, CorruptEntryError) as e:
                logger.debug("Skipping foreign file %s: %s", file_path, e)
                continue

            if metadata.is_expired(now) and self._discard_expired(file_path):
                removed += 1

        logger.debug("Removed %d expired entries from %s", removed, base)
        return True

    # -------------------------------------------------------------------------
    # Introspection
    # -------------------------------------------------------------------------

    def stats(self) -> dict[str, Any]:
        """Summarize the entry files under the base directory."""
        base = self.path
        entries = 0
        expired = 0
        size_bytes = 0
        now = self._now()

        if base.exists():
            for file_path in base.rglob(f"*{self._config.file_extension}"):
                if file_path.name.startswith("."):
                    continue
                try:
                    metadata = self._read_metadata(file_path)
                    size_bytes += file_path.stat().st_size
                except (OSError, CorruptEntryError):
                    continue
                entries += 1
                if metadata.is_expired(now):
                    expired += 1

        return {
            "backend": self.backend_id,
            "path": str(base),
            "entries": entries,
            "expired": expired,
            "size_bytes": size_bytes,
        }

    def __repr__(self) -> str:
        return f"FileSystemDriver(path={str(self.path)!r}, lifetime={self.lifetime})"
