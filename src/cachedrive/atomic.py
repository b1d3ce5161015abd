"""Atomic file writes for the filesystem driver.

Entries are written with the write-to-temp-then-rename pattern: the content
goes to a temporary file in the target directory, is flushed to disk and is
then moved over the target with ``os.replace``. Readers see either the old
file or the new one, never a partial write.

Example:
    >>> result = atomic_write(Path("/tmp/cache/ab/abcd.cache"), b"data")
    >>> result.success
    True
"""

from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any

TEMP_SUFFIX = ".tmp"


@dataclass
class AtomicOperation:
    """Result of an atomic write.

    Attributes:
        success: Whether the target now holds the new content.
        path: Target path.
        error: Error message if the write failed.
        bytes_written: Number of bytes written.
    """

    success: bool
    path: Path
    error: str | None = None
    bytes_written: int = 0


class AtomicFileWriter:
    """Atomic file writer using write-to-temp-then-rename.

    The temp file lives in the target directory so the final rename never
    crosses filesystems. If the context exits without :meth:`commit`, the
    temp file is removed and the target is left unchanged.

    Example:
        >>> with AtomicFileWriter(path) as writer:
        ...     writer.write(b"header\\n")
        ...     writer.write(payload)
        ...     result = writer.commit()
    """

    def __init__(
        self,
        path: Path | str,
        *,
        sync_on_commit: bool = True,
        create_dirs: bool = True,
    ) -> None:
        """Initialize the atomic writer.

        Args:
            path: Target file path.
            sync_on_commit: Whether to fsync before the rename.
            create_dirs: Whether to create missing parent directories.
        """
        self._path = Path(path)
        self._sync_on_commit = sync_on_commit
        self._create_dirs = create_dirs

        self._temp_file: Any = None
        self._temp_path: Path | None = None
        self._committed = False
        self._bytes_written = 0

    def __enter__(self) -> "AtomicFileWriter":
        if self._create_dirs:
            self._path.parent.mkdir(parents=True, exist_ok=True)

        fd, temp_path = tempfile.mkstemp(
            dir=self._path.parent,
            prefix=f".{self._path.name}.",
            suffix=TEMP_SUFFIX,
        )
        self._temp_path = Path(temp_path)
        self._temp_file = os.fdopen(fd, "wb")
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        if self._temp_file and not self._temp_file.closed:
            self._temp_file.close()

        if not self._committed and self._temp_path is not None:
            self._temp_path.unlink(missing_ok=True)

    def write(self, data: bytes) -> int:
        """Write data to the temp file."""
        if self._committed:
            raise RuntimeError("Cannot write after commit")
        if self._temp_file is None:
            raise RuntimeError("Must be used within context manager")

        count = self._temp_file.write(data)
        self._bytes_written += count
        return count

    def commit(self) -> AtomicOperation:
        """Move the temp file over the target.

        Returns:
            AtomicOperation describing the outcome.
        """
        if self._committed:
            raise RuntimeError("Already committed")
        if self._temp_file is None or self._temp_path is None:
            raise RuntimeError("Must be used within context manager")

        try:
            self._temp_file.flush()
            if self._sync_on_commit:
                os.fsync(self._temp_file.fileno())
            self._temp_file.close()

            os.replace(self._temp_path, self._path)
            self._committed = True

            return AtomicOperation(
                success=True,
                path=self._path,
                bytes_written=self._bytes_written,
            )
        except OSError as e:
            return AtomicOperation(success=False, path=self._path, error=str(e))


def atomic_write(
    path: Path | str,
    content: bytes | str,
    *,
    sync: bool = True,
    create_dirs: bool = True,
) -> AtomicOperation:
    """Write content to a file atomically.

    Args:
        path: Target file path.
        content: Content to write; str is encoded as UTF-8.
        sync: Whether to fsync before the rename.
        create_dirs: Whether to create missing parent directories.

    Returns:
        AtomicOperation with the result.

    Raises:
        OSError: If the temp file cannot be created or written.
    """
    if isinstance(content, str):
        content = content.encode("utf-8")

    with AtomicFileWriter(path, sync_on_commit=sync, create_dirs=create_dirs) as writer:
        writer.write(content)
        return writer.commit()


def is_temp_file(path: Path) -> bool:
    """Check whether a path is an in-flight temp file of a writer."""
    return path.name.startswith(".") and path.name.endswith(TEMP_SUFFIX)
