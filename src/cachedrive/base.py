"""Base classes and interfaces for cache drivers.

This module defines the abstract driver contract that every storage backend
implements, the shared configuration dataclass and the exception hierarchy.
Drivers never let storage faults escape a runtime operation: a failing cache
behaves like an empty one. Only configuration problems are raised, and only
at construction time.
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, fields
from typing import TYPE_CHECKING, Any, ClassVar, Generic, TypeVar, get_args, get_type_hints

if TYPE_CHECKING:
    from cachedrive.codec import Codec

logger = logging.getLogger(__name__)


# =============================================================================
# Exceptions
# =============================================================================


class CacheError(Exception):
    """Base exception for all cache-related errors."""

    pass


class InvalidConfigurationError(CacheError, ValueError):
    """Raised when a driver is built from an unsupported or malformed config."""

    pass


class BackendUnavailableError(CacheError):
    """Raised internally when the storage medium cannot be reached."""

    def __init__(self, backend: str, message: str) -> None:
        self.backend = backend
        super().__init__(f"{backend} backend unavailable: {message}")


class CorruptEntryError(CacheError):
    """Raised internally when a stored entry cannot be parsed."""

    pass


# =============================================================================
# Configuration
# =============================================================================


DEFAULT_LIFETIME = 60


@dataclass
class DriverConfig:
    """Base configuration shared by all drivers.

    Attributes:
        lifetime: Seconds an entry stays valid after it is saved.
    """

    lifetime: int = DEFAULT_LIFETIME

    def validate(self) -> None:
        """Validate configuration values.

        Raises:
            InvalidConfigurationError: If a value is out of range.
        """
        if isinstance(self.lifetime, bool) or not isinstance(self.lifetime, int):
            raise InvalidConfigurationError(
                f"lifetime must be an integer number of seconds, got {self.lifetime!r}"
            )
        if self.lifetime < 0:
            raise InvalidConfigurationError("lifetime must be non-negative")

    @classmethod
    def option_names(cls) -> set[str]:
        """Names of the options this configuration accepts."""
        return {f.name for f in fields(cls)}

    @classmethod
    def string_options(cls) -> set[str]:
        """Names of the options that only accept text values."""
        names = set()
        hints = get_type_hints(cls)
        for f in fields(cls):
            kinds = set(get_args(hints[f.name])) or {hints[f.name]}
            if str in kinds and not kinds & {bool, int, float}:
                names.add(f.name)
        return names

    @classmethod
    def from_options(cls, options: Mapping[str, Any]) -> "DriverConfig":
        """Build a configuration from a mapping, rejecting unknown keys."""
        unknown = set(options) - cls.option_names()
        if unknown:
            raise InvalidConfigurationError(
                f"Unknown option(s) for {cls.__name__}: {', '.join(sorted(unknown))}"
            )
        try:
            config = cls(**options)
        except TypeError as e:
            raise InvalidConfigurationError(str(e)) from e
        return config


ConfigT = TypeVar("ConfigT", bound=DriverConfig)


# =============================================================================
# Metadata
# =============================================================================


@dataclass(frozen=True)
class EntryMetadata(Mapping[str, int]):
    """Read-only timestamps of a stored entry.

    Behaves as a mapping with the keys ``time`` and ``expire`` so callers can
    treat it like the plain dictionary view.

    Attributes:
        time: Unix timestamp of the save that created the entry.
        expire: Unix timestamp at which the entry stops being visible.
    """

    time: int
    expire: int

    def __getitem__(self, key: str) -> int:
        if key == "time":
            return self.time
        if key == "expire":
            return self.expire
        raise KeyError(key)

    def __iter__(self) -> Iterator[str]:
        return iter(("time", "expire"))

    def __len__(self) -> int:
        return 2

    def is_expired(self, now: int) -> bool:
        return self.expire <= now

    def to_dict(self) -> dict[str, int]:
        return {"time": self.time, "expire": self.expire}


# =============================================================================
# Abstract Driver
# =============================================================================


class CacheDriver(ABC, Generic[ConfigT]):
    """Abstract base class for all cache drivers.

    Subclasses implement the six contract operations. Each operation returns
    a value of its declared type and converts storage faults into that
    type's failure value (``False`` or ``None``).

    Type Parameters:
        ConfigT: The configuration dataclass of the driver.
    """

    backend_id: ClassVar[str] = ""
    config_class: ClassVar[type[DriverConfig]] = DriverConfig

    def __init__(self, config: ConfigT, codec: "Codec | None" = None) -> None:
        """Initialize the driver.

        Args:
            config: Driver configuration, validated immediately.
            codec: Codec used for payloads. None uses the default codec.

        Raises:
            InvalidConfigurationError: If the configuration is invalid.
        """
        from cachedrive.codec import default_codec

        config.validate()
        self._config = config
        self._codec = codec or default_codec

    @property
    def config(self) -> ConfigT:
        """Get the driver configuration."""
        return self._config

    @property
    def lifetime(self) -> int:
        """Seconds an entry stays valid after it is saved."""
        return self._config.lifetime

    @property
    def codec(self) -> "Codec":
        return self._codec

    def _now(self) -> int:
        """Return the wall-clock unix timestamp used for entry timestamps."""
        return int(time.time())

    # -------------------------------------------------------------------------
    # Contract
    # -------------------------------------------------------------------------

    @abstractmethod
    def has(self, id: str) -> bool:
        """Check whether an unexpired entry exists.

        Args:
            id: Entry identifier.

        Returns:
            True if the entry exists and has not expired.
        """
        pass

    @abstractmethod
    def get(self, id: str) -> Any | None:
        """Retrieve the decoded value of an entry.

        Args:
            id: Entry identifier.

        Returns:
            The stored value, or None when the entry is missing, expired or
            cannot be decoded.
        """
        pass

    @abstractmethod
    def save(self, id: str, value: Any) -> bool:
        """Store a value with fresh timestamps, replacing any previous entry.

        Args:
            id: Entry identifier.
            value: Value to store.

        Returns:
            True on success, False on any encoding or storage failure.
        """
        pass

    @abstractmethod
    def delete(self, id: str) -> bool:
        """Remove an entry.

        Args:
            id: Entry identifier.

        Returns:
            True once the entry is gone, including when it never existed.
        """
        pass

    @abstractmethod
    def get_metadata(self, id: str) -> EntryMetadata | None:
        """Retrieve the timestamps of an entry without decoding its payload.

        Args:
            id: Entry identifier.

        Returns:
            The entry metadata, or None when the entry is missing or expired.
        """
        pass

    @abstractmethod
    def clean(self) -> bool:
        """Physically remove every expired entry.

        Returns:
            True if the sweep completed.
        """
        pass

    # -------------------------------------------------------------------------
    # Resource handling
    # -------------------------------------------------------------------------

    def stats(self) -> dict[str, Any]:
        """Return driver statistics.

        Drivers add their own counters to the ``backend`` entry.
        """
        return {"backend": self.backend_id}

    def close(self) -> None:
        """Release resources held by the driver."""
        pass

    def __contains__(self, id: object) -> bool:
        return isinstance(id, str) and self.has(id)

    def __enter__(self) -> "CacheDriver[ConfigT]":
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"{type(self).__name__}(lifetime={self.lifetime})"
