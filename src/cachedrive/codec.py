"""Tagged-envelope codec for cached values.

Values are converted to JSON text. JSON scalars and lists are stored as is;
every other supported shape is wrapped in an envelope ``{"$t": tag, "v": data}``
so its Python type can be restored on decode. Caller-defined types must be
registered explicitly before they can be stored:

Example:
    >>> from dataclasses import dataclass
    >>> from cachedrive.codec import register_type, default_codec
    >>>
    >>> @register_type
    ... @dataclass
    ... class Task:
    ...     id: int
    ...     message: str
    >>>
    >>> text = default_codec.encode(Task(9, "test"))
    >>> default_codec.decode(text)
    Task(id=9, message='test')

Supported registered types:
- dataclasses (fields are encoded recursively)
- ``Enum`` subclasses (by value)
- classes implementing ``to_dict()`` and ``from_dict()``
"""

from __future__ import annotations

import base64
import dataclasses
import json
import threading
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Callable, TypeVar, overload

from cachedrive.base import CorruptEntryError

T = TypeVar("T", bound=type)

TAG = "$t"
VALUE = "v"
NAME = "n"


class CodecError(CorruptEntryError):
    """Raised when a value cannot be encoded or a payload cannot be decoded."""

    pass


# =============================================================================
# Type Registry
# =============================================================================


class TypeRegistry:
    """Registry mapping stable names to caller-defined types.

    Thread-safe; the same class may be registered once per name.
    """

    def __init__(self) -> None:
        self._by_name: dict[str, type] = {}
        self._by_type: dict[type, str] = {}
        self._lock = threading.RLock()

    def register(self, cls: type, name: str | None = None) -> type:
        """Register a type under a name.

        Args:
            cls: Dataclass, Enum or a class with ``to_dict``/``from_dict``.
            name: Stable name stored in payloads. Defaults to
                ``module.qualname``.

        Returns:
            The class itself, so this can be used as a decorator.

        Raises:
            TypeError: If the class is not encodable or the name is taken.
        """
        if not _is_supported_type(cls):
            raise TypeError(
                f"{cls.__qualname__} must be a dataclass, an Enum or "
                "implement to_dict() and from_dict()"
            )
        type_name = name or f"{cls.__module__}.{cls.__qualname__}"

        with self._lock:
            existing = self._by_name.get(type_name)
            if existing is not None and existing is not cls:
                raise TypeError(f"Type name already registered: {type_name}")
            self._by_name[type_name] = cls
            self._by_type[cls] = type_name
        return cls

    def unregister(self, cls: type) -> None:
        with self._lock:
            name = self._by_type.pop(cls, None)
            if name is not None:
                self._by_name.pop(name, None)

    def name_of(self, cls: type) -> str | None:
        with self._lock:
            return self._by_type.get(cls)

    def resolve(self, name: str) -> type | None:
        with self._lock:
            return self._by_name.get(name)

    def __contains__(self, cls: object) -> bool:
        with self._lock:
            return cls in self._by_type

    def list_types(self) -> list[str]:
        """List registered type names."""
        with self._lock:
            return sorted(self._by_name)


def _is_supported_type(cls: type) -> bool:
    if dataclasses.is_dataclass(cls) or issubclass(cls, Enum):
        return True
    return callable(getattr(cls, "to_dict", None)) and callable(
        getattr(cls, "from_dict", None)
    )


# =============================================================================
# Codec
# =============================================================================


class Codec:
    """Encode values to JSON text and back, preserving Python types.

    Attributes:
        registry: Registry of caller-defined types.
    """

    def __init__(self, registry: TypeRegistry | None = None) -> None:
        self.registry = registry or TypeRegistry()

    def encode(self, value: Any) -> str:
        """Encode a value to JSON text.

        Raises:
            CodecError: If the value (or anything nested in it) is not
                supported.
        """
        try:
            return json.dumps(self._to_tree(value), ensure_ascii=False, separators=(",", ":"))
        except (TypeError, ValueError, RecursionError) as e:
            raise CodecError(f"Cannot encode value of type {type(value).__name__}: {e}") from e

    def decode(self, text: str | bytes) -> Any:
        """Decode JSON text produced by :meth:`encode`.

        Raises:
            CodecError: If the text is malformed or references unknown tags
                or types.
        """
        try:
            if isinstance(text, bytes):
                text = text.decode("utf-8")
            tree = json.loads(text)
            return self._from_tree(tree)
        except CodecError:
            raise
        except (ValueError, TypeError, KeyError, AttributeError, RecursionError) as e:
            raise CodecError(f"Cannot decode payload: {e}") from e

    # -------------------------------------------------------------------------
    # Encoding
    # -------------------------------------------------------------------------

    def _to_tree(self, value: Any) -> Any:
        cls = type(value)
        # exact types only, subclasses such as IntEnum must be registered
        if value is None or cls in (bool, int, float, str):
            return value

        type_name = self.registry.name_of(cls)
        if type_name is not None:
            try:
                data = self._object_to_tree(value)
            except CodecError:
                raise
            except Exception as e:
                # caller code (to_dict, properties) may raise anything
                raise CodecError(f"Cannot encode {type_name}: {e!r}") from e
            return {TAG: "type", NAME: type_name, VALUE: data}

        if cls is list:
            return [self._to_tree(item) for item in value]
        if cls is dict:
            if all(isinstance(k, str) for k in value):
                return {TAG: "dict", VALUE: {k: self._to_tree(v) for k, v in value.items()}}
            return {
                TAG: "map",
                VALUE: [[self._to_tree(k), self._to_tree(v)] for k, v in value.items()],
            }
        if cls is tuple:
            return {TAG: "tuple", VALUE: [self._to_tree(item) for item in value]}
        if cls is set:
            return {TAG: "set", VALUE: [self._to_tree(item) for item in value]}
        if cls is frozenset:
            return {TAG: "frozenset", VALUE: [self._to_tree(item) for item in value]}
        if cls in (bytes, bytearray):
            return {TAG: "bytes", VALUE: base64.b64encode(bytes(value)).decode("ascii")}
        if cls is datetime:
            return {TAG: "datetime", VALUE: value.isoformat()}
        if cls is date:
            return {TAG: "date", VALUE: value.isoformat()}
        if cls is Decimal:
            return {TAG: "decimal", VALUE: str(value)}

        raise TypeError(
            f"{cls.__module__}.{cls.__qualname__} is not registered; "
            "use cachedrive.register_type"
        )

    def _object_to_tree(self, value: Any) -> Any:
        if isinstance(value, Enum):
            return self._to_tree(value.value)
        if dataclasses.is_dataclass(value):
            return {
                f.name: self._to_tree(getattr(value, f.name))
                for f in dataclasses.fields(value)
            }
        data = value.to_dict()
        if not isinstance(data, dict):
            raise TypeError(f"{type(value).__qualname__}.to_dict() must return a dict")
        return {str(k): self._to_tree(v) for k, v in data.items()}

    # -------------------------------------------------------------------------
    # Decoding
    # -------------------------------------------------------------------------

    def _from_tree(self, tree: Any) -> Any:
        if tree is None or isinstance(tree, (bool, int, float, str)):
            return tree
        if isinstance(tree, list):
            return [self._from_tree(item) for item in tree]
        if not isinstance(tree, dict) or TAG not in tree:
            raise CodecError("Untagged object in payload")

        tag = tree[TAG]
        data = tree.get(VALUE)
        decoder = self._decoders.get(tag)
        if decoder is None:
            raise CodecError(f"Unknown type tag: {tag!r}")
        return decoder(self, tree, data)

    def _decode_dict(self, tree: dict[str, Any], data: Any) -> dict[str, Any]:
        return {k: self._from_tree(v) for k, v in data.items()}

    def _decode_map(self, tree: dict[str, Any], data: Any) -> dict[Any, Any]:
        return {self._from_tree(k): self._from_tree(v) for k, v in data}

    def _decode_tuple(self, tree: dict[str, Any], data: Any) -> tuple[Any, ...]:
        return tuple(self._from_tree(item) for item in data)

    def _decode_set(self, tree: dict[str, Any], data: Any) -> set[Any]:
        return {self._from_tree(item) for item in data}

    def _decode_frozenset(self, tree: dict[str, Any], data: Any) -> frozenset[Any]:
        return frozenset(self._from_tree(item) for item in data)

    def _decode_bytes(self, tree: dict[str, Any], data: Any) -> bytes:
        return base64.b64decode(data.encode("ascii"), validate=True)

    def _decode_datetime(self, tree: dict[str, Any], data: Any) -> datetime:
        return datetime.fromisoformat(data)

    def _decode_date(self, tree: dict[str, Any], data: Any) -> date:
        return date.fromisoformat(data)

    def _decode_decimal(self, tree: dict[str, Any], data: Any) -> Decimal:
        try:
            return Decimal(data)
        except InvalidOperation as e:
            raise CodecError(f"Invalid decimal: {data!r}") from e

    def _decode_type(self, tree: dict[str, Any], data: Any) -> Any:
        name = tree.get(NAME)
        cls = self.registry.resolve(name) if isinstance(name, str) else None
        if cls is None:
            raise CodecError(f"Unknown registered type: {name!r}")

        if issubclass(cls, Enum):
            value = self._from_tree(data)
        elif isinstance(data, dict):
            value = {k: self._from_tree(v) for k, v in data.items()}
        else:
            raise CodecError(f"Malformed payload for {name}")

        try:
            if issubclass(cls, Enum):
                return cls(value)
            if dataclasses.is_dataclass(cls):
                return _build_dataclass(cls, value)
            return cls.from_dict(value)
        except Exception as e:
            # constructors, __post_init__ and from_dict are caller code
            raise CodecError(f"Cannot rebuild {name}: {e!r}") from e

    _decoders: dict[str, Callable[["Codec", dict[str, Any], Any], Any]] = {
        "dict": _decode_dict,
        "map": _decode_map,
        "tuple": _decode_tuple,
        "set": _decode_set,
        "frozenset": _decode_frozenset,
        "bytes": _decode_bytes,
        "datetime": _decode_datetime,
        "date": _decode_date,
        "decimal": _decode_decimal,
        "type": _decode_type,
    }


def _build_dataclass(cls: type, values: dict[str, Any]) -> Any:
    """Rebuild a dataclass, passing init fields to the constructor."""
    init_values = {}
    late_values = {}
    for f in dataclasses.fields(cls):
        if f.name not in values:
            continue
        if f.init:
            init_values[f.name] = values[f.name]
        else:
            late_values[f.name] = values[f.name]

    obj = cls(**init_values)
    for name, value in late_values.items():
        object.__setattr__(obj, name, value)
    return obj


# =============================================================================
# Module-level defaults
# =============================================================================


default_registry = TypeRegistry()
default_codec = Codec(default_registry)


@overload
def register_type(cls: T, *, name: str | None = None) -> T: ...


@overload
def register_type(cls: None = None, *, name: str | None = None) -> Callable[[T], T]: ...


def register_type(cls: Any = None, *, name: str | None = None) -> Any:
    """Register a type with the default codec.

    Can be used bare (``@register_type``) or with a name
    (``@register_type(name="tasks.Task")``).
    """

    def decorator(target: T) -> T:
        default_registry.register(target, name)
        return target

    if cls is None:
        return decorator
    return decorator(cls)


def encode(value: Any) -> str:
    """Encode a value with the default codec."""
    return default_codec.encode(value)


def decode(text: str | bytes) -> Any:
    """Decode a payload with the default codec."""
    return default_codec.decode(text)
