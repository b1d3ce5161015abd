"""Tests for the tagged-envelope codec."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum

import pytest

from cachedrive.codec import (
    Codec,
    CodecError,
    TypeRegistry,
    decode,
    default_registry,
    encode,
    register_type,
)


# =============================================================================
# Sample Types
# =============================================================================


@dataclass
class Task:
    id: int
    message: str
    tags: list[str] = field(default_factory=list)


@dataclass
class Counter:
    name: str
    hits: int = field(default=0, init=False)


class Color(Enum):
    RED = "red"
    GREEN = "green"


class Point:
    def __init__(self, x: int, y: int) -> None:
        self.x = x
        self.y = y

    def to_dict(self) -> dict:
        return {"x": self.x, "y": self.y}

    @classmethod
    def from_dict(cls, data: dict) -> "Point":
        return cls(data["x"], data["y"])

    def __eq__(self, other: object) -> bool:
        return isinstance(other, Point) and (self.x, self.y) == (other.x, other.y)


class Broken:
    def __init__(self, when: datetime | None) -> None:
        self.when = when

    def to_dict(self) -> dict:
        return {"when": self.when.isoformat()}

    @classmethod
    def from_dict(cls, data: dict) -> "Broken":
        return cls(datetime.fromisoformat(data["when"]))


class StrictError(Exception):
    pass


@dataclass
class Strict:
    n: int

    def __post_init__(self) -> None:
        if self.n < 0:
            raise StrictError("negative")


@pytest.fixture
def codec() -> Codec:
    registry = TypeRegistry()
    registry.register(Task)
    registry.register(Counter)
    registry.register(Color)
    registry.register(Point, name="geometry.Point")
    registry.register(Broken, name="tests.Broken")
    registry.register(Strict, name="tests.Strict")
    return Codec(registry)


# =============================================================================
# Builtin Values
# =============================================================================


class TestBuiltinValues:
    """Tests for values that need no registration."""

    @pytest.mark.parametrize(
        "value",
        [None, True, 0, -7, 3.5, "", "héllo", [1, "a", None], []],
    )
    def test_json_native_values(self, codec: Codec, value) -> None:
        """Test JSON-native values are stored without envelopes."""
        text = codec.encode(value)
        assert json.loads(text) == value
        assert codec.decode(text) == value

    def test_nested_containers(self, codec: Codec) -> None:
        """Test nested containers keep their exact types."""
        value = {
            "tuple": (1, 2, (3,)),
            "set": {1, 2},
            "frozen": frozenset({"a"}),
            "list": [{"inner": (None,)}],
        }
        decoded = codec.decode(codec.encode(value))

        assert decoded == value
        assert type(decoded["tuple"]) is tuple
        assert type(decoded["tuple"][2]) is tuple
        assert type(decoded["set"]) is set
        assert type(decoded["frozen"]) is frozenset
        assert type(decoded["list"][0]["inner"]) is tuple

    def test_non_string_keys(self, codec: Codec) -> None:
        """Test dicts with non-string keys survive."""
        value = {1: "one", (2, 3): "pair", None: "none"}
        assert codec.decode(codec.encode(value)) == value

    def test_dict_with_tag_like_key(self, codec: Codec) -> None:
        """Test a user key equal to the tag marker is not misread."""
        value = {"$t": "tuple", "v": [1]}
        assert codec.decode(codec.encode(value)) == value

    def test_bytes_datetime_decimal(self, codec: Codec) -> None:
        """Test scalar types beyond JSON."""
        value = [
            b"\x00\xffraw",
            datetime(2024, 5, 1, 12, 30, tzinfo=timezone.utc),
            date(2024, 5, 1),
            Decimal("12.3400"),
        ]
        decoded = codec.decode(codec.encode(value))

        assert decoded == value
        assert type(decoded[2]) is date
        assert str(decoded[3]) == "12.3400"

    def test_decode_accepts_bytes(self, codec: Codec) -> None:
        """Test decoding UTF-8 bytes."""
        assert codec.decode(codec.encode({"k": "ü"}).encode("utf-8")) == {"k": "ü"}


# =============================================================================
# Registered Types
# =============================================================================


class TestRegisteredTypes:
    """Tests for caller-defined types."""

    def test_dataclass(self, codec: Codec) -> None:
        """Test dataclass round trip."""
        task = Task(9, "test", ["a"])
        assert codec.decode(codec.encode(task)) == task

    def test_dataclass_non_init_field(self, codec: Codec) -> None:
        """Test fields excluded from __init__ are restored."""
        counter = Counter("requests")
        counter.hits = 5

        decoded = codec.decode(codec.encode(counter))

        assert decoded.name == "requests"
        assert decoded.hits == 5

    def test_enum(self, codec: Codec) -> None:
        """Test Enum members decode to the same member."""
        assert codec.decode(codec.encode([Color.GREEN])) == [Color.GREEN]

    def test_to_dict_class(self, codec: Codec) -> None:
        """Test classes with to_dict/from_dict."""
        payload = codec.encode(Point(1, 2))

        assert json.loads(payload)["n"] == "geometry.Point"
        assert codec.decode(payload) == Point(1, 2)

    def test_unregistered_type_rejected(self, codec: Codec) -> None:
        """Test unregistered objects cannot be encoded."""

        @dataclass
        class Unknown:
            x: int

        with pytest.raises(CodecError, match="not registered"):
            codec.encode({"nested": Unknown(1)})

    def test_unknown_type_name_on_decode(self, codec: Codec) -> None:
        """Test payloads naming an unregistered type fail to decode."""
        other = Codec(TypeRegistry())
        with pytest.raises(CodecError, match="Unknown registered type"):
            other.decode(codec.encode(Task(1, "x")))

    def test_to_dict_failure_is_codec_error(self, codec: Codec) -> None:
        """Test exceptions from to_dict surface as CodecError."""
        with pytest.raises(CodecError, match="tests.Broken"):
            codec.encode({"nested": [Broken(None)]})

    def test_constructor_failure_is_codec_error(self, codec: Codec) -> None:
        """Test exceptions from __post_init__ surface as CodecError."""
        payload = codec.encode(Strict(1)).replace('"n":1', '"n":-1')

        with pytest.raises(CodecError, match="negative"):
            codec.decode(payload)

    def test_from_dict_failure_is_codec_error(self, codec: Codec) -> None:
        """Test exceptions from from_dict surface as CodecError."""
        payload = json.dumps({"$t": "type", "n": "tests.Broken", "v": {"when": "soon"}})

        with pytest.raises(CodecError):
            codec.decode(payload)

    def test_unknown_enum_value_is_codec_error(self, codec: Codec) -> None:
        """Test an Enum value that no longer exists fails to decode."""
        payload = codec.encode(Color.RED).replace('"red"', '"blue"')

        with pytest.raises(CodecError):
            codec.decode(payload)

    def test_register_unsupported_class(self) -> None:
        """Test plain classes cannot be registered."""
        with pytest.raises(TypeError):
            TypeRegistry().register(object)

    def test_name_conflict(self) -> None:
        """Test two classes cannot share a name."""
        registry = TypeRegistry()
        registry.register(Task, name="shared")
        with pytest.raises(TypeError, match="already registered"):
            registry.register(Counter, name="shared")

    def test_unregister(self) -> None:
        """Test unregistering removes both directions."""
        registry = TypeRegistry()
        registry.register(Task)
        registry.unregister(Task)

        assert Task not in registry
        assert registry.list_types() == []


# =============================================================================
# Malformed Payloads
# =============================================================================


class TestMalformedPayloads:
    """Tests for payloads that cannot be decoded."""

    @pytest.mark.parametrize(
        "payload",
        [
            "",
            "{not json",
            '{"plain": "object"}',
            '{"$t": "nope", "v": 1}',
            '{"$t": "bytes", "v": "***"}',
            '{"$t": "decimal", "v": "abc"}',
            '{"$t": "datetime", "v": "yesterday"}',
            '{"$t": "dict", "v": [1, 2]}',
            b"\xff\xfe",
        ],
    )
    def test_raises_codec_error(self, codec: Codec, payload) -> None:
        """Test malformed payloads raise CodecError."""
        with pytest.raises(CodecError):
            codec.decode(payload)


# =============================================================================
# Default Codec
# =============================================================================


class TestDefaultCodec:
    """Tests for the module-level registry and helpers."""

    def test_register_type_decorator(self) -> None:
        """Test bare and named decorator forms."""

        @register_type
        @dataclass
        class Job:
            name: str

        @register_type(name="tests.Stage")
        class Stage(Enum):
            BUILD = 1

        try:
            assert decode(encode(Job("nightly"))) == Job("nightly")
            assert decode(encode(Stage.BUILD)) is Stage.BUILD
            assert "tests.Stage" in default_registry.list_types()
        finally:
            default_registry.unregister(Job)
            default_registry.unregister(Stage)
