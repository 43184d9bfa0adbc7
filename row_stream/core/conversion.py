"""Type conversion engine.

Maps the textual representation the server sends (and accepts) to Python
values and back. A type participates by registering a ``Converter`` that
knows whether it accepts NULL, how to parse text and how to format a value.

Resolution happens once per target (``ConverterRegistry.resolve``), so the
hot path of a stream only calls ``Converter.from_text``.

Fixed-width integer and single precision float targets are expressed as
``typing.NewType`` aliases so they can be used as annotations::

    from row_stream.core.conversion import Int32

    value = field.convert(Int32)
"""

from __future__ import annotations

import datetime
import decimal
import math
import re
import types
import uuid
from typing import Any, Generic, NewType, TypeVar, Union, get_args, get_origin

from dateutil.parser import isoparse

from row_stream.core.exceptions import (
    ConversionError,
    ConverterNotFoundError,
    UnexpectedNullError,
)

T = TypeVar("T")

Int16 = NewType("Int16", int)
Int32 = NewType("Int32", int)
Int64 = NewType("Int64", int)
UInt16 = NewType("UInt16", int)
UInt32 = NewType("UInt32", int)
UInt64 = NewType("UInt64", int)
Float32 = NewType("Float32", float)

_FLOAT32_MAX = 3.4028234663852886e38

_INTEGER = re.compile(r"[+-]?[0-9]+")
_FINITE = re.compile(r"[+-]?(?:[0-9]+(?:\.[0-9]*)?|\.[0-9]+)(?:[eE][+-]?[0-9]+)?")
_SPECIAL = re.compile(r"[+-]?(?:nan|inf|infinity)", re.IGNORECASE)
_BYTEA_HEX = re.compile(r"\\x(?:[0-9a-fA-F]{2})*")
_DATE = re.compile(r"[0-9]{4}-[0-9]{2}-[0-9]{2}")
_UUID = re.compile(r"[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}")

_TRUE = frozenset({"t", "true", "1"})
_FALSE = frozenset({"f", "false", "0"})


class Converter(Generic[T]):
    """Text conversion capability for one target type.

    Subclasses override ``parse`` and, where ``str()`` is not the canonical
    form, ``format``. ``parse`` receives non-NULL text only.
    """

    nullable = False

    def __init__(self, target: Any) -> None:
        self.target = target

    def parse(self, text: str) -> T:
        raise NotImplementedError

    def format(self, value: T) -> str:
        return str(value)

    def null_value(self) -> T:
        raise UnexpectedNullError(self.target)

    def from_text(self, text: str | None, column: str | None = None) -> T:
        """Convert one cell, where ``None`` is the NULL marker."""
        if text is None:
            if not self.nullable:
                raise UnexpectedNullError(self.target, column)
            return self.null_value()
        return self.parse(text)

    def __repr__(self) -> str:
        name = getattr(self.target, "__name__", repr(self.target))
        return f"{type(self).__name__}({name})"


class NullableConverter(Converter[Any]):
    """Wraps a converter so NULL maps to ``None`` instead of failing."""

    nullable = True

    def __init__(self, inner: Converter[Any]) -> None:
        super().__init__(inner.target)
        self.inner = inner

    def parse(self, text: str) -> Any:
        return self.inner.parse(text)

    def format(self, value: Any) -> str:
        return self.inner.format(value)

    def null_value(self) -> None:
        return None


class IntegerConverter(Converter[int]):
    """Integers, optionally bounded to a fixed width."""

    def __init__(self, target: Any, bits: int | None = None, signed: bool = True) -> None:
        super().__init__(target)
        if bits is None:
            self.minimum = self.maximum = None
        elif signed:
            self.minimum, self.maximum = -(2 ** (bits - 1)), 2 ** (bits - 1) - 1
        else:
            self.minimum, self.maximum = 0, 2**bits - 1

    def _check_range(self, value: int, text: str) -> None:
        if self.minimum is not None and not self.minimum <= value <= self.maximum:
            raise ConversionError(
                self.target, text, f"out of range [{self.minimum}, {self.maximum}]"
            )

    def parse(self, text: str) -> int:
        if not _INTEGER.fullmatch(text):
            raise ConversionError(self.target, text, "not an integer")
        try:
            value = int(text)
        except ValueError as e:
            # int() refuses texts beyond sys.get_int_max_str_digits()
            raise ConversionError(self.target, text, str(e)) from e
        self._check_range(value, text)
        return value

    def format(self, value: int) -> str:
        text = str(int(value))
        self._check_range(int(value), text)
        return text


class FloatConverter(Converter[float]):
    """Floating point, accepting the server's NaN and Infinity spellings."""

    def __init__(self, target: Any, maximum: float | None = None) -> None:
        super().__init__(target)
        self.maximum = maximum

    def parse(self, text: str) -> float:
        if _SPECIAL.fullmatch(text):
            return float(text)
        if not _FINITE.fullmatch(text):
            raise ConversionError(self.target, text, "not a number")
        value = float(text)
        if math.isinf(value) or (self.maximum is not None and abs(value) > self.maximum):
            raise ConversionError(self.target, text, "out of range")
        return value

    def format(self, value: float) -> str:
        value = float(value)
        if math.isnan(value):
            return "NaN"
        if math.isinf(value):
            return "Infinity" if value > 0 else "-Infinity"
        if self.maximum is not None and abs(value) > self.maximum:
            raise ConversionError(self.target, repr(value), "out of range")
        return repr(value)


class DecimalConverter(Converter[decimal.Decimal]):
    def parse(self, text: str) -> decimal.Decimal:
        if not (_FINITE.fullmatch(text) or _SPECIAL.fullmatch(text)):
            raise ConversionError(self.target, text, "not a number")
        return decimal.Decimal(text)

    def format(self, value: decimal.Decimal) -> str:
        if value.is_nan():
            return "NaN"
        if value.is_infinite():
            return "-Infinity" if value.is_signed() else "Infinity"
        return str(value)


class BoolConverter(Converter[bool]):
    def parse(self, text: str) -> bool:
        lowered = text.lower()
        if lowered in _TRUE:
            return True
        if lowered in _FALSE:
            return False
        raise ConversionError(self.target, text, "not a boolean")

    def format(self, value: bool) -> str:
        return "true" if value else "false"


class StrConverter(Converter[str]):
    def parse(self, text: str) -> str:
        return text


class BytesConverter(Converter[bytes]):
    """``bytea`` in hex output format."""

    def parse(self, text: str) -> bytes:
        if not _BYTEA_HEX.fullmatch(text):
            raise ConversionError(self.target, text, "not hex-encoded bytea")
        return bytes.fromhex(text[2:])

    def format(self, value: bytes) -> str:
        return "\\x" + bytes(value).hex()


class DateConverter(Converter[datetime.date]):
    def parse(self, text: str) -> datetime.date:
        if not _DATE.fullmatch(text):
            raise ConversionError(self.target, text, "not an ISO date")
        try:
            return datetime.date.fromisoformat(text)
        except ValueError as e:
            raise ConversionError(self.target, text, str(e)) from e

    def format(self, value: datetime.date) -> str:
        return value.isoformat()


class DateTimeConverter(Converter[datetime.datetime]):
    def parse(self, text: str) -> datetime.datetime:
        try:
            return isoparse(text)
        except (ValueError, OverflowError) as e:
            raise ConversionError(self.target, text, str(e)) from e

    def format(self, value: datetime.datetime) -> str:
        return value.isoformat(sep=" ")


class UUIDConverter(Converter[uuid.UUID]):
    def parse(self, text: str) -> uuid.UUID:
        if not _UUID.fullmatch(text):
            raise ConversionError(self.target, text, "not a UUID")
        return uuid.UUID(text)


def _optional_inner(target: Any) -> Any | None:
    """Return ``T`` for ``Optional[T]`` / ``T | None``, else None."""
    origin = get_origin(target)
    if origin is not Union and origin is not types.UnionType:
        return None
    args = get_args(target)
    inner = [arg for arg in args if arg is not type(None)]
    if len(inner) != 1 or len(args) != 2:
        return None
    return inner[0]


class ConverterRegistry:
    """Converters keyed by target type.

    ``Optional[T]`` never needs registering: it resolves to a nullable
    wrapper around the converter for ``T``.
    """

    def __init__(self, converters: dict[Any, Converter[Any]] | None = None) -> None:
        self._converters: dict[Any, Converter[Any]] = dict(converters or {})
        self._resolved: dict[Any, Converter[Any]] = {}

    def register(self, target: Any, converter: Converter[Any]) -> None:
        self._converters[target] = converter
        self._resolved.clear()

    def copy(self) -> ConverterRegistry:
        return ConverterRegistry(self._converters)

    def __contains__(self, target: Any) -> bool:
        try:
            self.resolve(target)
        except ConverterNotFoundError:
            return False
        return True

    def resolve(self, target: Any) -> Converter[Any]:
        """Return the converter for *target*.

        Raises:
            ConverterNotFoundError: If neither *target* nor its non-optional
                form is registered.
        """
        converter = self._converters.get(target) or self._resolved.get(target)
        if converter is not None:
            return converter
        inner = _optional_inner(target)
        if inner is None:
            raise ConverterNotFoundError(target)
        wrapped = self.resolve(inner)
        converter = wrapped if wrapped.nullable else NullableConverter(wrapped)
        self._resolved[target] = converter
        return converter

    def from_text(self, target: Any, text: str | None, column: str | None = None) -> Any:
        return self.resolve(target).from_text(text, column)

    def to_text(self, value: Any) -> str | None:
        """Format *value* for transmission; ``None`` stays the NULL marker."""
        if value is None:
            return None
        for cls in type(value).__mro__:
            converter = self._converters.get(cls)
            if converter is not None:
                return converter.format(value)
        raise ConverterNotFoundError(type(value))

    def quote_literal(self, value: Any) -> str:
        """Render *value* as an SQL literal."""
        text = self.to_text(value)
        if text is None:
            return "NULL"
        if "\x00" in text:
            raise ConversionError(type(value), text, "NUL characters cannot be sent to the server")
        return "'" + text.replace("'", "''") + "'"


def _register_defaults(registry: ConverterRegistry) -> None:
    registry.register(int, IntegerConverter(int))
    registry.register(Int16, IntegerConverter(Int16, bits=16))
    registry.register(Int32, IntegerConverter(Int32, bits=32))
    registry.register(Int64, IntegerConverter(Int64, bits=64))
    registry.register(UInt16, IntegerConverter(UInt16, bits=16, signed=False))
    registry.register(UInt32, IntegerConverter(UInt32, bits=32, signed=False))
    registry.register(UInt64, IntegerConverter(UInt64, bits=64, signed=False))
    registry.register(float, FloatConverter(float))
    registry.register(Float32, FloatConverter(Float32, maximum=_FLOAT32_MAX))
    registry.register(decimal.Decimal, DecimalConverter(decimal.Decimal))
    registry.register(bool, BoolConverter(bool))
    registry.register(str, StrConverter(str))
    registry.register(bytes, BytesConverter(bytes))
    registry.register(bytearray, BytesConverter(bytes))
    registry.register(memoryview, BytesConverter(bytes))
    registry.register(datetime.date, DateConverter(datetime.date))
    registry.register(datetime.datetime, DateTimeConverter(datetime.datetime))
    registry.register(uuid.UUID, UUIDConverter(uuid.UUID))


default_registry = ConverterRegistry()
_register_defaults(default_registry)


def register_converter(target: Any, converter: Converter[Any]) -> None:
    """Register *converter* for *target* in the default registry."""
    default_registry.register(target, converter)


def from_text(target: Any, text: str | None) -> Any:
    return default_registry.from_text(target, text)


def to_text(value: Any) -> str | None:
    return default_registry.to_text(value)


def quote_literal(value: Any) -> str:
    return default_registry.quote_literal(value)
