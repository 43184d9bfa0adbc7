"""Row-to-model mapper.

Supports dataclasses, Pydantic models, and plain classes. Field annotations
pick the converter for each column, so ``id: int`` receives an ``int`` and
``nickname: str | None`` accepts NULL.
"""

from __future__ import annotations

import dataclasses
import inspect
import typing
from collections.abc import Iterable
from typing import Any, Generic, TypeVar

from row_stream.core.conversion import ConverterRegistry
from row_stream.core.exceptions import ColumnMismatchError, ConverterNotFoundError
from row_stream.core.result import Row

T = TypeVar("T")

_UNTYPED = (Any, inspect.Parameter.empty, None)


def _is_pydantic_model(cls: type) -> bool:
    """Check if a class is a Pydantic BaseModel."""
    from pydantic import BaseModel

    return isinstance(cls, type) and issubclass(cls, BaseModel)


def _model_fields(cls: type) -> dict[str, tuple[Any, bool]]:
    """Map constructor field names to ``(annotation, required)``."""
    if _is_pydantic_model(cls):
        return {
            name: (info.annotation, info.is_required())
            for name, info in cls.model_fields.items()  # type: ignore[attr-defined]
        }

    if dataclasses.is_dataclass(cls):
        hints = typing.get_type_hints(cls)
        return {
            f.name: (
                hints.get(f.name, Any),
                f.default is dataclasses.MISSING and f.default_factory is dataclasses.MISSING,
            )
            for f in dataclasses.fields(cls)
            if f.init
        }

    hints = typing.get_type_hints(cls.__init__)
    fields: dict[str, tuple[Any, bool]] = {}
    for name, param in inspect.signature(cls.__init__).parameters.items():
        if name == "self" or param.kind in (param.VAR_POSITIONAL, param.VAR_KEYWORD):
            continue
        fields[name] = (hints.get(name, Any), param.default is inspect.Parameter.empty)
    return fields


class ModelMapper(Generic[T]):
    """Row-to-model mapper.

    Detection order:
    1. Pydantic BaseModel -> model_validate(values)
    2. dataclass -> target_class(**values)
    3. Plain class -> target_class(**values)

    Columns without a matching field are ignored. For Pydantic models a field
    whose annotation has no registered converter receives the raw text and
    Pydantic validates it; for other classes that is a ConverterNotFoundError.

    Args:
        target_class: The class to construct from row data.
        aliases: Optional column-name to field-name mapping.
        converters: Registry used to convert column text.
    """

    def __init__(
        self,
        target_class: type[T],
        aliases: dict[str, str] | None = None,
        converters: ConverterRegistry | None = None,
    ) -> None:
        self._target_class = target_class
        self._aliases = aliases
        self._converters = converters
        self._is_pydantic = _is_pydantic_model(target_class)
        self._fields = _model_fields(target_class)

    def _apply_aliases(self, row: dict[str, str | None]) -> dict[str, str | None]:
        """Apply column aliases to the row."""
        if not self._aliases:
            return row
        result = {}
        for key, value in row.items():
            mapped_key = self._aliases.get(key, key)
            result[mapped_key] = value
        return result

    def _convert(self, registry: ConverterRegistry, name: str, text: str | None) -> Any:
        annotation = self._fields[name][0]
        if annotation in _UNTYPED:
            return text
        try:
            converter = registry.resolve(annotation)
        except ConverterNotFoundError:
            if self._is_pydantic:
                return text
            raise
        return converter.from_text(text, name)

    def map_one(self, row: Row) -> T:
        """Map a single row to target_class instance."""
        registry = self._converters or row.result.converters
        data = self._apply_aliases(row.to_dict())

        missing = [name for name, (_, required) in self._fields.items() if required and name not in data]
        if missing:
            raise ColumnMismatchError(self._target_class.__name__, missing)

        values = {name: self._convert(registry, name, text) for name, text in data.items() if name in self._fields}

        if self._is_pydantic:
            from pydantic import ValidationError

            try:
                return self._target_class.model_validate(values)  # type: ignore[attr-defined, no-any-return]
            except ValidationError as e:
                raise ColumnMismatchError(self._target_class.__name__, [str(e)]) from e

        try:
            return self._target_class(**values)
        except TypeError as e:
            raise ColumnMismatchError(self._target_class.__name__, [str(e)]) from e

    def map_many(self, rows: Iterable[Row]) -> list[T]:
        """Map all rows via map_one."""
        return [self.map_one(row) for row in rows]
