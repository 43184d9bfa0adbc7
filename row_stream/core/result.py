"""Result / Row / Field data model.

A Result is an immutable snapshot of one completed reply. Rows and Fields
are lightweight views holding only an index and a reference to the data
they came from, so every view keeps its Result alive and no cell text is
ever copied. Conversion to Python values happens lazily, per access.
"""

from __future__ import annotations

from collections.abc import Iterator, Sequence
from types import MappingProxyType
from typing import Any, overload

from row_stream.adapters.protocol import RawReply, RawRow
from row_stream.core.conversion import ConverterRegistry, default_registry
from row_stream.core.exceptions import (
    ColumnCountMismatchError,
    ColumnNotFoundError,
    UnexpectedRowsError,
)

_MISSING: Any = object()


class Result(Sequence["Row"]):
    """Rows returned by ``Transaction.execute``.

    Supports ``len()``, positional indexing (negative indices and slices
    included) and repeatable iteration.
    """

    __slots__ = (
        "_columns",
        "_rows",
        "_column_index",
        "_command_tag",
        "_affected_rows",
        "_query",
        "_converters",
    )

    def __init__(
        self,
        reply: RawReply,
        query: str | None = None,
        converters: ConverterRegistry = default_registry,
    ) -> None:
        self._columns = reply.columns
        self._rows: tuple[RawRow, ...] = tuple(reply.rows)
        index: dict[str, int] = {}
        for position, column in enumerate(reply.columns):
            # Duplicate names resolve to the leftmost column
            index.setdefault(column.name, position)
        self._column_index = MappingProxyType(index)
        self._command_tag = reply.command_tag
        self._affected_rows = reply.affected_rows
        self._query = query
        self._converters = converters

    def __len__(self) -> int:
        return len(self._rows)

    @overload
    def __getitem__(self, index: int) -> Row: ...

    @overload
    def __getitem__(self, index: slice) -> tuple[Row, ...]: ...

    def __getitem__(self, index: int | slice) -> Row | tuple[Row, ...]:
        if isinstance(index, slice):
            return tuple(Row(self, i) for i in range(*index.indices(len(self._rows))))
        if index < 0:
            index += len(self._rows)
        if not 0 <= index < len(self._rows):
            raise IndexError(f"Row index {index} out of range for result of {len(self._rows)} rows")
        return Row(self, index)

    def __iter__(self) -> Iterator[Row]:
        for index in range(len(self._rows)):
            yield Row(self, index)

    def __repr__(self) -> str:
        return f"<Result rows={len(self._rows)} columns={list(self.columns)} tag={self._command_tag!r}>"

    # --- metadata ---

    @property
    def columns(self) -> tuple[str, ...]:
        return tuple(column.name for column in self._columns)

    @property
    def column_count(self) -> int:
        return len(self._columns)

    @property
    def command_tag(self) -> str | None:
        """Server completion tag, e.g. ``'INSERT 0 1'``."""
        return self._command_tag

    @property
    def affected_rows(self) -> int | None:
        return self._affected_rows

    @property
    def query(self) -> str | None:
        return self._query

    @property
    def converters(self) -> ConverterRegistry:
        return self._converters

    def column_name(self, index: int) -> str:
        return self._columns[index].name

    def column_type(self, index: int) -> int | None:
        """Server type OID of a column, where the backend reports one."""
        return self._columns[index].type_oid

    def column_number(self, name: str) -> int:
        try:
            return self._column_index[name]
        except KeyError:
            raise ColumnNotFoundError(name, list(self.columns)) from None

    # --- expectations ---

    def expect_rows(self, count: int) -> Result:
        if len(self._rows) != count:
            raise UnexpectedRowsError(self._query, str(count), len(self._rows))
        return self

    def one_row(self) -> Row:
        return self.expect_rows(1)[0]

    def one_field(self) -> Field:
        row = self.one_row()
        if len(row) != 1:
            raise ColumnCountMismatchError(1, len(row))
        return row[0]

    def scalar(self, target: Any = str) -> Any:
        """Convert the only field of a one-row, one-column result."""
        return self.one_field().convert(target)

    def convert(self, *types: Any) -> list[tuple[Any, ...]]:
        """Convert every row to a tuple of *types*."""
        if len(types) != len(self._columns):
            raise ColumnCountMismatchError(len(types), len(self._columns))
        converters = [self._converters.resolve(t) for t in types]
        names = self.columns
        return [
            tuple(c.from_text(cell, name) for c, cell, name in zip(converters, cells, names))
            for cells in self._rows
        ]


class Row(Sequence["Field"]):
    """One record of a Result, indexable by position or column name."""

    __slots__ = ("_result", "_index")

    def __init__(self, result: Result, index: int) -> None:
        self._result = result
        self._index = index

    @property
    def result(self) -> Result:
        return self._result

    @property
    def index(self) -> int:
        return self._index

    @property
    def _cells(self) -> RawRow:
        return self._result._rows[self._index]

    def __len__(self) -> int:
        return len(self._result._columns)

    @overload
    def __getitem__(self, key: int | str) -> Field: ...

    @overload
    def __getitem__(self, key: slice) -> tuple[Field, ...]: ...

    def __getitem__(self, key: int | str | slice) -> Field | tuple[Field, ...]:
        width = len(self)
        if isinstance(key, str):
            return Field(self, self._result.column_number(key))
        if isinstance(key, slice):
            return tuple(Field(self, i) for i in range(*key.indices(width)))
        if key < 0:
            key += width
        if not 0 <= key < width:
            raise IndexError(f"Column index {key} out of range for row of {width} columns")
        return Field(self, key)

    def __iter__(self) -> Iterator[Field]:
        for column in range(len(self)):
            yield Field(self, column)

    def __repr__(self) -> str:
        return f"<Row {self._index} {self._cells!r}>"

    def convert(self, *types: Any) -> tuple[Any, ...]:
        """Convert all columns at once, failing on the first failing column."""
        if len(types) != len(self):
            raise ColumnCountMismatchError(len(types), len(self))
        registry = self._result._converters
        names = self._result.columns
        return tuple(
            registry.resolve(target).from_text(cell, name)
            for target, cell, name in zip(types, self._cells, names)
        )

    def to_dict(self) -> dict[str, str | None]:
        """Column name to raw text; duplicate names keep the leftmost value."""
        data: dict[str, str | None] = {}
        for name, cell in zip(self._result.columns, self._cells):
            data.setdefault(name, cell)
        return data


class Field:
    """One cell of a Row."""

    __slots__ = ("_row", "_column")

    def __init__(self, row: Row, column: int) -> None:
        self._row = row
        self._column = column

    @property
    def text(self) -> str | None:
        """Verbatim server text, ``None`` for NULL."""
        return self._row._cells[self._column]

    @property
    def is_null(self) -> bool:
        return self.text is None

    @property
    def column(self) -> int:
        return self._column

    @property
    def name(self) -> str:
        return self._row.result.column_name(self._column)

    @property
    def type_oid(self) -> int | None:
        return self._row.result.column_type(self._column)

    @property
    def row(self) -> Row:
        return self._row

    def convert(self, target: Any = str, default: Any = _MISSING) -> Any:
        """Convert to *target*; a NULL yields *default* when one is given."""
        text = self.text
        if text is None and default is not _MISSING:
            return default
        return self._row.result.converters.resolve(target).from_text(text, self.name)

    def __str__(self) -> str:
        text = self.text
        return "" if text is None else text

    def __repr__(self) -> str:
        return f"<Field {self.name}={self.text!r}>"
