"""Streaming executor.

A Stream runs one query in the adapter's incremental mode and hands rows to
the caller as they arrive, holding at most one row ahead of the consumer.
With column types it yields converted tuples; without, it yields
``StreamedRow`` views that expire as soon as the stream advances.

Converted tuples contain ordinary Python values and may be kept. A
``StreamedRow`` may not: copy what you need (``to_tuple()`` or ``convert``)
before asking for the next row.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator, Mapping
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

from row_stream.adapters.protocol import RawRow
from row_stream.core.conversion import ConverterRegistry
from row_stream.core.exceptions import (
    ColumnCountMismatchError,
    ColumnNotFoundError,
    ExpiredRowError,
    RowStreamError,
    StreamConsumedError,
)

if TYPE_CHECKING:
    from row_stream.core.transaction import Transaction

logger = logging.getLogger(__name__)


class StreamedRow:
    """View of the row currently under a stream's cursor."""

    __slots__ = ("_cells", "_column_index", "_position", "_converters")

    def __init__(
        self,
        cells: RawRow,
        column_index: Mapping[str, int],
        position: int,
        converters: ConverterRegistry,
    ) -> None:
        self._cells: RawRow | None = cells
        self._column_index = column_index
        self._position = position
        self._converters = converters

    @property
    def position(self) -> int:
        """Zero-based row number within the stream."""
        return self._position

    @property
    def expired(self) -> bool:
        return self._cells is None

    def _expire(self) -> None:
        self._cells = None

    def _live(self) -> RawRow:
        if self._cells is None:
            raise ExpiredRowError(self._position)
        return self._cells

    def _column(self, key: int | str) -> int:
        if isinstance(key, str):
            try:
                return self._column_index[key]
            except KeyError:
                raise ColumnNotFoundError(key, list(self._column_index)) from None
        return key

    def __len__(self) -> int:
        return len(self._live())

    def __getitem__(self, key: int | str) -> str | None:
        """Raw text of a cell, ``None`` for NULL."""
        return self._live()[self._column(key)]

    def is_null(self, key: int | str) -> bool:
        return self[key] is None

    def value(self, key: int | str, target: Any = str) -> Any:
        column = self._column(key)
        cells = self._live()
        name = key if isinstance(key, str) else None
        return self._converters.resolve(target).from_text(cells[column], name)

    def convert(self, *types: Any) -> tuple[Any, ...]:
        cells = self._live()
        if len(types) != len(cells):
            raise ColumnCountMismatchError(len(types), len(cells))
        return tuple(
            self._converters.resolve(target).from_text(cell) for target, cell in zip(types, cells)
        )

    def to_tuple(self) -> RawRow:
        """Copy of the raw cells that stays valid after the stream moves on."""
        return tuple(self._live())

    def __repr__(self) -> str:
        if self._cells is None:
            return f"<StreamedRow {self._position} expired>"
        return f"<StreamedRow {self._position} {self._cells!r}>"


class Stream:
    """Single-pass iterable over the rows of one query.

    Created by ``Transaction.stream``. Iterating it a second time raises
    ``StreamConsumedError``. Leaving the loop early (``break``, an exception,
    ``close()`` or the ``with`` block ending) drains the rows the server is
    still sending so the connection can take the next query.
    """

    def __init__(
        self,
        transaction: Transaction,
        query: str,
        types: tuple[Any, ...] = (),
        params: Mapping[str, Any] | None = None,
    ) -> None:
        connection = transaction.connection
        self.query = query
        self._transaction = transaction
        self._connection = connection
        self._registry = connection.converters
        self._converters = [self._registry.resolve(t) for t in types]
        self._iterated = False
        self._closed = False
        self._rows_read = 0

        self._exchange = connection._start_stream(self, query, params)
        self._pending = self._fetch()

        description = self._exchange.columns or ()
        self.columns = tuple(column.name for column in description)
        index: dict[str, int] = {}
        for position, name in enumerate(self.columns):
            index.setdefault(name, position)
        self._column_index = MappingProxyType(index)

        if types and len(types) != len(description):
            self.close()
            raise ColumnCountMismatchError(len(types), len(description))
        logger.debug("Opened stream with %d columns for %r", len(self.columns), query)

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def rows_read(self) -> int:
        """Rows handed to the consumer so far."""
        return self._rows_read

    def __enter__(self) -> Stream:
        return self

    def __exit__(self, exc_type: type[BaseException] | None, exc_val: BaseException | None, exc_tb: Any) -> None:
        self.close()

    def __iter__(self) -> Iterator[Any]:
        if self._iterated:
            raise StreamConsumedError(self.query)
        self._iterated = True
        return self._generate()

    def _generate(self) -> Iterator[Any]:
        try:
            row, self._pending = self._pending, None
            while row is not None:
                view = StreamedRow(row, self._column_index, self._rows_read, self._registry)
                self._rows_read += 1
                try:
                    yield self._convert(row) if self._converters else view
                finally:
                    view._expire()
                row = self._fetch()
        finally:
            self.close()

    def _convert(self, cells: RawRow) -> tuple[Any, ...]:
        return tuple(
            converter.from_text(cell, name)
            for converter, cell, name in zip(self._converters, cells, self.columns)
        )

    def _fetch(self) -> RawRow | None:
        if self._closed:
            return None
        try:
            row = self._connection._next_row(self._exchange)
        except RowStreamError as e:
            self._closed = True
            self._connection._end_stream(self)
            self._transaction._record_failure(e)
            raise
        if row is None:
            self._closed = True
            self._connection._end_stream(self)
            logger.debug("Stream finished after %d rows", self._rows_read)
        return row

    def close(self) -> None:
        """Stop the stream, draining unread rows from the connection."""
        if self._closed:
            return
        self._closed = True
        self._pending = None
        drained = 0
        try:
            if self._connection.is_open:
                while self._connection._next_row(self._exchange) is not None:
                    drained += 1
        except RowStreamError as e:
            self._transaction._record_failure(e)
            raise
        finally:
            self._connection._end_stream(self)
        logger.debug("Closed stream after %d rows, discarded %d", self._rows_read, drained)

    def __repr__(self) -> str:
        state = "closed" if self._closed else "open"
        return f"<Stream {state} rows_read={self._rows_read} query={self.query!r}>"
