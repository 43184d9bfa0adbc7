"""SQLite adapter - stdlib sqlite3 presented as a text protocol.

Values are rendered to the same text forms PostgreSQL sends, so the core
converts them exactly like server text. The session runs in autocommit mode
(``isolation_level=None``) and transactions are driven by explicit
``BEGIN`` / ``COMMIT`` / ``ROLLBACK`` statements from the core.
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from row_stream.adapters.protocol import ColumnDescription, RawReply, RawRow
from row_stream.core.conversion import to_text
from row_stream.core.exceptions import (
    BrokenConnectionError,
    ConnectionError,  # noqa: A004
    QueryError,
    query_error,
)

if TYPE_CHECKING:
    from row_stream.core.connection import ConnectionConfig
    from row_stream.core.conversion import ConverterRegistry
    from row_stream.core.enums import IsolationLevel

logger = logging.getLogger(__name__)

_CONSTRAINT_STATES = {
    "SQLITE_CONSTRAINT_UNIQUE": "23505",
    "SQLITE_CONSTRAINT_PRIMARYKEY": "23505",
    "SQLITE_CONSTRAINT_NOTNULL": "23502",
    "SQLITE_CONSTRAINT_FOREIGNKEY": "23503",
    "SQLITE_CONSTRAINT_CHECK": "23514",
}

# sqlite_errorname is only set on Python 3.11+
_CONSTRAINT_MESSAGES = (
    ("UNIQUE constraint failed", "23505"),
    ("NOT NULL constraint failed", "23502"),
    ("FOREIGN KEY constraint failed", "23503"),
    ("CHECK constraint failed", "23514"),
)


def _sqlstate(error: sqlite3.Error) -> str | None:
    """Best-effort SQLSTATE for a sqlite3 exception."""
    name = getattr(error, "sqlite_errorname", None)
    if name in _CONSTRAINT_STATES:
        return _CONSTRAINT_STATES[name]
    if isinstance(error, sqlite3.IntegrityError):
        message = str(error)
        for prefix, state in _CONSTRAINT_MESSAGES:
            if message.startswith(prefix):
                return state
        return "23000"
    if isinstance(error, sqlite3.DataError):
        return "22000"
    if isinstance(error, sqlite3.OperationalError):
        message = str(error)
        if "syntax error" in message or "incomplete input" in message:
            return "42601"
        if message.startswith("no such table"):
            return "42P01"
        if message.startswith("no such column"):
            return "42703"
    return None


@dataclass(eq=False)
class _SqliteExchange:
    cursor: sqlite3.Cursor
    query: str
    streaming: bool
    columns: tuple[ColumnDescription, ...] | None = None
    command_tag: str | None = None
    rows_seen: int = 0
    done: bool = False


def _cells(row: tuple[Any, ...]) -> RawRow:
    return tuple(to_text(value) for value in row)


def _command_tag(exchange: _SqliteExchange) -> str:
    """Mimic PostgreSQL command tags."""
    if exchange.columns:
        return f"SELECT {exchange.rows_seen}"
    words = exchange.query.split(None, 1)
    verb = words[0].upper() if words else ""
    rowcount = exchange.cursor.rowcount
    if verb == "INSERT":
        return f"INSERT 0 {rowcount}"
    if verb in ("UPDATE", "DELETE"):
        return f"{verb} {rowcount}"
    return verb


class SqliteProtocolClient:
    """Synchronous SQLite protocol client using stdlib sqlite3."""

    @property
    def paramstyle(self) -> str:
        return "named"

    def connect(self, config: ConnectionConfig) -> sqlite3.Connection:
        database = config.database or ":memory:"
        timeout = float(config.connect_timeout) if config.connect_timeout is not None else 5.0
        try:
            session = sqlite3.connect(database, timeout=timeout, isolation_level=None, **config.extra)
            session.execute("PRAGMA journal_mode=WAL")
            session.execute("PRAGMA foreign_keys=ON")
        except sqlite3.Error as e:
            raise ConnectionError(f"Could not open SQLite database {database!r}: {e}") from e
        return session

    def close(self, session: sqlite3.Connection) -> None:
        session.close()

    def begin_command(self, isolation: IsolationLevel | None, read_only: bool) -> str:
        # SQLite transactions are always serializable and cannot be read-only
        if isolation is not None or read_only:
            logger.debug("SQLite ignores isolation=%s read_only=%s", isolation, read_only)
        return "BEGIN"

    def render_param(self, value: Any, registry: ConverterRegistry) -> str | None:
        # SQLite has no boolean type; booleans are stored as 1 and 0
        if isinstance(value, bool):
            return "1" if value else "0"
        return registry.to_text(value)

    def send_query(
        self,
        session: sqlite3.Connection,
        sql: str,
        params: Mapping[str, str | None] | None = None,
        *,
        streaming: bool = False,
    ) -> _SqliteExchange:
        try:
            cursor = session.cursor()
            cursor.execute(sql, params if params is not None else {})
        except sqlite3.Error as e:
            raise self._translate(e, sql) from e

        exchange = _SqliteExchange(cursor, sql, streaming)
        exchange.columns = tuple(ColumnDescription(d[0]) for d in cursor.description or ())
        return exchange

    def await_full_reply(self, exchange: _SqliteExchange) -> RawReply:
        try:
            rows = tuple(_cells(row) for row in exchange.cursor.fetchall())
        except sqlite3.Error as e:
            raise self._translate(e, exchange.query) from e
        finally:
            exchange.done = True

        exchange.rows_seen = len(rows)
        exchange.command_tag = _command_tag(exchange)
        affected = len(rows) if exchange.columns else exchange.cursor.rowcount
        exchange.cursor.close()
        return RawReply(
            columns=exchange.columns or (),
            rows=rows,
            command_tag=exchange.command_tag,
            affected_rows=affected if affected >= 0 else None,
        )

    def await_next_row(self, exchange: _SqliteExchange) -> RawRow | None:
        if exchange.done:
            return None
        try:
            row = exchange.cursor.fetchone()
        except sqlite3.Error as e:
            exchange.done = True
            raise self._translate(e, exchange.query) from e
        if row is not None:
            exchange.rows_seen += 1
            return _cells(row)

        exchange.done = True
        exchange.command_tag = _command_tag(exchange)
        exchange.cursor.close()
        return None

    @staticmethod
    def _translate(error: sqlite3.Error, sql: str) -> QueryError | BrokenConnectionError:
        if isinstance(error, sqlite3.ProgrammingError) and "closed database" in str(error):
            return BrokenConnectionError(f"SQLite session lost: {error}")
        return query_error(str(error), _sqlstate(error), sql)
