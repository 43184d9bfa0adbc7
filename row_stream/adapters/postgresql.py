"""PostgreSQL adapter - libpq text protocol through psycopg's ``pq`` module.

Full replies are collected with ``PQgetResult``; streamed queries run in
libpq single-row mode so at most one row is held client-side.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from row_stream.adapters.protocol import ColumnDescription, RawReply, RawRow
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


def _build_conninfo(config: ConnectionConfig) -> str:
    """Build a libpq connection string from config fields."""
    from psycopg.conninfo import make_conninfo

    params: dict[str, Any] = {
        "host": config.host,
        "port": config.port,
        "user": config.user,
        "password": config.password,
        "dbname": config.database,
        "connect_timeout": config.connect_timeout,
        "application_name": config.application_name,
        "client_encoding": "UTF8",
    }
    params.update(config.extra)
    return make_conninfo("", **{k: str(v) for k, v in params.items() if v is not None})


def _decode(value: bytes | None) -> str | None:
    return None if value is None else value.decode("utf-8")


def _log_notice(result: Any) -> None:
    from psycopg import pq

    message = result.error_field(pq.DiagnosticField.MESSAGE_PRIMARY)
    logger.info("Server notice: %s", _decode(message))


@dataclass(eq=False)
class _PgExchange:
    session: Any
    query: str
    streaming: bool
    columns: tuple[ColumnDescription, ...] | None = None
    command_tag: str | None = None
    done: bool = False


def _columns(result: Any) -> tuple[ColumnDescription, ...]:
    return tuple(
        ColumnDescription(_decode(result.fname(i)) or "", result.ftype(i))
        for i in range(result.nfields)
    )


def _cells(result: Any, row: int) -> RawRow:
    return tuple(_decode(result.get_value(row, col)) for col in range(result.nfields))


class PostgresqlProtocolClient:
    """Synchronous PostgreSQL protocol client on a blocking libpq session."""

    @property
    def paramstyle(self) -> str:
        return "numeric"

    def connect(self, config: ConnectionConfig) -> Any:
        import psycopg
        from psycopg import pq

        try:
            conninfo = _build_conninfo(config)
        except psycopg.Error as e:
            raise ConnectionError(f"Invalid PostgreSQL connection parameters: {e}") from e

        session = pq.PGconn.connect(conninfo.encode())
        if session.status != pq.ConnStatus.OK:
            message = session.error_message.decode("utf-8", "replace").strip()
            session.finish()
            raise ConnectionError(f"Could not connect to PostgreSQL: {message}")
        session.notice_handler = _log_notice
        return session

    def close(self, session: Any) -> None:
        session.finish()

    def begin_command(self, isolation: IsolationLevel | None, read_only: bool) -> str:
        parts = ["BEGIN"]
        if isolation is not None:
            parts.append(f"ISOLATION LEVEL {isolation.value}")
        if read_only:
            parts.append("READ ONLY")
        return " ".join(parts)

    def render_param(self, value: Any, registry: ConverterRegistry) -> str | None:
        # Parameters go out untyped; the server casts the text
        return registry.to_text(value)

    def send_query(
        self,
        session: Any,
        sql: str,
        params: Sequence[str | None] | None = None,
        *,
        streaming: bool = False,
    ) -> _PgExchange:
        import psycopg

        command = sql.encode("utf-8")
        try:
            if params is None:
                session.send_query(command)
            else:
                values = [None if p is None else p.encode("utf-8") for p in params]
                session.send_query_params(command, values)
            if streaming:
                session.set_single_row_mode()
        except psycopg.OperationalError as e:
            self._check_alive(session)
            raise query_error(str(e), None, sql) from e
        return _PgExchange(session, sql, streaming)

    def await_full_reply(self, exchange: _PgExchange) -> RawReply:
        error: QueryError | None = None
        last: Any = None
        while (result := exchange.session.get_result()) is not None:
            if self._is_error(result):
                error = error or self._query_error(result, exchange.query)
            else:
                last = result
        exchange.done = True
        self._check_alive(exchange.session)
        if error is not None:
            raise error
        if last is None:
            return RawReply(columns=(), rows=())

        exchange.columns = _columns(last)
        exchange.command_tag = _decode(last.command_status)
        return RawReply(
            columns=exchange.columns,
            rows=tuple(_cells(last, r) for r in range(last.ntuples)),
            command_tag=exchange.command_tag,
            affected_rows=last.command_tuples,
        )

    def await_next_row(self, exchange: _PgExchange) -> RawRow | None:
        from psycopg import pq

        if exchange.done:
            return None
        error: QueryError | None = None
        while (result := exchange.session.get_result()) is not None:
            if self._is_error(result):
                error = error or self._query_error(result, exchange.query)
                continue
            if exchange.columns is None:
                exchange.columns = _columns(result)
            if result.status == pq.ExecStatus.SINGLE_TUPLE and error is None:
                return _cells(result, 0)
            exchange.command_tag = _decode(result.command_status)

        exchange.done = True
        self._check_alive(exchange.session)
        if error is not None:
            raise error
        return None

    @staticmethod
    def _is_error(result: Any) -> bool:
        from psycopg import pq

        return result.status in (
            pq.ExecStatus.FATAL_ERROR,
            pq.ExecStatus.BAD_RESPONSE,
            pq.ExecStatus.NONFATAL_ERROR,
        )

    @staticmethod
    def _query_error(result: Any, query: str) -> QueryError:
        from psycopg import pq

        message = _decode(result.error_field(pq.DiagnosticField.MESSAGE_PRIMARY))
        if not message:
            message = result.error_message.decode("utf-8", "replace").strip()
        sqlstate = _decode(result.error_field(pq.DiagnosticField.SQLSTATE))
        return query_error(message, sqlstate, query)

    @staticmethod
    def _check_alive(session: Any) -> None:
        from psycopg import pq

        if session.status == pq.ConnStatus.BAD:
            message = session.error_message.decode("utf-8", "replace").strip()
            raise BrokenConnectionError(f"Connection to PostgreSQL lost: {message}")
