"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass
from typing import Any

import pytest

from row_stream.adapters.protocol import ColumnDescription, RawReply, RawRow
from row_stream.core.connection import Connection, ConnectionConfig
from row_stream.core.conversion import ConverterRegistry
from row_stream.core.enums import IsolationLevel
from row_stream.core.exceptions import ConnectionError  # noqa: A004
from row_stream.core.result import Result

INT4_OID = 23


@dataclass
class Scripted:
    """Canned reply for one query text.

    With *error* set, a full reply raises it; a stream yields *fail_after*
    rows first and then raises it.
    """

    columns: tuple[ColumnDescription, ...] = ()
    rows: tuple[RawRow, ...] = ()
    command_tag: str | None = None
    error: Exception | None = None
    fail_after: int = 0


@dataclass(eq=False)
class FakeExchange:
    query: str
    params: Any
    streaming: bool
    script: Scripted
    columns: tuple[ColumnDescription, ...] | None = None
    command_tag: str | None = None
    position: int = 0
    done: bool = False


class FakeProtocolClient:
    """In-memory protocol client that replays scripted replies.

    Every query text sent is recorded in ``sent``. Transaction directives
    succeed by default; any other unscripted query returns an empty reply.
    """

    paramstyle = "numeric"

    def __init__(self, *, fail_connect: bool = False) -> None:
        self.fail_connect = fail_connect
        self.sent: list[str] = []
        self.params: list[Any] = []
        self.scripts: dict[str, Scripted] = {}
        self.open_sessions = 0

    def script(
        self,
        query: str,
        columns: tuple[str, ...] = (),
        rows: tuple[RawRow, ...] = (),
        command_tag: str | None = None,
        error: Exception | None = None,
        fail_after: int = 0,
    ) -> None:
        self.scripts[query] = Scripted(
            columns=tuple(ColumnDescription(name) for name in columns),
            rows=rows,
            command_tag=command_tag,
            error=error,
            fail_after=fail_after,
        )

    def count(self, query: str) -> int:
        return sum(1 for sent in self.sent if sent == query)

    # --- ProtocolClient ---

    def connect(self, config: ConnectionConfig) -> object:
        if self.fail_connect:
            raise ConnectionError("connection refused")
        self.open_sessions += 1
        return object()

    def close(self, session: Any) -> None:
        self.open_sessions -= 1

    def begin_command(self, isolation: IsolationLevel | None, read_only: bool) -> str:
        parts = ["BEGIN"]
        if isolation is not None:
            parts.append(f"ISOLATION LEVEL {isolation.value}")
        if read_only:
            parts.append("READ ONLY")
        return " ".join(parts)

    def render_param(self, value: Any, registry: ConverterRegistry) -> str | None:
        return registry.to_text(value)

    def send_query(self, session: Any, sql: str, params: Any = None, *, streaming: bool = False) -> FakeExchange:
        self.sent.append(sql)
        self.params.append(params)
        script = self.scripts.get(sql)
        if script is None:
            script = Scripted(command_tag=sql.split(None, 1)[0].upper() if sql else None)
        return FakeExchange(sql, params, streaming, script)

    def await_full_reply(self, exchange: FakeExchange) -> RawReply:
        exchange.done = True
        script = exchange.script
        if script.error is not None:
            raise script.error
        exchange.columns = script.columns
        exchange.command_tag = script.command_tag
        return RawReply(
            columns=script.columns,
            rows=script.rows,
            command_tag=script.command_tag,
            affected_rows=len(script.rows) if script.columns else None,
        )

    def await_next_row(self, exchange: FakeExchange) -> RawRow | None:
        if exchange.done:
            return None
        script = exchange.script
        if script.error is not None and exchange.position >= script.fail_after:
            exchange.done = True
            raise script.error
        exchange.columns = script.columns
        if exchange.position < len(script.rows):
            row = script.rows[exchange.position]
            exchange.position += 1
            return row
        exchange.done = True
        exchange.command_tag = script.command_tag
        return None


@pytest.fixture
def client_factory() -> type[FakeProtocolClient]:
    return FakeProtocolClient


@pytest.fixture
def fake_client() -> FakeProtocolClient:
    return FakeProtocolClient()


@pytest.fixture
def fake_connection(fake_client: FakeProtocolClient) -> Iterator[Connection]:
    """Connection driven by the scripted fake client."""
    conn = Connection(ConnectionConfig(driver="postgresql", database="fake"), client=fake_client)
    yield conn
    transaction = conn.active_transaction
    if transaction is not None:
        transaction.abort()
    conn.close()


@pytest.fixture
def sqlite_config() -> ConnectionConfig:
    """SQLite in-memory connection config."""
    return ConnectionConfig(driver="sqlite", database=":memory:")


@pytest.fixture
def sqlite_connection(sqlite_config: ConnectionConfig) -> Iterator[Connection]:
    conn = Connection(sqlite_config)
    yield conn
    transaction = conn.active_transaction
    if transaction is not None:
        transaction.abort()
    conn.close()


@pytest.fixture
def make_result():
    """Helper to build a Result from column names and raw rows.

    Usage:
        make_result(("id", "name"), [("1", "Alice"), ("2", None)])
    """

    def _make(
        columns: tuple[str, ...],
        rows: list[RawRow],
        command_tag: str | None = None,
        query: str | None = None,
    ) -> Result:
        reply = RawReply(
            columns=tuple(ColumnDescription(name, INT4_OID) for name in columns),
            rows=tuple(rows),
            command_tag=command_tag if command_tag is not None else f"SELECT {len(rows)}",
            affected_rows=len(rows),
        )
        return Result(reply, query)

    return _make
