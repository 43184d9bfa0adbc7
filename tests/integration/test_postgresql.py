"""Integration tests against a live PostgreSQL server.

Set ROW_STREAM_TEST_DSN (a libpq URL or key=value string) to run them.
"""

from __future__ import annotations

import datetime
import decimal
import os
import uuid
from collections.abc import Iterator
from typing import Optional

import pytest

from row_stream.core.connection import Connection, resolve_config
from row_stream.core.conversion import Int16
from row_stream.core.enums import IsolationLevel, TransactionStatus
from row_stream.core.exceptions import (
    ConversionError,
    DataError,
    ExpiredRowError,
    QueryError,
    StreamConsumedError,
    UndefinedTable,
    UnexpectedNullError,
)

DSN = os.environ.get("ROW_STREAM_TEST_DSN")

pytestmark = [
    pytest.mark.postgresql,
    pytest.mark.skipif(not DSN, reason="ROW_STREAM_TEST_DSN not set"),
]


@pytest.fixture
def pg() -> Iterator[Connection]:
    conn = Connection(resolve_config(DSN, application_name="row_stream-tests"))
    yield conn
    transaction = conn.active_transaction
    if transaction is not None:
        transaction.abort()
    conn.close()


@pytest.fixture
def table(pg: Connection) -> Iterator[str]:
    name = f"rs_items_{uuid.uuid4().hex[:8]}"
    with pg.transaction() as tx:
        tx.execute(f"CREATE TABLE {name} (id int PRIMARY KEY, name text NOT NULL, price numeric)")
        tx.commit()
    yield name
    if pg.is_open:
        with pg.transaction() as tx:
            tx.execute(f"DROP TABLE IF EXISTS {name}")
            tx.commit()


class TestResults:
    def test_select_one(self, pg: Connection) -> None:
        with pg.transaction() as tx:
            result = tx.execute("SELECT 1")
            assert len(result) == 1
            assert result[0][0].convert(int) == 1
            assert result.column_type(0) == 23

    def test_null_int(self, pg: Connection) -> None:
        with pg.transaction() as tx:
            field = tx.execute("SELECT NULL::int").one_field()
            assert field.is_null
            with pytest.raises(UnexpectedNullError):
                field.convert(int)
            assert field.convert(Optional[int]) is None

    def test_server_text_formats(self, pg: Connection) -> None:
        with pg.transaction() as tx:
            row = tx.execute(
                "SELECT true, 'NaN'::float8, 12.50::numeric, '\\xdead'::bytea, "
                "'2024-02-29'::date, '2024-05-01 12:30:00+02'::timestamptz, "
                "'12345678-1234-5678-1234-567812345678'::uuid"
            ).one_row()
            flag, nan, amount, blob, day, moment, ident = row.convert(
                bool, float, decimal.Decimal, bytes, datetime.date, datetime.datetime, uuid.UUID
            )
            assert flag is True
            assert nan != nan
            assert amount == decimal.Decimal("12.50")
            assert blob == b"\xde\xad"
            assert day == datetime.date(2024, 2, 29)
            assert moment.utcoffset() is not None
            assert ident == uuid.UUID("12345678-1234-5678-1234-567812345678")

    def test_range_check(self, pg: Connection) -> None:
        with pg.transaction() as tx:
            with pytest.raises(ConversionError):
                tx.query_value("SELECT 40000", Int16)

    def test_params_are_bound(self, pg: Connection) -> None:
        with pg.transaction() as tx:
            assert tx.query_value("SELECT :a::int + :b::int", int, params={"a": 2, "b": 3}) == 5
            assert tx.query_value("SELECT :s::text", params={"s": "it's"}) == "it's"


class TestTransactions:
    def test_commit_and_abort_visibility(self, pg: Connection, table: str) -> None:
        tx = pg.transaction()
        tx.execute(f"INSERT INTO {table} VALUES (1, 'apple', 0.5)")
        tx.commit()

        tx = pg.transaction()
        tx.execute(f"INSERT INTO {table} VALUES (2, 'banana', 0.25)")
        tx.abort()

        with pg.transaction(isolation=IsolationLevel.REPEATABLE_READ, read_only=True) as tx:
            assert tx.query_value(f"SELECT count(*) FROM {table}", int) == 1

    def test_read_only_refuses_writes(self, pg: Connection, table: str) -> None:
        tx = pg.transaction(read_only=True)
        with pytest.raises(QueryError) as exc_info:
            tx.execute(f"INSERT INTO {table} VALUES (1, 'apple', 0.5)")
        assert exc_info.value.sqlstate == "25006"
        assert tx.failed
        tx.abort()
        assert tx.status is TransactionStatus.ABORTED

    def test_undefined_table(self, pg: Connection) -> None:
        with pg.transaction() as tx:
            with pytest.raises(UndefinedTable):
                tx.execute("SELECT * FROM row_stream_missing_table")
            assert tx.failed


class TestStreaming:
    def test_typed_stream(self, pg: Connection) -> None:
        with pg.transaction() as tx:
            stream = tx.stream("SELECT g, g::text FROM generate_series(1, 3) AS g", int, str)
            assert list(stream) == [(1, "1"), (2, "2"), (3, "3")]
            with pytest.raises(StreamConsumedError):
                iter(stream)

    def test_untyped_rows_expire(self, pg: Connection) -> None:
        with pg.transaction() as tx:
            iterator = iter(tx.stream("SELECT g FROM generate_series(1, 3) AS g"))
            first = next(iterator)
            next(iterator)
            with pytest.raises(ExpiredRowError):
                first[0]
            iterator.close()

    def test_early_stop_drains(self, pg: Connection) -> None:
        with pg.transaction() as tx:
            for (value,) in tx.stream("SELECT g FROM generate_series(1, 100000) AS g", int):
                if value == 5:
                    break
            assert tx.query_value("SELECT 1", int) == 1

    def test_error_mid_stream(self, pg: Connection) -> None:
        received = []
        tx = pg.transaction()
        with pytest.raises(DataError):
            for (value,) in tx.stream("SELECT 10 / (3 - g) FROM generate_series(1, 5) AS g", int):
                received.append(value)
        assert received == [5, 10]
        assert tx.failed
        tx.abort()
