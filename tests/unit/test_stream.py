"""Unit tests for the streaming executor."""

from __future__ import annotations

from typing import Optional

import pytest

from row_stream.core.connection import Connection
from row_stream.core.enums import TransactionStatus
from row_stream.core.exceptions import (
    BrokenConnectionError,
    ColumnCountMismatchError,
    ColumnNotFoundError,
    DataError,
    ExpiredRowError,
    StreamConsumedError,
    StreamOpenError,
    TransactionStateError,
    UndefinedTable,
    UnexpectedNullError,
    query_error,
)

QUERY = "SELECT id, name FROM items ORDER BY id"
ROWS = (("1", "apple"), ("2", "banana"), ("3", None))


@pytest.fixture
def scripted(fake_client):
    fake_client.script(QUERY, columns=("id", "name"), rows=ROWS, command_tag="SELECT 3")
    return fake_client


class TestTypedStream:
    def test_yields_converted_tuples_in_order(self, scripted, fake_connection: Connection) -> None:
        with fake_connection.transaction() as tx:
            stream = tx.stream(QUERY, int, Optional[str])
            assert list(stream) == [(1, "apple"), (2, "banana"), (3, None)]
            assert stream.closed
            assert stream.rows_read == 3
            assert stream.columns == ("id", "name")

    def test_tuples_stay_valid_after_stream_ends(self, scripted, fake_connection: Connection) -> None:
        with fake_connection.transaction() as tx:
            kept = [row for row in tx.stream(QUERY, int, Optional[str])]
            tx.execute("SELECT 1")
        assert kept[0] == (1, "apple")

    def test_null_into_non_nullable_type(self, scripted, fake_connection: Connection) -> None:
        with fake_connection.transaction() as tx:
            with pytest.raises(UnexpectedNullError):
                list(tx.stream(QUERY, int, str))
            # The failed conversion closed the stream; the connection is usable
            tx.execute("SELECT 1")

    def test_column_count_checked_before_first_row(self, scripted, fake_connection: Connection) -> None:
        with fake_connection.transaction() as tx:
            with pytest.raises(ColumnCountMismatchError) as exc_info:
                tx.stream(QUERY, int)
            assert (exc_info.value.expected, exc_info.value.actual) == (1, 2)
            assert not tx.failed
            assert tx.execute("SELECT 1").command_tag == "SELECT"

    def test_empty_result(self, fake_client, fake_connection: Connection) -> None:
        fake_client.script("SELECT id FROM empty", columns=("id",), command_tag="SELECT 0")
        with fake_connection.transaction() as tx:
            stream = tx.stream("SELECT id FROM empty", int)
            assert stream.columns == ("id",)
            assert list(stream) == []

    def test_params_are_bound(self, fake_client, fake_connection: Connection) -> None:
        fake_client.script("SELECT id FROM items WHERE id > $1", columns=("id",), rows=(("2",),))
        with fake_connection.transaction() as tx:
            rows = list(tx.stream("SELECT id FROM items WHERE id > :min", int, params={"min": 1}))
        assert rows == [(2,)]
        assert ["1"] in fake_client.params


class TestSinglePass:
    def test_second_traversal_fails(self, scripted, fake_connection: Connection) -> None:
        with fake_connection.transaction() as tx:
            stream = tx.stream(QUERY, int, Optional[str])
            assert len(list(stream)) == 3
            with pytest.raises(StreamConsumedError):
                iter(stream)

    def test_second_traversal_fails_mid_iteration(self, scripted, fake_connection: Connection) -> None:
        with fake_connection.transaction() as tx:
            stream = tx.stream(QUERY, int, Optional[str])
            iterator = iter(stream)
            next(iterator)
            with pytest.raises(StreamConsumedError):
                iter(stream)
            stream.close()


class TestStreamedRow:
    def test_untyped_stream_yields_views(self, scripted, fake_connection: Connection) -> None:
        with fake_connection.transaction() as tx:
            iterator = iter(tx.stream(QUERY))
            row = next(iterator)
            assert row.position == 0
            assert len(row) == 2
            assert row[0] == "1"
            assert row["name"] == "apple"
            assert row.value("id", int) == 1
            assert row.convert(int, str) == (1, "apple")
            assert not row.is_null("name")
            list(iterator)

    def test_view_expires_when_stream_advances(self, scripted, fake_connection: Connection) -> None:
        with fake_connection.transaction() as tx:
            iterator = iter(tx.stream(QUERY))
            first = next(iterator)
            copied = first.to_tuple()
            second = next(iterator)

            assert first.expired
            with pytest.raises(ExpiredRowError):
                first["id"]
            with pytest.raises(ExpiredRowError):
                first.convert(int, str)
            assert copied == ("1", "apple")
            assert second["name"] == "banana"
            list(iterator)
            assert second.expired

    def test_unknown_column(self, scripted, fake_connection: Connection) -> None:
        with fake_connection.transaction() as tx:
            with tx.stream(QUERY) as stream:
                iterator = iter(stream)
                row = next(iterator)
                with pytest.raises(ColumnNotFoundError):
                    row["price"]

    def test_convert_arity(self, scripted, fake_connection: Connection) -> None:
        with fake_connection.transaction() as tx:
            with tx.stream(QUERY) as stream:
                iterator = iter(stream)
                row = next(iterator)
                with pytest.raises(ColumnCountMismatchError):
                    row.convert(int)


class TestEarlyStop:
    def test_break_drains_remaining_rows(self, scripted, fake_connection: Connection) -> None:
        with fake_connection.transaction() as tx:
            stream = tx.stream(QUERY, int, Optional[str])
            for _ in stream:
                break
            assert stream.closed
            assert stream.rows_read == 1
            tx.execute("SELECT 1")

    def test_context_manager_closes(self, scripted, fake_connection: Connection) -> None:
        with fake_connection.transaction() as tx:
            with tx.stream(QUERY, int, Optional[str]) as stream:
                pass
            assert stream.closed
            tx.execute("SELECT 1")

    def test_other_queries_refused_while_open(self, scripted, fake_client, fake_connection: Connection) -> None:
        with fake_connection.transaction() as tx:
            stream = tx.stream(QUERY, int, Optional[str])
            sent = len(fake_client.sent)
            with pytest.raises(StreamOpenError):
                tx.execute("SELECT 1")
            assert len(fake_client.sent) == sent
            assert not tx.failed
            stream.close()
            tx.execute("SELECT 1")

    def test_abort_closes_open_stream(self, scripted, fake_client, fake_connection: Connection) -> None:
        tx = fake_connection.transaction()
        stream = tx.stream(QUERY, int, Optional[str])
        tx.abort()
        assert stream.closed
        assert fake_client.sent[-1] == "ROLLBACK"


class TestStreamErrors:
    def test_server_error_mid_stream(self, fake_client, fake_connection: Connection) -> None:
        fake_client.script(
            QUERY,
            columns=("id", "name"),
            rows=ROWS,
            error=query_error("division by zero", "22012", QUERY),
            fail_after=1,
        )
        received = []
        tx = fake_connection.transaction()
        with pytest.raises(DataError, match="division by zero"):
            for row in tx.stream(QUERY, int, Optional[str]):
                received.append(row)

        assert received == [(1, "apple")]
        assert tx.failed
        with pytest.raises(TransactionStateError):
            tx.execute("SELECT 1")
        tx.abort()
        assert fake_client.sent[-1] == "ROLLBACK"

    def test_server_error_before_first_row(self, fake_client, fake_connection: Connection) -> None:
        fake_client.script(QUERY, error=query_error("relation does not exist", "42P01", QUERY))
        tx = fake_connection.transaction()
        with pytest.raises(UndefinedTable) as exc_info:
            tx.stream(QUERY, int, str)
        assert exc_info.value.sqlstate == "42P01"
        assert tx.failed
        tx.abort()

    def test_connection_lost_mid_stream(self, fake_client, fake_connection: Connection) -> None:
        fake_client.script(
            QUERY,
            columns=("id", "name"),
            rows=ROWS,
            error=BrokenConnectionError("server closed the connection unexpectedly"),
            fail_after=2,
        )
        received = []
        tx = fake_connection.transaction()
        with pytest.raises(BrokenConnectionError):
            for row in tx.stream(QUERY, int, Optional[str]):
                received.append(row)

        assert received == [(1, "apple"), (2, "banana")]
        assert not fake_connection.is_open
        assert tx.status is TransactionStatus.ABORTED
        assert fake_connection.active_transaction is None
        assert fake_client.open_sessions == 0

    def test_view_expires_on_connection_loss(self, fake_client, fake_connection: Connection) -> None:
        fake_client.script(
            QUERY,
            columns=("id", "name"),
            rows=ROWS,
            error=BrokenConnectionError("gone"),
            fail_after=1,
        )
        tx = fake_connection.transaction()
        iterator = iter(tx.stream(QUERY))
        view = next(iterator)
        with pytest.raises(BrokenConnectionError):
            next(iterator)
        assert view.expired
