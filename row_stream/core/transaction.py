"""Transaction management.

A Transaction is one unit of work on a Connection. It begins on
construction and ends by an explicit ``commit()`` or ``abort()``. Leaving a
``with`` block, or losing the last reference, while still active aborts it;
nothing is ever committed implicitly.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from row_stream.core.enums import IsolationLevel, TransactionStatus
from row_stream.core.exceptions import (
    BrokenConnectionError,
    InDoubtError,
    QueryError,
    RowStreamError,
    TransactionAbortedError,
    TransactionStateError,
)
from row_stream.core.result import Result, Row
from row_stream.core.stream import Stream

if TYPE_CHECKING:
    from row_stream.core.connection import Connection

logger = logging.getLogger(__name__)


class Transaction:
    """Synchronous transaction on one connection.

    Only one transaction may be active per connection. Queries dispatched
    after ``commit()`` / ``abort()``, or after the server reported an error
    inside the transaction, raise ``TransactionStateError`` without
    contacting the server.

    Examples
        with Transaction(conn) as tx:
            tx.execute("UPDATE accounts SET balance = balance - 10 WHERE id = :id", {"id": 1})
            tx.commit()
    """

    def __init__(
        self,
        connection: Connection,
        *,
        isolation: IsolationLevel | None = None,
        read_only: bool = False,
    ) -> None:
        self._connection = connection
        self._isolation = isolation
        self._read_only = read_only
        self._failure: QueryError | None = None
        # Not active until BEGIN succeeded
        self._state = TransactionStatus.ABORTED

        connection._attach(self)
        try:
            connection._execute(connection._begin_command(isolation, read_only))
        except BaseException:
            connection._detach(self)
            raise
        self._state = TransactionStatus.ACTIVE
        logger.debug("Began transaction %#x", id(self))

    def __enter__(self) -> Transaction:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        if self._state is TransactionStatus.ACTIVE:
            logger.debug("Transaction %#x left its block while active; aborting", id(self))
            self.abort()

    def __del__(self) -> None:
        if getattr(self, "_state", None) is TransactionStatus.ACTIVE:
            logger.warning("Transaction %#x collected while active; aborting", id(self))
            self.abort()

    def __repr__(self) -> str:
        failed = " failed" if self._failure is not None else ""
        return f"<Transaction {self._state.value}{failed}>"

    @property
    def connection(self) -> Connection:
        return self._connection

    @property
    def status(self) -> TransactionStatus:
        return self._state

    @property
    def failed(self) -> bool:
        """True once the server reported an error; only abort() is valid then."""
        return self._failure is not None

    @property
    def isolation(self) -> IsolationLevel | None:
        return self._isolation

    @property
    def read_only(self) -> bool:
        return self._read_only

    # --- queries ---

    def execute(self, query: str, params: Mapping[str, Any] | None = None) -> Result:
        """Run *query* and return its complete, immutable Result."""
        self._check_active("execute")
        try:
            reply = self._connection._execute(query, params)
        except (QueryError, BrokenConnectionError) as e:
            self._record_failure(e)
            raise
        return Result(reply, query, self._connection.converters)

    def stream(self, query: str, *types: Any, params: Mapping[str, Any] | None = None) -> Stream:
        """Run *query* and iterate its rows as they arrive.

        With *types* each row is converted to a tuple of those types and the
        column count is checked before any row is returned. Without, rows are
        yielded as ``StreamedRow`` views valid for one step only.
        """
        self._check_active("stream")
        try:
            return Stream(self, query, types, params)
        except (QueryError, BrokenConnectionError) as e:
            self._record_failure(e)
            raise

    def query_value(self, query: str, target: Any = str, params: Mapping[str, Any] | None = None) -> Any:
        """Run *query*, expect exactly one field, and convert it."""
        return self.execute(query, params).scalar(target)

    def query_one(self, query: str, *types: Any, params: Mapping[str, Any] | None = None) -> Row | tuple[Any, ...]:
        """Run *query* and expect exactly one row, converted when *types* are given."""
        row = self.execute(query, params).one_row()
        return row.convert(*types) if types else row

    def quote(self, value: Any) -> str:
        return self._connection.quote(value)

    # --- state transitions ---

    def commit(self) -> None:
        """Commit the transaction.

        Raises:
            TransactionStateError: If the transaction is not active.
            TransactionAbortedError: If an earlier query failed; the
                transaction is rolled back instead.
            QueryError: If the server refuses the commit; the transaction
                is rolled back and aborted.
            InDoubtError: If the connection is lost while committing.
        """
        if self._state is not TransactionStatus.ACTIVE:
            raise TransactionStateError(self._state.value, "commit")
        if self._failure is not None:
            failure = self._failure
            self.abort()
            raise TransactionAbortedError(failure) from failure

        try:
            reply = self._connection._execute("COMMIT")
        except BrokenConnectionError as e:
            self._finish(TransactionStatus.ABORTED)
            raise InDoubtError(f"Connection lost while committing; the outcome is unknown: {e}") from e
        except QueryError:
            # SQLite keeps the transaction open after a refused COMMIT
            self._rollback()
            self._finish(TransactionStatus.ABORTED)
            raise

        if reply.command_tag == "ROLLBACK":
            self._finish(TransactionStatus.ABORTED)
            raise TransactionAbortedError()
        self._finish(TransactionStatus.COMMITTED)

    def abort(self) -> None:
        """Roll the transaction back.

        Best-effort on the wire: a failing rollback is logged and the
        transaction still ends up aborted. Aborting an aborted transaction
        does nothing.

        Raises:
            TransactionStateError: If the transaction was committed.
        """
        if self._state is TransactionStatus.ABORTED:
            return
        if self._state is TransactionStatus.COMMITTED:
            raise TransactionStateError("committed", "abort")

        connection = self._connection
        stream = connection._stream
        if stream is not None:
            try:
                stream.close()
            except RowStreamError as e:
                logger.warning("Discarding open stream of transaction %#x failed: %s", id(self), e)
        try:
            self._rollback()
        finally:
            self._finish(TransactionStatus.ABORTED)

    # --- internals ---

    def _rollback(self) -> None:
        """Send ROLLBACK if the session is still up; failures are only logged."""
        try:
            if self._connection.is_open:
                self._connection._execute("ROLLBACK")
        except RowStreamError as e:
            logger.warning("Rollback of transaction %#x failed: %s", id(self), e)

    def _check_active(self, action: str) -> None:
        if self._state is not TransactionStatus.ACTIVE:
            raise TransactionStateError(self._state.value, action)
        if self._failure is not None:
            raise TransactionStateError(
                "failed",
                action,
                f"Cannot {action} in a failed transaction; abort it first "
                f"(earlier error: {self._failure.message})",
            )

    def _record_failure(self, error: BaseException) -> None:
        """Note an error raised by a dispatch made through this transaction."""
        if not self._connection.is_open:
            if self._state is TransactionStatus.ACTIVE:
                logger.warning("Transaction %#x aborted: connection lost", id(self))
                self._finish(TransactionStatus.ABORTED)
        elif isinstance(error, QueryError) and self._failure is None:
            self._failure = error

    def _finish(self, state: TransactionStatus) -> None:
        self._state = state
        self._connection._detach(self)
        logger.debug("Transaction %#x %s", id(self), state.value)
