"""RowStream exception hierarchy.

All exceptions are RowStream-specific. Raw driver exceptions are never
exposed to callers: adapters translate them into the classes below.
"""

from __future__ import annotations


class RowStreamError(Exception):
    """Base exception for all RowStream errors."""


# --- Usage ---


class UsageError(RowStreamError):
    """Raised when the API is driven in an invalid order.

    Usage errors signal programmer mistakes, never environmental failures,
    and are not worth retrying.
    """


class ConnectionClosedError(UsageError):
    """Raised when a closed connection is asked to do work."""

    def __init__(self, attempted_action: str) -> None:
        self.attempted_action = attempted_action
        super().__init__(f"Cannot {attempted_action}: connection is closed")


class StreamConsumedError(UsageError):
    """Raised on a second traversal of a single-pass stream."""

    def __init__(self, query: str) -> None:
        self.query = query
        super().__init__(f"Stream for query {query!r} can only be iterated once")


class StreamOpenError(UsageError):
    """Raised when a query is dispatched while a stream is still open."""

    def __init__(self, query: str) -> None:
        self.query = query
        super().__init__(
            f"Stream for query {query!r} is still open; "
            "iterate it to the end or close() it before issuing another query"
        )


class ExpiredRowError(UsageError):
    """Raised when a streamed row is read after the stream moved on."""

    def __init__(self, position: int) -> None:
        self.position = position
        super().__init__(
            f"Streamed row {position} has expired; convert or copy its values "
            "before advancing the stream"
        )


class ColumnCountMismatchError(UsageError):
    """Raised when requested types do not match the number of columns."""

    def __init__(self, expected: int, actual: int) -> None:
        self.expected = expected
        self.actual = actual
        super().__init__(f"Requested {expected} column types but the query returns {actual} columns")


class ColumnNotFoundError(UsageError):
    """Raised when a row is indexed by an unknown column name."""

    def __init__(self, column_name: str, available: list[str]) -> None:
        self.column_name = column_name
        self.available = available
        super().__init__(f"Unknown column {column_name!r}; result has {available}")


class ConverterNotFoundError(UsageError):
    """Raised when no converter is registered for a target type."""

    def __init__(self, target: object) -> None:
        self.target = target
        super().__init__(f"No converter registered for {target!r}")


# --- Conversion ---


class ConversionError(RowStreamError):
    """Raised when text is not a valid representation of the target type."""

    def __init__(self, target: object, text: str | None, detail: str | None = None) -> None:
        self.target = target
        self.text = text
        name = getattr(target, "__name__", repr(target))
        message = f"Cannot convert {text!r} to {name}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class UnexpectedNullError(ConversionError):
    """Raised when NULL is converted to a type that does not accept it."""

    def __init__(self, target: object, column: str | None = None) -> None:
        name = getattr(target, "__name__", repr(target))
        where = f" in column {column!r}" if column else ""
        super().__init__(target, None, f"NULL{where} cannot be converted to non-nullable {name}")
        self.column = column


# --- Query (server-reported) ---


class QueryError(RowStreamError):
    """Base for errors reported by the database server."""

    def __init__(self, message: str, sqlstate: str | None = None, query: str | None = None) -> None:
        self.message = message
        self.sqlstate = sqlstate
        self.query = query
        text = message
        if sqlstate:
            text = f"[{sqlstate}] {text}"
        if query:
            text = f"{text}\nQuery: {query}"
        super().__init__(text)


class DataError(QueryError):
    """SQLSTATE class 22."""


class IntegrityConstraintViolation(QueryError):
    """SQLSTATE class 23."""


class NotNullViolation(IntegrityConstraintViolation):
    """SQLSTATE 23502."""


class ForeignKeyViolation(IntegrityConstraintViolation):
    """SQLSTATE 23503."""


class UniqueViolation(IntegrityConstraintViolation):
    """SQLSTATE 23505."""


class CheckViolation(IntegrityConstraintViolation):
    """SQLSTATE 23514."""


class TransactionRollbackError(QueryError):
    """SQLSTATE class 40: the server rolled the transaction back."""


class SerializationFailure(TransactionRollbackError):
    """SQLSTATE 40001."""


class DeadlockDetected(TransactionRollbackError):
    """SQLSTATE 40P01."""


class SyntaxErrorOrAccessRuleViolation(QueryError):
    """SQLSTATE class 42."""


class SqlSyntaxError(SyntaxErrorOrAccessRuleViolation):
    """SQLSTATE 42601."""


class InsufficientPrivilege(SyntaxErrorOrAccessRuleViolation):
    """SQLSTATE 42501."""


class UndefinedColumn(SyntaxErrorOrAccessRuleViolation):
    """SQLSTATE 42703."""


class UndefinedTable(SyntaxErrorOrAccessRuleViolation):
    """SQLSTATE 42P01."""


_SQLSTATE_ERRORS: dict[str, type[QueryError]] = {
    "23502": NotNullViolation,
    "23503": ForeignKeyViolation,
    "23505": UniqueViolation,
    "23514": CheckViolation,
    "40001": SerializationFailure,
    "40P01": DeadlockDetected,
    "42501": InsufficientPrivilege,
    "42601": SqlSyntaxError,
    "42703": UndefinedColumn,
    "42P01": UndefinedTable,
}

_SQLSTATE_CLASSES: dict[str, type[QueryError]] = {
    "22": DataError,
    "23": IntegrityConstraintViolation,
    "40": TransactionRollbackError,
    "42": SyntaxErrorOrAccessRuleViolation,
}


def query_error(message: str, sqlstate: str | None = None, query: str | None = None) -> QueryError:
    """Build the most specific QueryError subclass for *sqlstate*."""
    cls: type[QueryError] = QueryError
    if sqlstate:
        cls = _SQLSTATE_ERRORS.get(sqlstate) or _SQLSTATE_CLASSES.get(sqlstate[:2], QueryError)
    return cls(message, sqlstate, query)


# --- Execution ---


class ExecutionError(RowStreamError):
    """Base for client-side query execution errors."""


class ParameterBindingError(ExecutionError):
    """Raised on parameter binding failures."""

    def __init__(self, query: str, detail: str) -> None:
        self.query = query
        super().__init__(f"Parameter binding error for {query!r}: {detail}")


class UnexpectedRowsError(ExecutionError):
    """Raised when a result has a different number of rows than required."""

    def __init__(self, query: str | None, expected: str, actual: int) -> None:
        self.query = query
        self.expected = expected
        self.actual = actual
        super().__init__(f"Expected {expected} rows but query {query!r} returned {actual}")


# --- Mapping ---


class MappingError(RowStreamError):
    """Base for mapping errors."""


class ColumnMismatchError(MappingError):
    """Raised when required fields cannot be mapped from row columns."""

    def __init__(self, target_class: str, missing_fields: list[str]) -> None:
        self.target_class = target_class
        self.missing_fields = missing_fields
        super().__init__(f"Cannot map to {target_class}: missing fields {missing_fields}")


# --- Transaction ---


class TransactionError(RowStreamError):
    """Base for transaction errors."""


class TransactionStateError(TransactionError, UsageError):
    """Raised on invalid transaction state transitions."""

    def __init__(self, current_state: str, attempted_action: str, message: str | None = None) -> None:
        self.current_state = current_state
        self.attempted_action = attempted_action
        super().__init__(message or f"Cannot {attempted_action} transaction in state '{current_state}'")


class TransactionAbortedError(TransactionError):
    """Raised when committing a transaction that already failed on the server."""

    def __init__(self, cause: BaseException | None = None) -> None:
        self.cause = cause
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"Transaction was rolled back because an earlier query failed{detail}")


class InDoubtError(TransactionError):
    """Raised when the connection was lost while committing.

    The server may or may not have applied the commit.
    """


# --- Adapter ---


class AdapterError(RowStreamError):
    """Base for adapter errors."""


class ConnectionError(AdapterError):  # noqa: A001
    """Raised on connection failures."""


class BrokenConnectionError(ConnectionError):
    """Raised when an established session is lost."""
