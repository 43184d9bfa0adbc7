"""RowStream - transactional, streaming access to relational databases."""

from __future__ import annotations

import logging

from row_stream.core.connection import Connection, ConnectionConfig, resolve_config
from row_stream.core.conversion import (
    Converter,
    ConverterRegistry,
    Float32,
    Int16,
    Int32,
    Int64,
    UInt16,
    UInt32,
    UInt64,
    default_registry,
    from_text,
    quote_literal,
    register_converter,
    to_text,
)
from row_stream.core.enums import DatabaseBackend, IsolationLevel, TransactionStatus
from row_stream.core.exceptions import (
    AdapterError,
    BrokenConnectionError,
    CheckViolation,
    ColumnCountMismatchError,
    ColumnMismatchError,
    ColumnNotFoundError,
    ConnectionClosedError,
    ConnectionError,  # noqa: A004
    ConversionError,
    ConverterNotFoundError,
    DataError,
    DeadlockDetected,
    ExecutionError,
    ExpiredRowError,
    ForeignKeyViolation,
    InDoubtError,
    InsufficientPrivilege,
    IntegrityConstraintViolation,
    MappingError,
    NotNullViolation,
    ParameterBindingError,
    QueryError,
    RowStreamError,
    SerializationFailure,
    SqlSyntaxError,
    StreamConsumedError,
    StreamOpenError,
    SyntaxErrorOrAccessRuleViolation,
    TransactionAbortedError,
    TransactionError,
    TransactionRollbackError,
    TransactionStateError,
    UndefinedColumn,
    UndefinedTable,
    UnexpectedNullError,
    UnexpectedRowsError,
    UniqueViolation,
    UsageError,
    query_error,
)
from row_stream.core.result import Field, Result, Row
from row_stream.core.stream import Stream, StreamedRow
from row_stream.core.transaction import Transaction
from row_stream.mapping.model import ModelMapper

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    # Connection
    "Connection",
    "ConnectionConfig",
    "resolve_config",
    # Transaction
    "Transaction",
    # Results
    "Result",
    "Row",
    "Field",
    # Streaming
    "Stream",
    "StreamedRow",
    # Conversion
    "Converter",
    "ConverterRegistry",
    "default_registry",
    "register_converter",
    "from_text",
    "to_text",
    "quote_literal",
    "Int16",
    "Int32",
    "Int64",
    "UInt16",
    "UInt32",
    "UInt64",
    "Float32",
    # Mapping
    "ModelMapper",
    # Enums
    "DatabaseBackend",
    "IsolationLevel",
    "TransactionStatus",
    # Exceptions
    "RowStreamError",
    "UsageError",
    "ConnectionClosedError",
    "StreamConsumedError",
    "StreamOpenError",
    "ExpiredRowError",
    "ColumnCountMismatchError",
    "ColumnNotFoundError",
    "ConverterNotFoundError",
    "ConversionError",
    "UnexpectedNullError",
    "QueryError",
    "query_error",
    "DataError",
    "IntegrityConstraintViolation",
    "NotNullViolation",
    "ForeignKeyViolation",
    "UniqueViolation",
    "CheckViolation",
    "TransactionRollbackError",
    "SerializationFailure",
    "DeadlockDetected",
    "SyntaxErrorOrAccessRuleViolation",
    "SqlSyntaxError",
    "InsufficientPrivilege",
    "UndefinedColumn",
    "UndefinedTable",
    "ExecutionError",
    "ParameterBindingError",
    "UnexpectedRowsError",
    "MappingError",
    "ColumnMismatchError",
    "TransactionError",
    "TransactionStateError",
    "TransactionAbortedError",
    "InDoubtError",
    "AdapterError",
    "ConnectionError",
    "BrokenConnectionError",
]
