"""Connection configuration and management.

ConnectionConfig is a Pydantic model for type-safe connection config.
Connection owns one live adapter session and is the serialization point for
everything that runs on it: one active transaction, one query in flight.
"""

from __future__ import annotations

import functools
import importlib
import logging
import os
import weakref
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ValidationError

from row_stream.adapters.protocol import PendingExchange, ProtocolClient, RawReply, RawRow
from row_stream.core.conversion import ConverterRegistry, default_registry
from row_stream.core.enums import DatabaseBackend, IsolationLevel
from row_stream.core.exceptions import (
    AdapterError,
    BrokenConnectionError,
    ConnectionClosedError,
    ConnectionError,  # noqa: A004
    QueryError,
    StreamOpenError,
    TransactionStateError,
)
from row_stream.core.params import bind_params

if TYPE_CHECKING:
    from row_stream.core.stream import Stream
    from row_stream.core.transaction import Transaction

logger = logging.getLogger(__name__)

DSN_ENV_VAR = "DATABASE_URL"


class ConnectionConfig(BaseModel):
    """Configuration for database connections."""

    driver: str = "postgresql"
    host: str | None = None
    port: int | None = None
    user: str | None = None
    password: str | None = None
    database: str | None = None
    connect_timeout: int | None = None
    application_name: str | None = None
    extra: dict[str, Any] = {}


# Adapter module mapping: driver name → (module_path, class_name)
_ADAPTER_MAP: dict[str, tuple[str, str]] = {
    "sqlite": ("row_stream.adapters.sqlite", "SqliteProtocolClient"),
    "postgresql": ("row_stream.adapters.postgresql", "PostgresqlProtocolClient"),
}

_DRIVER_ALIASES = {"postgres": "postgresql", "pg": "postgresql", "sqlite3": "sqlite"}

# conninfo keyword → ConnectionConfig field
_CONNINFO_FIELDS = {
    "host": "host",
    "port": "port",
    "user": "user",
    "password": "password",
    "dbname": "database",
    "connect_timeout": "connect_timeout",
    "application_name": "application_name",
}


def _normalize_driver(driver: str) -> str:
    driver_lower = driver.lower()
    return _DRIVER_ALIASES.get(driver_lower, driver_lower)


def _load_adapter(driver: str) -> ProtocolClient:
    """Load a protocol client by driver name."""
    driver_lower = _normalize_driver(driver)
    if driver_lower not in _ADAPTER_MAP:
        raise AdapterError(f"Unsupported database driver: {driver}")

    module_path, cls_name = _ADAPTER_MAP[driver_lower]
    try:
        module = importlib.import_module(module_path)
        return getattr(module, cls_name)()  # type: ignore[no-any-return]
    except (ImportError, AttributeError) as e:
        raise AdapterError(f"Failed to load adapter for '{driver}': {e}") from e


def _sqlite_path(dsn: str) -> str:
    """``sqlite:///rel.db`` → ``rel.db``, ``sqlite:////abs.db`` → ``/abs.db``."""
    path = dsn.split(":", 1)[1]
    if path.startswith("//"):
        path = path[2:]
    if path.startswith("/"):
        path = path[1:]
    return path or ":memory:"


def resolve_config(dsn: str | None = None, **overrides: Any) -> ConnectionConfig:
    """Resolve a connection string plus environment fallbacks.

    Args:
        dsn: ``postgresql://`` URL, libpq ``key=value`` string or
            ``sqlite://`` URL. Defaults to the ``DATABASE_URL`` environment
            variable; when that is unset too, an empty PostgreSQL config
            lets libpq apply its own ``PG*`` environment variables.
        **overrides: ConnectionConfig fields that win over the string.

    Raises:
        ConnectionError: If the string cannot be parsed.
    """
    if dsn is None:
        dsn = os.environ.get(DSN_ENV_VAR)

    data: dict[str, Any] = {}
    if dsn is not None and dsn.lower().startswith(("sqlite:", "sqlite3:")):
        data = {"driver": "sqlite", "database": _sqlite_path(dsn)}
    elif dsn:
        import psycopg
        from psycopg.conninfo import conninfo_to_dict

        try:
            params = conninfo_to_dict(dsn)
        except psycopg.Error as e:
            raise ConnectionError(f"Invalid connection string: {e}") from e
        data = {"driver": "postgresql", "extra": {}}
        for key, value in params.items():
            if key in _CONNINFO_FIELDS:
                data[_CONNINFO_FIELDS[key]] = value
            else:
                data["extra"][key] = value

    data.update(overrides)
    try:
        config = ConnectionConfig(**data)
    except ValidationError as e:
        raise ConnectionError(f"Invalid connection parameters: {e}") from e
    config.driver = _normalize_driver(config.driver)
    return config


class Connection:
    """One live database session.

    Connects on construction; a Connection object never exists in an
    unconnected state. Close it (or leave its ``with`` block) when done. A
    closed connection cannot be reopened.

    Args:
        config: ConnectionConfig, connection string, or None to resolve from
            the environment.
        client: Protocol client to use instead of the driver's default.
        converters: Conversion registry for results and parameters.

    Raises:
        ConnectionError: If the session cannot be established.
    """

    def __init__(
        self,
        config: ConnectionConfig | str | None = None,
        *,
        client: ProtocolClient | None = None,
        converters: ConverterRegistry | None = None,
    ) -> None:
        self._session: Any = None
        if not isinstance(config, ConnectionConfig):
            config = resolve_config(config)
        self.config = config
        self._client = client if client is not None else _load_adapter(config.driver)
        self._converters = converters if converters is not None else default_registry
        self._transaction: weakref.ref[Transaction] | None = None
        self._stream: Stream | None = None
        self._session = self._client.connect(config)
        logger.debug("Connected to %s database %r", config.driver, config.database)

    @property
    def is_open(self) -> bool:
        return self._session is not None

    @property
    def backend(self) -> DatabaseBackend:
        return DatabaseBackend(_normalize_driver(self.config.driver))

    @property
    def converters(self) -> ConverterRegistry:
        return self._converters

    @property
    def client(self) -> ProtocolClient:
        return self._client

    @property
    def active_transaction(self) -> Transaction | None:
        return self._transaction() if self._transaction is not None else None

    def transaction(
        self,
        *,
        isolation: IsolationLevel | None = None,
        read_only: bool = False,
    ) -> Transaction:
        """Begin a new transaction on this connection."""
        from row_stream.core.transaction import Transaction

        return Transaction(self, isolation=isolation, read_only=read_only)

    def quote(self, value: Any) -> str:
        """Render *value* as an SQL literal."""
        return self._converters.quote_literal(value)

    def close(self) -> None:
        """Release the session. Closing twice is a no-op.

        Raises:
            TransactionStateError: If a transaction is still active.
        """
        if self._session is None:
            return
        if self.active_transaction is not None:
            raise TransactionStateError(
                "active",
                "close",
                "Cannot close connection while a transaction is active; commit or abort it first",
            )
        session, self._session = self._session, None
        self._stream = None
        self._client.close(session)
        logger.debug("Closed connection to %s database %r", self.config.driver, self.config.database)

    def __enter__(self) -> Connection:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        if exc_type is not None:
            transaction = self.active_transaction
            if transaction is not None:
                transaction.abort()
        self.close()

    def __del__(self) -> None:
        session = getattr(self, "_session", None)
        if session is not None:
            self._session = None
            logger.debug("Connection collected while open; closing session")
            self._client.close(session)

    def __repr__(self) -> str:
        state = "open" if self.is_open else "closed"
        return f"<Connection {self.config.driver} database={self.config.database!r} {state}>"

    # --- primitives used by Transaction and Stream ---

    def _attach(self, transaction: Transaction) -> None:
        self._check_open("begin a transaction")
        if self.active_transaction is not None:
            raise TransactionStateError(
                "active",
                "begin",
                "Cannot begin a transaction while another one is active on this connection",
            )
        self._transaction = weakref.ref(transaction)

    def _detach(self, transaction: Transaction) -> None:
        if self.active_transaction is transaction:
            self._transaction = None

    def _begin_command(self, isolation: IsolationLevel | None, read_only: bool) -> str:
        return self._client.begin_command(isolation, read_only)

    def _check_open(self, action: str) -> None:
        if self._session is None:
            raise ConnectionClosedError(action)

    def _check_idle(self) -> None:
        if self._stream is not None:
            raise StreamOpenError(self._stream.query)

    def _mark_broken(self) -> None:
        logger.warning("Lost connection to %s database %r", self.config.driver, self.config.database)
        session, self._session = self._session, None
        self._stream = None
        if session is not None:
            self._client.close(session)

    def _send(self, sql: str, params: Mapping[str, Any] | None, streaming: bool) -> PendingExchange:
        self._check_open("execute a query")
        self._check_idle()
        bound_sql, bound = bind_params(
            sql,
            params,
            self._client.paramstyle,
            self._converters,
            render=functools.partial(self._client.render_param, registry=self._converters),
        )
        logger.debug("Sending query%s: %s", " (streaming)" if streaming else "", bound_sql)
        try:
            return self._client.send_query(self._session, bound_sql, bound, streaming=streaming)
        except BrokenConnectionError:
            self._mark_broken()
            raise

    def _execute(self, sql: str, params: Mapping[str, Any] | None = None) -> RawReply:
        """Submit *sql* and block for the complete reply."""
        exchange = self._send(sql, params, streaming=False)
        try:
            return self._client.await_full_reply(exchange)
        except BrokenConnectionError:
            self._mark_broken()
            raise

    def _start_stream(self, stream: Stream, sql: str, params: Mapping[str, Any] | None = None) -> PendingExchange:
        """Submit *sql* in streaming mode; *stream* owns the connection until it ends."""
        exchange = self._send(sql, params, streaming=True)
        self._stream = stream
        return exchange

    def _next_row(self, exchange: PendingExchange) -> RawRow | None:
        self._check_open("fetch a streamed row")
        try:
            row = self._client.await_next_row(exchange)
        except BrokenConnectionError:
            self._mark_broken()
            raise
        except QueryError:
            self._stream = None
            raise
        if row is None:
            self._stream = None
        return row

    def _end_stream(self, stream: Stream) -> None:
        if self._stream is stream:
            self._stream = None
