"""Protocol client contract.

An adapter owns the socket, the authentication handshake and the wire
format of one backend. The core only ever asks it to send query text and
hand back rows as text cells, where ``None`` is the NULL marker.

Adapters MUST translate driver exceptions: server-reported errors become
``QueryError`` (see ``query_error``), a failed connect becomes
``ConnectionError`` and a lost session becomes ``BrokenConnectionError``.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from row_stream.core.connection import ConnectionConfig
    from row_stream.core.conversion import ConverterRegistry
    from row_stream.core.enums import IsolationLevel

RawRow = tuple[str | None, ...]


@dataclass(frozen=True)
class ColumnDescription:
    """Name and server type of one result column."""

    name: str
    type_oid: int | None = None


@dataclass(frozen=True)
class RawReply:
    """A completed, fully buffered reply."""

    columns: tuple[ColumnDescription, ...]
    rows: tuple[RawRow, ...]
    command_tag: str | None = None
    affected_rows: int | None = None


class PendingExchange(Protocol):
    """One in-flight query.

    ``columns`` and ``command_tag`` are known once the first row (or the end
    of data) has been awaited.
    """

    query: str
    columns: tuple[ColumnDescription, ...] | None
    command_tag: str | None


@runtime_checkable
class ProtocolClient(Protocol):
    """Synchronous protocol client."""

    @property
    def paramstyle(self) -> str:
        """Placeholder style: 'numeric' ($1) or 'named' (:name)."""
        ...

    def connect(self, config: ConnectionConfig) -> Any:
        """Establish a session or raise ConnectionError."""
        ...

    def send_query(
        self,
        session: Any,
        sql: str,
        params: Sequence[str | None] | Mapping[str, str | None] | None = None,
        *,
        streaming: bool = False,
    ) -> PendingExchange:
        """Submit *sql*; with *streaming* the server sends rows one by one."""
        ...

    def await_full_reply(self, exchange: PendingExchange) -> RawReply:
        """Block until the exchange completes and return every row."""
        ...

    def await_next_row(self, exchange: PendingExchange) -> RawRow | None:
        """Block for the next streamed row; None at end of data."""
        ...

    def close(self, session: Any) -> None:
        """Release the session."""
        ...

    def begin_command(self, isolation: IsolationLevel | None, read_only: bool) -> str:
        """SQL that opens a transaction with the given characteristics."""
        ...

    def render_param(self, value: Any, registry: ConverterRegistry) -> str | None:
        """Text sent for one bound parameter; None is NULL."""
        ...
