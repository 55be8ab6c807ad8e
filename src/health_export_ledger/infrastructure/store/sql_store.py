"""
SQL store adapter.

Exposes the durable store as a single `query(sql, params)` capability over a
SQLAlchemy engine. Statements use positional `?` placeholders; values are
always passed as bound parameters.
"""

import logging
from collections.abc import Iterator, Sequence
from contextlib import AbstractContextManager, contextmanager
from pathlib import Path
from typing import Any, Protocol

from pydantic import BaseModel, Field
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError

from health_export_ledger.utils.exceptions import StoreError
from health_export_ledger.utils.parameters import StoreConfig

logger = logging.getLogger(__name__)


class QueryResult(BaseModel):
    """Column names plus positional row values."""

    columns: list[str] = Field(default_factory=list)
    rows: list[list[Any]] = Field(default_factory=list)

    def records(self) -> list[dict[str, Any]]:
        """Rows as column -> value mappings."""
        return [dict(zip(self.columns, row)) for row in self.rows]


class Store(Protocol):
    """The query capability the loader and aggregator depend on."""

    def query(self, sql: str, params: Sequence[Any] = ()) -> QueryResult: ...

    def transaction(self) -> AbstractContextManager["Store"]: ...


def bind_positional(sql: str, params: Sequence[Any]) -> tuple[str, dict[str, Any]]:
    """
    Rewrite `?` placeholders as named binds.

    Args:
        sql: Statement with positional `?` placeholders.
        params: Values in placeholder order.

    Returns:
        Statement with `:p0, :p1, ...` binds and the matching parameter dict.

    Raises:
        StoreError: If placeholder and parameter counts differ.
    """
    parts = sql.split("?")
    if len(parts) - 1 != len(params):
        raise StoreError(
            f"Statement has {len(parts) - 1} placeholders but {len(params)} parameters"
        )

    statement = parts[0]
    bound: dict[str, Any] = {}
    for i, part in enumerate(parts[1:]):
        statement += f":p{i}{part}"
        bound[f"p{i}"] = params[i]

    return statement, bound


class SqlStore:
    """
    Durable store backed by a SQLAlchemy engine.

    Each `query` outside a transaction runs in its own short transaction.
    Inside `transaction()` all queries share one connection and commit or
    roll back together.
    """

    def __init__(self, config: StoreConfig, engine: Engine | None = None) -> None:
        """
        Initialize SQL store.

        Args:
            config: Store configuration.
            engine: Optional pre-built engine.

        Raises:
            StoreError: If the connection string is invalid.
        """
        self.config = config
        try:
            self.engine = engine or create_engine(config.connection_string)
        except (SQLAlchemyError, ValueError) as e:
            raise StoreError(f"Invalid connection string: {e}") from e
        self._connection: Connection | None = None

        url = self.engine.url
        if url.get_backend_name() == "sqlite" and url.database not in (None, "", ":memory:"):
            Path(url.database).parent.mkdir(parents=True, exist_ok=True)

    def _execute(self, conn: Connection, sql: str, params: Sequence[Any]) -> QueryResult:
        statement, bound = bind_positional(sql, params)
        result = conn.execute(text(statement), bound)
        if not result.returns_rows:
            return QueryResult()
        return QueryResult(
            columns=list(result.keys()),
            rows=[list(row) for row in result.fetchall()],
        )

    def query(self, sql: str, params: Sequence[Any] = ()) -> QueryResult:
        """
        Run one statement with bound positional parameters.

        Args:
            sql: Statement text with `?` placeholders.
            params: Parameter values.

        Returns:
            Query result (empty for statements that return no rows).

        Raises:
            StoreError: If the statement fails.
        """
        try:
            if self._connection is not None:
                return self._execute(self._connection, sql, params)
            with self.engine.begin() as conn:
                return self._execute(conn, sql, params)
        except SQLAlchemyError as e:
            raise StoreError(f"Query failed: {e}") from e

    @contextmanager
    def transaction(self) -> Iterator["SqlStore"]:
        """
        Group queries into one atomic transaction.

        Raises:
            StoreError: If the transaction cannot be committed.
        """
        if self._connection is not None:
            yield self
            return

        try:
            with self.engine.begin() as conn:
                self._connection = conn
                try:
                    yield self
                finally:
                    self._connection = None
        except SQLAlchemyError as e:
            raise StoreError(f"Transaction failed: {e}") from e

    def close(self) -> None:
        """Dispose of pooled connections."""
        self.engine.dispose()
