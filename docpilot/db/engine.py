"""Connection and transaction handling for the documents table.

One psycopg3 connection per engine, opened lazily in autocommit mode.
Single statements run directly; read-modify-write edits go through
``transaction()`` so the row lock and the update commit together.
Every psycopg error surfaces as a DatabaseError subclass.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, Optional, Sequence

import psycopg
from psycopg.rows import dict_row

from docpilot.core.config import DatabaseConfig
from docpilot.core.exceptions import ConnectionError, DatabaseError, SchemaInitError

logger = logging.getLogger("docpilot.db.engine")

SCHEMA_PATH = Path(__file__).parent / "schema.sql"


@contextmanager
def _query_errors(action: str) -> Iterator[None]:
    try:
        yield
    except psycopg.OperationalError as e:
        raise ConnectionError(f"{action} failed, connection lost: {e}") from e
    except psycopg.Error as e:
        raise DatabaseError(f"{action} failed: {e}") from e


class DatabaseEngine:
    def __init__(self, config: DatabaseConfig):
        self.config = config
        self._conn: Optional[psycopg.Connection] = None

    @property
    def conn(self) -> psycopg.Connection:
        if self._conn is None or self._conn.closed:
            self._conn = self._connect()
        return self._conn

    def _connect(self) -> psycopg.Connection:
        try:
            conn = psycopg.connect(self.config.connection_string, row_factory=dict_row, autocommit=True)
        except psycopg.OperationalError as e:
            raise ConnectionError(
                f"Cannot reach PostgreSQL at {self.config.host}:{self.config.port}/{self.config.dbname}: {e}"
            ) from e
        logger.info("Connected to PostgreSQL at %s:%s/%s",
                    self.config.host, self.config.port, self.config.dbname)
        return conn

    def initialize_schema(self) -> None:
        """Create the documents table if needed and check that it exists afterwards."""
        if not SCHEMA_PATH.exists():
            raise SchemaInitError(f"Schema file not found: {SCHEMA_PATH}")
        try:
            self.conn.execute(SCHEMA_PATH.read_text())
            row = self.conn.execute("SELECT to_regclass('documents')::text AS name").fetchone()
        except psycopg.Error as e:
            raise SchemaInitError(f"Failed to initialize schema: {e}") from e
        if not row or row["name"] != "documents":
            raise SchemaInitError("documents table missing after schema initialization")
        logger.info("Documents schema ready")

    def execute(self, query: str, params: Optional[Sequence[Any]] = None) -> int:
        """Run one statement and return the affected row count."""
        with _query_errors("Statement"):
            return self.conn.execute(query, params).rowcount

    def fetch_one(self, query: str, params: Optional[Sequence[Any]] = None) -> Optional[dict[str, Any]]:
        with _query_errors("Query"):
            return self.conn.execute(query, params).fetchone()

    def fetch_all(self, query: str, params: Optional[Sequence[Any]] = None) -> list[dict[str, Any]]:
        with _query_errors("Query"):
            return self.conn.execute(query, params).fetchall()

    @contextmanager
    def transaction(self) -> Iterator[psycopg.Cursor]:
        """Yield a cursor inside one transaction.

        Commits when the block exits normally. Any exception rolls the
        transaction back and propagates; psycopg errors become DatabaseError.
        """
        with _query_errors("Transaction"):
            with self.conn.transaction():
                with self.conn.cursor() as cur:
                    yield cur

    def close(self) -> None:
        if self._conn is not None and not self._conn.closed:
            self._conn.close()
            logger.info("Database connection closed")
        self._conn = None
