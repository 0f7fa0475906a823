"""SQLite access for the segment store.

Render and transcription jobs write from background threads, so every
connection waits up to ``busy_timeout`` seconds for a competing writer
instead of failing immediately with ``database is locked``.
"""

from __future__ import annotations

import sqlite3
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from pathlib import Path
from typing import Any

__all__ = [
    "DatabaseError",
    "SQLiteDatabase",
]

Parameters = Sequence[Any]


class DatabaseError(RuntimeError):
    """Raised when database operations fail."""


class SQLiteDatabase:
    """One SQLite file; a fresh connection is opened per unit of work."""

    def __init__(self, db_path: str | Path, *, busy_timeout: float = 5.0) -> None:
        self.db_path = Path(db_path)
        self.busy_timeout = busy_timeout
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

    @contextmanager
    def connect(self, *, read_only: bool = False) -> Iterator[sqlite3.Connection]:
        """Yield a connection; writes commit on a clean exit and roll back otherwise.

        SQLite failures surface as :class:`DatabaseError`. Any other exception
        raised inside the block (a domain error, for instance) rolls back and
        propagates unchanged.
        """
        connection = self._open(read_only=read_only, isolation_level="DEFERRED")
        try:
            yield connection
            if not read_only:
                connection.commit()
        except BaseException as exc:
            if not read_only:
                connection.rollback()
            if isinstance(exc, sqlite3.Error):
                raise DatabaseError(str(exc)) from exc
            raise
        finally:
            connection.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Yield a connection holding the write lock from the first statement.

        Use this for read-then-write sequences such as appending at
        ``MAX(position) + 1`` so two writers cannot read the same state.
        """
        connection = self._open(read_only=False, isolation_level=None)
        try:
            connection.execute("BEGIN IMMEDIATE;")
            yield connection
            connection.execute("COMMIT;")
        except BaseException as exc:
            if connection.in_transaction:
                connection.execute("ROLLBACK;")
            if isinstance(exc, sqlite3.Error):
                raise DatabaseError(str(exc)) from exc
            raise
        finally:
            connection.close()

    def execute(self, sql: str, parameters: Parameters = ()) -> int:
        """Run one modifying statement; returns the number of rows it touched."""
        with self.connect() as connection:
            return connection.execute(sql, parameters).rowcount

    def fetch_one(self, sql: str, parameters: Parameters = ()) -> sqlite3.Row | None:
        with self.connect(read_only=True) as connection:
            row: sqlite3.Row | None = connection.execute(sql, parameters).fetchone()
        return row

    def fetch_all(self, sql: str, parameters: Parameters = ()) -> list[sqlite3.Row]:
        with self.connect(read_only=True) as connection:
            rows: list[sqlite3.Row] = connection.execute(sql, parameters).fetchall()
        return rows

    def run_migrations(self, migrations_dir: str | Path | None = None) -> list[str]:
        """Upgrade the schema; returns the migration filenames applied."""
        from .migrations import run_migrations

        return run_migrations(self, migrations_dir=migrations_dir)

    def _open(self, *, read_only: bool, isolation_level: str | None) -> sqlite3.Connection:
        mode = "ro" if read_only else "rwc"
        try:
            connection = sqlite3.connect(
                f"file:{self.db_path}?mode={mode}",
                uri=True,
                timeout=self.busy_timeout,
                isolation_level=isolation_level,
            )
        except sqlite3.Error as exc:
            raise DatabaseError(f"Unable to open database {self.db_path}: {exc}") from exc
        connection.row_factory = sqlite3.Row
        connection.execute("PRAGMA foreign_keys = ON;")
        return connection
