"""Versioned schema upgrades for the segment database.

Each ``NNN_name.sql`` file in this directory is one schema version. Applied
versions are recorded in ``segment_schema_versions`` so a database only ever
runs a version once, in ascending order.
"""

from __future__ import annotations

import re
import sqlite3
from dataclasses import dataclass
from pathlib import Path

from ...utils.logging import get_logger
from ..db import DatabaseError, SQLiteDatabase

LOGGER = get_logger(__name__)

__all__ = ["Migration", "load_migrations", "run_migrations"]

_FILENAME_RE = re.compile(r"^(?P<version>\d{3})_(?P<name>[A-Za-z0-9_]+)\.sql$")


@dataclass(frozen=True, slots=True)
class Migration:
    version: int
    name: str
    path: Path

    @property
    def filename(self) -> str:
        return self.path.name


def load_migrations(directory: str | Path | None = None) -> list[Migration]:
    """Return the migrations in ``directory`` ordered by version.

    Files that do not follow ``NNN_name.sql`` are ignored. Two files claiming
    the same version raise :class:`DatabaseError`.
    """
    base = Path(directory) if directory is not None else Path(__file__).parent
    by_version: dict[int, Migration] = {}
    for path in base.glob("*.sql"):
        match = _FILENAME_RE.match(path.name)
        if match is None or not path.is_file():
            continue
        version = int(match.group("version"))
        if version in by_version:
            raise DatabaseError(
                f"Schema version {version} is defined twice: "
                f"{by_version[version].filename} and {path.name}."
            )
        by_version[version] = Migration(version=version, name=match.group("name"), path=path)
    return [by_version[version] for version in sorted(by_version)]


def run_migrations(
    database: SQLiteDatabase, *, migrations_dir: str | Path | None = None
) -> list[str]:
    """Bring ``database`` to the newest schema; returns the filenames applied."""
    migrations = load_migrations(migrations_dir)
    applied: list[str] = []
    with database.connect() as connection:
        current = _current_version(connection)
        for migration in migrations:
            if migration.version <= current:
                continue
            LOGGER.info("Upgrading segment schema to version %d (%s).", migration.version, migration.name)
            connection.executescript(migration.path.read_text(encoding="utf-8"))
            connection.execute(
                "INSERT INTO segment_schema_versions (version, name) VALUES (?, ?);",
                (migration.version, migration.name),
            )
            applied.append(migration.filename)
    return applied


def _current_version(connection: sqlite3.Connection) -> int:
    connection.execute(
        """
        CREATE TABLE IF NOT EXISTS segment_schema_versions (
            version INTEGER PRIMARY KEY,
            name TEXT NOT NULL,
            applied_at TEXT NOT NULL DEFAULT (datetime('now'))
        );
        """
    )
    row = connection.execute("SELECT MAX(version) AS version FROM segment_schema_versions;").fetchone()
    return int(row["version"] or 0)
