"""Schema versions for the segment database, shipped as ``NNN_name.sql`` files."""

from __future__ import annotations

from .migrate import Migration, load_migrations, run_migrations

__all__ = ["Migration", "load_migrations", "run_migrations"]
