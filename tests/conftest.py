"""Global pytest fixtures for Segment Studio."""

from __future__ import annotations

from pathlib import Path

import pytest

from segment_studio.storage.db import SQLiteDatabase
from segment_studio.storage.models import Episode, Podcast
from segment_studio.storage.paths import PathsConfig
from segment_studio.storage.repository import SegmentRepository


@pytest.fixture()
def paths_config(tmp_path: Path) -> PathsConfig:
    """Filesystem layout rooted in a temporary directory."""
    data_root = tmp_path / "data"
    paths = PathsConfig(
        project_root=tmp_path,
        data_root=data_root,
        temp_dir=data_root / "tmp",
        database=data_root / "segment_studio.db",
        logs_dir=data_root / "logs",
    )
    paths.ensure_directories()
    return paths


@pytest.fixture()
def repository(paths_config: PathsConfig) -> SegmentRepository:
    """Migrated repository holding podcast ``pod`` with draft episode ``ep1``."""
    database = SQLiteDatabase(paths_config.database)
    database.run_migrations()
    repo = SegmentRepository(database)
    repo.save_podcast(Podcast(id="pod", title="Pod", feed_url="https://example.com/feed.xml"))
    repo.save_episode(Episode(id="ep1", podcast_id="pod", title="Episode 1"))
    return repo
