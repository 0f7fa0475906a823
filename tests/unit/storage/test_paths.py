"""Tests for the storage path layout."""

from __future__ import annotations

from pathlib import Path

import pytest

from segment_studio.exceptions import ValidationError
from segment_studio.storage.paths import build_paths


def test_build_paths_resolves_relative_to_project_root(tmp_path: Path) -> None:
    paths = build_paths(
        {
            "paths": {
                "project_root": str(tmp_path),
                "data_root": "data",
                "database": "db/studio.sqlite",
            }
        }
    )

    root = tmp_path.resolve()
    assert paths.data_root == root / "data"
    assert paths.database == root / "db" / "studio.sqlite"
    assert paths.temp_dir == root / "data" / "tmp"
    assert paths.logs_dir == root / "data" / "logs"


def test_build_paths_requires_data_root(tmp_path: Path) -> None:
    with pytest.raises(ValueError, match="data_root"):
        build_paths({"paths": {"project_root": str(tmp_path)}})
    with pytest.raises(ValueError):
        build_paths({})


def test_episode_locations(tmp_path: Path) -> None:
    paths = build_paths({"paths": {"project_root": str(tmp_path), "data_root": "data"}})
    paths.ensure_directories()

    final = paths.final_output_path("pod", "ep1", "m4a")
    audio = paths.segment_audio_path("pod", "ep1", "seg", ".WAV")

    assert paths.library_dir().is_dir()
    assert final.path.name == "final.m4a"
    assert paths.episode_transcript_path("pod", "ep1").path.name == "transcript.srt"
    assert audio.path.parent.name == "segments"
    assert audio.path.name.endswith("_seg.wav")
    with pytest.raises(ValidationError):
        paths.uploads_dir("../pod", "ep1")
