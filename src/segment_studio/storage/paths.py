"""Filesystem layout of the segment store, resolved from the ``paths`` config."""

from __future__ import annotations

import time
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

from .sandbox import SandboxedPath, require_safe_id

__all__ = ["PathsConfig", "build_paths"]

FINAL_TRANSCRIPT_NAME = "transcript.srt"


@dataclass(slots=True)
class PathsConfig:
    """Resolved filesystem paths used throughout the project.

    Layout under ``data_root``::

        uploads/{podcast_id}/{episode_id}/segments/{timestamp}_{segment_id}.{ext}
        library/{asset files}
        processed/{podcast_id}/{episode_id}/final.{mp3|m4a}
        processed/{podcast_id}/{episode_id}/transcript.srt
    """

    project_root: Path
    data_root: Path
    temp_dir: Path
    database: Path
    logs_dir: Path

    def ensure_directories(self) -> None:
        """Create the data, temp, database, log and library directories."""
        for directory in (
            self.data_root,
            self.temp_dir,
            self.database.parent,
            self.logs_dir,
            self.library_dir(),
        ):
            directory.mkdir(parents=True, exist_ok=True)

    # Per-episode locations; ids are checked before they reach the filesystem.
    def uploads_dir(self, podcast_id: str, episode_id: str) -> Path:
        """Base directory for an episode's recorded segment audio."""
        require_safe_id(podcast_id, label="podcast id")
        require_safe_id(episode_id, label="episode id")
        return self.data_root / "uploads" / podcast_id / episode_id

    def processed_dir(self, podcast_id: str, episode_id: str) -> Path:
        """Directory holding the rendered episode and its transcript."""
        require_safe_id(podcast_id, label="podcast id")
        require_safe_id(episode_id, label="episode id")
        return self.data_root / "processed" / podcast_id / episode_id

    def library_dir(self) -> Path:
        """Base directory for reusable library assets."""
        return self.data_root / "library"

    def segment_audio_path(
        self,
        podcast_id: str,
        episode_id: str,
        segment_id: str,
        extension: str,
    ) -> SandboxedPath:
        """New file path for a segment's audio, unique per call."""
        require_safe_id(segment_id, label="segment id")
        ext = extension.lstrip(".").lower() or "wav"
        base = self.uploads_dir(podcast_id, episode_id)
        name = f"{int(time.time() * 1000)}_{segment_id}.{ext}"
        return SandboxedPath.validate(base / "segments" / name, base)

    def final_output_path(self, podcast_id: str, episode_id: str, fmt: str) -> SandboxedPath:
        extension = "m4a" if fmt == "m4a" else "mp3"
        base = self.processed_dir(podcast_id, episode_id)
        return SandboxedPath.validate(base / f"final.{extension}", base)

    def episode_transcript_path(self, podcast_id: str, episode_id: str) -> SandboxedPath:
        base = self.processed_dir(podcast_id, episode_id)
        return SandboxedPath.validate(base / FINAL_TRANSCRIPT_NAME, base)


# Locations used when ``paths`` omits them, relative to ``data_root``.
_DATA_DEFAULTS = {
    "temp_dir": "tmp",
    "database": "segment_studio.db",
    "logs_dir": "logs",
}


def build_paths(config: Mapping[str, object]) -> PathsConfig:
    """Resolve the ``paths`` section into absolute locations.

    ``project_root`` is relative to the working directory and ``data_root`` to
    ``project_root``. The other entries resolve against ``project_root`` when
    given and fall back to fixed names under ``data_root`` otherwise.
    """
    section = config.get("paths")
    if not isinstance(section, Mapping):
        raise ValueError("Configuration is missing the 'paths' section.")

    project_root = _absolute(section.get("project_root") or ".", Path.cwd())
    if section.get("data_root") is None:
        raise ValueError("Configuration 'paths.data_root' is required.")
    data_root = _absolute(section["data_root"], project_root)

    resolved = {
        key: _absolute(section[key], project_root)
        if section.get(key) is not None
        else data_root / fallback
        for key, fallback in _DATA_DEFAULTS.items()
    }
    return PathsConfig(project_root=project_root, data_root=data_root, **resolved)


def _absolute(value: object, base: Path) -> Path:
    path = Path(str(value)).expanduser()
    return (path if path.is_absolute() else base / path).resolve()
