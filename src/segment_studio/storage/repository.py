"""Keyed read/write access to podcasts, episodes, library assets and segments."""

from __future__ import annotations

import sqlite3
from collections.abc import Sequence
from pathlib import Path

from ..exceptions import NotFoundError, ValidationError
from .db import SQLiteDatabase
from .models import (
    Episode,
    Podcast,
    RecordedSource,
    ReusableAsset,
    ReusableSource,
    Segment,
    SegmentKind,
    SegmentSource,
)

__all__ = ["SegmentRepository"]


class SegmentRepository:
    """SQLite-backed persistence used by the segment services.

    Each method is its own transaction; multi-step transforms are not wrapped
    in a single transaction.
    """

    def __init__(self, database: SQLiteDatabase) -> None:
        self.database = database

    # ------------------------------------------------------------------ #
    # Podcasts / episodes
    # ------------------------------------------------------------------ #
    def save_podcast(self, podcast: Podcast) -> Podcast:
        self.database.execute(
            """
            INSERT INTO podcasts (id, title, feed_url, final_format, final_bitrate_kbps, final_channels)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                title = excluded.title,
                feed_url = excluded.feed_url,
                final_format = excluded.final_format,
                final_bitrate_kbps = excluded.final_bitrate_kbps,
                final_channels = excluded.final_channels;
            """,
            (
                podcast.id,
                podcast.title,
                podcast.feed_url,
                podcast.final_format,
                podcast.final_bitrate_kbps,
                podcast.final_channels,
            ),
        )
        return podcast

    def get_podcast(self, podcast_id: str) -> Podcast:
        row = self.database.fetch_one("SELECT * FROM podcasts WHERE id = ?;", (podcast_id,))
        if row is None:
            raise NotFoundError(f"Podcast {podcast_id} not found.")
        return Podcast(
            id=row["id"],
            title=row["title"],
            feed_url=row["feed_url"],
            final_format=row["final_format"],
            final_bitrate_kbps=row["final_bitrate_kbps"],
            final_channels=row["final_channels"],
        )

    def save_episode(self, episode: Episode) -> Episode:
        self.database.execute(
            """
            INSERT INTO episodes (id, podcast_id, title, status, publish_at)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                title = excluded.title,
                status = excluded.status,
                publish_at = excluded.publish_at,
                updated_at = datetime('now');
            """,
            (episode.id, episode.podcast_id, episode.title, episode.status, episode.publish_at),
        )
        return episode

    def get_episode(self, episode_id: str) -> Episode:
        row = self.database.fetch_one("SELECT * FROM episodes WHERE id = ?;", (episode_id,))
        if row is None:
            raise NotFoundError(f"Episode {episode_id} not found.")
        return Episode(
            id=row["id"],
            podcast_id=row["podcast_id"],
            title=row["title"],
            status=row["status"],
            publish_at=row["publish_at"],
            audio_final_path=Path(row["audio_final_path"]) if row["audio_final_path"] else None,
            audio_duration_sec=row["audio_duration_sec"],
            audio_bytes=row["audio_bytes"],
            audio_mime=row["audio_mime"],
            copyright_snapshot=row["copyright_snapshot"],
        )

    def update_episode_audio(
        self,
        episode_id: str,
        *,
        audio_path: Path,
        duration_sec: float,
        size_bytes: int,
        mime_type: str,
        copyright_snapshot: str | None,
    ) -> None:
        updated = self.database.execute(
            """
            UPDATE episodes
            SET audio_final_path = ?, audio_duration_sec = ?, audio_bytes = ?, audio_mime = ?,
                copyright_snapshot = ?, updated_at = datetime('now')
            WHERE id = ?;
            """,
            (str(audio_path), duration_sec, size_bytes, mime_type, copyright_snapshot, episode_id),
        )
        if updated == 0:
            raise NotFoundError(f"Episode {episode_id} not found.")

    # ------------------------------------------------------------------ #
    # Library assets
    # ------------------------------------------------------------------ #
    def save_asset(self, asset: ReusableAsset) -> ReusableAsset:
        self.database.execute(
            """
            INSERT INTO reusable_assets (id, name, audio_path, duration_sec, copyright, license)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                name = excluded.name,
                audio_path = excluded.audio_path,
                duration_sec = excluded.duration_sec,
                copyright = excluded.copyright,
                license = excluded.license;
            """,
            (
                asset.id,
                asset.name,
                str(asset.audio_path),
                asset.duration_sec,
                asset.copyright,
                asset.license,
            ),
        )
        return asset

    def get_asset(self, asset_id: str) -> ReusableAsset:
        row = self.database.fetch_one("SELECT * FROM reusable_assets WHERE id = ?;", (asset_id,))
        if row is None:
            raise NotFoundError(f"Library asset {asset_id} not found.")
        return ReusableAsset(
            id=row["id"],
            name=row["name"],
            audio_path=Path(row["audio_path"]),
            duration_sec=float(row["duration_sec"] or 0.0),
            copyright=row["copyright"],
            license=row["license"],
        )

    # ------------------------------------------------------------------ #
    # Segments
    # ------------------------------------------------------------------ #
    def list_segments(self, episode_id: str) -> list[Segment]:
        rows = self.database.fetch_all(
            "SELECT * FROM episode_segments WHERE episode_id = ? ORDER BY position ASC;",
            (episode_id,),
        )
        return [_segment_from_row(row) for row in rows]

    def get_segment(self, episode_id: str, segment_id: str) -> Segment:
        row = self.database.fetch_one(
            "SELECT * FROM episode_segments WHERE id = ? AND episode_id = ?;",
            (segment_id, episode_id),
        )
        if row is None:
            raise NotFoundError(f"Segment {segment_id} not found.")
        return _segment_from_row(row)

    def insert_segment(
        self,
        *,
        segment_id: str,
        episode_id: str,
        source: SegmentSource,
        duration_sec: float,
        name: str | None = None,
    ) -> Segment:
        """Append a segment after the current last position."""
        audio_path, asset_id = _source_columns(source)
        with self.database.transaction() as connection:
            position = connection.execute(
                "SELECT COALESCE(MAX(position), -1) + 1 AS pos FROM episode_segments WHERE episode_id = ?;",
                (episode_id,),
            ).fetchone()["pos"]
            connection.execute(
                """
                INSERT INTO episode_segments
                    (id, episode_id, position, type, reusable_asset_id, audio_path, duration_sec, name)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?);
                """,
                (
                    segment_id,
                    episode_id,
                    position,
                    source.kind.value,
                    asset_id,
                    audio_path,
                    duration_sec,
                    name,
                ),
            )
        return self.get_segment(episode_id, segment_id)

    def update_segment_source(
        self,
        episode_id: str,
        segment_id: str,
        *,
        source: SegmentSource,
        duration_sec: float,
    ) -> None:
        """Point a segment at new audio (or a new kind) and refresh its duration."""
        audio_path, asset_id = _source_columns(source)
        updated = self.database.execute(
            """
            UPDATE episode_segments
            SET type = ?, audio_path = ?, reusable_asset_id = ?, duration_sec = ?
            WHERE id = ? AND episode_id = ?;
            """,
            (source.kind.value, audio_path, asset_id, duration_sec, segment_id, episode_id),
        )
        if updated == 0:
            raise NotFoundError(f"Segment {segment_id} not found.")

    def rename_segment(self, episode_id: str, segment_id: str, name: str | None) -> None:
        updated = self.database.execute(
            "UPDATE episode_segments SET name = ? WHERE id = ? AND episode_id = ?;",
            (name, segment_id, episode_id),
        )
        if updated == 0:
            raise NotFoundError(f"Segment {segment_id} not found.")

    def reorder_segments(self, episode_id: str, segment_ids: Sequence[str]) -> None:
        """Assign positions 0..n-1 following ``segment_ids``; must list every segment once."""
        with self.database.transaction() as connection:
            existing = {
                row["id"]
                for row in connection.execute(
                    "SELECT id FROM episode_segments WHERE episode_id = ?;", (episode_id,)
                )
            }
            if len(segment_ids) != len(set(segment_ids)) or set(segment_ids) != existing:
                raise ValidationError(
                    "Segment order must list every segment of the episode exactly once."
                )
            connection.executemany(
                "UPDATE episode_segments SET position = ? WHERE id = ? AND episode_id = ?;",
                [(position, seg_id, episode_id) for position, seg_id in enumerate(segment_ids)],
            )

    def delete_segment(self, episode_id: str, segment_id: str) -> None:
        """Delete a segment and close the gap it leaves in the positions."""
        with self.database.transaction() as connection:
            cursor = connection.execute(
                "DELETE FROM episode_segments WHERE id = ? AND episode_id = ?;",
                (segment_id, episode_id),
            )
            if cursor.rowcount == 0:
                raise NotFoundError(f"Segment {segment_id} not found.")
            remaining = [
                row["id"]
                for row in connection.execute(
                    "SELECT id FROM episode_segments WHERE episode_id = ? ORDER BY position ASC;",
                    (episode_id,),
                )
            ]
            connection.executemany(
                "UPDATE episode_segments SET position = ? WHERE id = ?;",
                [(position, seg_id) for position, seg_id in enumerate(remaining)],
            )


def _source_columns(source: SegmentSource) -> tuple[str | None, str | None]:
    if isinstance(source, RecordedSource):
        return str(source.audio_path), None
    return None, source.asset_id


def _segment_from_row(row: sqlite3.Row) -> Segment:
    source: SegmentSource
    if row["type"] == SegmentKind.RECORDED.value:
        if not row["audio_path"]:
            raise ValidationError(f"Recorded segment {row['id']} has no audio path.")
        source = RecordedSource(audio_path=Path(row["audio_path"]))
    else:
        source = ReusableSource(asset_id=row["reusable_asset_id"])
    return Segment(
        id=row["id"],
        episode_id=row["episode_id"],
        position=int(row["position"]),
        source=source,
        duration_sec=float(row["duration_sec"] or 0.0),
        name=row["name"],
        created_at=row["created_at"],
    )
