"""Records persisted by the segment repository."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path

__all__ = [
    "Episode",
    "Podcast",
    "RecordedSource",
    "ReusableAsset",
    "ReusableSource",
    "Segment",
    "SegmentKind",
    "SegmentSource",
]


class SegmentKind(Enum):
    RECORDED = "recorded"
    REUSABLE = "reusable"


@dataclass(frozen=True, slots=True)
class RecordedSource:
    """Audio owned by the segment itself."""

    audio_path: Path

    @property
    def kind(self) -> SegmentKind:
        return SegmentKind.RECORDED


@dataclass(frozen=True, slots=True)
class ReusableSource:
    """Reference to a library asset; ``asset_id`` is None once the asset was deleted."""

    asset_id: str | None

    @property
    def kind(self) -> SegmentKind:
        return SegmentKind.REUSABLE


SegmentSource = RecordedSource | ReusableSource


@dataclass(slots=True)
class Segment:
    """One item in an episode's ordered timeline."""

    id: str
    episode_id: str
    position: int
    source: SegmentSource
    duration_sec: float = 0.0
    name: str | None = None
    created_at: str | None = None

    @property
    def kind(self) -> SegmentKind:
        return self.source.kind


@dataclass(slots=True)
class Podcast:
    id: str
    title: str = ""
    feed_url: str | None = None
    final_format: str | None = None
    final_bitrate_kbps: int | None = None
    final_channels: str | None = None


@dataclass(slots=True)
class Episode:
    id: str
    podcast_id: str
    title: str = ""
    status: str = "draft"
    publish_at: str | None = None
    audio_final_path: Path | None = None
    audio_duration_sec: float | None = None
    audio_bytes: int | None = None
    audio_mime: str | None = None
    copyright_snapshot: str | None = None

    def is_publicly_visible(self, now: datetime | None = None) -> bool:
        """Published and with a publish time that is not in the future."""
        if self.status != "published":
            return False
        if not self.publish_at:
            return True
        publish_at = _parse_timestamp(self.publish_at)
        if publish_at is None:
            return False
        reference = now or datetime.now(timezone.utc)
        if reference.tzinfo is None:
            reference = reference.replace(tzinfo=timezone.utc)
        return publish_at <= reference


@dataclass(slots=True)
class ReusableAsset:
    id: str
    name: str
    audio_path: Path
    duration_sec: float = 0.0
    copyright: str | None = None
    license: str | None = None


def _parse_timestamp(value: str) -> datetime | None:
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
