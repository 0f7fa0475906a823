"""Helpers shared by the speech-to-text provider clients."""

from __future__ import annotations

from pathlib import Path

from ...subtitles.track import SubtitleCue, parse_srt, parse_vtt, single_cue

__all__ = ["content_type_for", "cues_from_text", "upload_filename"]

_CONTENT_TYPES = {
    ".wav": "audio/wav",
    ".mp3": "audio/mpeg",
    ".webm": "audio/webm",
    ".ogg": "audio/ogg",
    ".m4a": "audio/mp4",
    ".mp4": "audio/mp4",
}


def content_type_for(path: Path) -> str:
    return _CONTENT_TYPES.get(path.suffix.lower(), "audio/mpeg")


def upload_filename(path: Path) -> str:
    """Neutral multipart filename that keeps only the extension."""
    extension = path.suffix.lstrip(".").lower() or "mp3"
    return f"audio.{extension}"


def cues_from_text(text: str, duration_sec: float | None) -> list[SubtitleCue]:
    """Interpret a text body as SRT, then WebVTT, then plain transcript text."""
    body = text.strip()
    if not body:
        return []
    if body.upper().startswith("WEBVTT"):
        return parse_vtt(body)
    cues = parse_srt(body)
    if cues:
        return cues
    return single_cue(body, duration_sec)
