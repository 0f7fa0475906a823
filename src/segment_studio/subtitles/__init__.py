"""Subtitle cue handling for segment and episode transcripts."""

from __future__ import annotations

from .track import (
    SilenceSpan,
    SubtitleCue,
    format_srt,
    format_timestamp,
    parse_srt,
    parse_timestamp,
    remap_after_silence_removal,
    remap_after_trim,
    remove_cue_and_shift,
    sanitize_transcript_text,
)

__all__ = [
    "SilenceSpan",
    "SubtitleCue",
    "format_srt",
    "format_timestamp",
    "parse_srt",
    "parse_timestamp",
    "remap_after_silence_removal",
    "remap_after_trim",
    "remove_cue_and_shift",
    "sanitize_transcript_text",
]
