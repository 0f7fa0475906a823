"""SubRip cue parsing, formatting and timing arithmetic for segment transcripts.

Transcripts are stored as SRT text next to the audio they describe. Every audio
edit that changes the timeline (trim, silence removal, cutting a cue out of the
audio) has a matching function here that rewrites the cue timings so the
transcript stays aligned with the new audio.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, replace

__all__ = [
    "SilenceSpan",
    "SubtitleCue",
    "cues_from_segments",
    "format_srt",
    "format_timestamp",
    "parse_srt",
    "parse_timestamp",
    "parse_vtt",
    "remap_after_silence_removal",
    "remap_after_trim",
    "remove_cue_and_shift",
    "renumber",
    "sanitize_transcript_text",
    "single_cue",
]

_BLOCK_SPLIT_RE = re.compile(r"\n\s*\n")
_TAG_RE = re.compile(r"<[^>]*>")
_CONTROL_CHARS_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")
_TIME_ARROW = "-->"


@dataclass(frozen=True, slots=True)
class SubtitleCue:
    """One time-coded transcript line."""

    index: int
    start_sec: float
    end_sec: float
    text: str

    @property
    def duration_sec(self) -> float:
        return max(0.0, self.end_sec - self.start_sec)


@dataclass(frozen=True, slots=True)
class SilenceSpan:
    """A detected region of near-silence removed from the timeline."""

    start_sec: float
    end_sec: float

    @property
    def duration_sec(self) -> float:
        return max(0.0, self.end_sec - self.start_sec)

    def overlap_before(self, point_sec: float) -> float:
        """Seconds of this span that lie inside ``[0, point_sec]``."""
        return max(0.0, min(self.end_sec, point_sec) - max(self.start_sec, 0.0))


# ---------------------------------------------------------------------- #
# Time codec
# ---------------------------------------------------------------------- #
def format_timestamp(value: float) -> str:
    """Format seconds into ``HH:MM:SS,mmm``."""
    total_milliseconds = round(max(value, 0.0) * 1000)
    total_seconds, milliseconds = divmod(total_milliseconds, 1000)
    minutes, seconds = divmod(total_seconds, 60)
    hours, minutes = divmod(minutes, 60)
    return f"{hours:02d}:{minutes:02d}:{seconds:02d},{milliseconds:03d}"


def parse_timestamp(value: str) -> float:
    """Parse ``HH:MM:SS,mmm`` (or ``.`` as separator, or ``MM:SS.mmm``) into seconds.

    Raises :class:`ValueError` for anything else.
    """
    normalized = value.strip().replace(",", ".")
    parts = normalized.split(":")
    if len(parts) == 3:
        hours, minutes, seconds = parts
    elif len(parts) == 2:
        hours = "0"
        minutes, seconds = parts
    else:
        raise ValueError(f"Invalid timestamp: {value!r}")
    total = int(hours) * 3600 + int(minutes) * 60 + float(seconds)
    if total < 0:
        raise ValueError(f"Negative timestamp: {value!r}")
    return total


# ---------------------------------------------------------------------- #
# Parsing / formatting
# ---------------------------------------------------------------------- #
def parse_srt(text: str) -> list[SubtitleCue]:
    """Parse SRT text; malformed blocks are skipped."""
    cues: list[SubtitleCue] = []
    for block in _split_blocks(text):
        lines = block.split("\n")
        if len(lines) < 3:
            continue
        index_line = lines[0].strip()
        time_line = lines[1].strip()
        if not index_line or _TIME_ARROW not in time_line:
            continue
        try:
            index = int(index_line)
        except ValueError:
            continue
        times = _parse_time_line(time_line)
        if times is None:
            continue
        body = "\n".join(lines[2:]).strip()
        if not body:
            continue
        cues.append(SubtitleCue(index=index, start_sec=times[0], end_sec=times[1], text=body))
    return cues


def parse_vtt(text: str) -> list[SubtitleCue]:
    """Parse a WebVTT document into cues numbered from 1.

    Header, NOTE, STYLE and REGION blocks have no timing line and are dropped.
    Optional cue identifiers and cue settings after the end time are ignored.
    """
    cues: list[SubtitleCue] = []
    for block in _split_blocks(text):
        lines = block.split("\n")
        time_idx = next(
            (idx for idx, line in enumerate(lines) if _TIME_ARROW in line),
            None,
        )
        if time_idx is None:
            continue
        times = _parse_time_line(lines[time_idx])
        if times is None:
            continue
        body = "\n".join(lines[time_idx + 1 :]).strip()
        if not body:
            continue
        cues.append(
            SubtitleCue(index=len(cues) + 1, start_sec=times[0], end_sec=times[1], text=body)
        )
    return cues


def format_srt(cues: Iterable[SubtitleCue]) -> str:
    """Render cues as SRT, renumbering them from 1."""
    entries = [
        f"{position}\n{format_timestamp(cue.start_sec)} {_TIME_ARROW} "
        f"{format_timestamp(cue.end_sec)}\n{cue.text}\n"
        for position, cue in enumerate(cues, start=1)
    ]
    return "\n".join(entries)


def renumber(cues: Iterable[SubtitleCue]) -> list[SubtitleCue]:
    return [replace(cue, index=position) for position, cue in enumerate(cues, start=1)]


def cues_from_segments(segments: Iterable[object]) -> list[SubtitleCue]:
    """Convert ASR ``{start, end, text}`` segment mappings into cues."""
    cues: list[SubtitleCue] = []
    for raw in segments:
        if not isinstance(raw, Mapping):
            continue
        text = str(raw.get("text") or "").strip()
        if not text:
            continue
        start = _coerce_seconds(raw.get("start"), 0.0)
        end = _coerce_seconds(raw.get("end"), start + 1.0)
        cues.append(SubtitleCue(index=len(cues) + 1, start_sec=start, end_sec=end, text=text))
    return cues


def single_cue(text: str, duration_sec: float | None) -> list[SubtitleCue]:
    """Wrap plain text into one cue spanning the whole audio (one second if unknown)."""
    body = text.strip()
    if not body:
        return []
    end = duration_sec if duration_sec and duration_sec > 0 else 1.0
    return [SubtitleCue(index=1, start_sec=0.0, end_sec=end, text=body)]


def sanitize_transcript_text(text: str) -> str:
    """Strip markup tags and control characters, keeping newlines and tabs."""
    return _CONTROL_CHARS_RE.sub("", _TAG_RE.sub("", text))


# ---------------------------------------------------------------------- #
# Timing arithmetic
# ---------------------------------------------------------------------- #
def remove_cue_and_shift(
    cues: Sequence[SubtitleCue],
    remove_index: int,
    removed_duration_sec: float,
) -> str:
    """Delete the cue at ``remove_index`` (0-based) and pull later cues back.

    Cues starting at or after the removed cue move earlier by
    ``removed_duration_sec`` (never below 0). An out-of-range index leaves the
    track unchanged.
    """
    if remove_index < 0 or remove_index >= len(cues):
        return format_srt(cues)

    removed_start = cues[remove_index].start_sec
    adjusted: list[SubtitleCue] = []
    for position, cue in enumerate(cues):
        if position == remove_index:
            continue
        if cue.start_sec >= removed_start:
            cue = replace(
                cue,
                start_sec=max(0.0, cue.start_sec - removed_duration_sec),
                end_sec=max(0.0, cue.end_sec - removed_duration_sec),
            )
        adjusted.append(cue)
    return format_srt(adjusted)


def remap_after_trim(
    cues: Iterable[SubtitleCue],
    new_start_sec: float,
    new_end_sec: float,
) -> list[SubtitleCue]:
    """Keep the part of the track inside ``[new_start_sec, new_end_sec]``, rebased to 0."""
    window = new_end_sec - new_start_sec
    kept: list[SubtitleCue] = []
    for cue in cues:
        if cue.end_sec <= new_start_sec or cue.start_sec >= new_end_sec:
            continue
        start = max(0.0, cue.start_sec - new_start_sec)
        end = min(window, cue.end_sec - new_start_sec)
        if end <= start:
            continue
        kept.append(replace(cue, start_sec=start, end_sec=end))
    return renumber(kept)


def remap_after_silence_removal(
    cues: Iterable[SubtitleCue],
    spans: Sequence[SilenceSpan],
) -> list[SubtitleCue]:
    """Collapse removed silence spans out of the cue timeline."""
    kept: list[SubtitleCue] = []
    for cue in cues:
        removed_before_start = sum(span.overlap_before(cue.start_sec) for span in spans)
        removed_before_end = sum(span.overlap_before(cue.end_sec) for span in spans)
        start = max(0.0, cue.start_sec - removed_before_start)
        end = max(start, cue.end_sec - removed_before_end)
        if end <= start:
            continue
        kept.append(replace(cue, start_sec=start, end_sec=end))
    return renumber(kept)


# ---------------------------------------------------------------------- #
# Internal helpers
# ---------------------------------------------------------------------- #
def _split_blocks(text: str) -> list[str]:
    normalized = text.replace("\r\n", "\n").replace("\r", "\n").strip()
    if not normalized:
        return []
    return [block.strip() for block in _BLOCK_SPLIT_RE.split(normalized) if block.strip()]


def _parse_time_line(line: str) -> tuple[float, float] | None:
    left, _, right = line.partition(_TIME_ARROW)
    right_tokens = right.split()
    if not left.strip() or not right_tokens:
        return None
    try:
        return parse_timestamp(left), parse_timestamp(right_tokens[0])
    except ValueError:
        return None


def _coerce_seconds(value: object, default: float) -> float:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return max(0.0, float(value))
    if isinstance(value, str):
        try:
            return max(0.0, float(value))
        except ValueError:
            return default
    return default
