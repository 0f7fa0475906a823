"""Tests for SRT parsing, formatting and timing remaps."""

from __future__ import annotations

import pytest

from segment_studio.subtitles.track import (
    SilenceSpan,
    SubtitleCue,
    format_srt,
    format_timestamp,
    parse_srt,
    parse_timestamp,
    parse_vtt,
    remap_after_silence_removal,
    remap_after_trim,
    remove_cue_and_shift,
    sanitize_transcript_text,
    single_cue,
)


def cue(start: float, end: float, text: str, index: int = 1) -> SubtitleCue:
    return SubtitleCue(index=index, start_sec=start, end_sec=end, text=text)


def timings(cues: list[SubtitleCue]) -> list[tuple[float, float, str]]:
    return [(item.start_sec, item.end_sec, item.text) for item in cues]


def test_format_timestamp_rounds_and_clamps() -> None:
    assert format_timestamp(0) == "00:00:00,000"
    assert format_timestamp(3661.5) == "01:01:01,500"
    assert format_timestamp(1.9996) == "00:00:02,000"
    assert format_timestamp(-4.0) == "00:00:00,000"


def test_parse_timestamp_accepts_dot_and_short_forms() -> None:
    assert parse_timestamp("00:01:02,250") == pytest.approx(62.25)
    assert parse_timestamp("00:01:02.250") == pytest.approx(62.25)
    assert parse_timestamp("01:02.500") == pytest.approx(62.5)
    with pytest.raises(ValueError):
        parse_timestamp("garbage")


def test_format_srt_layout() -> None:
    text = format_srt([cue(0, 1.5, "hello", index=7), cue(2, 3, "world", index=9)])

    assert text == (
        "1\n00:00:00,000 --> 00:00:01,500\nhello\n"
        "\n"
        "2\n00:00:02,000 --> 00:00:03,000\nworld\n"
    )


def test_parse_format_round_trip_keeps_timings() -> None:
    original = [cue(0, 1.25, "first"), cue(1.25, 4.0, "second\nline two"), cue(10, 12.5, "third")]

    parsed = parse_srt(format_srt(original))

    assert timings(parsed) == timings(original)
    assert [item.index for item in parsed] == [1, 2, 3]


def test_parse_srt_skips_malformed_blocks() -> None:
    text = (
        "1\n00:00:00,000 --> 00:00:01,000\nok\n\n"
        "not-a-number\n00:00:01,000 --> 00:00:02,000\nbad index\n\n"
        "3\nno arrow here\nbad time\n\n"
        "4\n00:00:03,000 --> 00:00:04,000\n\n"
        "5\r\n00:00:05,000 --> 00:00:06,000\r\nwindows\r\n"
    )

    parsed = parse_srt(text)

    assert timings(parsed) == [(0.0, 1.0, "ok"), (5.0, 6.0, "windows")]


def test_parse_vtt_ignores_header_and_settings() -> None:
    text = (
        "WEBVTT\n\n"
        "NOTE generated\n\n"
        "intro\n00:00.000 --> 00:01.500 align:start\nHello there\n\n"
        "00:00:02.000 --> 00:00:03.000\nGeneral Kenobi\n"
    )

    parsed = parse_vtt(text)

    assert timings(parsed) == [(0.0, 1.5, "Hello there"), (2.0, 3.0, "General Kenobi")]
    assert [item.index for item in parsed] == [1, 2]


def test_remove_cue_and_shift_example() -> None:
    cues = [cue(0, 2, "a", 1), cue(2, 4, "b", 2), cue(4, 6, "c", 3)]

    result = parse_srt(remove_cue_and_shift(cues, 1, 2.0))

    assert timings(result) == [(0.0, 2.0, "a"), (2.0, 4.0, "c")]
    assert [item.index for item in result] == [1, 2]


def test_remove_cue_and_shift_never_goes_negative() -> None:
    cues = [cue(0.5, 1.0, "a", 1), cue(1.0, 1.5, "b", 2)]

    result = parse_srt(remove_cue_and_shift(cues, 0, 10.0))

    assert timings(result) == [(0.0, 0.0, "b")]


def test_remove_cue_and_shift_out_of_range_is_noop() -> None:
    cues = [cue(0, 2, "a", 1), cue(2, 4, "b", 2)]

    assert remove_cue_and_shift(cues, 5, 2.0) == format_srt(cues)
    assert remove_cue_and_shift(cues, -1, 2.0) == format_srt(cues)


def test_remap_after_trim_clips_and_rebases() -> None:
    cues = [
        cue(0, 1, "before", 1),
        cue(1.5, 3, "straddles start", 2),
        cue(3, 4, "inside", 3),
        cue(4.5, 7, "straddles end", 4),
        cue(8, 9, "after", 5),
    ]

    result = remap_after_trim(cues, 2.0, 5.0)

    assert timings(result) == [
        (0.0, 1.0, "straddles start"),
        (1.0, 2.0, "inside"),
        (2.5, 3.0, "straddles end"),
    ]
    assert [item.index for item in result] == [1, 2, 3]


def test_remap_after_silence_removal_example() -> None:
    result = remap_after_silence_removal([cue(1, 5, "x")], [SilenceSpan(2, 3)])

    assert timings(result) == [(1.0, 4.0, "x")]


def test_remap_after_silence_removal_drops_swallowed_cues() -> None:
    cues = [cue(2.2, 2.8, "inside silence", 1), cue(4, 5, "later", 2)]

    result = remap_after_silence_removal(cues, [SilenceSpan(2, 3)])

    assert timings(result) == [(3.0, 4.0, "later")]
    assert result[0].index == 1


def test_single_cue_defaults_to_one_second() -> None:
    assert timings(single_cue(" hi ", None)) == [(0.0, 1.0, "hi")]
    assert timings(single_cue("hi", 12.5)) == [(0.0, 12.5, "hi")]
    assert single_cue("   ", 3.0) == []


def test_sanitize_transcript_text_strips_tags_and_controls() -> None:
    raw = "1\n00:00:00,000 --> 00:00:01,000\n<b>Hi</b>\x07 there\tfriend\n"

    assert sanitize_transcript_text(raw) == "1\n00:00:00,000 --> 00:00:01,000\nHi there\tfriend\n"
