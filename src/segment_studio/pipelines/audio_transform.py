"""Audio transforms for episode segments built on FFmpeg.

Every public method validates its input path against an allowed base directory
before anything is executed. Destructive transforms never touch the source
file: they write into a private temporary file and return its path, and the
caller moves the result into place with :meth:`AudioTransformEngine.commit`.
"""

from __future__ import annotations

import os
import re
import shutil
import tempfile
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path

from ..exceptions import ProcessingError, ValidationError
from ..storage.sandbox import ArtifactKind, SandboxedPath
from ..subtitles.track import SilenceSpan
from ..utils.ffmpeg import FFmpeg, FFmpegError, LoudnessSettings
from ..utils.logging import get_logger
from ..utils.waveform import Audiowaveform, WaveformSettings

LOGGER = get_logger(__name__)

__all__ = [
    "AudioSettings",
    "AudioTransformEngine",
    "ProbeResult",
    "RenderSettings",
    "build_audio_engine",
    "discard",
    "mime_type_for_format",
    "parse_silence_spans",
]

_SILENCE_START_RE = re.compile(r"silence_start:\s*(-?[\d.]+)")
_SILENCE_END_RE = re.compile(r"silence_end:\s*(-?[\d.]+)")
_SILENCE_DURATION_RE = re.compile(r"silence_duration:\s*([\d.]+)")

NOISE_FLOOR_MIN_DB = -80.0
NOISE_FLOOR_MAX_DB = -20.0
_MIN_RANGE_SEC = 0.001

_NOISE_CODECS: dict[str, list[str]] = {
    ".wav": ["-c:a", "pcm_s16le", "-ar", "44100"],
    ".webm": ["-c:a", "libopus", "-b:a", "128k"],
    ".ogg": ["-c:a", "libvorbis", "-b:a", "128k"],
    ".mp3": ["-c:a", "libmp3lame", "-b:a", "128k"],
    ".m4a": ["-c:a", "aac", "-b:a", "128k"],
    ".mp4": ["-c:a", "aac", "-b:a", "128k"],
}


@dataclass(slots=True)
class ProbeResult:
    """Facts about an audio file reported by ffprobe."""

    duration_sec: float
    mime_type: str
    size_bytes: int
    format_name: str | None = None


@dataclass(slots=True)
class RenderSettings:
    """Encoding of the final episode file."""

    format: str = "mp3"
    bitrate_kbps: int = 128
    channels: str = "mono"

    @property
    def channel_count(self) -> int:
        return 2 if self.channels == "stereo" else 1

    @property
    def extension(self) -> str:
        return "m4a" if self.format == "m4a" else "mp3"

    @classmethod
    def from_config(cls, config: Mapping[str, object]) -> RenderSettings:
        section = config.get("render")
        if not isinstance(section, Mapping):
            return cls()
        return cls(
            format=str(section.get("format", "mp3")),
            bitrate_kbps=int(section.get("bitrate_kbps", 128)),
            channels=str(section.get("channels", "mono")),
        )

    def with_overrides(
        self,
        *,
        format: str | None = None,
        bitrate_kbps: int | None = None,
        channels: str | None = None,
    ) -> RenderSettings:
        return RenderSettings(
            format=format or self.format,
            bitrate_kbps=bitrate_kbps or self.bitrate_kbps,
            channels=channels or self.channels,
        )


@dataclass(slots=True)
class AudioSettings:
    """Defaults for segment transforms, read from the ``audio`` config section."""

    sample_rate: int = 44_100
    min_silence_sec: float = 2.0
    silence_threshold_db: float = -60.0
    noise_level_db: float = -25.0
    loudness: LoudnessSettings = field(default_factory=LoudnessSettings)
    waveform: WaveformSettings = field(default_factory=WaveformSettings)

    @classmethod
    def from_config(cls, config: Mapping[str, object]) -> AudioSettings:
        section = config.get("audio")
        if not isinstance(section, Mapping):
            return cls()

        silence = _section(section, "silence")
        noise = _section(section, "noise_suppression")
        loudness = _section(section, "loudness")
        waveform = _section(section, "waveform")
        return cls(
            sample_rate=int(section.get("sample_rate", 44_100)),
            min_silence_sec=float(silence.get("min_silence_sec", 2.0)),
            silence_threshold_db=float(silence.get("threshold_db", -60.0)),
            noise_level_db=float(noise.get("default_level_db", -25.0)),
            loudness=LoudnessSettings(
                target_lufs=float(loudness.get("target_lufs", -14.0)),
                true_peak=float(loudness.get("true_peak", -1.0)),
                loudness_range=float(loudness.get("loudness_range", 11.0)),
            ),
            waveform=WaveformSettings(
                pixels_per_second=int(waveform.get("pixels_per_second", 4)),
                bits=int(waveform.get("bits", 8)),
            ),
        )


PathLike = str | Path | SandboxedPath


class AudioTransformEngine:
    """Probe, trim, silence removal, noise suppression, concatenation and peaks."""

    def __init__(
        self,
        *,
        ffmpeg: FFmpeg,
        waveform: Audiowaveform,
        temp_dir: str | Path,
        settings: AudioSettings | None = None,
    ) -> None:
        self.ffmpeg = ffmpeg
        self.waveform = waveform
        self.temp_dir = Path(temp_dir)
        self.settings = settings or AudioSettings()

    # ------------------------------------------------------------------ #
    # Inspection
    # ------------------------------------------------------------------ #
    def probe(self, path: PathLike, base_dir: str | Path | None = None) -> ProbeResult:
        source = _sandbox(path, base_dir)
        payload = self.ffmpeg.probe(source.path)
        return _probe_result(payload, source.path)

    def detect_silence(
        self,
        path: PathLike,
        base_dir: str | Path | None = None,
        *,
        min_silence_sec: float | None = None,
        threshold_db: float | None = None,
    ) -> list[SilenceSpan]:
        """Return silent spans at least ``min_silence_sec`` long below ``threshold_db``."""
        source = _sandbox(path, base_dir)
        min_silence, threshold = self._silence_params(min_silence_sec, threshold_db)
        stderr = self.ffmpeg.run(
            [
                "-i",
                str(source.path),
                "-af",
                f"silencedetect=noise={_number(threshold)}dB:d={_number(min_silence)}",
                "-f",
                "null",
                "-",
            ]
        )
        return parse_silence_spans(stderr, min_silence)

    # ------------------------------------------------------------------ #
    # Transforms (each returns a private temp file)
    # ------------------------------------------------------------------ #
    def trim(
        self,
        path: PathLike,
        base_dir: str | Path | None = None,
        *,
        start_sec: float,
        end_sec: float,
    ) -> Path:
        """Keep ``[start_sec, end_sec]`` as a lossless WAV."""
        source = _sandbox(path, base_dir)
        duration = self.probe(source).duration_sec
        if start_sec < 0 or end_sec <= start_sec or end_sec > duration:
            raise ValidationError(
                f"Invalid trim range {start_sec}-{end_sec}s for audio of {duration}s."
            )
        return self._extract_ranges(source, [(start_sec, end_sec)])

    def remove_silence(
        self,
        path: PathLike,
        base_dir: str | Path | None = None,
        *,
        min_silence_sec: float | None = None,
        threshold_db: float | None = None,
    ) -> tuple[Path, list[SilenceSpan]]:
        """Drop detected silence and return the edited WAV plus the removed spans."""
        source = _sandbox(path, base_dir)
        spans = self.detect_silence(
            source, min_silence_sec=min_silence_sec, threshold_db=threshold_db
        )
        duration = self.probe(source).duration_sec

        if not spans:
            return self._transcode_to_wav(source), []

        keep = _complement(spans, duration)
        if not keep:
            raise ProcessingError("All audio is silence.")
        return self._extract_ranges(source, keep), spans

    def remove_span(
        self,
        path: PathLike,
        base_dir: str | Path | None = None,
        *,
        start_sec: float,
        end_sec: float,
    ) -> Path:
        """Cut ``[start_sec, end_sec]`` out of the audio and close the gap."""
        source = _sandbox(path, base_dir)
        if start_sec < 0 or end_sec <= start_sec:
            raise ValidationError(f"Invalid span {start_sec}-{end_sec}s.")
        duration = self.probe(source).duration_sec
        keep = _complement([SilenceSpan(start_sec, min(end_sec, duration))], duration)
        if not keep:
            raise ProcessingError("Removing this span would leave no audio.")
        return self._extract_ranges(source, keep)

    def apply_noise_suppression(
        self,
        path: PathLike,
        base_dir: str | Path | None = None,
        *,
        level_db: float | None = None,
    ) -> Path:
        """Apply FFT denoising; the output keeps the source container and duration."""
        source = _sandbox(path, base_dir)
        level = self.settings.noise_level_db if level_db is None else level_db
        noise_floor = min(NOISE_FLOOR_MAX_DB, max(NOISE_FLOOR_MIN_DB, float(level)))

        suffix = source.path.suffix.lower()
        codec = _NOISE_CODECS.get(suffix)
        if codec is None:
            suffix, codec = ".wav", _NOISE_CODECS[".wav"]

        output = self._temp_file(suffix)
        self._run_into(
            output,
            ["-i", str(source.path), "-af", f"afftdn=nf={_number(noise_floor)}", *codec],
        )
        return output

    def concatenate(
        self,
        paths: Sequence[PathLike],
        out_path: PathLike,
        base_dir: str | Path | None = None,
        *,
        settings: RenderSettings,
    ) -> SandboxedPath:
        """Join ``paths`` in order into ``out_path`` with loudness normalization.

        Inputs are expected to be validated already; only the output is sandboxed here.
        """
        if not paths:
            raise ValidationError("Nothing to concatenate.")
        target = _sandbox(out_path, base_dir)
        target.path.parent.mkdir(parents=True, exist_ok=True)

        inputs: list[str] = []
        labels = ""
        for index, item in enumerate(paths):
            inputs.extend(["-i", str(item.path if isinstance(item, SandboxedPath) else item)])
            labels += f"[{index}:a]"
        graph = (
            f"{labels}concat=n={len(paths)}:v=0:a=1[concat];"
            f"[concat]{self.settings.loudness.to_filter()}[out]"
        )

        if settings.format == "m4a":
            codec = [
                "-c:a",
                "aac",
                "-b:a",
                f"{max(16, settings.bitrate_kbps)}k",
                "-movflags",
                "+faststart",
            ]
        else:
            codec = ["-c:a", "libmp3lame", "-b:a", f"{max(16, settings.bitrate_kbps)}k"]

        temp = self._temp_file(target.path.suffix or f".{settings.extension}")
        self._run_into(
            temp,
            [
                *inputs,
                "-filter_complex",
                graph,
                "-map",
                "[out]",
                "-ac",
                str(settings.channel_count),
                *codec,
            ],
        )
        return self.commit(temp, target)

    def generate_waveform_peaks(self, path: PathLike, base_dir: str | Path | None = None) -> Path:
        """Write the ``.waveform.json`` sibling for ``path``."""
        source = _sandbox(path, base_dir)
        output = source.sibling(ArtifactKind.WAVEFORM)
        self.waveform.generate(source.path, output.path)
        return output.path

    # ------------------------------------------------------------------ #
    # Output handling
    # ------------------------------------------------------------------ #
    def commit(self, temp_path: Path, final: SandboxedPath) -> SandboxedPath:
        """Move a finished temp output into place; the temp file is always removed.

        The bytes are staged next to ``final`` and swapped in with
        :func:`os.replace`, so a failed copy leaves the previous file untouched.
        """
        staged: Path | None = None
        try:
            if not temp_path.exists() or temp_path.stat().st_size == 0:
                raise ProcessingError("Processed audio file was not created or is empty.")
            final.path.parent.mkdir(parents=True, exist_ok=True)
            handle, name = tempfile.mkstemp(
                prefix=f".{final.path.stem}.", suffix=final.path.suffix, dir=final.path.parent
            )
            os.close(handle)
            staged = Path(name)
            shutil.copyfile(temp_path, staged)
            os.replace(staged, final.path)
            staged = None
        finally:
            discard(temp_path)
            if staged is not None:
                discard(staged)
        return final

    # ------------------------------------------------------------------ #
    # Internal helpers
    # ------------------------------------------------------------------ #
    def _silence_params(
        self, min_silence_sec: float | None, threshold_db: float | None
    ) -> tuple[float, float]:
        min_silence = self.settings.min_silence_sec if min_silence_sec is None else min_silence_sec
        threshold = self.settings.silence_threshold_db if threshold_db is None else threshold_db
        if min_silence <= 0:
            raise ValidationError("Minimum silence length must be positive.")
        if threshold > 0:
            raise ValidationError("Silence threshold must be 0 dB or lower.")
        return float(min_silence), float(threshold)

    def _transcode_to_wav(self, source: SandboxedPath) -> Path:
        output = self._temp_file(".wav")
        self._run_into(output, ["-i", str(source.path), *self._wav_codec()])
        return output

    def _extract_ranges(self, source: SandboxedPath, ranges: Sequence[tuple[float, float]]) -> Path:
        output = self._temp_file(".wav")
        if len(ranges) == 1:
            start, end = ranges[0]
            args = [
                "-ss",
                _number(start),
                "-i",
                str(source.path),
                "-t",
                _number(end - start),
                *self._wav_codec(),
            ]
        else:
            parts = [
                f"[0:a]atrim=start={_number(start)}:end={_number(end)},asetpts=PTS-STARTPTS[a{idx}]"
                for idx, (start, end) in enumerate(ranges)
            ]
            labels = "".join(f"[a{idx}]" for idx in range(len(ranges)))
            graph = ";".join(parts) + f";{labels}concat=n={len(ranges)}:v=0:a=1[out]"
            args = [
                "-i",
                str(source.path),
                "-filter_complex",
                graph,
                "-map",
                "[out]",
                *self._wav_codec(),
            ]
        self._run_into(output, args)
        return output

    def _wav_codec(self) -> list[str]:
        return ["-acodec", "pcm_s16le", "-ar", str(self.settings.sample_rate)]

    def _run_into(self, output: Path, args: Sequence[str]) -> None:
        try:
            self.ffmpeg.run([*args, str(output)])
        except FFmpegError:
            discard(output)
            raise

    def _temp_file(self, suffix: str) -> Path:
        self.temp_dir.mkdir(parents=True, exist_ok=True)
        handle, name = tempfile.mkstemp(prefix="segment-", suffix=suffix, dir=self.temp_dir)
        os.close(handle)
        return Path(name)


def build_audio_engine(config: Mapping[str, object], *, temp_dir: str | Path) -> AudioTransformEngine:
    """Create an engine using the ``tools`` and ``audio`` config sections."""
    tools = _section(config, "tools")
    timeout_raw = tools.get("timeout_seconds")
    timeout = float(timeout_raw) if isinstance(timeout_raw, (int, float)) else None
    settings = AudioSettings.from_config(config)
    return AudioTransformEngine(
        ffmpeg=FFmpeg(
            ffmpeg_path=str(tools.get("ffmpeg_path", "ffmpeg")),
            ffprobe_path=str(tools.get("ffprobe_path", "ffprobe")),
            timeout=timeout,
        ),
        waveform=Audiowaveform(
            executable=str(tools.get("audiowaveform_path", "audiowaveform")),
            settings=settings.waveform,
            timeout=timeout,
        ),
        temp_dir=temp_dir,
        settings=settings,
    )


def parse_silence_spans(stderr: str, min_silence_sec: float = 0.0) -> list[SilenceSpan]:
    """Pair ``silence_start``/``silence_end`` markers from silencedetect output.

    A start without a matching end (silence running to the end of the file and
    not closed by ffmpeg) is ignored.
    """
    spans: list[SilenceSpan] = []
    current_start: float | None = None
    for line in stderr.splitlines():
        start_match = _SILENCE_START_RE.search(line)
        if start_match:
            current_start = max(0.0, float(start_match.group(1)))
        end_match = _SILENCE_END_RE.search(line)
        if end_match and current_start is not None:
            end = max(0.0, float(end_match.group(1)))
            duration_match = _SILENCE_DURATION_RE.search(line)
            duration = float(duration_match.group(1)) if duration_match else end - current_start
            if duration >= min_silence_sec and end > current_start:
                spans.append(SilenceSpan(start_sec=current_start, end_sec=end))
            current_start = None
    return spans


def mime_type_for_format(format_name: str | None) -> str:
    names = {token.strip().lower() for token in (format_name or "").split(",")}
    if "wav" in names:
        return "audio/wav"
    if "mp3" in names:
        return "audio/mpeg"
    if "webm" in names:
        return "audio/webm"
    if names & {"mov", "mp4", "m4a", "3gp", "3g2", "mj2"}:
        return "audio/mp4"
    if "ogg" in names:
        return "audio/ogg"
    return "audio/mpeg"


def discard(path: Path) -> None:
    """Remove a temp file if it is still there."""
    path.unlink(missing_ok=True)


def _sandbox(path: PathLike, base_dir: str | Path | None) -> SandboxedPath:
    if isinstance(path, SandboxedPath) and base_dir is None:
        return path
    if base_dir is None:
        raise TypeError("base_dir is required unless a SandboxedPath is given.")
    return SandboxedPath.validate(path, base_dir)


def _complement(spans: Sequence[SilenceSpan], duration: float) -> list[tuple[float, float]]:
    """Ranges of ``[0, duration]`` not covered by ``spans``."""
    ranges: list[tuple[float, float]] = []
    cursor = 0.0
    for span in sorted(spans, key=lambda item: item.start_sec):
        if span.start_sec - cursor > _MIN_RANGE_SEC:
            ranges.append((cursor, span.start_sec))
        cursor = max(cursor, span.end_sec)
    if duration - cursor > _MIN_RANGE_SEC:
        ranges.append((cursor, duration))
    return ranges


def _probe_result(payload: Mapping[str, object], path: Path) -> ProbeResult:
    fmt = payload.get("format")
    fmt = fmt if isinstance(fmt, Mapping) else {}

    duration = _maybe_float(fmt.get("duration"))
    if duration is None:
        streams = payload.get("streams")
        if isinstance(streams, list):
            for stream in streams:
                if isinstance(stream, Mapping) and stream.get("codec_type") == "audio":
                    duration = _maybe_float(stream.get("duration"))
                    if duration is not None:
                        break

    size = _maybe_float(fmt.get("size"))
    if size is None:
        size = float(path.stat().st_size) if path.exists() else 0.0

    format_name = fmt.get("format_name")
    format_name = str(format_name) if format_name else None
    return ProbeResult(
        duration_sec=max(0.0, duration or 0.0),
        mime_type=mime_type_for_format(format_name),
        size_bytes=int(size),
        format_name=format_name,
    )


def _maybe_float(value: object | None) -> float | None:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return None
    return None


def _number(value: float) -> str:
    """Render seconds/decibels for ffmpeg arguments without float noise."""
    text = f"{float(value):.3f}".rstrip("0").rstrip(".")
    return text or "0"


def _section(config: Mapping[str, object], key: str) -> Mapping[str, object]:
    section = config.get(key)
    return section if isinstance(section, Mapping) else {}
