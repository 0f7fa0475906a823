"""Fixtures for pipeline tests: fake FFmpeg/audiowaveform and an engine wired to them."""

from __future__ import annotations

import re
from collections.abc import Sequence
from pathlib import Path

import pytest

from segment_studio.pipelines.audio_transform import AudioTransformEngine
from segment_studio.storage.paths import PathsConfig
from segment_studio.utils.ffmpeg import FFmpegError
from segment_studio.utils.waveform import WaveformError

_ATRIM_RE = re.compile(r"atrim=start=([\d.]+):end=([\d.]+)")
_FORMAT_NAMES = {".wav": "wav", ".mp3": "mp3", ".m4a": "mov,mp4,m4a,3gp,3g2,mj2", ".webm": "webm"}


class FakeFFmpeg:
    """Stands in for :class:`FFmpeg`; every audio file holds its duration as text."""

    def __init__(self) -> None:
        self.calls: list[list[str]] = []
        self.probed: list[Path] = []
        self.silence_stderr = ""
        self.fail_runs = False
        self.fail_probe_for: set[str] = set()

    def probe(self, media_path: str | Path) -> dict[str, object]:
        path = Path(media_path)
        self.probed.append(path)
        if not path.exists() or path.suffix in self.fail_probe_for:
            raise FFmpegError(f"ffprobe failed for {path}")
        return {
            "format": {
                "duration": str(_duration(path)),
                "format_name": _FORMAT_NAMES.get(path.suffix, "mp3"),
                "size": str(path.stat().st_size),
            }
        }

    def run(self, args: Sequence[str]) -> str:
        args = list(args)
        self.calls.append(args)
        if any("silencedetect" in arg for arg in args):
            return self.silence_stderr
        if self.fail_runs:
            raise FFmpegError("boom")
        Path(args[-1]).write_text(str(_output_duration(args)), encoding="utf-8")
        return ""


class FakeWaveform:
    def __init__(self) -> None:
        self.generated: list[tuple[Path, Path]] = []
        self.fail = False

    def generate(self, input_path: str | Path, output_path: str | Path) -> None:
        if self.fail:
            raise WaveformError("audiowaveform failed")
        self.generated.append((Path(input_path), Path(output_path)))
        Path(output_path).write_text("{}", encoding="utf-8")


def write_audio(path: Path, duration: float) -> Path:
    """Create a fake audio file whose probed duration is ``duration``."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(str(duration), encoding="utf-8")
    return path


def _duration(path: Path) -> float:
    return float(path.read_text(encoding="utf-8") or 0.0)


def _output_duration(args: list[str]) -> float:
    inputs = [Path(args[idx + 1]) for idx, arg in enumerate(args) if arg == "-i"]
    if "-t" in args:
        return float(args[args.index("-t") + 1])
    if "-filter_complex" in args:
        graph = args[args.index("-filter_complex") + 1]
        ranges = _ATRIM_RE.findall(graph)
        if ranges:
            return sum(float(end) - float(start) for start, end in ranges)
        return sum(_duration(path) for path in inputs)
    return _duration(inputs[0])


@pytest.fixture()
def fake_ffmpeg() -> FakeFFmpeg:
    return FakeFFmpeg()


@pytest.fixture()
def fake_waveform() -> FakeWaveform:
    return FakeWaveform()


@pytest.fixture()
def engine(
    fake_ffmpeg: FakeFFmpeg,
    fake_waveform: FakeWaveform,
    paths_config: PathsConfig,
) -> AudioTransformEngine:
    return AudioTransformEngine(
        ffmpeg=fake_ffmpeg,  # type: ignore[arg-type]
        waveform=fake_waveform,  # type: ignore[arg-type]
        temp_dir=paths_config.temp_dir,
    )


@pytest.fixture()
def audio_writer():
    """Expose :func:`write_audio` to tests."""
    return write_audio
