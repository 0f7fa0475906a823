"""Subprocess front-end for the ``ffmpeg`` and ``ffprobe`` executables."""

from __future__ import annotations

import json
import subprocess
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from ..exceptions import ProcessingError
from .logging import get_logger

__all__ = [
    "FFmpeg",
    "FFmpegError",
    "LoudnessSettings",
]

LOGGER = get_logger(__name__)

# ffmpeg never reads the terminal; jobs run on background threads.
_FFMPEG_PREFIX = ("-hide_banner", "-nostdin", "-y")
_PROBE_ARGS = ("-v", "error", "-print_format", "json", "-show_format", "-show_streams")


class FFmpegError(ProcessingError):
    """Raised when FFmpeg or FFprobe exits with a non-zero status."""


@dataclass(slots=True)
class LoudnessSettings:
    """EBU R128 targets applied to the concatenated episode."""

    target_lufs: float = -14.0
    true_peak: float = -1.0
    loudness_range: float = 11.0

    def to_filter(self) -> str:
        """``loudnorm=I=..:TP=..:LRA=..`` with integral values printed without decimals."""
        parts = (("I", self.target_lufs), ("TP", self.true_peak), ("LRA", self.loudness_range))
        return "loudnorm=" + ":".join(f"{key}={_number(value)}" for key, value in parts)


class FFmpeg:
    """Runs ffmpeg/ffprobe with an optional per-call timeout."""

    def __init__(
        self,
        *,
        ffmpeg_path: str = "ffmpeg",
        ffprobe_path: str = "ffprobe",
        timeout: float | None = None,
    ) -> None:
        self.ffmpeg_path = ffmpeg_path
        self.ffprobe_path = ffprobe_path
        self.timeout = timeout

    def probe(self, media_path: str | Path) -> dict[str, Any]:
        """ffprobe's ``format`` and ``streams`` description of ``media_path``."""
        result = self._checked([self.ffprobe_path, *_PROBE_ARGS, str(media_path)])
        try:
            payload = json.loads(result.stdout or "{}")
        except json.JSONDecodeError as exc:
            raise FFmpegError(f"ffprobe returned invalid JSON for {media_path}.") from exc
        if not isinstance(payload, dict):
            raise FFmpegError(f"ffprobe returned {type(payload).__name__} for {media_path}.")
        return payload

    def run(self, args: Sequence[str]) -> str:
        """Run ffmpeg with ``args`` and hand back its stderr.

        Filters such as ``silencedetect`` report on stderr, so callers parse it.
        """
        return self._checked([self.ffmpeg_path, *_FFMPEG_PREFIX, *args]).stderr or ""

    def _checked(self, command: list[str]) -> subprocess.CompletedProcess[str]:
        LOGGER.debug("Running %s", " ".join(command))
        try:
            result = subprocess.run(  # noqa: S603 - executables come from configuration
                command,
                check=False,
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except FileNotFoundError as exc:
            raise FFmpegError(f"Executable not found: {command[0]}") from exc
        except subprocess.TimeoutExpired as exc:
            raise FFmpegError(f"{command[0]} timed out after {self.timeout}s.") from exc
        if result.returncode != 0:
            detail = (result.stderr or "").strip()
            raise FFmpegError(detail or f"{Path(command[0]).name} exited with {result.returncode}")
        return result


def _number(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else str(value)
