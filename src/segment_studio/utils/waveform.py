"""Wrapper around the ``audiowaveform`` peak-data generator."""

from __future__ import annotations

import subprocess
from dataclasses import dataclass
from pathlib import Path

from ..exceptions import ProcessingError

__all__ = ["Audiowaveform", "WaveformError", "WaveformSettings"]


class WaveformError(ProcessingError):
    """Raised when peak data could not be generated."""


@dataclass(slots=True)
class WaveformSettings:
    pixels_per_second: int = 4
    bits: int = 8


class Audiowaveform:
    """Runs ``audiowaveform`` to write JSON peak data for an audio file."""

    def __init__(
        self,
        *,
        executable: str = "audiowaveform",
        settings: WaveformSettings | None = None,
        timeout: float | None = None,
    ) -> None:
        self.executable = executable
        self.settings = settings or WaveformSettings()
        self.timeout = timeout

    def generate(self, input_path: str | Path, output_path: str | Path) -> None:
        command = [
            self.executable,
            "-i",
            str(input_path),
            "-o",
            str(output_path),
            "--pixels-per-second",
            str(self.settings.pixels_per_second),
            "--bits",
            str(self.settings.bits),
        ]
        try:
            result = subprocess.run(  # noqa: S603 - command is constructed from trusted configuration
                command,
                check=False,
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except FileNotFoundError as exc:
            raise WaveformError(f"Executable not found: {self.executable}") from exc
        except subprocess.TimeoutExpired as exc:
            raise WaveformError(f"audiowaveform timed out after {self.timeout}s.") from exc
        if result.returncode != 0:
            raise WaveformError(
                f"audiowaveform failed with code {result.returncode}: {result.stderr.strip()}"
            )
