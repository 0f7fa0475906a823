"""Sandboxed filesystem paths and sibling-artifact naming.

Every file touched by an audio transform is addressed through a
:class:`SandboxedPath`. The only way to obtain one is
:meth:`SandboxedPath.validate`, which proves the path stays inside an approved
base directory both lexically (``..`` segments) and physically (symlinks).

Audio, transcript and waveform files for one asset are siblings that share a
base name; :func:`derived_path` is the single place that convention lives.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from ..exceptions import PathEscapeError, ValidationError

__all__ = [
    "ArtifactKind",
    "SandboxedPath",
    "derived_path",
    "is_safe_id",
    "require_safe_id",
]

_SAFE_ID_RE = re.compile(r"^[A-Za-z0-9_-]+$")
_PROOF = object()


class ArtifactKind(Enum):
    """Sibling artifacts that accompany an audio file."""

    AUDIO_WAV = ".wav"
    TRANSCRIPT = ".txt"
    WAVEFORM = ".waveform.json"

    @property
    def suffix(self) -> str:
        return self.value


def derived_path(base: str | Path, kind: ArtifactKind) -> Path:
    """Return the sibling of ``base`` for ``kind`` by swapping the last extension."""
    path = Path(base)
    stem = path.stem if path.suffix else path.name
    return path.with_name(f"{stem}{kind.suffix}")


def is_safe_id(value: str) -> bool:
    """Whether ``value`` may be used as a single path component."""
    return bool(value) and _SAFE_ID_RE.fullmatch(value) is not None


def require_safe_id(value: str, *, label: str = "id") -> str:
    if not is_safe_id(value):
        raise ValidationError(f"Invalid {label}: {value!r}")
    return value


@dataclass(frozen=True, slots=True)
class SandboxedPath:
    """A path proven to resolve within ``base_dir``."""

    path: Path
    base_dir: Path
    _proof: object = field(default=None, repr=False, compare=False)

    def __post_init__(self) -> None:
        if self._proof is not _PROOF:
            raise TypeError("SandboxedPath instances must be created with SandboxedPath.validate().")

    @classmethod
    def validate(cls, path: str | Path | SandboxedPath, base_dir: str | Path) -> SandboxedPath:
        """Validate ``path`` against ``base_dir``.

        Relative paths are interpreted from ``base_dir``. Raises
        :class:`PathEscapeError` when the path escapes the base lexically or
        through a symlink; nothing is opened or created.
        """
        if isinstance(path, SandboxedPath):
            path = path.path

        base = Path(os.path.abspath(Path(base_dir).expanduser()))
        candidate = Path(path).expanduser()
        if not candidate.is_absolute():
            candidate = base / candidate
        lexical = Path(os.path.abspath(candidate))
        if not _is_within(lexical, base):
            raise PathEscapeError(f"Path {path} is outside of allowed directory {base_dir}.")

        real_base = Path(os.path.realpath(base))
        physical = Path(os.path.realpath(lexical))
        if not _is_within(physical, real_base):
            raise PathEscapeError(
                f"Path {path} resolves to {physical}, outside of allowed directory {base_dir}."
            )
        return cls(path=physical, base_dir=real_base, _proof=_PROOF)

    # ------------------------------------------------------------------ #
    # Convenience helpers
    # ------------------------------------------------------------------ #
    @property
    def name(self) -> str:
        return self.path.name

    def exists(self) -> bool:
        return self.path.exists()

    def is_file(self) -> bool:
        return self.path.is_file()

    def sibling(self, kind: ArtifactKind) -> SandboxedPath:
        """Return the sibling artifact of ``kind``, re-validated against the same base."""
        return SandboxedPath.validate(derived_path(self.path, kind), self.base_dir)

    def with_name(self, name: str) -> SandboxedPath:
        return SandboxedPath.validate(self.path.with_name(name), self.base_dir)

    def child(self, *parts: str) -> SandboxedPath:
        return SandboxedPath.validate(self.path.joinpath(*parts), self.base_dir)

    def __fspath__(self) -> str:
        return str(self.path)

    def __str__(self) -> str:
        return str(self.path)


def _is_within(path: Path, base: Path) -> bool:
    return path == base or path.is_relative_to(base)
