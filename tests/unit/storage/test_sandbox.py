"""Tests for sandboxed path validation and sibling naming."""

from __future__ import annotations

import os
from pathlib import Path

import pytest

from segment_studio.exceptions import PathEscapeError, ValidationError
from segment_studio.storage.sandbox import (
    ArtifactKind,
    SandboxedPath,
    derived_path,
    is_safe_id,
    require_safe_id,
)


def test_validate_accepts_paths_inside_base(tmp_path: Path) -> None:
    target = tmp_path / "segments" / "a.wav"

    sandboxed = SandboxedPath.validate(target, tmp_path)

    assert sandboxed.path == Path(os.path.realpath(target))
    assert sandboxed.base_dir == Path(os.path.realpath(tmp_path))


def test_relative_paths_resolve_from_base(tmp_path: Path) -> None:
    sandboxed = SandboxedPath.validate("segments/a.wav", tmp_path)

    assert sandboxed.path == Path(os.path.realpath(tmp_path / "segments" / "a.wav"))


def test_dotdot_traversal_is_rejected(tmp_path: Path) -> None:
    base = tmp_path / "uploads"
    base.mkdir()

    with pytest.raises(PathEscapeError):
        SandboxedPath.validate(base / ".." / "secret.wav", base)
    with pytest.raises(PathEscapeError):
        SandboxedPath.validate("../secret.wav", base)


def test_sibling_directory_with_shared_prefix_is_rejected(tmp_path: Path) -> None:
    base = tmp_path / "uploads"
    other = tmp_path / "uploads-other"
    base.mkdir()
    other.mkdir()

    with pytest.raises(PathEscapeError):
        SandboxedPath.validate(other / "a.wav", base)


def test_symlink_escape_is_rejected(tmp_path: Path) -> None:
    base = tmp_path / "uploads"
    outside = tmp_path / "outside"
    base.mkdir()
    outside.mkdir()
    (outside / "a.wav").write_bytes(b"data")
    (base / "link").symlink_to(outside, target_is_directory=True)

    with pytest.raises(PathEscapeError):
        SandboxedPath.validate(base / "link" / "a.wav", base)


def test_path_escape_is_a_validation_error(tmp_path: Path) -> None:
    with pytest.raises(ValidationError):
        SandboxedPath.validate("/etc/passwd", tmp_path)


def test_direct_construction_is_refused(tmp_path: Path) -> None:
    with pytest.raises(TypeError):
        SandboxedPath(path=tmp_path / "a.wav", base_dir=tmp_path)


def test_derived_path_swaps_last_extension() -> None:
    assert derived_path(Path("/x/123_seg.webm"), ArtifactKind.AUDIO_WAV) == Path("/x/123_seg.wav")
    assert derived_path(Path("/x/123_seg.webm"), ArtifactKind.TRANSCRIPT) == Path("/x/123_seg.txt")
    assert derived_path(Path("/x/final.mp3"), ArtifactKind.WAVEFORM) == Path("/x/final.waveform.json")
    assert derived_path(Path("/x/noext"), ArtifactKind.TRANSCRIPT) == Path("/x/noext.txt")


def test_sibling_stays_in_sandbox(tmp_path: Path) -> None:
    audio = SandboxedPath.validate(tmp_path / "seg.mp3", tmp_path)

    sibling = audio.sibling(ArtifactKind.TRANSCRIPT)

    assert sibling.path.name == "seg.txt"
    assert sibling.base_dir == audio.base_dir


def test_safe_ids() -> None:
    assert is_safe_id("ep_01-a")
    assert not is_safe_id("")
    assert not is_safe_id("../ep")
    assert not is_safe_id("a/b")
    with pytest.raises(ValidationError):
        require_safe_id("..", label="episode id")
