"""Tests for background transcription of rendered episodes."""

from __future__ import annotations

import threading
from pathlib import Path

import pytest

from segment_studio.exceptions import (
    JobConflictError,
    NotFoundError,
    PermissionDeniedError,
    TranscriptionNotConfiguredError,
)
from segment_studio.pipelines.jobs import BackgroundJobRunner, InMemoryJobStatusRegistry, JobState
from segment_studio.pipelines.transcription import EpisodeTranscriptionService
from segment_studio.storage.paths import PathsConfig
from segment_studio.storage.repository import SegmentRepository

SRT = "1\n00:00:00,000 --> 00:00:02,000\nWelcome back\n"


class StubGateway:
    def __init__(self, result: str | None = SRT, configured: bool = True) -> None:
        self.result = result
        self.configured = configured
        self.calls: list[Path] = []
        self.release: threading.Event | None = None

    def is_configured(self) -> bool:
        return self.configured

    def transcribe(self, path, base_dir=None) -> str | None:
        self.calls.append(Path(path))
        if self.release is not None:
            self.release.wait(5)
        return self.result


class NoTranscribe:
    def can_edit(self, episode_id: str) -> bool:
        return True

    def can_transcribe(self) -> bool:
        return False


@pytest.fixture()
def gateway() -> StubGateway:
    return StubGateway()


@pytest.fixture()
def service(
    repository: SegmentRepository,
    paths_config: PathsConfig,
    gateway: StubGateway,
) -> EpisodeTranscriptionService:
    return EpisodeTranscriptionService(
        repository=repository,
        gateway=gateway,  # type: ignore[arg-type]
        runner=BackgroundJobRunner(InMemoryJobStatusRegistry()),
        paths=paths_config,
    )


@pytest.fixture()
def final_audio(repository: SegmentRepository, paths_config: PathsConfig) -> Path:
    target = paths_config.final_output_path("pod", "ep1", "mp3")
    target.path.parent.mkdir(parents=True, exist_ok=True)
    target.path.write_text("12.0", encoding="utf-8")
    repository.update_episode_audio(
        "ep1",
        audio_path=target.path,
        duration_sec=12.0,
        size_bytes=4,
        mime_type="audio/mpeg",
        copyright_snapshot=None,
    )
    return target.path


def test_transcription_writes_episode_srt(
    service: EpisodeTranscriptionService,
    gateway: StubGateway,
    paths_config: PathsConfig,
    final_audio: Path,
) -> None:
    handle = service.start("ep1")
    assert handle.wait(timeout=5)

    assert service.status("ep1").state is JobState.DONE
    assert gateway.calls == [final_audio]
    assert paths_config.episode_transcript_path("pod", "ep1").path.read_text() == SRT
    assert service.get_transcript("ep1") == SRT


def test_missing_render_is_reported_first(
    repository: SegmentRepository,
    paths_config: PathsConfig,
) -> None:
    service = EpisodeTranscriptionService(
        repository=repository,
        gateway=StubGateway(configured=False),  # type: ignore[arg-type]
        runner=BackgroundJobRunner(InMemoryJobStatusRegistry()),
        paths=paths_config,
        permissions=NoTranscribe(),
    )

    with pytest.raises(NotFoundError):
        service.start("ep1")


def test_deleted_final_file_is_not_found(
    service: EpisodeTranscriptionService,
    final_audio: Path,
) -> None:
    final_audio.unlink()

    with pytest.raises(NotFoundError):
        service.start("ep1")


def test_unconfigured_provider_is_rejected(
    service: EpisodeTranscriptionService,
    gateway: StubGateway,
    final_audio: Path,
) -> None:
    gateway.configured = False

    with pytest.raises(TranscriptionNotConfiguredError):
        service.start("ep1")
    assert service.status("ep1").state is JobState.IDLE


def test_permission_is_checked_before_dispatch(
    repository: SegmentRepository,
    paths_config: PathsConfig,
    gateway: StubGateway,
    final_audio: Path,
) -> None:
    service = EpisodeTranscriptionService(
        repository=repository,
        gateway=gateway,  # type: ignore[arg-type]
        runner=BackgroundJobRunner(InMemoryJobStatusRegistry()),
        paths=paths_config,
        permissions=NoTranscribe(),
    )

    with pytest.raises(PermissionDeniedError):
        service.start("ep1")
    assert gateway.calls == []


class NoEdit:
    def can_edit(self, episode_id: str) -> bool:
        return False

    def can_transcribe(self) -> bool:
        return True


def test_edit_permission_is_required_to_transcribe(
    repository: SegmentRepository,
    paths_config: PathsConfig,
    gateway: StubGateway,
    final_audio: Path,
) -> None:
    service = EpisodeTranscriptionService(
        repository=repository,
        gateway=gateway,  # type: ignore[arg-type]
        runner=BackgroundJobRunner(InMemoryJobStatusRegistry()),
        paths=paths_config,
        permissions=NoEdit(),
    )

    with pytest.raises(PermissionDeniedError):
        service.start("ep1")
    assert gateway.calls == []
    assert service.status("ep1").state is JobState.IDLE
    assert not paths_config.episode_transcript_path("pod", "ep1").exists()


def test_failed_dispatch_does_not_leave_job_running(
    service: EpisodeTranscriptionService,
    gateway: StubGateway,
    final_audio: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    def refuse(self) -> None:
        raise RuntimeError("can't start new thread")

    monkeypatch.setattr("segment_studio.pipelines.jobs.threading.Thread.start", refuse)

    with pytest.raises(RuntimeError):
        service.start("ep1")
    monkeypatch.undo()

    status = service.status("ep1")
    assert status.state is JobState.FAILED
    assert status.error == "can't start new thread"
    assert gateway.calls == []

    handle = service.start("ep1")
    assert handle.wait(timeout=5)
    assert service.status("ep1").state is JobState.DONE


def test_second_start_while_running_conflicts(
    service: EpisodeTranscriptionService,
    gateway: StubGateway,
    final_audio: Path,
) -> None:
    gateway.release = threading.Event()
    handle = service.start("ep1")
    try:
        with pytest.raises(JobConflictError, match="already being generated"):
            service.start("ep1")
    finally:
        gateway.release.set()
    assert handle.wait(timeout=5)
    assert service.status("ep1").state is JobState.DONE


def test_provider_failure_marks_job_failed(
    service: EpisodeTranscriptionService,
    gateway: StubGateway,
    final_audio: Path,
) -> None:
    gateway.result = None

    handle = service.start("ep1")
    assert handle.wait(timeout=5)

    status = service.status("ep1")
    assert status.state is JobState.FAILED
    assert status.error == "Transcription service failed. Check Settings and try again."
    assert service.get_transcript("ep1") is None


def test_update_transcript_sanitizes(service: EpisodeTranscriptionService) -> None:
    cleaned = service.update_transcript("ep1", "<b>Edited</b>\x07 line")

    assert cleaned == "Edited line"
    assert service.get_transcript("ep1") == "Edited line"


def test_get_transcript_unknown_episode(service: EpisodeTranscriptionService) -> None:
    with pytest.raises(NotFoundError):
        service.get_transcript("missing")
