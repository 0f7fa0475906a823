"""Tests for the background episode render pipeline."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

import pytest

from segment_studio.exceptions import JobConflictError, NotFoundError, PermissionDeniedError, ValidationError
from segment_studio.pipelines.audio_transform import AudioTransformEngine, RenderSettings
from segment_studio.pipelines.jobs import (
    BackgroundJobRunner,
    InMemoryJobStatusRegistry,
    JobKey,
    JobKind,
    JobState,
)
from segment_studio.pipelines.render import RenderPipeline
from segment_studio.storage.models import (
    Episode,
    Podcast,
    RecordedSource,
    ReusableAsset,
    ReusableSource,
)
from segment_studio.storage.paths import PathsConfig
from segment_studio.storage.repository import SegmentRepository

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


class RecordingPublisher:
    def __init__(self, error: Exception | None = None) -> None:
        self.published: list[str] = []
        self.error = error

    def publish(self, podcast: Podcast) -> None:
        self.published.append(podcast.id)
        if self.error is not None:
            raise self.error


@pytest.fixture()
def publisher() -> RecordingPublisher:
    return RecordingPublisher()


@pytest.fixture()
def pipeline(
    repository: SegmentRepository,
    engine: AudioTransformEngine,
    paths_config: PathsConfig,
    publisher: RecordingPublisher,
) -> RenderPipeline:
    return RenderPipeline(
        repository=repository,
        engine=engine,
        runner=BackgroundJobRunner(InMemoryJobStatusRegistry()),
        paths=paths_config,
        settings=RenderSettings(),
        publisher=publisher,  # type: ignore[arg-type]
        clock=lambda: NOW,
    )


def add_recorded(
    repository: SegmentRepository,
    paths_config: PathsConfig,
    audio_writer,
    segment_id: str,
    duration: float,
) -> Path:
    path = audio_writer(paths_config.uploads_dir("pod", "ep1") / "segments" / f"{segment_id}.wav", duration)
    repository.insert_segment(
        segment_id=segment_id,
        episode_id="ep1",
        source=RecordedSource(path),
        duration_sec=duration,
    )
    return path


def add_library_segment(
    repository: SegmentRepository,
    paths_config: PathsConfig,
    audio_writer,
    *,
    name: str | None = None,
    copyright_holder: str | None = "ACME Music",
) -> None:
    path = audio_writer(paths_config.library_dir() / "intro.mp3", 2.0)
    repository.save_asset(
        ReusableAsset(id="intro", name="Intro", audio_path=path, duration_sec=2.0, copyright=copyright_holder)
    )
    repository.insert_segment(
        segment_id="lib", episode_id="ep1", source=ReusableSource("intro"), duration_sec=2.0, name=name
    )


def run(pipeline: RenderPipeline) -> JobState:
    handle = pipeline.start("ep1")
    assert handle.wait(timeout=5)
    return pipeline.status("ep1").state


def test_render_concatenates_and_persists(
    pipeline: RenderPipeline,
    repository: SegmentRepository,
    paths_config: PathsConfig,
    fake_waveform,
    publisher: RecordingPublisher,
    audio_writer,
) -> None:
    add_library_segment(repository, paths_config, audio_writer, name="Opening")
    add_recorded(repository, paths_config, audio_writer, "a", 3.0)
    add_recorded(repository, paths_config, audio_writer, "b", 5.0)

    assert run(pipeline) is JobState.DONE

    final = paths_config.final_output_path("pod", "ep1", "mp3")
    episode = repository.get_episode("ep1")
    assert episode.audio_final_path == final.path
    assert episode.audio_duration_sec == pytest.approx(10.0, abs=0.05)
    assert episode.audio_mime == "audio/mpeg"
    assert episode.copyright_snapshot == "Opening by ACME Music"
    assert fake_waveform.generated[-1][0] == final.path
    assert publisher.published == []
    assert pipeline.status("ep1").state is JobState.IDLE


def test_copyright_falls_back_to_asset_name_and_skips_blank(
    pipeline: RenderPipeline,
    repository: SegmentRepository,
    paths_config: PathsConfig,
    audio_writer,
) -> None:
    add_library_segment(repository, paths_config, audio_writer)
    assert run(pipeline) is JobState.DONE
    assert repository.get_episode("ep1").copyright_snapshot == "Intro by ACME Music"

    repository.save_asset(
        ReusableAsset(
            id="intro",
            name="Intro",
            audio_path=paths_config.library_dir() / "intro.mp3",
            duration_sec=2.0,
            copyright="  ",
        )
    )
    assert run(pipeline) is JobState.DONE
    assert repository.get_episode("ep1").copyright_snapshot is None


def test_render_requires_segments(pipeline: RenderPipeline) -> None:
    with pytest.raises(ValidationError):
        pipeline.start("ep1")
    assert pipeline.runner.registry.peek(JobKey(JobKind.RENDER, "ep1")).state is JobState.IDLE


def test_render_unknown_episode(pipeline: RenderPipeline) -> None:
    with pytest.raises(NotFoundError):
        pipeline.start("missing")


def test_render_requires_an_existing_audio_file(
    pipeline: RenderPipeline,
    repository: SegmentRepository,
    paths_config: PathsConfig,
    audio_writer,
) -> None:
    path = add_recorded(repository, paths_config, audio_writer, "a", 3.0)
    path.unlink()

    with pytest.raises(ValidationError):
        pipeline.start("ep1")


def test_render_skips_escaping_and_missing_segments(
    pipeline: RenderPipeline,
    repository: SegmentRepository,
    paths_config: PathsConfig,
    fake_ffmpeg,
    audio_writer,
    tmp_path: Path,
) -> None:
    outside = audio_writer(tmp_path / "elsewhere" / "evil.wav", 100.0)
    repository.insert_segment(
        segment_id="evil", episode_id="ep1", source=RecordedSource(outside), duration_sec=100.0
    )
    repository.insert_segment(
        segment_id="gone", episode_id="ep1", source=ReusableSource(None), duration_sec=1.0
    )
    add_recorded(repository, paths_config, audio_writer, "a", 3.0)

    assert run(pipeline) is JobState.DONE

    assert repository.get_episode("ep1").audio_duration_sec == pytest.approx(3.0)
    assert all(str(outside) not in call for call in fake_ffmpeg.calls)


def test_second_render_while_running_conflicts(
    pipeline: RenderPipeline,
    repository: SegmentRepository,
    paths_config: PathsConfig,
    fake_ffmpeg,
    audio_writer,
) -> None:
    add_recorded(repository, paths_config, audio_writer, "a", 3.0)
    key = JobKey(JobKind.RENDER, "ep1")
    pipeline.runner.registry.try_start(key)

    with pytest.raises(JobConflictError, match="already building"):
        pipeline.start("ep1")
    assert fake_ffmpeg.calls == []
    assert pipeline.runner.registry.peek(key).state is JobState.RUNNING


def test_processing_failure_is_captured(
    pipeline: RenderPipeline,
    repository: SegmentRepository,
    paths_config: PathsConfig,
    fake_ffmpeg,
    audio_writer,
) -> None:
    add_recorded(repository, paths_config, audio_writer, "a", 3.0)
    fake_ffmpeg.fail_runs = True

    handle = pipeline.start("ep1")
    assert handle.wait(timeout=5)

    status = pipeline.status("ep1")
    assert status.state is JobState.FAILED
    assert status.error == "boom"
    assert repository.get_episode("ep1").audio_final_path is None
    assert list(paths_config.temp_dir.iterdir()) == []


def test_published_episode_notifies_feed_and_tolerates_errors(
    repository: SegmentRepository,
    engine: AudioTransformEngine,
    paths_config: PathsConfig,
    audio_writer,
) -> None:
    repository.save_episode(Episode(id="ep1", podcast_id="pod", status="published"))
    add_recorded(repository, paths_config, audio_writer, "a", 3.0)
    publisher = RecordingPublisher(error=RuntimeError("feed down"))
    pipeline = RenderPipeline(
        repository=repository,
        engine=engine,
        runner=BackgroundJobRunner(InMemoryJobStatusRegistry()),
        paths=paths_config,
        publisher=publisher,  # type: ignore[arg-type]
        clock=lambda: NOW,
    )

    assert run(pipeline) is JobState.DONE
    assert publisher.published == ["pod"]


def test_scheduled_episode_is_not_announced(
    pipeline: RenderPipeline,
    repository: SegmentRepository,
    paths_config: PathsConfig,
    publisher: RecordingPublisher,
    audio_writer,
) -> None:
    repository.save_episode(
        Episode(id="ep1", podcast_id="pod", status="published", publish_at="2024-06-01T00:00:00Z")
    )
    add_recorded(repository, paths_config, audio_writer, "a", 3.0)

    assert run(pipeline) is JobState.DONE
    assert publisher.published == []


def test_waveform_failure_is_non_fatal(
    pipeline: RenderPipeline,
    repository: SegmentRepository,
    paths_config: PathsConfig,
    fake_waveform,
    audio_writer,
) -> None:
    add_recorded(repository, paths_config, audio_writer, "a", 3.0)
    fake_waveform.fail = True

    assert run(pipeline) is JobState.DONE


def test_start_removes_stale_episode_transcript(
    pipeline: RenderPipeline,
    repository: SegmentRepository,
    paths_config: PathsConfig,
    audio_writer,
) -> None:
    add_recorded(repository, paths_config, audio_writer, "a", 3.0)
    transcript = paths_config.episode_transcript_path("pod", "ep1")
    transcript.path.parent.mkdir(parents=True)
    transcript.path.write_text("old", encoding="utf-8")

    assert run(pipeline) is JobState.DONE
    assert not transcript.exists()


class ReadOnlyEditor:
    def can_edit(self, episode_id: str) -> bool:
        return False

    def can_transcribe(self) -> bool:
        return True


def test_render_requires_edit_permission(
    repository: SegmentRepository,
    engine: AudioTransformEngine,
    paths_config: PathsConfig,
    fake_ffmpeg,
    audio_writer,
) -> None:
    add_recorded(repository, paths_config, audio_writer, "a", 3.0)
    pipeline = RenderPipeline(
        repository=repository,
        engine=engine,
        runner=BackgroundJobRunner(InMemoryJobStatusRegistry()),
        paths=paths_config,
        permissions=ReadOnlyEditor(),
    )

    with pytest.raises(PermissionDeniedError):
        pipeline.start("ep1")
    assert fake_ffmpeg.calls == []
    assert pipeline.status("ep1").state is JobState.IDLE


def test_unremovable_stale_transcript_releases_the_job(
    pipeline: RenderPipeline,
    repository: SegmentRepository,
    paths_config: PathsConfig,
    audio_writer,
) -> None:
    add_recorded(repository, paths_config, audio_writer, "a", 3.0)
    transcript = paths_config.episode_transcript_path("pod", "ep1")
    transcript.path.mkdir(parents=True)

    with pytest.raises(OSError):
        pipeline.start("ep1")

    status = pipeline.status("ep1")
    assert status.state is JobState.FAILED
    assert status.error

    transcript.path.rmdir()
    assert run(pipeline) is JobState.DONE


def test_thread_start_failure_releases_the_job(
    pipeline: RenderPipeline,
    repository: SegmentRepository,
    paths_config: PathsConfig,
    audio_writer,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    add_recorded(repository, paths_config, audio_writer, "a", 3.0)

    def refuse(self) -> None:
        raise RuntimeError("can't start new thread")

    monkeypatch.setattr("segment_studio.pipelines.jobs.threading.Thread.start", refuse)

    with pytest.raises(RuntimeError):
        pipeline.start("ep1")

    status = pipeline.status("ep1")
    assert status.state is JobState.FAILED
    assert status.error == "can't start new thread"
    assert pipeline.runner.handle_for(JobKey(JobKind.RENDER, "ep1")) is None


def test_podcast_format_override_replaces_previous_render(
    pipeline: RenderPipeline,
    repository: SegmentRepository,
    paths_config: PathsConfig,
    audio_writer,
) -> None:
    add_recorded(repository, paths_config, audio_writer, "a", 3.0)
    assert run(pipeline) is JobState.DONE
    mp3 = paths_config.final_output_path("pod", "ep1", "mp3")
    assert mp3.exists()

    repository.save_podcast(Podcast(id="pod", final_format="m4a", final_channels="stereo"))
    assert run(pipeline) is JobState.DONE

    m4a = paths_config.final_output_path("pod", "ep1", "m4a")
    episode = repository.get_episode("ep1")
    assert episode.audio_final_path == m4a.path
    assert episode.audio_mime == "audio/mp4"
    assert m4a.exists()
    assert not mp3.exists()
