"""Build the final episode file from its ordered segments."""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import datetime, timezone

from ..exceptions import JobConflictError, NotFoundError, PathEscapeError, ProcessingError, ValidationError
from ..permissions import AllowAll, PermissionChecker, require_edit
from ..publishing.websub import FeedPublisher
from ..storage.models import Episode, RecordedSource, ReusableAsset, Segment
from ..storage.paths import PathsConfig
from ..storage.repository import SegmentRepository
from ..storage.sandbox import ArtifactKind, SandboxedPath
from ..utils.logging import get_logger
from .audio_transform import AudioTransformEngine, RenderSettings
from .jobs import BackgroundJobRunner, CancellationToken, JobHandle, JobKey, JobKind, JobStatus, StartResult

LOGGER = get_logger(__name__)

__all__ = ["RenderInput", "RenderPipeline", "copyright_snapshot"]


@dataclass(frozen=True, slots=True)
class RenderInput:
    """A segment whose audio file exists and was validated for rendering."""

    segment: Segment
    audio: SandboxedPath
    asset: ReusableAsset | None = None


def copyright_snapshot(inputs: Sequence[RenderInput]) -> str | None:
    """``"{name} by {copyright}"`` per library segment that carries a copyright."""
    lines: list[str] = []
    for item in inputs:
        if item.asset is None:
            continue
        holder = (item.asset.copyright or "").strip()
        if not holder:
            continue
        label = item.segment.name or item.asset.name or "Segment"
        lines.append(f"{label} by {holder}")
    return "\n".join(lines) if lines else None


class RenderPipeline:
    """Concatenates an episode's segments in a background job.

    ``start`` validates synchronously and returns as soon as the job is
    dispatched; progress is observed through :meth:`status`.
    """

    def __init__(
        self,
        *,
        repository: SegmentRepository,
        engine: AudioTransformEngine,
        runner: BackgroundJobRunner,
        paths: PathsConfig,
        settings: RenderSettings | None = None,
        publisher: FeedPublisher | None = None,
        permissions: PermissionChecker | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.repository = repository
        self.engine = engine
        self.runner = runner
        self.paths = paths
        self.settings = settings or RenderSettings()
        self.publisher = publisher
        self.permissions = permissions or AllowAll()
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def start(self, episode_id: str) -> JobHandle:
        episode = self.repository.get_episode(episode_id)
        require_edit(self.permissions, episode_id)
        segments = self.repository.list_segments(episode_id)
        if not segments:
            raise ValidationError("Add at least one segment before building the episode.")

        inputs = self.resolve_inputs(episode, segments)
        if not inputs:
            raise ValidationError("No segment audio files found to build the episode.")

        key = JobKey(JobKind.RENDER, episode_id)
        if self.runner.registry.try_start(key) is StartResult.CONFLICT:
            raise JobConflictError("Episode is already building.")

        try:
            stale = self.paths.episode_transcript_path(episode.podcast_id, episode.id)
            if stale.exists():
                LOGGER.info("Removing stale transcript %s before rebuilding.", stale)
                stale.path.unlink(missing_ok=True)
        except BaseException as exc:
            self.runner.abandon(key, exc)
            raise

        return self.runner.dispatch(key, lambda token: self._render(episode, inputs, token))

    def status(self, episode_id: str) -> JobStatus:
        return self.runner.registry.read_and_clear(JobKey(JobKind.RENDER, episode_id))

    def resolve_inputs(self, episode: Episode, segments: Sequence[Segment]) -> list[RenderInput]:
        """Current audio for each segment; missing or out-of-sandbox files are skipped."""
        inputs: list[RenderInput] = []
        for segment in segments:
            asset: ReusableAsset | None = None
            if isinstance(segment.source, RecordedSource):
                raw_path = segment.source.audio_path
                base = self.paths.uploads_dir(episode.podcast_id, episode.id)
            else:
                if segment.source.asset_id is None:
                    LOGGER.warning("Segment %s references a deleted library asset.", segment.id)
                    continue
                try:
                    asset = self.repository.get_asset(segment.source.asset_id)
                except NotFoundError:
                    LOGGER.warning("Segment %s references a missing library asset.", segment.id)
                    continue
                raw_path = asset.audio_path
                base = self.paths.library_dir()

            try:
                audio = SandboxedPath.validate(raw_path, base)
            except PathEscapeError as exc:
                LOGGER.warning("Skipping segment %s: %s", segment.id, exc)
                continue
            if not audio.is_file():
                LOGGER.warning("Skipping segment %s: audio file %s is missing.", segment.id, audio)
                continue
            inputs.append(RenderInput(segment=segment, audio=audio, asset=asset))
        return inputs

    # ------------------------------------------------------------------ #
    # Background work
    # ------------------------------------------------------------------ #
    def _render(
        self,
        episode: Episode,
        inputs: Sequence[RenderInput],
        token: CancellationToken,
    ) -> None:
        podcast = self.repository.get_podcast(episode.podcast_id)
        settings = self.settings.with_overrides(
            format=podcast.final_format,
            bitrate_kbps=podcast.final_bitrate_kbps,
            channels=podcast.final_channels,
        )
        output = self.paths.final_output_path(podcast.id, episode.id, settings.format)

        token.raise_if_cancelled()
        self.engine.concatenate([item.audio for item in inputs], output, settings=settings)

        token.raise_if_cancelled()
        probe = self.engine.probe(output)
        self.repository.update_episode_audio(
            episode.id,
            audio_path=output.path,
            duration_sec=probe.duration_sec,
            size_bytes=probe.size_bytes,
            mime_type=probe.mime_type,
            copyright_snapshot=copyright_snapshot(inputs),
        )
        self._remove_previous_output(episode, output)

        current = self.repository.get_episode(episode.id)
        if self.publisher is not None and current.is_publicly_visible(self._clock()):
            try:
                self.publisher.publish(podcast)
            except Exception as exc:
                LOGGER.warning("Feed update after render of %s failed: %s", episode.id, exc)

        try:
            self.engine.generate_waveform_peaks(output)
        except ProcessingError as exc:
            LOGGER.warning("Waveform generation failed after render of %s: %s", episode.id, exc)

    def _remove_previous_output(self, episode: Episode, output: SandboxedPath) -> None:
        """Delete the last render when it had a different container than the new one."""
        previous = episode.audio_final_path
        if previous is None:
            return
        try:
            old = SandboxedPath.validate(previous, output.base_dir)
        except PathEscapeError:
            return
        if old.path == output.path:
            return
        LOGGER.info("Removing previous render %s.", old)
        old.path.unlink(missing_ok=True)
        waveform = old.sibling(ArtifactKind.WAVEFORM)
        if waveform.path != output.sibling(ArtifactKind.WAVEFORM).path:
            waveform.path.unlink(missing_ok=True)
