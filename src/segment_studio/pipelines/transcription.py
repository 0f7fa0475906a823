"""Background transcription of a rendered episode into ``transcript.srt``."""

from __future__ import annotations

from ..exceptions import (
    JobConflictError,
    NotFoundError,
    PathEscapeError,
    ProcessingError,
    TranscriptionNotConfiguredError,
)
from ..permissions import AllowAll, PermissionChecker, require_edit, require_transcribe
from ..storage.models import Episode
from ..storage.paths import PathsConfig
from ..storage.repository import SegmentRepository
from ..storage.sandbox import SandboxedPath
from ..subtitles.track import sanitize_transcript_text
from ..utils.logging import get_logger
from .asr import TranscriptionGateway
from .jobs import BackgroundJobRunner, CancellationToken, JobHandle, JobKey, JobKind, JobStatus, StartResult

LOGGER = get_logger(__name__)

__all__ = ["EpisodeTranscriptionService", "TRANSCRIPTION_FAILED_MESSAGE"]

TRANSCRIPTION_FAILED_MESSAGE = "Transcription service failed. Check Settings and try again."


class EpisodeTranscriptionService:
    def __init__(
        self,
        *,
        repository: SegmentRepository,
        gateway: TranscriptionGateway,
        runner: BackgroundJobRunner,
        paths: PathsConfig,
        permissions: PermissionChecker | None = None,
    ) -> None:
        self.repository = repository
        self.gateway = gateway
        self.runner = runner
        self.paths = paths
        self.permissions = permissions or AllowAll()

    def start(self, episode_id: str) -> JobHandle:
        """Dispatch transcription of the episode's final audio.

        Checks run in order: final audio exists, a provider is configured,
        the caller may edit the episode and transcribe, no transcription is
        already running.
        """
        episode = self.repository.get_episode(episode_id)
        audio = self._final_audio(episode)
        if not self.gateway.is_configured():
            raise TranscriptionNotConfiguredError(
                "Transcription is not configured. Choose a provider in Settings."
            )
        require_edit(self.permissions, episode_id)
        require_transcribe(self.permissions)

        key = JobKey(JobKind.TRANSCRIBE, episode_id)
        if self.runner.registry.try_start(key) is StartResult.CONFLICT:
            raise JobConflictError("Transcript is already being generated.")
        return self.runner.dispatch(key, lambda token: self._transcribe(episode, audio, token))

    def status(self, episode_id: str) -> JobStatus:
        return self.runner.registry.read_and_clear(JobKey(JobKind.TRANSCRIBE, episode_id))

    def get_transcript(self, episode_id: str) -> str | None:
        episode = self.repository.get_episode(episode_id)
        target = self.paths.episode_transcript_path(episode.podcast_id, episode.id)
        if not target.is_file():
            return None
        return target.path.read_text(encoding="utf-8")

    def update_transcript(self, episode_id: str, text: str) -> str:
        """Replace the episode transcript with sanitized ``text``."""
        episode = self.repository.get_episode(episode_id)
        require_edit(self.permissions, episode_id)
        cleaned = sanitize_transcript_text(text)
        target = self.paths.episode_transcript_path(episode.podcast_id, episode.id)
        target.path.parent.mkdir(parents=True, exist_ok=True)
        target.path.write_text(cleaned, encoding="utf-8")
        return cleaned

    # ------------------------------------------------------------------ #
    # Internal helpers
    # ------------------------------------------------------------------ #
    def _final_audio(self, episode: Episode) -> SandboxedPath:
        if episode.audio_final_path is None:
            raise NotFoundError("Build the episode before generating a transcript.")
        base = self.paths.processed_dir(episode.podcast_id, episode.id)
        try:
            audio = SandboxedPath.validate(episode.audio_final_path, base)
        except PathEscapeError as exc:
            raise NotFoundError("Final episode audio not found.") from exc
        if not audio.is_file():
            raise NotFoundError("Final episode audio not found.")
        return audio

    def _transcribe(self, episode: Episode, audio: SandboxedPath, token: CancellationToken) -> None:
        token.raise_if_cancelled()
        srt = self.gateway.transcribe(audio)
        if srt is None:
            raise ProcessingError(TRANSCRIPTION_FAILED_MESSAGE)

        token.raise_if_cancelled()
        target = self.paths.episode_transcript_path(episode.podcast_id, episode.id)
        target.path.parent.mkdir(parents=True, exist_ok=True)
        target.path.write_text(srt, encoding="utf-8")
        LOGGER.info("Wrote episode transcript %s.", target)
