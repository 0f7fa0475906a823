"""Ordered segment timelines and the edits that can be made to them.

Destructive audio edits never modify a segment's file in place. The engine
writes a temporary result, which is copied into the ``.wav`` sibling of the
current audio; the transcript is remapped into the new sibling, the probed
duration is persisted and only then are the superseded files removed.
"""

from __future__ import annotations

import shutil
import threading
import uuid
from collections.abc import Callable, Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

from ..exceptions import (
    JobConflictError,
    NotFoundError,
    PathEscapeError,
    ProcessingError,
    TranscriptionNotConfiguredError,
    ValidationError,
)
from ..permissions import AllowAll, PermissionChecker, require_edit, require_transcribe
from ..storage.models import Episode, RecordedSource, ReusableAsset, ReusableSource, Segment
from ..storage.paths import PathsConfig
from ..storage.repository import SegmentRepository
from ..storage.sandbox import ArtifactKind, SandboxedPath
from ..subtitles.track import (
    SilenceSpan,
    format_srt,
    parse_srt,
    remap_after_silence_removal,
    remap_after_trim,
    remove_cue_and_shift,
    sanitize_transcript_text,
)
from ..utils.logging import get_logger
from .asr import TranscriptionGateway
from .audio_transform import AudioTransformEngine, discard
from .transcription import TRANSCRIPTION_FAILED_MESSAGE

LOGGER = get_logger(__name__)

__all__ = ["SegmentLocks", "SegmentStore"]


class SegmentLocks:
    """Advisory per-segment locks; a second holder fails instead of waiting."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._held: set[str] = set()

    @contextmanager
    def hold(self, segment_id: str) -> Iterator[None]:
        with self._guard:
            if segment_id in self._held:
                raise JobConflictError("Segment is being edited by another request.")
            self._held.add(segment_id)
        try:
            yield
        finally:
            with self._guard:
                self._held.discard(segment_id)

    def is_held(self, segment_id: str) -> bool:
        with self._guard:
            return segment_id in self._held


@dataclass(slots=True)
class _Target:
    episode: Episode
    segment: Segment


class SegmentStore:
    """Segment CRUD plus trim, silence removal, denoise and per-segment transcripts."""

    def __init__(
        self,
        *,
        repository: SegmentRepository,
        engine: AudioTransformEngine,
        paths: PathsConfig,
        gateway: TranscriptionGateway | None = None,
        permissions: PermissionChecker | None = None,
        locks: SegmentLocks | None = None,
        id_factory: Callable[[], str] | None = None,
    ) -> None:
        self.repository = repository
        self.engine = engine
        self.paths = paths
        self.gateway = gateway
        self.permissions = permissions or AllowAll()
        self.locks = locks or SegmentLocks()
        self._new_id = id_factory or (lambda: uuid.uuid4().hex)

    # ------------------------------------------------------------------ #
    # Timeline
    # ------------------------------------------------------------------ #
    def list_segments(self, episode_id: str) -> list[Segment]:
        self.repository.get_episode(episode_id)
        return self.repository.list_segments(episode_id)

    def add_recorded(self, episode_id: str, upload: str | Path, *, name: str | None = None) -> Segment:
        """Copy an uploaded recording into the episode and append it as a segment."""
        episode = self.repository.get_episode(episode_id)
        require_edit(self.permissions, episode_id)
        source = Path(upload)
        if not source.is_file():
            raise NotFoundError(f"Upload {source} not found.")

        segment_id = self._new_id()
        target = self.paths.segment_audio_path(
            episode.podcast_id, episode.id, segment_id, source.suffix or ".wav"
        )
        target.path.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(source, target.path)
        try:
            duration = self.engine.probe(target).duration_sec
        except ProcessingError:
            target.path.unlink(missing_ok=True)
            raise

        segment = self.repository.insert_segment(
            segment_id=segment_id,
            episode_id=episode_id,
            source=RecordedSource(target.path),
            duration_sec=duration,
            name=_clean_name(name),
        )
        self._refresh_waveform(target)
        LOGGER.info("Added recorded segment %s to episode %s.", segment_id, episode_id)
        return segment

    def add_reusable(self, episode_id: str, asset_id: str, *, name: str | None = None) -> Segment:
        self.repository.get_episode(episode_id)
        require_edit(self.permissions, episode_id)
        asset = self.repository.get_asset(asset_id)
        return self.repository.insert_segment(
            segment_id=self._new_id(),
            episode_id=episode_id,
            source=ReusableSource(asset.id),
            duration_sec=asset.duration_sec,
            name=_clean_name(name),
        )

    def reorder(self, episode_id: str, segment_ids: Sequence[str]) -> list[Segment]:
        self.repository.get_episode(episode_id)
        require_edit(self.permissions, episode_id)
        self.repository.reorder_segments(episode_id, list(segment_ids))
        return self.repository.list_segments(episode_id)

    def rename(self, episode_id: str, segment_id: str, name: str | None) -> Segment:
        self._load(episode_id, segment_id)
        require_edit(self.permissions, episode_id)
        self.repository.rename_segment(episode_id, segment_id, _clean_name(name))
        return self.repository.get_segment(episode_id, segment_id)

    def delete(self, episode_id: str, segment_id: str) -> None:
        """Remove a segment; a recorded segment's audio and siblings go with it."""
        target = self._load(episode_id, segment_id)
        require_edit(self.permissions, episode_id)
        with self.locks.hold(segment_id):
            self.repository.delete_segment(episode_id, segment_id)
            source = target.segment.source
            if not isinstance(source, RecordedSource):
                return
            try:
                audio = SandboxedPath.validate(source.audio_path, self._uploads(target.episode))
            except PathEscapeError as exc:
                LOGGER.warning("Not removing files of segment %s: %s", segment_id, exc)
                return
            _remove_with_siblings(audio)

    # ------------------------------------------------------------------ #
    # Audio edits
    # ------------------------------------------------------------------ #
    def trim(
        self,
        episode_id: str,
        segment_id: str,
        *,
        start_sec: float | None = None,
        end_sec: float | None = None,
    ) -> Segment:
        """Keep ``[start_sec, end_sec]``; defaults are the start and end of the audio."""
        target = self._load(episode_id, segment_id)
        require_edit(self.permissions, episode_id)
        with self.locks.hold(segment_id):
            audio = self._recorded_audio(target, action="trimmed")
            start = 0.0 if start_sec is None else float(start_sec)
            end = self.engine.probe(audio).duration_sec if end_sec is None else float(end_sec)

            transcript = self._read_transcript(audio)
            temp = self.engine.trim(audio, start_sec=start, end_sec=end)
            with _discard_on_error(temp):
                if transcript is not None:
                    transcript = format_srt(remap_after_trim(parse_srt(transcript), start, end))
            return self._replace_audio(target, audio, temp, transcript=transcript, fallback_duration=end - start)

    def remove_silence(
        self,
        episode_id: str,
        segment_id: str,
        *,
        min_silence_sec: float | None = None,
        threshold_db: float | None = None,
    ) -> list[SilenceSpan]:
        """Cut detected silence out of the segment; returns the removed spans."""
        target = self._load(episode_id, segment_id)
        require_edit(self.permissions, episode_id)
        with self.locks.hold(segment_id):
            audio = self._recorded_audio(target, action="edited")
            transcript = self._read_transcript(audio)
            temp, spans = self.engine.remove_silence(
                audio, min_silence_sec=min_silence_sec, threshold_db=threshold_db
            )
            with _discard_on_error(temp):
                if transcript is not None and spans:
                    transcript = format_srt(remap_after_silence_removal(parse_srt(transcript), spans))
            removed = sum(span.duration_sec for span in spans)
            self._replace_audio(
                target,
                audio,
                temp,
                transcript=transcript,
                fallback_duration=max(0.0, target.segment.duration_sec - removed),
            )
            return spans

    def noise_suppress(self, episode_id: str, segment_id: str, *, level_db: float | None = None) -> Segment:
        target = self._load(episode_id, segment_id)
        require_edit(self.permissions, episode_id)
        with self.locks.hold(segment_id):
            audio = self._recorded_audio(target, action="denoised")
            transcript = self._read_transcript(audio)
            temp = self.engine.apply_noise_suppression(audio, level_db=level_db)
            return self._replace_audio(
                target,
                audio,
                temp,
                transcript=transcript,
                fallback_duration=target.segment.duration_sec,
            )

    # ------------------------------------------------------------------ #
    # Transcripts
    # ------------------------------------------------------------------ #
    def get_transcript(self, episode_id: str, segment_id: str) -> str | None:
        target = self._load(episode_id, segment_id)
        return self._read_transcript(self._segment_audio(target))

    def generate_transcript(self, episode_id: str, segment_id: str, *, regenerate: bool = False) -> str:
        """Return the segment transcript, asking the provider when none exists yet."""
        target = self._load(episode_id, segment_id)
        require_edit(self.permissions, episode_id)
        with self.locks.hold(segment_id):
            audio = self._segment_audio(target)
            existing = self._read_transcript(audio)
            if existing is not None and not regenerate:
                return existing

            if self.gateway is None or not self.gateway.is_configured():
                raise TranscriptionNotConfiguredError(
                    "Transcription is not configured. Choose a provider in Settings."
                )
            require_transcribe(self.permissions)
            srt = self.gateway.transcribe(audio)
            if srt is None:
                raise ProcessingError(TRANSCRIPTION_FAILED_MESSAGE)
            audio.sibling(ArtifactKind.TRANSCRIPT).path.write_text(srt, encoding="utf-8")
            return srt

    def update_transcript(self, episode_id: str, segment_id: str, text: str) -> str:
        target = self._load(episode_id, segment_id)
        require_edit(self.permissions, episode_id)
        with self.locks.hold(segment_id):
            cleaned = sanitize_transcript_text(text)
            sibling = self._segment_audio(target).sibling(ArtifactKind.TRANSCRIPT)
            sibling.path.write_text(cleaned, encoding="utf-8")
            return cleaned

    def delete_transcript(
        self,
        episode_id: str,
        segment_id: str,
        *,
        entry_index: int | None = None,
    ) -> str | None:
        """Delete the whole transcript, or one cue together with its audio.

        With ``entry_index`` (0-based) the cue's time span is cut from the audio
        and later cues shift back by its length. A library segment is first
        copied into the episode and becomes a recorded segment. Returns the
        remaining transcript, or None when the whole file was removed.
        """
        target = self._load(episode_id, segment_id)
        require_edit(self.permissions, episode_id)
        with self.locks.hold(segment_id):
            audio = self._segment_audio(target)
            transcript = self._read_transcript(audio)
            if transcript is None:
                raise NotFoundError("Segment has no transcript.")

            if entry_index is None:
                audio.sibling(ArtifactKind.TRANSCRIPT).path.unlink(missing_ok=True)
                return None

            cues = parse_srt(transcript)
            if entry_index < 0 or entry_index >= len(cues):
                raise ValidationError(f"Transcript entry {entry_index} does not exist.")
            cue = cues[entry_index]
            removed = cue.end_sec - cue.start_sec
            remaining = remove_cue_and_shift(cues, entry_index, removed)

            owned = self._take_ownership(target, audio)
            try:
                temp = self.engine.remove_span(owned, start_sec=cue.start_sec, end_sec=cue.end_sec)
            except Exception:
                if owned.path != audio.path:
                    owned.path.unlink(missing_ok=True)
                raise
            self._replace_audio(
                target,
                owned,
                temp,
                transcript=remaining,
                fallback_duration=max(0.0, target.segment.duration_sec - removed),
            )
            return remaining

    def waveform_path(self, episode_id: str, segment_id: str) -> Path:
        """Peaks file for the segment's audio, generated on first request."""
        target = self._load(episode_id, segment_id)
        audio = self._segment_audio(target)
        sibling = audio.sibling(ArtifactKind.WAVEFORM)
        if sibling.is_file():
            return sibling.path
        return self.engine.generate_waveform_peaks(audio)

    # ------------------------------------------------------------------ #
    # Internal helpers
    # ------------------------------------------------------------------ #
    def _load(self, episode_id: str, segment_id: str) -> _Target:
        episode = self.repository.get_episode(episode_id)
        return _Target(episode=episode, segment=self.repository.get_segment(episode_id, segment_id))

    def _uploads(self, episode: Episode) -> Path:
        return self.paths.uploads_dir(episode.podcast_id, episode.id)

    def _recorded_audio(self, target: _Target, *, action: str) -> SandboxedPath:
        if not isinstance(target.segment.source, RecordedSource):
            raise ValidationError(f"Only recorded segments can be {action}.")
        return self._segment_audio(target)

    def _segment_audio(self, target: _Target) -> SandboxedPath:
        source = target.segment.source
        if isinstance(source, RecordedSource):
            audio = SandboxedPath.validate(source.audio_path, self._uploads(target.episode))
        else:
            asset = self._asset(source)
            audio = SandboxedPath.validate(asset.audio_path, self.paths.library_dir())
        if not audio.is_file():
            raise NotFoundError(f"Audio for segment {target.segment.id} not found.")
        return audio

    def _asset(self, source: ReusableSource) -> ReusableAsset:
        if source.asset_id is None:
            raise NotFoundError("The library asset for this segment was deleted.")
        return self.repository.get_asset(source.asset_id)

    def _take_ownership(self, target: _Target, audio: SandboxedPath) -> SandboxedPath:
        """Recorded audio as-is; library audio copied into the episode's uploads."""
        if isinstance(target.segment.source, RecordedSource):
            return audio
        copy = self.paths.segment_audio_path(
            target.episode.podcast_id,
            target.episode.id,
            target.segment.id,
            audio.path.suffix or ".wav",
        )
        copy.path.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(audio.path, copy.path)
        LOGGER.info("Copied library audio for segment %s into %s.", target.segment.id, copy)
        return copy

    def _read_transcript(self, audio: SandboxedPath) -> str | None:
        sibling = audio.sibling(ArtifactKind.TRANSCRIPT)
        if not sibling.is_file():
            return None
        return sibling.path.read_text(encoding="utf-8")

    def _replace_audio(
        self,
        target: _Target,
        audio: SandboxedPath,
        temp: Path,
        *,
        transcript: str | None,
        fallback_duration: float,
    ) -> Segment:
        """Commit ``temp`` next to ``audio`` and make it the segment's recorded source."""
        if temp.suffix.lower() == audio.path.suffix.lower():
            final = audio
        else:
            final = audio.sibling(ArtifactKind.AUDIO_WAV)
        self.engine.commit(temp, final)

        transcript_path = final.sibling(ArtifactKind.TRANSCRIPT)
        if transcript:
            transcript_path.path.write_text(transcript, encoding="utf-8")
        else:
            transcript_path.path.unlink(missing_ok=True)

        try:
            duration = self.engine.probe(final).duration_sec
        except ProcessingError as exc:
            LOGGER.warning("Could not probe edited audio %s, estimating duration: %s", final, exc)
            duration = fallback_duration

        segment = target.segment
        self.repository.update_segment_source(
            segment.episode_id,
            segment.id,
            source=RecordedSource(final.path),
            duration_sec=duration,
        )

        if final.path != audio.path:
            _remove_orphans(audio, keep=final)
        self._refresh_waveform(final)
        return self.repository.get_segment(segment.episode_id, segment.id)

    def _refresh_waveform(self, audio: SandboxedPath) -> None:
        try:
            self.engine.generate_waveform_peaks(audio)
        except ProcessingError as exc:
            LOGGER.warning("Waveform generation failed for %s: %s", audio, exc)


@contextmanager
def _discard_on_error(temp: Path) -> Iterator[None]:
    """Remove an uncommitted engine output when the block fails."""
    try:
        yield
    except BaseException:
        discard(temp)
        raise


def _clean_name(name: str | None) -> str | None:
    if name is None:
        return None
    return name.strip() or None


def _remove_with_siblings(audio: SandboxedPath) -> None:
    for path in (
        audio,
        audio.sibling(ArtifactKind.TRANSCRIPT),
        audio.sibling(ArtifactKind.WAVEFORM),
    ):
        path.path.unlink(missing_ok=True)


def _remove_orphans(old: SandboxedPath, *, keep: SandboxedPath) -> None:
    """Delete ``old`` and any sibling of it that ``keep`` no longer shares."""
    old.path.unlink(missing_ok=True)
    for kind in (ArtifactKind.TRANSCRIPT, ArtifactKind.WAVEFORM):
        stale = old.sibling(kind)
        if stale.path != keep.sibling(kind).path:
            stale.path.unlink(missing_ok=True)
