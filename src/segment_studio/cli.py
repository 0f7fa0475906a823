"""Command-line entrypoints for Segment Studio."""

from __future__ import annotations

import json
import shutil
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import List, Optional

import typer

from segment_studio.context import AppContext, build_default_context
from segment_studio.exceptions import (
    JobConflictError,
    NotFoundError,
    PermissionDeniedError,
    SegmentStudioError,
    ValidationError,
)
from segment_studio.pipelines.jobs import JobKind, JobState, JobStatus
from segment_studio.storage.models import Episode, Podcast, ReusableAsset, Segment
from segment_studio.storage.sandbox import SandboxedPath, require_safe_id

app = typer.Typer(help="Edit podcast episode segments and build final episode audio.")

ENV_OPTION = typer.Option("dev", "--env", help="Configuration environment to load (default: dev).")

USAGE_ERRORS = (ValidationError, NotFoundError, PermissionDeniedError, JobConflictError)


def _context(env: str) -> AppContext:
    try:
        return build_default_context(env)
    except Exception as exc:  # pragma: no cover - configuration safety
        typer.echo(f"Failed to load configuration: {exc}", err=True)
        raise typer.Exit(code=2) from exc


@contextmanager
def _reported_errors() -> Iterator[None]:
    """Print domain errors to stderr; usage errors exit 2, processing errors exit 1."""
    try:
        yield
    except USAGE_ERRORS as exc:
        typer.echo(str(exc), err=True)
        raise typer.Exit(code=2) from exc
    except SegmentStudioError as exc:
        typer.echo(str(exc), err=True)
        raise typer.Exit(code=1) from exc


def _describe(segment: Segment) -> str:
    label = segment.name or "(unnamed)"
    return f"{segment.position:>3}  {segment.id}  {segment.kind.value:<8}  {segment.duration_sec:8.2f}s  {label}"


def _finish_job(status: JobStatus, kind: JobKind) -> None:
    typer.echo(json.dumps(status.to_payload(kind)))
    if status.state is JobState.FAILED:
        raise typer.Exit(code=1)


# ---------------------------------------------------------------------- #
# Setup
# ---------------------------------------------------------------------- #
@app.command("init-db")
def init_db(env: str = ENV_OPTION) -> None:
    """Create data directories and apply database migrations."""
    context = _context(env)
    typer.echo(f"Database ready at {context.paths.database}")


@app.command("add-podcast")
def add_podcast(
    podcast_id: str = typer.Argument(..., help="Podcast identifier."),
    title: str = typer.Option("", "--title", help="Display title."),
    feed_url: Optional[str] = typer.Option(None, "--feed-url", help="Public feed URL announced to WebSub."),
    final_format: Optional[str] = typer.Option(None, "--format", help="Final audio format: mp3 or m4a."),
    bitrate: Optional[int] = typer.Option(None, "--bitrate", help="Final bitrate in kbps."),
    channels: Optional[str] = typer.Option(None, "--channels", help="mono or stereo."),
    env: str = ENV_OPTION,
) -> None:
    """Create or update a podcast and its final render settings."""
    context = _context(env)
    with _reported_errors():
        require_safe_id(podcast_id, label="podcast id")
        context.repository.save_podcast(
            Podcast(
                id=podcast_id,
                title=title,
                feed_url=feed_url,
                final_format=final_format,
                final_bitrate_kbps=bitrate,
                final_channels=channels,
            )
        )
    typer.echo(f"Saved podcast {podcast_id}")


@app.command("add-episode")
def add_episode(
    podcast_id: str = typer.Argument(..., help="Owning podcast identifier."),
    episode_id: str = typer.Argument(..., help="Episode identifier."),
    title: str = typer.Option("", "--title", help="Display title."),
    status: str = typer.Option("draft", "--status", help="draft or published."),
    publish_at: Optional[str] = typer.Option(None, "--publish-at", help="ISO-8601 publish time."),
    env: str = ENV_OPTION,
) -> None:
    """Create or update an episode."""
    context = _context(env)
    with _reported_errors():
        require_safe_id(episode_id, label="episode id")
        context.repository.get_podcast(podcast_id)
        context.repository.save_episode(
            Episode(id=episode_id, podcast_id=podcast_id, title=title, status=status, publish_at=publish_at)
        )
    typer.echo(f"Saved episode {episode_id}")


@app.command("add-asset")
def add_asset(
    asset_id: str = typer.Argument(..., help="Library asset identifier."),
    audio: Path = typer.Argument(..., help="Audio file to copy into the library."),
    name: str = typer.Option(..., "--name", help="Display name."),
    copyright_holder: Optional[str] = typer.Option(None, "--copyright", help="Copyright holder."),
    license_name: Optional[str] = typer.Option(None, "--license", help="License name."),
    env: str = ENV_OPTION,
) -> None:
    """Add a reusable intro, outro or jingle to the library."""
    context = _context(env)
    source = audio.expanduser().resolve()
    if not source.is_file():
        typer.echo(f"Input file not found: {source}", err=True)
        raise typer.Exit(code=2)
    with _reported_errors():
        require_safe_id(asset_id, label="asset id")
        target = SandboxedPath.validate(f"{asset_id}{source.suffix.lower()}", context.paths.library_dir())
        shutil.copyfile(source, target.path)
        duration = context.engine.probe(target).duration_sec
        context.repository.save_asset(
            ReusableAsset(
                id=asset_id,
                name=name,
                audio_path=target.path,
                duration_sec=duration,
                copyright=copyright_holder,
                license=license_name,
            )
        )
    typer.echo(f"Saved asset {asset_id} ({duration:.2f}s)")


# ---------------------------------------------------------------------- #
# Segments
# ---------------------------------------------------------------------- #
@app.command("list")
def list_segments(
    episode_id: str = typer.Argument(..., help="Episode identifier."),
    env: str = ENV_OPTION,
) -> None:
    """Show an episode's segments in timeline order."""
    context = _context(env)
    with _reported_errors():
        segments = context.segments.list_segments(episode_id)
    if not segments:
        typer.echo("No segments.")
    for segment in segments:
        typer.echo(_describe(segment))


@app.command("add-recorded")
def add_recorded(
    episode_id: str = typer.Argument(..., help="Episode identifier."),
    audio: Path = typer.Argument(..., help="Recorded audio file to upload."),
    name: Optional[str] = typer.Option(None, "--name", help="Segment name."),
    env: str = ENV_OPTION,
) -> None:
    """Append a recorded segment to the episode."""
    context = _context(env)
    with _reported_errors():
        segment = context.segments.add_recorded(episode_id, audio.expanduser(), name=name)
    typer.echo(_describe(segment))


@app.command("add-reusable")
def add_reusable(
    episode_id: str = typer.Argument(..., help="Episode identifier."),
    asset_id: str = typer.Argument(..., help="Library asset identifier."),
    name: Optional[str] = typer.Option(None, "--name", help="Segment name."),
    env: str = ENV_OPTION,
) -> None:
    """Append a library asset to the episode."""
    context = _context(env)
    with _reported_errors():
        segment = context.segments.add_reusable(episode_id, asset_id, name=name)
    typer.echo(_describe(segment))


@app.command()
def reorder(
    episode_id: str = typer.Argument(..., help="Episode identifier."),
    segment_ids: List[str] = typer.Argument(..., help="Every segment id in the new order."),
    env: str = ENV_OPTION,
) -> None:
    """Set the segment order."""
    context = _context(env)
    with _reported_errors():
        segments = context.segments.reorder(episode_id, segment_ids)
    for segment in segments:
        typer.echo(_describe(segment))


@app.command()
def rename(
    episode_id: str = typer.Argument(..., help="Episode identifier."),
    segment_id: str = typer.Argument(..., help="Segment identifier."),
    name: str = typer.Argument(..., help="New name; empty clears it."),
    env: str = ENV_OPTION,
) -> None:
    """Rename a segment."""
    context = _context(env)
    with _reported_errors():
        segment = context.segments.rename(episode_id, segment_id, name)
    typer.echo(_describe(segment))


@app.command()
def delete(
    episode_id: str = typer.Argument(..., help="Episode identifier."),
    segment_id: str = typer.Argument(..., help="Segment identifier."),
    env: str = ENV_OPTION,
) -> None:
    """Remove a segment from the episode."""
    context = _context(env)
    with _reported_errors():
        context.segments.delete(episode_id, segment_id)
    typer.echo(f"Deleted segment {segment_id}")


@app.command()
def trim(
    episode_id: str = typer.Argument(..., help="Episode identifier."),
    segment_id: str = typer.Argument(..., help="Segment identifier."),
    start: Optional[float] = typer.Option(None, "--start", help="Keep from this second (default 0)."),
    end: Optional[float] = typer.Option(None, "--end", help="Keep until this second (default: end)."),
    env: str = ENV_OPTION,
) -> None:
    """Trim a recorded segment to a time range."""
    context = _context(env)
    with _reported_errors():
        segment = context.segments.trim(episode_id, segment_id, start_sec=start, end_sec=end)
    typer.echo(_describe(segment))


@app.command("remove-silence")
def remove_silence(
    episode_id: str = typer.Argument(..., help="Episode identifier."),
    segment_id: str = typer.Argument(..., help="Segment identifier."),
    min_silence: Optional[float] = typer.Option(None, "--min-silence", help="Shortest silence to cut, in seconds."),
    threshold: Optional[float] = typer.Option(None, "--threshold", help="Silence threshold in dB."),
    env: str = ENV_OPTION,
) -> None:
    """Cut long silences out of a recorded segment."""
    context = _context(env)
    with _reported_errors():
        spans = context.segments.remove_silence(
            episode_id, segment_id, min_silence_sec=min_silence, threshold_db=threshold
        )
    if not spans:
        typer.echo("No silence found.")
    for span in spans:
        typer.echo(f"Removed {span.start_sec:.2f}s - {span.end_sec:.2f}s")


@app.command()
def denoise(
    episode_id: str = typer.Argument(..., help="Episode identifier."),
    segment_id: str = typer.Argument(..., help="Segment identifier."),
    level: Optional[float] = typer.Option(None, "--level", help="Noise floor in dB (-80 to -20)."),
    env: str = ENV_OPTION,
) -> None:
    """Apply noise suppression to a recorded segment."""
    context = _context(env)
    with _reported_errors():
        segment = context.segments.noise_suppress(episode_id, segment_id, level_db=level)
    typer.echo(_describe(segment))


@app.command()
def transcript(
    episode_id: str = typer.Argument(..., help="Episode identifier."),
    segment_id: str = typer.Argument(..., help="Segment identifier."),
    generate: bool = typer.Option(False, "--generate", help="Transcribe if no transcript exists."),
    regenerate: bool = typer.Option(False, "--regenerate", help="Transcribe even if one exists."),
    remove: bool = typer.Option(False, "--delete", help="Delete the transcript."),
    entry: Optional[int] = typer.Option(
        None,
        "--entry",
        help="With --delete, remove only this 0-based cue and cut its audio.",
    ),
    env: str = ENV_OPTION,
) -> None:
    """Show, generate or delete a segment transcript."""
    context = _context(env)
    with _reported_errors():
        if remove:
            text = context.segments.delete_transcript(episode_id, segment_id, entry_index=entry)
        elif generate or regenerate:
            text = context.segments.generate_transcript(episode_id, segment_id, regenerate=regenerate)
        else:
            text = context.segments.get_transcript(episode_id, segment_id)
    if text:
        typer.echo(text)
    elif not remove:
        typer.echo("No transcript.")


# ---------------------------------------------------------------------- #
# Episode jobs
# ---------------------------------------------------------------------- #
@app.command()
def render(
    episode_id: str = typer.Argument(..., help="Episode identifier."),
    env: str = ENV_OPTION,
) -> None:
    """Build the final episode audio and wait for the result."""
    context = _context(env)
    with _reported_errors():
        handle = context.render.start(episode_id)
    typer.echo("building")
    handle.wait()
    _finish_job(context.render.status(episode_id), JobKind.RENDER)


@app.command()
def transcribe(
    episode_id: str = typer.Argument(..., help="Episode identifier."),
    env: str = ENV_OPTION,
) -> None:
    """Transcribe the built episode into transcript.srt and wait for the result."""
    context = _context(env)
    with _reported_errors():
        handle = context.transcription.start(episode_id)
    typer.echo("transcribing")
    handle.wait()
    _finish_job(context.transcription.status(episode_id), JobKind.TRANSCRIBE)


def main() -> None:
    """Entrypoint used by the console script."""
    app()


if __name__ == "__main__":
    main()
