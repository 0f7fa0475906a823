"""Wiring of configuration, storage and services into one application context."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

import requests

from .config import load_config
from .permissions import AllowAll, PermissionChecker
from .pipelines.asr import TranscriptionGateway, build_transcription_gateway
from .pipelines.audio_transform import AudioTransformEngine, RenderSettings, build_audio_engine
from .pipelines.jobs import BackgroundJobRunner, InMemoryJobStatusRegistry
from .pipelines.render import RenderPipeline
from .pipelines.segments import SegmentStore
from .pipelines.transcription import EpisodeTranscriptionService
from .publishing.websub import FeedRegenerator, build_feed_publisher
from .storage.db import SQLiteDatabase
from .storage.paths import PathsConfig, build_paths
from .storage.repository import SegmentRepository
from .utils.logging import configure_logging, get_logger

LOGGER = get_logger(__name__)

__all__ = ["AppContext", "build_default_context"]


@dataclass(slots=True)
class AppContext:
    """Runtime objects shared by the CLI and any embedding application."""

    config: Mapping[str, Any]
    paths: PathsConfig
    environment: str
    database: SQLiteDatabase
    repository: SegmentRepository
    engine: AudioTransformEngine
    gateway: TranscriptionGateway
    runner: BackgroundJobRunner
    segments: SegmentStore
    render: RenderPipeline
    transcription: EpisodeTranscriptionService


def build_default_context(
    env: str = "dev",
    overrides: Mapping[str, Any] | None = None,
    *,
    permissions: PermissionChecker | None = None,
    regenerate_feed: FeedRegenerator | None = None,
) -> AppContext:
    config = load_config(env, overrides=overrides)
    logging_section = config.get("logging")
    configure_logging(logging_section if isinstance(logging_section, Mapping) else None)

    paths = build_paths(config)
    paths.ensure_directories()

    database = SQLiteDatabase(paths.database)
    applied = database.run_migrations()
    if applied:
        LOGGER.info("Applied %d migration(s) to %s.", len(applied), paths.database)

    repository = SegmentRepository(database)
    engine = build_audio_engine(config, temp_dir=paths.temp_dir)
    session = requests.Session()
    gateway = build_transcription_gateway(
        config,
        duration_probe=lambda audio: engine.probe(audio).duration_sec,
        session=session,
    )
    runner = BackgroundJobRunner(InMemoryJobStatusRegistry())
    checker = permissions or AllowAll()

    return AppContext(
        config=config,
        paths=paths,
        environment=env,
        database=database,
        repository=repository,
        engine=engine,
        gateway=gateway,
        runner=runner,
        segments=SegmentStore(
            repository=repository,
            engine=engine,
            paths=paths,
            gateway=gateway,
            permissions=checker,
        ),
        render=RenderPipeline(
            repository=repository,
            engine=engine,
            runner=runner,
            paths=paths,
            settings=RenderSettings.from_config(config),
            publisher=build_feed_publisher(config, regenerate_feed=regenerate_feed, session=session),
            permissions=checker,
        ),
        transcription=EpisodeTranscriptionService(
            repository=repository,
            gateway=gateway,
            runner=runner,
            paths=paths,
            permissions=checker,
        ),
    )
