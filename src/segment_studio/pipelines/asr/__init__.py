"""Speech-to-text gateway over the configured transcription provider."""

from __future__ import annotations

from collections.abc import Callable, Mapping
from pathlib import Path

from requests import Session

from ...exceptions import OversizedInputError, ProcessingError
from ...storage.sandbox import SandboxedPath
from ...subtitles.track import format_srt
from ...utils.logging import get_logger
from .cloud import CloudASRClient, CloudASRSettings
from .self_hosted import SelfHostedASRClient, SelfHostedASRSettings, asr_endpoint

LOGGER = get_logger(__name__)

__all__ = [
    "CloudASRClient",
    "CloudASRSettings",
    "PROVIDERS",
    "SelfHostedASRClient",
    "SelfHostedASRSettings",
    "TranscriptionGateway",
    "asr_endpoint",
    "build_transcription_gateway",
]

PROVIDER_NONE = "none"
PROVIDER_SELF_HOSTED = "self_hosted"
PROVIDER_CLOUD = "cloud"
PROVIDERS = (PROVIDER_NONE, PROVIDER_SELF_HOSTED, PROVIDER_CLOUD)

DurationProbe = Callable[[SandboxedPath], float]


class TranscriptionGateway:
    """Routes audio to one provider and returns normalized SRT text.

    ``transcribe`` returns ``None`` whenever no transcript could be produced,
    including when no provider is configured; callers check
    :meth:`is_configured` first to tell the two apart. Audio larger than
    ``max_upload_bytes`` (or rejected by the provider with HTTP 413) raises
    :class:`OversizedInputError`.
    """

    def __init__(
        self,
        *,
        provider: str,
        self_hosted: SelfHostedASRClient | None = None,
        cloud: CloudASRClient | None = None,
        duration_probe: DurationProbe | None = None,
        max_upload_bytes: int | None = None,
    ) -> None:
        if provider not in PROVIDERS:
            raise ValueError(f"Unknown transcription provider '{provider}'.")
        self.provider = provider
        self._self_hosted = self_hosted
        self._cloud = cloud
        self._duration_probe = duration_probe
        self.max_upload_bytes = max_upload_bytes

    def is_configured(self) -> bool:
        if self.provider == PROVIDER_SELF_HOSTED:
            return self._self_hosted is not None and self._self_hosted.configured
        if self.provider == PROVIDER_CLOUD:
            return self._cloud is not None and self._cloud.configured
        return False

    def transcribe(self, path: str | Path | SandboxedPath, base_dir: str | Path | None = None) -> str | None:
        if isinstance(path, SandboxedPath) and base_dir is None:
            audio = path
        elif base_dir is None:
            raise TypeError("base_dir is required unless a SandboxedPath is given.")
        else:
            audio = SandboxedPath.validate(path, base_dir)

        if not self.is_configured():
            LOGGER.info("Transcription requested but provider '%s' is not configured.", self.provider)
            return None
        if not audio.is_file():
            LOGGER.warning("Audio for transcription not found: %s", audio)
            return None

        size = audio.path.stat().st_size
        if self.max_upload_bytes is not None and size > self.max_upload_bytes:
            raise OversizedInputError()

        duration = self._probe_duration(audio)
        if self.provider == PROVIDER_SELF_HOSTED and self._self_hosted is not None:
            cues = self._self_hosted.transcribe(audio, duration_sec=duration)
        elif self._cloud is not None:
            cues = self._cloud.transcribe(audio, duration_sec=duration)
        else:  # pragma: no cover - guarded by is_configured
            cues = None

        if not cues:
            return None
        return format_srt(cues)

    def _probe_duration(self, audio: SandboxedPath) -> float | None:
        if self._duration_probe is None:
            return None
        try:
            return self._duration_probe(audio)
        except ProcessingError as exc:
            LOGGER.debug("Could not probe %s before transcription: %s", audio, exc)
            return None


def build_transcription_gateway(
    config: Mapping[str, object],
    *,
    duration_probe: DurationProbe | None = None,
    session: Session | None = None,
) -> TranscriptionGateway:
    """Create the gateway described by the ``transcription`` config section."""

    section = config.get("transcription")
    section = section if isinstance(section, Mapping) else {}
    provider = str(section.get("provider") or PROVIDER_NONE)

    max_upload_mb = section.get("max_upload_mb")
    max_upload_bytes = (
        int(float(max_upload_mb) * 1024 * 1024)
        if isinstance(max_upload_mb, (int, float))
        else None
    )

    return TranscriptionGateway(
        provider=provider,
        self_hosted=SelfHostedASRClient(SelfHostedASRSettings.from_config(config), session=session),
        cloud=CloudASRClient(CloudASRSettings.from_config(config), session=session),
        duration_probe=duration_probe,
        max_upload_bytes=max_upload_bytes,
    )
