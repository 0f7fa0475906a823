"""Client for a self-hosted Whisper ASR web service."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

import requests
from requests import Response, Session

from ...exceptions import OversizedInputError
from ...storage.sandbox import SandboxedPath
from ...subtitles.track import SubtitleCue, cues_from_segments, parse_vtt, single_cue
from ...utils.logging import get_logger
from .common import content_type_for, cues_from_text, upload_filename

LOGGER = get_logger(__name__)

__all__ = ["SelfHostedASRClient", "SelfHostedASRSettings", "asr_endpoint"]

PAYLOAD_TOO_LARGE = 413


@dataclass(slots=True)
class SelfHostedASRSettings:
    url: str | None = None
    timeout_seconds: float = 600.0

    @classmethod
    def from_config(cls, config: Mapping[str, object]) -> SelfHostedASRSettings:
        section = config.get("transcription")
        section = section if isinstance(section, Mapping) else {}
        provider = section.get("self_hosted")
        provider = provider if isinstance(provider, Mapping) else {}
        url = str(provider.get("url") or "").strip()
        return cls(
            url=url or None,
            timeout_seconds=float(provider.get("timeout_seconds", 600.0)),
        )


def asr_endpoint(base_url: str) -> str:
    """Return ``base_url`` with an ``/asr`` path suffix and ``output=srt`` query."""
    parts = urlsplit(base_url.strip())
    path = parts.path.rstrip("/")
    if not path.endswith("asr"):
        path = f"{path}/asr"
    query = [(key, value) for key, value in parse_qsl(parts.query) if key != "output"]
    query.append(("output", "srt"))
    return urlunsplit((parts.scheme, parts.netloc, path, urlencode(query), parts.fragment))


class SelfHostedASRClient:
    """Posts audio to ``{url}/asr?output=srt`` and normalizes the reply into cues.

    Any transport error, non-success status or unusable body yields ``None``.
    HTTP 413 is reported as :class:`OversizedInputError` instead.
    """

    def __init__(self, settings: SelfHostedASRSettings, *, session: Session | None = None) -> None:
        self.settings = settings
        self._session = session or requests.Session()

    @property
    def configured(self) -> bool:
        return bool(self.settings.url)

    def transcribe(
        self, audio: SandboxedPath, *, duration_sec: float | None = None
    ) -> list[SubtitleCue] | None:
        if not self.settings.url:
            return None
        endpoint = asr_endpoint(self.settings.url)

        try:
            with audio.path.open("rb") as handle:
                files = {
                    "audio_file": (
                        upload_filename(audio.path),
                        handle,
                        content_type_for(audio.path),
                    )
                }
                response = self._session.post(
                    endpoint, files=files, timeout=self.settings.timeout_seconds
                )
        except (requests.RequestException, OSError) as exc:
            LOGGER.warning("Self-hosted ASR request to %s failed: %s", endpoint, exc)
            return None

        if response.status_code == PAYLOAD_TOO_LARGE:
            raise OversizedInputError()
        if response.status_code >= 400:
            LOGGER.warning(
                "Self-hosted ASR responded with status %s: %s",
                response.status_code,
                response.text[:200],
            )
            return None

        cues = _cues_from_response(response, duration_sec)
        return cues or None


def _cues_from_response(response: Response, duration_sec: float | None) -> list[SubtitleCue]:
    content_type = str(response.headers.get("content-type") or "")
    if "application/json" not in content_type:
        return cues_from_text(response.text, duration_sec)

    try:
        data = response.json()
    except ValueError:
        LOGGER.warning("Self-hosted ASR returned an undecodable JSON body.")
        return []
    if not isinstance(data, Mapping):
        return []

    srt = data.get("srt")
    if isinstance(srt, str):
        return cues_from_text(srt, duration_sec)
    vtt = data.get("vtt")
    if isinstance(vtt, str):
        return parse_vtt(vtt)
    segments = data.get("segments")
    if isinstance(segments, list) and segments:
        return cues_from_segments(segments)
    text = data.get("text")
    if isinstance(text, str):
        return single_cue(text, duration_sec)
    return []
