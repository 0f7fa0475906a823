"""Client for hosted OpenAI-compatible transcription APIs."""

from __future__ import annotations

import json
import os
from collections.abc import Mapping
from dataclasses import dataclass

import requests
from requests import Session

from ...exceptions import OversizedInputError
from ...storage.sandbox import SandboxedPath
from ...subtitles.track import SubtitleCue, single_cue
from ...utils.logging import get_logger
from .common import content_type_for, cues_from_text, upload_filename

LOGGER = get_logger(__name__)

__all__ = ["CloudASRClient", "CloudASRSettings", "SRT_CAPABLE_MODEL"]

DEFAULT_URL = "https://api.openai.com/v1/audio/transcriptions"
SRT_CAPABLE_MODEL = "whisper-1"
PAYLOAD_TOO_LARGE = 413


@dataclass(slots=True)
class CloudASRSettings:
    """Static configuration for the hosted transcription API."""

    url: str = DEFAULT_URL
    model: str = SRT_CAPABLE_MODEL
    api_key_env: str = "OPENAI_API_KEY"
    timeout_seconds: float = 600.0

    @classmethod
    def from_config(cls, config: Mapping[str, object]) -> CloudASRSettings:
        section = config.get("transcription")
        section = section if isinstance(section, Mapping) else {}
        provider = section.get("cloud")
        provider = provider if isinstance(provider, Mapping) else {}
        return cls(
            url=str(provider.get("url") or DEFAULT_URL).strip(),
            model=str(provider.get("model") or SRT_CAPABLE_MODEL).strip(),
            api_key_env=str(provider.get("api_key_env", "OPENAI_API_KEY")),
            timeout_seconds=float(provider.get("timeout_seconds", 600.0)),
        )

    @property
    def supports_srt(self) -> bool:
        """Only ``whisper-1`` can answer with SRT; other models return JSON text."""
        return self.model.lower() == SRT_CAPABLE_MODEL


class CloudASRClient:
    """Submits audio with bearer-token auth and normalizes the answer into cues."""

    def __init__(
        self,
        settings: CloudASRSettings,
        *,
        session: Session | None = None,
        api_key: str | None = None,
    ) -> None:
        self.settings = settings
        self._session = session or requests.Session()
        self._api_key = api_key

    @property
    def api_key(self) -> str | None:
        key = self._api_key or os.environ.get(self.settings.api_key_env)
        return key.strip() if key and key.strip() else None

    @property
    def configured(self) -> bool:
        return bool(self.settings.url and self.api_key)

    def transcribe(
        self, audio: SandboxedPath, *, duration_sec: float | None = None
    ) -> list[SubtitleCue] | None:
        api_key = self.api_key
        if not self.settings.url or not api_key:
            return None

        data = {
            "model": self.settings.model,
            "response_format": "srt" if self.settings.supports_srt else "json",
        }
        headers = {"Authorization": f"Bearer {api_key}"}
        try:
            with audio.path.open("rb") as handle:
                files = {
                    "file": (upload_filename(audio.path), handle, content_type_for(audio.path)),
                }
                response = self._session.post(
                    self.settings.url,
                    files=files,
                    data=data,
                    headers=headers,
                    timeout=self.settings.timeout_seconds,
                )
        except (requests.RequestException, OSError) as exc:
            LOGGER.warning("Transcription API request failed: %s", exc)
            return None

        if response.status_code == PAYLOAD_TOO_LARGE:
            raise OversizedInputError()
        if response.status_code >= 400:
            LOGGER.warning(
                "Transcription API responded with status %s: %s",
                response.status_code,
                response.text[:200],
            )
            return None

        if self.settings.supports_srt:
            return cues_from_text(response.text, duration_sec) or None

        try:
            payload = json.loads(response.text)
        except json.JSONDecodeError:
            LOGGER.warning("Transcription API returned a non-JSON body for model %s.", self.settings.model)
            return None
        text = payload.get("text") if isinstance(payload, Mapping) else None
        if not isinstance(text, str):
            return None
        return single_cue(text, duration_sec) or None
