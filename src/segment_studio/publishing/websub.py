"""Feed regeneration hook and WebSub hub notification after a render."""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass

import requests
from requests import Session

from ..storage.models import Podcast
from ..utils.logging import get_logger

LOGGER = get_logger(__name__)

__all__ = ["FeedPublisher", "WebSubNotifier", "WebSubSettings", "build_feed_publisher"]

FeedRegenerator = Callable[[Podcast], None]


@dataclass(slots=True)
class WebSubSettings:
    enabled: bool = False
    hub_url: str | None = None
    timeout_seconds: float = 10.0

    @classmethod
    def from_config(cls, config: Mapping[str, object]) -> WebSubSettings:
        publishing = config.get("publishing")
        publishing = publishing if isinstance(publishing, Mapping) else {}
        section = publishing.get("websub")
        section = section if isinstance(section, Mapping) else {}
        hub_url = str(section.get("hub_url") or "").strip()
        return cls(
            enabled=bool(section.get("enabled", False)),
            hub_url=hub_url or None,
            timeout_seconds=float(section.get("timeout_seconds", 10.0)),
        )


class WebSubNotifier:
    """Posts ``hub.mode=publish`` for a feed URL to the configured hub."""

    def __init__(self, settings: WebSubSettings, *, session: Session | None = None) -> None:
        self.settings = settings
        self._session = session or requests.Session()

    @property
    def active(self) -> bool:
        return self.settings.enabled and bool(self.settings.hub_url)

    def notify(self, feed_url: str) -> bool:
        """Return True when the hub accepted the ping; False when skipped or rejected."""
        if not self.active or not feed_url:
            return False
        response = self._session.post(
            str(self.settings.hub_url),
            data={"hub.mode": "publish", "hub.url": feed_url},
            timeout=self.settings.timeout_seconds,
        )
        if response.status_code >= 400:
            LOGGER.warning(
                "WebSub hub %s rejected publish for %s with status %s.",
                self.settings.hub_url,
                feed_url,
                response.status_code,
            )
            return False
        return True


class FeedPublisher:
    """Regenerates a podcast's public feed and pings subscribers.

    Feed generation itself lives outside this package and is injected as
    ``regenerate_feed``. Errors propagate; the render pipeline treats them as
    non-fatal.
    """

    def __init__(
        self,
        *,
        notifier: WebSubNotifier,
        regenerate_feed: FeedRegenerator | None = None,
    ) -> None:
        self.notifier = notifier
        self.regenerate_feed = regenerate_feed

    def publish(self, podcast: Podcast) -> None:
        if self.regenerate_feed is not None:
            self.regenerate_feed(podcast)
        if podcast.feed_url:
            self.notifier.notify(podcast.feed_url)


def build_feed_publisher(
    config: Mapping[str, object],
    *,
    regenerate_feed: FeedRegenerator | None = None,
    session: Session | None = None,
) -> FeedPublisher:
    notifier = WebSubNotifier(WebSubSettings.from_config(config), session=session)
    return FeedPublisher(notifier=notifier, regenerate_feed=regenerate_feed)
