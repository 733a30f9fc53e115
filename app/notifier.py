"""
Operator alerts over a plain webhook.

- Sends a POST with JSON body to NOTIFY_WEBHOOK_URL.
- Respects NOTIFY_MIN_LEVEL (e.g., WARNING and above).
- Best-effort: failures are logged but never crash the scrobbler.

`Alerter` fans one alert out to every configured channel (webhook + Gotify).
"""

from __future__ import annotations
import logging
import os
from typing import Mapping

import requests

log = logging.getLogger("notifier")

LEVELS = {
    "DEBUG": 10, "INFO": 20, "WARNING": 30, "ERROR": 40, "CRITICAL": 50
}
DEFAULT_APP_TAG = "BluOS→Last.fm"


def level_value(level: str) -> int:
    return LEVELS.get(level.upper(), LEVELS["WARNING"])


class Notifier:
    def __init__(self, webhook_url: str | None, min_level: str = "WARNING", app_tag: str = DEFAULT_APP_TAG,
                 timeout: float = 5):
        self.webhook_url = webhook_url.strip() if webhook_url else None
        self.min_level = level_value(min_level)
        self.app_tag = app_tag
        self.timeout = timeout

    @property
    def enabled(self) -> bool:
        return bool(self.webhook_url)

    def send(self, level: str, title: str, message: str, extra: dict | None = None) -> bool:
        if not self.webhook_url or level_value(level) < self.min_level:
            return False

        payload = {
            "level": level.upper(),
            "title": f"{self.app_tag}: {title}",
            "message": message,
            "extra": extra or {},
        }
        try:
            # Most webhooks accept JSON; Slack/Discord-compatible webhooks also work.
            resp = requests.post(self.webhook_url, json=payload, timeout=self.timeout)
            resp.raise_for_status()
        except requests.RequestException as e:
            log.debug("Notification send failed: %s", e)
            return False
        return True


class Alerter:
    def __init__(self, *channels):
        self.channels = channels

    def __call__(self, level: str, title: str, message: str, extra: dict | None = None) -> None:
        for channel in self.channels:
            channel.send(level, title, message, extra)


def from_env(environ: Mapping[str, str] = os.environ) -> Notifier:
    return Notifier(
        webhook_url=environ.get("NOTIFY_WEBHOOK_URL"),
        min_level=environ.get("NOTIFY_MIN_LEVEL", "WARNING"),
        app_tag=environ.get("APP_TAG", DEFAULT_APP_TAG),
    )
