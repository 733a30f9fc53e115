"""
Gotify notifier: POST /message with app token.

Env:
- GOTIFY_URL (e.g., http://nas:8080)
- GOTIFY_TOKEN (App token)
- GOTIFY_PRIORITY (1..10; default 5, ERROR and above always sent at 8+)
- GOTIFY_MIN_LEVEL (DEBUG|INFO|WARNING|ERROR|CRITICAL; default WARNING)
"""

from __future__ import annotations
import json
import logging
import os
from typing import Mapping

import requests

from notifier import DEFAULT_APP_TAG, LEVELS, level_value

log = logging.getLogger("notifier")

URGENT_PRIORITY = 8


class GotifyNotifier:
    def __init__(self, url: str | None, token: str | None, min_level: str = "WARNING",
                 default_priority: int = 5, app_tag: str = DEFAULT_APP_TAG, timeout: float = 5):
        self.url = url.rstrip("/") if url else None
        self.token = token.strip() if token else None
        self.min_level = level_value(min_level)
        self.default_priority = default_priority
        self.app_tag = app_tag
        self.timeout = timeout

    @property
    def enabled(self) -> bool:
        return bool(self.url and self.token)

    def _priority(self, level: str) -> int:
        if level_value(level) >= LEVELS["ERROR"]:
            return max(self.default_priority, URGENT_PRIORITY)
        return self.default_priority

    def send(self, level: str, title: str, message: str, extra: dict | None = None,
             priority: int | None = None) -> bool:
        if not self.enabled or level_value(level) < self.min_level:
            return False

        if extra:
            message = f"{message}\n\n{json.dumps(extra, ensure_ascii=False, default=str)}"
        body = {
            "title": f"{self.app_tag}: {title}",
            "message": message,
            "priority": priority if priority is not None else self._priority(level),
        }
        headers = {"X-Gotify-Key": self.token}
        try:
            resp = requests.post(f"{self.url}/message", json=body, headers=headers, timeout=self.timeout)
            resp.raise_for_status()
        except requests.RequestException as e:
            log.debug("Gotify send failed: %s", e)
            return False
        return True


def from_env(environ: Mapping[str, str] = os.environ) -> GotifyNotifier:
    return GotifyNotifier(
        environ.get("GOTIFY_URL"),
        environ.get("GOTIFY_TOKEN"),
        min_level=environ.get("GOTIFY_MIN_LEVEL", "WARNING"),
        default_priority=int(environ.get("GOTIFY_PRIORITY", "5")),
        app_tag=environ.get("APP_TAG", DEFAULT_APP_TAG),
    )
