"""
Operator alerts: generic JSON webhook and Gotify.

Env:
- NOTIFY_WEBHOOK_URL, NOTIFY_MIN_LEVEL (default WARNING)
- GOTIFY_URL (e.g., http://nas:8080), GOTIFY_TOKEN (app token),
  GOTIFY_PRIORITY (1..10; default 5), GOTIFY_MIN_LEVEL (default WARNING)
- APP_TAG (prefix for titles)

Best-effort: send failures are logged at DEBUG and never raised.
"""

from __future__ import annotations
import logging
import os
from typing import Mapping

import requests

log = logging.getLogger("notifier")

_LEVELS = {"DEBUG": 10, "INFO": 20, "WARNING": 30, "ERROR": 40, "CRITICAL": 50}
DEFAULT_TAG = "nowscrobble"


def _level(name: str) -> int:
    return _LEVELS.get(name.upper(), 30)


class WebhookNotifier:
    def __init__(self, webhook_url: str | None, min_level: str = "WARNING", app_tag: str = DEFAULT_TAG):
        self.webhook_url = webhook_url.strip() if webhook_url else None
        self.min_level = _level(min_level)
        self.app_tag = app_tag

    def send(self, level: str, title: str, message: str, extra: dict | None = None):
        if not self.webhook_url or _level(level) < self.min_level:
            return
        payload = {
            "level": level.upper(),
            "title": f"{self.app_tag}: {title}",
            "message": message,
            "extra": extra or {},
        }
        try:
            # Slack/Discord-compatible webhooks accept this JSON too
            requests.post(self.webhook_url, json=payload, timeout=5)
        except requests.RequestException as e:
            log.debug("Webhook send failed: %s", e)


class GotifyNotifier:
    def __init__(self, url: str | None, token: str | None, min_level: str = "WARNING",
                 default_priority: int = 5, app_tag: str = DEFAULT_TAG):
        self.url = url.rstrip("/") if url else None
        self.token = token.strip() if token else None
        self.min_level = _level(min_level)
        self.default_priority = default_priority
        self.app_tag = app_tag

    def send(self, level: str, title: str, message: str, extra: dict | None = None,
             priority: int | None = None):
        if not self.url or not self.token or _level(level) < self.min_level:
            return
        body = {
            "title": f"{self.app_tag}: {title}",
            "message": message if not extra else f"{message}\n\n{extra}",
            "priority": priority if priority is not None else self.default_priority,
        }
        try:
            requests.post(f"{self.url}/message", json=body,
                          headers={"X-Gotify-Key": self.token}, timeout=5)
        except requests.RequestException as e:
            log.debug("Gotify send failed: %s", e)


class Alerts:
    """Fans an alert out to every configured notifier; each ignores it if unconfigured."""

    def __init__(self, *notifiers):
        self.notifiers = notifiers

    def __call__(self, level: str, title: str, message: str, extra: dict | None = None):
        for notifier in self.notifiers:
            notifier.send(level, title, message, extra)


def from_env(env: Mapping[str, str] = os.environ) -> Alerts:
    app_tag = env.get("APP_TAG", DEFAULT_TAG)
    return Alerts(
        WebhookNotifier(
            webhook_url=env.get("NOTIFY_WEBHOOK_URL"),
            min_level=env.get("NOTIFY_MIN_LEVEL", "WARNING"),
            app_tag=app_tag,
        ),
        GotifyNotifier(
            env.get("GOTIFY_URL"),
            env.get("GOTIFY_TOKEN"),
            min_level=env.get("GOTIFY_MIN_LEVEL", "WARNING"),
            default_priority=int(env.get("GOTIFY_PRIORITY", "5")),
            app_tag=app_tag,
        ),
    )
