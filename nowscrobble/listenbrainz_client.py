"""
ListenBrainz backend: POST /1/submit-listens with a user token.

- "single" listens carry listened_at (the time the track started).
- "playing_now" listens are best-effort and never raise.
- HTTP status decides whether a failed submission is worth retrying.
"""

from __future__ import annotations
import logging
from typing import Any, Dict

import requests

from nowscrobble.errors import PermanentDeliveryError, RetryableDeliveryError
from nowscrobble.models import NowPlaying, ScrobbleRecord, TrackIdentity

log = logging.getLogger("listenbrainz")

DEFAULT_API_URL = "https://api.listenbrainz.org"
PERMANENT_STATUSES = {400, 401, 403, 413}
SUBMISSION_CLIENT = "nowscrobble"


def _track_metadata(identity: TrackIdentity, duration: float | None) -> Dict[str, Any]:
    meta: Dict[str, Any] = {"artist_name": identity.artist, "track_name": identity.title}
    if identity.album:
        meta["release_name"] = identity.album
    info: Dict[str, Any] = {"submission_client": SUBMISSION_CLIENT}
    if duration:
        info["duration"] = int(duration)
    meta["additional_info"] = info
    return meta


class ListenBrainzBackend:
    def __init__(self, token: str, api_url: str = DEFAULT_API_URL, name: str = "ListenBrainz",
                 timeout: int = 10, session: requests.Session | None = None):
        self.name = name
        self.url = f"{api_url.rstrip('/')}/1/submit-listens"
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({"Authorization": f"Token {token.strip()}"})

    def _post(self, body: Dict[str, Any]) -> requests.Response:
        return self.session.post(self.url, json=body, timeout=self.timeout)

    def now_playing(self, info: NowPlaying) -> None:
        body = {
            "listen_type": "playing_now",
            "payload": [{"track_metadata": _track_metadata(info.identity, info.duration)}],
        }
        try:
            resp = self._post(body)
            if resp.status_code >= 300:
                log.debug("%s: playing_now rejected: HTTP %s %s", self.name, resp.status_code, resp.text[:200])
        except requests.RequestException as e:
            log.debug("%s: playing_now failed: %s", self.name, e)

    def submit(self, record: ScrobbleRecord) -> None:
        body = {
            "listen_type": "single",
            "payload": [{
                "listened_at": record.timestamp,
                "track_metadata": _track_metadata(record.identity, record.duration),
            }],
        }
        try:
            resp = self._post(body)
        except requests.RequestException as e:
            raise RetryableDeliveryError(f"{self.name}: network error: {e}") from e

        if resp.status_code < 300:
            return
        detail = f"{self.name}: HTTP {resp.status_code}: {resp.text[:200]}"
        if resp.status_code in PERMANENT_STATUSES:
            raise PermanentDeliveryError(detail)
        # 429 rate limit, 5xx and anything unexpected
        raise RetryableDeliveryError(detail)
