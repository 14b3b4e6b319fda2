import time
import logging
import xml.etree.ElementTree as ET

import requests

from nowscrobble.errors import PollError
from nowscrobble.models import PAUSED, PLAYING, STOPPED, Sample

log = logging.getLogger("bluos")

STATE_MAP = {
    "play": PLAYING,
    "stream": PLAYING,
    "pause": PAUSED,
    "connecting": PAUSED,
    "stop": STOPPED,
}


class BluOSClient:
    """
    Poller for a BluOS player's /Status (XML).
    Uses recursive lookup + tag fallbacks; the streaming <service> becomes the app id.
    """
    def __init__(self, host: str, port: int = 11000, timeout: int = 5, clock=time.time):
        self.base = f"http://{host}:{port}"
        self.timeout = timeout
        self.clock = clock

    def _findtext_any(self, root: ET.Element, *tags: str):
        for t in tags:
            el = root.find(f".//{t}")
            if el is not None and el.text:
                return el.text.strip()
        return None

    def _to_float(self, s):
        if s is None:
            return None
        try:
            return float(s)
        except ValueError:
            return None

    def poll(self) -> Sample | None:
        """Current sample, or None when nothing with usable metadata is loaded.

        Raises PollError when the player cannot be reached or answers garbage.
        """
        try:
            resp = requests.get(f"{self.base}/Status", timeout=self.timeout)
            resp.raise_for_status()
        except requests.RequestException as e:
            raise PollError(f"BluOS status fetch failed: {e}") from e

        try:
            root = ET.fromstring(resp.text)
        except ET.ParseError as e:
            raise PollError(f"BluOS status is not valid XML: {e}") from e
        return self.parse(root)

    def parse(self, root: ET.Element) -> Sample | None:
        # title appears as <name> and also as <title1>
        title = self._findtext_any(root, "name", "title1", "title", "song")
        artist = self._findtext_any(root, "artist", "title2")
        album = self._findtext_any(root, "album", "title3")

        position = self._findtext_any(root, "secs", "elapsed", "position", "time")
        duration = self._findtext_any(root, "totlen", "duration", "total", "trackLength", "length")

        raw_state = self._findtext_any(root, "state", "status", "mode")
        state = STATE_MAP.get(raw_state.lower()) if raw_state else None
        if state is None:
            log.debug("Unknown BluOS state %r", raw_state)
            state = STOPPED

        if not title or not artist:
            return None

        return Sample(
            title=title,
            artist=artist,
            album=album,
            duration=self._to_float(duration),
            position=self._to_float(position),
            state=state,
            observed_at=self.clock(),
            app_id=self._findtext_any(root, "service"),
        )
