"""
Headless stand-ins for the tray menu and the "allow this app?" dialog.

StatusBoard mirrors the two status lines of a tray menu and logs them.
ConsolePrompter asks on the terminal from a single background thread and
hands the answer back through a Future, so callers never wait on it.
"""

from __future__ import annotations
import logging
import sys
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, TextIO

from nowscrobble.app_filter import ALLOWED, IGNORED
from nowscrobble.models import PLAYING, NowPlaying, ScrobbleRecord

log = logging.getLogger("ui")


class StatusBoard:
    def __init__(self):
        self._lock = threading.Lock()
        self.now_playing: str | None = None
        self.last_scrobbled: str | None = None

    def on_now_playing(self, info: NowPlaying | None) -> None:
        text = None
        if info is not None:
            text = info.identity.display() + (f" ({info.state})" if info.state != PLAYING else "")
        with self._lock:
            changed = text != self.now_playing
            self.now_playing = text
        if changed:
            log.info("Now Playing: %s", text or "None")

    def on_scrobbled(self, record: ScrobbleRecord) -> None:
        with self._lock:
            self.last_scrobbled = record.identity.display()
        log.info("Last Scrobbled: %s", self.last_scrobbled)


class ConsolePrompter:
    def __init__(self, ask: Callable[[str], str] = input, out: TextIO = sys.stderr):
        self._ask = ask
        self._out = out
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="prompt")

    @staticmethod
    def available(stream: TextIO = sys.stdin) -> bool:
        try:
            return stream.isatty()
        except (AttributeError, ValueError):
            return False

    def request_decision(self, app_id: str) -> "Future[str]":
        return self._executor.submit(self._prompt, app_id)

    def _prompt(self, app_id: str) -> str:
        print(f"\nMusic is playing from: {app_id}", file=self._out)
        while True:
            answer = self._ask("Scrobble from this app? [a]llow / [i]gnore: ").strip().lower()
            if answer in ("a", "allow", "y", "yes"):
                return ALLOWED
            if answer in ("i", "ignore", "n", "no"):
                return IGNORED
            print("Please answer 'allow' or 'ignore'.", file=self._out)

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)
