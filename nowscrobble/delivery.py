from __future__ import annotations

import logging
import threading
from typing import Callable, Optional, Protocol

from nowscrobble.models import PLAYING, NowPlaying, ScrobbleRecord
from nowscrobble.scrobble_queue import DeliveryReport, ScrobbleQueue

log = logging.getLogger("delivery")

Alert = Callable[..., None]


class Backend(Protocol):
    name: str

    def submit(self, record: ScrobbleRecord) -> None: ...
    def now_playing(self, info: NowPlaying) -> None: ...


class DeliveryWorker(threading.Thread):
    """Owns delivery to one backend, so a slow or failing service only stalls itself.

    Each cycle pushes the latest now-playing update (best-effort), then runs one
    queue sweep for this backend. wake() shortens the wait after an enqueue.
    """

    def __init__(self, backend: Backend, queue: ScrobbleQueue, *, interval: float = 30.0,
                 alert: Optional[Alert] = None):
        super().__init__(name=f"delivery-{backend.name}", daemon=True)
        self.backend = backend
        self.queue = queue
        self.interval = interval
        self.alert = alert
        self._wake = threading.Event()
        self._stopping = threading.Event()
        self._np_lock = threading.Lock()
        self._now_playing: NowPlaying | None = None

    def wake(self) -> None:
        self._wake.set()

    def set_now_playing(self, info: NowPlaying | None) -> None:
        if info is None:
            return
        with self._np_lock:
            self._now_playing = info
        self._wake.set()

    def stop(self, timeout: float | None = None) -> None:
        self._stopping.set()
        self._wake.set()
        if self.is_alive():
            self.join(timeout)

    def run(self) -> None:
        log.info("Delivery to %s started (sweep every %ss)", self.backend.name, self.interval)
        while not self._stopping.is_set():
            # cleared before the sweep so a wake() during it triggers another one
            self._wake.clear()
            try:
                self.run_once()
            except Exception:
                log.exception("Delivery sweep for %s failed", self.backend.name)
            self._wake.wait(self.interval)
        log.info("Delivery to %s stopped", self.backend.name)

    def run_once(self) -> DeliveryReport:
        self._push_now_playing()
        report = self.queue.deliver_due(self.backend.name, self.backend.submit)
        self._handle_report(report)
        self.queue.prune()
        return report

    def _push_now_playing(self) -> None:
        with self._np_lock:
            info, self._now_playing = self._now_playing, None
        if info is not None and info.state == PLAYING:
            self.backend.now_playing(info)

    def _handle_report(self, report: DeliveryReport) -> None:
        name = report.backend
        for record in report.delivered:
            log.info("%s: scrobbled %s", name, record.identity.display())
        for record, reason in report.permanent:
            log.error("%s: scrobble of %s rejected permanently: %s", name, record.identity.display(), reason)
            self._alert("ERROR", f"{name} scrobble rejected", reason, record.to_dict())
        for record, reason in report.retryable:
            log.info("%s: delivery paused: %s; backlog=%s", name, reason, self.queue.backlog(name))
        for record in report.exhausted:
            log.warning("%s: %s still undelivered after %s attempts; will keep retrying",
                        name, record.identity.display(), self.queue.backoff.max_attempts)
            self._alert("WARNING", f"{name} delivery keeps failing",
                        f"{record.identity.display()} is still queued", record.to_dict())

    def _alert(self, level: str, title: str, message: str, extra: dict | None = None) -> None:
        if self.alert is not None:
            self.alert(level, title, message, extra)
