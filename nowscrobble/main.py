import os
import sys
import logging
import threading
import time
from typing import List

from nowscrobble.app_filter import AppDecisionStore, AppFilter
from nowscrobble.bluos import BluOSClient
from nowscrobble.config import Settings, load_settings
from nowscrobble.delivery import DeliveryWorker
from nowscrobble.errors import ConfigError, PollError, QueueCorruptError, StoreCorruptError
from nowscrobble.lastfm_client import LastFMBackend
from nowscrobble.listenbrainz_client import ListenBrainzBackend
from nowscrobble.models import Sample
from nowscrobble.notifier import from_env as alerts_from_env
from nowscrobble.scrobble_queue import Backoff, ScrobbleQueue
from nowscrobble.state import PlaybackTracker, TrackerEvents
from nowscrobble.text_cleanup import TextCleaner
from nowscrobble.ui import ConsolePrompter, StatusBoard

log = logging.getLogger("nowscrobble")


class Pipeline:
    """sample → app filter → text cleanup → tracker → {status board, queue, workers}.

    Owned by the polling loop; the only thing handed across threads is the
    ScrobbleRecord going into the queue and the now-playing slot of each worker.
    """

    def __init__(self, app_filter: AppFilter, cleaner: TextCleaner, tracker: PlaybackTracker,
                 queue: ScrobbleQueue, board: StatusBoard, workers: List[DeliveryWorker] = ()):
        self.app_filter = app_filter
        self.cleaner = cleaner
        self.tracker = tracker
        self.queue = queue
        self.board = board
        self.workers = list(workers)

    def step(self, sample: Sample | None, now: float | None = None) -> TrackerEvents:
        if sample is not None and not self.app_filter.admit(sample.app_id):
            # filtered out: the open session must not be credited for this time
            events = self.tracker.suspend(sample.observed_at)
        else:
            if sample is not None:
                sample = self.cleaner.normalize(sample)
            events = self.tracker.observe(sample, now)
        self._dispatch(events)
        return events

    def suspend(self, now: float) -> TrackerEvents:
        """Nothing could be observed this cycle; freeze the open session."""
        events = self.tracker.suspend(now)
        self._dispatch(events)
        return events

    def _dispatch(self, events: TrackerEvents) -> None:
        if events.now_playing_changed:
            self.board.on_now_playing(events.now_playing)
            for worker in self.workers:
                worker.set_now_playing(events.now_playing)

        if events.scrobble is not None:
            self.board.on_scrobbled(events.scrobble)
            if self.queue.enqueue(events.scrobble):
                for worker in self.workers:
                    worker.wake()


def build_backends(settings: Settings) -> list:
    backends = []
    if settings.lastfm is not None:
        lf = settings.lastfm
        backends.append(LastFMBackend(
            api_key=lf.api_key,
            api_secret=lf.api_secret,
            session_key=lf.session_key,
            username=lf.username,
            password_md5=lf.password_md5,
        ))
    for lb in settings.listenbrainz:
        backends.append(ListenBrainzBackend(token=lb.token, api_url=lb.api_url, name=lb.name))
    return backends


def run(settings: Settings, stop: threading.Event | None = None) -> None:
    stop = stop or threading.Event()
    alert = alerts_from_env()

    backends = build_backends(settings)
    try:
        store = AppDecisionStore(settings.app_decisions_path)
        queue = ScrobbleQueue(
            settings.scrobble_cache_path,
            [b.name for b in backends],
            retention=settings.retention_seconds,
            backoff=Backoff(base=settings.retry_base, ceiling=settings.retry_ceiling,
                            max_attempts=settings.retry_max_attempts),
            max_entries=settings.scrobble_cache_limit,
        )
    except (QueueCorruptError, StoreCorruptError) as e:
        # Never start over silently: the backlog holds undelivered plays
        raise SystemExit(f"Refusing to start: {e}")
    store.seed(allowed=settings.allowed_apps, ignored=settings.ignored_apps)

    prompter = None
    prompt = settings.prompt_for_new_apps
    if prompt:
        if ConsolePrompter.available():
            prompter = ConsolePrompter()
        else:
            log.warning("No terminal to ask about new apps; allowing them without saving a decision")
            prompt = False

    app_filter = AppFilter(store, scrobble_unknown=settings.scrobble_unknown,
                           prompt_for_new_apps=prompt, prompter=prompter)
    tracker = PlaybackTracker(
        threshold_percent=settings.scrobble_threshold,
        grace_period=settings.grace_period,
        poll_slack=settings.poll_interval,
    )
    workers = [DeliveryWorker(b, queue, interval=settings.sweep_interval, alert=alert) for b in backends]
    pipeline = Pipeline(app_filter, TextCleaner(settings.cleanup_patterns, settings.cleanup_enabled),
                        tracker, queue, StatusBoard(), workers)
    poller = BluOSClient(settings.bluos_host, settings.bluos_port)

    log.info("Starting BluOS scrobbler. Poll interval: %ss, threshold: %s%%",
             settings.poll_interval, settings.scrobble_threshold)
    log.info("BluOS device: %s:%s | Queue: %s (entries=%s, backlog=%s) | Backends: %s",
             settings.bluos_host, settings.bluos_port, settings.scrobble_cache_path,
             queue.size(), queue.backlog(), ", ".join(b.name for b in backends) or "none")
    alert("INFO", "Scrobbler started",
          f"Polling {settings.bluos_host}:{settings.bluos_port}; queue {settings.scrobble_cache_path}.")

    for worker in workers:
        worker.start()
    try:
        while not stop.is_set():
            try:
                sample = poller.poll()
            except PollError as e:
                # unreachable is not the same as stopped: keep the session, stop counting
                log.warning("%s", e)
                pipeline.suspend(time.time())
            else:
                if sample is not None:
                    log.debug("Parsed: state=%s artist=%s title=%s album=%s position=%s duration=%s app=%s",
                              sample.state, sample.artist, sample.title, sample.album,
                              sample.position, sample.duration, sample.app_id)
                pipeline.step(sample)
            stop.wait(settings.poll_interval)
    finally:
        tracker.reset()
        for worker in workers:
            worker.stop(timeout=settings.poll_interval)
        if prompter is not None:
            prompter.shutdown()
        log.info("Stopped; %s scrobble(s) still queued", queue.backlog())


def main(argv: List[str] | None = None) -> int:
    argv = sys.argv[1:] if argv is None else argv
    if argv and argv[0] == "lastfm-auth":
        from nowscrobble.lastfm_auth import main as auth_main
        return auth_main()

    logging.basicConfig(
        level=getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        force=True,  # ensure our config is used even if libs pre-configure logging
    )
    try:
        settings = load_settings()
    except ConfigError as e:
        raise SystemExit(f"Configuration error: {e}")

    try:
        run(settings)
    except KeyboardInterrupt:
        log.info("Shutting down…")
    return 0


if __name__ == "__main__":
    sys.exit(main())
