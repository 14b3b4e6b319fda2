from __future__ import annotations

import logging
import time
from dataclasses import dataclass

from nowscrobble.errors import TrackerInvariantViolation
from nowscrobble.models import (
    PAUSED, PLAYBACK_STATES, PLAYING, STOPPED,
    NowPlaying, Sample, ScrobbleRecord, TrackIdentity,
)

log = logging.getLogger("tracker")

MIN_TRACK_DURATION = 30      # tracks shorter than this never scrobble
SCROBBLE_TIME_CAP = 240      # 4 minutes


@dataclass
class PlaySession:
    identity: TrackIdentity
    duration: float | None
    started_at: float
    last_seen: float
    last_position: float | None
    app_id: str | None = None
    mode: str = PLAYING
    accumulated: float = 0.0
    eligible: bool = False
    submitted: bool = False
    stopped_since: float | None = None
    stop_observed: bool = False

    def now_playing(self) -> NowPlaying:
        return NowPlaying(identity=self.identity, duration=self.duration,
                          state=self.mode, app_id=self.app_id)


@dataclass
class TrackerEvents:
    now_playing_changed: bool = False
    now_playing: NowPlaying | None = None
    scrobble: ScrobbleRecord | None = None
    discarded: str | None = None


def identity_of(sample: Sample) -> TrackIdentity | None:
    if not sample.title or not sample.artist:
        return None
    return TrackIdentity(title=sample.title, artist=sample.artist, album=sample.album or None)


def scrobble_threshold(duration: float | None, percent: int = 50) -> float | None:
    """Seconds of play needed before a track scrobbles; None if it never can.

    Last.fm guideline: half the track or 4 minutes, whichever comes first,
    and only for tracks of at least 30 seconds.
    """
    if not duration or duration < MIN_TRACK_DURATION:
        return None
    return min(duration * percent / 100.0, SCROBBLE_TIME_CAP)


class PlaybackTracker:
    """Turns a time-ordered stream of normalized samples into play sessions.

    Accumulated play time advances by wall-clock time between samples while
    the session is playing; pause freezes it. A session becomes eligible at
    most once and yields exactly one ScrobbleRecord. The same track playing
    again after a stop, a restart from the top, or another track counts as
    a new session.
    """

    def __init__(self, threshold_percent: int = 50, grace_period: float = 10.0,
                 poll_slack: float = 5.0, seek_tolerance: float = 5.0):
        self.threshold_percent = threshold_percent
        self.grace_period = grace_period
        self.poll_slack = poll_slack
        self.seek_tolerance = seek_tolerance
        self.current: PlaySession | None = None

    @property
    def phase(self) -> str:
        if self.current is None:
            return "no-session"
        if self.current.eligible:
            return "eligible"
        return self.current.mode

    def reset(self) -> None:
        """Drops the in-flight session without emitting anything (shutdown)."""
        self.current = None

    def suspend(self, now: float) -> TrackerEvents:
        """Stops crediting play time while samples are not reaching the tracker.

        Used when a sample was filtered out or the poller could not be read:
        the open session is treated as paused from `now` on, so the gap is never
        counted when samples come back.
        """
        events = TrackerEvents()
        session = self.current
        if session is None:
            return events
        session.last_seen = max(session.last_seen, now)
        if session.stopped_since is not None and now - session.stopped_since >= self.grace_period:
            self._close(events, "stopped")
            return events
        if session.mode == PLAYING:
            session.mode = PAUSED
            self._emit_now_playing(events)
        return events

    # -------- sample processing --------
    def observe(self, sample: Sample | None, now: float | None = None) -> TrackerEvents:
        events = TrackerEvents()
        if sample is None:
            # no media session detected: implicit stop
            self._stopped(time.time() if now is None else now, events)
            return events

        try:
            identity = self._validate(sample)
        except TrackerInvariantViolation as e:
            log.warning("Discarding sample: %s", e)
            events.discarded = str(e)
            return events

        session = self.current
        if session is not None and identity is not None and identity != session.identity:
            self._close(events, "track changed")
            session = None

        if sample.state == STOPPED:
            self._stopped(sample.observed_at, events)
            return events

        if session is None:
            if sample.state == PLAYING:
                self._open(sample, identity, events)
            return events

        if session.duration is None and sample.duration:
            # some players only report the length after the first poll
            session.duration = sample.duration
        self._advance(session, sample.observed_at)

        if self._discontinuity(session, sample):
            if session.eligible or session.stop_observed:
                self._close(events, "restarted")
                if sample.state == PLAYING:
                    self._open(sample, identity, events)
                return events
            log.debug("Seek within %s to %.0fs", session.identity.display(), sample.position)

        previous_mode = session.mode
        session.mode = sample.state
        session.last_position = sample.position
        session.stopped_since = None
        if previous_mode != session.mode:
            self._emit_now_playing(events)

        self._check_eligible(session, events)
        return events

    def _validate(self, sample: Sample) -> TrackIdentity:
        if sample.state not in PLAYBACK_STATES:
            raise TrackerInvariantViolation(f"unknown playback state {sample.state!r}")
        if sample.duration is not None and sample.duration < 0:
            raise TrackerInvariantViolation(f"negative duration {sample.duration}")
        if sample.position is not None and sample.position < 0:
            raise TrackerInvariantViolation(f"negative position {sample.position}")
        if self.current is not None and sample.observed_at < self.current.last_seen:
            raise TrackerInvariantViolation(
                f"sample time went backwards ({sample.observed_at} < {self.current.last_seen})")
        identity = identity_of(sample)
        if identity is None and sample.state != STOPPED:
            raise TrackerInvariantViolation("sample without title or artist")
        return identity

    def _advance(self, session: PlaySession, now: float) -> None:
        if session.mode == PLAYING:
            session.accumulated += max(0.0, now - session.last_seen)
            if session.duration:
                session.accumulated = min(session.accumulated, session.duration + self.poll_slack)
        session.last_seen = now

    def _discontinuity(self, session: PlaySession, sample: Sample) -> bool:
        if sample.position is None or session.last_position is None:
            return False
        if sample.position < session.last_position - self.seek_tolerance:
            return True
        if session.duration and sample.position > session.duration + self.seek_tolerance:
            return True
        return False

    def _stopped(self, now: float, events: TrackerEvents) -> None:
        session = self.current
        if session is None:
            return
        if now < session.last_seen:
            log.warning("Discarding stop observed before the last sample")
            events.discarded = "stop went backwards in time"
            return
        self._advance(session, now)
        self._check_eligible(session, events)
        if session.stopped_since is None:
            session.stopped_since = now
            session.stop_observed = True
            if session.mode != STOPPED:
                session.mode = STOPPED
                self._emit_now_playing(events)
        if now - session.stopped_since >= self.grace_period:
            self._close(events, "stopped")

    # -------- session lifecycle --------
    def _open(self, sample: Sample, identity: TrackIdentity, events: TrackerEvents) -> None:
        self.current = PlaySession(
            identity=identity,
            duration=sample.duration,
            started_at=sample.observed_at,
            last_seen=sample.observed_at,
            last_position=sample.position,
            app_id=sample.app_id,
        )
        log.info("New track: %s (%ss) from %s",
                 identity.display(), int(sample.duration or 0), sample.app_id or "unknown app")
        self._emit_now_playing(events)

    def _close(self, events: TrackerEvents, reason: str) -> None:
        session = self.current
        if session is None:
            return
        log.info("Session ended (%s): %s after %.0fs%s", reason, session.identity.display(),
                 session.accumulated, "" if session.submitted else ", not scrobbled")
        self.current = None
        self._emit_now_playing(events)

    def _emit_now_playing(self, events: TrackerEvents) -> None:
        events.now_playing_changed = True
        events.now_playing = self.current.now_playing() if self.current else None

    def _check_eligible(self, session: PlaySession, events: TrackerEvents) -> None:
        if session.eligible:
            return
        threshold = scrobble_threshold(session.duration, self.threshold_percent)
        if threshold is None or session.accumulated < threshold:
            return
        session.eligible = True
        session.submitted = True
        events.scrobble = ScrobbleRecord.create(
            session.identity, session.duration, session.started_at, session.app_id)
        log.info("Scrobble ready: %s (played %.0fs / %ss)",
                 session.identity.display(), session.accumulated, int(session.duration))
