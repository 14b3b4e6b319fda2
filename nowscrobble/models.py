from __future__ import annotations

import hashlib
from dataclasses import dataclass
from typing import Any, Dict

PLAYING = "playing"
PAUSED = "paused"
STOPPED = "stopped"
PLAYBACK_STATES = (PLAYING, PAUSED, STOPPED)


# -------------------------
# Raw observation from a poller
# -------------------------
@dataclass(frozen=True)
class Sample:
    title: str | None
    artist: str | None
    album: str | None
    duration: float | None   # seconds
    position: float | None   # seconds into the track
    state: str               # PLAYING, PAUSED or STOPPED
    observed_at: float       # unix seconds
    app_id: str | None = None


# -------------------------
# Normalized identity used to match samples to a session
# -------------------------
@dataclass(frozen=True)
class TrackIdentity:
    title: str
    artist: str
    album: str | None

    def display(self) -> str:
        return f"{self.artist} — {self.title}" + (f" [{self.album}]" if self.album else "")


@dataclass(frozen=True)
class NowPlaying:
    """What the UI and the now-playing endpoints are told."""
    identity: TrackIdentity
    duration: float | None
    state: str
    app_id: str | None = None


def idempotency_key(identity: TrackIdentity, timestamp: int) -> str:
    raw = "\x1f".join([identity.artist, identity.title, identity.album or "", str(timestamp)])
    return hashlib.sha1(raw.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class ScrobbleRecord:
    """Immutable unit of delivery. `timestamp` is when the track started playing."""
    identity: TrackIdentity
    duration: int | None
    timestamp: int
    key: str
    app_id: str | None = None

    @classmethod
    def create(cls, identity: TrackIdentity, duration: float | None, started_at: float,
               app_id: str | None = None) -> "ScrobbleRecord":
        ts = int(started_at)
        return cls(
            identity=identity,
            duration=int(duration) if duration else None,
            timestamp=ts,
            key=idempotency_key(identity, ts),
            app_id=app_id,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "artist": self.identity.artist,
            "title": self.identity.title,
            "album": self.identity.album,
            "duration": self.duration,
            "timestamp": self.timestamp,
            "key": self.key,
            "app_id": self.app_id,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ScrobbleRecord":
        identity = TrackIdentity(title=data["title"], artist=data["artist"], album=data.get("album"))
        ts = int(data["timestamp"])
        return cls(
            identity=identity,
            duration=data.get("duration"),
            timestamp=ts,
            key=data.get("key") or idempotency_key(identity, ts),
            app_id=data.get("app_id"),
        )
