"""Shared helpers for building samples and records."""

import pytest

from nowscrobble.models import PLAYING, Sample, ScrobbleRecord, TrackIdentity


def make_sample(
    state: str = PLAYING,
    t: float = 0.0,
    position: float | None = None,
    duration: float | None = 200.0,
    title: str = "Song",
    artist: str = "Artist",
    album: str | None = "Album",
    app_id: str | None = None,
) -> Sample:
    return Sample(
        title=title,
        artist=artist,
        album=album,
        duration=duration,
        position=position,
        state=state,
        observed_at=t,
        app_id=app_id,
    )


def make_record(title: str = "Song", timestamp: int = 1_700_000_000, artist: str = "Artist") -> ScrobbleRecord:
    return ScrobbleRecord.create(TrackIdentity(title=title, artist=artist, album="Album"), 200, timestamp)


class FakeClock:
    def __init__(self, t: float = 1_700_000_000.0):
        self.t = t

    def __call__(self) -> float:
        return self.t

    def advance(self, seconds: float) -> None:
        self.t += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
