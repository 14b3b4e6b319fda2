"""
Tests for the polling pipeline.

Tests cover:
- Filtered apps never reaching the tracker
- Normalized names flowing into the queue
- UI and worker notifications
"""

from unittest.mock import MagicMock

import pytest

from nowscrobble.app_filter import IGNORED, AppDecisionStore, AppFilter
from nowscrobble.main import Pipeline, build_backends
from nowscrobble.config import load_settings
from nowscrobble.scrobble_queue import ScrobbleQueue
from nowscrobble.state import PlaybackTracker
from nowscrobble.text_cleanup import TextCleaner
from nowscrobble.ui import StatusBoard

from conftest import make_sample


@pytest.fixture
def store(tmp_path):
    return AppDecisionStore(str(tmp_path / "apps.json"))


def make_pipeline(tmp_path, store, workers=(), **filter_kw):
    return Pipeline(
        AppFilter(store, **filter_kw),
        TextCleaner(),
        PlaybackTracker(),
        ScrobbleQueue(str(tmp_path / "queue.json"), ["lastfm"]),
        StatusBoard(),
        list(workers),
    )


def play(pipeline, until=200, step=5, **kw):
    t = 0
    while t <= until:
        pipeline.step(make_sample(t=t, position=t, **kw))
        t += step


class TestPipeline:
    """Tests for Pipeline.step()."""

    def test_ignored_app_never_reaches_tracker(self, tmp_path, store) -> None:
        """An ignored app produces no session, no scrobble and no UI update."""
        store.set("TuneIn", IGNORED)
        pipeline = make_pipeline(tmp_path, store)
        pipeline.tracker = MagicMock(wraps=pipeline.tracker)
        play(pipeline, app_id="TuneIn")
        pipeline.tracker.observe.assert_not_called()
        assert pipeline.queue.size() == 0
        assert pipeline.board.now_playing is None

    def test_allowed_app_is_scrobbled_with_clean_names(self, tmp_path, store) -> None:
        """Cleanup runs before the tracker so the record carries clean names."""
        pipeline = make_pipeline(tmp_path, store, prompt_for_new_apps=False)
        play(pipeline, title="Song [Explicit]", app_id="Qobuz")
        assert pipeline.queue.size() == 1
        assert pipeline.board.last_scrobbled == "Artist — Song [Album]"
        assert store.get("Qobuz") is None

    def test_notifies_workers(self, tmp_path, store) -> None:
        """Workers get the now-playing update and a wake-up after enqueue."""
        worker = MagicMock()
        pipeline = make_pipeline(tmp_path, store, workers=[worker])
        play(pipeline, until=100)
        assert worker.set_now_playing.call_args_list[0].args[0].identity.title == "Song"
        worker.wake.assert_called_once()

    def test_no_media_passes_through_as_stop(self, tmp_path, store) -> None:
        """A missing sample reaches the tracker as an implicit stop."""
        pipeline = make_pipeline(tmp_path, store)
        play(pipeline, until=20)
        events = pipeline.step(None, now=25)
        assert events.now_playing_changed
        assert pipeline.board.now_playing == "Artist — Song [Album] (stopped)"

    def test_filtered_samples_pause_the_open_session(self, tmp_path, store) -> None:
        """Time spent on an ignored app is not credited to the track before it."""
        store.set("TuneIn", IGNORED)
        pipeline = make_pipeline(tmp_path, store, prompt_for_new_apps=False)
        play(pipeline, until=10, app_id="Qobuz")
        t = 15
        while t <= 3595:
            pipeline.step(make_sample(t=t, position=t - 15, title="Other", app_id="TuneIn"))
            t += 5
        events = pipeline.step(None, now=3605)
        assert events.scrobble is None
        assert pipeline.queue.size() == 0
        assert pipeline.tracker.current.accumulated == 10

    def test_suspend_freezes_the_session(self, tmp_path, store) -> None:
        """A cycle without a reading stops the clock and tells the UI."""
        pipeline = make_pipeline(tmp_path, store)
        play(pipeline, until=20)
        events = pipeline.suspend(600)
        assert events.now_playing_changed
        assert pipeline.board.now_playing == "Artist — Song [Album] (paused)"
        pipeline.step(None, now=605)
        assert pipeline.queue.size() == 0


class TestBuildBackends:
    """Tests for backend construction from settings."""

    def test_listenbrainz_only(self) -> None:
        """Each configured instance becomes a backend named after it."""
        settings = load_settings({"LISTENBRAINZ_TOKEN": "t", "LISTENBRAINZ_2_TOKEN": "u"})
        assert [b.name for b in build_backends(settings)] == ["ListenBrainz", "ListenBrainz 2"]
