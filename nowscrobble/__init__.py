"""Now-playing scrobbler: play sessions from polled samples, queued delivery to Last.fm and ListenBrainz."""

__version__ = "0.1.0"
