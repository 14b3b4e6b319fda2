"""Tests for load_settings()."""

import pytest

from nowscrobble.config import load_settings
from nowscrobble.errors import ConfigError
from nowscrobble.text_cleanup import DEFAULT_PATTERNS


class TestDefaults:
    """Tests for an empty environment."""

    def test_defaults(self) -> None:
        """Nothing set gives the documented defaults and no backends."""
        settings = load_settings({})
        assert settings.poll_interval == 5
        assert settings.scrobble_threshold == 50
        assert settings.grace_period == 10.0
        assert settings.prompt_for_new_apps is True
        assert settings.scrobble_unknown is True
        assert settings.cleanup_patterns == tuple(DEFAULT_PATTERNS)
        assert settings.lastfm is None
        assert settings.listenbrainz == ()

    def test_grace_period_follows_poll_interval(self) -> None:
        """Default grace covers one missed poll."""
        assert load_settings({"POLL_INTERVAL": "3"}).grace_period == 6.0


class TestValidation:
    """Tests for rejected values."""

    @pytest.mark.parametrize(
        "env",
        [
            {"POLL_INTERVAL": "0"},
            {"POLL_INTERVAL": "fast"},
            {"SCROBBLE_THRESHOLD": "0"},
            {"SCROBBLE_THRESHOLD": "101"},
            {"PROMPT_FOR_NEW_APPS": "maybe"},
            {"CLEANUP_PATTERNS": "not json"},
            {"CLEANUP_PATTERNS": '{"a": 1}'},
            {"RETRY_BASE": "100", "RETRY_CEILING": "10"},
        ],
    )
    def test_invalid_values(self, env) -> None:
        """Invalid numbers, booleans and lists are ConfigErrors."""
        with pytest.raises(ConfigError):
            load_settings(env)

    def test_overlapping_app_lists(self) -> None:
        """An id cannot be both allowed and ignored."""
        with pytest.raises(ConfigError, match="Spotify"):
            load_settings({"ALLOWED_APPS": "Spotify, Tidal", "IGNORED_APPS": "Spotify"})

    def test_app_lists(self) -> None:
        """Comma separated, whitespace trimmed."""
        settings = load_settings({"ALLOWED_APPS": " Spotify ,Tidal,", "IGNORED_APPS": "TuneIn"})
        assert settings.allowed_apps == ("Spotify", "Tidal")
        assert settings.ignored_apps == ("TuneIn",)


class TestBackends:
    """Tests for backend settings."""

    def test_lastfm_session_key(self) -> None:
        """API key implies Last.fm is enabled."""
        settings = load_settings({"LASTFM_API_KEY": "k", "LASTFM_API_SECRET": "s", "LASTFM_SESSION_KEY": "sk"})
        assert settings.lastfm.session_key == "sk"

    def test_lastfm_missing_secret(self) -> None:
        """Enabled Last.fm needs key and secret."""
        with pytest.raises(ConfigError):
            load_settings({"LASTFM_API_KEY": "k", "LASTFM_SESSION_KEY": "sk"})

    def test_lastfm_missing_credentials(self) -> None:
        """Enabled Last.fm needs a session key or username + password."""
        with pytest.raises(ConfigError, match="LASTFM_SESSION_KEY"):
            load_settings({"LASTFM_API_KEY": "k", "LASTFM_API_SECRET": "s"})

    def test_lastfm_disabled_explicitly(self) -> None:
        """LASTFM_ENABLED=false wins over a configured key."""
        assert load_settings({"LASTFM_API_KEY": "k", "LASTFM_ENABLED": "false"}).lastfm is None

    def test_multiple_listenbrainz(self) -> None:
        """Numbered variables add more ListenBrainz instances."""
        settings = load_settings({
            "LISTENBRAINZ_TOKEN": "t1",
            "LISTENBRAINZ_2_TOKEN": "t2",
            "LISTENBRAINZ_2_NAME": "Self-hosted",
            "LISTENBRAINZ_2_API_URL": "https://lb.example",
        })
        assert [(lb.name, lb.token, lb.api_url) for lb in settings.listenbrainz] == [
            ("ListenBrainz", "t1", "https://api.listenbrainz.org"),
            ("Self-hosted", "t2", "https://lb.example"),
        ]

    def test_duplicate_listenbrainz_names(self) -> None:
        """Instance names key the queue, so they must differ."""
        with pytest.raises(ConfigError):
            load_settings({
                "LISTENBRAINZ_TOKEN": "t1",
                "LISTENBRAINZ_2_TOKEN": "t2",
                "LISTENBRAINZ_2_NAME": "ListenBrainz",
            })

    def test_listenbrainz_name_clashing_with_lastfm(self) -> None:
        """Backend names key the queue, Last.fm owns 'lastfm'."""
        with pytest.raises(ConfigError, match="lastfm"):
            load_settings({
                "LASTFM_API_KEY": "k", "LASTFM_API_SECRET": "s", "LASTFM_SESSION_KEY": "sk",
                "LISTENBRAINZ_TOKEN": "t1", "LISTENBRAINZ_NAME": "lastfm",
            })
