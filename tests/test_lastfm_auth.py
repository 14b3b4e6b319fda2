"""Tests for the Last.fm web auth helper."""

from unittest.mock import patch

from nowscrobble.lastfm_auth import authenticate


class TestLastFMAuth:
    """Tests for the web auth flow."""

    def test_returns_session_key(self) -> None:
        """The generator's session key comes back after the user confirms."""
        lines = []
        with patch("nowscrobble.lastfm_auth.pylast.LastFMNetwork"), \
                patch("nowscrobble.lastfm_auth.pylast.SessionKeyGenerator") as gen_cls, \
                patch("nowscrobble.lastfm_auth.webbrowser.open") as browser:
            generator = gen_cls.return_value
            generator.get_web_auth_url.return_value = "https://last.fm/auth?token=t"
            generator.get_web_auth_session_key.return_value = "session"
            key = authenticate("k", "s", wait=lambda _: "", out=lines.append)
        assert key == "session"
        browser.assert_called_once_with("https://last.fm/auth?token=t")
        generator.get_web_auth_session_key.assert_called_once_with("https://last.fm/auth?token=t")
        assert any("last.fm/auth" in line for line in lines)
