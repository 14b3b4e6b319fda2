import pylast
import logging

from nowscrobble.errors import PermanentDeliveryError, RetryableDeliveryError
from nowscrobble.models import NowPlaying, ScrobbleRecord

log = logging.getLogger("lastfm")

# Last.fm error codes that retrying will not fix
AUTH_ERRORS = {4, 9, 10, 14, 26}     # auth failed, invalid session, invalid key, token expired, suspended key
REJECTED_ERRORS = {6, 13}            # invalid parameters, invalid signature
# 8=operation failed, 11=service offline, 16=temporary error, 29=rate limit; anything else is retried too


class LastFMBackend:
    """Scrobble backend over pylast. submit() raises Retryable/PermanentDeliveryError."""

    def __init__(self, api_key: str, api_secret: str, session_key: str | None = None,
                 username: str | None = None, password_md5: str | None = None, name: str = "lastfm"):
        self.name = name
        if session_key:
            log.info("Using Last.fm session key auth")
            self.network = pylast.LastFMNetwork(
                api_key=api_key,
                api_secret=api_secret,
                session_key=session_key,
            )
        elif username and password_md5:
            log.info("Using Last.fm username + MD5 password auth")
            self.network = pylast.LastFMNetwork(
                api_key=api_key,
                api_secret=api_secret,
                username=username,
                password_hash=password_md5,
            )
        else:
            raise ValueError("Missing Last.fm credentials")

    def now_playing(self, info: NowPlaying) -> None:
        """Push a Now Playing update. Non-fatal on failure."""
        try:
            self.network.update_now_playing(
                artist=info.identity.artist,
                title=info.identity.title,
                album=info.identity.album,
                duration=int(info.duration) if info.duration else None,
            )
        except pylast.WSError as e:
            # NOW PLAYING failures aren't critical; log at DEBUG
            log.debug("update_now_playing failed: code=%s msg=%s", getattr(e, "status", "?"), e)
        except Exception as e:
            log.debug("update_now_playing network error: %s", e)

    def submit(self, record: ScrobbleRecord) -> None:
        """Submit a scrobble to Last.fm with its start timestamp (unix seconds)."""
        try:
            self.network.scrobble(
                artist=record.identity.artist,
                title=record.identity.title,
                album=record.identity.album,
                duration=record.duration,
                timestamp=record.timestamp,
            )
        except pylast.WSError as e:
            code = _error_code(e)
            if code in AUTH_ERRORS:
                raise PermanentDeliveryError(f"Last.fm auth error {code}: {e}") from e
            if code in REJECTED_ERRORS:
                raise PermanentDeliveryError(f"Last.fm rejected scrobble ({code}): {e}") from e
            raise RetryableDeliveryError(f"Last.fm API error {code}: {e}") from e
        except (pylast.NetworkError, pylast.MalformedResponseError) as e:
            raise RetryableDeliveryError(f"Last.fm network error: {e}") from e
        except Exception as e:
            raise RetryableDeliveryError(str(e)) from e


def _error_code(e: "pylast.WSError") -> int | None:
    # pylast keeps the numeric code as a string in `status`
    try:
        return int(e.get_id())
    except (AttributeError, TypeError, ValueError):
        return None
