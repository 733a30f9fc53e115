import pylast
import logging

from scrobble_queue import ScrobbleRecord
from state import Track

log = logging.getLogger("lastfm")


# Callers only need to know whether trying again can help
class ScrobbleSubmitError(Exception): ...
class RetryableScrobbleError(ScrobbleSubmitError): ...
class PermanentScrobbleError(ScrobbleSubmitError): ...

# Custom error classes so callers can branch
class LastFMAuthError(PermanentScrobbleError): ...
class LastFMInvalidRequestError(PermanentScrobbleError): ...
class LastFMRateLimitError(RetryableScrobbleError): ...
class LastFMNetworkError(RetryableScrobbleError): ...
class LastFMUnknownError(RetryableScrobbleError): ...

# 4=Auth failed, 9=Invalid session, 10=Invalid API key, 13=Invalid signature,
# 14=Token not authorized, 26=Suspended API key
AUTH_ERROR_CODES = {4, 9, 10, 13, 14, 26}
INVALID_PARAMS_CODE = 6
RATE_LIMIT_CODE = 29


def _ws_error_code(e: pylast.WSError) -> int | None:
    try:
        return int(e.get_id())
    except (TypeError, ValueError):
        return None


def _seconds(ms: int | None) -> int | None:
    return ms // 1000 if ms else None


class LastFMClient:
    """Thin wrapper over pylast for update-now-playing + scrobbling."""

    def __init__(self, api_key: str, api_secret: str, session_key: str | None,
                 username: str | None, password_md5: str | None):
        if session_key:
            log.info("Using Last.fm session key auth")
            self.network = pylast.LastFMNetwork(
                api_key=api_key,
                api_secret=api_secret,
                session_key=session_key,
            )
        elif username and password_md5:
            log.info("Using Last.fm username + MD5 password auth")
            try:
                self.network = pylast.LastFMNetwork(
                    api_key=api_key,
                    api_secret=api_secret,
                    username=username,
                    password_hash=password_md5,
                )
            except pylast.WSError as e:
                raise self._translate(e) from e
            except pylast.PyLastError as e:
                raise LastFMNetworkError(str(e)) from e
        else:
            raise ValueError("Missing Last.fm credentials")

    @staticmethod
    def _translate(e: pylast.WSError) -> ScrobbleSubmitError:
        code = _ws_error_code(e)
        msg = str(e)
        # Map common Last.fm error codes
        if code in AUTH_ERROR_CODES:
            return LastFMAuthError(msg)
        if code == INVALID_PARAMS_CODE:
            return LastFMInvalidRequestError(msg)
        if code == RATE_LIMIT_CODE:
            return LastFMRateLimitError(msg)
        # 8=Operation failed, 11=Service offline, 16=Temporarily unavailable, ...
        return LastFMUnknownError(f"Last.fm API error {code}: {msg}")

    def check_auth(self) -> str:
        """Ask Last.fm who we are; raises LastFMAuthError on bad credentials."""
        try:
            user = self.network.get_authenticated_user()
            name = user.get_name()
        except pylast.WSError as e:
            raise self._translate(e) from e
        except Exception as e:
            raise LastFMNetworkError(str(e)) from e
        log.info("Authenticated with Last.fm as %s", name)
        return name

    def update_now_playing(self, track: Track) -> bool:
        """Push a Now Playing update. Non-fatal on failure."""
        try:
            self.network.update_now_playing(
                artist=track.artist,
                title=track.title,
                album=track.album,
                duration=_seconds(track.duration_ms),
            )
        except pylast.WSError as e:
            # NOW PLAYING failures aren't critical; log at DEBUG
            log.debug("update_now_playing failed: code=%s msg=%s", _ws_error_code(e), e)
            return False
        except Exception as e:
            log.debug("update_now_playing network error: %s", e)
            return False
        log.debug("Now playing: %s", track)
        return True

    def scrobble(self, record: ScrobbleRecord) -> None:
        """Submit a scrobble to Last.fm stamped with the session start (unix seconds)."""
        track = record.track
        try:
            self.network.scrobble(
                artist=track.artist,
                title=track.title,
                timestamp=record.started_at_ms // 1000,
                album=track.album,
                duration=_seconds(track.duration_ms),
            )
        except pylast.WSError as e:
            raise self._translate(e) from e
        except Exception as e:
            raise LastFMNetworkError(str(e)) from e
