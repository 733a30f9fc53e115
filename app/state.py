import hashlib
import logging
import time
from dataclasses import dataclass, replace
from enum import Enum

log = logging.getLogger("tracker")


def now_ms() -> int:
    return int(time.time() * 1000)


def track_id_for(artist: str, title: str, album: str | None, duration_ms: int | None) -> str:
    """Stable id for players that don't report one (BluOS only gives us metadata)."""
    parts = [artist.strip().lower(), title.strip().lower(), (album or "").strip().lower(), str(duration_ms or "")]
    return hashlib.sha1("\x1f".join(parts).encode("utf-8")).hexdigest()


# -------------------------
# Stateless identity for a track
# -------------------------
@dataclass(frozen=True)
class Track:
    id: str
    artist: str
    title: str
    album: str | None = None
    duration_ms: int | None = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "artist": self.artist,
            "title": self.title,
            "album": self.album,
            "duration_ms": self.duration_ms,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Track":
        return cls(
            id=data["id"],
            artist=data["artist"],
            title=data["title"],
            album=data.get("album"),
            duration_ms=data.get("duration_ms"),
        )

    def __str__(self) -> str:
        return f"{self.artist} — {self.title}" + (f" [{self.album}]" if self.album else "")


class EventKind(str, Enum):
    STARTED = "started"
    PAUSED = "paused"
    RESUMED = "resumed"
    SEEKED = "seeked"
    STOPPED = "stopped"
    TRACK_CHANGED = "track_changed"


@dataclass(frozen=True)
class PlaybackEvent:
    kind: EventKind
    observed_at_ms: int
    position_ms: int | None = None
    track: Track | None = None


class SessionState(str, Enum):
    PLAYING = "playing"
    PAUSED = "paused"


@dataclass
class TrackSession:
    """The single listen currently being tracked."""
    track: Track
    started_at_ms: int
    last_transition_ms: int
    played_ms: int = 0
    state: SessionState = SessionState.PLAYING


@dataclass(frozen=True)
class FinishedSession:
    track: Track
    started_at_ms: int
    played_ms: int


class SessionTracker:
    """Turns an ordered stream of playback events into finished listens.

    Listened time is accumulated from wall-clock gaps between transitions while
    the session is playing. Position changes (seeks) never count as listening.
    A new Started/TrackChanged or a Stopped finalizes the active session and
    hands it back to the caller, who decides whether it is worth a scrobble.
    """

    def __init__(self):
        self._session: TrackSession | None = None

    @property
    def current(self) -> TrackSession | None:
        """A copy of the active session; changing it doesn't touch the tracker."""
        return replace(self._session) if self._session is not None else None

    def handle(self, event: PlaybackEvent) -> FinishedSession | None:
        kind = event.kind
        if kind in (EventKind.STARTED, EventKind.TRACK_CHANGED):
            if event.track is None:
                log.warning("Ignoring %s event without a track", kind.value)
                return None
            finished = self._finalize(event)
            self._session = TrackSession(
                track=event.track,
                started_at_ms=event.observed_at_ms,
                last_transition_ms=event.observed_at_ms,
            )
            log.debug("Session started: %s", event.track)
            return finished

        session = self._session
        if session is None:
            log.warning("Unexpected %s event with no active session; skipping", kind.value)
            return None

        if kind == EventKind.PAUSED:
            if session.state != SessionState.PLAYING:
                log.debug("Paused while already paused; ignoring")
                return None
            session.played_ms += self._elapsed(session, event)
            session.state = SessionState.PAUSED
            session.last_transition_ms = event.observed_at_ms
        elif kind == EventKind.RESUMED:
            if session.state != SessionState.PAUSED:
                log.debug("Resumed while already playing; ignoring")
                return None
            session.state = SessionState.PLAYING
            session.last_transition_ms = event.observed_at_ms
        elif kind == EventKind.SEEKED:
            log.debug("Seek to %sms in %s (played so far %sms)", event.position_ms, session.track, session.played_ms)
        elif kind == EventKind.STOPPED:
            finished = self._finalize(event)
            self._session = None
            return finished
        return None

    def _elapsed(self, session: TrackSession, event: PlaybackEvent) -> int:
        delta = event.observed_at_ms - session.last_transition_ms
        if delta < 0:
            log.warning("Out-of-order %s event (%sms before last transition); counting 0ms",
                        event.kind.value, -delta)
            return 0
        return delta

    def _finalize(self, event: PlaybackEvent) -> FinishedSession | None:
        session = self._session
        if session is None:
            return None
        if session.state == SessionState.PLAYING:
            session.played_ms += self._elapsed(session, event)
            session.last_transition_ms = event.observed_at_ms
        log.debug("Session finished: %s played=%sms", session.track, session.played_ms)
        return FinishedSession(
            track=session.track,
            started_at_ms=session.started_at_ms,
            played_ms=session.played_ms,
        )
