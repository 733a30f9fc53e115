"""
BluOS status polling -> playback events.

The player only tells us what it is doing right now, so we diff consecutive
/Status snapshots and emit the transitions the engine understands.
"""

from __future__ import annotations
import logging
import threading
from typing import Callable, Iterator, List

from bluos import BluOSClient, BluOSStatus
from state import EventKind, PlaybackEvent, Track, now_ms

log = logging.getLogger("bluos")

PLAYING_STATES = {"play", "stream"}
PAUSED_STATES = {"pause"}
# Player is between tracks/sources; keep whatever we had until it settles
TRANSIENT_STATES = {"connecting"}

# Position drift we accept between polls before calling it a seek
SEEK_TOLERANCE_MS = 5_000


class StatusTranslator:
    def __init__(self, seek_tolerance_ms: int = SEEK_TOLERANCE_MS):
        self.seek_tolerance_ms = seek_tolerance_ms
        self._track: Track | None = None
        self._playing = False
        self._last_position_ms: int | None = None
        self._last_observed_ms: int | None = None

    def feed(self, status: BluOSStatus, observed_at_ms: int) -> List[PlaybackEvent]:
        if status.state in TRANSIENT_STATES:
            return []

        track = status.track()
        position = status.position_ms
        playing = status.state in PLAYING_STATES
        paused = status.state in PAUSED_STATES
        events: List[PlaybackEvent] = []

        def emit(kind: EventKind, with_track: bool = False) -> None:
            events.append(PlaybackEvent(
                kind=kind,
                observed_at_ms=observed_at_ms,
                position_ms=position,
                track=track if with_track else None,
            ))

        if track is None or not (playing or paused):
            if self._track is not None:
                emit(EventKind.STOPPED)
            self._remember(None, False, position, observed_at_ms)
            return events

        if self._track is None:
            if paused:
                # Nothing is being listened to yet; pick it up once it plays
                return events
            emit(EventKind.STARTED, with_track=True)
        elif track.id != self._track.id or self._is_replay(track, position, observed_at_ms):
            emit(EventKind.TRACK_CHANGED, with_track=True)
            if paused:
                emit(EventKind.PAUSED)
        elif paused:
            if self._playing:
                emit(EventKind.PAUSED)
        elif not self._playing:
            emit(EventKind.RESUMED)
        elif self._is_seek(position, observed_at_ms):
            emit(EventKind.SEEKED)

        self._remember(track, playing, position, observed_at_ms)
        return events

    def _remember(self, track: Track | None, playing: bool, position: int | None, observed: int) -> None:
        self._track = track
        self._playing = playing
        self._last_position_ms = position
        self._last_observed_ms = observed

    def _is_seek(self, position: int | None, observed: int) -> bool:
        if position is None or self._last_position_ms is None or self._last_observed_ms is None:
            return False
        expected = self._last_position_ms + (observed - self._last_observed_ms)
        return abs(position - expected) > self.seek_tolerance_ms

    def _is_replay(self, track: Track, position: int | None, observed: int) -> bool:
        """Same track again from the top right after it reached its end."""
        if (not self._playing or position is None or self._last_position_ms is None
                or self._last_observed_ms is None or not track.duration_ms):
            return False
        if position >= self._last_position_ms:
            return False
        window = observed - self._last_observed_ms + self.seek_tolerance_ms
        return position <= window and self._last_position_ms >= track.duration_ms - window


def status_events(client: BluOSClient, poll_interval: float, stop: threading.Event,
                  clock: Callable[[], int] = now_ms,
                  translator: StatusTranslator | None = None) -> Iterator[PlaybackEvent]:
    """Poll the player until `stop` is set, yielding events as they happen."""
    translator = translator or StatusTranslator()
    while not stop.is_set():
        status = client.get_status()
        if status is None:
            log.debug("Parsed: status=None (unreachable or XML parse failed)")
        else:
            log.debug("Parsed: state=%s artist=%s title=%s album=%s elapsed=%s duration=%s",
                      status.state, status.artist, status.title, status.album, status.secs, status.duration)
            for event in translator.feed(status, clock()):
                log.debug("Playback event: %s", event.kind.value)
                yield event
        stop.wait(poll_interval)
