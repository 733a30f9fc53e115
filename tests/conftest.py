"""Shared fixtures: tracks, a scripted Last.fm stand-in and a controllable clock."""

import pytest

from lastfm_client import LastFMAuthError, LastFMNetworkError
from scrobble_queue import ScrobbleRecord, ScrobbleStore
from state import EventKind, PlaybackEvent, Track


def make_track(track_id: str = "track-a", duration_ms: int | None = 200_000, **kwargs) -> Track:
    return Track(
        id=track_id,
        artist=kwargs.get("artist", "Artist"),
        title=kwargs.get("title", f"Title {track_id}"),
        album=kwargs.get("album"),
        duration_ms=duration_ms,
    )


def event(kind: EventKind, at: int, track: Track | None = None, position: int | None = None) -> PlaybackEvent:
    return PlaybackEvent(kind=kind, observed_at_ms=at, position_ms=position, track=track)


def make_record(track_id: str = "track-a", started_at_ms: int = 0, played_ms: int = 120_000) -> ScrobbleRecord:
    return ScrobbleRecord(track=make_track(track_id), started_at_ms=started_at_ms, played_ms=played_ms)


class FakeScrobbleClient:
    """Records calls; `outcomes` is consumed one per scrobble (None means success)."""

    def __init__(self, outcomes=None):
        self.outcomes = list(outcomes or [])
        self.scrobbled = []
        self.attempts = []
        self.now_playing = []

    def update_now_playing(self, track):
        self.now_playing.append(track)
        return True

    def scrobble(self, record):
        self.attempts.append(record.key)
        outcome = self.outcomes.pop(0) if self.outcomes else None
        if outcome is not None:
            raise outcome
        self.scrobbled.append(record.key)


class FakeClock:
    def __init__(self, now: int = 1_700_000_000_000):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


@pytest.fixture
def store(tmp_path):
    s = ScrobbleStore(str(tmp_path / "queue.json"))
    yield s
    s.close()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def network_error():
    return LastFMNetworkError("connection reset")


@pytest.fixture
def auth_error():
    return LastFMAuthError("Invalid session key")
