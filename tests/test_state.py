"""Tests for SessionTracker: listened-time accumulation and session finalization."""

from conftest import event, make_track
from state import EventKind, SessionState, SessionTracker, track_id_for

STARTED = EventKind.STARTED
PAUSED = EventKind.PAUSED
RESUMED = EventKind.RESUMED
SEEKED = EventKind.SEEKED
STOPPED = EventKind.STOPPED
CHANGED = EventKind.TRACK_CHANGED


class TestAccumulation:
    def test_pause_resume_stop_example(self) -> None:
        """Started 0, paused 150s, resumed 160s, stopped 170s -> 160s played."""
        tracker = SessionTracker()
        track = make_track(duration_ms=200_000)

        assert tracker.handle(event(STARTED, 0, track)) is None
        assert tracker.handle(event(PAUSED, 150_000)) is None
        assert tracker.current.played_ms == 150_000
        assert tracker.handle(event(RESUMED, 160_000)) is None
        finished = tracker.handle(event(STOPPED, 170_000))

        assert finished.track == track
        assert finished.started_at_ms == 0
        assert finished.played_ms == 160_000
        assert tracker.current is None

    def test_paused_time_is_not_counted(self) -> None:
        tracker = SessionTracker()
        tracker.handle(event(STARTED, 0, make_track()))
        tracker.handle(event(PAUSED, 10_000))
        finished = tracker.handle(event(STOPPED, 500_000))
        assert finished.played_ms == 10_000

    def test_seek_does_not_change_played_time(self) -> None:
        tracker = SessionTracker()
        tracker.handle(event(STARTED, 0, make_track()))
        tracker.handle(event(SEEKED, 5_000, position=180_000))
        tracker.handle(event(SEEKED, 6_000, position=0))
        assert tracker.current.played_ms == 0
        finished = tracker.handle(event(STOPPED, 20_000))
        assert finished.played_ms == 20_000

    def test_seek_while_paused_keeps_time_frozen(self) -> None:
        tracker = SessionTracker()
        tracker.handle(event(STARTED, 0, make_track()))
        tracker.handle(event(PAUSED, 30_000))
        tracker.handle(event(SEEKED, 40_000, position=100_000))
        assert tracker.current.played_ms == 30_000
        assert tracker.current.state == SessionState.PAUSED

    def test_repeated_pause_and_resume_are_ignored(self) -> None:
        tracker = SessionTracker()
        tracker.handle(event(STARTED, 0, make_track()))
        tracker.handle(event(RESUMED, 5_000))
        tracker.handle(event(PAUSED, 10_000))
        tracker.handle(event(PAUSED, 20_000))
        tracker.handle(event(RESUMED, 30_000))
        tracker.handle(event(RESUMED, 35_000))
        finished = tracker.handle(event(STOPPED, 40_000))
        assert finished.played_ms == 20_000

    def test_current_is_a_copy(self) -> None:
        tracker = SessionTracker()
        tracker.handle(event(STARTED, 0, make_track()))
        snapshot = tracker.current
        snapshot.played_ms = 999_999
        snapshot.state = SessionState.PAUSED
        assert tracker.current.played_ms == 0
        assert tracker.current.state == SessionState.PLAYING
        assert tracker.handle(event(STOPPED, 10_000)).played_ms == 10_000

    def test_out_of_order_event_counts_nothing(self) -> None:
        tracker = SessionTracker()
        tracker.handle(event(STARTED, 10_000, make_track()))
        tracker.handle(event(PAUSED, 5_000))
        assert tracker.current.played_ms == 0


class TestFinalization:
    def test_track_change_finalizes_previous_session(self) -> None:
        tracker = SessionTracker()
        a, b = make_track("a"), make_track("b")
        tracker.handle(event(STARTED, 0, a))
        finished = tracker.handle(event(CHANGED, 90_000, b))

        assert finished.track == a
        assert finished.played_ms == 90_000
        assert tracker.current.track == b
        assert tracker.current.started_at_ms == 90_000
        assert tracker.current.played_ms == 0
        assert tracker.current.state == SessionState.PLAYING

    def test_started_over_active_session_finalizes_it(self) -> None:
        tracker = SessionTracker()
        tracker.handle(event(STARTED, 0, make_track("a")))
        finished = tracker.handle(event(STARTED, 45_000, make_track("b")))
        assert finished.played_ms == 45_000

    def test_change_from_paused_session_uses_frozen_time(self) -> None:
        tracker = SessionTracker()
        tracker.handle(event(STARTED, 0, make_track("a")))
        tracker.handle(event(PAUSED, 60_000))
        finished = tracker.handle(event(CHANGED, 300_000, make_track("b")))
        assert finished.played_ms == 60_000

    def test_same_track_change_starts_new_session(self) -> None:
        """A replay of the same track is a separate listen."""
        tracker = SessionTracker()
        track = make_track("a")
        tracker.handle(event(STARTED, 0, track))
        finished = tracker.handle(event(CHANGED, 200_000, track))
        assert finished.started_at_ms == 0
        assert tracker.current.started_at_ms == 200_000
        assert tracker.current.played_ms == 0

    def test_first_start_finalizes_nothing(self) -> None:
        assert SessionTracker().handle(event(STARTED, 0, make_track())) is None

    def test_each_session_finalized_once(self) -> None:
        tracker = SessionTracker()
        tracker.handle(event(STARTED, 0, make_track()))
        assert tracker.handle(event(STOPPED, 10_000)) is not None
        assert tracker.handle(event(STOPPED, 20_000)) is None


class TestUnexpectedEvents:
    def test_events_without_session_are_noops(self) -> None:
        tracker = SessionTracker()
        for kind in (PAUSED, RESUMED, SEEKED, STOPPED):
            assert tracker.handle(event(kind, 1_000)) is None
        assert tracker.current is None

    def test_start_without_track_is_skipped(self) -> None:
        tracker = SessionTracker()
        tracker.handle(event(STARTED, 0, make_track("a")))
        assert tracker.handle(event(CHANGED, 10_000)) is None
        assert tracker.current.track.id == "a"


class TestTrackId:
    def test_stable_and_case_insensitive(self) -> None:
        assert track_id_for("Artist", "Song", "LP", 1000) == track_id_for(" artist", "SONG ", "lp", 1000)

    def test_differs_by_album(self) -> None:
        assert track_id_for("A", "S", "LP1", None) != track_id_for("A", "S", "LP2", None)
