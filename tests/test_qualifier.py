"""Tests for the scrobble threshold policy."""

import pytest

from conftest import make_track
from qualifier import qualifies, threshold_ms


class TestThreshold:
    @pytest.mark.parametrize(
        ("duration_ms", "expected"),
        [
            (200_000, 100_000),
            (300_000, 150_000),
            (480_000, 240_000),
            (900_000, 240_000),
            (30_000, 15_000),
            (29_999, None),
            (None, 240_000),
        ],
    )
    def test_threshold(self, duration_ms, expected) -> None:
        assert threshold_ms(make_track(duration_ms=duration_ms)) == expected

    def test_odd_duration_needs_full_half(self) -> None:
        track = make_track(duration_ms=200_001)
        assert not qualifies(track, 100_000)
        assert qualifies(track, 100_001)


class TestQualifies:
    def test_below_threshold(self) -> None:
        assert not qualifies(make_track(duration_ms=300_000), 120_000)

    def test_at_threshold(self) -> None:
        assert qualifies(make_track(duration_ms=300_000), 150_000)

    def test_four_minutes_on_long_track(self) -> None:
        assert qualifies(make_track(duration_ms=1_200_000), 240_000)
        assert not qualifies(make_track(duration_ms=1_200_000), 239_999)

    def test_short_track_never_qualifies(self) -> None:
        assert not qualifies(make_track(duration_ms=25_000), 10_000_000)
