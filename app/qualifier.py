"""
Scrobble policy.

Last.fm guideline: a track longer than 30s counts once it has been played for
half its duration or 4 minutes, whichever comes first.
"""

from state import Track

MIN_TRACK_MS = 30_000
MAX_THRESHOLD_MS = 240_000


def threshold_ms(track: Track) -> int | None:
    """Listened time needed for `track` to count, or None if it never can."""
    if track.duration_ms is None:
        # Unknown length (radio streams etc.): fall back to the 4 minute arm
        return MAX_THRESHOLD_MS
    if track.duration_ms < MIN_TRACK_MS:
        return None
    return min(MAX_THRESHOLD_MS, (track.duration_ms + 1) // 2)


def qualifies(track: Track, played_ms: int) -> bool:
    needed = threshold_ms(track)
    return needed is not None and played_ms >= needed
