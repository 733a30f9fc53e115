from __future__ import annotations
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Iterable

from qualifier import qualifies, threshold_ms
from scrobble_queue import ScrobbleRecord, ScrobbleStore
from state import EventKind, PlaybackEvent, SessionTracker, Track
from submission_worker import SubmissionWorker

log = logging.getLogger("engine")


class EngineFatalError(Exception):
    """Scrobbles can no longer be delivered without operator action."""


class EngineClosedError(Exception): ...


class ScrobbleEngine:
    """Wires playback events to the scrobble queue and owns the worker lifecycle.

    Events are handled one at a time on the caller's thread, in arrival order.
    Submission happens on the worker thread and now-playing updates on a
    separate single-thread executor, so neither can stall event handling.
    """

    def __init__(self, client, store: ScrobbleStore, worker: SubmissionWorker | None = None,
                 tracker: SessionTracker | None = None):
        self.client = client
        self.store = store
        self.tracker = tracker or SessionTracker()
        self.worker = worker or SubmissionWorker(store, client)
        self.stopping = threading.Event()
        self._now_playing = ThreadPoolExecutor(max_workers=1, thread_name_prefix="now-playing")
        self._started = False
        self._closed = False

        previous = self.worker.on_fatal
        def on_fatal(error: BaseException) -> None:
            if previous is not None:
                previous(error)
            self.request_stop()
        self.worker.on_fatal = on_fatal

    def start(self) -> None:
        if self._closed:
            raise EngineClosedError("Engine has been shut down")
        if not self._started:
            self.worker.start()
            self._started = True

    def request_stop(self) -> None:
        self.stopping.set()

    # -------- event path --------
    def handle(self, event: PlaybackEvent) -> ScrobbleRecord | None:
        if self._closed:
            raise EngineClosedError("Engine has been shut down")

        finished = self.tracker.handle(event)
        record = None
        if finished is not None:
            if qualifies(finished.track, finished.played_ms):
                record = ScrobbleRecord(
                    track=finished.track,
                    started_at_ms=finished.started_at_ms,
                    played_ms=finished.played_ms,
                )
                if self.store.enqueue(record):
                    log.info("Queued scrobble: %s (played %ss)", finished.track, finished.played_ms // 1000)
                    self.worker.wake()
            else:
                log.info("Not scrobbling %s: played %sms, needed %s",
                         finished.track, finished.played_ms, threshold_ms(finished.track) or "n/a (too short)")

        if event.kind in (EventKind.STARTED, EventKind.TRACK_CHANGED) and event.track is not None:
            self._now_playing.submit(self._send_now_playing, event.track)
        return record

    def _send_now_playing(self, track: Track) -> None:
        current = self.tracker.current
        if current is None or current.track != track:
            # A newer track already took over; this update would be wrong
            return
        try:
            self.client.update_now_playing(track)
        except Exception as e:
            log.debug("Now playing update for %s failed: %s", track, e)

    def run(self, events: Iterable[PlaybackEvent], shutdown_timeout: float | None = 30.0) -> None:
        """Consume `events` until they run out, stop is requested or the worker dies."""
        self.start()
        try:
            for event in events:
                if self.stopping.is_set():
                    break
                self.handle(event)
                if self.worker.fatal_error is not None:
                    break
        finally:
            self.shutdown(shutdown_timeout)

        fatal = self.worker.fatal_error
        if fatal is not None:
            raise EngineFatalError(str(fatal)) from fatal

    def shutdown(self, timeout: float | None = 30.0) -> None:
        if self._closed:
            return
        self._closed = True
        self.stopping.set()
        current = self.tracker.current
        if current is not None:
            log.info("Shutting down mid-listen; %s (played %sms) will not be scrobbled",
                     current.track, current.played_ms)
        self.worker.stop(timeout)
        self._now_playing.shutdown(wait=False, cancel_futures=True)
        self.store.close()
        log.info("Engine stopped; %s scrobbles left queued", self.store.size())
