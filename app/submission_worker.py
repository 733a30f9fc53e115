"""
Background scrobble submitter.

Drains the persistent queue on its own thread so a slow or unreachable Last.fm
never holds up playback tracking. Failed submissions are not retried in place:
each record gets a next-retry time and the loop simply skips it until then.
"""

from __future__ import annotations
import logging
import random
import threading
from dataclasses import dataclass
from typing import Callable

from lastfm_client import PermanentScrobbleError, RetryableScrobbleError
from scrobble_queue import ScrobbleRecord, ScrobbleStore, StoreError
from state import now_ms

log = logging.getLogger("worker")

# 2**32 * base is past any sane max delay; keeps the float math finite
MAX_EXPONENT = 32


@dataclass(frozen=True)
class BackoffPolicy:
    base_delay_ms: int = 30_000
    max_delay_ms: int = 3_600_000
    # Must stay <= 1/3 so delays never shrink as the retry count grows
    jitter: float = 0.2

    def __post_init__(self):
        if self.base_delay_ms <= 0 or self.max_delay_ms < self.base_delay_ms:
            raise ValueError("Need 0 < base_delay_ms <= max_delay_ms")
        if not 0 <= self.jitter <= 1 / 3:
            raise ValueError("jitter must be between 0 and 1/3")

    def delay_ms(self, retry_count: int, rng: random.Random) -> int:
        exponent = min(retry_count, MAX_EXPONENT)
        spread = rng.uniform(1 - self.jitter, 1 + self.jitter)
        return int(min(self.base_delay_ms * (2 ** exponent) * spread, self.max_delay_ms))


class SubmissionWorker:
    def __init__(self, store: ScrobbleStore, client, policy: BackoffPolicy | None = None, *,
                 clock: Callable[[], int] = now_ms, rng: random.Random | None = None,
                 idle_interval: float = 30.0,
                 on_fatal: Callable[[BaseException], None] | None = None):
        self.store = store
        self.client = client
        self.policy = policy or BackoffPolicy()
        self.clock = clock
        self.rng = rng or random.Random()
        self.idle_interval = idle_interval
        self.on_fatal = on_fatal
        self._stop = threading.Event()
        self._wake = threading.Event()
        self._thread: threading.Thread | None = None
        self._fatal: BaseException | None = None

    @property
    def fatal_error(self) -> BaseException | None:
        return self._fatal

    @property
    def stopping(self) -> bool:
        return self._stop.is_set()

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    # -------- lifecycle --------
    def start(self) -> None:
        if self._thread is not None:
            raise RuntimeError("Submission worker already started")
        self._thread = threading.Thread(target=self._run, name="scrobble-worker", daemon=True)
        self._thread.start()
        log.info("Submission worker started (%s queued)", self.store.size())

    def wake(self) -> None:
        """Something new was queued; don't wait out the idle interval."""
        self._wake.set()

    def stop(self, timeout: float | None = None) -> bool:
        """Stop after the current submission; False if it didn't finish in time."""
        self._stop.set()
        self._wake.set()
        if self._thread is None:
            return True
        self._thread.join(timeout)
        finished = not self._thread.is_alive()
        if not finished:
            log.warning("Submission still in flight after %ss; leaving it for the next start", timeout)
        return finished

    def _run(self) -> None:
        try:
            while not self._stop.is_set():
                self._wake.clear()
                self.run_once()
                if self._stop.is_set():
                    break
                self._wake.wait(self._sleep_seconds())
        except StoreError as e:
            if self._stop.is_set() and self.store.closed:
                # stop() timed out and the queue was closed under us; close()
                # already put the in-flight record back to pending
                log.info("Queue closed during a late submission; it stays queued for the next start")
            else:
                self._fail(e)
        except Exception as e:
            self._fail(e)
        log.info("Submission worker stopped")

    def _sleep_seconds(self) -> float:
        due = self.store.next_due_ms()
        if due is None:
            return self.idle_interval
        return min(self.idle_interval, max(0.0, (due - self.clock()) / 1000))

    def _fail(self, error: BaseException) -> None:
        if self._fatal is not None:
            log.error("Submission worker already halted; also: %s", error)
            return
        log.error("Submission worker halted: %s", error)
        self._fatal = error
        self._stop.set()
        if self.on_fatal is not None:
            self.on_fatal(error)

    # -------- submission --------
    def run_once(self, now: int | None = None) -> int:
        """Submit every record due at `now`. Returns how many were attempted."""
        if now is None:
            now = self.clock()
        attempted = 0
        for record in self.store.peek_ready(now):
            if self._stop.is_set():
                break
            self._submit(record)
            attempted += 1
        return attempted

    def _submit(self, record: ScrobbleRecord) -> None:
        key = record.key
        self.store.mark_in_flight(key)
        try:
            self.client.scrobble(record)
        except RetryableScrobbleError as e:
            retry_count = record.retry_count + 1
            delay = self.policy.delay_ms(retry_count, self.rng)
            # Measured from when this attempt failed, not from when the batch began
            self.store.mark_failed(key, retry_count, self.clock() + delay, str(e))
            log.info("Scrobble of %s failed (%s: %s); retry #%s in %ss",
                     record.track, type(e).__name__, e, retry_count, delay // 1000)
            return
        except PermanentScrobbleError as e:
            log.error("Scrobble of %s rejected permanently: %s", record.track, e)
            self._fail(e)
            # Hold it for the operator rather than drop it
            self.store.release(key, str(e))
            return
        except BaseException:
            self.store.release(key)
            raise
        self.store.mark_submitted(key)
        log.info("Scrobbled: %s (played %ss)", record.track, record.played_ms // 1000)
