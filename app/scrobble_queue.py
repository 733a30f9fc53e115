"""
Persistent scrobble queue.

- Stores pending scrobbles on disk (JSON file), so we don't lose plays on network errors
  or restarts. Nothing is ever dropped to make room.
- Keyed by (track id, session start): enqueuing the same listen twice is a no-op.
- Every mutation is written atomically (temp file + fsync + rename) before returning.
- Records that were in flight when the process died come back as pending.
"""

from __future__ import annotations
import json
import logging
import os
import threading
from dataclasses import dataclass, replace
from enum import Enum
from typing import Dict, List, Tuple

from state import Track

log = logging.getLogger("scrobble-queue")

FORMAT_VERSION = 1

RecordKey = Tuple[str, int]


class StoreError(Exception):
    """The queue file can't be read or written; delivery guarantees are off."""


class SubmissionState(str, Enum):
    PENDING = "pending"
    IN_FLIGHT = "in_flight"
    FAILED = "failed"
    SUBMITTED = "submitted"


@dataclass
class ScrobbleRecord:
    track: Track
    started_at_ms: int
    played_ms: int
    state: SubmissionState = SubmissionState.PENDING
    retry_count: int = 0
    next_retry_at_ms: int | None = None
    last_error: str | None = None

    @property
    def key(self) -> RecordKey:
        return (self.track.id, self.started_at_ms)

    def is_ready(self, now_ms: int) -> bool:
        if self.state == SubmissionState.PENDING:
            return True
        if self.state == SubmissionState.FAILED:
            return self.next_retry_at_ms is None or self.next_retry_at_ms <= now_ms
        return False

    def to_dict(self) -> dict:
        return {
            "track": self.track.to_dict(),
            "started_at_ms": self.started_at_ms,
            "played_ms": self.played_ms,
            "state": self.state.value,
            "retry_count": self.retry_count,
            "next_retry_at_ms": self.next_retry_at_ms,
            "last_error": self.last_error,
        }

    @classmethod
    def from_dict(cls, data: dict) -> ScrobbleRecord:
        return cls(
            track=Track.from_dict(data["track"]),
            started_at_ms=int(data["started_at_ms"]),
            played_ms=int(data["played_ms"]),
            state=SubmissionState(data.get("state", SubmissionState.PENDING.value)),
            retry_count=int(data.get("retry_count", 0)),
            next_retry_at_ms=data.get("next_retry_at_ms"),
            last_error=data.get("last_error"),
        )


class ScrobbleStore:
    def __init__(self, path: str):
        self.path = path
        self._lock = threading.RLock()
        self._records: Dict[RecordKey, ScrobbleRecord] = {}
        self._closed = False
        self._load()

    # -------- persistence --------
    def _load(self) -> None:
        try:
            directory = os.path.dirname(self.path)
            if directory:
                os.makedirs(directory, exist_ok=True)
            if not os.path.isfile(self.path):
                return
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            raise StoreError(f"Cannot read scrobble queue {self.path}: {e}") from e

        if not isinstance(data, dict) or not isinstance(data.get("records"), list):
            raise StoreError(f"Unrecognised scrobble queue layout in {self.path}")

        recovered = 0
        try:
            for item in data["records"]:
                record = ScrobbleRecord.from_dict(item)
                if record.state == SubmissionState.IN_FLIGHT:
                    # Died mid-submission; we can't know if it landed, so send again
                    record.state = SubmissionState.PENDING
                    recovered += 1
                if record.state == SubmissionState.SUBMITTED:
                    continue
                self._records.setdefault(record.key, record)
        except (KeyError, TypeError, ValueError) as e:
            raise StoreError(f"Corrupt record in scrobble queue {self.path}: {e}") from e

        log.info("Loaded %s queued scrobbles from %s (%s recovered from in-flight)",
                 len(self._records), self.path, recovered)

    def _save(self) -> None:
        # Write atomically to avoid corruption
        payload = {
            "version": FORMAT_VERSION,
            "records": [r.to_dict() for r in self._records.values()],
        }
        tmp = f"{self.path}.tmp"
        try:
            with open(tmp, "w", encoding="utf-8") as f:
                json.dump(payload, f, ensure_ascii=False)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp, self.path)
        except OSError as e:
            raise StoreError(f"Cannot write scrobble queue {self.path}: {e}") from e

    def _check_open(self) -> None:
        if self._closed:
            raise StoreError("Scrobble queue is closed")

    def _require(self, key: RecordKey) -> ScrobbleRecord:
        record = self._records.get(key)
        if record is None:
            raise KeyError(key)
        return record

    # -------- public API --------
    def enqueue(self, record: ScrobbleRecord) -> bool:
        """Add a record unless one with the same key is already queued."""
        with self._lock:
            self._check_open()
            if record.key in self._records:
                log.debug("Scrobble %s already queued; ignoring duplicate", record.key)
                return False
            self._records[record.key] = replace(record)
            self._save()
            return True

    def peek_ready(self, now_ms: int) -> List[ScrobbleRecord]:
        """Oldest-first copies of records that may be submitted at `now_ms`."""
        with self._lock:
            self._check_open()
            return [replace(r) for r in self._records.values() if r.is_ready(now_ms)]

    def next_due_ms(self) -> int | None:
        with self._lock:
            due = [r.next_retry_at_ms for r in self._records.values()
                   if r.state == SubmissionState.FAILED and r.next_retry_at_ms is not None]
            return min(due) if due else None

    def mark_in_flight(self, key: RecordKey) -> None:
        with self._lock:
            self._check_open()
            self._require(key).state = SubmissionState.IN_FLIGHT
            self._save()

    def mark_submitted(self, key: RecordKey) -> None:
        with self._lock:
            self._check_open()
            self._require(key)
            del self._records[key]
            self._save()

    def mark_failed(self, key: RecordKey, retry_count: int, next_retry_at_ms: int,
                    error: str | None = None) -> None:
        with self._lock:
            self._check_open()
            record = self._require(key)
            record.state = SubmissionState.FAILED
            record.retry_count = retry_count
            record.next_retry_at_ms = next_retry_at_ms
            record.last_error = error
            self._save()

    def release(self, key: RecordKey, error: str | None = None) -> None:
        """Put a record back to pending without touching its retry count."""
        with self._lock:
            self._check_open()
            record = self._require(key)
            record.state = SubmissionState.PENDING
            record.next_retry_at_ms = None
            if error is not None:
                record.last_error = error
            self._save()

    def get(self, key: RecordKey) -> ScrobbleRecord | None:
        with self._lock:
            record = self._records.get(key)
            return replace(record) if record else None

    def records(self) -> List[ScrobbleRecord]:
        with self._lock:
            return [replace(r) for r in self._records.values()]

    def size(self) -> int:
        with self._lock:
            return len(self._records)

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            for record in self._records.values():
                if record.state == SubmissionState.IN_FLIGHT:
                    record.state = SubmissionState.PENDING
            self._save()
            self._closed = True
            log.info("Scrobble queue closed with %s pending", len(self._records))
