"""
Persistent, per-backend scrobble delivery queue.

- Every enqueued ScrobbleRecord gets one DeliveryAttempt per configured backend,
  and the whole backlog is stored on disk (JSON, atomic replace) so plays
  survive network errors and restarts.
- enqueue() is idempotent on the record key and never touches the network.
- deliver_due() is one sweep for one backend: oldest first, submit outside the
  lock, exponential backoff on retryable errors, permanent errors are final.
- Terminal entries are kept for a retention window so replays stay deduplicated.
"""

from __future__ import annotations
import logging
import threading
import time
from collections import Counter, OrderedDict
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Tuple

from nowscrobble.errors import PermanentDeliveryError, QueueCorruptError, RetryableDeliveryError
from nowscrobble.models import ScrobbleRecord
from nowscrobble.storage import read_json, write_json_atomic

log = logging.getLogger("queue")

PENDING = "pending"
IN_FLIGHT = "in-flight"
DELIVERED = "delivered"
FAILED_PERMANENT = "failed-permanent"
FAILED_RETRYABLE = "failed-retryable"
TERMINAL = (DELIVERED, FAILED_PERMANENT)
RETRYABLE = (PENDING, FAILED_RETRYABLE)
FORMAT_VERSION = 1


@dataclass(frozen=True)
class Backoff:
    base: float = 30.0
    factor: float = 2.0
    ceiling: float = 3600.0
    max_attempts: int = 8

    def delay(self, attempts: int) -> float:
        return min(self.ceiling, self.base * self.factor ** max(0, attempts - 1))


@dataclass
class DeliveryAttempt:
    status: str = PENDING
    attempts: int = 0
    next_retry_at: float = 0.0
    last_error: str | None = None
    updated_at: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "attempts": self.attempts,
            "next_retry_at": self.next_retry_at,
            "last_error": self.last_error,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DeliveryAttempt":
        status = data["status"]
        if status == IN_FLIGHT:
            # interrupted mid-request; at-least-once means we try again
            status = PENDING
        if status not in (PENDING, DELIVERED, FAILED_PERMANENT, FAILED_RETRYABLE):
            raise ValueError(f"unknown delivery status {status!r}")
        return cls(
            status=status,
            attempts=int(data.get("attempts", 0)),
            next_retry_at=float(data.get("next_retry_at", 0.0)),
            last_error=data.get("last_error"),
            updated_at=float(data.get("updated_at", 0.0)),
        )


@dataclass
class QueueEntry:
    record: ScrobbleRecord
    attempts: Dict[str, DeliveryAttempt]
    enqueued_at: float

    def is_terminal(self, backends: Iterable[str] | None = None) -> bool:
        """All attempts settled; with `backends`, only the attempts for those count."""
        if backends is not None:
            return all(a.status in TERMINAL for name, a in self.attempts.items() if name in backends)
        return all(a.status in TERMINAL for a in self.attempts.values())

    def last_update(self) -> float:
        return max([self.enqueued_at] + [a.updated_at for a in self.attempts.values()])


@dataclass
class DeliveryReport:
    backend: str
    delivered: List[ScrobbleRecord] = field(default_factory=list)
    retryable: List[Tuple[ScrobbleRecord, str]] = field(default_factory=list)
    permanent: List[Tuple[ScrobbleRecord, str]] = field(default_factory=list)
    exhausted: List[ScrobbleRecord] = field(default_factory=list)


class ScrobbleQueue:
    def __init__(self, path: str, backends: Iterable[str], *, retention: float = 86400.0,
                 backoff: Backoff | None = None, max_entries: int = 500,
                 clock: Callable[[], float] = time.time):
        self.path = path
        self.backends = list(backends)
        self.retention = retention
        self.backoff = backoff or Backoff()
        self.max_entries = max_entries
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: "OrderedDict[str, QueueEntry]" = OrderedDict()
        self._load()

    # -------- persistence --------
    def _load(self) -> None:
        try:
            data = read_json(self.path)
        except (OSError, ValueError) as e:
            raise QueueCorruptError(f"Cannot read scrobble queue {self.path}: {e}") from e
        if data is None:
            return
        try:
            if not isinstance(data, dict) or data.get("version") != FORMAT_VERSION:
                raise ValueError("unsupported file layout")
            entries = [self._entry_from_dict(item) for item in data["entries"]]
        except (KeyError, TypeError, ValueError) as e:
            raise QueueCorruptError(f"Corrupt scrobble queue {self.path}: {e}") from e

        now = self._clock()
        for entry in sorted(entries, key=lambda e: (e.record.timestamp, e.enqueued_at)):
            if not entry.is_terminal():
                for backend in self.backends:
                    entry.attempts.setdefault(backend, DeliveryAttempt(next_retry_at=now, updated_at=now))
            self._entries[entry.record.key] = entry
        unknown = sorted({name for e in self._entries.values() for name in e.attempts} - set(self.backends))
        if unknown:
            log.info("Ignoring queued attempts for backends no longer configured: %s", ", ".join(unknown))
        log.info("Loaded %s queued scrobbles from %s (%s)", len(self._entries), self.path,
                 self._format_stats())

    @staticmethod
    def _entry_from_dict(item: Dict[str, Any]) -> QueueEntry:
        return QueueEntry(
            record=ScrobbleRecord.from_dict(item["record"]),
            attempts={name: DeliveryAttempt.from_dict(a) for name, a in item["attempts"].items()},
            enqueued_at=float(item.get("enqueued_at", 0.0)),
        )

    def _save(self) -> None:
        write_json_atomic(self.path, {
            "version": FORMAT_VERSION,
            "entries": [
                {
                    "record": e.record.to_dict(),
                    "enqueued_at": e.enqueued_at,
                    "attempts": {name: a.to_dict() for name, a in e.attempts.items()},
                }
                for e in self._entries.values()
            ],
        })

    # -------- public API --------
    def enqueue(self, record: ScrobbleRecord) -> bool:
        """Adds `record` for every backend. Returns False if the key is already known."""
        with self._lock:
            if record.key in self._entries:
                log.debug("Already queued: %s", record.identity.display())
                return False
            now = self._clock()
            self._entries[record.key] = QueueEntry(
                record=record,
                attempts={b: DeliveryAttempt(next_retry_at=now, updated_at=now) for b in self.backends},
                enqueued_at=now,
            )
            if not self.backends:
                log.warning("No backends configured; %s will not be delivered", record.identity.display())
            self._prune_locked(now)
            self._save()
        return True

    def due(self, backend: str, now: float | None = None) -> List[ScrobbleRecord]:
        now = self._clock() if now is None else now
        with self._lock:
            due = []
            for entry in self._entries.values():
                attempt = entry.attempts.get(backend)
                if attempt and attempt.status in RETRYABLE and attempt.next_retry_at <= now:
                    due.append(entry.record)
            return due

    def deliver_due(self, backend: str, submit: Callable[[ScrobbleRecord], Any],
                    now: float | None = None) -> DeliveryReport:
        """One delivery pass for `backend`.

        A retryable failure ends the pass: the rest is tried on the next sweep
        once its own retry time has come. A permanent failure only settles
        that one record.
        """
        now = self._clock() if now is None else now
        report = DeliveryReport(backend)
        for record in self.due(backend, now):
            if not self._begin(backend, record.key):
                continue
            try:
                submit(record)
            except PermanentDeliveryError as e:
                self._finish(backend, record.key, FAILED_PERMANENT, now, str(e))
                report.permanent.append((record, str(e)))
                continue
            except RetryableDeliveryError as e:
                error = str(e)
            except Exception as e:
                log.exception("Unexpected error delivering to %s", backend)
                error = f"{type(e).__name__}: {e}"
            else:
                self._finish(backend, record.key, DELIVERED, now)
                report.delivered.append(record)
                continue

            report.retryable.append((record, error))
            if self._retry_later(backend, record.key, now, error):
                report.exhausted.append(record)
            break
        return report

    def prune(self, now: float | None = None) -> int:
        now = self._clock() if now is None else now
        with self._lock:
            removed = self._prune_locked(now)
            if removed:
                self._save()
        return removed

    def get(self, key: str) -> QueueEntry | None:
        with self._lock:
            return self._entries.get(key)

    def size(self) -> int:
        with self._lock:
            return len(self._entries)

    def backlog(self, backend: str | None = None) -> int:
        """Attempts still waiting for delivery, for one backend or all configured ones."""
        with self._lock:
            return sum(
                1
                for e in self._entries.values()
                for name, a in e.attempts.items()
                if a.status not in TERMINAL and (name == backend if backend else name in self.backends)
            )

    def stats(self) -> Dict[str, Dict[str, int]]:
        with self._lock:
            return self._stats_locked()

    # -------- internals --------
    def _attempt(self, backend: str, key: str) -> DeliveryAttempt | None:
        entry = self._entries.get(key)
        return entry.attempts.get(backend) if entry else None

    def _begin(self, backend: str, key: str) -> bool:
        with self._lock:
            attempt = self._attempt(backend, key)
            if attempt is None or attempt.status not in RETRYABLE:
                return False
            # in-memory only: a crash leaves the persisted attempt retryable
            attempt.status = IN_FLIGHT
            return True

    def _finish(self, backend: str, key: str, status: str, now: float, error: str | None = None) -> None:
        with self._lock:
            attempt = self._attempt(backend, key)
            if attempt is None:
                return
            attempt.status = status
            attempt.attempts += 1
            attempt.last_error = error
            attempt.updated_at = now
            self._save()

    def _retry_later(self, backend: str, key: str, now: float, error: str) -> bool:
        """Schedules the next try. Returns True when the attempt just ran out of retries."""
        with self._lock:
            attempt = self._attempt(backend, key)
            if attempt is None:
                return False
            was_exhausted = attempt.attempts >= self.backoff.max_attempts
            attempt.attempts += 1
            attempt.last_error = error
            attempt.updated_at = now
            attempt.next_retry_at = now + self.backoff.delay(attempt.attempts)
            exhausted = attempt.attempts >= self.backoff.max_attempts
            attempt.status = FAILED_RETRYABLE if exhausted else PENDING
            self._save()
            return exhausted and not was_exhausted

    def _prune_locked(self, now: float) -> int:
        expired = [k for k, e in self._entries.items()
                   if e.is_terminal(self.backends) and now - e.last_update() >= self.retention]
        for key in expired:
            del self._entries[key]

        over = len(self._entries) - self.max_entries
        if over > 0:
            oldest_done = [k for k, e in self._entries.items() if e.is_terminal(self.backends)][:over]
            for key in oldest_done:
                del self._entries[key]
            expired.extend(oldest_done)
            if len(self._entries) > self.max_entries:
                log.warning("Scrobble queue holds %s undelivered entries (limit %s)",
                            len(self._entries), self.max_entries)
        return len(expired)

    def _stats_locked(self) -> Dict[str, Dict[str, int]]:
        stats: Dict[str, Counter] = {}
        for entry in self._entries.values():
            for name, attempt in entry.attempts.items():
                stats.setdefault(name, Counter())[attempt.status] += 1
        return {name: dict(c) for name, c in stats.items()}

    def _format_stats(self) -> str:
        parts = [f"{name}: " + ", ".join(f"{s}={n}" for s, n in sorted(c.items()))
                 for name, c in self._stats_locked().items()]
        return "; ".join(parts) or "empty"
