"""
Ingestion queue.

In-memory FIFO of built events awaiting processing. Failed events come back
with an exponential backoff delay until their retry budget is spent, after
which the caller dead-letters them.
"""

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable

from auditflow.core.config import QueueConfig
from auditflow.models import AuditEvent, isoformat, utc_now

logger = logging.getLogger(__name__)

DEAD_LETTER_COLLECTION = "audit-dead-letter"


@dataclass
class QueueEntry:
    """An event waiting in the queue, with its retry bookkeeping."""

    event: AuditEvent
    attempts: int = 0  # Failed processing attempts so far
    not_before: datetime | None = None
    last_error: str | None = None

    def is_due(self, now: datetime) -> bool:
        return self.not_before is None or self.not_before <= now

    def to_dead_letter(self, at: datetime) -> dict[str, Any]:
        """Document stored in the dead-letter collection."""
        failed = self.event.copy()
        failed.mark_error(self.last_error or "unknown error")
        return {
            "event": failed.to_dict(),
            "attempts": self.attempts,
            "last_error": self.last_error,
            "status": failed.status.value,
            "dead_lettered_at": isoformat(at),
        }


def backoff_delay(attempt: int, base_seconds: float, max_seconds: float) -> float:
    """Delay before retry number ``attempt`` (1-based), capped at max_seconds."""
    return min(base_seconds * 2 ** (attempt - 1), max_seconds)


class IngestionQueue:
    """
    Thread-safe queue of audit events.

    Example:
        queue = IngestionQueue(max_retries=3)
        queue.enqueue(event)
        for entry in queue.take_due():
            try:
                await processor.process(entry.event)
            except Exception as e:
                if not queue.requeue(entry, str(e)):
                    await dead_letter(entry)
    """

    def __init__(
        self,
        max_retries: int = 5,
        backoff_base_seconds: float = 1.0,
        backoff_max_seconds: float = 300.0,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.max_retries = max_retries
        self.backoff_base_seconds = backoff_base_seconds
        self.backoff_max_seconds = backoff_max_seconds
        self._clock = clock
        self._entries: list[QueueEntry] = []
        self._lock = threading.Lock()

    @classmethod
    def from_config(
        cls,
        config: QueueConfig,
        clock: Callable[[], datetime] = utc_now,
    ) -> "IngestionQueue":
        return cls(
            max_retries=config.max_retries,
            backoff_base_seconds=config.backoff_base_seconds,
            backoff_max_seconds=config.backoff_max_seconds,
            clock=clock,
        )

    def enqueue(self, event: AuditEvent) -> QueueEntry:
        """Append a fresh event for the next drain."""
        entry = QueueEntry(event=event)
        with self._lock:
            self._entries.append(entry)
        return entry

    def take_due(self, now: datetime | None = None) -> list[QueueEntry]:
        """
        Remove and return every entry that is due, in enqueue order.

        Entries still backing off stay queued.
        """
        now = now or self._clock()
        with self._lock:
            due = [e for e in self._entries if e.is_due(now)]
            self._entries = [e for e in self._entries if not e.is_due(now)]
        return due

    def restore(self, entries: list[QueueEntry]) -> None:
        """Put taken entries back at the head of the queue, order preserved."""
        if not entries:
            return
        with self._lock:
            self._entries[:0] = entries

    def requeue(self, entry: QueueEntry, error: str) -> bool:
        """
        Record a failed attempt and schedule a retry.

        Returns:
            False once the retry budget is exhausted; the entry is then not
            queued again and should be dead-lettered.
        """
        entry.attempts += 1
        entry.last_error = error

        if entry.attempts > self.max_retries:
            logger.warning(
                f"Event {entry.event.id} exhausted {self.max_retries} retries: {error}"
            )
            return False

        delay = backoff_delay(entry.attempts, self.backoff_base_seconds, self.backoff_max_seconds)
        entry.not_before = self._clock() + timedelta(seconds=delay)
        with self._lock:
            self._entries.append(entry)

        logger.warning(
            f"Requeued event {entry.event.id} (attempt {entry.attempts}, "
            f"retry in {delay:.1f}s): {error}"
        )
        return True

    def pending(self) -> list[AuditEvent]:
        """Snapshot of the queued events."""
        with self._lock:
            return [e.event for e in self._entries]

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
