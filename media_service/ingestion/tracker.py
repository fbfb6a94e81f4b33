"""In-memory job state map keyed by media item id.

All methods are synchronous and never await, so each per-key transition is
atomic with respect to the event loop. Unrelated keys never contend.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import replace
from datetime import UTC, datetime, timedelta
from typing import Any

from media_service.ingestion.errors import DuplicateInFlight, JobNotFound
from media_service.ingestion.types import JobState, JobStatus

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(UTC)


class JobTracker:
    def __init__(self, *, ttl_s: float = 3600.0, clock: Callable[[], datetime] = _now) -> None:
        self._ttl = timedelta(seconds=ttl_s)
        self._clock = clock
        self._jobs: dict[str, JobState] = {}
        self._cancel_requested: set[str] = set()

    def begin(self, item_id: str, *, source_path: str | None = None) -> JobState:
        """Register a new attempt cycle; rejects ids that already have an active job."""
        current = self._jobs.get(item_id)
        if current is not None and not current.is_terminal:
            raise DuplicateInFlight(item_id)

        self._cancel_requested.discard(item_id)
        state = JobState(
            item_id=item_id,
            status=JobStatus.PENDING,
            updated_at=self._clock(),
            source_path=source_path,
        )
        self._jobs[item_id] = state
        return state

    def transition(self, item_id: str, status: JobStatus, **fields: Any) -> JobState:
        current = self.get(item_id)
        if current.is_terminal:
            raise RuntimeError(
                f"Job '{item_id}' is already {current.status.value}; cannot move to {status.value}"
            )
        state = replace(current, status=status, updated_at=self._clock(), **fields)
        self._jobs[item_id] = state
        if state.is_terminal:
            self._cancel_requested.discard(item_id)
        logger.debug("Job %s: %s -> %s", item_id, current.status.value, status.value)
        return state

    def get(self, item_id: str) -> JobState:
        state = self._jobs.get(item_id)
        if state is None:
            raise JobNotFound(item_id)
        return state

    def request_cancel(self, item_id: str) -> bool:
        """Flag an active job for cancellation. False if it is already terminal."""
        state = self.get(item_id)
        if state.is_terminal:
            return False
        self._cancel_requested.add(item_id)
        return True

    def cancel_requested(self, item_id: str) -> bool:
        return item_id in self._cancel_requested

    def active_count(self) -> int:
        return sum(1 for s in self._jobs.values() if not s.is_terminal)

    def snapshot(self) -> list[JobState]:
        return sorted(self._jobs.values(), key=lambda s: s.updated_at)

    def purge_expired(self, now: datetime | None = None) -> int:
        """Drop terminal jobs last updated more than ttl ago."""
        cutoff = (now or self._clock()) - self._ttl
        expired = [
            k for k, s in self._jobs.items() if s.is_terminal and s.updated_at <= cutoff
        ]
        for k in expired:
            del self._jobs[k]
        if expired:
            logger.info("Purged %d expired job(s)", len(expired))
        return len(expired)
