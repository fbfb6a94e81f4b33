"""Ingestion pipeline: annotate -> normalize -> upsert, per submitted media item.

Per item the job walks PENDING -> ANNOTATING -> NORMALIZING -> INDEXING ->
COMMITTED, or ends in FAILED. Annotation and indexing each retry transient
errors (and timeouts) with capped, fully jittered exponential backoff under
their own provider policy. Permanent errors fail the job on the spot.

At most one job per item id is active at a time; ``submit`` raises
``DuplicateInFlight`` for an id whose job has not reached a terminal state.
Admission across items is bounded by ``max_concurrency``.

Cancellation is cooperative: it is honored before the next attempt starts
and never interrupts an annotate/upsert call that is already in flight.
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import AsyncIterator, Awaitable, Callable
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, TypeVar

from media_service.annotators.base import Annotator
from media_service.index.base import IndexWriter
from media_service.ingestion.config import PipelineConfig, ProviderConfig
from media_service.ingestion.errors import (
    AnnotatorQuotaExceeded,
    AnnotatorUnavailable,
    IndexUnavailable,
    PermanentError,
    TransientError,
)
from media_service.ingestion.media import compute_media_id
from media_service.ingestion.normalizer import normalize
from media_service.ingestion.tracker import JobTracker
from media_service.ingestion.types import IndexRecord, JobState, JobStatus, MediaItem
from media_service.stores.job_journal import JobJournal

logger = logging.getLogger(__name__)

T = TypeVar("T")

CANCELLED_KIND = "Cancelled"
SHUTDOWN_KIND = "Shutdown"


class _StageFailed(Exception):
    """Internal: the stage already recorded a terminal FAILED state."""


def _now() -> datetime:
    return datetime.now(UTC)


def compute_backoff(
    attempt: int,
    *,
    base_ms: int,
    max_ms: int,
    multiplier: float = 1.0,
    rng: random.Random | None = None,
) -> float:
    """Full-jitter backoff in seconds after the given (1-based) failed attempt."""
    ceiling_ms = min(max_ms, base_ms * (2 ** max(0, attempt - 1))) * multiplier
    r = rng or random
    return r.uniform(0, ceiling_ms) / 1000.0


class IngestionPipeline:
    def __init__(
        self,
        *,
        cfg: PipelineConfig,
        annotator: Annotator,
        index: IndexWriter,
        tracker: JobTracker | None = None,
        journal: JobJournal | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rng: random.Random | None = None,
        clock: Callable[[], datetime] = _now,
    ) -> None:
        cfg.validate()
        self._cfg = cfg
        self._annotator = annotator
        self._index = index
        self._tracker = tracker or JobTracker(ttl_s=cfg.job_ttl_s, clock=clock)
        self._journal = journal
        self._sleep = sleep
        self._rng = rng or random.Random()
        self._clock = clock
        self._slots = asyncio.Semaphore(cfg.max_concurrency)
        self._tasks: dict[str, asyncio.Task[None]] = {}

    @property
    def tracker(self) -> JobTracker:
        return self._tracker

    # -- Entry points ---------------------------------------------------------

    async def submit(self, media_path: str | Path, item_id: str | None = None) -> str:
        """Accept a media item and start processing it in the background.

        Returns the item id without waiting for the job. Raises
        ``DuplicateInFlight`` when the id already has an active job and
        ``OSError`` when no id is given and the file cannot be hashed.
        """
        source_path = str(media_path)
        if item_id is None:
            item_id = await asyncio.to_thread(compute_media_id, source_path)
        if not item_id:
            raise ValueError("item_id must be a non-empty string")

        self._tracker.purge_expired()

        # No awaits between the in-flight check and task creation
        self._tracker.begin(item_id, source_path=source_path)
        item = MediaItem(id=item_id, source_path=source_path, submitted_at=self._clock())
        task = asyncio.create_task(self._run(item), name=f"ingest:{item_id}")
        self._tasks[item_id] = task
        task.add_done_callback(lambda t, k=item_id: self._forget(k, t))

        logger.info("Accepted media item %s (%s)", item_id, source_path)
        return item_id

    def get_status(self, item_id: str) -> JobState:
        return self._tracker.get(item_id)

    def query(self, text: str) -> AsyncIterator[IndexRecord]:
        """Lazy search results straight from the index."""
        return self._index.search(text)

    async def ping(self) -> dict[str, bool]:
        return {
            "index": await self._index.ping(),
            "annotator": await self._annotator.ping(),
        }

    def cancel(self, item_id: str) -> bool:
        """Request cancellation; takes effect before the job's next attempt."""
        requested = self._tracker.request_cancel(item_id)
        if requested:
            logger.info("Cancellation requested for %s", item_id)
        return requested

    async def wait(self, item_id: str, timeout: float | None = None) -> JobState:
        """Wait for the item's current job to finish and return its state."""
        task = self._tasks.get(item_id)
        if task is not None:
            await asyncio.wait_for(asyncio.shield(task), timeout=timeout)
        return self._tracker.get(item_id)

    async def drain(self) -> None:
        """Wait until every outstanding job has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks.values()), return_exceptions=True)

    async def shutdown(self, *, cancel_pending: bool = False) -> None:
        if cancel_pending:
            for task in list(self._tasks.values()):
                task.cancel()
        await self.drain()

    async def close(self) -> None:
        await self._index.close()

    # -- Job execution --------------------------------------------------------

    def _forget(self, item_id: str, task: asyncio.Task[None]) -> None:
        if self._tasks.get(item_id) is not task:
            return
        del self._tasks[item_id]
        # Cancelled before _run could record an outcome
        if task.cancelled() and not self._tracker.get(item_id).is_terminal:
            self._tracker.transition(
                item_id,
                JobStatus.FAILED,
                reason="pipeline shut down",
                error_kind=SHUTDOWN_KIND,
            )
            logger.warning("Job %s failed [%s]: pipeline shut down", item_id, SHUTDOWN_KIND)

    async def _run(self, item: MediaItem) -> None:
        try:
            await self._journal_state(self._tracker.get(item.id))
            async with self._slots:
                annotation = await self._run_stage(
                    item.id,
                    JobStatus.ANNOTATING,
                    self._cfg.annotator,
                    lambda: self._annotator.annotate(item.source_path),
                    AnnotatorUnavailable,
                )

                await self._set_state(item.id, JobStatus.NORMALIZING, attempts=0)
                record = normalize(item, annotation)

                await self._run_stage(
                    item.id,
                    JobStatus.INDEXING,
                    self._cfg.index,
                    lambda: self._index.upsert(record),
                    IndexUnavailable,
                )

                await self._set_state(
                    item.id,
                    JobStatus.COMMITTED,
                    extra={
                        "labels": len(record.labels),
                        "top_label": record.labels[0].text if record.labels else None,
                    },
                )
                logger.info("Committed %s (%d labels)", item.id, len(record.labels))
        except _StageFailed:
            return
        except asyncio.CancelledError:
            if not self._tracker.get(item.id).is_terminal:
                await self._fail(item.id, "pipeline shut down", SHUTDOWN_KIND)
            raise
        except Exception as e:
            logger.exception("Unexpected error while processing %s", item.id)
            if not self._tracker.get(item.id).is_terminal:
                await self._fail(item.id, f"{type(e).__name__}: {e}", type(e).__name__)

    async def _run_stage(
        self,
        item_id: str,
        status: JobStatus,
        policy: ProviderConfig,
        call: Callable[[], Awaitable[T]],
        timeout_error: type[TransientError],
    ) -> T:
        stage = status.value
        attempts = 0
        while True:
            if self._tracker.cancel_requested(item_id):
                await self._fail(item_id, "cancelled", CANCELLED_KIND, attempts=attempts)
                raise _StageFailed()

            attempts += 1
            await self._set_state(item_id, status, attempts=attempts)

            try:
                return await asyncio.wait_for(call(), timeout=policy.timeout_s)
            except TimeoutError:
                err: TransientError = timeout_error(
                    f"{stage} call timed out after {policy.timeout_s}s"
                )
            except TransientError as e:
                err = e
            except PermanentError as e:
                logger.warning("%s rejected %s: %s", stage, item_id, e)
                await self._fail(item_id, str(e), type(e).__name__, attempts=attempts)
                raise _StageFailed() from e

            if attempts >= policy.max_attempts:
                logger.warning(
                    "%s failed for %s after %d attempt(s): %s", stage, item_id, attempts, err
                )
                await self._fail(
                    item_id,
                    f"{err} (gave up after {attempts} attempts)",
                    type(err).__name__,
                    attempts=attempts,
                )
                raise _StageFailed() from err

            multiplier = (
                self._cfg.quota_backoff_multiplier
                if isinstance(err, AnnotatorQuotaExceeded)
                else 1.0
            )
            delay = compute_backoff(
                attempts,
                base_ms=policy.base_backoff_ms,
                max_ms=policy.max_backoff_ms,
                multiplier=multiplier,
                rng=self._rng,
            )
            logger.warning(
                "%s attempt %d/%d failed for %s; retrying in %.2fs :: %s",
                stage,
                attempts,
                policy.max_attempts,
                item_id,
                delay,
                err,
            )
            await self._sleep(delay)

    # -- State bookkeeping ----------------------------------------------------

    async def _set_state(self, item_id: str, status: JobStatus, **fields: Any) -> JobState:
        state = self._tracker.transition(item_id, status, **fields)
        await self._journal_state(state)
        return state

    async def _fail(
        self, item_id: str, reason: str, error_kind: str, *, attempts: int | None = None
    ) -> JobState:
        fields: dict[str, Any] = {"reason": reason, "error_kind": error_kind}
        if attempts is not None:
            fields["attempts"] = attempts
        state = await self._set_state(item_id, JobStatus.FAILED, **fields)
        logger.warning("Job %s failed [%s]: %s", item_id, error_kind, reason)
        return state

    async def _journal_state(self, state: JobState) -> None:
        if self._journal is not None:
            await self._journal.record(state)
