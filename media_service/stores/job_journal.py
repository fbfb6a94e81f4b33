"""Durable journal of job states in media_ingestion_jobs.

The in-memory tracker stays authoritative for coordination; the journal
keeps a queryable history across restarts. A journal write failure or
timeout is logged and never changes the outcome of a job.
"""

from __future__ import annotations

import asyncio
import json
import logging

import asyncpg

from media_service.config import MEDIA_JOURNAL_TIMEOUT_S
from media_service.db import get_pool
from media_service.ingestion.types import JobState
from media_service.logging_config import current_request_id

logger = logging.getLogger(__name__)

_UPSERT_SQL = """
INSERT INTO media_ingestion_jobs
    (item_id, status, source_path, attempts, reason,
     error_kind, metadata, updated_at)
VALUES ($1, $2, $3, $4, $5, $6, $7::jsonb, $8)
ON CONFLICT (item_id) DO UPDATE SET
    status = EXCLUDED.status,
    source_path = COALESCE(EXCLUDED.source_path, media_ingestion_jobs.source_path),
    attempts = EXCLUDED.attempts,
    reason = EXCLUDED.reason,
    error_kind = EXCLUDED.error_kind,
    metadata = EXCLUDED.metadata,
    updated_at = EXCLUDED.updated_at
"""


class JobJournal:
    def __init__(
        self,
        *,
        endpoint: str | None = None,
        credentials: str | None = None,
        pool: asyncpg.Pool | None = None,
        timeout_s: float = MEDIA_JOURNAL_TIMEOUT_S,
    ) -> None:
        self._endpoint = endpoint
        self._credentials = credentials
        self._pool = pool
        self._timeout_s = timeout_s

    async def record(self, state: JobState) -> None:
        """Upsert the job's latest state, bounded by the journal timeout."""
        try:
            await asyncio.wait_for(self._write(state), timeout=self._timeout_s)
        except Exception:
            logger.exception(
                "Failed to journal job %s (%s)", state.item_id, state.status.value
            )

    async def _write(self, state: JobState) -> None:
        if self._pool is None:
            self._pool = await get_pool(self._endpoint, self._credentials)
        metadata = dict(state.extra)
        request_id = current_request_id()
        if request_id:
            metadata["request_id"] = request_id
        async with self._pool.acquire() as conn:
            await conn.execute(
                _UPSERT_SQL,
                state.item_id,
                state.status.value,
                state.source_path,
                state.attempts,
                (state.reason or "")[:4000] or None,
                state.error_kind,
                json.dumps(metadata),
                state.updated_at,
            )
