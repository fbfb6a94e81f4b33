"""Postgres-backed index: one row per media record, full-text search over labels.

Upserts replace the whole row in a single ``INSERT ... ON CONFLICT`` so a
concurrent reader sees either the old or the new record, never a mix. Rows
whose content is unchanged are left untouched (``updated_at`` included).
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from typing import Any

import asyncpg

from media_service.config import (
    MEDIA_FTS_LANGUAGE,
    MEDIA_INDEX_MAX_RECORD_BYTES,
    MEDIA_SEARCH_FETCH_SIZE,
)
from media_service.db import close_pool, db_transaction, get_pool
from media_service.index.base import IndexWriter
from media_service.index.memory import record_size
from media_service.ingestion.errors import IndexRejected, IndexUnavailable
from media_service.ingestion.types import IndexRecord

logger = logging.getLogger(__name__)

_UNAVAILABLE_ERRORS: tuple[type[BaseException], ...] = (
    OSError,
    TimeoutError,
    asyncpg.exceptions.PostgresConnectionError,
    asyncpg.exceptions.InterfaceError,
    asyncpg.exceptions.OperatorInterventionError,
    asyncpg.exceptions.InsufficientResourcesError,
)

_REJECTED_ERRORS: tuple[type[BaseException], ...] = (
    asyncpg.exceptions.DataError,
    asyncpg.exceptions.IntegrityConstraintViolationError,
    asyncpg.exceptions.ProgramLimitExceededError,
)

_UPSERT_SQL = """
INSERT INTO media_records
    (id, labels, label_text, dominant_rgb, dominant_weight,
     source_path, submitted_at)
VALUES ($1, $2::jsonb, $3, $4::int[], $5, $6, $7)
ON CONFLICT (id) DO UPDATE SET
    labels = EXCLUDED.labels,
    label_text = EXCLUDED.label_text,
    dominant_rgb = EXCLUDED.dominant_rgb,
    dominant_weight = EXCLUDED.dominant_weight,
    source_path = EXCLUDED.source_path,
    submitted_at = EXCLUDED.submitted_at,
    updated_at = NOW()
WHERE (media_records.labels, media_records.dominant_rgb, media_records.dominant_weight,
       media_records.source_path, media_records.submitted_at)
    IS DISTINCT FROM
      (EXCLUDED.labels, EXCLUDED.dominant_rgb, EXCLUDED.dominant_weight,
       EXCLUDED.source_path, EXCLUDED.submitted_at)
"""

_SELECT_COLUMNS = "id, labels, dominant_rgb, dominant_weight, source_path, submitted_at"


def row_to_record(row: Any) -> IndexRecord:
    raw_labels = row["labels"]
    if isinstance(raw_labels, str):
        raw_labels = json.loads(raw_labels)
    rgb = row["dominant_rgb"]
    return IndexRecord.from_document(
        {
            "id": row["id"],
            "labels": raw_labels,
            "dominant_color": {"rgb": rgb, "weight": row["dominant_weight"]} if rgb else None,
            "source_path": row["source_path"],
            "submitted_at": row["submitted_at"],
        }
    )


class PostgresIndexWriter(IndexWriter):
    name = "postgres"

    def __init__(
        self,
        *,
        endpoint: str | None = None,
        credentials: str | None = None,
        pool: asyncpg.Pool | None = None,
        max_record_bytes: int = MEDIA_INDEX_MAX_RECORD_BYTES,
        fts_language: str = MEDIA_FTS_LANGUAGE,
        fetch_size: int = MEDIA_SEARCH_FETCH_SIZE,
    ) -> None:
        self._endpoint = endpoint
        self._credentials = credentials
        self._pool = pool
        self._owns_pool = pool is None
        self._max_record_bytes = max_record_bytes
        self._fts_language = fts_language
        self._fetch_size = max(1, fetch_size)

    async def _get_pool(self) -> asyncpg.Pool:
        if self._pool is None:
            try:
                self._pool = await get_pool(self._endpoint, self._credentials)
            except _UNAVAILABLE_ERRORS as e:
                raise IndexUnavailable(f"Cannot connect to index database: {e}") from e
        return self._pool

    async def upsert(self, record: IndexRecord) -> None:
        size = record_size(record)
        if size > self._max_record_bytes:
            raise IndexRejected(
                f"Record {record.id} is {size} bytes (limit {self._max_record_bytes})"
            )

        color = record.dominant_color
        pool = await self._get_pool()
        try:
            async with db_transaction(pool) as conn:
                await conn.execute(
                    _UPSERT_SQL,
                    record.id,
                    json.dumps([{"text": lb.text, "score": lb.score} for lb in record.labels]),
                    " ".join(lb.text for lb in record.labels),
                    list(color.rgb) if color is not None else None,
                    color.weight if color is not None else None,
                    record.source_path,
                    record.submitted_at,
                )
        except _REJECTED_ERRORS as e:
            raise IndexRejected(f"Index rejected record {record.id}: {e}") from e
        except _UNAVAILABLE_ERRORS as e:
            raise IndexUnavailable(f"Index unavailable for record {record.id}: {e}") from e

    async def get(self, record_id: str) -> IndexRecord | None:
        pool = await self._get_pool()
        try:
            async with pool.acquire() as conn:
                row = await conn.fetchrow(
                    f"SELECT {_SELECT_COLUMNS} FROM media_records WHERE id = $1",
                    record_id,
                )
        except _UNAVAILABLE_ERRORS as e:
            raise IndexUnavailable(f"Index unavailable: {e}") from e
        return row_to_record(row) if row is not None else None

    async def search(self, query_text: str) -> AsyncIterator[IndexRecord]:
        """Stream matching records, best text rank first, through a server-side cursor."""
        query_text = query_text.strip()
        if query_text:
            sql = f"""
                SELECT {_SELECT_COLUMNS}
                FROM media_records, plainto_tsquery($1::text::regconfig, $2) AS q
                WHERE fts @@ q
                ORDER BY ts_rank(fts, q) DESC, id
            """
            args: tuple[Any, ...] = (self._fts_language, query_text)
        else:
            sql = f"SELECT {_SELECT_COLUMNS} FROM media_records ORDER BY id"
            args = ()

        pool = await self._get_pool()
        try:
            async with db_transaction(pool) as conn:
                async for row in conn.cursor(sql, *args, prefetch=self._fetch_size):
                    yield row_to_record(row)
        except _UNAVAILABLE_ERRORS as e:
            raise IndexUnavailable(f"Index unavailable: {e}") from e

    async def ping(self) -> bool:
        try:
            pool = await self._get_pool()
            async with pool.acquire() as conn:
                await conn.fetchval("SELECT 1")
            return True
        except Exception:
            logger.warning("Index health check failed", exc_info=True)
            return False

    async def close(self) -> None:
        if self._owns_pool and self._pool is not None:
            await close_pool()
        self._pool = None
