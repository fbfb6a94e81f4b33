"""Process-local index backend for development and tests."""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator

from media_service.config import MEDIA_INDEX_MAX_RECORD_BYTES
from media_service.index.base import IndexWriter
from media_service.ingestion.errors import IndexRejected
from media_service.ingestion.types import IndexRecord

logger = logging.getLogger(__name__)


def record_size(record: IndexRecord) -> int:
    return len(json.dumps(record.to_document(), separators=(",", ":")).encode())


def _terms(text: str) -> list[str]:
    return [t for t in text.lower().split() if t]


def match_score(record: IndexRecord, terms: list[str]) -> float | None:
    """Best score among labels containing every query term, None if no label matches."""
    best: float | None = None
    for lb in record.labels:
        text = lb.text.lower()
        if all(t in text for t in terms) and (best is None or lb.score > best):
            best = lb.score
    return best


class InMemoryIndexWriter(IndexWriter):
    name = "memory"

    def __init__(self, *, max_record_bytes: int = MEDIA_INDEX_MAX_RECORD_BYTES) -> None:
        self._records: dict[str, IndexRecord] = {}
        self._max_record_bytes = max_record_bytes

    async def upsert(self, record: IndexRecord) -> None:
        size = record_size(record)
        if size > self._max_record_bytes:
            raise IndexRejected(
                f"Record {record.id} is {size} bytes (limit {self._max_record_bytes})"
            )
        # Frozen record swapped in whole; readers see old or new, never a mix
        self._records[record.id] = record

    async def get(self, record_id: str) -> IndexRecord | None:
        return self._records.get(record_id)

    async def search(self, query_text: str) -> AsyncIterator[IndexRecord]:
        terms = _terms(query_text)
        if not terms:
            for rid in sorted(self._records):
                yield self._records[rid]
            return

        hits: list[tuple[float, str]] = []
        for rid, rec in list(self._records.items()):
            score = match_score(rec, terms)
            if score is not None:
                hits.append((score, rid))
        hits.sort(key=lambda h: (-h[0], h[1]))

        for _, rid in hits:
            rec = self._records.get(rid)
            if rec is not None:
                yield rec

    def __len__(self) -> int:
        return len(self._records)
