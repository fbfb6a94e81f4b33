from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator

from media_service.ingestion.types import IndexRecord


class IndexWriter(ABC):
    """Searchable store of index records keyed by record id.

    ``upsert`` replaces the whole record for an id in one step; writing the
    same record twice leaves exactly one entry. Implementations raise
    ``IndexUnavailable`` or ``IndexRejected``.
    """

    name: str = "index"

    @abstractmethod
    async def upsert(self, record: IndexRecord) -> None: ...

    @abstractmethod
    def search(self, query_text: str) -> AsyncIterator[IndexRecord]: ...

    @abstractmethod
    async def get(self, record_id: str) -> IndexRecord | None: ...

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        return None
