from __future__ import annotations

from abc import ABC, abstractmethod

from media_service.ingestion.types import AnnotationResult


class Annotator(ABC):
    """Labels and color facts for one media item from an external provider.

    Implementations raise ``AnnotatorUnavailable``, ``AnnotatorQuotaExceeded``
    or ``AnnotatorRejected``; retries are the caller's concern.
    """

    name: str = "annotator"

    @abstractmethod
    async def annotate(self, media_path: str) -> AnnotationResult: ...

    async def ping(self) -> bool:
        return True
