from __future__ import annotations

import logging

from media_service.annotators.base import Annotator
from media_service.config import MEDIA_INDEX_BACKEND, MEDIA_JOURNAL_ENABLED
from media_service.index.base import IndexWriter
from media_service.ingestion.config import PipelineConfig
from media_service.ingestion.pipeline import IngestionPipeline
from media_service.stores.job_journal import JobJournal

logger = logging.getLogger(__name__)


def build_index(cfg: PipelineConfig, backend: str = MEDIA_INDEX_BACKEND) -> IndexWriter:
    if backend == "memory":
        from media_service.index.memory import InMemoryIndexWriter

        return InMemoryIndexWriter()
    if backend == "postgres":
        from media_service.index.postgres import PostgresIndexWriter

        return PostgresIndexWriter(endpoint=cfg.index.endpoint, credentials=cfg.index.credentials)
    raise ValueError(f"Unknown MEDIA_INDEX_BACKEND: {backend!r} (expected 'memory' or 'postgres')")


def build_annotator(cfg: PipelineConfig) -> Annotator:
    from media_service.annotators.gemini import GeminiAnnotator

    return GeminiAnnotator(cfg=cfg.annotator)


def build_pipeline(
    cfg: PipelineConfig | None = None,
    *,
    backend: str = MEDIA_INDEX_BACKEND,
    journal_enabled: bool = MEDIA_JOURNAL_ENABLED,
) -> IngestionPipeline:
    """Wire a pipeline from environment configuration."""
    cfg = cfg or PipelineConfig.from_env()

    journal = None
    if journal_enabled:
        journal = JobJournal(endpoint=cfg.index.endpoint, credentials=cfg.index.credentials)

    logger.info(
        "Building pipeline: index=%s journal=%s max_concurrency=%d",
        backend,
        journal_enabled,
        cfg.max_concurrency,
    )
    return IngestionPipeline(
        cfg=cfg,
        annotator=build_annotator(cfg),
        index=build_index(cfg, backend),
        journal=journal,
    )
