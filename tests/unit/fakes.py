"""Fake providers and helpers shared by the unit tests."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator

from media_service.annotators.base import Annotator
from media_service.index.memory import InMemoryIndexWriter
from media_service.ingestion.config import PipelineConfig, ProviderConfig
from media_service.ingestion.types import AnnotationResult, ColorFact, IndexRecord, Label

PANDA = AnnotationResult(
    labels=(Label("panda", 0.99),),
    dominant_colors=(ColorFact((10, 10, 10), 1.0),),
)


class FakeAnnotator(Annotator):
    """Scripted annotator: each call pops the next outcome (result or exception).

    When the script runs out the last outcome repeats. ``gate`` (if set) must
    be released before any call returns, to hold a call in flight.
    """

    name = "fake"

    def __init__(self, *outcomes: AnnotationResult | BaseException) -> None:
        self.outcomes: list[AnnotationResult | BaseException] = list(outcomes) or [PANDA]
        self.calls: list[str] = []
        self.gate: asyncio.Event | None = None
        self.started = asyncio.Event()
        self.healthy = True

    async def annotate(self, media_path: str) -> AnnotationResult:
        self.calls.append(media_path)
        self.started.set()
        if self.gate is not None:
            await self.gate.wait()
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    async def ping(self) -> bool:
        return self.healthy


class FlakyIndex(InMemoryIndexWriter):
    """In-memory index that raises scripted errors before succeeding."""

    name = "flaky"

    def __init__(self, *errors: BaseException) -> None:
        super().__init__()
        self.errors = list(errors)
        self.upserts = 0
        self.healthy = True

    async def upsert(self, record: IndexRecord) -> None:
        self.upserts += 1
        if self.errors:
            raise self.errors.pop(0)
        await super().upsert(record)

    async def ping(self) -> bool:
        return self.healthy


class RecordingSleep:
    """Drop-in for asyncio.sleep that records delays and yields once."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await asyncio.sleep(0)


def make_config(
    *,
    annotator_attempts: int = 3,
    index_attempts: int = 3,
    max_concurrency: int = 4,
    base_backoff_ms: int = 100,
    max_backoff_ms: int = 1_000,
    timeout_s: float = 5.0,
    quota_backoff_multiplier: float = 4.0,
) -> PipelineConfig:
    return PipelineConfig(
        annotator=ProviderConfig(
            endpoint=None,
            max_attempts=annotator_attempts,
            base_backoff_ms=base_backoff_ms,
            max_backoff_ms=max_backoff_ms,
            timeout_s=timeout_s,
        ),
        index=ProviderConfig(
            endpoint=None,
            max_attempts=index_attempts,
            base_backoff_ms=base_backoff_ms,
            max_backoff_ms=max_backoff_ms,
            timeout_s=timeout_s,
        ),
        max_concurrency=max_concurrency,
        quota_backoff_multiplier=quota_backoff_multiplier,
        job_ttl_s=3600,
    )


async def collect(records: AsyncIterator[IndexRecord]) -> list[IndexRecord]:
    return [r async for r in records]
