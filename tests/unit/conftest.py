"""Unit test conftest — fake providers, no network or database required."""

from __future__ import annotations

from typing import Any

import pytest
from fakes import FakeAnnotator, FlakyIndex, RecordingSleep, make_config

from media_service.ingestion.pipeline import IngestionPipeline


@pytest.fixture
def annotator() -> FakeAnnotator:
    return FakeAnnotator()


@pytest.fixture
def index() -> FlakyIndex:
    return FlakyIndex()


@pytest.fixture
def sleeper() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def make_pipeline(annotator: FakeAnnotator, index: FlakyIndex, sleeper: RecordingSleep):
    """Factory for a pipeline wired to the fake providers."""

    def _make(**kwargs: Any) -> IngestionPipeline:
        cfg = kwargs.pop("cfg", None) or make_config(**kwargs)
        return IngestionPipeline(cfg=cfg, annotator=annotator, index=index, sleep=sleeper)

    return _make
