"""Unit tests for the media-ingest CLI."""

from __future__ import annotations

import sys
from unittest.mock import AsyncMock, patch

import pytest

from media_service.ingestion.cli import build_parser
from media_service.ingestion.errors import AnnotatorRejected
from media_service.ingestion.main import _amain, ingest_paths


class TestParser:
    def test_defaults(self):
        args = build_parser().parse_args(["./uploads"])
        assert args.source == "./uploads"
        assert args.backend is None
        assert args.concurrency == 0
        assert args.dry_run is False

    def test_backend_choices(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["x", "--backend", "sqlite"])


class TestIngestPaths:
    async def test_tallies_outcomes(self, make_pipeline, media_dir):
        pipeline = make_pipeline()
        paths = [media_dir / "a.png", media_dir / "nested" / "b.jpg", media_dir / "missing.png"]
        totals = await ingest_paths(pipeline, paths)
        assert totals == {"total": 3, "committed": 2, "failed": 1, "duplicate": 0}

    async def test_duplicate_id_counted(self, make_pipeline, annotator, media_dir):
        pipeline = make_pipeline()
        paths = [media_dir / "a.png", media_dir / "nested" / "b.jpg"]
        totals = await ingest_paths(pipeline, paths, item_id="m1")
        assert totals["duplicate"] == 1
        assert totals["committed"] == 1
        assert len(annotator.calls) == 1

    async def test_failed_jobs_counted(self, make_pipeline, annotator, media_dir):
        annotator.outcomes = [AnnotatorRejected("nope")]
        totals = await ingest_paths(make_pipeline(), [media_dir / "a.png"])
        assert totals["failed"] == 1
        assert totals["committed"] == 0


class TestMain:
    async def test_dry_run_builds_nothing(self, media_dir, monkeypatch):
        monkeypatch.setattr(sys, "argv", ["media-ingest", str(media_dir), "--dry-run"])
        with (
            patch("media_service.ingestion.main.setup_logging"),
            patch("media_service.ingestion.main.build_pipeline") as mock_build,
        ):
            assert await _amain() == 0
        mock_build.assert_not_called()

    async def test_exit_code_reflects_failures(self, make_pipeline, annotator, media_dir, monkeypatch):
        annotator.outcomes = [AnnotatorRejected("nope")]
        pipeline = make_pipeline()
        pipeline.close = AsyncMock()  # type: ignore[method-assign]
        monkeypatch.setattr(sys, "argv", ["media-ingest", str(media_dir), "--concurrency", "2"])
        with (
            patch("media_service.ingestion.main.setup_logging"),
            patch("media_service.ingestion.main.build_pipeline", return_value=pipeline) as mock_build,
        ):
            assert await _amain() == 2
        assert mock_build.call_args.args[0].max_concurrency == 2
        pipeline.close.assert_awaited_once()

    async def test_id_requires_single_file(self, media_dir, monkeypatch):
        monkeypatch.setattr(sys, "argv", ["media-ingest", str(media_dir), "--id", "m1"])
        with patch("media_service.ingestion.main.setup_logging"), pytest.raises(SystemExit):
            await _amain()
