"""Unit tests for the Postgres index backend and job journal — mocked asyncpg pool."""

from __future__ import annotations

import asyncio
import json
from datetime import UTC, datetime
from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import asyncpg
import pytest
from fakes import collect

from media_service.index.postgres import PostgresIndexWriter, row_to_record
from media_service.ingestion.errors import IndexRejected, IndexUnavailable
from media_service.ingestion.types import ColorFact, IndexRecord, JobState, JobStatus, Label
from media_service.logging_config import bind_request_id, reset_request_id
from media_service.stores.job_journal import JobJournal

TS = datetime(2026, 1, 1, tzinfo=UTC)

RECORD = IndexRecord(
    id="m1",
    labels=(Label("panda", 0.99), Label("bamboo", 0.5)),
    dominant_color=ColorFact((10, 10, 10), 1.0),
    source_path="/uploads/m1.png",
    submitted_at=TS,
)


def _row(rid: str = "m1", *, labels: Any = None, rgb: list[int] | None = None, weight: float | None = None):
    return {
        "id": rid,
        "labels": labels if labels is not None else json.dumps([{"text": "panda", "score": 0.99}]),
        "dominant_rgb": rgb,
        "dominant_weight": weight,
        "source_path": f"/uploads/{rid}.png",
        "submitted_at": TS,
    }


class _Rows:
    """Async iterator standing in for an asyncpg cursor."""

    def __init__(self, rows: list[dict[str, Any]], error: BaseException | None = None) -> None:
        self._rows = list(rows)
        self._error = error

    def __aiter__(self) -> _Rows:
        return self

    async def __anext__(self) -> dict[str, Any]:
        if self._error is not None:
            raise self._error
        if not self._rows:
            raise StopAsyncIteration
        return self._rows.pop(0)


def _async_cm(value: Any = None) -> MagicMock:
    cm = MagicMock()
    cm.__aenter__ = AsyncMock(return_value=value)
    cm.__aexit__ = AsyncMock(return_value=False)
    return cm


def _mock_pool() -> tuple[MagicMock, MagicMock]:
    conn = MagicMock()
    conn.execute = AsyncMock()
    conn.fetchrow = AsyncMock(return_value=None)
    conn.fetchval = AsyncMock(return_value=1)
    conn.transaction.return_value = _async_cm()
    pool = MagicMock()
    pool.acquire.return_value = _async_cm(conn)
    return pool, conn


class TestRowToRecord:
    def test_json_string_labels_and_color(self):
        rec = row_to_record(_row(rgb=[10, 20, 30], weight=0.4))
        assert rec.labels == (Label("panda", 0.99),)
        assert rec.dominant_color == ColorFact((10, 20, 30), 0.4)

    def test_decoded_labels_and_no_color(self):
        rec = row_to_record(_row(labels=[{"text": "cat", "score": 1}]))
        assert rec.labels == (Label("cat", 1.0),)
        assert rec.dominant_color is None


class TestUpsert:
    async def test_executes_single_statement(self):
        pool, conn = _mock_pool()
        await PostgresIndexWriter(pool=pool).upsert(RECORD)

        conn.execute.assert_awaited_once()
        sql, *params = conn.execute.call_args.args
        assert "ON CONFLICT (id) DO UPDATE" in sql
        assert params[0] == "m1"
        assert json.loads(params[1]) == [
            {"text": "panda", "score": 0.99},
            {"text": "bamboo", "score": 0.5},
        ]
        assert params[2] == "panda bamboo"
        assert params[3] == [10, 10, 10]
        assert params[4] == 1.0

    async def test_no_color_writes_nulls(self):
        pool, conn = _mock_pool()
        rec = IndexRecord(id="m2", labels=(), dominant_color=None, source_path="/x.png", submitted_at=TS)
        await PostgresIndexWriter(pool=pool).upsert(rec)
        params = conn.execute.call_args.args[1:]
        assert params[3] is None
        assert params[4] is None

    async def test_oversized_rejected_before_db(self):
        pool, conn = _mock_pool()
        with pytest.raises(IndexRejected):
            await PostgresIndexWriter(pool=pool, max_record_bytes=10).upsert(RECORD)
        pool.acquire.assert_not_called()

    async def test_data_error_is_rejected(self):
        pool, conn = _mock_pool()
        conn.execute.side_effect = asyncpg.exceptions.DataError("invalid input syntax")
        with pytest.raises(IndexRejected):
            await PostgresIndexWriter(pool=pool).upsert(RECORD)

    async def test_connection_loss_is_unavailable(self):
        pool, conn = _mock_pool()
        conn.execute.side_effect = ConnectionResetError("reset by peer")
        with pytest.raises(IndexUnavailable):
            await PostgresIndexWriter(pool=pool).upsert(RECORD)

    @patch("media_service.index.postgres.get_pool", new_callable=AsyncMock)
    async def test_pool_creation_failure_is_unavailable(self, mock_get_pool):
        mock_get_pool.side_effect = ConnectionRefusedError("refused")
        with pytest.raises(IndexUnavailable, match="Cannot connect"):
            await PostgresIndexWriter().upsert(RECORD)


class TestSearch:
    async def test_text_query_uses_fts(self):
        pool, conn = _mock_pool()
        conn.cursor = MagicMock(return_value=_Rows([_row("b"), _row("a")]))
        writer = PostgresIndexWriter(pool=pool, fts_language="simple", fetch_size=7)

        hits = await collect(writer.search("  panda "))

        assert [r.id for r in hits] == ["b", "a"]
        sql, *args = conn.cursor.call_args.args
        assert "plainto_tsquery" in sql
        assert args == ["simple", "panda"]
        assert conn.cursor.call_args.kwargs["prefetch"] == 7

    async def test_blank_query_lists_by_id(self):
        pool, conn = _mock_pool()
        conn.cursor = MagicMock(return_value=_Rows([]))
        assert await collect(PostgresIndexWriter(pool=pool).search("")) == []
        sql, *args = conn.cursor.call_args.args
        assert "ORDER BY id" in sql
        assert args == []

    async def test_cursor_failure_is_unavailable(self):
        pool, conn = _mock_pool()
        conn.cursor = MagicMock(return_value=_Rows([], error=TimeoutError()))
        with pytest.raises(IndexUnavailable):
            await collect(PostgresIndexWriter(pool=pool).search("panda"))


class TestGetPingClose:
    async def test_get_missing_returns_none(self):
        pool, _ = _mock_pool()
        assert await PostgresIndexWriter(pool=pool).get("nope") is None

    async def test_get_found(self):
        pool, conn = _mock_pool()
        conn.fetchrow.return_value = _row("m1")
        rec = await PostgresIndexWriter(pool=pool).get("m1")
        assert rec is not None and rec.id == "m1"

    async def test_ping(self):
        pool, conn = _mock_pool()
        writer = PostgresIndexWriter(pool=pool)
        assert await writer.ping() is True
        conn.fetchval.side_effect = ConnectionRefusedError()
        assert await writer.ping() is False

    @patch("media_service.index.postgres.close_pool", new_callable=AsyncMock)
    async def test_close_leaves_injected_pool(self, mock_close):
        pool, _ = _mock_pool()
        await PostgresIndexWriter(pool=pool).close()
        mock_close.assert_not_awaited()

    @patch("media_service.index.postgres.close_pool", new_callable=AsyncMock)
    @patch("media_service.index.postgres.get_pool", new_callable=AsyncMock)
    async def test_close_releases_owned_pool(self, mock_get_pool, mock_close):
        pool, _ = _mock_pool()
        mock_get_pool.return_value = pool
        writer = PostgresIndexWriter()
        await writer.ping()
        await writer.close()
        mock_close.assert_awaited_once()


class TestJobJournal:
    async def test_records_state(self):
        pool, conn = _mock_pool()
        state = JobState(
            item_id="m1",
            status=JobStatus.FAILED,
            updated_at=TS,
            attempts=3,
            reason="x" * 5000,
            error_kind="AnnotatorUnavailable",
        )
        await JobJournal(pool=pool).record(state)
        params = conn.execute.call_args.args[1:]
        assert params[0] == "m1"
        assert params[1] == "failed"
        assert len(params[4]) == 4000
        assert json.loads(params[6]) == {}

    async def test_write_failure_is_swallowed(self, caplog):
        pool, conn = _mock_pool()
        conn.execute.side_effect = ConnectionResetError("gone")
        state = JobState(item_id="m1", status=JobStatus.PENDING, updated_at=TS)
        await JobJournal(pool=pool).record(state)
        assert "Failed to journal job m1" in caplog.text

    async def test_stalled_pool_times_out(self, caplog):
        pool, conn = _mock_pool()
        stalled = asyncio.Event()
        pool.acquire.return_value.__aenter__ = AsyncMock(side_effect=stalled.wait)
        state = JobState(item_id="m1", status=JobStatus.PENDING, updated_at=TS)

        await asyncio.wait_for(JobJournal(pool=pool, timeout_s=0.05).record(state), timeout=2)

        assert "Failed to journal job m1" in caplog.text
        conn.execute.assert_not_called()

    async def test_request_id_stored_in_metadata(self):
        pool, conn = _mock_pool()
        state = JobState(item_id="m1", status=JobStatus.COMMITTED, updated_at=TS, extra={"labels": 2})
        token = bind_request_id("req-42")
        try:
            await JobJournal(pool=pool).record(state)
        finally:
            reset_request_id(token)
        metadata = json.loads(conn.execute.call_args.args[7])
        assert metadata == {"labels": 2, "request_id": "req-42"}
        assert state.extra == {"labels": 2}
