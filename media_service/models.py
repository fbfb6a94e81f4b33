"""Pydantic request/response schemas for the media indexing API."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from media_service.ingestion.types import IndexRecord, JobState

# -- Submission ---------------------------------------------------------------


class SubmitRequest(BaseModel):
    media_path: str = Field(
        ..., min_length=1, max_length=4096, description="Path of the uploaded media file"
    )
    id: str | None = Field(
        None,
        min_length=1,
        max_length=256,
        description="Client-supplied media id (defaults to the content hash)",
    )


class SubmitResponse(BaseModel):
    id: str
    status: str


# -- Jobs ---------------------------------------------------------------------


class JobStatusResponse(BaseModel):
    id: str
    status: str
    attempts: int
    source_path: str | None = None
    reason: str | None = None
    error_kind: str | None = None
    updated_at: datetime
    details: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_state(cls, state: JobState) -> JobStatusResponse:
        return cls(
            id=state.item_id,
            status=state.status.value,
            attempts=state.attempts,
            source_path=state.source_path,
            reason=state.reason,
            error_kind=state.error_kind,
            updated_at=state.updated_at,
            details=dict(state.extra),
        )


class JobListResponse(BaseModel):
    jobs: list[JobStatusResponse]
    active: int


class CancelResponse(BaseModel):
    id: str
    cancel_requested: bool


# -- Search -------------------------------------------------------------------


class SearchRequest(BaseModel):
    query: str = Field("", max_length=1_000, description="Label search text; blank lists all")
    limit: int = Field(20, ge=1, le=100, description="Max records to return")


class LabelResult(BaseModel):
    text: str
    score: float


class ColorResult(BaseModel):
    rgb: tuple[int, int, int]
    weight: float


class RecordResult(BaseModel):
    id: str
    labels: list[LabelResult]
    dominant_color: ColorResult | None = None
    source_path: str
    submitted_at: datetime

    @classmethod
    def from_record(cls, record: IndexRecord) -> RecordResult:
        color = record.dominant_color
        return cls(
            id=record.id,
            labels=[LabelResult(text=lb.text, score=lb.score) for lb in record.labels],
            dominant_color=(
                ColorResult(rgb=color.rgb, weight=color.weight) if color is not None else None
            ),
            source_path=record.source_path,
            submitted_at=record.submitted_at,
        )


class SearchResponse(BaseModel):
    results: list[RecordResult]
    has_more: bool


# -- Health -------------------------------------------------------------------


class HealthResponse(BaseModel):
    status: str
    error: str | None = None
