from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


@dataclass(frozen=True)
class MediaItem:
    id: str
    source_path: str
    submitted_at: datetime


@dataclass(frozen=True)
class Label:
    text: str
    score: float


@dataclass(frozen=True)
class ColorFact:
    rgb: tuple[int, int, int]
    weight: float


@dataclass(frozen=True)
class AnnotationResult:
    """Raw provider output; labels may repeat with different scores."""

    labels: tuple[Label, ...] = ()
    dominant_colors: tuple[ColorFact, ...] = ()


@dataclass(frozen=True)
class IndexRecord:
    id: str
    labels: tuple[Label, ...]  # unique by text, score desc
    dominant_color: ColorFact | None
    source_path: str
    submitted_at: datetime

    def to_document(self) -> dict[str, Any]:
        """Serializable form written to index backends."""
        return {
            "id": self.id,
            "labels": [{"text": lb.text, "score": lb.score} for lb in self.labels],
            "dominant_color": (
                {"rgb": list(self.dominant_color.rgb), "weight": self.dominant_color.weight}
                if self.dominant_color is not None
                else None
            ),
            "source_path": self.source_path,
            "submitted_at": self.submitted_at.isoformat(),
        }

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> IndexRecord:
        color = doc.get("dominant_color")
        submitted = doc["submitted_at"]
        if isinstance(submitted, str):
            submitted = datetime.fromisoformat(submitted)
        return cls(
            id=str(doc["id"]),
            labels=tuple(Label(text=str(lb["text"]), score=float(lb["score"])) for lb in doc.get("labels") or []),
            dominant_color=(
                ColorFact(rgb=(int(color["rgb"][0]), int(color["rgb"][1]), int(color["rgb"][2])), weight=float(color["weight"]))
                if color
                else None
            ),
            source_path=str(doc["source_path"]),
            submitted_at=submitted,
        )


class JobStatus(str, enum.Enum):
    PENDING = "pending"
    ANNOTATING = "annotating"
    NORMALIZING = "normalizing"
    INDEXING = "indexing"
    COMMITTED = "committed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMMITTED, JobStatus.FAILED)


@dataclass(frozen=True)
class JobState:
    item_id: str
    status: JobStatus
    updated_at: datetime
    source_path: str | None = None
    attempts: int = 0  # attempts made by the current (or failing) stage
    reason: str | None = None  # failure text, FAILED only
    error_kind: str | None = None  # final error class name, FAILED only
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal
