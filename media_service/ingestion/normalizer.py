"""Annotation normalization: raw provider facts -> canonical index record.

The normalizer is total. Malformed numbers are clamped rather than
rejected so that a noisy provider response can never fail a job here:

- scores and weights: NaN -> 0.0, otherwise clamped to [0, 1]
- RGB channels: NaN -> 0, otherwise rounded and clamped to [0, 255]
"""

from __future__ import annotations

import math

from media_service.ingestion.types import (
    AnnotationResult,
    ColorFact,
    IndexRecord,
    Label,
    MediaItem,
)


def clamp_unit(value: float) -> float:
    try:
        v = float(value)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(v):
        return 0.0
    return min(1.0, max(0.0, v))


def clamp_channel(value: float) -> int:
    try:
        v = float(value)
    except (TypeError, ValueError):
        return 0
    if math.isnan(v):
        return 0
    if math.isinf(v):
        return 255 if v > 0 else 0
    return int(min(255, max(0, round(v))))


def dedupe_labels(labels: tuple[Label, ...] | list[Label]) -> tuple[Label, ...]:
    """Keep the max score per exact (case-sensitive) text; score desc, text asc."""
    best: dict[str, float] = {}
    for lb in labels:
        score = clamp_unit(lb.score)
        prev = best.get(lb.text)
        if prev is None or score > prev:
            best[lb.text] = score
    ordered = sorted(best.items(), key=lambda kv: (-kv[1], kv[0]))
    return tuple(Label(text=text, score=score) for text, score in ordered)


def select_dominant_color(colors: tuple[ColorFact, ...] | list[ColorFact]) -> ColorFact | None:
    """Highest weight wins; ties go to the earliest entry."""
    chosen: ColorFact | None = None
    for c in colors:
        fact = ColorFact(
            rgb=(clamp_channel(c.rgb[0]), clamp_channel(c.rgb[1]), clamp_channel(c.rgb[2])),
            weight=clamp_unit(c.weight),
        )
        if chosen is None or fact.weight > chosen.weight:
            chosen = fact
    return chosen


def normalize(item: MediaItem, annotation: AnnotationResult) -> IndexRecord:
    return IndexRecord(
        id=item.id,
        labels=dedupe_labels(annotation.labels),
        dominant_color=select_dominant_color(annotation.dominant_colors),
        source_path=item.source_path,
        submitted_at=item.submitted_at,
    )


def as_annotation(record: IndexRecord) -> AnnotationResult:
    """Re-express a normalized record as provider output (normalize's inverse)."""
    return AnnotationResult(
        labels=record.labels,
        dominant_colors=(record.dominant_color,) if record.dominant_color is not None else (),
    )
