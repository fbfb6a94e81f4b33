"""Image annotation via Gemini multimodal models.

Asks the model for descriptive labels and dominant colors in one request, so
both facets succeed or fail together. Provider errors are mapped onto the
pipeline taxonomy:

- HTTP 429                 -> AnnotatorQuotaExceeded
- HTTP 408, 5xx, transport -> AnnotatorUnavailable
- other HTTP 4xx           -> AnnotatorRejected
- unsupported/unreadable   -> AnnotatorRejected
- unparseable model output -> AnnotatorUnavailable (model output varies run to run)
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import re
from pathlib import Path
from typing import Any

import httpx
from google import genai
from google.genai import errors as genai_errors
from google.genai import types

from media_service.annotators.base import Annotator
from media_service.config import (
    MEDIA_ANNOTATOR_MAX_COLORS,
    MEDIA_ANNOTATOR_MAX_LABELS,
    MEDIA_ANNOTATOR_MODEL,
    VERTEX_LOCATION,
    VERTEX_PROJECT,
)
from media_service.ingestion.config import ProviderConfig
from media_service.ingestion.errors import (
    AnnotatorQuotaExceeded,
    AnnotatorRejected,
    AnnotatorUnavailable,
)
from media_service.ingestion.media import derive_mime_type
from media_service.ingestion.types import AnnotationResult, ColorFact, Label

logger = logging.getLogger(__name__)

_HEX_RE = re.compile(r"^#?([0-9a-fA-F]{2})([0-9a-fA-F]{2})([0-9a-fA-F]{2})$")


def _is_gcp_environment() -> bool:
    return bool(os.getenv("K_SERVICE") or os.getenv("GOOGLE_APPLICATION_CREDENTIALS"))


def build_client(cfg: ProviderConfig) -> genai.Client:
    """Gemini client from provider config; falls back to ADC on GCP."""
    http_options = types.HttpOptions(base_url=cfg.endpoint) if cfg.endpoint else None
    if cfg.credentials:
        return genai.Client(api_key=cfg.credentials, http_options=http_options)
    if _is_gcp_environment():
        return genai.Client(
            vertexai=True,
            project=VERTEX_PROJECT,
            location=VERTEX_LOCATION,
            http_options=http_options,
        )
    raise ValueError(
        "Annotator credentials not set. Set MEDIA_ANNOTATOR_CREDENTIALS or GEMINI_API_KEY, "
        "or run on GCP for ADC."
    )


def _prompt(max_labels: int, max_colors: int) -> str:
    return (
        "You are an image tagging service.\n"
        f"List up to {max_labels} short descriptive labels for the image with a confidence"
        " score between 0 and 1, and up to"
        f" {max_colors} dominant colors with the fraction of the image they cover.\n\n"
        "Return ONLY valid JSON of this form:\n"
        '  {"labels": [{"text": "<label>", "score": <float>}],\n'
        '   "colors": [{"rgb": [<r>, <g>, <b>], "weight": <float>}]}\n\n'
        "Rules:\n"
        "- Labels are lowercase nouns or short noun phrases.\n"
        "- rgb channels are integers 0-255.\n"
    )


def parse_annotation_json(raw: str) -> dict[str, Any] | None:
    """Parse model output as a JSON object, tolerating surrounding prose or fences."""
    try:
        obj = json.loads(raw)
        if isinstance(obj, dict):
            return obj
    except ValueError:
        pass

    m = re.search(r"\{.*\}", raw, flags=re.DOTALL)
    if m:
        try:
            obj = json.loads(m.group(0))
            if isinstance(obj, dict):
                return obj
        except ValueError:
            pass
    return None


def _rgb_from(entry: dict[str, Any]) -> tuple[float, float, float] | None:
    rgb = entry.get("rgb")
    if isinstance(rgb, (list, tuple)) and len(rgb) == 3:
        try:
            return (float(rgb[0]), float(rgb[1]), float(rgb[2]))
        except (TypeError, ValueError):
            return None
    if isinstance(rgb, dict):
        try:
            return (float(rgb.get("red", 0)), float(rgb.get("green", 0)), float(rgb.get("blue", 0)))
        except (TypeError, ValueError):
            return None
    hex_val = entry.get("hex")
    if isinstance(hex_val, str) and (hm := _HEX_RE.match(hex_val.strip())):
        return (int(hm.group(1), 16), int(hm.group(2), 16), int(hm.group(3), 16))
    return None


def annotation_from_payload(data: dict[str, Any]) -> AnnotationResult:
    """Build a raw AnnotationResult; values are left for the normalizer to clamp."""
    labels: list[Label] = []
    for entry in data.get("labels") or []:
        if not isinstance(entry, dict):
            continue
        text = entry.get("text") or entry.get("description")
        if not isinstance(text, str) or not text.strip():
            continue
        try:
            score = float(entry.get("score", 0.0))
        except (TypeError, ValueError):
            score = 0.0
        labels.append(Label(text=text.strip(), score=score))

    colors: list[ColorFact] = []
    for entry in data.get("colors") or data.get("dominant_colors") or []:
        if not isinstance(entry, dict):
            continue
        rgb = _rgb_from(entry)
        if rgb is None:
            continue
        try:
            weight = float(entry.get("weight", entry.get("pixel_fraction", 0.0)))
        except (TypeError, ValueError):
            weight = 0.0
        colors.append(ColorFact(rgb=rgb, weight=weight))  # type: ignore[arg-type]

    return AnnotationResult(labels=tuple(labels), dominant_colors=tuple(colors))


class GeminiAnnotator(Annotator):
    name = "gemini"

    def __init__(
        self,
        *,
        cfg: ProviderConfig,
        client: genai.Client | None = None,
        model: str = MEDIA_ANNOTATOR_MODEL,
        max_labels: int = MEDIA_ANNOTATOR_MAX_LABELS,
        max_colors: int = MEDIA_ANNOTATOR_MAX_COLORS,
    ) -> None:
        self._client = client or build_client(cfg)
        self._model = model
        self._prompt = _prompt(max_labels, max_colors)

    async def annotate(self, media_path: str) -> AnnotationResult:
        mime = derive_mime_type(media_path)
        if mime is None:
            raise AnnotatorRejected(f"Unsupported media type: {media_path}")

        try:
            data = await asyncio.to_thread(Path(media_path).read_bytes)
        except OSError as e:
            raise AnnotatorRejected(f"Cannot read media {media_path}: {e}") from e
        if not data:
            raise AnnotatorRejected(f"Media file is empty: {media_path}")

        try:
            response = await self._client.aio.models.generate_content(
                model=self._model,
                contents=[types.Part.from_bytes(data=data, mime_type=mime), self._prompt],
                config=types.GenerateContentConfig(
                    temperature=0.0,
                    response_mime_type="application/json",
                ),
            )
        except genai_errors.APIError as e:
            raise _map_api_error(e) from e
        except httpx.TransportError as e:
            raise AnnotatorUnavailable(f"Annotator transport error: {e}") from e

        raw = (getattr(response, "text", "") or "").strip()
        payload = parse_annotation_json(raw) if raw else None
        if payload is None:
            raise AnnotatorUnavailable("Annotator returned no parseable JSON")

        result = annotation_from_payload(payload)
        logger.debug(
            "Annotated %s: %d labels, %d colors",
            media_path,
            len(result.labels),
            len(result.dominant_colors),
        )
        return result


def _map_api_error(e: genai_errors.APIError) -> Exception:
    code = getattr(e, "code", None) or 0
    if code == 429:
        return AnnotatorQuotaExceeded(f"Annotator quota exceeded: {e}")
    if code == 408 or code >= 500:
        return AnnotatorUnavailable(f"Annotator unavailable ({code}): {e}")
    if 400 <= code < 500:
        return AnnotatorRejected(f"Annotator rejected media ({code}): {e}")
    return AnnotatorUnavailable(f"Annotator error: {e}")
