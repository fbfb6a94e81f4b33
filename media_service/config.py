"""Environment-variable-driven configuration for the media indexing service.

All config comes from env vars; per-provider pipeline settings are grouped
into dataclasses in ``media_service.ingestion.config``.
"""

from __future__ import annotations

import os


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_csv(name: str, default: str) -> list[str]:
    raw = os.getenv(name, default)
    return [item.strip() for item in raw.split(",") if item.strip()]


# -- Annotator ----------------------------------------------------------------
MEDIA_ANNOTATOR_MODEL: str = os.getenv("MEDIA_ANNOTATOR_MODEL", "gemini-2.5-flash")
MEDIA_ANNOTATOR_MAX_LABELS: int = int(os.getenv("MEDIA_ANNOTATOR_MAX_LABELS", "15"))
MEDIA_ANNOTATOR_MAX_COLORS: int = int(os.getenv("MEDIA_ANNOTATOR_MAX_COLORS", "5"))
MEDIA_QUOTA_BACKOFF_MULTIPLIER: float = float(os.getenv("MEDIA_QUOTA_BACKOFF_MULTIPLIER", "4.0"))

# -- Index --------------------------------------------------------------------
MEDIA_INDEX_BACKEND: str = os.getenv("MEDIA_INDEX_BACKEND", "memory")
MEDIA_INDEX_MAX_RECORD_BYTES: int = int(os.getenv("MEDIA_INDEX_MAX_RECORD_BYTES", "65536"))
MEDIA_FTS_LANGUAGE: str = os.getenv("MEDIA_FTS_LANGUAGE", "english")
MEDIA_SEARCH_FETCH_SIZE: int = int(os.getenv("MEDIA_SEARCH_FETCH_SIZE", "50"))

# -- Jobs ---------------------------------------------------------------------
MEDIA_JOB_TTL_S: float = float(os.getenv("MEDIA_JOB_TTL_S", "3600"))
MEDIA_JOURNAL_ENABLED: bool = _env_bool("MEDIA_JOURNAL_ENABLED", False)
MEDIA_JOURNAL_TIMEOUT_S: float = float(os.getenv("MEDIA_JOURNAL_TIMEOUT_S", "2.0"))
MEDIA_UPLOAD_ROOT: str | None = os.getenv("MEDIA_UPLOAD_ROOT")

# -- Auth ---------------------------------------------------------------------
MEDIA_SHARED_TOKEN: str | None = os.getenv("MEDIA_SHARED_TOKEN")

# -- CORS ---------------------------------------------------------------------
MEDIA_CORS_ALLOW_ORIGINS: list[str] = _env_csv(
    "MEDIA_CORS_ALLOW_ORIGINS",
    "http://localhost:3000,http://localhost:5173",
)
MEDIA_CORS_ALLOW_METHODS: list[str] = _env_csv(
    "MEDIA_CORS_ALLOW_METHODS",
    "GET,POST,DELETE,OPTIONS",
)
MEDIA_CORS_ALLOW_HEADERS: list[str] = _env_csv(
    "MEDIA_CORS_ALLOW_HEADERS",
    "Authorization,Content-Type",
)
MEDIA_CORS_ALLOW_CREDENTIALS: bool = _env_bool("MEDIA_CORS_ALLOW_CREDENTIALS", False)

# -- Server -------------------------------------------------------------------
IS_CLOUD_RUN: bool = bool(os.getenv("K_SERVICE"))

# -- GCP ----------------------------------------------------------------------
VERTEX_PROJECT: str | None = os.getenv("GOOGLE_CLOUD_PROJECT")
VERTEX_LOCATION: str = os.getenv("GOOGLE_CLOUD_LOCATION", "us-central1")
