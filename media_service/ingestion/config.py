from __future__ import annotations

import os
from dataclasses import dataclass

from media_service.config import MEDIA_JOB_TTL_S, MEDIA_QUOTA_BACKOFF_MULTIPLIER


def _get_int(name: str, default: int) -> int:
    v = os.getenv(name)
    if v is None:
        return default
    return int(v)


def _get_float(name: str, default: float) -> float:
    v = os.getenv(name)
    if v is None:
        return default
    return float(v)


@dataclass(frozen=True)
class ProviderConfig:
    """Connection and retry settings for one external provider."""

    endpoint: str | None
    credentials: str | None = None
    max_attempts: int = 3
    base_backoff_ms: int = 500
    max_backoff_ms: int = 30_000
    timeout_s: float = 30.0

    @classmethod
    def from_env(
        cls,
        prefix: str,
        *,
        default_attempts: int = 3,
        default_backoff_ms: int = 500,
        default_max_backoff_ms: int = 30_000,
        default_timeout_s: float = 30.0,
        credentials_fallback_env: str | None = None,
    ) -> ProviderConfig:
        credentials = os.getenv(f"{prefix}_CREDENTIALS")
        if not credentials and credentials_fallback_env:
            credentials = os.getenv(credentials_fallback_env)
        return cls(
            endpoint=os.getenv(f"{prefix}_ENDPOINT") or None,
            credentials=credentials or None,
            max_attempts=_get_int(f"{prefix}_MAX_ATTEMPTS", default_attempts),
            base_backoff_ms=_get_int(f"{prefix}_BASE_BACKOFF_MS", default_backoff_ms),
            max_backoff_ms=_get_int(f"{prefix}_MAX_BACKOFF_MS", default_max_backoff_ms),
            timeout_s=_get_float(f"{prefix}_TIMEOUT_S", default_timeout_s),
        )

    def validate(self, name: str) -> None:
        if self.max_attempts < 1:
            raise ValueError(f"{name}: max_attempts must be >= 1")
        if self.base_backoff_ms < 0:
            raise ValueError(f"{name}: base_backoff_ms must be >= 0")
        if self.max_backoff_ms < self.base_backoff_ms:
            raise ValueError(f"{name}: max_backoff_ms must be >= base_backoff_ms")
        if self.timeout_s <= 0:
            raise ValueError(f"{name}: timeout_s must be > 0")


@dataclass(frozen=True)
class PipelineConfig:
    annotator: ProviderConfig
    index: ProviderConfig

    # Admission limit across all items
    max_concurrency: int = 4

    # Throttling errors back off this many times longer than outages
    quota_backoff_multiplier: float = MEDIA_QUOTA_BACKOFF_MULTIPLIER

    # Terminal job retention
    job_ttl_s: float = MEDIA_JOB_TTL_S

    @classmethod
    def from_env(cls) -> PipelineConfig:
        return cls(
            annotator=ProviderConfig.from_env(
                "MEDIA_ANNOTATOR",
                default_attempts=3,
                default_backoff_ms=500,
                default_max_backoff_ms=30_000,
                default_timeout_s=30.0,
                credentials_fallback_env="GEMINI_API_KEY",
            ),
            index=ProviderConfig.from_env(
                "MEDIA_INDEX",
                default_attempts=3,
                default_backoff_ms=200,
                default_max_backoff_ms=10_000,
                default_timeout_s=10.0,
            ),
            max_concurrency=_get_int("MEDIA_MAX_CONCURRENCY", 4),
            quota_backoff_multiplier=_get_float(
                "MEDIA_QUOTA_BACKOFF_MULTIPLIER", MEDIA_QUOTA_BACKOFF_MULTIPLIER
            ),
            job_ttl_s=_get_float("MEDIA_JOB_TTL_S", MEDIA_JOB_TTL_S),
        )

    def validate(self) -> None:
        self.annotator.validate("annotator")
        self.index.validate("index")
        if self.max_concurrency < 1:
            raise ValueError("MEDIA_MAX_CONCURRENCY must be >= 1")
        if self.quota_backoff_multiplier < 1:
            raise ValueError("MEDIA_QUOTA_BACKOFF_MULTIPLIER must be >= 1")
        if self.job_ttl_s < 0:
            raise ValueError("MEDIA_JOB_TTL_S must be >= 0")
