"""Shared test fixtures for the media-index test suite."""

from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path

import pytest

# Smallest valid PNG (1x1 transparent pixel)
PNG_BYTES = bytes.fromhex(
    "89504e470d0a1a0a0000000d4948445200000001000000010806000000"
    "1f15c4890000000d49444154789c6360000002000154a24f5d0000000049454e44ae426082"
)


@pytest.fixture
def fixed_now() -> datetime:
    return datetime(2026, 1, 15, 12, 0, tzinfo=UTC)


@pytest.fixture
def media_file(tmp_path: Path) -> Path:
    p = tmp_path / "panda.png"
    p.write_bytes(PNG_BYTES)
    return p


@pytest.fixture
def media_dir(tmp_path: Path) -> Path:
    root = tmp_path / "uploads"
    (root / "nested").mkdir(parents=True)
    (root / "a.png").write_bytes(PNG_BYTES)
    (root / "nested" / "b.jpg").write_bytes(PNG_BYTES + b"b")
    (root / "notes.txt").write_text("not media")
    return root
