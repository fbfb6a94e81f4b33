from __future__ import annotations

import hashlib
from pathlib import Path

_SUPPORTED_EXTS: dict[str, str] = {
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".webp": "image/webp",
    ".gif": "image/gif",
    ".heic": "image/heic",
    ".heif": "image/heif",
}

_READ_BLOCK = 1024 * 1024


def derive_mime_type(name: str) -> str | None:
    return _SUPPORTED_EXTS.get(Path(name).suffix.lower())


def is_supported(name: str) -> bool:
    return derive_mime_type(name) is not None


def compute_media_id(path: str | Path) -> str:
    """Content hash of the file, so identical uploads collide on the same id."""
    h = hashlib.sha256()
    with open(path, "rb") as f:
        while block := f.read(_READ_BLOCK):
            h.update(block)
    return h.hexdigest()


def discover_media(root: str | Path, *, max_files: int = 0) -> list[Path]:
    """Supported image files under root, in stable path order."""
    out: list[Path] = []
    for p in sorted(Path(root).rglob("*")):
        if not p.is_file() or not is_supported(p.name):
            continue
        out.append(p)
        if max_files and len(out) >= max_files:
            break
    return out


def resolve_under_root(media_path: str, upload_root: str | None) -> Path:
    """Resolve media_path, enforcing that it stays inside upload_root when set."""
    p = Path(media_path).expanduser().resolve()
    if upload_root:
        root = Path(upload_root).expanduser().resolve()
        if not p.is_relative_to(root):
            raise ValueError(f"Media path escapes upload root: {media_path}")
    return p
