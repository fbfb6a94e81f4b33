from __future__ import annotations

import argparse


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="media-ingest",
        description="Annotate local media files and commit them to the search index",
    )

    p.add_argument("source", help="File or directory of media to ingest")
    p.add_argument("--id", default=None, help="Explicit media id (single file only)")
    p.add_argument("--max-files", type=int, default=0, help="Max files to ingest (0 = no cap)")
    p.add_argument(
        "--concurrency",
        type=int,
        default=0,
        help="Override MEDIA_MAX_CONCURRENCY",
    )
    p.add_argument(
        "--backend",
        choices=("memory", "postgres"),
        default=None,
        help="Override MEDIA_INDEX_BACKEND",
    )
    p.add_argument("--dry-run", action="store_true", help="List work and exit (no provider calls)")
    p.add_argument("--log-level", default="INFO", help="Python logging level (INFO, DEBUG, ...)")
    return p
