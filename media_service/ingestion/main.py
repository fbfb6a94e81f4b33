from __future__ import annotations

import asyncio
import dataclasses
import logging
from pathlib import Path

from media_service.config import MEDIA_INDEX_BACKEND
from media_service.ingestion.cli import build_parser
from media_service.ingestion.config import PipelineConfig
from media_service.ingestion.errors import DuplicateInFlight
from media_service.ingestion.factory import build_pipeline
from media_service.ingestion.media import discover_media
from media_service.ingestion.pipeline import IngestionPipeline
from media_service.ingestion.types import JobStatus
from media_service.logging_config import setup_logging


async def ingest_paths(
    pipeline: IngestionPipeline, paths: list[Path], *, item_id: str | None = None
) -> dict[str, int]:
    """Submit every path, wait for all jobs, and tally the outcomes."""
    logger = logging.getLogger("media_service.ingestion")
    totals = {"total": len(paths), "committed": 0, "failed": 0, "duplicate": 0}

    submitted: list[str] = []
    for p in paths:
        try:
            submitted.append(await pipeline.submit(p, item_id))
        except DuplicateInFlight as e:
            logger.info("Skipping %s: %s", p, e)
            totals["duplicate"] += 1
        except OSError as e:
            logger.warning("Cannot read %s: %s", p, e)
            totals["failed"] += 1

    await pipeline.drain()

    for sid in submitted:
        state = pipeline.get_status(sid)
        if state.status is JobStatus.COMMITTED:
            totals["committed"] += 1
        else:
            totals["failed"] += 1
            logger.warning("FAILED %s [%s]: %s", sid, state.error_kind, state.reason)
    return totals


async def _amain() -> int:
    parser = build_parser()
    args = parser.parse_args()

    setup_logging(level=args.log_level.upper())
    logger = logging.getLogger("media_service.ingestion")

    cfg = PipelineConfig.from_env()
    # CLI overrides
    if args.concurrency and args.concurrency > 0:
        cfg = dataclasses.replace(cfg, max_concurrency=args.concurrency)
    cfg.validate()

    source = Path(args.source)
    if source.is_dir():
        paths = discover_media(source, max_files=int(args.max_files or 0))
    elif source.is_file():
        paths = [source]
    else:
        parser.error(f"No such file or directory: {source}")

    if args.id and len(paths) != 1:
        parser.error("--id requires a single media file")

    if not paths:
        logger.warning("No supported media found under %s. Exiting.", source)
        return 0

    logger.info("Discovered %d media file(s) under %s", len(paths), source)
    if args.dry_run:
        for p in paths:
            logger.info("[DRY-RUN] %s", p)
        return 0

    pipeline = build_pipeline(cfg, backend=args.backend or MEDIA_INDEX_BACKEND)
    try:
        totals = await ingest_paths(pipeline, paths, item_id=args.id)
    finally:
        await pipeline.close()

    logger.info("DONE totals=%s", totals)
    return 0 if totals["failed"] == 0 else 2


def main() -> None:
    raise SystemExit(asyncio.run(_amain()))


if __name__ == "__main__":
    main()
