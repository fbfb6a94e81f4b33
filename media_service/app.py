"""FastAPI entry point for the media indexing service.

Endpoints:
- POST   /v1/media       — Submit a media item for annotation + indexing
- GET    /v1/media       — List tracked jobs
- GET    /v1/media/{id}  — Job status for a media item
- DELETE /v1/media/{id}  — Request cancellation of an active job
- POST   /v1/search      — Label search over indexed records
- GET    /liveness       — Health check
- GET    /readiness      — Index connectivity check
"""

from __future__ import annotations

import hmac
import logging
from collections.abc import AsyncIterator
from contextlib import aclosing, asynccontextmanager
from typing import Annotated, cast

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from media_service.config import (
    IS_CLOUD_RUN,
    MEDIA_CORS_ALLOW_CREDENTIALS,
    MEDIA_CORS_ALLOW_HEADERS,
    MEDIA_CORS_ALLOW_METHODS,
    MEDIA_CORS_ALLOW_ORIGINS,
    MEDIA_SHARED_TOKEN,
    MEDIA_UPLOAD_ROOT,
)
from media_service.ingestion.errors import DuplicateInFlight, IndexUnavailable, JobNotFound
from media_service.ingestion.factory import build_pipeline
from media_service.ingestion.media import resolve_under_root
from media_service.ingestion.pipeline import IngestionPipeline
from media_service.logging_config import (
    bind_request_id,
    generate_request_id,
    reset_request_id,
    setup_logging,
)
from media_service.models import (
    CancelResponse,
    HealthResponse,
    JobListResponse,
    JobStatusResponse,
    RecordResult,
    SearchRequest,
    SearchResponse,
    SubmitRequest,
    SubmitResponse,
)

logger = logging.getLogger(__name__)

# Paths that skip auth
_PUBLIC_PATHS = {"/liveness", "/readiness", "/docs", "/openapi.json"}


def require_auth_on_cloud_run() -> None:
    """Refuse to serve an unauthenticated API on Cloud Run."""
    if IS_CLOUD_RUN and not MEDIA_SHARED_TOKEN:
        raise RuntimeError("MEDIA_SHARED_TOKEN must be set on Cloud Run")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan: build the pipeline on startup, drain it on shutdown."""
    setup_logging()
    require_auth_on_cloud_run()
    pipeline = build_pipeline()
    app.state.pipeline = pipeline
    logger.info("Media service started")
    yield
    await pipeline.shutdown(cancel_pending=True)
    await pipeline.close()
    logger.info("Media service stopped")


app = FastAPI(
    title="Media Index API",
    version="0.1.0",
    lifespan=lifespan,
)

# -- Rate limiting ------------------------------------------------------------

limiter = Limiter(key_func=get_remote_address, default_limits=["120/minute"])
app.state.limiter = limiter


@app.exception_handler(RateLimitExceeded)
async def _rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    return JSONResponse(status_code=429, content={"detail": "Rate limit exceeded"})


if MEDIA_CORS_ALLOW_CREDENTIALS and "*" in MEDIA_CORS_ALLOW_ORIGINS:
    raise RuntimeError("Invalid CORS config: wildcard origin cannot be combined with credentials=true")

app.add_middleware(
    CORSMiddleware,
    allow_origins=MEDIA_CORS_ALLOW_ORIGINS,
    allow_credentials=MEDIA_CORS_ALLOW_CREDENTIALS,
    allow_methods=MEDIA_CORS_ALLOW_METHODS,
    allow_headers=MEDIA_CORS_ALLOW_HEADERS,
)


# -- Body size limit ----------------------------------------------------------

_MAX_BODY_BYTES = 64 * 1024  # requests carry paths, not media bytes


@app.middleware("http")
async def body_size_middleware(request: Request, call_next):  # type: ignore[no-untyped-def]
    """Reject requests with bodies exceeding the size limit."""
    content_length = request.headers.get("content-length")
    if content_length is not None and int(content_length) > _MAX_BODY_BYTES:
        return JSONResponse(status_code=413, content={"detail": "Request body too large"})
    return await call_next(request)


# -- Auth middleware ----------------------------------------------------------


def _extract_token(request: Request) -> str | None:
    auth = request.headers.get("authorization", "")
    if auth.lower().startswith("bearer "):
        return auth[7:].strip() or None
    return None


@app.middleware("http")
async def auth_middleware(request: Request, call_next):  # type: ignore[no-untyped-def]
    """Require the shared bearer token on non-public paths when one is configured."""
    if (
        not MEDIA_SHARED_TOKEN
        or request.method == "OPTIONS"
        or request.url.path in _PUBLIC_PATHS
    ):
        return await call_next(request)

    token = _extract_token(request)
    if not token:
        return JSONResponse(status_code=401, content={"detail": "Missing authorization token"})
    if not hmac.compare_digest(token, MEDIA_SHARED_TOKEN):
        return JSONResponse(status_code=401, content={"detail": "Invalid token"})
    return await call_next(request)


# -- Request ID middleware ----------------------------------------------------


@app.middleware("http")
async def request_id_middleware(request: Request, call_next):  # type: ignore[no-untyped-def]
    """Attach a unique request ID for trace correlation."""
    request_id = request.headers.get("x-request-id") or generate_request_id()
    request.state.request_id = request_id
    token = bind_request_id(request_id)
    try:
        response = await call_next(request)
    finally:
        reset_request_id(token)
    response.headers["x-request-id"] = request_id
    return response


def _get_pipeline(request: Request) -> IngestionPipeline:
    """Dependency: the pipeline built during lifespan startup."""
    pipeline = getattr(request.app.state, "pipeline", None)
    if pipeline is None:
        raise HTTPException(status_code=503, detail="Pipeline not initialized")
    return cast(IngestionPipeline, pipeline)


# -- Health -------------------------------------------------------------------


@app.get("/liveness", response_model=HealthResponse)
async def liveness() -> HealthResponse:
    return HealthResponse(status="ok")


@app.get("/readiness", response_model=HealthResponse)
async def readiness(
    pipeline: Annotated[IngestionPipeline, Depends(_get_pipeline)],
) -> HealthResponse:
    health = await pipeline.ping()
    if not health["index"]:
        raise HTTPException(status_code=503, detail="Index unavailable")
    if not health["annotator"]:
        return HealthResponse(status="degraded", error="Annotator unavailable")
    return HealthResponse(status="ok")


# -- Media --------------------------------------------------------------------


@app.post("/v1/media", response_model=SubmitResponse, status_code=202)
@limiter.limit("30/minute")
async def submit_media(
    request: Request,
    body: SubmitRequest,
    pipeline: Annotated[IngestionPipeline, Depends(_get_pipeline)],
) -> SubmitResponse:
    """Accept a media item; processing continues in the background."""
    try:
        path = resolve_under_root(body.media_path, MEDIA_UPLOAD_ROOT)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    if not path.is_file():
        raise HTTPException(status_code=400, detail="Media file not found")

    try:
        item_id = await pipeline.submit(path, body.id)
    except DuplicateInFlight as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    except OSError as e:
        logger.warning("Could not read media %s: %s", path, e)
        raise HTTPException(status_code=400, detail="Media file could not be read") from e

    return SubmitResponse(id=item_id, status=pipeline.get_status(item_id).status.value)


@app.get("/v1/media", response_model=JobListResponse)
async def list_media_jobs(
    pipeline: Annotated[IngestionPipeline, Depends(_get_pipeline)],
) -> JobListResponse:
    """Tracked jobs, oldest update first."""
    tracker = pipeline.tracker
    return JobListResponse(
        jobs=[JobStatusResponse.from_state(s) for s in tracker.snapshot()],
        active=tracker.active_count(),
    )


@app.get("/v1/media/{item_id}", response_model=JobStatusResponse)
async def get_media_status(
    item_id: str,
    pipeline: Annotated[IngestionPipeline, Depends(_get_pipeline)],
) -> JobStatusResponse:
    try:
        state = pipeline.get_status(item_id)
    except JobNotFound as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    return JobStatusResponse.from_state(state)


@app.delete("/v1/media/{item_id}", response_model=CancelResponse)
async def cancel_media(
    item_id: str,
    pipeline: Annotated[IngestionPipeline, Depends(_get_pipeline)],
) -> CancelResponse:
    """Request cancellation; honored before the job's next attempt."""
    try:
        requested = pipeline.cancel(item_id)
    except JobNotFound as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    if not requested:
        raise HTTPException(status_code=409, detail="Job already finished")
    return CancelResponse(id=item_id, cancel_requested=True)


# -- Search -------------------------------------------------------------------


@app.post("/v1/search", response_model=SearchResponse)
@limiter.limit("60/minute")
async def search(
    request: Request,
    body: SearchRequest,
    pipeline: Annotated[IngestionPipeline, Depends(_get_pipeline)],
) -> SearchResponse:
    """Label search, delegated to the configured index."""
    results: list[RecordResult] = []
    has_more = False
    try:
        async with aclosing(pipeline.query(body.query.strip())) as records:  # type: ignore[type-var]
            async for record in records:
                if len(results) >= body.limit:
                    has_more = True
                    break
                results.append(RecordResult.from_record(record))
    except IndexUnavailable as e:
        logger.warning("Search failed: %s", e)
        raise HTTPException(status_code=503, detail="Index unavailable") from e

    return SearchResponse(results=results, has_more=has_more)
