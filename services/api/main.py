"""FastAPI application for the invoice pipeline.

Production-ready API with:
- Health and readiness checks for Kubernetes
- Invoice document submission with admission control (type, size, quota)
- Job status, manual retry and cancellation
- Queue statistics and health
- Prometheus metrics for monitoring

Based on FastAPI best practices:
https://fastapi.tiangolo.com/
"""

import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import Depends, FastAPI, File, Form, HTTPException, Request, Response, UploadFile, status
from pydantic import BaseModel

from services.queue.jobs import FileReference, JobOptions, JobStatus, QueueHealth
from services.queue.pipeline import JobPipeline
from services.queue.processor import build_processor
from services.records.store import InMemoryRecordStore
from services.shared import metrics
from services.shared.config import get_settings
from services.shared.errors import (
    InvalidSubmission,
    InvalidTransition,
    JobNotFound,
    QuotaExceeded,
    UploadFailed,
)
from services.shared.media import guess_media_type
from services.storage.service import BlobStore, InMemoryBlobStore, StorageService

logger = logging.getLogger(__name__)

settings = get_settings()


def create_blob_store() -> BlobStore:
    storage = StorageService(settings)
    if storage.is_available():
        return storage
    logger.warning("Object storage not configured, keeping documents in memory")
    return InMemoryBlobStore()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    logger.info(f"Starting {settings.service_name} {settings.service_version}")
    logger.info(f"Workers: {settings.queue_max_jobs}, attempts: {settings.queue_max_attempts}")

    record_store = InMemoryRecordStore()
    blob_store = create_blob_store()
    processor = await build_processor(settings, record_store, blob_store)
    pipeline = JobPipeline(settings, record_store, blob_store, processor)
    app.state.blob_store = blob_store
    app.state.pipeline = pipeline
    pipeline.start()
    try:
        yield
    finally:
        await pipeline.stop()


app = FastAPI(
    title="Invoice Intelligence Pipeline",
    description="Invoice extraction, GST compliance validation and InvoiceNow document generation",
    version=settings.service_version,
    lifespan=lifespan,
)


def get_pipeline(request: Request) -> JobPipeline:
    pipeline = getattr(request.app.state, "pipeline", None)
    if pipeline is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Pipeline not started")
    return pipeline


@app.middleware("http")
async def metrics_middleware(request: Request, call_next):  # type: ignore[no-untyped-def]
    """Middleware to collect request metrics.

    Tracks:
    - Request count by method, endpoint, and status
    - Request duration by method and endpoint
    """
    if request.url.path == "/metrics":
        return await call_next(request)

    start_time = time.time()
    response = await call_next(request)
    duration = time.time() - start_time

    route = request.scope.get("route")
    endpoint = getattr(route, "path", request.url.path)
    metrics.http_requests_total.labels(
        method=request.method,
        endpoint=endpoint,
        status=response.status_code,
    ).inc()
    metrics.http_request_duration_seconds.labels(
        method=request.method,
        endpoint=endpoint,
    ).observe(duration)

    return response


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    service: str


class ReadinessResponse(BaseModel):
    """Readiness check response."""

    ready: bool
    storage: bool
    queue_healthy: bool


class SubmitResponse(BaseModel):
    job_id: str
    invoice_id: str
    state: str


@app.get("/health", response_model=HealthResponse, tags=["Health"])
def health_check() -> HealthResponse:
    """Health check endpoint for liveness probe."""
    return HealthResponse(
        status="healthy", version=settings.service_version, service=settings.service_name
    )


@app.get("/ready", response_model=ReadinessResponse, tags=["Health"])
def readiness_check(request: Request) -> Response | ReadinessResponse:
    """Readiness check endpoint for Kubernetes readiness probe.

    Ready when the pipeline is running and the blob store is reachable.
    """
    pipeline: JobPipeline | None = getattr(request.app.state, "pipeline", None)
    blob_store: BlobStore | None = getattr(request.app.state, "blob_store", None)
    storage_ok = blob_store.health_check() if blob_store is not None else False
    queue_ok = pipeline.health().healthy if pipeline is not None else False
    body = ReadinessResponse(ready=storage_ok and pipeline is not None, storage=storage_ok, queue_healthy=queue_ok)
    if not body.ready:
        return Response(
            content=body.model_dump_json(),
            media_type="application/json",
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        )
    return body


@app.get("/metrics", tags=["Monitoring"])
def get_metrics() -> Response:
    """Prometheus metrics endpoint."""
    metrics_data, content_type = metrics.get_metrics()
    return Response(content=metrics_data, media_type=content_type)


@app.post(
    "/api/v1/jobs",
    response_model=SubmitResponse,
    status_code=status.HTTP_202_ACCEPTED,
    tags=["Jobs"],
)
async def submit_job(
    file: UploadFile = File(..., description="Invoice document (PDF, XLSX, XLS, JPEG, PNG)"),  # noqa: B008
    owner_id: str = Form(..., description="Account the invoice belongs to"),
    priority: int = Form(5, ge=1, le=10, description="Queue priority, lower runs first"),
    auto_fix: bool = Form(False, description="Apply high-confidence validation fixes"),
    skip_validation: bool = Form(False, description="Generate the document without validating"),
    preferred_provider: str | None = Form(None, description="Extraction provider to try first"),
    pipeline: JobPipeline = Depends(get_pipeline),  # noqa: B008
) -> SubmitResponse:
    """Submit an invoice document for processing.

    ## Usage

    ```bash
    curl -X POST "http://localhost:8000/api/v1/jobs" \\
      -F "file=@invoice.pdf" -F "owner_id=acme"
    ```

    ## Error Handling

    - 400 if no filename is provided
    - 413 if the file exceeds the upload limit (10MB by default)
    - 415 if the media type is not accepted
    - 429 if the owner's monthly invoice limit is reached (usage in the body)
    - 503 if the document could not be stored
    """
    if not file.filename:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No filename provided")

    content = await file.read()
    mime_type = file.content_type
    if not mime_type or mime_type == "application/octet-stream":
        mime_type = guess_media_type(file.filename)

    reference = FileReference(key="", file_name=file.filename, mime_type=mime_type, size=len(content))
    options = JobOptions(
        priority=priority,
        auto_fix=auto_fix,
        skip_validation=skip_validation,
        preferred_provider=preferred_provider,
    )

    try:
        job_id = await pipeline.submit(reference, owner_id, options, content=content)
    except InvalidSubmission as e:
        code = (
            status.HTTP_413_REQUEST_ENTITY_TOO_LARGE
            if reference.size > pipeline.settings.max_upload_bytes
            else status.HTTP_415_UNSUPPORTED_MEDIA_TYPE
        )
        raise HTTPException(status_code=code, detail=str(e)) from e
    except QuotaExceeded as e:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail={"message": str(e), "used": e.used, "limit": e.limit},
        ) from e
    except UploadFailed as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e)) from e

    job = pipeline.get_status(job_id)
    return SubmitResponse(job_id=job.job_id, invoice_id=job.invoice_id, state=job.state.value)


@app.get("/api/v1/jobs/{job_id}", response_model=JobStatus, tags=["Jobs"])
def get_job(job_id: str, pipeline: JobPipeline = Depends(get_pipeline)) -> JobStatus:  # noqa: B008
    try:
        return pipeline.get_status(job_id)
    except JobNotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e


@app.post("/api/v1/jobs/{job_id}/retry", response_model=JobStatus, tags=["Jobs"])
async def retry_job(job_id: str, pipeline: JobPipeline = Depends(get_pipeline)) -> JobStatus:  # noqa: B008
    """Re-run a failed job at high priority with auto-fix enabled."""
    try:
        return await pipeline.retry(job_id)
    except JobNotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    except InvalidTransition as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from e


@app.post("/api/v1/jobs/{job_id}/cancel", response_model=JobStatus, tags=["Jobs"])
async def cancel_job(job_id: str, pipeline: JobPipeline = Depends(get_pipeline)) -> JobStatus:  # noqa: B008
    try:
        return await pipeline.cancel(job_id)
    except JobNotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    except InvalidTransition as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from e


@app.get("/api/v1/queue/stats", response_model=QueueHealth, tags=["Jobs"])
def queue_stats(pipeline: JobPipeline = Depends(get_pipeline)) -> QueueHealth:  # noqa: B008
    """Job counts by state plus queue health."""
    return pipeline.health()
