"""In-process job pipeline.

Admission control, a priority queue (lower number first, FIFO within a
priority), a bounded pool of asyncio workers behind a start-rate limiter,
automatic retries with exponential backoff, manual retry of failed jobs,
cancellation and queue statistics.
"""

import asyncio
import itertools
import logging
import time
import uuid
from typing import Any, Awaitable, Callable

import httpx

from services.queue.jobs import (
    HIGH_PRIORITY,
    TERMINAL_STATES,
    CancellationToken,
    FileReference,
    JobOptions,
    JobRecord,
    JobState,
    JobStatus,
    QueueHealth,
    QueueStats,
    RetryPolicy,
    transition,
)
from services.queue.processor import InvoiceProcessor
from services.queue.quota import QuotaService
from services.records.models import InvoiceRecord, InvoiceStatus, ProcessingLog, utcnow
from services.records.store import RecordStore
from services.shared import metrics
from services.shared.config import Settings
from services.shared.errors import (
    InvalidSubmission,
    InvalidTransition,
    JobCancelled,
    JobNotFound,
    QuotaExceeded,
    RetryExhausted,
)
from services.shared.media import ACCEPTED_MEDIA_TYPES
from services.storage.service import BlobStore, source_document_key

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[Any]]


class RateLimiter:
    """Spaces job starts so that at most ``rate`` start per second."""

    def __init__(self, rate_per_second: int, sleep: Sleep = asyncio.sleep) -> None:
        self._interval = 1.0 / rate_per_second if rate_per_second > 0 else 0.0
        self._sleep = sleep
        self._next_start = 0.0
        self._lock = asyncio.Lock()

    async def acquire(self) -> None:
        if not self._interval:
            return
        async with self._lock:
            now = time.monotonic()
            wait = self._next_start - now
            self._next_start = max(now, self._next_start) + self._interval
        if wait > 0:
            await self._sleep(wait)


class JobPipeline:
    """Queues and runs invoice processing jobs."""

    def __init__(
        self,
        settings: Settings,
        record_store: RecordStore,
        blob_store: BlobStore,
        processor: InvoiceProcessor,
        quota: QuotaService | None = None,
        retry_policy: RetryPolicy | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        """Initialize pipeline.

        Args:
            settings: Application settings
            record_store: Invoice records and processing logs
            blob_store: Source and generated documents
            processor: Runs individual job attempts
            quota: Admission quota check (defaults to plan limits from settings)
            retry_policy: Attempt budget and backoff (defaults from settings)
            sleep: Awaitable used for backoff and rate limiting
        """
        self.settings = settings
        self.store = record_store
        self.blob_store = blob_store
        self.processor = processor
        self.quota = quota or QuotaService(settings, record_store)
        self.retry_policy = retry_policy or RetryPolicy.from_settings(settings)
        self._sleep = sleep
        self._rate_limiter = RateLimiter(settings.queue_rate_limit_per_second, sleep)

        self._jobs: dict[str, JobRecord] = {}
        self._tokens: dict[str, CancellationToken] = {}
        self._queue: asyncio.PriorityQueue[tuple[int, int, str]] = asyncio.PriorityQueue()
        self._sequence = itertools.count()
        # Latest queue entry per job; older entries for the same job are stale
        self._current_entry: dict[str, int] = {}
        self._workers: list[asyncio.Task] = []
        self._timers: set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Job Pipeline API
    # ------------------------------------------------------------------

    async def submit(
        self,
        file: FileReference,
        owner_id: str,
        options: JobOptions | None = None,
        content: bytes | None = None,
    ) -> str:
        """Admit a document and enqueue a processing job.

        When ``content`` is given it is stored under the invoice's source
        document key; otherwise ``file.key`` must already exist in the blob store.

        Returns:
            Job id

        Raises:
            InvalidSubmission: Unsupported media type or file too large
            QuotaExceeded: Owner reached the plan limit; no job is created
            UploadFailed: Storing the document failed
        """
        options = options or JobOptions()
        try:
            self._check_file(file)
            await self.quota.check(owner_id)
        except InvalidSubmission:
            metrics.jobs_submitted_total.labels(status="rejected").inc()
            raise
        except QuotaExceeded:
            metrics.jobs_submitted_total.labels(status="quota_exceeded").inc()
            raise

        invoice_id = uuid.uuid4().hex
        if content is not None:
            key = source_document_key(owner_id, invoice_id, file.file_name)
            await asyncio.to_thread(self.blob_store.put, key, content, file.mime_type)
            file = file.model_copy(update={"key": key})

        await self.store.create_invoice(
            InvoiceRecord(
                id=invoice_id,
                owner_id=owner_id,
                status=InvoiceStatus.PROCESSING,
                source_document_key=file.key,
                source_file_name=file.file_name,
                mime_type=file.mime_type,
            )
        )

        job = JobRecord(
            invoice_id=invoice_id,
            owner_id=owner_id,
            file=file,
            options=options,
            max_attempts=self.retry_policy.max_attempts,
        )
        self._jobs[job.id] = job
        await self._log(job, "upload", "success", file_name=file.file_name, size=file.size, key=file.key)
        self._enqueue(job)

        metrics.jobs_submitted_total.labels(status="accepted").inc()
        logger.info(f"Submitted job {job.id} for invoice {invoice_id} (owner {owner_id})")
        return job.id

    def _check_file(self, file: FileReference) -> None:
        if file.mime_type not in ACCEPTED_MEDIA_TYPES:
            raise InvalidSubmission(f"Unsupported file type: {file.mime_type}")
        if file.size > self.settings.max_upload_bytes:
            raise InvalidSubmission(
                f"File too large: {file.size} bytes (maximum {self.settings.max_upload_bytes})"
            )

    def _get(self, job_id: str) -> JobRecord:
        job = self._jobs.get(job_id)
        if job is None:
            raise JobNotFound(f"Job not found: {job_id}")
        return job

    def get_status(self, job_id: str) -> JobStatus:
        return JobStatus.from_job(self._get(job_id))

    async def retry(self, job_id: str) -> JobStatus:
        """Re-run a terminally failed job at high priority with auto-fix enabled.

        Raises:
            JobNotFound: Unknown job
            InvalidTransition: The job is not in the failed state
        """
        job = self._get(job_id)
        if job.state != JobState.FAILED:
            raise InvalidTransition(f"Only failed jobs can be retried (job {job_id} is {job.state.value})")

        invoice = await self.store.get_invoice(job.invoice_id)
        retry_count = (invoice.retry_count if invoice else 0) + 1
        await self.store.update_invoice(
            job.invoice_id, status=InvoiceStatus.PROCESSING, error_message=None, retry_count=retry_count
        )

        transition(job, JobState.QUEUED)
        job.attempts_made = 0
        job.progress = 0
        job.error = None
        job.checkpoint = None
        job.finished_at = None
        job.options = job.options.model_copy(update={"priority": HIGH_PRIORITY, "auto_fix": True})
        await self._log(job, "retry", "queued", manual=True, retry_count=retry_count)
        self._enqueue(job)
        logger.info(f"Manually retrying job {job_id} (retry {retry_count})")
        return JobStatus.from_job(job)

    async def cancel(self, job_id: str) -> JobStatus:
        """Cancel a job.

        Waiting jobs fail immediately; an active job fails at its next checkpoint.

        Raises:
            JobNotFound: Unknown job
            InvalidTransition: The job already finished
        """
        job = self._get(job_id)
        if job.state in TERMINAL_STATES:
            raise InvalidTransition(f"Job {job_id} already {job.state.value}")

        if job.state == JobState.ACTIVE:
            token = self._tokens.get(job_id)
            if token is not None:
                token.cancel("Job cancelled")
            logger.info(f"Cancellation requested for active job {job_id}")
        else:
            await self._fail(job, JobCancelled("Job cancelled"))
        return JobStatus.from_job(job)

    def stats(self) -> QueueStats:
        counts = {state: 0 for state in JobState}
        for job in self._jobs.values():
            counts[job.state] += 1
        stats = QueueStats(
            queued=counts[JobState.QUEUED],
            active=counts[JobState.ACTIVE],
            completed=counts[JobState.COMPLETED],
            failed=counts[JobState.FAILED],
            delayed=counts[JobState.DELAYED],
        )
        for state, count in counts.items():
            metrics.queue_depth.labels(state=state.value).set(count)
        return stats

    def health(self) -> QueueHealth:
        stats = self.stats()
        issues = []
        if stats.failed > self.settings.queue_max_failed_jobs:
            issues.append(f"High number of failed jobs: {stats.failed}")
        waiting = stats.queued + stats.delayed
        if waiting > self.settings.queue_max_waiting_jobs:
            issues.append(f"Queue backlog too large: {waiting} waiting jobs")
        return QueueHealth(healthy=not issues, issues=issues, stats=stats)

    # ------------------------------------------------------------------
    # Worker pool
    # ------------------------------------------------------------------

    def start(self) -> None:
        if self._workers:
            return
        for index in range(self.settings.queue_max_jobs):
            self._workers.append(asyncio.create_task(self._worker(index)))
        logger.info(f"Started {len(self._workers)} pipeline workers")

    async def stop(self) -> None:
        tasks = self._workers + list(self._timers)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._workers.clear()
        self._timers.clear()
        logger.info("Pipeline workers stopped")

    async def wait_until_idle(self, poll_interval: float = 0.01) -> None:
        """Wait until no job is queued, active or delayed."""
        while any(job.state not in TERMINAL_STATES for job in self._jobs.values()):
            await asyncio.sleep(poll_interval)

    def _enqueue(self, job: JobRecord) -> None:
        sequence = next(self._sequence)
        self._current_entry[job.id] = sequence
        self._queue.put_nowait((job.options.priority, sequence, job.id))

    async def _worker(self, index: int) -> None:
        while True:
            _, sequence, job_id = await self._queue.get()
            try:
                job = self._jobs.get(job_id)
                if job is None or self._current_entry.get(job_id) != sequence:
                    continue
                del self._current_entry[job_id]
                if job.state != JobState.QUEUED:
                    continue
                await self._rate_limiter.acquire()
                await self._run(job)
            except Exception as e:
                logger.exception(f"Worker {index} crashed while handling job {job_id}: {e}")
            finally:
                self._queue.task_done()

    async def _run(self, job: JobRecord) -> None:
        transition(job, JobState.ACTIVE)
        job.attempts_made += 1
        job.started_at = utcnow()
        token = CancellationToken(self.settings.queue_job_timeout)
        self._tokens[job.id] = token
        started = time.perf_counter()
        logger.info(f"Job {job.id} attempt {job.attempts_made}/{job.max_attempts} started")

        try:
            await asyncio.wait_for(self.processor.process(job, token), self.settings.queue_job_timeout)
        except asyncio.TimeoutError:
            await self._handle_failure(job, JobCancelled("Job exceeded its processing deadline"))
        except Exception as e:
            await self._handle_failure(job, e)
        else:
            transition(job, JobState.COMPLETED)
            job.progress = 100
            job.error = None
            job.finished_at = utcnow()
            metrics.job_attempts_total.labels(status="success").inc()
            metrics.jobs_finished_total.labels(state="completed").inc()
            logger.info(f"Job {job.id} completed after {job.attempts_made} attempt(s)")
            await self._notify(job)
        finally:
            self._tokens.pop(job.id, None)
            metrics.job_duration_seconds.observe(time.perf_counter() - started)

    async def _handle_failure(self, job: JobRecord, error: BaseException) -> None:
        logger.error(f"Job {job.id} failed at checkpoint {job.checkpoint}: {error}")
        job.error = str(error)
        await self._log(
            job,
            "failed",
            "error",
            checkpoint=job.checkpoint,
            attempt=job.attempts_made,
            error=str(error),
            error_type=type(error).__name__,
        )

        if self.retry_policy.should_retry(job.attempts_made, error):
            delay = self.retry_policy.delay_for(job.attempts_made)
            transition(job, JobState.DELAYED)
            metrics.job_attempts_total.labels(status="retry").inc()
            await self._log(job, "retry", "scheduled", attempt=job.attempts_made, delay_seconds=delay)
            logger.info(f"Retrying job {job.id} in {delay:.1f}s")
            timer = asyncio.create_task(self._requeue_after(job, delay))
            self._timers.add(timer)
            timer.add_done_callback(self._timers.discard)
            return

        metrics.job_attempts_total.labels(status="failed").inc()
        if getattr(error, "retryable", True):
            error = RetryExhausted(job.id, job.attempts_made, str(error))
        await self._fail(job, error)

    async def _requeue_after(self, job: JobRecord, delay: float) -> None:
        await self._sleep(delay)
        if job.state != JobState.DELAYED:
            return
        transition(job, JobState.QUEUED)
        self._enqueue(job)

    async def _fail(self, job: JobRecord, error: BaseException) -> None:
        transition(job, JobState.FAILED)
        job.error = str(error)
        job.finished_at = utcnow()
        await self.store.update_invoice(
            job.invoice_id,
            status=InvoiceStatus.FAILED,
            error_message=str(error),
            processing_completed_at=job.finished_at,
        )
        metrics.jobs_finished_total.labels(state="failed").inc()
        logger.warning(f"Job {job.id} terminally failed: {error}")
        await self._notify(job)

    async def _log(self, job: JobRecord, action: str, status: str, **details: Any) -> None:
        await self.store.add_processing_log(
            ProcessingLog(invoice_id=job.invoice_id, job_id=job.id, action=action, status=status, details=details)
        )

    async def _notify(self, job: JobRecord) -> None:
        if not self.settings.webhook_url:
            return
        payload = {
            "job_id": job.id,
            "invoice_id": job.invoice_id,
            "owner_id": job.owner_id,
            "state": job.state.value,
            "attempts_made": job.attempts_made,
            "error": job.error,
        }
        try:
            async with httpx.AsyncClient(timeout=10.0) as client:
                response = await client.post(self.settings.webhook_url, json=payload)
                response.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning(f"Webhook notification for job {job.id} failed: {e}")
