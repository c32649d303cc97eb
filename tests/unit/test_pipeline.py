"""Unit tests for the in-process job pipeline.

Tests cover:
- Admission: media type, size and quota checks
- Automatic retry with backoff after a transient failure
- Terminal failures and manual retry
- Cancellation of waiting and active jobs
- Priority ordering, statistics and health
- Completion webhooks
"""

import asyncio
import logging
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from services.queue.jobs import HIGH_PRIORITY, FileReference, JobOptions, JobState
from services.queue.pipeline import JobPipeline, RateLimiter
from services.records.models import InvoiceRecord, InvoiceStatus
from services.records.store import InMemoryRecordStore
from services.shared.config import Settings
from services.shared.errors import (
    DownloadFailed,
    InvalidSubmission,
    InvalidTransition,
    JobCancelled,
    JobNotFound,
    QuotaExceeded,
    ValidationCritical,
)
from services.shared.media import PDF
from services.storage.service import InMemoryBlobStore

PDF_BYTES = b"%PDF-1.4 invoice"


async def no_sleep(seconds: float) -> None:
    return None


def pdf_file(size: int = len(PDF_BYTES)) -> FileReference:
    return FileReference(key="", file_name="invoice.pdf", mime_type=PDF, size=size)


@pytest.fixture
def settings() -> Settings:
    return Settings(_env_file=None, queue_max_jobs=2, webhook_url=None)


@pytest.fixture
def store() -> InMemoryRecordStore:
    return InMemoryRecordStore()


@pytest.fixture
def blob_store() -> InMemoryBlobStore:
    return InMemoryBlobStore()


@pytest.fixture
def processor() -> MagicMock:
    """Processor whose attempts succeed unless a test says otherwise."""
    mock = MagicMock()
    mock.process = AsyncMock(return_value=None)
    return mock


@pytest.fixture
def pipeline(
    settings: Settings, store: InMemoryRecordStore, blob_store: InMemoryBlobStore, processor: MagicMock
) -> JobPipeline:
    return JobPipeline(settings, store, blob_store, processor, sleep=no_sleep)


async def run_until_idle(pipeline: JobPipeline) -> None:
    pipeline.start()
    try:
        await asyncio.wait_for(pipeline.wait_until_idle(), timeout=5)
    finally:
        await pipeline.stop()


class TestSubmit:
    """Test admission and job creation."""

    @pytest.mark.asyncio
    async def test_submit_stores_document_and_creates_invoice(
        self, pipeline: JobPipeline, store: InMemoryRecordStore, blob_store: InMemoryBlobStore
    ) -> None:
        job_id = await pipeline.submit(pdf_file(), "owner-1", content=PDF_BYTES)

        status = pipeline.get_status(job_id)
        assert status.state == JobState.QUEUED
        invoice = store.invoices[status.invoice_id]
        assert invoice.status == InvoiceStatus.PROCESSING
        assert invoice.source_document_key == f"owner-1/{status.invoice_id}/original-invoice.pdf"
        assert blob_store.get(invoice.source_document_key) == PDF_BYTES
        assert [log.action for log in store.logs_for(status.invoice_id)] == ["upload"]

    @pytest.mark.asyncio
    async def test_unsupported_type_rejected(self, pipeline: JobPipeline, store: InMemoryRecordStore) -> None:
        file = FileReference(key="k", file_name="notes.txt", mime_type="text/plain", size=3)

        with pytest.raises(InvalidSubmission, match="Unsupported file type"):
            await pipeline.submit(file, "owner-1", content=b"abc")

        assert store.invoices == {}

    @pytest.mark.asyncio
    async def test_oversized_file_rejected(self, pipeline: JobPipeline, settings: Settings) -> None:
        with pytest.raises(InvalidSubmission, match="File too large"):
            await pipeline.submit(pdf_file(size=settings.max_upload_bytes + 1), "owner-1")

    @pytest.mark.asyncio
    async def test_quota_exceeded_creates_no_job(
        self, pipeline: JobPipeline, store: InMemoryRecordStore, blob_store: InMemoryBlobStore
    ) -> None:
        """An owner at 50/50 on the starter plan is turned away before anything is stored."""
        now = datetime.now(timezone.utc)
        for n in range(50):
            await store.create_invoice(InvoiceRecord(id=f"inv-{n}", owner_id="owner-1", created_at=now))

        with pytest.raises(QuotaExceeded) as exc_info:
            await pipeline.submit(pdf_file(), "owner-1", content=PDF_BYTES)

        assert (exc_info.value.used, exc_info.value.limit) == (50, 50)
        assert len(store.invoices) == 50
        assert blob_store.objects == {}
        assert pipeline.stats().queued == 0

    @pytest.mark.asyncio
    async def test_unknown_job(self, pipeline: JobPipeline) -> None:
        with pytest.raises(JobNotFound):
            pipeline.get_status("missing")


class TestRetries:
    """Test automatic and manual retries."""

    @pytest.mark.asyncio
    async def test_transient_failure_then_success(
        self, pipeline: JobPipeline, processor: MagicMock, store: InMemoryRecordStore
    ) -> None:
        """A job that fails once with a network error completes on its second attempt."""
        processor.process.side_effect = [DownloadFailed("connection reset"), None]
        job_id = await pipeline.submit(pdf_file(), "owner-1", content=PDF_BYTES)

        await run_until_idle(pipeline)

        status = pipeline.get_status(job_id)
        assert status.state == JobState.COMPLETED
        assert status.attempts_made == 2
        assert status.progress == 100
        assert status.error is None
        actions = [(log.action, log.status) for log in store.logs_for(status.invoice_id)]
        assert ("failed", "error") in actions
        assert ("retry", "scheduled") in actions

    @pytest.mark.asyncio
    async def test_backoff_delays(
        self, settings: Settings, store: InMemoryRecordStore, blob_store: InMemoryBlobStore, processor: MagicMock
    ) -> None:
        """Retries wait 2s then 4s between attempts."""
        sleeps: list[float] = []

        async def record_sleep(seconds: float) -> None:
            sleeps.append(seconds)

        processor.process.side_effect = DownloadFailed("connection reset")
        pipeline = JobPipeline(settings, store, blob_store, processor, sleep=record_sleep)
        await pipeline.submit(pdf_file(), "owner-1", content=PDF_BYTES)

        await run_until_idle(pipeline)

        assert [s for s in sleeps if s >= 1] == [2.0, 4.0]

    @pytest.mark.asyncio
    async def test_retries_exhausted(
        self, pipeline: JobPipeline, processor: MagicMock, store: InMemoryRecordStore
    ) -> None:
        """After three failed attempts the job and its invoice are failed."""
        processor.process.side_effect = DownloadFailed("connection reset")
        job_id = await pipeline.submit(pdf_file(), "owner-1", content=PDF_BYTES)

        await run_until_idle(pipeline)

        status = pipeline.get_status(job_id)
        assert status.state == JobState.FAILED
        assert status.attempts_made == 3
        assert status.error == f"Job {job_id} failed after 3 attempts: connection reset"
        invoice = store.invoices[status.invoice_id]
        assert invoice.status == InvoiceStatus.FAILED
        assert invoice.error_message == status.error

    @pytest.mark.asyncio
    async def test_non_retryable_failure(self, pipeline: JobPipeline, processor: MagicMock) -> None:
        """Critical validation errors fail the job on the first attempt."""
        processor.process.side_effect = ValidationCritical(["MISSING_GST_NUMBER"])
        job_id = await pipeline.submit(pdf_file(), "owner-1", content=PDF_BYTES)

        await run_until_idle(pipeline)

        status = pipeline.get_status(job_id)
        assert status.state == JobState.FAILED
        assert status.attempts_made == 1
        assert status.error == "Critical validation errors: MISSING_GST_NUMBER"

    @pytest.mark.asyncio
    async def test_manual_retry(
        self, pipeline: JobPipeline, processor: MagicMock, store: InMemoryRecordStore
    ) -> None:
        """A failed job is re-queued at high priority with auto-fix and can complete."""
        processor.process.side_effect = ValidationCritical(["MISSING_GST_NUMBER"])
        job_id = await pipeline.submit(pdf_file(), "owner-1", content=PDF_BYTES)
        await run_until_idle(pipeline)

        processor.process.side_effect = None
        status = await pipeline.retry(job_id)

        assert status.state == JobState.QUEUED
        assert status.attempts_made == 0
        job = pipeline._jobs[job_id]
        assert job.options.priority == HIGH_PRIORITY
        assert job.options.auto_fix is True
        invoice = store.invoices[status.invoice_id]
        assert invoice.retry_count == 1
        assert invoice.status == InvoiceStatus.PROCESSING

        await run_until_idle(pipeline)
        assert pipeline.get_status(job_id).state == JobState.COMPLETED

    @pytest.mark.asyncio
    async def test_retry_only_failed_jobs(self, pipeline: JobPipeline) -> None:
        job_id = await pipeline.submit(pdf_file(), "owner-1", content=PDF_BYTES)

        with pytest.raises(InvalidTransition, match="Only failed jobs can be retried"):
            await pipeline.retry(job_id)


class TestCancellation:
    """Test cancelling waiting and running jobs."""

    @pytest.mark.asyncio
    async def test_cancel_waiting_job(self, pipeline: JobPipeline, store: InMemoryRecordStore) -> None:
        job_id = await pipeline.submit(pdf_file(), "owner-1", content=PDF_BYTES)

        status = await pipeline.cancel(job_id)

        assert status.state == JobState.FAILED
        assert status.error == "Job cancelled"
        assert store.invoices[status.invoice_id].status == InvoiceStatus.FAILED
        with pytest.raises(InvalidTransition):
            await pipeline.cancel(job_id)

    @pytest.mark.asyncio
    async def test_cancelled_job_is_not_run(self, pipeline: JobPipeline, processor: MagicMock) -> None:
        job_id = await pipeline.submit(pdf_file(), "owner-1", content=PDF_BYTES)
        await pipeline.cancel(job_id)

        await run_until_idle(pipeline)

        processor.process.assert_not_called()

    @pytest.mark.asyncio
    async def test_cancel_active_job_at_checkpoint(self, pipeline: JobPipeline, processor: MagicMock) -> None:
        """An active job stops at its next checkpoint and is not retried."""
        started = asyncio.Event()

        async def wait_for_cancel(job, token) -> None:
            started.set()
            while True:
                token.check()
                await asyncio.sleep(0.01)

        processor.process = wait_for_cancel
        job_id = await pipeline.submit(pdf_file(), "owner-1", content=PDF_BYTES)
        pipeline.start()
        try:
            await asyncio.wait_for(started.wait(), timeout=5)
            await pipeline.cancel(job_id)
            await asyncio.wait_for(pipeline.wait_until_idle(), timeout=5)
        finally:
            await pipeline.stop()

        status = pipeline.get_status(job_id)
        assert status.state == JobState.FAILED
        assert status.attempts_made == 1
        assert status.error == "Job cancelled"

    @pytest.mark.asyncio
    async def test_attempt_deadline(
        self, store: InMemoryRecordStore, blob_store: InMemoryBlobStore, processor: MagicMock
    ) -> None:
        """An attempt running past the job timeout is cancelled, not retried."""

        async def hang(job, token) -> None:
            await asyncio.sleep(30)

        processor.process = hang
        settings = Settings(_env_file=None, queue_job_timeout=1, webhook_url=None)
        pipeline = JobPipeline(settings, store, blob_store, processor, sleep=no_sleep)
        job_id = await pipeline.submit(pdf_file(), "owner-1", content=PDF_BYTES)

        await run_until_idle(pipeline)

        status = pipeline.get_status(job_id)
        assert status.state == JobState.FAILED
        assert status.attempts_made == 1
        assert status.error == "Job exceeded its processing deadline"

    @pytest.mark.asyncio
    async def test_retry_after_cancel_runs_once(
        self,
        settings: Settings,
        store: InMemoryRecordStore,
        blob_store: InMemoryBlobStore,
        processor: MagicMock,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        """The queue entry left by the cancelled run is dropped, not started by a second worker."""

        async def yielding_sleep(seconds: float) -> None:
            await asyncio.sleep(0)

        pipeline = JobPipeline(settings, store, blob_store, processor, sleep=yielding_sleep)
        job_id = await pipeline.submit(pdf_file(), "owner-1", content=PDF_BYTES)
        await pipeline.cancel(job_id)
        await pipeline.retry(job_id)
        # Later starts now wait in the rate limiter, letting both workers interleave
        await pipeline._rate_limiter.acquire()

        await run_until_idle(pipeline)

        assert pipeline.get_status(job_id).state == JobState.COMPLETED
        processor.process.assert_awaited_once()
        assert not [r for r in caplog.records if r.levelno >= logging.ERROR]

    def test_job_cancelled_is_terminal(self) -> None:
        assert JobCancelled.retryable is False


class TestQueueOrdering:
    """Test priority ordering, statistics and health."""

    @pytest.mark.asyncio
    async def test_lower_priority_number_runs_first(
        self, store: InMemoryRecordStore, blob_store: InMemoryBlobStore, processor: MagicMock
    ) -> None:
        order: list[str] = []

        async def record(job, token) -> None:
            order.append(job.file.file_name)

        processor.process = record
        pipeline = JobPipeline(
            Settings(_env_file=None, queue_max_jobs=1, webhook_url=None),
            store,
            blob_store,
            processor,
            sleep=no_sleep,
        )
        for name, priority in [("low.pdf", 9), ("normal.pdf", 5), ("urgent.pdf", 1), ("normal2.pdf", 5)]:
            file = FileReference(key="", file_name=name, mime_type=PDF, size=4)
            await pipeline.submit(file, "owner-1", JobOptions(priority=priority), content=b"%PDF")

        await run_until_idle(pipeline)

        assert order == ["urgent.pdf", "normal.pdf", "normal2.pdf", "low.pdf"]

    @pytest.mark.asyncio
    async def test_stats(self, pipeline: JobPipeline, processor: MagicMock) -> None:
        processor.process.side_effect = [None, ValidationCritical(["NO_LINE_ITEMS"])]
        await pipeline.submit(pdf_file(), "owner-1", content=PDF_BYTES)
        await pipeline.submit(pdf_file(), "owner-1", content=PDF_BYTES)
        await run_until_idle(pipeline)
        await pipeline.submit(pdf_file(), "owner-1", content=PDF_BYTES)

        stats = pipeline.stats()

        assert (stats.completed, stats.failed, stats.queued, stats.active) == (1, 1, 1, 0)

    @pytest.mark.asyncio
    async def test_health_reports_backlog(
        self, store: InMemoryRecordStore, blob_store: InMemoryBlobStore, processor: MagicMock
    ) -> None:
        settings = Settings(_env_file=None, queue_max_waiting_jobs=1, webhook_url=None)
        pipeline = JobPipeline(settings, store, blob_store, processor, sleep=no_sleep)
        assert pipeline.health().healthy is True

        await pipeline.submit(pdf_file(), "owner-1", content=PDF_BYTES)
        await pipeline.submit(pdf_file(), "owner-1", content=PDF_BYTES)
        health = pipeline.health()

        assert health.healthy is False
        assert health.issues == ["Queue backlog too large: 2 waiting jobs"]
        assert health.stats.queued == 2


class TestRateLimiter:
    @pytest.mark.asyncio
    async def test_spaces_starts(self) -> None:
        """Back-to-back acquisitions wait one interval apart."""
        sleeps: list[float] = []

        async def record_sleep(seconds: float) -> None:
            sleeps.append(seconds)

        limiter = RateLimiter(10, sleep=record_sleep)
        for _ in range(3):
            await limiter.acquire()

        assert len(sleeps) == 2
        assert all(0 < s <= 0.2 for s in sleeps)


class TestWebhook:
    @pytest.mark.asyncio
    async def test_completion_posted(
        self, store: InMemoryRecordStore, blob_store: InMemoryBlobStore, processor: MagicMock
    ) -> None:
        settings = Settings(_env_file=None, webhook_url="https://hooks.example.com/invoices")
        pipeline = JobPipeline(settings, store, blob_store, processor, sleep=no_sleep)
        client = MagicMock()
        client.post = AsyncMock(return_value=MagicMock())

        with patch("services.queue.pipeline.httpx.AsyncClient") as mock_client_cls:
            mock_client_cls.return_value.__aenter__.return_value = client
            job_id = await pipeline.submit(pdf_file(), "owner-1", content=PDF_BYTES)
            await run_until_idle(pipeline)

        url = client.post.call_args.args[0]
        payload = client.post.call_args.kwargs["json"]
        assert url == "https://hooks.example.com/invoices"
        assert payload["job_id"] == job_id
        assert payload["state"] == "completed"
