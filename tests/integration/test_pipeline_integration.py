"""End-to-end pipeline tests with in-memory storage.

A spreadsheet invoice runs through admission, extraction, validation and
document generation without any network services. Only the spreadsheet
provider is configured so no API keys are needed.
"""

import asyncio
import io
from decimal import Decimal
from typing import Any

import openpyxl
import pytest

from services.queue.jobs import FileReference, JobOptions, JobState
from services.queue.pipeline import JobPipeline
from services.queue.processor import build_processor
from services.records.models import InvoiceStatus
from services.records.store import InMemoryRecordStore
from services.shared.config import Settings
from services.shared.media import XLSX
from services.storage.service import InMemoryBlobStore

pytestmark = pytest.mark.integration


async def no_sleep(seconds: float) -> None:
    return None


def workbook_bytes(rows: list[list[Any]]) -> bytes:
    workbook = openpyxl.Workbook()
    sheet = workbook.active
    for row in rows:
        sheet.append(row)
    buffer = io.BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


INVOICE_ROWS: list[list[Any]] = [
    ["TAX INVOICE"],
    ["From", "Acme Supplies Pte Ltd"],
    ["UEN", "53234567M"],
    ["GST Reg No", "M2-1234567-7"],
    ["Address", "1 Raffles Place, Singapore 048616"],
    ["Invoice No", "INV-2024-001"],
    ["Date", "15/03/2024"],
    ["Bill To", "Beta Trading Pte Ltd"],
    ["Terms", "Net 30"],
    ["Description", "Qty", "Unit Price", "Amount"],
    ["Consulting hours", 10, 100, 1000],
    ["Subtotal", None, None, 1000],
    ["GST @ 9%", None, None, 90],
    ["Total", None, None, 1090],
]


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        extraction_providers=["spreadsheet"],
        template_matching_enabled=False,
        validation_cache_enabled=False,
        webhook_url=None,
    )


async def build_pipeline(
    settings: Settings, store: InMemoryRecordStore, blob_store: InMemoryBlobStore
) -> JobPipeline:
    processor = await build_processor(settings, store, blob_store)
    return JobPipeline(settings, store, blob_store, processor, sleep=no_sleep)


async def run_until_idle(pipeline: JobPipeline) -> None:
    pipeline.start()
    try:
        await asyncio.wait_for(pipeline.wait_until_idle(), timeout=10)
    finally:
        await pipeline.stop()


@pytest.mark.asyncio
async def test_spreadsheet_invoice_end_to_end(settings: Settings) -> None:
    """A labelled spreadsheet becomes a stored, validated invoice."""
    store = InMemoryRecordStore()
    blob_store = InMemoryBlobStore()
    pipeline = await build_pipeline(settings, store, blob_store)
    content = workbook_bytes(INVOICE_ROWS)
    file = FileReference(key="", file_name="invoice.xlsx", mime_type=XLSX, size=len(content))

    job_id = await pipeline.submit(file, "owner-1", JobOptions(auto_fix=True), content=content)
    await run_until_idle(pipeline)

    status = pipeline.get_status(job_id)
    assert status.state == JobState.COMPLETED
    assert status.progress == 100

    invoice = store.invoices[status.invoice_id]
    assert invoice.invoice_number == "INV-2024-001"
    assert invoice.customer_name == "Beta Trading Pte Ltd"
    assert invoice.subtotal == Decimal("1000.00")
    assert invoice.tax_amount == Decimal("90.00")
    assert invoice.total_amount == Decimal("1090.00")
    assert invoice.ocr_provider == "spreadsheet"
    assert invoice.status in (InvoiceStatus.DRAFT, InvoiceStatus.FAILED)
    assert len(invoice.items) == 1
    assert invoice.source_document_key in blob_store.objects

    actions = [log.action for log in store.logs_for(invoice.id)]
    assert actions[:3] == ["ocr_start", "ocr_complete", "validation"]


@pytest.mark.asyncio
async def test_unreadable_document_exhausts_retries(settings: Settings) -> None:
    """A workbook with no invoice data fails after the full attempt budget."""
    store = InMemoryRecordStore()
    blob_store = InMemoryBlobStore()
    pipeline = await build_pipeline(settings, store, blob_store)
    content = workbook_bytes([["nothing to see here"]])
    file = FileReference(key="", file_name="empty.xlsx", mime_type=XLSX, size=len(content))

    job_id = await pipeline.submit(file, "owner-1", content=content)
    await run_until_idle(pipeline)

    status = pipeline.get_status(job_id)
    assert status.state == JobState.FAILED
    assert status.attempts_made == settings.queue_max_attempts
    assert status.error is not None
    assert "All OCR providers failed" in status.error
    assert store.invoices[status.invoice_id].status == InvoiceStatus.FAILED
