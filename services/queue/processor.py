"""Single-attempt invoice processing.

Runs one job attempt through its checkpoints, in order:

    download (10%) -> extraction (50%) -> record update (60%)
    -> line items (70%) -> validation (80%) -> document generation (90%)
    -> completion (100%)

Each checkpoint's side effect completes before progress advances. The
cancellation token is checked before every checkpoint. Any exception aborts
the attempt; ``job.checkpoint`` names the checkpoint that failed.
"""

import asyncio
import logging
import time
from decimal import Decimal
from typing import Any

from pydantic import BaseModel

from services.compliance.models import ValidationResult
from services.compliance.validator import InvoiceValidator
from services.documents.generator import InvoiceNowGenerator
from services.extraction.factory import create_extraction_providers
from services.extraction.orchestrator import ExtractionOrchestrator
from services.extraction.schema import ExtractedFields, ExtractionOptions, ExtractionResult, TaxCategory
from services.extraction.templates import TemplateMatcher
from services.ocr.service import OCRService
from services.queue.jobs import CancellationToken, JobRecord
from services.records.models import InvoiceLineItem, InvoiceRecord, InvoiceStatus, ProcessingLog, utcnow
from services.records.store import RecordStore
from services.shared.config import Settings
from services.shared.errors import ValidationCritical
from services.shared.tax import gst_rate_on
from services.storage.service import BlobStore, generated_document_key

logger = logging.getLogger(__name__)

XML_CONTENT_TYPE = "application/xml"

CHECKPOINTS = [
    ("download", 10),
    ("extraction", 50),
    ("record_update", 60),
    ("line_items", 70),
    ("validation", 80),
    ("document_generation", 90),
    ("completion", 100),
]
_PROGRESS = dict(CHECKPOINTS)

_RECORD_FIELDS = (
    "invoice_number",
    "invoice_date",
    "due_date",
    "customer_name",
    "customer_uen",
    "customer_address",
    "vendor_name",
    "vendor_uen",
    "vendor_gst_number",
    "vendor_address",
    "subtotal",
    "tax_amount",
    "total_amount",
    "currency",
    "payment_terms",
    "notes",
)


class ProcessOutcome(BaseModel):
    """Result of a successful attempt."""

    invoice_id: str
    status: InvoiceStatus
    confidence: float
    provider: str
    validation_score: int | None = None
    is_valid: bool | None = None
    generated_document_url: str | None = None


def to_line_items(fields: ExtractedFields) -> list[InvoiceLineItem]:
    """Persisted lines from extracted lines; unstated rates default by tax category."""
    rate = gst_rate_on(fields.invoice_date)[0]
    lines = []
    for number, item in enumerate(fields.items, start=1):
        if item.tax_rate is not None:
            tax_rate = item.tax_rate
        else:
            tax_rate = rate if item.tax_category == TaxCategory.STANDARD else Decimal("0")
        lines.append(
            InvoiceLineItem(
                line_number=number,
                description=item.description,
                quantity=item.quantity,
                unit_price=item.unit_price,
                amount=item.amount,
                discount=item.discount,
                tax_category=item.tax_category,
                tax_rate=tax_rate,
            )
        )
    return lines


class InvoiceProcessor:
    """Runs job attempts against the extraction, validation and document services."""

    def __init__(
        self,
        settings: Settings,
        record_store: RecordStore,
        blob_store: BlobStore,
        orchestrator: ExtractionOrchestrator,
        validator: InvoiceValidator,
        generator: InvoiceNowGenerator | None = None,
    ) -> None:
        self.settings = settings
        self.store = record_store
        self.blob_store = blob_store
        self.orchestrator = orchestrator
        self.validator = validator
        self.generator = generator or InvoiceNowGenerator()

    async def _log(self, job: JobRecord, action: str, status: str, **details: Any) -> None:
        await self.store.add_processing_log(
            ProcessingLog(
                invoice_id=job.invoice_id,
                job_id=job.id,
                action=action,
                status=status,
                details=details,
            )
        )

    @staticmethod
    def _enter(job: JobRecord, token: CancellationToken, checkpoint: str) -> None:
        token.check()
        job.checkpoint = checkpoint

    @staticmethod
    def _reached(job: JobRecord, checkpoint: str) -> None:
        job.progress = _PROGRESS[checkpoint]
        logger.debug(f"Job {job.id} reached {checkpoint} ({job.progress}%)")

    async def process(self, job: JobRecord, token: CancellationToken) -> ProcessOutcome:
        """Run one attempt of a job.

        Args:
            job: Job to process; progress and checkpoint are updated in place
            token: Cancellation token checked before each checkpoint

        Returns:
            ProcessOutcome describing the completed invoice
        """
        started = time.perf_counter()
        job.progress = 0
        await self.store.update_invoice(
            job.invoice_id,
            status=InvoiceStatus.PROCESSING,
            processing_started_at=utcnow(),
            error_message=None,
        )

        self._enter(job, token, "download")
        file_bytes = await asyncio.to_thread(self.blob_store.get, job.file.key)
        self._reached(job, "download")

        self._enter(job, token, "extraction")
        await self._log(job, "ocr_start", "started", attempt=job.attempts_made, file_name=job.file.file_name)
        extraction = await self.orchestrator.extract(
            file_bytes,
            job.file.file_name,
            job.file.mime_type,
            ExtractionOptions(
                preferred_provider=job.options.preferred_provider,
                min_confidence=job.options.min_confidence,
                enable_template_matching=job.options.enable_template_matching,
                owner_id=job.owner_id,
            ),
        )
        await self._log(
            job,
            "ocr_complete",
            "success",
            provider=extraction.provider,
            confidence=extraction.confidence,
            warnings=list(extraction.warnings),
        )
        self._reached(job, "extraction")

        self._enter(job, token, "record_update")
        await self._update_record(job, extraction)
        self._reached(job, "record_update")

        self._enter(job, token, "line_items")
        await self.store.replace_line_items(job.invoice_id, to_line_items(extraction.fields))
        self._reached(job, "line_items")

        self._enter(job, token, "validation")
        if job.options.skip_validation:
            invoice = await self.store.get_invoice(job.invoice_id)
            validation = None
            await self._log(job, "validation", "skipped")
        else:
            invoice, validation = await self._validate(job)
        self._reached(job, "validation")

        self._enter(job, token, "document_generation")
        document_key, document_url = await self._generate(job, invoice, validation)
        self._reached(job, "document_generation")

        self._enter(job, token, "completion")
        status = InvoiceStatus.DRAFT
        error_message = None
        if validation is not None and not validation.is_valid:
            error_message = str(ValidationCritical(validation.critical_codes))
            if self.settings.critical_findings_outcome == "failed":
                status = InvoiceStatus.FAILED
        duration_ms = int((time.perf_counter() - started) * 1000)
        await self.store.update_invoice(
            job.invoice_id,
            status=status,
            error_message=error_message,
            generated_document_key=document_key,
            generated_document_url=document_url,
            processing_completed_at=utcnow(),
            processing_duration_ms=duration_ms,
        )
        self._reached(job, "completion")
        logger.info(f"Job {job.id} completed invoice {job.invoice_id} as {status.value} in {duration_ms}ms")

        return ProcessOutcome(
            invoice_id=job.invoice_id,
            status=status,
            confidence=extraction.confidence,
            provider=extraction.provider,
            validation_score=validation.score if validation else None,
            is_valid=validation.is_valid if validation else None,
            generated_document_url=document_url,
        )

    async def _update_record(self, job: JobRecord, extraction: ExtractionResult) -> None:
        fields = extraction.fields
        changes: dict[str, Any] = {
            name: getattr(fields, name) for name in _RECORD_FIELDS if getattr(fields, name) is not None
        }
        changes["ocr_confidence"] = extraction.confidence
        changes["ocr_provider"] = extraction.provider
        await self.store.update_invoice(job.invoice_id, **changes)

    async def _validate(self, job: JobRecord) -> tuple[InvoiceRecord, ValidationResult]:
        invoice = await self.store.get_invoice(job.invoice_id)
        result = await self.validator.validate(invoice)

        if job.options.auto_fix and result.suggestions:
            fixed = self.validator.auto_fix(invoice, result)
            if fixed != invoice:
                changes = {
                    name: getattr(fixed, name)
                    for name in InvoiceRecord.model_fields
                    if name != "items" and getattr(fixed, name) != getattr(invoice, name)
                }
                if changes:
                    await self.store.update_invoice(job.invoice_id, **changes)
                if fixed.items != invoice.items:
                    await self.store.replace_line_items(job.invoice_id, fixed.items)
                invoice = await self.store.get_invoice(job.invoice_id)
                result = await self.validator.validate(invoice, use_cache=False)

        await self._log(
            job,
            "validation",
            "success" if result.is_valid else "critical",
            score=result.score,
            is_valid=result.is_valid,
            codes=sorted(result.codes()),
            auto_fix=job.options.auto_fix,
        )
        return invoice, result

    async def _generate(
        self, job: JobRecord, invoice: InvoiceRecord, validation: ValidationResult | None
    ) -> tuple[str | None, str | None]:
        # Without a validation result the generator's own checks decide
        if validation is not None and not validation.is_valid:
            await self._log(job, "xml_generation", "skipped", critical_codes=validation.critical_codes)
            return None, None

        profile = await self.store.get_owner_profile(job.owner_id)
        xml = self.generator.generate(invoice, profile)
        key = generated_document_key(job.owner_id, job.invoice_id, invoice.invoice_number)
        url = await asyncio.to_thread(self.blob_store.put, key, xml.encode("utf-8"), XML_CONTENT_TYPE)
        await self._log(job, "xml_generation", "success", key=key, url=url)
        return key, url


async def build_processor(
    settings: Settings, record_store: RecordStore, blob_store: BlobStore
) -> InvoiceProcessor:
    """Wire the extraction, validation and generation services for a process."""
    ocr_service = OCRService(settings)
    template_matcher = TemplateMatcher(settings, record_store)
    await template_matcher.load()
    orchestrator = ExtractionOrchestrator(
        settings,
        create_extraction_providers(settings, ocr_service),
        template_matcher=template_matcher,
        ocr_service=ocr_service,
        record_store=record_store,
    )
    return InvoiceProcessor(
        settings,
        record_store,
        blob_store,
        orchestrator,
        InvoiceValidator(settings, record_store),
    )
