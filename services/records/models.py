"""Record shapes exchanged with the relational record store."""

from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from services.extraction.schema import TaxCategory


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InvoiceStatus(str, Enum):
    DRAFT = "draft"
    PROCESSING = "processing"
    SUBMITTED = "submitted"
    DELIVERED = "delivered"
    FAILED = "failed"


class InvoiceLineItem(BaseModel):
    """Persisted invoice line."""

    line_number: int
    description: str = ""
    quantity: Decimal = Decimal("1")
    unit: str | None = None
    unit_price: Decimal = Decimal("0")
    amount: Decimal = Decimal("0")
    discount: Decimal = Decimal("0")
    tax_category: TaxCategory = TaxCategory.STANDARD
    tax_rate: Decimal | None = None


class InvoiceRecord(BaseModel):
    """Invoice row plus its line items."""

    id: str
    owner_id: str
    status: InvoiceStatus = InvoiceStatus.PROCESSING

    invoice_number: str | None = None
    invoice_date: date | None = None
    due_date: date | None = None

    customer_name: str | None = None
    customer_uen: str | None = None
    customer_address: str | None = None
    customer_gst_registered: bool = False

    vendor_name: str | None = None
    vendor_uen: str | None = None
    vendor_gst_number: str | None = None
    vendor_address: str | None = None

    subtotal: Decimal | None = None
    tax_amount: Decimal | None = None
    total_amount: Decimal | None = None
    currency: str | None = "SGD"

    payment_terms: str | None = None
    payment_method: str | None = None
    notes: str | None = None

    # InvoiceNow / scheme metadata
    peppol_id: str | None = None
    buyer_reference: str | None = None
    gst_group_registration: bool = False
    representative_member_uen: str | None = None
    tourist_refund_scheme: bool = False

    items: list[InvoiceLineItem] = Field(default_factory=list)

    # Processing bookkeeping
    error_message: str | None = None
    source_document_key: str | None = None
    source_file_name: str | None = None
    mime_type: str | None = None
    generated_document_key: str | None = None
    generated_document_url: str | None = None
    ocr_confidence: float | None = None
    ocr_provider: str | None = None
    retry_count: int = 0
    created_at: datetime = Field(default_factory=utcnow)
    processing_started_at: datetime | None = None
    processing_completed_at: datetime | None = None
    processing_duration_ms: int | None = None


class ProcessingLog(BaseModel):
    """Audit row for a pipeline action on an invoice."""

    invoice_id: str
    job_id: str | None = None
    action: str
    status: str
    details: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)


class TemplateRecord(BaseModel):
    """A stored extraction template.

    Attributes:
        patterns: Field name -> regex with one capture group for the value
        customer_uen: UEN the template is bound to, if any
        confidence: Prior reliability of the template (0-1)
    """

    id: str
    name: str
    customer_uen: str | None = None
    patterns: dict[str, str]
    confidence: float = Field(0.7, ge=0, le=1)
    use_count: int = 0
    last_used: datetime | None = None
    created_at: datetime = Field(default_factory=utcnow)


class OwnerProfile(BaseModel):
    """Account holder's company details and subscription plan."""

    owner_id: str
    company_name: str | None = None
    uen: str | None = None
    gst_number: str | None = None
    address: str | None = None
    peppol_id: str | None = None
    plan: str | None = None


class VendorRecord(BaseModel):
    name: str
    uen: str | None = None
    gst_number: str | None = None
    address: str | None = None
