"""Invoice data models for structured extraction.

Field set follows the Singapore tax invoice requirements (IRAS) and the
InvoiceNow (PEPPOL BIS Billing 3.0) mandatory elements.

Extraction models are frozen: a result is never mutated after a provider or
the orchestrator produces it; derived results are built with ``model_copy``.
"""

from datetime import date
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator

from services.shared.tax import to_money


class TaxCategory(str, Enum):
    """GST treatment of a line (UNCL5305 subset used by InvoiceNow)."""

    STANDARD = "S"
    ZERO_RATED = "Z"
    EXEMPT = "E"


class LineItem(BaseModel):
    """A single invoice line."""

    model_config = ConfigDict(frozen=True)

    description: str = ""
    quantity: Decimal = Decimal("1")
    unit_price: Decimal = Decimal("0")
    amount: Decimal = Decimal("0")
    discount: Decimal = Decimal("0")
    tax_rate: Decimal | None = Field(None, description="GST rate in percent")
    tax_category: TaxCategory = TaxCategory.STANDARD

    @field_validator("unit_price", "amount", "discount", mode="before")
    @classmethod
    def _round_money(cls, value: object) -> object:
        money = to_money(value)
        return money if money is not None else value


class ExtractedFields(BaseModel):
    """Structured invoice data extracted from a document."""

    model_config = ConfigDict(frozen=True)

    invoice_number: str | None = Field(None, description="Unique invoice identifier")
    invoice_date: date | None = Field(None, description="Date invoice was issued")
    due_date: date | None = Field(None, description="Payment due date")

    # Customer (buyer) information
    customer_name: str | None = None
    customer_uen: str | None = None
    customer_address: str | None = None

    # Vendor (supplier) information
    vendor_name: str | None = None
    vendor_uen: str | None = None
    vendor_gst_number: str | None = Field(None, description="GST registration number")
    vendor_address: str | None = None

    # Financial details
    subtotal: Decimal | None = Field(None, description="Subtotal before GST")
    tax_amount: Decimal | None = Field(None, description="GST amount")
    total_amount: Decimal | None = Field(None, description="Total amount including GST")
    currency: str = Field("SGD", description="Currency code (ISO 4217)")

    items: tuple[LineItem, ...] = ()
    payment_terms: str | None = None
    notes: str | None = None

    @field_validator("subtotal", "tax_amount", "total_amount", mode="before")
    @classmethod
    def _round_money(cls, value: object) -> object:
        if value is None:
            return None
        money = to_money(value)
        return money if money is not None else value


# Scalar fields considered when merging results from several sources
MERGEABLE_FIELDS = (
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
    "payment_terms",
    "notes",
)


class ExtractionResult(BaseModel):
    """Extracted fields plus provenance and reliability information.

    Attributes:
        fields: Structured invoice data
        confidence: Normalized reliability score (0-1)
        provider: Source identifier (provider name, ``template:<id>`` or ``merged``)
        processing_time_ms: Wall time spent producing this result
        warnings: Consistency warnings raised while merging or enhancing
        raw_text: Document text the result was derived from, when available
    """

    model_config = ConfigDict(frozen=True)

    fields: ExtractedFields
    confidence: float = Field(ge=0, le=1)
    provider: str
    processing_time_ms: int = 0
    warnings: tuple[str, ...] = ()
    raw_text: str | None = None


class ExtractionOptions(BaseModel):
    """Per-request extraction options."""

    preferred_provider: str | None = None
    min_confidence: float | None = Field(None, ge=0, le=1)
    enable_template_matching: bool = True
    owner_id: str | None = None
