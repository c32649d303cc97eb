"""Abstract base class for extraction providers.

Enables switching between different extraction providers (Textract, spreadsheet
parsing, LLMs) while maintaining consistent interface and type safety. The
orchestrator only sees this interface; concrete providers are selected by
configuration at startup.

Based on Strategy Pattern:
https://refactoring.guru/design-patterns/strategy/python
"""

from abc import ABC, abstractmethod
from decimal import Decimal

from pydantic import BaseModel

from services.extraction.schema import ExtractedFields
from services.extraction.totals import items_subtotal
from services.ocr.service import OCRService
from services.shared.config import Settings
from services.shared.media import ACCEPTED_MEDIA_TYPES, IMAGE_TYPES, PDF

# Confidence weights: required fields count double
REQUIRED_FIELD_WEIGHT = 2
OPTIONAL_FIELD_WEIGHT = 1
LINE_ITEM_BONUS = 2
REQUIRED_FIELDS = ("invoice_number", "invoice_date", "customer_name", "total_amount")
MAX_CONFIDENCE_SCORE = (
    REQUIRED_FIELD_WEIGHT * len(REQUIRED_FIELDS) + 4 * OPTIONAL_FIELD_WEIGHT + LINE_ITEM_BONUS
)


class ProviderResult(BaseModel):
    """Result of a single provider call.

    Attributes:
        fields: Extracted invoice data or None if extraction failed
        success: Whether operation succeeded
        error: Error message if operation failed
        provider: Name of provider that performed extraction
        raw_text: Document text seen by the provider, if any
    """

    fields: ExtractedFields | None
    success: bool
    error: str | None = None
    provider: str
    raw_text: str | None = None


def score_fields(fields: ExtractedFields) -> float:
    """Weighted completeness score of extracted fields, normalized to [0, 1].

    Required fields (invoice number, date, customer name, total) weigh 2,
    optional fields (a UEN, vendor name, GST amount, subtotal) weigh 1, and
    line items that add up to the stated subtotal within $1 add a bonus of 2.
    The denominator is fixed, so populating a field never lowers the score.
    """
    score = 0
    for name in REQUIRED_FIELDS:
        if getattr(fields, name) not in (None, ""):
            score += REQUIRED_FIELD_WEIGHT

    if fields.vendor_uen or fields.customer_uen:
        score += OPTIONAL_FIELD_WEIGHT
    if fields.vendor_name:
        score += OPTIONAL_FIELD_WEIGHT
    if fields.tax_amount is not None:
        score += OPTIONAL_FIELD_WEIGHT
    if fields.subtotal is not None:
        score += OPTIONAL_FIELD_WEIGHT

    if fields.items and fields.subtotal is not None:
        if abs(items_subtotal(fields.items) - fields.subtotal) <= Decimal("1"):
            score += LINE_ITEM_BONUS

    return round(score / MAX_CONFIDENCE_SCORE, 4)


class ExtractionProvider(ABC):
    """Abstract base class for invoice extraction providers.

    All extraction providers must implement this interface. Providers never
    raise for extraction problems; they return a failed ProviderResult which
    the orchestrator records as a cause.
    """

    supported_media_types: frozenset[str] = ACCEPTED_MEDIA_TYPES

    def __init__(self, settings: Settings) -> None:
        """Initialize provider with settings.

        Args:
            settings: Application settings
        """
        self.settings = settings

    def supports(self, mime_type: str) -> bool:
        return mime_type in self.supported_media_types

    @abstractmethod
    def extract(self, file_bytes: bytes, file_name: str, mime_type: str) -> ProviderResult:
        """Extract structured invoice data from a document.

        Args:
            file_bytes: Raw document content
            file_name: Original file name
            mime_type: Document media type

        Returns:
            ProviderResult with structured invoice data or error
        """
        pass

    def confidence(self, fields: ExtractedFields) -> float:
        """Score the reliability of fields this provider produced.

        Args:
            fields: Fields returned by ``extract``

        Returns:
            Confidence in [0, 1]
        """
        return score_fields(fields)

    @abstractmethod
    def is_available(self) -> bool:
        """Check if this provider is available/configured.

        Returns:
            True if provider can be used, False otherwise
        """
        pass

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Get provider name for logging/metrics.

        Returns:
            Provider identifier (e.g., 'textract', 'openai')
        """
        pass

    def _failure(self, error: str, raw_text: str | None = None) -> ProviderResult:
        return ProviderResult(
            fields=None, success=False, error=error, provider=self.provider_name, raw_text=raw_text
        )


class TextExtractionProvider(ExtractionProvider):
    """Base for providers that read the document text layer first.

    PDFs and images are turned into text by the OCR service; the subclass
    then extracts fields from that text.
    """

    supported_media_types = frozenset({PDF}) | IMAGE_TYPES

    def __init__(self, settings: Settings, ocr_service: OCRService | None = None) -> None:
        super().__init__(settings)
        self._ocr = ocr_service or OCRService(settings)

    def extract(self, file_bytes: bytes, file_name: str, mime_type: str) -> ProviderResult:
        if not self.supports(mime_type):
            return self._failure(f"Unsupported media type: {mime_type}")

        ocr_result = self._ocr.extract_text(file_bytes, mime_type)
        if not ocr_result.success:
            return self._failure(f"Text extraction failed: {ocr_result.error}")

        result = self.extract_from_text(ocr_result.text)
        return result.model_copy(update={"raw_text": ocr_result.text})

    @abstractmethod
    def extract_from_text(self, ocr_text: str) -> ProviderResult:
        """Extract structured invoice data from document text.

        Args:
            ocr_text: Raw text from the OCR service

        Returns:
            ProviderResult with structured invoice data or error
        """
        pass
