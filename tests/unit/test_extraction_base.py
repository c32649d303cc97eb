"""Unit tests for extraction base classes and interfaces.

Tests cover:
- Abstract base class enforcement
- ProviderResult model validation
- Weighted confidence scoring
- Text providers delegating to the OCR service
"""

from datetime import date
from decimal import Decimal
from unittest.mock import MagicMock

import pytest

from services.extraction.base import (
    ExtractionProvider,
    ProviderResult,
    TextExtractionProvider,
    score_fields,
)
from services.extraction.schema import ExtractedFields, LineItem
from services.ocr.service import OCRResult
from services.shared.config import Settings
from services.shared.media import PDF, XLSX


class EchoTextProvider(TextExtractionProvider):
    """Returns the OCR text as the invoice number."""

    @property
    def provider_name(self) -> str:
        return "echo"

    def is_available(self) -> bool:
        return True

    def extract_from_text(self, ocr_text: str) -> ProviderResult:
        return ProviderResult(
            fields=ExtractedFields(invoice_number=ocr_text), success=True, provider=self.provider_name
        )


def test_provider_result_with_success() -> None:
    """Test ProviderResult with successful extraction."""
    fields = ExtractedFields(invoice_number="INV-001", currency="USD")

    result = ProviderResult(fields=fields, success=True, provider="test")

    assert result.success is True
    assert result.fields is not None
    assert result.fields.invoice_number == "INV-001"
    assert result.error is None


def test_provider_result_with_failure() -> None:
    """Test ProviderResult with failed extraction."""
    result = ProviderResult(fields=None, success=False, error="Test error", provider="test")

    assert result.success is False
    assert result.fields is None
    assert result.error == "Test error"


def test_extraction_provider_is_abstract() -> None:
    """Test that ExtractionProvider cannot be instantiated directly."""
    with pytest.raises(TypeError, match="Can't instantiate abstract class"):
        ExtractionProvider(Settings())  # type: ignore[abstract]


def test_extraction_provider_requires_implementation() -> None:
    """Test that concrete providers must implement all abstract methods."""

    class IncompleteProvider(ExtractionProvider):
        def extract(self, file_bytes: bytes, file_name: str, mime_type: str) -> ProviderResult:
            return self._failure("Not implemented")

        def is_available(self) -> bool:
            return True

        # Missing: provider_name property

    with pytest.raises(TypeError, match="Can't instantiate abstract class"):
        IncompleteProvider(Settings())  # type: ignore[abstract]


class TestScoreFields:
    """Test weighted completeness scoring."""

    def test_empty_fields_score_zero(self) -> None:
        """No populated fields means zero confidence."""
        assert score_fields(ExtractedFields()) == 0.0

    def test_complete_fields_score_one(self) -> None:
        """Every weighted field plus reconciling items gives full confidence."""
        fields = ExtractedFields(
            invoice_number="INV-001",
            invoice_date=date(2024, 3, 15),
            customer_name="Acme Pte Ltd",
            total_amount=Decimal("1090"),
            vendor_uen="201234567A",
            vendor_name="Supplier Pte Ltd",
            tax_amount=Decimal("90"),
            subtotal=Decimal("1000"),
            items=(LineItem(description="Consulting", amount=Decimal("1000")),),
        )

        assert score_fields(fields) == 1.0

    def test_required_fields_weigh_double(self) -> None:
        """A required field contributes twice as much as an optional one."""
        required = score_fields(ExtractedFields(invoice_number="INV-001"))
        optional = score_fields(ExtractedFields(vendor_name="Supplier Pte Ltd"))

        assert required == pytest.approx(optional * 2, abs=1e-3)

    def test_items_not_matching_subtotal_earn_no_bonus(self) -> None:
        """Line items more than $1 away from the subtotal add nothing."""
        base = ExtractedFields(subtotal=Decimal("1000"))
        matching = base.model_copy(
            update={"items": (LineItem(description="A", amount=Decimal("999.50")),)}
        )
        off = base.model_copy(update={"items": (LineItem(description="A", amount=Decimal("900")),)})

        assert score_fields(matching) > score_fields(base)
        assert score_fields(off) == score_fields(base)

    def test_adding_a_field_never_lowers_score(self) -> None:
        """Scores are monotonic in populated fields."""
        fields = ExtractedFields()
        previous = score_fields(fields)
        updates = [
            {"invoice_number": "INV-001"},
            {"vendor_name": "Supplier"},
            {"invoice_date": date(2024, 1, 2)},
            {"subtotal": Decimal("100")},
            {"customer_uen": "201234567A"},
            {"total_amount": Decimal("109")},
        ]
        for update in updates:
            fields = fields.model_copy(update=update)
            current = score_fields(fields)
            assert current >= previous
            previous = current


class TestTextExtractionProvider:
    """Test OCR delegation in text-based providers."""

    def test_extract_uses_ocr_text(self) -> None:
        """The OCR text is passed to extract_from_text and kept as raw text."""
        ocr = MagicMock()
        ocr.extract_text.return_value = OCRResult(text="INV-42", success=True)
        provider = EchoTextProvider(Settings(), ocr_service=ocr)

        result = provider.extract(b"%PDF", "invoice.pdf", PDF)

        assert result.success is True
        assert result.fields is not None
        assert result.fields.invoice_number == "INV-42"
        assert result.raw_text == "INV-42"
        ocr.extract_text.assert_called_once_with(b"%PDF", PDF)

    def test_ocr_failure_reported(self) -> None:
        """OCR failures become a failed ProviderResult."""
        ocr = MagicMock()
        ocr.extract_text.return_value = OCRResult(text="", success=False, error="boom")
        provider = EchoTextProvider(Settings(), ocr_service=ocr)

        result = provider.extract(b"%PDF", "invoice.pdf", PDF)

        assert result.success is False
        assert result.error == "Text extraction failed: boom"
        assert result.provider == "echo"

    def test_unsupported_media_type(self) -> None:
        """Spreadsheets are not read by text providers."""
        ocr = MagicMock()
        provider = EchoTextProvider(Settings(), ocr_service=ocr)

        result = provider.extract(b"PK", "invoice.xlsx", XLSX)

        assert result.success is False
        ocr.extract_text.assert_not_called()
