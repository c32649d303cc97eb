"""Unit tests for the InvoiceNow document generator.

Tests cover:
- UBL document structure and amounts
- Supplier details from the invoice and the owner profile
- Tax subtotals per category
- Rejection of invoices that cannot be expressed as a document
"""

import xml.etree.ElementTree as ET
from datetime import date
from decimal import Decimal

import pytest

from services.documents.generator import (
    CAC_NS,
    CBC_NS,
    CUSTOMIZATION_ID,
    InvoiceNowGenerator,
    validate_document,
)
from services.extraction.schema import TaxCategory
from services.records.models import InvoiceLineItem, InvoiceRecord, OwnerProfile
from services.shared.errors import DocumentGenerationFailed

NS = {"cac": CAC_NS, "cbc": CBC_NS}


@pytest.fixture
def generator() -> InvoiceNowGenerator:
    return InvoiceNowGenerator()


@pytest.fixture
def invoice() -> InvoiceRecord:
    return InvoiceRecord(
        id="inv-1",
        owner_id="owner-1",
        invoice_number="INV-2024-001",
        invoice_date=date(2024, 3, 15),
        due_date=date(2024, 4, 14),
        customer_name="Beta Trading Pte Ltd",
        customer_uen="201234567A",
        vendor_name="Acme Supplies Pte Ltd",
        vendor_uen="53234567M",
        vendor_gst_number="M2-1234567-7",
        subtotal=Decimal("1500.00"),
        tax_amount=Decimal("90.00"),
        total_amount=Decimal("1590.00"),
        payment_terms="Net 30",
        items=[
            InvoiceLineItem(
                line_number=1,
                description="Consulting hours",
                quantity=Decimal("10"),
                unit_price=Decimal("100"),
                amount=Decimal("1000"),
            ),
            InvoiceLineItem(
                line_number=2,
                description="Export freight",
                quantity=Decimal("1"),
                unit_price=Decimal("500"),
                amount=Decimal("500"),
                tax_category=TaxCategory.ZERO_RATED,
            ),
        ],
    )


def parse(xml: str) -> ET.Element:
    return ET.fromstring(xml)


class TestGenerate:
    """Test document generation."""

    def test_header_fields(self, generator: InvoiceNowGenerator, invoice: InvoiceRecord) -> None:
        root = parse(generator.generate(invoice))

        assert root.findtext("cbc:CustomizationID", namespaces=NS) == CUSTOMIZATION_ID
        assert root.findtext("cbc:ID", namespaces=NS) == "INV-2024-001"
        assert root.findtext("cbc:IssueDate", namespaces=NS) == "2024-03-15"
        assert root.findtext("cbc:DueDate", namespaces=NS) == "2024-04-14"
        assert root.findtext("cbc:InvoiceTypeCode", namespaces=NS) == "380"
        assert root.findtext("cbc:DocumentCurrencyCode", namespaces=NS) == "SGD"
        assert root.findtext("cac:PaymentTerms/cbc:Note", namespaces=NS) == "Net 30"

    def test_document_passes_structural_checks(
        self, generator: InvoiceNowGenerator, invoice: InvoiceRecord
    ) -> None:
        assert validate_document(generator.generate(invoice)) == []

    def test_supplier_and_customer(self, generator: InvoiceNowGenerator, invoice: InvoiceRecord) -> None:
        root = parse(generator.generate(invoice))

        supplier = root.find("cac:AccountingSupplierParty/cac:Party", NS)
        customer = root.find("cac:AccountingCustomerParty/cac:Party", NS)
        assert supplier is not None and customer is not None
        assert supplier.findtext("cac:PartyName/cbc:Name", namespaces=NS) == "Acme Supplies Pte Ltd"
        assert supplier.findtext("cac:PartyTaxScheme/cbc:CompanyID", namespaces=NS) == "M2-1234567-7"
        uen = supplier.find("cac:PartyIdentification/cbc:ID", NS)
        assert uen is not None
        assert uen.text == "53234567M"
        assert uen.get("schemeID") == "0195"
        assert customer.findtext("cac:PartyName/cbc:Name", namespaces=NS) == "Beta Trading Pte Ltd"

    def test_supplier_gaps_filled_from_profile(
        self, generator: InvoiceNowGenerator, invoice: InvoiceRecord
    ) -> None:
        """Missing vendor details come from the owner profile."""
        bare = invoice.model_copy(update={"vendor_name": None, "vendor_gst_number": None})
        profile = OwnerProfile(
            owner_id="owner-1",
            company_name="Owner Co Pte Ltd",
            gst_number="GST12345678",
            peppol_id="0195:SG53234567M",
        )

        root = parse(generator.generate(bare, profile))

        supplier = root.find("cac:AccountingSupplierParty/cac:Party", NS)
        assert supplier is not None
        assert supplier.findtext("cac:PartyName/cbc:Name", namespaces=NS) == "Owner Co Pte Ltd"
        assert supplier.findtext("cac:PartyTaxScheme/cbc:CompanyID", namespaces=NS) == "GST12345678"
        assert supplier.findtext("cbc:EndpointID", namespaces=NS) == "0195:SG53234567M"

    def test_tax_subtotals_per_category(
        self, generator: InvoiceNowGenerator, invoice: InvoiceRecord
    ) -> None:
        """Standard and zero-rated lines are grouped into separate tax subtotals."""
        root = parse(generator.generate(invoice))

        assert root.findtext("cac:TaxTotal/cbc:TaxAmount", namespaces=NS) == "90.00"
        subtotals = root.findall("cac:TaxTotal/cac:TaxSubtotal", NS)
        summary = {
            s.findtext("cac:TaxCategory/cbc:ID", namespaces=NS): (
                s.findtext("cbc:TaxableAmount", namespaces=NS),
                s.findtext("cbc:TaxAmount", namespaces=NS),
                s.findtext("cac:TaxCategory/cbc:Percent", namespaces=NS),
            )
            for s in subtotals
        }
        assert summary == {
            "S": ("1000.00", "90.00", "9"),
            "Z": ("500.00", "0.00", "0"),
        }

    def test_monetary_totals(self, generator: InvoiceNowGenerator, invoice: InvoiceRecord) -> None:
        root = parse(generator.generate(invoice))

        monetary = root.find("cac:LegalMonetaryTotal", NS)
        assert monetary is not None
        assert monetary.findtext("cbc:LineExtensionAmount", namespaces=NS) == "1500.00"
        assert monetary.findtext("cbc:TaxExclusiveAmount", namespaces=NS) == "1500.00"
        assert monetary.findtext("cbc:PayableAmount", namespaces=NS) == "1590.00"
        payable = monetary.find("cbc:PayableAmount", NS)
        assert payable is not None
        assert payable.get("currencyID") == "SGD"

    def test_invoice_lines(self, generator: InvoiceNowGenerator, invoice: InvoiceRecord) -> None:
        root = parse(generator.generate(invoice))

        lines = root.findall("cac:InvoiceLine", NS)
        assert len(lines) == 2
        first = lines[0]
        quantity = first.find("cbc:InvoicedQuantity", NS)
        assert quantity is not None
        assert quantity.text == "10"
        assert quantity.get("unitCode") == "EA"
        assert first.findtext("cbc:LineExtensionAmount", namespaces=NS) == "1000.00"
        assert first.findtext("cac:Item/cbc:Name", namespaces=NS) == "Consulting hours"
        assert first.findtext("cac:Item/cac:ClassifiedTaxCategory/cbc:ID", namespaces=NS) == "S"
        assert first.findtext("cac:Price/cbc:PriceAmount", namespaces=NS) == "100.00"


class TestRejection:
    """Test invoices that cannot become documents."""

    def test_missing_invoice_number(self, generator: InvoiceNowGenerator, invoice: InvoiceRecord) -> None:
        with pytest.raises(DocumentGenerationFailed, match="Invoice number is required"):
            generator.generate(invoice.model_copy(update={"invoice_number": None}))

    def test_missing_line_items(self, generator: InvoiceNowGenerator, invoice: InvoiceRecord) -> None:
        with pytest.raises(DocumentGenerationFailed, match="At least one line item"):
            generator.generate(invoice.model_copy(update={"items": []}))


def test_validate_document_reports_problems() -> None:
    """Malformed or incomplete documents are reported, not raised."""
    assert validate_document("<Invoice")[0].startswith("Document is not well-formed XML")

    problems = validate_document("<Other/>")
    assert "Unexpected root element Other" in problems
    assert "Missing required element cbc:ID" in problems
