"""InvoiceNow document generator.

Serializes an invoice record into a UBL 2.1 Invoice following the PEPPOL BIS
Billing 3.0 Singapore customization.

Based on:
https://docs.peppol.eu/poacc/billing/3.0/
https://www.imda.gov.sg/how-we-can-help/nationwide-e-invoicing-framework
"""

import logging
import xml.etree.ElementTree as ET
from collections import OrderedDict
from decimal import Decimal

from services.compliance.rules import line_net_amount
from services.extraction.schema import TaxCategory
from services.records.models import InvoiceLineItem, InvoiceRecord, OwnerProfile
from services.shared.errors import DocumentGenerationFailed
from services.shared.tax import gst_rate_on, tax_on

logger = logging.getLogger(__name__)

UBL_INVOICE_NS = "urn:oasis:names:specification:ubl:schema:xsd:Invoice-2"
CAC_NS = "urn:oasis:names:specification:ubl:schema:xsd:CommonAggregateComponents-2"
CBC_NS = "urn:oasis:names:specification:ubl:schema:xsd:CommonBasicComponents-2"

CUSTOMIZATION_ID = (
    "urn:cen.eu:en16931:2017#conformant#urn:fdc:peppol.eu:2017:poacc:billing:international:sg:3.0"
)
PROFILE_ID = "urn:fdc:peppol.eu:2017:poacc:billing:01:1.0"
INVOICE_TYPE_CODE = "380"
UEN_SCHEME_ID = "0195"
COUNTRY_CODE = "SG"

REQUIRED_ELEMENTS = [
    "cbc:CustomizationID",
    "cbc:ProfileID",
    "cbc:ID",
    "cbc:IssueDate",
    "cbc:InvoiceTypeCode",
    "cbc:DocumentCurrencyCode",
    "cac:AccountingSupplierParty",
    "cac:AccountingCustomerParty",
    "cac:TaxTotal",
    "cac:LegalMonetaryTotal",
    "cac:InvoiceLine",
]

_NAMESPACES = {"cac": CAC_NS, "cbc": CBC_NS}

ET.register_namespace("", UBL_INVOICE_NS)
ET.register_namespace("cac", CAC_NS)
ET.register_namespace("cbc", CBC_NS)


def _cbc(parent: ET.Element, name: str, text: str | None = None, **attrib: str) -> ET.Element:
    element = ET.SubElement(parent, f"{{{CBC_NS}}}{name}", attrib)
    if text is not None:
        element.text = text
    return element


def _cac(parent: ET.Element, name: str) -> ET.Element:
    return ET.SubElement(parent, f"{{{CAC_NS}}}{name}")


def _amount(value: Decimal | None) -> str:
    return f"{(value or Decimal('0')):.2f}"


def _quantity(value: Decimal) -> str:
    return format(value.normalize(), "f")


def validate_document(xml: str) -> list[str]:
    """Basic structural checks on a generated document.

    Returns:
        List of problems (empty when the document is acceptable)
    """
    try:
        root = ET.fromstring(xml)
    except ET.ParseError as e:
        return [f"Document is not well-formed XML: {e}"]

    problems = []
    if root.tag != f"{{{UBL_INVOICE_NS}}}Invoice":
        problems.append(f"Unexpected root element {root.tag}")
    for path in REQUIRED_ELEMENTS:
        if root.find(path, _NAMESPACES) is None:
            problems.append(f"Missing required element {path}")
    return problems


class InvoiceNowGenerator:
    """Builds InvoiceNow (PEPPOL BIS 3.0) UBL documents from invoice records."""

    def generate(self, invoice: InvoiceRecord, supplier_profile: OwnerProfile | None = None) -> str:
        """Generate the UBL XML for an invoice.

        Supplier identity comes from the invoice's vendor fields, with gaps
        filled from the supplier profile.

        Args:
            invoice: Invoice record with line items
            supplier_profile: Account holder's company details

        Returns:
            Serialized XML document

        Raises:
            DocumentGenerationFailed: If the invoice cannot be expressed as a
                valid document
        """
        if not invoice.invoice_number:
            raise DocumentGenerationFailed("Invoice number is required to generate a document")
        if not invoice.items:
            raise DocumentGenerationFailed("At least one line item is required to generate a document")

        try:
            root = self._build(invoice, supplier_profile)
            xml = ET.tostring(root, encoding="unicode", xml_declaration=True)
        except (TypeError, ValueError, ArithmeticError) as e:
            raise DocumentGenerationFailed(f"Failed to serialize invoice {invoice.id}: {e}") from e

        problems = validate_document(xml)
        if problems:
            raise DocumentGenerationFailed("; ".join(problems))

        logger.info(f"Generated InvoiceNow document for invoice {invoice.invoice_number}")
        return xml

    def _build(self, invoice: InvoiceRecord, profile: OwnerProfile | None) -> ET.Element:
        currency = invoice.currency or "SGD"
        issue_date = invoice.invoice_date or invoice.created_at.date()
        rate = gst_rate_on(issue_date)[0]

        root = ET.Element(f"{{{UBL_INVOICE_NS}}}Invoice")
        _cbc(root, "CustomizationID", CUSTOMIZATION_ID)
        _cbc(root, "ProfileID", PROFILE_ID)
        _cbc(root, "ID", invoice.invoice_number)
        _cbc(root, "IssueDate", issue_date.isoformat())
        if invoice.due_date:
            _cbc(root, "DueDate", invoice.due_date.isoformat())
        _cbc(root, "InvoiceTypeCode", INVOICE_TYPE_CODE)
        if invoice.notes:
            _cbc(root, "Note", invoice.notes)
        _cbc(root, "DocumentCurrencyCode", currency)
        if invoice.buyer_reference:
            _cbc(root, "BuyerReference", invoice.buyer_reference)

        self._supplier(root, invoice, profile)
        self._customer(root, invoice)

        if invoice.payment_terms:
            terms = _cac(root, "PaymentTerms")
            _cbc(terms, "Note", invoice.payment_terms)

        self._tax_total(root, invoice, currency, rate)
        self._monetary_total(root, invoice, currency)

        for index, item in enumerate(invoice.items):
            self._invoice_line(root, index, item, currency, rate)
        return root

    def _supplier(self, root: ET.Element, invoice: InvoiceRecord, profile: OwnerProfile | None) -> None:
        profile = profile or OwnerProfile(owner_id=invoice.owner_id)
        name = invoice.vendor_name or profile.company_name
        uen = invoice.vendor_uen or profile.uen
        gst_number = invoice.vendor_gst_number or profile.gst_number
        address = invoice.vendor_address or profile.address
        peppol_id = profile.peppol_id or invoice.peppol_id

        party = _cac(_cac(root, "AccountingSupplierParty"), "Party")
        if peppol_id:
            _cbc(party, "EndpointID", peppol_id, schemeID=UEN_SCHEME_ID)
        if uen:
            _cbc(_cac(party, "PartyIdentification"), "ID", uen, schemeID=UEN_SCHEME_ID)
        if name:
            _cbc(_cac(party, "PartyName"), "Name", name)
        self._address(party, address)
        if gst_number:
            tax_scheme = _cac(party, "PartyTaxScheme")
            _cbc(tax_scheme, "CompanyID", gst_number)
            _cbc(_cac(tax_scheme, "TaxScheme"), "ID", "GST")
        legal = _cac(party, "PartyLegalEntity")
        _cbc(legal, "RegistrationName", name or "")
        if uen:
            _cbc(legal, "CompanyID", uen, schemeID=UEN_SCHEME_ID)

    def _customer(self, root: ET.Element, invoice: InvoiceRecord) -> None:
        party = _cac(_cac(root, "AccountingCustomerParty"), "Party")
        if invoice.customer_uen:
            _cbc(_cac(party, "PartyIdentification"), "ID", invoice.customer_uen, schemeID=UEN_SCHEME_ID)
        _cbc(_cac(party, "PartyName"), "Name", invoice.customer_name or "Customer")
        self._address(party, invoice.customer_address)
        legal = _cac(party, "PartyLegalEntity")
        _cbc(legal, "RegistrationName", invoice.customer_name or "Customer")

    @staticmethod
    def _address(party: ET.Element, address: str | None) -> None:
        postal = _cac(party, "PostalAddress")
        if address:
            _cbc(postal, "StreetName", address)
        _cbc(postal, "CityName", "Singapore")
        _cbc(_cac(postal, "Country"), "IdentificationCode", COUNTRY_CODE)

    def _tax_total(self, root: ET.Element, invoice: InvoiceRecord, currency: str, rate: Decimal) -> None:
        groups: OrderedDict[TaxCategory, Decimal] = OrderedDict()
        for item in invoice.items:
            groups[item.tax_category] = groups.get(item.tax_category, Decimal("0")) + line_net_amount(item)

        subtotals = []
        for category, taxable in groups.items():
            percent = rate if category == TaxCategory.STANDARD else Decimal("0")
            subtotals.append((category, taxable, tax_on(taxable, percent), percent))

        total_tax = invoice.tax_amount
        if total_tax is None:
            total_tax = sum((s[2] for s in subtotals), Decimal("0"))

        tax_total = _cac(root, "TaxTotal")
        _cbc(tax_total, "TaxAmount", _amount(total_tax), currencyID=currency)
        for category, taxable, tax, percent in subtotals:
            subtotal = _cac(tax_total, "TaxSubtotal")
            _cbc(subtotal, "TaxableAmount", _amount(taxable), currencyID=currency)
            _cbc(subtotal, "TaxAmount", _amount(tax), currencyID=currency)
            self._tax_category(subtotal, category, percent)

    @staticmethod
    def _tax_category(parent: ET.Element, category: TaxCategory, percent: Decimal, tag: str = "TaxCategory") -> None:
        element = _cac(parent, tag)
        _cbc(element, "ID", category.value)
        _cbc(element, "Percent", _quantity(percent))
        if category == TaxCategory.EXEMPT:
            _cbc(element, "TaxExemptionReason", "Exempt supply")
        _cbc(_cac(element, "TaxScheme"), "ID", "GST")

    def _monetary_total(self, root: ET.Element, invoice: InvoiceRecord, currency: str) -> None:
        line_total = sum((line_net_amount(i) for i in invoice.items), Decimal("0"))
        subtotal = invoice.subtotal if invoice.subtotal is not None else line_total
        total = invoice.total_amount
        if total is None:
            total = subtotal + (invoice.tax_amount or Decimal("0"))

        monetary = _cac(root, "LegalMonetaryTotal")
        _cbc(monetary, "LineExtensionAmount", _amount(line_total), currencyID=currency)
        _cbc(monetary, "TaxExclusiveAmount", _amount(subtotal), currencyID=currency)
        _cbc(monetary, "TaxInclusiveAmount", _amount(total), currencyID=currency)
        _cbc(monetary, "PayableAmount", _amount(total), currencyID=currency)

    def _invoice_line(
        self, root: ET.Element, index: int, item: InvoiceLineItem, currency: str, rate: Decimal
    ) -> None:
        line = _cac(root, "InvoiceLine")
        _cbc(line, "ID", str(item.line_number or index + 1))
        _cbc(line, "InvoicedQuantity", _quantity(item.quantity), unitCode=item.unit or "EA")
        _cbc(line, "LineExtensionAmount", _amount(line_net_amount(item)), currencyID=currency)
        product = _cac(line, "Item")
        _cbc(product, "Description", item.description)
        _cbc(product, "Name", item.description[:100] or f"Item {index + 1}")
        percent = rate if item.tax_category == TaxCategory.STANDARD else Decimal("0")
        self._tax_category(product, item.tax_category, percent, "ClassifiedTaxCategory")
        price = _cac(line, "Price")
        _cbc(price, "PriceAmount", _amount(item.unit_price or item.amount), currencyID=currency)
