"""
Validation rules for Singapore GST and InvoiceNow compliance.

Rules are grouped by category:
- structural: required fields, formats, dates, duplicates
- tax: GST registration, GST arithmetic, per-line rates, reverse charge
- business: payment terms, amounts, line items
- peppol: InvoiceNow (PEPPOL BIS Billing 3.0) mandatory fields
- singapore: e-invoicing mandate and special schemes

Each rule is a function taking the invoice and a ``RuleContext`` and
returning the findings, suggestions and compliance checks it produced
(an empty list when the invoice passes).

Based on IRAS guidance:
https://www.iras.gov.sg/taxes/goods-services-tax-(gst)/basics-of-gst/invoicing-price-display-and-record-keeping
"""

import re
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Callable

from services.compliance.models import ComplianceCheck, Finding, Severity, Suggestion
from services.extraction.schema import TaxCategory
from services.records.models import InvoiceLineItem, InvoiceRecord
from services.shared.identifiers import (
    GST_LEGACY_PATTERN,
    GST_M_PATTERN,
    is_valid_gst_number,
    is_valid_uen,
)
from services.shared.tax import (
    CENT,
    EINVOICE_MANDATE_DATE,
    RECORD_RETENTION_YEARS,
    TOURIST_REFUND_MIN_AMOUNT,
    tax_on,
)

RuleOutput = list[Finding | Suggestion | ComplianceCheck]

TOTALS_FIX_CONFIDENCE = 0.95
LINE_RATE_FIX_CONFIDENCE = 0.9
PAYMENT_TERMS_CONFIDENCE = 0.8
ZERO_RATING_CONFIDENCE = 0.7
DPT_EXEMPTION_CONFIDENCE = 0.6

MAX_PAYMENT_TERMS_DAYS = 120
HIGH_AMOUNT_THRESHOLD = Decimal("10000000")
LOW_AMOUNT_THRESHOLD = Decimal("1")

INVOICE_NUMBER_PATTERN = re.compile(r"^[A-Z0-9\-/]+$", re.IGNORECASE)
SERVICE_KEYWORDS = ("service", "consulting", "software", "subscription", "license", "fee")
EXPORT_KEYWORDS = ("export", "overseas")
DPT_KEYWORDS = ("crypto", "bitcoin")

PEPPOL_MANDATORY_FIELDS = [
    ("invoice_number", "Invoice Number"),
    ("invoice_date", "Invoice Date"),
    ("customer_name", "Customer Name"),
    ("vendor_uen", "Supplier UEN"),
    ("vendor_gst_number", "Supplier GST Number"),
    ("currency", "Currency Code"),
]


@dataclass
class InvoiceTotals:
    subtotal: Decimal
    tax_amount: Decimal
    total_amount: Decimal


@dataclass
class RuleContext:
    """Values computed once per validation and shared by all rules.

    Attributes:
        gst_rate: GST rate in force on the invoice date (percent)
        today: Reference date for date-sanity checks
        duplicate_id: Id of another invoice of the same owner with this number
        calculated: Totals recomputed from line items (None without items)
    """

    gst_rate: Decimal
    today: date
    duplicate_id: str | None = None
    calculated: InvoiceTotals | None = None


RuleCheckFn = Callable[[InvoiceRecord, RuleContext], RuleOutput]


@dataclass
class ValidationRule:
    """
    A single validation rule.

    Attributes:
        code: Primary finding code the rule emits
        description: Human-readable description of the rule
        category: structural, tax, business, peppol or singapore
        check: Function that performs the check
    """

    code: str
    description: str
    category: str
    check: RuleCheckFn


def line_net_amount(item: InvoiceLineItem) -> Decimal:
    """Net line amount: quantity x unit price less discount, or the stated amount."""
    if item.unit_price:
        return item.quantity * item.unit_price - item.discount
    return item.amount


def compute_totals(items: list[InvoiceLineItem], rate_percent: Decimal) -> InvoiceTotals:
    """Recompute subtotal, GST and total from line items.

    Standard-rated lines are taxed at ``rate_percent``; zero-rated and exempt
    lines carry no GST.
    """
    subtotal = Decimal("0")
    taxable = Decimal("0")
    for item in items:
        net = line_net_amount(item)
        subtotal += net
        if item.tax_category == TaxCategory.STANDARD:
            taxable += net
    subtotal = subtotal.quantize(CENT)
    tax = tax_on(taxable, rate_percent)
    return InvoiceTotals(subtotal=subtotal, tax_amount=tax, total_amount=subtotal + tax)


def _years_before(day: date, years: int) -> date:
    try:
        return day.replace(year=day.year - years)
    except ValueError:
        return day.replace(year=day.year - years, day=28)


def _finding(field: str, code: str, message: str, severity: Severity, **details) -> Finding:
    return Finding(field=field, code=code, message=message, severity=severity, details=details)


def _money(value: Decimal) -> str:
    return f"${value:,.2f}"


# ============================================================================
# Structural rules
# ============================================================================

def check_invoice_number(invoice: InvoiceRecord, ctx: RuleContext) -> RuleOutput:
    """Invoice number is required and limited to letters, digits, hyphens and slashes."""
    if not invoice.invoice_number:
        return [_finding(
            "invoice_number", "MISSING_INVOICE_NUMBER",
            "Invoice number is required", Severity.CRITICAL,
        )]
    output: RuleOutput = []
    if not INVOICE_NUMBER_PATTERN.match(invoice.invoice_number):
        output.append(_finding(
            "invoice_number", "INVALID_INVOICE_NUMBER_FORMAT",
            "Invoice number should only contain letters, numbers, hyphens, and slashes",
            Severity.WARNING,
        ))
    if ctx.duplicate_id:
        output.append(_finding(
            "invoice_number", "DUPLICATE_INVOICE_NUMBER",
            "This invoice number already exists", Severity.ERROR,
            existing_invoice_id=ctx.duplicate_id,
        ))
    return output


def check_invoice_date(invoice: InvoiceRecord, ctx: RuleContext) -> RuleOutput:
    """Invoice date is required, not in the future and within the retention window."""
    if invoice.invoice_date is None:
        return [_finding(
            "invoice_date", "MISSING_INVOICE_DATE",
            "Invoice date is required", Severity.CRITICAL,
        )]
    output: RuleOutput = []
    if invoice.invoice_date > ctx.today:
        output.append(_finding(
            "invoice_date", "FUTURE_INVOICE_DATE",
            "Invoice date is in the future. Please verify this is correct.",
            Severity.WARNING,
        ))
    if invoice.invoice_date < _years_before(ctx.today, RECORD_RETENTION_YEARS):
        output.append(_finding(
            "invoice_date", "OLD_INVOICE_DATE",
            f"Invoice is more than {RECORD_RETENTION_YEARS} years old. "
            f"GST records retention period may have expired.",
            Severity.WARNING,
        ))
    return output


def check_customer(invoice: InvoiceRecord, ctx: RuleContext) -> RuleOutput:
    output: RuleOutput = []
    if not invoice.customer_name:
        output.append(_finding(
            "customer_name", "MISSING_CUSTOMER_NAME",
            "Customer name is required", Severity.CRITICAL,
        ))
    elif len(invoice.customer_name.strip()) < 2:
        output.append(_finding(
            "customer_name", "INVALID_CUSTOMER_NAME",
            "Customer name is too short", Severity.ERROR,
        ))
    if invoice.customer_uen and not is_valid_uen(invoice.customer_uen):
        output.append(_finding(
            "customer_uen", "INVALID_CUSTOMER_UEN",
            "Invalid UEN format. Expected: NNNNNNNNX (8-9 digits + letter) "
            "or special entity format",
            Severity.ERROR,
        ))
    return output


def check_vendor(invoice: InvoiceRecord, ctx: RuleContext) -> RuleOutput:
    output: RuleOutput = []
    if not invoice.vendor_name:
        output.append(_finding(
            "vendor_name", "MISSING_VENDOR_NAME",
            "Vendor name is recommended for proper documentation", Severity.WARNING,
        ))
    if invoice.vendor_uen and not is_valid_uen(invoice.vendor_uen):
        output.append(_finding(
            "vendor_uen", "INVALID_VENDOR_UEN",
            "Invalid vendor UEN format", Severity.ERROR,
        ))
    return output


# ============================================================================
# Tax rules
# ============================================================================

def check_gst_registration(invoice: InvoiceRecord, ctx: RuleContext) -> RuleOutput:
    """A tax invoice must carry a well-formed vendor GST registration number."""
    number = invoice.vendor_gst_number
    if not number:
        return [
            _finding(
                "vendor_gst_number", "MISSING_GST_NUMBER",
                "GST registration number is required for tax invoices", Severity.CRITICAL,
            ),
            ComplianceCheck(name="GST Registration", passed=False, message="Vendor GST number missing"),
        ]
    if not is_valid_gst_number(number):
        if GST_M_PATTERN.match(number):
            message = "Invalid GST number checksum"
        else:
            message = "Invalid GST number format. Expected: GSTNNNNNNNN, MN-NNNNNNN-N or UEN"
        return [
            _finding("vendor_gst_number", "INVALID_GST_NUMBER", message, Severity.CRITICAL),
            ComplianceCheck(name="GST Registration", passed=False, message=message),
        ]
    form = "legacy" if GST_LEGACY_PATTERN.match(number) else "M" if GST_M_PATTERN.match(number) else "UEN"
    return [ComplianceCheck(name="GST Registration", passed=True, message=f"{form} format")]


def check_gst_calculation(invoice: InvoiceRecord, ctx: RuleContext) -> RuleOutput:
    """Stated amounts must match the amounts recomputed at the effective rate.

    With line items, subtotal, GST and total are each checked against the
    line-item computation. Without line items, the total is checked against
    the stated subtotal plus GST.
    """
    output: RuleOutput = []
    expected: dict[str, Decimal] = {}

    if ctx.calculated is not None:
        expected = {
            "subtotal": ctx.calculated.subtotal,
            "tax_amount": ctx.calculated.tax_amount,
            "total_amount": ctx.calculated.total_amount,
        }
    elif invoice.subtotal is not None and invoice.tax_amount is not None:
        expected = {"total_amount": invoice.subtotal + invoice.tax_amount}
    else:
        return output

    labels = {
        "subtotal": ("INCORRECT_SUBTOTAL", "FIX_SUBTOTAL", "Subtotal", "subtotal"),
        "tax_amount": ("INCORRECT_GST_AMOUNT", "FIX_GST_AMOUNT", "GST amount", "GST amount"),
        "total_amount": ("INCORRECT_TOTAL", "FIX_TOTAL", "Total amount", "total"),
    }
    passed = True
    for field, value in expected.items():
        stated = getattr(invoice, field)
        if stated is None or abs(stated - value) <= CENT:
            continue
        passed = False
        code, fix_code, label, short = labels[field]
        output.append(_finding(
            field, code,
            f"{label} mismatch. Expected: {_money(value)}, Got: {_money(stated)}",
            Severity.ERROR,
            expected=str(value), actual=str(stated),
        ))
        output.append(Suggestion(
            field=field,
            code=fix_code,
            suggestion=f"Update {short} to {_money(value)}",
            auto_fix_value=value,
            confidence=TOTALS_FIX_CONFIDENCE,
        ))

    output.append(ComplianceCheck(name="GST Calculation", passed=passed))
    return output


def check_zero_gst_category(invoice: InvoiceRecord, ctx: RuleContext) -> RuleOutput:
    """Zero GST on a positive subtotal needs a zero-rated or exempt line."""
    if invoice.tax_amount != 0 or not invoice.subtotal or invoice.subtotal <= 0:
        return []
    if any(i.tax_category in (TaxCategory.ZERO_RATED, TaxCategory.EXEMPT) for i in invoice.items):
        return []
    return [_finding(
        "tax_amount", "ZERO_GST_WITHOUT_CATEGORY",
        "Invoice has zero GST but no items marked as zero-rated or exempt. "
        "Please verify if this is an export or international service.",
        Severity.WARNING,
    )]


def is_reverse_charge_candidate(invoice: InvoiceRecord) -> bool:
    """Heuristic for an imported B2B service.

    Foreign-looking vendor address, no vendor GST number, service-like line
    descriptions and a business customer.
    """
    if not invoice.vendor_address:
        return False
    overseas_vendor = (
        "singapore" not in invoice.vendor_address.lower() and not invoice.vendor_gst_number
    )
    is_service = any(
        keyword in item.description.lower()
        for item in invoice.items
        for keyword in SERVICE_KEYWORDS
    )
    is_b2b = bool(invoice.customer_uen) or invoice.customer_gst_registered
    return overseas_vendor and is_service and is_b2b


def check_reverse_charge(invoice: InvoiceRecord, ctx: RuleContext) -> RuleOutput:
    if not is_reverse_charge_candidate(invoice):
        return []
    return [
        _finding(
            "tax_amount", "REVERSE_CHARGE_APPLICABLE",
            "This appears to be an imported service. Customer may need to account "
            "for GST under reverse charge.",
            Severity.WARNING,
            info="For B2B imported services, the GST-registered customer accounts "
            "for GST instead of the supplier.",
        ),
        ComplianceCheck(name="Reverse Charge", passed=True, message="Reverse charge rules may apply"),
    ]


def check_line_tax_rates(invoice: InvoiceRecord, ctx: RuleContext) -> RuleOutput:
    """Standard-rated lines carry the effective rate; zero-rated lines carry 0%.

    Lines without a stated rate are not checked.
    """
    output: RuleOutput = []
    for index, item in enumerate(invoice.items):
        if item.tax_rate is None:
            continue
        path = f"items[{index}].tax_rate"
        if item.tax_category == TaxCategory.STANDARD and item.tax_rate != ctx.gst_rate:
            output.append(_finding(
                path, "INCORRECT_LINE_GST_RATE",
                f"Line item {index + 1} has incorrect GST rate. "
                f"Expected {ctx.gst_rate}% for standard rated items",
                Severity.ERROR,
            ))
            output.append(Suggestion(
                field=path,
                code="FIX_LINE_GST_RATE",
                suggestion=f"Set line item {index + 1} GST rate to {ctx.gst_rate}%",
                auto_fix_value=ctx.gst_rate,
                confidence=LINE_RATE_FIX_CONFIDENCE,
            ))
        elif item.tax_category == TaxCategory.ZERO_RATED and item.tax_rate != 0:
            output.append(_finding(
                path, "ZERO_RATED_WITH_GST",
                f"Line item {index + 1} is zero-rated but has GST rate of {item.tax_rate}%",
                Severity.ERROR,
            ))
            output.append(Suggestion(
                field=path,
                code="FIX_LINE_GST_RATE",
                suggestion=f"Set line item {index + 1} GST rate to 0%",
                auto_fix_value=Decimal("0"),
                confidence=LINE_RATE_FIX_CONFIDENCE,
            ))
    return output


# ============================================================================
# Business rules
# ============================================================================

def standard_payment_terms(days: int) -> str:
    return "Immediate" if days == 0 else f"Net {days}"


def check_payment_terms(invoice: InvoiceRecord, ctx: RuleContext) -> RuleOutput:
    """Due date must not precede the invoice date; terms beyond 120 days are unusual."""
    if invoice.due_date is None or invoice.invoice_date is None:
        return []
    days = (invoice.due_date - invoice.invoice_date).days
    if days < 0:
        return [_finding(
            "due_date", "DUE_DATE_BEFORE_INVOICE",
            "Due date cannot be before invoice date", Severity.ERROR,
        )]

    output: RuleOutput = []
    if days == 0:
        output.append(_finding(
            "due_date", "SAME_DAY_PAYMENT",
            "Due date is same as invoice date (immediate payment terms)", Severity.WARNING,
        ))
    elif days > MAX_PAYMENT_TERMS_DAYS:
        output.append(_finding(
            "due_date", "EXCESSIVE_PAYMENT_TERMS",
            f"Payment terms of {days} days exceed typical business practice",
            Severity.WARNING, days=days,
        ))
    if not invoice.payment_terms:
        terms = standard_payment_terms(days)
        output.append(Suggestion(
            field="payment_terms",
            code="SUGGEST_PAYMENT_TERMS",
            suggestion=f"Add payment terms: {terms}",
            auto_fix_value=terms,
            confidence=PAYMENT_TERMS_CONFIDENCE,
        ))
    return output


def check_total_amount(invoice: InvoiceRecord, ctx: RuleContext) -> RuleOutput:
    total = invoice.total_amount
    if total is None:
        return []
    if total <= 0:
        return [_finding(
            "total_amount", "INVALID_TOTAL_AMOUNT",
            "Total amount must be greater than zero", Severity.ERROR,
        )]
    if total > HIGH_AMOUNT_THRESHOLD:
        return [_finding(
            "total_amount", "UNUSUALLY_HIGH_AMOUNT",
            "Total amount exceeds $10,000,000. Please verify this is correct.",
            Severity.WARNING, amount=str(total), threshold=str(HIGH_AMOUNT_THRESHOLD),
        )]
    if total < LOW_AMOUNT_THRESHOLD:
        return [_finding(
            "total_amount", "UNUSUALLY_LOW_AMOUNT",
            "Total amount is less than $1. Please verify this is correct.", Severity.WARNING,
        )]
    return []


def check_line_items(invoice: InvoiceRecord, ctx: RuleContext) -> RuleOutput:
    """Each line needs a description, a positive quantity and a non-negative price."""
    if not invoice.items:
        return [_finding(
            "items", "NO_LINE_ITEMS",
            "Invoice must have at least one line item", Severity.CRITICAL,
        )]

    output: RuleOutput = []
    for index, item in enumerate(invoice.items):
        line = index + 1
        description = item.description.strip()
        if not description:
            output.append(_finding(
                f"items[{index}].description", "MISSING_ITEM_DESCRIPTION",
                f"Line item {line} is missing description", Severity.ERROR,
            ))
        elif len(description) < 3:
            output.append(_finding(
                f"items[{index}].description", "SHORT_ITEM_DESCRIPTION",
                f"Line item {line} has very short description", Severity.WARNING,
            ))

        if item.quantity <= 0:
            output.append(_finding(
                f"items[{index}].quantity", "INVALID_QUANTITY",
                f"Line item {line} has invalid quantity ({item.quantity})", Severity.ERROR,
            ))
        elif item.quantity % 1 != 0 and (item.unit or "").upper() == "EA":
            output.append(_finding(
                f"items[{index}].quantity", "FRACTIONAL_QUANTITY",
                f'Line item {line} has fractional quantity for unit "Each"', Severity.WARNING,
            ))

        if item.unit_price < 0:
            output.append(_finding(
                f"items[{index}].unit_price", "NEGATIVE_UNIT_PRICE",
                f"Line item {line} has negative unit price", Severity.ERROR,
            ))

        lowered = description.lower()
        if item.tax_category != TaxCategory.ZERO_RATED and any(k in lowered for k in EXPORT_KEYWORDS):
            output.append(Suggestion(
                field=f"items[{index}].tax_category",
                code="SUGGEST_ZERO_RATING",
                suggestion=f"Line item {line} appears to be an export. Consider zero-rating (GST 0%)",
                auto_fix_value=TaxCategory.ZERO_RATED.value,
                confidence=ZERO_RATING_CONFIDENCE,
            ))
    return output


# ============================================================================
# InvoiceNow (PEPPOL) rules
# ============================================================================

def check_peppol_mandatory(invoice: InvoiceRecord, ctx: RuleContext) -> RuleOutput:
    output: RuleOutput = []
    for field, name in PEPPOL_MANDATORY_FIELDS:
        if not getattr(invoice, field):
            output.append(_finding(
                field, f"PEPPOL_MISSING_{field.upper()}",
                f"{name} is mandatory for InvoiceNow/PEPPOL compliance", Severity.CRITICAL,
            ))
    if not invoice.items:
        output.append(_finding(
            "items", "PEPPOL_NO_LINE_ITEMS",
            "At least one line item is required for PEPPOL compliance", Severity.CRITICAL,
        ))
    return output


def check_peppol_recommended(invoice: InvoiceRecord, ctx: RuleContext) -> RuleOutput:
    output: RuleOutput = []
    if invoice.currency and invoice.currency.upper() != "SGD":
        output.append(_finding(
            "currency", "NON_SGD_CURRENCY",
            "Non-SGD currency detected. Additional exchange rate information may be "
            "required for PEPPOL.",
            Severity.WARNING,
        ))
    if not invoice.buyer_reference:
        output.append(_finding(
            "buyer_reference", "MISSING_BUYER_REFERENCE",
            "Buyer reference is recommended for PEPPOL invoices", Severity.WARNING,
        ))
    if not invoice.vendor_address:
        output.append(_finding(
            "vendor_address", "MISSING_VENDOR_ADDRESS",
            "Vendor address is recommended for complete PEPPOL compliance", Severity.WARNING,
        ))
    return output


# ============================================================================
# Singapore-specific rules
# ============================================================================

def check_einvoice_mandate(invoice: InvoiceRecord, ctx: RuleContext) -> RuleOutput:
    """Invoices dated on or after the mandate date should carry a PEPPOL participant id."""
    issued = invoice.invoice_date or ctx.today
    if issued < EINVOICE_MANDATE_DATE or invoice.peppol_id:
        return []
    return [_finding(
        "peppol_id", "EINVOICE_MANDATE",
        "E-invoicing via InvoiceNow is mandatory from 1 Nov 2025 for GST-registered businesses",
        Severity.WARNING,
    )]


def check_gst_group(invoice: InvoiceRecord, ctx: RuleContext) -> RuleOutput:
    if invoice.gst_group_registration and not invoice.representative_member_uen:
        return [_finding(
            "representative_member_uen", "MISSING_GST_GROUP_REP",
            "Representative member UEN required for GST group registration", Severity.ERROR,
        )]
    return []


def check_tourist_refund(invoice: InvoiceRecord, ctx: RuleContext) -> RuleOutput:
    if (
        invoice.tourist_refund_scheme
        and invoice.total_amount
        and invoice.total_amount < TOURIST_REFUND_MIN_AMOUNT
    ):
        return [_finding(
            "total_amount", "TOURIST_REFUND_MIN_AMOUNT",
            f"Minimum purchase of ${TOURIST_REFUND_MIN_AMOUNT} required for Tourist Refund Scheme",
            Severity.WARNING,
        )]
    return []


def check_digital_payment_token(invoice: InvoiceRecord, ctx: RuleContext) -> RuleOutput:
    """Digital payment token supplies are GST-exempt."""
    method = (invoice.payment_method or "").lower()
    if not any(k in method for k in DPT_KEYWORDS):
        return []
    return [
        _finding(
            "payment_method", "DIGITAL_PAYMENT_TOKEN",
            "Digital payment tokens are exempt from GST in Singapore", Severity.WARNING,
        ),
        Suggestion(
            field="items",
            code="SUGGEST_DPT_EXEMPTION",
            suggestion="Consider marking digital payment token transactions as GST exempt",
            auto_fix_available=False,
            confidence=DPT_EXEMPTION_CONFIDENCE,
        ),
    ]


# ============================================================================
# Rule registry
# ============================================================================

RULES: list[ValidationRule] = [
    ValidationRule("MISSING_INVOICE_NUMBER", "Invoice number present, well-formed and unique", "structural", check_invoice_number),
    ValidationRule("MISSING_INVOICE_DATE", "Invoice date present and plausible", "structural", check_invoice_date),
    ValidationRule("MISSING_CUSTOMER_NAME", "Customer name and UEN", "structural", check_customer),
    ValidationRule("MISSING_VENDOR_NAME", "Vendor name and UEN", "structural", check_vendor),
    ValidationRule("MISSING_GST_NUMBER", "Vendor GST registration number", "tax", check_gst_registration),
    ValidationRule("INCORRECT_TOTAL", "Subtotal, GST and total arithmetic", "tax", check_gst_calculation),
    ValidationRule("ZERO_GST_WITHOUT_CATEGORY", "Zero GST needs a zero-rated line", "tax", check_zero_gst_category),
    ValidationRule("REVERSE_CHARGE_APPLICABLE", "Imported services under reverse charge", "tax", check_reverse_charge),
    ValidationRule("INCORRECT_LINE_GST_RATE", "Per-line GST rate matches tax category", "tax", check_line_tax_rates),
    ValidationRule("DUE_DATE_BEFORE_INVOICE", "Due date and payment terms", "business", check_payment_terms),
    ValidationRule("INVALID_TOTAL_AMOUNT", "Total amount within plausible range", "business", check_total_amount),
    ValidationRule("NO_LINE_ITEMS", "Line item content", "business", check_line_items),
    ValidationRule("PEPPOL_MISSING_FIELD", "InvoiceNow mandatory fields", "peppol", check_peppol_mandatory),
    ValidationRule("MISSING_BUYER_REFERENCE", "InvoiceNow recommended fields", "peppol", check_peppol_recommended),
    ValidationRule("EINVOICE_MANDATE", "InvoiceNow mandate from 1 Nov 2025", "singapore", check_einvoice_mandate),
    ValidationRule("MISSING_GST_GROUP_REP", "GST group representative member", "singapore", check_gst_group),
    ValidationRule("TOURIST_REFUND_MIN_AMOUNT", "Tourist Refund Scheme minimum", "singapore", check_tourist_refund),
    ValidationRule("DIGITAL_PAYMENT_TOKEN", "Digital payment token exemption", "singapore", check_digital_payment_token),
]


def get_rules_by_category(category: str) -> list[ValidationRule]:
    return [rule for rule in RULES if rule.category == category]
