"""Value parsers shared by extraction providers and the template matcher.

Dates are read day-first, as printed on Singapore invoices.
"""

import re
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any

from dateutil import parser as dateparser

from services.extraction.schema import ExtractedFields, LineItem, TaxCategory
from services.shared.tax import to_money

_ISO_PREFIX = re.compile(r"^\d{4}-\d{1,2}-\d{1,2}")


def parse_date(value: object) -> date | None:
    """Parse a date written as DD/MM/YYYY, DD Month YYYY, Month DD, YYYY or ISO.

    Returns None for anything that does not form a real calendar date.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value

    text = str(value).strip()
    # Bare numbers are amounts or references, not dates
    if not text or text.isdigit():
        return None

    try:
        if _ISO_PREFIX.match(text):
            return dateparser.parse(text, yearfirst=True).date()
        return dateparser.parse(text, dayfirst=True).date()
    except (ValueError, OverflowError):
        return None


def parse_amount(value: object) -> Decimal | None:
    """Parse a money amount such as ``S$1,234.50``, ``SGD 90`` or ``(12.00)``."""
    if value is None:
        return None
    if isinstance(value, (int, float, Decimal)):
        return to_money(value)

    text = str(value).strip()
    negative = text.startswith("(") and text.endswith(")")
    cleaned = re.sub(r"[^0-9.\-]", "", text)
    if not cleaned or cleaned in {"-", "."}:
        return None
    amount = to_money(cleaned)
    if amount is not None and negative:
        amount = -abs(amount)
    return amount


def parse_quantity(value: object) -> Decimal | None:
    if value is None:
        return None
    if isinstance(value, (int, float, Decimal)):
        return Decimal(str(value))
    cleaned = re.sub(r"[^0-9.\-]", "", str(value))
    if not cleaned:
        return None
    try:
        return Decimal(cleaned)
    except InvalidOperation:
        return None


def parse_rate(value: object) -> Decimal | None:
    """Parse a tax rate in percent; fractional values like 0.09 are scaled up."""
    rate = parse_quantity(value)
    if rate is None:
        return None
    if Decimal("0") < rate < Decimal("1"):
        rate = rate * 100
    return rate.quantize(Decimal("1")) if rate == rate.to_integral_value() else rate


def clean_text(value: object) -> str | None:
    if value is None:
        return None
    text = " ".join(str(value).split())
    return text or None


def parse_tax_category(value: object) -> TaxCategory:
    text = (clean_text(value) or "").lower()
    if text in {"z", "zero", "zero-rated", "zero rated", "zr"}:
        return TaxCategory.ZERO_RATED
    if text in {"e", "exempt", "es"}:
        return TaxCategory.EXEMPT
    return TaxCategory.STANDARD


def build_line_item(data: dict[str, Any]) -> LineItem | None:
    """Build a LineItem from loosely typed values; None if the row carries nothing."""
    description = clean_text(data.get("description")) or ""
    quantity = parse_quantity(data.get("quantity"))
    if quantity is None:
        quantity = Decimal("1")
    unit_price = parse_amount(data.get("unit_price"))
    amount = parse_amount(data.get("amount"))

    if not description and amount is None and unit_price is None:
        return None
    if amount is None and unit_price is not None:
        amount = to_money(quantity * unit_price)
    if unit_price is None and amount is not None and quantity:
        unit_price = to_money(amount / quantity)

    return LineItem(
        description=description,
        quantity=quantity,
        unit_price=unit_price if unit_price is not None else Decimal("0"),
        amount=amount if amount is not None else Decimal("0"),
        discount=parse_amount(data.get("discount")) or Decimal("0"),
        tax_rate=parse_rate(data.get("tax_rate")),
        tax_category=parse_tax_category(data.get("tax_category")),
    )


def build_fields(data: dict[str, Any]) -> ExtractedFields:
    """Build ExtractedFields from a loosely typed mapping (LLM JSON, template hits)."""
    items = []
    for raw in data.get("items") or []:
        if isinstance(raw, dict):
            item = build_line_item(raw)
            if item is not None:
                items.append(item)

    return ExtractedFields(
        invoice_number=clean_text(data.get("invoice_number")),
        invoice_date=parse_date(data.get("invoice_date")),
        due_date=parse_date(data.get("due_date")),
        customer_name=clean_text(data.get("customer_name")),
        customer_uen=clean_text(data.get("customer_uen")),
        customer_address=clean_text(data.get("customer_address")),
        vendor_name=clean_text(data.get("vendor_name")),
        vendor_uen=clean_text(data.get("vendor_uen")),
        vendor_gst_number=clean_text(data.get("vendor_gst_number")),
        vendor_address=clean_text(data.get("vendor_address")),
        subtotal=parse_amount(data.get("subtotal")),
        tax_amount=parse_amount(data.get("tax_amount")),
        total_amount=parse_amount(data.get("total_amount")),
        currency=(clean_text(data.get("currency")) or "SGD").upper(),
        items=tuple(items),
        payment_terms=clean_text(data.get("payment_terms")),
        notes=clean_text(data.get("notes")),
    )
