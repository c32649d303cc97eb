"""Subtotal / GST / total reconciliation.

After reconciliation, whenever any amount could be derived, all three are
present and ``subtotal + tax_amount == total_amount`` to the cent.
"""

from decimal import Decimal

from services.extraction.schema import ExtractedFields, LineItem, TaxCategory
from services.shared.tax import CENT, gst_rate_on, tax_on


def items_subtotal(items: tuple[LineItem, ...] | list[LineItem]) -> Decimal:
    return sum((item.amount for item in items), Decimal("0")).quantize(CENT)


def items_tax(items: tuple[LineItem, ...] | list[LineItem], default_rate: Decimal) -> Decimal:
    """GST over line items; zero-rated and exempt lines carry none."""
    total = Decimal("0")
    for item in items:
        if item.tax_category != TaxCategory.STANDARD:
            continue
        rate = item.tax_rate if item.tax_rate is not None else default_rate
        total += tax_on(item.amount, rate)
    return total.quantize(CENT)


def reconcile_totals(
    fields: ExtractedFields, rate_percent: Decimal | None = None
) -> ExtractedFields:
    """Fill in and reconcile subtotal, GST and total.

    Args:
        fields: Extracted fields, possibly with missing or inconsistent amounts
        rate_percent: GST rate to apply; defaults to the rate in force on the
            invoice date (today's rate when the date is unknown)

    Returns:
        Fields with consistent amounts
    """
    rate = rate_percent if rate_percent is not None else gst_rate_on(fields.invoice_date)[0]
    subtotal, tax, total = fields.subtotal, fields.tax_amount, fields.total_amount

    if subtotal is None and fields.items:
        subtotal = items_subtotal(fields.items)

    if subtotal is None and total is not None:
        if tax is not None:
            subtotal = total - tax
        else:
            subtotal = (total * Decimal("100") / (Decimal("100") + rate)).quantize(CENT)
            tax = total - subtotal

    if subtotal is not None and tax is None:
        if fields.items and abs(items_subtotal(fields.items) - subtotal) <= CENT:
            tax = items_tax(fields.items, rate)
        else:
            tax = tax_on(subtotal, rate)

    if subtotal is not None and tax is not None:
        expected = subtotal + tax
        if total is None or abs(expected - total) > CENT:
            total = expected

    if (subtotal, tax, total) == (fields.subtotal, fields.tax_amount, fields.total_amount):
        return fields
    return fields.model_copy(
        update={"subtotal": subtotal, "tax_amount": tax, "total_amount": total}
    )
