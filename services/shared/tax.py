"""Singapore GST rate history and money helpers.

Rates are looked up by invoice date so that documents issued before a rate
change are checked against the rate in force at the time.

Source: IRAS, "GST rate change"
https://www.iras.gov.sg/taxes/goods-services-tax-(gst)/gst-rate-change
"""

from datetime import date
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

CENT = Decimal("0.01")

# (effective from, rate in percent), ascending
GST_RATE_HISTORY: list[tuple[date, Decimal]] = [
    (date(1994, 4, 1), Decimal("3")),
    (date(2003, 1, 1), Decimal("4")),
    (date(2004, 1, 1), Decimal("5")),
    (date(2007, 7, 1), Decimal("7")),
    (date(2023, 1, 1), Decimal("8")),
    (date(2024, 1, 1), Decimal("9")),
]

GST_REGISTRATION_THRESHOLD = Decimal("1000000")
TOURIST_REFUND_MIN_AMOUNT = Decimal("100")
EINVOICE_MANDATE_DATE = date(2025, 11, 1)
RECORD_RETENTION_YEARS = 5


def gst_rate_on(on: date | None = None) -> tuple[Decimal, date]:
    """Return the GST rate in percent and the date it took effect.

    Args:
        on: Transaction date (defaults to today)

    Returns:
        Tuple of (rate percent, effective date)
    """
    on = on or date.today()
    rate, effective = GST_RATE_HISTORY[0][1], GST_RATE_HISTORY[0][0]
    for start, value in GST_RATE_HISTORY:
        if on >= start:
            rate, effective = value, start
    return rate, effective


def current_gst_rate() -> Decimal:
    return gst_rate_on()[0]


def to_money(value: Any) -> Decimal | None:
    """Coerce a number-like value to a 2dp Decimal, or None if not numeric."""
    if value is None or value == "":
        return None
    try:
        return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)
    except (InvalidOperation, ValueError):
        return None


def tax_on(amount: Decimal, rate_percent: Decimal) -> Decimal:
    return (amount * rate_percent / Decimal("100")).quantize(CENT, rounding=ROUND_HALF_UP)
