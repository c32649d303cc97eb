"""Singapore business identifier handling (UEN and GST registration numbers).

UEN formats (ACRA):
- Businesses: 8 digits + check letter (e.g. 53234567M)
- Local companies: 9 digits + check letter (e.g. 201234567A)
- Other entities: T/S/R + 2-digit year + 2-letter entity type + 4 digits + letter
  (e.g. T20LL1234A)

GST registration numbers are either the entity's UEN, the legacy
``GST########`` form, or the ``M#-#######-#`` form.
"""

import re

UEN_PATTERNS = [
    re.compile(r"^[0-9]{8,9}[A-Z]$"),
    re.compile(r"^[TRS][0-9]{2}[A-Z]{2}[0-9]{4}[A-Z]$"),
]
GST_LEGACY_PATTERN = re.compile(r"^GST[0-9]{8}$")
GST_M_PATTERN = re.compile(r"^M([0-9])-([0-9]{7})-([0-9])$")

_UEN_IN_TEXT = [
    re.compile(r"\b([0-9]{8,9}[A-Z])\b"),
    re.compile(r"\b([TRS][0-9]{2}[A-Z]{2}[0-9]{4}[A-Z])\b"),
]
_GST_IN_TEXT = [
    re.compile(
        r"\bGST\s*(?:REG(?:ISTRATION)?\.?\s*(?:NO\.?|NUMBER)?\s*:?\s*)?"
        r"((?=[A-Z-]*[0-9])[A-Z0-9-]{8,12})\b",
        re.I,
    ),
    re.compile(r"\b(GST[0-9]{8})\b"),
    re.compile(r"\b(M[0-9]-[0-9]{7}-[0-9])\b"),
]

_CONFUSABLES = {"O": "0", "o": "0", "I": "1", "l": "1"}
# A confusable letter inside a numeric run: followed by a digit, or preceded by
# a digit and not the final check character.
_CONFUSABLE_IN_DIGITS = re.compile(r"[OoIl](?=[0-9])|(?<=[0-9])[OoIl](?=.)")


def _fix_digit_confusions(value: str) -> str:
    previous = None
    while previous != value:
        previous = value
        value = _CONFUSABLE_IN_DIGITS.sub(lambda m: _CONFUSABLES[m.group(0)], value)
    return value


def normalize_uen(value: str | None) -> str | None:
    """Normalize an OCR'd UEN: strip separators, fix O/0 and I/l/1 in digit runs, uppercase."""
    if not value:
        return None
    cleaned = re.sub(r"[^0-9A-Za-z]", "", value)
    if not cleaned:
        return None
    return _fix_digit_confusions(cleaned).upper()


def normalize_gst_number(value: str | None) -> str | None:
    """Normalize a GST registration number into its canonical written form."""
    if not value:
        return None
    cleaned = re.sub(r"[^0-9A-Za-z]", "", value)
    if not cleaned:
        return None
    upper = cleaned.upper()
    if upper.startswith("GST"):
        return "GST" + _fix_digit_confusions(cleaned[3:]).upper()
    cleaned = _fix_digit_confusions(cleaned).upper()
    if re.fullmatch(r"[0-9]{8}", cleaned):
        return f"GST{cleaned}"
    m_form = re.fullmatch(r"M([0-9])([0-9]{7})([0-9])", cleaned)
    if m_form:
        return f"M{m_form.group(1)}-{m_form.group(2)}-{m_form.group(3)}"
    return cleaned


def is_valid_uen(value: str | None) -> bool:
    if not value:
        return False
    return any(pattern.match(value) for pattern in UEN_PATTERNS)


def is_valid_gst_number(value: str | None) -> bool:
    """Check a normalized GST registration number.

    The M-form carries a check digit equal to the last digit of its serial.
    """
    if not value:
        return False
    if GST_LEGACY_PATTERN.match(value) or is_valid_uen(value):
        return True
    m_form = GST_M_PATTERN.match(value)
    if m_form:
        return int(m_form.group(2)) % 10 == int(m_form.group(3))
    return False


def find_uen(text: str) -> str | None:
    """Return the first UEN-shaped token in free text."""
    for pattern in _UEN_IN_TEXT:
        match = pattern.search(text)
        if match:
            return match.group(1)
    return None


def find_gst_number(text: str) -> str | None:
    """Return the first GST registration number in free text, normalized."""
    for pattern in _GST_IN_TEXT:
        match = pattern.search(text)
        if match:
            return normalize_gst_number(match.group(1))
    return None
