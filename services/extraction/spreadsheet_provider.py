"""Spreadsheet extraction provider.

Reads invoices prepared in Excel. Labelled cells ("Invoice No", "Bill To",
"GST Reg No", ...) are read from the value cell to their right (or below),
and the line-item table starts at the first row whose headers contain both
"description" and "amount". Item rows are read until a totals row or the
first blank row.

Based on openpyxl documentation:
https://openpyxl.readthedocs.io/en/stable/
"""

import io
import logging
import re
from typing import Any

import openpyxl

from services.extraction.base import ExtractionProvider, ProviderResult
from services.extraction.parsing import build_fields
from services.extraction.totals import reconcile_totals
from services.shared.media import SPREADSHEET_TYPES

logger = logging.getLogger(__name__)

# Rows scanned for header labels before the item table
LABEL_SCAN_ROWS = 20

FIELD_LABELS: dict[str, tuple[str, ...]] = {
    "invoice_number": (
        "invoice",
        "invoice no",
        "invoice number",
        "inv no",
        "tax invoice no",
        "tax invoice number",
    ),
    "invoice_date": ("date", "invoice date", "date of issue", "issue date"),
    "due_date": ("due date", "payment due", "payment due date"),
    "customer_name": ("bill to", "billed to", "customer", "customer name", "sold to", "client"),
    "customer_uen": ("customer uen", "buyer uen"),
    "customer_address": ("customer address", "billing address"),
    "vendor_name": ("from", "vendor", "supplier", "seller", "company"),
    "vendor_uen": ("uen", "vendor uen", "supplier uen", "company reg no", "company registration no"),
    "vendor_gst_number": (
        "gst reg no",
        "gst registration no",
        "gst registration number",
        "gst no",
    ),
    "vendor_address": ("address", "vendor address", "supplier address"),
    "subtotal": ("subtotal", "sub-total", "sub total", "total before gst", "net amount"),
    "tax_amount": ("gst", "gst amount", "tax", "tax amount"),
    "total_amount": ("total", "grand total", "total amount", "amount due", "total payable"),
    "payment_terms": ("terms", "payment terms"),
    "currency": ("currency",),
}

_LABEL_LOOKUP = {label: field for field, labels in FIELD_LABELS.items() for label in labels}
_TOTAL_FIELDS = frozenset({"subtotal", "tax_amount", "total_amount"})
# Labels that head a block; their value may sit in the cell below
_BLOCK_FIELDS = frozenset({"customer_name", "customer_address", "vendor_name", "vendor_address"})


def _normalize_label(value: Any) -> str:
    text = str(value).lower()
    text = re.sub(r"\(.*?\)|@?\s*\d+(\.\d+)?\s*%", " ", text)
    text = re.sub(r"[.:#]", " ", text)
    return " ".join(text.split())


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


class SpreadsheetExtractionProvider(ExtractionProvider):
    """Structured extraction from .xlsx invoices."""

    supported_media_types = SPREADSHEET_TYPES

    @property
    def provider_name(self) -> str:
        return "spreadsheet"

    def is_available(self) -> bool:
        return True

    def extract(self, file_bytes: bytes, file_name: str, mime_type: str) -> ProviderResult:
        """Parse the first worksheet of a workbook into invoice fields.

        Args:
            file_bytes: Workbook content
            file_name: Original file name
            mime_type: Spreadsheet media type

        Returns:
            ProviderResult with structured invoice data or error
        """
        if not self.supports(mime_type):
            return self._failure(f"Unsupported media type: {mime_type}")

        try:
            workbook = openpyxl.load_workbook(io.BytesIO(file_bytes), data_only=True)
        except Exception as e:
            logger.warning(f"Could not open workbook {file_name}: {e}")
            return self._failure(f"Unreadable spreadsheet: {str(e)}")

        try:
            rows = [list(row) for row in workbook.worksheets[0].iter_rows(values_only=True)]
        finally:
            workbook.close()

        data = self._parse_rows(rows)
        if not data.get("items") and len(data) <= 1:
            return self._failure("No invoice data found in spreadsheet")

        fields = reconcile_totals(build_fields(data))
        return ProviderResult(fields=fields, success=True, provider=self.provider_name)

    def _parse_rows(self, rows: list[list[Any]]) -> dict[str, Any]:
        header_index, columns = self._find_item_header(rows)
        table_end = header_index

        data: dict[str, Any] = {}
        if header_index is not None:
            items, table_end = self._parse_items(rows, header_index, columns)
            data["items"] = items

        for index, row in enumerate(rows):
            in_table = header_index is not None and header_index <= index < table_end
            before_table = header_index is None or index < header_index
            if in_table or (before_table and index >= LABEL_SCAN_ROWS):
                continue
            self._read_labels(rows, index, row, data)

        return data

    def _read_labels(
        self, rows: list[list[Any]], index: int, row: list[Any], data: dict[str, Any]
    ) -> None:
        for col, cell in enumerate(row):
            if _is_blank(cell) or not isinstance(cell, str):
                continue

            # "Invoice No: INV-001" in a single cell
            if ":" in cell:
                label, _, inline_value = cell.partition(":")
                field = _LABEL_LOOKUP.get(_normalize_label(label))
                if field and inline_value.strip():
                    data.setdefault(field, inline_value.strip())
                    continue

            field = _LABEL_LOOKUP.get(_normalize_label(cell))
            if field is None or field in data:
                continue

            value = next((v for v in row[col + 1 :] if not _is_blank(v)), None)
            below_allowed = field in _BLOCK_FIELDS and index + 1 < len(rows)
            if value is None and below_allowed and col < len(rows[index + 1]):
                below = rows[index + 1][col]
                if not _is_blank(below) and _LABEL_LOOKUP.get(_normalize_label(below)) is None:
                    value = below
            if value is not None:
                data[field] = value

    def _find_item_header(self, rows: list[list[Any]]) -> tuple[int | None, dict[str, int]]:
        for index, row in enumerate(rows):
            headers = [_normalize_label(c) if not _is_blank(c) else "" for c in row]
            has_description = any("description" in h or h == "item" for h in headers)
            if has_description and any("amount" in h for h in headers):
                return index, self._map_columns(headers)
        return None, {}

    @staticmethod
    def _map_columns(headers: list[str]) -> dict[str, int]:
        columns: dict[str, int] = {}
        for col, header in enumerate(headers):
            if not header:
                continue
            if ("description" in header or header == "item") and "description" not in columns:
                columns["description"] = col
            elif header in {"qty", "quantity"} or header.startswith("qty"):
                columns.setdefault("quantity", col)
            elif "gst" in header or "tax" in header:
                if "code" in header or "category" in header:
                    columns.setdefault("tax_category", col)
                elif "amount" not in header:
                    columns.setdefault("tax_rate", col)
            elif "price" in header or header in {"rate", "unit cost"}:
                columns.setdefault("unit_price", col)
            elif "amount" in header or header == "line total":
                columns.setdefault("amount", col)
        return columns

    def _parse_items(
        self, rows: list[list[Any]], header_index: int, columns: dict[str, int]
    ) -> tuple[list[dict[str, Any]], int]:
        items: list[dict[str, Any]] = []
        index = header_index + 1
        while index < len(rows):
            row = rows[index]
            if all(_is_blank(c) for c in row):
                if items:
                    break
                index += 1
                continue

            first_text = next((c for c in row if isinstance(c, str) and c.strip()), "")
            if _LABEL_LOOKUP.get(_normalize_label(first_text)) in _TOTAL_FIELDS:
                break

            item = {
                name: row[col] if col < len(row) else None for name, col in columns.items()
            }
            if not _is_blank(item.get("description")) or not _is_blank(item.get("amount")):
                items.append(item)
            index += 1
        return items, index
