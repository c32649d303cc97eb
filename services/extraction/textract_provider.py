"""AWS Textract extraction provider.

Primary structured-extraction source for scanned PDFs and images. Uses the
AnalyzeExpense API, which returns typed summary fields (invoice id, dates,
vendor/receiver, totals) and line-item groups. Singapore identifiers (UEN,
GST registration number) are not typed by Textract and are recovered from
the detected text lines.

Based on boto3 documentation:
https://boto3.amazonaws.com/v1/documentation/api/latest/reference/services/textract/client/analyze_expense.html
"""

import logging
import re
from typing import Any

import boto3
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectTimeoutError,
    EndpointConnectionError,
    ReadTimeoutError,
)
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from services.extraction.base import ExtractionProvider, ProviderResult
from services.extraction.parsing import build_fields
from services.extraction.totals import reconcile_totals
from services.shared.config import Settings
from services.shared.identifiers import find_gst_number, find_uen
from services.shared.media import IMAGE_TYPES, PDF

logger = logging.getLogger(__name__)

SUMMARY_FIELD_MAP = {
    "INVOICE_RECEIPT_ID": "invoice_number",
    "INVOICE_RECEIPT_DATE": "invoice_date",
    "DUE_DATE": "due_date",
    "RECEIVER_NAME": "customer_name",
    "RECEIVER_ADDRESS": "customer_address",
    "VENDOR_NAME": "vendor_name",
    "VENDOR_ADDRESS": "vendor_address",
    "VENDOR_GST_NUMBER": "vendor_gst_number",
    "TAX_PAYER_ID": "vendor_gst_number",
    "SUBTOTAL": "subtotal",
    "TAX": "tax_amount",
    "TOTAL": "total_amount",
    "AMOUNT_DUE": "total_amount",
    "PAYMENT_TERMS": "payment_terms",
}

LINE_ITEM_FIELD_MAP = {
    "ITEM": "description",
    "DESCRIPTION": "description",
    "QUANTITY": "quantity",
    "UNIT_PRICE": "unit_price",
    "PRICE": "amount",
}

_COMPANY_SUFFIX = re.compile(r"\b(PTE\.?\s*LTD|LTD|LLP|PRIVATE LIMITED)\b", re.I)
_TRANSIENT_ERRORS = (EndpointConnectionError, ConnectTimeoutError, ReadTimeoutError)


class TextractExtractionProvider(ExtractionProvider):
    """Textract AnalyzeExpense provider.

    Requires AWS credentials resolvable by boto3 and ``textract_enabled``.
    """

    supported_media_types = frozenset({PDF}) | IMAGE_TYPES

    def __init__(self, settings: Settings) -> None:
        super().__init__(settings)
        self._client: Any = None

    @property
    def provider_name(self) -> str:
        return "textract"

    def is_available(self) -> bool:
        """Check that the provider is enabled and AWS credentials resolve."""
        if not self.settings.textract_enabled:
            return False
        try:
            return boto3.Session().get_credentials() is not None
        except BotoCoreError:
            return False

    def _get_client(self) -> Any:
        if self._client is None:
            self._client = boto3.client("textract", region_name=self.settings.aws_region)
        return self._client

    def extract(self, file_bytes: bytes, file_name: str, mime_type: str) -> ProviderResult:
        """Run AnalyzeExpense and map the response to invoice fields.

        Args:
            file_bytes: Document content (single-page PDF, JPEG or PNG)
            file_name: Original file name
            mime_type: Document media type

        Returns:
            ProviderResult with structured invoice data or error
        """
        if not self.supports(mime_type):
            return self._failure(f"Unsupported media type: {mime_type}")

        try:
            response = self._analyze_expense(file_bytes)
        except (BotoCoreError, ClientError) as e:
            logger.warning(f"Textract AnalyzeExpense failed for {file_name}: {e}")
            return self._failure(f"Textract request failed: {str(e)}")

        documents = response.get("ExpenseDocuments") or []
        if not documents:
            return self._failure("Textract returned no expense documents")

        data, raw_text = self._parse_expense_document(documents[0])
        fields = reconcile_totals(build_fields(data))
        return ProviderResult(
            fields=fields, success=True, provider=self.provider_name, raw_text=raw_text
        )

    @retry(
        retry=retry_if_exception_type(_TRANSIENT_ERRORS),
        stop=stop_after_attempt(3),
        wait=wait_exponential_jitter(initial=1, max=10),
        reraise=True,
    )
    def _analyze_expense(self, file_bytes: bytes) -> dict[str, Any]:
        result: dict[str, Any] = self._get_client().analyze_expense(
            Document={"Bytes": file_bytes}
        )
        return result

    def _parse_expense_document(self, document: dict[str, Any]) -> tuple[dict[str, Any], str]:
        data: dict[str, Any] = {}

        for summary in document.get("SummaryFields", []):
            field_type = summary.get("Type", {}).get("Text", "")
            value = summary.get("ValueDetection", {}).get("Text")
            target = SUMMARY_FIELD_MAP.get(field_type)
            if target and value and target not in data:
                data[target] = value

        items: list[dict[str, Any]] = []
        for group in document.get("LineItemGroups", []):
            for line_item in group.get("LineItems", []):
                item: dict[str, Any] = {}
                for expense_field in line_item.get("LineItemExpenseFields", []):
                    field_type = expense_field.get("Type", {}).get("Text", "")
                    value = expense_field.get("ValueDetection", {}).get("Text")
                    target = LINE_ITEM_FIELD_MAP.get(field_type)
                    if target and value and target not in item:
                        item[target] = value
                if item:
                    items.append(item)
        data["items"] = items

        lines = [
            block.get("Text", "")
            for block in document.get("Blocks", [])
            if block.get("BlockType") == "LINE"
        ]
        raw_text = "\n".join(lines)

        if "vendor_uen" not in data:
            uen = find_uen(raw_text)
            if uen:
                data["vendor_uen"] = uen
        if "vendor_gst_number" not in data:
            gst_number = find_gst_number(raw_text)
            if gst_number:
                data["vendor_gst_number"] = gst_number
        if "vendor_name" not in data:
            # Letterhead: the first line carrying a company suffix
            header = next((line for line in lines[:10] if _COMPANY_SUFFIX.search(line)), None)
            if header:
                data["vendor_name"] = header.strip()

        return data, raw_text
