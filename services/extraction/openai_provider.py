"""OpenAI-based extraction provider for invoice field extraction.

Reads the document text layer (pdfplumber / Tesseract) and asks the model to
fill a structured invoice schema via function calling. Includes retry logic
with exponential backoff for transient API errors.
"""

import json
import os
from typing import Any

from openai import APIConnectionError, APITimeoutError, OpenAI, RateLimitError
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from services.extraction.base import ProviderResult, TextExtractionProvider
from services.extraction.parsing import build_fields
from services.extraction.totals import reconcile_totals

_NULLABLE_STRING = {"type": ["string", "null"]}
_NULLABLE_NUMBER = {"type": ["number", "null"]}

INVOICE_FUNCTION_SCHEMA: dict[str, Any] = {
    "name": "extract_invoice_data",
    "description": "Extract structured Singapore tax invoice data from document text",
    "parameters": {
        "type": "object",
        "properties": {
            "invoice_number": _NULLABLE_STRING,
            "invoice_date": {"type": ["string", "null"], "format": "date"},
            "due_date": {"type": ["string", "null"], "format": "date"},
            "customer_name": _NULLABLE_STRING,
            "customer_uen": _NULLABLE_STRING,
            "customer_address": _NULLABLE_STRING,
            "vendor_name": _NULLABLE_STRING,
            "vendor_uen": _NULLABLE_STRING,
            "vendor_gst_number": _NULLABLE_STRING,
            "vendor_address": _NULLABLE_STRING,
            "subtotal": _NULLABLE_NUMBER,
            "tax_amount": _NULLABLE_NUMBER,
            "total_amount": _NULLABLE_NUMBER,
            "currency": _NULLABLE_STRING,
            "payment_terms": _NULLABLE_STRING,
            "items": {
                "type": "array",
                "items": {
                    "type": "object",
                    "properties": {
                        "description": {"type": "string"},
                        "quantity": _NULLABLE_NUMBER,
                        "unit_price": _NULLABLE_NUMBER,
                        "amount": _NULLABLE_NUMBER,
                        "tax_rate": _NULLABLE_NUMBER,
                        "tax_category": {"type": ["string", "null"], "enum": ["S", "Z", "E", None]},
                    },
                },
            },
        },
    },
}


class OpenAIExtractionProvider(TextExtractionProvider):
    """OpenAI-based extraction provider.

    Uses OpenAI API with function calling for structured outputs.
    Requires OPENAI_API_KEY environment variable.
    """

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._client: OpenAI | None = None

    @property
    def provider_name(self) -> str:
        """Get provider name for logging/metrics.

        Returns:
            Provider identifier 'openai'
        """
        return "openai"

    def is_available(self) -> bool:
        """Check if OpenAI API key is configured.

        Returns:
            True if OPENAI_API_KEY environment variable is set
        """
        return os.getenv("OPENAI_API_KEY") is not None

    def extract_from_text(self, ocr_text: str) -> ProviderResult:
        """Extract structured invoice data from document text using OpenAI.

        Args:
            ocr_text: Raw text from OCR engine

        Returns:
            ProviderResult with structured invoice data or error, provider='openai'
        """
        if not self.is_available():
            return self._failure("OPENAI_API_KEY environment variable not set")

        if not ocr_text or not ocr_text.strip():
            return self._failure("Empty OCR text provided")

        try:
            api_key = os.getenv("OPENAI_API_KEY")
            if self._client is None or self._client.api_key != api_key:
                self._client = OpenAI(api_key=api_key)

            response = self._call_openai_with_retry(self._build_extraction_prompt(ocr_text))

            message = response.choices[0].message
            if message.function_call is None:
                return self._failure("No function call in API response")

            invoice_dict = json.loads(message.function_call.arguments)
            fields = reconcile_totals(build_fields(invoice_dict))

            return ProviderResult(fields=fields, success=True, provider=self.provider_name)

        except Exception as e:
            return self._failure(f"Extraction failed: {str(e)}")

    @retry(
        retry=retry_if_exception_type((APIConnectionError, APITimeoutError, RateLimitError)),
        wait=wait_exponential_jitter(initial=1, max=60),
        stop=stop_after_attempt(3),
        reraise=True,
    )
    def _call_openai_with_retry(self, prompt: str) -> Any:
        """Call OpenAI API with retry logic for transient errors.

        Args:
            prompt: Extraction prompt for the LLM

        Returns:
            OpenAI API response

        Raises:
            openai.APIError: After all retry attempts are exhausted
        """
        if self._client is None:
            raise RuntimeError("OpenAI client not initialized")

        return self._client.chat.completions.create(  # type: ignore[call-overload]
            model=self.settings.openai_model,
            messages=[
                {
                    "role": "system",
                    "content": "You are a Singapore tax invoice data extraction assistant.",
                },
                {"role": "user", "content": prompt},
            ],
            functions=[INVOICE_FUNCTION_SCHEMA],
            function_call={"name": "extract_invoice_data"},
            temperature=0,
        )

    def _build_extraction_prompt(self, ocr_text: str) -> str:
        """Build prompt for LLM extraction with a worked example.

        Args:
            ocr_text: Raw OCR text

        Returns:
            Formatted prompt string
        """
        return f"""Extract invoice information from the document text and return structured data.

Example:
Text: "ABC TRADING PTE LTD\\nUEN: 201234567A GST Reg No: 201234567A\\n\
TAX INVOICE\\nInvoice No: INV-2024-001 Date: 15/03/2024\\nBill To: XYZ Services Pte Ltd\\n\
Web design 1 2,000.00 2,000.00\\nSubtotal 2,000.00\\nGST 9% 180.00\\nTotal S$2,180.00\\n\
Terms: Net 30"

Expected Output: {{"invoice_number": "INV-2024-001", "invoice_date": "2024-03-15", \
"vendor_name": "ABC TRADING PTE LTD", "vendor_uen": "201234567A", \
"vendor_gst_number": "201234567A", "customer_name": "XYZ Services Pte Ltd", \
"subtotal": 2000.00, "tax_amount": 180.00, "total_amount": 2180.00, "currency": "SGD", \
"payment_terms": "Net 30", "items": [{{"description": "Web design", "quantity": 1, \
"unit_price": 2000.00, "amount": 2000.00, "tax_rate": 9, "tax_category": "S"}}]}}

Instructions:
- Dates are day-first: "15/03/2024" -> "2024-03-15"
- "Bill To" / "Customer" = customer, letterhead company = vendor
- UEN: 8-9 digits + letter (e.g. 53234567M, 201234567A) or T/S/R format (e.g. T20LL1234A)
- GST registration numbers look like a UEN, "GST12345678" or "M2-1234567-2"
- tax_category: S = standard-rated, Z = zero-rated (exports), E = exempt
- Currency defaults to SGD when amounts are shown as $ or S$
- Return null for any field not clearly present

Document text:
{ocr_text}"""
