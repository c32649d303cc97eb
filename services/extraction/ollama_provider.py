"""Ollama-based extraction provider for self-hosted LLM inference.

Uses local Ollama server for structured data extraction from document text.
Supports data sovereignty requirements by running entirely on-premises.

Requires Ollama server running on localhost:11434.
See: https://ollama.ai/
"""

import json
import logging
import re
from typing import Any

import httpx
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from services.extraction.base import ProviderResult, TextExtractionProvider
from services.extraction.parsing import build_fields
from services.extraction.totals import reconcile_totals

logger = logging.getLogger(__name__)


class OllamaExtractionProvider(TextExtractionProvider):
    """Ollama-based extraction provider for self-hosted LLM inference.

    Supports models like Qwen2.5, Llama3, Mistral.
    """

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._base_url = self.settings.ollama_base_url
        self._model = self.settings.ollama_model
        self._client = httpx.Client(timeout=120.0)  # LLMs can be slow

    @property
    def provider_name(self) -> str:
        return "ollama"

    def is_available(self) -> bool:
        """Check if Ollama server is running and model is available.

        Returns:
            True if Ollama server responds and model is loaded
        """
        try:
            response = self._client.get(f"{self._base_url}/api/tags")
            if response.status_code != 200:
                return False
            models = response.json().get("models", [])
            model_names = [m.get("name", "").split(":")[0] for m in models]
            return self._model.split(":")[0] in model_names
        except httpx.HTTPError:
            return False

    def extract_from_text(self, ocr_text: str) -> ProviderResult:
        """Extract structured invoice data from document text using Ollama.

        Args:
            ocr_text: Raw text from OCR engine

        Returns:
            ProviderResult with structured invoice data or error
        """
        if not ocr_text or not ocr_text.strip():
            return self._failure("Empty OCR text provided")

        try:
            response_text = self._call_ollama_with_retry(self._build_extraction_prompt(ocr_text))
            invoice_dict = self._parse_json_response(response_text)
            fields = reconcile_totals(build_fields(invoice_dict))

            return ProviderResult(fields=fields, success=True, provider=self.provider_name)

        except json.JSONDecodeError as e:
            logger.warning(f"Failed to parse JSON from Ollama response: {e}")
            return self._failure(f"JSON parsing failed: {str(e)}")
        except Exception as e:
            logger.error(f"Ollama extraction failed: {e}")
            return self._failure(f"Extraction failed: {str(e)}")

    @retry(
        retry=retry_if_exception_type((httpx.HTTPError, httpx.TimeoutException)),
        wait=wait_exponential_jitter(initial=1, max=30),
        stop=stop_after_attempt(3),
        reraise=True,
    )
    def _call_ollama_with_retry(self, prompt: str) -> str:
        """Call Ollama API with retry logic for transient errors.

        Args:
            prompt: Extraction prompt for the LLM

        Returns:
            Raw response text from Ollama

        Raises:
            httpx.HTTPError: After all retry attempts exhausted
        """
        response = self._client.post(
            f"{self._base_url}/api/generate",
            json={
                "model": self._model,
                "prompt": prompt,
                "stream": False,
                "format": "json",
                "options": {
                    "temperature": 0,
                    "num_predict": 2048,
                },
            },
        )
        response.raise_for_status()
        result: str = response.json().get("response", "")
        return result

    def _parse_json_response(self, response_text: str) -> dict[str, Any]:
        """Extract and parse JSON from LLM response.

        Handles common LLM quirks like markdown code blocks.

        Raises:
            json.JSONDecodeError: If no valid JSON found
        """
        json_match = re.search(r"```(?:json)?\s*([\s\S]*?)```", response_text)
        if json_match:
            result: dict[str, Any] = json.loads(json_match.group(1).strip())
            return result

        json_match = re.search(r"\{[\s\S]*\}", response_text)
        if json_match:
            result = json.loads(json_match.group(0))
            return result

        result = json.loads(response_text.strip())
        return result

    def _build_extraction_prompt(self, ocr_text: str) -> str:
        schema = (
            '{"invoice_number": string|null, "invoice_date": string|null (YYYY-MM-DD), '
            '"due_date": string|null, "customer_name": string|null, "customer_uen": string|null, '
            '"vendor_name": string|null, "vendor_uen": string|null, '
            '"vendor_gst_number": string|null, "vendor_address": string|null, '
            '"subtotal": number|null, "tax_amount": number|null, "total_amount": number|null, '
            '"currency": string|null, "payment_terms": string|null, '
            '"items": [{"description": string, "quantity": number, "unit_price": number, '
            '"amount": number, "tax_category": "S"|"Z"|"E"}]}'
        )

        example_input = (
            "XYZ SERVICES PTE LTD UEN 199912345K Tax Invoice No: TI-0042 "
            "Date: 02 January 2024 Bill To: ABC Trading Pte Ltd "
            "Consulting 10 100.00 1,000.00 Subtotal 1,000.00 GST @ 9% 90.00 Total 1,090.00"
        )
        example_output = (
            '{"invoice_number": "TI-0042", "invoice_date": "2024-01-02", '
            '"due_date": null, "customer_name": "ABC Trading Pte Ltd", "customer_uen": null, '
            '"vendor_name": "XYZ SERVICES PTE LTD", "vendor_uen": "199912345K", '
            '"vendor_gst_number": null, "vendor_address": null, '
            '"subtotal": 1000.00, "tax_amount": 90.00, "total_amount": 1090.00, '
            '"currency": "SGD", "payment_terms": null, '
            '"items": [{"description": "Consulting", "quantity": 10, "unit_price": 100.00, '
            '"amount": 1000.00, "tax_category": "S"}]}'
        )

        return f"""You are an invoice data extraction assistant for Singapore tax invoices. \
Extract invoice information from document text and return ONLY valid JSON.

SCHEMA (use null for missing fields):
{schema}

EXAMPLE:

Input: "{example_input}"
Output: {example_output}

INSTRUCTIONS:
- Dates are day-first: DD/MM/YYYY -> YYYY-MM-DD
- "Bill To:" or "Customer:" = customer, letterhead company = vendor
- UEN: 8-9 digits followed by a letter, or T/S/R + 2 digits + 2 letters + 4 digits + letter
- Return ONLY JSON, no explanation

INPUT:
{ocr_text}

OUTPUT:"""
