"""Unit tests for OpenAIExtractionProvider.

Tests the function-calling extraction path with a mocked OpenAI client.
"""

import json
from decimal import Decimal
from unittest.mock import MagicMock, patch

import pytest

from services.extraction.openai_provider import INVOICE_FUNCTION_SCHEMA, OpenAIExtractionProvider
from services.shared.config import Settings


@pytest.fixture
def provider(monkeypatch: pytest.MonkeyPatch) -> OpenAIExtractionProvider:
    """Create OpenAI provider with an API key configured."""
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    return OpenAIExtractionProvider(Settings(), ocr_service=MagicMock())


def function_call_response(arguments: dict | None) -> MagicMock:
    response = MagicMock()
    message = response.choices[0].message
    if arguments is None:
        message.function_call = None
    else:
        message.function_call.arguments = json.dumps(arguments)
    return response


def test_unavailable_without_api_key(monkeypatch: pytest.MonkeyPatch) -> None:
    """Without OPENAI_API_KEY the provider is unavailable and fails fast."""
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    provider = OpenAIExtractionProvider(Settings(), ocr_service=MagicMock())

    result = provider.extract_from_text("Invoice text")

    assert provider.is_available() is False
    assert result.success is False
    assert result.error == "OPENAI_API_KEY environment variable not set"


def test_empty_text_returns_error(provider: OpenAIExtractionProvider) -> None:
    result = provider.extract_from_text("  ")

    assert result.success is False
    assert result.error == "Empty OCR text provided"


@patch("services.extraction.openai_provider.OpenAI")
def test_function_call_arguments_parsed(mock_openai: MagicMock, provider: OpenAIExtractionProvider) -> None:
    """Function call arguments become reconciled invoice fields."""
    client = mock_openai.return_value
    client.api_key = "sk-test"
    client.chat.completions.create.return_value = function_call_response(
        {
            "invoice_number": "INV-2024-001",
            "invoice_date": "2024-03-15",
            "customer_name": "XYZ Services Pte Ltd",
            "vendor_gst_number": "201234567A",
            "subtotal": 2000.0,
            "tax_amount": 180.0,
            "total_amount": 2180.0,
            "items": [{"description": "Web design", "quantity": 1, "unit_price": 2000, "amount": 2000}],
        }
    )

    result = provider.extract_from_text("ABC TRADING PTE LTD TAX INVOICE ...")

    assert result.success is True
    assert result.provider == "openai"
    assert result.fields is not None
    assert result.fields.invoice_number == "INV-2024-001"
    assert result.fields.total_amount == Decimal("2180.00")
    assert len(result.fields.items) == 1
    call_kwargs = client.chat.completions.create.call_args.kwargs
    assert call_kwargs["functions"] == [INVOICE_FUNCTION_SCHEMA]
    assert call_kwargs["temperature"] == 0


@patch("services.extraction.openai_provider.OpenAI")
def test_missing_function_call(mock_openai: MagicMock, provider: OpenAIExtractionProvider) -> None:
    """A response without a function call is a failure."""
    client = mock_openai.return_value
    client.api_key = "sk-test"
    client.chat.completions.create.return_value = function_call_response(None)

    result = provider.extract_from_text("Invoice text")

    assert result.success is False
    assert result.error == "No function call in API response"


@patch("services.extraction.openai_provider.OpenAI")
def test_api_exception_reported(mock_openai: MagicMock, provider: OpenAIExtractionProvider) -> None:
    """Non-transient API errors are reported without retrying."""
    client = mock_openai.return_value
    client.api_key = "sk-test"
    client.chat.completions.create.side_effect = ValueError("bad request")

    result = provider.extract_from_text("Invoice text")

    assert result.success is False
    assert result.error == "Extraction failed: bad request"
    assert client.chat.completions.create.call_count == 1


def test_prompt_mentions_singapore_identifiers(provider: OpenAIExtractionProvider) -> None:
    prompt = provider._build_extraction_prompt("document body")

    assert "UEN" in prompt
    assert "GST registration numbers" in prompt
    assert prompt.endswith("document body")
