"""Unit tests for extraction provider factory.

Tests cover:
- Provider registry lookups
- Factory function provider creation in configured order
- Unavailable providers left out
- Error handling for unknown providers
"""

from unittest.mock import MagicMock

import pytest

from services.extraction.base import ExtractionProvider, ProviderResult
from services.extraction.factory import ProviderRegistry, create_extraction_providers
from services.extraction.openai_provider import OpenAIExtractionProvider
from services.extraction.spreadsheet_provider import SpreadsheetExtractionProvider
from services.shared.config import Settings


class StaticProvider(ExtractionProvider):
    """Always available provider used to exercise registration."""

    def extract(self, file_bytes: bytes, file_name: str, mime_type: str) -> ProviderResult:
        return self._failure("not implemented")

    def is_available(self) -> bool:
        return True

    @property
    def provider_name(self) -> str:
        return "static"


def test_provider_registry_default_providers() -> None:
    """Test that registry contains default providers."""
    providers = ProviderRegistry.list_providers()

    for name in ("spreadsheet", "textract", "openai", "ollama"):
        assert name in providers


def test_provider_registry_get_openai() -> None:
    """Test getting OpenAI provider from registry."""
    assert ProviderRegistry.get_provider_class("openai") == OpenAIExtractionProvider


def test_provider_registry_unknown_provider() -> None:
    """Test that unknown provider raises ValueError listing the available ones."""
    with pytest.raises(ValueError, match="Unknown extraction provider") as exc_info:
        ProviderRegistry.get_provider_class("nonexistent")

    assert "Available providers" in str(exc_info.value)
    assert "spreadsheet" in str(exc_info.value)


def test_provider_registry_register_new_provider() -> None:
    """Test registering a new provider."""
    ProviderRegistry.register("static", StaticProvider)
    try:
        assert "static" in ProviderRegistry.list_providers()
        assert ProviderRegistry.get_provider_class("static") == StaticProvider
    finally:
        del ProviderRegistry._providers["static"]


def test_create_providers_in_configured_order(monkeypatch: pytest.MonkeyPatch) -> None:
    """Available providers are returned in the configured priority order."""
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    settings = Settings(_env_file=None, extraction_providers=["openai", "spreadsheet"])

    providers = create_extraction_providers(settings, ocr_service=MagicMock())

    assert list(providers) == ["openai", "spreadsheet"]
    assert isinstance(providers["openai"], OpenAIExtractionProvider)
    assert isinstance(providers["spreadsheet"], SpreadsheetExtractionProvider)


def test_unavailable_providers_skipped(monkeypatch: pytest.MonkeyPatch) -> None:
    """Providers without credentials are left out of the set."""
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    settings = Settings(
        _env_file=None,
        extraction_providers=["spreadsheet", "textract", "openai"],
        textract_enabled=False,
    )

    providers = create_extraction_providers(settings, ocr_service=MagicMock())

    assert list(providers) == ["spreadsheet"]


def test_text_providers_share_ocr_service(monkeypatch: pytest.MonkeyPatch) -> None:
    """Text-based providers receive the shared OCR service."""
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    ocr_service = MagicMock()
    settings = Settings(_env_file=None, extraction_providers=["openai"])

    providers = create_extraction_providers(settings, ocr_service=ocr_service)

    assert providers["openai"]._ocr is ocr_service


def test_create_providers_unknown_name() -> None:
    """Test that unknown configured providers raise ValueError."""
    settings = Settings(_env_file=None, extraction_providers=["invalid_provider"])

    with pytest.raises(ValueError, match="Unknown extraction provider"):
        create_extraction_providers(settings, ocr_service=MagicMock())


def test_no_available_providers_returns_empty(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    settings = Settings(_env_file=None, extraction_providers=["openai"])

    assert create_extraction_providers(settings, ocr_service=MagicMock()) == {}
