"""Factory for creating extraction providers based on configuration.

Implements Factory Pattern for provider selection with registry pattern for extensibility.

Based on:
- Factory Pattern: https://refactoring.guru/design-patterns/factory-method/python
- Registry Pattern: Python Cookbook 3rd Edition, Recipe 9.22

Providers are chosen and ordered by ``Settings.extraction_providers`` at
startup; the orchestrator never inspects concrete provider types.
"""

import logging

from services.extraction.base import ExtractionProvider, TextExtractionProvider
from services.extraction.ollama_provider import OllamaExtractionProvider
from services.extraction.openai_provider import OpenAIExtractionProvider
from services.extraction.spreadsheet_provider import SpreadsheetExtractionProvider
from services.extraction.textract_provider import TextractExtractionProvider
from services.ocr.service import OCRService
from services.shared.config import Settings

logger = logging.getLogger(__name__)


class ProviderRegistry:
    """Registry of available extraction providers.

    Maintains a mapping of provider names to their implementation classes.
    Supports runtime registration of new providers.
    """

    _providers: dict[str, type[ExtractionProvider]] = {
        "spreadsheet": SpreadsheetExtractionProvider,
        "textract": TextractExtractionProvider,
        "openai": OpenAIExtractionProvider,
        "ollama": OllamaExtractionProvider,
    }

    @classmethod
    def register(cls, name: str, provider_class: type[ExtractionProvider]) -> None:
        """Register a new provider.

        Args:
            name: Provider identifier (as listed in Settings.extraction_providers)
            provider_class: Provider class implementing ExtractionProvider interface
        """
        cls._providers[name] = provider_class
        logger.info(f"Registered extraction provider: {name}")

    @classmethod
    def get_provider_class(cls, name: str) -> type[ExtractionProvider]:
        """Get provider class by name.

        Args:
            name: Provider identifier

        Returns:
            Provider class implementing ExtractionProvider

        Raises:
            ValueError: If provider not found in registry
        """
        if name not in cls._providers:
            available = ", ".join(cls._providers.keys())
            raise ValueError(
                f"Unknown extraction provider: '{name}'. " f"Available providers: {available}"
            )
        return cls._providers[name]

    @classmethod
    def list_providers(cls) -> list[str]:
        """List all registered provider names.

        Returns:
            List of provider names
        """
        return list(cls._providers.keys())


def create_extraction_providers(
    settings: Settings, ocr_service: OCRService | None = None
) -> dict[str, ExtractionProvider]:
    """Instantiate the configured providers in priority order.

    Providers that report themselves unavailable (missing API key, disabled,
    server unreachable) are logged and left out.

    Args:
        settings: Application settings with extraction_providers list
        ocr_service: Shared text layer for text-based providers

    Returns:
        Ordered mapping of provider name to provider instance

    Raises:
        ValueError: If a configured provider is unknown

    Example:
        >>> settings = Settings(extraction_providers=["spreadsheet", "openai"])
        >>> providers = create_extraction_providers(settings)
        >>> list(providers)
        ['spreadsheet']  # when OPENAI_API_KEY is unset
    """
    ocr_service = ocr_service or OCRService(settings)
    providers: dict[str, ExtractionProvider] = {}

    for name in settings.extraction_providers:
        provider_class = ProviderRegistry.get_provider_class(name)
        if issubclass(provider_class, TextExtractionProvider):
            provider: ExtractionProvider = provider_class(settings, ocr_service=ocr_service)
        else:
            provider = provider_class(settings)

        if not provider.is_available():
            logger.warning(
                f"Extraction provider '{name}' is not available. "
                f"Check configuration (e.g., API keys, credentials, server URL)."
            )
            continue

        providers[name] = provider
        logger.info(f"Created extraction provider: {name}")

    if not providers:
        logger.warning("No extraction providers available; only template matching can succeed")
    return providers
