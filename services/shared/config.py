"""Shared configuration management for the invoice pipeline.

Based on Pydantic Settings v2 best practices:
https://docs.pydantic.dev/latest/concepts/pydantic_settings/
"""

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings with environment variable support.

    All settings can be overridden via environment variables with the prefix 'APP_'.
    Example: APP_LOG_LEVEL=debug
    """

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    environment: Literal["development", "staging", "production"] = Field(
        default="development",
        description="Deployment environment",
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Logging level",
    )

    # Service configuration
    service_name: str = Field(
        default="invoice-intelligence-pipeline",
        description="Service identifier for metrics and logs",
    )
    service_version: str = Field(
        default="0.1.0",
        description="Service version",
    )

    # Extraction orchestration
    extraction_providers: list[str] = Field(
        default=["spreadsheet", "textract", "openai", "ollama"],
        description=(
            "Extraction providers in priority order. Structured providers "
            "(spreadsheet, textract) should come before LLM providers."
        ),
    )
    extraction_min_confidence: float = Field(
        default=0.7,
        ge=0,
        le=1,
        description="Confidence needed for the preferred provider to short-circuit",
    )
    extraction_early_return_confidence: float = Field(
        default=0.9,
        ge=0,
        le=1,
        description="Confidence at which any provider result is returned without merging",
    )
    extraction_cache_size: int = Field(
        default=100,
        ge=1,
        description="Maximum number of cached extraction results",
    )

    # Template matching
    template_matching_enabled: bool = Field(
        default=True,
        description="Try template matching before calling any provider",
    )
    template_fast_path_confidence: float = Field(
        default=0.85,
        ge=0,
        le=1,
        description="Template confidence at which providers are skipped entirely",
    )
    template_working_set_size: int = Field(
        default=100,
        ge=0,
        description="Number of stored templates loaded into memory, ranked by usage",
    )

    # AWS Textract (extraction provider "textract")
    aws_region: str = Field(
        default="ap-southeast-1",
        description="AWS region for Textract AnalyzeExpense calls",
    )
    textract_enabled: bool = Field(
        default=False,
        description="Enable the Textract provider (requires AWS credentials)",
    )

    # OpenAI configuration (extraction provider "openai")
    openai_model: str = Field(
        default="gpt-4o-mini",
        description="OpenAI model used for invoice extraction",
    )

    # Ollama configuration (extraction provider "ollama")
    ollama_base_url: str = Field(
        default="http://localhost:11434",
        description="Ollama server base URL",
    )
    ollama_model: str = Field(
        default="qwen2.5:7b",
        description="Ollama model to use for extraction (e.g., qwen2.5:7b, llama3.1:8b)",
    )

    # Storage configuration (S3-compatible object storage)
    storage_enabled: bool = Field(
        default=False,
        description="Enable document storage in S3-compatible storage (MinIO)",
    )
    storage_endpoint: str = Field(
        default="localhost:9000",
        description="S3-compatible storage endpoint (host:port)",
    )
    storage_access_key: str = Field(
        default="",
        description="Storage access key (use env var APP_STORAGE_ACCESS_KEY)",
    )
    storage_secret_key: str = Field(
        default="",
        description="Storage secret key (use env var APP_STORAGE_SECRET_KEY)",
    )
    storage_bucket: str = Field(
        default="invoices",
        description="Default bucket name for source and generated documents",
    )
    storage_secure: bool = Field(
        default=False,
        description="Use HTTPS for storage connections",
    )
    storage_public_base_url: str | None = Field(
        default=None,
        description="Public base URL for stored objects (defaults to the endpoint)",
    )

    # Queue configuration
    queue_max_jobs: int = Field(
        default=3,
        ge=1,
        description="Worker pool size (jobs processed concurrently)",
    )
    queue_job_timeout: int = Field(
        default=300,
        ge=1,
        description="Deadline for a single job attempt in seconds",
    )
    queue_rate_limit_per_second: int = Field(
        default=10,
        ge=1,
        description="Maximum number of jobs started per second",
    )
    queue_max_attempts: int = Field(
        default=3,
        ge=1,
        description="Maximum processing attempts per job before terminal failure",
    )
    queue_backoff_base_seconds: float = Field(
        default=2.0,
        gt=0,
        description="First retry delay; doubles on each subsequent attempt",
    )
    queue_max_failed_jobs: int = Field(
        default=100,
        description="Queue health threshold for failed jobs",
    )
    queue_max_waiting_jobs: int = Field(
        default=1000,
        description="Queue health threshold for waiting jobs",
    )

    # Validation
    validation_cache_enabled: bool = Field(
        default=True,
        description="Cache validation results by invoice number, date and total",
    )
    validation_cache_size: int = Field(
        default=100,
        ge=1,
        description="Maximum number of cached validation results",
    )
    critical_findings_outcome: Literal["draft", "failed"] = Field(
        default="draft",
        description=(
            "Invoice status when validation reports critical findings: draft keeps the "
            "invoice for review, failed marks it failed. No document is generated either way."
        ),
    )

    # Admission control
    max_upload_bytes: int = Field(
        default=10 * 1024 * 1024,
        description="Maximum accepted document size in bytes",
    )
    plan_limits: dict[str, int] = Field(
        default={"starter": 50, "professional": 200, "business": -1},
        description="Monthly invoice limit per subscription plan (-1 = unlimited)",
    )
    default_plan: str = Field(
        default="starter",
        description="Plan assumed for owners without a subscription record",
    )

    # Notifications
    webhook_url: str | None = Field(
        default=None,
        description="Optional URL notified when a job completes or fails",
    )


def get_settings() -> Settings:
    """Factory function to get settings instance.

    Returns:
        Configured Settings instance
    """
    return Settings()
