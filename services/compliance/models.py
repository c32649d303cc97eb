"""Validation result models."""

from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class Severity(str, Enum):
    CRITICAL = "critical"
    ERROR = "error"
    WARNING = "warning"


class Finding(BaseModel):
    """A single problem found on an invoice.

    Attributes:
        field: Invoice field path, e.g. ``total_amount`` or ``items[0].quantity``
        code: Machine-readable finding code, e.g. ``INCORRECT_TOTAL``
        severity: critical findings make the invoice invalid
    """

    field: str
    code: str
    message: str
    severity: Severity
    details: dict[str, Any] = Field(default_factory=dict)


class Suggestion(BaseModel):
    """A proposed correction, optionally applicable by auto-fix."""

    field: str
    code: str
    suggestion: str
    auto_fix_value: Any = None
    auto_fix_available: bool = True
    confidence: float = Field(ge=0, le=1)


class ComplianceCheck(BaseModel):
    name: str
    passed: bool
    message: str | None = None


class ValidationResult(BaseModel):
    """Outcome of validating one invoice."""

    is_valid: bool
    findings: list[Finding] = Field(default_factory=list)
    suggestions: list[Suggestion] = Field(default_factory=list)
    score: int = Field(ge=0, le=100)
    gst_rate: Decimal
    effective_date: date  # invoice date, or the validation date when absent
    rate_effective_from: date
    compliance_checks: list[ComplianceCheck] = Field(default_factory=list)

    @property
    def errors(self) -> list[Finding]:
        return [f for f in self.findings if f.severity != Severity.WARNING]

    @property
    def warnings(self) -> list[Finding]:
        return [f for f in self.findings if f.severity == Severity.WARNING]

    @property
    def critical_codes(self) -> list[str]:
        return [f.code for f in self.findings if f.severity == Severity.CRITICAL]

    def codes(self) -> set[str]:
        return {f.code for f in self.findings}
