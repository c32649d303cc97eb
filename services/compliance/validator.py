"""Compliance validation engine.

Runs the rule registry over an invoice record, scores the outcome and
proposes corrections. Validation never raises on malformed input: missing
or invalid data is reported as findings.
"""

import logging
import re
from datetime import date
from typing import Any

from services.compliance.models import ComplianceCheck, Finding, Severity, Suggestion, ValidationResult
from services.compliance.rules import RULES, RuleContext, ValidationRule, compute_totals
from services.records.models import InvoiceRecord
from services.records.store import RecordStore
from services.shared import metrics
from services.shared.cache import LRUCache
from services.shared.config import Settings
from services.shared.tax import gst_rate_on

logger = logging.getLogger(__name__)

AUTO_FIX_MIN_CONFIDENCE = 0.8

SEVERITY_PENALTIES = {
    Severity.CRITICAL: 20,
    Severity.ERROR: 10,
    Severity.WARNING: 2,
}

_ITEM_PATH = re.compile(r"^items\[(\d+)\]\.(\w+)$")


def score_invoice(invoice: InvoiceRecord, findings: list[Finding]) -> int:
    """Start at 100, deduct per finding, add completeness bonuses, clamp to [0, 100]."""
    score = 100 - sum(SEVERITY_PENALTIES[f.severity] for f in findings)
    if invoice.vendor_uen:
        score += 2
    if invoice.customer_uen:
        score += 2
    if invoice.payment_terms:
        score += 1
    if invoice.items:
        score += 3
    return max(0, min(100, score))


def fingerprint(invoice: InvoiceRecord) -> str:
    """Coarse cache key: invoice number, date and total."""
    return f"{invoice.invoice_number}-{invoice.invoice_date}-{invoice.total_amount}"


class InvoiceValidator:
    """Validates invoice records against Singapore GST and InvoiceNow rules."""

    def __init__(
        self,
        settings: Settings,
        record_store: RecordStore | None = None,
        rules: list[ValidationRule] | None = None,
    ) -> None:
        """Initialize validator.

        Args:
            settings: Application settings
            record_store: Used for duplicate invoice number lookups
            rules: Rule registry (defaults to the full rule set)
        """
        self.settings = settings
        self._store = record_store
        self.rules = rules if rules is not None else RULES
        self._cache: LRUCache[str, ValidationResult] | None = (
            LRUCache(settings.validation_cache_size) if settings.validation_cache_enabled else None
        )

    async def validate(
        self, invoice: InvoiceRecord, today: date | None = None, use_cache: bool = True
    ) -> ValidationResult:
        """Validate an invoice.

        Args:
            invoice: Invoice record to check
            today: Reference date for date checks (defaults to today)
            use_cache: Read a cached result for the same fingerprint; the fresh
                result is stored either way

        Returns:
            ValidationResult with findings, suggestions and score
        """
        key = fingerprint(invoice)
        if self._cache is not None and use_cache:
            cached = self._cache.get(key)
            if cached is not None:
                logger.debug(f"Returning cached validation result for {key}")
                return cached

        today = today or date.today()
        rate, rate_since = gst_rate_on(invoice.invoice_date or today)
        context = RuleContext(
            gst_rate=rate,
            today=today,
            duplicate_id=await self._find_duplicate(invoice),
            calculated=compute_totals(invoice.items, rate) if invoice.items else None,
        )

        findings: list[Finding] = []
        suggestions: list[Suggestion] = []
        checks: list[ComplianceCheck] = []
        for rule in self.rules:
            try:
                output = rule.check(invoice, context)
            except Exception as e:
                logger.error(f"Error running rule {rule.code} on invoice {invoice.id}: {e}")
                continue
            for entry in output:
                if isinstance(entry, Finding):
                    findings.append(entry)
                elif isinstance(entry, Suggestion):
                    suggestions.append(entry)
                else:
                    checks.append(entry)

        score = score_invoice(invoice, findings)
        result = ValidationResult(
            is_valid=not any(f.severity == Severity.CRITICAL for f in findings),
            findings=findings,
            suggestions=suggestions,
            score=score,
            gst_rate=rate,
            effective_date=invoice.invoice_date or today,
            rate_effective_from=rate_since,
            compliance_checks=checks,
        )
        metrics.validation_score.observe(score)
        logger.info(
            f"Validated invoice {invoice.id}: score {score}, "
            f"{len(result.errors)} errors, {len(result.warnings)} warnings"
        )

        if self._cache is not None:
            self._cache.put(key, result)
        return result

    async def _find_duplicate(self, invoice: InvoiceRecord) -> str | None:
        if self._store is None or not invoice.invoice_number:
            return None
        try:
            existing = await self._store.find_invoice_by_number(
                invoice.owner_id, invoice.invoice_number, exclude_id=invoice.id
            )
        except Exception as e:
            logger.warning(f"Duplicate invoice lookup failed for {invoice.id}: {e}")
            return None
        return existing.id if existing else None

    def auto_fix(self, invoice: InvoiceRecord, result: ValidationResult) -> InvoiceRecord:
        """Apply high-confidence suggestions and recompute totals from line items.

        Applying the same result to the output again changes nothing.

        Args:
            invoice: Invoice the result was computed for
            result: Validation result carrying suggestions

        Returns:
            A corrected copy of the invoice
        """
        data: dict[str, Any] = invoice.model_dump()
        applied: list[str] = []

        for suggestion in result.suggestions:
            if (
                not suggestion.auto_fix_available
                or suggestion.auto_fix_value is None
                or suggestion.confidence < AUTO_FIX_MIN_CONFIDENCE
            ):
                continue
            if self._apply(data, suggestion.field, suggestion.auto_fix_value):
                applied.append(suggestion.code)
            else:
                logger.warning(f"Cannot apply {suggestion.code} to field path {suggestion.field}")

        fixed = InvoiceRecord.model_validate(data)
        if fixed.items:
            rate = gst_rate_on(fixed.invoice_date)[0]
            totals = compute_totals(fixed.items, rate)
            fixed = fixed.model_copy(
                update={
                    "subtotal": totals.subtotal,
                    "tax_amount": totals.tax_amount,
                    "total_amount": totals.total_amount,
                }
            )

        if applied:
            logger.info(f"Auto-fixed invoice {invoice.id}: {', '.join(applied)}")
        return fixed

    @staticmethod
    def _apply(data: dict[str, Any], path: str, value: Any) -> bool:
        item_path = _ITEM_PATH.match(path)
        if item_path:
            index, field = int(item_path.group(1)), item_path.group(2)
            items = data.get("items") or []
            if index >= len(items) or field not in items[index]:
                return False
            items[index][field] = value
            return True
        if path in InvoiceRecord.model_fields and path != "items":
            data[path] = value
            return True
        return False

    def generate_report(self, invoice: InvoiceRecord, result: ValidationResult) -> str:
        """Render a plain-text validation report."""
        lines = [
            "=== GST INVOICE VALIDATION REPORT ===",
            f"Invoice: {invoice.invoice_number or invoice.id}",
            f"Validation Score: {result.score}/100",
            f"Status: {'VALID' if result.is_valid else 'INVALID'}",
            "",
            "=== COMPLIANCE INFO ===",
            f"Effective GST Rate: {result.gst_rate}% (since {result.rate_effective_from.isoformat()})",
            f"Invoice Date: {result.effective_date.isoformat()}",
            "",
        ]

        if result.errors:
            lines.append("=== ERRORS ===")
            for finding in result.errors:
                lines.append(f"[{finding.severity.value.upper()}] {finding.field}: {finding.message}")
            lines.append("")

        if result.warnings:
            lines.append("=== WARNINGS ===")
            for finding in result.warnings:
                lines.append(f"{finding.field}: {finding.message}")
            lines.append("")

        if result.suggestions:
            lines.append("=== SUGGESTIONS ===")
            for suggestion in result.suggestions:
                lines.append(f"{suggestion.field}: {suggestion.suggestion}")
                if suggestion.auto_fix_available:
                    lines.append(f"  -> Auto-fix available (confidence: {suggestion.confidence})")
            lines.append("")

        if result.compliance_checks:
            lines.append("=== COMPLIANCE CHECKS ===")
            for check in result.compliance_checks:
                lines.append(f"{check.name}: {'PASSED' if check.passed else 'FAILED'}")
                if check.message:
                    lines.append(f"  -> {check.message}")

        return "\n".join(lines)
