"""Template matching: pattern-based fast path for known invoice layouts.

A template is a set of per-field regular expressions (one capture group
each), optionally bound to a customer UEN. Matching scores how many weighted
patterns hit the document text, plus a small structural score for common
invoice keywords. Templates learned from human-corrected invoices are stored
in the record store and the most used ones are kept in memory.
"""

import logging
import re
import threading
import time
from datetime import date, datetime, timezone
from decimal import Decimal

from pydantic import BaseModel

from services.extraction.parsing import build_fields
from services.extraction.schema import ExtractedFields
from services.extraction.totals import reconcile_totals
from services.records.models import TemplateRecord
from services.records.store import RecordStore
from services.shared.config import Settings

logger = logging.getLogger(__name__)

MATCH_THRESHOLD = 0.7
LEARNED_TEMPLATE_CONFIDENCE = 0.7
FIELD_WEIGHTS = {
    "invoice_number": 2.0,
    "invoice_date": 2.0,
    "customer_name": 1.5,
    "total_amount": 1.5,
    "vendor_name": 1.0,
}
UEN_BINDING_WEIGHT = 2.0
STRUCTURAL_KEYWORDS = ("invoice", "date", "customer", "total", "gst", "amount")
STRUCTURAL_WEIGHT = 0.3

_AMOUNT = r"S?\$?[ \t]*([\d,]+\.\d{2})"
_NUMERIC_DATE = r"(\d{1,2}[/\-.]\d{1,2}[/\-.]\d{2,4})"
_WORD_DATE = r"(\d{1,2}[ \t]+[A-Za-z]{3,9}[ \t]+\d{4})"
_DOC_NUMBER = r"([A-Z0-9][A-Z0-9\-/]*)"
_LINE = r"([^\n]+)"

DEFAULT_TEMPLATES = [
    TemplateRecord(
        id="singapore-standard-1",
        name="Singapore Standard Invoice",
        confidence=0.8,
        patterns={
            "invoice_number": r"Invoice[ \t]*(?:No\.?|Number|#)[ \t]*:?[ \t]*" + _DOC_NUMBER,
            "invoice_date": r"(?:Invoice[ \t]*)?Date[ \t]*:?[ \t]*" + _NUMERIC_DATE,
            "customer_name": r"Bill[ \t]*To[ \t]*:?[ \t]*" + _LINE,
            "total_amount": r"(?<!Sub)(?<!Sub )Total(?:[ \t]*Amount)?[ \t]*:?[ \t]*" + _AMOUNT,
        },
    ),
    TemplateRecord(
        id="singapore-service-1",
        name="Singapore Service Invoice",
        confidence=0.85,
        patterns={
            "invoice_number": r"Tax[ \t]*Invoice[ \t]*(?:No\.?|Number)[ \t]*:?[ \t]*" + _DOC_NUMBER,
            "invoice_date": r"Date[ \t]*:?[ \t]*" + _WORD_DATE,
            "customer_name": r"(?:Customer|Bill[ \t]*To)[ \t]*:?[ \t]*" + _LINE,
            "vendor_uen": r"UEN[ \t]*(?:No\.?)?[ \t]*:?[ \t]*([0-9]{8,9}[A-Z])",
            "subtotal": r"Sub[ \t]*-?[ \t]*total[ \t]*:?[ \t]*" + _AMOUNT,
            "tax_amount": r"GST[ \t]*@?[ \t]*9[ \t]*%[ \t]*:?[ \t]*" + _AMOUNT,
            "total_amount": r"(?<!Sub)(?<!Sub )Total[ \t]*:?[ \t]*" + _AMOUNT,
        },
    ),
]

_VALUE_PATTERNS = {
    "invoice_number": _DOC_NUMBER,
    "invoice_date": f"(?:{_NUMERIC_DATE}|{_WORD_DATE})",
    "customer_name": _LINE,
    "vendor_name": _LINE,
    "vendor_uen": r"([0-9]{8,9}[A-Z]|[TRS][0-9]{2}[A-Z]{2}[0-9]{4}[A-Z])",
    "subtotal": _AMOUNT,
    "tax_amount": _AMOUNT,
    "total_amount": _AMOUNT,
}


class TemplateMatch(BaseModel):
    """Best template hit for a document."""

    template_id: str
    template_name: str
    score: float
    confidence: float
    fields: ExtractedFields


class TemplateMatcher:
    """Holds the template working set and matches documents against it.

    The working set is guarded by a lock; matching works on a snapshot.
    """

    def __init__(self, settings: Settings, record_store: RecordStore | None = None) -> None:
        self.settings = settings
        self._store = record_store
        self._lock = threading.Lock()
        self._templates: dict[str, TemplateRecord] = {
            t.id: t.model_copy(deep=True) for t in DEFAULT_TEMPLATES
        }
        self._compiled: dict[tuple[str, str], re.Pattern[str] | None] = {}

    async def load(self) -> int:
        """Load the most used stored templates into the working set.

        Returns:
            Number of templates loaded from the store
        """
        if self._store is None or self.settings.template_working_set_size == 0:
            return 0
        stored = await self._store.load_templates(self.settings.template_working_set_size)
        with self._lock:
            for template in stored:
                self._templates[template.id] = template
        logger.info(f"Loaded {len(stored)} templates into working set")
        return len(stored)

    @property
    def templates(self) -> list[TemplateRecord]:
        with self._lock:
            return list(self._templates.values())

    def get(self, template_id: str) -> TemplateRecord | None:
        with self._lock:
            return self._templates.get(template_id)

    def add(self, template: TemplateRecord) -> None:
        with self._lock:
            self._templates[template.id] = template
            self._compiled = {k: v for k, v in self._compiled.items() if k[0] != template.id}

    def match(self, text: str) -> TemplateMatch | None:
        """Find the best matching template for document text.

        Args:
            text: Document text

        Returns:
            TemplateMatch if the best score reaches the match threshold, else None
        """
        if not text or not text.strip():
            return None

        best: tuple[float, TemplateRecord, dict[str, str]] | None = None
        for template in self.templates:
            score, hits = self._score(template, text)
            if best is None or score > best[0] or (
                score == best[0] and template.confidence > best[1].confidence
            ):
                best = (score, template, hits)

        if best is None or best[0] < MATCH_THRESHOLD:
            return None

        score, template, hits = best
        fields = reconcile_totals(build_fields(hits))
        confidence = round((3 * score + template.confidence) / 4, 4)
        logger.info(
            f"Template '{template.id}' matched with score {score:.2f} "
            f"(confidence {confidence:.2f})"
        )
        return TemplateMatch(
            template_id=template.id,
            template_name=template.name,
            score=round(score, 4),
            confidence=min(confidence, 1.0),
            fields=fields,
        )

    def _pattern(self, template: TemplateRecord, field: str) -> re.Pattern[str] | None:
        key = (template.id, field)
        if key not in self._compiled:
            try:
                self._compiled[key] = re.compile(
                    template.patterns[field], re.IGNORECASE | re.MULTILINE
                )
            except re.error as e:
                logger.warning(f"Invalid pattern for {template.id}.{field}: {e}")
                self._compiled[key] = None
        return self._compiled[key]

    def _score(self, template: TemplateRecord, text: str) -> tuple[float, dict[str, str]]:
        total_weight = 0.0
        score = 0.0
        hits: dict[str, str] = {}

        for field in template.patterns:
            weight = FIELD_WEIGHTS.get(field, 1.0)
            total_weight += weight
            pattern = self._pattern(template, field)
            if pattern is None:
                continue
            match = pattern.search(text)
            if match:
                value = next((g for g in match.groups() if g), None)
                if value and value.strip():
                    score += weight
                    hits[field] = value.strip()

        if template.customer_uen:
            total_weight += UEN_BINDING_WEIGHT
            compact = re.sub(r"\s+", "", text).upper()
            if template.customer_uen.upper() in compact:
                score += UEN_BINDING_WEIGHT
                hits.setdefault("customer_uen", template.customer_uen)

        lowered = text.lower()
        structural = sum(1 for kw in STRUCTURAL_KEYWORDS if kw in lowered) / len(
            STRUCTURAL_KEYWORDS
        )
        score += structural * STRUCTURAL_WEIGHT
        total_weight += STRUCTURAL_WEIGHT

        return (score / total_weight if total_weight else 0.0), hits

    async def record_usage(self, template_id: str) -> None:
        """Bump usage count and last-used time, in memory and in the store."""
        now = datetime.now(timezone.utc)
        with self._lock:
            template = self._templates.get(template_id)
            if template is not None:
                template.use_count += 1
                template.last_used = now

        if self._store is not None:
            try:
                await self._store.record_template_usage(template_id, now)
            except Exception as e:
                logger.warning(f"Failed to record usage for template {template_id}: {e}")

    async def learn_from_invoice(
        self, text: str, fields: ExtractedFields, customer_uen: str | None = None
    ) -> TemplateRecord | None:
        """Create a template from a human-corrected invoice and its document text.

        For each corrected value found in the text, the words preceding it on
        the same line become the label of a new pattern.

        Returns:
            The new template, or None if fewer than two fields could be located
        """
        patterns: dict[str, str] = {}
        for field, value_pattern in _VALUE_PATTERNS.items():
            value = getattr(fields, field)
            if value is None:
                continue
            label = self._find_label(text, self._renderings(value))
            if label:
                # Label must start a word so "Total" does not hit inside "Subtotal"
                patterns[field] = (
                    r"(?<![A-Za-z])" + re.escape(label) + r"[ \t]*:?[ \t]*" + value_pattern
                )

        if len(patterns) < 2:
            logger.info("Not enough labelled fields to learn a template")
            return None

        uen = customer_uen or fields.customer_uen
        template = TemplateRecord(
            id=f"learned-{uen or 'generic'}-{int(time.time() * 1000)}",
            name=f"Learned: {fields.customer_name or fields.vendor_name or uen or 'invoice'}",
            customer_uen=uen,
            patterns=patterns,
            confidence=LEARNED_TEMPLATE_CONFIDENCE,
        )
        self.add(template)
        if self._store is not None:
            await self._store.save_template(template)
        logger.info(f"Learned template {template.id} with fields {sorted(patterns)}")
        return template

    @staticmethod
    def _renderings(value: object) -> list[str]:
        if isinstance(value, Decimal):
            return [f"{value:,.2f}", f"{value:.2f}"]
        if isinstance(value, date):
            return [
                value.strftime("%d/%m/%Y"),
                value.strftime("%d-%m-%Y"),
                value.strftime("%d %B %Y"),
                value.strftime("%d %b %Y"),
                value.isoformat(),
            ]
        return [str(value)]

    @staticmethod
    def _find_label(text: str, renderings: list[str]) -> str | None:
        for line in text.splitlines():
            for rendering in renderings:
                position = line.find(rendering)
                if position <= 0:
                    continue
                prefix = re.sub(r"[\s:$]+$", "", line[:position].replace("S$", ""))
                words = prefix.split()[-3:]
                if words:
                    return " ".join(words)
        return None
