"""Extraction orchestrator.

Coordinates the template matcher and the configured providers for a single
document and reconciles their outputs into one confidence-scored result:

1. Serve from the result cache (keyed by a hash of the document bytes).
2. Template fast path: a confident template match skips every provider.
3. Preferred provider, accepted at the minimum confidence.
4. Remaining providers in priority order, returning early on a very
   confident result.
5. Otherwise merge every collected result, best first.
6. Enhance: normalize identifiers, reconcile totals, backfill vendor identity.
7. Report a consensus confidence for merged results.

Providers are called sequentially, each in a worker thread.
"""

import asyncio
import hashlib
import logging
import time
from collections import Counter
from decimal import Decimal
from typing import Any

from thefuzz import fuzz

from services.extraction.base import ExtractionProvider, ProviderResult
from services.extraction.schema import (
    MERGEABLE_FIELDS,
    ExtractedFields,
    ExtractionOptions,
    ExtractionResult,
)
from services.extraction.templates import TemplateMatcher
from services.extraction.totals import reconcile_totals
from services.ocr.service import OCRService
from services.records.store import RecordStore
from services.shared import metrics
from services.shared.cache import LRUCache
from services.shared.config import Settings
from services.shared.errors import AllProvidersFailed, ProviderUnavailable
from services.shared.identifiers import normalize_gst_number, normalize_uen
from services.shared.media import guess_media_type

logger = logging.getLogger(__name__)

NAME_SIMILARITY_THRESHOLD = 0.8
LINE_ITEM_MIN_CONFIDENCE = 0.6
TOTAL_DISAGREEMENT_RATIO = Decimal("0.1")
CONSENSUS_FIELDS = ("invoice_number", "customer_name", "total_amount")
CONSENSUS_FIELD_WEIGHT = 0.3
CONSENSUS_CONFIDENCE_WEIGHT = 0.1


def name_similarity(a: str, b: str) -> float:
    """Edit-distance similarity of two names in [0, 1], ignoring case."""
    return fuzz.ratio(a.strip().lower(), b.strip().lower()) / 100


def _present(value: Any) -> bool:
    return value not in (None, "")


def detect_inconsistencies(results: list[ExtractionResult]) -> list[str]:
    """Warnings for key fields on which results disagree.

    Invoice numbers and dates must match exactly; customer names are
    compared by similarity.
    """
    warnings: list[str] = []

    numbers = list(dict.fromkeys(r.fields.invoice_number for r in results if r.fields.invoice_number))
    if len(numbers) > 1:
        warnings.append(f"Multiple invoice numbers detected: {', '.join(numbers)}")

    dates = list(dict.fromkeys(r.fields.invoice_date for r in results if r.fields.invoice_date))
    if len(dates) > 1:
        warnings.append(
            f"Multiple invoice dates detected: {', '.join(d.isoformat() for d in dates)}"
        )

    names = [r.fields.customer_name for r in results if r.fields.customer_name]
    for i, first in enumerate(names):
        mismatch = next(
            (other for other in names[i + 1 :] if name_similarity(first, other) < NAME_SIMILARITY_THRESHOLD),
            None,
        )
        if mismatch is not None:
            warnings.append(f"Customer name mismatch: '{first}' vs '{mismatch}'")
            break

    totals = [r.fields.total_amount for r in results if r.fields.total_amount]
    if len(totals) > 1:
        highest, lowest = max(totals), min(totals)
        if highest > 0 and (highest - lowest) / highest > TOTAL_DISAGREEMENT_RATIO:
            warnings.append(
                f"Total amounts differ by more than 10% across sources: {lowest} vs {highest}"
            )

    return warnings


def merge_results(results: list[ExtractionResult]) -> ExtractionResult:
    """Merge several results, taking the most confident one as the base.

    Missing scalar fields are filled from the next-best result that has them.
    Line items come from the result with the longest list among sources with
    confidence above 0.6, falling back to the base's own items.
    """
    ranked = sorted(results, key=lambda r: r.confidence, reverse=True)
    base = ranked[0]

    updates: dict[str, Any] = {}
    for name in MERGEABLE_FIELDS:
        if _present(getattr(base.fields, name)):
            continue
        donor = next((r for r in ranked[1:] if _present(getattr(r.fields, name))), None)
        if donor is not None:
            updates[name] = getattr(donor.fields, name)

    items_source = max(
        (r for r in ranked if r.confidence > LINE_ITEM_MIN_CONFIDENCE),
        key=lambda r: len(r.fields.items),
        default=base,
    )
    if len(items_source.fields.items) > len(base.fields.items):
        updates["items"] = items_source.fields.items

    warnings = list(base.warnings)
    for warning in detect_inconsistencies(ranked):
        if warning not in warnings:
            warnings.append(warning)

    return ExtractionResult(
        fields=base.fields.model_copy(update=updates),
        confidence=base.confidence,
        provider="merged",
        processing_time_ms=sum(r.processing_time_ms for r in ranked),
        warnings=tuple(warnings),
        raw_text=next((r.raw_text for r in ranked if r.raw_text), None),
    )


def consensus_confidence(results: list[ExtractionResult]) -> float:
    """Agreement on key fields across results, blended with their mean confidence.

    Each key field reported by at least one result contributes
    (share of results agreeing with the most common value) x 0.3; the mean
    confidence contributes x 0.1; the sum is divided by the total weight used.
    A single result keeps its own confidence.
    """
    if not results:
        return 0.0
    if len(results) == 1:
        return results[0].confidence

    score = 0.0
    weight = 0.0
    for name in CONSENSUS_FIELDS:
        values = [
            str(getattr(r.fields, name)).strip().lower()
            for r in results
            if _present(getattr(r.fields, name))
        ]
        if not values:
            continue
        agreeing = Counter(values).most_common(1)[0][1]
        score += (agreeing / len(values)) * CONSENSUS_FIELD_WEIGHT
        weight += CONSENSUS_FIELD_WEIGHT

    average = sum(r.confidence for r in results) / len(results)
    score += average * CONSENSUS_CONFIDENCE_WEIGHT
    weight += CONSENSUS_CONFIDENCE_WEIGHT

    return round(min(1.0, score / weight), 4)


class ExtractionOrchestrator:
    """Runs the template matcher and providers and reconciles their results."""

    def __init__(
        self,
        settings: Settings,
        providers: dict[str, ExtractionProvider],
        template_matcher: TemplateMatcher | None = None,
        ocr_service: OCRService | None = None,
        record_store: RecordStore | None = None,
    ) -> None:
        """Initialize orchestrator.

        Args:
            settings: Application settings
            providers: Available providers in priority order
            template_matcher: Template fast path (disabled if None)
            ocr_service: Text layer used for template matching
            record_store: Source of known vendors for identity backfill
        """
        self.settings = settings
        self.providers = providers
        self.template_matcher = template_matcher
        self._ocr = ocr_service or OCRService(settings)
        self._store = record_store
        self._cache: LRUCache[str, ExtractionResult] = LRUCache(settings.extraction_cache_size)

    async def extract(
        self,
        file_bytes: bytes,
        file_name: str,
        mime_type: str | None = None,
        options: ExtractionOptions | None = None,
    ) -> ExtractionResult:
        """Extract invoice fields from a document.

        Args:
            file_bytes: Document content
            file_name: Original file name
            mime_type: Document media type (guessed from the name if omitted)
            options: Per-request options

        Returns:
            Enhanced ExtractionResult

        Raises:
            AllProvidersFailed: If no source produced a result
        """
        options = options or ExtractionOptions()
        mime_type = mime_type or guess_media_type(file_name)
        started = time.perf_counter()

        # Owner scoped: results carry owner-specific vendor backfill
        cache_key = f"{options.owner_id or ''}:{hashlib.sha256(file_bytes).hexdigest()}"
        cached = self._cache.get(cache_key)
        if cached is not None:
            logger.info(f"Extraction cache hit for {file_name}")
            metrics.extraction_cache_hits_total.inc()
            return cached

        results: list[ExtractionResult] = []
        causes: list[ProviderUnavailable] = []
        tried: set[str] = set()

        template_result = await self._try_template(file_bytes, mime_type, options)
        if template_result is not None:
            if template_result.confidence >= self.settings.template_fast_path_confidence:
                metrics.template_fast_path_total.inc()
                return await self._finish(cache_key, template_result, options, started)
            results.append(template_result)

        threshold = (
            options.min_confidence
            if options.min_confidence is not None
            else self.settings.extraction_min_confidence
        )
        preferred = options.preferred_provider
        if preferred:
            if preferred in self.providers:
                tried.add(preferred)
                result = await self._run_provider(
                    self.providers[preferred], file_bytes, file_name, mime_type, causes
                )
                if result is not None:
                    if result.confidence >= threshold:
                        return await self._finish(cache_key, result, options, started)
                    results.append(result)
            else:
                logger.warning(f"Preferred provider '{preferred}' is not configured")

        for name, provider in self.providers.items():
            if name in tried or not provider.supports(mime_type):
                continue
            tried.add(name)
            result = await self._run_provider(provider, file_bytes, file_name, mime_type, causes)
            if result is None:
                continue
            if result.confidence >= self.settings.extraction_early_return_confidence:
                return await self._finish(cache_key, result, options, started)
            results.append(result)

        if not results:
            logger.error(f"All extraction sources failed for {file_name}")
            raise AllProvidersFailed(causes)

        merged = merge_results(results)
        merged = merged.model_copy(update={"confidence": consensus_confidence(results)})
        return await self._finish(cache_key, merged, options, started)

    async def _try_template(
        self, file_bytes: bytes, mime_type: str, options: ExtractionOptions
    ) -> ExtractionResult | None:
        if (
            self.template_matcher is None
            or not self.settings.template_matching_enabled
            or not options.enable_template_matching
        ):
            return None

        started = time.perf_counter()
        ocr_result = await asyncio.to_thread(self._ocr.extract_text, file_bytes, mime_type)
        if not ocr_result.success or not ocr_result.text.strip():
            logger.debug(f"No document text for template matching: {ocr_result.error}")
            return None

        match = self.template_matcher.match(ocr_result.text)
        if match is None:
            return None

        await self.template_matcher.record_usage(match.template_id)
        return ExtractionResult(
            fields=match.fields,
            confidence=match.confidence,
            provider=f"template:{match.template_id}",
            processing_time_ms=int((time.perf_counter() - started) * 1000),
            raw_text=ocr_result.text,
        )

    async def _run_provider(
        self,
        provider: ExtractionProvider,
        file_bytes: bytes,
        file_name: str,
        mime_type: str,
        causes: list[ProviderUnavailable],
    ) -> ExtractionResult | None:
        name = provider.provider_name
        if not provider.supports(mime_type):
            causes.append(ProviderUnavailable(name, f"unsupported media type {mime_type}"))
            return None

        started = time.perf_counter()
        try:
            outcome = await asyncio.to_thread(provider.extract, file_bytes, file_name, mime_type)
        except Exception as e:
            logger.warning(f"Provider {name} raised during extraction: {e}")
            outcome = ProviderResult(fields=None, success=False, error=str(e), provider=name)
        elapsed_ms = int((time.perf_counter() - started) * 1000)

        if not outcome.success or outcome.fields is None:
            logger.warning(f"Provider {name} failed: {outcome.error}")
            metrics.extraction_requests_total.labels(provider=name, status="failed").inc()
            causes.append(ProviderUnavailable(name, outcome.error or "no data returned"))
            return None

        metrics.extraction_requests_total.labels(provider=name, status="success").inc()
        confidence = provider.confidence(outcome.fields)
        logger.info(f"Provider {name} returned confidence {confidence:.2f} in {elapsed_ms}ms")
        return ExtractionResult(
            fields=outcome.fields,
            confidence=confidence,
            provider=name,
            processing_time_ms=elapsed_ms,
            raw_text=outcome.raw_text,
        )

    async def _finish(
        self,
        cache_key: str,
        result: ExtractionResult,
        options: ExtractionOptions,
        started: float,
    ) -> ExtractionResult:
        enhanced = await self.enhance(result, options)
        elapsed = time.perf_counter() - started
        final = enhanced.model_copy(update={"processing_time_ms": int(elapsed * 1000)})
        metrics.extraction_duration_seconds.observe(elapsed)
        self._cache.put(cache_key, final)
        return final

    async def enhance(
        self, result: ExtractionResult, options: ExtractionOptions | None = None
    ) -> ExtractionResult:
        """Normalize identifiers, reconcile amounts and backfill vendor identity."""
        fields = result.fields
        warnings = list(result.warnings)

        fields = fields.model_copy(
            update={
                "vendor_uen": normalize_uen(fields.vendor_uen),
                "customer_uen": normalize_uen(fields.customer_uen),
                "vendor_gst_number": normalize_gst_number(fields.vendor_gst_number),
            }
        )

        reconciled = reconcile_totals(fields)
        if fields.total_amount is not None and reconciled.total_amount != fields.total_amount:
            warnings.append(
                f"Total {fields.total_amount} recalculated as {reconciled.total_amount} "
                f"from subtotal and GST"
            )
        fields = reconciled

        owner_id = options.owner_id if options else None
        fields = await self._backfill_vendor(fields, owner_id)

        return result.model_copy(update={"fields": fields, "warnings": tuple(warnings)})

    async def _backfill_vendor(self, fields: ExtractedFields, owner_id: str | None) -> ExtractedFields:
        if self._store is None:
            return fields
        if fields.vendor_name and fields.vendor_uen:
            return fields
        if not fields.vendor_name and not fields.vendor_uen:
            return fields

        try:
            vendors = await self._store.list_vendors(owner_id)
        except Exception as e:
            logger.warning(f"Vendor lookup failed, continuing without backfill: {e}")
            return fields

        best = None
        best_score = 0.0
        for vendor in vendors:
            if fields.vendor_uen and vendor.uen == fields.vendor_uen:
                best = vendor
                break
            if fields.vendor_name:
                score = name_similarity(fields.vendor_name, vendor.name)
                if score >= NAME_SIMILARITY_THRESHOLD and score > best_score:
                    best, best_score = vendor, score

        if best is None:
            return fields

        candidates = {
            "vendor_name": best.name,
            "vendor_uen": best.uen,
            "vendor_gst_number": best.gst_number,
            "vendor_address": best.address,
        }
        updates = {k: v for k, v in candidates.items() if v and not getattr(fields, k)}
        if updates:
            logger.info(f"Backfilled vendor fields {sorted(updates)} from known vendor {best.name}")
        return fields.model_copy(update=updates)
