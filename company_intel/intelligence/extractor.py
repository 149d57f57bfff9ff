"""Categorize raw page content into business-intelligence buckets."""

from __future__ import annotations

import re
from datetime import datetime
from typing import Any, Mapping

from bs4 import BeautifulSoup
from loguru import logger

from company_intel.config import settings
from company_intel.errors import SessionNotFoundError
from company_intel.intelligence.categories import (
    CATEGORY_DEFINITIONS,
    SCHEMA_FIELD_CATEGORIES,
    URL_PATTERNS,
)
from company_intel.models.intelligence import (
    CategoryDefinition,
    ExtractedIntelligence,
    ExtractionStatus,
    IntelligenceCategory,
    IntelligenceItem,
    ItemType,
)
from company_intel.models.scraping import utc_now
from company_intel.services import logger as log_service
from company_intel.services.sessions import SessionStore, merge_session_data
from company_intel.services.streaming import ProgressCallback, notify_progress

SCHEMA_CONFIDENCE = 0.9
MAX_BATCH_CONFIDENCE = 0.95
SCHEMA_KEYS = ("extract", "schema", "extracted")
CONTENT_KEYS = ("markdown", "text", "content", "html")

_WHITESPACE = re.compile(r"\s+")


def derive_status(item_count: int, confidence: float) -> ExtractionStatus:
    if item_count == 0:
        return ExtractionStatus.PENDING
    if confidence > 0.8 and item_count > 5:
        return ExtractionStatus.COMPLETED
    if confidence > 0.6 and item_count > 3:
        return ExtractionStatus.PARTIAL
    if confidence > 0.4 and item_count > 1:
        return ExtractionStatus.PROCESSING
    return ExtractionStatus.FAILED


def batch_confidence(match_count: int, url_matches: bool) -> float:
    confidence = 0.5
    if url_matches:
        confidence += 0.2
    if match_count > 10:
        confidence += 0.2
    elif match_count > 5:
        confidence += 0.1
    elif match_count > 2:
        confidence += 0.05
    return round(min(confidence, MAX_BATCH_CONFIDENCE), 4)


def aggregate_confidence(items: list[IntelligenceItem], source_count: int) -> float:
    if not items:
        return 0.0
    average = sum(item.confidence for item in items) / len(items)
    return round(min(average + min(0.05 * source_count, 0.2), 1.0), 4)


def _page_text(payload: Mapping[str, Any]) -> str:
    for key in CONTENT_KEYS:
        value = payload.get(key)
        if not isinstance(value, str) or not value.strip():
            continue
        if key == "html":
            try:
                return BeautifulSoup(value, "html.parser").get_text(" ")
            except Exception as exc:
                logger.warning(f"Could not parse HTML payload, matching raw markup: {exc}")
        return value
    return ""


def _schema_fields(payload: Mapping[str, Any]) -> dict[str, Any]:
    for key in SCHEMA_KEYS:
        value = payload.get(key)
        if isinstance(value, dict) and value:
            return value
    return {}


class CategoryExtractor:
    def __init__(
        self,
        *,
        definitions: Mapping[IntelligenceCategory, CategoryDefinition] | None = None,
        url_patterns: tuple[tuple[re.Pattern[str], IntelligenceCategory], ...] | None = None,
        schema_fields: Mapping[str, IntelligenceCategory] | None = None,
        session_store: SessionStore | None = None,
        max_matches_per_pattern: int | None = None,
        context_chars: int | None = None,
        max_context_chars: int | None = None,
        progress_interval: int | None = None,
    ):
        self.definitions = dict(definitions or CATEGORY_DEFINITIONS)
        self.url_patterns = url_patterns or URL_PATTERNS
        self.schema_fields = dict(schema_fields or SCHEMA_FIELD_CATEGORIES)
        self.session_store = session_store
        self.max_matches = max_matches_per_pattern or settings.extraction_max_matches_per_pattern
        self.context_chars = context_chars or settings.extraction_context_chars
        self.max_context_chars = max_context_chars or settings.extraction_max_context_chars
        self.progress_interval = max(progress_interval or settings.extraction_progress_interval, 1)
        self._url_cache: dict[str, IntelligenceCategory | None] = {}
        self._patterns = self._compile_patterns()

    def _compile_patterns(self) -> dict[IntelligenceCategory, list[tuple[str, re.Pattern[str]]]]:
        compiled: dict[IntelligenceCategory, list[tuple[str, re.Pattern[str]]]] = {}
        for category, definition in self.definitions.items():
            patterns: list[tuple[str, re.Pattern[str]]] = []
            for keyword in definition.keywords:
                try:
                    patterns.append((keyword, re.compile(rf"\b{re.escape(keyword)}\b", re.IGNORECASE)))
                except re.error as exc:
                    logger.warning(f"Skipping keyword '{keyword}' for {category.value}: {exc}")
            compiled[category] = patterns
        return compiled

    def categorize_url(self, url: str) -> IntelligenceCategory | None:
        if url in self._url_cache:
            return self._url_cache[url]
        category = next(
            (category for pattern, category in self.url_patterns if pattern.search(url)),
            None,
        )
        self._url_cache[url] = category
        return category

    def _bucket(self, category: IntelligenceCategory, url: str, now: datetime) -> ExtractedIntelligence:
        definition = self.definitions.get(category)
        metadata: dict[str, Any] = {}
        if definition is not None:
            metadata = {"name": definition.name, "keywords": list(definition.keywords)}
        return ExtractedIntelligence(category=category, sources=[url], metadata=metadata, extracted_at=now)

    def _context(self, text: str, start: int, end: int) -> str:
        window = text[max(0, start - self.context_chars) : end + self.context_chars]
        return _WHITESPACE.sub(" ", window).strip()[: self.max_context_chars]

    def _match_category(
        self,
        category: IntelligenceCategory,
        text: str,
    ) -> tuple[list[dict[str, Any]], int]:
        matches: list[dict[str, Any]] = []
        total = 0
        for keyword, pattern in self._patterns.get(category, []):
            try:
                found = list(pattern.finditer(text))
            except Exception as exc:
                logger.warning(f"Pattern '{keyword}' failed for {category.value}: {exc}")
                continue
            total += len(found)
            for match in found[: self.max_matches]:
                matches.append(
                    {
                        "text": match.group(0),
                        "context": self._context(text, match.start(), match.end()),
                        "pattern": keyword,
                    }
                )
        return matches, total

    def extract_from_page(
        self,
        url: str,
        payload: Mapping[str, Any],
    ) -> dict[IntelligenceCategory, ExtractedIntelligence]:
        now = utc_now()
        results: dict[IntelligenceCategory, ExtractedIntelligence] = {}

        for field_name, value in _schema_fields(payload).items():
            category = self.schema_fields.get(field_name)
            if category is None or value in (None, "", [], {}):
                continue
            bucket = results.setdefault(category, self._bucket(category, url, now))
            bucket.items.append(
                IntelligenceItem(
                    type=ItemType.SCHEMA_EXTRACTED,
                    content=value,
                    source=url,
                    confidence=SCHEMA_CONFIDENCE,
                    extracted_at=now,
                    metadata={"category": category.value, "field": field_name},
                )
            )

        url_category = self.categorize_url(url)
        text = _page_text(payload)
        if text:
            for category in self._patterns:
                matches, total = self._match_category(category, text)
                if not matches:
                    continue
                confidence = batch_confidence(total, url_category == category)
                bucket = results.setdefault(category, self._bucket(category, url, now))
                bucket.items.extend(
                    IntelligenceItem(
                        type=ItemType.PATTERN_MATCH,
                        content=match,
                        source=url,
                        confidence=confidence,
                        extracted_at=now,
                        metadata={"category": category.value, "url_category": url_category == category},
                    )
                    for match in matches
                )

        # page buckets use the same aggregate as cross-page merges
        for bucket in results.values():
            bucket.confidence = aggregate_confidence(bucket.items, len(bucket.sources))
            bucket.status = derive_status(len(bucket.items), bucket.confidence)
        return results

    @staticmethod
    def merge_into(existing: ExtractedIntelligence, found: ExtractedIntelligence) -> ExtractedIntelligence:
        existing.items.extend(found.items)
        for source in found.sources:
            if source not in existing.sources:
                existing.sources.append(source)
        existing.confidence = aggregate_confidence(existing.items, len(existing.sources))
        existing.status = derive_status(len(existing.items), existing.confidence)
        return existing

    async def extract(
        self,
        pages: Mapping[str, Mapping[str, Any]],
        *,
        session_id: str | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> dict[IntelligenceCategory, ExtractedIntelligence]:
        results: dict[IntelligenceCategory, ExtractedIntelligence] = {}
        total = len(pages)

        for index, (url, payload) in enumerate(pages.items(), 1):
            try:
                page_results = self.extract_from_page(url, payload)
            except Exception as exc:
                logger.error(f"Extraction failed for {url}: {exc}")
                page_results = {}
            for category, found in page_results.items():
                if category in results:
                    self.merge_into(results[category], found)
                else:
                    results[category] = found
            if index % self.progress_interval == 0 or index == total:
                await notify_progress(
                    on_progress,
                    index,
                    total,
                    f"Extracted {len(results)} categories from {index}/{total} pages",
                )

        log_service.log_event(
            "intelligence_extracted",
            "Category extraction finished",
            pages=total,
            categories=len(results),
            items=sum(len(bucket.items) for bucket in results.values()),
        )
        if session_id and self.session_store is not None:
            await self.save(session_id, results)
        return results

    async def save(
        self,
        session_id: str,
        results: Mapping[IntelligenceCategory, ExtractedIntelligence],
    ) -> bool:
        """Best-effort persistence; the in-memory results stay valid on failure."""
        if self.session_store is None:
            return False
        try:
            await merge_session_data(
                self.session_store,
                session_id,
                {
                    "intelligence": {
                        category.value: bucket.to_dict() for category, bucket in results.items()
                    },
                    "intelligence_summary": self.summarize(results),
                },
            )
            return True
        except SessionNotFoundError:
            raise
        except Exception as exc:
            log_service.log_session_operation(
                "save_intelligence", session_id, "failed", error=str(exc)
            )
            return False

    @staticmethod
    def summarize(results: Mapping[IntelligenceCategory, ExtractedIntelligence]) -> dict[str, Any]:
        by_status: dict[str, int] = {}
        for bucket in results.values():
            by_status[bucket.status.value] = by_status.get(bucket.status.value, 0) + 1
        confidences = [bucket.confidence for bucket in results.values()]
        return {
            "categories": len(results),
            "total_items": sum(len(bucket.items) for bucket in results.values()),
            "average_confidence": round(sum(confidences) / len(confidences), 4) if confidences else 0.0,
            "by_status": by_status,
        }
