"""Fuse several scraping passes of one URL into a single provenance-tracked record.

Merging is a pure in-memory transform: no I/O, no partial failure. A sub-merge
that cannot be computed (unparseable HTML, a failing custom merger) degrades to
its simplest sensible value and the rest of the record is still produced.
"""

from __future__ import annotations

import copy
import hashlib
import json
import re
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from itertools import combinations
from typing import Any, Callable, Sequence

from bs4 import BeautifulSoup
from loguru import logger

from company_intel.config import settings
from company_intel.errors import MergeInputError
from company_intel.models.scraping import (
    ConflictResolution,
    MergedScrapingData,
    MergeQuality,
    MergeStatistics,
    PassSource,
    ScrapingPass,
    utc_now,
)

CONFLICT_STRATEGIES = ("latest", "highest_quality", "combine", "manual")
HANDLED_METADATA_KEYS = frozenset({"screenshot", "status_code", "duration", "duration_ms"})

_BLOCK_SPLIT = re.compile(r"\n\s*\n+")
_WHITESPACE = re.compile(r"\s+")

CustomMerger = Callable[[list[Any]], Any]


@dataclass(slots=True)
class MergeOptions:
    conflict_resolution: ConflictResolution = "highest_quality"
    deduplicate_content: bool = True
    preserve_all_html: bool = False
    custom_mergers: dict[str, CustomMerger] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.conflict_resolution not in CONFLICT_STRATEGIES:
            raise ValueError(f"Unknown conflict resolution strategy: {self.conflict_resolution}")

    @classmethod
    def from_settings(cls) -> "MergeOptions":
        return cls(
            conflict_resolution=settings.merge_conflict_resolution,  # type: ignore[arg-type]
            deduplicate_content=settings.merge_deduplicate_content,
            preserve_all_html=settings.merge_preserve_all_html,
        )


def _size_score(value: Any) -> int:
    if isinstance(value, str):
        return len(value)
    if isinstance(value, (list, tuple)):
        return len(value) * 10
    if isinstance(value, dict):
        return len(value) * 5
    return 1


def _identity(value: Any) -> str:
    try:
        return json.dumps(value, sort_keys=True, default=str)
    except (TypeError, ValueError):
        return repr(value)


def _unique(values: Sequence[Any]) -> list[Any]:
    seen: set[str] = set()
    unique: list[Any] = []
    for value in values:
        key = _identity(value)
        if key in seen:
            continue
        seen.add(key)
        unique.append(value)
    return unique


def resolve_conflict(values: Sequence[Any], strategy: str) -> Any:
    """Pick (or build) one value out of several competing ones."""
    if not values:
        return None
    if strategy == "latest":
        return values[-1]
    if strategy == "highest_quality":
        best = values[0]
        for value in values[1:]:
            if _size_score(value) >= _size_score(best):
                best = value
        return best
    if strategy == "combine":
        if all(isinstance(value, str) for value in values):
            return "\n\n".join(_unique(values))
        return list(values)
    return values[0]


def _jaccard(left: str, right: str) -> float:
    left_words = set(_WHITESPACE.split(left.lower().strip()))
    right_words = set(_WHITESPACE.split(right.lower().strip()))
    union = left_words | right_words
    if not union:
        return 1.0
    return len(left_words & right_words) / len(union)


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def _has_content(scraping_pass: ScrapingPass) -> bool:
    content = scraping_pass.result.content
    return bool(content and content.strip())


class ScrapingMerger:
    """Deterministic multi-pass merge with configurable conflict resolution."""

    def __init__(self, options: MergeOptions | None = None):
        self.options = options or MergeOptions()

    def merge(
        self,
        passes: Sequence[ScrapingPass],
        *,
        now: datetime | None = None,
    ) -> MergedScrapingData:
        if not passes:
            raise MergeInputError("No scraping passes to merge")

        ordered = sorted(passes, key=lambda p: p.timestamp)
        reference_time = now or utc_now()

        sources, unique_points, duplicate_points = self._build_sources(ordered)
        statistics = MergeStatistics(
            total_passes=len(ordered),
            successful_passes=sum(1 for p in ordered if _has_content(p)),
            failed_passes=sum(1 for p in ordered if p.result.errors),
            unique_data_points=unique_points,
            duplicate_data_points=duplicate_points,
            conflicting_data_points=self._count_conflicts(ordered),
        )

        merged = MergedScrapingData(
            url=ordered[0].url,
            content=self.merge_content(ordered),
            html=self._merge_html(ordered),
            text=self._merge_text(ordered),
            title=self._merge_title(ordered),
            structured=self._merge_structured(ordered),
            metadata=self._merge_metadata(ordered),
            sources=tuple(sources),
            quality=self._quality(ordered, statistics, reference_time),
            statistics=statistics,
        )
        logger.debug(
            f"Merged {len(ordered)} passes for {merged.url} "
            f"(quality={merged.quality.score}, conflicts={merged.statistics.conflicting_data_points})"
        )
        return merged

    # --- content ---

    def merge_content(self, passes: Sequence[ScrapingPass]) -> str:
        if not self.options.deduplicate_content:
            values = [p.result.content for p in passes if p.result.content]
            resolved = resolve_conflict(values, self.options.conflict_resolution)
            return resolved if isinstance(resolved, str) else ""

        seen: set[str] = set()
        blocks: list[str] = []
        for scraping_pass in passes:
            for block in _BLOCK_SPLIT.split(scraping_pass.result.content or ""):
                normalized = block.strip()
                if not normalized:
                    continue
                digest = hashlib.md5(normalized.encode("utf-8")).hexdigest()
                if digest in seen:
                    continue
                seen.add(digest)
                blocks.append(block.strip("\n").rstrip())
        return "\n\n".join(blocks)

    def _merge_html(self, passes: Sequence[ScrapingPass]) -> str:
        with_html = [p for p in passes if p.result.html]
        if not with_html:
            return ""
        if self.options.preserve_all_html:
            return "\n\n".join(
                f"<!-- Scraping Pass {index}: {p.scraper} -->\n{p.result.html}"
                for index, p in enumerate(with_html, 1)
            )
        first = with_html[0].result.html
        if len(with_html) == 1:
            return first

        try:
            base = BeautifulSoup(first, "html.parser")
            for scraping_pass in with_html[1:]:
                other = BeautifulSoup(scraping_pass.result.html, "html.parser")
                self._merge_body(base, other)
                self._merge_head_meta(base, other)
            return str(base)
        except Exception as exc:
            logger.warning(f"HTML merge failed, keeping first document: {exc}")
            return first

    @staticmethod
    def _merge_body(base: BeautifulSoup, other: BeautifulSoup) -> None:
        if base.body is None or other.body is None:
            return
        body_html = base.body.decode_contents()
        for child in other.body.find_all(recursive=False):
            fragment = str(child)
            if not child.decode_contents().strip() or fragment in body_html:
                continue
            base.body.append(copy.copy(child))
            body_html += fragment

    @staticmethod
    def _merge_head_meta(base: BeautifulSoup, other: BeautifulSoup) -> None:
        if base.head is None or other.head is None:
            return
        for meta in other.head.find_all("meta"):
            key = meta.get("name") or meta.get("property")
            if not key:
                continue
            if base.head.find("meta", attrs={"name": key}) or base.head.find(
                "meta", attrs={"property": key}
            ):
                continue
            base.head.append(copy.copy(meta))

    @staticmethod
    def _merge_text(passes: Sequence[ScrapingPass]) -> str:
        texts = [p.result.text for p in passes if p.result.text and p.result.text.strip()]
        if not texts:
            return ""
        base_index = max(range(len(texts)), key=lambda i: len(texts[i]))
        base = texts[base_index]
        seen = {line.strip() for line in base.splitlines() if line.strip()}
        extra: list[str] = []
        for index, text in enumerate(texts):
            if index == base_index:
                continue
            for line in text.splitlines():
                trimmed = line.strip()
                if trimmed and trimmed not in seen:
                    seen.add(trimmed)
                    extra.append(trimmed)
        if not extra:
            return base
        return base.rstrip("\n") + "\n" + "\n".join(extra)

    @staticmethod
    def _merge_title(passes: Sequence[ScrapingPass]) -> str:
        titles = [p.result.title.strip() for p in passes if p.result.title and p.result.title.strip()]
        if not titles:
            return ""
        counts = Counter(titles)
        return min(counts, key=lambda title: (-counts[title], -len(title)))

    def _merge_structured(self, passes: Sequence[ScrapingPass]) -> dict[str, Any]:
        merged: dict[str, Any] = {}
        for scraping_pass in passes:
            for key, value in scraping_pass.result.structured.items():
                if key not in merged:
                    merged[key] = copy.deepcopy(value)
                    continue
                merged[key] = self._merge_value(key, merged[key], copy.deepcopy(value))
        return merged

    def _merge_value(self, key: str, existing: Any, new: Any) -> Any:
        custom = self.options.custom_mergers.get(key)
        if custom is not None:
            try:
                return custom([existing, new])
            except Exception as exc:
                logger.warning(f"Custom merger for '{key}' failed, using default merge: {exc}")
        if isinstance(existing, list) and isinstance(new, list):
            return _unique([*existing, *new])
        if isinstance(existing, dict) and isinstance(new, dict):
            return {**existing, **new}
        return resolve_conflict([existing, new], self.options.conflict_resolution)

    @staticmethod
    def _merge_metadata(passes: Sequence[ScrapingPass]) -> dict[str, Any]:
        merged: dict[str, Any] = {}
        screenshots: list[Any] = []
        status_code: Any = None
        for scraping_pass in passes:
            metadata = scraping_pass.result.metadata
            if metadata.get("screenshot"):
                screenshots.append(metadata["screenshot"])
            if metadata.get("status_code") is not None:
                status_code = metadata["status_code"]
            for key, value in metadata.items():
                if key in HANDLED_METADATA_KEYS or key in merged:
                    continue
                merged[key] = copy.deepcopy(value)

        merged["total_duration_ms"] = sum(p.duration_ms for p in passes)
        merged["screenshots"] = screenshots
        if status_code is not None:
            merged["status_code"] = status_code
        return merged

    # --- provenance and scoring ---

    @staticmethod
    def _data_points(scraping_pass: ScrapingPass) -> list[str]:
        result = scraping_pass.result
        points: list[str] = []
        if result.title:
            points.append(f"title:{result.title}")
        if result.metadata.get("status_code") is not None:
            points.append(f"status:{result.metadata['status_code']}")
        points.extend(f"field:{key}" for key in result.structured)
        return points

    @staticmethod
    def pass_confidence(scraping_pass: ScrapingPass) -> float:
        result = scraping_pass.result
        confidence = 0.5
        if len(result.content or "") > 100:
            confidence += 0.2
        if result.structured:
            confidence += 0.2
        if result.errors:
            confidence -= 0.3
        if scraping_pass.duration_ms < 1000:
            confidence += 0.1
        return round(_clamp(confidence, 0.0, 1.0), 2)

    def _build_sources(self, passes: Sequence[ScrapingPass]) -> tuple[list[PassSource], int, int]:
        seen: set[str] = set()
        unique = duplicate = 0
        sources: list[PassSource] = []
        for scraping_pass in passes:
            points = self._data_points(scraping_pass)
            for point in points:
                if point in seen:
                    duplicate += 1
                else:
                    seen.add(point)
                    unique += 1
            sources.append(
                PassSource(
                    scraper=scraping_pass.scraper,
                    strategy=scraping_pass.strategy,
                    timestamp=scraping_pass.timestamp,
                    data_points=tuple(points),
                    confidence=self.pass_confidence(scraping_pass),
                )
            )
        return sources, unique, duplicate

    @staticmethod
    def _count_conflicts(passes: Sequence[ScrapingPass]) -> int:
        values: dict[str, set[str]] = {}
        for scraping_pass in passes:
            for key, value in scraping_pass.result.structured.items():
                if isinstance(value, (list, dict)):
                    continue
                values.setdefault(key, set()).add(_identity(value))
        return sum(1 for distinct in values.values() if len(distinct) > 1)

    @staticmethod
    def _quality(
        passes: Sequence[ScrapingPass],
        statistics: MergeStatistics,
        now: datetime,
    ) -> MergeQuality:
        contents = [p.result.content for p in passes if _has_content(p)]
        completeness = statistics.successful_passes / statistics.total_passes * 100

        if len(contents) < 2:
            consistency = 100.0
        else:
            pairs = list(combinations(contents, 2))
            consistency = sum(_jaccard(a, b) for a, b in pairs) / len(pairs) * 100

        latest = passes[-1].timestamp
        age_hours = (now - latest).total_seconds() / 3600
        freshness = _clamp(100 - age_hours * 2, 0.0, 100.0)

        score = completeness * 0.4 + consistency * 0.3 + freshness * 0.3
        return MergeQuality(
            score=round(_clamp(score, 0.0, 100.0)),
            completeness=round(completeness),
            consistency=round(consistency),
            freshness=round(freshness),
        )
