from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from company_intel.errors import SessionNotFoundError
from company_intel.intelligence.extractor import (
    CategoryExtractor,
    aggregate_confidence,
    batch_confidence,
    derive_status,
)
from company_intel.models.intelligence import (
    STATUS_RANK,
    ExtractionStatus,
    IntelligenceCategory,
    IntelligenceItem,
    ItemType,
)
from company_intel.scraping.plugins.static import parse_html
from company_intel.services.sessions import InMemorySessionStore


def make_item(confidence: float) -> IntelligenceItem:
    return IntelligenceItem(
        type=ItemType.PATTERN_MATCH,
        content={"text": "x"},
        source="https://acme.test/",
        confidence=confidence,
    )


def test_twelve_matches_with_url_match_scores_items_at_point_nine():
    extractor = CategoryExtractor()
    text = " ".join(["Our pricing is simple."] * 12)

    results = extractor.extract_from_page("https://acme.test/pricing", {"text": text})

    pricing = results[IntelligenceCategory.PRICING]
    assert pricing.confidence == 0.95
    assert len(pricing.items) == 10
    assert all(item.confidence == 0.9 for item in pricing.items)
    assert all(item.type is ItemType.PATTERN_MATCH for item in pricing.items)


def test_batch_confidence_tiers():
    assert batch_confidence(1, False) == 0.5
    assert batch_confidence(3, False) == 0.55
    assert batch_confidence(6, True) == 0.8
    assert batch_confidence(50, True) == 0.9


def test_url_category_alone_does_not_create_items():
    extractor = CategoryExtractor()

    assert extractor.categorize_url("https://acme.test/about-us") is IntelligenceCategory.CORPORATE
    results = extractor.extract_from_page("https://acme.test/about-us", {"text": "Lorem ipsum dolor sit amet."})

    assert IntelligenceCategory.CORPORATE not in results
    assert results == {}


def test_url_rules_are_ordered_first_match_wins():
    extractor = CategoryExtractor()
    assert extractor.categorize_url("https://acme.test/company/pricing") is IntelligenceCategory.CORPORATE
    assert extractor.categorize_url("https://acme.test/blog/careers-at-acme") is IntelligenceCategory.BLOG
    assert extractor.categorize_url("https://acme.test/") is None


def test_match_context_is_collapsed_and_capped():
    extractor = CategoryExtractor(context_chars=20, max_context_chars=30)
    text = "a" * 50 + "\n\n   careers   \n" + "b" * 50

    results = extractor.extract_from_page("https://acme.test/x", {"text": text})

    item = results[IntelligenceCategory.CAREERS].items[0]
    assert item.content["text"] == "careers"
    assert item.content["pattern"] == "careers"
    assert "\n" not in item.content["context"]
    assert len(item.content["context"]) <= 30


def test_schema_fields_map_directly_at_point_nine():
    extractor = CategoryExtractor()
    payload = {
        "extract": {"mission": "Make widgets", "leadership": ["Ada"], "unknown": "ignored", "pricing": ""},
    }

    results = extractor.extract_from_page("https://acme.test/", payload)

    corporate = results[IntelligenceCategory.CORPORATE]
    assert corporate.confidence == 0.95
    assert corporate.items[0].type is ItemType.SCHEMA_EXTRACTED
    assert corporate.items[0].content == "Make widgets"
    assert results[IntelligenceCategory.TEAM].items[0].content == ["Ada"]
    assert IntelligenceCategory.PRICING not in results


def test_json_ld_on_static_pages_feeds_schema_categories():
    html = """
    <html><head><script type="application/ld+json">
    {"@type": "Organization", "name": "Acme", "slogan": "Widgets for everyone",
     "founder": {"@type": "Person", "name": "Ada Acme"}}
    </script></head><body><p>Hello</p></body></html>
    """
    payload = parse_html("https://acme.test/", html, "static").to_payload()

    results = CategoryExtractor().extract_from_page("https://acme.test/", payload)

    corporate = results[IntelligenceCategory.CORPORATE]
    fields = {item.metadata["field"]: item for item in corporate.items}
    assert fields["organization"].content == {"name": "Acme"}
    assert fields["mission"].content == "Widgets for everyone"
    assert all(item.confidence == 0.9 for item in corporate.items)
    assert results[IntelligenceCategory.TEAM].items[0].content == [{"name": "Ada Acme", "role": "Founder"}]


def test_markdown_takes_priority_over_html():
    extractor = CategoryExtractor()
    payload = {"markdown": "We are hiring for careers.", "html": "<p>Read our blog</p>"}

    results = extractor.extract_from_page("https://acme.test/", payload)

    assert IntelligenceCategory.CAREERS in results
    assert IntelligenceCategory.BLOG not in results


def test_html_payload_is_reduced_to_text():
    extractor = CategoryExtractor()
    results = extractor.extract_from_page(
        "https://acme.test/", {"html": '<div class="careers"><p>Read our blog</p></div>'}
    )
    assert IntelligenceCategory.BLOG in results
    assert IntelligenceCategory.CAREERS not in results


def test_failing_pattern_does_not_abort_page():
    extractor = CategoryExtractor()

    class BrokenPattern:
        def finditer(self, _text):
            raise RuntimeError("regex engine failure")

    patterns = extractor._patterns[IntelligenceCategory.PRICING]
    extractor._patterns[IntelligenceCategory.PRICING] = [("pricing", BrokenPattern()), *patterns[1:]]

    results = extractor.extract_from_page(
        "https://acme.test/", {"text": "pricing plans and careers"}
    )

    pricing = results[IntelligenceCategory.PRICING]
    assert [item.content["pattern"] for item in pricing.items] == ["plans"]
    assert IntelligenceCategory.CAREERS in results


def test_confidence_and_status_bounds():
    extractor = CategoryExtractor()
    pages = {
        f"https://acme.test/pricing/{index}": {"text": "pricing plans price cost subscription " * 20}
        for index in range(6)
    }
    for page_url, payload in pages.items():
        for bucket in extractor.extract_from_page(page_url, payload).values():
            assert 0.0 <= bucket.confidence <= 1.0
            for item in bucket.items:
                assert 0.0 <= item.confidence <= 0.95


def test_aggregate_confidence_adds_source_bonus():
    items = [make_item(0.5), make_item(0.7)]
    assert aggregate_confidence(items, 1) == 0.65
    assert aggregate_confidence(items, 10) == 0.8
    assert aggregate_confidence([make_item(0.95)] * 3, 10) == 1.0
    assert aggregate_confidence([], 3) == 0.0


def test_status_thresholds():
    assert derive_status(0, 0.99) is ExtractionStatus.PENDING
    assert derive_status(6, 0.81) is ExtractionStatus.COMPLETED
    assert derive_status(4, 0.61) is ExtractionStatus.PARTIAL
    assert derive_status(2, 0.41) is ExtractionStatus.PROCESSING
    assert derive_status(1, 0.9) is ExtractionStatus.FAILED


def test_status_never_drops_when_adding_confident_items():
    for base_confidence in (0.3, 0.45, 0.55, 0.65, 0.75, 0.85, 0.95):
        for sources in (1, 2, 4):
            items = [make_item(base_confidence)]
            for _ in range(10):
                before = derive_status(len(items), aggregate_confidence(items, sources))
                average = sum(item.confidence for item in items) / len(items)
                items.append(make_item(min(average + 0.01, 0.95)))
                after = derive_status(len(items), aggregate_confidence(items, sources))
                assert STATUS_RANK[after] >= STATUS_RANK[before]


def test_merge_into_unions_sources_and_recomputes():
    extractor = CategoryExtractor()
    first = extractor.extract_from_page("https://acme.test/a", {"text": "careers careers careers"})
    second = extractor.extract_from_page("https://acme.test/b", {"text": "careers"})
    again = extractor.extract_from_page("https://acme.test/a", {"text": "careers"})

    bucket = CategoryExtractor.merge_into(
        first[IntelligenceCategory.CAREERS], second[IntelligenceCategory.CAREERS]
    )
    bucket = CategoryExtractor.merge_into(bucket, again[IntelligenceCategory.CAREERS])

    assert bucket.sources == ["https://acme.test/a", "https://acme.test/b"]
    assert len(bucket.items) == 5
    average = sum(item.confidence for item in bucket.items) / 5
    assert bucket.confidence == round(min(average + 0.1, 1.0), 4)
    assert bucket.status is ExtractionStatus.PARTIAL


@pytest.mark.asyncio
async def test_extract_reports_progress_on_interval_and_end():
    extractor = CategoryExtractor(progress_interval=2)
    progress = AsyncMock()
    pages = {f"https://acme.test/{index}": {"text": "careers"} for index in range(3)}

    results = await extractor.extract(pages, on_progress=progress)

    assert [call.args[:2] for call in progress.await_args_list] == [(2, 3), (3, 3)]
    assert results[IntelligenceCategory.CAREERS].sources == list(pages)


@pytest.mark.asyncio
async def test_extract_persists_results_under_intelligence_key():
    store = InMemorySessionStore()
    session = await store.create("Acme", "acme.test")
    await store.update(session.id, {"merged_data": {"discovery": {"urls": ["https://acme.test/"]}}}, 0)
    extractor = CategoryExtractor(session_store=store)

    await extractor.extract({"https://acme.test/jobs": {"text": "careers"}}, session_id=session.id)

    saved = await store.get(session.id)
    assert saved.merged_data["discovery"] == {"urls": ["https://acme.test/"]}
    assert "careers" in saved.merged_data["intelligence"]
    assert saved.merged_data["intelligence_summary"]["categories"] == 1


@pytest.mark.asyncio
async def test_save_failure_keeps_in_memory_results(monkeypatch):
    store = InMemorySessionStore()
    session = await store.create("Acme", "acme.test")
    monkeypatch.setattr(store, "update", AsyncMock(side_effect=RuntimeError("database down")))
    extractor = CategoryExtractor(session_store=store)

    results = await extractor.extract(
        {"https://acme.test/jobs": {"text": "careers and hiring"}}, session_id=session.id
    )

    assert IntelligenceCategory.CAREERS in results
    assert len(results[IntelligenceCategory.CAREERS].items) == 2


@pytest.mark.asyncio
async def test_save_for_missing_session_raises():
    extractor = CategoryExtractor(session_store=InMemorySessionStore())
    with pytest.raises(SessionNotFoundError):
        await extractor.extract({"https://acme.test/": {"text": "careers"}}, session_id="missing")


def test_summarize_counts_statuses():
    extractor = CategoryExtractor()
    results = extractor.extract_from_page("https://acme.test/", {"text": "careers blog blog"})
    summary = CategoryExtractor.summarize(results)
    assert summary["categories"] == 2
    assert summary["total_items"] == 3
    assert sum(summary["by_status"].values()) == 2


def test_merging_a_confident_page_never_lowers_status():
    extractor = CategoryExtractor()
    first = extractor.extract_from_page(
        "https://acme.test/x", {"extract": {"pricing": "$10/month"}, "text": "pricing " * 6}
    )[IntelligenceCategory.PRICING]
    before_status, before_confidence = first.status, first.confidence
    average = sum(item.confidence for item in first.items) / len(first.items)

    second = extractor.extract_from_page("https://acme.test/pricing", {"text": "pricing"})[
        IntelligenceCategory.PRICING
    ]
    assert all(item.confidence >= average for item in second.items)

    merged = CategoryExtractor.merge_into(first, second)

    assert len(merged.items) == 8
    assert merged.confidence >= before_confidence
    assert STATUS_RANK[merged.status] >= STATUS_RANK[before_status]
