from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from company_intel.errors import MergeInputError
from company_intel.models.scraping import ScrapingPass, ScrapingResult
from company_intel.scraping.merger import MergeOptions, ScrapingMerger, resolve_conflict

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def make_pass(
    *,
    scraper: str = "static",
    content: str = "",
    html: str = "",
    text: str = "",
    title: str = "",
    structured: dict | None = None,
    metadata: dict | None = None,
    errors: list[str] | None = None,
    minutes_ago: int = 0,
    duration_ms: int = 500,
    url: str = "https://acme.test/",
) -> ScrapingPass:
    timestamp = NOW - timedelta(minutes=minutes_ago)
    result = ScrapingResult(
        url=url,
        scraper=scraper,
        content=content,
        html=html,
        text=text,
        title=title,
        structured=structured or {},
        metadata=metadata or {},
        errors=errors or [],
        timestamp=timestamp,
    )
    return ScrapingPass.from_result(result, strategy=scraper, duration_ms=duration_ms)


def test_merge_rejects_empty_pass_list():
    with pytest.raises(MergeInputError, match="No scraping passes"):
        ScrapingMerger().merge([])


def test_single_pass_merge():
    merged = ScrapingMerger().merge(
        [make_pass(content="Hello world", title="Home")],
        now=NOW,
    )
    assert merged.content == "Hello world"
    assert merged.title == "Home"
    assert merged.statistics.total_passes == 1
    assert merged.quality.completeness == 100
    assert len(merged.sources) == merged.statistics.total_passes


def test_two_pass_dedup_keeps_shared_block_once():
    first = make_pass(content="Intro.\n\nBody text.", minutes_ago=5)
    second = make_pass(scraper="browser", content="Intro.\n\nExtra info.", minutes_ago=1)

    merged = ScrapingMerger().merge([second, first], now=NOW)

    assert merged.content.count("Intro.") == 1
    assert "Body text." in merged.content
    assert "Extra info." in merged.content
    assert merged.content == "Intro.\n\nBody text.\n\nExtra info."


def test_dedup_is_idempotent_for_repeated_pass():
    scraping_pass = make_pass(content="Alpha.\n\nBeta.\n\nAlpha.")
    merger = ScrapingMerger()
    assert merger.merge_content([scraping_pass, scraping_pass]) == merger.merge_content([scraping_pass])


def test_merge_is_deterministic():
    passes = [
        make_pass(content="One.\n\nTwo.", title="Acme", structured={"plan": "pro"}, minutes_ago=10),
        make_pass(
            scraper="firecrawl",
            content="Two.\n\nThree.",
            title="Acme Inc",
            structured={"plan": "enterprise", "tags": ["a"]},
            html="<html><head></head><body><p>x</p></body></html>",
            minutes_ago=2,
        ),
    ]
    merger = ScrapingMerger()
    assert merger.merge(passes, now=NOW) == merger.merge(passes, now=NOW)
    assert merger.merge(passes, now=NOW).to_dict() == merger.merge(list(passes), now=NOW).to_dict()


def test_quality_scores_are_bounded():
    passes = [
        make_pass(content="", errors=["timeout"], minutes_ago=60 * 24 * 30),
        make_pass(content="completely different words here", minutes_ago=60 * 24 * 10),
    ]
    quality = ScrapingMerger().merge(passes, now=NOW).quality
    for value in (quality.score, quality.completeness, quality.consistency, quality.freshness):
        assert 0 <= value <= 100
    assert quality.completeness == 50
    assert quality.freshness == 0


def test_quality_score_weights():
    passes = [
        make_pass(content="red green blue", minutes_ago=0),
        make_pass(content="red green yellow", minutes_ago=0),
    ]
    quality = ScrapingMerger().merge(passes, now=NOW).quality
    # jaccard({red, green, blue}, {red, green, yellow}) = 2/4
    assert quality.consistency == 50
    assert quality.freshness == 100
    assert quality.score == round(100 * 0.4 + 50 * 0.3 + 100 * 0.3)


def test_title_prefers_most_frequent_then_longest():
    passes = [
        make_pass(title="Acme"),
        make_pass(title="Acme Corporation"),
        make_pass(title="Acme"),
    ]
    assert ScrapingMerger().merge(passes, now=NOW).title == "Acme"

    tie = [make_pass(title="Acme"), make_pass(title="Acme Corp")]
    assert ScrapingMerger().merge(tie, now=NOW).title == "Acme Corp"


def test_text_merge_appends_unseen_lines_to_longest_text():
    passes = [
        make_pass(text="line one\nline two\nline three"),
        make_pass(text="line two\nline four"),
    ]
    merged = ScrapingMerger().merge(passes, now=NOW)
    assert merged.text == "line one\nline two\nline three\nline four"


def test_structured_merge_rules():
    passes = [
        make_pass(structured={"tags": ["a", "b"], "contact": {"email": "a@x"}, "plan": "pro"}, minutes_ago=2),
        make_pass(
            structured={"tags": ["b", "c"], "contact": {"phone": "1"}, "plan": "enterprise", "new": 1},
            minutes_ago=1,
        ),
    ]
    merged = ScrapingMerger(MergeOptions(conflict_resolution="latest")).merge(passes, now=NOW)
    assert merged.structured["tags"] == ["a", "b", "c"]
    assert merged.structured["contact"] == {"email": "a@x", "phone": "1"}
    assert merged.structured["plan"] == "enterprise"
    assert merged.structured["new"] == 1
    assert merged.statistics.conflicting_data_points == 1


def test_custom_merger_overrides_default():
    passes = [make_pass(structured={"employees": 10}), make_pass(structured={"employees": 40})]
    options = MergeOptions(custom_mergers={"employees": lambda values: max(values)})
    merged = ScrapingMerger(options).merge(passes, now=NOW)
    assert merged.structured["employees"] == 40


def test_metadata_merge_sums_durations_and_collects_screenshots():
    passes = [
        make_pass(metadata={"status_code": 200, "screenshot": "a.png", "content_type": "text/html"}, duration_ms=300, minutes_ago=3),
        make_pass(metadata={"status_code": 304, "screenshot": "b.png"}, duration_ms=700, minutes_ago=1),
    ]
    metadata = ScrapingMerger().merge(passes, now=NOW).metadata
    assert metadata["total_duration_ms"] == 1000
    assert metadata["screenshots"] == ["a.png", "b.png"]
    assert metadata["status_code"] == 304
    assert metadata["content_type"] == "text/html"


def test_html_merge_appends_new_body_children_and_meta():
    first = make_pass(
        html='<html><head><meta name="description" content="A"></head><body><p>Shared</p></body></html>',
        minutes_ago=2,
    )
    second = make_pass(
        html=(
            '<html><head><meta name="description" content="B"><meta property="og:title" content="T"></head>'
            "<body><p>Shared</p><div>Extra</div></body></html>"
        ),
        minutes_ago=1,
    )
    html = ScrapingMerger().merge([first, second], now=NOW).html
    assert html.count("<p>Shared</p>") == 1
    assert "<div>Extra</div>" in html
    assert 'content="A"' in html and 'content="B"' not in html
    assert 'property="og:title"' in html


def test_preserve_all_html_keeps_every_document_with_provenance():
    passes = [make_pass(html="<p>a</p>", minutes_ago=2), make_pass(scraper="browser", html="<p>b</p>", minutes_ago=1)]
    html = ScrapingMerger(MergeOptions(preserve_all_html=True)).merge(passes, now=NOW).html
    assert "<!-- Scraping Pass 1: static -->\n<p>a</p>" in html
    assert "<!-- Scraping Pass 2: browser -->\n<p>b</p>" in html


def test_content_without_dedup_uses_conflict_strategy():
    passes = [make_pass(content="short", minutes_ago=2), make_pass(content="a much longer body", minutes_ago=1)]
    assert (
        ScrapingMerger(MergeOptions(deduplicate_content=False, conflict_resolution="highest_quality"))
        .merge(passes, now=NOW)
        .content
        == "a much longer body"
    )
    assert (
        ScrapingMerger(MergeOptions(deduplicate_content=False, conflict_resolution="manual"))
        .merge(passes, now=NOW)
        .content
        == "short"
    )


def test_resolve_conflict_strategies():
    assert resolve_conflict(["a", "bb"], "latest") == "bb"
    assert resolve_conflict(["abc", ["x"]], "highest_quality") == ["x"]
    assert resolve_conflict(["a", "b", "a"], "combine") == "a\n\nb"
    assert resolve_conflict([1, 2], "combine") == [1, 2]
    assert resolve_conflict(["first", "second"], "manual") == "first"


def test_sources_and_data_point_statistics():
    passes = [
        make_pass(title="Home", metadata={"status_code": 200}, structured={"plan": "pro"}, minutes_ago=2),
        make_pass(scraper="browser", title="Home", metadata={"status_code": 200}, minutes_ago=1),
    ]
    merged = ScrapingMerger().merge(passes, now=NOW)
    assert [source.scraper for source in merged.sources] == ["static", "browser"]
    assert merged.sources[0].data_points == ("title:Home", "status:200", "field:plan")
    assert merged.statistics.unique_data_points == 3
    assert merged.statistics.duplicate_data_points == 2


def test_pass_confidence_heuristic():
    rich = make_pass(content="x" * 150, structured={"a": 1}, duration_ms=200)
    broken = make_pass(content="", errors=["boom"], duration_ms=5000)
    assert ScrapingMerger.pass_confidence(rich) == 1.0
    assert ScrapingMerger.pass_confidence(broken) == 0.2


def test_unparseable_html_falls_back_to_first_document(monkeypatch):
    passes = [make_pass(html="<p>first</p>", minutes_ago=2), make_pass(html="<p>second</p>", minutes_ago=1)]

    def explode(*_args, **_kwargs):
        raise RuntimeError("parser exploded")

    monkeypatch.setattr("company_intel.scraping.merger.BeautifulSoup", explode)
    merged = ScrapingMerger().merge(passes, now=NOW)
    assert merged.html == "<p>first</p>"
    assert merged.content == ""


def test_completeness_follows_successful_pass_count():
    merged = ScrapingMerger().merge(
        [
            make_pass(scraper="static", content="hello", errors=["partial render"], minutes_ago=1),
            make_pass(scraper="browser", content="   "),
        ],
        now=NOW,
    )

    assert merged.statistics.successful_passes == 1
    assert merged.statistics.failed_passes == 1
    expected = merged.statistics.successful_passes / merged.statistics.total_passes * 100
    assert merged.quality.completeness == round(expected) == 50
