import json
import logging

import pytest

from sitescout.errors import NetworkError, OnboardingError
from sitescout.llm import router
from sitescout.onboarding import (
    analyze_content,
    analyze_listing,
    create_site_with_ai,
    recalibrate_site,
)
from sitescout.storage import get_site

from conftest import FakeFetcher, listing_html

LOGGER = logging.getLogger("sitescout.test")
LISTING = "https://news.example.com/latest"
ARTICLE = "https://news.example.com/news/story-0"
ARTICLE_HTML = (
    "<html><body><h1 class='headline'>Harbour reopens after storm</h1>"
    "<div class='body'><p>The harbour reopened on Monday after repairs to the sea wall "
    "were completed ahead of schedule.</p></div></body></html>"
)

LISTING_ANSWER = {"article_links": "article.card a", "confidence": 0.9, "reasoning": "cards"}
CONTENT_ANSWER = {
    "title_selector": "h1.headline",
    "content_selector": "div.body",
    "image_selector": "",
    "date_selector": "",
    "author_selector": "",
    "category_selector": "",
    "confidence": 0.7,
    "reasoning": "single article",
}


def _fake_model(monkeypatch, listing=None, content=None):
    answers = {
        "listing_analysis": listing or LISTING_ANSWER,
        "content_analysis": content or CONTENT_ANSWER,
    }

    def fake(method, url, headers, payload, timeout):
        name = payload["response_format"]["json_schema"]["name"]
        return {"choices": [{"message": {"content": json.dumps(answers[name])}}]}

    monkeypatch.setattr(router, "_http_request", fake)


def _fetcher(count=6):
    return FakeFetcher({LISTING: listing_html(count), ARTICLE: ARTICLE_HTML})


def test_analyze_listing_returns_validated_selector(monkeypatch, config):
    _fake_model(monkeypatch)
    fetcher = _fetcher()
    result = analyze_listing(fetcher, LISTING, config, LOGGER)
    assert result["selector"] == "article.card a"
    assert result["validation"]["valid"] is True
    assert result["validation"]["count"] == 6
    assert result["reduction"]["estimated_tokens"] > 0
    assert all(strategy == "rendered" for _url, strategy in fetcher.calls)


def test_analyze_listing_rejects_thin_selector(monkeypatch, config):
    _fake_model(monkeypatch)
    with pytest.raises(OnboardingError) as info:
        analyze_listing(_fetcher(count=2), LISTING, config, LOGGER)
    assert info.value.stage == "validation"
    assert info.value.details["validation"]["count"] == 2
    assert info.value.details["category"] == "selector_not_found"


def test_fetch_and_inference_failures_name_their_stage(monkeypatch, config):
    with pytest.raises(OnboardingError) as info:
        analyze_listing(FakeFetcher(error=NetworkError("connection refused")), LISTING, config, LOGGER)
    assert info.value.stage == "fetch"
    assert info.value.details["category"] == "network"

    _fake_model(monkeypatch, listing={"article_links": "article a"})
    with pytest.raises(OnboardingError) as info:
        analyze_listing(_fetcher(), LISTING, config, LOGGER)
    assert info.value.stage == "inference"


def test_analyze_content_extracts_fields(monkeypatch, config):
    _fake_model(monkeypatch)
    result = analyze_content(_fetcher(), ARTICLE, config, LOGGER)
    assert result["selectors"]["title"] == "h1.headline"
    assert result["selectors"]["image"] is None
    assert result["validation"]["extracted_data"]["title"] == "Harbour reopens after storm"


def test_create_site_with_ai_previews_then_persists(monkeypatch, conn, config):
    _fake_model(monkeypatch)
    preview = create_site_with_ai(
        conn,
        _fetcher(),
        config,
        LOGGER,
        name="Harbour Times",
        base_url="https://news.example.com",
        listing_url=LISTING,
    )
    assert preview["persisted"] is False
    assert preview["site"]["test_url"] == ARTICLE
    assert preview["confidence"] == 0.8
    assert get_site(conn, "harbour-times") is None

    saved = create_site_with_ai(
        conn,
        _fetcher(),
        config,
        LOGGER,
        name="Harbour Times",
        base_url="https://news.example.com",
        listing_url=LISTING,
        frequency_minutes=30,
        persist=True,
    )
    assert saved["persisted"] is True
    site = get_site(conn, "harbour-times")
    assert site.listing_selectors.article_links == "article.card a"
    assert site.content_selectors.title == "h1.headline"
    assert site.frequency_minutes == 30
    assert site.fetch_strategy == "rendered"
    assert site.last_test["success"] is True


def test_recalibrate_updates_selectors_only_when_valid(monkeypatch, conn, config, make_site):
    site = make_site(test_url=ARTICLE, listing_selectors={"article_links": "div.old a"})
    _fake_model(monkeypatch)
    result = recalibrate_site(conn, _fetcher(), config, LOGGER, site.id)
    assert result["site"]["listing_selectors"]["article_links"] == "article.card a"
    assert get_site(conn, site.id).content_selectors.content == "div.body"

    _fake_model(monkeypatch, listing={**LISTING_ANSWER, "article_links": "section.gone a"})
    with pytest.raises(OnboardingError):
        recalibrate_site(conn, _fetcher(), config, LOGGER, site.id)
    refreshed = get_site(conn, site.id)
    assert refreshed.listing_selectors.article_links == "article.card a"
    assert refreshed.last_test["success"] is False
    assert refreshed.last_test["stage"] == "validation"


def test_recalibrate_unknown_site(conn, config):
    with pytest.raises(ValueError, match="site_not_found"):
        recalibrate_site(conn, _fetcher(), config, LOGGER, "missing")
