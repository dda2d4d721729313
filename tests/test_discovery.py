import logging
import sqlite3

import sitescout.discovery as discovery
from sitescout.discovery import discover_site
from sitescout.errors import NetworkError, RateLimitError
from sitescout.storage import (
    count_urls_by_status,
    get_tracking_record,
    latest_discovery_run,
    list_discovery_runs,
)
from sitescout.utils import utc_now_iso_offset

from conftest import FakeFetcher, listing_html

LISTING = "https://news.example.com/latest"
LOGGER = logging.getLogger("sitescout.test")


def test_second_run_over_same_listing_is_all_duplicates(conn, config, make_site):
    site = make_site()
    fetcher = FakeFetcher({LISTING: listing_html(5)})

    first = discover_site(conn, site, fetcher, config, LOGGER)
    assert first.success is True
    assert (first.found, first.new, first.duplicate, first.queued) == (5, 5, 0, 5)

    second = discover_site(conn, site, fetcher, config, LOGGER)
    assert (second.found, second.new, second.duplicate, second.queued) == (5, 0, 5, 0)
    assert count_urls_by_status(conn, site.id)["queued"] == 5

    runs, total = list_discovery_runs(conn, site.id)
    assert total == 2
    assert all(run.outcome == "success" for run in runs)
    assert runs[0].sample_urls[0] == "https://news.example.com/news/story-0"


def test_listing_title_falls_back_to_anchor_text(conn, config, make_site):
    site = make_site(listing_selectors={"article_links": "article a", "image": "img"})
    discover_site(conn, site, FakeFetcher({LISTING: listing_html(2)}), config, LOGGER)
    record = get_tracking_record(conn, site.id, "https://news.example.com/news/story-1")
    assert record.title == "Story number 1"
    assert record.image_url == "https://news.example.com/img/1.jpg"


def test_tracking_params_are_stripped_before_dedupe(conn, config, make_site):
    site = make_site()
    html = (
        "<html><body>"
        '<article><a href="/news/a?utm_source=x">A</a></article>'
        '<article><a href="/news/a">A again</a></article>'
        '<article><a href="/news/b#comments">B</a></article>'
        "</body></html>"
    )
    result = discover_site(conn, site, FakeFetcher({LISTING: html}), config, LOGGER)
    assert result.found == 2
    assert result.new == 2


def test_max_urls_per_run_caps_candidates(conn, config, make_site):
    site = make_site(fetch_settings={"max_urls_per_run": 3})
    result = discover_site(conn, site, FakeFetcher({LISTING: listing_html(10)}), config, LOGGER)
    assert result.found == 3
    assert result.new == 3


def test_zero_matches_records_selector_failure(conn, config, make_site):
    site = make_site(listing_selectors={"article_links": "section.missing a"})
    result = discover_site(conn, site, FakeFetcher({LISTING: listing_html(4)}), config, LOGGER)
    assert result.success is False
    assert result.error_category == "selector_not_found"

    run = latest_discovery_run(conn, site.id)
    assert run.outcome == "failed"
    assert run.error_category == "selector_not_found"
    assert count_urls_by_status(conn, site.id)["queued"] == 0


def test_fetch_errors_are_categorised(conn, config, make_site):
    site = make_site()
    result = discover_site(
        conn, site, FakeFetcher(error=NetworkError("connection refused")), config, LOGGER
    )
    assert result.error_category == "network"

    result = discover_site(
        conn, site, FakeFetcher(error=RateLimitError("HTTP 429", http_status=429)), config, LOGGER
    )
    assert result.error_category == "rate_limit"
    assert result.http_status == 429
    assert latest_discovery_run(conn, site.id).http_status == 429


def test_storage_error_skips_single_url(conn, config, make_site, monkeypatch):
    site = make_site()
    real_insert = discovery.insert_discovered_url

    def flaky_insert(conn, site, url, **kwargs):
        if url.endswith("story-2"):
            raise sqlite3.OperationalError("database is locked")
        return real_insert(conn, site, url, **kwargs)

    monkeypatch.setattr(discovery, "insert_discovered_url", flaky_insert)
    result = discover_site(conn, site, FakeFetcher({LISTING: listing_html(4)}), config, LOGGER)
    assert result.success is True
    assert result.skipped == 1
    assert result.new == 3
    assert latest_discovery_run(conn, site.id).outcome == "partial"


def test_due_completed_urls_are_requeued_on_rediscovery(conn, config, make_site):
    site = make_site(allow_re_extraction=True)
    fetcher = FakeFetcher({LISTING: listing_html(3)})
    discover_site(conn, site, fetcher, config, LOGGER)
    conn.execute(
        "UPDATE url_tracking SET status = 'completed', next_re_extraction_at = ?",
        (utc_now_iso_offset(seconds=-5),),
    )
    conn.commit()

    result = discover_site(conn, site, fetcher, config, LOGGER)
    assert result.duplicate == 3
    assert result.queued == 3
    assert count_urls_by_status(conn, site.id)["queued"] == 3
