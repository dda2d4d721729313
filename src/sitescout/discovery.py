from __future__ import annotations

import logging
import sqlite3
import time
from typing import Any

from .config import Config
from .errors import DiscoveryError, SelectorError, categorize_error
from .extract import element_text, find_in_container, image_url, iter_links, parse_html
from .models import DiscoveryResult, DiscoveryRunLog, SiteConfig
from .storage import (
    insert_discovered_url,
    queue_url,
    record_discovery_run,
    requeue_if_due,
    touch_discovered_url,
)
from .utils import elapsed_ms, log_event, normalize_url, url_hash, utc_now_iso


def discover_site(
    conn: Any,
    site: SiteConfig,
    fetcher: Any,
    config: Config,
    logger: logging.Logger,
    triggered_by: str = "schedule",
) -> DiscoveryResult:
    started = time.monotonic()
    selector = site.listing_selectors.article_links
    fetch_ms = 0
    parse_ms = 0
    http_status: int | None = None
    method = site.fetch_strategy
    log_event(
        logger,
        logging.INFO,
        "discovery_started",
        site=site.id,
        url=site.listing_url,
        strategy=site.fetch_strategy,
        triggered_by=triggered_by,
    )
    try:
        fetch_started = time.monotonic()
        page = fetcher.fetch(site.listing_url, site.fetch_strategy, fetcher.options_for_site(site))
        fetch_ms = elapsed_ms(fetch_started, time.monotonic())
        http_status = page.status
        method = page.method

        parse_started = time.monotonic()
        candidates = _extract_candidates(page.html, site, config)
        parse_ms = elapsed_ms(parse_started, time.monotonic())
    except Exception as exc:  # noqa: BLE001
        return _record_failure(
            conn,
            site,
            exc,
            logger,
            triggered_by=triggered_by,
            method=method,
            http_status=getattr(exc, "http_status", None) or http_status,
            fetch_ms=fetch_ms,
            parse_ms=parse_ms,
            total_ms=elapsed_ms(started, time.monotonic()),
        )

    found = len(candidates["urls"])
    new = duplicate = queued = 0
    skipped = candidates["skipped"]
    now = utc_now_iso()
    for url, title, image in candidates["urls"]:
        hashed = url_hash(url)
        try:
            if insert_discovered_url(conn, site, url, title=title, image_url=image, now=now):
                new += 1
                if queue_url(conn, site.id, hashed, now):
                    queued += 1
            else:
                duplicate += 1
                touch_discovered_url(conn, site.id, hashed, now)
                if requeue_if_due(conn, site.id, hashed, now):
                    queued += 1
            conn.commit()
        except sqlite3.Error as exc:
            conn.rollback()
            skipped += 1
            log_event(logger, logging.WARNING, "discovery_url_skipped", site=site.id, url=url, error=str(exc))

    total_ms = elapsed_ms(started, time.monotonic())
    outcome = "partial" if skipped else "success"
    record_discovery_run(
        conn,
        DiscoveryRunLog(
            id=None,
            site_id=site.id,
            listing_url=site.listing_url,
            selector=selector,
            outcome=outcome,
            found=found,
            new=new,
            duplicate=duplicate,
            skipped=skipped,
            queued=queued,
            fetch_ms=fetch_ms,
            parse_ms=parse_ms,
            total_ms=total_ms,
            fetch_method=method,
            http_status=http_status,
            sample_urls=[url for url, _title, _image in candidates["urls"][: config.discovery.sample_size]],
            error_category=None,
            error_message=None,
            triggered_by=triggered_by,
            executed_at=utc_now_iso(),
        ),
    )
    log_event(
        logger,
        logging.INFO,
        "discovery_completed",
        site=site.id,
        outcome=outcome,
        found=found,
        new=new,
        duplicate=duplicate,
        skipped=skipped,
        queued=queued,
        total_ms=total_ms,
    )
    return DiscoveryResult(
        success=True,
        found=found,
        new=new,
        duplicate=duplicate,
        skipped=skipped,
        queued=queued,
        duration_ms=total_ms,
        http_status=http_status,
    )


def _extract_candidates(html: str, site: SiteConfig, config: Config) -> dict[str, Any]:
    selector = site.listing_selectors.article_links
    soup = parse_html(html)
    urls: list[tuple[str, str | None, str | None]] = []
    seen: set[str] = set()
    matched = 0
    skipped = 0
    limit = site.fetch_settings.max_urls_per_run
    for element, _href, resolved in iter_links(soup, selector, site.base_url):
        matched += 1
        if not resolved:
            skipped += 1
            continue
        canonical = normalize_url(
            resolved,
            strip_tracking_params=config.discovery.strip_tracking_params,
            tracking_params=config.discovery.tracking_params,
        )
        if canonical in seen:
            continue
        if limit and len(urls) >= limit:
            continue
        seen.add(canonical)
        title = None
        image = None
        if site.listing_selectors.title:
            title = element_text(find_in_container(element, site.listing_selectors.title)) or None
        elif element.name == "a":
            title = element_text(element) or None
        if site.listing_selectors.image:
            image = image_url(find_in_container(element, site.listing_selectors.image), site.base_url)
        urls.append((canonical, title, image))
    if matched == 0:
        raise SelectorError(f"selector {selector!r} matched no elements")
    return {"urls": urls, "skipped": skipped}


def _record_failure(
    conn: Any,
    site: SiteConfig,
    exc: BaseException,
    logger: logging.Logger,
    *,
    triggered_by: str,
    method: str,
    http_status: int | None,
    fetch_ms: int,
    parse_ms: int,
    total_ms: int,
) -> DiscoveryResult:
    category = categorize_error(exc)
    message = str(exc) or exc.__class__.__name__
    level = logging.WARNING if isinstance(exc, DiscoveryError) else logging.ERROR
    log_event(
        logger,
        level,
        "discovery_failed",
        site=site.id,
        category=category,
        error=message,
    )
    record_discovery_run(
        conn,
        DiscoveryRunLog(
            id=None,
            site_id=site.id,
            listing_url=site.listing_url,
            selector=site.listing_selectors.article_links,
            outcome="failed",
            found=0,
            new=0,
            duplicate=0,
            skipped=0,
            queued=0,
            fetch_ms=fetch_ms,
            parse_ms=parse_ms,
            total_ms=total_ms,
            fetch_method=method,
            http_status=http_status,
            sample_urls=[],
            error_category=category,
            error_message=message,
            triggered_by=triggered_by,
            executed_at=utc_now_iso(),
        ),
    )
    return DiscoveryResult(
        success=False,
        found=0,
        new=0,
        duplicate=0,
        skipped=0,
        queued=0,
        duration_ms=total_ms,
        error=message,
        error_category=category,
        http_status=http_status,
    )
