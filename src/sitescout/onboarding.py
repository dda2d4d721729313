from __future__ import annotations

import logging
from dataclasses import asdict, replace
from typing import Any

from .config import Config
from .errors import DiscoveryError, OnboardingError, ValidationError, categorize_error
from .extract import check_selector_syntax
from .inference import infer_content_selectors, infer_listing_selector
from .models import ContentSelectors
from .reducer import reduce_html
from .storage import (
    require_site,
    set_site_last_test,
    site_to_dict,
    update_site_selectors,
    upsert_site,
)
from .utils import log_event, utc_now_iso
from .validator import validate_content_selectors, validate_listing_selector


def analyze_listing(
    fetcher: Any, url: str, config: Config, logger: logging.Logger
) -> dict[str, Any]:
    reduced = _fetch_and_reduce(fetcher, url, logger)
    try:
        proposal = infer_listing_selector(reduced.reduced_html, url, config.llm, logger)
    except DiscoveryError as exc:
        raise OnboardingError("inference", str(exc), {"url": url}) from exc
    validation = validate_listing_selector(
        fetcher, url, proposal.selector, config=config.validation, logger=logger
    )
    result = {
        "url": url,
        "selector": proposal.selector,
        "confidence": proposal.confidence,
        "rationale": proposal.rationale,
        "validation": asdict(validation),
        "reduction": asdict(reduced.stats),
    }
    if not validation.valid:
        log_event(
            logger,
            logging.WARNING,
            "listing_analysis_rejected",
            url=url,
            selector=proposal.selector,
            reason=validation.message,
        )
        _reject(validation.message, result)
    log_event(
        logger,
        logging.INFO,
        "listing_analysis_completed",
        url=url,
        selector=proposal.selector,
        count=validation.count,
    )
    return result


def analyze_content(
    fetcher: Any, url: str, config: Config, logger: logging.Logger
) -> dict[str, Any]:
    reduced = _fetch_and_reduce(fetcher, url, logger)
    try:
        proposal = infer_content_selectors(reduced.reduced_html, url, config.llm, logger)
    except DiscoveryError as exc:
        raise OnboardingError("inference", str(exc), {"url": url}) from exc
    selectors = proposal.to_selectors()
    validation = validate_content_selectors(
        fetcher, url, selectors, config=config.validation, logger=logger
    )
    selectors = _usable_selectors(selectors)
    result = {
        "url": url,
        "selectors": asdict(selectors),
        "confidence": proposal.confidence,
        "rationale": proposal.rationale,
        "validation": asdict(validation),
        "reduction": asdict(reduced.stats),
    }
    if not validation.valid:
        log_event(
            logger,
            logging.WARNING,
            "content_analysis_rejected",
            url=url,
            reason=validation.message,
        )
        _reject(validation.message, result)
    log_event(logger, logging.INFO, "content_analysis_completed", url=url)
    return result


def try_listing_selector(
    fetcher: Any, url: str, selector: str, config: Config, logger: logging.Logger
) -> dict[str, Any]:
    """Run a hand-entered listing selector against the live page without saving it."""
    validation = validate_listing_selector(
        fetcher, url, selector, config=config.validation, logger=logger
    )
    log_event(
        logger,
        logging.INFO,
        "manual_listing_test",
        url=url,
        selector=selector,
        valid=validation.valid,
        count=validation.count,
    )
    return {"url": url, "selector": selector, "validation": asdict(validation)}


def try_content_selectors(
    fetcher: Any,
    url: str,
    selectors: dict[str, Any],
    config: Config,
    logger: logging.Logger,
) -> dict[str, Any]:
    content = ContentSelectors(
        title=str(selectors.get("title") or ""),
        content=str(selectors.get("content") or ""),
        image=selectors.get("image") or None,
        date=selectors.get("date") or None,
        author=selectors.get("author") or None,
        category=selectors.get("category") or None,
    )
    validation = validate_content_selectors(
        fetcher, url, content, config=config.validation, logger=logger
    )
    log_event(logger, logging.INFO, "manual_content_test", url=url, valid=validation.valid)
    return {"url": url, "selectors": asdict(content), "validation": asdict(validation)}


def create_site_with_ai(
    conn: Any,
    fetcher: Any,
    config: Config,
    logger: logging.Logger,
    *,
    name: str,
    base_url: str,
    listing_url: str,
    test_url: str | None = None,
    frequency_minutes: int | None = None,
    fetch_strategy: str = "rendered",
    persist: bool = False,
) -> dict[str, Any]:
    listing = analyze_listing(fetcher, listing_url, config, logger)
    article_url = test_url or _first_url(listing)
    if not article_url:
        raise OnboardingError("validation", "no article URL available for content analysis", listing)
    content = analyze_content(fetcher, article_url, config, logger)
    confidence = round((listing["confidence"] + content["confidence"]) / 2, 3)
    site_dict: dict[str, Any] = {
        "name": name,
        "base_url": base_url,
        "listing_url": listing_url,
        "test_url": article_url,
        "active": True,
        "listing_selectors": {"article_links": listing["selector"]},
        "content_selectors": content["selectors"],
        "frequency_minutes": frequency_minutes or config.scheduler.default_frequency_minutes,
        "fetch_strategy": fetch_strategy,
    }
    persisted = False
    if persist:
        site = upsert_site(conn, site_dict, config.discovery.default_re_extraction_days)
        set_site_last_test(conn, site.id, _test_record(True, confidence=confidence))
        site_dict = site_to_dict(require_site(conn, site.id))
        persisted = True
        log_event(logger, logging.INFO, "site_created_with_ai", site=site.id, confidence=confidence)
    return {
        "site": site_dict,
        "listing": listing,
        "content": content,
        "confidence": confidence,
        "persisted": persisted,
    }


def recalibrate_site(
    conn: Any,
    fetcher: Any,
    config: Config,
    logger: logging.Logger,
    site_id: str,
) -> dict[str, Any]:
    site = require_site(conn, site_id)
    try:
        listing = analyze_listing(fetcher, site.listing_url, config, logger)
        article_url = site.test_url or _first_url(listing)
        if not article_url:
            raise OnboardingError("validation", "no article URL available for content analysis", listing)
        content = analyze_content(fetcher, article_url, config, logger)
    except OnboardingError as exc:
        set_site_last_test(
            conn,
            site_id,
            _test_record(False, stage=exc.stage, message=exc.message),
        )
        log_event(
            logger,
            logging.WARNING,
            "recalibration_failed",
            site=site_id,
            stage=exc.stage,
            error=exc.message,
        )
        raise

    listing_selectors = replace(site.listing_selectors, article_links=listing["selector"])
    selectors = content["selectors"]
    content_selectors = replace(
        site.content_selectors,
        title=selectors["title"],
        content=selectors["content"],
        image=selectors["image"],
        date=selectors["date"],
        author=selectors["author"],
        category=selectors["category"],
    )
    update_site_selectors(conn, site_id, listing=listing_selectors, content=content_selectors)
    confidence = round((listing["confidence"] + content["confidence"]) / 2, 3)
    set_site_last_test(conn, site_id, _test_record(True, confidence=confidence))
    log_event(
        logger,
        logging.INFO,
        "site_recalibrated",
        site=site_id,
        selector=listing["selector"],
        confidence=confidence,
    )
    return {
        "site": site_to_dict(require_site(conn, site_id)),
        "listing": listing,
        "content": content,
        "confidence": confidence,
    }


def _fetch_and_reduce(fetcher: Any, url: str, logger: logging.Logger):
    try:
        page = fetcher.fetch_rendered(url)
    except DiscoveryError as exc:
        log_event(logger, logging.WARNING, "onboarding_fetch_failed", url=url, error=str(exc))
        raise OnboardingError(
            "fetch",
            str(exc),
            {"url": url, "category": categorize_error(exc), "http_status": exc.http_status},
        ) from exc
    try:
        return reduce_html(page.html, logger)
    except DiscoveryError as exc:
        raise OnboardingError("reduce", str(exc), {"url": url}) from exc


def _reject(message: str, result: dict[str, Any]) -> None:
    error = ValidationError(message)
    raise OnboardingError("validation", message, {**result, "category": error.category}) from error


def _usable_selectors(selectors: ContentSelectors) -> ContentSelectors:
    # optional selectors failing the syntax check were skipped during validation
    unusable = {}
    for field_name in ("image", "date", "author", "category"):
        selector = getattr(selectors, field_name)
        if selector and not check_selector_syntax(selector)[0]:
            unusable[field_name] = None
    return replace(selectors, **unusable)


def _first_url(listing: dict[str, Any]) -> str | None:
    urls = listing.get("validation", {}).get("urls") or []
    return urls[0] if urls else None


def _test_record(success: bool, **fields: Any) -> dict[str, Any]:
    record: dict[str, Any] = {"success": success, "tested_at": utc_now_iso()}
    record.update(fields)
    return record
