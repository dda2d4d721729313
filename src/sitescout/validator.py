from __future__ import annotations

import logging
import re
from typing import Any

from .config import ValidationConfig
from .errors import DiscoveryError
from .extract import (
    check_selector_syntax,
    date_value,
    image_url,
    parse_html,
    select_all_text,
    select_text,
    unique_link_urls,
)
from .models import ContentSelectors, ContentValidation, FetchOptions, ListingValidation
from .utils import log_event

SEMANTIC_TAGS = frozenset(
    {
        "article",
        "section",
        "main",
        "header",
        "footer",
        "aside",
        "nav",
        "figure",
        "figcaption",
        "time",
    }
)
GENERIC_TAGS = frozenset({"a", "div", "span"})
GENERIC_SELECTORS = frozenset({"a", "div", "span", "*", "p", "li", "div a", "li a", "span a", "a[href]"})
MAX_DEPTH = 5

_ATTR_RE = re.compile(r"\[[^\]]*\]")
_ID_RE = re.compile(r"#[\w-]+")
_CLASS_RE = re.compile(r"\.[\w-]+")
_TAG_RE = re.compile(r"^[a-zA-Z][\w-]*")
_COMBINATOR_RE = re.compile(r"\s*[>+~]\s*|\s+")


def default_validation_config() -> ValidationConfig:
    return ValidationConfig(
        min_listing_urls=3,
        min_title_chars=5,
        min_content_chars=50,
        max_preview_urls=20,
    )


def specificity_score(selector: str) -> int:
    text = (selector or "").strip()
    if not text:
        return 0
    attrs = len(_ATTR_RE.findall(text))
    bare = _ATTR_RE.sub("[]", text)
    score = 50
    if _ID_RE.search(bare):
        score += 25
    score += min(len(_CLASS_RE.findall(bare)) * 8, 24)
    score += min(attrs * 10, 20)

    parts = [part for part in _COMBINATOR_RE.split(bare) if part and part != ","]
    semantic = 0
    for part in parts:
        match = _TAG_RE.match(part)
        tag = match.group(0).lower() if match else ""
        if tag in SEMANTIC_TAGS:
            semantic += 1
        if part.lower() in GENERIC_TAGS:
            score -= 5
    score += min(semantic * 10, 20)
    if len(parts) > MAX_DEPTH:
        score -= 15
    return max(0, min(100, score))


def is_selector_too_generic(selector: str) -> bool:
    text = " ".join((selector or "").split()).lower()
    if text in GENERIC_SELECTORS:
        return True
    return specificity_score(text) < 40


def validate_listing_selector(
    fetcher: Any,
    url: str,
    selector: str,
    *,
    config: ValidationConfig | None = None,
    options: FetchOptions | None = None,
    logger: logging.Logger | None = None,
) -> ListingValidation:
    config = config or default_validation_config()
    logger = logger or logging.getLogger("sitescout.validator")
    ok, reason = check_selector_syntax(selector)
    if not ok:
        log_event(logger, logging.INFO, "listing_selector_rejected", selector=selector, reason=reason)
        return ListingValidation(False, [], 0, f"Syntax check failed: {reason}")
    selector = selector.strip()
    score = specificity_score(selector)
    if is_selector_too_generic(selector):
        log_event(logger, logging.WARNING, "selector_too_generic", selector=selector, score=score)

    try:
        result = fetcher.fetch_rendered(url, options)
    except DiscoveryError as exc:
        return ListingValidation(False, [], 0, f"Fetch failed: {exc}", score)

    soup = parse_html(result.html)
    matched, urls = unique_link_urls(soup, selector, url)
    count = len(urls)
    if matched == 0:
        message = "Selector matched no elements"
        valid = False
    elif count < config.min_listing_urls:
        message = (
            f"Selector matched {count} article URLs; "
            f"at least {config.min_listing_urls} required"
        )
        valid = False
    else:
        message = f"Selector matched {count} article URLs"
        valid = True
    log_event(
        logger,
        logging.INFO,
        "listing_selector_validated",
        url=url,
        selector=selector,
        valid=valid,
        matched=matched,
        count=count,
        score=score,
    )
    return ListingValidation(
        valid=valid,
        urls=urls[: config.max_preview_urls],
        count=count,
        message=message,
        specificity_score=score,
    )


def validate_content_selectors(
    fetcher: Any,
    url: str,
    selectors: ContentSelectors,
    *,
    config: ValidationConfig | None = None,
    options: FetchOptions | None = None,
    logger: logging.Logger | None = None,
) -> ContentValidation:
    config = config or default_validation_config()
    logger = logger or logging.getLogger("sitescout.validator")
    if not selectors.title or not selectors.content:
        return ContentValidation(False, {}, "Title and content selectors are required")
    for field_name, selector in (("title", selectors.title), ("content", selectors.content)):
        ok, reason = check_selector_syntax(selector)
        if not ok:
            return ContentValidation(False, {}, f"Syntax check failed for {field_name}: {reason}")

    optional = {
        "image": selectors.image,
        "date": selectors.date,
        "author": selectors.author,
        "category": selectors.category,
    }
    usable: dict[str, str] = {}
    for field_name, selector in optional.items():
        if not selector:
            continue
        ok, reason = check_selector_syntax(selector)
        if ok:
            usable[field_name] = selector.strip()
        else:
            log_event(
                logger,
                logging.WARNING,
                "optional_selector_ignored",
                field=field_name,
                selector=selector,
                reason=reason,
            )

    try:
        result = fetcher.fetch_rendered(url, options)
    except DiscoveryError as exc:
        return ContentValidation(False, {}, f"Fetch failed: {exc}")

    soup = parse_html(result.html)
    title = select_text(soup, selectors.title.strip())
    content = select_all_text(soup, selectors.content.strip())
    extracted: dict[str, str] = {"title": title, "content": content}

    if "image" in usable:
        found = image_url(soup.select_one(usable["image"]), url)
        if found:
            extracted["image"] = found
    if "date" in usable:
        value = date_value(soup.select_one(usable["date"]))
        if value:
            extracted["date"] = value
    for field_name in ("author", "category"):
        if field_name in usable:
            value = select_text(soup, usable[field_name])
            if value:
                extracted[field_name] = value

    if len(title) < config.min_title_chars:
        message = (
            f"Title selector extracted {len(title)} characters; "
            f"at least {config.min_title_chars} required"
        )
        valid = False
    elif len(content) < config.min_content_chars:
        message = (
            f"Content selector extracted {len(content)} characters; "
            f"at least {config.min_content_chars} required"
        )
        valid = False
    else:
        message = f"Extracted title ({len(title)} chars) and content ({len(content)} chars)"
        valid = True
    log_event(
        logger,
        logging.INFO,
        "content_selectors_validated",
        url=url,
        valid=valid,
        title_chars=len(title),
        content_chars=len(content),
        fields=",".join(sorted(extracted)),
    )
    return ContentValidation(valid=valid, extracted_data=extracted, message=message)
