from __future__ import annotations

import logging

from .config import LLMConfig
from .errors import ModelOutputError
from .llm import router
from .models import ContentProposal, ListingProposal
from .prompts import (
    CONTENT_SCHEMA,
    CONTENT_SYSTEM_PROMPT,
    LISTING_SCHEMA,
    LISTING_SYSTEM_PROMPT,
    content_user_prompt,
    listing_user_prompt,
)
from .utils import log_event


def infer_listing_selector(
    reduced_html: str,
    url: str,
    llm_config: LLMConfig,
    logger: logging.Logger,
) -> ListingProposal:
    response = router.call_structured(
        llm_config,
        LISTING_SYSTEM_PROMPT,
        listing_user_prompt(reduced_html, url),
        LISTING_SCHEMA,
        "listing_analysis",
        llm_config.max_tokens_listing,
        logger,
    )
    data = response.parsed
    selector = data["article_links"].strip()
    if not selector:
        raise ModelOutputError("model returned an empty listing selector")
    proposal = ListingProposal(
        selector=selector,
        confidence=_clamp_confidence(data["confidence"]),
        rationale=data["reasoning"].strip(),
    )
    log_event(
        logger,
        logging.INFO,
        "listing_selector_inferred",
        url=url,
        selector=proposal.selector,
        confidence=proposal.confidence,
    )
    return proposal


def infer_content_selectors(
    reduced_html: str,
    url: str,
    llm_config: LLMConfig,
    logger: logging.Logger,
) -> ContentProposal:
    response = router.call_structured(
        llm_config,
        CONTENT_SYSTEM_PROMPT,
        content_user_prompt(reduced_html, url),
        CONTENT_SCHEMA,
        "content_analysis",
        llm_config.max_tokens_content,
        logger,
    )
    data = response.parsed
    proposal = ContentProposal(
        title_selector=data["title_selector"].strip(),
        content_selector=data["content_selector"].strip(),
        image_selector=data["image_selector"].strip(),
        date_selector=data["date_selector"].strip(),
        author_selector=data["author_selector"].strip(),
        category_selector=data["category_selector"].strip(),
        confidence=_clamp_confidence(data["confidence"]),
        rationale=data["reasoning"].strip(),
    )
    if not proposal.title_selector or not proposal.content_selector:
        raise ModelOutputError("model omitted the title or content selector")
    log_event(
        logger,
        logging.INFO,
        "content_selectors_inferred",
        url=url,
        title=proposal.title_selector,
        content=proposal.content_selector,
        image=proposal.image_selector or "-",
        confidence=proposal.confidence,
    )
    return proposal


def _clamp_confidence(value: float) -> float:
    return round(max(0.0, min(1.0, float(value))), 3)
