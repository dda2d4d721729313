from __future__ import annotations

import logging
import math
import re

from bs4 import BeautifulSoup, Comment, NavigableString, Tag

from .errors import ParsingError
from .models import ReductionResult, ReductionStats
from .utils import log_event

REMOVED_TAGS = ("script", "noscript", "style")
REMOVED_ATTRS = frozenset({"style", "srcset", "sizes", "loading", "decoding"})
PRESERVE_WHITESPACE_TAGS = frozenset({"pre", "textarea"})
BLOCK_TAGS = frozenset(
    {
        "html", "head", "body", "title", "meta", "link", "base",
        "div", "p", "section", "article", "header", "footer", "nav", "main", "aside",
        "h1", "h2", "h3", "h4", "h5", "h6", "ul", "ol", "li", "dl", "dt", "dd",
        "table", "thead", "tbody", "tfoot", "tr", "td", "th", "caption",
        "figure", "figcaption", "blockquote", "form", "fieldset", "hr", "br",
        "address", "details", "summary", "select", "option", "pre", "textarea",
    }
)
CHARS_PER_TOKEN = 4

_WS_RE = re.compile(r"\s+")


def reduce_html(html: str, logger: logging.Logger | None = None) -> ReductionResult:
    logger = logger or logging.getLogger("sitescout.reducer")
    if not isinstance(html, str) or not html.strip():
        raise ParsingError("empty document")
    original_size = len(html)
    try:
        soup = BeautifulSoup(html, "html.parser")
    except Exception as exc:  # noqa: BLE001
        raise ParsingError(f"unable to parse markup: {exc}") from exc
    if soup.find(True) is None:
        raise ParsingError("document contains no elements")

    for tag in soup(list(REMOVED_TAGS)):
        tag.decompose()
    for link in soup.find_all("link"):
        rel = link.get("rel") or []
        if isinstance(rel, str):
            rel = rel.split()
        if any(value.lower() == "stylesheet" for value in rel):
            link.decompose()
    for comment in soup.find_all(string=lambda text: isinstance(text, Comment)):
        comment.extract()
    for tag in soup.find_all(True):
        for attr in list(tag.attrs):
            name = attr.lower()
            if name.startswith("on") or name in REMOVED_ATTRS:
                del tag.attrs[attr]

    try:
        _collapse_whitespace(soup)
        reduced = str(soup).strip()
    except Exception as exc:  # noqa: BLE001
        log_event(logger, logging.WARNING, "whitespace_collapse_failed", error=str(exc))
        reduced = _regex_compress(str(soup))

    reduced_size = len(reduced)
    percentage = 0.0
    if original_size:
        percentage = round((1 - reduced_size / original_size) * 100, 1)
    stats = ReductionStats(
        original_size=original_size,
        reduced_size=reduced_size,
        reduction_percentage=percentage,
        estimated_tokens=estimate_tokens(reduced),
    )
    log_event(
        logger,
        logging.INFO,
        "html_reduced",
        original=original_size,
        reduced=reduced_size,
        percent=percentage,
        tokens=stats.estimated_tokens,
    )
    return ReductionResult(reduced_html=reduced, stats=stats)


def estimate_tokens(text: str) -> int:
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def _collapse_whitespace(soup: BeautifulSoup) -> None:
    for text in list(soup.find_all(string=True)):
        if type(text) is not NavigableString:
            continue
        if any(parent.name in PRESERVE_WHITESPACE_TAGS for parent in text.parents):
            continue
        if not text.strip():
            if _between_inline(text):
                text.replace_with(" ")
            else:
                text.extract()
            continue
        collapsed = _WS_RE.sub(" ", str(text))
        if collapsed != str(text):
            text.replace_with(collapsed)


def _between_inline(text: NavigableString) -> bool:
    """True when whitespace separates two inline neighbours, e.g. <b>a</b> <i>b</i>."""
    for neighbour in (text.previous_sibling, text.next_sibling):
        if neighbour is None:
            return False
        if isinstance(neighbour, Tag) and neighbour.name in BLOCK_TAGS:
            return False
    return True


def _regex_compress(markup: str) -> str:
    compressed = re.sub(r">\s+<", "> <", markup)
    compressed = re.sub(r"\s{2,}", " ", compressed)
    return compressed.strip()
