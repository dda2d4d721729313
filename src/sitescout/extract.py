from __future__ import annotations

import re
from typing import Iterator

import soupsieve
from bs4 import BeautifulSoup, Tag

from .utils import resolve_href

CONTAINER_DEPTH = 3
FORBIDDEN_CHARS = ("{", "}", ";", "<", "`")

_LEADING_TOKEN_RE = re.compile(r"^[a-zA-Z#.\[*:]")


def parse_html(html: str) -> BeautifulSoup:
    return BeautifulSoup(html, "html.parser")


def check_selector_syntax(selector: str | None) -> tuple[bool, str]:
    text = (selector or "").strip()
    if not text:
        return False, "selector is empty"
    for char in FORBIDDEN_CHARS:
        if char in text:
            return False, f"selector contains forbidden character {char!r}"
    if "javascript:" in text.lower():
        return False, "selector contains javascript:"
    if not _LEADING_TOKEN_RE.match(text):
        return False, "selector must start with a tag, id, class, attribute or pseudo-class"
    try:
        soupsieve.compile(text)
    except (soupsieve.SelectorSyntaxError, ValueError, TypeError) as exc:
        return False, f"invalid CSS selector: {exc}"
    return True, "ok"


def link_href(element: Tag) -> str | None:
    if element.name == "a" and element.get("href"):
        return str(element.get("href"))
    anchor = element.find("a", href=True)
    if anchor is not None:
        return str(anchor.get("href"))
    return None


def iter_links(soup: BeautifulSoup, selector: str, base_url: str) -> Iterator[tuple[Tag, str | None, str | None]]:
    """Yield (element, raw href, absolute url or None) for every selector match."""
    for element in soup.select(selector):
        href = link_href(element)
        resolved = resolve_href(href, base_url) if href else None
        yield element, href, resolved


def unique_link_urls(soup: BeautifulSoup, selector: str, base_url: str) -> tuple[int, list[str]]:
    matched = 0
    seen: set[str] = set()
    urls: list[str] = []
    for _element, _href, resolved in iter_links(soup, selector, base_url):
        matched += 1
        if resolved and resolved not in seen:
            seen.add(resolved)
            urls.append(resolved)
    return matched, urls


def find_in_container(element: Tag, selector: str) -> Tag | None:
    node: Tag | None = element
    for _ in range(CONTAINER_DEPTH + 1):
        if node is None:
            break
        found = node.select_one(selector)
        if found is not None:
            return found
        node = node.parent if isinstance(node.parent, Tag) else None
    return None


def element_text(element: Tag | None) -> str:
    if element is None:
        return ""
    return " ".join(element.get_text(" ", strip=True).split())


def select_text(soup: BeautifulSoup, selector: str) -> str:
    return element_text(soup.select_one(selector))


def select_all_text(soup: BeautifulSoup, selector: str) -> str:
    parts = [element_text(element) for element in soup.select(selector)]
    return "\n".join(part for part in parts if part)


def image_url(element: Tag | None, base_url: str) -> str | None:
    if element is None:
        return None
    if element.name not in ("img", "amp-img", "source"):
        nested = element.find(["img", "amp-img"])
        if nested is not None:
            element = nested
    src = element.get("src") or element.get("data-src")
    if not src:
        return None
    return resolve_href(str(src), base_url)


def date_value(element: Tag | None) -> str:
    if element is None:
        return ""
    if element.get("datetime"):
        return str(element.get("datetime"))
    return element_text(element)
