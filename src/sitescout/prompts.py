from __future__ import annotations

from typing import Any

LISTING_SYSTEM_PROMPT = """You are an expert in HTML structure and CSS selectors for news websites.

You receive the simplified HTML of a news LISTING page (a homepage, section or
category page). Find the single CSS selector that matches the anchor elements
linking to the individual news articles.

Rules:
- The selector must match REPEATED items: prefer selectors that match 5 or
  more elements sharing the same structure.
- The selector must target <a> elements with an href pointing to an article.
- Exclude navigation menus, headers, footers, pagination, tag clouds,
  social links and "more" buttons.
- Prefer semantic containers (article, section, main) and stable classes or
  data-* attributes over positional selectors such as :nth-child.
- Avoid bare generic selectors like "a" or "div a".
- The selector must be valid for standard CSS engines. No XPath, no jQuery
  extensions such as :contains or :eq.

Return JSON only:
- article_links: the CSS selector.
- confidence: a number from 0 to 1.
- reasoning: one or two sentences explaining the choice.
"""

CONTENT_SYSTEM_PROMPT = """You are an expert in HTML structure and CSS selectors for news websites.

You receive the simplified HTML of a single news ARTICLE page. Find the CSS
selectors for the article fields.

Rules:
- title_selector: the main headline, usually an h1 inside the article.
- content_selector: the OUTER container holding the whole article body. It
  must span all paragraphs of the story, not a single <p>. Exclude comments,
  related stories and share bars.
- image_selector: the main article image. Pages often ship several
  resolutions of the same image (for example amp-img or img variants with
  different width attributes). Detect that case and choose the single
  highest-resolution variant using a width attribute predicate, for example
  amp-img[width="1200"]. Never return a selector matching every variant.
- date_selector: the publication date, preferring time[datetime].
- author_selector: the byline author.
- category_selector: the section or category label.
- Use an empty string for any field that does not exist on the page.
- Prefer stable classes, ids and semantic tags. No XPath, no :contains.

Return JSON only with every field present, plus confidence (0 to 1) and
reasoning (one or two sentences).
"""

LISTING_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "article_links": {"type": "string"},
        "confidence": {"type": "number"},
        "reasoning": {"type": "string"},
    },
    "required": ["article_links", "confidence", "reasoning"],
    "additionalProperties": False,
}

CONTENT_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "title_selector": {"type": "string"},
        "content_selector": {"type": "string"},
        "image_selector": {"type": "string"},
        "date_selector": {"type": "string"},
        "author_selector": {"type": "string"},
        "category_selector": {"type": "string"},
        "confidence": {"type": "number"},
        "reasoning": {"type": "string"},
    },
    "required": [
        "title_selector",
        "content_selector",
        "image_selector",
        "date_selector",
        "author_selector",
        "category_selector",
        "confidence",
        "reasoning",
    ],
    "additionalProperties": False,
}


def listing_user_prompt(reduced_html: str, url: str) -> str:
    return (
        f"Listing page URL: {url}\n\n"
        "Simplified HTML:\n"
        f"{reduced_html}\n\n"
        "Return the CSS selector for the article links."
    )


def content_user_prompt(reduced_html: str, url: str) -> str:
    return (
        f"Article page URL: {url}\n\n"
        "Simplified HTML:\n"
        f"{reduced_html}\n\n"
        "Return the CSS selectors for the article fields."
    )
