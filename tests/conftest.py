from __future__ import annotations

from typing import Any

import pytest

from sitescout.config import default_config
from sitescout.db import connect_db
from sitescout.errors import SelectorError
from sitescout.models import FetchOptions, FetchResult
from sitescout.storage import upsert_site


class FakeFetcher:
    def __init__(self, pages: dict[str, str] | None = None, error: Exception | None = None) -> None:
        self.pages = dict(pages or {})
        self.error = error
        self.calls: list[tuple[str, str]] = []

    def options_for_site(self, site) -> FetchOptions:
        return FetchOptions(wait_for_selector=site.fetch_settings.wait_for_selector)

    def fetch(self, url: str, strategy: str, options: FetchOptions | None = None) -> FetchResult:
        self.calls.append((url, strategy))
        if self.error is not None:
            raise self.error
        if url not in self.pages:
            raise SelectorError(f"no fake page for {url}")
        return FetchResult(url=url, html=self.pages[url], status=200, elapsed_ms=3, method=strategy)

    def fetch_static(self, url: str, options: FetchOptions | None = None) -> FetchResult:
        return self.fetch(url, "static", options)

    def fetch_rendered(self, url: str, options: FetchOptions | None = None) -> FetchResult:
        return self.fetch(url, "rendered", options)

    def close(self) -> None:
        pass


class FakeTimer:
    def __init__(self, delay: float, fn) -> None:
        self.delay = delay
        self.fn = fn
        self.daemon = False
        self.started = False
        self.cancelled = False
        self.fired = False

    def start(self) -> None:
        self.started = True

    def cancel(self) -> None:
        self.cancelled = True

    def fire(self) -> None:
        self.fired = True
        self.fn()


class TimerFactory:
    def __init__(self) -> None:
        self.timers: list[FakeTimer] = []

    def __call__(self, delay: float, fn) -> FakeTimer:
        timer = FakeTimer(delay, fn)
        self.timers.append(timer)
        return timer

    def live(self) -> list[FakeTimer]:
        return [timer for timer in self.timers if timer.started and not timer.cancelled and not timer.fired]


def listing_html(count: int, nav: bool = True) -> str:
    items = "".join(
        f'<article class="card"><a href="/news/story-{index}">Story number {index}</a>'
        f'<img src="/img/{index}.jpg" width="640"></article>'
        for index in range(count)
    )
    nav_html = '<nav><a href="/about">About us</a></nav>' if nav else ""
    return f"<html><body>{nav_html}<div class=\"list\">{items}</div></body></html>"


def site_payload(**overrides: Any) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "id": "example-news",
        "name": "Example News",
        "base_url": "https://news.example.com",
        "listing_url": "https://news.example.com/latest",
        "listing_selectors": {"article_links": "article a"},
        "content_selectors": {"title": "h1", "content": "div.body"},
        "frequency_minutes": 60,
        "fetch_strategy": "static",
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def conn(tmp_path):
    connection = connect_db(str(tmp_path / "state.sqlite3"))
    try:
        yield connection
    finally:
        connection.close()


@pytest.fixture
def config():
    return default_config()


@pytest.fixture
def make_site(conn):
    def _make(**overrides: Any):
        return upsert_site(conn, site_payload(**overrides))

    return _make
