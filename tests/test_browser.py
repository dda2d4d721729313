import asyncio
import threading

import pytest
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from sitescout.browser import BrowserSession
from sitescout.errors import FetchTimeoutError, NetworkError, RenderError
from sitescout.models import FetchOptions


class FakeResponse:
    def __init__(self, status):
        self.status = status


class FakePage:
    def __init__(self, browser):
        self.browser = browser

    async def goto(self, url, wait_until=None, timeout=None):
        self.browser.gotos.append((url, wait_until, timeout))
        if self.browser.goto_error is not None:
            error, self.browser.goto_error = self.browser.goto_error, None
            if self.browser.disconnect_on_error:
                self.browser.connected = False
            raise error
        return FakeResponse(self.browser.status)

    async def wait_for_selector(self, selector, timeout=None):
        self.browser.waited.append(selector)
        if selector == ".never":
            raise PlaywrightTimeoutError("Timeout 5000ms exceeded")

    async def wait_for_timeout(self, ms):
        self.browser.settled.append(ms)

    async def content(self):
        return f"<html><body>rendered by browser {self.browser.number}</body></html>"


class FakeContext:
    def __init__(self, browser, kwargs):
        self.browser = browser
        self.kwargs = kwargs
        self.closed = False

    async def new_page(self):
        return FakePage(self.browser)

    async def close(self):
        self.closed = True


class FakeBrowser:
    def __init__(self, number):
        self.number = number
        self.connected = True
        self.contexts = []
        self.gotos = []
        self.waited = []
        self.settled = []
        self.status = 200
        self.goto_error = None
        self.disconnect_on_error = False

    def is_connected(self):
        return self.connected

    async def new_context(self, **kwargs):
        context = FakeContext(self, kwargs)
        self.contexts.append(context)
        return context

    async def close(self):
        self.connected = False


class FakePlaywright:
    async def stop(self):
        pass


class Launcher:
    def __init__(self, fail=False, delay=0.0):
        self.browsers = []
        self.fail = fail
        self.delay = delay

    async def __call__(self, headless):
        await asyncio.sleep(self.delay)
        if self.fail:
            raise RuntimeError("chromium missing")
        browser = FakeBrowser(len(self.browsers) + 1)
        self.browsers.append(browser)
        return FakePlaywright(), browser


@pytest.fixture
def launcher():
    return Launcher()


@pytest.fixture
def session(launcher):
    browser_session = BrowserSession(launcher=launcher)
    yield browser_session
    browser_session.close()


def _options(**overrides):
    values = {"timeout_seconds": 5.0, "selector_timeout_seconds": 1.0}
    values.update(overrides)
    return FetchOptions(**values)


def test_browser_is_launched_once_and_reused(session, launcher):
    html, status = session.render("https://e.com/a", _options())
    session.render("https://e.com/b", _options())
    assert status == 200
    assert "rendered by browser 1" in html
    assert session.launch_count == 1
    browser = launcher.browsers[0]
    assert [goto[0] for goto in browser.gotos] == ["https://e.com/a", "https://e.com/b"]
    assert all(context.closed for context in browser.contexts)
    assert browser.gotos[0][1] == "domcontentloaded"
    assert browser.gotos[0][2] == 5000


def test_dead_browser_is_relaunched_before_render(session, launcher):
    session.render("https://e.com/a", _options())
    launcher.browsers[0].connected = False
    assert session.connected is False

    html, _ = session.render("https://e.com/b", _options())
    assert "rendered by browser 2" in html
    assert session.launch_count == 2
    assert session.connected is True


def test_disconnect_mid_render_retries_once(session, launcher):
    session.render("https://e.com/a", _options())
    first = launcher.browsers[0]
    first.goto_error = RuntimeError("Target page, context or browser has been closed")
    first.disconnect_on_error = True

    html, _ = session.render("https://e.com/b", _options())
    assert "rendered by browser 2" in html
    assert session.launch_count == 2


def test_missing_wait_selector_is_soft(session, launcher):
    html, status = session.render(
        "https://e.com/a", _options(wait_for_selector=".never", settle_ms=250)
    )
    assert status == 200
    assert "rendered" in html
    assert launcher.browsers[0].waited == [".never"]
    assert launcher.browsers[0].settled == [250]


def test_context_gets_viewport_agent_and_headers(session, launcher):
    session.render(
        "https://e.com/a",
        _options(user_agent="Mobile UA", headers={"X-Test": "1"}, viewport=(390, 844)),
    )
    kwargs = launcher.browsers[0].contexts[0].kwargs
    assert kwargs["viewport"] == {"width": 390, "height": 844}
    assert kwargs["user_agent"] == "Mobile UA"
    assert kwargs["extra_http_headers"] == {"X-Test": "1"}


def test_navigation_errors_are_translated(session, launcher):
    session.render("https://e.com/a", _options())
    browser = launcher.browsers[0]

    browser.goto_error = PlaywrightTimeoutError("Timeout 5000ms exceeded")
    with pytest.raises(FetchTimeoutError):
        session.render("https://e.com/slow", _options())

    browser.goto_error = RuntimeError("net::ERR_NAME_NOT_RESOLVED at https://e.com/dns")
    with pytest.raises(NetworkError):
        session.render("https://e.com/dns", _options())

    assert session.launch_count == 1


def test_launch_failure_is_render_error():
    failing = BrowserSession(launcher=Launcher(fail=True))
    try:
        with pytest.raises(RenderError, match="browser launch failed"):
            failing.render("https://e.com/a", _options())
    finally:
        failing.close()


def test_concurrent_renders_share_one_launch():
    launcher = Launcher(delay=0.05)
    shared = BrowserSession(launcher=launcher)
    results = []
    errors = []

    def render(index):
        try:
            results.append(shared.render(f"https://e.com/{index}", _options()))
        except Exception as exc:  # noqa: BLE001
            errors.append(exc)

    threads = [threading.Thread(target=render, args=(index,)) for index in range(6)]
    try:
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=10)
    finally:
        shared.close()
    assert errors == []
    assert len(results) == 6
    assert shared.launch_count == 1
    assert len(launcher.browsers) == 1
    assert len(launcher.browsers[0].gotos) == 6
