from __future__ import annotations

import asyncio
import concurrent.futures
import logging
import threading
from typing import Any, Awaitable, Callable

from playwright.async_api import TimeoutError as PlaywrightTimeoutError
from playwright.async_api import async_playwright

from .errors import DiscoveryError, FetchTimeoutError, NetworkError, RenderError
from .models import FetchOptions
from .utils import log_event

Launcher = Callable[[bool], Awaitable[tuple[Any, Any]]]

_DISCONNECT_MARKERS = (
    "target closed",
    "has been closed",
    "browser closed",
    "disconnected",
    "connection closed",
)


async def launch_chromium(headless: bool) -> tuple[Any, Any]:
    playwright = await async_playwright().start()
    try:
        browser = await playwright.chromium.launch(
            headless=headless,
            args=["--no-sandbox", "--disable-dev-shm-usage"],
        )
    except Exception:
        await playwright.stop()
        raise
    return playwright, browser


class BrowserSession:
    """Shared headless browser owned by a dedicated event-loop thread.

    Every render verifies the browser is still connected and re-launches it
    when it is not. Launches are serialized; renders run concurrently, each in
    its own context and page.
    """

    def __init__(
        self,
        *,
        headless: bool = True,
        launcher: Launcher | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._headless = headless
        self._launcher = launcher or launch_chromium
        self._logger = logger or logging.getLogger("sitescout.browser")
        self._loop: asyncio.AbstractEventLoop | None = None
        self._thread: threading.Thread | None = None
        self._thread_lock = threading.Lock()
        self._launch_lock: asyncio.Lock | None = None
        self._playwright: Any = None
        self._browser: Any = None
        self.launch_count = 0

    @property
    def connected(self) -> bool:
        return self._browser is not None and bool(self._browser.is_connected())

    def render(self, url: str, options: FetchOptions) -> tuple[str, int | None]:
        loop = self._ensure_loop()
        overall = (
            float(options.timeout_seconds)
            + float(options.selector_timeout_seconds)
            + options.settle_ms / 1000.0
            + 10.0
        )
        future = asyncio.run_coroutine_threadsafe(self._render(url, options), loop)
        try:
            return future.result(timeout=overall)
        except concurrent.futures.TimeoutError as exc:
            future.cancel()
            log_event(self._logger, logging.WARNING, "render_timeout", url=url, seconds=overall)
            raise FetchTimeoutError(f"rendered fetch timed out after {overall:.0f}s: {url}") from exc

    def close(self) -> None:
        with self._thread_lock:
            loop = self._loop
            thread = self._thread
            self._loop = None
            self._thread = None
        if loop is None:
            return
        try:
            asyncio.run_coroutine_threadsafe(self._shutdown(), loop).result(timeout=15)
        except Exception as exc:  # noqa: BLE001
            log_event(self._logger, logging.WARNING, "browser_close_failed", error=str(exc))
        loop.call_soon_threadsafe(loop.stop)
        if thread is not None:
            thread.join(timeout=5)
        if not loop.is_running():
            loop.close()
        log_event(self._logger, logging.INFO, "browser_session_closed")

    def __enter__(self) -> "BrowserSession":
        return self

    def __exit__(self, *_exc: Any) -> None:
        self.close()

    def _ensure_loop(self) -> asyncio.AbstractEventLoop:
        with self._thread_lock:
            if self._loop is not None:
                return self._loop
            loop = asyncio.new_event_loop()
            thread = threading.Thread(
                target=self._run_loop, args=(loop,), name="sitescout-browser", daemon=True
            )
            thread.start()
            self._loop = loop
            self._thread = thread
            return loop

    @staticmethod
    def _run_loop(loop: asyncio.AbstractEventLoop) -> None:
        asyncio.set_event_loop(loop)
        loop.run_forever()

    async def _render(self, url: str, options: FetchOptions) -> tuple[str, int | None]:
        for attempt in (1, 2):
            browser = await self._get_browser()
            try:
                return await self._render_page(browser, url, options)
            except DiscoveryError:
                raise
            except Exception as exc:  # noqa: BLE001
                if attempt == 1 and _is_disconnect(exc, browser):
                    log_event(
                        self._logger,
                        logging.WARNING,
                        "browser_disconnected_retry",
                        url=url,
                        error=str(exc),
                    )
                    await self._discard(browser)
                    continue
                raise _translate_error(exc, url) from exc
        raise RenderError(f"render failed for {url}: browser unavailable")

    async def _render_page(
        self, browser: Any, url: str, options: FetchOptions
    ) -> tuple[str, int | None]:
        context_args: dict[str, Any] = {
            "viewport": {"width": options.viewport[0], "height": options.viewport[1]},
        }
        if options.user_agent:
            context_args["user_agent"] = options.user_agent
        if options.headers:
            context_args["extra_http_headers"] = dict(options.headers)
        context = await browser.new_context(**context_args)
        try:
            page = await context.new_page()
            response = await page.goto(
                url,
                wait_until="domcontentloaded",
                timeout=float(options.timeout_seconds) * 1000,
            )
            if options.wait_for_selector:
                try:
                    await page.wait_for_selector(
                        options.wait_for_selector,
                        timeout=float(options.selector_timeout_seconds) * 1000,
                    )
                except PlaywrightTimeoutError:
                    log_event(
                        self._logger,
                        logging.WARNING,
                        "wait_selector_missing",
                        url=url,
                        selector=options.wait_for_selector,
                    )
            if options.settle_ms:
                await page.wait_for_timeout(options.settle_ms)
            html = await page.content()
            status = response.status if response is not None else None
            return html, status
        finally:
            try:
                await context.close()
            except Exception as exc:  # noqa: BLE001
                log_event(self._logger, logging.DEBUG, "context_close_failed", error=str(exc))

    async def _get_browser(self) -> Any:
        if self._launch_lock is None:
            self._launch_lock = asyncio.Lock()
        async with self._launch_lock:
            if self._browser is not None and self._browser.is_connected():
                return self._browser
            if self._browser is not None:
                log_event(self._logger, logging.WARNING, "browser_dead_relaunching")
                await self._shutdown_browser()
            try:
                self._playwright, self._browser = await self._launcher(self._headless)
            except Exception as exc:  # noqa: BLE001
                log_event(self._logger, logging.ERROR, "browser_launch_failed", error=str(exc))
                raise RenderError(f"browser launch failed: {exc}") from exc
            self.launch_count += 1
            log_event(
                self._logger,
                logging.INFO,
                "browser_launched",
                headless=self._headless,
                launches=self.launch_count,
            )
            return self._browser

    async def _discard(self, browser: Any) -> None:
        if self._launch_lock is None:
            self._launch_lock = asyncio.Lock()
        async with self._launch_lock:
            if self._browser is browser:
                await self._shutdown_browser()

    async def _shutdown(self) -> None:
        if self._launch_lock is None:
            self._launch_lock = asyncio.Lock()
        async with self._launch_lock:
            await self._shutdown_browser()

    async def _shutdown_browser(self) -> None:
        browser, playwright = self._browser, self._playwright
        self._browser = None
        self._playwright = None
        if browser is not None:
            try:
                await browser.close()
            except Exception as exc:  # noqa: BLE001
                log_event(self._logger, logging.DEBUG, "browser_close_error", error=str(exc))
        if playwright is not None:
            try:
                await playwright.stop()
            except Exception as exc:  # noqa: BLE001
                log_event(self._logger, logging.DEBUG, "playwright_stop_error", error=str(exc))


def _is_disconnect(exc: BaseException, browser: Any) -> bool:
    try:
        if not browser.is_connected():
            return True
    except Exception:  # noqa: BLE001
        return True
    text = str(exc).lower()
    return any(marker in text for marker in _DISCONNECT_MARKERS)


def _translate_error(exc: BaseException, url: str) -> DiscoveryError:
    if isinstance(exc, PlaywrightTimeoutError):
        return FetchTimeoutError(f"navigation timeout for {url}: {exc}")
    text = str(exc)
    if "net::ERR" in text:
        return NetworkError(f"navigation failed for {url}: {text}")
    return RenderError(f"render failed for {url}: {text}")
