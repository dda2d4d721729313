from __future__ import annotations

import logging
import socket
import time
from typing import Any, Callable
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from .browser import BrowserSession
from .config import FetchConfig
from .errors import FetchTimeoutError, NetworkError, RateLimitError, RenderError
from .models import FETCH_STRATEGIES, FetchOptions, FetchResult, SiteConfig
from .utils import elapsed_ms, log_event

RATE_LIMIT_STATUSES = (429, 403, 503)


class PageFetcher:
    def __init__(
        self,
        fetch_config: FetchConfig,
        browser_session: BrowserSession | None = None,
        logger: logging.Logger | None = None,
        opener: Callable[..., Any] | None = None,
    ) -> None:
        self.config = fetch_config
        self.browser = browser_session
        self.logger = logger or logging.getLogger("sitescout.fetcher")
        self._opener = opener or urlopen

    def default_options(self, **overrides: Any) -> FetchOptions:
        values: dict[str, Any] = {
            "timeout_seconds": float(self.config.timeout_seconds),
            "selector_timeout_seconds": float(self.config.selector_timeout_seconds),
            "user_agent": self.config.mobile_user_agent,
            "viewport": (self.config.viewport_width, self.config.viewport_height),
            "settle_ms": self.config.rendered_settle_ms,
        }
        values.update(overrides)
        return FetchOptions(**values)

    def options_for_site(self, site: SiteConfig) -> FetchOptions:
        settings = site.fetch_settings
        overrides: dict[str, Any] = {
            "wait_for_selector": settings.wait_for_selector,
            "headers": dict(settings.custom_headers),
        }
        if site.fetch_strategy == "static":
            overrides["user_agent"] = self.config.user_agent
        if settings.timeout_seconds:
            overrides["timeout_seconds"] = float(settings.timeout_seconds)
        return self.default_options(**overrides)

    def fetch(self, url: str, strategy: str, options: FetchOptions | None = None) -> FetchResult:
        if strategy not in FETCH_STRATEGIES:
            raise ValueError("invalid_fetch_strategy")
        if strategy == "rendered":
            return self.fetch_rendered(url, options)
        return self.fetch_static(url, options)

    def fetch_static(self, url: str, options: FetchOptions | None = None) -> FetchResult:
        options = options or self.default_options(user_agent=self.config.user_agent)
        headers = {
            "User-Agent": options.user_agent or self.config.user_agent,
            "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
            "Accept-Language": "en-US,en;q=0.9",
        }
        headers.update(options.headers)
        request = Request(url, headers=headers)
        started = time.monotonic()
        try:
            with self._opener(request, timeout=options.timeout_seconds) as response:
                raw = response.read()
                status = getattr(response, "status", None)
                charset = _response_charset(response)
        except HTTPError as exc:
            log_event(self.logger, logging.WARNING, "fetch_http_error", url=url, status=exc.code)
            check_http_status(exc.code, url)
            raise NetworkError(f"HTTP {exc.code} for {url}", http_status=exc.code) from exc
        except (socket.timeout, TimeoutError) as exc:
            raise FetchTimeoutError(
                f"timed out after {options.timeout_seconds:.0f}s: {url}"
            ) from exc
        except URLError as exc:
            if isinstance(exc.reason, (socket.timeout, TimeoutError)):
                raise FetchTimeoutError(
                    f"timed out after {options.timeout_seconds:.0f}s: {url}"
                ) from exc
            log_event(self.logger, logging.WARNING, "fetch_network_error", url=url, error=str(exc))
            raise NetworkError(f"network error for {url}: {exc.reason}") from exc
        html = raw.decode(charset, errors="replace")
        result = FetchResult(
            url=url,
            html=html,
            status=status,
            elapsed_ms=elapsed_ms(started, time.monotonic()),
            method="static",
        )
        self._log_completed(result)
        return result

    def fetch_rendered(self, url: str, options: FetchOptions | None = None) -> FetchResult:
        if self.browser is None:
            raise RenderError("no browser session configured")
        options = options or self.default_options()
        started = time.monotonic()
        html, status = self.browser.render(url, options)
        if status is not None and status >= 400:
            log_event(self.logger, logging.WARNING, "fetch_http_error", url=url, status=status)
            check_http_status(status, url)
            raise NetworkError(f"HTTP {status} for {url}", http_status=status)
        result = FetchResult(
            url=url,
            html=html,
            status=status,
            elapsed_ms=elapsed_ms(started, time.monotonic()),
            method="rendered",
        )
        self._log_completed(result)
        return result

    def close(self) -> None:
        if self.browser is not None:
            self.browser.close()

    def _log_completed(self, result: FetchResult) -> None:
        log_event(
            self.logger,
            logging.INFO,
            "fetch_completed",
            url=result.url,
            method=result.method,
            status=result.status,
            elapsed_ms=result.elapsed_ms,
            bytes=len(result.html),
        )


def check_http_status(status: int, url: str) -> None:
    if status in RATE_LIMIT_STATUSES:
        raise RateLimitError(f"rate limited (HTTP {status}) by {url}", http_status=status)


def _response_charset(response: Any) -> str:
    headers = getattr(response, "headers", None)
    if headers is not None and hasattr(headers, "get_content_charset"):
        return headers.get_content_charset() or "utf-8"
    return "utf-8"
