from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from playwright.sync_api import sync_playwright

from ...errors import BrowserLaunchError, NavigationError
from ...schemas import CapturedResponse
from ..capture import ResponseCollector

log = logging.getLogger(__name__)


DEFAULT_UA = "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/140.0.0.0 Safari/537.36"

CHROMIUM_ARGS = [
    '--disable-dev-shm-usage',     # Prevent /dev/shm issues in containers
    '--disable-gpu',                # Disable GPU for headless
    '--disable-extensions',         # No browser extensions
    '--disable-plugins',            # No plugins
    '--no-first-run',               # Skip first run setup
    '--disable-default-apps',       # No default apps
    '--disable-background-timer-throttling',  # Consistent timing
]  # Note: no --no-sandbox (sandbox stays enabled)

# Likely coach/staff containers; waiting for one is best-effort
CONTENT_SELECTOR = "section, .team, [class*=coach], [class*=staff], [class*=member], article"


@dataclass(frozen=True)
class PageSnapshot:
    url: str
    status_code: int
    html: str | None
    page_title: str | None
    responses: List[CapturedResponse] = field(default_factory=list)


class BrowserSession:
    """One headless browser, one context, one page; owned by a single scrape.

    Security-first launch settings:
    - Sandbox enabled (no --no-sandbox)
    - Extensions and plugins disabled
    - Headless only

    Every response passing the capture filter is recorded by a
    ResponseCollector; `fetch()` drains it after the page settles.
    """

    def __init__(
        self,
        *,
        browser_type: str = "chromium",
        timeout_ms: int = 20000,
        user_agent: str = DEFAULT_UA,
        max_responses: int = 50,
        max_body_bytes: int = 2_000_000,
        capture_window_s: Optional[float] = None,
    ) -> None:
        self.browser_type = browser_type
        self.timeout_ms = timeout_ms
        self.user_agent = user_agent
        self.collector = ResponseCollector(
            max_responses=max_responses,
            max_body_bytes=max_body_bytes,
            window_s=capture_window_s,
        )
        self.requests_seen = 0
        self._pw = None
        self._browser = None
        self._context = None
        self.page = None

    def __enter__(self) -> "BrowserSession":
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @property
    def is_open(self) -> bool:
        return self.page is not None

    def _on_request(self, _request) -> None:
        self.requests_seen += 1

    def open(self) -> None:
        if self.is_open:
            return
        try:
            self._pw = sync_playwright().start()
            launcher = getattr(self._pw, self.browser_type)
            if self.browser_type == "chromium":
                self._browser = launcher.launch(headless=True, args=CHROMIUM_ARGS)
            else:
                self._browser = launcher.launch(headless=True)
            self._context = self._browser.new_context(user_agent=self.user_agent)
            self.collector.attach(self._context)
            self._context.on("request", self._on_request)
            self.page = self._context.new_page()
            self.page.set_default_timeout(self.timeout_ms)
        except Exception as e:
            self.close()
            raise BrowserLaunchError(f"{self.browser_type} launch failed: {e}") from e

    def reset_request_count(self) -> None:
        self.requests_seen = 0

    def navigate(self, url: str) -> int:
        """Load url and wait for content; returns the HTTP status (0 if unknown)."""
        if not self.is_open:
            self.open()
        self.collector.begin_page()
        try:
            response = self.page.goto(url, wait_until="load", timeout=self.timeout_ms)
        except Exception as e:
            raise NavigationError(str(e), url=url) from e
        if not response:
            raise NavigationError("No response received", url=url)

        # Wait for likely coach sections to render, then a micro pause for lazy content
        try:
            self.page.wait_for_selector(CONTENT_SELECTOR, timeout=2000)
        except Exception:
            pass
        try:
            self.page.wait_for_timeout(200)
        except Exception as e:
            log.debug("settle pause interrupted on %s: %s", url, e)
        return response.status

    def fetch(self, url: str) -> PageSnapshot:
        """Navigate and snapshot rendered HTML plus captured responses."""
        status_code = self.navigate(url)
        try:
            html = self.page.content()
            title = self.page.title()
        except Exception as e:
            raise NavigationError(f"content unavailable: {e}", url=url) from e
        return PageSnapshot(
            url=url,
            status_code=status_code,
            html=html,
            page_title=title,
            responses=self.collector.drain(),
        )

    def close(self) -> None:
        if self._browser is not None:
            try:
                self._browser.close()
            except Exception as e:
                log.debug("browser close failed: %s", e)
        if self._pw is not None:
            try:
                self._pw.stop()
            except Exception as e:
                log.debug("playwright stop failed: %s", e)
        self._pw = None
        self._browser = None
        self._context = None
        self.page = None
