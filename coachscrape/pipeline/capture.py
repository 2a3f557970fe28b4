"""
Network response capture for browser sessions.

The Playwright `response` event fires on the driver thread while the page
is loading; the handler only records matching response objects. Bodies are
read afterwards in `drain()`, on the caller's thread, once navigation has
settled. Each page gets its own count and time budget, both reset by
`begin_page()`.
"""

from __future__ import annotations

import logging
import time
from typing import Any, List, Optional

from ..schemas import CapturedResponse

log = logging.getLogger(__name__)


CAPTURE_CONTENT_TYPES = ("json", "javascript", "text/html", "text/plain")
CAPTURE_URL_HINTS = ("/api/", "/data/", "/search", "json", "list", "query=", "q=", "filter=", "id=")
SKIP_RESOURCE_TYPES = ("image", "font", "stylesheet", "media", "script")


def should_capture(url: str, content_type: str, resource_type: str | None = None) -> bool:
    if resource_type and resource_type in SKIP_RESOURCE_TYPES:
        return False
    ct = (content_type or "").lower()
    if any(t in ct for t in CAPTURE_CONTENT_TYPES):
        return True
    u = (url or "").lower()
    return any(h in u for h in CAPTURE_URL_HINTS)


class ResponseCollector:
    """Bounded, append-only log of interesting responses."""

    def __init__(
        self,
        *,
        max_responses: int = 50,
        max_body_bytes: int = 2_000_000,
        window_s: Optional[float] = None,
    ) -> None:
        self.max_responses = max_responses
        self.max_body_bytes = max_body_bytes
        self.window_s = window_s
        self._pending: List[Any] = []
        self._captured: List[CapturedResponse] = []
        self._seen_urls: set[str] = set()
        self._page_count = 0
        self._page_started = time.monotonic()

    def attach(self, context) -> None:
        context.on("response", self._on_response)

    def begin_page(self) -> None:
        """Open a new page budget; called before each navigation."""
        self._page_started = time.monotonic()
        self._page_count = 0

    @property
    def captured(self) -> List[CapturedResponse]:
        return list(self._captured)

    def _on_response(self, response) -> None:
        try:
            if self._page_count >= self.max_responses:
                return
            if self.window_s is not None and time.monotonic() - self._page_started > self.window_s:
                return
            url = response.url
            if url in self._seen_urls:
                return
            headers = response.headers or {}
            content_type = headers.get("content-type", "")
            resource_type = None
            try:
                resource_type = response.request.resource_type
            except Exception:
                pass
            if not should_capture(url, content_type, resource_type):
                return
            self._seen_urls.add(url)
            self._pending.append(response)
            self._page_count += 1
        except Exception as e:
            log.debug("response listener skipped an event: %s", e)

    def drain(self) -> List[CapturedResponse]:
        """Read bodies of everything recorded since the last drain."""
        items, self._pending = self._pending, []
        out: List[CapturedResponse] = []
        for resp in items:
            try:
                body = resp.text()
            except Exception:
                # Redirects and aborted requests have no body
                continue
            if self.max_body_bytes and len(body) > self.max_body_bytes:
                body = body[: self.max_body_bytes]
            try:
                out.append(CapturedResponse(
                    url=resp.url,
                    body=body,
                    content_type=(resp.headers or {}).get("content-type", ""),
                    status=int(resp.status or 0),
                ))
            except Exception:
                continue
        self._captured.extend(out)
        return out
