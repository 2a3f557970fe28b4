from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional
from urllib.parse import urlparse
from urllib import robotparser

import httpx

from ...errors import BlockedError


DEFAULT_UA = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"

BLOCKED_STATUSES = (401, 403)
HTML_MIMES = ("text/html", "application/xhtml+xml")


@dataclass(frozen=True)
class FetchResult:
    url: str
    status_code: int
    mime: str | None
    content_length: int
    html: str | None
    headers: dict[str, str]
    blocked_by_robots: bool = False


def _main_mime(content_type: Optional[str]) -> Optional[str]:
    if not content_type:
        return None
    return content_type.split(";")[0].strip().lower() or None


class StaticFetcher:
    """Plain HTTP page fetcher used for the probe and static crawls.

    - Uses httpx; redirects are followed and the final URL is reported
    - robots.txt is only consulted when respect_robots is on, once per host
    - Raises BlockedError on 401/403 so the orchestrator can switch to a browser
    - Bodies are kept for HTML only; other responses carry just their size
    """

    def __init__(
        self,
        *,
        timeout_s: float = 12.0,
        user_agent: str = DEFAULT_UA,
        respect_robots: bool = False,
    ) -> None:
        self.timeout_s = timeout_s
        self.user_agent = user_agent
        self.respect_robots = respect_robots
        self._robots: Dict[str, Optional[robotparser.RobotFileParser]] = {}
        self._client = httpx.Client(
            timeout=self.timeout_s,
            headers={"User-Agent": self.user_agent, "Accept": "text/html,application/xhtml+xml,*/*;q=0.8"},
        )

    def __enter__(self) -> "StaticFetcher":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def close(self) -> None:
        self._client.close()

    def _robots_for(self, url: str) -> Optional[robotparser.RobotFileParser]:
        """Parsed robots.txt for the URL's host; None means everything is allowed."""
        parsed = urlparse(url)
        origin = f"{parsed.scheme}://{parsed.netloc}"
        if origin in self._robots:
            return self._robots[origin]
        rp: Optional[robotparser.RobotFileParser] = None
        try:
            resp = self._client.get(f"{origin}/robots.txt")
            if resp.status_code < 400:
                rp = robotparser.RobotFileParser()
                rp.parse(resp.text.splitlines())
        except httpx.HTTPError:
            rp = None
        self._robots[origin] = rp
        return rp

    def allowed(self, url: str) -> bool:
        if not self.respect_robots:
            return True
        rp = self._robots_for(url)
        if rp is None:
            return True
        return rp.can_fetch(self.user_agent, url) and rp.can_fetch("*", url)

    def fetch(self, url: str) -> FetchResult:
        if not self.allowed(url):
            return FetchResult(url=url, status_code=0, mime=None, content_length=0, html=None, headers={},
                               blocked_by_robots=True)
        resp = self._client.get(url, follow_redirects=True)
        if resp.status_code in BLOCKED_STATUSES:
            raise BlockedError(f"HTTP {resp.status_code}", url=url, status_code=resp.status_code)
        mime = _main_mime(resp.headers.get("Content-Type"))
        body = resp.content or b""
        return FetchResult(
            url=str(resp.request.url),
            status_code=resp.status_code,
            mime=mime,
            content_length=len(body),
            html=resp.text if mime in HTML_MIMES else None,
            headers=dict(resp.headers.items()),
        )
