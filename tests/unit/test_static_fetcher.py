from __future__ import annotations

import httpx
import pytest

from coachscrape.errors import BlockedError
from coachscrape.pipeline.fetchers.static import StaticFetcher


class _MockTransport(httpx.BaseTransport):
    def __init__(self, routes: dict[str, tuple[int, dict[str, str], bytes]]):
        self.routes = routes
        self.requested: list[str] = []

    def handle_request(self, request: httpx.Request) -> httpx.Response:  # type: ignore[override]
        url = str(request.url)
        self.requested.append(url)
        status, headers, body = self.routes.get(url, (404, {"Content-Type": "text/plain"}, b"Not Found"))
        return httpx.Response(status, headers=headers, content=body, request=request)


def _fetcher(routes, **kw) -> tuple[StaticFetcher, _MockTransport]:
    transport = _MockTransport(routes)
    fetcher = StaticFetcher(**kw)
    # Patch client to use mock transport
    fetcher._client = httpx.Client(transport=transport)
    return fetcher, transport


def test_static_fetch_html():
    page = (200, {"Content-Type": "text/html; charset=utf-8"}, b"<html>OK</html>")
    fetcher, transport = _fetcher({"https://rinkclub.org/": page})
    res = fetcher.fetch("https://rinkclub.org/")
    assert res.status_code == 200
    assert res.mime == "text/html"
    assert res.html == "<html>OK</html>"
    assert res.content_length == len(b"<html>OK</html>")
    assert res.blocked_by_robots is False
    # robots.txt is not consulted by default
    assert transport.requested == ["https://rinkclub.org/"]


def test_non_html_body_is_not_kept():
    api = (200, {"Content-Type": "application/json"}, b'{"a": 1}')
    fetcher, _ = _fetcher({"https://rinkclub.org/api": api})
    res = fetcher.fetch("https://rinkclub.org/api")
    assert res.mime == "application/json"
    assert res.html is None


@pytest.mark.parametrize("status", [401, 403])
def test_blocked_statuses_raise(status):
    fetcher, _ = _fetcher({"https://rinkclub.org/": (status, {"Content-Type": "text/html"}, b"nope")})
    with pytest.raises(BlockedError) as exc:
        fetcher.fetch("https://rinkclub.org/")
    assert exc.value.status_code == status
    assert exc.value.url == "https://rinkclub.org/"


def test_other_errors_are_returned():
    fetcher, _ = _fetcher({})
    res = fetcher.fetch("https://rinkclub.org/missing")
    assert res.status_code == 404
    assert res.html is None


def test_robots_disallow_when_enabled():
    robots = (200, {"Content-Type": "text/plain"}, b"User-agent: *\nDisallow: /secret\n")
    fetcher, _ = _fetcher({"https://rinkclub.org/robots.txt": robots}, respect_robots=True)
    res = fetcher.fetch("https://rinkclub.org/secret")
    assert res.blocked_by_robots is True
    assert res.html is None
    assert res.status_code == 0


def test_robots_missing_allows():
    page = (200, {"Content-Type": "text/html"}, b"<html>OK</html>")
    fetcher, _ = _fetcher({"https://rinkclub.org/staff": page}, respect_robots=True)
    res = fetcher.fetch("https://rinkclub.org/staff")
    assert res.blocked_by_robots is False
    assert res.status_code == 200


def test_robots_fetched_once_per_host():
    robots = (200, {"Content-Type": "text/plain"}, b"User-agent: *\nDisallow: /private\n")
    page = (200, {"Content-Type": "text/html"}, b"<html>OK</html>")
    routes = {
        "https://rinkclub.org/robots.txt": robots,
        "https://rinkclub.org/coaches": page,
        "https://rinkclub.org/staff": page,
    }
    fetcher, transport = _fetcher(routes, respect_robots=True)
    with fetcher:
        fetcher.fetch("https://rinkclub.org/coaches")
        fetcher.fetch("https://rinkclub.org/staff")
        assert fetcher.allowed("https://rinkclub.org/private/list") is False
    assert transport.requested.count("https://rinkclub.org/robots.txt") == 1


def test_xhtml_counts_as_html():
    page = (200, {"Content-Type": "application/xhtml+xml; charset=utf-8"}, b"<html>OK</html>")
    fetcher, _ = _fetcher({"https://rinkclub.org/": page})
    assert fetcher.fetch("https://rinkclub.org/").html == "<html>OK</html>"
