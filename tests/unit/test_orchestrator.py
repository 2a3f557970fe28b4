from __future__ import annotations

import threading
from unittest.mock import MagicMock, patch

import httpx

from coachscrape.errors import BlockedError, BrowserLaunchError
from coachscrape.pipeline.fetchers.playwright import PageSnapshot
from coachscrape.pipeline.fetchers.static import FetchResult
from coachscrape.pipeline.orchestrator import ScrapeOrchestrator
from coachscrape.pipeline.strategies import SiteStrategy, StrategyDispatcher
from coachscrape.schemas import ScrapeMode, ScrapeSettings, ScrapeStatus

SEED = "https://rinkclub.org/"

HOME = """
<html><body>
  <nav><a href="/coaches">Our Coaches</a> <a href="/schedule">Schedule</a></nav>
  <p>Welcome to the Rink Club youth program.</p>
</body></html>
"""

COACHES = """
<html><body>
  <div class="coach"><h3>Jane Doe</h3><p>Head Coach</p><a href="mailto:jane@rinkclub.org">Email</a></div>
</body></html>
"""


def _page(url, html, status=200, **kw) -> FetchResult:
    return FetchResult(
        url=url,
        status_code=status,
        mime="text/html",
        content_length=len(html.encode()),
        html=html,
        headers={},
        **kw,
    )


class _FakeFetcher:
    """URL -> FetchResult or exception; everything else is a 404."""

    def __init__(self, routes):
        self.routes = routes
        self.requested = []

    def fetch(self, url):
        self.requested.append(url)
        value = self.routes.get(url)
        if isinstance(value, Exception):
            raise value
        if value is None:
            return _page(url, "", status=404)
        return value

    def close(self):
        pass


def _session(html, requests_seen=3):
    session = MagicMock()
    session.requests_seen = requests_seen
    session.fetch.side_effect = lambda url: PageSnapshot(url=url, status_code=200, html=html, page_title="t")
    session.page.query_selector_all.return_value = []
    session.page.content.return_value = html
    return session


def test_static_crawl_follows_contact_links():
    fetcher = _FakeFetcher({SEED: _page(SEED, HOME), "https://rinkclub.org/coaches": _page("https://rinkclub.org/coaches", COACHES)})
    orch = ScrapeOrchestrator(static_fetcher=fetcher, enable_headless=False)
    result = orch.scrape(SEED)

    assert result.status == ScrapeStatus.SUCCESS
    assert [c.email for c in result.contacts] == ["jane@rinkclub.org"]
    assert result.stats.pages_visited == 2
    assert result.stats.total_emails == 1
    assert result.method == "static"
    # Seed is fetched once: the probe doubles as the first page visit
    assert fetcher.requested.count(SEED) == 1


def test_gentle_mode_stays_on_seed():
    fetcher = _FakeFetcher({SEED: _page(SEED, HOME)})
    orch = ScrapeOrchestrator(static_fetcher=fetcher, enable_headless=False)
    result = orch.scrape(SEED, ScrapeSettings(mode=ScrapeMode.GENTLE))
    assert fetcher.requested == [SEED]
    assert result.stats.pages_visited == 1


def test_no_emails_is_partial():
    fetcher = _FakeFetcher({SEED: _page(SEED, "<html><body><p>Welcome</p></body></html>")})
    result = ScrapeOrchestrator(static_fetcher=fetcher, enable_headless=False).scrape(SEED)
    assert result.status == ScrapeStatus.PARTIAL
    assert result.message == "No contacts found"
    assert result.contacts == []


def test_unreachable_site_is_error():
    fetcher = _FakeFetcher({SEED: httpx.ConnectError("connection refused")})
    result = ScrapeOrchestrator(static_fetcher=fetcher, enable_headless=False).scrape(SEED)
    assert result.status == ScrapeStatus.ERROR
    assert "connection refused" in result.message
    assert result.stats.pages_visited == 0


def test_robots_disallowed_seed_is_error():
    fetcher = _FakeFetcher({SEED: FetchResult(SEED, 0, None, 0, None, {}, blocked_by_robots=True)})
    result = ScrapeOrchestrator(static_fetcher=fetcher).scrape(SEED)
    assert result.status == ScrapeStatus.ERROR
    assert "robots.txt" in result.message


def test_blocked_seed_escalates_to_browser():
    fetcher = _FakeFetcher({SEED: BlockedError("HTTP 403", url=SEED, status_code=403)})
    session = _session("<html><body><p>Coach Jane Doe: coach.doe@rinkclub.org</p></body></html>")
    factory = MagicMock(return_value=session)

    result = ScrapeOrchestrator(static_fetcher=fetcher, session_factory=factory).scrape(SEED)

    factory.assert_called_once()
    session.open.assert_called_once()
    session.close.assert_called_once()
    assert result.method == "browser"
    assert result.status == ScrapeStatus.SUCCESS
    assert [c.email for c in result.contacts] == ["coach.doe@rinkclub.org"]
    assert result.stats.requests_seen == 3


def test_browser_http_error_counts_as_failed_fetch():
    fetcher = _FakeFetcher({SEED: BlockedError("HTTP 403", url=SEED, status_code=403)})
    session = _session("Not Found")
    session.fetch.side_effect = lambda url: PageSnapshot(url=url, status_code=404, html="Not Found", page_title="")

    result = ScrapeOrchestrator(static_fetcher=fetcher, session_factory=MagicMock(return_value=session)).scrape(SEED)

    assert result.status == ScrapeStatus.ERROR
    assert result.message.endswith("HTTP 404")
    assert result.stats.pages_visited == 0


def test_responses_from_strategy_navigation_are_discarded():
    events = []

    def visit_profiles_stub(ctx):
        events.append("strategy")
        return []

    fetcher = _FakeFetcher({SEED: BlockedError("HTTP 403", url=SEED, status_code=403)})
    session = _session(HOME)
    session.collector.drain.side_effect = lambda: events.append("drain") or []
    dispatcher = StrategyDispatcher([SiteStrategy("club", lambda u: u == SEED, visit_profiles_stub)])

    ScrapeOrchestrator(
        static_fetcher=fetcher, session_factory=MagicMock(return_value=session), dispatcher=dispatcher,
    ).scrape(SEED, ScrapeSettings(follow_links=False))

    assert events == ["strategy", "drain"]


def test_use_headless_off_never_opens_browser():
    fetcher = _FakeFetcher({SEED: _page(SEED, "<html><body>tiny</body></html>")})
    factory = MagicMock()
    result = ScrapeOrchestrator(static_fetcher=fetcher, session_factory=factory).scrape(
        SEED, ScrapeSettings(use_headless=False)
    )
    factory.assert_not_called()
    assert result.method == "static"


def test_browser_launch_failure_falls_back_to_static():
    fetcher = _FakeFetcher({SEED: _page(SEED, "<html><body><p>Welcome</p></body></html>")})
    session = MagicMock()
    session.open.side_effect = BrowserLaunchError("Executable doesn't exist")
    result = ScrapeOrchestrator(static_fetcher=fetcher, session_factory=lambda s: session).scrape(SEED)
    assert result.method == "static"
    assert result.status == ScrapeStatus.PARTIAL
    assert result.stats.pages_visited == 1


def test_browser_launch_failure_without_static_html_is_error():
    fetcher = _FakeFetcher({SEED: BlockedError("HTTP 401", url=SEED, status_code=401)})
    session = MagicMock()
    session.open.side_effect = BrowserLaunchError("Executable doesn't exist")
    result = ScrapeOrchestrator(static_fetcher=fetcher, session_factory=lambda s: session).scrape(SEED)
    assert result.status == ScrapeStatus.ERROR
    assert "Executable" in result.message


def test_cancelled_before_start():
    fetcher = _FakeFetcher({SEED: _page(SEED, HOME)})
    cancel = threading.Event()
    cancel.set()
    result = ScrapeOrchestrator(static_fetcher=fetcher).scrape(SEED, cancel=cancel)
    assert result.message == "Cancelled"
    assert fetcher.requested == []


def test_one_failing_stage_does_not_sink_the_page():
    fetcher = _FakeFetcher({"https://rinkclub.org/coaches": _page("https://rinkclub.org/coaches", COACHES)})
    with patch("coachscrape.pipeline.orchestrator.mine_captured_responses", side_effect=ValueError("bad json")):
        result = ScrapeOrchestrator(static_fetcher=fetcher, enable_headless=False).scrape("https://rinkclub.org/coaches")
    assert result.status == ScrapeStatus.SUCCESS
    assert [c.email for c in result.contacts] == ["jane@rinkclub.org"]


def test_all_stages_failing_is_error():
    fetcher = _FakeFetcher({SEED: _page(SEED, "<html><body><p>Welcome</p></body></html>")})
    with patch("coachscrape.pipeline.orchestrator.contacts_from_text", side_effect=[[], RuntimeError("text boom")]), \
            patch("coachscrape.pipeline.dom_matcher.DomMatcher.extract_from_html", side_effect=RuntimeError("dom boom")), \
            patch("coachscrape.pipeline.orchestrator.mine_captured_responses", side_effect=RuntimeError("json boom")):
        result = ScrapeOrchestrator(static_fetcher=fetcher, enable_headless=False).scrape(SEED)
    assert result.status == ScrapeStatus.ERROR
    assert result.message == "json: json boom"


def test_result_is_reported_to_ops_logger():
    ops = MagicMock()
    fetcher = _FakeFetcher({SEED: _page(SEED, HOME)})
    result = ScrapeOrchestrator(static_fetcher=fetcher, enable_headless=False, ops_logger=ops).scrape(
        SEED, ScrapeSettings(follow_links=False)
    )
    ops.emit_result.assert_called_once()
    assert ops.emit_result.call_args.args[0] is result
