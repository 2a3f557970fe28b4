import os
import pytest

from coachscrape.pipeline.capture import ResponseCollector
from coachscrape.pipeline.dom_matcher import DomMatcher
from coachscrape.pipeline.fetchers.playwright import BrowserSession
from coachscrape.pipeline.strategies import auto_scroll, expand_accordions

skip_playwright_dom = pytest.mark.skipif(
    os.getenv("CCS_RUN_PW_TESTS", "0") != "1",
    reason="Set CCS_RUN_PW_TESTS=1 to run Playwright DOM extraction tests"
)

CARDS = """
<html><body>
  <div class="coach-card"><h3>Jane Doe</h3><span class="title">Head Coach</span>
    <a href="mailto:jane@rinkclub.org">Email</a></div>
  <div class="coach-card"><h3>Mark Lee</h3><span class="title">Goalie Coach</span>
    <a href="mailto:mlee@rinkclub.org">Email</a></div>
</body></html>
"""

ACCORDION = """
<html><body>
  <details><summary>Coaching staff</summary>
    <div class="staff-member"><h4>Sam Park</h4><p>Skating Director</p>
      <a href="mailto:spark@rinkclub.org">spark@rinkclub.org</a></div>
  </details>
</body></html>
"""


@pytest.mark.playwright
@skip_playwright_dom
def test_playwright_dom_extract_cards():
    with BrowserSession() as session:
        session.page.set_content(CARDS)
        contacts = DomMatcher().extract_from_page(session.page, "https://rinkclub.org/coaches")
    assert [(c.name, c.title, c.email) for c in contacts] == [
        ("Jane Doe", "Head Coach", "jane@rinkclub.org"),
        ("Mark Lee", "Goalie Coach", "mlee@rinkclub.org"),
    ]


@pytest.mark.playwright
@skip_playwright_dom
def test_playwright_accordion_and_scroll_helpers():
    with BrowserSession() as session:
        session.page.set_content(ACCORDION)
        auto_scroll(session.page, rounds=2, pause_ms=50)
        assert expand_accordions(session.page) == 1
        contacts = DomMatcher().extract_from_page(session.page, "https://rinkclub.org/staff")
    assert [c.email for c in contacts] == ["spark@rinkclub.org"]


@pytest.mark.playwright
@skip_playwright_dom
def test_playwright_collector_attaches_to_context():
    collector = ResponseCollector()
    with BrowserSession() as session:
        collector.attach(session.page.context)
        session.page.set_content("<html><body>idle</body></html>")
    assert collector.drain() == []
