"""
Scrape Orchestrator - static-first crawl with escalation to a browser.

Per target URL:
1. Static probe (httpx). 401/403 or escalation markers switch the whole
   crawl to a headless browser session; otherwise the crawl stays static.
2. Breadth-first walk from the seed over same-site contact/staff/coach
   links, bounded by max_depth and max_pages.
3. Per page: a matching site strategy first; the generic stack (text
   extraction, DOM matcher, JSON miner over captured responses) only when
   the strategy yields nothing.
4. Reconcile, pick a status, build the ScrapeResult.

`scrape()` never raises. The browser is always closed before returning.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Deque, List, Optional, Set, Tuple

from ..config import EngineConfig
from ..errors import BlockedError, BrowserLaunchError, NavigationError
from ..ops_logger import OpsLogger
from ..schemas import (
    CapturedResponse,
    Confidence,
    Contact,
    ScrapeResult,
    ScrapeSettings,
    ScrapeStats,
    ScrapeStatus,
)
from .discovery import discover_links, normalize_url
from .dom_matcher import DomMatcher
from .emails import EmailFilter, contacts_from_text
from .escalation import EscalationDecision, decide_escalation, is_coaching_directory
from .fetchers.playwright import BrowserSession
from .fetchers.static import FetchResult, StaticFetcher
from .json_miner import mine_captured_responses
from .reconcile import reconcile_contacts
from .strategies import StrategyDispatcher

log = logging.getLogger(__name__)


SessionFactory = Callable[[ScrapeSettings], BrowserSession]


@dataclass
class _Run:
    """Mutable per-URL state; frozen into a ScrapeResult at the end."""
    url: str
    settings: ScrapeSettings
    started: float = field(default_factory=time.monotonic)
    contacts: List[Contact] = field(default_factory=list)
    captured: List[CapturedResponse] = field(default_factory=list)
    pages_visited: int = 0
    fetch_ok: int = 0
    fetch_failed: int = 0
    strategy_runs: int = 0
    strategy_failures: int = 0
    requests_seen: int = 0
    method: str = "static"
    errors: List[str] = field(default_factory=list)
    cancelled: bool = False
    session: Optional[BrowserSession] = None

    def elapsed(self) -> float:
        return time.monotonic() - self.started


class ScrapeOrchestrator:
    """Runs one scrape at a time; not safe to share across threads."""

    def __init__(
        self,
        *,
        config: Optional[EngineConfig] = None,
        static_fetcher: Optional[StaticFetcher] = None,
        session_factory: Optional[SessionFactory] = None,
        dispatcher: Optional[StrategyDispatcher] = None,
        enable_headless: bool = True,
        ops_logger: Optional[OpsLogger] = None,
    ) -> None:
        self.config = config or EngineConfig()
        self.limits = self.config.limits
        self.email_filter = EmailFilter.from_config(self.config.email_filter)
        if static_fetcher is None:
            self.static_fetcher = StaticFetcher(
                timeout_s=float(self.limits.static_timeout_s),
                respect_robots=self.limits.respect_robots,
            )
        else:
            self.static_fetcher = static_fetcher
        self.session_factory = session_factory or self._default_session
        self.dispatcher = dispatcher or StrategyDispatcher(
            email_filter=self.email_filter,
            max_profile_visits=self.limits.max_profile_visits,
        )
        self.enable_headless = bool(enable_headless)
        self.ops_logger = ops_logger

    def _default_session(self, settings: ScrapeSettings) -> BrowserSession:
        return BrowserSession(
            browser_type=settings.browser_type.value,
            timeout_ms=settings.timeout_ms,
            max_responses=self.limits.capture_max_responses,
            max_body_bytes=self.limits.capture_max_body_bytes,
            capture_window_s=self.limits.wall_clock_s,
        )

    def close(self) -> None:
        try:
            self.static_fetcher.close()
        except Exception:
            pass

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------
    def scrape(
        self,
        url: str,
        settings: Optional[ScrapeSettings] = None,
        *,
        cancel: Optional[threading.Event] = None,
    ) -> ScrapeResult:
        settings = (settings or self.config.scrape).effective()
        run = _Run(url=url, settings=settings)
        try:
            self._crawl(run, cancel)
        except Exception as e:
            log.exception("scrape failed for %s", url)
            run.errors.append(str(e))
            run.fetch_failed += 1
        finally:
            if run.session is not None:
                run.session.close()
                run.session = None
        result = self._finish(run)
        if self.ops_logger is not None:
            self.ops_logger.emit_result(result, run.elapsed())
        return result

    # ------------------------------------------------------------------
    # Crawl
    # ------------------------------------------------------------------
    def _crawl(self, run: _Run, cancel: Optional[threading.Event]) -> None:
        seed = run.url
        if cancel is not None and cancel.is_set():
            run.cancelled = True
            return

        probe, decision = self._probe(seed)
        use_browser = decision.escalate and run.settings.use_headless and self.enable_headless
        if decision.escalate:
            log.info("escalating %s: reasons=%s", seed, decision.reasons)
        if use_browser:
            try:
                run.session = self.session_factory(run.settings)
                run.session.open()
                run.method = "browser"
            except BrowserLaunchError as e:
                log.warning("browser unavailable for %s: %s", seed, e)
                run.errors.append(str(e))
                run.session = None
                if probe is None or not probe.html:
                    run.fetch_failed += 1
                    return

        queue: Deque[Tuple[str, int]] = deque([(seed, 0)])
        visited: Set[str] = set()
        while queue and run.pages_visited < self.limits.max_pages:
            if cancel is not None and cancel.is_set():
                run.cancelled = True
                log.info("cancelled %s after %d pages", seed, run.pages_visited)
                break
            if self._over_budget(run):
                break
            page_url, depth = queue.popleft()
            key = normalize_url(page_url)
            if key in visited:
                continue
            visited.add(key)

            if run.session is not None:
                html = self._visit_browser(run, page_url)
            elif page_url == seed and probe is not None:
                html = self._visit_static(run, page_url, probe)
            else:
                html = self._visit_static(run, page_url)

            if html and run.settings.follow_links and depth < run.settings.max_depth:
                for link in discover_links(page_url, html, self.limits.max_links_per_page):
                    if normalize_url(link) not in visited:
                        queue.append((link, depth + 1))

    def _over_budget(self, run: _Run) -> bool:
        wall = float(self.limits.wall_clock_s)
        elapsed = run.elapsed()
        if elapsed > 2 * wall:
            log.info("hard time limit reached for %s (%.1fs)", run.url, elapsed)
            return True
        if run.contacts and elapsed > wall:
            log.info("time limit reached for %s with %d contacts", run.url, len(run.contacts))
            return True
        return False

    def _probe(self, url: str) -> Tuple[Optional[FetchResult], EscalationDecision]:
        """Static fetch of the seed and the escalation decision for the crawl."""
        try:
            fetch = self.static_fetcher.fetch(url)
        except BlockedError as e:
            return None, EscalationDecision(escalate=True, reasons=[f"blocked:{e.status_code}"])
        except Exception as e:
            log.info("static probe failed for %s: %s", url, e)
            return None, EscalationDecision(escalate=True, reasons=[f"static_error:{type(e).__name__}"])

        if fetch.blocked_by_robots:
            return fetch, EscalationDecision(escalate=False, reasons=["robots"])
        if fetch.status_code >= 400:
            return None, EscalationDecision(escalate=True, reasons=[f"http:{fetch.status_code}"])

        static_contacts = 0
        if fetch.html:
            static_contacts = len(contacts_from_text(fetch.html, url, email_filter=self.email_filter))
        decision = decide_escalation(fetch, static_contacts)
        entry = self.dispatcher.match(url)
        if entry is not None and (not entry.requires_directory or is_coaching_directory(fetch.html)):
            decision = EscalationDecision(escalate=True, reasons=decision.reasons + [f"strategy:{entry.name}"])
        return fetch, decision

    # ------------------------------------------------------------------
    # Page visits
    # ------------------------------------------------------------------
    def _visit_static(self, run: _Run, url: str, fetch: Optional[FetchResult] = None) -> Optional[str]:
        if fetch is None:
            try:
                fetch = self.static_fetcher.fetch(url)
            except Exception as e:
                log.info("static fetch failed for %s: %s", url, e)
                run.fetch_failed += 1
                run.errors.append(f"{url}: {e}")
                return None
        if fetch.blocked_by_robots:
            run.fetch_failed += 1
            run.errors.append(f"{url}: blocked by robots.txt")
            return None
        if fetch.status_code >= 400:
            run.fetch_failed += 1
            run.errors.append(f"{url}: HTTP {fetch.status_code}")
            return None
        run.fetch_ok += 1
        run.pages_visited += 1
        html = fetch.html or ""
        if not html:
            return None

        found = self._generic(run, url, html, [CapturedResponse(url=url, body=html, content_type="text/html")])
        run.contacts.extend(found)
        log.debug("static %s: %d contacts", url, len(found))
        return html

    def _visit_browser(self, run: _Run, url: str) -> Optional[str]:
        session = run.session
        session.reset_request_count()
        try:
            snapshot = session.fetch(url)
        except NavigationError as e:
            log.info("navigation failed for %s: %s", url, e)
            run.fetch_failed += 1
            run.errors.append(f"{url}: {e}")
            return None
        if snapshot.status_code >= 400:
            run.fetch_failed += 1
            run.errors.append(f"{url}: HTTP {snapshot.status_code}")
            return None
        run.fetch_ok += 1
        run.pages_visited += 1
        run.requests_seen += session.requests_seen
        room = max(0, self.limits.capture_max_responses - len(run.captured))
        run.captured.extend(snapshot.responses[:room])
        html = snapshot.html or ""

        entry = self.dispatcher.match(url)
        if entry is not None and (not entry.requires_directory or is_coaching_directory(html)):
            found = self._run_strategy(run, entry.name, self.dispatcher.apply, session.page, url, responses=snapshot.responses)
            # Profile navigations belong to this page, not the next one
            session.collector.drain()
            if found:
                run.contacts.extend(found)
                return html

        if session.requests_seen > self.limits.max_requests_per_page and run.contacts:
            log.info("request limit reached on %s (%d requests)", url, session.requests_seen)
            return html

        found = self._generic(run, url, html, snapshot.responses, page=session.page)
        run.contacts.extend(found)
        return html

    def _generic(self, run: _Run, url: str, html: str, responses, page=None) -> List[Contact]:
        """Text pass, DOM matcher and JSON miner; each stage fails independently."""
        include_phone = run.settings.include_phone_numbers
        matcher = DomMatcher(email_filter=self.email_filter, include_phone_numbers=include_phone)
        found: List[Contact] = []
        found.extend(self._run_strategy(
            run, "text", contacts_from_text, html, url,
            include_phone_numbers=include_phone, email_filter=self.email_filter,
        ))
        if page is not None:
            found.extend(self._run_strategy(run, "dom", matcher.extract_from_page, page, url))
        else:
            found.extend(self._run_strategy(run, "dom", matcher.extract_from_html, html, url))
        found.extend(self._run_strategy(
            run, "json", mine_captured_responses, responses, url, email_filter=self.email_filter,
        ))
        return found

    def _run_strategy(self, run: _Run, name: str, fn, *args, **kwargs) -> List[Contact]:
        run.strategy_runs += 1
        try:
            return list(fn(*args, **kwargs) or [])
        except Exception as e:
            run.strategy_failures += 1
            run.errors.append(f"{name}: {e}")
            log.warning("%s extraction failed on %s: %s", name, run.url, e)
            return []

    # ------------------------------------------------------------------
    # Result
    # ------------------------------------------------------------------
    def _finish(self, run: _Run) -> ScrapeResult:
        contacts = reconcile_contacts(run.contacts, self.email_filter)
        stats = ScrapeStats(
            total_emails=len(contacts),
            total_with_names=sum(1 for c in contacts if c.name),
            pages_visited=run.pages_visited,
            generated_emails=sum(1 for c in contacts if c.confidence == Confidence.GENERATED),
            requests_seen=run.requests_seen,
        )
        all_threw = run.strategy_runs > 0 and run.strategy_failures == run.strategy_runs
        if contacts:
            status = ScrapeStatus.SUCCESS
            message = f"Found {len(contacts)} contacts"
        elif run.fetch_ok > 0 and not all_threw:
            status = ScrapeStatus.PARTIAL
            message = "No contacts found"
        else:
            status = ScrapeStatus.ERROR
            message = run.errors[-1] if run.errors else "No page could be fetched"
        if run.cancelled:
            message = f"Cancelled: {message}" if contacts or run.fetch_ok else "Cancelled"
        return ScrapeResult(
            url=run.url,
            contacts=contacts,
            status=status,
            message=message,
            stats=stats,
            captured_responses=run.captured,
            method=run.method,
        )
