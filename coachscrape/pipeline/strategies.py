"""
Site-specific strategies for known coaching directories.

`StrategyDispatcher` holds an ordered table of (name, predicate, handler);
the first entry whose predicate accepts the URL handles the page. Handlers
drive the live browser page for interaction (filters, scrolling, "load
more", accordions, profile visits) and read cards from the rendered HTML
with selectolax, so the parsing halves are plain functions over HTML.

Handlers return whatever they found so far; failures degrade to an empty
list and never escape `apply`.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, List, Optional, Sequence, Tuple
from urllib.parse import urljoin, urlparse

from selectolax.parser import HTMLParser, Node

from ..errors import ExtractionError
from ..schemas import CapturedResponse, Confidence, Contact
from .dom_matcher import DomMatcher, innermost_nodes, looks_like_name
from .emails import EmailFilter, DEFAULT_FILTER, TITLE_RE, clean_email, extract_emails
from .json_miner import parse_json_body
from .patterns import domain_from_url, generated_contact

log = logging.getLogger(__name__)


LOAD_MORE_SELECTORS = [
    "button:has-text('Load more')",
    "a:has-text('Load more')",
    "button:has-text('Show more')",
    "a:has-text('View more')",
    ".load-more",
]
ACCORDION_SELECTORS = "[aria-expanded='false'], .accordion-button.collapsed, details:not([open]) > summary"
RESET_SELECTOR = "button:has-text('Reset All')"

SPECIALTIES_RE = re.compile(r"Specialties:\s*(.*?)(?:$|Ages:|Divisions:)", re.DOTALL)
CARD_MARKERS = ("Ages:", "Divisions:", "Specialties:")

STAFF_ROW_SELECTORS = [
    ".sidearm-staff-member",
    ".s-person-card",
    ".staff-directory tr",
    "table.staff tr",
    "table tr",
]

DIRECTORY_SELECTOR_GROUPS = [
    ".coach, .staff, .team-member, .directory-item, .person",
    "div[class*='coach'], div[class*='staff'], div[class*='team']",
    "li[class*='coach'], li[class*='staff'], li[class*='team']",
    ".card, .profile, .bio",
]


@dataclass
class StrategyContext:
    page: Any
    url: str
    responses: Sequence[CapturedResponse] = ()
    matcher: DomMatcher = field(default_factory=DomMatcher)
    email_filter: EmailFilter = DEFAULT_FILTER
    max_profile_visits: int = 3
    timeout_ms: int = 15000


Handler = Callable[[StrategyContext], List[Contact]]


@dataclass(frozen=True)
class SiteStrategy:
    name: str
    predicate: Callable[[str], bool]
    handler: Handler
    # Only run when the page itself looks like a coaching directory
    requires_directory: bool = False


# ----------------------------------------------------------------------
# Shared page interactions (bounded; never raise)
# ----------------------------------------------------------------------
def auto_scroll(page, rounds: int = 10, step: int = 500, pause_ms: int = 500) -> None:
    for _ in range(rounds):
        try:
            page.evaluate("(y) => window.scrollBy(0, y)", step)
            page.wait_for_timeout(pause_ms)
        except Exception:
            return


def click_load_more(page, max_clicks: int = 5, pause_ms: int = 1000) -> int:
    clicks = 0
    while clicks < max_clicks:
        button = None
        for selector in LOAD_MORE_SELECTORS:
            try:
                el = page.query_selector(selector)
                if el is not None and el.is_visible():
                    button = el
                    break
            except Exception:
                continue
        if button is None:
            break
        try:
            button.click(timeout=3000)
            page.wait_for_timeout(pause_ms)
        except Exception:
            break
        clicks += 1
    return clicks


def expand_accordions(page, max_clicks: int = 30) -> int:
    clicks = 0
    try:
        toggles = page.query_selector_all(ACCORDION_SELECTORS)
    except Exception:
        return 0
    for el in toggles[:max_clicks]:
        try:
            el.click(timeout=1000)
            clicks += 1
        except Exception:
            continue
    if clicks:
        try:
            page.wait_for_timeout(300)
        except Exception:
            pass
    return clicks


def reset_filters(page) -> bool:
    try:
        button = page.query_selector(RESET_SELECTOR)
        if button is None:
            return False
        button.click(timeout=3000)
        page.wait_for_timeout(1000)
        return True
    except Exception:
        return False


def _page_html(page) -> str:
    try:
        return page.content() or ""
    except Exception:
        return ""


def visit_profiles(
    ctx: StrategyContext,
    profiles: Iterable[Tuple[str, Optional[str], str]],
) -> List[Contact]:
    """Open up to max_profile_visits (name, title, url) profiles; Confirmed contacts for direct emails."""
    found: List[Contact] = []
    visited = 0
    for name, title, profile_url in profiles:
        if visited >= ctx.max_profile_visits:
            break
        if not profile_url or profile_url == ctx.url:
            continue
        visited += 1
        try:
            ctx.page.goto(profile_url, wait_until="domcontentloaded", timeout=ctx.timeout_ms)
            ctx.page.wait_for_timeout(500)
        except Exception as e:
            log.debug("profile visit failed %s: %s", profile_url, e)
            continue
        emails = extract_emails(_page_html(ctx.page), ctx.email_filter)
        if not emails:
            continue
        try:
            found.append(Contact(
                email=emails[0],
                name=name,
                title=title,
                source=profile_url,
                url=profile_url,
                confidence=Confidence.CONFIRMED,
            ))
        except ValueError:
            continue
    if visited:
        _return_to(ctx)
    return found


def _return_to(ctx: StrategyContext) -> None:
    """Put the shared page back on the listing so later stages see the listing."""
    try:
        ctx.page.goto(ctx.url, wait_until="domcontentloaded", timeout=ctx.timeout_ms)
    except Exception as e:
        log.debug("return to %s failed: %s", ctx.url, e)


def replace_generated_by_name(contacts: List[Contact], confirmed: Iterable[Contact]) -> List[Contact]:
    """A Confirmed contact replaces the Generated one with the same name (case-insensitive)."""
    out = list(contacts)
    for c in confirmed:
        key = (c.name or "").strip().lower()
        idx = next(
            (i for i, g in enumerate(out)
             if key and g.confidence == Confidence.GENERATED and (g.name or "").strip().lower() == key),
            None,
        )
        if idx is None:
            out.append(c)
        else:
            out[idx] = c
    return out


def _first_text(node: Node, selector: str) -> Optional[str]:
    n = node.css_first(selector)
    if n is None:
        return None
    t = re.sub(r"\s+", " ", n.text() or "").strip()
    return t or None


def _card_text(node: Node) -> str:
    return re.sub(r"[ \t]+", " ", node.text(separator=" ") or "").strip()


# ----------------------------------------------------------------------
# travelsports.com hockey coach directory
# ----------------------------------------------------------------------
def parse_travelsports_cards(html_text: str, url: str) -> List[Tuple[str, Optional[str], str]]:
    """(name, specialties, profile_url) for each coach card."""
    if not html_text:
        return []
    parser = HTMLParser(html_text)
    out: List[Tuple[str, Optional[str], str]] = []
    seen = set()
    for a in parser.css("a[href*='/coaches/']"):
        href = (a.attrs.get("href") or "").strip()
        name = re.sub(r"\s+", " ", a.text() or "").strip()
        if not looks_like_name(name):
            name = _first_text(a, "strong, h2, h3, h4") or ""
        if not looks_like_name(name):
            continue
        profile_url = urljoin(url, href)
        if profile_url in seen:
            continue
        seen.add(profile_url)

        title = None
        card = a.parent
        for _ in range(6):
            if card is None:
                break
            text = _card_text(card)
            if any(m in text for m in CARD_MARKERS):
                m = SPECIALTIES_RE.search(text)
                if m and m.group(1).strip():
                    title = m.group(1).strip()[:200]
                break
            card = card.parent
        out.append((name, title, profile_url))
    return out


def handle_travelsports(ctx: StrategyContext) -> List[Contact]:
    page = ctx.page
    try:
        page.wait_for_selector("text=Hockey Coaches", timeout=ctx.timeout_ms)
    except Exception:
        pass
    reset_filters(page)
    auto_scroll(page, rounds=10, step=500, pause_ms=500)
    click_load_more(page)

    cards = parse_travelsports_cards(_page_html(page), ctx.url)
    log.info("travelsports: %d coach cards on %s", len(cards), ctx.url)
    domain = domain_from_url(ctx.url)
    contacts: List[Contact] = []
    for name, title, profile_url in cards:
        c = generated_contact(name, domain, ctx.url, title=title, profile_url=profile_url)
        if c is not None:
            contacts.append(c)

    confirmed = visit_profiles(ctx, cards)
    return replace_generated_by_name(contacts, confirmed)


# ----------------------------------------------------------------------
# Learn to Skate USA program finder (GetPointsFromSearch API)
# ----------------------------------------------------------------------
def contacts_from_programs(payload: Any, source_url: str, email_filter: Optional[EmailFilter] = None) -> List[Contact]:
    flt = email_filter or DEFAULT_FILTER
    if not isinstance(payload, dict):
        return []
    programs = payload.get("programs")
    if not isinstance(programs, list):
        return []
    contacts: List[Contact] = []
    for program in programs:
        if not isinstance(program, dict):
            continue
        email = clean_email(str(program.get("OrganizationEmail") or ""))
        if not flt.is_valid(email):
            continue
        name = str(program.get("OrganizationName") or "").strip() or "Unknown Program"
        city = str(program.get("City") or "").strip()
        state = str(program.get("StateCode") or "").strip()
        if city and state:
            name = f"{name} ({city}, {state})"
        website = str(program.get("Website") or "").strip()
        if website in ("http://", "https://"):
            website = ""
        phone = str(program.get("OrganizationPhoneNumber") or "").strip()
        try:
            contacts.append(Contact(
                email=email,
                name=name,
                phone=phone or None,
                source=source_url,
                url=website or None,
                confidence=Confidence.CONFIRMED,
            ))
        except ValueError:
            continue
    return contacts


def handle_learn_to_skate(ctx: StrategyContext) -> List[Contact]:
    contacts: List[Contact] = []
    unreadable = 0
    for resp in ctx.responses:
        if "GetPointsFromSearch" not in resp.url:
            continue
        payload = parse_json_body(resp.body)
        if payload is None:
            unreadable += 1
            continue
        contacts.extend(contacts_from_programs(payload, ctx.url, ctx.email_filter))
    if not contacts and unreadable:
        raise ExtractionError(f"{unreadable} unreadable GetPointsFromSearch payload(s)", url=ctx.url)
    log.info("learn_to_skate: %d programs with email", len(contacts))
    return contacts


# ----------------------------------------------------------------------
# College athletics staff directories (.edu)
# ----------------------------------------------------------------------
def parse_staff_directory(html_text: str, url: str, matcher: DomMatcher) -> List[Contact]:
    if not html_text:
        return []
    parser = HTMLParser(html_text)
    rows: List[Node] = []
    for selector in STAFF_ROW_SELECTORS:
        rows = [r for r in parser.css(selector) if "mailto:" in (r.html or "").lower() or "@" in (r.text() or "")]
        if rows:
            break
    contacts: List[Contact] = []
    for row in rows:
        c = matcher.extract_from_node(row, url)
        if c is None:
            continue
        updates = {}
        name = _first_text(row, "[class*='name']")
        if name and looks_like_name(name) and not c.name:
            updates["name"] = name
        title = _first_text(row, "[class*='title'], [class*='position']")
        if title and "@" not in title and (not c.title or c.title == c.name):
            updates["title"] = title
        contacts.append(c.model_copy(update=updates) if updates else c)
    return contacts


def handle_college_athletics(ctx: StrategyContext) -> List[Contact]:
    expand_accordions(ctx.page)
    auto_scroll(ctx.page, rounds=3, step=1000, pause_ms=300)
    return parse_staff_directory(_page_html(ctx.page), ctx.url, ctx.matcher)


# ----------------------------------------------------------------------
# Generic sports directory
# ----------------------------------------------------------------------
def parse_sports_directory(html_text: str, url: str, matcher: DomMatcher) -> List[Contact]:
    """Confirmed when a card carries an email, otherwise Generated from the card's name."""
    if not html_text:
        return []
    parser = HTMLParser(html_text)
    nodes: List[Node] = []
    for group in DIRECTORY_SELECTOR_GROUPS:
        nodes = parser.css(group)
        if nodes:
            break
    nodes = innermost_nodes(nodes)
    domain = domain_from_url(url)
    contacts: List[Contact] = []
    for node in nodes:
        c = matcher.extract_from_node(node, url)
        if c is not None:
            contacts.append(c)
            continue
        text = _card_text(node)
        name = matcher.node_name(node)
        if not name:
            continue
        title = matcher.node_title(node, name, node.text(separator="\n") or "")
        if title is None:
            m = TITLE_RE.search(text)
            title = m.group(0) if m else None
        g = generated_contact(name, domain, url, title=title)
        if g is not None:
            contacts.append(g)
    return contacts


def handle_sports_directory(ctx: StrategyContext) -> List[Contact]:
    try:
        ctx.page.wait_for_load_state("networkidle", timeout=ctx.timeout_ms)
    except Exception:
        pass
    auto_scroll(ctx.page, rounds=5, step=800, pause_ms=800)
    click_load_more(ctx.page)
    return parse_sports_directory(_page_html(ctx.page), ctx.url, ctx.matcher)


# ----------------------------------------------------------------------
# Dispatcher
# ----------------------------------------------------------------------
def _host(url: str) -> str:
    try:
        return (urlparse(url).hostname or "").lower()
    except ValueError:
        return ""


def _host_is(url: str, domain: str) -> bool:
    host = _host(url)
    return host == domain or host.endswith("." + domain)


DEFAULT_STRATEGIES: List[SiteStrategy] = [
    SiteStrategy("travelsports", lambda u: _host_is(u, "travelsports.com"), handle_travelsports),
    SiteStrategy("learn_to_skate", lambda u: _host_is(u, "learntoskateusa.com"), handle_learn_to_skate),
    SiteStrategy("college_athletics", lambda u: _host(u).endswith(".edu"), handle_college_athletics),
    SiteStrategy(
        "sports_directory",
        lambda u: any(k in u.lower() for k in ("coaches", "directory", "staff")),
        handle_sports_directory,
        requires_directory=True,
    ),
]


class StrategyDispatcher:
    """Ordered (predicate, handler) table; first match wins."""

    def __init__(
        self,
        entries: Optional[Sequence[SiteStrategy]] = None,
        *,
        matcher: Optional[DomMatcher] = None,
        email_filter: Optional[EmailFilter] = None,
        max_profile_visits: int = 3,
        timeout_ms: int = 15000,
    ) -> None:
        self.entries = list(entries if entries is not None else DEFAULT_STRATEGIES)
        self.email_filter = email_filter or DEFAULT_FILTER
        self.matcher = matcher or DomMatcher(email_filter=self.email_filter)
        self.max_profile_visits = max_profile_visits
        self.timeout_ms = timeout_ms

    def match(self, url: str) -> Optional[SiteStrategy]:
        for entry in self.entries:
            try:
                if entry.predicate(url):
                    return entry
            except Exception:
                continue
        return None

    def apply(self, page, url: str, *, responses: Sequence[CapturedResponse] = ()) -> List[Contact]:
        entry = self.match(url)
        if entry is None:
            return []
        ctx = StrategyContext(
            page=page,
            url=url,
            responses=responses,
            matcher=self.matcher,
            email_filter=self.email_filter,
            max_profile_visits=self.max_profile_visits,
            timeout_ms=self.timeout_ms,
        )
        try:
            contacts = entry.handler(ctx)
        except Exception as e:
            log.warning("strategy %s failed on %s: %s", entry.name, url, e)
            return []
        log.info("strategy %s: %d contacts from %s", entry.name, len(contacts), url)
        return contacts
