"""
Static → browser escalation heuristics.

The static probe's HTML is checked for signs that the useful content only
exists after JavaScript runs: challenge pages, SPA shells, obfuscated or
click-to-reveal emails, and coach directories rendered behind filters.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import List, Tuple

from .fetchers.static import HTML_MIMES, FetchResult


def _compile(markers: List[Tuple[str, str]]) -> List[Tuple[str, re.Pattern]]:
    return [(label, re.compile(pat, re.IGNORECASE)) for label, pat in markers]


ANTI_BOT_MARKERS = _compile([
    ("cf_wait", r"Just a moment\s*\.\.\."),
    ("cookies_js", r"Enable JavaScript and cookies to continue"),
    ("cf_challenge", r"__cf_chl_"),
    ("browser_check", r"Checking your browser before accessing"),
])

# Only consulted when the static parse found no contacts
JS_MARKERS = _compile([
    ("cfemail", r"data-cfemail|cf_email"),
    ("js_mailto", r"javascript:.*mailto"),
    ("data_email", r"data-email\s*="),
    ("react", r"data-reactroot|id=\"__next\""),
    ("angular", r"ng-app"),
    ("empty_app_root", r"id=\"app\"></div>"),
    ("reveal_email", r"(?:show|reveal)\s*e-?mail"),
    ("load_more", r"load\s*more"),
])

COACH_KEYWORDS = ("coach", "coaching", "coaches", "hockey", "sports", "team", "league", "athletic")

CARD_CLASS_RE = re.compile(r'class\s*=\s*"[^"]*(coach|staff|member|profile|person)[^"]*"', re.IGNORECASE)
HEADING_RE = re.compile(r"<h[34][^>]*>", re.IGNORECASE)

TINY_PAGE_BYTES = 5 * 1024
MIN_CARD_HITS = 3
MIN_KEYWORD_HITS = 3
MIN_CARD_HEADINGS = 8


@dataclass(frozen=True)
class EscalationDecision:
    escalate: bool
    reasons: List[str] = field(default_factory=list)


def detect_anti_bot(html: str | None) -> bool:
    return bool(html) and any(rx.search(html) for _, rx in ANTI_BOT_MARKERS)


def detect_js_markers(html: str | None) -> List[str]:
    if not html:
        return []
    return [f"js:{label}" for label, rx in JS_MARKERS if rx.search(html)]


def count_card_hits(html: str | None) -> int:
    """Repeating coach/staff/member/profile/person class attributes."""
    return len(CARD_CLASS_RE.findall(html)) if html else 0


def coach_keyword_hits(html: str | None) -> int:
    if not html:
        return 0
    low = html.lower()
    return sum(1 for k in COACH_KEYWORDS if k in low)


def is_coaching_directory(html: str | None) -> bool:
    return coach_keyword_hits(html) >= MIN_KEYWORD_HITS or count_card_hits(html) >= MIN_CARD_HITS


def detect_cards_without_contacts(html: str | None) -> bool:
    """Person cards (card classes, or a run of h3/h4 headings) with no mailto/tel anchor."""
    if not html:
        return False
    low = html.lower()
    if 'href="mailto:' in low or 'href="tel:' in low:
        return False
    return count_card_hits(html) >= MIN_CARD_HITS or len(HEADING_RE.findall(html)) >= MIN_CARD_HEADINGS


def decide_escalation(fetch: FetchResult, static_contacts: int) -> EscalationDecision:
    """Should this page be re-rendered in the browser?

    `static_contacts` is how many contacts the static parse already produced.
    """
    reasons: List[str] = []
    found_nothing = static_contacts == 0
    if fetch.mime is not None and fetch.mime not in HTML_MIMES:
        reasons.append(f"mime!=text/html ({fetch.mime})")
    if found_nothing and fetch.content_length < TINY_PAGE_BYTES:
        reasons.append("no_contacts && content_length<5KiB")
    if detect_anti_bot(fetch.html):
        reasons.append("anti-bot markers detected")
    if found_nothing:
        reasons.extend(detect_js_markers(fetch.html))
    if detect_cards_without_contacts(fetch.html):
        reasons.append("cards_present_but_no_mailto_tel")
    if found_nothing and is_coaching_directory(fetch.html):
        reasons.append("coaching_directory")
    return EscalationDecision(escalate=bool(reasons), reasons=reasons)
