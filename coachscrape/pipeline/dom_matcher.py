"""
DOM Heuristic Matcher - locate coach cards and read one contact from each.

Selector families are tried most-specific first and the first family with
any match wins. Without a match, candidate containers are scored by
person-indicator keywords (and by rendered size in the browser), and as a
last resort every mailto anchor's parent is treated as a card.

Two entry points share one extraction routine:
- static: selectolax nodes from fetched HTML
- browser: Playwright ElementHandles, snapshotted via outerHTML and parsed
  with selectolax
"""

from __future__ import annotations

import logging
import re
from typing import List, Optional, Tuple

from selectolax.parser import HTMLParser, Node

from ..schemas import Confidence, Contact
from .emails import (
    EmailFilter,
    DEFAULT_FILTER,
    EMAIL_RE,
    TITLE_RE,
    clean_email,
    decode_cloudflare_email,
    extract_emails,
    extract_name_from_context,
    extract_phone_from_context,
    extract_phone_numbers,
    extract_title_from_context,
)
from .reconcile import remove_duplicate_contacts

log = logging.getLogger(__name__)


SELECTOR_FAMILIES = [
    ".coach-card",
    ".staff-member",
    ".coach-profile",
    ".coach",
    ".team-member",
    ".staff-card",
    ".directory-item",
    ".person",
    ".profile",
    ".card",
    "[class*='coach']",
    "[class*='staff']",
    "article",
]

FALLBACK_CONTAINERS = "div, section, article, li"
PERSON_INDICATORS = ("coach", "director", "manager", "title", "role", "email", "contact")

NAME_SELECTORS = ["h1", "h2", "h3", "h4", ".name", ".coach-name", ".staff-name", ".profile-name", "strong"]
TITLE_SELECTORS = [".position", ".title", ".coach-title", ".role", ".job-title", ".designation"]

# Rendered card size window (px)
MIN_W, MAX_W = 100, 600
MIN_H, MAX_H = 80, 500
# Static stand-in for the size window: visible text length
MIN_TEXT, MAX_TEXT = 20, 600
MAX_SCAN = 400

NAME_TOKEN_RE = re.compile(r"^[A-Z][A-Za-z'\-.]*$")
# Link labels that sit next to names on cards
CTA_LABELS = {
    "email", "e-mail", "email me", "send email", "contact", "call", "phone",
    "bio", "full bio", "view profile", "profile", "read more", "more", "website",
}


def _text(node: Optional[Node]) -> str:
    if node is None:
        return ""
    return re.sub(r"[ \t]+", " ", node.text(separator="\n") or "").strip()


def looks_like_name(s: str) -> bool:
    s = (s or "").strip()
    if not s or "@" in s or len(s) > 60 or any(ch.isdigit() for ch in s):
        return False
    s = re.sub(r"^(Dr\.|Mr\.|Ms\.|Mrs\.|Coach)\s+", "", s)
    tokens = s.split()
    if not 2 <= len(tokens) <= 4:
        return False
    if TITLE_RE.fullmatch(s):
        return False
    return all(NAME_TOKEN_RE.match(t) for t in tokens)


def split_name_title(anchor_text: str) -> Tuple[Optional[str], Optional[str]]:
    """'Jane Doe, Head Coach' -> ('Jane Doe', 'Head Coach')."""
    t = re.sub(r"\s+", " ", anchor_text or "").strip()
    if not t or "@" in t:
        return None, None
    if "," in t:
        head, tail = t.split(",", 1)
        head, tail = head.strip(), tail.strip()
        if looks_like_name(head):
            return head, (tail or None)
        return None, None
    m = re.match(r"^(.+?)\s+[-|–]\s+(.+)$", t)
    if m and looks_like_name(m.group(1)):
        return m.group(1).strip(), m.group(2).strip()
    if looks_like_name(t):
        return t, None
    return None, None


def _indicator_score(html_text: str) -> int:
    low = (html_text or "").lower()
    return sum(1 for k in PERSON_INDICATORS if k in low)


def _has_email_signal(html_text: str) -> bool:
    low = (html_text or "").lower()
    return "mailto:" in low or "data-email" in low or "data-cfemail" in low or bool(EMAIL_RE.search(html_text or ""))


def _is_ancestor(a: Node, b: Node) -> bool:
    p = b.parent
    while p is not None:
        if p.mem_id == a.mem_id:
            return True
        p = p.parent
    return False


def innermost_nodes(nodes: List[Node]) -> List[Node]:
    return [n for n in nodes if not any(o is not n and _is_ancestor(n, o) for o in nodes)]


class DomMatcher:
    """Coach-card discovery and per-card contact extraction."""

    def __init__(self, *, email_filter: Optional[EmailFilter] = None, include_phone_numbers: bool = True) -> None:
        self.email_filter = email_filter or DEFAULT_FILTER
        self.include_phone_numbers = include_phone_numbers

    # ------------------------------------------------------------------
    # Static (selectolax)
    # ------------------------------------------------------------------
    def find_coach_nodes(self, parser: HTMLParser) -> List[Node]:
        for selector in SELECTOR_FAMILIES:
            nodes = parser.css(selector)
            if nodes:
                log.debug("selector family %s matched %d nodes", selector, len(nodes))
                return nodes
        scored: List[Tuple[int, Node]] = []
        for node in parser.css(FALLBACK_CONTAINERS)[:MAX_SCAN]:
            html_text = node.html or ""
            if not _has_email_signal(html_text):
                continue
            text_len = len(_text(node))
            if not MIN_TEXT <= text_len <= MAX_TEXT:
                continue
            score = _indicator_score(html_text)
            if score >= 2:
                scored.append((score, node))
        nodes = innermost_nodes([n for _, n in scored])
        return nodes

    def mailto_cards(self, parser: HTMLParser) -> List[Tuple[Node, Node]]:
        """(anchor, parent) for every mailto anchor on the page."""
        return [(a, a.parent or a) for a in parser.css("a[href*='mailto:'], a[href*='MAILTO:']")]

    def extract_from_node(self, node: Node, source_url: str, anchor: Optional[Node] = None) -> Optional[Contact]:
        """One contact per card; None when the card carries no email.

        With `anchor` given, the email comes from that mailto link only and
        the name is looked up around it before the card's headings.
        """
        pinned = anchor is not None
        if pinned:
            email = clean_email(anchor.attrs.get("href") or "")
            if not self.email_filter.is_valid(email):
                return None
        else:
            email, anchor = self._node_email(node)
            if not email:
                return None
        text = _text(node)

        name = title = None
        if anchor is not None:
            name, title = split_name_title(anchor.text() or "")
        if name is None and pinned:
            name = extract_name_from_context(email, text)
        if name is None:
            name = self.node_name(node) or extract_name_from_context(email, text)
        if title is None:
            title = self.node_title(node, name, text)

        phone = self._node_phone(node, email, text) if self.include_phone_numbers else None
        try:
            return Contact(
                email=email,
                name=name,
                title=title,
                phone=phone,
                source=source_url,
                confidence=Confidence.CONFIRMED,
            )
        except ValueError:
            return None

    def extract_from_html(self, html_text: str, source_url: str) -> List[Contact]:
        if not html_text:
            return []
        parser = HTMLParser(html_text)
        contacts: List[Contact] = []
        for node in self.find_coach_nodes(parser):
            c = self.extract_from_node(node, source_url)
            if c is not None:
                contacts.append(c)
        if not contacts:
            for anchor, parent in self.mailto_cards(parser):
                c = self.extract_from_node(parent, source_url, anchor=anchor)
                if c is not None:
                    contacts.append(c)
        return remove_duplicate_contacts(contacts)

    def _node_email(self, node: Node) -> Tuple[Optional[str], Optional[Node]]:
        anchors = node.css("a[href*='mailto:'], a[href*='MAILTO:']")
        if node.tag == "a" and (node.attrs.get("href") or "").lower().startswith("mailto:"):
            anchors = [node] + anchors
        for a in anchors:
            email = clean_email(a.attrs.get("href") or "")
            if self.email_filter.is_valid(email):
                return email, a
        holders = node.css("[data-email]")
        if node.attrs.get("data-email"):
            holders = [node] + holders
        for h in holders:
            email = clean_email(h.attrs.get("data-email") or "")
            if self.email_filter.is_valid(email):
                return email, None
        for h in node.css("[data-cfemail]"):
            email = decode_cloudflare_email(h.attrs.get("data-cfemail") or "")
            if email and self.email_filter.is_valid(email):
                return email, None
        found = extract_emails(node.html or "", self.email_filter)
        if found:
            return found[0], None
        return None, None

    def node_name(self, node: Node) -> Optional[str]:
        for selector in NAME_SELECTORS:
            n = node.css_first(selector)
            if n is None:
                continue
            t = re.sub(r"\s+", " ", n.text() or "").strip()
            t = re.sub(r"^(Dr\.|Mr\.|Ms\.|Mrs\.|Coach)\s+", "", t)
            if looks_like_name(t):
                return t[:100]
        return None

    def node_title(self, node: Node, name: Optional[str], text: str) -> Optional[str]:
        for selector in TITLE_SELECTORS:
            n = node.css_first(selector)
            if n is None:
                continue
            t = re.sub(r"\s+", " ", n.text() or "").strip()
            if t and t != name and "@" not in t and len(t) <= 120:
                return t
        if name:
            lines = [ln.strip() for ln in text.split("\n") if ln.strip()]
            for i, ln in enumerate(lines):
                if ln == name and i + 1 < len(lines):
                    nxt = lines[i + 1]
                    if "@" not in nxt and not extract_phone_numbers(nxt) and len(nxt) <= 80 and not looks_like_name(nxt) \
                            and nxt.lower().strip(" :") not in CTA_LABELS:
                        return nxt
                    break
        m = TITLE_RE.search(text)
        if m:
            return extract_title_from_context(name or m.group(0), text) or m.group(0)
        return None

    def _node_phone(self, node: Node, email: str, text: str) -> Optional[str]:
        tel = node.css_first("a[href*='tel:']")
        if tel is not None:
            value = (tel.attrs.get("href") or "")[4:].strip()
            if value:
                return value
        return extract_phone_from_context(email, text) or next(iter(extract_phone_numbers(text)), None)

    # ------------------------------------------------------------------
    # Browser (Playwright ElementHandle)
    # ------------------------------------------------------------------
    def find_coach_elements(self, page) -> list:
        for selector in SELECTOR_FAMILIES:
            try:
                elements = page.query_selector_all(selector)
            except Exception:
                continue
            if elements:
                log.debug("selector family %s matched %d elements", selector, len(elements))
                return elements

        scored = []
        try:
            candidates = page.query_selector_all(FALLBACK_CONTAINERS)[:MAX_SCAN]
        except Exception:
            candidates = []
        for el in candidates:
            try:
                html_text = el.inner_html()
                box = el.bounding_box()
            except Exception:
                continue
            if not box or not _has_email_signal(html_text):
                continue
            if not (MIN_W <= box["width"] <= MAX_W and MIN_H <= box["height"] <= MAX_H):
                continue
            score = _indicator_score(html_text)
            if score >= 2:
                scored.append((score, el))
        scored.sort(key=lambda t: t[0], reverse=True)
        if scored:
            return [el for _, el in scored]

        parents = []
        try:
            anchors = page.query_selector_all("a[href^='mailto:']")
        except Exception:
            anchors = []
        for a in anchors:
            try:
                parent = a.evaluate_handle("e => e.parentElement || e").as_element()
            except Exception:
                parent = None
            parents.append(parent or a)
        return parents

    def extract_coach_info(self, page, element, source_url: str) -> Optional[Contact]:
        """Snapshot the element's outerHTML and extract statically."""
        try:
            outer = element.evaluate("e => e.outerHTML")
        except Exception as e:
            log.debug("element snapshot failed on %s: %s", source_url, e)
            return None
        if not outer:
            return None
        parser = HTMLParser(outer)
        root = parser.body or parser.root
        if root is None:
            return None
        return self.extract_from_node(root, source_url)

    def extract_from_page(self, page, source_url: str) -> List[Contact]:
        contacts: List[Contact] = []
        for el in self.find_coach_elements(page):
            c = self.extract_coach_info(page, el, source_url)
            if c is not None:
                contacts.append(c)
        if not contacts:
            # Cards sharing one parent collapse above; re-read per anchor from the rendered HTML
            try:
                contacts = self.extract_from_html(page.content(), source_url)
            except Exception as e:
                log.debug("rendered html fallback failed on %s: %s", source_url, e)
        return remove_duplicate_contacts(contacts)
