"""
Same-site link discovery for coach/staff/contact pages.

Given a page's HTML, extract in-site links whose href or anchor text
suggests a coaching directory, staff listing or contact section, drop
resource-like URLs (assets, trackers, APIs) and order the rest so the most
promising pages are visited first.
"""

from __future__ import annotations

from typing import Iterable, List, Set
from urllib.parse import urlparse, urljoin, urlunparse

from selectolax.parser import HTMLParser


KEYWORDS = [
    "contact", "staff", "about", "team", "coach", "coaches", "directory",
    "faculty", "people", "instructors", "programs",
]

RESOURCE_EXTENSIONS = (
    ".jpg", ".jpeg", ".png", ".gif", ".svg", ".webp", ".css", ".js",
    ".woff", ".woff2", ".ttf", ".eot", ".pdf", ".doc", ".docx", ".xls",
    ".xlsx", ".zip", ".mp4", ".webm", ".mp3", ".wav",
)

RESOURCE_PATTERNS = (
    "/wp-content/uploads/", "/images/", "/assets/", "/static/", "/media/",
    "/dist/", "/build/", "/css/", "/js/", "/fonts/", "/api/", "/wp-json/",
    "cdn.", "analytics.", "tracking.", "pixel.", "adroll", "doubleclick",
    "facebook.com", "google-analytics", "googlesyndication", "googletagmanager",
    "clarity.ms", "hotjar.com", "snap.licdn.com", "connect.facebook.net",
    "script.js", "styles.css",
)

# (path fragment, score); summed, so /about-us also earns /about's points
PAGE_SCORES = (
    ("/contact", 10), ("/coaches", 9), ("/staff", 8), ("/directory", 8),
    ("/team", 7), ("/people", 7), ("/faculty", 6), ("/about-us", 5), ("/about", 4),
    ("/news", -3), ("/blog", -3), ("/products", -5), ("/shop", -5),
    ("/cart", -8), ("/login", -8), ("/register", -6), ("/terms", -7), ("/privacy", -7),
)


def _host(u: str) -> str:
    host = (urlparse(u).netloc or "").lower()
    return host[4:] if host.startswith("www.") else host


def same_site(base: str, href: str) -> bool:
    try:
        if not urlparse(href).netloc:
            return True
        return _host(href) == _host(base)
    except Exception:
        return False


def is_resource_url(url: str) -> bool:
    """Images, documents, bundles, APIs and trackers are never crawled."""
    low = (url or "").lower()
    if low.endswith(RESOURCE_EXTENSIONS):
        return True
    return any(p in low for p in RESOURCE_PATTERNS)


def page_score(url: str) -> int:
    low = (url or "").lower()
    return sum(score for frag, score in PAGE_SCORES if frag in low)


def prioritize_contact_pages(urls: Iterable[str]) -> List[str]:
    """Highest score first; ties keep discovery order."""
    return sorted(urls, key=page_score, reverse=True)


def _is_candidate_link(text: str, href: str) -> bool:
    t = (text or "").lower()
    h = (href or "").lower()
    return any(k in t or k in h for k in KEYWORDS)


def normalize_url(u: str) -> str:
    try:
        p = urlparse(u)
        netloc = (p.netloc or '').lower()
        path = p.path or ''
        if path.endswith('/') and path != '/':
            path = path.rstrip('/')
        p2 = p._replace(netloc=netloc, path=path, fragment='')
        return urlunparse(p2)
    except Exception:
        return u


def discover_links(base_url: str, html: str, max_links: int = 20) -> List[str]:
    """Candidate links on one page, resource URLs removed, best first."""
    if not html:
        return []
    parser = HTMLParser(html)
    out: List[str] = []
    seen: Set[str] = set()
    for a in parser.css("a"):
        href = a.attrs.get("href") if a.attrs else None
        if not href:
            continue
        low = href.strip().lower()
        if low.startswith(("mailto:", "tel:", "javascript:", "#")):
            continue
        text = (a.text() or "").strip()
        if not _is_candidate_link(text, href):
            continue
        abs_url = urljoin(base_url, href.strip())
        if not abs_url.startswith(("http://", "https://")):
            continue
        if not same_site(base_url, abs_url) or is_resource_url(abs_url):
            continue
        nu = normalize_url(abs_url)
        if nu not in seen:
            seen.add(nu)
            out.append(nu)
    return prioritize_contact_pages(out)[:max_links]
