"""
Email / Pattern Extraction - emails, phones, names and titles from raw text

Pure functions over supplied text or HTML:
- Primary email regex plus secondary patterns for encoded/obfuscated forms
  (CloudFlare data-cfemail, data-email, data-enc-email, HTML entities,
  document.write concatenation, "(at)/(dot)" spelling, JSON-ish fragments)
- Blocklist of known false positives (placeholders, build artifacts,
  version strings, technical domains)
- Context-window heuristics for the name/title/phone nearest an email
"""

from __future__ import annotations

import base64
import binascii
import codecs
import html
import logging
import re
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Tuple
from urllib.parse import unquote

from selectolax.parser import HTMLParser

from ..schemas import Confidence, Contact

log = logging.getLogger(__name__)


EMAIL_RE = re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b")
EMAIL_FULL_RE = re.compile(r"^[a-z0-9._%+-]+@[a-z0-9-]+(\.[a-z0-9-]+)*\.[a-z]{2,}$")

PHONE_PATTERNS = [
    re.compile(r"\(\d{3}\)\s*\d{3}[-.\s]?\d{4}"),
    re.compile(r"\b\d{3}[-.\s]?\d{3}[-.\s]?\d{4}\b"),
]

# Secondary patterns; each yields a raw candidate in group 1
MAILTO_RE = re.compile(r"mailto:([^\"'?#>\s]+)", re.IGNORECASE)
QUOTED_EMAIL_RE = re.compile(r"[\"']([A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,})[\"']")
JSON_EMAIL_RE = re.compile(r"[\"']e-?mail(?:Address)?[\"']\s*:\s*[\"']([^\"']+)[\"']", re.IGNORECASE)
DATA_EMAIL_RE = re.compile(r"data-email\s*=\s*[\"']([^\"']+)[\"']", re.IGNORECASE)
CFEMAIL_RE = re.compile(r"data-cfemail\s*=\s*[\"']([0-9a-fA-F]+)[\"']")
CF_HASH_RE = re.compile(r"/cdn-cgi/l/email-protection#([0-9a-fA-F]+)")
ENC_EMAIL_RE = re.compile(r"data-enc-email\s*=\s*[\"']([^\"']+)[\"']", re.IGNORECASE)
DOC_WRITE_RE = re.compile(r"document\.write\s*\((.*?)\)\s*;?", re.IGNORECASE | re.DOTALL)
ENTITY_RE = re.compile(r"&#x?[0-9a-fA-F]+;")
SPELLED_RE = re.compile(
    r"([A-Za-z0-9._%+-]+)\s*[\[(]\s*at\s*[\])]\s*([A-Za-z0-9-]+(?:\s*[\[(]\s*dot\s*[\])]\s*[A-Za-z0-9-]+)+)",
    re.IGNORECASE,
)


BLOCKED_DOMAINS = {
    "example.com", "example.org", "example.net", "domain.com", "email.com",
    "yourdomain.com", "yoursite.com", "company.com", "sentry.io",
    "wixpress.com", "wix.com", "sentry-next.wixpress.com",
}

TECHNICAL_DOMAINS = {
    "googleapis.com", "googleusercontent.com", "jsdelivr.net", "fontawesome.com",
    "jquery.com", "github.io", "cloudflare.com", "w3.org", "youtube.com",
    "facebook.com", "twitter.com", "instagram.com", "schema.org", "gstatic.com",
}

ARTIFACT_MARKERS = (
    "-js@", "-bundle@", "-polyfill@", "react@", "react-dom@", "lodash@", "jquery@",
    "core-js@", "webpack", "eslint", "@sentry", "twemoji", "fontawesome", "webfont",
    "bootstrap@", "vue@", "@babel",
)

PLACEHOLDER_LOCALS = {
    "yourname", "your.name", "your-name", "your_name", "youremail", "your.email",
    "your-email", "your_email", "username", "user.name", "user-name", "user_name",
    "name", "email", "firstname.lastname", "first.last", "someone", "you",
}

JUNK_ROLE_LOCALS = {
    "noreply", "no-reply", "donotreply", "do-not-reply", "webmaster", "postmaster",
    "hostmaster", "mailer-daemon", "abuse",
}

ORG_LOCALS = {"info", "contact", "contactus", "support", "mail", "office", "admin", "hello", "general"}

ASSET_SUFFIXES = (".png", ".jpg", ".jpeg", ".gif", ".svg", ".webp", ".css", ".js", ".html", ".ico")

VERSION_DOMAIN_RE = re.compile(r"^\d+(\.\d+)+")
VERSION_LOCAL_RE = re.compile(r"^\d+\.\d+")
HEX_LOCAL_RE = re.compile(r"^[a-f0-9]{24,}$")
RETINA_RE = re.compile(r"@\d+(\.\d+)?x\b")


@dataclass(frozen=True)
class EmailFilter:
    """Blocklist of false-positive addresses with configurable carve-outs."""
    block_org_prefixes: bool = False
    allow_keywords: Tuple[str, ...] = ()
    allow_emails: Tuple[str, ...] = ()
    extra_blocked_domains: Tuple[str, ...] = ()

    @classmethod
    def from_config(cls, cfg) -> "EmailFilter":
        return cls(
            block_org_prefixes=bool(cfg.block_org_prefixes),
            allow_keywords=tuple(k.lower() for k in cfg.allow_keywords),
            allow_emails=tuple(e.strip().lower() for e in cfg.allow_emails),
            extra_blocked_domains=tuple(d.strip().lower() for d in cfg.extra_blocked_domains),
        )

    def is_valid(self, email: str) -> bool:
        if not email or not isinstance(email, str):
            return False
        e = email.strip().lower()
        if e.count("@") != 1 or "/" in e:
            return False
        if not EMAIL_FULL_RE.match(e):
            return False
        if e in self.allow_emails:
            return True
        local, domain = e.split("@", 1)
        if _domain_in(domain, BLOCKED_DOMAINS) or _domain_in(domain, TECHNICAL_DOMAINS):
            return False
        if self.extra_blocked_domains and _domain_in(domain, self.extra_blocked_domains):
            return False
        if VERSION_DOMAIN_RE.match(domain) or VERSION_LOCAL_RE.match(local):
            return False
        if any(m in e for m in ARTIFACT_MARKERS):
            return False
        if HEX_LOCAL_RE.match(local):
            return False
        if RETINA_RE.search(e) or local.endswith(ASSET_SUFFIXES) or domain.endswith(ASSET_SUFFIXES):
            return False
        if local in PLACEHOLDER_LOCALS or local in JUNK_ROLE_LOCALS:
            return False
        if self.block_org_prefixes and local in ORG_LOCALS:
            return any(k and k in e for k in self.allow_keywords)
        return True


DEFAULT_FILTER = EmailFilter()


def _domain_in(domain: str, domains: Iterable[str]) -> bool:
    return any(domain == d or domain.endswith("." + d) for d in domains)


def is_valid_email(email: str, email_filter: Optional[EmailFilter] = None) -> bool:
    return (email_filter or DEFAULT_FILTER).is_valid(email)


def clean_email(raw: str) -> str:
    """Normalize a raw candidate: URL-decoding, mailto: prefix, stray punctuation."""
    s = (raw or "").strip()
    if "%" in s:
        s = unquote(s)
    s = re.sub(r"(?i)^mailto:\s*", "", s)
    s = s.split("?", 1)[0]
    s = s.replace("\u200b", "").strip()
    s = s.strip(" \t\r\n.,;:'\"<>()[]")
    return s.lower()


def decode_cloudflare_email(encoded: str) -> Optional[str]:
    """Decode a CloudFlare-protected address: first byte is the XOR key."""
    try:
        key = int(encoded[0:2], 16)
        chars = []
        for i in range(2, len(encoded) - 1, 2):
            chars.append(chr(int(encoded[i:i + 2], 16) ^ key))
        decoded = "".join(chars)
    except (ValueError, TypeError):
        return None
    return decoded or None


def decode_encoded_email(encoded: str) -> Optional[str]:
    """Decode WordPress encoder-style values: base64 first, then ROT13."""
    try:
        decoded = base64.b64decode(encoded, validate=True).decode("utf-8")
        if "@" in decoded:
            return decoded
    except (binascii.Error, UnicodeDecodeError, ValueError):
        pass
    rotated = codecs.decode(encoded, "rot13")
    return rotated if "@" in rotated else None


def _stitch_quoted(expr: str) -> str:
    parts = re.findall(r"[\"']([^\"']*)[\"']", expr)
    return "".join(parts) if parts else expr


def _candidates(text: str) -> List[str]:
    """Raw candidates in a stable order: decoded forms first, then plain text."""
    found: List[str] = []

    for m in CFEMAIL_RE.finditer(text):
        dec = decode_cloudflare_email(m.group(1))
        if dec:
            found.append(dec)
    for m in CF_HASH_RE.finditer(text):
        dec = decode_cloudflare_email(m.group(1))
        if dec:
            found.append(dec)
    for m in ENC_EMAIL_RE.finditer(text):
        dec = decode_encoded_email(m.group(1))
        if dec:
            found.append(dec)
    for m in DATA_EMAIL_RE.finditer(text):
        val = html.unescape(m.group(1))
        hit = EMAIL_RE.search(val) or EMAIL_RE.search(_despell(val))
        if hit:
            found.append(hit.group(0))
    for m in DOC_WRITE_RE.finditer(text):
        stitched = _stitch_quoted(m.group(1))
        for hit in EMAIL_RE.finditer(html.unescape(stitched)):
            found.append(hit.group(0))
    for m in MAILTO_RE.finditer(text):
        found.append(m.group(1))
    for m in JSON_EMAIL_RE.finditer(text):
        found.append(m.group(1))
    for m in QUOTED_EMAIL_RE.finditer(text):
        found.append(m.group(1))
    if ENTITY_RE.search(text):
        for hit in EMAIL_RE.finditer(html.unescape(text)):
            found.append(hit.group(0))
    for m in SPELLED_RE.finditer(text):
        found.append(_despell(m.group(0)))
    for hit in EMAIL_RE.finditer(text):
        found.append(hit.group(0))
    return found


def _despell(s: str) -> str:
    s = re.sub(r"(?i)\s*[\[(]\s*at\s*[\])]\s*", "@", s)
    s = re.sub(r"(?i)\s*[\[(]\s*dot\s*[\])]\s*", ".", s)
    return s


def extract_emails(text: str, email_filter: Optional[EmailFilter] = None) -> List[str]:
    """Find every plausible email in text or HTML.

    Returns lowercase addresses, de-duplicated in first-seen order, so that
    repeated calls on the same input give the same list.
    """
    if not text:
        return []
    flt = email_filter or DEFAULT_FILTER
    out: List[str] = []
    seen = set()
    for raw in _candidates(text):
        e = clean_email(raw)
        m = EMAIL_RE.search(e)
        if not m:
            continue
        e = m.group(0).lower()
        if e in seen:
            continue
        seen.add(e)
        if flt.is_valid(e):
            out.append(e)
    return out


def extract_phone_numbers(text: str) -> List[str]:
    """North-American phone numbers, de-duplicated by digits."""
    out: List[str] = []
    seen = set()
    for pat in PHONE_PATTERNS:
        for m in pat.finditer(text or ""):
            digits = re.sub(r"\D", "", m.group(0))
            if digits in seen:
                continue
            seen.add(digits)
            out.append(re.sub(r"\s+", " ", m.group(0)).strip())
    return out


# -------------------------
# Context-window heuristics
# -------------------------
TITLE_VOCABULARY = [
    "Figure Skating Director", "Skating Director", "Hockey Director", "Program Director",
    "Athletic Director", "Director of Coaching", "Head Coach", "Assistant Coach",
    "Associate Coach", "Goalie Coach", "Skating Coach", "Vice President", "Coach",
    "Director", "Manager", "Coordinator", "Instructor", "Trainer", "President",
    "Owner", "Founder", "Head", "Assistant",
]
TITLE_RE = re.compile(
    r"\b(" + "|".join(re.escape(t) for t in sorted(TITLE_VOCABULARY, key=len, reverse=True)) + r")\b",
    re.IGNORECASE,
)
LABELLED_TITLE_RE = re.compile(r"\b(?:Title|Position|Role)\s*:\s*([^<\n,|]{2,60})")

NAME_PAIR_RE = re.compile(r"(?=\b([A-Z][a-z]+[ \t]+[A-Z][a-z]+)\b)")
LABELLED_NAME_RE = re.compile(
    r"(?:\b(?:[Nn]ame|[Cc]ontact|[Cc]oach)\s*:?\s*|<strong>\s*)([A-Z][a-z]+[ \t]+[A-Z][a-z]+)"
)

NAME_STOPWORDS = {
    "copyright", "all", "rights", "reserved", "contact", "email", "phone", "name",
    "title", "position", "role", "click", "read", "more", "learn", "our", "the",
    "home", "about", "staff", "team", "directory", "privacy", "policy", "terms",
    "follow", "view", "profile", "send", "message", "hockey", "skating", "figure",
    "program", "athletic", "club", "association", "league", "office", "fax",
}
NAME_STOPWORDS.update(w.lower() for t in TITLE_VOCABULARY for w in t.split())


def _locate(target: str, content: str) -> int:
    if not target or not content:
        return -1
    idx = content.find(target)
    if idx == -1:
        idx = content.lower().find(target.lower())
    return idx


def _window(target: str, content: str, window: int) -> Optional[Tuple[str, int]]:
    """Return (window text with the target blanked out, target offset in window)."""
    idx = _locate(target, content)
    if idx == -1:
        return None
    start = max(0, idx - window)
    end = min(len(content), idx + len(target) + window)
    chunk = content[start:end]
    off = idx - start
    chunk = chunk[:off] + (" " * len(target)) + chunk[off + len(target):]
    return chunk, off


def _is_plausible_name(pair: str) -> bool:
    tokens = pair.split()
    return len(tokens) == 2 and not any(t.lower() in NAME_STOPWORDS for t in tokens)


def extract_name_from_context(email: str, content: str, window: int = 100) -> Optional[str]:
    """Capitalized word pair nearest to the email occurrence."""
    w = _window(email, content, window)
    if w is None:
        return None
    chunk, off = w
    labelled = [
        (abs(m.start(1) - off), m.group(1))
        for m in LABELLED_NAME_RE.finditer(chunk)
        if _is_plausible_name(m.group(1))
    ]
    if labelled:
        return re.sub(r"\s+", " ", min(labelled)[1])
    pairs = [
        (abs(m.start(1) - off), m.group(1))
        for m in NAME_PAIR_RE.finditer(chunk)
        if _is_plausible_name(m.group(1))
    ]
    if not pairs:
        return None
    return re.sub(r"\s+", " ", min(pairs)[1])


def _clean_title(t: str) -> str:
    t = re.split(r"\s{2,}|\b(?:Phone|Email|E-mail|Tel|Cell|Fax)\b", t)[0]
    t = re.sub(r"\s+", " ", t).strip(" -:|")
    return t.title() if t.islower() else t


def extract_title_from_context(target: str, content: str, window: int = 150) -> Optional[str]:
    """Job title nearest to the name or email; labelled fields win."""
    w = _window(target, content, window)
    if w is None:
        return None
    chunk, off = w
    labelled = [(abs(m.start(1) - off), m.group(1)) for m in LABELLED_TITLE_RE.finditer(chunk)]
    if labelled:
        return _clean_title(min(labelled)[1])
    hits = [
        (abs(m.start(1) - off), -len(m.group(1)), m.group(1))
        for m in TITLE_RE.finditer(chunk)
    ]
    if not hits:
        return None
    return _clean_title(min(hits)[2])


def extract_phone_from_context(target: str, content: str, window: int = 150) -> Optional[str]:
    w = _window(target, content, window)
    if w is None:
        return None
    chunk, off = w
    hits = []
    for pat in PHONE_PATTERNS:
        for m in pat.finditer(chunk):
            hits.append((abs(m.start() - off), m.group(0)))
    if not hits:
        return None
    return re.sub(r"\s+", " ", min(hits)[1]).strip()


def visible_text(content: str) -> str:
    """Text view of HTML (scripts/styles dropped, one block per line)."""
    if not content or "<" not in content:
        return content or ""
    parser = HTMLParser(content)
    for node in parser.css("script, style, noscript"):
        node.decompose()
    root = parser.body or parser.root
    if root is None:
        return ""
    text = root.text(separator="\n")
    return re.sub(r"\n\s*\n+", "\n", text)


def contacts_from_text(
    content: str,
    source_url: str,
    *,
    include_phone_numbers: bool = True,
    email_filter: Optional[EmailFilter] = None,
    emails: Optional[Sequence[str]] = None,
) -> List[Contact]:
    """Confirmed contacts for every email in content, enriched from context."""
    found = list(emails) if emails is not None else extract_emails(content, email_filter)
    if not found:
        return []
    text = visible_text(content)
    contacts: List[Contact] = []
    for email in found:
        src = text if _locate(email, text) != -1 else content
        name = extract_name_from_context(email, src)
        title = extract_title_from_context(name, src) if name else None
        title = title or extract_title_from_context(email, src)
        phone = extract_phone_from_context(email, src) if include_phone_numbers else None
        try:
            contacts.append(Contact(
                email=email,
                name=name,
                title=title,
                phone=phone,
                source=source_url,
                confidence=Confidence.CONFIRMED,
            ))
        except ValueError:
            log.debug("dropping malformed email %r from %s", email, source_url)
    return contacts
