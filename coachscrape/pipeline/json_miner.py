"""
JSON Data Miner - schema-independent walk over API payloads

Recurses through arbitrary JSON (dict / list / scalar) with a hard depth
cutoff, routing values into emails / phone numbers / names / urls by key
name and by value shape. Used on intercepted network responses and on JSON
embedded in pages (ld+json, __NEXT_DATA__).
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Iterable, List, Optional

from selectolax.parser import HTMLParser

from ..schemas import CapturedResponse, Confidence, Contact
from .emails import (
    EmailFilter,
    DEFAULT_FILTER,
    extract_emails,
    extract_name_from_context,
    extract_phone_from_context,
    extract_title_from_context,
)

log = logging.getLogger(__name__)


EMAIL_SHAPE_RE = re.compile(r"^[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}$")
URL_SHAPE_RE = re.compile(r"^(https?://)?([a-zA-Z0-9-]+\.)+[a-zA-Z]{2,}(/\S*)?$")
PHONE_CHARS_RE = re.compile(r"^[\d\s()+.\-]+$")

EMAIL_KEYS = ("email",)
NAME_KEYS = ("name", "title", "organization", "company")
PHONE_KEYS = ("phone", "tel", "mobile", "contact")
URL_KEYS = ("website", "url", "site", "web", "link")
ADDRESS_KEYS = ("address", "street", "city", "state", "zip", "postal")


@dataclass
class ExtractedData:
    """Transient aggregate of everything mined from one JSON value."""
    emails: List[str] = field(default_factory=list)
    phone_numbers: List[str] = field(default_factory=list)
    names: List[str] = field(default_factory=list)
    urls: List[str] = field(default_factory=list)
    context_text: str = ""

    def is_empty(self) -> bool:
        return not (self.emails or self.phone_numbers or self.names or self.urls or self.context_text)

    def merge(self, other: "ExtractedData") -> None:
        self.emails.extend(other.emails)
        self.phone_numbers.extend(other.phone_numbers)
        self.names.extend(other.names)
        self.urls.extend(other.urls)
        self.context_text += other.context_text

    def dedupe(self) -> "ExtractedData":
        self.emails = _unique(self.emails)
        self.phone_numbers = _unique(self.phone_numbers)
        self.names = _unique(self.names)
        self.urls = _unique(self.urls)
        return self


def _unique(values: Iterable[str]) -> List[str]:
    out: List[str] = []
    seen = set()
    for v in values:
        if v not in seen:
            seen.add(v)
            out.append(v)
    return out


def _is_phone_shape(s: str) -> bool:
    if not PHONE_CHARS_RE.match(s):
        return False
    digits = re.sub(r"\D", "", s)
    return 7 <= len(digits) <= 15


def _scalar_text(value: Any) -> Optional[str]:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, str):
        s = value.strip()
        return s or None
    return None


def _classify_leaf(s: str, data: ExtractedData) -> None:
    # Emails may sit inside free text (bio, description), the other shapes may not
    data.emails.extend(extract_emails(s))
    if URL_SHAPE_RE.match(s):
        data.urls.append(s)
    if _is_phone_shape(s):
        data.phone_numbers.append(s)


def _route_key(key: str, value: Any, data: ExtractedData) -> None:
    text = _scalar_text(value)
    if text is None:
        return
    k = key.lower()
    if any(t in k for t in EMAIL_KEYS):
        if EMAIL_SHAPE_RE.match(text):
            data.emails.append(text.lower())
        data.context_text += f"Email: {text}\n"
    elif any(t in k for t in NAME_KEYS):
        data.names.append(text)
        data.context_text += f"Name/Organization: {text}\n"
    elif any(t in k for t in PHONE_KEYS):
        if _is_phone_shape(text):
            data.phone_numbers.append(text)
        elif EMAIL_SHAPE_RE.match(text):
            data.emails.append(text.lower())
        data.context_text += f"Phone: {text}\n"
    elif any(t in k for t in URL_KEYS):
        data.urls.append(text)
        data.context_text += f"Website: {text}\n"
    elif any(t in k for t in ADDRESS_KEYS):
        data.context_text += f"Address ({key}): {text}\n"


def extract_data_from_json(value: Any, depth: int = 0, max_depth: int = 5) -> ExtractedData:
    """Walk a decoded JSON value and collect contact-shaped data.

    Beyond `max_depth` the walk returns an empty result; true cycles are not
    detected, only bounded.
    """
    data = ExtractedData()
    if depth > max_depth:
        return data

    if isinstance(value, dict):
        for key, child in value.items():
            _route_key(str(key), child, data)
            if isinstance(child, (dict, list)):
                data.merge(extract_data_from_json(child, depth + 1, max_depth))
            elif isinstance(child, str):
                _classify_leaf(child.strip(), data)
    elif isinstance(value, list):
        for child in value:
            data.merge(extract_data_from_json(child, depth + 1, max_depth))
    elif isinstance(value, str):
        _classify_leaf(value.strip(), data)
    # numbers, booleans and null carry nothing on their own

    return data.dedupe()


def parse_json_body(body: str) -> Optional[Any]:
    """Decode a response body; tolerates JSONP wrappers and XSSI prefixes."""
    if not body:
        return None
    s = body.strip()
    if s.startswith(")]}'"):
        s = s.split("\n", 1)[-1]
    try:
        return json.loads(s)
    except ValueError:
        pass
    m = re.match(r"^[\w$.]+\s*\((.*)\)\s*;?\s*$", s, re.DOTALL)
    if m:
        try:
            return json.loads(m.group(1))
        except ValueError:
            return None
    return None


def embedded_json_blobs(html_text: str) -> List[Any]:
    """JSON found in <script type=application/ld+json> and __NEXT_DATA__ tags."""
    blobs: List[Any] = []
    if not html_text or "<script" not in html_text.lower():
        return blobs
    parser = HTMLParser(html_text)
    for node in parser.css('script[type="application/ld+json"], script#__NEXT_DATA__, script[type="application/json"]'):
        parsed = parse_json_body(node.text() or "")
        if parsed is not None:
            blobs.append(parsed)
    return blobs


def contacts_from_extracted(
    data: ExtractedData,
    source_url: str,
    *,
    email_filter: Optional[EmailFilter] = None,
) -> List[Contact]:
    """Turn mined emails into Confirmed contacts, naming them from context_text."""
    flt = email_filter or DEFAULT_FILTER
    contacts: List[Contact] = []
    for email in data.emails:
        if not flt.is_valid(email):
            continue
        ctx = data.context_text
        name = extract_name_from_context(email, ctx, window=200)
        if name is None and len(data.names) == 1:
            name = data.names[0]
        title = extract_title_from_context(email, ctx, window=200)
        phone = extract_phone_from_context(email, ctx, window=200)
        try:
            contacts.append(Contact(
                email=email, name=name, title=title, phone=phone,
                source=source_url, confidence=Confidence.CONFIRMED,
            ))
        except ValueError:
            continue
    return contacts


def mine_captured_responses(
    responses: Iterable[CapturedResponse],
    source_url: str,
    *,
    max_depth: int = 5,
    email_filter: Optional[EmailFilter] = None,
) -> List[Contact]:
    """Contacts from intercepted API bodies; unparseable bodies are skipped."""
    contacts: List[Contact] = []
    for resp in responses:
        payloads: List[Any] = []
        parsed = parse_json_body(resp.body)
        if parsed is not None:
            payloads.append(parsed)
        elif "html" in (resp.content_type or ""):
            payloads.extend(embedded_json_blobs(resp.body))
        for payload in payloads:
            try:
                contacts.extend(_mine_payload(payload, source_url, max_depth, email_filter))
            except Exception as e:
                log.debug("json mining failed for %s: %s", resp.url, e)
    return contacts


def _mine_payload(payload: Any, source_url: str, max_depth: int, email_filter: Optional[EmailFilter]) -> List[Contact]:
    # Mine list items one by one so each record keeps its own name context
    if isinstance(payload, list):
        out: List[Contact] = []
        for item in payload:
            out.extend(contacts_from_extracted(extract_data_from_json(item, 0, max_depth), source_url, email_filter=email_filter))
        return out
    if isinstance(payload, dict):
        for v in payload.values():
            if isinstance(v, list) and len(v) > 1 and all(isinstance(x, dict) for x in v):
                return _mine_payload(v, source_url, max_depth, email_filter) + contacts_from_extracted(
                    extract_data_from_json({k: x for k, x in payload.items() if x is not v}, 0, max_depth),
                    source_url, email_filter=email_filter,
                )
    return contacts_from_extracted(extract_data_from_json(payload, 0, max_depth), source_url, email_filter=email_filter)
