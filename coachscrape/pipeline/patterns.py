from __future__ import annotations

import re
import unicodedata
from typing import List, Optional
from urllib.parse import urlparse

from ..schemas import Confidence, Contact

# ---------------------------------------------------------------------------
# Candidate templates in priority order; the first one is the primary guess.
# Placeholders: {first}, {last}, {f}
# ---------------------------------------------------------------------------
PATTERNS: tuple[str, ...] = (
    "{first}.{last}",
    "{first}{last}",
    "{f}{last}",
    "{last}{f}",
    "{last}.{first}",
    "coach.{last}",
    "coach{last}",
)

HONORIFICS = {"mr", "mrs", "ms", "miss", "dr", "coach", "prof", "rev"}
SUFFIXES = {"jr", "sr", "ii", "iii", "iv", "phd", "md", "cpa"}


def _to_ascii_lower(s: str) -> str:
    """ASCII-fold and lower-case."""
    nfkd = unicodedata.normalize("NFKD", s)
    return nfkd.encode("ascii", "ignore").decode("ascii").lower()


def name_tokens(full_name: str) -> List[str]:
    """Normalized name tokens with honorifics and suffixes removed."""
    raw = re.split(r"[\s,]+", (full_name or "").strip())
    tokens = []
    for tok in raw:
        t = re.sub(r"[^a-z0-9]", "", _to_ascii_lower(tok))
        if not t:
            continue
        tokens.append(t)
    while tokens and tokens[0] in HONORIFICS:
        tokens.pop(0)
    while tokens and tokens[-1] in SUFFIXES:
        tokens.pop()
    return tokens


def generate_possible_emails(full_name: str, domain: str) -> List[str]:
    """Plausible addresses for a person at a domain, most likely first.

    Names with fewer than two tokens produce nothing. Nothing is verified.
    """
    domain = (domain or "").strip().lower().lstrip("@")
    if domain.startswith("www."):
        domain = domain[4:]
    tokens = name_tokens(full_name)
    if len(tokens) < 2 or not domain:
        return []
    first, last = tokens[0], tokens[-1]
    out: List[str] = []
    for tpl in PATTERNS:
        local = tpl.format(first=first, last=last, f=first[:1])
        addr = f"{local}@{domain}"
        if addr not in out:
            out.append(addr)
    return out


def domain_from_url(url: str) -> str:
    try:
        host = (urlparse(url).hostname or "").lower()
    except ValueError:
        return ""
    return host[4:] if host.startswith("www.") else host


def generated_contact(
    name: str,
    domain: str,
    source: str,
    *,
    title: Optional[str] = None,
    profile_url: Optional[str] = None,
) -> Optional[Contact]:
    """Generated contact: first candidate as email, the rest as alternates."""
    candidates = generate_possible_emails(name, domain)
    if not candidates:
        return None
    return Contact(
        email=candidates[0],
        name=name,
        title=title,
        source=source,
        url=profile_url,
        confidence=Confidence.GENERATED,
        alternate_emails=candidates[1:],
    )
