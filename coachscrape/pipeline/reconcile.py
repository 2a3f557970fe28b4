"""
Contact reconciliation - one record per normalized email.

Merge rules, applied left to right over the input order:
- Confirmed always replaces an earlier Generated record for the same email
  (and inherits whatever the Generated one knew that it did not)
- Generated never replaces Confirmed, but may fill its missing fields
- Otherwise missing name/title/phone are backfilled, never overwritten
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional

from ..schemas import Confidence, Contact
from .emails import EmailFilter, DEFAULT_FILTER, clean_email

log = logging.getLogger(__name__)

_FILLABLE = ("name", "title", "phone", "url")


def _key(contact: Contact) -> str:
    return (contact.email or "").strip().lower()


def _backfill(base: Contact, other: Contact) -> Contact:
    updates = {}
    for f in _FILLABLE:
        if not getattr(base, f) and getattr(other, f):
            updates[f] = getattr(other, f)
    alternates = list(base.alternate_emails)
    for e in other.alternate_emails:
        if e not in alternates and e != base.email:
            alternates.append(e)
    if alternates != base.alternate_emails:
        updates["alternate_emails"] = alternates
    return base.model_copy(update=updates) if updates else base


def remove_duplicate_contacts(contacts: Iterable[Contact]) -> List[Contact]:
    """At most one contact per email; first-seen order is kept."""
    merged: Dict[str, Contact] = {}
    for c in contacts:
        key = _key(c)
        if not key:
            continue
        prev = merged.get(key)
        if prev is None:
            merged[key] = c
        elif c.confidence == Confidence.CONFIRMED and prev.confidence == Confidence.GENERATED:
            merged[key] = _backfill(c, prev)
        else:
            merged[key] = _backfill(prev, c)
    return list(merged.values())


def reconcile_contacts(
    contacts: Iterable[Contact],
    email_filter: Optional[EmailFilter] = None,
) -> List[Contact]:
    """Clean raw addresses, drop invalid ones, then de-duplicate."""
    flt = email_filter or DEFAULT_FILTER
    cleaned: List[Contact] = []
    for c in contacts:
        email = clean_email(c.email)
        # Generated guesses are synthesized locally and skip the false-positive filter
        if c.confidence == Confidence.CONFIRMED and not flt.is_valid(email):
            log.debug("dropping filtered email %s", email)
            continue
        if email != c.email:
            try:
                c = Contact.model_validate({**c.model_dump(exclude={"verified"}), "email": email})
            except ValueError:
                continue
        cleaned.append(c)
    result = remove_duplicate_contacts(cleaned)
    removed = len(cleaned) - len(result)
    if removed > 0:
        log.info("dedupe: kept %d of %d", len(result), len(cleaned))
    return result
