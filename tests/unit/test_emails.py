from __future__ import annotations

import base64

import pytest

from coachscrape.pipeline.emails import (
    EmailFilter,
    clean_email,
    contacts_from_text,
    decode_cloudflare_email,
    extract_emails,
    extract_name_from_context,
    extract_phone_numbers,
    extract_title_from_context,
    is_valid_email,
)
from coachscrape.schemas import Confidence


def _cf_encode(email: str, key: int = 0x42) -> str:
    return f"{key:02x}" + "".join(f"{ord(ch) ^ key:02x}" for ch in email)


def test_extract_emails_is_idempotent_and_ordered():
    text = "Contact jane@acme.com or bob@rinkclub.org. Again: JANE@acme.com"
    first = extract_emails(text)
    assert first == ["jane@acme.com", "bob@rinkclub.org"]
    assert extract_emails(text) == first


@pytest.mark.parametrize("email", [
    "john@example.com",
    "someone@domain.com",
    "a@b@acme.com",
    "noreply@acme.com",
    "logo@2x.png",
    "name@acme.com",
    "0123456789abcdef0123456789abcdef@sentry.io",
])
def test_is_valid_email_rejects_false_positives(email):
    assert is_valid_email(email) is False


def test_is_valid_email_accepts_real_addresses():
    assert is_valid_email("coach.smith@rinkclub.org") is True
    assert is_valid_email("info@acme.com") is True  # org inboxes kept by default


def test_org_prefixes_can_be_blocked_with_keyword_carve_out():
    flt = EmailFilter(block_org_prefixes=True, allow_keywords=("hockey",))
    assert flt.is_valid("info@acme.com") is False
    assert flt.is_valid("info@hockeyclub.org") is True
    assert flt.is_valid("jane@acme.com") is True


def test_allow_list_overrides_blocklist():
    flt = EmailFilter(allow_emails=("office@example.com",))
    assert flt.is_valid("office@example.com") is True


def test_cloudflare_decode():
    encoded = _cf_encode("jane@acme.com")
    assert decode_cloudflare_email(encoded) == "jane@acme.com"
    html = f'<a href="/cdn-cgi/l/email-protection" class="__cf_email__" data-cfemail="{encoded}">[email&#160;protected]</a>'
    assert extract_emails(html) == ["jane@acme.com"]


def test_cloudflare_decode_garbage_returns_none():
    assert decode_cloudflare_email("zz") is None


def test_obfuscated_forms():
    assert extract_emails("write to jane (at) acme (dot) com") == ["jane@acme.com"]
    assert extract_emails("<script>document.write('jane' + '@' + 'acme.com');</script>") == ["jane@acme.com"]
    enc = base64.b64encode(b"coach@rinkclub.org").decode("ascii")
    assert extract_emails(f'<span data-enc-email="{enc}"></span>') == ["coach@rinkclub.org"]
    assert extract_emails("&#106;&#97;&#110;&#101;&#64;acme.com") == ["jane@acme.com"]


def test_clean_email():
    assert clean_email("MAILTO:Jane%40Acme.com?subject=Hi") == "jane@acme.com"
    assert clean_email(" <jane@acme.com>, ") == "jane@acme.com"


def test_phone_numbers_dedupe_by_digits():
    assert extract_phone_numbers("Call (555) 123-4567 or 555.123.4567") == ["(555) 123-4567"]


def test_name_and_title_from_context():
    content = "Questions? Reach Jane Doe at jane@acme.com"
    assert extract_name_from_context("jane@acme.com", content) == "Jane Doe"
    assert extract_title_from_context("Jane Doe", "Jane Doe, Head Coach of the U12 team") == "Head Coach"


def test_labelled_title_wins():
    content = "Jane Doe\nPosition: Skating Director\njane@acme.com"
    assert extract_title_from_context("jane@acme.com", content) == "Skating Director"


def test_contacts_from_text_enriches_from_card():
    html = (
        "<div><h3>Jane Doe</h3><p>Head Coach</p>"
        "<p>jane@acme.com</p><p>(555) 123-4567</p></div>"
    )
    contacts = contacts_from_text(html, "https://acme.com/staff")
    assert len(contacts) == 1
    c = contacts[0]
    assert c.email == "jane@acme.com"
    assert c.name == "Jane Doe"
    assert c.title == "Head Coach"
    assert c.phone == "(555) 123-4567"
    assert c.confidence == Confidence.CONFIRMED
    assert c.source == "https://acme.com/staff"


def test_contacts_from_text_without_phone():
    html = "<p>Jane Doe - jane@acme.com - (555) 123-4567</p>"
    contacts = contacts_from_text(html, "https://acme.com", include_phone_numbers=False)
    assert contacts[0].phone is None


def test_contacts_from_text_empty():
    assert contacts_from_text("<p>No email here</p>", "https://acme.com") == []
