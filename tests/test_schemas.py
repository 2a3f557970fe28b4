"""
Test suite for coach-contact-scraper Pydantic schemas.

Validation and serialization checks for Contact, ScrapeResult, settings
presets and the flat export row.
"""

import json

import pytest
from pydantic import ValidationError

from coachscrape.schemas import (
    BatchProgress,
    Confidence,
    Contact,
    ContactRow,
    ScrapeMode,
    ScrapeResult,
    ScrapeSettings,
    ScrapeStatus,
)


class TestContact:
    """Test cases for Contact model."""

    def test_email_is_normalized(self):
        c = Contact(email="  Jane.Doe@Acme.COM ", source="https://acme.com/staff")
        assert c.email == "jane.doe@acme.com"
        assert c.confidence == Confidence.CONFIRMED

    @pytest.mark.parametrize("bad", ["", "jane", "a@b@acme.com", "jane@acme"])
    def test_invalid_email_raises(self, bad):
        with pytest.raises(ValidationError):
            Contact(email=bad, source="https://acme.com")

    def test_blank_fields_become_none(self):
        c = Contact(email="jane@acme.com", source="https://acme.com", name="  ", title="Head\n  Coach")
        assert c.name is None
        assert c.title == "Head Coach"

    def test_alternates_are_lowercased_and_unique(self):
        c = Contact(
            email="jdoe@acme.com",
            source="https://acme.com",
            confidence=Confidence.GENERATED,
            alternate_emails=["Jane.Doe@acme.com", "jane.doe@acme.com", "doej@acme.com"],
        )
        assert c.alternate_emails == ["jane.doe@acme.com", "doej@acme.com"]

    def test_verified_flag_is_serialized(self):
        confirmed = Contact(email="jane@acme.com", source="https://acme.com")
        generated = Contact(email="jane.doe@acme.com", source="https://acme.com", confidence=Confidence.GENERATED)
        assert confirmed.model_dump()["verified"] is True
        data = json.loads(generated.model_dump_json())
        assert data["verified"] is False
        assert data["confidence"] == "Generated"


class TestScrapeResult:
    def test_result_is_frozen(self):
        r = ScrapeResult(url="https://acme.com", status=ScrapeStatus.PARTIAL, message="No contacts found")
        with pytest.raises(ValidationError):
            r.status = ScrapeStatus.SUCCESS

    def test_result_json_round_trip_fields(self):
        c = Contact(email="jane@acme.com", source="https://acme.com", name="Jane Doe")
        r = ScrapeResult(url="https://acme.com", contacts=[c], status=ScrapeStatus.SUCCESS, method="browser")
        data = json.loads(r.model_dump_json())
        assert data["status"] == "success"
        assert data["method"] == "browser"
        assert data["contacts"][0]["email"] == "jane@acme.com"
        assert data["stats"]["total_emails"] == 0
        assert "timestamp" in data


class TestScrapeSettings:
    def test_gentle_disables_link_following(self):
        s = ScrapeSettings(mode=ScrapeMode.GENTLE, max_depth=3).effective()
        assert s.follow_links is False
        assert s.max_depth == 0

    def test_aggressive_raises_depth(self):
        s = ScrapeSettings(mode=ScrapeMode.AGGRESSIVE, max_depth=1).effective()
        assert s.follow_links is True
        assert s.max_depth == 3

    def test_standard_is_unchanged(self):
        s = ScrapeSettings(max_depth=1, follow_links=False)
        assert s.effective() == s

    def test_depth_bounds(self):
        with pytest.raises(ValidationError):
            ScrapeSettings(max_depth=9)


class TestContactRow:
    def test_row_carries_confidence_column(self):
        c = Contact(
            email="jane.doe@acme.com",
            source="https://acme.com",
            name="Jane Doe",
            confidence=Confidence.GENERATED,
            alternate_emails=["jdoe@acme.com", "janedoe@acme.com"],
        )
        r = ScrapeResult(url="https://acme.com", contacts=[c], status=ScrapeStatus.SUCCESS)
        row = ContactRow.from_contact(c, r)
        values = row.as_list()
        assert len(values) == len(ContactRow.HEADERS)
        assert values[ContactRow.HEADERS.index("Confidence")] == "Generated"
        assert values[ContactRow.HEADERS.index("Alternate Emails")] == "jdoe@acme.com; janedoe@acme.com"
        assert values[ContactRow.HEADERS.index("Status")] == "success"


def test_batch_progress_defaults():
    p = BatchProgress(total=3, remaining_urls=["https://a.org"])
    assert p.done is False
    assert p.processed == 0
    assert json.loads(p.model_dump_json())["remaining_urls"] == ["https://a.org"]
