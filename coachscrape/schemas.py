"""
Coach Contact Scraper - Pydantic Data Schemas

Core data models for contacts, per-URL scrape results and batch progress.
Generated (pattern-synthesized) emails are kept apart from Confirmed ones
through the `confidence` enum and the serialized `verified` flag.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import ClassVar, List, Optional
import re

from pydantic import BaseModel, Field, computed_field, field_validator


class Confidence(str, Enum):
    """How an email address was obtained."""
    CONFIRMED = "Confirmed"    # Observed directly in page content, DOM or API response
    GENERATED = "Generated"    # Synthesized from name + domain, unverified


class ScrapeStatus(str, Enum):
    SUCCESS = "success"
    PARTIAL = "partial"
    ERROR = "error"


class ScrapeMode(str, Enum):
    STANDARD = "standard"
    AGGRESSIVE = "aggressive"
    GENTLE = "gentle"


class BrowserType(str, Enum):
    CHROMIUM = "chromium"
    FIREFOX = "firefox"


class Contact(BaseModel):
    """
    Single extracted identity record.

    `email` is the unique key within a result; it is normalized to lowercase
    on construction.
    """
    email: str = Field(
        ...,
        description="Email address, normalized lowercase"
    )

    name: Optional[str] = Field(
        default=None,
        description="Person or organization name"
    )

    title: Optional[str] = Field(
        default=None,
        description="Job title or role"
    )

    phone: Optional[str] = Field(
        default=None,
        description="Phone number as found on the page"
    )

    source: str = Field(
        ...,
        description="Originating URL"
    )

    url: Optional[str] = Field(
        default=None,
        description="Profile page URL where the person was listed"
    )

    confidence: Confidence = Field(
        default=Confidence.CONFIRMED,
        description="Confirmed (observed) or Generated (synthesized guess)"
    )

    alternate_emails: List[str] = Field(
        default_factory=list,
        description="Other synthesized candidates for the same person, in priority order"
    )

    @field_validator('email')
    @classmethod
    def normalize_email(cls, v):
        """Lowercase/strip and require exactly one '@'."""
        v = (v or '').strip().lower()
        if v.count('@') != 1 or not re.match(r'^[^@\s]+@[^@\s]+\.[^@\s]+$', v):
            raise ValueError('Invalid email format')
        return v

    @field_validator('name', 'title', 'phone')
    @classmethod
    def blank_to_none(cls, v):
        if v is None:
            return None
        v = re.sub(r'\s+', ' ', str(v)).strip()
        return v or None

    @field_validator('alternate_emails')
    @classmethod
    def normalize_alternates(cls, v):
        out: List[str] = []
        for e in v or []:
            e = (e or '').strip().lower()
            if e and e not in out:
                out.append(e)
        return out

    @computed_field  # type: ignore[misc]
    @property
    def verified(self) -> bool:
        """True only for directly observed addresses."""
        return self.confidence == Confidence.CONFIRMED


class ScrapeStats(BaseModel):
    total_emails: int = 0
    total_with_names: int = 0
    pages_visited: int = 0
    generated_emails: int = 0
    requests_seen: int = 0


class CapturedResponse(BaseModel):
    """Network response intercepted during page navigation."""
    url: str
    body: str
    content_type: str = ""
    status: int = 0


class ScrapeResult(BaseModel):
    """
    Outcome of scraping one target URL.

    Always carries a status; the orchestrator never raises to its caller,
    so the worst case is `status=error` with a message.
    """
    url: str = Field(..., description="Target URL as submitted")
    contacts: List[Contact] = Field(default_factory=list)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    status: ScrapeStatus = Field(..., description="success / partial / error")
    message: Optional[str] = None
    stats: ScrapeStats = Field(default_factory=ScrapeStats)
    captured_responses: List[CapturedResponse] = Field(default_factory=list)
    method: str = Field(default="static", description="static or browser")

    model_config = {"frozen": True}


class ScrapeSettings(BaseModel):
    """Per-job settings (what a submitted job carries besides its URL)."""
    mode: ScrapeMode = ScrapeMode.STANDARD
    max_depth: int = Field(default=2, ge=0, le=5)
    follow_links: bool = True
    include_phone_numbers: bool = True
    use_headless: bool = True
    browser_type: BrowserType = BrowserType.CHROMIUM
    timeout_ms: int = Field(default=30000, ge=1000)

    def effective(self) -> "ScrapeSettings":
        """Apply mode presets on top of explicit values."""
        if self.mode == ScrapeMode.GENTLE:
            return self.model_copy(update={"follow_links": False, "max_depth": 0})
        if self.mode == ScrapeMode.AGGRESSIVE:
            return self.model_copy(update={"follow_links": True, "max_depth": max(self.max_depth, 3)})
        return self


class BatchProgress(BaseModel):
    """Streaming progress snapshot for a long-running batch."""
    done: bool = False
    processed: int = 0
    total: int = 0
    results: int = 0
    errors: int = 0
    remaining_urls: List[str] = Field(default_factory=list)


class ContactRow(BaseModel):
    """
    Flat row for CSV/XLSX exports.

    Confidence is its own column so guesses are never mistaken for
    verified addresses.
    """
    source_website: str
    email: str
    name: str = ""
    title: str = ""
    phone: str = ""
    confidence: str = Confidence.CONFIRMED.value
    alternate_emails: str = ""
    status: str = ""
    extraction_date: str = ""

    HEADERS: ClassVar[List[str]] = [
        "Source Website", "Email", "Name", "Title/Position", "Phone",
        "Confidence", "Alternate Emails", "Status", "Extraction Date",
    ]

    @classmethod
    def from_contact(cls, contact: Contact, result: ScrapeResult) -> 'ContactRow':
        """Create export row from a contact and the result it belongs to."""
        return cls(
            source_website=result.url,
            email=contact.email,
            name=contact.name or "",
            title=contact.title or "",
            phone=contact.phone or "",
            confidence=contact.confidence.value,
            alternate_emails="; ".join(contact.alternate_emails),
            status=result.status.value,
            extraction_date=result.timestamp.strftime("%Y-%m-%d %H:%M:%S"),
        )

    def as_list(self) -> List[str]:
        return [
            self.source_website, self.email, self.name, self.title, self.phone,
            self.confidence, self.alternate_emails, self.status, self.extraction_date,
        ]
