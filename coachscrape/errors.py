"""
Error taxonomy for the scrape pipeline.

Strategy-level failures are caught inside the orchestrator and degrade to
"found nothing"; per-URL failures are caught by the batch runner. Callers of
`ScrapeOrchestrator.scrape` never see these raised.
"""

from __future__ import annotations


class ScrapeError(Exception):
    """Base class for pipeline errors, tagged with the URL being processed."""

    def __init__(self, message: str, *, url: str | None = None) -> None:
        super().__init__(message)
        self.url = url


class NavigationError(ScrapeError):
    """Page failed to load or timed out."""


class ExtractionError(ScrapeError):
    """A strategy threw while parsing DOM or JSON."""


class BlockedError(ScrapeError):
    """Static fetch answered 401/403; escalate to the browser instead of aborting."""

    def __init__(self, message: str, *, url: str | None = None, status_code: int = 0) -> None:
        super().__init__(message, url=url)
        self.status_code = status_code


class NoContactsFound(ScrapeError):
    """Not a failure: the page was fetched but yielded nothing (status=partial)."""


class BrowserLaunchError(ScrapeError):
    """Browser could not be started; fatal for the current URL only."""
