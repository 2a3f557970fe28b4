"""
Batch runner - bounded parallel scraping of many target URLs.

A small thread pool (default two workers) runs one ScrapeOrchestrator per
worker thread, so no browser or HTTP client is ever shared between
concurrent scrapes. One failing URL becomes an error ScrapeResult and never
aborts the rest of the batch.

Cancellation goes through a SessionRegistry: each batch gets an id and an
Event; queued URLs check it before starting and running scrapes check it at
the top of their page loop.
"""

from __future__ import annotations

import logging
import threading
import uuid
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from ..config import EngineConfig
from ..schemas import BatchProgress, ScrapeResult, ScrapeSettings, ScrapeStatus
from .orchestrator import ScrapeOrchestrator

log = logging.getLogger(__name__)


OrchestratorFactory = Callable[[], ScrapeOrchestrator]
ProgressCallback = Callable[[BatchProgress], None]


class SessionRegistry:
    """Active batches by id, each with its cancellation flag."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._events: Dict[str, threading.Event] = {}

    def open_batch(self, batch_id: Optional[str] = None) -> str:
        batch_id = batch_id or uuid.uuid4().hex
        with self._lock:
            self._events.setdefault(batch_id, threading.Event())
        return batch_id

    def event(self, batch_id: str) -> threading.Event:
        with self._lock:
            return self._events.setdefault(batch_id, threading.Event())

    def cancel(self, batch_id: str) -> bool:
        """Flag a batch; False when the id is unknown or already closed."""
        with self._lock:
            ev = self._events.get(batch_id)
        if ev is None:
            return False
        ev.set()
        return True

    def is_cancelled(self, batch_id: str) -> bool:
        with self._lock:
            ev = self._events.get(batch_id)
        return bool(ev is not None and ev.is_set())

    def close(self, batch_id: str) -> None:
        with self._lock:
            self._events.pop(batch_id, None)

    def active(self) -> List[str]:
        with self._lock:
            return list(self._events)


@dataclass
class BatchReport:
    batch_id: str
    results: List[ScrapeResult] = field(default_factory=list)
    progress: BatchProgress = field(default_factory=BatchProgress)
    cancelled: bool = False


def error_result(url: str, message: str) -> ScrapeResult:
    return ScrapeResult(url=url, status=ScrapeStatus.ERROR, message=message)


class BatchRunner:
    def __init__(
        self,
        *,
        config: Optional[EngineConfig] = None,
        orchestrator_factory: Optional[OrchestratorFactory] = None,
        workers: Optional[int] = None,
        registry: Optional[SessionRegistry] = None,
    ) -> None:
        self.config = config or EngineConfig()
        self.orchestrator_factory = orchestrator_factory or (lambda: ScrapeOrchestrator(config=self.config))
        self.workers = max(1, int(workers or self.config.batch.workers))
        self.registry = registry or SessionRegistry()
        self._local = threading.local()
        self._owned: List[ScrapeOrchestrator] = []
        self._owned_lock = threading.Lock()

    def _orchestrator(self) -> ScrapeOrchestrator:
        orch = getattr(self._local, "orchestrator", None)
        if orch is None:
            orch = self.orchestrator_factory()
            self._local.orchestrator = orch
            with self._owned_lock:
                self._owned.append(orch)
        return orch

    def _close_orchestrators(self) -> None:
        with self._owned_lock:
            owned, self._owned = self._owned, []
        for orch in owned:
            try:
                orch.close()
            except Exception as e:
                log.debug("orchestrator close failed: %s", e)
        self._local = threading.local()

    def _scrape_one(self, url: str, settings: Optional[ScrapeSettings], cancel: threading.Event) -> ScrapeResult:
        if cancel.is_set():
            return error_result(url, "Cancelled")
        try:
            return self._orchestrator().scrape(url, settings, cancel=cancel)
        except Exception as e:
            log.error("scrape of %s raised: %s", url, e)
            return error_result(url, str(e) or type(e).__name__)

    def run(
        self,
        urls: List[str],
        settings: Optional[ScrapeSettings] = None,
        *,
        on_progress: Optional[ProgressCallback] = None,
        batch_id: Optional[str] = None,
    ) -> BatchReport:
        """Scrape every URL; results come back in input order."""
        batch_id = self.registry.open_batch(batch_id)
        cancel = self.registry.event(batch_id)
        total = len(urls)
        results: Dict[int, ScrapeResult] = {}
        progress = BatchProgress(total=total, remaining_urls=list(urls))
        log.info("batch %s: %d urls, %d workers", batch_id, total, self.workers)

        def _emit(snapshot: BatchProgress) -> None:
            if on_progress is None:
                return
            try:
                on_progress(snapshot)
            except Exception as e:
                log.warning("progress callback failed: %s", e)

        _emit(progress)
        try:
            with ThreadPoolExecutor(max_workers=self.workers) as executor:
                futures = {}
                for idx, url in enumerate(urls):
                    future = executor.submit(self._scrape_one, url, settings, cancel)
                    futures[future] = idx

                for future in as_completed(futures):
                    idx = futures[future]
                    url = urls[idx]
                    try:
                        result = future.result()
                    except Exception as e:
                        log.error("URL %s failed: %s", url, e)
                        result = error_result(url, str(e))
                    results[idx] = result
                    progress = BatchProgress(
                        processed=len(results),
                        total=total,
                        results=sum(len(r.contacts) for r in results.values()),
                        errors=sum(1 for r in results.values() if r.status == ScrapeStatus.ERROR),
                        remaining_urls=[u for i, u in enumerate(urls) if i not in results],
                    )
                    _emit(progress)
        finally:
            self._close_orchestrators()
            was_cancelled = cancel.is_set()
            self.registry.close(batch_id)

        progress = progress.model_copy(update={"done": True, "remaining_urls": []})
        _emit(progress)
        ordered = [results[i] for i in range(total)]
        log.info("batch %s finished: %d results, %d errors", batch_id, progress.results, progress.errors)
        return BatchReport(batch_id=batch_id, results=ordered, progress=progress, cancelled=was_cancelled)
