from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, Optional
import threading

from .schemas import ScrapeResult


class OpsLogger:
    """Append-only JSONL log of per-URL scrape outcomes.

    - One JSON object per line (UTF-8, newline-delimited)
    - Shared by batch workers behind a coarse lock
    - Best-effort: never raises to caller
    """

    def __init__(self, file_path: Path, also_stdout: bool = False) -> None:
        self.file_path = Path(file_path)
        self.also_stdout = bool(also_stdout)
        self._lock = threading.Lock()
        try:
            self.file_path.parent.mkdir(parents=True, exist_ok=True)
        except Exception:
            pass

    def emit(self, record: Dict[str, Any]) -> None:
        try:
            line = json.dumps(record, ensure_ascii=False, default=str)
        except Exception:
            try:
                line = json.dumps({"ccs_ops": 1, "_serialization_error": True, "record_str": str(record)})
            except Exception:
                return
        try:
            with self._lock:
                with self.file_path.open("a", encoding="utf-8") as f:
                    f.write(line)
                    f.write("\n")
        except Exception:
            pass
        if self.also_stdout:
            try:
                print(line)
            except Exception:
                pass

    def emit_result(self, result: ScrapeResult, duration_s: Optional[float] = None) -> None:
        """Per-URL record: status, method, counts and wall time."""
        confirmed = sum(1 for c in result.contacts if c.verified)
        self.emit({
            "ccs_ops": 1,
            "url": result.url,
            "method": result.method,
            "status": result.status.value,
            "message": result.message,
            "durations": {"total_s": round(duration_s, 4) if duration_s is not None else None},
            "counts": {
                "contacts": len(result.contacts),
                "confirmed": confirmed,
                "generated": len(result.contacts) - confirmed,
                "pages_visited": result.stats.pages_visited,
                "captured_responses": len(result.captured_responses),
            },
        })
