"""
Tabular input/output: target URL lists in, contact sheets out.

Input: .txt (one URL per line), .csv and .xlsx. For tables the URL column
is the first header mentioning url/website/link/site; without one, the
first column holding a URL or bare domain.

Output: one flat row per contact (ContactRow) as CSV or XLSX, plus the full
ScrapeResult list as JSON.
"""

from __future__ import annotations

import csv
import json
import re
from datetime import datetime as dt
from pathlib import Path
from typing import Iterable, List, Optional, Sequence

from openpyxl import Workbook, load_workbook
from openpyxl.styles import Alignment, Font, PatternFill
from openpyxl.utils import get_column_letter

from ..schemas import ContactRow, ScrapeResult


URL_HEADER_HINTS = ("url", "website", "link", "site")
DOMAIN_RE = re.compile(r"^(?:[a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?\.)+[a-z]{2,}(?:[/:?#].*)?$", re.IGNORECASE)


def normalize_input_url(value: object) -> Optional[str]:
    """http(s) URLs pass through; bare domains get https://; anything else is None."""
    s = str(value or "").strip()
    if not s or s.startswith("#"):
        return None
    if s.lower().startswith(("http://", "https://")):
        return s
    if " " not in s and "@" not in s and DOMAIN_RE.match(s):
        return f"https://{s}"
    return None


def _dedupe(urls: Iterable[str]) -> List[str]:
    seen = set()
    out: List[str] = []
    for u in urls:
        if u and u not in seen:
            seen.add(u)
            out.append(u)
    return out


def _urls_from_rows(rows: Sequence[Sequence[object]]) -> List[str]:
    if not rows:
        return []
    header = [str(c or "").strip().lower() for c in rows[0]]
    col = next((i for i, h in enumerate(header) if any(k in h for k in URL_HEADER_HINTS)), None)
    body = rows[1:]
    if col is None:
        # No URL header: first column holding a URL-looking value, header row included
        body = rows
        width = max(len(r) for r in rows)
        col = next((i for i in range(width) if any(len(r) > i and normalize_input_url(r[i]) for r in rows)), None)
        if col is None:
            return []
    values = [r[col] for r in body if len(r) > col]
    return [u for u in (normalize_input_url(v) for v in values) if u]


def read_urls(path: Path) -> List[str]:
    """Target URLs from a .txt, .csv or .xlsx file, deduplicated in file order."""
    path = Path(path)
    suffix = path.suffix.lower()
    if suffix == ".csv":
        with open(path, newline="", encoding="utf-8-sig") as f:
            rows = [row for row in csv.reader(f)]
        return _dedupe(_urls_from_rows(rows))
    if suffix in (".xlsx", ".xlsm"):
        wb = load_workbook(path, read_only=True, data_only=True)
        try:
            ws = wb.active
            rows = [list(r) for r in ws.iter_rows(values_only=True)]
        finally:
            wb.close()
        return _dedupe(_urls_from_rows(rows))
    urls = []
    for line in path.read_text(encoding="utf-8").splitlines():
        u = normalize_input_url(line)
        if u:
            urls.append(u)
    return _dedupe(urls)


def contact_rows(results: Iterable[ScrapeResult]) -> List[ContactRow]:
    rows: List[ContactRow] = []
    for result in results:
        for contact in result.contacts:
            rows.append(ContactRow.from_contact(contact, result))
    return rows


def write_contacts_csv(results: List[ScrapeResult], path: Path) -> int:
    """One row per contact; returns the row count."""
    rows = contact_rows(results)
    with open(path, "w", newline="", encoding="utf-8") as f:
        w = csv.writer(f)
        w.writerow(ContactRow.HEADERS)
        for row in rows:
            w.writerow(row.as_list())
    return len(rows)


def write_contacts_xlsx(results: List[ScrapeResult], path: Path) -> int:
    rows = contact_rows(results)
    wb = Workbook()
    ws = wb.active
    ws.title = "Contacts"
    ws.append(ContactRow.HEADERS)
    for row in rows:
        ws.append(row.as_list())

    header_font = Font(bold=True, color="FFFFFF")
    header_fill = PatternFill("solid", fgColor="003366")
    for cell in ws[1]:
        cell.font = header_font
        cell.fill = header_fill
        cell.alignment = Alignment(vertical="center", horizontal="center")
    for col_idx, column in enumerate(ws.columns, 1):
        max_length = max(len(str(cell.value or "")) for cell in column)
        ws.column_dimensions[get_column_letter(col_idx)].width = min(max_length + 4, 60)
    ws.freeze_panes = "A2"

    wb.save(path)
    return len(rows)


def write_results_json(results: List[ScrapeResult], path: Path, pretty: bool = True) -> int:
    """Full results, including status, stats and captured responses."""
    payload = [r.model_dump(mode="json") for r in results]
    with open(path, "w", encoding="utf-8") as f:
        json.dump(payload, f, indent=2 if pretty else None, ensure_ascii=False)
    return len(results)


class ContactExporter:
    """Writes scrape results into an output directory with timestamped names."""

    def __init__(self, output_dir: Path) -> None:
        self.output_dir = Path(output_dir)
        self.output_dir.mkdir(parents=True, exist_ok=True)

    def _path(self, filename: Optional[str], ext: str) -> Path:
        if filename is None:
            timestamp = dt.now().strftime("%Y%m%d_%H%M%S")
            filename = f"contacts_{timestamp}.{ext}"
        return self.output_dir / filename

    def to_csv(self, results: List[ScrapeResult], filename: Optional[str] = None) -> Path:
        path = self._path(filename, "csv")
        n = write_contacts_csv(results, path)
        print(f"💾 CSV exported: {path} ({n} contacts)")
        return path

    def to_xlsx(self, results: List[ScrapeResult], filename: Optional[str] = None) -> Path:
        path = self._path(filename, "xlsx")
        n = write_contacts_xlsx(results, path)
        print(f"💾 XLSX exported: {path} ({n} contacts)")
        return path

    def to_json(self, results: List[ScrapeResult], filename: Optional[str] = None) -> Path:
        path = self._path(filename, "json")
        n = write_results_json(results, path)
        print(f"💾 JSON exported: {path} ({n} results)")
        return path
