"""
Coach Contact Scraper - CLI Runner

Usage:
  python -m ccs.run \
    --input urls.csv \
    --config config/example.yaml \
    --out ./out

Dry run (validate only):
  python -m ccs.run --input urls.csv --config config/example.yaml --out ./out --dry-run

Exit codes:
  0 - success
  1 - config error (file missing or invalid YAML)
  2 - input error (input file missing or unreadable)
  3 - processing error (runtime failures)
"""
from __future__ import annotations

import argparse
import logging
import platform
import sys
import time
from pathlib import Path
from typing import List

import psutil

from coachscrape.config import ConfigError, EngineConfig, load_config
from coachscrape.ops_logger import OpsLogger
from coachscrape.pipeline.batch import BatchReport, BatchRunner
from coachscrape.pipeline.orchestrator import ScrapeOrchestrator
from coachscrape.pipeline.tabular import ContactExporter, read_urls
from coachscrape.schemas import BatchProgress, ScrapeMode, ScrapeResult, ScrapeStatus


def validate_input(input_path: Path) -> List[str]:
    if not input_path.exists() or not input_path.is_file():
        print(f"Input error: file not found: {input_path}", file=sys.stderr)
        sys.exit(2)
    try:
        return read_urls(input_path)
    except Exception as e:
        print(f"Input error: cannot read {input_path}: {e}", file=sys.stderr)
        sys.exit(2)


def validate_config(config_path: Path) -> EngineConfig:
    try:
        return load_config(config_path)
    except ConfigError as e:
        print(f"Config error: {e}", file=sys.stderr)
        sys.exit(1)


def ensure_out_dir(out_dir: Path) -> None:
    try:
        out_dir.mkdir(parents=True, exist_ok=True)
        # sanity check: can we write here?
        test_file = out_dir / ".write_test"
        test_file.write_text("ok", encoding="utf-8")
        test_file.unlink(missing_ok=True)
    except Exception as e:
        print(f"Output error: cannot write to {out_dir}: {e}", file=sys.stderr)
        sys.exit(3)


def apply_overrides(cfg: EngineConfig, args: argparse.Namespace) -> EngineConfig:
    """Command-line flags win over the YAML file."""
    scrape_updates = {}
    if args.max_depth is not None:
        scrape_updates["max_depth"] = args.max_depth
    if args.mode is not None:
        scrape_updates["mode"] = ScrapeMode(args.mode)
    if args.no_headless:
        scrape_updates["use_headless"] = False
    updates = {}
    if scrape_updates:
        updates["scrape"] = cfg.scrape.model_copy(update=scrape_updates)
    if args.workers is not None:
        updates["batch"] = cfg.batch.model_copy(update={"workers": max(1, args.workers)})
    return cfg.model_copy(update=updates) if updates else cfg


def print_result(result: ScrapeResult) -> None:
    print(f"➡️  Processed: {result.url}")
    if result.status == ScrapeStatus.ERROR:
        print(f"  ⚠️  Failed: {result.message or 'unknown error'}")
    elif result.contacts:
        generated = result.stats.generated_emails
        print(f"  ✅ Extracted {len(result.contacts)} contacts via {result.method}"
              + (f" ({generated} generated)" if generated else ""))
    else:
        print(f"  ℹ️  No contacts found ({result.method})")


def process_resources() -> dict:
    """CPU percent and resident memory of this process; None values when psutil cannot read them."""
    try:
        proc = psutil.Process()
        with proc.oneshot():
            return {
                "cpu_pct": round(proc.cpu_percent(interval=None), 1),
                "rss_mb": round(proc.memory_info().rss / (1024 * 1024), 1),
            }
    except psutil.Error:
        return {"cpu_pct": None, "rss_mb": None}


def summary_record(report: BatchReport, wall_s: float) -> dict:
    """Final ops record for a batch."""
    return {
        "ccs_ops": 1,
        "summary": True,
        "batch_id": report.batch_id,
        "cancelled": report.cancelled,
        "processed_urls": len(report.results),
        "errors": sum(1 for r in report.results if r.status == ScrapeStatus.ERROR),
        "total_contacts": sum(len(r.contacts) for r in report.results),
        "generated_contacts": sum(r.stats.generated_emails for r in report.results),
        "durations": {"wall_s": round(max(0.0, wall_s), 2)},
        "resources": process_resources(),
        "python": platform.python_version(),
        "host": {"platform": platform.system(), "release": platform.release(), "machine": platform.machine()},
    }


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="ccs.run", description="Coach contact scraper batch runner")
    parser.add_argument("--input", "-i", required=True, help="URL list (.txt one per line, .csv or .xlsx)")
    parser.add_argument("--config", "-c", required=True, help="Path to YAML config file")
    parser.add_argument("--out", "-o", required=True, help="Output directory")
    parser.add_argument("--dry-run", action="store_true", help="Validate inputs/config and exit")
    parser.add_argument("--no-headless", action="store_true", help="Disable browser escalation (static-only)")
    parser.add_argument("--max-depth", type=int, default=None, help="Link-following depth (overrides config)")
    parser.add_argument("--mode", choices=[m.value for m in ScrapeMode], default=None, help="Scrape mode preset")
    parser.add_argument("--workers", type=int, default=None, help="Parallel scrapes (default from config, 2)")
    parser.add_argument("--progress-json", action="store_true", help="Print batch progress snapshots as JSON lines")
    parser.add_argument("--format", choices=["csv", "xlsx", "both"], default="csv", help="Contacts export format")
    parser.add_argument("--ops-log", default=None, help="Path to ops JSONL log file (default: <out>/ops.log)")
    parser.add_argument("--ops-stdout", action="store_true", help="Also mirror ops JSON to stdout")
    parser.add_argument("--log-level", default=None, help="Logging level (overrides config)")
    args = parser.parse_args(argv)

    input_path = Path(args.input)
    config_path = Path(args.config)
    out_dir = Path(args.out)

    # Basic validations
    urls = validate_input(input_path)
    cfg = apply_overrides(validate_config(config_path), args)
    ensure_out_dir(out_dir)

    logging.basicConfig(
        level=(args.log_level or cfg.logging.level).upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.dry_run:
        print("✅ Dry-run validation passed")
        print(f" - Input file: {input_path}")
        print(f" - Config: {config_path}")
        print(f" - Output dir: {out_dir}")
        print(f" - URLs to process: {len(urls)}")
        return 0

    if not urls:
        print(f"Input error: no URLs found in {input_path}", file=sys.stderr)
        return 2

    ops_logger = None
    if cfg.logging.ops_json or args.ops_log or args.ops_stdout:
        ops_log_path = Path(args.ops_log) if args.ops_log else (out_dir / "ops.log")
        ops_logger = OpsLogger(ops_log_path, also_stdout=bool(args.ops_stdout))

    enable_headless = not args.no_headless
    runner = BatchRunner(
        config=cfg,
        orchestrator_factory=lambda: ScrapeOrchestrator(
            config=cfg, enable_headless=enable_headless, ops_logger=ops_logger,
        ),
    )

    def _on_progress(snapshot: BatchProgress) -> None:
        if args.progress_json:
            print(snapshot.model_dump_json())

    print(f"Workers: {runner.workers}, mode: {cfg.scrape.mode.value}, headless: {'on' if enable_headless else 'off'}")
    proc_start = time.perf_counter()
    try:
        report = runner.run(urls, cfg.scrape, on_progress=_on_progress)
    except Exception as e:
        print(f"Processing error: {e}", file=sys.stderr)
        return 3

    for result in report.results:
        print_result(result)

    exporter = ContactExporter(output_dir=out_dir)
    try:
        if args.format in ("csv", "both"):
            exporter.to_csv(report.results)
        if args.format in ("xlsx", "both"):
            exporter.to_xlsx(report.results)
        exporter.to_json(report.results)
    except Exception as e:
        print(f"Export error: {e}", file=sys.stderr)
        return 3

    total_contacts = sum(len(r.contacts) for r in report.results)
    errors = sum(1 for r in report.results if r.status == ScrapeStatus.ERROR)
    print("🏁 Done.")

    if ops_logger:
        ops_logger.emit(summary_record(report, time.perf_counter() - proc_start))
    print(f"   Processed URLs: {len(report.results)} ({errors} errors)")
    print(f"   Total contacts: {total_contacts}")

    if errors == len(report.results):
        print("All URLs failed.", file=sys.stderr)
        return 3
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
