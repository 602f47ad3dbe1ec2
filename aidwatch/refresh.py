"""CLI entrypoint: one-shot or cron-scheduled aid page refresh."""

from __future__ import annotations

import argparse
import json
import logging
import os
import signal
import sys
import threading
from pathlib import Path
from typing import Any

from aidwatch.crawler.config import ConfigError, PipelineConfig, env_overrides, load_config_payload
from aidwatch.crawler.context import build_context
from aidwatch.crawler.pipeline import Pipeline
from aidwatch.crawler.scheduler import CronScheduler
from aidwatch.crawler.types import RunSummary


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Refresh public-aid pages: crawl, scrape and embed what changed.",
    )

    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to JSON/YAML pipeline config. Environment variables override it.",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single pass even if a cron expression is configured.",
    )
    parser.add_argument(
        "--dry_run",
        action="store_true",
        help="Compute decisions and call the provider but write nothing.",
    )
    parser.add_argument(
        "--url",
        type=str,
        default=None,
        help="Inspect one URL (always dry-run) and print a JSON report.",
    )
    parser.add_argument(
        "--embed",
        action="store_true",
        help="With --url, also call the embedding provider.",
    )
    parser.add_argument(
        "--create_schema",
        action="store_true",
        help="Create missing tables before running.",
    )

    parser.add_argument("--crawl_concurrency", type=int, default=None)
    parser.add_argument("--scrape_concurrency", type=int, default=None)
    parser.add_argument("--embed_concurrency", type=int, default=None)
    parser.add_argument("--timeout_seconds", type=float, default=None)
    parser.add_argument("--retries", type=int, default=None)
    parser.add_argument("--batch_limit", type=int, default=None)
    parser.add_argument(
        "--reindex_strategy",
        type=str,
        choices=("incremental", "full"),
        default=None,
    )

    parser.add_argument("--log_file", type=Path, default=None, help="Also write logs to this file.")
    parser.add_argument("--verbose", action="store_true", help="Enable verbose logging.")
    parser.add_argument(
        "--print_summary_json",
        action="store_true",
        help="Print the full run summary JSON in stdout after each run.",
    )

    return parser.parse_args(argv)


CLI_OVERRIDES = (
    "crawl_concurrency",
    "scrape_concurrency",
    "embed_concurrency",
    "timeout_seconds",
    "retries",
    "batch_limit",
    "reindex_strategy",
)


def build_config(args: argparse.Namespace, environ: dict[str, str] | None = None) -> PipelineConfig:
    """Defaults < config file < environment < CLI flags."""

    payload: dict[str, Any] = {}
    if args.config is not None:
        payload.update(load_config_payload(args.config))
    payload.update(env_overrides(os.environ if environ is None else environ))

    for key in CLI_OVERRIDES:
        value = getattr(args, key)
        if value is not None:
            payload[key] = value
    if args.dry_run or args.url:
        payload["dry_run"] = True

    config = PipelineConfig.from_dict(payload)
    config.validate_runtime()
    return config


def setup_logging(log_file: Path | None, verbose: bool) -> None:
    log_level = logging.DEBUG if verbose else logging.INFO

    formatter = logging.Formatter(
        "%(asctime)s %(levelname)s [%(name)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(log_level)

    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setLevel(log_level)
    stream_handler.setFormatter(formatter)
    root.addHandler(stream_handler)

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(log_level)
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    # Connection-pool chatter on every request drowns the gate lines.
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def print_summary(summary: RunSummary, *, print_summary_json: bool) -> None:
    stats = summary.to_json()

    print("\n=== Refresh Complete ===")
    for key in [
        "candidates",
        "changed",
        "soft_changed",
        "unchanged",
        "gone",
        "blocked",
        "scrape_changed",
        "embedded",
        "embed_skipped",
        "errored",
        "duration_seconds",
    ]:
        if key in stats:
            print(f"{key}: {stats[key]}")
    if summary.skipped_reason:
        print(f"skipped: {summary.skipped_reason}")

    if print_summary_json:
        print("\n--- Full Summary JSON ---")
        print(json.dumps(stats, indent=2, sort_keys=True))


def install_signal_handlers(stop_event: threading.Event) -> None:
    def handle(signum: int, _frame: Any) -> None:
        logging.warning("Received %s, finishing in-flight work", signal.Signals(signum).name)
        stop_event.set()

    signal.signal(signal.SIGINT, handle)
    signal.signal(signal.SIGTERM, handle)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    setup_logging(args.log_file, verbose=args.verbose)

    try:
        config = build_config(args)
    except (ConfigError, OSError, ValueError) as exc:
        logging.error("Failed to build config: %s", exc)
        return 2

    logging.info("Starting refresh: config=%s", config.to_dict())

    stop_event = threading.Event()
    install_signal_handlers(stop_event)

    try:
        context = build_context(config)
    except ConfigError as exc:
        logging.error("Failed to build clients: %s", exc)
        return 2

    try:
        if args.create_schema:
            context.store.create_schema()

        pipeline = Pipeline(context)

        if args.url:
            report = pipeline.inspect_url(args.url, embed=args.embed)
            print(json.dumps(report, indent=2, ensure_ascii=False, default=str))
            return 0

        def run() -> RunSummary:
            summary = pipeline.run_once(cancel_event=stop_event)
            print_summary(summary, print_summary_json=args.print_summary_json)
            return summary

        if config.cron and not args.once:
            try:
                scheduler = CronScheduler(config.cron, run, stop_event)
            except ConfigError as exc:
                logging.error("Failed to build scheduler: %s", exc)
                return 2
            scheduler.run_forever()
            return 130 if stop_event.is_set() else 0

        summary = run()
    except KeyboardInterrupt:
        logging.error("Interrupted by user")
        return 130
    except Exception:
        logging.exception("Pipeline execution failed")
        return 1
    finally:
        context.close()

    if summary.cancelled:
        return 130
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
