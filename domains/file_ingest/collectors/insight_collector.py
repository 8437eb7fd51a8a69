#!/usr/bin/env python3
"""
Insight collector service.

Watches the configured sources and feeds changed files through extraction,
redaction and analysis until interrupted. Completed and failed tasks are
logged; fingerprints persist across restarts so unchanged files are never
analyzed twice.

Usage:
    cortex-collector --sources config/sources.yaml --scan
"""

from __future__ import annotations

import argparse
import signal
import sys
import threading
from pathlib import Path
from typing import Optional

from loguru import logger

from app.utils.config import get_settings, load_watch_sources
from app.utils.errors import ConfigError, StoreError
from app.utils.events import Notification
from app.utils.llm import LLMConfigError
from app.utils.log import setup_logging
from domains.file_ingest.models import TaskCompleted, TaskFailed
from domains.file_ingest.pipeline import IngestionPipeline


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Watch folders and extract insights from changed files.")
    parser.add_argument(
        "--sources",
        type=Path,
        default=None,
        help="YAML file listing watch sources (defaults to SOURCES_FILE).",
    )
    parser.add_argument("--log-level", default=None, help="Log level (defaults to LOG_LEVEL).")
    parser.add_argument("--concurrency", type=int, default=None, help="Maximum simultaneous analyses.")
    parser.add_argument("--max-retries", type=int, default=None, help="Retries after a transient failure.")
    parser.add_argument(
        "--scan",
        action="store_true",
        help="Submit files already present in each source after startup.",
    )
    parser.add_argument("--serialize-logs", action="store_true", help="Emit JSON log records.")
    return parser.parse_args(argv)


def _log_completed(result: TaskCompleted):
    for insight in result.insights:
        logger.info(f"[{result.source_id}] {insight.category.value}: {insight.title} ({insight.confidence:.2f})")


def _log_failed(result: TaskFailed):
    logger.warning(f"[{result.source_id}] gave up on {result.path}: {result.kind.value} ({result.error})")


def _log_session_error(payload: dict):
    logger.warning(f"Source {payload['source_id']} stopped: {payload['error']}. Use reload to restart it.")


def main(argv: Optional[list[str]] = None) -> int:
    """Entry point for the CLI script."""

    args = parse_args(argv)
    settings = get_settings()

    overrides = {}
    if args.concurrency is not None:
        overrides["queue_concurrency"] = args.concurrency
    if args.max_retries is not None:
        overrides["queue_max_retries"] = args.max_retries
    if args.scan:
        overrides["scan_on_start"] = True
    if overrides:
        settings = settings.model_copy(update=overrides)

    setup_logging(args.log_level or settings.log_level, serialize=args.serialize_logs)

    try:
        if args.sources is not None:
            sources = load_watch_sources(args.sources.expanduser())
        else:
            sources = settings.get_watch_sources()
        pipeline = IngestionPipeline(settings)
    except (ConfigError, ValueError) as e:
        logger.error(f"Invalid configuration: {e}")
        return 2

    if not sources:
        logger.error("No watch sources configured.")
        return 1

    pipeline.bus.on(Notification.TASK_COMPLETED, _log_completed)
    pipeline.bus.on(Notification.TASK_FAILED, _log_failed)
    pipeline.bus.on(Notification.ERROR, _log_session_error)

    try:
        failures = pipeline.start(sources)
    except LLMConfigError as e:
        logger.error(f"Invalid configuration: {e}")
        pipeline.shutdown()
        return 2
    except StoreError as e:
        logger.error(f"Cannot open fingerprint store: {e}")
        pipeline.shutdown()
        return 1

    for source_id, error in failures.items():
        logger.error(f"Source {source_id} not started: {error}")

    if not pipeline.watch.list_active():
        logger.error("No valid directories to monitor.")
        pipeline.shutdown()
        return 1

    stop_event = threading.Event()

    def _signal_handler(signum, frame):  # noqa: D401
        logger.info(f"Received signal {signum}, shutting down.")
        stop_event.set()

    signal.signal(signal.SIGINT, _signal_handler)
    signal.signal(signal.SIGTERM, _signal_handler)

    try:
        while not stop_event.is_set():
            stop_event.wait(1.0)
    finally:
        pipeline.shutdown()

    logger.info("Insight collector stopped.")
    return 0


if __name__ == "__main__":  # pragma: no cover - CLI bridge
    sys.exit(main())
