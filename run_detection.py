#!/usr/bin/env python3
"""
Run an entity watcher over saved HTML snapshots of the host application.

The first snapshot is loaded as the live document and scanned; each replay
snapshot then replaces the body contents, producing the mutation batches a
real page would deliver. Every ADDED/REMOVED event is written as JSONL.

Usage:
    python run_detection.py --html page.html --entity message
    python run_detection.py --html page.html --replay page2.html page3.html --entity message --min-score 0.75
    python run_detection.py --html page.html --entity attachment_overlay --config watch.yml
"""

import argparse
import logging
import os
import sys
import time

from core.run_artifacts import EventLogWriter, write_run_report
from core.structured_logging import configure_structured_logging, set_session_id
from core.watch_config import (
    ConfigValidationError,
    WatchConfig,
    load_watch_config,
    resolve_strict_config_validation,
)

logger = logging.getLogger(__name__)


def parse_args() -> argparse.Namespace:
    """Parse command-line arguments.

    Returns:
        Parsed argument namespace.
    """
    parser = argparse.ArgumentParser(
        description="Structural entity detection over HTML snapshots",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "Examples:\n"
            "  python run_detection.py --html page.html --entity message\n"
            "  python run_detection.py --html a.html --replay b.html --entity message\n"
        )
    )

    parser.add_argument(
        "--html",
        required=True,
        help="Initial HTML snapshot to load as the live document."
    )
    parser.add_argument(
        "--replay",
        nargs="*",
        default=[],
        help="Later snapshots whose body replaces the live body, in order."
    )
    parser.add_argument(
        "--entity",
        required=True,
        help="Entity type to watch (e.g. message, attachment_overlay)."
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Optional YAML/JSON watch config."
    )
    parser.add_argument(
        "--min-score",
        type=float,
        default=None,
        help="Acceptance threshold; overrides the config. Default: accept all."
    )
    parser.add_argument(
        "--output-file",
        default="output/events.jsonl",
        help="Path for the JSONL event log. Default: output/events.jsonl"
    )
    parser.add_argument(
        "--report-dir",
        default="output/detection_reports",
        help="Directory for the JSON run report."
    )

    return parser.parse_args()


def replay_snapshot(document, snapshot_path: str) -> int:
    """Swap the live body contents for those of ``snapshot_path``.

    Returns:
        Number of mutation records delivered.
    """
    from markup.parser import load_document_file

    snapshot = load_document_file(snapshot_path)
    source_root = snapshot.body or snapshot
    target_root = document.body or document
    target_root.replace_children(*source_root.children)
    return document.deliver_mutations()


def run_watch(args: argparse.Namespace, config: WatchConfig, session_id: str) -> dict:
    """Watch the requested entity across all snapshots and write events.

    Raises:
        FileNotFoundError: If a snapshot does not exist.
        KeyError: If the entity type is unknown.
    """
    from entities import build_default_registry
    from markup.parser import load_document_file

    for path in [args.html] + list(args.replay):
        if not os.path.isfile(path):
            raise FileNotFoundError(f"Snapshot not found: {path}")

    registry = build_default_registry(config)
    min_score = args.min_score if args.min_score is not None else config.min_score_for(args.entity)

    logger.info(f"Initial snapshot : {os.path.abspath(args.html)}")
    logger.info(f"Replay snapshots : {len(args.replay)}")
    logger.info(f"Entity type      : {args.entity}")
    logger.info(f"Min score        : {min_score if min_score is not None else 'accept all'}")

    document = load_document_file(args.html)
    watcher = registry.watch(
        args.entity, document, min_score=min_score, removal_grace=config.removal_grace
    )
    stream = watcher.stream()

    t0 = time.time()
    with EventLogWriter(args.output_file, session_id) as event_log:
        watcher.start()
        event_log.write("initial", stream.drain())

        for idx, snapshot_path in enumerate(args.replay, start=1):
            delivered = replay_snapshot(document, snapshot_path)
            watcher.flush_pending_removals()
            logger.info(f"Replay {idx}: {delivered} mutation records from {snapshot_path}")
            event_log.write(f"replay-{idx}", stream.drain())

        tracked_at_end = watcher.tracked_count
        watcher.stop()
        event_log.write("stop", stream.drain())
    lines_written = event_log.lines_written

    elapsed = time.time() - t0
    logger.info("Detection finished in %.2fs, %d events written", elapsed, lines_written)

    return {
        "entity": args.entity,
        "snapshots": [args.html] + list(args.replay),
        "min_score": min_score,
        "events_written": lines_written,
        "tracked_at_end": tracked_at_end,
        "elapsed_seconds": round(elapsed, 3),
        "reporter": registry.reporter.to_dict(),
        "output_file": os.path.abspath(args.output_file),
    }


def main() -> None:
    """Main entry point for detection runs."""
    args = parse_args()
    strict = resolve_strict_config_validation()

    try:
        config = load_watch_config(args.config, strict=strict) if args.config else WatchConfig()
    except ConfigValidationError as e:
        configure_structured_logging()
        logger.error(f"Invalid watch config: {e}")
        sys.exit(1)

    configure_structured_logging(getattr(logging, config.log_level, logging.INFO))
    session_id = set_session_id()

    try:
        report = run_watch(args, config, session_id)
        path = write_run_report(report, session_id, output_dir=args.report_dir, label=args.entity)
        logger.info(f"Run report written to {path}")

    except FileNotFoundError as e:
        logger.error(f"File error: {e}")
        sys.exit(1)
    except KeyError as e:
        logger.error(f"Unknown entity: {e}")
        sys.exit(1)
    except Exception as e:
        logger.error(f"Detection run failed: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
