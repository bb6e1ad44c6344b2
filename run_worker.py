#!/usr/bin/env python3
"""
Entry point for the Release-Ready export worker.

Usage:
    python run_worker.py worker            # poll the job queues
    python run_worker.py dlq               # re-enqueue due dead letter records periodically
    python run_worker.py cleanup --days 30 # delete old resolved/exhausted records
    python run_worker.py stats             # print dead letter queue counts
"""
import argparse
import json
import logging
import sys
import threading
from pathlib import Path

# Make 'src' and 'database' importable when run from anywhere
project_root = Path(__file__).parent.resolve()
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

from src.config import config  # noqa: E402
from src.exceptions import ConfigurationError  # noqa: E402

logger = logging.getLogger("run_worker")


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Release-Ready export worker")
    parser.add_argument(
        "mode",
        choices=["worker", "dlq", "cleanup", "stats"],
        help="What this process runs",
    )
    parser.add_argument(
        "--days",
        type=int,
        default=config.dlq_retention_days,
        help="Retention window for cleanup (default: %(default)s)",
    )
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)
    config.configure_logging()

    from src.tasks.runner import (
        build_worker_context,
        install_signal_handlers,
        require_audio_tools,
        run_dlq_processor,
        run_forever,
    )

    try:
        if args.mode == "worker":
            require_audio_tools()
        context = build_worker_context(config)
    except ConfigurationError as e:
        logger.error(f"Cannot start: {e}")
        return 1

    try:
        if args.mode == "cleanup":
            deleted = context.dlq.cleanup_dlq(args.days)
            print(f"Deleted {deleted} dead letter records older than {args.days} days")
            return 0

        if args.mode == "stats":
            print(json.dumps(context.dlq.get_dlq_stats(), indent=2))
            return 0

        stop_event = threading.Event()
        install_signal_handlers(stop_event)
        if args.mode == "worker":
            run_forever(context, stop_event)
        else:
            run_dlq_processor(context, stop_event)
        return 0
    finally:
        context.queue.close()
        from database import close_pool
        close_pool()


if __name__ == "__main__":
    sys.exit(main())
