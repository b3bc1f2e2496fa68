from __future__ import annotations

import argparse
import logging
import signal
import sys
from types import FrameType

from status_tap.aggregator import SnapshotAggregator
from status_tap.collector import build_collector_specs
from status_tap.config import load_config
from status_tap.errors import StatusTapError
from status_tap.logging_utils import configure_logging, resolve_log_level
from status_tap.publisher import LinePublisher
from status_tap.scheduler import Scheduler


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Status bar metrics feed (one JSON object per line on stdout)"
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to CFG configuration file (built-in defaults when omitted)",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        help="Logging level (DEBUG, INFO, WARNING, ERROR)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Enable debug logging (-v) or trace logging (-vv)",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Sample every metric once, publish a single snapshot, then exit",
    )
    parser.add_argument(
        "--tick",
        type=float,
        metavar="SECONDS",
        help="Override the scheduler tick from the configuration",
    )
    return parser


def build_scheduler(args: argparse.Namespace) -> Scheduler:
    config = load_config(args.config)
    tick_s = args.tick if args.tick is not None else config.publish.tick_s
    specs = build_collector_specs(config)
    aggregator = SnapshotAggregator(specs, config.health)
    publisher = LinePublisher(
        heartbeat_s=config.publish.heartbeat_s,
        stream=sys.stdout,
        validate_schema=config.publish.validate_schema,
    )
    return Scheduler(
        specs,
        aggregator,
        publisher,
        tick_s=tick_s,
        timeout_s=config.health.timeout_s,
        max_workers=config.health.max_workers,
    )


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    level = resolve_log_level(args.verbose, args.log_level)
    configure_logging(level)
    logger = logging.getLogger("status_tap")

    try:
        scheduler = build_scheduler(args)
    except (StatusTapError, FileNotFoundError) as exc:
        logger.critical("Failed to start status-tap: %s", exc)
        return 1

    if args.once:
        logger.info("Single-run mode enabled; exiting after one snapshot.")
        scheduler.run_once()
        return 0

    def _stop(signum: int, frame: FrameType | None) -> None:
        logger.info("Received signal %s; shutting down.", signum)
        scheduler.request_stop()

    signal.signal(signal.SIGTERM, _stop)
    signal.signal(signal.SIGHUP, _stop)

    try:
        scheduler.run()
    except KeyboardInterrupt:
        scheduler.shutdown()
    logger.info("status-tap stopped.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
