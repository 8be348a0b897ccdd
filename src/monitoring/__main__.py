"""Standalone monitoring daemon.

Collects a metrics snapshot every interval, evaluates alert thresholds
and runs alert maintenance until SIGINT/SIGTERM.

Usage:
    python -m src.monitoring
    python -m src.monitoring --interval 30 --log-level DEBUG
    python -m src.monitoring --once
"""

import argparse
import asyncio
import json
import logging
import signal
import sys
from typing import Optional

from src.logging_config import LogFormat, LoggingConfig, LogLevel, configure_logging
from src.settings import get_settings
from src.signal_pipeline.service import PipelineService

logger = logging.getLogger("signal_desk.monitoring")


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="python -m src.monitoring",
        description="Signal desk monitoring daemon",
    )
    parser.add_argument(
        "--interval", type=float, default=None,
        help="Seconds between metric snapshots (default: SIGNALDESK_METRICS_INTERVAL_SECONDS)",
    )
    parser.add_argument(
        "--log-level", type=str, default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )
    parser.add_argument(
        "--log-format", type=str, default="console",
        choices=["json", "console"],
        help="Log output format (default: console)",
    )
    parser.add_argument(
        "--once", action="store_true", default=False,
        help="Collect a single snapshot, print it as JSON and exit",
    )
    return parser.parse_args(argv)


async def run(args: argparse.Namespace) -> int:
    settings = get_settings()
    service = PipelineService(settings)
    if args.interval is not None:
        service.scheduler.interval_seconds = args.interval

    if args.once:
        snapshot = await service.scheduler.run_once()
        await service.stop()
        if snapshot is None:
            return 1
        print(json.dumps(snapshot.to_dict(), indent=2))
        return 0

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()

    def _handle_signal(signum, frame):
        logger.info("Received %s, shutting down", signal.Signals(signum).name)
        loop.call_soon_threadsafe(stop.set)

    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)

    logger.info("=" * 60)
    logger.info("  Signal desk monitoring")
    logger.info("  Interval: %.0fs", service.scheduler.interval_seconds)
    logger.info("  Store: %s", "database" if settings.use_database else "in-memory")
    logger.info("=" * 60)

    await service.start()
    try:
        await stop.wait()
    finally:
        await service.stop()
        logger.info("Monitoring stopped after %d ticks", service.scheduler.ticks)
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    args = parse_args(argv)
    configure_logging(LoggingConfig(level=LogLevel(args.log_level), format=LogFormat(args.log_format)))
    return asyncio.run(run(args))


if __name__ == "__main__":
    sys.exit(main())
