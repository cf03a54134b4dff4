"""Main entry point for the uptime monitor."""

import argparse
import asyncio
import logging
import sys
from typing import Optional

import structlog
import uvicorn

from uptime_monitor.api import create_app
from uptime_monitor.config import MonitorConfig, load_config
from uptime_monitor.errors import ConfigError
from uptime_monitor.service import MonitoringService


logger = structlog.get_logger(__name__)


def configure_logging(level: str = "INFO") -> None:
    """Configure structured logging once for the whole process."""
    numeric = logging.getLevelName(str(level).upper())
    if not isinstance(numeric, int):
        numeric = logging.INFO
    logging.basicConfig(level=numeric, stream=sys.stderr, format="%(message)s")
    # Telegram bot tokens live in request URLs; keep transport request logs quiet.
    for name in ("httpx", "httpcore"):
        logging.getLogger(name).setLevel(logging.WARNING)
    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="ISO"),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(numeric),
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Uptime monitor: scheduled checks, incidents and alerts")
    parser.add_argument("--config", default=None, help="Path to monitor YAML config (default: $UPTIME_CONFIG)")
    parser.add_argument("--once", action="store_true", help="Check every active target once and exit")
    parser.add_argument("--log-level", default=None, help="Override the configured log level")
    return parser


async def _run_once(config: MonitorConfig) -> int:
    service = MonitoringService(config)
    try:
        results = await service.run_once()
    finally:
        await service.stop()
    return 1 if any(not r.is_up for r in results) else 0


def main(argv: Optional[list] = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        config = load_config(args.config)
    except ConfigError as exc:
        configure_logging("INFO")
        logger.error("Invalid configuration", error=str(exc))
        return 2
    if args.log_level:
        config.log_level = args.log_level
    configure_logging(config.log_level)

    if args.once:
        return asyncio.run(_run_once(config))

    app = create_app(MonitoringService(config))
    logger.info("Starting uptime monitor", host=config.api.host, port=config.api.port, worker_id=config.worker_id)
    uvicorn.run(app, host=config.api.host, port=config.api.port, log_level=config.log_level.lower())
    return 0


if __name__ == "__main__":
    sys.exit(main())
