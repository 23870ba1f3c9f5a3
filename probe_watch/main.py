from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from contextlib import AsyncExitStack
from pathlib import Path

import httpx
import structlog

from probe_watch.config import ConfigError, WatcherConfig, load_config
from probe_watch.scheduler import run_jobs
from probe_watch.sinks import (
    AlertSink,
    ConsoleLogSink,
    DesktopAlertSink,
    FanOutAlertSink,
    LoggingAlertSink,
    TelegramAlertSink,
)


logger = structlog.get_logger(__name__)


def configure_logging(level: str) -> None:
    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="ISO"),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, str(level).upper(), logging.INFO)
        ),
        # stdout carries the probe records.
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )

    # Avoid leaking secrets (Telegram token is embedded in the Telegram API URL).
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def build_alert_sink(config: WatcherConfig, http_client: httpx.AsyncClient, *, desktop: bool) -> AlertSink:
    sinks: list[AlertSink] = [LoggingAlertSink()]
    if desktop and config.desktop_notifications:
        if DesktopAlertSink.available():
            sinks.append(DesktopAlertSink())
        else:
            logger.warning("notify-send not found; desktop notifications disabled")
    telegram = config.telegram_config()
    if telegram is not None:
        sinks.append(TelegramAlertSink(http_client, telegram))
    return FanOutAlertSink(sinks)


async def run_loop(config: WatcherConfig, *, once: bool, desktop: bool = True) -> int:
    jobs = config.to_jobs()
    if not jobs:
        logger.warning("No jobs configured")
        return 0

    settings = config.run_settings()
    log_sink = ConsoleLogSink()

    async with AsyncExitStack() as stack:
        alert_client = await stack.enter_async_context(httpx.AsyncClient())
        alert_sink = build_alert_sink(config, alert_client, desktop=desktop)

        while True:
            logger.info("Running check cycle", jobs=len(jobs))
            summary = await run_jobs(jobs, settings=settings, log_sink=log_sink, alert_sink=alert_sink)
            if once or config.interval_seconds <= 0:
                return summary.exit_code
            await asyncio.sleep(config.interval_seconds)


def main() -> int:
    parser = argparse.ArgumentParser(description="Probe HTTPS endpoints and alert on slow or failing ones")
    parser.add_argument(
        "--config",
        default=None,
        help="Path to YAML config (default: $PROBE_WATCH_CONFIG or the bundled config.yaml)",
    )
    parser.add_argument("--once", action="store_true", help="Run one check cycle and exit")
    parser.add_argument("--no-desktop", action="store_true", help="Do not show desktop notifications")
    parser.add_argument(
        "--log-level",
        default=None,
        help="Logging level (INFO, WARNING, ...); overrides the config file",
    )
    args = parser.parse_args()

    configure_logging(args.log_level or os.getenv("LOG_LEVEL", "INFO"))
    try:
        config = load_config(Path(args.config) if args.config else None)
    except ConfigError as e:
        logger.error("Failed to load config", error=str(e))
        return 2
    if args.log_level is None:
        configure_logging(config.log_level)

    try:
        return asyncio.run(run_loop(config, once=bool(args.once), desktop=not args.no_desktop))
    except KeyboardInterrupt:
        logger.info("Interrupted")
        return 130


if __name__ == "__main__":
    raise SystemExit(main())
