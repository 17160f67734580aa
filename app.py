#!/usr/bin/env python3
"""
Parachain TPS Monitor - Main Application Entry Point.

============================================================
SINGLE ENTRYPOINT
============================================================
Wires one aggregator to one telemetry source and, optionally,
serves the read-only HTTP API.

- Live, testnet or simulated telemetry
- Periodic summary line in the log
- Background history cleanup
- Graceful shutdown on SIGINT/SIGTERM

============================================================
USAGE
============================================================
Live stream:
    python app.py --source live

Offline demo with the API:
    python app.py --source mock --serve --port 8000

Testnet, including Westend chains:
    python app.py --source testnet --relay Westend --relay Kusama

============================================================
"""

import argparse
import asyncio
import dataclasses
import logging
import signal
import sys
from typing import List, Optional

import uvicorn

from aggregation import AggregationConfig, Aggregator, GlobalState
from aggregation.exceptions import ConfigurationError
from dashboard import BlockFeed, DashboardConfig, create_app
from data_sources import DataSource, MockDataSource, StreamConfig, StreamDataSource


logger = logging.getLogger("app")


LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


# ============================================================
# CLI ARGUMENT PARSER
# ============================================================

def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="parachain-tps",
        description="Streaming TPS aggregation for parachain telemetry",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Sources:
  live     - Production telemetry stream
  testnet  - Testnet telemetry stream
  mock     - Built-in surge simulator (no network)

Examples:
  %(prog)s --source live
  %(prog)s --source mock --serve --port 8000
  %(prog)s --source testnet --relay Westend
        """
    )

    # --------------------------------------------------------
    # Source Options
    # --------------------------------------------------------
    source_group = parser.add_argument_group("Source Options")

    source_group.add_argument(
        "--source", "-s",
        type=str,
        choices=["live", "testnet", "mock"],
        default="live",
        help="Telemetry source (default: live)",
    )

    source_group.add_argument(
        "--url",
        type=str,
        default=None,
        help="Override the event stream URL",
    )

    source_group.add_argument(
        "--relay",
        action="append",
        default=None,
        metavar="NAME",
        help="Relay to ingest; repeat for several (default: Polkadot, Kusama)",
    )

    source_group.add_argument(
        "--seed",
        type=int,
        default=None,
        help="Random seed for the mock source",
    )

    # --------------------------------------------------------
    # API Options
    # --------------------------------------------------------
    api_group = parser.add_argument_group("API Options")

    api_group.add_argument(
        "--serve",
        action="store_true",
        help="Serve the read-only HTTP API",
    )

    api_group.add_argument(
        "--host",
        type=str,
        default=None,
        help="API bind host (default: DASHBOARD_HOST or 127.0.0.1)",
    )

    api_group.add_argument(
        "--port",
        type=int,
        default=None,
        help="API bind port (default: DASHBOARD_PORT or 8000)",
    )

    # --------------------------------------------------------
    # Logging Options
    # --------------------------------------------------------
    logging_group = parser.add_argument_group("Logging Options")

    logging_group.add_argument(
        "--summary-every",
        type=int,
        default=100,
        metavar="N",
        help="Log a summary every N accepted updates; 0 disables (default: 100)",
    )

    logging_group.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default="INFO",
        help="Logging level (default: INFO)",
    )

    return parser


def validate_args(args: argparse.Namespace) -> List[str]:
    """
    Validate parsed arguments.

    Returns:
        List of error messages (empty if valid)
    """
    errors = []

    if args.summary_every < 0:
        errors.append("--summary-every must be >= 0")

    if args.port is not None and not 0 < args.port < 65536:
        errors.append(f"--port out of range: {args.port}")

    if args.url and args.source == "mock":
        errors.append("--url cannot be used with --source mock")

    if args.relay is not None and not all(r.strip() for r in args.relay):
        errors.append("--relay must not be empty")

    return errors


# ============================================================
# WIRING
# ============================================================

def build_aggregation_config(args: argparse.Namespace) -> AggregationConfig:
    """Environment configuration with CLI overrides applied."""
    config = AggregationConfig.from_env()
    if args.relay:
        config = dataclasses.replace(
            config,
            supported_relays=tuple(r.strip() for r in args.relay),
        )
    return config


def build_dashboard_config(args: argparse.Namespace) -> DashboardConfig:
    """Environment configuration with CLI overrides applied."""
    config = DashboardConfig.from_env()
    overrides = {}
    if args.host is not None:
        overrides["host"] = args.host
    if args.port is not None:
        overrides["port"] = args.port
    return dataclasses.replace(config, **overrides) if overrides else config


def build_source(args: argparse.Namespace, aggregator: Aggregator) -> DataSource:
    """Create the telemetry source selected on the command line."""
    if args.source == "mock":
        return MockDataSource(aggregator, seed=args.seed)

    if args.source == "testnet":
        config = StreamConfig.testnet()
    else:
        config = StreamConfig.from_env()

    if args.url:
        config = dataclasses.replace(config, url=args.url)
    return StreamDataSource(aggregator, config, name=args.source)


class SummaryLogger:
    """Snapshot subscriber that logs a one-line summary every N updates."""

    def __init__(self, every: int, confidence_threshold: float) -> None:
        self._every = every
        self._threshold = confidence_threshold

    def __call__(self, state: GlobalState) -> None:
        if self._every <= 0 or state.update_count % self._every != 0:
            return

        marker = "" if state.is_confident(self._threshold) else " (warming up)"
        logger.info(
            f"TPS {state.windowed_tps:.1f} | EMA {state.ema_tps:.1f} | "
            f"confidence {state.confidence:.2f}{marker} | "
            f"record {state.record_tps:.1f} | chains {state.chain_count} | "
            f"updates {state.update_count}"
        )


def _install_signal_handlers(stop_event: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except (NotImplementedError, RuntimeError):
            # Not supported on this platform; KeyboardInterrupt still applies
            pass


# ============================================================
# MAIN ENTRY POINT
# ============================================================

async def async_main(args: argparse.Namespace) -> int:
    """
    Async main entry point.

    Args:
        args: Parsed arguments

    Returns:
        Exit code
    """
    try:
        aggregation_config = build_aggregation_config(args)
        dashboard_config = build_dashboard_config(args)
        aggregator = Aggregator(aggregation_config)
        source = build_source(args, aggregator)
    except (ConfigurationError, ValueError) as e:
        logger.error(f"Invalid configuration: {e}")
        return 2

    aggregator.subscribe(SummaryLogger(args.summary_every, aggregation_config.confidence_threshold))

    block_feed = BlockFeed(max_blocks=dashboard_config.max_blocks)
    aggregator.subscribe(block_feed)

    server: Optional[uvicorn.Server] = None
    if args.serve:
        app = create_app(aggregator, block_feed)
        server = uvicorn.Server(uvicorn.Config(
            app,
            host=dashboard_config.host,
            port=dashboard_config.port,
            log_level=args.log_level.lower(),
        ))

    stop_event = asyncio.Event()
    _install_signal_handlers(stop_event)

    waiters = [asyncio.create_task(stop_event.wait())]
    server_task: Optional[asyncio.Task] = None
    try:
        await aggregator.start_background_cleanup()
        await source.start()

        if server is not None:
            logger.info(f"Serving API on http://{dashboard_config.host}:{dashboard_config.port}")
            server_task = asyncio.create_task(server.serve())
        if isinstance(source, StreamDataSource):
            waiters.append(asyncio.create_task(source.wait()))

        await asyncio.wait(
            waiters + ([server_task] if server_task else []),
            return_when=asyncio.FIRST_COMPLETED,
        )

        if isinstance(source, StreamDataSource) and source.last_error is not None and not stop_event.is_set():
            logger.error(f"Stream source gave up: {source.last_error}")
            return 1
        return 0

    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        return 1

    finally:
        logger.info("Shutting down...")
        if server is not None and server_task is not None:
            server.should_exit = True
            await asyncio.gather(server_task, return_exceptions=True)
        for task in waiters:
            if not task.done():
                task.cancel()
        await asyncio.gather(*waiters, return_exceptions=True)
        await source.stop()
        await aggregator.stop_background_cleanup()

        stats = aggregator.get_stats()
        logger.info(
            f"Final: accepted={stats['accepted']} rejected={stats['rejected']} "
            f"filtered={stats['filtered']} chains={stats['chains']}"
        )


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main CLI entry point.

    Args:
        argv: Command line arguments (default: sys.argv[1:])

    Returns:
        Exit code
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    errors = validate_args(args)
    if errors:
        for error in errors:
            print(f"Error: {error}", file=sys.stderr)
        return 1

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format=LOG_FORMAT,
        datefmt=LOG_DATE_FORMAT,
    )

    try:
        return asyncio.run(async_main(args))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 130


if __name__ == "__main__":
    sys.exit(main())
