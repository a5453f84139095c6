#!/usr/bin/env python3
"""
Broadcaster CLI.

Usage:
    txblaster --count 100 --workers 4 --data '{"p":"x"}'

Values not given on the command line come from the environment (or .env):
PRIVATE_KEY_HEX, NUM_WORKERS, TRANSACTIONS_NUMBER, JSON_DATA, TO_ADDRESS,
RPC_URL / RPC_URLS, PACE_DELAY, GAS_LIMIT, ...

RPC config file (rpcs.json):
{
    "rpcs": [
        "https://rpc1.example.com",
        {"url": "https://rpc2.example.com"}
    ]
}
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Optional

import structlog

from .builder import TransactionBuilder
from .config import BroadcastConfig, load_config, load_rpc_file
from .errors import ChainMismatchError, SetupError
from .models import OutcomeStatus, RunSummary, TxOutcome
from .pool import ConnectionFactory, Dispatcher, EndpointPool

COMPLETION_MARKER = "All transactions sent."

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_INTERRUPTED = 130


def configure_logging(level: str = "INFO") -> None:
    # Logs go to stderr; stdout carries only transaction lines
    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer()
        ],
        wrapper_class=structlog.make_filtering_bound_logger(getattr(logging, level.upper(), logging.INFO)),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


logger = structlog.get_logger()


def parse_args(argv: Optional[list[str]] = None):
    parser = argparse.ArgumentParser(
        description="Sign and broadcast legacy transactions through a worker pool"
    )

    parser.add_argument("--private-key", help="Hex-encoded signing key (env: PRIVATE_KEY_HEX)")
    parser.add_argument("--count", type=int, help="Transactions to send (env: TRANSACTIONS_NUMBER)")
    parser.add_argument("--workers", type=int, help="Worker count (env: NUM_WORKERS, default: 1)")
    parser.add_argument("--data", help="Payload sent as input data (env: JSON_DATA)")
    parser.add_argument("--to", dest="to_address", help="Destination address (env: TO_ADDRESS, default: sender)")

    parser.add_argument(
        "--rpc",
        action="append",
        dest="rpcs",
        help="RPC URL (can be repeated; default: built-in public endpoints)",
    )
    parser.add_argument("--config", type=Path, help="Path to RPC config JSON file")
    parser.add_argument("--env-file", type=Path, help="Path to .env file (default: ./.env)")

    parser.add_argument("--pace", type=float, dest="pace_delay", help="Seconds between queued tasks (default: 0.5)")
    parser.add_argument("--gas-limit", type=int, help="Gas limit (default: 22000)")
    parser.add_argument("--gas-multiplier", type=float, dest="gas_price_multiplier", help="Gas price multiplier (default: 1.0)")
    parser.add_argument("--timeout", type=float, dest="request_timeout", help="Per-request timeout in seconds (default: 15)")
    parser.add_argument("--max-setup-attempts", type=int, help="Dials before giving up at startup (default: 2x endpoints)")
    parser.add_argument("--drain-timeout", type=float, help="Max seconds to wait for workers (default: no limit)")
    parser.add_argument("--stats-interval", type=float, help="Seconds between stats logging (default: 10)")
    parser.add_argument("--log-level", help="DEBUG, INFO, WARNING or ERROR (default: INFO)")

    parser.add_argument("--json", action="store_true", help="Print outcomes as JSON lines")

    return parser.parse_args(argv)


def build_config(args) -> BroadcastConfig:
    rpc_urls = []
    if args.config:
        rpc_urls.extend(load_rpc_file(args.config))
    if args.rpcs:
        rpc_urls.extend(args.rpcs)

    overrides = {
        "private_key": args.private_key,
        "count": args.count,
        "workers": args.workers,
        "data": args.data,
        "to_address": args.to_address,
        "rpc_urls": rpc_urls or None,
        "pace_delay": args.pace_delay,
        "gas_limit": args.gas_limit,
        "gas_price_multiplier": args.gas_price_multiplier,
        "request_timeout": args.request_timeout,
        "max_setup_attempts": args.max_setup_attempts,
        "drain_timeout": args.drain_timeout,
        "stats_interval": args.stats_interval,
        "log_level": args.log_level,
    }
    return load_config(overrides, env_file=args.env_file)


def make_printer(as_json: bool):
    """Outcome callback writing one stdout line per sent transaction."""
    def _print(outcome: TxOutcome) -> None:
        if as_json:
            print(outcome.to_json().decode(), flush=True)
        elif outcome.status == OutcomeStatus.SENT:
            print(f"Transaction sent: {outcome.tx_hash}", flush=True)
    return _print


async def broadcast(config: BroadcastConfig, as_json: bool = False) -> RunSummary:
    builder = TransactionBuilder.from_key(
        config.private_key.get_secret_value(),
        to_address=config.to_address,
        gas_limit=config.gas_limit,
    )

    logger.info(
        "Starting broadcaster",
        sender=builder.sender,
        to=builder.to_address,
        rpc_count=len(config.rpc_urls),
        workers=config.workers,
        count=config.count,
    )

    dispatcher = Dispatcher(
        pool=EndpointPool(config.rpc_urls),
        builder=builder,
        factory=ConnectionFactory(timeout=config.request_timeout),
        payload=config.payload,
        gas_price_multiplier=config.gas_price_multiplier,
        max_setup_attempts=config.max_setup_attempts,
        drain_timeout=config.drain_timeout,
        stats_interval=config.stats_interval,
        on_outcome=make_printer(as_json),
    )
    return await dispatcher.run(config.count, config.workers, config.pace_delay)


def main(argv: Optional[list[str]] = None) -> int:
    args = parse_args(argv)
    configure_logging(args.log_level or "INFO")

    try:
        config = build_config(args)
        configure_logging(config.log_level)
        summary = asyncio.run(broadcast(config, as_json=args.json))
    except (SetupError, ChainMismatchError) as e:
        print(f"error: {e}", file=sys.stderr)
        return EXIT_FAILURE
    except KeyboardInterrupt:
        return EXIT_INTERRUPTED

    if summary.cancelled:
        return EXIT_INTERRUPTED

    if args.json:
        print(summary.to_json().decode(), flush=True)
    print(COMPLETION_MARKER, flush=True)
    return EXIT_OK


def run() -> None:
    sys.exit(main())


if __name__ == "__main__":
    run()
