"""
Indexer main entry point.

Starts the configured sessions, the health server and background
monitors, then waits for SIGINT/SIGTERM and shuts down gracefully.

Usage:
    chain-indexer --user alice --contract 0x... --chain ethereum --tier pro
    chain-indexer --sessions sessions.json
"""

import argparse
import asyncio
import json
import signal
from pathlib import Path
from typing import Any

from loguru import logger

from chain_indexer.config.settings import Settings, settings
from chain_indexer.health_server import create_health_app, start_health_server
from chain_indexer.initialization.logging import setup_logging
from chain_indexer.initialization.services import build_services, start_services
from chain_indexer.initialization.shutdown import shutdown_handler
from chain_indexer.utils.exceptions import IndexerError


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="chain-indexer",
        description="Streaming contract event indexer",
    )
    parser.add_argument("--user", help="User id owning the session")
    parser.add_argument("--contract", help="Contract address to index")
    parser.add_argument("--chain", default="ethereum", help="Chain id (default: ethereum)")
    parser.add_argument("--tier", default="free", help="Subscription tier (default: free)")
    parser.add_argument(
        "--sessions",
        type=Path,
        help="JSON file with a list of {user_id, contract_address, chain_id, tier}",
    )
    parser.add_argument(
        "--no-health-server",
        action="store_true",
        help="Do not start the HTTP health server",
    )
    args = parser.parse_args(argv)
    if args.sessions is None and not (args.user and args.contract):
        parser.error("either --sessions or both --user and --contract are required")
    return args


def load_session_requests(args: argparse.Namespace) -> list[dict[str, Any]]:
    """Collect session requests from the CLI arguments."""
    if args.sessions is not None:
        data = json.loads(args.sessions.read_text(encoding="utf-8"))
        if not isinstance(data, list):
            raise ValueError(f"{args.sessions} must contain a JSON list")
        return data
    return [{
        "user_id": args.user,
        "contract_address": args.contract,
        "chain_id": args.chain,
        "tier": args.tier,
    }]


async def run(args: argparse.Namespace, app_settings: Settings) -> None:
    """Run until a termination signal arrives."""
    services = build_services(app_settings)
    await start_services(services, app_settings)

    runner = None
    if not args.no_health_server:
        app = create_health_app(services.monitor, services.manager, services.metrics)
        runner = await start_health_server(
            app, app_settings.health_server_host, app_settings.health_server_port
        )

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_event.set)

    try:
        for request in load_session_requests(args):
            try:
                await services.manager.start_indexing(
                    str(request["user_id"]),
                    request["contract_address"],
                    request.get("chain_id", "ethereum"),
                    request.get("tier", "free"),
                )
            except (IndexerError, ValueError, KeyError) as e:
                logger.error(f"Could not start session {request}: {e}")

        logger.info("Indexer running, press Ctrl+C to stop")
        await stop_event.wait()
    finally:
        await shutdown_handler(services, runner, app_settings.shutdown_timeout)


def main(argv: list[str] | None = None) -> None:
    """Console script entry point."""
    args = parse_args(argv)
    setup_logging(settings)
    try:
        asyncio.run(run(args, settings))
    except KeyboardInterrupt:
        logger.info("Interrupted")


if __name__ == "__main__":
    main()
