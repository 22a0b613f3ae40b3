#!/usr/bin/env python3
"""
Reshard Command-Line Entry Point

Moves a range of hash slots from one cluster node to another.

Usage:
    python -m reshard <src-host> <src-port> <dest-host> <dest-port> <slot-start> <slot-end>
    python -m reshard 10.0.0.1 7000 10.0.0.2 7000 0 99 --timeout 5000
    python -m reshard 10.0.0.1 7000 10.0.0.2 7000 100 100 --debug

Exit status:
    0   every slot completed
    1   at least one slot failed (all slots were still attempted)
    2   the run could not start (bad arguments, meet or id resolution failed)

Environment Variables:
    RESHARD_MIGRATE_TIMEOUT_MS  - Per-key MIGRATE timeout
    RESHARD_PASSWORD            - AUTH password for every node
    RESHARD_COMMAND_ATTEMPTS    - Attempts per command on connection failure
    RESHARD_DEBUG               - Enable debug logging (true/false)
"""

import argparse
import asyncio
import logging
import signal
import sys
from typing import List, Optional

from .cluster.nodes import Address
from .cluster.slots import HashSlotRange
from .config.settings import settings
from .errors import ReshardError
from .migration.orchestrator import MigrationConfig, MigrationOrchestrator, MigrationReport
from .network.client import CommandPolicy, NodeClient

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_SLOT_FAILED = 1
EXIT_NOT_STARTED = 2


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="reshard",
        description="Move a range of hash slots between two Redis Cluster nodes",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )

    parser.add_argument("src_host", help="Source node host")
    parser.add_argument("src_port", type=int, help="Source node port")
    parser.add_argument("dest_host", help="Destination node host")
    parser.add_argument("dest_port", type=int, help="Destination node port")
    parser.add_argument("slot_start", type=int, help="First slot to move")
    parser.add_argument("slot_end", type=int, help="Last slot to move (inclusive)")

    parser.add_argument(
        "--timeout",
        type=int,
        default=settings.MIGRATE_TIMEOUT_MS,
        help="Per-key MIGRATE timeout in milliseconds",
    )

    parser.add_argument(
        "--password",
        type=str,
        default=settings.PASSWORD,
        help="AUTH password for every node",
    )

    parser.add_argument(
        "--attempts",
        type=int,
        default=settings.COMMAND_ATTEMPTS,
        help="Attempts per command when a node is unreachable",
    )

    parser.add_argument(
        "--no-rollback",
        action="store_true",
        help="Leave slot flags set when a slot fails before any key moved",
    )

    parser.add_argument(
        "--debug",
        action="store_true",
        default=settings.DEBUG,
        help="Enable debug logging (echoes every command sent)",
    )

    return parser.parse_args(argv)


def setup_logging(debug: bool = False) -> None:
    """Configure logging based on debug flag."""
    level = logging.DEBUG if debug else getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)

    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler(sys.stdout),
        ]
    )


async def run(args: argparse.Namespace, client=None) -> int:
    """
    Run one migration and return the process exit status.

    Args:
        args: Parsed arguments
        client: NodeClient to use (one is created and closed if not provided)
    """
    try:
        config = MigrationConfig(
            source=Address(args.src_host, args.src_port),
            destination=Address(args.dest_host, args.dest_port),
            slots=HashSlotRange(args.slot_start, args.slot_end),
            timeout_ms=args.timeout,
            rollback_on_abort=not args.no_rollback,
        )
        policy = CommandPolicy(attempts=args.attempts)
    except ValueError as e:
        logger.error(f"Invalid arguments: {e}")
        return EXIT_NOT_STARTED

    owns_client = client is None
    if owns_client:
        client = NodeClient(policy=policy, password=args.password)

    orchestrator = MigrationOrchestrator(client, config)
    signals = _install_signal_handlers(orchestrator)

    try:
        try:
            await orchestrator.prepare()
        except (ReshardError, ValueError) as e:
            logger.error(f"Cannot start migration: {e}")
            return EXIT_NOT_STARTED

        logger.info("Cluster nodes:")
        logger.info("  IP:PORT | NODE_ID")
        for node in sorted(orchestrator.topology.nodes, key=lambda n: str(n.address)):
            logger.info(f"  {node.address} | {node.id} ({node.role.value})")

        report = MigrationReport()
        async for outcome in orchestrator.run():
            report.outcomes.append(outcome)

        if orchestrator.stop_requested and len(report.outcomes) < len(config.slots):
            logger.warning(
                f"Stopped after {len(report.outcomes)} of {len(config.slots)} slots"
            )
        logger.info(report.summary())
        for failed in report.failed:
            logger.error(f"  {failed}")

        if not report.ok or len(report.outcomes) < len(config.slots):
            return EXIT_SLOT_FAILED
        return EXIT_OK
    finally:
        loop = asyncio.get_running_loop()
        for sig in signals:
            loop.remove_signal_handler(sig)
        if owns_client:
            await client.close()


def _install_signal_handlers(orchestrator: MigrationOrchestrator) -> List[signal.Signals]:
    """Ask the orchestrator to stop between slots on SIGINT/SIGTERM (Unix only)."""
    if sys.platform == 'win32':
        return []

    loop = asyncio.get_running_loop()

    def request_stop(sig: signal.Signals) -> None:
        logger.info(f"Received signal {sig.name}, stopping after the current slot...")
        orchestrator.stop()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, request_stop, sig)
    return [signal.SIGTERM, signal.SIGINT]


def main(argv: Optional[List[str]] = None) -> None:
    """Main entry point."""
    args = parse_args(argv)
    setup_logging(debug=args.debug)

    logger.info(
        f"Resharding slots {args.slot_start}-{args.slot_end} from "
        f"{args.src_host}:{args.src_port} to {args.dest_host}:{args.dest_port}"
    )
    sys.exit(asyncio.run(run(args)))


if __name__ == "__main__":
    main()
