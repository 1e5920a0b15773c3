"""Rebuild subcommand - Recompute positions from the transaction log."""

import asyncio

from .common import console, open_service, report_commit
from ..errors import PositionBookError


def register_subcommand(subparsers):
    """Register the rebuild subcommand with the argument parser.

    Args:
        subparsers: The argparse subparsers action to add the command to.
    """
    parser = subparsers.add_parser(
        "rebuild",
        help="Recompute positions from the transaction log",
        description=(
            "Replay every logged transaction, oldest first, into a fresh set of positions. "
            "Use this when positions no longer agree with the log."
        ),
    )
    parser.set_defaults(func=run)


async def _rebuild(args):
    service = await open_service(args)
    try:
        result = await service.rebuild_ledger()
        console.print(f"Rebuilt {len(service.ledger)} positions from {len(service.log)} transactions")
        await report_commit(result)
    finally:
        await service.gateway.close()
    return 0


def run(args):
    try:
        return asyncio.run(_rebuild(args))
    except (PositionBookError, ValueError) as e:
        print(f"Error: {e}")
        return 1
