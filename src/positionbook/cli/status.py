"""Status subcommand - Show where data is stored and whether the mirror is reachable."""

import asyncio

from .common import console, load_settings
from ..config import build_gateway
from ..errors import PositionBookError
from rich.table import Table


def register_subcommand(subparsers):
    """Register the status subcommand with the argument parser.

    Args:
        subparsers: The argparse subparsers action to add the command to.
    """
    parser = subparsers.add_parser(
        "status",
        help="Show storage and mirror status",
        description="Show the data directory, the configured mirror and which collections hold data.",
    )
    parser.add_argument(
        "--migrate",
        action="store_true",
        help="Push every locally stored collection to the mirror",
    )
    parser.set_defaults(func=run)


async def _status(args):
    settings = load_settings(args)
    gateway = build_gateway(settings)
    try:
        status = gateway.sync_status()
        console.print(f"Data directory: {settings.data_dir}")
        available = "[green]available[/green]" if status["mirrorAvailable"] else "[red]unavailable[/red]"
        console.print(f"Mirror: {status['mirror'] or 'none'} ({available})")

        table = Table(title="Collections")
        table.add_column("Collection", style="cyan")
        table.add_column("Stored locally", justify="center")
        for collection, present in status["hasPrimaryData"].items():
            table.add_row(collection, "yes" if present else "no")
        console.print(table)

        if args.migrate:
            report = await gateway.migrate_to_mirror()
            for collection, result in report.items():
                line = f"{collection}: {result.status}"
                if result.error:
                    line += f" ({result.error})"
                console.print(line)
            if any(not result.ok for result in report.values()):
                return 1
    finally:
        await gateway.close()
    return 0


def run(args):
    try:
        return asyncio.run(_status(args))
    except (PositionBookError, ValueError) as e:
        print(f"Error: {e}")
        return 1
