"""Principal subcommand - Maintain the capital recorded per account."""

import asyncio

from .common import console, open_service
from ..errors import PositionBookError
from ..models import AccountPrincipal, to_decimal


def register_subcommand(subparsers):
    """Register the principal subcommand with the argument parser.

    Args:
        subparsers: The argparse subparsers action to add the command to.
    """
    parser = subparsers.add_parser(
        "principal",
        help="Set or delete an account's principal",
        description="Record how much capital went into an account and how much is left uninvested.",
    )
    parser.add_argument("account", help="Account name")
    parser.add_argument("--principal", "-p", default="0", help="Capital paid in")
    parser.add_argument("--remaining", "-r", default="0", help="Capital not yet invested")
    parser.add_argument("--note", "-n", default="", help="Free-text note")
    parser.add_argument("--delete", action="store_true", help="Remove the account's entry instead")
    parser.set_defaults(func=run)


async def _update(args):
    service = await open_service(args)
    try:
        if args.delete:
            outcome = await service.delete_account_principal(args.account, wait_for_mirror=True)
            console.print(f"Deleted principal of {args.account}")
        else:
            principal = AccountPrincipal(
                principal=to_decimal(args.principal, "principal"),
                remaining=to_decimal(args.remaining, "remaining"),
                note=args.note,
            )
            outcome = await service.set_account_principal(args.account, principal, wait_for_mirror=True)
            console.print(f"Saved principal of {args.account}")
        if outcome.mirror_failed:
            console.print(f"[yellow]Saved locally; mirror sync failed: {outcome.mirror_error}[/yellow]")
    finally:
        await service.gateway.close()
    return 0


def run(args):
    try:
        return asyncio.run(_update(args))
    except (PositionBookError, ValueError) as e:
        print(f"Error: {e}")
        return 1
