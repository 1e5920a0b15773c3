"""Log subcommand - List the investment log with monthly totals."""

import asyncio

from .common import console, format_money, open_service
from ..errors import PositionBookError
from ..models import TransactionKind
from ..transactions import TransactionFilter
from rich.panel import Panel
from rich.table import Table


def register_subcommand(subparsers):
    """Register the log subcommand with the argument parser.

    Args:
        subparsers: The argparse subparsers action to add the command to.
    """
    parser = subparsers.add_parser(
        "log",
        help="List recorded transactions",
        description="List recorded transactions, newest first, with buy and sell totals.",
    )
    parser.add_argument("--type", "-t", choices=[k.value for k in TransactionKind], default=None, help="Only buys or only sells")
    parser.add_argument("--month", "-m", type=int, default=None, help="Only transactions in this month (1-12)")
    parser.set_defaults(func=run)


async def _show(args):
    service = await open_service(args)
    try:
        transaction_filter = TransactionFilter(
            kind=TransactionKind(args.type) if args.type else None,
            month_index=args.month - 1 if args.month else None,
        )
        transactions = service.transactions(transaction_filter)
        stats = service.stats(transaction_filter)
    finally:
        await service.gateway.close()

    table = Table(title=f"Investment Log ({len(transactions)} transactions)")
    table.add_column("Date", style="cyan")
    table.add_column("Type")
    table.add_column("Symbol", style="cyan")
    table.add_column("Quantity", style="magenta", justify="right")
    table.add_column("Price", justify="right")
    table.add_column("Amount", style="yellow", justify="right")
    table.add_column("Account")
    table.add_column("Note")
    table.add_column("ID", style="dim")

    for txn in transactions:
        kind = "[green]buy[/green]" if txn.kind == TransactionKind.BUY else "[red]sell[/red]"
        table.add_row(
            txn.date.isoformat(),
            kind,
            txn.symbol,
            f"{txn.quantity:,}",
            format_money(txn.price, txn.currency),
            format_money(txn.amount, txn.currency) if txn.amount is not None else "N/A",
            txn.account,
            txn.note,
            txn.id or "",
        )

    console.print(table)
    # Amounts are summed as recorded, without currency conversion.
    console.print(
        Panel(
            f"Bought: [green]{stats.total_buy:,.2f}[/green]   Sold: [red]{stats.total_sell:,.2f}[/red]   "
            f"Transactions: {stats.transactions}",
            title="Totals",
        )
    )
    return 0


def run(args):
    """List transactions matching the --type and --month filters.

    Returns:
        int: Exit code (0 for success, 1 for errors).
    """
    if args.month is not None and not 1 <= args.month <= 12:
        print(f"Error: month must be between 1 and 12, got {args.month}")
        return 1
    try:
        return asyncio.run(_show(args))
    except (PositionBookError, ValueError) as e:
        print(f"Error: {e}")
        return 1
