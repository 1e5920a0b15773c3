"""Report subcommand - Display current positions and portfolio totals."""

import asyncio

from .common import console, format_money, format_percent, open_service
from ..currency import Currency
from ..errors import PositionBookError
from rich.panel import Panel
from rich.table import Table


def register_subcommand(subparsers):
    """Register the report subcommand with the argument parser.

    Args:
        subparsers: The argparse subparsers action to add the command to.
    """
    parser = subparsers.add_parser(
        "report",
        help="Display portfolio holdings report",
        description="Display current positions, allocation and account principals.",
    )
    parser.add_argument(
        "--currency",
        "-c",
        default=None,
        help="Reporting currency (default: base_currency from config, KRW)",
    )
    parser.set_defaults(func=run)


async def _show(args):
    service = await open_service(args)
    try:
        base_currency = Currency(args.currency.upper()) if args.currency else service.base_currency
        summary = service.summary(base_currency)
        principals = dict(service.principals)
    finally:
        await service.gateway.close()

    holdings_table = Table(title="Open Positions")
    holdings_table.add_column("Symbol", style="cyan", justify="left")
    holdings_table.add_column("Name", justify="left")
    holdings_table.add_column("Quantity", style="magenta", justify="right")
    holdings_table.add_column("Unit Price\n(Avg → Market)", justify="right")
    holdings_table.add_column(f"Book Value ({base_currency.value})", style="yellow", justify="right")
    holdings_table.add_column(f"Market Value ({base_currency.value})", style="green", justify="right")
    holdings_table.add_column("Gain/Loss %", justify="right")

    for valuation in summary.valuations:
        position = valuation.position
        holdings_table.add_row(
            position.symbol,
            position.name,
            f"{position.quantity:,}",
            f"[yellow]{format_money(position.avg_cost, position.currency)}[/yellow] → "
            f"[green]{format_money(position.current_price, position.currency)}[/green]",
            format_money(valuation.cost, base_currency),
            format_money(valuation.value, base_currency),
            format_percent(position.gain_loss_percent),
        )

    console.print(holdings_table)

    if summary.allocation:
        allocation_table = Table(title="Allocation by Asset Type")
        allocation_table.add_column("Type", style="cyan")
        allocation_table.add_column("Share", justify="right")
        for asset_type, share in sorted(summary.allocation.items(), key=lambda x: -x[1]):
            allocation_table.add_row(asset_type, f"{share:.1f}%")
        console.print(allocation_table)

    if principals:
        principal_table = Table(title="Account Principals")
        principal_table.add_column("Account", style="cyan")
        principal_table.add_column("Principal", justify="right")
        principal_table.add_column("Remaining", justify="right")
        principal_table.add_column("Note")
        for account, principal in sorted(principals.items()):
            principal_table.add_row(
                account,
                format_money(principal.principal, base_currency),
                format_money(principal.remaining, base_currency),
                principal.note,
            )
        console.print(principal_table)

    console.print(
        Panel(
            f"[bold green]Total Value: {format_money(summary.total_value, base_currency)}[/bold green]\n"
            f"Total Cost: {format_money(summary.total_cost, base_currency)}\n"
            f"Profit: {format_money(summary.total_profit, base_currency)} ({format_percent(summary.profit_percent)})",
            title="Summary",
        )
    )
    return 0


def run(args):
    """Display positions valued in the reporting currency.

    Args:
        args: Parsed argparse namespace with a currency attribute.

    Returns:
        int: Exit code (0 for success, 1 for errors).
    """
    try:
        return asyncio.run(_show(args))
    except (PositionBookError, ValueError) as e:
        print(f"Error: {e}")
        return 1
