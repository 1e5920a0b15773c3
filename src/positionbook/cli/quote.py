"""Quote subcommand - Set current market prices of held positions."""

import asyncio

from .common import console, open_service, report_commit
from ..errors import PositionBookError


def register_subcommand(subparsers):
    """Register the quote subcommand with the argument parser.

    Args:
        subparsers: The argparse subparsers action to add the command to.
    """
    parser = subparsers.add_parser(
        "quote",
        help="Set current prices of held positions",
        description="Set current market prices, e.g. 'positionbook quote AAPL=190.5 005930=71500'.",
    )
    parser.add_argument("prices", nargs="+", metavar="SYMBOL=PRICE", help="Symbol and price pairs")
    parser.set_defaults(func=run)


def _parse_prices(pairs: list[str]) -> dict[str, str]:
    prices = {}
    for pair in pairs:
        symbol, sep, price = pair.partition("=")
        if not sep or not symbol.strip() or not price.strip():
            raise ValueError(f"Expected SYMBOL=PRICE, got '{pair}'")
        prices[symbol.strip().upper()] = price.strip()
    return prices


async def _refresh(args):
    prices = _parse_prices(args.prices)
    service = await open_service(args)
    try:
        held = [symbol for symbol in prices if symbol in service.ledger]
        result = await service.refresh_quotes(prices)
        console.print(f"Updated {len(held)} of {len(prices)} quotes")
        for symbol in prices:
            if symbol not in held:
                console.print(f"[yellow]Skipped {symbol}: not held[/yellow]")
        await report_commit(result)
    finally:
        await service.gateway.close()
    return 0


def run(args):
    try:
        return asyncio.run(_refresh(args))
    except (PositionBookError, ValueError) as e:
        print(f"Error: {e}")
        return 1
