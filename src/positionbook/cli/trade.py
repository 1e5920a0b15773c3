"""Trade subcommands - record, edit and delete transactions."""

import asyncio
from datetime import date

from .common import console, open_service, report_commit
from ..currency import parse_currency
from ..errors import PartialReconciliationError, PositionBookError
from ..models import AssetMetadata, KnownAsset, NewAsset, TransactionKind, to_decimal
from ..service import TransactionIntent


def _add_trade_arguments(parser):
    parser.add_argument("symbol", help="Ticker symbol, e.g. AAPL or 005930")
    parser.add_argument("quantity", help="Number of units")
    parser.add_argument("price", help="Price per unit, in the asset's currency")
    parser.add_argument("--date", "-d", default=None, help="Trade date as YYYY-MM-DD (default: today)")
    parser.add_argument("--account", "-a", default="", help="Account the trade belongs to")
    parser.add_argument("--note", "-n", default="", help="Free-text note")
    parser.add_argument("--name", default=None, help="Asset name, for a symbol not held yet")
    parser.add_argument("--asset-type", default=None, help="Asset type, e.g. Stock or ETF")
    parser.add_argument("--category", default=None, help="Category used for grouping")
    parser.add_argument(
        "--currency",
        "-c",
        default=None,
        help="Currency of the asset (default: inferred from the symbol)",
    )
    parser.add_argument("--quote", default=None, help="Current market price to record with the trade")


def register_subcommand(subparsers):
    """Register the buy, sell, edit and delete subcommands.

    Args:
        subparsers: The argparse subparsers action to add the commands to.
    """
    buy = subparsers.add_parser("buy", help="Record a purchase", description="Record a purchase and update the position.")
    _add_trade_arguments(buy)
    buy.set_defaults(func=run_trade, kind=TransactionKind.BUY)

    sell = subparsers.add_parser("sell", help="Record a sale", description="Record a sale and update the position.")
    _add_trade_arguments(sell)
    sell.set_defaults(func=run_trade, kind=TransactionKind.SELL)

    edit = subparsers.add_parser(
        "edit",
        help="Replace a logged transaction",
        description="Replace a logged transaction, keeping its id.",
    )
    edit.add_argument("id", help="Transaction id (see 'positionbook log')")
    edit.add_argument("kind", choices=[k.value for k in TransactionKind], help="buy or sell")
    _add_trade_arguments(edit)
    edit.set_defaults(func=run_edit)

    delete = subparsers.add_parser(
        "delete",
        help="Delete a logged transaction",
        description="Delete a logged transaction and revert its effect on the position.",
    )
    delete.add_argument("id", help="Transaction id (see 'positionbook log')")
    delete.set_defaults(func=run_delete)


def _intent_from_args(args, kind: TransactionKind) -> TransactionIntent:
    if args.name or args.asset_type or args.category or args.currency:
        asset = NewAsset(
            AssetMetadata(
                symbol=args.symbol,
                currency=parse_currency(args.currency, None) if args.currency else None,
                name=args.name or "",
                asset_type=args.asset_type or "",
                account=args.account,
                category=args.category or "",
            )
        )
    else:
        asset = KnownAsset(args.symbol)

    return TransactionIntent(
        date=date.fromisoformat(args.date) if args.date else date.today(),
        kind=kind,
        asset=asset,
        quantity=to_decimal(args.quantity, "quantity"),
        price=to_decimal(args.price, "price"),
        account=args.account,
        note=args.note,
        quote=to_decimal(args.quote, "quote") if args.quote else None,
    )


async def _record(args):
    service = await open_service(args)
    try:
        result = await service.record_transaction(_intent_from_args(args, args.kind))
        transaction = service.log.get(result.transaction_id)
        console.print(
            f"Recorded {transaction.kind.value} {transaction.quantity} {transaction.symbol} "
            f"@ {transaction.price} {transaction.currency.value} [dim](id {transaction.id})[/dim]"
        )
        await report_commit(result)
    finally:
        await service.gateway.close()
    return 0


async def _edit(args):
    service = await open_service(args)
    try:
        result = await service.edit_transaction(args.id, _intent_from_args(args, TransactionKind(args.kind)))
        console.print(f"Updated transaction {args.id}")
        await report_commit(result)
    finally:
        await service.gateway.close()
    return 0


async def _delete(args):
    service = await open_service(args)
    try:
        result = await service.delete_transaction(args.id)
        console.print(f"Deleted transaction {args.id}")
        await report_commit(result)
    finally:
        await service.gateway.close()
    return 0


def _run(coroutine):
    try:
        return asyncio.run(coroutine)
    except PartialReconciliationError as e:
        print(f"Error: {e}")
        if e.recovered:
            print("The ledger was rebuilt from the transaction log.")
        return 1
    except (PositionBookError, ValueError) as e:
        print(f"Error: {e}")
        return 1


def run_trade(args):
    """Record a buy or sell.

    Returns:
        int: Exit code (0 for success, 1 for errors).
    """
    return _run(_record(args))


def run_edit(args):
    return _run(_edit(args))


def run_delete(args):
    return _run(_delete(args))
