"""Position reconciliation: folding transactions into pooled-average positions.

A position keeps no history, only quantity and weighted-average cost. Every
transaction is therefore applied by arithmetic, and undone (for edits and
deletes) by the algebraic inverse of that arithmetic:

    buy      avg' = (q*avg + qty*price) / (q + qty)
    sell     q'   = q - qty, avg unchanged, removed when q' <= 0
    -buy     avg' = max(q*avg - qty*price, 0) / (q - qty)
    -sell    q'   = q + qty, avg unchanged

Reverting is exact only if nothing else touched the pooled average between
apply and revert. When the two drift apart, rebuild() replays the whole log.
"""

from __future__ import annotations

import asyncio
import re
import warnings
from contextlib import AsyncExitStack, asynccontextmanager
from dataclasses import dataclass
from decimal import Decimal
from typing import AsyncIterator, Callable, Iterable

from .currency import Currency
from .errors import PartialReconciliationError, ReconciliationWarning
from .ledger import PositionLedger
from .models import (
    AssetMetadata,
    AssetReference,
    KnownAsset,
    NewAsset,
    Position,
    Transaction,
    TransactionKind,
    normalize_symbol,
)
from .transactions import validate_transaction

CurrencyInferencePolicy = Callable[[str], Currency]

# Domestic listings are plain 5-6 digit codes, e.g. "005930".
_LOCAL_SYMBOL_PATTERN = re.compile(r"^\d{5,6}$")


def make_symbol_shape_policy(
    local_currency: Currency = Currency.KRW,
    foreign_currency: Currency = Currency.USD,
) -> CurrencyInferencePolicy:
    """Build a policy that guesses an instrument's currency from its symbol.

    Symbols made of 5 or 6 decimal digits are treated as local listings;
    anything else is assumed to trade in the foreign currency. This is a
    heuristic, not a guarantee.
    """

    def infer(symbol: str) -> Currency:
        if _LOCAL_SYMBOL_PATTERN.match(normalize_symbol(symbol)):
            return local_currency
        return foreign_currency

    return infer


infer_currency_from_symbol: CurrencyInferencePolicy = make_symbol_shape_policy()


def resolve_metadata(
    reference: AssetReference,
    policy: CurrencyInferencePolicy = infer_currency_from_symbol,
    ledger: PositionLedger | None = None,
    account: str = "",
    cached: AssetMetadata | None = None,
) -> AssetMetadata:
    """Turn an asset reference into the metadata a new position needs.

    Known assets take their metadata from the ledger when held, then from
    cached (metadata recorded with an earlier transaction of the symbol).
    Failing both, and for new assets with no currency, the currency comes
    from the policy.
    """
    if isinstance(reference, NewAsset):
        meta = reference.metadata
        currency = meta.currency or policy(meta.symbol)
        return AssetMetadata(
            symbol=meta.symbol,
            currency=currency,
            name=meta.name or meta.symbol,
            asset_type=meta.asset_type,
            account=meta.account or account,
            category=meta.category,
        )

    if isinstance(reference, KnownAsset):
        held = ledger.get(reference.symbol) if ledger is not None else None
        if held is not None:
            return AssetMetadata(
                symbol=held.symbol,
                currency=held.currency,
                name=held.name,
                asset_type=held.asset_type,
                account=held.account or account,
                category=held.category,
            )
        if cached is not None and cached.symbol == reference.symbol:
            return AssetMetadata(
                symbol=cached.symbol,
                currency=cached.currency or policy(cached.symbol),
                name=cached.name or cached.symbol,
                asset_type=cached.asset_type,
                account=cached.account or account,
                category=cached.category,
            )
        return AssetMetadata(
            symbol=reference.symbol,
            currency=policy(reference.symbol),
            name=reference.symbol,
            account=account,
        )

    raise TypeError(f"Unsupported asset reference: {reference!r}")


def metadata_from_transaction(transaction: Transaction) -> AssetMetadata:
    """The asset metadata a transaction cached when it was recorded."""
    return AssetMetadata(
        symbol=transaction.symbol,
        currency=transaction.currency,
        name=transaction.name or transaction.symbol,
        asset_type=transaction.asset_type or "",
        account=transaction.account,
        category=transaction.category or "",
    )


# ── Pure position arithmetic ─────────────────────────────────


def apply_buy(
    position: Position | None,
    quantity: Decimal,
    price: Decimal,
    metadata: AssetMetadata,
    quote: Decimal | None = None,
) -> Position:
    """Pool a purchase into a position, opening it if absent."""
    if position is None:
        return Position(
            symbol=metadata.symbol,
            quantity=quantity,
            avg_cost=price,
            current_price=quote if quote is not None else price,
            currency=metadata.currency or Currency.USD,
            name=metadata.name or metadata.symbol,
            asset_type=metadata.asset_type,
            account=metadata.account,
            category=metadata.category,
        )

    total_cost = position.quantity * position.avg_cost + quantity * price
    new_quantity = position.quantity + quantity
    updated = position.copy()
    updated.quantity = new_quantity
    updated.avg_cost = total_cost / new_quantity if new_quantity != 0 else price
    if quote is not None:
        updated.current_price = quote
    return updated


def apply_sell(
    position: Position,
    quantity: Decimal,
    price: Decimal,
    quote: Decimal | None = None,
) -> Position | None:
    """Reduce a position by a sale. Returns None when nothing is left.

    Selling more than is held is not rejected; the position is simply
    removed. Sales never change the average cost.
    """
    new_quantity = position.quantity - quantity
    if new_quantity <= 0:
        return None
    updated = position.copy()
    updated.quantity = new_quantity
    if quote is not None:
        updated.current_price = quote
    return updated


def revert_buy(position: Position, quantity: Decimal, price: Decimal) -> Position | None:
    """Undo a purchase previously pooled with apply_buy()."""
    new_quantity = position.quantity - quantity
    if new_quantity <= 0:
        return None
    new_total_cost = position.quantity * position.avg_cost - quantity * price
    updated = position.copy()
    updated.quantity = new_quantity
    updated.avg_cost = max(new_total_cost, Decimal("0")) / new_quantity
    return updated


def revert_sell(
    position: Position | None,
    quantity: Decimal,
    price: Decimal,
    metadata: AssetMetadata,
) -> Position:
    """Undo a sale previously applied with apply_sell().

    If the sale had closed the position, it is reopened from the
    transaction's cached metadata. The ledger kept no record of the closed
    position, so its cost basis falls back to the sale price.
    """
    if position is None:
        return apply_buy(None, quantity, price, metadata)
    updated = position.copy()
    updated.quantity = position.quantity + quantity
    return updated


def realized_profit(position: Position, quantity: Decimal, price: Decimal) -> Decimal:
    """Profit realized by selling quantity at price against the pooled cost."""
    return (price - position.avg_cost) * quantity


# ── Engine ───────────────────────────────────────────────────


@dataclass(frozen=True)
class ReconciliationResult:
    """What applying or reverting one transaction did to its position."""

    transaction_id: str | None
    symbol: str
    action: str
    before: Position | None
    after: Position | None
    warning: str | None = None
    realized_profit: Decimal | None = None

    @property
    def created(self) -> bool:
        return self.before is None and self.after is not None

    @property
    def removed(self) -> bool:
        return self.before is not None and self.after is None


def _step(
    position: Position | None,
    transaction: Transaction,
    action: str,
    quote: Decimal | None = None,
) -> ReconciliationResult:
    """Compute the effect of applying or reverting transaction on position."""
    validate_transaction(transaction)
    qty, price = transaction.quantity, transaction.price
    warning = None
    profit = None
    after: Position | None

    if action == "apply" and transaction.kind == TransactionKind.BUY:
        after = apply_buy(position, qty, price, metadata_from_transaction(transaction), quote)
    elif action == "apply" and transaction.kind == TransactionKind.SELL:
        if position is None:
            after = None
            warning = f"Sell of {transaction.symbol} ignored: symbol is not held"
        else:
            profit = realized_profit(position, qty, price)
            after = apply_sell(position, qty, price, quote)
    elif action == "revert" and transaction.kind == TransactionKind.BUY:
        if position is None:
            after = None
            warning = f"Revert of buy {transaction.id} ignored: {transaction.symbol} is not held"
        else:
            after = revert_buy(position, qty, price)
    elif action == "revert" and transaction.kind == TransactionKind.SELL:
        after = revert_sell(position, qty, price, metadata_from_transaction(transaction))
    else:
        raise ValueError(f"Unknown reconciliation action: {action}")

    return ReconciliationResult(
        transaction_id=transaction.id,
        symbol=transaction.symbol,
        action=action,
        before=position,
        after=after,
        warning=warning,
        realized_profit=profit,
    )


class ReconciliationEngine:
    """Applies and reverts transactions against a PositionLedger.

    The engine itself is synchronous. Callers running on an event loop
    serialize access to a symbol with locked(), so that a reconciliation and
    a quote refresh never read-modify-write the same position concurrently.
    """

    def __init__(
        self,
        ledger: PositionLedger | None = None,
        currency_policy: CurrencyInferencePolicy = infer_currency_from_symbol,
    ):
        self.ledger = ledger if ledger is not None else PositionLedger()
        self.currency_policy = currency_policy
        self._locks: dict[str, asyncio.Lock] = {}

    # Locking

    def symbol_lock(self, symbol: str) -> asyncio.Lock:
        key = normalize_symbol(symbol)
        if key not in self._locks:
            self._locks[key] = asyncio.Lock()
        return self._locks[key]

    @asynccontextmanager
    async def locked(self, *symbols: str) -> AsyncIterator[None]:
        """Hold the locks of several symbols, acquired in a fixed order."""
        async with AsyncExitStack() as stack:
            for symbol in sorted({normalize_symbol(s) for s in symbols if s}):
                await stack.enter_async_context(self.symbol_lock(symbol))
            yield

    # Single-transaction operations

    def _commit(self, result: ReconciliationResult) -> ReconciliationResult:
        if result.warning:
            warnings.warn(result.warning, ReconciliationWarning, stacklevel=3)
        else:
            self.ledger.put(result.after, symbol=result.symbol)
        return result

    def apply(self, transaction: Transaction, quote: Decimal | None = None) -> ReconciliationResult:
        """Fold a transaction into the ledger."""
        return self._commit(_step(self.ledger.get(transaction.symbol), transaction, "apply", quote))

    def revert(self, transaction: Transaction) -> ReconciliationResult:
        """Undo a transaction's effect on the ledger."""
        return self._commit(_step(self.ledger.get(transaction.symbol), transaction, "revert"))

    def edit(self, old: Transaction, new: Transaction) -> list[ReconciliationResult]:
        """Replace old's effect with new's as a single staged change."""
        return EditCommand(self, old, new).execute()

    # Whole-ledger operations

    def rebuild(self, transactions: Iterable[Transaction]) -> list[str]:
        """Recompute the ledger by replaying transactions oldest first.

        Current prices of symbols that are still held afterwards are carried
        over from the previous ledger, since they come from outside.

        Returns:
            Warnings raised during the replay (e.g. sells of unheld symbols).
        """
        previous = {position.symbol: position.current_price for position in self.ledger}
        rebuilt = PositionLedger()
        replay_warnings: list[str] = []

        for transaction in transactions:
            result = _step(rebuilt.get(transaction.symbol), transaction, "apply")
            if result.warning:
                replay_warnings.append(result.warning)
                continue
            rebuilt.put(result.after, symbol=result.symbol)

        for position in rebuilt:
            if position.symbol in previous:
                position.current_price = previous[position.symbol]

        self.ledger.replace_all(rebuilt)
        for message in replay_warnings:
            warnings.warn(message, ReconciliationWarning, stacklevel=2)
        return replay_warnings

    def refresh_quotes(self, prices: dict[str, Decimal]) -> list[str]:
        """Set current prices of held symbols. Returns the symbols updated."""
        updated = []
        for symbol, price in prices.items():
            position = self.ledger.get(symbol)
            if position is None:
                continue
            refreshed = position.copy()
            refreshed.current_price = price
            self.ledger.put(refreshed)
            updated.append(refreshed.symbol)
        return updated


class EditCommand:
    """Revert one transaction and apply its replacement, atomically.

    Both steps run against staged copies of the affected positions. The
    ledger is written only after both have succeeded; if the apply step
    fails after the revert succeeded, PartialReconciliationError is raised
    and the ledger is left exactly as it was.
    """

    def __init__(self, engine: ReconciliationEngine, old: Transaction, new: Transaction):
        self.engine = engine
        self.old = old
        self.new = new
        self._staged: dict[str, Position | None] | None = None
        self.results: list[ReconciliationResult] = []

    def stage(self) -> list[ReconciliationResult]:
        ledger = self.engine.ledger
        staged: dict[str, Position | None] = {}
        for symbol in (self.old.symbol, self.new.symbol):
            held = ledger.get(symbol)
            staged[symbol] = held.copy() if held is not None else None

        reverted = _step(staged[self.old.symbol], self.old, "revert")
        if not reverted.warning:
            staged[self.old.symbol] = reverted.after

        try:
            applied = _step(staged[self.new.symbol], self.new, "apply")
        except Exception as e:
            raise PartialReconciliationError(str(self.old.id), e) from e
        if not applied.warning:
            staged[self.new.symbol] = applied.after

        self._staged = staged
        self.results = [reverted, applied]
        return self.results

    def commit(self) -> None:
        if self._staged is None:
            raise RuntimeError("EditCommand.commit() called before stage()")
        for symbol, position in self._staged.items():
            self.engine.ledger.put(position, symbol=symbol)
        for result in self.results:
            if result.warning:
                warnings.warn(result.warning, ReconciliationWarning, stacklevel=4)

    def execute(self) -> list[ReconciliationResult]:
        results = self.stage()
        self.commit()
        return results
