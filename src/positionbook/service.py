"""Portfolio service: the transaction log, the ledger and persistence, kept in step.

Every command follows the same path: validate the intent, record it in the
transaction log, reconcile the ledger, persist both collections, then let the
gateway broadcast the change. If the primary store rejects a write, the
in-memory state is put back the way it was and the error propagates.
"""

from __future__ import annotations

import asyncio
import warnings
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any, Callable, Iterable

from .currency import Currency, ExchangeRateManager, FixedExchangeRateManager
from .errors import PartialReconciliationError, PrimaryStoreError
from .ledger import PositionLedger
from .models import AccountPrincipal, AssetMetadata, AssetReference, KnownAsset, Position, Transaction, TransactionKind, to_decimal
from .reconciliation import (
    CurrencyInferencePolicy,
    ReconciliationEngine,
    ReconciliationResult,
    infer_currency_from_symbol,
    metadata_from_transaction,
    resolve_metadata,
)
from .storage import ACCOUNT_PRINCIPALS, INVESTMENT_LOGS, PORTFOLIO_ASSETS, MirrorResult, PersistenceGateway, SaveOutcome
from .transactions import LogStats, TransactionFilter, TransactionLog, parse_transaction, validate_quote, validate_transaction
from .valuation import PortfolioSummary, summarize_positions


@dataclass(frozen=True)
class TransactionIntent:
    """A trade as the user entered it, before it becomes a Transaction."""

    date: date
    kind: TransactionKind
    asset: AssetReference
    quantity: Decimal
    price: Decimal
    account: str = ""
    note: str = ""
    # Latest market price, if the caller has one at hand.
    quote: Decimal | None = None


@dataclass
class CommitResult:
    """What a committed command changed, and how persistence went."""

    transaction_id: str | None = None
    results: list[ReconciliationResult] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    outcomes: list[SaveOutcome] = field(default_factory=list)

    @property
    def mirror_failed(self) -> bool | None:
        """True if any mirror write failed, None while some are still pending."""
        states = [outcome.mirror_failed for outcome in self.outcomes]
        if any(state is True for state in states):
            return True
        if any(state is None for state in states):
            return None
        return False

    async def wait_for_mirror(self) -> list[MirrorResult]:
        return [await outcome.wait_for_mirror() for outcome in self.outcomes]


def _parse_records(records: Any, parse: Callable[[dict[str, Any]], Any], collection: str) -> list[Any]:
    """Parse stored records, skipping (with a warning) those that are malformed."""
    parsed = []
    for record in records or []:
        try:
            parsed.append(parse(record))
        except (KeyError, TypeError, ValueError) as e:
            warnings.warn(f"Skipping malformed record in '{collection}': {e}", UserWarning, stacklevel=3)
    return parsed


class PortfolioService:
    """Async facade over the transaction log, the reconciliation engine and the gateway.

    Every command that writes the ledger or the log, quote refreshes
    included, is serialized by one log lock, so a save never carries another
    command's uncommitted changes. Within it, the affected symbols are
    locked through the engine.
    """

    def __init__(
        self,
        gateway: PersistenceGateway,
        engine: ReconciliationEngine | None = None,
        log: TransactionLog | None = None,
        currency_policy: CurrencyInferencePolicy = infer_currency_from_symbol,
        base_currency: Currency = Currency.KRW,
        rates: ExchangeRateManager | None = None,
    ):
        """Initialize the service.

        Args:
            gateway: Where the log, ledger and account data are persisted.
            engine: Reconciliation engine; a fresh one is created if None.
            log: Initial transaction log (normally filled by load()).
            currency_policy: Used when an intent names an asset without a currency.
            base_currency: Default reporting currency for summary().
            rates: Default exchange rates for summary().
        """
        self.gateway = gateway
        self.engine = engine or ReconciliationEngine(currency_policy=currency_policy)
        self.log = log or TransactionLog()
        self.principals: dict[str, AccountPrincipal] = {}
        self.base_currency = base_currency
        self.rates = rates or FixedExchangeRateManager()
        self._log_lock = asyncio.Lock()

    @property
    def ledger(self) -> PositionLedger:
        return self.engine.ledger

    # ── Loading ──────────────────────────────────────────

    async def load(self) -> None:
        """Load the log, the ledger and account principals through the gateway."""
        async with self._log_lock:
            log_records = await self.gateway.load(INVESTMENT_LOGS)
            position_records = await self.gateway.load(PORTFOLIO_ASSETS)
            principal_records = await self.gateway.load(ACCOUNT_PRINCIPALS)

            self.log = TransactionLog(_parse_records(log_records, parse_transaction, INVESTMENT_LOGS))
            self.ledger.replace_all(_parse_records(position_records, Position.from_dict, PORTFOLIO_ASSETS))
            self.principals = {}
            for account, record in (principal_records or {}).items():
                try:
                    self.principals[account] = AccountPrincipal.from_dict(record)
                except (TypeError, ValueError) as e:
                    warnings.warn(f"Skipping malformed principal for '{account}': {e}", UserWarning, stacklevel=2)

    # ── Queries ──────────────────────────────────────────

    def positions(self) -> list[Position]:
        return self.ledger.positions()

    def transactions(self, transaction_filter: TransactionFilter | None = None) -> list[Transaction]:
        return self.log.list(transaction_filter)

    def stats(self, transaction_filter: TransactionFilter | None = None) -> LogStats:
        return self.log.stats(transaction_filter)

    def summary(self, base_currency: Currency | None = None, rates: ExchangeRateManager | None = None) -> PortfolioSummary:
        return summarize_positions(self.ledger.positions(), base_currency or self.base_currency, rates or self.rates)

    # ── Commit plumbing ──────────────────────────────────

    def _records(self, collection: str) -> Any:
        if collection == INVESTMENT_LOGS:
            return self.log.to_records()
        if collection == PORTFOLIO_ASSETS:
            return self.ledger.to_records()
        raise ValueError(f"Not a service-managed collection: {collection}")

    def _capture(self, symbols: Iterable[str]) -> dict[str, Position | None]:
        captured: dict[str, Position | None] = {}
        for symbol in symbols:
            position = self.ledger.get(symbol)
            captured[symbol] = position.copy() if position is not None else None
        return captured

    async def _rollback(self, log_before: TransactionLog, positions_before: dict[str, Position | None], written: list[str]) -> None:
        self.log = log_before
        for symbol, position in positions_before.items():
            self.ledger.put(position, symbol=symbol)
        # Collections already written hold the failed state; put the old one back.
        for collection in written:
            try:
                await self.gateway.save(collection, self._records(collection))
            except PrimaryStoreError as e:
                print(f"[Storage] Rollback of '{collection}' failed: {e}", flush=True)

    async def _commit(
        self,
        collections: list[str],
        log_before: TransactionLog,
        positions_before: dict[str, Position | None],
        wait_for_mirror: bool,
    ) -> list[SaveOutcome]:
        outcomes: list[SaveOutcome] = []
        written: list[str] = []
        try:
            for collection in collections:
                outcomes.append(await self.gateway.save(collection, self._records(collection), wait_for_mirror=wait_for_mirror))
                written.append(collection)
        except PrimaryStoreError:
            await self._rollback(log_before, positions_before, written)
            raise
        return outcomes

    def _cached_metadata(self, symbol: str, previous: Transaction | None = None) -> AssetMetadata | None:
        """Metadata recorded with the newest logged trade of a symbol."""
        if previous is not None and previous.symbol == symbol:
            return metadata_from_transaction(previous)
        for transaction in self.log:
            if transaction.symbol == symbol:
                return metadata_from_transaction(transaction)
        return None

    def _to_transaction(
        self,
        intent: TransactionIntent,
        transaction_id: str | None = None,
        previous: Transaction | None = None,
    ) -> Transaction:
        cached = None
        if isinstance(intent.asset, KnownAsset) and intent.asset.symbol not in self.ledger:
            cached = self._cached_metadata(intent.asset.symbol, previous)
        metadata = resolve_metadata(intent.asset, self.engine.currency_policy, self.ledger, intent.account, cached)
        transaction = Transaction(
            id=transaction_id,
            date=intent.date,
            kind=intent.kind,
            symbol=metadata.symbol,
            quantity=to_decimal(intent.quantity, "quantity"),
            price=to_decimal(intent.price, "price"),
            currency=metadata.currency or Currency.USD,
            account=metadata.account,
            note=intent.note,
            name=metadata.name or None,
            asset_type=metadata.asset_type or None,
            category=metadata.category or None,
        )
        validate_transaction(transaction)
        return transaction

    # ── Commands ─────────────────────────────────────────

    async def record_transaction(self, intent: TransactionIntent, wait_for_mirror: bool = False) -> CommitResult:
        """
        Record a new trade and fold it into the ledger.

        Raises:
            ValidationError: If the intent is invalid. Nothing changes.
            PrimaryStoreError: If persisting failed. Memory is rolled back.
        """
        quote = validate_quote(intent.asset.symbol, intent.quote) if intent.quote is not None else None
        async with self._log_lock:
            transaction = self._to_transaction(intent)
            async with self.engine.locked(transaction.symbol):
                log_before = self.log.copy()
                positions_before = self._capture([transaction.symbol])
                try:
                    transaction_id = self.log.append(transaction)
                    result = self.engine.apply(self.log.get(transaction_id), quote=quote)
                except Exception:
                    self.log = log_before
                    raise
                outcomes = await self._commit([INVESTMENT_LOGS, PORTFOLIO_ASSETS], log_before, positions_before, wait_for_mirror)

        return CommitResult(
            transaction_id=transaction_id,
            results=[result],
            warnings=[result.warning] if result.warning else [],
            outcomes=outcomes,
        )

    async def edit_transaction(self, transaction_id: str, intent: TransactionIntent, wait_for_mirror: bool = False) -> CommitResult:
        """
        Replace a logged trade, keeping its id and its place in the log.

        The old trade is reverted and the new one applied as one staged
        change. If the apply step fails, the log keeps the old record, the
        ledger is rebuilt from the log, and PartialReconciliationError is
        raised with ``recovered`` set.

        Raises:
            TransactionNotFoundError: If the id is unknown.
            ValidationError: If the intent is invalid.
            PartialReconciliationError: If the edit could not be applied.
            PrimaryStoreError: If persisting failed. Memory is rolled back.
        """
        async with self._log_lock:
            old = self.log.get(transaction_id)
            new = self._to_transaction(intent, transaction_id, previous=old)
            async with self.engine.locked(old.symbol, new.symbol):
                log_before = self.log.copy()
                positions_before = self._capture({old.symbol, new.symbol})
                try:
                    results = self.engine.edit(old, new)
                except PartialReconciliationError as e:
                    print(f"[Reconcile] {e}; rebuilding ledger from the log", flush=True)
                    self.engine.rebuild(self.log.chronological())
                    e.recovered = True
                    await self._commit([PORTFOLIO_ASSETS], log_before, positions_before, wait_for_mirror)
                    raise
                self.log.update(transaction_id, new)
                outcomes = await self._commit([INVESTMENT_LOGS, PORTFOLIO_ASSETS], log_before, positions_before, wait_for_mirror)

        return CommitResult(
            transaction_id=transaction_id,
            results=results,
            warnings=[r.warning for r in results if r.warning],
            outcomes=outcomes,
        )

    async def delete_transaction(self, transaction_id: str, wait_for_mirror: bool = False) -> CommitResult:
        """Remove a logged trade and revert its effect on the ledger."""
        async with self._log_lock:
            old = self.log.get(transaction_id)
            async with self.engine.locked(old.symbol):
                log_before = self.log.copy()
                positions_before = self._capture([old.symbol])
                result = self.engine.revert(old)
                self.log.remove(transaction_id)
                outcomes = await self._commit([INVESTMENT_LOGS, PORTFOLIO_ASSETS], log_before, positions_before, wait_for_mirror)

        return CommitResult(
            transaction_id=transaction_id,
            results=[result],
            warnings=[result.warning] if result.warning else [],
            outcomes=outcomes,
        )

    async def rebuild_ledger(self, wait_for_mirror: bool = False) -> CommitResult:
        """Recompute every position by replaying the log, oldest first."""
        async with self._log_lock:
            symbols = set(self.ledger.symbols()) | {txn.symbol for txn in self.log}
            async with self.engine.locked(*symbols):
                positions_before = self._capture(symbols)
                replay_warnings = self.engine.rebuild(self.log.chronological())
                outcomes = await self._commit([PORTFOLIO_ASSETS], self.log, positions_before, wait_for_mirror)

        print(f"[Reconcile] Rebuilt {len(self.ledger)} positions from {len(self.log)} transactions", flush=True)
        return CommitResult(warnings=replay_warnings, outcomes=outcomes)

    async def refresh_quotes(self, prices: dict[str, Any], wait_for_mirror: bool = False) -> CommitResult:
        """Set current prices of held symbols. Unheld symbols are ignored.

        Raises:
            ValidationError: If any price is not a finite positive number.
                Nothing changes.
        """
        quotes = {symbol: validate_quote(symbol, price) for symbol, price in prices.items()}
        async with self._log_lock:
            async with self.engine.locked(*quotes):
                positions_before = self._capture(quotes)
                self.engine.refresh_quotes(quotes)
                outcomes = await self._commit([PORTFOLIO_ASSETS], self.log, positions_before, wait_for_mirror)
        return CommitResult(outcomes=outcomes)

    # ── Account principals and settings ──────────────────

    async def set_account_principal(self, account: str, principal: AccountPrincipal, wait_for_mirror: bool = False) -> SaveOutcome:
        outcome = await self.gateway.save_account_principal(account, principal.to_dict(), wait_for_mirror=wait_for_mirror)
        self.principals[account] = principal
        return outcome

    async def delete_account_principal(self, account: str, wait_for_mirror: bool = False) -> SaveOutcome:
        outcome = await self.gateway.delete_account_principal(account, wait_for_mirror=wait_for_mirror)
        self.principals.pop(account, None)
        return outcome

    async def get_setting(self, key: str, default: Any = None) -> Any:
        return await self.gateway.get_setting(key, default)

    async def set_setting(self, key: str, value: Any, wait_for_mirror: bool = False) -> SaveOutcome:
        return await self.gateway.set_setting(key, value, wait_for_mirror=wait_for_mirror)
