"""The investment log: an ordered, most-recent-first store of transactions."""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Callable, Iterable, Iterator

from .errors import TransactionNotFoundError, ValidationError
from .models import Transaction, TransactionKind, to_decimal


def _new_transaction_id() -> str:
    return uuid.uuid4().hex


def validate_transaction(transaction: Transaction) -> None:
    """Reject a transaction that must never enter the log.

    Args:
        transaction: The candidate record.

    Raises:
        ValidationError: If the symbol is missing, or quantity or price is
            not a finite, strictly positive number.
    """
    if not transaction.symbol:
        raise ValidationError("Transaction symbol is required")

    for field_name, value in (("quantity", transaction.quantity), ("price", transaction.price)):
        if not value.is_finite():
            raise ValidationError(f"Transaction {field_name} must be finite, got {value}")
        if value <= 0:
            raise ValidationError(f"Transaction {field_name} must be positive, got {value}")


def validate_quote(symbol: str, value: Any) -> Decimal:
    """Convert a market quote to a Decimal, rejecting anything but a finite positive price."""
    price = to_decimal(value, f"price of {symbol}")
    if not price.is_finite() or price <= 0:
        raise ValidationError(f"Quote for {symbol} must be a finite positive price, got {value}")
    return price


def parse_transaction(record: dict[str, Any]) -> Transaction:
    """Read a stored log record, rejecting one that validate_transaction would refuse."""
    transaction = Transaction.from_dict(record)
    validate_transaction(transaction)
    return transaction


@dataclass(frozen=True)
class TransactionFilter:
    """Predicate over log entries.

    month_index is 0-based (January is 0). None means "any".
    """

    kind: TransactionKind | None = None
    month_index: int | None = None

    def matches(self, transaction: Transaction) -> bool:
        if self.kind is not None and transaction.kind != self.kind:
            return False
        if self.month_index is not None and transaction.date.month - 1 != self.month_index:
            return False
        return True


@dataclass(frozen=True)
class LogStats:
    """Buy/sell totals over a set of log entries."""

    total_buy: Decimal
    total_sell: Decimal
    transactions: int


class TransactionLog:
    """Insertion-ordered collection of transactions, newest first.

    The log never reorders its entries. Edits replace a record in place and
    keep its id; deletes remove it.
    """

    def __init__(
        self,
        transactions: Iterable[Transaction] | None = None,
        id_factory: Callable[[], str] = _new_transaction_id,
    ):
        """Initialize the log.

        Args:
            transactions: Existing records in log order (newest first).
            id_factory: Produces ids for records appended without one.
        """
        self._transactions: list[Transaction] = list(transactions or [])
        self._id_factory = id_factory

    def __len__(self) -> int:
        return len(self._transactions)

    def __iter__(self) -> Iterator[Transaction]:
        return iter(list(self._transactions))

    def _index_of(self, transaction_id: str) -> int:
        for index, txn in enumerate(self._transactions):
            if txn.id == transaction_id:
                return index
        raise TransactionNotFoundError(transaction_id)

    def get(self, transaction_id: str) -> Transaction:
        return self._transactions[self._index_of(transaction_id)]

    def __contains__(self, transaction_id: object) -> bool:
        return any(txn.id == transaction_id for txn in self._transactions)

    def append(self, transaction: Transaction) -> str:
        """Validate a transaction and insert it at the head of the log.

        Returns:
            The id of the stored record (assigned if the record had none).

        Raises:
            ValidationError: If the record is invalid or its id is taken.
        """
        validate_transaction(transaction)

        if transaction.id is None:
            transaction = transaction.with_id(self._id_factory())
        elif transaction.id in self:
            raise ValidationError(f"Duplicate transaction id: {transaction.id}")

        self._transactions.insert(0, transaction)
        return transaction.id  # type: ignore[return-value]

    def update(self, transaction_id: str, transaction: Transaction) -> Transaction:
        """Replace a record in place, keeping its id and position.

        Returns:
            The record that was replaced.

        Raises:
            TransactionNotFoundError: If no record has this id.
            ValidationError: If the replacement is invalid.
        """
        index = self._index_of(transaction_id)
        validate_transaction(transaction)
        previous = self._transactions[index]
        self._transactions[index] = transaction.with_id(transaction_id)
        return previous

    def remove(self, transaction_id: str) -> Transaction:
        """Delete a record.

        Raises:
            TransactionNotFoundError: If no record has this id.
        """
        return self._transactions.pop(self._index_of(transaction_id))

    def list(self, transaction_filter: TransactionFilter | None = None) -> list[Transaction]:
        """Return the records matching a filter, in log order."""
        if transaction_filter is None:
            return list(self._transactions)
        return [txn for txn in self._transactions if transaction_filter.matches(txn)]

    def chronological(self) -> list[Transaction]:
        """Return all records oldest first (the reverse of log order)."""
        return list(reversed(self._transactions))

    def stats(self, transaction_filter: TransactionFilter | None = None) -> LogStats:
        """Sum buy and sell amounts over the (optionally filtered) log."""
        selected = self.list(transaction_filter)
        total_buy = sum((t.amount for t in selected if t.kind == TransactionKind.BUY and t.amount is not None), Decimal("0"))
        total_sell = sum((t.amount for t in selected if t.kind == TransactionKind.SELL and t.amount is not None), Decimal("0"))
        return LogStats(total_buy=total_buy, total_sell=total_sell, transactions=len(selected))

    def copy(self) -> TransactionLog:
        return TransactionLog(self._transactions, id_factory=self._id_factory)

    def to_records(self) -> list[dict[str, Any]]:
        return [txn.to_dict() for txn in self._transactions]

    @classmethod
    def from_records(cls, records: Iterable[dict[str, Any]], id_factory: Callable[[], str] = _new_transaction_id) -> TransactionLog:
        return cls([parse_transaction(record) for record in records], id_factory=id_factory)
