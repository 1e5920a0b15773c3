"""Transaction, position and account records, with their JSON codecs."""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Union

from .currency import Currency, parse_currency
from .errors import ValidationError


def to_decimal(value: Any, field_name: str = "value") -> Decimal:
    """Convert a stored or user-supplied number into a Decimal.

    Floats go through str() so that 0.1 becomes Decimal("0.1") rather than
    its binary expansion.

    Raises:
        ValidationError: If the value is not numeric.
    """
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool) or value is None:
        raise ValidationError(f"{field_name} must be a number, got {value!r}")
    try:
        return Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field_name} must be a number, got {value!r}") from None


def normalize_symbol(symbol: str) -> str:
    """Return the canonical (stripped, uppercase) form of a ticker symbol."""
    return (symbol or "").strip().upper()


class TransactionKind(Enum):
    """Kinds of trade recorded in the investment log."""

    BUY = "buy"
    SELL = "sell"


@dataclass(frozen=True)
class Transaction:
    """A single recorded trade. Immutable once committed to the log.

    Besides the trade itself the record caches the asset metadata it was
    entered with (name, type, category, currency, account), which is what
    allows a fully exited position to be reconstructed when the sell that
    closed it is reverted.
    """

    id: str | None
    date: date
    kind: TransactionKind
    symbol: str
    quantity: Decimal
    price: Decimal
    currency: Currency = Currency.USD
    account: str = ""
    note: str = ""
    name: str | None = None
    asset_type: str | None = None
    category: str | None = None
    amount: Decimal | None = None

    def __post_init__(self):
        object.__setattr__(self, "symbol", normalize_symbol(self.symbol))
        object.__setattr__(self, "quantity", to_decimal(self.quantity, "quantity"))
        object.__setattr__(self, "price", to_decimal(self.price, "price"))
        if self.amount is None and self.quantity.is_finite() and self.price.is_finite():
            object.__setattr__(self, "amount", self.quantity * self.price)

    def with_id(self, transaction_id: str) -> Transaction:
        return replace(self, id=transaction_id)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "date": self.date.isoformat(),
            "type": self.kind.value,
            "symbol": self.symbol,
            "quantity": str(self.quantity),
            "price": str(self.price),
            "amount": str(self.amount) if self.amount is not None else None,
            "currency": self.currency.value,
            "account": self.account,
            "note": self.note,
            "name": self.name,
            "assetType": self.asset_type,
            "category": self.category,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Transaction:
        """Build a Transaction from its JSON form.

        Accepts both the field names written by to_dict() and the original
        log format, where the symbol was stored under "asset" and the amount
        under "total".
        """
        raw_amount = data.get("amount", data.get("total"))
        raw_id = data.get("id")
        return cls(
            id=str(raw_id) if raw_id is not None else None,
            date=date.fromisoformat(str(data["date"])[:10]),
            kind=TransactionKind(str(data.get("type", data.get("kind", ""))).lower()),
            symbol=str(data.get("symbol", data.get("asset", ""))),
            quantity=to_decimal(data["quantity"], "quantity"),
            price=to_decimal(data["price"], "price"),
            currency=parse_currency(data.get("currency"), Currency.USD),
            account=data.get("account") or "",
            note=data.get("note") or "",
            name=data.get("name"),
            asset_type=data.get("assetType", data.get("asset_type")),
            category=data.get("category"),
            amount=to_decimal(raw_amount, "amount") if raw_amount is not None else None,
        )

    def __repr__(self):
        return f"Transaction(id={self.id}, date={self.date}, kind={self.kind.value}, symbol={self.symbol}, quantity={self.quantity}, price={self.price}, currency={self.currency.value})"


@dataclass
class Position:
    """Current holding of one symbol, derived from the transaction log.

    A position with zero quantity never exists: the ledger removes it
    instead. avg_cost is the pooled weighted-average cost per unit.
    """

    symbol: str
    quantity: Decimal
    avg_cost: Decimal
    current_price: Decimal
    currency: Currency = Currency.USD
    name: str = ""
    asset_type: str = ""
    account: str = ""
    category: str = ""

    @property
    def market_value(self) -> Decimal:
        return self.quantity * self.current_price

    @property
    def book_value(self) -> Decimal:
        return self.quantity * self.avg_cost

    @property
    def gain_loss(self) -> Decimal:
        """Return the unrealized gain/loss (market value - book value)."""
        return self.market_value - self.book_value

    @property
    def gain_loss_percent(self) -> Decimal | None:
        """Return the gain/loss as a percentage of book value."""
        if self.book_value == 0:
            return None
        return self.gain_loss / abs(self.book_value) * 100

    def copy(self) -> Position:
        return replace(self)

    def to_dict(self) -> dict[str, Any]:
        return {
            "symbol": self.symbol,
            "name": self.name,
            "type": self.asset_type,
            "quantity": str(self.quantity),
            "avgPrice": str(self.avg_cost),
            "currentPrice": str(self.current_price),
            "totalValue": str(self.market_value),
            "profit": str(self.gain_loss),
            "currency": self.currency.value,
            "account": self.account,
            "category": self.category,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Position:
        avg_cost = to_decimal(data.get("avgPrice", data.get("avg_cost")), "avgPrice")
        current = data.get("currentPrice", data.get("current_price"))
        return cls(
            symbol=normalize_symbol(str(data["symbol"])),
            quantity=to_decimal(data["quantity"], "quantity"),
            avg_cost=avg_cost,
            current_price=to_decimal(current, "currentPrice") if current is not None else avg_cost,
            currency=parse_currency(data.get("currency"), Currency.USD),
            name=data.get("name") or "",
            asset_type=data.get("type", data.get("asset_type")) or "",
            account=data.get("account") or "",
            category=data.get("category") or "",
        )

    def __repr__(self):
        return f"Position(symbol={self.symbol}, quantity={self.quantity}, avg_cost={self.avg_cost}, current_price={self.current_price})"


@dataclass
class AccountPrincipal:
    """User-entered capital bookkeeping for one account."""

    principal: Decimal = Decimal("0")
    remaining: Decimal = Decimal("0")
    note: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"principal": str(self.principal), "remaining": str(self.remaining), "note": self.note}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AccountPrincipal:
        return cls(
            principal=to_decimal(data.get("principal") or 0, "principal"),
            remaining=to_decimal(data.get("remaining") or 0, "remaining"),
            note=data.get("note") or "",
        )


@dataclass(frozen=True)
class AssetMetadata:
    """Descriptive data used to open a new position.

    currency may be None, in which case it is inferred from the symbol.
    """

    symbol: str
    currency: Currency | None = None
    name: str = ""
    asset_type: str = ""
    account: str = ""
    category: str = ""

    def __post_init__(self):
        object.__setattr__(self, "symbol", normalize_symbol(self.symbol))


@dataclass(frozen=True)
class KnownAsset:
    """Reference to an asset the user picked from existing holdings."""

    symbol: str

    def __post_init__(self):
        object.__setattr__(self, "symbol", normalize_symbol(self.symbol))


@dataclass(frozen=True)
class NewAsset:
    """Reference to an asset the user is entering for the first time."""

    metadata: AssetMetadata

    @property
    def symbol(self) -> str:
        return self.metadata.symbol


AssetReference = Union[KnownAsset, NewAsset]
