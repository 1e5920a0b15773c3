"""Aggregate positions denominated in several currencies into one summary."""

from collections import defaultdict
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Iterable

from .currency import Currency, ExchangeRateManager, profit_percent, to_base_currency
from .models import Position


@dataclass
class PositionValuation:
    """One position expressed in the reporting currency."""

    position: Position
    rate: Decimal
    value: Decimal
    cost: Decimal

    @property
    def profit(self) -> Decimal:
        return self.value - self.cost

    @property
    def profit_percent(self) -> Decimal:
        return profit_percent(self.value, self.profit)


@dataclass
class PortfolioSummary:
    """Totals of a set of positions in a single reporting currency."""

    base_currency: Currency
    total_value: Decimal = Decimal("0")
    total_cost: Decimal = Decimal("0")
    valuations: list[PositionValuation] = field(default_factory=list)
    allocation: dict[str, Decimal] = field(default_factory=dict)

    @property
    def total_profit(self) -> Decimal:
        return self.total_value - self.total_cost

    @property
    def profit_percent(self) -> Decimal:
        return profit_percent(self.total_value, self.total_profit)


def value_position(position: Position, base_currency: Currency, rates: ExchangeRateManager) -> PositionValuation:
    """Convert a position's market value and cost basis into base_currency."""
    rate = rates.get_exchange_rate(position.currency, base_currency)
    return PositionValuation(
        position=position,
        rate=rate,
        value=to_base_currency(position.market_value, position.currency, rate, base_currency),
        cost=to_base_currency(position.book_value, position.currency, rate, base_currency),
    )


def summarize_positions(
    positions: Iterable[Position],
    base_currency: Currency,
    rates: ExchangeRateManager,
) -> PortfolioSummary:
    """
    Total value, cost and profit of positions in one reporting currency.

    Allocation maps each asset type (or "Other" when untyped) to its share of
    the total market value, in percent. It is empty when the total is zero.

    Args:
        positions: Holdings to aggregate.
        base_currency: The reporting currency.
        rates: Source of exchange rates from each position's currency.

    Returns:
        A PortfolioSummary.

    Raises:
        ValueError: If a needed exchange rate is not available.
    """
    summary = PortfolioSummary(base_currency=base_currency)
    by_type: dict[str, Decimal] = defaultdict(Decimal)

    for position in positions:
        valuation = value_position(position, base_currency, rates)
        summary.valuations.append(valuation)
        summary.total_value += valuation.value
        summary.total_cost += valuation.cost
        by_type[position.asset_type or "Other"] += valuation.value

    if summary.total_value != 0:
        summary.allocation = {
            asset_type: value / summary.total_value * 100 for asset_type, value in by_type.items()
        }

    return summary
