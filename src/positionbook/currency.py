from enum import Enum
from abc import ABC, abstractmethod
from decimal import Decimal
from datetime import datetime


class Currency(Enum):
    """Currencies that positions and transactions can be denominated in."""

    KRW = "KRW"
    USD = "USD"
    VND = "VND"
    EUR = "EUR"
    JPY = "JPY"
    CNY = "CNY"
    HKD = "HKD"
    GBP = "GBP"
    CAD = "CAD"
    AUD = "AUD"
    SGD = "SGD"
    TWD = "TWD"
    CHF = "CHF"


def parse_currency(value: "Currency | str | None", default: Currency) -> Currency:
    """Coerce a currency code (any case) or enum member into a Currency.

    Args:
        value: A Currency, an ISO-like code such as "usd", or None.
        default: Returned when value is None or empty.

    Returns:
        The matching Currency.

    Raises:
        ValueError: If the code is not a supported currency.
    """
    if value is None or value == "":
        return default
    if isinstance(value, Currency):
        return value
    return Currency(str(value).strip().upper())


class ExchangeRateManager(ABC):
    """Abstract base class for currency exchange rate providers."""

    @abstractmethod
    def get_exchange_rate(self, from_currency: Currency, to_currency: Currency, datetime: datetime | None = None) -> Decimal:
        """Get the exchange rate between two currencies.

        Args:
            from_currency: The source currency.
            to_currency: The target currency.
            datetime: The date for the rate lookup. If None, uses the latest rate.

        Returns:
            How many units of to_currency one unit of from_currency buys.
        """
        raise NotImplementedError("This method should be overridden by subclasses.")


class FixedExchangeRateManager(ExchangeRateManager):
    """Exchange rate manager using fixed, user-maintained rates.

    Rates do not vary by date. Quotes normally come from an external
    market-data provider which calls set_exchange_rate() whenever it has a
    fresher number.
    """

    global_exchange_rates = {
        (Currency.USD, Currency.KRW): Decimal("1340"),
        (Currency.VND, Currency.KRW): Decimal("0.055"),
        (Currency.USD, Currency.VND): Decimal("24500"),
        (Currency.USD, Currency.EUR): Decimal("0.85"),
        (Currency.EUR, Currency.USD): Decimal("1.18"),
        (Currency.USD, Currency.JPY): Decimal("150.0"),
        (Currency.USD, Currency.CNY): Decimal("7.25"),
        (Currency.USD, Currency.HKD): Decimal("7.80"),
        (Currency.USD, Currency.GBP): Decimal("0.79"),
        (Currency.GBP, Currency.USD): Decimal("1.27"),
        (Currency.USD, Currency.CAD): Decimal("1.25"),
        (Currency.USD, Currency.AUD): Decimal("1.55"),
        (Currency.USD, Currency.SGD): Decimal("1.35"),
        (Currency.USD, Currency.TWD): Decimal("27.5"),
        (Currency.USD, Currency.CHF): Decimal("0.88"),
    }

    def __init__(self, exchange_rates: dict[tuple[Currency, Currency], Decimal] | None = None):
        """Initialize with optional custom exchange rates.

        Args:
            exchange_rates: Custom rates to use. Missing pairs are filled
                from global_exchange_rates defaults.
        """
        self.exchange_rates: dict[tuple[Currency, Currency], Decimal] = dict(exchange_rates or {})
        for pair, rate in self.global_exchange_rates.items():
            self.exchange_rates.setdefault(pair, rate)

    def set_exchange_rate(self, from_currency: Currency, to_currency: Currency, rate: Decimal):
        """Set or override the exchange rate for a currency pair."""
        self.exchange_rates[(from_currency, to_currency)] = rate

    def _lookup(self, from_currency: Currency, to_currency: Currency) -> Decimal | None:
        """Direct or inverse lookup of a single pair."""
        if (from_currency, to_currency) in self.exchange_rates:
            return self.exchange_rates[(from_currency, to_currency)]
        inverse = self.exchange_rates.get((to_currency, from_currency))
        if inverse:
            return Decimal("1") / inverse
        return None

    def get_exchange_rate(self, from_currency: Currency, to_currency: Currency, datetime: datetime | None = None) -> Decimal:
        """Get the fixed exchange rate between two currencies.

        Tries the direct pair, then the inverse pair, then converts via USD
        (e.g., VND -> USD -> EUR).

        Args:
            from_currency: The source currency.
            to_currency: The target currency.
            datetime: Ignored; included for interface compatibility.

        Returns:
            The exchange rate as a Decimal.

        Raises:
            ValueError: If no rate is available for the currency pair.
        """
        if from_currency == to_currency:
            return Decimal("1")

        rate = self._lookup(from_currency, to_currency)
        if rate is not None:
            return rate

        if from_currency != Currency.USD and to_currency != Currency.USD:
            rate_to_usd = self._lookup(from_currency, Currency.USD)
            rate_from_usd = self._lookup(Currency.USD, to_currency)
            if rate_to_usd is not None and rate_from_usd is not None:
                return rate_to_usd * rate_from_usd

        raise ValueError(f"Exchange rate from {from_currency.value} to {to_currency.value} not available.")


def to_base_currency(
    amount: Decimal,
    from_currency: Currency,
    rate: Decimal,
    base_currency: Currency | None = None,
) -> Decimal:
    """Convert an amount into the reporting currency.

    Args:
        amount: Amount denominated in from_currency.
        from_currency: Currency the amount is denominated in.
        rate: Units of the base currency per one unit of from_currency.
        base_currency: The reporting currency. When it equals from_currency
            the rate is ignored and the amount is returned unchanged.

    Returns:
        The amount expressed in the base currency.
    """
    if base_currency is not None and from_currency == base_currency:
        return amount
    return amount * rate


def profit_percent(value: Decimal, profit: Decimal) -> Decimal:
    """Return profit as a percentage of cost (value - profit).

    A zero cost basis yields 0 rather than an infinite or undefined ratio.
    """
    cost = value - profit
    if cost == 0:
        return Decimal("0")
    return profit / cost * 100
