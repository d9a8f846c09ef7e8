from enum import Enum
from abc import ABC, abstractmethod
from decimal import Decimal, InvalidOperation
from typing import Callable
import sys
import time
import warnings

import yfinance as yf  # type: ignore[import-untyped]

class Currency(Enum):
    """Supported currencies for exchange rate conversions."""

    USD = "USD"
    EUR = "EUR"
    GBP = "GBP"
    CAD = "CAD"
    AUD = "AUD"
    JPY = "JPY"
    CHF = "CHF"
    CNY = "CNY"
    HKD = "HKD"
    SGD = "SGD"
    MXN = "MXN"
    BRL = "BRL"
    ARS = "ARS"

CURRENCY_SYMBOLS: dict[Currency, str] = {
    Currency.USD: "$",
    Currency.EUR: "€",
    Currency.GBP: "£",
    Currency.CAD: "C$",
    Currency.AUD: "A$",
    Currency.JPY: "¥",
    Currency.CHF: "CHF",
    Currency.CNY: "¥",
    Currency.HKD: "HK$",
    Currency.SGD: "S$",
    Currency.MXN: "MX$",
    Currency.BRL: "R$",
    Currency.ARS: "ARS$",
}

# Default time-to-live for live exchange rates, in seconds
FOREX_CACHE_TTL_SECONDS = 5 * 60


def currency_symbol(currency: Currency) -> str:
    """Return the display symbol for a currency (e.g. "$" for USD)."""
    return CURRENCY_SYMBOLS.get(currency, currency.value)


def pair_key(from_currency: Currency, to_currency: Currency) -> str:
    """Return the ordered pair string used for caching, e.g. "EURUSD"."""
    return f"{from_currency.value}{to_currency.value}"


class ExchangeRateManager(ABC):
    """Abstract base class for currency exchange rate providers."""

    @abstractmethod
    def get_exchange_rate(self, from_currency: Currency, to_currency: Currency) -> Decimal:
        """Get the exchange rate between two currencies.

        Args:
            from_currency: The source currency.
            to_currency: The target currency.

        Returns:
            Units of ``to_currency`` per 1 unit of ``from_currency``.

        Raises:
            NotImplementedError: Always, must be overridden by subclasses.
        """
        raise NotImplementedError("This method should be overridden by subclasses.")

    def convert(self, amount: Decimal, from_currency: Currency, to_currency: Currency) -> Decimal:
        """Convert an amount between two currencies."""
        if from_currency == to_currency:
            return amount
        return amount * self.get_exchange_rate(from_currency, to_currency)

    def to_usd(self, amount: Decimal, currency: Currency) -> Decimal:
        """Convert an amount in ``currency`` to USD."""
        return self.convert(amount, currency, Currency.USD)

    def from_usd(self, amount_usd: Decimal, currency: Currency) -> Decimal:
        """Convert a USD amount into ``currency``."""
        return self.convert(amount_usd, Currency.USD, currency)


class FixedExchangeRateManager(ExchangeRateManager):
    """Exchange rate manager using fixed, approximate rates.

    Provides static exchange rates that do not vary over time. Used as the
    fallback when live rates cannot be fetched, and in tests.
    """

    global_exchange_rates = {
        # How many USD per 1 unit of currency
        (Currency.EUR, Currency.USD): Decimal("1.08"),
        (Currency.GBP, Currency.USD): Decimal("1.27"),
        (Currency.CAD, Currency.USD): Decimal("0.74"),
        (Currency.AUD, Currency.USD): Decimal("0.66"),
        (Currency.JPY, Currency.USD): Decimal("0.0067"),
        (Currency.CHF, Currency.USD): Decimal("1.12"),
        (Currency.CNY, Currency.USD): Decimal("0.14"),
        (Currency.HKD, Currency.USD): Decimal("0.13"),
        (Currency.SGD, Currency.USD): Decimal("0.75"),
        (Currency.MXN, Currency.USD): Decimal("0.058"),
        (Currency.BRL, Currency.USD): Decimal("0.20"),
        (Currency.ARS, Currency.USD): Decimal("0.001"),
        # How many units of currency per 1 USD
        (Currency.USD, Currency.EUR): Decimal("0.93"),
        (Currency.USD, Currency.GBP): Decimal("0.79"),
        (Currency.USD, Currency.CAD): Decimal("1.35"),
        (Currency.USD, Currency.AUD): Decimal("1.52"),
        (Currency.USD, Currency.JPY): Decimal("149.50"),
        (Currency.USD, Currency.CHF): Decimal("0.89"),
        (Currency.USD, Currency.CNY): Decimal("7.15"),
        (Currency.USD, Currency.HKD): Decimal("7.82"),
        (Currency.USD, Currency.SGD): Decimal("1.34"),
        (Currency.USD, Currency.MXN): Decimal("17.20"),
        (Currency.USD, Currency.BRL): Decimal("4.97"),
        (Currency.USD, Currency.ARS): Decimal("850"),
    }

    def __init__(self, exchange_rates: dict[tuple[Currency, Currency], Decimal] | None = None, use_defaults: bool = True):
        """Initialize with optional custom exchange rates.

        Args:
            exchange_rates: Custom rates to use.
            use_defaults: If True, missing pairs are filled from
                global_exchange_rates defaults.
        """
        self.exchange_rates: dict[tuple[Currency, Currency], Decimal] = dict(exchange_rates or {})
        if use_defaults:
            for (from_currency, to_currency), rate in self.global_exchange_rates.items():
                if (from_currency, to_currency) not in self.exchange_rates:
                    self.exchange_rates[(from_currency, to_currency)] = rate

    def set_exchange_rate(self, from_currency: Currency, to_currency: Currency, rate: Decimal):
        """Set or override the exchange rate for a currency pair.

        Args:
            from_currency: The source currency.
            to_currency: The target currency.
            rate: The exchange rate to set.
        """
        self.exchange_rates[(from_currency, to_currency)] = rate

    def _direct_or_inverse(self, from_currency: Currency, to_currency: Currency) -> Decimal | None:
        rate = self.exchange_rates.get((from_currency, to_currency))
        if rate:
            return rate
        inverse_rate = self.exchange_rates.get((to_currency, from_currency))
        if inverse_rate:
            return Decimal("1") / inverse_rate
        return None

    def get_exchange_rate(self, from_currency: Currency, to_currency: Currency) -> Decimal:
        """Get the fixed exchange rate between two currencies.

        Tries the direct pair, then the inverse pair, then converts via USD.
        When nothing resolves a rate of 1 is returned with a warning, so that
        valuation is never blocked by a missing rate.

        Args:
            from_currency: The source currency.
            to_currency: The target currency.

        Returns:
            The exchange rate as a Decimal.
        """
        if from_currency == to_currency:
            return Decimal("1")

        rate = self._direct_or_inverse(from_currency, to_currency)
        if rate is not None:
            return rate

        # If neither currency is USD, try converting via USD
        if from_currency != Currency.USD and to_currency != Currency.USD:
            rate_to_usd = self._direct_or_inverse(from_currency, Currency.USD)
            rate_from_usd = self._direct_or_inverse(Currency.USD, to_currency)
            if rate_to_usd is not None and rate_from_usd is not None:
                return rate_to_usd * rate_from_usd

        warnings.warn(
            f"No fallback exchange rate for {pair_key(from_currency, to_currency)}, returning 1.",
            UserWarning
        )
        return Decimal("1")


class ForexRate:
    """A cached exchange rate observation."""

    def __init__(self, pair: str, rate: Decimal, fetched_at: float):
        self.pair: str = pair
        self.rate: Decimal = rate
        self.fetched_at: float = fetched_at

    def __repr__(self):
        return f"ForexRate(pair={self.pair}, rate={self.rate}, fetched_at={self.fetched_at})"


class ForexRateCache:
    """Time-bounded cache of exchange rates keyed by ordered pair string."""

    def __init__(self, ttl_seconds: float = FOREX_CACHE_TTL_SECONDS, clock: Callable[[], float] = time.monotonic):
        """Initialize the cache.

        Args:
            ttl_seconds: How long a cached rate stays valid.
            clock: Returns the current time in seconds. Injectable for tests.
        """
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self._rates: dict[str, ForexRate] = {}

    def get(self, pair: str) -> Decimal | None:
        """Return the cached rate for ``pair`` or None if missing or expired."""
        entry = self._rates.get(pair)
        if entry is None:
            return None
        if self.clock() - entry.fetched_at >= self.ttl_seconds:
            del self._rates[pair]
            return None
        return entry.rate

    def set(self, pair: str, rate: Decimal) -> None:
        self._rates[pair] = ForexRate(pair=pair, rate=rate, fetched_at=self.clock())

    def clear(self) -> None:
        self._rates.clear()

    def snapshot(self) -> dict[str, ForexRate]:
        """Return a copy of all cached entries, expired or not."""
        return dict(self._rates)


class ForexProvider(ABC):
    """Abstract source of live exchange rates."""

    @abstractmethod
    def fetch(self, pair_symbol: str) -> Decimal:
        """Fetch the latest rate for a symbol such as ``"EURUSD=X"``.

        Raises:
            Exception: Any failure to produce a rate.
        """
        raise NotImplementedError("This method should be overridden by subclasses.")


class YFinanceForexProvider(ForexProvider):
    """Live exchange rates from Yahoo Finance currency pairs."""

    def fetch(self, pair_symbol: str) -> Decimal:
        """Fetch the last traded rate for a Yahoo Finance pair symbol.

        Args:
            pair_symbol: Symbol in ``"{FROM}{TO}=X"`` format.

        Returns:
            The rate as a Decimal.

        Raises:
            ValueError: If Yahoo Finance returns no usable price.
        """
        ticker = yf.Ticker(pair_symbol)
        last_price = ticker.fast_info.get('lastPrice')
        if last_price is None:
            raise ValueError(f"No forex data for {pair_symbol}")
        return Decimal(str(last_price))


class ForexConverter(ExchangeRateManager):
    """Exchange rate manager backed by a live provider, a TTL cache and a fixed fallback table.

    Lookup order for a pair: identity, cache, live provider, fallback table.
    Conversion never raises; a failed fetch only degrades accuracy.
    """

    def __init__(
        self,
        provider: ForexProvider | None = None,
        cache: ForexRateCache | None = None,
        fallback: FixedExchangeRateManager | None = None
    ):
        """Initialize the converter.

        Args:
            provider: Live rate source. Defaults to YFinanceForexProvider.
            cache: Rate cache. Defaults to a fresh ForexRateCache.
            fallback: Static rate table used when the provider fails.
        """
        self.provider = provider if provider is not None else YFinanceForexProvider()
        self.cache = cache if cache is not None else ForexRateCache()
        self.fallback = fallback if fallback is not None else FixedExchangeRateManager()

    def get_exchange_rate(self, from_currency: Currency, to_currency: Currency) -> Decimal:
        """Get the exchange rate between two currencies.

        Args:
            from_currency: The source currency.
            to_currency: The target currency.

        Returns:
            Units of ``to_currency`` per 1 unit of ``from_currency``.
        """
        if from_currency == to_currency:
            return Decimal("1")

        pair = pair_key(from_currency, to_currency)
        cached = self.cache.get(pair)
        if cached is not None:
            return cached

        symbol = f"{pair}=X"
        try:
            rate = self.provider.fetch(symbol)
        except Exception as e:
            print(f"Warning: forex request failed for {symbol}: {e}, using fallback", file=sys.stderr)
            return self.fallback.get_exchange_rate(from_currency, to_currency)

        try:
            usable = rate is not None and rate.is_finite() and rate > 0
        except (AttributeError, InvalidOperation):
            usable = False
        if not usable:
            print(f"Warning: no forex data for {symbol}, using fallback", file=sys.stderr)
            return self.fallback.get_exchange_rate(from_currency, to_currency)

        self.cache.set(pair, rate)
        return rate
