from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Callable
import sys
import threading
import time

import pandas as pd
import yfinance as yf  # type: ignore[import-untyped]

from .currency import Currency

# When True, print status messages during data fetching (e.g. "Fetching AAPL …").
# Defaults to False so CLI commands aren't polluted.
verbose: bool = False

# Default time-to-live for quotes, in seconds
MARKET_DATA_CACHE_TTL_SECONDS = 60

DEFAULT_BATCH_SIZE = 5
DEFAULT_BATCH_DELAY_SECONDS = 1.0

MAX_SEARCH_RESULTS = 8

# Yahoo Finance does not expose sector data without authentication, so
# well-known tickers are mapped statically.
SECTORS: dict[str, str] = {
    "AAPL": "Technology", "MSFT": "Technology", "GOOGL": "Technology", "NVDA": "Technology",
    "TSLA": "Consumer Cyclical", "AMZN": "Consumer Cyclical",
    "JPM": "Financial", "BAC": "Financial",
    "XOM": "Energy", "CVX": "Energy",
    "PFE": "Healthcare", "JNJ": "Healthcare",
    "SPY": "ETF", "QQQ": "ETF",
}

UNKNOWN_SECTOR = "Unknown"


def sector_for(symbol: str) -> str:
    return SECTORS.get(symbol, UNKNOWN_SECTOR)


@dataclass(frozen=True)
class HistoryPoint:
    """A daily closing price."""
    date: date
    close: Decimal


@dataclass
class MarketData:
    """A quote for one ticker: latest price, daily change and recent daily history.

    ``price`` and history closes are in ``currency``; ``change_percent`` is
    the percent move against the previous close. History is sorted by date.
    """
    symbol: str
    price: Decimal
    currency: Currency = Currency.USD
    change_percent: Decimal = Decimal("0")
    sector: str = UNKNOWN_SECTOR
    history: list[HistoryPoint] = field(default_factory=list)

    def close_on_or_before(self, on_date: date) -> Decimal | None:
        """Return the latest close at or before ``on_date``, or None if history starts later."""
        close: Decimal | None = None
        for point in self.history:
            if point.date > on_date:
                break
            close = point.close
        return close


@dataclass(frozen=True)
class SymbolMatch:
    """A symbol search result."""
    symbol: str
    description: str
    type: str


class MarketDataProvider(ABC):
    """Abstract base class for all market data providers."""

    @abstractmethod
    def fetch(self, symbol: str) -> MarketData | None:
        """Fetch the current quote for ``symbol``.

        Returns:
            MarketData, or None when the symbol resolves to nothing
            (unknown or delisted).

        Raises:
            Exception: Transport failures (network, rate limiting).
        """
        raise NotImplementedError("This method should be overridden by subclasses.")

    @abstractmethod
    def search(self, query: str) -> list[SymbolMatch]:
        raise NotImplementedError("This method should be overridden by subclasses.")


class FixedMarketDataProvider(MarketDataProvider):
    """Provider that serves quotes from a fixed mapping."""

    def __init__(self, quotes: dict[str, MarketData | None] | None = None):
        """Initialize with a fixed set of quotes.

        Args:
            quotes: Mapping of symbol to its quote. Symbols missing from the
                mapping, or mapped to None, are unknown.
        """
        self.quotes: dict[str, MarketData | None] = dict(quotes) if quotes else {}

    def fetch(self, symbol: str) -> MarketData | None:
        return self.quotes.get(symbol)

    def search(self, query: str) -> list[SymbolMatch]:
        if not query:
            return []
        query = query.upper()
        return [
            SymbolMatch(symbol=s, description=sector_for(s), type="Common Stock")
            for s in self.quotes
            if query in s
        ][:MAX_SEARCH_RESULTS]


class YFinanceMarketDataProvider(MarketDataProvider):
    """Quotes and symbol search from Yahoo Finance."""

    def __init__(self, history_period: str = "1mo"):
        """Initialize the provider.

        Args:
            history_period: yfinance period string for the daily history.
        """
        self.history_period = history_period

    def fetch(self, symbol: str) -> MarketData | None:
        """Fetch price, daily change and daily history for a symbol.

        The current price prefers ``fast_info['lastPrice']``, which includes
        pre-market and after-hours trading; the last daily close is used
        when it is unavailable.

        Returns:
            MarketData, or None if Yahoo Finance has no data for the symbol.
        """
        if verbose:
            print(f"  Fetching {symbol} …", flush=True)

        ticker = yf.Ticker(symbol)
        df: pd.DataFrame = ticker.history(period=self.history_period, interval="1d", auto_adjust=False)  # type: ignore[call-arg]

        if df.empty:
            return None

        df = df.reset_index()
        df['Date'] = pd.to_datetime(df['Date']).dt.date
        df = df.dropna(subset=['Close']).sort_values('Date')
        if df.empty:
            return None

        history = [
            HistoryPoint(date=row_date, close=Decimal(str(close)))
            for row_date, close in zip(df['Date'], df['Close'])
        ]

        fast_info = ticker.fast_info
        last_price = fast_info.get('lastPrice')
        price = Decimal(str(last_price)) if last_price is not None else history[-1].close

        previous_close = fast_info.get('previousClose')
        if previous_close is None and len(history) >= 2:
            previous_close = history[-2].close
        if previous_close:
            previous = Decimal(str(previous_close))
            change_percent = (price - previous) / previous * 100
        else:
            change_percent = Decimal("0")

        try:
            currency = Currency(str(fast_info.get('currency') or "USD").upper())
        except ValueError:
            currency = Currency.USD

        return MarketData(
            symbol=symbol,
            price=price,
            currency=currency,
            change_percent=change_percent,
            sector=sector_for(symbol),
            history=history
        )

    def search(self, query: str) -> list[SymbolMatch]:
        """Search Yahoo Finance for symbols matching ``query``.

        Index symbols (containing ``^``) are excluded and at most eight
        matches are returned. If the search request fails, the static sector
        table is searched instead.
        """
        if not query:
            return []

        try:
            quotes = yf.Search(query, max_results=10, news_count=0).quotes
        except Exception as e:
            print(f"Warning: yfinance search failed for {query!r}: {e}", file=sys.stderr)
            upper = query.upper()
            return [
                SymbolMatch(symbol=s, description=sector, type="Common Stock")
                for s, sector in SECTORS.items()
                if upper in s
            ]

        matches: list[SymbolMatch] = []
        for item in quotes:
            symbol = item.get('symbol')
            if not symbol or '^' in symbol:
                continue
            matches.append(SymbolMatch(
                symbol=symbol,
                description=item.get('longname') or item.get('shortname') or symbol,
                type=item.get('quoteType') or "Equity"
            ))
        return matches[:MAX_SEARCH_RESULTS]


class MarketDataCache:
    """Thread-safe, time-bounded cache of quotes keyed by symbol.

    Only resolved quotes are cached; unknown symbols are asked again on the
    next fetch.
    """

    def __init__(self, ttl_seconds: float = MARKET_DATA_CACHE_TTL_SECONDS, clock: Callable[[], float] = time.monotonic):
        """Initialize the cache.

        Args:
            ttl_seconds: How long a cached quote stays fresh.
            clock: Returns the current time in seconds. Injectable for tests.
        """
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self._entries: dict[str, tuple[float, MarketData]] = {}
        self._lock = threading.Lock()

    def get(self, symbol: str, allow_expired: bool = False) -> MarketData | None:
        """Return the cached quote for ``symbol``.

        Args:
            symbol: The ticker symbol.
            allow_expired: Also return quotes older than the TTL. Used as a
                fallback when a fresh fetch fails.
        """
        with self._lock:
            entry = self._entries.get(symbol)
        if entry is None:
            return None
        fetched_at, data = entry
        if not allow_expired and self.clock() - fetched_at >= self.ttl_seconds:
            return None
        return data

    def set(self, symbol: str, data: MarketData) -> None:
        with self._lock:
            self._entries[symbol] = (self.clock(), data)

    def clear(self, symbol: str | None = None) -> None:
        """Drop one symbol from the cache, or everything when symbol is None."""
        with self._lock:
            if symbol is None:
                self._entries.clear()
            else:
                self._entries.pop(symbol, None)


def fetch_market_data(
    provider: MarketDataProvider,
    symbol: str,
    cache: MarketDataCache | None = None
) -> MarketData | None:
    """
    Fetch one quote, serving fresh cache hits without calling the provider.

    Provider failures never propagate: a warning is printed and the last
    cached quote (even if expired) is returned, or None if there is none.

    Args:
        provider: Source of quotes.
        symbol: The ticker symbol.
        cache: Optional quote cache, read before and written after the fetch.

    Returns:
        The quote, or None when the symbol is unknown or unavailable.
    """
    if cache is not None:
        cached = cache.get(symbol)
        if cached is not None:
            return cached

    try:
        data = provider.fetch(symbol)
    except Exception as e:
        print(f"Warning: market data request failed for {symbol}: {e}", file=sys.stderr)
        if cache is not None:
            return cache.get(symbol, allow_expired=True)
        return None

    if data is not None and cache is not None:
        cache.set(symbol, data)
    return data


def fetch_market_data_batched(
    provider: MarketDataProvider,
    symbols: list[str],
    cache: MarketDataCache | None = None,
    batch_size: int = DEFAULT_BATCH_SIZE,
    delay_seconds: float = DEFAULT_BATCH_DELAY_SECONDS,
    sleep: Callable[[float], None] = time.sleep
) -> dict[str, MarketData | None]:
    """
    Fetch quotes for many symbols in rate-limited waves.

    Each wave of up to ``batch_size`` symbols is fetched concurrently on a
    thread pool; the next wave starts ``delay_seconds`` after the previous
    one completes.

    Args:
        provider: Source of quotes.
        symbols: Symbols to fetch. Duplicates are fetched once.
        cache: Optional quote cache shared by all fetches.
        batch_size: Maximum number of concurrent fetches per wave.
        delay_seconds: Pause between waves.
        sleep: Sleep function. Injectable for tests.

    Returns:
        Mapping of every requested symbol to its quote or None.

    Raises:
        ValueError: If batch_size is not positive.
    """
    if batch_size < 1:
        raise ValueError(f"batch_size must be positive, got {batch_size}")

    unique_symbols = list(dict.fromkeys(symbols))
    results: dict[str, MarketData | None] = {}

    with ThreadPoolExecutor(max_workers=batch_size) as executor:
        for start in range(0, len(unique_symbols), batch_size):
            if start > 0 and delay_seconds > 0:
                sleep(delay_seconds)

            wave = unique_symbols[start:start + batch_size]
            if verbose:
                print(f"Fetching market data for {', '.join(wave)}", flush=True)

            quotes = executor.map(lambda s: fetch_market_data(provider, s, cache), wave)
            results.update(zip(wave, quotes))

    return results
