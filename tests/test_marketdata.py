"""Tests for market data providers, the quote cache and batched fetching."""

import threading
from datetime import date
from decimal import Decimal

import pandas as pd
import pytest

from ledgerfolio import marketdata
from ledgerfolio.currency import Currency
from ledgerfolio.marketdata import (
    FixedMarketDataProvider,
    HistoryPoint,
    MarketData,
    MarketDataCache,
    MarketDataProvider,
    SymbolMatch,
    YFinanceMarketDataProvider,
    fetch_market_data,
    fetch_market_data_batched,
)


class FakeClock:
    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class RecordingProvider(MarketDataProvider):
    """Provider that prices every symbol at 100 and records calls; symbols in ``failing`` raise."""

    def __init__(self, failing: set[str] | None = None, unknown: set[str] | None = None):
        self.failing = failing or set()
        self.unknown = unknown or set()
        self.calls: list[str] = []
        self._lock = threading.Lock()

    def fetch(self, symbol: str) -> MarketData | None:
        with self._lock:
            self.calls.append(symbol)
        if symbol in self.failing:
            raise ConnectionError("429 Too Many Requests")
        if symbol in self.unknown:
            return None
        return MarketData(symbol=symbol, price=Decimal("100"))

    def search(self, query: str) -> list[SymbolMatch]:
        return []


def _quote(symbol: str, price: str = "100") -> MarketData:
    return MarketData(symbol=symbol, price=Decimal(price))


def test_close_on_or_before_carries_forward():
    data = MarketData(
        symbol="AAPL",
        price=Decimal("150"),
        history=[
            HistoryPoint(date(2024, 1, 2), Decimal("140")),
            HistoryPoint(date(2024, 1, 4), Decimal("145")),
        ],
    )
    assert data.close_on_or_before(date(2024, 1, 1)) is None
    assert data.close_on_or_before(date(2024, 1, 2)) == Decimal("140")
    assert data.close_on_or_before(date(2024, 1, 3)) == Decimal("140")
    assert data.close_on_or_before(date(2024, 2, 1)) == Decimal("145")


def test_cache_ttl_and_expired_fallback():
    clock = FakeClock()
    cache = MarketDataCache(ttl_seconds=60, clock=clock)
    quote = _quote("AAPL")
    cache.set("AAPL", quote)

    clock.now = 59
    assert cache.get("AAPL") is quote
    clock.now = 60
    assert cache.get("AAPL") is None
    assert cache.get("AAPL", allow_expired=True) is quote

    cache.clear("AAPL")
    assert cache.get("AAPL", allow_expired=True) is None


def test_fetch_uses_fresh_cache():
    provider = RecordingProvider()
    cache = MarketDataCache(clock=FakeClock())
    cached = _quote("AAPL", "123")
    cache.set("AAPL", cached)

    assert fetch_market_data(provider, "AAPL", cache) is cached
    assert provider.calls == []


def test_fetch_failure_degrades_to_cached_quote(capsys):
    clock = FakeClock()
    provider = RecordingProvider(failing={"AAPL"})
    cache = MarketDataCache(ttl_seconds=60, clock=clock)
    stale = _quote("AAPL", "99")
    cache.set("AAPL", stale)
    clock.now = 600

    assert fetch_market_data(provider, "AAPL", cache) is stale
    assert "Warning: market data request failed for AAPL" in capsys.readouterr().err


def test_fetch_failure_without_cache_returns_none():
    provider = RecordingProvider(failing={"AAPL"})
    assert fetch_market_data(provider, "AAPL") is None


def test_unknown_symbol_is_not_cached():
    provider = RecordingProvider(unknown={"ZZZZ"})
    cache = MarketDataCache(clock=FakeClock())

    assert fetch_market_data(provider, "ZZZZ", cache) is None
    assert fetch_market_data(provider, "ZZZZ", cache) is None
    assert provider.calls == ["ZZZZ", "ZZZZ"]


def test_batched_fetch_runs_in_waves():
    provider = RecordingProvider()
    completed_at_sleep: list[int] = []
    delays: list[float] = []

    def fake_sleep(seconds: float) -> None:
        delays.append(seconds)
        completed_at_sleep.append(len(provider.calls))

    symbols = [f"T{i}" for i in range(12)]
    results = fetch_market_data_batched(provider, symbols, batch_size=5, delay_seconds=1.0, sleep=fake_sleep)

    assert list(results) == symbols
    assert all(results[s] is not None for s in symbols)
    assert delays == [1.0, 1.0]
    assert completed_at_sleep == [5, 10]


def test_batched_fetch_degrades_per_symbol(capsys):
    provider = RecordingProvider(failing={"BAD"}, unknown={"ZZZZ"})

    results = fetch_market_data_batched(
        provider, ["AAPL", "BAD", "ZZZZ", "AAPL"], sleep=lambda _: None
    )

    assert set(results) == {"AAPL", "BAD", "ZZZZ"}
    assert results["AAPL"] is not None
    assert results["BAD"] is None
    assert results["ZZZZ"] is None
    assert sorted(provider.calls) == ["AAPL", "BAD", "ZZZZ"]
    assert "BAD" in capsys.readouterr().err


def test_batched_fetch_rejects_bad_batch_size():
    with pytest.raises(ValueError, match="batch_size must be positive"):
        fetch_market_data_batched(RecordingProvider(), ["AAPL"], batch_size=0)


def test_fixed_provider_search():
    provider = FixedMarketDataProvider({"AAPL": _quote("AAPL"), "AMZN": _quote("AMZN"), "ZZZZ": None})

    assert provider.fetch("ZZZZ") is None
    assert provider.fetch("MISSING") is None
    assert [m.symbol for m in provider.search("a")] == ["AAPL", "AMZN"]
    assert provider.search("") == []


class FakeTicker:
    def __init__(self, history: pd.DataFrame, fast_info: dict):
        self._history = history
        self.fast_info = fast_info

    def history(self, **kwargs) -> pd.DataFrame:
        return self._history


def test_yfinance_fetch_builds_market_data(monkeypatch):
    history = pd.DataFrame(
        {"Close": [180.0, 190.0, 200.0]},
        index=pd.DatetimeIndex(["2024-03-01", "2024-03-04", "2024-03-05"], name="Date"),
    )
    fast_info = {"lastPrice": 210.0, "previousClose": 200.0, "currency": "USD"}
    monkeypatch.setattr(marketdata.yf, "Ticker", lambda symbol: FakeTicker(history, fast_info))

    data = YFinanceMarketDataProvider().fetch("AAPL")

    assert data is not None
    assert data.price == Decimal("210.0")
    assert data.change_percent == Decimal("5")
    assert data.currency == Currency.USD
    assert data.sector == "Technology"
    assert [p.date for p in data.history] == [date(2024, 3, 1), date(2024, 3, 4), date(2024, 3, 5)]
    assert data.history[-1].close == Decimal("200.0")


def test_yfinance_fetch_unknown_symbol(monkeypatch):
    monkeypatch.setattr(marketdata.yf, "Ticker", lambda symbol: FakeTicker(pd.DataFrame(), {}))
    assert YFinanceMarketDataProvider().fetch("ZZZZ") is None


def test_yfinance_search_filters_indices(monkeypatch):
    class FakeSearch:
        def __init__(self, query, **kwargs):
            self.quotes = [
                {"symbol": "^GSPC", "shortname": "S&P 500", "quoteType": "INDEX"},
                {"symbol": "AAPL", "longname": "Apple Inc.", "quoteType": "EQUITY"},
            ] + [{"symbol": f"AAP{i}"} for i in range(10)]

    monkeypatch.setattr(marketdata.yf, "Search", FakeSearch)

    matches = YFinanceMarketDataProvider().search("aap")

    assert len(matches) == 8
    assert matches[0] == SymbolMatch(symbol="AAPL", description="Apple Inc.", type="EQUITY")
    assert matches[1] == SymbolMatch(symbol="AAP0", description="AAP0", type="Equity")


def test_yfinance_search_falls_back_to_sector_table(monkeypatch, capsys):
    def failing_search(query, **kwargs):
        raise ConnectionError("offline")

    monkeypatch.setattr(marketdata.yf, "Search", failing_search)

    matches = YFinanceMarketDataProvider().search("msf")

    assert matches == [SymbolMatch(symbol="MSFT", description="Technology", type="Common Stock")]
    assert "search failed" in capsys.readouterr().err
