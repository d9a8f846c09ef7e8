from dataclasses import dataclass
from datetime import date
from decimal import Decimal
import threading

from .config import Config
from .currency import ExchangeRateManager, ForexConverter, ForexRateCache
from .ledger import LedgerStore, Operation
from .marketdata import (
    MarketData,
    MarketDataCache,
    MarketDataProvider,
    YFinanceMarketDataProvider,
    fetch_market_data_batched,
)
from .metrics import RiskMetrics, calculate_risk_metrics
from .positions import Position, derive_positions
from .realized import ClosedTrade, match_closed_trades
from .settings import InMemorySettingsStore, Settings, SettingsStore
from .valuation import (
    AssetValuation,
    LeverageSummary,
    PortfolioSummary,
    calculate_leverage,
    calculate_portfolio_value_series,
    summarize_portfolio,
    value_assets,
)


@dataclass(frozen=True)
class LedgerState:
    """Everything derived from one ledger snapshot."""
    positions: list[Position]
    closed_trades: list[ClosedTrade]


def derive_state(operations: list[Operation]) -> LedgerState:
    """Replay a ledger snapshot into open positions and closed trades."""
    return LedgerState(
        positions=derive_positions(operations),
        closed_trades=match_closed_trades(operations)
    )


class PortfolioTracker():
    """Keeps derived portfolio state in step with a ledger store.

    On every ledger notification the whole state is recomputed from the
    snapshot. Market data is fetched on demand with refresh_market_data and
    merged into the tracker's quote map.
    """

    def __init__(
        self,
        store: LedgerStore,
        market_data_provider: MarketDataProvider | None = None,
        exchange_rate_manager: ExchangeRateManager | None = None,
        settings_store: SettingsStore | None = None,
        config: Config | None = None,
        market_data_cache: MarketDataCache | None = None
    ):
        """Initialize the tracker and subscribe to ``store``.

        Args:
            store: Ledger to follow.
            market_data_provider: Source of quotes. Defaults to Yahoo Finance.
            exchange_rate_manager: Used for USD conversion. Defaults to a
                live ForexConverter.
            settings_store: Source of leverage settings. Defaults to an
                in-memory store seeded with the configured principal.
            config: Runtime configuration. Defaults to Config().
            market_data_cache: Quote cache. Defaults to one using the
                configured TTL.
        """
        self.config = config if config is not None else Config()
        self.market_data_provider = (
            market_data_provider if market_data_provider is not None else YFinanceMarketDataProvider()
        )
        self.exchange_rate_manager = (
            exchange_rate_manager if exchange_rate_manager is not None
            else ForexConverter(cache=ForexRateCache(ttl_seconds=self.config.forex_cache_ttl))
        )
        self.settings_store = (
            settings_store if settings_store is not None
            else InMemorySettingsStore(Settings(principal_investment=self.config.principal_investment))
        )
        self.market_data_cache = (
            market_data_cache if market_data_cache is not None
            else MarketDataCache(ttl_seconds=self.config.market_data_ttl)
        )

        self.market_data: dict[str, MarketData | None] = {}
        self.operations: list[Operation] = []
        self.state = LedgerState(positions=[], closed_trades=[])
        self._lock = threading.Lock()

        self._unsubscribe = store.subscribe(self._on_ledger_change)

    def _on_ledger_change(self, operations: list[Operation]) -> None:
        state = derive_state(operations)
        with self._lock:
            self.operations = operations
            self.state = state

    @property
    def positions(self) -> list[Position]:
        return self.state.positions

    @property
    def closed_trades(self) -> list[ClosedTrade]:
        return self.state.closed_trades

    def refresh_market_data(self, symbols: list[str] | None = None) -> dict[str, MarketData | None]:
        """Fetch quotes and merge them into the tracker's market data.

        Args:
            symbols: Symbols to fetch. Defaults to every currently held ticker.

        Returns:
            The quotes fetched in this refresh.
        """
        if symbols is None:
            symbols = list(dict.fromkeys(p.ticker for p in self.positions))

        fetched = fetch_market_data_batched(
            self.market_data_provider,
            symbols,
            cache=self.market_data_cache,
            batch_size=self.config.batch_size,
            delay_seconds=self.config.batch_delay
        )
        with self._lock:
            self.market_data.update(fetched)
        return fetched

    def valuation(self, broker: str | None = None) -> list[AssetValuation]:
        """Value the current positions against the latest market data."""
        with self._lock:
            positions = self.state.positions
            market_data = dict(self.market_data)
        return value_assets(positions, market_data, self.exchange_rate_manager, broker)

    def summary(self, broker: str | None = None) -> PortfolioSummary:
        return summarize_portfolio(self.valuation(broker))

    def value_series(self) -> dict[date, Decimal]:
        with self._lock:
            operations = self.operations
            market_data = dict(self.market_data)
        return calculate_portfolio_value_series(operations, market_data, self.exchange_rate_manager)

    def risk_metrics(self) -> RiskMetrics:
        return calculate_risk_metrics(self.value_series(), self.config.risk_free_rate)

    def leverage(self) -> LeverageSummary:
        return calculate_leverage(self.summary(), self.settings_store.get())

    def close(self) -> None:
        """Stop following the ledger store."""
        self._unsubscribe()
