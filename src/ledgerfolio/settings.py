from abc import ABC, abstractmethod
from dataclasses import dataclass, field, fields, replace
from decimal import Decimal
from typing import Any, Callable

from .ledger import DEFAULT_BROKER


@dataclass(frozen=True)
class Settings:
    """User settings that affect reporting but not the ledger itself.

    Attributes:
        brokers: Broker names available when recording operations.
        principal_investment: Own capital put into the portfolio, in USD.
            Cost basis above this amount is treated as borrowed.
        broker_debts: Additional outstanding debt per broker, in USD.
    """
    brokers: list[str] = field(default_factory=lambda: [DEFAULT_BROKER])
    principal_investment: Decimal = Decimal("0")
    broker_debts: dict[str, Decimal] = field(default_factory=dict)

    def __post_init__(self):
        if self.principal_investment < 0:
            raise ValueError(f"principal_investment must not be negative, got {self.principal_investment}")
        for broker, debt in self.broker_debts.items():
            if debt < 0:
                raise ValueError(f"Debt for broker {broker} must not be negative, got {debt}")

    @property
    def total_broker_debt(self) -> Decimal:
        return sum(self.broker_debts.values(), Decimal("0"))


SettingsCallback = Callable[[Settings], None]


class SettingsStore(ABC):
    """Abstract base class for settings persistence."""

    @abstractmethod
    def get(self) -> Settings:
        raise NotImplementedError("This method should be overridden by subclasses.")

    @abstractmethod
    def update(self, **changes: Any) -> Settings:
        raise NotImplementedError("This method should be overridden by subclasses.")

    @abstractmethod
    def subscribe(self, callback: SettingsCallback) -> Callable[[], None]:
        raise NotImplementedError("This method should be overridden by subclasses.")


class InMemorySettingsStore(SettingsStore):
    """Settings kept in process memory. Starts from defaults when none are given."""

    def __init__(self, settings: Settings | None = None):
        self._settings = settings if settings is not None else Settings()
        self._subscribers: list[SettingsCallback] = []

    def get(self) -> Settings:
        return self._settings

    def update(self, **changes: Any) -> Settings:
        """Merge ``changes`` into the current settings and notify subscribers.

        Numeric values are converted to Decimal.

        Raises:
            ValueError: If a field name is unknown or a value is invalid.
        """
        known = {f.name for f in fields(Settings)}
        unknown = set(changes) - known
        if unknown:
            raise ValueError(f"Unknown settings: {', '.join(sorted(unknown))}")

        if "principal_investment" in changes:
            changes["principal_investment"] = Decimal(str(changes["principal_investment"]))
        if "broker_debts" in changes:
            changes["broker_debts"] = {
                broker: Decimal(str(debt)) for broker, debt in changes["broker_debts"].items()
            }
        if "brokers" in changes:
            changes["brokers"] = list(changes["brokers"])

        self._settings = replace(self._settings, **changes)
        for callback in list(self._subscribers):
            callback(self._settings)
        return self._settings

    def subscribe(self, callback: SettingsCallback) -> Callable[[], None]:
        """Register a callback; it is invoked immediately with the current settings.

        Returns:
            A function that removes the subscription.
        """
        self._subscribers.append(callback)
        callback(self._settings)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe
