# pyright: reportUnknownMemberType=false, reportUnknownArgumentType=false

from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Callable
import json
import math
import os
import uuid

import pandas as pd
from openpyxl import Workbook

from .currency import Currency, ExchangeRateManager

DEFAULT_BROKER = "Unassigned"

# Ordering timestamp for legacy records that were stored without one
EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class OversellWarning(UserWarning):
    """A sale exceeded the quantity available to it and was clamped or partially dropped."""


class OperationType(Enum):
    """Enumeration of supported ledger operation types."""

    ADD = "ADD"
    REMOVE = "REMOVE"


# Accepted spellings for each operation type
_TYPE_ALIASES = {
    "ADD": OperationType.ADD,
    "BUY": OperationType.ADD,
    "REMOVE": OperationType.REMOVE,
    "SELL": OperationType.REMOVE,
}


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Operation:
    """A single ledger entry: a buy (ADD) or a sell (REMOVE) of a ticker.

    Operations are immutable; edits go through the ledger store, which
    replaces the whole record.
    """

    operation_type: OperationType
    ticker: str
    quantity: Decimal
    price: Decimal
    date: date
    currency: Currency = Currency.USD
    price_in_usd: Decimal | None = None
    exchange_rate_at_entry: Decimal = Decimal("1")
    broker: str = DEFAULT_BROKER
    created_at: datetime = field(default_factory=_utc_now)
    id: str = ""

    def __post_init__(self):
        if not self.quantity.is_finite() or not self.price.is_finite():
            raise ValueError(f"Operation quantity and price must be finite numbers for {self.ticker}")
        if self.quantity <= 0:
            raise ValueError(f"Operation quantity must be positive, got {self.quantity} for {self.ticker}")
        if self.price < 0:
            raise ValueError(f"Operation price must not be negative, got {self.price} for {self.ticker}")
        if self.created_at.tzinfo is None:
            # Naive timestamps are taken as UTC so they sort against aware ones
            object.__setattr__(self, "created_at", self.created_at.replace(tzinfo=timezone.utc))
        if self.price_in_usd is None:
            # Frozen dataclass, so set through object.__setattr__
            object.__setattr__(self, "price_in_usd", self.price * self.exchange_rate_at_entry)

    @property
    def usd_price(self) -> Decimal:
        """The USD price per unit, always populated after construction."""
        assert self.price_in_usd is not None
        return self.price_in_usd

    def __repr__(self):
        return (
            f"Operation(id={self.id}, type={self.operation_type.value}, ticker={self.ticker}, "
            f"date={self.date}, quantity={self.quantity}, price={self.price}, currency={self.currency.value}, "
            f"broker={self.broker})"
        )


def operation_sort_key(operation: Operation) -> tuple[date, datetime, str]:
    """Replay order shared by every engine: trade date, then creation time, then id."""
    return (operation.date, operation.created_at, operation.id)


def sort_operations(operations: list[Operation]) -> list[Operation]:
    """Return operations in replay order without mutating the input."""
    return sorted(operations, key=operation_sort_key)


def create_operation(
    operation_type: OperationType,
    ticker: str,
    quantity: Decimal,
    price: Decimal,
    trade_date: date,
    currency: Currency = Currency.USD,
    broker: str | None = None,
    exchange_rate_manager: ExchangeRateManager | None = None,
) -> Operation:
    """
    Build a new operation, capturing the USD price and exchange rate at entry.

    Args:
        operation_type: ADD or REMOVE.
        ticker: Ticker symbol. Upper-cased.
        quantity: Number of units, must be positive.
        price: Price per unit in ``currency``.
        trade_date: The user-assigned trade date.
        currency: Currency the price is denominated in.
        broker: Broker name. Defaults to "Unassigned".
        exchange_rate_manager: Used to resolve the rate to USD for non-USD
            operations. Required unless ``currency`` is USD.

    Returns:
        The new Operation, with an empty id until it is appended to a store.
    """
    if currency == Currency.USD:
        rate = Decimal("1")
    elif exchange_rate_manager is None:
        raise ValueError(f"An exchange rate manager is required to record a {currency.value} operation")
    else:
        rate = exchange_rate_manager.get_exchange_rate(currency, Currency.USD)

    return Operation(
        operation_type=operation_type,
        ticker=ticker.strip().upper(),
        quantity=quantity,
        price=price,
        date=trade_date,
        currency=currency,
        price_in_usd=price * rate,
        exchange_rate_at_entry=rate,
        broker=broker or DEFAULT_BROKER,
    )


def _is_missing(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, float) and math.isnan(value):
        return True
    if isinstance(value, str) and not value.strip():
        return True
    return False


def _field(record: Mapping[str, Any], *names: str) -> Any:
    """Return the first present value among several key spellings."""
    for name in names:
        value = record.get(name)
        if not _is_missing(value):
            return value
    return None


def _to_decimal(value: Any, name: str) -> Decimal:
    try:
        result = Decimal(str(value))
    except ArithmeticError as e:
        raise ValueError(f"Invalid {name}: {value!r}") from e
    if not result.is_finite():
        raise ValueError(f"Invalid {name}: {value!r}")
    return result


def _to_date(value: Any) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value).strip()[:10])


def _to_created_at(value: Any) -> datetime:
    if value is None:
        return EPOCH
    if isinstance(value, datetime):
        created_at = value
    elif isinstance(value, (int, float)):
        seconds = float(value)
        # Millisecond timestamps
        if seconds > 1e12:
            seconds = seconds / 1000
        created_at = datetime.fromtimestamp(seconds, tz=timezone.utc)
    else:
        created_at = datetime.fromisoformat(str(value).strip())
    if created_at.tzinfo is None:
        created_at = created_at.replace(tzinfo=timezone.utc)
    return created_at


def normalize_operation(record: Mapping[str, Any]) -> Operation:
    """
    Normalize a raw ledger record into a fully populated Operation.

    Legacy records may lack currency fields. Defaults are substituted here,
    once, so the replay engines never deal with missing values:
    currency defaults to USD, the USD price to the native price, the broker
    to "Unassigned" and the creation timestamp to the epoch.

    Both the camelCase keys of stored documents (``priceInUSD``,
    ``exchangeRateAtEntry``, ``timestamp``) and snake_case keys are accepted.

    Args:
        record: Mapping with at least type, ticker, quantity, price and date.

    Returns:
        The canonical Operation.

    Raises:
        ValueError: If the record is structurally invalid (unknown type or
            currency, non-positive quantity, unparseable numbers or dates).
    """
    raw_type = _field(record, "type", "operation_type", "transaction_type")
    if raw_type is None:
        raise ValueError(f"Operation record has no type: {dict(record)!r}")
    if isinstance(raw_type, OperationType):
        operation_type = raw_type
    else:
        try:
            operation_type = _TYPE_ALIASES[str(raw_type).strip().upper()]
        except KeyError as e:
            raise ValueError(f"Unknown operation type: {raw_type!r}") from e

    ticker = _field(record, "ticker", "symbol")
    if ticker is None:
        raise ValueError(f"Operation record has no ticker: {dict(record)!r}")

    raw_date = _field(record, "date", "trade_date")
    if raw_date is None:
        raise ValueError(f"Operation record has no date: {dict(record)!r}")

    quantity = _to_decimal(_field(record, "quantity"), "quantity")
    price = _to_decimal(_field(record, "price"), "price")

    raw_currency = _field(record, "currency")
    if raw_currency is None:
        currency = Currency.USD
    elif isinstance(raw_currency, Currency):
        currency = raw_currency
    else:
        currency = Currency(str(raw_currency).strip().upper())

    raw_price_usd = _field(record, "priceInUSD", "price_in_usd")
    price_in_usd = price if raw_price_usd is None else _to_decimal(raw_price_usd, "priceInUSD")

    raw_rate = _field(record, "exchangeRateAtEntry", "exchange_rate_at_entry")
    if raw_rate is not None:
        exchange_rate = _to_decimal(raw_rate, "exchangeRateAtEntry")
    elif price != 0:
        exchange_rate = price_in_usd / price
    else:
        exchange_rate = Decimal("1")

    broker = _field(record, "broker")
    record_id = _field(record, "id")

    return Operation(
        operation_type=operation_type,
        ticker=str(ticker).strip().upper(),
        quantity=quantity,
        price=price,
        date=_to_date(raw_date),
        currency=currency,
        price_in_usd=price_in_usd,
        exchange_rate_at_entry=exchange_rate,
        broker=str(broker) if broker is not None else DEFAULT_BROKER,
        created_at=_to_created_at(_field(record, "timestamp", "created_at", "createdAt")),
        id=str(record_id) if record_id is not None else "",
    )


def operation_to_record(operation: Operation) -> dict[str, Any]:
    """Serialize an operation to a JSON-compatible dictionary."""
    return {
        "id": operation.id,
        "type": operation.operation_type.value,
        "ticker": operation.ticker,
        "quantity": str(operation.quantity),
        "price": str(operation.price),
        "currency": operation.currency.value,
        "price_in_usd": str(operation.usd_price),
        "exchange_rate_at_entry": str(operation.exchange_rate_at_entry),
        "date": operation.date.isoformat(),
        "broker": operation.broker,
        "created_at": operation.created_at.isoformat(),
    }


LedgerCallback = Callable[[list[Operation]], None]


class LedgerStore(ABC):
    """Append-only, event-sourced log of operations.

    Subscribers receive the full current snapshot, ordered by insertion,
    on subscription and after every change.
    """

    @abstractmethod
    def append(self, operation: Operation) -> str:
        raise NotImplementedError("This method should be overridden by subclasses.")

    @abstractmethod
    def update(self, operation_id: str, **fields: Any) -> Operation:
        raise NotImplementedError("This method should be overridden by subclasses.")

    @abstractmethod
    def delete(self, operation_id: str) -> None:
        raise NotImplementedError("This method should be overridden by subclasses.")

    @abstractmethod
    def subscribe(self, callback: LedgerCallback) -> Callable[[], None]:
        raise NotImplementedError("This method should be overridden by subclasses.")

    @abstractmethod
    def operations(self) -> list[Operation]:
        raise NotImplementedError("This method should be overridden by subclasses.")


class InMemoryLedgerStore(LedgerStore):
    """Ledger store kept in process memory."""

    def __init__(self, operations: list[Operation] | None = None):
        """Initialize the store.

        Args:
            operations: Initial operations, in insertion order. Operations
                without an id are assigned one.
        """
        self._operations: dict[str, Operation] = {}
        self._subscribers: list[LedgerCallback] = []
        for operation in operations or []:
            operation = self._with_id(operation)
            self._operations[operation.id] = operation

    @staticmethod
    def _with_id(operation: Operation) -> Operation:
        if operation.id:
            return operation
        return replace(operation, id=uuid.uuid4().hex)

    def operations(self) -> list[Operation]:
        return list(self._operations.values())

    def _notify(self) -> None:
        snapshot = self.operations()
        for callback in list(self._subscribers):
            callback(snapshot)

    def append(self, operation: Operation) -> str:
        """Append an operation and notify subscribers.

        Returns:
            The id of the stored operation.

        Raises:
            ValueError: If an operation with the same id already exists.
        """
        operation = self._with_id(operation)
        if operation.id in self._operations:
            raise ValueError(f"Operation {operation.id} already exists")
        self._operations[operation.id] = operation
        self._notify()
        return operation.id

    def update(self, operation_id: str, **fields: Any) -> Operation:
        """Replace fields of an existing operation and notify subscribers.

        Args:
            operation_id: The id of the operation to edit.
            **fields: Operation attributes to replace (e.g. ``quantity``,
                ``date``, ``price``).

        Returns:
            The updated Operation.

        Raises:
            KeyError: If no operation has this id.
            ValueError: If the edit produces an invalid operation.
        """
        if operation_id not in self._operations:
            raise KeyError(f"Unknown operation id: {operation_id}")
        if "id" in fields and fields["id"] != operation_id:
            raise ValueError("Operation ids cannot be changed")
        if ("price" in fields or "exchange_rate_at_entry" in fields) and "price_in_usd" not in fields:
            # Re-derived from the new price and rate in Operation.__post_init__
            fields["price_in_usd"] = None
        updated = replace(self._operations[operation_id], **fields)
        self._operations[operation_id] = updated
        self._notify()
        return updated

    def delete(self, operation_id: str) -> None:
        """Delete an operation and notify subscribers.

        Raises:
            KeyError: If no operation has this id.
        """
        if operation_id not in self._operations:
            raise KeyError(f"Unknown operation id: {operation_id}")
        del self._operations[operation_id]
        self._notify()

    def subscribe(self, callback: LedgerCallback) -> Callable[[], None]:
        """Register a callback; it is invoked immediately with the current snapshot.

        Returns:
            A function that removes the subscription.
        """
        self._subscribers.append(callback)
        callback(self.operations())

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe


EXCEL_HEADERS = [
    "ID", "TYPE", "TICKER", "DATE", "QUANTITY", "PRICE", "CURRENCY",
    "PRICE IN USD", "EXCHANGE RATE", "BROKER", "CREATED AT",
]

# Excel header -> normalize_operation key
_EXCEL_COLUMNS = {
    "ID": "id",
    "TYPE": "type",
    "TICKER": "ticker",
    "DATE": "date",
    "QUANTITY": "quantity",
    "PRICE": "price",
    "CURRENCY": "currency",
    "PRICE IN USD": "price_in_usd",
    "EXCHANGE RATE": "exchange_rate_at_entry",
    "BROKER": "broker",
    "CREATED AT": "created_at",
}


def load_operations_from_json(file_path: str) -> list[Operation]:
    """
    Load operations from a JSON file.

    Args:
        file_path: Path to the JSON file.

    Returns:
        Normalized operations in file order.

    Expected JSON structure:
        [
            {
                "id": "op-1",
                "type": "ADD",
                "ticker": "AAPL",
                "quantity": 10,
                "price": 150.50,
                "currency": "USD",
                "date": "2024-01-15",
                "broker": "Interactive Brokers"
            },
            ...
        ]
    """
    with open(file_path, "r") as f:
        data = json.load(f)

    if not isinstance(data, list):
        raise ValueError("JSON file must contain a list of operations")

    item: Any
    return [normalize_operation(item) for item in data]  # type: ignore[union-attr]


def save_operations_to_json(operations: list[Operation], file_path: str) -> None:
    """
    Save operations to a JSON file.

    Args:
        operations: Operations to write.
        file_path: Path to the JSON file to write.
    """
    data = [operation_to_record(operation) for operation in operations]
    with open(file_path, "w") as f:
        json.dump(data, f, indent=2)


def load_operations_from_excel(file_path: str) -> list[Operation]:
    """
    Load operations from an Excel file.

    Args:
        file_path: Path to the Excel file.

    Returns:
        Normalized operations in row order.

    Expected Excel columns (order independent):
        - TYPE, TICKER, DATE, QUANTITY, PRICE: required
        - ID, CURRENCY, PRICE IN USD, EXCHANGE RATE, BROKER, CREATED AT:
          optional, legacy defaults are used when empty
    """
    if not os.path.exists(file_path):
        raise FileNotFoundError(f"Ledger file not found: {file_path}")

    df = pd.read_excel(file_path)
    if df.empty:
        return []

    required_columns = {"TYPE", "TICKER", "DATE", "QUANTITY", "PRICE"}
    missing_columns = required_columns - set(df.columns)
    if missing_columns:
        raise ValueError(f"Missing required columns: {missing_columns}")

    operations: list[Operation] = []
    for _, row in df.iterrows():
        record: dict[str, Any] = {}
        for header, key in _EXCEL_COLUMNS.items():
            if header in df.columns and pd.notna(row[header]):
                value = row[header]
                if isinstance(value, pd.Timestamp):
                    value = value.to_pydatetime()
                record[key] = value
        operations.append(normalize_operation(record))
    return operations


def save_operations_to_excel(operations: list[Operation], file_path: str) -> None:
    """
    Save operations to an Excel file with the EXCEL_HEADERS columns.

    Args:
        operations: Operations to write.
        file_path: Path to the Excel file to write.
    """
    wb = Workbook()
    ws = wb.active
    assert ws is not None

    for col, header in enumerate(EXCEL_HEADERS, start=1):
        ws.cell(row=1, column=col, value=header)

    for row, operation in enumerate(operations, start=2):
        record = operation_to_record(operation)
        ws.cell(row=row, column=1, value=record["id"])
        ws.cell(row=row, column=2, value=record["type"])
        ws.cell(row=row, column=3, value=record["ticker"])
        ws.cell(row=row, column=4, value=record["date"])
        ws.cell(row=row, column=5, value=float(operation.quantity))
        ws.cell(row=row, column=6, value=float(operation.price))
        ws.cell(row=row, column=7, value=record["currency"])
        ws.cell(row=row, column=8, value=float(operation.usd_price))
        ws.cell(row=row, column=9, value=float(operation.exchange_rate_at_entry))
        ws.cell(row=row, column=10, value=record["broker"])
        ws.cell(row=row, column=11, value=record["created_at"])

    wb.save(file_path)


def load_operations(file_path: str) -> list[Operation]:
    """Load operations from a ``.json`` or ``.xlsx`` file based on its extension."""
    if file_path.lower().endswith(".json"):
        return load_operations_from_json(file_path)
    if file_path.lower().endswith((".xlsx", ".xls")):
        return load_operations_from_excel(file_path)
    raise ValueError(f"Unsupported ledger file type: {file_path}")
