from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
import os

from dotenv import load_dotenv

from .currency import FOREX_CACHE_TTL_SECONDS, Currency
from .marketdata import DEFAULT_BATCH_DELAY_SECONDS, DEFAULT_BATCH_SIZE, MARKET_DATA_CACHE_TTL_SECONDS
from .metrics import DEFAULT_RISK_FREE_RATE


def _env(name: str) -> str | None:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return None
    return value.strip()


def _env_float(name: str, default: float, minimum: float = 0.0) -> float:
    value = _env(name)
    if value is None:
        return default
    try:
        parsed = float(value)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {value!r}")
    if parsed < minimum:
        raise ValueError(f"{name} must be at least {minimum}, got {parsed}")
    return parsed


def _env_int(name: str, default: int, minimum: int = 1) -> int:
    value = _env(name)
    if value is None:
        return default
    try:
        parsed = int(value)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {value!r}")
    if parsed < minimum:
        raise ValueError(f"{name} must be at least {minimum}, got {parsed}")
    return parsed


@dataclass(frozen=True)
class Config:
    """Runtime configuration, read from the environment (and a ``.env`` file)."""
    reporting_currency: Currency = Currency.USD
    risk_free_rate: float = DEFAULT_RISK_FREE_RATE
    forex_cache_ttl: float = FOREX_CACHE_TTL_SECONDS
    market_data_ttl: float = MARKET_DATA_CACHE_TTL_SECONDS
    batch_size: int = DEFAULT_BATCH_SIZE
    batch_delay: float = DEFAULT_BATCH_DELAY_SECONDS
    principal_investment: Decimal = Decimal("0")

    @classmethod
    def from_env(cls, dotenv: bool = True) -> "Config":
        """Build a Config from ``LEDGERFOLIO_*`` environment variables.

        Unset or blank variables keep their defaults.

        Args:
            dotenv: Load a ``.env`` file first. Variables already set in the
                environment take precedence over the file.

        Raises:
            ValueError: If a variable holds an invalid value.
        """
        if dotenv:
            load_dotenv()

        currency_code = _env("LEDGERFOLIO_REPORTING_CURRENCY")
        try:
            reporting_currency = Currency(currency_code.upper()) if currency_code else Currency.USD
        except ValueError:
            raise ValueError(f"LEDGERFOLIO_REPORTING_CURRENCY is not a supported currency: {currency_code!r}")

        principal = _env("LEDGERFOLIO_PRINCIPAL_INVESTMENT")
        try:
            principal_investment = Decimal(principal) if principal else Decimal("0")
        except InvalidOperation:
            raise ValueError(f"LEDGERFOLIO_PRINCIPAL_INVESTMENT must be a number, got {principal!r}")
        if not principal_investment.is_finite() or principal_investment < 0:
            raise ValueError(f"LEDGERFOLIO_PRINCIPAL_INVESTMENT must be a non-negative number, got {principal!r}")

        return cls(
            reporting_currency=reporting_currency,
            risk_free_rate=_env_float("LEDGERFOLIO_RISK_FREE_RATE", DEFAULT_RISK_FREE_RATE, minimum=-1.0),
            forex_cache_ttl=_env_float("LEDGERFOLIO_FOREX_CACHE_TTL", FOREX_CACHE_TTL_SECONDS),
            market_data_ttl=_env_float("LEDGERFOLIO_MARKET_DATA_TTL", MARKET_DATA_CACHE_TTL_SECONDS),
            batch_size=_env_int("LEDGERFOLIO_BATCH_SIZE", DEFAULT_BATCH_SIZE),
            batch_delay=_env_float("LEDGERFOLIO_BATCH_DELAY", DEFAULT_BATCH_DELAY_SECONDS),
            principal_investment=principal_investment
        )
