# src/core/live_data.py
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from functools import partial
from typing import Any, Callable, Generic, Optional, TypeVar
from zoneinfo import ZoneInfo

import pandas as pd
import requests

from src.config import settings
from src.config.env import PRICE_ZONE
from src.core.errors import MarketDataUnavailable

logger = logging.getLogger(__name__)

T = TypeVar("T")

# ---------------------------------------------------------
# Data model
# ---------------------------------------------------------


@dataclass(frozen=True, slots=True)
class SpotPrice:
    """Spot electricity price for the current local day, NOK/kWh incl. VAT."""

    zone: str
    current: float
    average: float
    minimum: float
    maximum: float
    points: int
    as_of_utc: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(frozen=True, slots=True)
class ExchangeRates:
    """Price of 1 BTC per currency (lowercase ISO codes)."""

    rates: dict[str, float]
    as_of_utc: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def price(self, currency: str) -> Optional[float]:
        return self.rates.get(currency.lower())


@dataclass(frozen=True, slots=True)
class NetworkStats:
    difficulty: float
    hashrate_ths: float
    block_height: Optional[int] = None
    block_reward_btc: float = settings.BLOCK_SUBSIDY_BTC
    blocks_per_day: int = settings.BLOCKS_PER_DAY
    as_of_utc: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


def _get_json(url: str, params: Optional[dict[str, Any]] = None) -> Any:
    resp = requests.get(
        url,
        params=params,
        headers={"User-Agent": settings.LIVE_DATA_USER_AGENT},
        timeout=settings.LIVE_DATA_REQUEST_TIMEOUT_S,
    )
    resp.raise_for_status()
    return resp.json()


# ---------------------------------------------------------
# Spot electricity price
# ---------------------------------------------------------


def vat_multiplier(zone: str) -> float:
    return settings.VAT_MULTIPLIERS.get(zone.upper(), 1.25)


def summarise_price_curve(rows: list[dict[str, Any]], zone: str, now: datetime) -> SpotPrice:
    """
    Reduce the provider's price rows to current/avg/min/max for the local day.

    - rows: [{"NOK_per_kWh": 0.85, "time_start": "2025-01-15T00:00:00+01:00", ...}]
    - now: timezone-aware timestamp; the local day and current slot follow it
    """
    tz = ZoneInfo(settings.SPOT_PRICE_TIMEZONE)
    df = pd.DataFrame(rows)
    if df.empty or not {"NOK_per_kWh", "time_start"}.issubset(df.columns):
        raise MarketDataUnavailable(f"Unexpected spot price payload for {zone}")

    df["time_start"] = pd.to_datetime(df["time_start"], utc=True).dt.tz_convert(tz)
    df["price"] = df["NOK_per_kWh"].astype(float) * vat_multiplier(zone)
    df = df.sort_values("time_start")

    if now.tzinfo is None:
        now = now.replace(tzinfo=tz)
    local_now = pd.Timestamp(now).tz_convert(tz)
    day = df[df["time_start"].dt.date == local_now.date()]
    if day.empty:
        raise MarketDataUnavailable(f"No spot prices for {zone} on {local_now.date()}")

    started = day[day["time_start"] <= local_now]
    current = started["price"].iloc[-1] if not started.empty else day["price"].iloc[0]

    return SpotPrice(
        zone=zone.upper(),
        current=float(current),
        average=float(day["price"].mean()),
        minimum=float(day["price"].min()),
        maximum=float(day["price"].max()),
        points=int(len(day)),
        as_of_utc=datetime.now(timezone.utc),
    )


def fetch_spot_price(zone: str = PRICE_ZONE, now: Optional[datetime] = None) -> SpotPrice:
    """Fetch today's hourly price curve for a Norwegian zone (NO1..NO5)."""
    tz = ZoneInfo(settings.SPOT_PRICE_TIMEZONE)
    local_now = (now or datetime.now(timezone.utc)).astimezone(tz)
    url = settings.SPOT_PRICE_URL.format(
        year=local_now.year, month=local_now.month, day=local_now.day, zone=zone.upper()
    )
    try:
        rows = _get_json(url)
    except (requests.RequestException, ValueError) as exc:
        raise MarketDataUnavailable(f"Spot price fetch failed for {zone}: {exc}") from exc
    if not isinstance(rows, list):
        raise MarketDataUnavailable(f"Unexpected spot price payload: {rows}")
    return summarise_price_curve(rows, zone, local_now)


# ---------------------------------------------------------
# BTC exchange price
# ---------------------------------------------------------


def fetch_exchange_rates(currencies: tuple[str, ...] = settings.EXCHANGE_CURRENCIES) -> ExchangeRates:
    """Fetch BTC spot price in each currency from CoinGecko."""
    try:
        data = _get_json(
            settings.COINGECKO_SIMPLE_PRICE_URL,
            params={"ids": "bitcoin", "vs_currencies": ",".join(currencies)},
        )
        quotes = data["bitcoin"]
        rates = {c: float(quotes[c]) for c in currencies if c in quotes}
    except (requests.RequestException, KeyError, TypeError, ValueError) as exc:
        raise MarketDataUnavailable(f"Exchange rate fetch failed: {exc}") from exc
    if not rates:
        raise MarketDataUnavailable(f"No BTC quotes in payload: {data}")
    return ExchangeRates(rates=rates)


# ---------------------------------------------------------
# Network difficulty / hashrate
# ---------------------------------------------------------


def hashrate_from_difficulty(difficulty: float) -> float:
    """Implied network hashrate in TH/s."""
    return float(difficulty) * 2**32 / settings.SECONDS_PER_BLOCK / 1e12


def fetch_network_stats() -> NetworkStats:
    """
    Difficulty and hashrate from mempool.space; block height is optional.
    """
    try:
        data = _get_json(settings.MEMPOOL_HASHRATE_URL)
        difficulty = float(data["currentDifficulty"])
        raw_hashrate = data.get("currentHashrate")
    except (requests.RequestException, KeyError, TypeError, ValueError) as exc:
        raise MarketDataUnavailable(f"Network stats fetch failed: {exc}") from exc

    hashrate = (
        float(raw_hashrate) / 1e12
        if raw_hashrate
        else hashrate_from_difficulty(difficulty)
    )

    try:
        # bare JSON integer
        height = int(_get_json(settings.MEMPOOL_BLOCKTIP_URL))
    except (requests.RequestException, TypeError, ValueError):
        height = None

    return NetworkStats(difficulty=difficulty, hashrate_ths=hashrate, block_height=height)


# ---------------------------------------------------------
# Caches
# ---------------------------------------------------------


@dataclass(frozen=True)
class CacheEntry(Generic[T]):
    value: Optional[T]
    fetched_at: Optional[datetime]
    refresh_interval_s: float
    last_error: Optional[str] = None
    last_attempt_at: Optional[datetime] = None

    def age_s(self, now: Optional[datetime] = None) -> Optional[float]:
        if self.fetched_at is None:
            return None
        now = now or datetime.now(timezone.utc)
        return (now - self.fetched_at).total_seconds()


class MarketDataCache(Generic[T]):
    """
    Last-known-good value for one market data source.

    Each refresh publishes a brand new CacheEntry by rebinding one attribute,
    so readers see either the old or the new entry. A failed refresh keeps the
    previous value and only records the error.
    """

    def __init__(self, name: str, fetcher: Callable[[], T], refresh_interval_s: float):
        self.name = name
        self._fetcher = fetcher
        self._entry: CacheEntry[T] = CacheEntry(None, None, refresh_interval_s)
        self._refresh_lock = threading.Lock()

    @property
    def entry(self) -> CacheEntry[T]:
        return self._entry

    @property
    def value(self) -> Optional[T]:
        return self._entry.value

    def is_due(self, now: Optional[datetime] = None) -> bool:
        age = self._entry.age_s(now)
        return age is None or age >= self._entry.refresh_interval_s

    def refresh(self, now: Optional[datetime] = None) -> CacheEntry[T]:
        """Fetch and publish; never raises."""
        now = now or datetime.now(timezone.utc)
        with self._refresh_lock:
            try:
                value = self._fetcher()
                if value is None:
                    raise MarketDataUnavailable(f"{self.name} fetcher returned no data")
            except Exception as exc:  # never cascade into the poll cycle
                logger.warning(
                    "%s refresh failed, keeping value from %s: %s",
                    self.name,
                    self._entry.fetched_at,
                    exc,
                )
                self._entry = replace(self._entry, last_error=str(exc), last_attempt_at=now)
                return self._entry

            self._entry = CacheEntry(
                value=value,
                fetched_at=now,
                refresh_interval_s=self._entry.refresh_interval_s,
                last_attempt_at=now,
            )
            logger.debug("%s refreshed", self.name)
            return self._entry


@dataclass(frozen=True)
class MarketSnapshot:
    price: CacheEntry[SpotPrice]
    exchange: CacheEntry[ExchangeRates]
    network: CacheEntry[NetworkStats]

    @property
    def spot_price(self) -> Optional[SpotPrice]:
        return self.price.value

    @property
    def exchange_rates(self) -> Optional[ExchangeRates]:
        return self.exchange.value

    @property
    def network_stats(self) -> Optional[NetworkStats]:
        return self.network.value


class MarketData:
    """The three market caches with their own refresh intervals."""

    def __init__(
        self,
        zone: str = PRICE_ZONE,
        price_fetcher: Optional[Callable[[], SpotPrice]] = None,
        exchange_fetcher: Optional[Callable[[], ExchangeRates]] = None,
        network_fetcher: Optional[Callable[[], NetworkStats]] = None,
    ):
        self.zone = zone
        self.price = MarketDataCache(
            "Spot price",
            price_fetcher or partial(fetch_spot_price, zone),
            settings.PRICE_REFRESH_INTERVAL_S,
        )
        self.exchange = MarketDataCache(
            "Exchange rate",
            exchange_fetcher or fetch_exchange_rates,
            settings.EXCHANGE_REFRESH_INTERVAL_S,
        )
        self.network = MarketDataCache(
            "Network stats",
            network_fetcher or fetch_network_stats,
            settings.NETWORK_REFRESH_INTERVAL_S,
        )

    @property
    def caches(self) -> tuple[MarketDataCache, ...]:
        return (self.price, self.exchange, self.network)

    def refresh_all(self) -> MarketSnapshot:
        for cache in self.caches:
            cache.refresh()
        return self.snapshot()

    def snapshot(self) -> MarketSnapshot:
        return MarketSnapshot(
            price=self.price.entry,
            exchange=self.exchange.entry,
            network=self.network.entry,
        )
