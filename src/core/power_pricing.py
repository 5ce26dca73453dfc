# src/core/power_pricing.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Literal
from zoneinfo import ZoneInfo

from src.config import settings
from src.config.env import PRICING_MODE

PricingMode = Literal["fixed", "spot"]
PRICING_MODES: tuple[PricingMode, ...] = ("fixed", "spot")


@dataclass(frozen=True)
class PricingConfig:
    """
    How electricity is billed.

    - mode "fixed": fixed_price + grid fee (Norgespris)
    - mode "spot": spot price reduced by the subsidy above the threshold,
      plus grid fee (strømstøtte)
    Grid fee uses day_rate Monday-Friday between day_start_hour (inclusive)
    and day_end_hour (exclusive), night_rate at all other times.
    """

    mode: PricingMode = "spot"
    fixed_price: float = settings.DEFAULT_FIXED_PRICE_PER_KWH
    subsidy_threshold: float = settings.DEFAULT_SUBSIDY_THRESHOLD_PER_KWH
    subsidy_fraction: float = settings.DEFAULT_SUBSIDY_FRACTION
    day_rate: float = settings.DEFAULT_GRID_DAY_RATE_PER_KWH
    night_rate: float = settings.DEFAULT_GRID_NIGHT_RATE_PER_KWH
    day_start_hour: int = settings.DEFAULT_GRID_DAY_START_HOUR
    day_end_hour: int = settings.DEFAULT_GRID_DAY_END_HOUR
    currency: str = settings.DEFAULT_CURRENCY
    heat_pump_cop: float = settings.DEFAULT_HEAT_PUMP_COP

    def __post_init__(self):
        if self.mode not in PRICING_MODES:
            raise ValueError(f"Unknown pricing mode {self.mode!r}")
        if not 0 <= self.day_start_hour <= 24 or not 0 <= self.day_end_hour <= 24:
            raise ValueError("Grid fee hours must be within 0-24")
        if not 0.0 <= self.subsidy_fraction <= 1.0:
            raise ValueError("Subsidy fraction must be within 0-1")
        if self.currency.lower() not in settings.EXCHANGE_CURRENCIES:
            raise ValueError(f"Unsupported currency {self.currency!r}")


@dataclass(frozen=True)
class PriceBreakdown:
    mode: PricingMode
    spot_price: float
    energy_price: float  # fixed tariff or subsidised spot
    grid_fee: float
    is_daytime: bool

    @property
    def total(self) -> float:
        return self.energy_price + self.grid_fee


def _local(at: datetime) -> datetime:
    if at.tzinfo is None:
        return at
    return at.astimezone(ZoneInfo(settings.SPOT_PRICE_TIMEZONE))


def is_daytime(at: datetime, config: PricingConfig) -> bool:
    """True inside the weekday daytime window (local time)."""
    local = _local(at)
    if local.weekday() >= 5:
        return False
    return config.day_start_hour <= local.hour < config.day_end_hour


def grid_fee(at: datetime, config: PricingConfig) -> float:
    return config.day_rate if is_daytime(at, config) else config.night_rate


def subsidised_spot(spot: float, threshold: float, fraction: float) -> float:
    """Spot price after the subsidy covering `fraction` of the part above `threshold`."""
    if spot <= threshold:
        return spot
    return spot - (spot - threshold) * fraction


def price_breakdown(spot: float, at: datetime, config: PricingConfig) -> PriceBreakdown:
    if config.mode == "fixed":
        energy = config.fixed_price
    else:
        energy = subsidised_spot(spot, config.subsidy_threshold, config.subsidy_fraction)
    daytime = is_daytime(at, config)
    return PriceBreakdown(
        mode=config.mode,
        spot_price=spot,
        energy_price=energy,
        grid_fee=config.day_rate if daytime else config.night_rate,
        is_daytime=daytime,
    )


def effective_price(spot: float, at: datetime, config: PricingConfig) -> float:
    """Total price per kWh the owner pays at `at`."""
    return price_breakdown(spot, at, config).total


def get_default_pricing_config() -> PricingConfig:
    """
    Single place to pull the pricing assumptions for calculations.
    """
    return PricingConfig(mode=PRICING_MODE if PRICING_MODE in PRICING_MODES else "spot")
