# src/core/miner_economics.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from src.config import settings
from src.core.live_data import MarketSnapshot, hashrate_from_difficulty
from src.core.miner_models import TelemetrySnapshot
from src.core.power_pricing import PricingConfig, price_breakdown


@dataclass(frozen=True)
class EfficiencyResult:
    # Price (per kWh, in `currency`)
    pricing_mode: str
    spot_price_per_kwh: float
    grid_fee_per_kwh: float
    effective_price_per_kwh: float
    is_daytime: bool

    # Economics
    btc_per_day: float
    earnings_per_day: float
    earnings_per_hour: float
    cost_per_day: float
    cost_per_hour: float
    profit_per_day: float
    profit_per_hour: float
    is_profitable: bool
    breakeven_btc_price: Optional[float]

    # Efficiency
    efficiency_j_per_th: Optional[float]
    efficiency_th_per_kw: Optional[float]

    # Heating
    heat_kwh_per_day: float
    effective_cop: float
    heat_pump_cop: float
    heating_ratio: float

    currency: str
    power_is_estimated: bool = False


def compute_daily_yield(
    hashrate_ths: float,
    network_hashrate_ths: float,
    block_reward_btc: float = settings.BLOCK_SUBSIDY_BTC,
    blocks_per_day: float = settings.BLOCKS_PER_DAY,
) -> float:
    """
    Expected BTC/day as a proportional share of the network.

    Assumes no pool fees, no transaction fees and 100% uptime.
    """
    if network_hashrate_ths <= 0 or hashrate_ths <= 0:
        return 0.0
    share = hashrate_ths / network_hashrate_ths
    return share * block_reward_btc * blocks_per_day


def compute_effective_cop(
    cost_per_day: float, earnings_per_day: float, max_cop: float = settings.MAX_EFFECTIVE_COP
) -> float:
    """
    Heat delivered per unit of money actually spent, relative to resistive
    heating at the same electricity price.

    A miner earning nothing behaves like a panel heater (COP 1). Earnings shrink
    the net heating cost; once they cover it the ratio is capped.
    """
    net_cost = cost_per_day - earnings_per_day
    if net_cost <= 0:
        return max_cop
    return min(max_cop, max(0.0, cost_per_day / net_cost))


def _network_inputs(market: Optional[MarketSnapshot]) -> tuple[float, float, float]:
    network = market.network_stats if market is not None else None
    if network is None:
        return (
            hashrate_from_difficulty(settings.DEFAULT_NETWORK_DIFFICULTY),
            settings.BLOCK_SUBSIDY_BTC,
            settings.BLOCKS_PER_DAY,
        )
    hashrate = network.hashrate_ths or hashrate_from_difficulty(network.difficulty)
    return hashrate, network.block_reward_btc, network.blocks_per_day


def _btc_quotes(market: Optional[MarketSnapshot], currency: str) -> tuple[float, float]:
    """
    (BTC price in NOK, BTC price in `currency`), both from the same source.

    Falls back to the static quotes as a pair so the cross rate never mixes
    live and default prices.
    """
    rates = market.exchange_rates if market is not None else None
    quotes = rates.rates if rates is not None else {}
    if not quotes.get(settings.PRICE_CURRENCY) or quotes.get(currency.lower()) is None:
        quotes = settings.DEFAULT_BTC_PRICE
    return (
        float(quotes[settings.PRICE_CURRENCY]),
        float(quotes.get(currency.lower(), quotes[settings.PRICE_CURRENCY])),
    )


def _spot_price(market: Optional[MarketSnapshot]) -> float:
    spot = market.spot_price if market is not None else None
    return spot.current if spot is not None else settings.DEFAULT_SPOT_PRICE_PER_KWH


def compute_efficiency(
    snapshot: TelemetrySnapshot,
    pricing: PricingConfig,
    at: datetime,
    market: Optional[MarketSnapshot],
) -> EfficiencyResult:
    """
    Canonical cost / earnings / heating calculation for one miner.

    - snapshot: normalised telemetry (hashrate TH/s, power W)
    - pricing: billing mode and grid fee windows
    - at: the moment the price applies to (selects day/night grid fee)
    - market: cached market data; missing entries fall back to settings defaults

    Everything is computed in NOK, the currency of the spot feed and the
    tariffs, then converted to `pricing.currency` through the BTC cross rate.

    Pure function: no I/O, same inputs give the same result.
    """
    breakdown = price_breakdown(_spot_price(market), at, pricing)

    network_hashrate, block_reward, blocks_per_day = _network_inputs(market)
    btc_day = compute_daily_yield(
        snapshot.hashrate_ths, network_hashrate, block_reward, blocks_per_day
    )
    btc_price_nok, btc_price_display = _btc_quotes(market, pricing.currency)
    fx = btc_price_display / btc_price_nok

    power_kw = max(0.0, snapshot.power_kw)
    kwh_day = power_kw * 24.0
    earnings_day_nok = btc_day * btc_price_nok
    cost_day_nok = kwh_day * breakdown.total

    # ratios are currency independent
    effective_cop = compute_effective_cop(cost_day_nok, earnings_day_nok)

    price = breakdown.total * fx
    earnings_day = earnings_day_nok * fx
    cost_day = cost_day_nok * fx
    profit_day = earnings_day - cost_day

    hashrate = snapshot.hashrate_ths
    efficiency_j_per_th = snapshot.power_w / hashrate if hashrate > 0 else None
    efficiency_th_per_kw = hashrate / power_kw if power_kw > 0 else None

    heat_pump_cop = pricing.heat_pump_cop
    heating_ratio = effective_cop / heat_pump_cop if heat_pump_cop > 0 else 0.0

    return EfficiencyResult(
        pricing_mode=breakdown.mode,
        spot_price_per_kwh=breakdown.spot_price * fx,
        grid_fee_per_kwh=breakdown.grid_fee * fx,
        effective_price_per_kwh=price,
        is_daytime=breakdown.is_daytime,
        btc_per_day=btc_day,
        earnings_per_day=earnings_day,
        earnings_per_hour=earnings_day / 24.0,
        cost_per_day=cost_day,
        cost_per_hour=cost_day / 24.0,
        profit_per_day=profit_day,
        profit_per_hour=profit_day / 24.0,
        is_profitable=profit_day > 0,
        breakeven_btc_price=cost_day / btc_day if btc_day > 0 else None,
        efficiency_j_per_th=efficiency_j_per_th,
        efficiency_th_per_kw=efficiency_th_per_kw,
        heat_kwh_per_day=kwh_day,
        effective_cop=effective_cop,
        heat_pump_cop=heat_pump_cop,
        heating_ratio=heating_ratio,
        currency=pricing.currency,
        power_is_estimated=snapshot.power_is_estimated,
    )
