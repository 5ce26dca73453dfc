# src/core/miner_service.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from src.core.live_data import MarketSnapshot
from src.core.miner_economics import EfficiencyResult, compute_efficiency
from src.core.miner_models import DeviceTarget, TelemetrySnapshot
from src.core.power_pricing import PricingConfig
from src.core.stats_aggregator import get_miner_stats


@dataclass(frozen=True)
class MinerStats:
    snapshot: TelemetrySnapshot
    efficiency: EfficiencyResult


def get_stats(
    target: DeviceTarget,
    pricing: PricingConfig,
    market: Optional[MarketSnapshot],
    at: Optional[datetime] = None,
) -> MinerStats:
    """
    Public-facing function for the HTTP/WebSocket layer.

    Raises StatsUnavailable when the miner cannot be read.
    """
    snapshot = get_miner_stats(target)
    efficiency = compute_efficiency(
        snapshot, pricing, at or datetime.now(timezone.utc), market
    )
    return MinerStats(snapshot=snapshot, efficiency=efficiency)
