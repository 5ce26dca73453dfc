# src/core/miner_models.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Tuple

from src.config import settings


@dataclass(frozen=True)
class DeviceTarget:
    """
    A configured miner.

    Owned by the configuration collaborator; the core only reads it.
    """

    address: str
    name: str = ""
    profile: str = settings.DEFAULT_CONTROL_PROFILE
    port: int = settings.DEVICE_API_PORT

    @property
    def display_name(self) -> str:
        return self.name or self.address


@dataclass(frozen=True)
class Temperatures:
    board1: Optional[float] = None
    board2: Optional[float] = None
    board3: Optional[float] = None
    chip: Optional[float] = None
    source: Optional[str] = None

    @property
    def boards(self) -> Tuple[Optional[float], Optional[float], Optional[float]]:
        return (self.board1, self.board2, self.board3)

    def is_empty(self) -> bool:
        return self.chip is None and all(t is None for t in self.boards)


@dataclass(frozen=True)
class FanSpeeds:
    speed1: Optional[int] = None
    speed2: Optional[int] = None
    speed3: Optional[int] = None
    speed4: Optional[int] = None
    source: Optional[str] = None

    @property
    def speeds(self) -> Tuple[Optional[int], ...]:
        return (self.speed1, self.speed2, self.speed3, self.speed4)

    def is_empty(self) -> bool:
        return all(s is None for s in self.speeds)


@dataclass(frozen=True)
class TelemetrySnapshot:
    """
    Normalised per-device reading for one poll cycle.

    Built fresh every cycle and replaced (never merged) by the next one.
    """

    address: str
    name: str
    hashrate_ths: float
    chip_temp_c: Optional[float]
    board_temps_c: Tuple[Optional[float], Optional[float], Optional[float]]
    fan_speeds_rpm: Tuple[Optional[int], ...]
    power_w: float
    power_is_estimated: bool
    uptime_s: int
    pool_connected: bool
    pool_url: str
    accepted_shares: int
    rejected_shares: int
    reject_rate: float  # fraction, 0..1
    profile: str = settings.DEFAULT_CONTROL_PROFILE
    temperature_source: Optional[str] = None
    fan_source: Optional[str] = None
    fetched_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def power_kw(self) -> float:
        return self.power_w / 1000.0

    @property
    def pool_status(self) -> str:
        return "Connected" if self.pool_connected else "Disconnected"
