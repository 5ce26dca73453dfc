# src/core/errors.py
from __future__ import annotations


class MinerError(RuntimeError):
    """Base class for errors raised by the telemetry core."""


class DeviceConnectionError(MinerError, ConnectionError):
    """Raised when the miner API port cannot be reached."""


class DeviceTimeoutError(MinerError, TimeoutError):
    """Raised when the miner accepted the connection but did not answer in time."""


class ProtocolError(MinerError):
    """Raised when a miner reply is not valid JSON."""


class StatsUnavailable(MinerError):
    """Raised when the core summary/stats/pools commands fail for a device."""

    def __init__(self, address: str, cause: Exception):
        super().__init__(f"Failed to get miner stats from {address}: {cause}")
        self.address = address
        self.cause = cause


class MarketDataUnavailable(MinerError):
    """Raised by market data fetchers; absorbed by the cache that owns them."""
