# src/core/scheduler.py
"""
APScheduler driver for market data refreshes and the miner poll cycle
"""
from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Optional, Sequence

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from src.config import settings
from src.config.app_config import AppConfig
from src.core.errors import StatsUnavailable
from src.core.live_data import MarketData, MarketSnapshot
from src.core.miner_models import DeviceTarget
from src.core.miner_service import MinerStats, get_stats

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeviceReport:
    """
    One device's entry in a poll cycle.

    On failure `stats` holds the previous cycle's values (stale=True) or None.
    """

    target: DeviceTarget
    stats: Optional[MinerStats]
    market: MarketSnapshot
    error: Optional[str] = None
    stale: bool = False
    polled_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def ok(self) -> bool:
        return self.error is None


Broadcast = Callable[[Sequence[DeviceReport]], None]


class PollScheduler:
    """Scheduler service wrapper"""

    def __init__(
        self,
        config: AppConfig,
        market: Optional[MarketData] = None,
        broadcast: Optional[Broadcast] = None,
        history_sink: Optional[Broadcast] = None,
        scheduler: Optional[BackgroundScheduler] = None,
    ):
        self.config = config
        self.market = market or MarketData(zone=config.zone)
        self.broadcast = broadcast
        self.history_sink = history_sink
        self.scheduler = scheduler or BackgroundScheduler()
        self._latest: tuple[DeviceReport, ...] = ()
        self._last_good: dict[str, MinerStats] = {}
        self._last_history_at: Optional[datetime] = None

    # ---------------------------------------------------------
    # Lifecycle
    # ---------------------------------------------------------

    def start(self) -> None:
        """Fill the market caches, then start the interval jobs."""
        logger.info(
            "Starting poll scheduler for %d miner(s), zone %s",
            len(self.config.devices),
            self.config.zone,
        )
        self.market.refresh_all()
        self._register_jobs()
        self.scheduler.start()

    def shutdown(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        logger.info("Poll scheduler stopped")

    def _register_jobs(self) -> None:
        jobs = (
            (
                self.market.price.refresh,
                settings.PRICE_REFRESH_INTERVAL_S,
                "refresh_spot_price",
                "Refresh spot electricity price",
            ),
            (
                self.market.exchange.refresh,
                settings.EXCHANGE_REFRESH_INTERVAL_S,
                "refresh_exchange_rates",
                "Refresh BTC exchange rates",
            ),
            (
                self.market.network.refresh,
                settings.NETWORK_REFRESH_INTERVAL_S,
                "refresh_network_stats",
                "Refresh network difficulty",
            ),
            (
                self.run_poll_cycle,
                self.config.poll_interval_s,
                "poll_miners",
                "Poll miner telemetry",
            ),
        )
        for func, seconds, job_id, name in jobs:
            self.scheduler.add_job(
                func,
                IntervalTrigger(seconds=seconds),
                id=job_id,
                name=name,
                max_instances=1,
                coalesce=True,
                replace_existing=True,
            )

    # ---------------------------------------------------------
    # Poll cycle
    # ---------------------------------------------------------

    def latest(self) -> tuple[DeviceReport, ...]:
        return self._latest

    def get_market_snapshot(self) -> MarketSnapshot:
        return self.market.snapshot()

    def _poll_device(
        self, target: DeviceTarget, market: MarketSnapshot, at: datetime
    ) -> DeviceReport:
        try:
            stats = get_stats(target, self.config.pricing, market, at)
        except StatsUnavailable as exc:
            error = str(exc)
        except Exception as exc:  # isolate per-device failures
            logger.exception("Unexpected error polling %s", target.address)
            error = f"Unexpected error: {exc}"
        else:
            return DeviceReport(target=target, stats=stats, market=market, polled_at=at)

        previous = self._last_good.get(target.address)
        return DeviceReport(
            target=target,
            stats=previous,
            market=market,
            error=error,
            stale=previous is not None,
            polled_at=at,
        )

    def run_poll_cycle(self, at: Optional[datetime] = None) -> list[DeviceReport]:
        """Poll every configured miner concurrently and publish the results."""
        at = at or datetime.now(timezone.utc)
        market = self.market.snapshot()
        devices = self.config.devices

        reports: list[DeviceReport] = []
        if devices:
            workers = min(settings.MAX_POLL_WORKERS, len(devices))
            with ThreadPoolExecutor(max_workers=workers) as pool:
                futures = [pool.submit(self._poll_device, d, market, at) for d in devices]
                reports = [future.result() for future in futures]

        for report in reports:
            if report.ok and report.stats is not None:
                self._last_good[report.target.address] = report.stats

        failed = sum(1 for r in reports if not r.ok)
        logger.info("Poll cycle: %d/%d miners ok", len(reports) - failed, len(reports))

        self._latest = tuple(reports)
        self._publish(reports, at)
        return reports

    def _publish(self, reports: list[DeviceReport], at: datetime) -> None:
        if self.broadcast is not None:
            try:
                self.broadcast(reports)
            except Exception as exc:  # collaborator failure
                logger.error("Broadcast failed: %s", exc)

        if self.history_sink is None:
            return
        due = (
            self._last_history_at is None
            or (at - self._last_history_at).total_seconds() >= settings.HISTORY_INTERVAL_S
        )
        if due:
            try:
                self.history_sink(reports)
                self._last_history_at = at
            except Exception as exc:  # collaborator failure
                logger.error("History snapshot failed: %s", exc)
