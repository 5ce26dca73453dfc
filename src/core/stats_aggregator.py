# src/core/stats_aggregator.py
from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Optional, Union

from src.config import settings
from src.core.device_protocol import first_section, send_command
from src.core.errors import StatsUnavailable
from src.core.graphql_discovery import GraphQLTelemetry, discover
from src.core.miner_models import DeviceTarget, FanSpeeds, Temperatures, TelemetrySnapshot
from src.core.telemetry_normalizer import extract_fan_speeds, extract_temperatures, to_number

logger = logging.getLogger(__name__)

CORE_COMMANDS = ("summary", "stats", "pools")

# (summary key, divisor to TH/s), first present wins
HASHRATE_FIELDS = (
    ("GHS 5s", 1_000.0),
    ("MHS 5s", 1_000_000.0),
    ("GHS av", 1_000.0),
    ("MHS av", 1_000_000.0),
)
POWER_FIELDS = ("Power", "power", "Power Realtime", "chain_power")


# ---------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------


def reject_rate(accepted: int, rejected: int) -> float:
    """Rejected share fraction; 0 before any share has been reported."""
    total = accepted + rejected
    if total <= 0:
        return 0.0
    return rejected / total


def merge_stats_frames(stats_reply: dict[str, Any]) -> tuple[dict[str, Any], list[dict[str, Any]]]:
    """
    Union the keys of every STATS frame.

    Frame 0 is usually version info and frame 1 the real stats, but firmware
    differs, so no index is assumed. The first frame holding a key wins.
    """
    frames = [f for f in stats_reply.get("STATS", []) or [] if isinstance(f, dict)]
    merged: dict[str, Any] = {}
    for frame in frames:
        for key, value in frame.items():
            merged.setdefault(key, value)
    return merged, frames


def hashrate_ths(summary: dict[str, Any]) -> float:
    """Throughput in TH/s from whichever 5s/average field the firmware reports."""
    for key, divisor in HASHRATE_FIELDS:
        value = to_number(summary.get(key))
        if value is not None:
            return max(0.0, value / divisor)
    return 0.0


def power_draw(
    stats: dict[str, Any], summary: dict[str, Any], hashrate: float, profile: str
) -> tuple[float, bool]:
    """
    Return (watts, is_estimated).

    Falls back to hashrate x ESTIMATED_WATTS_PER_TH, or the profile target
    when the miner reports no hashrate either.
    """
    for source in (stats, summary):
        for key in POWER_FIELDS:
            value = to_number(source.get(key))
            if value is not None and value > 0:
                return value, False

    if hashrate > 0:
        return float(round(hashrate * settings.ESTIMATED_WATTS_PER_TH)), True
    fallback = settings.CONTROL_PROFILES.get(
        profile, settings.CONTROL_PROFILES[settings.DEFAULT_CONTROL_PROFILE]
    )
    return float(fallback), True


def _as_int(value: Any) -> int:
    number = to_number(value)
    return int(number) if number is not None and number > 0 else 0


def _graphql_temperatures(gql: GraphQLTelemetry) -> Temperatures:
    boards = list(gql.board_temps[: settings.MAX_BOARDS])
    boards += [None] * (settings.MAX_BOARDS - len(boards))
    return Temperatures(*boards, chip=gql.chip_temp, source="graphql")


def _graphql_fans(gql: GraphQLTelemetry) -> FanSpeeds:
    speeds = list(gql.fan_speeds[: settings.MAX_FANS])
    speeds += [None] * (settings.MAX_FANS - len(speeds))
    return FanSpeeds(*speeds, source="graphql")


def build_snapshot(
    target: DeviceTarget,
    summary_reply: dict[str, Any],
    stats_reply: dict[str, Any],
    pools_reply: dict[str, Any],
    devs_reply: Optional[dict[str, Any]] = None,
    gql: Optional[GraphQLTelemetry] = None,
) -> TelemetrySnapshot:
    """Normalise raw replies into a TelemetrySnapshot."""
    summary = first_section(summary_reply, "SUMMARY")
    pool = first_section(pools_reply, "POOLS")
    stats, frames = merge_stats_frames(stats_reply)
    devs = [d for d in (devs_reply or {}).get("DEVS", []) or [] if isinstance(d, dict)]

    if gql is not None and gql.has_temperatures():
        temps = _graphql_temperatures(gql)
    else:
        temps = extract_temperatures(stats, devs, frames)

    if gql is not None and gql.has_fans():
        fans = _graphql_fans(gql)
    else:
        fans = extract_fan_speeds(stats, devs, frames)

    if temps.chip is None:
        logger.info("No temperature reading recognised for %s", target.address)

    hashrate = hashrate_ths(summary)
    power_w, estimated = power_draw(stats, summary, hashrate, target.profile)

    accepted = _as_int(pool.get("Accepted", summary.get("Accepted")))
    rejected = _as_int(pool.get("Rejected", summary.get("Rejected")))

    return TelemetrySnapshot(
        address=target.address,
        name=target.display_name,
        hashrate_ths=hashrate,
        chip_temp_c=temps.chip,
        board_temps_c=temps.boards,
        fan_speeds_rpm=fans.speeds,
        power_w=power_w,
        power_is_estimated=estimated,
        uptime_s=_as_int(summary.get("Elapsed", stats.get("Elapsed"))),
        pool_connected=pool.get("Status") == "Alive",
        pool_url=pool.get("URL") or "Not connected",
        accepted_shares=accepted,
        rejected_shares=rejected,
        reject_rate=reject_rate(accepted, rejected),
        profile=target.profile,
        temperature_source=temps.source,
        fan_source=fans.source,
    )


# ---------------------------------------------------------
# Orchestration
# ---------------------------------------------------------


def _optional_result(future: Future, label: str, address: str) -> Any:
    """Result of a best-effort source; any failure degrades to None."""
    try:
        return future.result()
    except Exception as exc:  # best-effort source, never fails the poll
        logger.warning("%s unavailable for %s: %s", label, address, exc)
        return None


def get_miner_stats(
    target: Union[DeviceTarget, str],
    include_devs: bool = True,
    use_graphql: bool = True,
) -> TelemetrySnapshot:
    """
    Poll one miner and return its normalised snapshot.

    GraphQL discovery, the optional `devs` command and the core
    summary/stats/pools commands are issued in parallel. GraphQL and `devs`
    failures degrade to no data; a failed core command raises StatsUnavailable.
    """
    if isinstance(target, str):
        target = DeviceTarget(address=target)
    logger.debug("Getting stats from miner at %s", target.address)

    with ThreadPoolExecutor(max_workers=len(CORE_COMMANDS) + 2) as pool:
        core = {
            command: pool.submit(send_command, target.address, command, port=target.port)
            for command in CORE_COMMANDS
        }
        devs_future = (
            pool.submit(send_command, target.address, "devs", port=target.port)
            if include_devs
            else None
        )
        gql_future = pool.submit(discover, target.address) if use_graphql else None

        try:
            replies = {command: future.result() for command, future in core.items()}
        except Exception as exc:
            logger.error("getMinerStats error for %s: %s", target.address, exc)
            raise StatsUnavailable(target.address, exc) from exc

        devs_reply = (
            _optional_result(devs_future, "Device list", target.address)
            if devs_future
            else None
        )
        gql = _optional_result(gql_future, "GraphQL", target.address) if gql_future else None

    return build_snapshot(
        target,
        replies["summary"],
        replies["stats"],
        replies["pools"],
        devs_reply=devs_reply,
        gql=gql,
    )
