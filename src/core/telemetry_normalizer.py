# src/core/telemetry_normalizer.py
"""
Temperature and fan extraction from CGMiner-style `stats` / `devs` replies.

Firmware builds disagree on field names, so each known naming convention is a
pattern family with an `attempt()` method. The families are tried in order and
the first one that yields a reading wins:

- temp_chip_N / temp_pcb_N (current Antminer firmware)
- tempN with an aggregate `temp` (legacy firmware)
- temp2_N (alternate legacy naming)
- `Temperature` from the `devs` device list
- chain_* prefixed fields
- generic scan of any temp-named field in the Celsius range
- diagnostic scan that only logs candidates and never commits them

If no chip temperature was found the hottest board temperature is used.
Fans follow the same shape against fan-named fields and the RPM range.
"""
from __future__ import annotations

import logging
import math
import re
from typing import Any, Iterable, Iterator, Optional, Sequence

from src.config import settings
from src.core.miner_models import FanSpeeds, Temperatures

logger = logging.getLogger(__name__)

StatsMap = dict[str, Any]

_DIGITS_RE = re.compile(r"(\d+)")
_FAN_NUMBERED_RE = re.compile(r"^fan(\d+)$", re.IGNORECASE)
# Fan fields that carry counts or duty cycles rather than RPM
_FAN_NON_RPM_HINTS = ("num", "pwm", "percent", "duty", "mode")
# Temp fields that carry sensor counts rather than readings
_TEMP_NON_READING_HINTS = ("num", "count")
# Temp fields that aggregate the chips rather than name a board
_TEMP_CHIP_HINTS = ("chip", "max", "avg")


# ---------------------------------------------------------
# Value helpers
# ---------------------------------------------------------


def to_number(value: Any) -> Optional[float]:
    """
    Coerce a firmware value to float.

    Accepts ints, floats and numeric strings. Antminer reports per-sensor
    readings as dash-joined strings ("62-62-70-70"); those resolve to their
    maximum. Booleans and NaN are not numbers here.
    """
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        number = float(value)
        return None if math.isnan(number) else number
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            return float(text)
        except ValueError:
            pass
        parts = [p for p in text.split("-") if p.strip()]
        if len(parts) > 1:
            try:
                return max(float(p) for p in parts)
            except ValueError:
                return None
    return None


def _temperature(value: Any) -> Optional[float]:
    number = to_number(value)
    if number is None or number <= settings.TEMP_MIN_C or number > settings.TEMP_MAX_C:
        return None
    return number


def _fan_speed(value: Any) -> Optional[int]:
    number = to_number(value)
    if number is None or number <= 0 or number > settings.FAN_MAX_RPM:
        return None
    return int(round(number))


def _in_rpm_range(number: float) -> bool:
    return settings.FAN_MIN_RPM <= number <= settings.FAN_MAX_RPM


def _index_of(key: str) -> Optional[int]:
    match = _DIGITS_RE.search(key)
    return int(match.group(1)) if match else None


def _max_or_none(values: Iterable[Optional[float]]) -> Optional[float]:
    present = [v for v in values if v is not None]
    return max(present) if present else None


def _boards(values: Sequence[Optional[float]]) -> list[Optional[float]]:
    """Pad/trim to the three board slots."""
    boards = list(values)[: settings.MAX_BOARDS]
    return boards + [None] * (settings.MAX_BOARDS - len(boards))


def _ordered_by_index(indexed: dict[int, float]) -> list[float]:
    return [indexed[i] for i in sorted(indexed)]


def _walk_fields(frame: Any, prefix: str = "") -> Iterator[tuple[str, Any]]:
    """Yield (key, value) for scalar fields, descending into nested maps/lists."""
    if isinstance(frame, dict):
        for key, value in frame.items():
            path = f"{prefix}.{key}" if prefix else str(key)
            if isinstance(value, (dict, list)):
                yield from _walk_fields(value, path)
            else:
                yield path, value
    elif isinstance(frame, list):
        for i, item in enumerate(frame):
            path = f"{prefix}[{i}]"
            if isinstance(item, (dict, list)):
                yield from _walk_fields(item, path)
            else:
                yield path, item


def _scan_fields(stats: StatsMap, all_stats: Sequence[StatsMap]) -> Iterator[tuple[str, Any]]:
    seen = set()
    for key, value in _walk_fields(stats):
        seen.add(key)
        yield key, value
    for frame in all_stats:
        for key, value in _walk_fields(frame):
            if key not in seen:
                seen.add(key)
                yield key, value


def _leaf(path: str) -> str:
    return path.rsplit(".", 1)[-1]


def _is_temp_reading(key: str) -> bool:
    return "temp" in key and not any(hint in key for hint in _TEMP_NON_READING_HINTS)


# ---------------------------------------------------------
# Temperature pattern families
# ---------------------------------------------------------


class TemperaturePattern:
    """One firmware naming convention for temperatures."""

    name = "base"

    def attempt(
        self, stats: StatsMap, devs: Sequence[StatsMap], all_stats: Sequence[StatsMap]
    ) -> Optional[Temperatures]:
        raise NotImplementedError

    def _result(
        self, boards: Sequence[Optional[float]], chip: Optional[float]
    ) -> Optional[Temperatures]:
        b1, b2, b3 = _boards(boards)
        result = Temperatures(board1=b1, board2=b2, board3=b3, chip=chip, source=self.name)
        return None if result.is_empty() else result


class ChipPcbPattern(TemperaturePattern):
    name = "temp_chip_pcb"

    def attempt(self, stats, devs, all_stats):
        boards = []
        chips = []
        for n in range(1, settings.MAX_BOARDS + 1):
            chip = _temperature(stats.get(f"temp_chip_{n}"))
            pcb = _temperature(stats.get(f"temp_pcb_{n}"))
            chips.append(chip)
            boards.append(pcb if pcb is not None else chip)
        return self._result(boards, _max_or_none(chips))


class LegacyTempPattern(TemperaturePattern):
    name = "tempN"

    def attempt(self, stats, devs, all_stats):
        boards = [_temperature(stats.get(f"temp{n}")) for n in range(1, settings.MAX_BOARDS + 1)]
        return self._result(boards, _temperature(stats.get("temp")))


class Temp2Pattern(TemperaturePattern):
    name = "temp2_N"

    def attempt(self, stats, devs, all_stats):
        boards = [
            _temperature(stats.get(f"temp2_{n}")) for n in range(1, settings.MAX_BOARDS + 1)
        ]
        return self._result(boards, None)


class DeviceListPattern(TemperaturePattern):
    name = "devs_temperature"

    def attempt(self, stats, devs, all_stats):
        boards = [_temperature(dev.get("Temperature")) for dev in devs if isinstance(dev, dict)]
        if any(t is not None for t in boards):
            return self._result([t for t in boards if t is not None], None)
        return self._result([], _temperature(stats.get("Temperature")))


class ChainPattern(TemperaturePattern):
    name = "chain_prefixed"

    def attempt(self, stats, devs, all_stats):
        boards: dict[int, float] = {}
        chips = []
        for key, value in stats.items():
            lower = str(key).lower()
            if not _is_temp_reading(lower) or not lower.startswith("chain_"):
                continue
            temp = _temperature(value)
            if temp is None:
                continue
            if any(hint in lower for hint in _TEMP_CHIP_HINTS):
                chips.append(temp)
                continue
            index = _index_of(lower)
            index = len(boards) if index is None else index
            boards[index] = max(temp, boards.get(index, temp))
        return self._result(_ordered_by_index(boards), _max_or_none(chips))


class GenericTempScan(TemperaturePattern):
    name = "generic_scan"

    def attempt(self, stats, devs, all_stats):
        boards: dict[int, float] = {}
        unindexed = []
        chips = []
        for path, value in _scan_fields(stats, all_stats):
            leaf = _leaf(path).lower()
            if not _is_temp_reading(leaf):
                continue
            temp = _temperature(value)
            if temp is None:
                continue
            if any(hint in leaf for hint in _TEMP_CHIP_HINTS):
                chips.append(temp)
                continue
            index = _index_of(leaf)
            if index is None:
                unindexed.append(temp)
            else:
                boards[index] = max(temp, boards.get(index, temp))
        return self._result(_ordered_by_index(boards) + unindexed, _max_or_none(chips))


class DiagnosticTempScan(TemperaturePattern):
    """Logs numeric fields that look like temperatures; never commits them."""

    name = "diagnostic"

    def attempt(self, stats, devs, all_stats):
        candidates = []
        for path, value in _scan_fields(stats, all_stats):
            if isinstance(value, str):
                continue
            number = _temperature(value)
            if number is not None:
                candidates.append((path, number))
        if candidates:
            logger.debug("No temperature pattern matched; potential candidates: %s", candidates)
        else:
            logger.debug("No temperature pattern matched and no candidates found")
        return None


TEMPERATURE_PATTERNS: tuple[TemperaturePattern, ...] = (
    ChipPcbPattern(),
    LegacyTempPattern(),
    Temp2Pattern(),
    DeviceListPattern(),
    ChainPattern(),
    GenericTempScan(),
    DiagnosticTempScan(),
)


def _with_chip_fallback(temps: Temperatures) -> Temperatures:
    if temps.chip is not None:
        return temps
    return Temperatures(
        board1=temps.board1,
        board2=temps.board2,
        board3=temps.board3,
        chip=_max_or_none(temps.boards),
        source=temps.source,
    )


def extract_temperatures(
    stats: Optional[StatsMap],
    devs: Optional[Sequence[StatsMap]] = None,
    all_stats: Optional[Sequence[StatsMap]] = None,
    patterns: Sequence[TemperaturePattern] = TEMPERATURE_PATTERNS,
) -> Temperatures:
    """
    Return board/chip temperatures from the first matching pattern family.

    - stats: union of all STATS frames
    - devs: DEVS entries (may be empty)
    - all_stats: the raw STATS frames, scanned by the generic families
    """
    stats = stats or {}
    devs = devs or []
    all_stats = all_stats or []
    for pattern in patterns:
        result = pattern.attempt(stats, devs, all_stats)
        if result is not None:
            return _with_chip_fallback(result)
    return Temperatures()


# ---------------------------------------------------------
# Fan pattern families
# ---------------------------------------------------------


class FanPattern:
    name = "base"

    def attempt(
        self, stats: StatsMap, devs: Sequence[StatsMap], all_stats: Sequence[StatsMap]
    ) -> Optional[FanSpeeds]:
        raise NotImplementedError

    def _result(self, speeds: Sequence[Optional[int]]) -> Optional[FanSpeeds]:
        present = [s for s in speeds if s is not None][: settings.MAX_FANS]
        if not present:
            return None
        padded = present + [None] * (settings.MAX_FANS - len(present))
        return FanSpeeds(*padded, source=self.name)


class NumberedFanPattern(FanPattern):
    name = "fanN"

    def attempt(self, stats, devs, all_stats):
        indexed: dict[int, int] = {}
        for key, value in stats.items():
            match = _FAN_NUMBERED_RE.match(str(key))
            if not match:
                continue
            speed = _fan_speed(value)
            if speed is not None:
                indexed[int(match.group(1))] = speed
        return self._result(_ordered_by_index(indexed))


class DeviceListFanPattern(FanPattern):
    name = "devs_fan_speed"

    def attempt(self, stats, devs, all_stats):
        speeds = []
        for entry in list(devs) + [stats]:
            if not isinstance(entry, dict):
                continue
            speeds.append(_fan_speed(entry.get("Fan Speed In")))
            speeds.append(_fan_speed(entry.get("Fan Speed Out")))
        return self._result(speeds)


class ChainFanPattern(FanPattern):
    name = "chain_prefixed"

    def attempt(self, stats, devs, all_stats):
        indexed: dict[int, int] = {}
        for key, value in stats.items():
            lower = str(key).lower()
            if not lower.startswith("chain_") or "fan" not in lower:
                continue
            speed = _fan_speed(value)
            if speed is not None:
                index = _index_of(lower)
                indexed[len(indexed) if index is None else index] = speed
        return self._result(_ordered_by_index(indexed))


class GenericFanScan(FanPattern):
    name = "generic_scan"

    def attempt(self, stats, devs, all_stats):
        speeds = []
        for path, value in _scan_fields(stats, all_stats):
            leaf = _leaf(path).lower()
            if "fan" not in leaf or any(hint in leaf for hint in _FAN_NON_RPM_HINTS):
                continue
            number = to_number(value)
            if number is not None and _in_rpm_range(number):
                speeds.append(int(round(number)))
        return self._result(speeds)


class DiagnosticFanScan(FanPattern):
    name = "diagnostic"

    def attempt(self, stats, devs, all_stats):
        candidates = []
        for path, value in _scan_fields(stats, all_stats):
            if isinstance(value, str):
                continue
            number = to_number(value)
            if number is not None and _in_rpm_range(number):
                candidates.append((path, number))
        if candidates:
            logger.debug("No fan pattern matched; potential RPM candidates: %s", candidates)
        return None


FAN_PATTERNS: tuple[FanPattern, ...] = (
    NumberedFanPattern(),
    DeviceListFanPattern(),
    ChainFanPattern(),
    GenericFanScan(),
    DiagnosticFanScan(),
)


def extract_fan_speeds(
    stats: Optional[StatsMap],
    devs: Optional[Sequence[StatsMap]] = None,
    all_stats: Optional[Sequence[StatsMap]] = None,
    patterns: Sequence[FanPattern] = FAN_PATTERNS,
) -> FanSpeeds:
    """Return up to four fan speeds (RPM) from the first matching pattern family."""
    stats = stats or {}
    devs = devs or []
    all_stats = all_stats or []
    for pattern in patterns:
        result = pattern.attempt(stats, devs, all_stats)
        if result is not None:
            return result
    return FanSpeeds()
