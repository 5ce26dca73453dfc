import logging

import pytest

from src.core.telemetry_normalizer import (
    extract_fan_speeds,
    extract_temperatures,
    to_number,
)

# --- value coercion ---------------------------------------------------------


@pytest.mark.parametrize(
    "raw, expected",
    [
        (65, 65.0),
        ("65.5", 65.5),
        ("62-62-70-70", 70.0),
        (True, None),
        ("", None),
        ("n/a", None),
        (None, None),
    ],
)
def test_to_number(raw, expected):
    assert to_number(raw) == expected


# --- temperature families ----------------------------------------------------


def test_chip_pcb_family():
    stats = {
        "temp_chip_1": 70,
        "temp_chip_2": 72,
        "temp_chip_3": 68,
        "temp_pcb_1": 55,
        "temp_pcb_2": 57,
        "temp_pcb_3": 54,
    }
    temps = extract_temperatures(stats)

    assert temps.source == "temp_chip_pcb"
    assert temps.boards == (55, 57, 54)
    assert temps.chip == 72


def test_chip_pcb_family_reads_dash_joined_sensors():
    temps = extract_temperatures({"temp_chip_1": "62-62-70-70", "temp_pcb_1": "50-51-55-54"})

    assert temps.chip == 70
    assert temps.board1 == 55


def test_legacy_temp_family_uses_aggregate():
    temps = extract_temperatures({"temp1": 60, "temp2": 62, "temp3": 61, "temp": 75})

    assert temps.source == "tempN"
    assert temps.boards == (60, 62, 61)
    assert temps.chip == 75


def test_temp2_family_falls_back_to_hottest_board():
    temps = extract_temperatures({"temp2_1": 70, "temp2_2": 71, "temp2_3": 73})

    assert temps.source == "temp2_N"
    assert temps.boards == (70, 71, 73)
    assert temps.chip == 73


def test_zero_readings_do_not_stop_the_cascade():
    temps = extract_temperatures({"temp1": 0, "temp2": 0, "temp3": 0, "temp2_1": 70})

    assert temps.source == "temp2_N"
    assert temps.chip == 70


def test_device_list_family():
    devs = [{"ASC": 0, "Temperature": 65.0}, {"ASC": 1, "Temperature": 68.5}]
    temps = extract_temperatures({}, devs)

    assert temps.source == "devs_temperature"
    assert temps.board1 == 65.0
    assert temps.board2 == 68.5
    assert temps.chip == 68.5


def test_chain_prefixed_family():
    stats = {"chain_temp1": 58, "chain_temp2": 60, "chain_temp_chip": 77, "chain_rate1": 33.0}
    temps = extract_temperatures(stats)

    assert temps.source == "chain_prefixed"
    assert temps.board1 == 58
    assert temps.board2 == 60
    assert temps.chip == 77


def test_generic_scan_family():
    stats = {"board_temp_1": 61, "board_temp_2": 63, "chip_temp_max": 80, "voltage": 12.5}
    temps = extract_temperatures(stats)

    assert temps.source == "generic_scan"
    assert temps.boards == (61, 63, None)
    assert temps.chip == 80


def test_generic_scan_walks_nested_frames():
    frames = [{"chains": [{"temp_board": 66}]}]
    temps = extract_temperatures({}, [], frames)

    assert temps.source == "generic_scan"
    assert temps.board1 == 66
    assert temps.chip == 66


def test_generic_scan_ignores_implausible_values():
    temps = extract_temperatures({"hash_temp_1": 200})

    assert temps.is_empty()


def test_generic_scan_skips_sensor_counts():
    temps = extract_temperatures({"temp_num": 3, "temp_max": 72})

    assert temps.source == "generic_scan"
    assert temps.boards == (None, None, None)
    assert temps.chip == 72


def test_chain_family_skips_sensor_counts():
    temps = extract_temperatures({"chain_temp_count": 4, "chain_temp1": 59})

    assert temps.source == "chain_prefixed"
    assert temps.boards == (59, None, None)


def test_generic_scan_reads_scalar_lists():
    temps = extract_temperatures({"temps": [60, 62]})

    assert temps.source == "generic_scan"
    assert temps.boards == (60, 62, None)
    assert temps.chip == 62


def test_diagnostic_scan_only_logs_candidates(caplog):
    caplog.set_level(logging.DEBUG, logger="src.core.telemetry_normalizer")

    temps = extract_temperatures({"Elapsed": 3600, "mystery": 55})

    assert temps.is_empty()
    assert temps.source is None
    assert "potential candidates" in caplog.text
    assert "mystery" in caplog.text


def test_first_family_wins_over_later_ones():
    stats = {"temp_chip_1": 70, "temp1": 40, "temp": 41, "temp2_1": 42}
    temps = extract_temperatures(stats)

    assert temps.source == "temp_chip_pcb"
    assert temps.chip == 70


# --- fan families --------------------------------------------------------------


def test_numbered_fans_skip_stopped_slots():
    fans = extract_fan_speeds({"fan1": 5400, "fan2": 0, "fan3": 5520, "fan_num": 2})

    assert fans.source == "fanN"
    assert fans.speeds == (5400, 5520, None, None)


def test_device_list_fans():
    devs = [{"Fan Speed In": 4800, "Fan Speed Out": 4820}]
    fans = extract_fan_speeds({}, devs)

    assert fans.source == "devs_fan_speed"
    assert fans.speeds[:2] == (4800, 4820)


def test_chain_prefixed_fans():
    fans = extract_fan_speeds({"chain_fan1": 3000, "chain_fan2": 3100})

    assert fans.source == "chain_prefixed"
    assert fans.speeds[:2] == (3000, 3100)


def test_generic_fan_scan_ignores_duty_cycle():
    fans = extract_fan_speeds({"fan_speed_in_rpm": 6000, "fan_pwm": 80})

    assert fans.source == "generic_scan"
    assert fans.speed1 == 6000
    assert fans.speed2 is None


def test_no_fans_found():
    fans = extract_fan_speeds({"Elapsed": 12})

    assert fans.is_empty()
