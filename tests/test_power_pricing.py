from datetime import datetime, timedelta, timezone

import pytest

from src.core.power_pricing import (
    PricingConfig,
    effective_price,
    grid_fee,
    is_daytime,
    price_breakdown,
    subsidised_spot,
)

# Monday
WEEK_START = datetime(2025, 1, 6, 0, 0)


def test_fixed_mode_is_fixed_price_plus_grid_fee():
    config = PricingConfig(mode="fixed", fixed_price=0.50)
    weekday_noon = WEEK_START.replace(hour=12)
    weekday_night = WEEK_START.replace(hour=2)

    assert effective_price(3.0, weekday_noon, config) == pytest.approx(1.00)
    assert effective_price(3.0, weekday_night, config) == pytest.approx(0.90)


def test_subsidy_only_applies_above_threshold():
    assert subsidised_spot(0.80, 0.9375, 0.90) == pytest.approx(0.80)
    assert subsidised_spot(0.9375, 0.9375, 0.90) == pytest.approx(0.9375)
    assert subsidised_spot(2.00, 0.9375, 0.90) == pytest.approx(1.04375)


def test_spot_mode_scenario():
    config = PricingConfig(mode="spot")
    weekday_daytime = WEEK_START.replace(hour=10)

    breakdown = price_breakdown(2.00, weekday_daytime, config)

    assert breakdown.is_daytime
    assert breakdown.grid_fee == pytest.approx(0.50)
    assert breakdown.total == pytest.approx(1.544, abs=1e-3)


def test_grid_fee_over_a_full_week():
    config = PricingConfig()
    for hour in range(7 * 24):
        at = WEEK_START + timedelta(hours=hour)
        weekday = at.weekday() < 5
        expected_day = weekday and 6 <= at.hour < 22

        assert is_daytime(at, config) is expected_day
        assert grid_fee(at, config) == (0.50 if expected_day else 0.40)


def test_aware_times_are_read_in_oslo_time():
    config = PricingConfig()
    # 05:30 UTC on a winter Monday is 06:30 in Oslo
    at = datetime(2025, 1, 6, 5, 30, tzinfo=timezone.utc)

    assert is_daytime(at, config)
    # 21:30 UTC is 22:30 in Oslo
    assert not is_daytime(at.replace(hour=21), config)


def test_custom_window_and_rates():
    config = PricingConfig(day_rate=0.7, night_rate=0.2, day_start_hour=8, day_end_hour=16)

    assert grid_fee(WEEK_START.replace(hour=7), config) == 0.2
    assert grid_fee(WEEK_START.replace(hour=8), config) == 0.7
    assert grid_fee(WEEK_START.replace(hour=16), config) == 0.2


def test_invalid_config_is_rejected():
    with pytest.raises(ValueError):
        PricingConfig(mode="hourly")
    with pytest.raises(ValueError):
        PricingConfig(subsidy_fraction=1.5)
    with pytest.raises(ValueError):
        PricingConfig(day_end_hour=25)
    with pytest.raises(ValueError):
        PricingConfig(currency="sek")
