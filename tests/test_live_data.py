from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest
import requests

from src.core import live_data
from src.core.errors import MarketDataUnavailable
from src.core.live_data import (
    ExchangeRates,
    MarketData,
    MarketDataCache,
    NetworkStats,
    SpotPrice,
    fetch_exchange_rates,
    fetch_network_stats,
    fetch_spot_price,
    hashrate_from_difficulty,
    summarise_price_curve,
)

OSLO = ZoneInfo("Europe/Oslo")


def _price_rows(day="2025-01-15", prices=(0.40, 0.80, 1.20, 0.60)):
    """Hourly rows as hvakosterstrommen.no returns them (NOK ex. VAT)."""
    return [
        {
            "NOK_per_kWh": price,
            "EUR_per_kWh": price / 11.5,
            "time_start": f"{day}T{hour:02d}:00:00+01:00",
            "time_end": f"{day}T{hour + 1:02d}:00:00+01:00",
        }
        for hour, price in enumerate(prices)
    ]


# --- spot price --------------------------------------------------------------


def test_price_curve_applies_vat_and_picks_current_slot():
    now = datetime(2025, 1, 15, 2, 30, tzinfo=OSLO)

    price = summarise_price_curve(_price_rows(), "no1", now)

    assert price.zone == "NO1"
    assert price.current == pytest.approx(1.20 * 1.25)
    assert price.average == pytest.approx(0.75 * 1.25)
    assert price.minimum == pytest.approx(0.40 * 1.25)
    assert price.maximum == pytest.approx(1.20 * 1.25)
    assert price.points == 4


def test_price_curve_no_vat_in_northern_zone():
    now = datetime(2025, 1, 15, 0, 10, tzinfo=OSLO)

    price = summarise_price_curve(_price_rows(), "NO4", now)

    assert price.current == pytest.approx(0.40)


def test_price_curve_reads_utc_now_in_local_time():
    # 23:30 UTC on the 14th is 00:30 on the 15th in Oslo
    now = datetime(2025, 1, 14, 23, 30, tzinfo=timezone.utc)

    price = summarise_price_curve(_price_rows(), "NO1", now)

    assert price.current == pytest.approx(0.40 * 1.25)


def test_price_curve_rejects_empty_or_foreign_payloads():
    now = datetime(2025, 1, 15, 12, tzinfo=OSLO)

    with pytest.raises(MarketDataUnavailable):
        summarise_price_curve([], "NO1", now)
    with pytest.raises(MarketDataUnavailable):
        summarise_price_curve([{"price": 1.0}], "NO1", now)
    with pytest.raises(MarketDataUnavailable):
        summarise_price_curve(_price_rows(day="2025-01-10"), "NO1", now)


def test_fetch_spot_price_builds_dated_url(monkeypatch):
    seen = []

    def fake_get_json(url, params=None):
        seen.append(url)
        return _price_rows()

    monkeypatch.setattr(live_data, "_get_json", fake_get_json)

    price = fetch_spot_price("NO2", now=datetime(2025, 1, 15, 1, 0, tzinfo=OSLO))

    assert seen[0].endswith("2025/01-15_NO2.json")
    assert price.current == pytest.approx(0.80 * 1.25)


def test_fetch_spot_price_wraps_http_errors(monkeypatch):
    def fake_get_json(url, params=None):
        raise requests.ConnectionError("offline")

    monkeypatch.setattr(live_data, "_get_json", fake_get_json)

    with pytest.raises(MarketDataUnavailable):
        fetch_spot_price("NO1")


# --- exchange rate and network -------------------------------------------------


def test_fetch_exchange_rates(monkeypatch):
    monkeypatch.setattr(
        live_data,
        "_get_json",
        lambda url, params=None: {"bitcoin": {"usd": 95000, "eur": 88000, "nok": 1050000}},
    )

    rates = fetch_exchange_rates()

    assert rates.price("NOK") == 1050000.0
    assert rates.price("gbp") is None


def test_fetch_exchange_rates_rejects_unexpected_payload(monkeypatch):
    monkeypatch.setattr(live_data, "_get_json", lambda url, params=None: {"status": "limited"})

    with pytest.raises(MarketDataUnavailable):
        fetch_exchange_rates()


def test_hashrate_from_difficulty():
    # difficulty 1 is one share of 2^32 hashes per block interval
    assert hashrate_from_difficulty(600e12) == pytest.approx(2**32)


def test_fetch_network_stats(monkeypatch):
    def fake_get_json(url, params=None):
        if url.endswith("height"):
            return 880000
        return {"currentDifficulty": 110e12, "currentHashrate": 800e18}

    monkeypatch.setattr(live_data, "_get_json", fake_get_json)

    stats = fetch_network_stats()

    assert stats.difficulty == 110e12
    assert stats.hashrate_ths == pytest.approx(800e6)
    assert stats.block_height == 880000


def test_fetch_network_stats_derives_hashrate_and_tolerates_missing_height(monkeypatch):
    def fake_get_json(url, params=None):
        if url.endswith("height"):
            raise requests.Timeout("slow")
        return {"currentDifficulty": 600e12}

    monkeypatch.setattr(live_data, "_get_json", fake_get_json)

    stats = fetch_network_stats()

    assert stats.hashrate_ths == pytest.approx(2**32)
    assert stats.block_height is None


# --- caches --------------------------------------------------------------------


def test_cache_keeps_last_good_value_through_failures():
    results = iter([ExchangeRates({"nok": 1.0e6})])

    def fetcher():
        try:
            return next(results)
        except StopIteration:
            raise requests.ConnectionError("rate limited")

    cache = MarketDataCache("Exchange rate", fetcher, 300)
    t0 = datetime(2025, 1, 15, 12, tzinfo=timezone.utc)

    first = cache.refresh(t0)
    for minutes in (5, 10, 15):
        entry = cache.refresh(t0 + timedelta(minutes=minutes))

    assert entry.value is first.value
    assert entry.fetched_at == t0
    assert "rate limited" in entry.last_error
    assert entry.last_attempt_at == t0 + timedelta(minutes=15)


def test_cache_treats_none_as_failure():
    cache = MarketDataCache("Spot price", lambda: None, 1800)

    entry = cache.refresh()

    assert entry.value is None
    assert entry.last_error is not None
    assert cache.is_due()


def test_cache_is_due_after_interval():
    cache = MarketDataCache("Network stats", lambda: NetworkStats(1.0, 1.0), 600)
    t0 = datetime(2025, 1, 15, 12, tzinfo=timezone.utc)
    cache.refresh(t0)

    assert not cache.is_due(t0 + timedelta(seconds=599))
    assert cache.is_due(t0 + timedelta(seconds=600))


def test_published_entry_is_not_mutated_by_later_refresh():
    values = iter([ExchangeRates({"nok": 1.0}), ExchangeRates({"nok": 2.0})])
    cache = MarketDataCache("Exchange rate", lambda: next(values), 300)

    before = cache.refresh()
    cache.refresh()

    assert before.value.price("nok") == 1.0
    assert cache.value.price("nok") == 2.0


def test_market_data_snapshot_with_injected_fetchers():
    spot = SpotPrice("NO1", 1.0, 1.0, 1.0, 1.0, 24)

    def network_down():
        raise requests.Timeout("slow")

    market = MarketData(
        zone="NO1",
        price_fetcher=lambda: spot,
        exchange_fetcher=lambda: ExchangeRates({"nok": 1.0e6}),
        network_fetcher=network_down,
    )

    snapshot = market.refresh_all()

    assert snapshot.spot_price is spot
    assert snapshot.exchange_rates.price("nok") == 1.0e6
    assert snapshot.network_stats is None
    assert snapshot.network.last_error
