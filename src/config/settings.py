# src/config/settings.py

import os

# Development / production settings for the miner telemetry core

# --- Device protocol (CGMiner-compatible API) ---
DEVICE_API_PORT = 4028
DEVICE_API_TIMEOUT_S = 10
DEVICE_READ_CHUNK_BYTES = 4096

# Power profiles selectable from the dashboard (target watts sent via ascset)
CONTROL_PROFILES = {
    "low": 2000,
    "medium": 3250,
    "high": 3500,
}
DEFAULT_CONTROL_PROFILE = "medium"

# Used when the firmware does not report power draw (W per TH/s)
ESTIMATED_WATTS_PER_TH = 34.0

# --- GraphQL (Braiins OS) ---
GRAPHQL_PATH = "/graphql"
GRAPHQL_TIMEOUT_S = 5
# Factory credentials; Braiins OS ships root with an empty password
GRAPHQL_USERNAME = "root"
GRAPHQL_PASSWORD = ""
GRAPHQL_TELEMETRY_TYPES = ("Fan", "TempCtrl", "WorkSolver", "Hashboard")

# --- Telemetry plausibility ranges ---
TEMP_MIN_C = 0.0
TEMP_MAX_C = 150.0
FAN_MIN_RPM = 500
FAN_MAX_RPM = 10000
MAX_BOARDS = 3
MAX_FANS = 4

# --- Live data / market constants ---
# hvakosterstrommen.no - free hourly Nord Pool spot prices per Norwegian zone
SPOT_PRICE_URL = (
    "https://www.hvakosterstrommen.no/api/v1/prices/{year}/{month:02d}-{day:02d}_{zone}.json"
)
SPOT_PRICE_TIMEZONE = "Europe/Oslo"
PRICE_ZONES = ("NO1", "NO2", "NO3", "NO4", "NO5")
# 25% VAT everywhere except Northern Norway (NO4)
VAT_MULTIPLIERS = {"NO1": 1.25, "NO2": 1.25, "NO3": 1.25, "NO4": 1.0, "NO5": 1.25}

COINGECKO_SIMPLE_PRICE_URL = "https://api.coingecko.com/api/v3/simple/price"
EXCHANGE_CURRENCIES = ("usd", "eur", "nok")

MEMPOOL_HASHRATE_URL = "https://mempool.space/api/v1/mining/hashrate/3d"
MEMPOOL_BLOCKTIP_URL = "https://mempool.space/api/blocks/tip/height"

# Requests / caching config
LIVE_DATA_REQUEST_TIMEOUT_S = 10
PRICE_REFRESH_INTERVAL_S = 30 * 60
EXCHANGE_REFRESH_INTERVAL_S = 5 * 60
NETWORK_REFRESH_INTERVAL_S = 10 * 60

# Optional: identify yourself nicely to public APIs
LIVE_DATA_USER_AGENT = "MinerHeatDashboard/0.1 (contact: you@example.com)"

# --- Scheduler ---
POLL_INTERVAL_S = int(os.getenv("POLL_INTERVAL_S", "5"))
HISTORY_INTERVAL_S = int(os.getenv("HISTORY_INTERVAL_S", str(5 * 60)))
MAX_POLL_WORKERS = 16

# --- Fallback static assumptions (used when live data fails) ---

# Hard-coded post-2024 halving subsidy
BLOCK_SUBSIDY_BTC = 3.125
BLOCKS_PER_DAY = 144
SECONDS_PER_BLOCK = 600.0

DEFAULT_BTC_PRICE = {"usd": 90000.0, "eur": 83000.0, "nok": 1_000_000.0}
DEFAULT_NETWORK_DIFFICULTY = 150_000_000_000_000
DEFAULT_SPOT_PRICE_PER_KWH = 1.0

# --- Electricity pricing (NOK/kWh incl. VAT) ---

# Norgespris: fixed energy price
DEFAULT_FIXED_PRICE_PER_KWH = 0.50
# Strømstøtte: 90% of the spot price above 0.9375 (0.75 ex. VAT) is covered
DEFAULT_SUBSIDY_THRESHOLD_PER_KWH = 0.9375
DEFAULT_SUBSIDY_FRACTION = 0.90

# Grid fee (nettleie) energy part
DEFAULT_GRID_DAY_RATE_PER_KWH = 0.50
DEFAULT_GRID_NIGHT_RATE_PER_KWH = 0.40
DEFAULT_GRID_DAY_START_HOUR = 6
DEFAULT_GRID_DAY_END_HOUR = 22

# Spot feed, subsidy threshold and grid fees are all quoted in NOK
PRICE_CURRENCY = "nok"
# Currency money results are reported in; one of EXCHANGE_CURRENCIES
DEFAULT_CURRENCY = "nok"

# --- Heating comparison ---

# Typical air-to-air heat pump seasonal COP
DEFAULT_HEAT_PUMP_COP = 3.0
# Effective COP is meaningless once mining nearly pays for the electricity
MAX_EFFECTIVE_COP = 10.0
