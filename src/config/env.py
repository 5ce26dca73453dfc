# src/config/env.py
import os

# Environment constants to avoid typos in comparisons
ENV_DEV = "dev"
ENV_PROD = "prod"

# Simple env flag: "dev" for local testing defaults, defaulting to "prod"
APP_ENV = os.getenv("APP_ENV", ENV_PROD).lower()

# Comma separated list of miner addresses, e.g. "192.168.1.50,192.168.1.51"
MINER_HOSTS = [
    host.strip() for host in os.getenv("MINER_HOSTS", "").split(",") if host.strip()
]

# Norwegian price zone (NO1..NO5)
PRICE_ZONE = os.getenv("PRICE_ZONE", "NO1").upper()

# "spot" (subsidised spot) or "fixed" (fixed tariff)
PRICING_MODE = os.getenv("PRICING_MODE", "spot").lower()

LOG_LEVEL = os.getenv("LOG_LEVEL", "DEBUG" if APP_ENV == ENV_DEV else "INFO").upper()
