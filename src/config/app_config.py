# src/config/app_config.py
from __future__ import annotations

from dataclasses import dataclass, field, fields
from typing import Any, Mapping

from src.config import settings
from src.config.env import MINER_HOSTS, PRICE_ZONE
from src.core.miner_models import DeviceTarget
from src.core.power_pricing import PricingConfig, get_default_pricing_config


@dataclass(frozen=True)
class AppConfig:
    """
    Configuration handed to the core by the (external) config store.

    Read-only here; persistence lives with the caller.
    """

    devices: tuple[DeviceTarget, ...] = ()
    pricing: PricingConfig = field(default_factory=get_default_pricing_config)
    zone: str = PRICE_ZONE
    poll_interval_s: int = settings.POLL_INTERVAL_S

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "AppConfig":
        """
        Build from the JSON-shaped config document.

        Accepts a `miners` list ({"ip"/"address", "name", "profile"}) as well
        as the single-miner `minerIP` / `minerIp` + `currentProfile` keys.
        """
        default_profile = data.get("currentProfile") or settings.DEFAULT_CONTROL_PROFILE
        devices = []
        for entry in data.get("miners") or []:
            address = entry.get("address") or entry.get("ip")
            if not address:
                continue
            devices.append(
                DeviceTarget(
                    address=address,
                    name=entry.get("name", ""),
                    profile=entry.get("profile") or default_profile,
                    port=int(entry.get("port", settings.DEVICE_API_PORT)),
                )
            )

        single = data.get("minerIP") or data.get("minerIp")
        if single and all(d.address != single for d in devices):
            devices.append(DeviceTarget(address=single, profile=default_profile))

        for device in devices:
            if device.profile not in settings.CONTROL_PROFILES:
                raise ValueError(
                    f"Invalid power profile {device.profile!r} for {device.address}"
                )

        known = {f.name for f in fields(PricingConfig)}
        pricing_data = {k: v for k, v in (data.get("pricing") or {}).items() if k in known}
        pricing = (
            PricingConfig(**pricing_data) if pricing_data else get_default_pricing_config()
        )

        zone = str(data.get("zone") or PRICE_ZONE).upper()
        if zone not in settings.PRICE_ZONES:
            raise ValueError(f"Unknown price zone {zone!r}")

        return cls(
            devices=tuple(devices),
            pricing=pricing,
            zone=zone,
            poll_interval_s=int(data.get("poll_interval_s") or settings.POLL_INTERVAL_S),
        )


def load_from_env() -> AppConfig:
    """Config from environment variables only (MINER_HOSTS, PRICE_ZONE, ...)."""
    return AppConfig(devices=tuple(DeviceTarget(address=host) for host in MINER_HOSTS))
