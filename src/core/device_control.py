# src/core/device_control.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from src.config import settings
from src.core.device_protocol import first_section, reply_status, send_command
from src.core.errors import MinerError

logger = logging.getLogger(__name__)

UNCONFIRMED_NOTE = "Command sent but response uncertain - check miner interface to verify"


class ControlOutcome(str, Enum):
    CONFIRMED = "confirmed"
    SENT_UNCONFIRMED = "sent_unconfirmed"
    FAILED = "failed"


@dataclass(frozen=True)
class ControlResult:
    outcome: ControlOutcome
    profile: str
    target_power_w: int
    note: Optional[str] = None

    @property
    def success(self) -> bool:
        """Matches the dashboard's success flag: only an explicit error is a failure."""
        return self.outcome is not ControlOutcome.FAILED


def set_control_profile(
    address: str, profile: str, port: int = settings.DEVICE_API_PORT
) -> ControlResult:
    """
    Ask the miner to run at the profile's target power (Braiins `ascset`).

    The firmware does not reliably acknowledge power changes, so transport
    failures are reported as SENT_UNCONFIRMED instead of raising. Only an
    explicit error status from the miner is FAILED. An unknown profile raises
    ValueError before anything is sent.
    """
    if profile not in settings.CONTROL_PROFILES:
        valid = ", ".join(settings.CONTROL_PROFILES)
        raise ValueError(f"Invalid power profile {profile!r}. Must be one of: {valid}")

    target_power = settings.CONTROL_PROFILES[profile]
    try:
        reply = send_command(address, "ascset", f"0,power,{target_power}", port=port)
    except MinerError as exc:
        logger.warning("setPowerProfile error for %s: %s", address, exc)
        return ControlResult(
            outcome=ControlOutcome.SENT_UNCONFIRMED,
            profile=profile,
            target_power_w=target_power,
            note=UNCONFIRMED_NOTE,
        )

    status = reply_status(reply)
    if status in ("S", "I"):
        logger.info("Power profile set to %s (%dW) on %s", profile, target_power, address)
        return ControlResult(ControlOutcome.CONFIRMED, profile, target_power)

    message = first_section(reply, "STATUS").get("Msg")
    if status in ("E", "F"):
        logger.warning("Miner %s rejected power profile %s: %s", address, profile, message)
        return ControlResult(ControlOutcome.FAILED, profile, target_power, note=message)

    return ControlResult(
        ControlOutcome.SENT_UNCONFIRMED,
        profile,
        target_power,
        note=message or UNCONFIRMED_NOTE,
    )
