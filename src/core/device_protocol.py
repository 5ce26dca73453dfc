# src/core/device_protocol.py
from __future__ import annotations

import json
import logging
import socket
import time
from typing import Any, Optional

from src.config import settings
from src.core.errors import DeviceConnectionError, DeviceTimeoutError, ProtocolError

logger = logging.getLogger(__name__)


def build_request(command: str, parameter: Optional[str] = None) -> bytes:
    """Encode a CGMiner API request object."""
    payload: dict[str, Any] = {"command": command}
    if parameter is not None:
        payload["parameter"] = parameter
    return json.dumps(payload).encode("utf-8")


def _merge_frames(frames: list[dict[str, Any]]) -> dict[str, Any]:
    merged: dict[str, Any] = {}
    for frame in frames:
        for key, value in frame.items():
            if key not in merged:
                merged[key] = list(value) if isinstance(value, list) else value
            elif isinstance(merged[key], list) and isinstance(value, list):
                merged[key].extend(value)
    return merged


def parse_reply(raw: bytes) -> dict[str, Any]:
    """
    Parse a miner reply into a dict.

    The firmware terminates each JSON frame with a NUL byte. A single frame is
    returned as-is; several frames are merged (list sections concatenated,
    scalar keys keep the first value seen).
    """
    text = raw.decode("utf-8", errors="replace").rstrip("\x00").strip()
    if not text:
        raise ProtocolError("Empty reply from miner")

    frames = []
    for chunk in text.split("\x00"):
        chunk = chunk.strip()
        if not chunk:
            continue
        try:
            frame = json.loads(chunk)
        except json.JSONDecodeError as exc:
            raise ProtocolError(f"Failed to parse miner response: {exc}") from exc
        if not isinstance(frame, dict):
            raise ProtocolError(
                f"Unexpected miner response type: {type(frame).__name__}"
            )
        frames.append(frame)

    if len(frames) == 1:
        return frames[0]
    return _merge_frames(frames)


def send_command(
    address: str,
    command: str,
    parameter: Optional[str] = None,
    port: int = settings.DEVICE_API_PORT,
    timeout: float = settings.DEVICE_API_TIMEOUT_S,
) -> dict[str, Any]:
    """
    Send one command to the miner API and return the parsed reply.

    A fresh TCP connection is opened per call and read until the miner closes
    it. `timeout` bounds the whole exchange, connect included, not each read.
    Raises DeviceConnectionError, DeviceTimeoutError or ProtocolError;
    nothing is retried here.
    """
    request = build_request(command, parameter)
    logger.debug("Sending to %s:%d: %s", address, port, request)

    deadline = time.monotonic() + timeout
    try:
        sock = socket.create_connection((address, port), timeout=timeout)
    except socket.timeout as exc:
        raise DeviceTimeoutError(
            f"Connection timeout - miner not responding on port {port}"
        ) from exc
    except OSError as exc:
        raise DeviceConnectionError(f"Connection error to {address}:{port}: {exc}") from exc

    chunks = []
    try:
        sock.sendall(request)
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise socket.timeout("read deadline exceeded")
            sock.settimeout(remaining)
            chunk = sock.recv(settings.DEVICE_READ_CHUNK_BYTES)
            if not chunk:
                break
            chunks.append(chunk)
    except socket.timeout as exc:
        raise DeviceTimeoutError(
            f"Connection timeout - miner not responding on port {port}"
        ) from exc
    except OSError as exc:
        raise DeviceConnectionError(f"Connection error to {address}:{port}: {exc}") from exc
    finally:
        sock.close()

    raw = b"".join(chunks)
    logger.debug("Response from %s: %s...", address, raw[:200])
    return parse_reply(raw)


def first_section(reply: dict[str, Any], section: str) -> dict[str, Any]:
    """Return reply[section][0] when it is a dict, otherwise {}."""
    entries = reply.get(section) if isinstance(reply, dict) else None
    if isinstance(entries, list) and entries and isinstance(entries[0], dict):
        return entries[0]
    return {}


def reply_status(reply: dict[str, Any]) -> Optional[str]:
    """Return the single letter STATUS code (S, I, W, E, F) if present."""
    return first_section(reply, "STATUS").get("STATUS")


def check_connection(
    address: str, port: int = settings.DEVICE_API_PORT
) -> dict[str, Any]:
    """Query `summary` once so an operator can validate a miner address."""
    reply = send_command(address, "summary", port=port)
    return first_section(reply, "SUMMARY")
