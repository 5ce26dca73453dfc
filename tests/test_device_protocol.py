import json
import socket
import threading
import time

import pytest

from src.core.device_protocol import (
    build_request,
    check_connection,
    parse_reply,
    reply_status,
    send_command,
)
from src.core.errors import DeviceConnectionError, DeviceTimeoutError, ProtocolError

SUMMARY_REPLY = {
    "STATUS": [{"STATUS": "S", "Msg": "Summary"}],
    "SUMMARY": [{"Elapsed": 3600, "GHS 5s": 100000.0, "Accepted": 10}],
    "id": 1,
}


def _serve_once(reply: bytes, hold_open_s: float = 0.0):
    """Accept a single connection, record the request, answer and close."""
    server = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    server.bind(("127.0.0.1", 0))
    server.listen(1)
    received = []

    def run():
        conn, _ = server.accept()
        with conn:
            received.append(conn.recv(4096))
            if hold_open_s:
                time.sleep(hold_open_s)
            else:
                conn.sendall(reply)
        server.close()

    thread = threading.Thread(target=run, daemon=True)
    thread.start()
    return server.getsockname()[1], received, thread


def test_build_request_omits_missing_parameter():
    assert json.loads(build_request("summary")) == {"command": "summary"}
    assert json.loads(build_request("ascset", "0,power,2000")) == {
        "command": "ascset",
        "parameter": "0,power,2000",
    }


def test_parse_reply_strips_null_terminator():
    body = json.dumps(SUMMARY_REPLY).encode()
    assert parse_reply(body + b"\x00") == parse_reply(body)
    assert parse_reply(body + b"\x00\x00") == SUMMARY_REPLY


def test_parse_reply_merges_multiple_frames():
    first = {"STATUS": [{"STATUS": "S"}], "STATS": [{"ID": "BMM0"}]}
    second = {"STATUS": [{"STATUS": "S"}], "STATS": [{"temp1": 60}]}
    raw = json.dumps(first).encode() + b"\x00" + json.dumps(second).encode() + b"\x00"

    merged = parse_reply(raw)

    assert merged["STATS"] == [{"ID": "BMM0"}, {"temp1": 60}]
    assert len(merged["STATUS"]) == 2


def test_parse_reply_rejects_bad_json():
    with pytest.raises(ProtocolError):
        parse_reply(b'{"STATUS": [\x00')
    with pytest.raises(ProtocolError):
        parse_reply(b"\x00")


def test_send_command_round_trip_over_tcp():
    port, received, thread = _serve_once(json.dumps(SUMMARY_REPLY).encode() + b"\x00")

    reply = send_command("127.0.0.1", "summary", port=port, timeout=2)
    thread.join(timeout=2)

    assert reply == SUMMARY_REPLY
    assert json.loads(received[0]) == {"command": "summary"}
    assert reply_status(reply) == "S"


def test_check_connection_returns_summary_section():
    port, _, thread = _serve_once(json.dumps(SUMMARY_REPLY).encode() + b"\x00")

    summary = check_connection("127.0.0.1", port=port)
    thread.join(timeout=2)

    assert summary["Elapsed"] == 3600


def test_send_command_refused_raises_connection_error():
    unused = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    unused.bind(("127.0.0.1", 0))
    port = unused.getsockname()[1]
    unused.close()

    with pytest.raises(DeviceConnectionError):
        send_command("127.0.0.1", "summary", port=port, timeout=1)


def test_send_command_times_out_when_miner_stays_silent():
    port, _, thread = _serve_once(b"", hold_open_s=1.0)

    with pytest.raises(DeviceTimeoutError):
        send_command("127.0.0.1", "summary", port=port, timeout=0.2)
    thread.join(timeout=2)


def test_send_command_timeout_covers_a_trickling_reply():
    server = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    server.bind(("127.0.0.1", 0))
    server.listen(1)

    def trickle():
        conn, _ = server.accept()
        with conn:
            conn.recv(4096)
            try:
                for _ in range(20):
                    conn.sendall(b" ")
                    time.sleep(0.1)
            except OSError:
                pass
        server.close()

    thread = threading.Thread(target=trickle, daemon=True)
    thread.start()

    started = time.monotonic()
    with pytest.raises(DeviceTimeoutError):
        send_command("127.0.0.1", "summary", port=server.getsockname()[1], timeout=0.5)
    assert time.monotonic() - started < 1.5
    thread.join(timeout=3)


def test_send_command_garbage_reply_raises_protocol_error():
    port, _, thread = _serve_once(b"not json\x00")

    with pytest.raises(ProtocolError):
        send_command("127.0.0.1", "stats", port=port, timeout=2)
    thread.join(timeout=2)
