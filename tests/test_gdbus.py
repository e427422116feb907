from __future__ import annotations

import asyncio
import subprocess

import pytest

from gaugeman.core.errors import BusError
from gaugeman.transports import gdbus
from gaugeman.transports.gdbus import (
    GdbusConnector,
    GdbusInterface,
    parse_byte_array,
    parse_gdbus_value,
    parse_quoted_text,
    request_data_key,
)

KEY_REPLY = (
    "   array of bytes [6b 4e 4c bb a3 3a 01 77 a1 8d 47 2c 88 c9 65 22 "
    "db 01 fe c5 90 7b 7b fc a5 c7 7c 52 0e f8 63 0f ]\n"
)


def _cp(cmd: list[str], rc: int, stdout: str = "", stderr: str = "") -> subprocess.CompletedProcess[str]:
    return subprocess.CompletedProcess(cmd, rc, stdout=stdout, stderr=stderr)


@pytest.mark.parametrize(
    ("reply", "expected"),
    [
        ("(<true>,)\n", True),
        ("(<false>,)", False),
        ("(<uint32 42>,)", 42),
        ("(<2.5>,)", 2.5),
        ("(<'Key is available'>,)", "Key is available"),
        ("('done',)", "done"),
    ],
)
def test_parse_gdbus_value(reply: str, expected: object) -> None:
    assert parse_gdbus_value(reply) == expected


def test_parse_byte_array() -> None:
    key = parse_byte_array(KEY_REPLY)
    assert len(key) == 32
    assert key[:3] == bytes.fromhex("6b4e4c")
    assert key[-1] == 0x0F


def test_parse_byte_array_without_bytes() -> None:
    with pytest.raises(BusError):
        parse_byte_array('   array of bytes "Key is available"')


def test_parse_quoted_text() -> None:
    assert parse_quoted_text('   array of bytes "Key is available"') == "Key is available"
    assert parse_quoted_text(KEY_REPLY) is None


def test_request_data_key(monkeypatch: pytest.MonkeyPatch) -> None:
    calls: list[list[str]] = []

    def fake_run(cmd, check, capture_output, text, timeout):
        calls.append(cmd)
        return _cp(cmd, 0, stdout=KEY_REPLY)

    monkeypatch.setattr(subprocess, "run", fake_run)

    key = request_data_key("com.gdtMan", "/com/gdtMan", "com.gdtMan.gaugeCom.GetDataKey")

    assert key is not None and len(key) == 32
    assert calls[0][:3] == ["dbus-send", "--system", "--dest=com.gdtMan"]
    assert calls[0][-1] == "com.gdtMan.gaugeCom.GetDataKey"


@pytest.mark.parametrize(
    "result",
    [
        _cp(["dbus-send"], 0, stdout='   array of bytes "Key is not available"'),
        _cp(["dbus-send"], 1, stderr="org.freedesktop.DBus.Error.ServiceUnknown"),
    ],
)
def test_request_data_key_unavailable(monkeypatch: pytest.MonkeyPatch, result) -> None:
    monkeypatch.setattr(subprocess, "run", lambda cmd, check, capture_output, text, timeout: result)
    assert request_data_key("com.gdtMan", "/com/gdtMan", "com.gdtMan.gaugeCom.GetDataKey") is None


def test_request_data_key_without_dbus_send(monkeypatch: pytest.MonkeyPatch) -> None:
    def fake_run(cmd, check, capture_output, text, timeout):
        raise FileNotFoundError(cmd[0])

    monkeypatch.setattr(subprocess, "run", fake_run)
    assert request_data_key("com.gdtMan", "/com/gdtMan", "com.gdtMan.gaugeCom.GetDataKey") is None


def test_interface_calls_go_through_gdbus(monkeypatch: pytest.MonkeyPatch) -> None:
    commands: list[list[str]] = []

    async def fake_run(cmd, timeout_s):
        commands.append(list(cmd))
        if "org.freedesktop.DBus.Properties.Get" in cmd:
            return "(<true>,)\n"
        return "()\n"

    monkeypatch.setattr(gdbus, "_run", fake_run)
    iface = GdbusInterface("com.gdtMan", "/com/gdtMan", "com.gdtMan.gaugeCom")

    assert asyncio.run(iface.get_property("SubscriptionExpired")) is True
    assert asyncio.run(iface.call("Alert", '{"Gauge": "1"}')) == "()"

    assert commands[0][-2:] == ["com.gdtMan.gaugeCom", "SubscriptionExpired"]
    assert commands[1][-2:] == ["com.gdtMan.gaugeCom.Alert", '{"Gauge": "1"}']


def test_connector_requires_interface_in_introspection(monkeypatch: pytest.MonkeyPatch) -> None:
    async def fake_run(cmd, timeout_s):
        return "node /com/gdtMan {\n  interface org.freedesktop.DBus.Properties {\n  };\n};\n"

    monkeypatch.setattr(gdbus, "_run", fake_run)

    with pytest.raises(BusError):
        asyncio.run(GdbusConnector().get_interface("com.gdtMan", "/com/gdtMan", "com.gdtMan.gaugeCom"))


def test_connector_returns_interface(monkeypatch: pytest.MonkeyPatch) -> None:
    async def fake_run(cmd, timeout_s):
        return "node /com/gdtMan {\n  interface com.gdtMan.gaugeCom {\n  };\n};\n"

    monkeypatch.setattr(gdbus, "_run", fake_run)

    iface = asyncio.run(GdbusConnector().get_interface("com.gdtMan", "/com/gdtMan", "com.gdtMan.gaugeCom"))
    assert isinstance(iface, GdbusInterface)
    assert iface.interface == "com.gdtMan.gaugeCom"


def test_monitor_lines_reach_subscribers() -> None:
    iface = GdbusInterface("com.gdtMan", "/com/gdtMan", "com.gdtMan.gaugeCom")
    received: list[object] = []
    iface._callbacks["SubExpired"] = [received.append]

    assert iface.dispatch_line("/com/gdtMan: com.gdtMan.gaugeCom.SubExpired (true,)\n") is True
    assert iface.dispatch_line("/com/gdtMan: com.gdtMan.gaugeCom.Other (false,)") is False
    assert iface.dispatch_line("/com/other: com.gdtMan.gaugeCom.SubExpired (false,)") is False
    assert received == [True]


def test_unsupported_bus_rejected() -> None:
    with pytest.raises(BusError):
        GdbusConnector(bus="user")


def test_run_wraps_spawn_errors(monkeypatch: pytest.MonkeyPatch) -> None:
    async def fake_exec(*cmd, stdout, stderr):
        raise PermissionError(13, "Permission denied", cmd[0])

    monkeypatch.setattr(asyncio, "create_subprocess_exec", fake_exec)

    with pytest.raises(BusError, match="Could not start 'gdbus'"):
        asyncio.run(gdbus._run(["gdbus", "introspect", "--system"], 1.0))


def test_connector_spawn_error_is_bus_error(monkeypatch: pytest.MonkeyPatch) -> None:
    async def fake_exec(*cmd, stdout, stderr):
        raise PermissionError(13, "Permission denied", cmd[0])

    monkeypatch.setattr(asyncio, "create_subprocess_exec", fake_exec)

    with pytest.raises(BusError):
        asyncio.run(GdbusConnector().get_interface("com.gdtMan", "/com/gdtMan", "com.gdtMan.gaugeCom"))


class _NoPipeProcess:
    stdout = None
    returncode = None


@pytest.mark.parametrize("outcome", ["spawn-error", "no-pipe"])
def test_monitor_stops_quietly_when_it_cannot_read(
    monkeypatch: pytest.MonkeyPatch, caplog: pytest.LogCaptureFixture, outcome: str
) -> None:
    async def fake_exec(*cmd, stdout, stderr):
        if outcome == "spawn-error":
            raise PermissionError(13, "Permission denied", cmd[0])
        return _NoPipeProcess()

    monkeypatch.setattr(asyncio, "create_subprocess_exec", fake_exec)
    iface = GdbusInterface("com.gdtMan", "/com/gdtMan", "com.gdtMan.gaugeCom")

    with caplog.at_level("ERROR", logger="gaugeman.transports.gdbus"):
        asyncio.run(iface._monitor())

    assert "gdbus monitor" in caplog.text
