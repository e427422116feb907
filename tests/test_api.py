from __future__ import annotations

import asyncio
import base64
import json
from pathlib import Path

import pytest

from gaugeman import api
from gaugeman.api import EncryptionUnavailable, GaugeApp, GaugeSettings, IrCommand, PeerClient, load_settings
from gaugeman.core.cipher import generate_data_key

DEFAULT = {
    "uuid": "a1b2c3d4",
    "dBusName": "com.gauge.test",
    "gaugeIrAddress": "0x27",
    "calibrationTable": [[0, 0], [100, 180]],
    "description": "Test Gauge",
}


class FakeTransmitter:
    def __init__(self) -> None:
        self.values: list[float] = []

    def send_value(self, value: float) -> None:
        self.values.append(value)

    def encode_cmd(self, command: IrCommand) -> str:
        return command.value

    def send_encoded_cmd(self, encoded: object) -> None:
        pass

    def set_subscription_expired(self, expired: bool) -> None:
        pass


class FakePeripheral:
    def __init__(self) -> None:
        self.client = PeerClient(connected=True, paired=True, name="Pixel 8")
        self.added: list = []
        self._ready: list = []

    def on_ready(self, callback) -> None:
        self._ready.append(callback)

    def on_connection_change(self, callback) -> None:
        pass

    def add_attribute(self, attribute) -> None:
        self.added.append(attribute)

    def notify(self, attribute) -> None:
        pass

    def restart_gatt_service(self) -> None:
        pass

    def fire_ready(self) -> None:
        for callback in self._ready:
            callback()


class FakeInterface:
    def __init__(self, expired: bool = False) -> None:
        self.expired = expired
        self.callbacks: dict[str, list] = {}
        self.calls: list = []

    async def get_property(self, name: str) -> bool:
        return self.expired

    async def call(self, method: str, *args: str) -> str:
        self.calls.append((method, args))
        return "true"

    def subscribe(self, signal: str, callback) -> None:
        self.callbacks.setdefault(signal, []).append(callback)


class FakeConnector:
    def __init__(self, iface: FakeInterface) -> None:
        self.iface = iface

    async def get_interface(self, service: str, object_path: str, interface: str) -> FakeInterface:
        return self.iface


def _default_file(tmp_path: Path) -> Path:
    path = tmp_path / "gaugeConfig.json"
    path.write_text(json.dumps(DEFAULT), encoding="utf-8")
    return path


def _app(tmp_path: Path, iface: FakeInterface | None = None, **kwargs) -> tuple[GaugeApp, FakePeripheral]:
    peripheral = FakePeripheral()
    app = GaugeApp(
        default_config_path=_default_file(tmp_path),
        overlay_config_path=tmp_path / "modifiedConfig.json",
        transmitter=FakeTransmitter(),
        peripheral=peripheral,
        connector=FakeConnector(iface or FakeInterface()),
        app_version="1.4.0",
        **kwargs,
    )
    return app, peripheral


def test_fresh_install_end_to_end(tmp_path: Path) -> None:
    app, peripheral = _app(tmp_path)
    ready: list[dict] = []
    updates: list[dict] = []
    app.store.config_ready.connect(lambda config: ready.append(dict(config)))
    app.store.updated.connect(lambda config: updates.append(dict(config)))

    config = asyncio.run(app.start())
    peripheral.fire_ready()

    assert dict(config) == DEFAULT
    assert len(ready) == 1
    assert len(peripheral.added) == 6

    app.save_item({"carVIN": "5YJ3E1EA7KF317000"})

    overlay = json.loads((tmp_path / "modifiedConfig.json").read_text(encoding="utf-8"))
    assert overlay == {"carVIN": "5YJ3E1EA7KF317000"}
    assert app.config["carVIN"] == "5YJ3E1EA7KF317000"
    assert len(updates) == 1


def test_expired_subscription_gates_values(tmp_path: Path) -> None:
    app, peripheral = _app(tmp_path, FakeInterface(expired=True))
    asyncio.run(app.start())
    peripheral.fire_ready()

    assert app.subscription.expired is True
    assert app.set_gauge_value(10) is False
    assert app.facade.transmitter.values == []


def test_default_alert_payload(tmp_path: Path) -> None:
    iface = FakeInterface()
    app, _ = _app(tmp_path, iface)

    async def _scenario():
        await app.start()
        return await app.send_alert()

    result = asyncio.run(_scenario())

    assert result.delivered is True
    assert iface.calls == [("Alert", ('{"Test Gauge": "1"}',))]


def test_encryption_required_without_key(tmp_path: Path) -> None:
    with pytest.raises(EncryptionUnavailable):
        _app(tmp_path, encrypt=True)


def test_from_settings_requests_key(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    key = generate_data_key()
    requested: list[tuple] = []

    def fake_request(service, object_path, method):
        requested.append((service, object_path, method))
        return base64.b64decode(key)

    monkeypatch.setattr(api, "request_data_key", fake_request)
    settings = GaugeSettings(
        default_config_path=_default_file(tmp_path),
        overlay_config_path=tmp_path / "modifiedConfig.json",
        encrypt=True,
        key_method="com.gdtMan.gaugeCom.GetDataKey",
    )

    app = GaugeApp.from_settings(
        settings,
        transmitter=FakeTransmitter(),
        peripheral=FakePeripheral(),
        connector=FakeConnector(FakeInterface()),
    )
    app.store.load()
    app.save_item({"secret": "x"})

    assert requested == [("com.gdtMan", "/com/gdtMan", "com.gdtMan.gaugeCom.GetDataKey")]
    assert b"secret" not in (tmp_path / "modifiedConfig.json").read_bytes()


def test_from_settings_without_key_source_fails(tmp_path: Path) -> None:
    settings = load_settings(
        {
            "GAUGEMAN_DEFAULT_CONFIG": str(_default_file(tmp_path)),
            "GAUGEMAN_OVERLAY_CONFIG": str(tmp_path / "modifiedConfig.json"),
            "GAUGEMAN_ENCRYPT": "true",
        }
    )

    with pytest.raises(EncryptionUnavailable):
        GaugeApp.from_settings(
            settings,
            transmitter=FakeTransmitter(),
            peripheral=FakePeripheral(),
            connector=FakeConnector(FakeInterface()),
        )
