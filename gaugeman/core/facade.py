"""Peer-facing attribute surface of the gauge."""

from __future__ import annotations

import json
import logging
from collections.abc import Callable, Iterable, Mapping
from datetime import datetime
from typing import Any, Protocol

from gaugeman.core.config_store import ConfigStore
from gaugeman.core.dispatcher import CommandDispatcher
from gaugeman.core.errors import GaugemanError
from gaugeman.core.model import (
    ENCRYPT_READ,
    ENCRYPT_WRITE,
    NOTIFY,
    AttributeSpec,
    DeviceAttribute,
    ExtensionSpec,
    ReadHandler,
    WriteHandler,
)
from gaugeman.core.subscription import SubscriptionSync
from gaugeman.transports.base import Peripheral, Transmitter

LOGGER = logging.getLogger(__name__)

APP_VERSION = "appVer"
GAUGE_STATUS = "gaugeStatus"
GAUGE_VALUE = "gaugeValue"
GAUGE_COMMAND = "gaugeCommand"
GAUGE_CONFIG = "gaugeConfig"
BATT_LIFE = "battLifeInDays"

CORE_ATTRIBUTES: tuple[AttributeSpec, ...] = (
    AttributeSpec(APP_VERSION, "001d6a44-2551-4342-83c9-c18a16a3afa5", (ENCRYPT_READ,)),
    AttributeSpec(GAUGE_STATUS, "002d6a44-2551-4342-83c9-c18a16a3afa5", (ENCRYPT_READ, NOTIFY)),
    AttributeSpec(GAUGE_VALUE, "003d6a44-2551-4342-83c9-c18a16a3afa5", (ENCRYPT_READ, NOTIFY)),
    AttributeSpec(GAUGE_COMMAND, "004d6a44-2551-4342-83c9-c18a16a3afa5", (ENCRYPT_READ, ENCRYPT_WRITE)),
    AttributeSpec(GAUGE_CONFIG, "005d6a44-2551-4342-83c9-c18a16a3afa5", (ENCRYPT_READ,)),
    AttributeSpec(BATT_LIFE, "90a5cca6-36f3-4a02-b02d-348921c50fd8", (ENCRYPT_READ,)),
)

BLOCKED_STATUS = "Warning: Gauge value transmission not allowed during administration."
SUBSCRIPTION_EXPIRED_STATUS = (
    "Alert: Subscription expired. Gauge updates are paused until the subscription is renewed."
)


class AttributeExtension(Protocol):
    def register(self, facade: DeviceFacade) -> None:
        """Add deployment-specific attributes; called once after the core set."""


class NullExtension:
    def register(self, facade: DeviceFacade) -> None:
        LOGGER.info("No attribute extension configured, using the core attributes only.")


class DeclaredAttributeExtension:
    """Registers attributes declared in extension files.

    Writes are persisted through :meth:`ConfigStore.save_item` under the
    attribute's config key; reads are refreshed from the effective config.
    """

    def __init__(self, attributes: Iterable[AttributeSpec]) -> None:
        self.attributes = tuple(attributes)

    @classmethod
    def from_extensions(cls, extensions: Mapping[str, ExtensionSpec]) -> DeclaredAttributeExtension:
        attributes: list[AttributeSpec] = []
        for extension_id in sorted(extensions):
            attributes.extend(extensions[extension_id].attributes)
        return cls(attributes)

    def register(self, facade: DeviceFacade) -> None:
        for spec in self.attributes:
            LOGGER.info("Setting up extension attribute %s", spec.name)
            key = spec.config_key or spec.name
            attribute = facade.add_attribute(spec.uuid, spec.name, spec.flags)
            attribute.on_write = self._writer(facade, attribute, key)
            attribute.on_read = self._reader(facade, attribute, key)
            attribute.set_value(_as_text(facade.store.config.get(key)))

    @staticmethod
    def _writer(facade: DeviceFacade, attribute: DeviceAttribute, key: str) -> WriteHandler:
        def _on_write(device: str, data: bytes) -> None:
            LOGGER.info("%s has set new %s", device or "<peer>", attribute.name)
            attribute.set_value(data)
            try:
                facade.store.save_item({key: data.decode("utf-8", errors="replace")})
            except (GaugemanError, OSError) as exc:
                LOGGER.error("Could not save %s: %s", key, exc)
                facade.set_gauge_status(f"Could not save {key}: {exc}. {facade.timestamp()}")

        return _on_write

    @staticmethod
    def _reader(facade: DeviceFacade, attribute: DeviceAttribute, key: str) -> ReadHandler:
        def _on_read(device: str) -> None:
            LOGGER.info("%s is reading %s", device or "<peer>", attribute.name)
            attribute.set_value(_as_text(facade.store.config.get(key)))

        return _on_read


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    return json.dumps(value)


class DeviceFacade:
    """Owns the gauge's attributes and turns peer interaction into actions.

    ``ok_to_send`` gates whether :meth:`set_gauge_value` reaches the
    transmitter; administrative commands clear it and commands 5/10 restore it.
    """

    def __init__(
        self,
        store: ConfigStore,
        transmitter: Transmitter,
        peripheral: Peripheral,
        subscription: SubscriptionSync,
        *,
        extension: AttributeExtension | None = None,
        app_version: str = "unknown",
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.store = store
        self.transmitter = transmitter
        self.peripheral = peripheral
        self.subscription = subscription
        self.app_version = app_version
        self._extension = extension or NullExtension()
        self._clock = clock
        self._attributes: dict[str, DeviceAttribute] = {}
        self._registered = False
        self.ok_to_send = True
        self.value = "Not Set Yet"
        self.status = f"ipl, {self.timestamp()}"
        self.dispatcher = CommandDispatcher(self)

        store.updated.connect(self._on_config_updated)
        subscription.sub_expired.connect(self.handle_subscription_change)
        peripheral.on_ready(self.register_attributes)
        peripheral.on_connection_change(self.handle_connection_change)

    @property
    def attributes(self) -> Mapping[str, DeviceAttribute]:
        return dict(self._attributes)

    def attribute(self, name: str) -> DeviceAttribute:
        return self._attributes[name]

    def timestamp(self) -> str:
        now = self._clock()
        return f"{now:%X}, {now:%x}"

    def add_attribute(
        self,
        uuid: str,
        name: str,
        flags: Iterable[str],
        *,
        on_write: WriteHandler | None = None,
        on_read: ReadHandler | None = None,
    ) -> DeviceAttribute:
        attribute = DeviceAttribute(
            name=name,
            uuid=uuid,
            flags=tuple(flags),
            on_write=on_write,
            on_read=on_read,
        )
        self.peripheral.add_attribute(attribute)
        self._attributes[name] = attribute
        return attribute

    def register_attributes(self) -> None:
        """Create the core attributes, then hand over to the extension. Idempotent."""
        if self._registered:
            return
        LOGGER.info("Initialize characteristics...")
        for spec in CORE_ATTRIBUTES:
            self.add_attribute(spec.uuid, spec.name, spec.flags)

        self._attributes[GAUGE_COMMAND].on_write = self._on_command_write
        self._attributes[APP_VERSION].on_read = self._on_version_read

        LOGGER.info("Setting default characteristic values...")
        self._attributes[APP_VERSION].set_value(self.app_version)
        self._attributes[GAUGE_VALUE].set_value(self.value)
        self._attributes[GAUGE_STATUS].set_value(self.status)
        self._refresh_config_attributes(self.store.config)
        self._registered = True
        self._extension.register(self)

    def set_gauge_value(self, value: float | int, description: str = "") -> bool:
        """Send ``value`` to the gauge and publish it to the peer.

        While the subscription is expired the transmitter gets the expired
        indicator instead of ``value``; the value attribute is still updated
        and the call reports failure.
        """
        if not self.ok_to_send:
            self.set_gauge_status(BLOCKED_STATUS)
            return False

        expired = self.subscription.expired
        if expired:
            self.transmitter.set_subscription_expired(True)
            self.set_gauge_status(SUBSCRIPTION_EXPIRED_STATUS)
        else:
            self.transmitter.send_value(value)

        if description:
            log_value = f"{value}{description}"
        else:
            log_value = f"{value}, {self.timestamp()}"
        self.value = log_value
        self._publish(GAUGE_VALUE, log_value)
        return not expired

    def set_gauge_status(self, status: str) -> None:
        if self.subscription.expired:
            status = SUBSCRIPTION_EXPIRED_STATUS
        self.status = status
        self._publish(GAUGE_STATUS, status)

    def record_command(self, text: str) -> None:
        self._publish(GAUGE_COMMAND, text)

    def send_alert(self, flag: str = "1") -> Any:
        """Relay ``{<description>: flag}`` to the management service."""
        label = str(self.store.config.get("description", ""))
        return self.subscription.schedule_alert({label: flag})

    def config_summary(self) -> str:
        config = self.store.config
        return json.dumps({"description": config.get("description"), "uuid": config.get("uuid")})

    def handle_subscription_change(self, expired: bool) -> None:
        self.transmitter.set_subscription_expired(expired)
        if expired:
            LOGGER.warning("Subscription expired, gauge values will not be forwarded.")
            self.set_gauge_status(SUBSCRIPTION_EXPIRED_STATUS)
        else:
            self.set_gauge_status(f"Subscription active. {self.timestamp()}")

    def handle_connection_change(self, connected: bool) -> None:
        client = self.peripheral.client
        if connected:
            LOGGER.info("--> %s has connected to this server at %s", client.display_name, self.timestamp())
            if not client.paired:
                LOGGER.warning("--> CAUTION: This BLE device is not authenticated.")
            return
        LOGGER.info("<-- %s has disconnected from this server at %s", client.display_name, self.timestamp())
        if any(attribute.notifying for attribute in self._attributes.values()):
            LOGGER.info("Restarting gatt services to cleanup leftover notifications...")
            self.peripheral.restart_gatt_service()

    def _on_command_write(self, device: str, data: bytes) -> None:
        self.dispatcher.handle_write(device, data)

    def _on_version_read(self, device: str) -> None:
        LOGGER.info("%s requesting app version", device or "<peer>")
        self._attributes[APP_VERSION].set_value(self.app_version)

    def _on_config_updated(self, config: Mapping[str, Any]) -> None:
        self._refresh_config_attributes(config)

    def _refresh_config_attributes(self, config: Mapping[str, Any]) -> None:
        self._publish(GAUGE_CONFIG, self.config_summary())
        if config.get(BATT_LIFE) is not None:
            self._publish(BATT_LIFE, _as_text(config[BATT_LIFE]))

    def _publish(self, name: str, text: str) -> None:
        attribute = self._attributes.get(name)
        if attribute is None:
            return
        attribute.set_value(text)
        if attribute.notify_pending and attribute.notifying and self.peripheral.client.connected:
            self.peripheral.notify(attribute)
            attribute.notify_pending = False
