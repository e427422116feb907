"""Stable public API for embedding gaugeman in a gauge application.

This module is the supported integration surface. Avoid importing from
private/internal modules unless intentionally depending on non-stable
internals.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from importlib import metadata
from pathlib import Path
from typing import Any

from gaugeman.core.config_store import ConfigStore
from gaugeman.core.errors import (
    AlertDeliveryFailed,
    BusError,
    ConfigError,
    DecryptionFailed,
    EncryptionUnavailable,
    ExtensionError,
    ExtensionLoadError,
    ExtensionValidationError,
    GaugemanError,
    InterfaceNotReady,
    InvalidConfigDocument,
    MissingDefaultConfig,
    UnrecognizedCommand,
)
from gaugeman.core.extension_loader import load_extensions
from gaugeman.core.facade import AttributeExtension, DeclaredAttributeExtension, DeviceFacade
from gaugeman.core.model import (
    AlertResult,
    AttributeSpec,
    CommandOutcome,
    DeviceAttribute,
    EncryptionState,
    ExtensionSpec,
    IrCommand,
    PeerClient,
)
from gaugeman.core.settings import GaugeSettings, load_settings
from gaugeman.core.subscription import DEFAULT_INTERFACE, DEFAULT_OBJECT_PATH, DEFAULT_SERVICE, SubscriptionSync
from gaugeman.transports.base import BusConnector, BusInterface, Peripheral, Transmitter
from gaugeman.transports.gdbus import GdbusConnector, request_data_key

__all__ = [
    "GaugemanError",
    "ConfigError",
    "MissingDefaultConfig",
    "InvalidConfigDocument",
    "EncryptionUnavailable",
    "DecryptionFailed",
    "BusError",
    "InterfaceNotReady",
    "AlertDeliveryFailed",
    "UnrecognizedCommand",
    "ExtensionError",
    "ExtensionLoadError",
    "ExtensionValidationError",
    "AlertResult",
    "AttributeSpec",
    "CommandOutcome",
    "DeviceAttribute",
    "EncryptionState",
    "ExtensionSpec",
    "IrCommand",
    "PeerClient",
    "AttributeExtension",
    "DeclaredAttributeExtension",
    "BusConnector",
    "BusInterface",
    "Peripheral",
    "Transmitter",
    "GaugeSettings",
    "load_settings",
    "configure_logging",
    "declared_extensions",
    "GaugeApp",
]

LOGGER = logging.getLogger(__name__)


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s | %(message)s",
    )


def declared_extensions() -> DeclaredAttributeExtension:
    """Build an extension from the packaged and user YAML extension files."""
    loaded = load_extensions()
    return DeclaredAttributeExtension.from_extensions(loaded.extensions)


def _app_version() -> str:
    try:
        return metadata.version("gaugeman")
    except metadata.PackageNotFoundError:
        return "unknown"


class GaugeApp:
    """Wires the config store, subscription sync and device facade together.

    Construction fails with :class:`EncryptionUnavailable` when encryption is
    required without a key. :meth:`start` loads the configuration (emitting
    ``config_ready``) and connects to the management service; attribute
    registration follows when the peripheral reports it is ready.
    """

    def __init__(
        self,
        *,
        default_config_path: str | Path,
        overlay_config_path: str | Path,
        transmitter: Transmitter,
        peripheral: Peripheral,
        connector: BusConnector,
        encrypt: bool = False,
        data_key: bytes | str | None = None,
        extension: AttributeExtension | None = None,
        app_version: str | None = None,
        bus_service: str = DEFAULT_SERVICE,
        bus_object_path: str = DEFAULT_OBJECT_PATH,
        bus_interface: str = DEFAULT_INTERFACE,
    ) -> None:
        self.store = ConfigStore(default_config_path, overlay_config_path, encrypt=encrypt, key=data_key)
        self.subscription = SubscriptionSync(
            connector,
            service=bus_service,
            object_path=bus_object_path,
            interface=bus_interface,
        )
        self.facade = DeviceFacade(
            self.store,
            transmitter,
            peripheral,
            self.subscription,
            extension=extension,
            app_version=app_version or _app_version(),
        )

    @classmethod
    def from_settings(
        cls,
        settings: GaugeSettings,
        *,
        transmitter: Transmitter,
        peripheral: Peripheral,
        connector: BusConnector | None = None,
        extension: AttributeExtension | None = None,
        app_version: str | None = None,
    ) -> GaugeApp:
        key: bytes | str | None = settings.data_key
        if settings.encrypt and key is None and settings.key_method:
            LOGGER.info("Requesting data key from %s", settings.bus_service)
            key = request_data_key(settings.bus_service, settings.bus_object_path, settings.key_method)
        return cls(
            default_config_path=settings.default_config_path,
            overlay_config_path=settings.overlay_config_path,
            transmitter=transmitter,
            peripheral=peripheral,
            connector=connector or GdbusConnector(),
            encrypt=settings.encrypt,
            data_key=key,
            extension=extension,
            app_version=app_version,
            bus_service=settings.bus_service,
            bus_object_path=settings.bus_object_path,
            bus_interface=settings.bus_interface,
        )

    @property
    def config(self) -> Mapping[str, Any]:
        return self.store.config

    async def start(self) -> Mapping[str, Any]:
        config = self.store.config if self.store.loaded else self.store.load()
        await self.subscription.start()
        return config

    def set_gauge_value(self, value: float | int, description: str = "") -> bool:
        return self.facade.set_gauge_value(value, description)

    def set_gauge_status(self, status: str) -> None:
        self.facade.set_gauge_status(status)

    def save_item(self, items: Mapping[str, Any]) -> Mapping[str, Any]:
        return self.store.save_item(items)

    def reset_to_default(self) -> bool:
        return self.store.reset_to_default()

    async def send_alert(self, payload: Mapping[str, Any] | None = None) -> AlertResult:
        if payload is None:
            payload = {str(self.config.get("description", "")): "1"}
        return await self.subscription.send_alert(dict(payload))
