"""Collaborator interfaces: transmitter, peripheral stack and management bus."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any, Protocol

from gaugeman.core.model import DeviceAttribute, IrCommand, PeerClient


class Transmitter(Protocol):
    def send_value(self, value: float | int) -> None:
        """Send a gauge value to the gauge."""

    def encode_cmd(self, command: IrCommand) -> Any:
        """Encode an administrative command into a transmit buffer."""

    def send_encoded_cmd(self, encoded: Any) -> None:
        """Transmit a pre-encoded command buffer."""

    def set_subscription_expired(self, expired: bool) -> None:
        """Tell the gauge whether to show the subscription-expired indicator."""


class Peripheral(Protocol):
    @property
    def client(self) -> PeerClient:
        """The currently (or last) connected peer."""

    def on_ready(self, callback: Callable[[], None]) -> None:
        """Register ``callback`` to run once the stack accepts attribute registrations."""

    def on_connection_change(self, callback: Callable[[bool], None]) -> None:
        """Register ``callback`` for peer connect/disconnect."""

    def add_attribute(self, attribute: DeviceAttribute) -> None:
        """Publish an attribute to peers.

        Inbound peer access goes through ``attribute.read``/``attribute.write``
        with ``paired`` set from the peer's authentication state.
        """

    def notify(self, attribute: DeviceAttribute) -> None:
        """Push the attribute's current value to the subscribed peer."""

    def restart_gatt_service(self) -> None:
        """Restart the attribute service, dropping leftover notifications."""


class BusInterface(Protocol):
    async def get_property(self, name: str) -> Any:
        """Read a property of the remote interface."""

    async def call(self, method: str, *args: str) -> str:
        """Invoke a method on the remote interface and return its reply."""

    def subscribe(self, signal: str, callback: Callable[[Any], None]) -> None:
        """Deliver every emission of ``signal`` to ``callback``."""


class BusConnector(Protocol):
    async def get_interface(self, service: str, object_path: str, interface: str) -> BusInterface:
        """Acquire a proxy for a remote interface."""
