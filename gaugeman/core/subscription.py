"""Subscription state synchronisation with the external management service."""

from __future__ import annotations

import asyncio
import json
import logging
from enum import Enum
from typing import Any

from gaugeman.core.errors import AlertDeliveryFailed, BusError, GaugemanError, InterfaceNotReady
from gaugeman.core.model import AlertResult
from gaugeman.core.signals import Signal
from gaugeman.transports.base import BusConnector, BusInterface

LOGGER = logging.getLogger(__name__)

DEFAULT_SERVICE = "com.gdtMan"
DEFAULT_OBJECT_PATH = "/com/gdtMan"
DEFAULT_INTERFACE = "com.gdtMan.gaugeCom"
SUBSCRIPTION_PROPERTY = "SubscriptionExpired"
SUB_EXPIRED_SIGNAL = "SubExpired"
ALERT_METHOD = "Alert"


class SyncState(Enum):
    DISCONNECTED = "disconnected"
    INTERFACE_ACQUIRING = "interface-acquiring"
    READY = "ready"


class SubscriptionSync:
    """Keeps the local subscription-expired flag in step with the service.

    On reaching ``READY`` the flag is fetched once; afterwards every
    ``SubExpired`` notification overwrites it. Neither path retries, and
    whichever response resolves last wins.

    Alerts are fire-and-forget: :meth:`send_alert` never raises and never
    retries, but returns an :class:`AlertResult` so the caller may decide to.
    """

    def __init__(
        self,
        connector: BusConnector,
        *,
        service: str = DEFAULT_SERVICE,
        object_path: str = DEFAULT_OBJECT_PATH,
        interface: str = DEFAULT_INTERFACE,
    ) -> None:
        self._connector = connector
        self.service = service
        self.object_path = object_path
        self.interface = interface
        self._iface: BusInterface | None = None
        self._state = SyncState.DISCONNECTED
        self._expired = False
        self._pending: set[asyncio.Task[AlertResult]] = set()
        self.sub_expired = Signal("SubExpired")
        self.interface_ready = Signal("InterfaceReady")

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def expired(self) -> bool:
        return self._expired

    async def start(self) -> bool:
        """Acquire the bus interface, then fetch the flag once."""
        if self._state is not SyncState.DISCONNECTED:
            return self._state is SyncState.READY
        self._state = SyncState.INTERFACE_ACQUIRING
        try:
            iface = await self._connector.get_interface(self.service, self.object_path, self.interface)
        except (BusError, OSError) as exc:
            LOGGER.error("Failed to acquire interface %s on %s: %s", self.interface, self.service, exc)
            self._state = SyncState.DISCONNECTED
            return False

        LOGGER.info("Subscribing to %s on %s", SUB_EXPIRED_SIGNAL, self.interface)
        self._iface = iface
        iface.subscribe(SUB_EXPIRED_SIGNAL, self._on_sub_expired)
        self._state = SyncState.READY
        self.interface_ready.emit()
        await self._fetch_initial()
        return True

    async def get_property(self, name: str = SUBSCRIPTION_PROPERTY) -> Any:
        if self._state is not SyncState.READY or self._iface is None:
            raise InterfaceNotReady(f"Bus interface {self.interface} is not ready; cannot read {name}.")
        return await self._iface.get_property(name)

    async def send_alert(self, payload: dict[str, Any]) -> AlertResult:
        text = json.dumps(payload)
        LOGGER.info("Sending alert to %s: %s", self.service, text)
        try:
            if self._state is not SyncState.READY or self._iface is None:
                raise InterfaceNotReady("Bus interface not set up, skipping alert.")
            reply = await self._iface.call(ALERT_METHOD, text)
        except BusError as exc:
            error = exc if isinstance(exc, AlertDeliveryFailed) else AlertDeliveryFailed(str(exc))
            LOGGER.warning("Alert to %s not delivered: %s", self.service, error)
            return AlertResult(payload=dict(payload), delivered=False, error=error)
        LOGGER.info("Result from alert = %s", reply)
        return AlertResult(payload=dict(payload), delivered=True, reply=reply)

    def schedule_alert(self, payload: dict[str, Any]) -> asyncio.Task[AlertResult]:
        """Start :meth:`send_alert` on the running loop without awaiting it."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError as exc:
            raise AlertDeliveryFailed("No running event loop to deliver the alert on.") from exc
        task = loop.create_task(self.send_alert(payload))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def _fetch_initial(self) -> None:
        try:
            value = await self.get_property(SUBSCRIPTION_PROPERTY)
        except GaugemanError as exc:
            LOGGER.warning("Error reading property %s: %s", SUBSCRIPTION_PROPERTY, exc)
            return
        LOGGER.info("%s = %s", SUBSCRIPTION_PROPERTY, value)
        self._set_expired(bool(value))

    def _on_sub_expired(self, value: Any) -> None:
        LOGGER.info("%s notification, value = %s", SUB_EXPIRED_SIGNAL, value)
        self._set_expired(bool(value))

    def _set_expired(self, expired: bool) -> None:
        self._expired = expired
        self.sub_expired.emit(expired)
