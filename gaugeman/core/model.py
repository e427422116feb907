"""Core data models shared by the store, facade, dispatcher and bus sync."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from gaugeman.core.errors import AlertDeliveryFailed

READ = "read"
WRITE = "write"
NOTIFY = "notify"
ENCRYPT_READ = "encrypt-read"
ENCRYPT_WRITE = "encrypt-write"
ENCRYPT_NOTIFY = "encrypt-notify"

WriteHandler = Callable[[str, bytes], None]
ReadHandler = Callable[[str], None]


class EncryptionState(Enum):
    DISABLED = "disabled"
    ENABLED_WITH_KEY = "enabled-with-key"
    ENABLED_WITHOUT_KEY = "enabled-without-key"


class IrCommand(str, Enum):
    """Administrative commands understood by the gauge's transmitter."""

    CHECK_BATTERY_VOLTAGE = "Check_Battery_Voltage"
    RESET = "Reset"
    ZERO_NEEDLE = "Zero_Needle"
    IDENTIFY = "Identify"


# Encoded buffer the transmitter treats as "no-op".
IDLE_CODE = 0


def merge_documents(default: dict[str, Any], overlay: dict[str, Any]) -> dict[str, Any]:
    """Shallow merge, overlay wins per key."""
    return {**default, **overlay}


@dataclass(frozen=True)
class PeerClient:
    connected: bool = False
    paired: bool = False
    name: str = ""
    device_path: str = ""

    @property
    def display_name(self) -> str:
        return self.name or self.device_path


@dataclass(frozen=True)
class AttributeSpec:
    name: str
    uuid: str
    flags: tuple[str, ...]
    config_key: str | None = None


@dataclass(frozen=True)
class ExtensionSpec:
    id: str
    name: str
    attributes: tuple[AttributeSpec, ...]


@dataclass
class DeviceAttribute:
    """One value exposed to the connected peer.

    Flags follow the BlueZ characteristic flag names; the ``encrypt-`` variants
    require the peer to be authenticated.
    """

    name: str
    uuid: str
    flags: tuple[str, ...]
    value: bytes = b""
    notifying: bool = False
    notify_pending: bool = False
    on_write: WriteHandler | None = None
    on_read: ReadHandler | None = None

    @property
    def readable(self) -> bool:
        return READ in self.flags or ENCRYPT_READ in self.flags

    @property
    def writable(self) -> bool:
        return WRITE in self.flags or ENCRYPT_WRITE in self.flags

    @property
    def notifiable(self) -> bool:
        return NOTIFY in self.flags or ENCRYPT_NOTIFY in self.flags

    def requires_auth(self, capability: str) -> bool:
        return f"encrypt-{capability}" in self.flags

    @property
    def text(self) -> str:
        return self.value.decode("utf-8", errors="replace")

    def set_value(self, value: str | bytes | int | float) -> None:
        if isinstance(value, bytes):
            encoded = value
        else:
            encoded = str(value).encode("utf-8")
        self.value = encoded
        if self.notifiable:
            self.notify_pending = True

    def write(self, device: str, data: bytes, *, paired: bool = True) -> None:
        """Entry point for inbound peer writes.

        ``paired`` is the peer's authentication state as reported by the
        peripheral stack; ``encrypt-write`` attributes refuse unpaired peers.
        """
        if not self.writable:
            raise PermissionError(f"Attribute '{self.name}' is not writable")
        if not paired and self.requires_auth(WRITE):
            raise PermissionError(f"Attribute '{self.name}' requires an authenticated peer to write")
        if self.on_write is not None:
            self.on_write(device, bytes(data))

    def read(self, device: str, *, paired: bool = True) -> bytes:
        """Entry point for inbound peer reads."""
        if not self.readable:
            raise PermissionError(f"Attribute '{self.name}' is not readable")
        if not paired and self.requires_auth(READ):
            raise PermissionError(f"Attribute '{self.name}' requires an authenticated peer to read")
        if self.on_read is not None:
            self.on_read(device)
        return self.value


@dataclass(frozen=True)
class CommandOutcome:
    code: str
    result: str
    status: str
    recorded: str


@dataclass(frozen=True)
class AlertResult:
    payload: dict[str, Any]
    delivered: bool
    reply: str | None = None
    error: AlertDeliveryFailed | None = field(default=None, compare=False)
