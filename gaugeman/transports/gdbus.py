"""Management bus adapter built on the ``gdbus`` and ``dbus-send`` tools."""

from __future__ import annotations

import asyncio
import logging
import re
import subprocess
from collections.abc import Callable, Sequence
from typing import Any

from gaugeman.core.errors import BusError

LOGGER = logging.getLogger(__name__)

_SIGNAL_RE = re.compile(r"^(?P<path>/\S*): (?P<member>[\w.]+) \((?P<args>.*)\)$")
_TYPE_PREFIX_RE = re.compile(r"^(?:byte|int16|uint16|int32|uint32|int64|uint64|double|objectpath|signature) ")
_INT_RE = re.compile(r"^-?\d+$")
_FLOAT_RE = re.compile(r"^-?\d+\.\d*(?:e[-+]?\d+)?$", re.IGNORECASE)
_BYTE_ARRAY_RE = re.compile(r"\[([0-9a-fA-F\s]*)\]")
_QUOTED_RE = re.compile(r'"([^"]*)"')


def parse_gdbus_value(text: str) -> Any:
    """Parse the first value of a ``gdbus call`` reply such as ``(<true>,)``."""
    value = text.strip()
    if value.startswith("(") and value.endswith(")"):
        value = value[1:-1].strip()
        if value.endswith(","):
            value = value[:-1].strip()
    if value.startswith("<") and value.endswith(">"):
        value = value[1:-1].strip()
    value = _TYPE_PREFIX_RE.sub("", value)

    if value == "true":
        return True
    if value == "false":
        return False
    if _INT_RE.match(value):
        return int(value)
    if _FLOAT_RE.match(value):
        return float(value)
    if len(value) >= 2 and value[0] == value[-1] and value[0] in {"'", '"'}:
        return value[1:-1].replace("\\'", "'").replace('\\"', '"')
    return value


def parse_byte_array(text: str) -> bytes:
    """Parse ``array of bytes [6b 4e ...]`` as printed by ``dbus-send``."""
    match = _BYTE_ARRAY_RE.search(text)
    if not match:
        raise BusError(f"No byte array found in reply: {text.strip()!r}")
    tokens = match.group(1).split()
    try:
        return bytes(int(token, 16) for token in tokens)
    except ValueError as exc:
        raise BusError(f"Malformed byte array in reply: {exc}") from exc


def parse_quoted_text(text: str) -> str | None:
    """Return the text between the first pair of double quotes, if any."""
    match = _QUOTED_RE.search(text)
    return match.group(1) if match else None


def _bus_flag(bus: str) -> str:
    if bus not in {"system", "session"}:
        raise BusError(f"Unsupported bus '{bus}'")
    return f"--{bus}"


async def _run(cmd: Sequence[str], timeout_s: float) -> str:
    LOGGER.debug("Running %s", " ".join(cmd))
    try:
        proc = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except FileNotFoundError as exc:
        raise BusError(f"'{cmd[0]}' is not installed") from exc
    except OSError as exc:
        raise BusError(f"Could not start '{cmd[0]}': {exc}") from exc
    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout_s)
    except asyncio.TimeoutError as exc:
        proc.kill()
        await proc.wait()
        raise BusError(f"{' '.join(cmd[:2])} timed out after {timeout_s}s") from exc
    if proc.returncode != 0:
        detail = stderr.decode(errors="replace").strip()
        raise BusError(f"{' '.join(cmd[:2])} failed ({proc.returncode}): {detail}")
    return stdout.decode(errors="replace")


class GdbusInterface:
    """Proxy for one remote interface.

    Calls shell out to ``gdbus call``; signal delivery runs ``gdbus monitor``
    in a background task started by the first :meth:`subscribe`.
    """

    def __init__(
        self,
        service: str,
        object_path: str,
        interface: str,
        *,
        bus: str = "system",
        timeout_s: float = 5.0,
    ) -> None:
        self.service = service
        self.object_path = object_path
        self.interface = interface
        self._bus_flag = _bus_flag(bus)
        self._timeout_s = timeout_s
        self._callbacks: dict[str, list[Callable[[Any], None]]] = {}
        self._monitor_task: asyncio.Task[None] | None = None
        self._monitor_proc: asyncio.subprocess.Process | None = None

    def _call_cmd(self, method: str, *args: str) -> list[str]:
        return [
            "gdbus",
            "call",
            self._bus_flag,
            "--dest",
            self.service,
            "--object-path",
            self.object_path,
            "--method",
            method,
            *args,
        ]

    async def get_property(self, name: str) -> Any:
        out = await _run(
            self._call_cmd("org.freedesktop.DBus.Properties.Get", self.interface, name),
            self._timeout_s,
        )
        return parse_gdbus_value(out)

    async def call(self, method: str, *args: str) -> str:
        out = await _run(self._call_cmd(f"{self.interface}.{method}", *args), self._timeout_s)
        return out.strip()

    def subscribe(self, signal: str, callback: Callable[[Any], None]) -> None:
        self._callbacks.setdefault(signal, []).append(callback)
        if self._monitor_task is None:
            self._monitor_task = asyncio.get_running_loop().create_task(self._monitor())

    def dispatch_line(self, line: str) -> bool:
        """Deliver one ``gdbus monitor`` line. Returns True if it was a subscribed signal."""
        match = _SIGNAL_RE.match(line.strip())
        if not match or match.group("path") != self.object_path:
            return False
        interface, _, signal = match.group("member").rpartition(".")
        if interface != self.interface or signal not in self._callbacks:
            return False
        value = parse_gdbus_value(f"({match.group('args')})")
        for callback in list(self._callbacks[signal]):
            callback(value)
        return True

    async def _monitor(self) -> None:
        cmd = ["gdbus", "monitor", self._bus_flag, "--dest", self.service, "--object-path", self.object_path]
        try:
            self._monitor_proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.DEVNULL,
            )
        except FileNotFoundError:
            LOGGER.error("'gdbus' is not installed, signals from %s will not be received", self.service)
            return
        except OSError as exc:
            LOGGER.error("Could not start gdbus monitor for %s, signals will not be received: %s", self.service, exc)
            return
        stdout = self._monitor_proc.stdout
        if stdout is None:
            LOGGER.error("gdbus monitor for %s has no output pipe", self.service)
            return
        async for raw in stdout:
            self.dispatch_line(raw.decode(errors="replace"))
        LOGGER.warning("gdbus monitor for %s exited", self.service)

    async def close(self) -> None:
        if self._monitor_proc is not None and self._monitor_proc.returncode is None:
            self._monitor_proc.terminate()
            await self._monitor_proc.wait()
        if self._monitor_task is not None:
            self._monitor_task.cancel()
            try:
                await self._monitor_task
            except asyncio.CancelledError:
                pass
        self._monitor_task = None
        self._monitor_proc = None


class GdbusConnector:
    def __init__(self, *, bus: str = "system", timeout_s: float = 5.0) -> None:
        self._bus = bus
        self._bus_flag = _bus_flag(bus)
        self._timeout_s = timeout_s

    async def get_interface(self, service: str, object_path: str, interface: str) -> GdbusInterface:
        out = await _run(
            ["gdbus", "introspect", self._bus_flag, "--dest", service, "--object-path", object_path],
            self._timeout_s,
        )
        if f"interface {interface} {{" not in out:
            raise BusError(f"{service}{object_path} does not expose {interface}")
        return GdbusInterface(service, object_path, interface, bus=self._bus, timeout_s=self._timeout_s)


def request_data_key(
    service: str,
    object_path: str,
    method: str,
    *,
    bus: str = "system",
    timeout_s: float = 5.0,
) -> bytes | None:
    """Ask the management service for the overlay data key.

    Returns None when the key is not available so the caller can decide
    whether running without it is acceptable.
    """
    cmd = ["dbus-send", _bus_flag(bus), f"--dest={service}", "--print-reply=literal", object_path, method]
    try:
        result = subprocess.run(cmd, check=False, capture_output=True, text=True, timeout=timeout_s)
    except FileNotFoundError:
        LOGGER.warning("'dbus-send' is not installed, no data key available")
        return None
    except subprocess.TimeoutExpired:
        LOGGER.warning("Timed out requesting data key from %s", service)
        return None
    if result.returncode != 0:
        LOGGER.warning("Data key request to %s failed: %s", service, (result.stderr or "").strip())
        return None

    message = parse_quoted_text(result.stdout)
    if message is not None:
        LOGGER.warning("Data key not returned by %s: %s", service, message)
        return None
    try:
        return parse_byte_array(result.stdout)
    except BusError as exc:
        LOGGER.warning("Could not parse data key from %s: %s", service, exc)
        return None
