"""Gauge command codes written by the peer to the command attribute."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TYPE_CHECKING

from gaugeman.core.errors import GaugemanError, UnrecognizedCommand
from gaugeman.core.model import IDLE_CODE, CommandOutcome, IrCommand

if TYPE_CHECKING:
    from gaugeman.core.facade import DeviceFacade

LOGGER = logging.getLogger(__name__)

RESULT_OK = "okay"
RESULT_NOT_FOUND = "Warning: Custom configuration file not found."
RESULT_UNRECOGNIZED = "Warning: no case or action for this command."
RESULT_EXPIRED = "Warning: subscription expired, value not transmitted."


class CommandDispatcher:
    """Maps a command code to its action.

    Codes are compared as exact strings. Every command rewrites the status
    attribute and records ``Last command num = ...`` on the command attribute.
    """

    def __init__(self, facade: DeviceFacade) -> None:
        self._facade = facade
        self._actions: dict[str, Callable[[], str]] = {
            "0": self._check_battery,
            "1": self._reset,
            "2": self._zero_needle,
            "3": self._identify,
            "4": self._idle,
            "5": self._enable,
            "6": self._factory_reset,
            "10": self._enable_and_zero,
            "20": lambda: self._test_alert("1"),
            "21": lambda: self._test_alert("0"),
        }

    def handle_write(self, device: str, data: bytes) -> CommandOutcome:
        code = data.decode("utf-8", errors="replace")
        LOGGER.info("%s has sent a new gauge command: number = %s", device or "<peer>", code)
        return self.dispatch(code)

    def dispatch(self, code: str) -> CommandOutcome:
        try:
            action = self._action_for(code)
            result = action()
        except UnrecognizedCommand as exc:
            LOGGER.warning("%s", exc)
            self._facade.set_gauge_status(f"Unrecognized command {code}. {self._facade.timestamp()}")
            result = RESULT_UNRECOGNIZED
        except (GaugemanError, OSError) as exc:
            LOGGER.error("Command %s failed: %s", code, exc)
            self._facade.set_gauge_status(f"Command {code} failed: {exc}. {self._facade.timestamp()}")
            result = f"Error: {exc}"

        recorded = f"Last command num = {code}, result = {result}, at {self._facade.timestamp()}"
        self._facade.record_command(recorded)
        return CommandOutcome(code=code, result=result, status=self._facade.status, recorded=recorded)

    def _action_for(self, code: str) -> Callable[[], str]:
        action = self._actions.get(code)
        if action is None:
            raise UnrecognizedCommand(f"No case for command {code!r}")
        return action

    def _send_ir(self, command: IrCommand, message: str) -> str:
        LOGGER.info("Disabling sending of gauge value during administration.")
        self._facade.ok_to_send = False
        self._facade.set_gauge_status(f"{message} {self._facade.timestamp()}")
        transmitter = self._facade.transmitter
        transmitter.send_encoded_cmd(transmitter.encode_cmd(command))
        return RESULT_OK

    def _check_battery(self) -> str:
        return self._send_ir(IrCommand.CHECK_BATTERY_VOLTAGE, "Sending test battery command to gauge.")

    def _reset(self) -> str:
        return self._send_ir(IrCommand.RESET, "Sending reset command to gauge.")

    def _zero_needle(self) -> str:
        return self._send_ir(IrCommand.ZERO_NEEDLE, "Sending zero needle command to gauge.")

    def _identify(self) -> str:
        return self._send_ir(IrCommand.IDENTIFY, "Sending identify command to gauge.")

    def _idle(self) -> str:
        LOGGER.info("Disable normal gauge value TX during administration.")
        self._facade.ok_to_send = False
        self._facade.set_gauge_status(
            f"Disable normal gauge value transmission during administration. {self._facade.timestamp()}"
        )
        self._facade.transmitter.send_encoded_cmd(IDLE_CODE)
        return RESULT_OK

    def _enable(self) -> str:
        LOGGER.info("Enable normal gauge value TX.")
        self._facade.ok_to_send = True
        self._facade.set_gauge_status(f"Enabling normal gauge value transmission. {self._facade.timestamp()}")
        return RESULT_OK

    def _factory_reset(self) -> str:
        store = self._facade.store
        if not store.overlay_exists():
            LOGGER.warning(RESULT_NOT_FOUND)
            self._facade.set_gauge_status(f"{RESULT_NOT_FOUND} {self._facade.timestamp()}")
            return RESULT_NOT_FOUND
        self._facade.set_gauge_status(
            "Removing custom configuration file and resetting gauge to default config. "
            f"{self._facade.timestamp()}"
        )
        store.reset_to_default()
        return RESULT_OK

    def _enable_and_zero(self) -> str:
        LOGGER.info("Send the value zero to gauge and enable normal gauge TX.")
        self._facade.ok_to_send = True
        self._facade.set_gauge_status(
            f"Enabling normal gauge value transmission and sending zero. {self._facade.timestamp()}"
        )
        if not self._facade.set_gauge_value(0):
            LOGGER.warning("Zero shown on the value attribute but not transmitted, subscription expired.")
            return RESULT_EXPIRED
        return RESULT_OK

    def _test_alert(self, flag: str) -> str:
        label = "set" if flag == "1" else "clear"
        LOGGER.info("Test: %s alert to management service", label)
        self._facade.set_gauge_status(f"Sending test {label} alert. {self._facade.timestamp()}")
        self._facade.send_alert(flag)
        return RESULT_OK
