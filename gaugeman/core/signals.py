"""Named lifecycle signals with ordered, synchronous delivery."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

LOGGER = logging.getLogger(__name__)

Listener = Callable[..., None]


class Signal:
    """A single named signal.

    Listeners run in subscription order, once per ``emit``. A failing listener
    is logged and does not stop delivery to the rest.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._listeners: list[Listener] = []

    def connect(self, listener: Listener) -> Callable[[], bool]:
        if listener not in self._listeners:
            self._listeners.append(listener)
        return lambda: self.disconnect(listener)

    def disconnect(self, listener: Listener) -> bool:
        if listener not in self._listeners:
            return False
        self._listeners.remove(listener)
        return True

    def emit(self, *args: Any) -> None:
        LOGGER.debug("Emitting '%s' to %d listener(s)", self.name, len(self._listeners))
        for listener in list(self._listeners):
            try:
                listener(*args)
            except Exception:
                LOGGER.exception("Listener for '%s' failed", self.name)
