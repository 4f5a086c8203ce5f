"""In-process publish/subscribe channel.

A Signal is owned by the object that fires it (store, settings); there is
no module-level listener registry.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger("linemark.signals")


class Signal:
    """A list of listeners called in subscription order."""

    def __init__(self, name: str = "") -> None:
        self.name = name
        self._listeners: list[Callable[..., Any]] = []

    def connect(self, func: Callable[..., Any]) -> Callable[[], None]:
        """Subscribe func. Returns a callable that unsubscribes it."""
        self._listeners.append(func)

        def disconnect() -> None:
            if func in self._listeners:
                self._listeners.remove(func)

        return disconnect

    def emit(self, *args: Any) -> None:
        """Dispatch to every listener. A failing listener does not stop the rest."""
        for listener in list(self._listeners):
            try:
                listener(*args)
            except Exception:
                logger.exception("listener failed on signal %s", self.name or "<anonymous>")

    def __len__(self) -> int:
        return len(self._listeners)
