"""Change notifications.

Commit, replace and delete operations emit ``transactions_changed`` and
``accounts_changed`` after their save succeeds.  Subscribers are plain
callables taking the event name.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

logger = logging.getLogger(__name__)

TRANSACTIONS_CHANGED = "transactions_changed"
ACCOUNTS_CHANGED = "accounts_changed"


class EventBus:
    """Minimal synchronous publish/subscribe hub."""

    def __init__(self) -> None:
        self._subscribers: dict[str, list[Callable[[str], None]]] = {}

    def subscribe(self, event: str, callback: Callable[[str], None]) -> None:
        self._subscribers.setdefault(event, []).append(callback)

    def emit(self, event: str) -> None:
        """Call every subscriber of *event* in subscription order."""
        callbacks = self._subscribers.get(event, [])
        logger.debug("Emitting %s to %d subscriber(s)", event, len(callbacks))
        for callback in list(callbacks):
            callback(event)


def notify_changed(events: EventBus | None) -> None:
    """Emit both change events, in the order commits emit them."""
    if events is None:
        return
    events.emit(TRANSACTIONS_CHANGED)
    events.emit(ACCOUNTS_CHANGED)
