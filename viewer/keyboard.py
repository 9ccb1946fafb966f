"""Key event fan-out with explicitly scoped subscriptions."""

from __future__ import annotations

import logging
from collections.abc import Callable

KeyHandler = Callable[[str], None]

ESCAPE = "Escape"
ARROW_LEFT = "ArrowLeft"
ARROW_RIGHT = "ArrowRight"


class KeySubscription:
    """Handle returned by :meth:`KeyEventSource.subscribe`.

    Releasing is idempotent; the handler stops receiving keys immediately.
    """

    def __init__(self, source: "KeyEventSource", handler: KeyHandler) -> None:
        self._source = source
        self._handler = handler
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def release(self) -> None:
        if not self._active:
            return
        self._active = False
        self._source._remove(self)

    def __enter__(self) -> "KeySubscription":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.release()

    def _deliver(self, key: str) -> None:
        if self._active:
            self._handler(key)


class KeyEventSource:
    """Delivers key names (``"Escape"``, ``"ArrowLeft"``...) to subscribers."""

    def __init__(self) -> None:
        self._subscriptions: list[KeySubscription] = []

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def subscribe(self, handler: KeyHandler) -> KeySubscription:
        subscription = KeySubscription(self, handler)
        self._subscriptions.append(subscription)
        return subscription

    def _remove(self, subscription: KeySubscription) -> None:
        try:
            self._subscriptions.remove(subscription)
        except ValueError:
            logging.debug("Key subscription already removed")

    def dispatch(self, key: str) -> None:
        # handlers may release their own subscription while running
        for subscription in list(self._subscriptions):
            subscription._deliver(key)
