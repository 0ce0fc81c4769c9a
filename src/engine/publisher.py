"""Synchronous in-process pub/sub for status and store changes."""

from __future__ import annotations

import logging
from typing import Callable, Generic, TypeVar

T = TypeVar("T")

Listener = Callable[[T], None]

LOGGER = logging.getLogger("rsa_dex_sync.publisher")


class StatusPublisher(Generic[T]):
    """Fan a value out to every listener, in registration order.

    There is no batching: each ``notify`` call is one full synchronous pass.
    """

    def __init__(self, name: str = "publisher") -> None:
        self.name = name
        self._listeners: list[Listener[T]] = []

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def subscribe(self, listener: Listener[T]) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            try:
                self._listeners.remove(listener)
            except ValueError:
                pass

        return unsubscribe

    def notify(self, value: T) -> None:
        # Snapshot so listeners may unsubscribe during the pass.
        for listener in list(self._listeners):
            try:
                listener(value)
            except Exception:
                LOGGER.exception("Listener %r on %s failed", listener, self.name)

    def clear(self) -> None:
        self._listeners.clear()
