"""User-facing toasts keyed by stable operation ids."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable

from engine.reconciliation import LoadOutcome, MutationOutcome, Reconciler
from engine.sync_coordinator import (
    ASSETS_SYNC_KEY,
    FULL_SYNC_KEY,
    EventKind,
    SyncCoordinator,
    SyncEvent,
)

LOGGER = logging.getLogger("rsa_dex_sync.notifications")


class ToastKind(str, Enum):
    LOADING = "loading"
    SUCCESS = "success"
    ERROR = "error"
    WARNING = "warning"


@dataclass(frozen=True)
class Toast:
    key: str
    kind: ToastKind
    message: str


class NotificationCenter:
    """Active toasts by id; a new toast with the same id replaces the old one."""

    def __init__(self) -> None:
        self.active: dict[str, Toast] = {}
        self.history: list[Toast] = []
        self._unsubscribers: list[Callable[[], None]] = []

    def attach(
        self,
        coordinator: SyncCoordinator | None = None,
        reconciler: Reconciler | None = None,
    ) -> None:
        if coordinator is not None:
            self._unsubscribers.append(
                coordinator.subscribe_events(self.handle_sync_event)
            )
        if reconciler is not None:
            self._unsubscribers.append(
                reconciler.subscribe(self.handle_reconcile_event)
            )

    def detach(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()

    def show(self, key: str, kind: ToastKind, message: str) -> Toast:
        toast = Toast(key=key, kind=kind, message=message)
        self.active[key] = toast
        self.history.append(toast)
        LOGGER.debug("[%s] %s: %s", key, kind.value, message)
        return toast

    def dismiss(self, key: str) -> None:
        self.active.pop(key, None)

    def get(self, key: str) -> Toast | None:
        return self.active.get(key)

    def handle_sync_event(self, event: SyncEvent) -> None:
        if event.kind is EventKind.STARTED:
            self.show(event.key, ToastKind.LOADING, _started_message(event))
            return
        if event.success:
            self.show(event.key, ToastKind.SUCCESS, _success_message(event))
            return
        self.show(event.key, ToastKind.ERROR, _failure_message(event))

    def handle_reconcile_event(self, event: LoadOutcome | MutationOutcome) -> None:
        if isinstance(event, LoadOutcome):
            if event.used_fallback:
                self.show(
                    f"load-{event.module.value}",
                    ToastKind.WARNING,
                    f"Failed to load {event.module.value} - using mock data",
                )
            return
        key = f"mutation-{event.mutation.mutation_id}"
        if event.success:
            self.show(key, ToastKind.SUCCESS, f"Done: {event.label}")
        else:
            self.show(key, ToastKind.ERROR, f"Failed to {event.label}: {event.error}")


def _started_message(event: SyncEvent) -> str:
    if event.key == FULL_SYNC_KEY:
        return "Starting full synchronization..."
    if event.asset_id is not None:
        return "Syncing asset to RSA DEX..."
    if event.key == ASSETS_SYNC_KEY:
        return "Syncing assets to RSA DEX..."
    return f"Syncing {event.module.display_name.lower()} to RSA DEX..."


def _success_message(event: SyncEvent) -> str:
    if event.key == FULL_SYNC_KEY:
        return "Full synchronization completed successfully!"
    if event.asset_id is not None:
        return "Asset synced successfully!"
    return f"{event.module.display_name} synced successfully!"


def _failure_message(event: SyncEvent) -> str:
    if event.key == FULL_SYNC_KEY:
        return "Some synchronization operations failed. Check the results."
    error = event.result.errors[0] if event.result and event.result.errors else ""
    if event.asset_id is not None or event.key == ASSETS_SYNC_KEY:
        return f"Asset sync failed: {error}"
    return f"{event.module.display_name} sync failed: {error}"
