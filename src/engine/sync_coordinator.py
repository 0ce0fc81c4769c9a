"""Per-module sync status tracking and sync orchestration."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Iterable, Iterator, Mapping

from engine.entity_store import EntityStore
from engine.publisher import StatusPublisher
from engine.reconciliation import Reconciler
from rsa_client.async_rest import AsyncRestClient
from rsa_client.envelope import ApiResponse, failure
from rsa_client.models import SyncResult
from rsa_client.schemas import Module, SyncState, is_allowed_transition

LOGGER = logging.getLogger("rsa_dex_sync.sync")

FULL_SYNC_KEY = "full-sync"
ASSETS_SYNC_KEY = "sync-assets"


class InvalidTransitionError(RuntimeError):
    """Raised when a module status change is not allowed by the state machine."""


@dataclass(frozen=True)
class ModuleStatus:
    name: Module
    status: SyncState = SyncState.NOT_SYNCED
    last_synced_at: datetime | None = None


@dataclass(frozen=True)
class SyncStatus:
    """Immutable snapshot of the module status table."""

    modules: Mapping[Module, ModuleStatus]
    last_sync: datetime | None = None

    def __getitem__(self, module: Module | str) -> SyncState:
        return self.modules[Module.parse(module)].status

    def __iter__(self) -> Iterator[Module]:
        return iter(self.modules)

    def as_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            module.value: entry.status.value for module, entry in self.modules.items()
        }
        payload["lastSync"] = self.last_sync.isoformat() if self.last_sync else None
        return payload


@dataclass(frozen=True)
class SyncStats:
    synced: int
    total: int
    errors: int


@dataclass(frozen=True)
class FullSyncReport:
    """Per-module results of a full sync; success only if every one succeeded."""

    results: Mapping[str, SyncResult]

    @property
    def success(self) -> bool:
        return bool(self.results) and all(
            result.success for result in self.results.values()
        )

    def __getitem__(self, name: str) -> SyncResult:
        return self.results[name]

    def __contains__(self, name: object) -> bool:
        return name in self.results

    def failed_modules(self) -> list[str]:
        return [name for name, result in self.results.items() if not result.success]


@dataclass(frozen=True)
class HealthReport:
    """Module states read from the backend, not yet recorded."""

    modules: Mapping[Module, SyncState]
    health_error: str | None = None

    @classmethod
    def unreachable(cls, error: str | None) -> "HealthReport":
        return cls(
            modules={module: SyncState.ERROR for module in Module},
            health_error=error or "Backend health check failed",
        )

    @property
    def reachable(self) -> bool:
        return self.health_error is None


class EventKind(str, Enum):
    STARTED = "started"
    FINISHED = "finished"


@dataclass(frozen=True)
class SyncEvent:
    """Lifecycle of one sync operation, keyed by a stable operation id."""

    kind: EventKind
    key: str
    module: Module | None = None
    asset_id: str | None = None
    result: SyncResult | None = None
    report: FullSyncReport | None = None

    @property
    def success(self) -> bool:
        if self.report is not None:
            return self.report.success
        return self.result is not None and self.result.success


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_int(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


class SyncCoordinator:
    """Owns the module status table and runs sync operations against it.

    Module statuses change only through :meth:`_transition`, which validates
    every change against the state machine and notifies status listeners.
    """

    def __init__(
        self,
        client: AsyncRestClient,
        store: EntityStore | None = None,
        *,
        reconciler: Reconciler | None = None,
        full_sync_modules: Iterable[Module | str] = (Module.ASSETS,),
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.client = client
        self.store = store
        if reconciler is None and store is not None:
            reconciler = Reconciler(client, store)
        self.reconciler = reconciler
        self.full_sync_modules = tuple(Module.parse(m) for m in full_sync_modules)
        self._clock = clock
        self._modules: dict[Module, ModuleStatus] = {
            module: ModuleStatus(name=module) for module in Module
        }
        self._last_sync: datetime | None = None
        self._status_publisher: StatusPublisher[SyncStatus] = StatusPublisher(
            "sync-status"
        )
        self._event_publisher: StatusPublisher[SyncEvent] = StatusPublisher(
            "sync-events"
        )

    def subscribe(self, listener: Callable[[SyncStatus], None]) -> Callable[[], None]:
        return self._status_publisher.subscribe(listener)

    def subscribe_events(
        self, listener: Callable[[SyncEvent], None]
    ) -> Callable[[], None]:
        return self._event_publisher.subscribe(listener)

    def get_sync_status(self) -> SyncStatus:
        return SyncStatus(modules=dict(self._modules), last_sync=self._last_sync)

    def get_sync_stats(self) -> SyncStats:
        statuses = [entry.status for entry in self._modules.values()]
        return SyncStats(
            synced=statuses.count(SyncState.SYNCED),
            total=len(statuses),
            errors=statuses.count(SyncState.ERROR),
        )

    async def check_sync_health(self) -> SyncStatus:
        """Check backend liveness, then every module concurrently.

        When the liveness check fails every module goes to ``error`` in a
        single pass and no per-module request is made.
        """
        health = await self.client.health_check()
        if not health.success:
            return self.apply_sync_health(HealthReport.unreachable(health.error))
        for module in Module:
            self._settle_module(module, SyncState.SYNCING)
        return self.apply_sync_health(await self._read_modules())

    async def read_sync_health(self) -> HealthReport:
        """Check liveness and read module statuses without recording them."""
        health = await self.client.health_check()
        if not health.success:
            return HealthReport.unreachable(health.error)
        return await self._read_modules()

    def apply_sync_health(self, report: HealthReport) -> SyncStatus:
        """Record a health report with a single status notification."""
        if not report.reachable:
            LOGGER.warning("Backend health check failed: %s", report.health_error)
        for module, state in report.modules.items():
            self._settle_module(module, state, notify=False)
        if report.reachable:
            self._last_sync = self._clock()
        self._notify_status()
        return self.get_sync_status()

    async def sync_all_assets(self) -> SyncResult:
        return await self._run_module_sync(
            Module.ASSETS, ASSETS_SYNC_KEY, self.client.sync_all_assets
        )

    async def sync_module(self, module: Module | str) -> SyncResult:
        module = Module.parse(module)
        if module is Module.ASSETS:
            return await self.sync_all_assets()
        return await self._run_module_sync(
            module, f"sync-{module.value}", lambda: self.client.sync_module(module)
        )

    async def sync_asset(self, asset_id: str) -> SyncResult:
        """Sync one asset; the module status table is left untouched."""
        key = f"sync-asset-{asset_id}"
        self._emit(SyncEvent(EventKind.STARTED, key, asset_id=asset_id))
        try:
            response = await self.client.sync_asset(asset_id)
        except Exception as exc:
            LOGGER.exception("Asset %s sync failed", asset_id)
            response = failure(str(exc))
        if response.success:
            result = SyncResult.ok(synced_count=1, total_count=1)
            entity_status = SyncState.SYNCED
        else:
            result = SyncResult.failed(response.error, total_count=1)
            entity_status = SyncState.ERROR
            LOGGER.warning("Asset %s sync failed: %s", asset_id, response.error)
        if self.store is not None:
            self.store.assets.mark_sync_status(asset_id, entity_status)
        self._emit(SyncEvent(EventKind.FINISHED, key, asset_id=asset_id, result=result))
        return result

    async def force_full_sync(self) -> FullSyncReport:
        """Run the configured module syncs in order and aggregate the results.

        Completed module syncs stay applied when a later one fails.
        """
        self._emit(SyncEvent(EventKind.STARTED, FULL_SYNC_KEY))
        results: dict[str, SyncResult] = {}
        try:
            for module in self.full_sync_modules:
                results[module.value] = await self.sync_module(module)
        except Exception as exc:
            LOGGER.exception("Full sync failed")
            results["error"] = SyncResult.failed(str(exc))

        report = FullSyncReport(results=results)
        if report.success:
            self._last_sync = self._clock()
            LOGGER.info("Full synchronization completed (%s)", ", ".join(results))
        else:
            LOGGER.warning(
                "Full synchronization had failures: %s",
                ", ".join(report.failed_modules()),
            )
        self._notify_status()
        self._emit(SyncEvent(EventKind.FINISHED, FULL_SYNC_KEY, report=report))
        return report

    async def _read_modules(self) -> HealthReport:
        modules = tuple(Module)
        states = await asyncio.gather(*(self._read_module(m) for m in modules))
        return HealthReport(modules=dict(zip(modules, states)))

    async def _read_module(self, module: Module) -> SyncState:
        try:
            response = await self.client.get_sync_status(module)
        except Exception:
            LOGGER.exception("%s sync check failed", module.display_name)
            return SyncState.ERROR
        if not response.success:
            LOGGER.warning(
                "%s sync check failed: %s", module.display_name, response.error
            )
            return SyncState.ERROR
        return SyncState.SYNCED if response.field("synced") else SyncState.NOT_SYNCED

    async def _run_module_sync(
        self,
        module: Module,
        key: str,
        call: Callable[[], Awaitable[ApiResponse]],
    ) -> SyncResult:
        self._transition(module, SyncState.SYNCING)
        self._emit(SyncEvent(EventKind.STARTED, key, module=module))
        try:
            response = await call()
        except Exception as exc:
            LOGGER.exception("%s sync failed", module.display_name)
            response = failure(str(exc))

        if response.success:
            self._settle_module(module, SyncState.SYNCED)
            result = SyncResult.ok(
                synced_count=_as_int(response.field("syncedCount")),
                total_count=_as_int(response.field("totalCount")),
            )
            result = await self._refresh_after_sync(module, result)
            LOGGER.info(
                "%s synced (%s/%s)",
                module.display_name,
                result.synced_count,
                result.total_count,
            )
        else:
            self._settle_module(module, SyncState.ERROR)
            result = SyncResult.failed(response.error)
            LOGGER.warning("%s sync failed: %s", module.display_name, response.error)

        self._emit(SyncEvent(EventKind.FINISHED, key, module=module, result=result))
        return result

    async def _refresh_after_sync(
        self, module: Module, result: SyncResult
    ) -> SyncResult:
        if self.reconciler is None:
            return result
        error = await self.reconciler.refresh(module)
        if error is None:
            return result
        return result.with_warning(
            f"Could not refresh {module.value} after sync: {error}"
        )

    def _transition(
        self, module: Module, target: SyncState, *, notify: bool = True
    ) -> None:
        current = self._modules[module]
        if not is_allowed_transition(current.status, target):
            raise InvalidTransitionError(
                f"{module.value}: {current.status.value} -> {target.value} is not allowed"
            )
        last_synced_at = current.last_synced_at
        if target is SyncState.SYNCED:
            last_synced_at = self._clock()
        self._modules[module] = ModuleStatus(
            name=module, status=target, last_synced_at=last_synced_at
        )
        if notify:
            self._notify_status()

    def _settle_module(
        self, module: Module, target: SyncState, *, notify: bool = True
    ) -> None:
        # Another operation may have moved the module since this one started.
        if not is_allowed_transition(self._modules[module].status, target):
            self._transition(module, SyncState.SYNCING, notify=notify)
        self._transition(module, target, notify=notify)

    def _notify_status(self) -> None:
        self._status_publisher.notify(self.get_sync_status())

    def _emit(self, event: SyncEvent) -> None:
        self._event_publisher.notify(event)
