import pytest

from engine.entity_store import EntityStore
from engine.notifications import NotificationCenter, ToastKind
from engine.reconciliation import Reconciler
from engine.sync_coordinator import SyncCoordinator
from fakes import fail, ok
from rsa_client.schemas import Module


@pytest.fixture
def center() -> NotificationCenter:
    return NotificationCenter()


@pytest.mark.asyncio
async def test_loading_toast_is_replaced_by_result(client, session, center):
    session.add("POST", "/api/admin/assets/sync-all", ok({"syncedCount": 2}))
    coordinator = SyncCoordinator(client)
    center.attach(coordinator)

    await coordinator.sync_all_assets()

    assert [(toast.kind, toast.message) for toast in center.history] == [
        (ToastKind.LOADING, "Syncing assets to RSA DEX..."),
        (ToastKind.SUCCESS, "Assets synced successfully!"),
    ]
    assert list(center.active) == ["sync-assets"]


@pytest.mark.asyncio
async def test_single_asset_failure_message(client, session, center):
    session.add("POST", "/api/admin/assets/X/sync", fail("not found"))
    coordinator = SyncCoordinator(client)
    center.attach(coordinator)

    await coordinator.sync_asset("X")

    toast = center.get("sync-asset-X")
    assert toast.kind is ToastKind.ERROR
    assert toast.message == "Asset sync failed: not found"


@pytest.mark.asyncio
async def test_module_sync_uses_display_name(client, session, center):
    session.add("POST", "/api/admin/sync-trading", fail("no markets"))
    coordinator = SyncCoordinator(client)
    center.attach(coordinator)

    await coordinator.sync_module(Module.TRADING_PAIRS)

    assert center.history[0].message == "Syncing trading pairs to RSA DEX..."
    toast = center.get("sync-tradingPairs")
    assert toast.message == "Trading pairs sync failed: no markets"


@pytest.mark.asyncio
async def test_full_sync_failure_summary(client, session, center):
    session.add("POST", "/api/admin/assets/sync-all", fail("boom"))
    coordinator = SyncCoordinator(client)
    center.attach(coordinator)

    await coordinator.force_full_sync()

    toast = center.get("full-sync")
    assert toast.kind is ToastKind.ERROR
    assert toast.message == "Some synchronization operations failed. Check the results."


@pytest.mark.asyncio
async def test_fallback_and_mutation_toasts(client, session, center):
    store = EntityStore()
    reconciler = Reconciler(client, store)
    center.attach(reconciler=reconciler)
    session.add("GET", "/api/admin/wallets", fail("offline"))

    await reconciler.load(Module.WALLETS)
    session.add("PUT", "/api/admin/wallets/1/status", fail("denied"))
    outcome = await reconciler.update_wallet_status("1", "frozen")

    assert center.get("load-wallets").kind is ToastKind.WARNING
    assert center.get("load-wallets").message == "Failed to load wallets - using mock data"
    toast = center.get(f"mutation-{outcome.mutation.mutation_id}")
    assert toast.message == "Failed to set wallet 1 frozen: denied"


@pytest.mark.asyncio
async def test_detach_stops_updates(client, session, center):
    session.add("POST", "/api/admin/assets/sync-all", ok())
    coordinator = SyncCoordinator(client)
    center.attach(coordinator)
    center.detach()

    await coordinator.sync_all_assets()

    assert center.history == []


def test_show_and_dismiss(center):
    center.show("auth", ToastKind.ERROR, "Session expired")

    assert center.get("auth").message == "Session expired"
    center.dismiss("auth")
    center.dismiss("auth")
    assert center.get("auth") is None
