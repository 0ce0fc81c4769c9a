"""Tests for module sync state tracking and sync orchestration."""

from __future__ import annotations

from datetime import datetime, timezone

import aiohttp
import pytest

from engine.entity_store import EntityStore
from engine.sync_coordinator import (
    EventKind,
    HealthReport,
    InvalidTransitionError,
    SyncCoordinator,
)
from fakes import FakeResponse, fail, ok
from rsa_client.envelope import decode_envelope
from rsa_client.schemas import Module, SyncState

FIXED_NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

STATUS_PATHS = {
    module: f"/api/admin/sync-status/{module.slug}" for module in Module
}


def _coordinator(client, store=None, **kwargs) -> SyncCoordinator:
    return SyncCoordinator(client, store, clock=lambda: FIXED_NOW, **kwargs)


def test_initial_status_is_not_synced_for_every_module(client):
    coordinator = _coordinator(client)

    status = coordinator.get_sync_status()

    assert {module: status[module] for module in Module} == {
        module: SyncState.NOT_SYNCED for module in Module
    }
    assert status.last_sync is None
    stats = coordinator.get_sync_stats()
    assert (stats.synced, stats.total, stats.errors) == (0, 5, 0)


@pytest.mark.asyncio
async def test_sync_all_assets_success_end_to_end(client, session):
    session.add(
        "POST",
        "/api/admin/assets/sync-all",
        ok({"syncedCount": 5, "totalCount": 5}),
    )
    coordinator = _coordinator(client)

    result = await coordinator.sync_all_assets()

    assert result.model_dump() == {
        "success": True,
        "errors": [],
        "warnings": [],
        "synced_count": 5,
        "total_count": 5,
    }
    status = coordinator.get_sync_status()
    assert status["assets"] is SyncState.SYNCED
    assert status.modules[Module.ASSETS].last_synced_at == FIXED_NOW


@pytest.mark.asyncio
async def test_sync_all_assets_failure_sets_error(client, session):
    session.add("POST", "/api/admin/assets/sync-all", fail("DEX offline"))
    coordinator = _coordinator(client)

    result = await coordinator.sync_all_assets()

    assert not result.success
    assert result.errors == ["DEX offline"]
    assert coordinator.get_sync_status()[Module.ASSETS] is SyncState.ERROR


@pytest.mark.asyncio
async def test_sync_asset_failure_leaves_module_status_alone(client, session):
    session.add("POST", "/api/admin/assets/X/sync", fail("not found"))
    coordinator = _coordinator(client)
    notifications = []
    coordinator.subscribe(notifications.append)

    result = await coordinator.sync_asset("X")

    assert result.model_dump() == {
        "success": False,
        "errors": ["not found"],
        "warnings": [],
        "synced_count": 0,
        "total_count": 1,
    }
    assert coordinator.get_sync_status()[Module.ASSETS] is SyncState.NOT_SYNCED
    assert notifications == []


@pytest.mark.asyncio
async def test_sync_asset_marks_entity_sync_status(client, session):
    session.add("POST", "/api/admin/assets/1/sync", ok())
    store = EntityStore()
    store.assets.set([{"id": "1", "symbol": "RSA", "price": "0.85"}])
    coordinator = _coordinator(client, store)

    result = await coordinator.sync_asset("1")

    assert result.success
    assert store.assets.get_item("1").sync_status is SyncState.SYNCED


@pytest.mark.asyncio
async def test_health_check_failure_marks_all_modules_error_without_module_calls(
    client, session
):
    session.add("GET", "/health", aiohttp.ClientConnectionError("refused"))
    coordinator = _coordinator(client)
    notifications = []
    coordinator.subscribe(notifications.append)

    status = await coordinator.check_sync_health()

    assert all(status[module] is SyncState.ERROR for module in Module)
    assert len(notifications) == 1
    assert all(session.calls("GET", path) == 0 for path in STATUS_PATHS.values())
    assert session.calls("GET", "/health") == 1


@pytest.mark.asyncio
async def test_health_check_module_outcomes_are_independent(client, session):
    session.add("GET", "/health", ok({"status": "ok"}))
    session.add("GET", STATUS_PATHS[Module.ASSETS], FakeResponse(500, {"error": "db"}))
    session.add("GET", STATUS_PATHS[Module.TRADING_PAIRS], ok({"synced": True}))
    session.add("GET", STATUS_PATHS[Module.WALLETS], ok({"synced": False}))
    session.add("GET", STATUS_PATHS[Module.CONTRACTS], ok({"synced": True}))
    session.add("GET", STATUS_PATHS[Module.TRANSACTIONS], fail("timeout"))
    coordinator = _coordinator(client)

    status = await coordinator.check_sync_health()

    assert {module: status[module] for module in Module} == {
        Module.ASSETS: SyncState.ERROR,
        Module.TRADING_PAIRS: SyncState.SYNCED,
        Module.WALLETS: SyncState.NOT_SYNCED,
        Module.CONTRACTS: SyncState.SYNCED,
        Module.TRANSACTIONS: SyncState.ERROR,
    }
    assert status.last_sync == FIXED_NOW
    stats = coordinator.get_sync_stats()
    assert (stats.synced, stats.errors) == (2, 2)


@pytest.mark.asyncio
async def test_undecodable_health_body_marks_all_modules_error(client, session):
    session.add("GET", "/health", FakeResponse(200, raw=b"\xff\xfe"))
    coordinator = _coordinator(client)

    status = await coordinator.check_sync_health()

    assert all(status[module] is SyncState.ERROR for module in Module)
    assert all(session.calls("GET", path) == 0 for path in STATUS_PATHS.values())


@pytest.mark.asyncio
async def test_read_sync_health_records_nothing_until_applied(client, session):
    session.add("GET", "/health", ok({"status": "ok"}))
    for path in STATUS_PATHS.values():
        session.add("GET", path, ok({"synced": True}))
    coordinator = _coordinator(client)
    notifications = []
    coordinator.subscribe(notifications.append)

    report = await coordinator.read_sync_health()

    assert report.reachable
    assert notifications == []
    assert coordinator.get_sync_status()[Module.ASSETS] is SyncState.NOT_SYNCED

    status = coordinator.apply_sync_health(report)

    assert all(status[module] is SyncState.SYNCED for module in Module)
    assert status.last_sync == FIXED_NOW
    assert len(notifications) == 1


def test_applying_health_recovers_modules_from_error(client):
    coordinator = _coordinator(client)
    coordinator.apply_sync_health(HealthReport.unreachable("refused"))

    status = coordinator.apply_sync_health(
        HealthReport(modules={module: SyncState.SYNCED for module in Module})
    )

    assert all(status[module] is SyncState.SYNCED for module in Module)
    assert status.last_sync == FIXED_NOW


@pytest.mark.asyncio
async def test_listeners_get_one_notification_per_transition_in_order(client, session):
    session.add("POST", "/api/admin/assets/sync-all", ok({"syncedCount": 1}))
    coordinator = _coordinator(client)
    calls: list[tuple[str, SyncState]] = []
    coordinator.subscribe(lambda status: calls.append(("first", status["assets"])))
    coordinator.subscribe(lambda status: calls.append(("second", status["assets"])))

    await coordinator.sync_all_assets()

    assert calls == [
        ("first", SyncState.SYNCING),
        ("second", SyncState.SYNCING),
        ("first", SyncState.SYNCED),
        ("second", SyncState.SYNCED),
    ]


@pytest.mark.asyncio
async def test_force_full_sync_reports_partial_failure_without_rollback(
    client, session
):
    session.add("POST", "/api/admin/assets/sync-all", ok({"syncedCount": 3}))
    session.add("POST", "/api/admin/sync-wallet", fail("wallet sync broken"))
    coordinator = _coordinator(
        client, full_sync_modules=(Module.ASSETS, Module.WALLETS)
    )

    report = await coordinator.force_full_sync()

    assert not report.success
    assert report["assets"].success
    assert report["wallets"].errors == ["wallet sync broken"]
    assert report.failed_modules() == ["wallets"]
    status = coordinator.get_sync_status()
    assert status[Module.ASSETS] is SyncState.SYNCED
    assert status[Module.WALLETS] is SyncState.ERROR
    assert status.last_sync is None


@pytest.mark.asyncio
async def test_force_full_sync_success_sets_last_sync(client, session):
    session.add("POST", "/api/admin/assets/sync-all", ok({"syncedCount": 4}))
    coordinator = _coordinator(client)
    events = []
    coordinator.subscribe_events(events.append)

    report = await coordinator.force_full_sync()

    assert report.success
    assert list(report.results) == ["assets"]
    assert coordinator.get_sync_status().last_sync == FIXED_NOW
    assert [(event.kind, event.key) for event in events] == [
        (EventKind.STARTED, "full-sync"),
        (EventKind.STARTED, "sync-assets"),
        (EventKind.FINISHED, "sync-assets"),
        (EventKind.FINISHED, "full-sync"),
    ]


@pytest.mark.asyncio
async def test_successful_module_sync_refreshes_store(client, session):
    session.add("POST", "/api/admin/sync-contracts", ok({"syncedCount": 1}))
    session.add(
        "GET",
        "/api/admin/contracts",
        ok({"data": [{"id": "c1", "name": "Token", "address": "0x1"}], "total": 1}),
    )
    store = EntityStore()
    coordinator = _coordinator(client, store)

    result = await coordinator.sync_module("contracts")

    assert result.success
    assert result.warnings == []
    assert store.contracts.keys() == ["c1"]


@pytest.mark.asyncio
async def test_refresh_failure_after_sync_becomes_warning(client, session):
    session.add("POST", "/api/admin/sync-trading", ok())
    session.add("GET", "/api/markets", FakeResponse(503, {"error": "busy"}))
    store = EntityStore()
    coordinator = _coordinator(client, store)

    result = await coordinator.sync_module(Module.TRADING_PAIRS)

    assert result.success
    assert len(result.warnings) == 1
    assert "busy" in result.warnings[0]
    assert coordinator.get_sync_status()[Module.TRADING_PAIRS] is SyncState.SYNCED


@pytest.mark.asyncio
async def test_unexpected_exception_is_converted_to_error(client, monkeypatch):
    async def explode():
        raise KeyError("bad payload")

    monkeypatch.setattr(client, "sync_all_assets", explode)
    coordinator = _coordinator(client)

    result = await coordinator.sync_all_assets()

    assert not result.success
    assert "bad payload" in result.errors[0]
    assert coordinator.get_sync_status()[Module.ASSETS] is SyncState.ERROR


@pytest.mark.asyncio
async def test_module_sync_finishing_after_health_error_records_result(
    client, monkeypatch
):
    coordinator = _coordinator(client)

    async def sync_during_outage():
        coordinator.apply_sync_health(HealthReport.unreachable("refused"))
        return decode_envelope({"success": True, "data": {"syncedCount": 1}}, 200)

    monkeypatch.setattr(client, "sync_all_assets", sync_during_outage)

    result = await coordinator.sync_all_assets()

    assert result.success
    assert coordinator.get_sync_status()[Module.ASSETS] is SyncState.SYNCED


def test_invalid_transition_is_rejected(client):
    coordinator = _coordinator(client)

    with pytest.raises(InvalidTransitionError):
        coordinator._transition(Module.ASSETS, SyncState.SYNCED)


def test_unknown_module_name_is_rejected(client):
    coordinator = _coordinator(client)

    with pytest.raises(ValueError):
        coordinator.get_sync_status()["orders"]
