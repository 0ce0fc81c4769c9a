"""
Build the API client and the sync runtime from a config mapping.

The CLI and scripts go through this module so that endpoint, timeout, retry
and token settings are read in one place.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable

from engine.entity_store import EntityStore
from engine.notifications import NotificationCenter, ToastKind
from engine.polling import PollerGroup
from engine.reconciliation import Reconciler
from engine.sync_coordinator import SyncCoordinator
from engine.trading_store import TradingStore
from rsa_client.async_rest import AsyncRestClient
from rsa_client.constants import (
    DEFAULT_TIMEOUT_SEC,
    default_admin_api_url,
    default_dex_url,
)
from rsa_client.schemas import Module
from utils.credentials import DEFAULT_SERVICE_NAME, TokenStore

LOGGER = logging.getLogger("rsa_dex_sync.factory")

SESSION_EXPIRED_KEY = "auth"
SESSION_EXPIRED_MESSAGE = "Session expired - please log in again"


def build_token_store(config: dict[str, Any]) -> TokenStore:
    return TokenStore(config.get("token_service", DEFAULT_SERVICE_NAME), config)


def build_api_client(
    config: dict[str, Any],
    *,
    token_store: TokenStore | None = None,
    on_unauthorized: Callable[[], None] | None = None,
) -> AsyncRestClient:
    """
    Build the REST client from config.

    Args:
        config: Configuration dict containing:
            - base_url: str (default: $RSA_DEX_URL or http://localhost:8001)
            - admin_api_url: str (default: $RSA_ADMIN_API_URL or base_url default)
            - rest_timeout_sec: float (default: 10.0)
            - rest_retries: int (default: 0) - extra attempts on transient errors
            - rest_backoff_factor: float (default: 0.5)
            - token_service: str (default: "rsa-dex-admin") - keyring scope
            - api_token: str (optional) - literal token or ${ENV_VAR}
    """
    return AsyncRestClient(
        base_url=config.get("base_url", default_dex_url()),
        admin_api_url=config.get("admin_api_url", default_admin_api_url()),
        token_store=token_store or build_token_store(config),
        timeout=float(config.get("rest_timeout_sec", DEFAULT_TIMEOUT_SEC)),
        max_retries=int(config.get("rest_retries", 0)),
        backoff_factor=float(config.get("rest_backoff_factor", 0.5)),
        on_unauthorized=on_unauthorized,
    )


def build_coordinator(
    config: dict[str, Any],
    client: AsyncRestClient,
    store: EntityStore | None = None,
    *,
    reconciler: Reconciler | None = None,
) -> SyncCoordinator:
    modules = config.get("full_sync_modules") or [Module.ASSETS.value]
    return SyncCoordinator(
        client,
        store,
        reconciler=reconciler,
        full_sync_modules=[Module.parse(name) for name in modules],
    )


@dataclass
class SyncRuntime:
    """Everything one admin session needs, sharing a single client."""

    config: dict[str, Any]
    client: AsyncRestClient
    store: EntityStore
    reconciler: Reconciler
    coordinator: SyncCoordinator
    notifications: NotificationCenter
    trading: TradingStore
    pollers: PollerGroup = field(default_factory=PollerGroup)

    async def close(self) -> None:
        await self.pollers.stop_all()
        self.notifications.detach()
        self.trading.close()
        self.store.close()
        await self.client.close()


def build_runtime(config: dict[str, Any]) -> SyncRuntime:
    notifications = NotificationCenter()

    def session_expired() -> None:
        LOGGER.warning("Admin token rejected; log in again.")
        notifications.show(
            SESSION_EXPIRED_KEY, ToastKind.ERROR, SESSION_EXPIRED_MESSAGE
        )

    client = build_api_client(config, on_unauthorized=session_expired)
    store = EntityStore()
    reconciler = Reconciler(client, store)
    coordinator = build_coordinator(config, client, store, reconciler=reconciler)
    notifications.attach(coordinator=coordinator, reconciler=reconciler)
    runtime = SyncRuntime(
        config=config,
        client=client,
        store=store,
        reconciler=reconciler,
        coordinator=coordinator,
        notifications=notifications,
        trading=TradingStore(client),
        pollers=PollerGroup(config.get("poll_intervals")),
    )
    register_pollers(runtime)
    return runtime


def register_pollers(runtime: SyncRuntime) -> None:
    """Register the transactions, prices and dashboard pollers (not started)."""
    runtime.pollers.add(
        "transactions",
        lambda: runtime.client.list_entities(Module.TRANSACTIONS),
        lambda response: runtime.reconciler.apply_listing(
            Module.TRANSACTIONS, response
        ),
    )
    runtime.pollers.add(
        "prices", runtime.trading.fetch_prices, runtime.trading.apply_prices
    )
    runtime.pollers.add(
        "dashboard",
        runtime.coordinator.read_sync_health,
        runtime.coordinator.apply_sync_health,
    )
