"""Enumerations shared by the sync client, stores and coordinator."""

from __future__ import annotations

from enum import Enum


class Module(str, Enum):
    """The fixed set of synchronizable domains."""

    ASSETS = "assets"
    TRADING_PAIRS = "tradingPairs"
    WALLETS = "wallets"
    CONTRACTS = "contracts"
    TRANSACTIONS = "transactions"

    @property
    def slug(self) -> str:
        """Path segment used by ``/api/admin/sync-status/<slug>``."""
        return _STATUS_SLUGS[self]

    @property
    def sync_path(self) -> str:
        return _SYNC_PATHS[self]

    @property
    def list_path(self) -> str | None:
        return _LIST_PATHS.get(self)

    @property
    def display_name(self) -> str:
        return "Trading pairs" if self is Module.TRADING_PAIRS else self.value.title()

    @classmethod
    def parse(cls, value: str | Module) -> Module:
        if isinstance(value, Module):
            return value
        cleaned = value.strip()
        for module in cls:
            if cleaned in (module.value, module.slug, module.name.lower()):
                return module
        available = ", ".join(module.value for module in cls)
        raise ValueError(f"Unknown module '{value}'. Available modules: {available}.")


_STATUS_SLUGS = {
    Module.ASSETS: "assets",
    Module.TRADING_PAIRS: "trading-pairs",
    Module.WALLETS: "wallets",
    Module.CONTRACTS: "contracts",
    Module.TRANSACTIONS: "transactions",
}

_SYNC_PATHS = {
    Module.ASSETS: "/api/admin/assets/sync-all",
    Module.TRADING_PAIRS: "/api/admin/sync-trading",
    Module.WALLETS: "/api/admin/sync-wallet",
    Module.CONTRACTS: "/api/admin/sync-contracts",
    Module.TRANSACTIONS: "/api/admin/sync-transactions",
}

_LIST_PATHS = {
    Module.ASSETS: "/api/admin/assets",
    Module.TRADING_PAIRS: "/api/markets",
    Module.WALLETS: "/api/admin/wallets",
    Module.CONTRACTS: "/api/admin/contracts",
    Module.TRANSACTIONS: "/api/admin/transactions",
}


class SyncState(str, Enum):
    NOT_SYNCED = "not_synced"
    SYNCING = "syncing"
    SYNCED = "synced"
    ERROR = "error"


# Same-state writes are always allowed and are not listed here.
ALLOWED_TRANSITIONS: dict[SyncState, frozenset[SyncState]] = {
    SyncState.NOT_SYNCED: frozenset({SyncState.SYNCING, SyncState.ERROR}),
    SyncState.SYNCING: frozenset(
        {SyncState.SYNCED, SyncState.ERROR, SyncState.NOT_SYNCED}
    ),
    SyncState.SYNCED: frozenset({SyncState.SYNCING, SyncState.ERROR}),
    SyncState.ERROR: frozenset({SyncState.SYNCING}),
}


def is_allowed_transition(current: SyncState, target: SyncState) -> bool:
    return current == target or target in ALLOWED_TRANSITIONS[current]


class BalanceOp(str, Enum):
    ADD = "add"
    REDUCE = "reduce"
    SET = "set"


class MutationState(str, Enum):
    PENDING = "pending"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"


class TransactionAction(str, Enum):
    """Admin actions on a transaction and the status each one produces."""

    APPROVE = "approve"
    REJECT = "reject"
    FREEZE = "freeze"
    RECALL = "recall"

    @property
    def resulting_status(self) -> str:
        return {
            TransactionAction.APPROVE: "completed",
            TransactionAction.REJECT: "rejected",
            TransactionAction.FREEZE: "frozen",
            TransactionAction.RECALL: "debt",
        }[self]
