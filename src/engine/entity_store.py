"""Observable in-memory collections of exchange entities.

Each synchronizable module owns one keyed collection. Fetches replace a
collection wholesale; user actions go through optimistic mutations that are
later committed or compensated.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Callable, Generic, Iterable, Mapping, TypeVar

from engine.publisher import StatusPublisher
from rsa_client.models import Asset, Contract, Entity, TradingPair, Transaction, Wallet
from rsa_client.schemas import BalanceOp, Module, MutationState, SyncState

LOGGER = logging.getLogger("rsa_dex_sync.store")

EntityT = TypeVar("EntityT", bound=Entity)

MODEL_BY_MODULE: dict[Module, type[Entity]] = {
    Module.ASSETS: Asset,
    Module.TRADING_PAIRS: TradingPair,
    Module.WALLETS: Wallet,
    Module.CONTRACTS: Contract,
    Module.TRANSACTIONS: Transaction,
}


def apply_balance_op(old: Decimal, op: BalanceOp, amount: Decimal) -> Decimal:
    """Compute a new balance; reductions floor at zero instead of failing."""
    amount = Decimal(str(amount))
    if amount < 0:
        raise ValueError(f"Amount must be non-negative, got: {amount}")
    old = Decimal(str(old))
    if op is BalanceOp.ADD:
        return old + amount
    if op is BalanceOp.REDUCE:
        return max(Decimal("0"), old - amount)
    return amount


@dataclass(frozen=True)
class StoreChange:
    module: Module
    action: str
    keys: tuple[str, ...] = ()


@dataclass
class PendingMutation:
    """An optimistic write and the snapshot needed to compensate it."""

    module: Module
    key: str
    previous: Entity | None
    applied: Entity
    mutation_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    state: MutationState = MutationState.PENDING
    error: str | None = None

    @property
    def is_pending(self) -> bool:
        return self.state is MutationState.PENDING

    def _finish(self, state: MutationState) -> None:
        if not self.is_pending:
            raise RuntimeError(
                f"Mutation {self.mutation_id} is already {self.state.value}."
            )
        self.state = state


class EntityCollection(Generic[EntityT]):
    def __init__(
        self,
        module: Module,
        model: type[EntityT],
        publisher: StatusPublisher[StoreChange],
        is_alive: Callable[[], bool] = lambda: True,
    ) -> None:
        self.module = module
        self.model = model
        self._publisher = publisher
        self._is_alive = is_alive
        self._items: dict[str, EntityT] = {}

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, key: object) -> bool:
        return key in self._items

    def get(self) -> tuple[EntityT, ...]:
        return tuple(self._items.values())

    def get_item(self, key: str) -> EntityT | None:
        return self._items.get(str(key))

    def keys(self) -> list[str]:
        return list(self._items)

    def set(self, items: Iterable[EntityT | Mapping[str, Any]]) -> None:
        """Replace the whole collection; duplicate keys keep the last item."""
        parsed = [self._coerce(item) for item in items]
        if not self._writable("set"):
            return
        self._items = {item.key: item for item in parsed}
        self._emit("set", tuple(self._items))

    def upsert(self, item: EntityT | Mapping[str, Any]) -> EntityT:
        entity = self._coerce(item)
        if self._writable("upsert"):
            self._items[entity.key] = entity
            self._emit("upsert", (entity.key,))
        return entity

    def remove(self, key: str) -> EntityT | None:
        if not self._writable("remove"):
            return None
        removed = self._items.pop(str(key), None)
        if removed is not None:
            self._emit("remove", (removed.key,))
        return removed

    def trim(self, max_items: int) -> None:
        """Drop the oldest entries beyond ``max_items``."""
        excess = len(self._items) - max_items
        if excess <= 0 or not self._writable("trim"):
            return
        dropped = list(self._items)[:excess]
        for key in dropped:
            del self._items[key]
        self._emit("trim", tuple(dropped))

    def mark_sync_status(self, key: str, status: SyncState) -> None:
        current = self._items.get(str(key))
        if current is None or not self._writable("sync_status"):
            return
        self._items[current.key] = current.patched({"sync_status": status})
        self._emit("sync_status", (current.key,))

    def upsert_optimistic(
        self, key: str, patch: Mapping[str, Any]
    ) -> PendingMutation:
        """Merge ``patch`` immediately, ahead of server confirmation."""
        self._require_alive()
        key = str(key)
        previous = self._items.get(key)
        if previous is None:
            applied = self.model.model_validate({self.model.key_field: key, **patch})
        else:
            applied = previous.patched(dict(patch))
        return self._apply_optimistic(key, previous, applied)

    def apply_balance(
        self,
        key: str,
        asset: str,
        op: BalanceOp,
        amount: Decimal,
        field_name: str = "balance",
    ) -> PendingMutation:
        self._require_alive()
        key = str(key)
        previous = self._items.get(key)
        if previous is None:
            raise KeyError(f"{self.module.value} entry '{key}' not found")
        balances = dict(getattr(previous, field_name))
        balances[asset] = apply_balance_op(
            balances.get(asset, Decimal("0")), op, amount
        )
        applied = previous.patched({field_name: balances})
        return self._apply_optimistic(key, previous, applied)

    def commit(self, mutation: PendingMutation) -> None:
        mutation._finish(MutationState.COMMITTED)
        if self._writable("commit"):
            self._emit("commit", (mutation.key,))

    def rollback(self, mutation: PendingMutation, error: str | None = None) -> None:
        """Apply the compensating action for a failed optimistic write."""
        mutation._finish(MutationState.ROLLED_BACK)
        mutation.error = error
        if not self._writable("rollback"):
            return
        if self._items.get(mutation.key) is not mutation.applied:
            LOGGER.warning(
                "Skipping rollback of %s '%s': superseded by a later write.",
                self.module.value,
                mutation.key,
            )
            return
        if mutation.previous is None:
            del self._items[mutation.key]
        else:
            self._items[mutation.key] = mutation.previous
        self._emit("rollback", (mutation.key,))

    def _apply_optimistic(
        self, key: str, previous: Entity | None, applied: Entity
    ) -> PendingMutation:
        self._items[key] = applied  # type: ignore[assignment]
        mutation = PendingMutation(
            module=self.module, key=key, previous=previous, applied=applied
        )
        self._emit("optimistic", (key,))
        return mutation

    def _coerce(self, item: EntityT | Mapping[str, Any]) -> EntityT:
        if isinstance(item, self.model):
            return item
        return self.model.model_validate(item)

    def _writable(self, action: str) -> bool:
        if self._is_alive():
            return True
        LOGGER.debug("Ignoring %s on closed %s store", action, self.module.value)
        return False

    def _require_alive(self) -> None:
        if not self._is_alive():
            raise RuntimeError("Entity store is closed.")

    def _emit(self, action: str, keys: tuple[str, ...]) -> None:
        self._publisher.notify(StoreChange(module=self.module, action=action, keys=keys))


class EntityStore:
    """One collection per module plus a shared change publisher."""

    def __init__(self) -> None:
        self.publisher: StatusPublisher[StoreChange] = StatusPublisher("entity-store")
        self._alive = True
        self.collections: dict[Module, EntityCollection[Any]] = {
            module: EntityCollection(
                module, model, self.publisher, is_alive=lambda: self._alive
            )
            for module, model in MODEL_BY_MODULE.items()
        }
        self.last_errors: dict[Module, str | None] = {
            module: None for module in Module
        }

    @property
    def is_alive(self) -> bool:
        return self._alive

    def subscribe(self, listener: Callable[[StoreChange], None]) -> Callable[[], None]:
        return self.publisher.subscribe(listener)

    def collection(self, module: Module | str) -> EntityCollection[Any]:
        return self.collections[Module.parse(module)]

    @property
    def assets(self) -> EntityCollection[Asset]:
        return self.collections[Module.ASSETS]

    @property
    def trading_pairs(self) -> EntityCollection[TradingPair]:
        return self.collections[Module.TRADING_PAIRS]

    @property
    def wallets(self) -> EntityCollection[Wallet]:
        return self.collections[Module.WALLETS]

    @property
    def contracts(self) -> EntityCollection[Contract]:
        return self.collections[Module.CONTRACTS]

    @property
    def transactions(self) -> EntityCollection[Transaction]:
        return self.collections[Module.TRANSACTIONS]

    def record_error(self, module: Module, message: str | None) -> None:
        self.last_errors[module] = message

    def close(self) -> None:
        self._alive = False
        self.publisher.clear()
