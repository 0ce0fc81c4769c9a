"""Loading collections from the backend and confirming optimistic writes."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Awaitable, Callable, Mapping

from pydantic import ValidationError

from engine.entity_store import EntityCollection, EntityStore, PendingMutation
from engine.fixtures import fixture_for
from engine.publisher import StatusPublisher
from rsa_client.async_rest import AsyncRestClient
from rsa_client.envelope import ApiResponse, failure
from rsa_client.models import Entity
from rsa_client.schemas import BalanceOp, Module, TransactionAction

LOGGER = logging.getLogger("rsa_dex_sync.reconcile")

FALLBACK_WARNING = "Using mock data - backend may not be available"

FixtureLoader = Callable[[Module], list[Entity]]


@dataclass(frozen=True)
class LoadOutcome:
    module: Module
    items: tuple[Entity, ...]
    used_fallback: bool = False
    error: str | None = None
    warnings: tuple[str, ...] = ()


@dataclass(frozen=True)
class MutationOutcome:
    mutation: PendingMutation
    response: ApiResponse
    label: str

    @property
    def success(self) -> bool:
        return self.response.success

    @property
    def error(self) -> str | None:
        return self.response.error


ReconcileEvent = LoadOutcome | MutationOutcome


class Reconciler:
    """Keeps an :class:`EntityStore` consistent with the backend.

    Loads replace collections wholesale. A failed load falls back to the demo
    dataset and records a warning, so a failure never shows up as an empty
    collection. Mutations are applied optimistically, then committed or
    compensated once the server answers.
    """

    def __init__(
        self,
        client: AsyncRestClient,
        store: EntityStore,
        *,
        fixtures: FixtureLoader = fixture_for,
    ) -> None:
        self.client = client
        self.store = store
        self._fixtures = fixtures
        self.publisher: StatusPublisher[ReconcileEvent] = StatusPublisher("reconcile")

    def subscribe(self, listener: Callable[[ReconcileEvent], None]) -> Callable[[], None]:
        return self.publisher.subscribe(listener)

    async def load(self, module: Module | str) -> LoadOutcome:
        module = Module.parse(module)
        collection = self.store.collection(module)
        items, error = self._parse(
            module, collection, await self.client.list_entities(module)
        )
        if error is None:
            collection.set(items)
            self.store.record_error(module, None)
            outcome = LoadOutcome(module=module, items=tuple(items))
        else:
            LOGGER.warning("Failed to load %s (%s); using mock data", module.value, error)
            items = self._fixtures(module)
            collection.set(items)
            self.store.record_error(module, FALLBACK_WARNING)
            outcome = LoadOutcome(
                module=module,
                items=tuple(items),
                used_fallback=True,
                error=error,
                warnings=(FALLBACK_WARNING,),
            )
        self.publisher.notify(outcome)
        return outcome

    async def load_all(self) -> dict[Module, LoadOutcome]:
        outcomes = await asyncio.gather(*(self.load(module) for module in Module))
        return {outcome.module: outcome for outcome in outcomes}

    async def refresh(self, module: Module | str) -> str | None:
        """Re-fetch a collection without falling back; returns the error if any.

        On failure the last-known contents are kept.
        """
        module = Module.parse(module)
        return self.apply_listing(module, await self.client.list_entities(module))

    def apply_listing(self, module: Module | str, response: ApiResponse) -> str | None:
        """Replace a collection from an already fetched list response."""
        module = Module.parse(module)
        collection = self.store.collection(module)
        items, error = self._parse(module, collection, response)
        if error is not None:
            LOGGER.warning("Refresh of %s failed: %s", module.value, error)
            self.store.record_error(module, error)
            return error
        collection.set(items)
        self.store.record_error(module, None)
        return None

    async def mutate(
        self,
        module: Module | str,
        key: str,
        patch: Mapping[str, Any],
        call: Callable[[], Awaitable[ApiResponse]],
        *,
        rollback_on_failure: bool = True,
        label: str | None = None,
    ) -> MutationOutcome:
        collection = self.store.collection(module)
        if key not in collection:
            raise KeyError(f"{collection.module.value} entry '{key}' not found")
        mutation = collection.upsert_optimistic(key, patch)
        return await self._settle(
            collection,
            mutation,
            call,
            rollback_on_failure,
            label or f"update {collection.module.value} {key}",
        )

    async def apply_balance_change(
        self,
        module: Module | str,
        key: str,
        asset: str,
        op: BalanceOp,
        amount: Decimal,
        call: Callable[[], Awaitable[ApiResponse]],
        *,
        rollback_on_failure: bool = True,
        label: str | None = None,
    ) -> MutationOutcome:
        collection = self.store.collection(module)
        mutation = collection.apply_balance(key, asset, op, amount)
        return await self._settle(
            collection,
            mutation,
            call,
            rollback_on_failure,
            label or f"{op.value} {amount} {asset}",
        )

    async def fund_wallet(
        self,
        wallet_id: str,
        asset: str,
        amount: Decimal,
        *,
        rollback_on_failure: bool = True,
    ) -> MutationOutcome:
        return await self.apply_balance_change(
            Module.WALLETS,
            wallet_id,
            asset,
            BalanceOp.ADD,
            amount,
            lambda: self.client.fund_wallet(wallet_id, amount, asset),
            label=f"fund wallet {wallet_id} with {amount} {asset}",
            rollback_on_failure=rollback_on_failure,
        )

    async def update_wallet_status(
        self, wallet_id: str, status: str, *, rollback_on_failure: bool = True
    ) -> MutationOutcome:
        return await self.mutate(
            Module.WALLETS,
            wallet_id,
            {"status": status},
            lambda: self.client.update_wallet_status(wallet_id, status),
            label=f"set wallet {wallet_id} {status}",
            rollback_on_failure=rollback_on_failure,
        )

    async def adjust_contract_balance(
        self,
        contract_id: str,
        op: BalanceOp,
        amount: Decimal,
        asset: str,
        *,
        rollback_on_failure: bool = True,
    ) -> MutationOutcome:
        if op is BalanceOp.SET:
            raise ValueError("Contract balances can only be added to or reduced.")
        return await self.apply_balance_change(
            Module.CONTRACTS,
            contract_id,
            asset,
            op,
            amount,
            lambda: self.client.adjust_contract_balance(contract_id, op, amount, asset),
            label=f"{op.value} {amount} {asset} on contract {contract_id}",
            rollback_on_failure=rollback_on_failure,
        )

    async def transfer_from_contract(
        self,
        contract_id: str,
        to_address: str,
        amount: Decimal,
        asset: str,
        *,
        rollback_on_failure: bool = True,
    ) -> MutationOutcome:
        return await self.apply_balance_change(
            Module.CONTRACTS,
            contract_id,
            asset,
            BalanceOp.REDUCE,
            amount,
            lambda: self.client.transfer_from_contract(
                contract_id, to_address, amount, asset
            ),
            label=f"transfer {amount} {asset} to {to_address}",
            rollback_on_failure=rollback_on_failure,
        )

    async def transaction_action(
        self,
        transaction_id: str,
        action: TransactionAction | str,
        reason: str | None = None,
        *,
        rollback_on_failure: bool = True,
    ) -> MutationOutcome:
        action = TransactionAction(action)
        return await self.mutate(
            Module.TRANSACTIONS,
            transaction_id,
            {"status": action.resulting_status},
            lambda: self.client.transaction_action(transaction_id, action, reason),
            label=f"{action.value} transaction {transaction_id}",
            rollback_on_failure=rollback_on_failure,
        )

    def _parse(
        self,
        module: Module,
        collection: EntityCollection[Any],
        response: ApiResponse,
    ) -> tuple[list[Entity], str | None]:
        if not response.success:
            return [], response.error
        if not response.is_list:
            return [], f"Unexpected {module.value} payload"
        try:
            items = [collection.model.model_validate(item) for item in response.items]
        except ValidationError as exc:
            return [], f"Invalid {module.value} payload ({exc.error_count()} errors)"
        return items, None

    async def _settle(
        self,
        collection: EntityCollection[Any],
        mutation: PendingMutation,
        call: Callable[[], Awaitable[ApiResponse]],
        rollback_on_failure: bool,
        label: str,
    ) -> MutationOutcome:
        try:
            response = await call()
        except Exception as exc:
            LOGGER.exception("Request to %s failed", label)
            response = failure(str(exc))

        if response.success:
            collection.commit(mutation)
            LOGGER.info("Confirmed: %s", label)
        elif rollback_on_failure:
            collection.rollback(mutation, response.error)
            LOGGER.warning("Rolled back %s: %s", label, response.error)
        else:
            # Left pending: the optimistic value stays visible but unconfirmed.
            mutation.error = response.error
            LOGGER.warning("Keeping unconfirmed %s: %s", label, response.error)

        outcome = MutationOutcome(mutation=mutation, response=response, label=label)
        self.publisher.notify(outcome)
        return outcome
