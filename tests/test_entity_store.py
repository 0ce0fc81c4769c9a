from decimal import Decimal

import pytest

from engine.entity_store import EntityStore, apply_balance_op
from rsa_client.models import Wallet
from rsa_client.schemas import BalanceOp, Module, MutationState, SyncState


def _wallet(balance: dict[str, str] | None = None) -> dict:
    return {"id": "w1", "address": "0xabc", "balance": balance or {"RSA": "100"}}


def test_apply_balance_op_floors_reductions_at_zero():
    assert apply_balance_op(Decimal("100"), BalanceOp.ADD, Decimal("50")) == Decimal("150")
    assert apply_balance_op(Decimal("100"), BalanceOp.REDUCE, Decimal("30")) == Decimal("70")
    assert apply_balance_op(Decimal("10"), BalanceOp.REDUCE, Decimal("25")) == Decimal("0")
    assert apply_balance_op(Decimal("10"), BalanceOp.SET, Decimal("3")) == Decimal("3")


def test_apply_balance_op_rejects_negative_amounts():
    with pytest.raises(ValueError):
        apply_balance_op(Decimal("10"), BalanceOp.ADD, Decimal("-1"))


def test_set_replaces_collection_and_keeps_last_duplicate():
    store = EntityStore()
    changes = []
    store.subscribe(changes.append)

    store.wallets.set([_wallet({"RSA": "1"}), _wallet({"RSA": "2"})])

    assert len(store.wallets) == 1
    assert store.wallets.get_item("w1").balance["RSA"] == Decimal("2")
    assert [change.action for change in changes] == ["set"]
    assert changes[0].module is Module.WALLETS


def test_optimistic_balance_commit_keeps_new_value():
    store = EntityStore()
    store.wallets.set([_wallet()])

    mutation = store.wallets.apply_balance("w1", "RSA", BalanceOp.ADD, Decimal("50"))

    assert store.wallets.get_item("w1").balance["RSA"] == Decimal("150")
    assert mutation.is_pending

    store.wallets.commit(mutation)

    assert mutation.state is MutationState.COMMITTED
    assert store.wallets.get_item("w1").balance["RSA"] == Decimal("150")


def test_rollback_restores_previous_snapshot():
    store = EntityStore()
    store.wallets.set([_wallet()])
    mutation = store.wallets.apply_balance("w1", "RSA", BalanceOp.REDUCE, Decimal("30"))
    assert store.wallets.get_item("w1").balance["RSA"] == Decimal("70")

    store.wallets.rollback(mutation, "server said no")

    assert mutation.state is MutationState.ROLLED_BACK
    assert mutation.error == "server said no"
    assert store.wallets.get_item("w1").balance["RSA"] == Decimal("100")


def test_rollback_of_created_entity_removes_it():
    store = EntityStore()
    mutation = store.wallets.upsert_optimistic("w9", {"address": "0xnew"})
    assert "w9" in store.wallets

    store.wallets.rollback(mutation)

    assert "w9" not in store.wallets


def test_rollback_skips_superseded_write(caplog):
    store = EntityStore()
    store.wallets.set([_wallet()])
    mutation = store.wallets.apply_balance("w1", "RSA", BalanceOp.ADD, Decimal("5"))
    store.wallets.set([_wallet({"RSA": "500"})])

    store.wallets.rollback(mutation)

    assert store.wallets.get_item("w1").balance["RSA"] == Decimal("500")
    assert "superseded" in caplog.text


def test_mutation_cannot_be_finished_twice():
    store = EntityStore()
    store.wallets.set([_wallet()])
    mutation = store.wallets.apply_balance("w1", "RSA", BalanceOp.ADD, Decimal("5"))
    store.wallets.commit(mutation)

    with pytest.raises(RuntimeError):
        store.wallets.rollback(mutation)


def test_apply_balance_requires_existing_entity():
    store = EntityStore()

    with pytest.raises(KeyError):
        store.wallets.apply_balance("missing", "RSA", BalanceOp.ADD, Decimal("1"))


def test_upsert_optimistic_accepts_wire_aliases():
    store = EntityStore()
    store.wallets.set([_wallet()])

    store.wallets.upsert_optimistic("w1", {"userId": "u7", "status": "frozen"})

    wallet = store.wallets.get_item("w1")
    assert isinstance(wallet, Wallet)
    assert wallet.user_id == "u7"
    assert wallet.status == "frozen"


def test_mark_sync_status_and_trim():
    store = EntityStore()
    store.assets.set(
        [{"id": str(i), "symbol": f"A{i}", "price": "1"} for i in range(5)]
    )

    store.assets.mark_sync_status("2", SyncState.SYNCED)
    store.assets.trim(3)

    assert store.assets.keys() == ["2", "3", "4"]
    assert store.assets.get_item("2").sync_status is SyncState.SYNCED


def test_writes_after_close_are_ignored_and_optimistic_writes_raise():
    store = EntityStore()
    store.wallets.set([_wallet()])
    seen = []
    store.subscribe(seen.append)
    store.close()

    store.wallets.set([])
    assert len(store.wallets) == 1
    assert seen == []
    with pytest.raises(RuntimeError):
        store.wallets.apply_balance("w1", "RSA", BalanceOp.ADD, Decimal("1"))


def test_collection_lookup_by_module_name():
    store = EntityStore()

    assert store.collection("trading-pairs") is store.trading_pairs
    assert store.collection(Module.CONTRACTS) is store.contracts
    with pytest.raises(ValueError):
        store.collection("orders")
