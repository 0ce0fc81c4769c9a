import asyncio

import pytest

from engine.polling import DEFAULT_INTERVALS, Poller, PollerGroup


class GatedFetch:
    """Fetch whose calls block until released, in issue order."""

    def __init__(self) -> None:
        self.gates: list[asyncio.Event] = []
        self.calls = 0

    async def __call__(self) -> int:
        self.calls += 1
        number = self.calls
        gate = asyncio.Event()
        self.gates.append(gate)
        await gate.wait()
        return number


def test_interval_must_be_positive():
    async def fetch():
        return None

    with pytest.raises(ValueError):
        Poller("prices", 0, fetch)


@pytest.mark.asyncio
async def test_tick_is_skipped_while_fetch_in_flight():
    fetch = GatedFetch()
    applied: list[int] = []
    poller = Poller("transactions", 15, fetch, applied.append)

    first = asyncio.create_task(poller.tick())
    await asyncio.sleep(0)
    await asyncio.sleep(0)

    assert poller.in_flight
    assert await poller.tick() is False
    assert poller.skipped_ticks == 1
    assert fetch.calls == 1

    fetch.gates[0].set()
    assert await first is True
    assert applied == [1]


@pytest.mark.asyncio
async def test_refresh_supersedes_in_flight_fetch_and_drops_its_result():
    fetch = GatedFetch()
    applied: list[int] = []
    poller = Poller("prices", 30, fetch, applied.append)

    first = asyncio.create_task(poller.tick())
    await asyncio.sleep(0)
    await asyncio.sleep(0)
    second = asyncio.create_task(poller.refresh())
    await asyncio.sleep(0)
    await asyncio.sleep(0)

    fetch.gates[1].set()
    assert await second is True
    fetch.gates[0].set()
    assert await first is False

    assert applied == [2]
    assert poller.applied_sequence == 2
    assert poller.dropped_results == 1


@pytest.mark.asyncio
async def test_result_arriving_after_stop_is_dropped():
    fetch = GatedFetch()
    applied: list[int] = []
    poller = Poller("dashboard", 0.01, fetch, applied.append)

    poller.start()
    await asyncio.sleep(0)
    await asyncio.sleep(0)
    assert poller.running
    in_flight = poller._in_flight

    await poller.stop()
    fetch.gates[0].set()

    assert await in_flight is False
    assert applied == []
    assert not poller.running
    assert poller.dropped_results == 1


@pytest.mark.asyncio
async def test_fetch_errors_are_logged_and_not_applied(caplog):
    applied = []

    async def broken():
        raise RuntimeError("backend gone")

    poller = Poller("prices", 30, broken, applied.append)

    assert await poller.tick() is False
    assert applied == []
    assert "backend gone" in caplog.text


@pytest.mark.asyncio
async def test_apply_errors_are_logged_and_next_tick_still_applies(caplog):
    applied: list[int] = []
    results = iter([1, 2])

    async def fetch() -> int:
        return next(results)

    def apply(result: int) -> None:
        if result == 1:
            raise ValueError("bad listing")
        applied.append(result)

    poller = Poller("transactions", 15, fetch, apply)

    assert await poller.tick() is False
    assert "apply failed" in caplog.text
    assert "bad listing" in caplog.text
    assert poller.applied_sequence == 0

    assert await poller.tick() is True
    assert applied == [2]
    assert poller.applied_sequence == 2


@pytest.mark.asyncio
async def test_poller_group_uses_default_and_overridden_intervals():
    async def fetch():
        return None

    group = PollerGroup({"prices": 5})
    prices = group.add("prices", fetch)
    transactions = group.add("transactions", fetch)

    assert prices.interval == 5
    assert transactions.interval == DEFAULT_INTERVALS["transactions"]
    assert "prices" in group
    assert group["transactions"] is transactions

    with pytest.raises(ValueError):
        group.add("prices", fetch)
    with pytest.raises(ValueError):
        group.add("orders", fetch)

    group.start_all()
    assert prices.running and transactions.running
    await group.stop_all()
    assert not prices.running and not transactions.running
