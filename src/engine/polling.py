"""Interval polling with single-flight fetches and stale-result dropping."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Generic, Mapping, TypeVar

T = TypeVar("T")

LOGGER = logging.getLogger("rsa_dex_sync.polling")

DEFAULT_INTERVALS: dict[str, float] = {
    "transactions": 15.0,
    "prices": 30.0,
    "dashboard": 30.0,
}


class Poller(Generic[T]):
    """Periodically run ``fetch`` and hand its result to ``apply``.

    Every issued fetch takes the next sequence number and only the result of
    the most recently issued fetch is applied. A tick that fires while a fetch
    is still in flight is skipped. ``stop()`` ends the loop but leaves an
    in-flight fetch running; its result is dropped when it arrives.
    """

    def __init__(
        self,
        name: str,
        interval: float,
        fetch: Callable[[], Awaitable[T]],
        apply: Callable[[T], None] | None = None,
    ) -> None:
        if interval <= 0:
            raise ValueError(f"Poll interval must be positive, got: {interval}")
        self.name = name
        self.interval = interval
        self._fetch = fetch
        self._apply = apply
        self.sequence = 0
        self.applied_sequence = 0
        self.skipped_ticks = 0
        self.dropped_results = 0
        self._stopped = True
        self._generation = 0
        self._in_flight: asyncio.Task[bool] | None = None
        self._loop_task: asyncio.Task[None] | None = None
        self._tasks: set[asyncio.Task[bool]] = set()

    @property
    def running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    @property
    def in_flight(self) -> bool:
        return self._in_flight is not None and not self._in_flight.done()

    async def tick(self) -> bool:
        """Issue a fetch unless one is in flight; True if its result applied."""
        if self.in_flight:
            self.skipped_ticks += 1
            LOGGER.debug("Poller %s skipped a tick (fetch in flight)", self.name)
            return False
        return await self._spawn()

    async def refresh(self) -> bool:
        """Issue a fetch now, superseding any in-flight one."""
        return await self._spawn()

    def start(self) -> None:
        if self.running:
            return
        self._stopped = False
        self._loop_task = asyncio.create_task(self._run(), name=f"poller-{self.name}")
        LOGGER.info("Poller %s started (every %ss)", self.name, self.interval)

    async def stop(self) -> None:
        self._stopped = True
        self._generation += 1
        task, self._loop_task = self._loop_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        LOGGER.info("Poller %s stopped", self.name)

    async def _run(self) -> None:
        while not self._stopped:
            if self.in_flight:
                self.skipped_ticks += 1
            else:
                self._spawn()
            await asyncio.sleep(self.interval)

    def _spawn(self) -> asyncio.Task[bool]:
        self.sequence += 1
        task = asyncio.create_task(
            self._fetch_and_apply(self.sequence, self._generation)
        )
        self._in_flight = task
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _fetch_and_apply(self, sequence: int, generation: int) -> bool:
        try:
            result = await self._fetch()
        except Exception:
            LOGGER.exception("Poller %s fetch failed", self.name)
            return False
        # A stop() since this fetch was issued also makes it stale.
        if sequence != self.sequence or generation != self._generation:
            self.dropped_results += 1
            LOGGER.debug("Poller %s dropped stale result #%s", self.name, sequence)
            return False
        if self._apply is not None:
            try:
                self._apply(result)
            except Exception:
                LOGGER.exception("Poller %s apply failed", self.name)
                return False
        self.applied_sequence = sequence
        return True


class PollerGroup:
    """Named pollers started and stopped together."""

    def __init__(self, intervals: Mapping[str, float] | None = None) -> None:
        self.intervals = {**DEFAULT_INTERVALS, **dict(intervals or {})}
        self.pollers: dict[str, Poller[Any]] = {}

    def __getitem__(self, name: str) -> Poller[Any]:
        return self.pollers[name]

    def __contains__(self, name: object) -> bool:
        return name in self.pollers

    def add(
        self,
        name: str,
        fetch: Callable[[], Awaitable[T]],
        apply: Callable[[T], None] | None = None,
        interval: float | None = None,
    ) -> Poller[T]:
        if name in self.pollers:
            raise ValueError(f"Poller '{name}' is already registered.")
        if interval is None:
            interval = self.intervals.get(name)
        if interval is None:
            raise ValueError(f"No poll interval configured for '{name}'.")
        poller: Poller[T] = Poller(name, interval, fetch, apply)
        self.pollers[name] = poller
        return poller

    def start_all(self) -> None:
        for poller in self.pollers.values():
            poller.start()

    async def stop_all(self) -> None:
        await asyncio.gather(*(poller.stop() for poller in self.pollers.values()))
