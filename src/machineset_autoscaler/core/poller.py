#!/usr/bin/env python3
"""
Periodic pollers and the bounded channels they publish on
"""

import asyncio
import concurrent.futures
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Generic, Optional, Tuple, TypeVar

from prometheus_client import Counter

logger = logging.getLogger(__name__)

T = TypeVar("T")

POLL_SUCCESSES = Counter('autoscaler_poll_success_total', 'Successful polls', ['source'])
POLL_FAILURES = Counter('autoscaler_poll_failures_total', 'Failed polls, publication withheld', ['source'])
CHANNEL_DROPS = Counter('autoscaler_channel_drops_total', 'Snapshots dropped because the consumer fell behind', ['source'])


async def sleep_or_stop(delay: float, stop: Optional[asyncio.Event]) -> bool:
    """Sleep for delay seconds; return True early if stop gets set"""
    if stop is None:
        await asyncio.sleep(delay)
        return False
    if stop.is_set():
        return True
    try:
        await asyncio.wait_for(stop.wait(), timeout=delay)
        return True
    except asyncio.TimeoutError:
        return False


async def run_until_stopped(awaitable: Awaitable[Any], stop: asyncio.Event) -> Tuple[bool, Any]:
    """
    Await awaitable unless stop is set first.

    Returns (True, result) when it completed, (False, None) when stop won.
    Exceptions raised by awaitable propagate.
    """
    task = asyncio.ensure_future(awaitable)
    stopper = asyncio.ensure_future(stop.wait())
    try:
        done, _ = await asyncio.wait({task, stopper}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        task.cancel()
        raise
    finally:
        stopper.cancel()

    if task in done:
        return True, task.result()
    task.cancel()
    return False, None


class OverflowPolicy(str, Enum):
    BLOCK = "block"              # producer waits for the merge loop
    DROP_OLDEST = "drop_oldest"  # newest snapshot replaces the unread one


class SnapshotChannel(Generic[T]):
    """Bounded single-producer channel between one poller and the merge loop"""

    def __init__(self, name: str, maxsize: int = 1, policy: OverflowPolicy = OverflowPolicy.BLOCK):
        if maxsize < 1:
            raise ValueError("channel size must be at least 1")
        self.name = name
        self.policy = OverflowPolicy(policy)
        self.dropped = 0
        self._queue: "asyncio.Queue[T]" = asyncio.Queue(maxsize=maxsize)

    async def put(self, item: T) -> None:
        if self.policy == OverflowPolicy.BLOCK:
            await self._queue.put(item)
            return

        while self._queue.full():
            self._queue.get_nowait()
            self.dropped += 1
            CHANNEL_DROPS.labels(source=self.name).inc()
            logger.warning(f"Merge loop behind on '{self.name}', dropped oldest snapshot")
        self._queue.put_nowait(item)

    async def get(self) -> T:
        return await self._queue.get()

    def qsize(self) -> int:
        return self._queue.qsize()


class PeriodicPoller(Generic[T]):
    """Runs a blocking fetch on a fixed interval and publishes its results"""

    def __init__(
        self,
        name: str,
        fetch: Callable[[], T],
        interval: float,
        channel: SnapshotChannel[T],
        executor: Optional[concurrent.futures.Executor] = None,
    ):
        """
        Args:
            name: Source name used in logs and metrics
            fetch: Blocking call producing one snapshot; runs in the executor
            interval: Seconds between ticks
            channel: Where successful results are published
            executor: Thread pool for fetch, default loop executor if None
        """
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.name = name
        self.fetch = fetch
        self.interval = interval
        self.channel = channel
        self.executor = executor
        self.ticks = 0
        self.failures = 0
        self.published = 0

    async def run(self, stop: asyncio.Event) -> None:
        """Poll until stop is set"""
        loop = asyncio.get_running_loop()
        logger.info(f"Starting {self.name} poller with {self.interval}s interval")
        next_tick = loop.time() + self.interval

        while True:
            if await sleep_or_stop(max(0.0, next_tick - loop.time()), stop):
                break

            next_tick += self.interval
            now = loop.time()
            if next_tick <= now:
                # The fetch overran; skip missed ticks instead of bursting
                next_tick += ((now - next_tick) // self.interval + 1) * self.interval

            if not await self.tick(stop):
                break

        logger.info(f"{self.name} poller stopped after {self.ticks} ticks")

    async def tick(self, stop: asyncio.Event) -> bool:
        """
        Fetch once and publish on success. Returns False if stop was set
        while the fetch or the publication was pending.
        """
        loop = asyncio.get_running_loop()
        self.ticks += 1

        try:
            completed, result = await run_until_stopped(loop.run_in_executor(self.executor, self.fetch), stop)
        except Exception as e:
            self.failures += 1
            POLL_FAILURES.labels(source=self.name).inc()
            logger.error(f"Error fetching {self.name}: {e}")
            return True

        if not completed:
            logger.info(f"Abandoning in-flight {self.name} fetch on shutdown")
            return False

        POLL_SUCCESSES.labels(source=self.name).inc()
        published, _ = await run_until_stopped(self.channel.put(result), stop)
        if published:
            self.published += 1
        return published
