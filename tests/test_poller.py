#!/usr/bin/env python3
"""
Tests for periodic pollers and snapshot channels
"""

import asyncio
import concurrent.futures
import itertools
import threading

import pytest

from machineset_autoscaler.core.poller import (
    OverflowPolicy,
    PeriodicPoller,
    SnapshotChannel,
    run_until_stopped,
    sleep_or_stop,
)


@pytest.fixture
def executor():
    pool = concurrent.futures.ThreadPoolExecutor(max_workers=2)
    yield pool
    pool.shutdown(wait=False, cancel_futures=True)


class TestHelpers:

    def test_sleep_or_stop_times_out(self):
        async def scenario():
            return await sleep_or_stop(0.01, asyncio.Event())

        assert asyncio.run(scenario()) is False

    def test_sleep_or_stop_wakes_on_stop(self):
        async def scenario():
            stop = asyncio.Event()
            asyncio.get_running_loop().call_later(0.01, stop.set)
            return await asyncio.wait_for(sleep_or_stop(60, stop), timeout=5)

        assert asyncio.run(scenario()) is True

    def test_run_until_stopped_returns_result(self):
        async def work():
            return 42

        async def scenario():
            return await run_until_stopped(work(), asyncio.Event())

        assert asyncio.run(scenario()) == (True, 42)

    def test_run_until_stopped_abandons_on_stop(self):
        async def scenario():
            stop = asyncio.Event()
            stop.set()
            return await run_until_stopped(asyncio.sleep(60), stop)

        assert asyncio.run(scenario()) == (False, None)


class TestSnapshotChannel:

    def test_block_policy_preserves_order(self):
        async def scenario():
            channel = SnapshotChannel("test", maxsize=3)
            for item in (1, 2, 3):
                await channel.put(item)
            return [await channel.get() for _ in range(3)]

        assert asyncio.run(scenario()) == [1, 2, 3]

    def test_block_policy_waits_for_consumer(self):
        async def scenario():
            channel = SnapshotChannel("test", maxsize=1)
            await channel.put(1)
            with pytest.raises(asyncio.TimeoutError):
                await asyncio.wait_for(channel.put(2), timeout=0.05)
            return channel.qsize()

        assert asyncio.run(scenario()) == 1

    def test_drop_oldest_keeps_newest(self):
        async def scenario():
            channel = SnapshotChannel("test", maxsize=1, policy=OverflowPolicy.DROP_OLDEST)
            for item in (1, 2, 3):
                await channel.put(item)
            return await channel.get(), channel.dropped

        assert asyncio.run(scenario()) == (3, 2)

    def test_policy_from_string(self):
        async def scenario():
            return SnapshotChannel("test", policy="drop_oldest").policy

        assert asyncio.run(scenario()) == OverflowPolicy.DROP_OLDEST

    def test_rejects_zero_size(self):
        with pytest.raises(ValueError):
            SnapshotChannel("test", maxsize=0)


class TestPeriodicPoller:

    def test_tick_publishes_result(self, executor):
        async def scenario():
            channel = SnapshotChannel("nodes")
            poller = PeriodicPoller("nodes", lambda: ["snapshot"], 10, channel, executor)
            keep_going = await poller.tick(asyncio.Event())
            return keep_going, await channel.get(), poller.published

        assert asyncio.run(scenario()) == (True, ["snapshot"], 1)

    def test_failed_fetch_withholds_publication(self, executor):
        def fetch():
            raise RuntimeError("metrics API down")

        async def scenario():
            channel = SnapshotChannel("nodes")
            poller = PeriodicPoller("nodes", fetch, 10, channel, executor)
            keep_going = await poller.tick(asyncio.Event())
            return keep_going, channel.qsize(), poller.failures

        assert asyncio.run(scenario()) == (True, 0, 1)

    def test_stop_abandons_in_flight_fetch(self, executor):
        release = threading.Event()

        async def scenario():
            stop = asyncio.Event()
            channel = SnapshotChannel("backlog")
            poller = PeriodicPoller("backlog", lambda: release.wait(5), 10, channel, executor)
            asyncio.get_running_loop().call_later(0.02, stop.set)
            keep_going = await asyncio.wait_for(poller.tick(stop), timeout=2)
            return keep_going, channel.qsize()

        try:
            assert asyncio.run(scenario()) == (False, 0)
        finally:
            release.set()

    def test_stop_while_channel_full(self, executor):
        async def scenario():
            stop = asyncio.Event()
            channel = SnapshotChannel("nodes", maxsize=1)
            await channel.put("unread")
            poller = PeriodicPoller("nodes", lambda: "new", 10, channel, executor)
            asyncio.get_running_loop().call_later(0.02, stop.set)
            keep_going = await asyncio.wait_for(poller.tick(stop), timeout=2)
            return keep_going, await channel.get()

        assert asyncio.run(scenario()) == (False, "unread")

    def test_run_publishes_in_fetch_order(self, executor):
        counter = itertools.count(1)

        async def scenario():
            stop = asyncio.Event()
            channel = SnapshotChannel("nodes")
            poller = PeriodicPoller("nodes", lambda: next(counter), 0.01, channel, executor)
            task = asyncio.create_task(poller.run(stop))
            received = [await asyncio.wait_for(channel.get(), timeout=2) for _ in range(3)]
            stop.set()
            await asyncio.wait_for(task, timeout=2)
            return received

        assert asyncio.run(scenario()) == [1, 2, 3]

    def test_run_keeps_polling_after_failures(self, executor):
        calls = itertools.count(1)

        def flaky():
            n = next(calls)
            if n % 2:
                raise RuntimeError("transient")
            return n

        async def scenario():
            stop = asyncio.Event()
            channel = SnapshotChannel("backlog")
            poller = PeriodicPoller("backlog", flaky, 0.01, channel, executor)
            task = asyncio.create_task(poller.run(stop))
            received = [await asyncio.wait_for(channel.get(), timeout=2) for _ in range(2)]
            stop.set()
            await asyncio.wait_for(task, timeout=2)
            return received

        assert asyncio.run(scenario()) == [2, 4]

    def test_run_stops_promptly(self, executor):
        async def scenario():
            stop = asyncio.Event()
            poller = PeriodicPoller("nodes", lambda: [], 60, SnapshotChannel("nodes"), executor)
            task = asyncio.create_task(poller.run(stop))
            await asyncio.sleep(0.01)
            stop.set()
            await asyncio.wait_for(task, timeout=1)
            return poller.ticks

        assert asyncio.run(scenario()) == 0

    def test_rejects_non_positive_interval(self, executor):
        with pytest.raises(ValueError):
            PeriodicPoller("nodes", lambda: [], 0, SnapshotChannel("nodes"), executor)
