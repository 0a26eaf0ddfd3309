"""Verification Test: Leak Check - bounded state under long runs.

- Subscriber history never grows past its capacity
- Subscriber churn leaves no registry entries or writer tasks behind
- Repeated sampling keeps the process RSS roughly flat

Note: In CI environments, the sampling loop is shortened; the RSS threshold is
deliberately loose to tolerate allocator noise.
"""

import asyncio
import gc
import os

import psutil
import pytest

from conftest import FakeChannel, FakeProvider, make_raw, settle

from deepsight.aggregator import aggregate
from deepsight.client import SubscriberState
from deepsight.hub import BroadcastHub
from deepsight.provider import PsutilProvider
from deepsight.sampler import Sampler


def get_current_memory_mb() -> float:
    """Get current process memory usage in MB."""
    process = psutil.Process()
    return process.memory_info().rss / (1024 * 1024)


class TestBoundedState:
    """State that must stay bounded no matter how long the system runs."""

    def test_history_bounded(self):
        state = SubscriberState()
        report = aggregate(make_raw())

        for _ in range(10_000):
            state.on_update(report)

        assert len(state.history) == 60

    @pytest.mark.asyncio
    async def test_registry_empty_after_churn(self):
        hub = BroadcastHub(Sampler(FakeProvider()))

        for round_ in range(50):
            channels = [FakeChannel(f"{round_}-{i}") for i in range(20)]
            await asyncio.gather(*(hub.register(c) for c in channels))
            hub.publish(aggregate(make_raw()))
            await settle()
            await asyncio.gather(*(hub.unregister(c.id) for c in channels))

        assert hub.subscriber_count == 0
        assert hub.subscriber_ids() == []
        await hub.close()

    @pytest.mark.asyncio
    async def test_no_writer_tasks_left_behind(self):
        hub = BroadcastHub(Sampler(FakeProvider()))
        baseline = len(asyncio.all_tasks())

        for i in range(100):
            channel = FakeChannel(str(i), fail=i % 2 == 0)
            await hub.register(channel)
        await settle(20)
        await hub.close()
        await settle(20)

        assert len(asyncio.all_tasks()) == baseline


class TestMemoryStability:
    """RSS growth under repeated sampling."""

    @pytest.mark.asyncio
    async def test_sampling_memory_stability(self):
        is_ci = os.environ.get("CI", "false").lower() == "true"
        rounds = 20 if is_ci else 60
        sampler = Sampler(PsutilProvider())
        hub = BroadcastHub(sampler)
        channel = FakeChannel("a")
        await hub.register(channel)

        # Warm up caches and thread pool before measuring
        for _ in range(5):
            await hub.broadcast_once()
            await settle()
        gc.collect()
        baseline = get_current_memory_mb()

        max_delta = 0.0
        for _ in range(rounds):
            await hub.broadcast_once()
            await settle()
            channel.received.clear()
            max_delta = max(max_delta, get_current_memory_mb() - baseline)

        assert max_delta < 30.0, f"Sampling added {max_delta:.2f}MB to baseline, expected < 30MB"
        await hub.close()
