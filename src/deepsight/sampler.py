"""Sampling engine for deepsight."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from deepsight.aggregator import TOP_PROCESS_COUNT, aggregate
from deepsight.errors import ProviderFailure
from deepsight.models import DynamicReport, RawMetrics, StaticSnapshot
from deepsight.provider import MetricProvider

logger = logging.getLogger(__name__)

MIN_INTERVAL = 0.1
DEFAULT_QUERY_TIMEOUT = 2.0
SKIP_WARNING_EVERY = 5  # consecutive skipped firings between warnings


async def _gather_families(
    calls: dict[str, Awaitable[Any]], timeout: float | None = None
) -> dict[str, Any]:
    """
    Run every query concurrently and wait for all of them, at most `timeout` seconds.

    Queries still running at the deadline are cancelled and count as failed.

    Raises:
        ProviderFailure: If any query raised or timed out. Names every failed family.
    """
    tasks = {name: asyncio.ensure_future(call) for name, call in calls.items()}
    try:
        _, pending = await asyncio.wait(tasks.values(), timeout=timeout)
    finally:
        for task in tasks.values():
            if not task.done():
                task.cancel()
    if pending:
        await asyncio.gather(*pending, return_exceptions=True)

    errors = {
        name: task.exception()
        for name, task in tasks.items()
        if task not in pending and task.exception() is not None
    }
    failed = [name for name, task in tasks.items() if task in pending or name in errors]
    if failed:
        cause = next(iter(errors.values()), None) or asyncio.TimeoutError(
            f"no answer within {timeout}s"
        )
        raise ProviderFailure(failed, cause=cause)
    return {name: task.result() for name, task in tasks.items()}


class StaticSnapshotCache:
    """
    Lazily fetched value with single-flight semantics.

    Concurrent first callers share one in-flight fetch. A successful result is
    kept for the life of the cache; a failure is not cached, so the next caller
    starts a new fetch.
    """

    def __init__(self, fetch: Callable[[], Awaitable[StaticSnapshot]]) -> None:
        self._fetch = fetch
        self._value: StaticSnapshot | None = None
        self._pending: asyncio.Task[StaticSnapshot] | None = None

    @property
    def cached(self) -> StaticSnapshot | None:
        """The cached snapshot, or None before the first successful fetch."""
        return self._value

    async def get(self) -> StaticSnapshot:
        if self._value is not None:
            return self._value
        if self._pending is None:
            self._pending = asyncio.ensure_future(self._load())
        # A cancelled caller must not cancel the fetch other callers wait on
        return await asyncio.shield(self._pending)

    async def _load(self) -> StaticSnapshot:
        try:
            self._value = await self._fetch()
            logger.info("Static host snapshot cached")
            return self._value
        finally:
            self._pending = None


class Sampler:
    """
    Collects raw metrics from a provider and turns them into reports.

    Owns the static snapshot cache so the host facts are fetched at most once.
    """

    def __init__(
        self,
        provider: MetricProvider,
        process_count: int = TOP_PROCESS_COUNT,
        query_timeout: float | None = DEFAULT_QUERY_TIMEOUT,
    ) -> None:
        """
        Initialize the Sampler.

        Args:
            provider: Source of the metric families.
            process_count: Number of top processes kept in a report.
            query_timeout: Seconds one round of queries may take before the
                stragglers are cancelled and the round fails. None waits forever.
        """
        self._provider = provider
        self._process_count = process_count
        self.query_timeout = query_timeout
        self._static = StaticSnapshotCache(self._fetch_static)

    @property
    def provider(self) -> MetricProvider:
        return self._provider

    async def static_snapshot(self) -> StaticSnapshot:
        """
        Return the host snapshot, fetching it on first use.

        Raises:
            ProviderFailure: If the first fetch fails.
        """
        return await self._static.get()

    async def _fetch_static(self) -> StaticSnapshot:
        p = self._provider
        facts = await _gather_families(
            {
                "cpu": p.cpu(),
                "os_info": p.os_info(),
                "system": p.system(),
                "disk_layout": p.disk_layout(),
                "network_interfaces": p.network_interfaces(),
                "graphics": p.graphics(),
            },
            self.query_timeout,
        )
        return StaticSnapshot(**facts)

    async def sample(self) -> RawMetrics:
        """
        Query every dynamic metric family concurrently.

        Raises:
            ProviderFailure: If any family failed. No partial result is returned.
        """
        p = self._provider
        facts = await _gather_families(
            {
                "current_load": p.current_load(),
                "mem": p.mem(),
                "network_stats": p.network_stats(),
                "fs_size": p.fs_size(),
                "cpu_temperature": p.cpu_temperature(),
                "cpu_current_speed": p.cpu_current_speed(),
                "battery": p.battery(),
                "processes": p.processes(),
            },
            self.query_timeout,
        )
        try:
            uptime = p.uptime()
        except Exception as e:
            raise ProviderFailure(["uptime"], cause=e) from e
        return RawMetrics(
            load=facts["current_load"],
            memory=facts["mem"],
            network=facts["network_stats"],
            filesystems=facts["fs_size"],
            temperature=facts["cpu_temperature"],
            cpu_speed=facts["cpu_current_speed"],
            battery=facts["battery"],
            processes=facts["processes"],
            uptime=uptime,
        )

    async def report(self) -> DynamicReport:
        """Sample and aggregate in one step."""
        raw = await self.sample()
        return aggregate(raw, self._process_count)


class Ticker:
    """
    Cancellable periodic task.

    The timer loop never waits for a tick to finish: each tick runs as its own
    task. If the previous tick is still running when the timer fires, that
    firing is skipped, so at most one tick is ever in flight.
    """

    def __init__(
        self,
        tick: Callable[[], Awaitable[Any]],
        interval: float = 2.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        name: str = "ticker",
    ) -> None:
        """
        Initialize the Ticker.

        Args:
            tick: Coroutine function run on every firing.
            interval: Seconds between firings. Default 2.0s.
            sleep: Awaitable sleep, replaceable in tests.
            name: Task name prefix, used in logs.
        """
        self._tick = tick
        self._interval = max(MIN_INTERVAL, interval)
        self._sleep = sleep
        self._name = name
        self._loop_task: asyncio.Task[None] | None = None
        self._inflight: asyncio.Task[None] | None = None
        self.fired = 0
        self.skipped = 0
        self._consecutive_skips = 0

    @property
    def interval(self) -> float:
        return self._interval

    @interval.setter
    def interval(self, value: float) -> None:
        self._interval = max(MIN_INTERVAL, value)

    @property
    def is_running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    @property
    def tick_in_flight(self) -> bool:
        return self._inflight is not None and not self._inflight.done()

    def start(self) -> None:
        """Start the timer loop. Must be called from a running event loop."""
        if self.is_running:
            return
        self._loop_task = asyncio.get_running_loop().create_task(
            self._run(), name=f"{self._name}-loop"
        )
        logger.info("%s started (interval %.2fs)", self._name, self._interval)

    async def stop(self) -> None:
        """Cancel the timer and any tick still in flight."""
        tasks = [t for t in (self._loop_task, self._inflight) if t is not None and not t.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._loop_task = None
        self._inflight = None
        logger.info("%s stopped", self._name)

    def fire(self) -> bool:
        """
        Launch one tick unless the previous one is still running.

        Returns:
            True if a tick was started, False if this firing was skipped.
        """
        if self.tick_in_flight:
            self.skipped += 1
            self._consecutive_skips += 1
            if self._consecutive_skips % SKIP_WARNING_EVERY == 0:
                logger.warning(
                    "%s: tick still running after %d skipped firings",
                    self._name,
                    self._consecutive_skips,
                )
            else:
                logger.debug("%s: previous tick still running, skipping", self._name)
            return False
        self._consecutive_skips = 0
        self.fired += 1
        self._inflight = asyncio.get_running_loop().create_task(
            self._run_tick(), name=f"{self._name}-tick-{self.fired}"
        )
        return True

    async def _run(self) -> None:
        while True:
            self.fire()
            await self._sleep(self._interval)

    async def _run_tick(self) -> None:
        try:
            await self._tick()
        except asyncio.CancelledError:
            raise
        except Exception:
            # Keep the cadence alive whatever a single tick does
            logger.exception("%s: tick failed", self._name)
