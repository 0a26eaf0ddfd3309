"""Shared fakes and builders for deepsight tests."""

import asyncio
from collections import Counter
from typing import Any

import pytest
import socketio

from deepsight.models import (
    BatteryReading,
    CpuInfo,
    DiskDevice,
    FilesystemReading,
    GraphicsController,
    InterfaceStats,
    LoadReading,
    MemoryReading,
    NetworkInterface,
    OsInfo,
    ProcessReading,
    RawMetrics,
    StaticSnapshot,
    SystemInfo,
    TemperatureReading,
)

GB = 1024**3


def make_static() -> StaticSnapshot:
    return StaticSnapshot(
        cpu=CpuInfo(manufacturer="GenuineIntel", brand="Core i7", cores=8, physical_cores=4, speed=4.2),
        os_info=OsInfo(
            platform="linux",
            distro="Ubuntu",
            release="22.04",
            kernel="6.5.0",
            arch="x86_64",
            hostname="testhost",
        ),
        system=SystemInfo(manufacturer="Acme", model="Workstation 1"),
        disk_layout=(DiskDevice(device="/dev/sda1", mount="/", fs_type="ext4"),),
        network_interfaces=(
            NetworkInterface(iface="eth0", ip4="10.0.0.2", mac="aa:bb:cc:dd:ee:ff", speed=1000, is_up=True),
        ),
        graphics=(GraphicsController(vendor="Intel", model="UHD 630"),),
    )


def make_raw(
    load: float = 10.0,
    mem: float = 30.0,
    storage: float = 40.0,
    temp: float | None = 40.0,
    battery: BatteryReading | None = None,
    processes: tuple[ProcessReading, ...] | None = None,
    filesystems: tuple[FilesystemReading, ...] | None = None,
) -> RawMetrics:
    """Raw readings hitting the given load, memory %, storage % and temperature."""
    total_mem = 16 * GB
    if filesystems is None:
        size = 100 * GB
        used = int(size * storage / 100)
        filesystems = (
            FilesystemReading(fs="/dev/sda1", type="ext4", mount="/", size=size, used=used, use=storage),
        )
    if processes is None:
        processes = (
            ProcessReading(pid=1, name="init", cpu=0.1, mem=0.2, user="root"),
            ProcessReading(pid=42, name="python", cpu=12.34, mem=3.21, user="dev"),
        )
    return RawMetrics(
        load=LoadReading(current_load=load, cpus=(load, load)),
        memory=MemoryReading(
            total=total_mem,
            available=int(total_mem * (100 - mem) / 100),
            active=int(total_mem * mem / 100),
        ),
        network=(
            InterfaceStats(iface="eth0", rx_sec=1000.0, tx_sec=500.0, operstate="up"),
            InterfaceStats(iface="wlan0", rx_sec=200.0, tx_sec=100.0, operstate="down"),
        ),
        filesystems=filesystems,
        temperature=TemperatureReading(main=temp, cores=(), max=temp),
        cpu_speed=3.4,
        battery=battery or BatteryReading(),
        processes=processes,
        uptime=3600.0,
    )


class FakeProvider:
    """MetricProvider returning canned readings.

    Families named in `fail` raise. `static_delay` slows the static queries so
    concurrent callers overlap. Setting `gate` makes current_load wait on it.
    """

    def __init__(self, raw: RawMetrics | None = None, static: StaticSnapshot | None = None) -> None:
        self.raw = raw or make_raw()
        self.static = static or make_static()
        self.fail: set[str] = set()
        self.calls: Counter[str] = Counter()
        self.static_delay = 0.0
        self.gate: asyncio.Event | None = None

    async def _answer(self, family: str, value: Any) -> Any:
        self.calls[family] += 1
        await asyncio.sleep(0)
        if family in self.fail:
            raise RuntimeError(f"{family} unavailable")
        return value

    async def _static(self, family: str, value: Any) -> Any:
        if self.static_delay:
            await asyncio.sleep(self.static_delay)
        return await self._answer(family, value)

    async def cpu(self):
        return await self._static("cpu", self.static.cpu)

    async def os_info(self):
        return await self._static("os_info", self.static.os_info)

    async def system(self):
        return await self._static("system", self.static.system)

    async def disk_layout(self):
        return await self._static("disk_layout", self.static.disk_layout)

    async def network_interfaces(self):
        return await self._static("network_interfaces", self.static.network_interfaces)

    async def graphics(self):
        return await self._static("graphics", self.static.graphics)

    async def current_load(self):
        if self.gate is not None:
            await self.gate.wait()
        return await self._answer("current_load", self.raw.load)

    async def mem(self):
        return await self._answer("mem", self.raw.memory)

    async def network_stats(self):
        return await self._answer("network_stats", self.raw.network)

    async def fs_size(self):
        return await self._answer("fs_size", self.raw.filesystems)

    async def cpu_temperature(self):
        return await self._answer("cpu_temperature", self.raw.temperature)

    async def cpu_current_speed(self):
        return await self._answer("cpu_current_speed", self.raw.cpu_speed)

    async def battery(self):
        return await self._answer("battery", self.raw.battery)

    async def processes(self):
        return await self._answer("processes", self.raw.processes)

    def uptime(self) -> float:
        return self.raw.uptime


class FakeChannel:
    """In-memory subscriber channel recording what it receives."""

    def __init__(self, channel_id: str, fail: bool = False) -> None:
        self._id = channel_id
        self.fail = fail
        self.received: list[tuple[str, dict[str, Any]]] = []
        self.closed = False
        self.gate: asyncio.Event | None = None

    @property
    def id(self) -> str:
        return self._id

    async def send(self, event: str, payload: dict[str, Any]) -> None:
        if self.gate is not None:
            await self.gate.wait()
        if self.fail:
            raise ConnectionResetError("peer went away")
        self.received.append((event, payload))

    async def close(self) -> None:
        self.closed = True

    @property
    def events(self) -> list[str]:
        return [event for event, _ in self.received]


async def settle(rounds: int = 10) -> None:
    """Let queued tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


class FakeSio:
    """Stand-in for socketio.AsyncClient driven by the test."""

    def __init__(
        self,
        failures: int = 0,
        error: str = "Connection refused by the server",
        hang: bool = False,
        server_reason: Any = None,
    ):
        self.handlers: dict[str, Any] = {}
        self.connected = False
        self.failures = failures
        self.error = error
        self.hang = hang
        self.server_reason = server_reason
        self.connect_calls = 0
        self._closed = asyncio.Event()

    def on(self, event, handler):
        self.handlers[event] = handler

    async def connect(self, url, transports=None, wait_timeout=None):
        self.connect_calls += 1
        if self.hang:
            await asyncio.Event().wait()
        if self.connect_calls <= self.failures:
            if self.server_reason is not None:
                await self.handlers["connect_error"](self.server_reason)
            raise socketio.exceptions.ConnectionError(self.error)
        self.connected = True
        self._closed = asyncio.Event()
        await self.handlers["connect"]()

    async def wait(self):
        await self._closed.wait()

    async def disconnect(self):
        if self.connected:
            self.connected = False
            self._closed.set()
            await self.handlers["disconnect"]()

    async def server_emit(self, event, data):
        await self.handlers[event](data)


class RecordingSleep:
    """Sleep replacement recording the requested delays."""

    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, delay):
        self.delays.append(delay)
        await asyncio.sleep(0)
