"""Metric provider backed by psutil.

Each metric family is an independent coroutine. The blocking psutil calls run in
worker threads so one slow family does not hold up the event loop.
"""

import asyncio
import logging
import platform
import socket
import subprocess
import sys
import threading
import time
from typing import Protocol

import psutil

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
    SystemInfo,
    TemperatureReading,
)

logger = logging.getLogger(__name__)

# Sensor chips checked in order when picking the primary CPU temperature
_PRIMARY_SENSORS = ("coretemp", "k10temp", "cpu_thermal", "zenpower", "acpitz")
_DMI_DIR = "/sys/class/dmi/id"


class MetricProvider(Protocol):
    """Point-in-time host metrics, one coroutine per family."""

    async def cpu(self) -> CpuInfo: ...

    async def os_info(self) -> OsInfo: ...

    async def system(self) -> SystemInfo: ...

    async def disk_layout(self) -> tuple[DiskDevice, ...]: ...

    async def network_interfaces(self) -> tuple[NetworkInterface, ...]: ...

    async def graphics(self) -> tuple[GraphicsController, ...]: ...

    async def current_load(self) -> LoadReading: ...

    async def mem(self) -> MemoryReading: ...

    async def network_stats(self) -> tuple[InterfaceStats, ...]: ...

    async def fs_size(self) -> tuple[FilesystemReading, ...]: ...

    async def cpu_temperature(self) -> TemperatureReading: ...

    async def cpu_current_speed(self) -> float: ...

    async def battery(self) -> BatteryReading: ...

    async def processes(self) -> tuple[ProcessReading, ...]: ...

    def uptime(self) -> float: ...


def _read_text(path: str, default: str = "") -> str:
    try:
        with open(path, encoding="utf-8") as f:
            return f.read().strip()
    except OSError:
        return default


class PsutilProvider:
    """
    MetricProvider implementation using psutil and the platform module.

    Network rates are derived from the counters of the previous call, so the
    first network reading reports zero throughput. Likewise psutil reports 0.0
    CPU for a process the first time it is seen.
    """

    def __init__(self) -> None:
        """Initialize the provider and prime the CPU counters."""
        self._net_lock = threading.Lock()
        self._last_net: dict[str, tuple[int, int]] = {}
        self._last_net_time: float | None = None
        # First call returns 0.0; later non-blocking calls measure since the previous one
        psutil.cpu_percent(percpu=True)

    # --- static facts ---

    async def cpu(self) -> CpuInfo:
        return await asyncio.to_thread(self._cpu)

    async def os_info(self) -> OsInfo:
        return await asyncio.to_thread(self._os_info)

    async def system(self) -> SystemInfo:
        return await asyncio.to_thread(self._system)

    async def disk_layout(self) -> tuple[DiskDevice, ...]:
        return await asyncio.to_thread(self._disk_layout)

    async def network_interfaces(self) -> tuple[NetworkInterface, ...]:
        return await asyncio.to_thread(self._network_interfaces)

    async def graphics(self) -> tuple[GraphicsController, ...]:
        return await asyncio.to_thread(self._graphics)

    # --- dynamic facts ---

    async def current_load(self) -> LoadReading:
        return await asyncio.to_thread(self._current_load)

    async def mem(self) -> MemoryReading:
        return await asyncio.to_thread(self._mem)

    async def network_stats(self) -> tuple[InterfaceStats, ...]:
        return await asyncio.to_thread(self._network_stats)

    async def fs_size(self) -> tuple[FilesystemReading, ...]:
        return await asyncio.to_thread(self._fs_size)

    async def cpu_temperature(self) -> TemperatureReading:
        return await asyncio.to_thread(self._cpu_temperature)

    async def cpu_current_speed(self) -> float:
        return await asyncio.to_thread(self._cpu_current_speed)

    async def battery(self) -> BatteryReading:
        return await asyncio.to_thread(self._battery)

    async def processes(self) -> tuple[ProcessReading, ...]:
        return await asyncio.to_thread(self._processes)

    def uptime(self) -> float:
        """Seconds since boot."""
        return time.time() - psutil.boot_time()

    # --- collectors ---

    def _cpu(self) -> CpuInfo:
        manufacturer = ""
        brand = platform.processor()
        if sys.platform.startswith("linux"):
            for line in _read_text("/proc/cpuinfo").splitlines():
                key, _, value = line.partition(":")
                key = key.strip()
                if key == "vendor_id" and not manufacturer:
                    manufacturer = value.strip()
                elif key == "model name":
                    brand = value.strip()
                    break
        freq = psutil.cpu_freq()
        cores = psutil.cpu_count() or 0
        return CpuInfo(
            manufacturer=manufacturer,
            brand=brand or platform.machine(),
            cores=cores,
            physical_cores=psutil.cpu_count(logical=False) or cores,
            speed=round(freq.max / 1000, 2) if freq and freq.max else 0.0,
        )

    def _os_info(self) -> OsInfo:
        distro = platform.system()
        release = platform.release()
        if sys.platform.startswith("linux"):
            try:
                os_release = platform.freedesktop_os_release()
                distro = os_release.get("NAME", distro)
                release = os_release.get("VERSION_ID", release)
            except OSError:
                logger.debug("os-release not available, using platform defaults")
        return OsInfo(
            platform=sys.platform,
            distro=distro,
            release=release,
            kernel=platform.release(),
            arch=platform.machine(),
            hostname=socket.gethostname(),
        )

    def _system(self) -> SystemInfo:
        return SystemInfo(
            manufacturer=_read_text(f"{_DMI_DIR}/sys_vendor", "Unknown"),
            model=_read_text(f"{_DMI_DIR}/product_name", "Unknown"),
        )

    def _disk_layout(self) -> tuple[DiskDevice, ...]:
        return tuple(
            DiskDevice(device=p.device, mount=p.mountpoint, fs_type=p.fstype)
            for p in psutil.disk_partitions(all=False)
        )

    def _network_interfaces(self) -> tuple[NetworkInterface, ...]:
        addrs = psutil.net_if_addrs()
        stats = psutil.net_if_stats()
        interfaces = []
        for name, entries in addrs.items():
            ip4 = next((a.address for a in entries if a.family == socket.AF_INET), "")
            mac = next((a.address for a in entries if a.family == psutil.AF_LINK), "")
            stat = stats.get(name)
            interfaces.append(
                NetworkInterface(
                    iface=name,
                    ip4=ip4,
                    mac=mac,
                    speed=stat.speed if stat else 0,
                    is_up=bool(stat and stat.isup),
                )
            )
        return tuple(interfaces)

    def _graphics(self) -> tuple[GraphicsController, ...]:
        """Detect graphics controllers via lspci; empty when it is unavailable."""
        try:
            result = subprocess.run(
                ["lspci", "-mm"],
                capture_output=True,
                text=True,
                check=False,
                timeout=5,
            )
        except (FileNotFoundError, subprocess.TimeoutExpired) as e:
            logger.debug("Graphics detection unavailable: %s", e)
            return ()

        controllers = []
        for line in result.stdout.splitlines():
            # -mm output: slot "class" "vendor" "device" ...
            fields = line.split('"')[1::2]
            if len(fields) >= 3 and ("VGA" in fields[0] or "3D" in fields[0]):
                controllers.append(GraphicsController(vendor=fields[1], model=fields[2]))
        return tuple(controllers)

    def _current_load(self) -> LoadReading:
        per_core = psutil.cpu_percent(percpu=True)
        current = sum(per_core) / len(per_core) if per_core else 0.0
        return LoadReading(current_load=current, cpus=tuple(per_core))

    def _mem(self) -> MemoryReading:
        mem = psutil.virtual_memory()
        # 'active' is only reported on Linux, macOS and BSD
        active = getattr(mem, "active", mem.used)
        return MemoryReading(total=mem.total, available=mem.available, active=active)

    def _network_stats(self) -> tuple[InterfaceStats, ...]:
        counters = psutil.net_io_counters(pernic=True)
        if_stats = psutil.net_if_stats()
        now = time.monotonic()

        with self._net_lock:
            elapsed = now - self._last_net_time if self._last_net_time is not None else 0.0
            readings = []
            for name, c in counters.items():
                prev = self._last_net.get(name)
                if prev is not None and elapsed > 0:
                    rx_sec = max(c.bytes_recv - prev[0], 0) / elapsed
                    tx_sec = max(c.bytes_sent - prev[1], 0) / elapsed
                else:
                    rx_sec = tx_sec = 0.0
                stat = if_stats.get(name)
                operstate = "unknown" if stat is None else ("up" if stat.isup else "down")
                readings.append(InterfaceStats(name, rx_sec, tx_sec, operstate))
            self._last_net = {n: (c.bytes_recv, c.bytes_sent) for n, c in counters.items()}
            self._last_net_time = now

        return tuple(readings)

    def _fs_size(self) -> tuple[FilesystemReading, ...]:
        readings = []
        for part in psutil.disk_partitions(all=False):
            try:
                usage = psutil.disk_usage(part.mountpoint)
            except (PermissionError, OSError) as e:
                # Unreadable mounts (empty card readers, stale network shares) are skipped
                logger.debug("Skipping filesystem %s: %s", part.mountpoint, e)
                continue
            readings.append(
                FilesystemReading(
                    fs=part.device,
                    type=part.fstype,
                    mount=part.mountpoint,
                    size=usage.total,
                    used=usage.used,
                    use=usage.percent,
                )
            )
        return tuple(readings)

    def _cpu_temperature(self) -> TemperatureReading:
        sensors = getattr(psutil, "sensors_temperatures", None)
        if sensors is None:
            return TemperatureReading()
        chips = sensors()
        if not chips:
            return TemperatureReading()

        chip_name = next((c for c in _PRIMARY_SENSORS if c in chips), next(iter(chips)))
        entries = chips[chip_name]
        cores = tuple(e.current for e in entries if e.label.startswith("Core"))
        package = next(
            (e.current for e in entries if e.label.startswith(("Package", "Tctl", "Tdie"))),
            None,
        )
        main = package if package is not None else (entries[0].current if entries else None)
        currents = [e.current for e in entries]
        return TemperatureReading(
            main=main,
            cores=cores,
            max=max(currents) if currents else None,
        )

    def _cpu_current_speed(self) -> float:
        freq = psutil.cpu_freq()
        if freq is None:
            return 0.0
        return round(freq.current / 1000, 2)

    def _battery(self) -> BatteryReading:
        sensor = getattr(psutil, "sensors_battery", None)
        battery = sensor() if sensor is not None else None
        if battery is None:
            return BatteryReading()
        secs = battery.secsleft
        time_remaining = None
        if secs not in (psutil.POWER_TIME_UNLIMITED, psutil.POWER_TIME_UNKNOWN) and secs >= 0:
            time_remaining = int(secs // 60)
        return BatteryReading(
            has_battery=True,
            percent=float(battery.percent),
            is_charging=bool(battery.power_plugged),
            time_remaining=time_remaining,
        )

    def _processes(self) -> tuple[ProcessReading, ...]:
        """
        Read the process table.

        Processes that exit mid-read, deny access or are zombies are skipped.
        """
        processes: list[ProcessReading] = []
        attrs = ["pid", "name", "username", "cpu_percent", "memory_percent"]

        for proc in psutil.process_iter(attrs=attrs):
            try:
                with proc.oneshot():
                    info = proc.info
                    processes.append(
                        ProcessReading(
                            pid=info.get("pid", 0),
                            name=info.get("name") or "",
                            cpu=info.get("cpu_percent") or 0.0,
                            mem=info.get("memory_percent") or 0.0,
                            user=info.get("username") or "",
                        )
                    )
            except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
                continue

        return tuple(processes)
