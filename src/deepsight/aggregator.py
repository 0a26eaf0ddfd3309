"""Derivation of the dynamic report from raw readings.

Everything here is pure: no I/O, and the same raw input always yields the same
report.
"""

from deepsight.models import (
    BatteryReading,
    DynamicReport,
    FilesystemReading,
    FilesystemUsage,
    Health,
    InterfaceSpeed,
    InterfaceStats,
    MemoryReading,
    NetworkSpeed,
    Performance,
    Power,
    ProcessReading,
    RawMetrics,
    Storage,
    TemperatureReading,
    TopProcess,
)

TOP_PROCESS_COUNT = 5
EXCLUDED_FS_MARKERS = ("loop", "snap")

SMOOTH_MESSAGE = "System is running smoothly."
CPU_LIMIT = 80.0
MEMORY_LIMIT = 90.0
STORAGE_LIMIT = 90.0
TEMPERATURE_LIMIT = 80.0
BATTERY_LIMIT = 20.0

# (penalty, suggestion) in evaluation order
CPU_RULE = (20, "High CPU usage detected. Close unnecessary background processes.")
MEMORY_RULE = (20, "Memory is running low. Consider closing tabs or applications.")
STORAGE_RULE = (10, "Disk space is critical. Delete temporary files or add storage.")
TEMPERATURE_RULE = (30, "CPU is running hot. Check cooling system.")
BATTERY_RULE = (5, "Battery is low. Connect charger.")


def percent(part: float, whole: float) -> float:
    """Return part/whole as a percentage, or 0.0 when whole is zero."""
    if whole == 0:
        return 0.0
    return part / whole * 100


def is_real_filesystem(entry: FilesystemReading) -> bool:
    """Whether a filesystem counts toward storage totals."""
    return entry.size > 0 and not any(marker in entry.fs for marker in EXCLUDED_FS_MARKERS)


def build_performance(raw: RawMetrics) -> Performance:
    return Performance(
        cpu_load=raw.load.current_load,
        cpu_cores=raw.load.cpus,
        memory_used_percent=memory_used_percent(raw.memory),
        memory_total=raw.memory.total,
        memory_available=raw.memory.available,
        uptime=raw.uptime,
    )


def memory_used_percent(memory: MemoryReading) -> float:
    return percent(memory.active, memory.total)


def build_storage(filesystems: tuple[FilesystemReading, ...]) -> Storage:
    """Aggregate real filesystems; loop/snap devices and empty mounts are left out."""
    included = [fs for fs in filesystems if is_real_filesystem(fs)]
    total = sum(fs.size for fs in included)
    used = sum(fs.used for fs in included)
    return Storage(
        total=total,
        used=used,
        free=total - used,
        percent_used=percent(used, total),
        details=tuple(
            FilesystemUsage(
                fs=fs.fs,
                type=fs.type,
                mount=fs.mount,
                size=fs.size,
                used=fs.used,
                use=round(fs.use, 1),
            )
            for fs in included
        ),
    )


def build_network_speed(interfaces: tuple[InterfaceStats, ...], cpu_speed: float) -> NetworkSpeed:
    """Sum throughput over every interface, whatever its operational state."""
    return NetworkSpeed(
        rx_sec=sum(i.rx_sec for i in interfaces),
        tx_sec=sum(i.tx_sec for i in interfaces),
        cpu_speed=cpu_speed,
        interfaces=tuple(
            InterfaceSpeed(iface=i.iface, rx_sec=i.rx_sec, tx_sec=i.tx_sec, operstate=i.operstate)
            for i in interfaces
        ),
    )


def build_power(battery: BatteryReading) -> Power:
    return Power(
        has_battery=battery.has_battery,
        percent=battery.percent,
        is_charging=battery.is_charging,
        time_remaining=battery.time_remaining,
    )


def health_status(score: int) -> str:
    """Label for a score. Negative scores are 'Critical'."""
    if score > 80:
        return "Good"
    if score > 50:
        return "Fair"
    return "Critical"


def build_health(
    performance: Performance,
    storage: Storage,
    temperature: TemperatureReading,
    power: Power,
) -> Health:
    """
    Score the host starting from 100.

    Every rule is checked independently and each triggered rule subtracts its
    penalty and contributes one suggestion. The score is not clamped.
    """
    triggered = []
    if performance.cpu_load > CPU_LIMIT:
        triggered.append(CPU_RULE)
    if performance.memory_used_percent > MEMORY_LIMIT:
        triggered.append(MEMORY_RULE)
    if storage.percent_used > STORAGE_LIMIT:
        triggered.append(STORAGE_RULE)
    if temperature.main is not None and temperature.main > TEMPERATURE_LIMIT:
        triggered.append(TEMPERATURE_RULE)
    if power.has_battery and not power.is_charging and power.percent < BATTERY_LIMIT:
        triggered.append(BATTERY_RULE)

    score = 100 - sum(penalty for penalty, _ in triggered)
    suggestions = tuple(message for _, message in triggered) or (SMOOTH_MESSAGE,)
    return Health(
        score=score,
        status=health_status(score),
        suggestions=suggestions,
        temperature=temperature.main,
        core_temperatures=temperature.cores,
        max_temperature=temperature.max,
    )


def top_processes(
    processes: tuple[ProcessReading, ...], count: int = TOP_PROCESS_COUNT
) -> tuple[TopProcess, ...]:
    """Busiest processes by CPU share, shares rounded to one decimal."""
    ranked = sorted(processes, key=lambda p: p.cpu, reverse=True)[:count]
    return tuple(
        TopProcess(pid=p.pid, name=p.name, cpu=round(p.cpu, 1), mem=round(p.mem, 1), user=p.user)
        for p in ranked
    )


def aggregate(raw: RawMetrics, process_count: int = TOP_PROCESS_COUNT) -> DynamicReport:
    """Turn one tick's raw readings into a report."""
    performance = build_performance(raw)
    storage = build_storage(raw.filesystems)
    power = build_power(raw.battery)
    return DynamicReport(
        performance=performance,
        storage=storage,
        network_speed=build_network_speed(raw.network, raw.cpu_speed),
        power=power,
        health=build_health(performance, storage, raw.temperature, power),
        processes=top_processes(raw.processes, process_count),
    )
