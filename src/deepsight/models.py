"""Data models for deepsight.

Raw readings come from the metric provider; derived records are produced by the
aggregator and sent to subscribers. Every record is frozen and uses tuples for
sequences, so a value cannot change after construction.
"""

from dataclasses import asdict, dataclass, field
from typing import Any


# --- Static host facts ---


@dataclass(slots=True, frozen=True)
class CpuInfo:
    """CPU descriptor."""

    manufacturer: str
    brand: str
    cores: int
    physical_cores: int
    speed: float  # GHz


@dataclass(slots=True, frozen=True)
class OsInfo:
    """Operating system descriptor."""

    platform: str
    distro: str
    release: str
    kernel: str
    arch: str
    hostname: str


@dataclass(slots=True, frozen=True)
class SystemInfo:
    """Hardware vendor and model."""

    manufacturer: str
    model: str


@dataclass(slots=True, frozen=True)
class DiskDevice:
    """One mounted block device."""

    device: str
    mount: str
    fs_type: str


@dataclass(slots=True, frozen=True)
class NetworkInterface:
    """Static description of a network interface."""

    iface: str
    ip4: str
    mac: str
    speed: int  # Mbit/s, 0 when unknown
    is_up: bool


@dataclass(slots=True, frozen=True)
class GraphicsController:
    """Graphics adapter."""

    vendor: str
    model: str


@dataclass(slots=True, frozen=True)
class StaticSnapshot:
    """Host identity facts, fetched once per process."""

    cpu: CpuInfo
    os_info: OsInfo
    system: SystemInfo
    disk_layout: tuple[DiskDevice, ...] = ()
    network_interfaces: tuple[NetworkInterface, ...] = ()
    graphics: tuple[GraphicsController, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        """Serialize to plain JSON-compatible data."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "StaticSnapshot":
        """Rebuild a snapshot from its wire form."""
        return cls(
            cpu=CpuInfo(**data["cpu"]),
            os_info=OsInfo(**data["os_info"]),
            system=SystemInfo(**data["system"]),
            disk_layout=tuple(DiskDevice(**d) for d in data.get("disk_layout", ())),
            network_interfaces=tuple(
                NetworkInterface(**n) for n in data.get("network_interfaces", ())
            ),
            graphics=tuple(GraphicsController(**g) for g in data.get("graphics", ())),
        )


# --- Raw dynamic readings (provider output) ---


@dataclass(slots=True, frozen=True)
class LoadReading:
    """Current CPU load."""

    current_load: float  # 0.0 - 100.0
    cpus: tuple[float, ...] = ()


@dataclass(slots=True, frozen=True)
class MemoryReading:
    """Memory counters in bytes."""

    total: int
    available: int
    active: int


@dataclass(slots=True, frozen=True)
class InterfaceStats:
    """Per-interface throughput since the previous reading."""

    iface: str
    rx_sec: float  # bytes/s
    tx_sec: float
    operstate: str  # 'up', 'down' or 'unknown'


@dataclass(slots=True, frozen=True)
class FilesystemReading:
    """Size of one mounted filesystem."""

    fs: str  # raw device string, e.g. '/dev/sda1' or '/dev/loop3'
    type: str
    mount: str
    size: int
    used: int
    use: float  # percent


@dataclass(slots=True, frozen=True)
class TemperatureReading:
    """CPU temperatures in degrees Celsius; None when no sensor is available."""

    main: float | None = None
    cores: tuple[float, ...] = ()
    max: float | None = None


@dataclass(slots=True, frozen=True)
class BatteryReading:
    """Battery state."""

    has_battery: bool = False
    percent: float = 0.0
    is_charging: bool = False
    time_remaining: int | None = None  # minutes


@dataclass(slots=True, frozen=True)
class ProcessReading:
    """One entry of the process table."""

    pid: int
    name: str
    cpu: float
    mem: float
    user: str


@dataclass(slots=True, frozen=True)
class RawMetrics:
    """All dynamic facts gathered during one tick."""

    load: LoadReading
    memory: MemoryReading
    network: tuple[InterfaceStats, ...]
    filesystems: tuple[FilesystemReading, ...]
    temperature: TemperatureReading
    cpu_speed: float  # GHz
    battery: BatteryReading
    processes: tuple[ProcessReading, ...]
    uptime: float  # seconds


# --- Derived report ---


@dataclass(slots=True, frozen=True)
class Performance:
    cpu_load: float
    cpu_cores: tuple[float, ...]
    memory_used_percent: float
    memory_total: int
    memory_available: int
    uptime: float


@dataclass(slots=True, frozen=True)
class FilesystemUsage:
    fs: str
    type: str
    mount: str
    size: int
    used: int
    use: float


@dataclass(slots=True, frozen=True)
class Storage:
    total: int
    used: int
    free: int
    percent_used: float
    details: tuple[FilesystemUsage, ...] = ()


@dataclass(slots=True, frozen=True)
class InterfaceSpeed:
    iface: str
    rx_sec: float
    tx_sec: float
    operstate: str


@dataclass(slots=True, frozen=True)
class NetworkSpeed:
    rx_sec: float
    tx_sec: float
    cpu_speed: float
    interfaces: tuple[InterfaceSpeed, ...] = ()


@dataclass(slots=True, frozen=True)
class Power:
    has_battery: bool
    percent: float
    is_charging: bool
    time_remaining: int | None = None


@dataclass(slots=True, frozen=True)
class Health:
    """Composite health score.

    The score is not clamped; several penalties together can push it below zero.
    """

    score: int
    status: str
    suggestions: tuple[str, ...]
    temperature: float | None = None
    core_temperatures: tuple[float, ...] = ()
    max_temperature: float | None = None


@dataclass(slots=True, frozen=True)
class TopProcess:
    pid: int
    name: str
    cpu: float
    mem: float
    user: str


@dataclass(slots=True, frozen=True)
class DynamicReport:
    """Derived report produced once per sampling tick."""

    performance: Performance
    storage: Storage
    network_speed: NetworkSpeed
    power: Power
    health: Health
    processes: tuple[TopProcess, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to plain JSON-compatible data."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DynamicReport":
        """Rebuild a report from its wire form."""
        perf = data["performance"]
        storage = data["storage"]
        speed = data["network_speed"]
        health = data["health"]
        return cls(
            performance=Performance(
                cpu_load=perf["cpu_load"],
                cpu_cores=tuple(perf.get("cpu_cores", ())),
                memory_used_percent=perf["memory_used_percent"],
                memory_total=perf["memory_total"],
                memory_available=perf["memory_available"],
                uptime=perf["uptime"],
            ),
            storage=Storage(
                total=storage["total"],
                used=storage["used"],
                free=storage["free"],
                percent_used=storage["percent_used"],
                details=tuple(FilesystemUsage(**d) for d in storage.get("details", ())),
            ),
            network_speed=NetworkSpeed(
                rx_sec=speed["rx_sec"],
                tx_sec=speed["tx_sec"],
                cpu_speed=speed["cpu_speed"],
                interfaces=tuple(InterfaceSpeed(**i) for i in speed.get("interfaces", ())),
            ),
            power=Power(**data["power"]),
            health=Health(
                score=health["score"],
                status=health["status"],
                suggestions=tuple(health["suggestions"]),
                temperature=health.get("temperature"),
                core_temperatures=tuple(health.get("core_temperatures", ())),
                max_temperature=health.get("max_temperature"),
            ),
            processes=tuple(TopProcess(**p) for p in data.get("processes", ())),
        )
