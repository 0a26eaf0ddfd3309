"""Rolling history of dynamic reports for trend display."""

from collections import deque
from collections.abc import Iterator
from dataclasses import dataclass

from deepsight.models import DynamicReport

DEFAULT_CAPACITY = 60  # two minutes at the default 2s interval


@dataclass(slots=True, frozen=True)
class HistoryPoint:
    """CPU, memory and temperature at the moment a report was received."""

    timestamp: float  # epoch seconds
    cpu: float
    mem: float
    temp: float  # 0.0 when the host has no temperature sensor

    @classmethod
    def from_report(cls, report: DynamicReport, timestamp: float) -> "HistoryPoint":
        temperature = report.health.temperature
        return cls(
            timestamp=timestamp,
            cpu=report.performance.cpu_load,
            mem=report.performance.memory_used_percent,
            temp=temperature if temperature is not None else 0.0,
        )


class HistoryBuffer:
    """Fixed-capacity FIFO of history points; the oldest point is evicted first."""

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        if capacity < 1:
            raise ValueError("capacity must be positive")
        self._points: deque[HistoryPoint] = deque(maxlen=capacity)

    @property
    def capacity(self) -> int:
        return self._points.maxlen or 0

    def append(self, point: HistoryPoint) -> None:
        self._points.append(point)

    def clear(self) -> None:
        self._points.clear()

    def points(self) -> list[HistoryPoint]:
        """Copy of the points, oldest first."""
        return list(self._points)

    def series(self, name: str) -> list[float]:
        """One metric over time, e.g. series('cpu'), for sparkline rendering."""
        return [getattr(p, name) for p in self._points]

    @property
    def latest(self) -> HistoryPoint | None:
        return self._points[-1] if self._points else None

    def __len__(self) -> int:
        return len(self._points)

    def __iter__(self) -> Iterator[HistoryPoint]:
        return iter(list(self._points))
