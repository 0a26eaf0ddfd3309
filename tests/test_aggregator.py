"""Tests for report derivation."""

import pytest

from conftest import GB, make_raw

from deepsight.aggregator import (
    BATTERY_RULE,
    CPU_RULE,
    MEMORY_RULE,
    SMOOTH_MESSAGE,
    STORAGE_RULE,
    TEMPERATURE_RULE,
    aggregate,
    build_storage,
    health_status,
    percent,
    top_processes,
)
from deepsight.models import BatteryReading, FilesystemReading, ProcessReading


def fs(device: str, size: int, used: int, mount: str = "/mnt") -> FilesystemReading:
    return FilesystemReading(fs=device, type="ext4", mount=mount, size=size, used=used, use=percent(used, size))


class TestHealthScenarios:
    """Health score scenarios."""

    def test_high_cpu_and_full_disk(self):
        """load=85, mem=50, storage=95, temp=70, no battery -> 70 / Fair."""
        report = aggregate(make_raw(load=85, mem=50, storage=95, temp=70))

        assert report.health.score == 70
        assert report.health.status == "Fair"
        assert report.health.suggestions == (CPU_RULE[1], STORAGE_RULE[1])

    def test_all_nominal(self):
        report = aggregate(make_raw(load=10, mem=30, storage=40, temp=40))

        assert report.health.score == 100
        assert report.health.status == "Good"
        assert report.health.suggestions == (SMOOTH_MESSAGE,)

    def test_every_rule_triggers(self):
        battery = BatteryReading(has_battery=True, percent=10, is_charging=False, time_remaining=12)
        report = aggregate(make_raw(load=99, mem=95, storage=99, temp=95, battery=battery))

        assert report.health.score == 100 - 20 - 20 - 10 - 30 - 5
        assert report.health.status == "Critical"
        assert report.health.suggestions == (
            CPU_RULE[1],
            MEMORY_RULE[1],
            STORAGE_RULE[1],
            TEMPERATURE_RULE[1],
            BATTERY_RULE[1],
        )

    @pytest.mark.parametrize(
        "kwargs, rule",
        [
            ({"load": 80.5}, CPU_RULE),
            ({"mem": 91}, MEMORY_RULE),
            ({"storage": 90.5}, STORAGE_RULE),
            ({"temp": 81}, TEMPERATURE_RULE),
        ],
    )
    def test_single_rule(self, kwargs, rule):
        report = aggregate(make_raw(**kwargs))

        assert report.health.score == 100 - rule[0]
        assert report.health.suggestions == (rule[1],)

    def test_thresholds_are_exclusive(self):
        """Values exactly at a limit do not trigger."""
        report = aggregate(make_raw(load=80, mem=90, storage=90, temp=80))

        assert report.health.score == 100
        assert report.health.suggestions == (SMOOTH_MESSAGE,)

    def test_hot_cpu_alone_is_fair(self):
        report = aggregate(make_raw(temp=85))

        assert report.health.score == 70
        assert report.health.status == "Fair"

    def test_missing_temperature_does_not_trigger(self):
        report = aggregate(make_raw(temp=None))

        assert report.health.score == 100
        assert report.health.temperature is None

    def test_low_battery_only_when_discharging(self):
        charging = BatteryReading(has_battery=True, percent=5, is_charging=True)
        draining = BatteryReading(has_battery=True, percent=5, is_charging=False)

        assert aggregate(make_raw(battery=charging)).health.score == 100
        assert aggregate(make_raw(battery=draining)).health.score == 95

    def test_no_battery_never_triggers(self):
        battery = BatteryReading(has_battery=False, percent=0, is_charging=False)

        assert aggregate(make_raw(battery=battery)).health.score == 100


class TestHealthStatus:
    @pytest.mark.parametrize(
        "score, status",
        [(100, "Good"), (81, "Good"), (80, "Fair"), (51, "Fair"), (50, "Critical"), (0, "Critical"), (-15, "Critical")],
    )
    def test_status_boundaries(self, score, status):
        assert health_status(score) == status


class TestStorage:
    def test_loop_snap_and_empty_filesystems_are_excluded(self):
        storage = build_storage(
            (
                fs("/dev/sda1", 100 * GB, 50 * GB, "/"),
                fs("/dev/loop3", 1 * GB, 1 * GB, "/snap/core/1"),
                fs("/var/lib/snapd/snap", 2 * GB, 2 * GB),
                fs("/dev/sdb1", 0, 0, "/media/cdrom"),
                fs("/dev/sdc1", 100 * GB, 10 * GB, "/data"),
            )
        )

        assert storage.total == 200 * GB
        assert storage.used == 60 * GB
        assert storage.free == 140 * GB
        assert storage.percent_used == pytest.approx(30.0)
        assert [d.fs for d in storage.details] == ["/dev/sda1", "/dev/sdc1"]

    def test_filter_is_case_sensitive(self):
        storage = build_storage((fs("/dev/LOOP0", 10 * GB, 1 * GB),))

        assert storage.total == 10 * GB
        assert len(storage.details) == 1

    def test_zero_total_reports_zero_percent(self):
        storage = build_storage((fs("/dev/loop0", 10 * GB, 10 * GB), fs("/dev/sdz", 0, 0)))

        assert storage.total == 0
        assert storage.percent_used == 0.0
        assert storage.details == ()

    def test_no_filesystems(self):
        report = aggregate(make_raw(filesystems=()))

        assert report.storage.percent_used == 0.0
        assert report.health.score == 100


class TestNetworkAndPerformance:
    def test_network_sums_every_interface(self):
        report = aggregate(make_raw())

        # eth0 is up and wlan0 is down; both count
        assert report.network_speed.rx_sec == 1200.0
        assert report.network_speed.tx_sec == 600.0
        assert report.network_speed.cpu_speed == 3.4
        assert [i.operstate for i in report.network_speed.interfaces] == ["up", "down"]

    def test_performance_fields(self):
        report = aggregate(make_raw(load=42.5, mem=25))

        assert report.performance.cpu_load == 42.5
        assert report.performance.cpu_cores == (42.5, 42.5)
        assert report.performance.memory_used_percent == pytest.approx(25.0)
        assert report.performance.memory_total == 16 * GB
        assert report.performance.uptime == 3600.0

    def test_power_passthrough(self):
        battery = BatteryReading(has_battery=True, percent=55, is_charging=True, time_remaining=90)
        report = aggregate(make_raw(battery=battery))

        assert report.power.has_battery is True
        assert report.power.percent == 55
        assert report.power.time_remaining == 90


class TestTopProcesses:
    def test_sorted_truncated_and_rounded(self):
        processes = tuple(
            ProcessReading(pid=i, name=f"p{i}", cpu=float(i) + 0.04, mem=i / 3, user="u") for i in range(1, 9)
        )

        top = top_processes(processes)

        assert [p.pid for p in top] == [8, 7, 6, 5, 4]
        assert top[0].cpu == 8.0
        assert top[0].mem == 2.7

    def test_fewer_than_five(self):
        report = aggregate(make_raw())

        assert [p.name for p in report.processes] == ["python", "init"]
        assert report.processes[0].cpu == 12.3

    def test_custom_count(self):
        report = aggregate(make_raw(), process_count=1)

        assert len(report.processes) == 1


def test_aggregate_is_deterministic():
    raw = make_raw(load=85, storage=95)

    assert aggregate(raw) == aggregate(raw)


def test_percent_guards_zero():
    assert percent(5, 0) == 0.0
    assert percent(1, 4) == 25.0
