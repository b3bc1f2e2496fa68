from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
import json
import logging
import math
import os
from pathlib import Path
import re
import subprocess
import time
from typing import Any, Callable, Mapping

import psutil

from status_tap.config import AppConfig, CollectorConfig
from status_tap.errors import (
    CounterAnomaly,
    PermanentUnavailable,
    TimeoutFailure,
    TransientReadFailure,
)
from status_tap.logging_utils import TRACE_LEVEL
from status_tap.readings import (
    ByteRate,
    Charge,
    DeviceIo,
    DeviceRate,
    Failure,
    IoRate,
    Percentage,
    Reading,
    Temperature,
    Text,
    Value,
    Volume,
    is_significant,
)

# Floor for elapsed time between two counter reads
MIN_ELAPSED = 1e-8

_WPCTL_VOLUME = re.compile(r"Volume:\s*([0-9]*\.?[0-9]+)(\s*\[MUTED\])?")
_PARTITION_SUFFIX = re.compile(r"p[0-9]+$")

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CollectorSpec:
    """Static descriptor binding one metric to its sampling function."""

    metric: str
    interval_s: float
    sample: Callable[[], Value | None]
    threshold: float = 0.0
    blocking: bool = False

    def interval(self) -> float:
        return self.interval_s

    def significant_change(self, old: Value | None, new: Value | None) -> bool:
        return is_significant(old, new, self.threshold)


@dataclass(frozen=True)
class CpuCounters:
    busy: float
    idle: float


@dataclass(frozen=True)
class NetCounters:
    timestamp: float
    rx: int
    tx: int
    ifaces: frozenset[str]
    per_iface: Mapping[str, tuple[int, int]] = field(default_factory=dict)


@dataclass(frozen=True)
class IoCounters:
    timestamp: float
    devices: Mapping[str, tuple[int, int]]


def should_skip_device(name: str) -> bool:
    """Return True for partitions and pseudo block devices."""
    if name.startswith(("loop", "ram", "dm-")):
        return True
    if not name[-1:].isdigit():
        return False
    # nvme0n1p2, mmcblk0p1
    if _PARTITION_SUFFIX.search(name):
        return True
    # sda1, hdb2, vdc3
    return name[0] in "shv"


def cpu_utilization(prev: CpuCounters, current: CpuCounters) -> float | None:
    """Busy share of the ticks elapsed between two counter reads.

    Returns None when no ticks elapsed, since no utilization can be derived.
    """
    busy = current.busy - prev.busy
    idle = current.idle - prev.idle
    if busy < 0 or idle < 0:
        raise CounterAnomaly("CPU tick counters decreased")
    total = busy + idle
    if total <= 0:
        return None
    return busy * 100.0 / total


def counter_rate(prev: int, current: int, elapsed: float) -> float:
    if current < prev:
        raise CounterAnomaly(f"counter went from {prev} to {current}")
    return (current - prev) / max(elapsed, MIN_ELAPSED)


def device_rates(
    prev: Mapping[str, tuple[int, int]],
    current: Mapping[str, tuple[int, int]],
    elapsed: float,
) -> dict[str, tuple[float, float]]:
    """Per-device rates for a pair of monotonic byte counters."""
    if set(prev) != set(current):
        raise CounterAnomaly(
            f"Device set changed from {sorted(prev)} to {sorted(current)}"
        )
    return {
        name: (
            counter_rate(prev[name][0], first, elapsed),
            counter_rate(prev[name][1], second, elapsed),
        )
        for name, (first, second) in current.items()
    }


def rate_to_level(rate: float, reference: float) -> int:
    """Map a throughput onto a 0-10 activity level relative to ``reference``."""
    if rate <= 0 or reference <= 0:
        return 0
    ratio = min(rate / reference, 1.0)
    return min(int(math.ceil(ratio * 10)), 10)


def parse_wpctl_volume(output: str) -> Volume:
    match = _WPCTL_VOLUME.search(output)
    if match is None:
        raise TransientReadFailure(f"Unrecognized wpctl output: {output.strip()!r}")
    percent = round(float(match.group(1)) * 100)
    return Volume(percent=float(percent), muted=match.group(2) is not None)


def parse_sway_workspaces(output: str) -> str:
    try:
        workspaces = json.loads(output)
    except json.JSONDecodeError as exc:
        raise TransientReadFailure("Failed to parse swaymsg JSON output.") from exc
    for workspace in workspaces:
        if isinstance(workspace, dict) and workspace.get("focused"):
            return str(workspace.get("name", workspace.get("num", "")))
    raise TransientReadFailure("No focused workspace reported.")


def run_command(command: list[str], timeout: float) -> str:
    """Run a helper program and return its stdout.

    A missing executable means the capability is absent on this machine.
    """
    try:
        result = subprocess.run(
            command,
            check=False,
            text=True,
            capture_output=True,
            timeout=timeout,
        )
    except FileNotFoundError as exc:
        logger.debug("Command not found: %s", command[0])
        raise PermanentUnavailable(f"Command not found: {command[0]}") from exc
    except subprocess.TimeoutExpired as exc:
        raise TimeoutFailure(f"Command timed out: {' '.join(command)}") from exc
    if result.returncode != 0:
        logger.debug("Command failed (%s): %s", result.returncode, " ".join(command))
        if result.stderr:
            logger.log(TRACE_LEVEL, "stderr: %s", result.stderr.strip())
        raise TransientReadFailure(
            f"Command failed ({result.returncode}): {' '.join(command)}"
        )
    logger.log(TRACE_LEVEL, "stdout: %s", result.stdout.strip())
    return result.stdout


def read_file(path: str) -> str | None:
    """Read a file and return its contents, or None if it can't be read."""
    try:
        return Path(path).read_text()
    except OSError:
        return None


def take_reading(spec: CollectorSpec, wall_clock: Callable[[], float] = time.time) -> Reading:
    """Invoke a collector once, turning any failure into a marked Reading."""
    try:
        value = spec.sample()
    except PermanentUnavailable as exc:
        return Reading(spec.metric, wall_clock(), failure=Failure.PERMANENT, detail=str(exc))
    except CounterAnomaly as exc:
        return Reading(
            spec.metric, wall_clock(), failure=Failure.COUNTER_ANOMALY, detail=str(exc)
        )
    except TimeoutFailure as exc:
        return Reading(spec.metric, wall_clock(), failure=Failure.TIMEOUT, detail=str(exc))
    except Exception as exc:
        logger.debug("Collector %s failed: %r", spec.metric, exc)
        return Reading(
            spec.metric,
            wall_clock(),
            failure=Failure.TRANSIENT,
            detail=str(exc) or exc.__class__.__name__,
        )
    return Reading(spec.metric, wall_clock(), value=value)


class Collector(ABC):
    """One sampling unit; subclasses read a single metric family."""

    blocking = False

    def __init__(self) -> None:
        self.logger = logging.getLogger(self.__class__.__name__)

    @abstractmethod
    def sample(self) -> Value | None:
        """Take one reading. Raise a CollectorFailure when the source fails."""


def _cpu_counters(times: Any) -> CpuCounters:
    fields = times._asdict()
    idle = fields.get("idle", 0.0) + fields.get("iowait", 0.0)
    # guest time is already accounted for in user/nice on Linux
    total = sum(fields.values()) - fields.get("guest", 0.0) - fields.get("guest_nice", 0.0)
    return CpuCounters(busy=total - idle, idle=idle)


class CpuCollector(Collector):
    def __init__(self) -> None:
        super().__init__()
        self._prev: CpuCounters | None = None
        self._prev_cores: list[CpuCounters] | None = None

    @staticmethod
    def read_counters() -> CpuCounters:
        return _cpu_counters(psutil.cpu_times())

    @staticmethod
    def read_core_counters() -> list[CpuCounters]:
        return [_cpu_counters(times) for times in psutil.cpu_times(percpu=True)]

    def _core_usage(self, cores: list[CpuCounters]) -> tuple[float, ...] | None:
        prev, self._prev_cores = self._prev_cores, cores
        if prev is None or len(prev) != len(cores):
            # cores came or went (hotplug); the breakdown resumes next interval
            return None
        usage = []
        for before, after in zip(prev, cores):
            load = cpu_utilization(before, after)
            usage.append(round(load, 1) if load is not None else 0.0)
        return tuple(usage)

    def sample(self) -> Percentage | None:
        current = self.read_counters()
        cores = self.read_core_counters()
        prev, self._prev = self._prev, current
        if prev is None:
            self._prev_cores = cores
            self.logger.debug("First CPU sample; utilization pending.")
            return None
        load = cpu_utilization(prev, current)
        core_usage = self._core_usage(cores)
        if load is None:
            return None
        return Percentage(percent=round(load, 1), cores=core_usage)


class MemoryCollector(Collector):
    def sample(self) -> Percentage:
        vm = psutil.virtual_memory()
        total = int(vm.total)
        if total <= 0:
            raise TransientReadFailure("Memory total reported as zero.")
        # available already counts reclaimable page cache and slab
        used = max(total - int(vm.available), 0)
        return Percentage(
            percent=round(used * 100.0 / total, 1), used_b=used, total_b=total
        )


class DiskCollector(Collector):
    blocking = True

    def __init__(self, mount: str) -> None:
        super().__init__()
        self.mount = mount

    def sample(self) -> Percentage:
        if not os.path.ismount(self.mount):
            raise PermanentUnavailable(f"Mount point {self.mount} is not mounted.")
        try:
            usage = psutil.disk_usage(self.mount)
        except OSError as exc:
            raise TransientReadFailure(f"Failed to stat {self.mount}: {exc}") from exc
        return Percentage(
            percent=round(float(usage.percent), 1),
            used_b=int(usage.used),
            total_b=int(usage.total),
        )


class NetworkCollector(Collector):
    def __init__(
        self,
        config: CollectorConfig,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        super().__init__()
        self.interfaces = set(config.interfaces)
        self.exclude = tuple(config.exclude_interfaces)
        self.reference_bps = config.net_reference_bps
        self.clock = clock
        self._prev: NetCounters | None = None

    def _included(self, iface: str) -> bool:
        if self.interfaces:
            return iface in self.interfaces
        return not iface.startswith(self.exclude)

    def read_counters(self) -> NetCounters:
        io_stats = psutil.net_io_counters(pernic=True)
        per_iface = {
            iface: (int(counters.bytes_recv), int(counters.bytes_sent))
            for iface, counters in sorted(io_stats.items())
            if self._included(iface)
        }
        return NetCounters(
            timestamp=self.clock(),
            rx=sum(rx for rx, _ in per_iface.values()),
            tx=sum(tx for _, tx in per_iface.values()),
            ifaces=frozenset(per_iface),
            per_iface=per_iface,
        )

    def sample(self) -> ByteRate | None:
        current = self.read_counters()
        prev, self._prev = self._prev, current
        if prev is None:
            return None
        if prev.ifaces != current.ifaces:
            raise CounterAnomaly(
                f"Interface set changed from {sorted(prev.ifaces)} to {sorted(current.ifaces)}"
            )
        elapsed = current.timestamp - prev.timestamp
        down = counter_rate(prev.rx, current.rx, elapsed)
        up = counter_rate(prev.tx, current.tx, elapsed)
        devices = tuple(
            DeviceRate(
                name=iface,
                up_bps=round(tx_rate, 1),
                down_bps=round(rx_rate, 1),
                up_level=rate_to_level(tx_rate, self.reference_bps),
                down_level=rate_to_level(rx_rate, self.reference_bps),
            )
            for iface, (rx_rate, tx_rate) in device_rates(
                prev.per_iface, current.per_iface, elapsed
            ).items()
        )
        return ByteRate(
            up_bps=round(up, 1),
            down_bps=round(down, 1),
            up_level=rate_to_level(up, self.reference_bps),
            down_level=rate_to_level(down, self.reference_bps),
            devices=devices,
        )


class DiskIoCollector(Collector):
    """Block device read/write throughput from the kernel I/O counters."""

    def __init__(
        self,
        config: CollectorConfig,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        super().__init__()
        self.devices = set(config.disk_devices)
        self.reference_bps = config.disk_reference_bps
        self.clock = clock
        self._prev: IoCounters | None = None

    def _included(self, device: str) -> bool:
        if self.devices:
            return device in self.devices
        return not should_skip_device(device)

    def read_counters(self) -> IoCounters:
        io_stats = psutil.disk_io_counters(perdisk=True)
        if not io_stats:
            raise PermanentUnavailable("No block device I/O counters available.")
        devices = {
            name: (int(counters.read_bytes), int(counters.write_bytes))
            for name, counters in sorted(io_stats.items())
            if self._included(name)
        }
        if not devices:
            raise PermanentUnavailable("No matching block devices found.")
        return IoCounters(timestamp=self.clock(), devices=devices)

    def sample(self) -> IoRate | None:
        current = self.read_counters()
        prev, self._prev = self._prev, current
        if prev is None:
            return None
        elapsed = current.timestamp - prev.timestamp
        rates = device_rates(prev.devices, current.devices, elapsed)
        read = sum(read_rate for read_rate, _ in rates.values())
        write = sum(write_rate for _, write_rate in rates.values())
        devices = tuple(
            DeviceIo(
                name=name,
                read_bps=round(read_rate, 1),
                write_bps=round(write_rate, 1),
                read_level=rate_to_level(read_rate, self.reference_bps),
                write_level=rate_to_level(write_rate, self.reference_bps),
            )
            for name, (read_rate, write_rate) in rates.items()
        )
        return IoRate(
            read_bps=round(read, 1),
            write_bps=round(write, 1),
            read_level=rate_to_level(read, self.reference_bps),
            write_level=rate_to_level(write, self.reference_bps),
            devices=devices,
        )


class TemperatureCollector(Collector):
    blocking = True

    def __init__(self, sensor_paths: list[str]) -> None:
        super().__init__()
        self.sensor_paths = sensor_paths

    def sample(self) -> Temperature:
        unreadable: list[str] = []
        for path in self.sensor_paths:
            content = read_file(path)
            if content is None:
                continue
            try:
                millidegrees = int(content.strip())
            except ValueError:
                unreadable.append(path)
                continue
            # Some hwmon inputs report 0 when the sensor is idle or absent
            if millidegrees <= 0:
                continue
            return Temperature(celsius=round(millidegrees / 1000, 1))

        temps = None
        if hasattr(psutil, "sensors_temperatures"):
            temps = psutil.sensors_temperatures(fahrenheit=False)
        if temps:
            for entries in temps.values():
                if entries:
                    return Temperature(celsius=round(float(entries[0].current), 1))

        if unreadable:
            raise TransientReadFailure(f"Unparseable sensor value in {unreadable[0]}")
        raise PermanentUnavailable("No thermal sensor found.")


class BatteryCollector(Collector):
    def sample(self) -> Charge:
        battery = None
        if hasattr(psutil, "sensors_battery"):
            battery = psutil.sensors_battery()
        if battery is None:
            raise PermanentUnavailable("No battery present.")
        percent = round(float(battery.percent), 1)
        if battery.power_plugged is None:
            state = "unknown"
        elif battery.power_plugged:
            state = "full" if percent >= 100 else "charging"
        else:
            state = "discharging"
        return Charge(percent=percent, state=state)


class VolumeCollector(Collector):
    blocking = True

    def __init__(self, wpctl_path: str, timeout: float) -> None:
        super().__init__()
        self.wpctl_path = wpctl_path
        self.timeout = timeout

    def sample(self) -> Volume:
        output = run_command(
            [self.wpctl_path, "get-volume", "@DEFAULT_AUDIO_SINK@"], self.timeout
        )
        return parse_wpctl_volume(output)


class WorkspaceCollector(Collector):
    blocking = True

    def __init__(self, swaymsg_path: str, timeout: float) -> None:
        super().__init__()
        self.swaymsg_path = swaymsg_path
        self.timeout = timeout

    def sample(self) -> Text:
        output = run_command([self.swaymsg_path, "-t", "get_workspaces", "-r"], self.timeout)
        return Text(text=parse_sway_workspaces(output))


class ClockCollector(Collector):
    def __init__(
        self,
        time_format: str,
        now: Callable[[], datetime] = datetime.now,
    ) -> None:
        super().__init__()
        self.time_format = time_format
        self.now = now

    def sample(self) -> Text:
        return Text(text=self.now().strftime(self.time_format))


def build_collector_specs(
    config: AppConfig,
    clock: Callable[[], float] = time.monotonic,
) -> list[CollectorSpec]:
    """Create one CollectorSpec per enabled metric, in publication order."""
    source = config.collector
    timeout = config.health.timeout_s
    factories: dict[str, Callable[[], list[tuple[str, Collector]]]] = {
        "cpu": lambda: [("cpu", CpuCollector())],
        "memory": lambda: [("memory", MemoryCollector())],
        "disk": lambda: [(f"disk:{mount}", DiskCollector(mount)) for mount in source.mounts],
        "disk_io": lambda: [("disk_io", DiskIoCollector(source, clock))],
        "network": lambda: [("network", NetworkCollector(source, clock))],
        "temperature": lambda: [("temperature", TemperatureCollector(source.sensor_paths))],
        "battery": lambda: [("battery", BatteryCollector())],
        "volume": lambda: [("volume", VolumeCollector(source.wpctl_path, timeout))],
        "workspace": lambda: [
            ("workspace", WorkspaceCollector(source.swaymsg_path, timeout))
        ],
        "clock": lambda: [("clock", ClockCollector(source.clock_format))],
    }

    specs: list[CollectorSpec] = []
    for family, metric_config in config.metrics.items():
        if not metric_config.enabled:
            logger.debug("Metric %s disabled by configuration.", family)
            continue
        for metric, collector in factories[family]():
            specs.append(
                CollectorSpec(
                    metric=metric,
                    interval_s=metric_config.interval_s,
                    sample=collector.sample,
                    threshold=metric_config.threshold,
                    blocking=collector.blocking,
                )
            )
    return specs
