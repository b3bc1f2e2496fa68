from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
import math
from typing import Any, ClassVar, Union


class Failure(str, Enum):
    TRANSIENT = "transient"
    PERMANENT = "permanent"
    COUNTER_ANOMALY = "counter_anomaly"
    TIMEOUT = "timeout"


def _differs(left: object, right: object) -> float:
    return 0.0 if left == right else math.inf


def _devices_delta(left: tuple[Any, ...], right: tuple[Any, ...]) -> float:
    if [device.name for device in left] != [device.name for device in right]:
        return math.inf
    return max((a.delta(b) for a, b in zip(left, right)), default=0.0)


@dataclass(frozen=True)
class Percentage:
    """Utilization in percent, optionally with the byte figures behind it.

    ``cores`` carries the per-core breakdown for CPU utilization.
    """

    kind: ClassVar[str] = "percentage"
    percent: float
    used_b: int | None = None
    total_b: int | None = None
    cores: tuple[float, ...] | None = None

    def delta(self, other: Value) -> float:
        if not isinstance(other, Percentage):
            return math.inf
        # per-core figures ride along with the overall value
        return abs(self.percent - other.percent)

    def to_json(self) -> dict[str, Any]:
        data: dict[str, Any] = {"kind": self.kind, "percent": self.percent}
        if self.used_b is not None:
            data["used_b"] = self.used_b
        if self.total_b is not None:
            data["total_b"] = self.total_b
        if self.cores is not None:
            data["cores"] = list(self.cores)
        return data


@dataclass(frozen=True)
class DeviceRate:
    """Throughput of one network interface."""

    name: str
    up_bps: float
    down_bps: float
    up_level: int = 0
    down_level: int = 0

    def delta(self, other: DeviceRate) -> float:
        return max(abs(self.up_bps - other.up_bps), abs(self.down_bps - other.down_bps))

    def to_json(self) -> dict[str, Any]:
        return {
            "up_bps": self.up_bps,
            "down_bps": self.down_bps,
            "up_level": self.up_level,
            "down_level": self.down_level,
        }


@dataclass(frozen=True)
class ByteRate:
    """Throughput in bytes per second with 0-10 activity levels per direction."""

    kind: ClassVar[str] = "rate"
    up_bps: float
    down_bps: float
    up_level: int = 0
    down_level: int = 0
    devices: tuple[DeviceRate, ...] = ()

    def delta(self, other: Value) -> float:
        if not isinstance(other, ByteRate):
            return math.inf
        change = max(abs(self.up_bps - other.up_bps), abs(self.down_bps - other.down_bps))
        return max(change, _devices_delta(self.devices, other.devices))

    def to_json(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "kind": self.kind,
            "up_bps": self.up_bps,
            "down_bps": self.down_bps,
            "up_level": self.up_level,
            "down_level": self.down_level,
        }
        if self.devices:
            data["devices"] = {device.name: device.to_json() for device in self.devices}
        return data


@dataclass(frozen=True)
class DeviceIo:
    """Read and write throughput of one block device."""

    name: str
    read_bps: float
    write_bps: float
    read_level: int = 0
    write_level: int = 0

    def delta(self, other: DeviceIo) -> float:
        return max(
            abs(self.read_bps - other.read_bps), abs(self.write_bps - other.write_bps)
        )

    def to_json(self) -> dict[str, Any]:
        return {
            "read_bps": self.read_bps,
            "write_bps": self.write_bps,
            "read_level": self.read_level,
            "write_level": self.write_level,
        }


@dataclass(frozen=True)
class IoRate:
    kind: ClassVar[str] = "io"
    read_bps: float
    write_bps: float
    read_level: int = 0
    write_level: int = 0
    devices: tuple[DeviceIo, ...] = ()

    def delta(self, other: Value) -> float:
        if not isinstance(other, IoRate):
            return math.inf
        change = max(
            abs(self.read_bps - other.read_bps), abs(self.write_bps - other.write_bps)
        )
        return max(change, _devices_delta(self.devices, other.devices))

    def to_json(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "kind": self.kind,
            "read_bps": self.read_bps,
            "write_bps": self.write_bps,
            "read_level": self.read_level,
            "write_level": self.write_level,
        }
        if self.devices:
            data["devices"] = {device.name: device.to_json() for device in self.devices}
        return data


@dataclass(frozen=True)
class Temperature:
    kind: ClassVar[str] = "temperature"
    celsius: float

    def delta(self, other: Value) -> float:
        if not isinstance(other, Temperature):
            return math.inf
        return abs(self.celsius - other.celsius)

    def to_json(self) -> dict[str, Any]:
        return {"kind": self.kind, "celsius": self.celsius}


@dataclass(frozen=True)
class Charge:
    """Battery charge level and power state (charging, discharging, full)."""

    kind: ClassVar[str] = "charge"
    percent: float
    state: str

    def delta(self, other: Value) -> float:
        if not isinstance(other, Charge) or other.state != self.state:
            return math.inf
        return abs(self.percent - other.percent)

    def to_json(self) -> dict[str, Any]:
        return {"kind": self.kind, "percent": self.percent, "state": self.state}


@dataclass(frozen=True)
class Volume:
    kind: ClassVar[str] = "volume"
    percent: float
    muted: bool

    def delta(self, other: Value) -> float:
        if not isinstance(other, Volume) or other.muted != self.muted:
            return math.inf
        return abs(self.percent - other.percent)

    def to_json(self) -> dict[str, Any]:
        return {"kind": self.kind, "percent": self.percent, "muted": self.muted}


@dataclass(frozen=True)
class Text:
    """Free-form label such as a workspace name or a formatted time."""

    kind: ClassVar[str] = "text"
    text: str

    def delta(self, other: Value) -> float:
        if not isinstance(other, Text):
            return math.inf
        return _differs(self.text, other.text)

    def to_json(self) -> dict[str, Any]:
        return {"kind": self.kind, "text": self.text}


Value = Union[Percentage, ByteRate, IoRate, Temperature, Charge, Volume, Text]


@dataclass(frozen=True)
class Reading:
    """Result of one collector invocation.

    A reading with neither a value nor a failure is a pending sample: the
    collector ran but had nothing meaningful to report yet (for example the
    first CPU sample, which has no previous counters to diff against).
    """

    metric: str
    ts: float
    value: Value | None = None
    failure: Failure | None = None
    detail: str | None = None

    @property
    def ok(self) -> bool:
        return self.failure is None and self.value is not None

    @property
    def pending(self) -> bool:
        return self.failure is None and self.value is None


def is_significant(old: Value | None, new: Value | None, threshold: float) -> bool:
    """Return True when ``new`` differs from ``old`` by at least ``threshold``.

    A threshold of zero means any change at all is significant.
    """
    if old is None or new is None:
        return old is not new
    change = new.delta(old)
    return change > 0 and change >= threshold
