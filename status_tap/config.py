from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
import configparser

from status_tap.errors import ConfigError

MAX_WORKERS = 4

# Sampling interval (seconds) and significance threshold per metric family.
# A threshold of 0 publishes on any change.
DEFAULT_METRICS: dict[str, tuple[float, float]] = {
    "cpu": (2.0, 1.0),
    "memory": (5.0, 1.0),
    "disk": (30.0, 1.0),
    "disk_io": (2.0, 1_048_576.0),
    "network": (2.0, 1024.0),
    "temperature": (5.0, 1.0),
    "battery": (30.0, 0.0),
    "volume": (1.0, 0.0),
    "workspace": (1.0, 0.0),
    "clock": (1.0, 0.0),
}

DEFAULT_SENSOR_PATHS = [
    "/sys/class/hwmon/hwmon0/temp2_input",
    "/sys/class/hwmon/hwmon0/temp1_input",
    "/sys/class/thermal/thermal_zone0/temp",
    "/sys/devices/virtual/thermal/thermal_zone0/temp",
    "/sys/class/hwmon/hwmon1/temp1_input",
]


@dataclass(frozen=True)
class PublishConfig:
    tick_s: float
    heartbeat_s: float
    validate_schema: bool


@dataclass(frozen=True)
class HealthConfig:
    degraded_after: int
    unavailable_retry_s: float
    timeout_s: float
    max_workers: int


@dataclass(frozen=True)
class MetricConfig:
    enabled: bool
    interval_s: float
    threshold: float


@dataclass(frozen=True)
class CollectorConfig:
    mounts: list[str]
    sensor_paths: list[str]
    interfaces: list[str]
    exclude_interfaces: list[str]
    clock_format: str
    wpctl_path: str
    swaymsg_path: str
    net_reference_bps: float
    disk_devices: list[str]
    disk_reference_bps: float


@dataclass(frozen=True)
class AppConfig:
    publish: PublishConfig
    health: HealthConfig
    collector: CollectorConfig
    metrics: dict[str, MetricConfig]


def _get_list(value: str | None, default: list[str] | None = None) -> list[str]:
    if value is None:
        return list(default or [])
    return [item.strip() for item in value.split(",") if item.strip()]


def _positive(name: str, value: float) -> float:
    if value <= 0:
        raise ConfigError(f"{name} must be positive, got {value}")
    return value


def _load_metric(parser: configparser.ConfigParser, metric: str) -> MetricConfig:
    section = f"metric.{metric}"
    interval_s, threshold = DEFAULT_METRICS[metric]
    config = MetricConfig(
        enabled=parser.getboolean(section, "enabled", fallback=True),
        interval_s=_positive(
            f"[{section}] interval_s",
            parser.getfloat(section, "interval_s", fallback=interval_s),
        ),
        threshold=parser.getfloat(section, "threshold", fallback=threshold),
    )
    if config.threshold < 0:
        raise ConfigError(f"[{section}] threshold must not be negative")
    return config


def load_config(path: str | Path | None = None) -> AppConfig:
    """Load configuration from an INI file; ``None`` yields the defaults."""
    parser = configparser.ConfigParser()
    if path is not None:
        read_files = parser.read(path)
        if not read_files:
            raise FileNotFoundError(f"Config file not found: {path}")

    try:
        publish = PublishConfig(
            tick_s=_positive(
                "[publish] tick_s", parser.getfloat("publish", "tick_s", fallback=1.0)
            ),
            heartbeat_s=_positive(
                "[publish] heartbeat_s",
                parser.getfloat("publish", "heartbeat_s", fallback=30.0),
            ),
            validate_schema=parser.getboolean("publish", "validate_schema", fallback=True),
        )

        degraded_after = parser.getint("health", "degraded_after", fallback=3)
        max_workers = parser.getint("health", "max_workers", fallback=MAX_WORKERS)
        if degraded_after < 1:
            raise ConfigError("[health] degraded_after must be at least 1")
        if max_workers < 1:
            raise ConfigError("[health] max_workers must be at least 1")
        health = HealthConfig(
            degraded_after=degraded_after,
            unavailable_retry_s=_positive(
                "[health] unavailable_retry_s",
                parser.getfloat("health", "unavailable_retry_s", fallback=60.0),
            ),
            timeout_s=_positive(
                "[health] timeout_s", parser.getfloat("health", "timeout_s", fallback=2.0)
            ),
            max_workers=min(max_workers, MAX_WORKERS),
        )

        # Use parser.get with fallback to handle a missing [collector] section
        collector = CollectorConfig(
            # one metric per mount, so repeated entries collapse
            mounts=list(
                dict.fromkeys(
                    _get_list(parser.get("collector", "mounts", fallback=None), ["/"])
                )
            ),
            sensor_paths=_get_list(
                parser.get("collector", "sensor_paths", fallback=None),
                DEFAULT_SENSOR_PATHS,
            ),
            interfaces=_get_list(parser.get("collector", "interfaces", fallback=None)),
            exclude_interfaces=_get_list(
                parser.get("collector", "exclude_interfaces", fallback=None),
                ["lo", "docker", "veth"],
            ),
            clock_format=parser.get(
                "collector", "clock_format", fallback="%H:%M", raw=True
            ),
            wpctl_path=parser.get("collector", "wpctl_path", fallback="wpctl"),
            swaymsg_path=parser.get("collector", "swaymsg_path", fallback="swaymsg"),
            net_reference_bps=_positive(
                "[collector] net_reference_bps",
                parser.getfloat("collector", "net_reference_bps", fallback=125_000_000.0),
            ),
            disk_devices=_get_list(parser.get("collector", "disk_devices", fallback=None)),
            disk_reference_bps=_positive(
                "[collector] disk_reference_bps",
                parser.getfloat("collector", "disk_reference_bps", fallback=600_000_000.0),
            ),
        )

        metrics = {metric: _load_metric(parser, metric) for metric in DEFAULT_METRICS}
    except ValueError as exc:
        raise ConfigError(f"Invalid configuration value: {exc}") from exc

    return AppConfig(publish=publish, health=health, collector=collector, metrics=metrics)
