"""Tests for configuration loading."""
from __future__ import annotations

from pathlib import Path

import pytest

from status_tap.config import DEFAULT_SENSOR_PATHS, MAX_WORKERS, load_config
from status_tap.errors import ConfigError

EXAMPLE_CONFIG = Path(__file__).resolve().parent.parent / "config" / "example.cfg"


@pytest.fixture
def write_config(tmp_path):
    def _write(content):
        path = tmp_path / "status.cfg"
        path.write_text(content)
        return path

    return _write


class TestLoadConfig:
    """Tests for load_config."""

    def test_defaults_without_file(self):
        config = load_config()

        assert config.publish.tick_s == 1.0
        assert config.publish.heartbeat_s == 30.0
        assert config.health.degraded_after == 3
        assert config.health.unavailable_retry_s == 60.0
        assert config.health.max_workers == MAX_WORKERS
        assert config.collector.mounts == ["/"]
        assert config.collector.sensor_paths == DEFAULT_SENSOR_PATHS
        assert config.collector.exclude_interfaces == ["lo", "docker", "veth"]
        assert config.metrics["cpu"].threshold == 1.0
        assert config.metrics["clock"].interval_s == 1.0
        assert config.metrics["workspace"].threshold == 0.0

    def test_example_config(self):
        config = load_config(EXAMPLE_CONFIG)

        assert config.collector.mounts == ["/", "/home"]
        assert config.collector.clock_format == "%a %d %b %H:%M"
        assert config.collector.interfaces == []
        assert config.metrics["network"].threshold == 1024.0

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "absent.cfg")

    def test_overrides(self, write_config):
        path = write_config(
            "[publish]\nheartbeat_s = 5\n\n"
            "[health]\ndegraded_after = 5\nmax_workers = 16\n\n"
            "[collector]\nclock_format = %H:%M:%S\ninterfaces = wlan0, eth0\n\n"
            "[metric.cpu]\ninterval_s = 0.5\nthreshold = 2.5\n"
        )
        config = load_config(path)

        assert config.publish.heartbeat_s == 5.0
        assert config.health.degraded_after == 5
        assert config.health.max_workers == MAX_WORKERS
        assert config.collector.clock_format == "%H:%M:%S"
        assert config.collector.interfaces == ["wlan0", "eth0"]
        assert config.metrics["cpu"].interval_s == 0.5
        assert config.metrics["cpu"].threshold == 2.5

    @pytest.mark.parametrize(
        "content",
        [
            "[metric.disk]\ninterval_s = 0\n",
            "[metric.cpu]\nthreshold = -1\n",
            "[publish]\ntick_s = -1\n",
            "[health]\ndegraded_after = 0\n",
            "[health]\ntimeout_s = soon\n",
        ],
    )
    def test_invalid_values(self, write_config, content):
        with pytest.raises(ConfigError):
            load_config(write_config(content))

    def test_repeated_mounts_collapse(self, write_config):
        config = load_config(write_config("[collector]\nmounts = /, /home, /\n"))

        assert config.collector.mounts == ["/", "/home"]

    def test_disk_io_defaults(self):
        config = load_config()

        assert config.collector.disk_devices == []
        assert config.collector.disk_reference_bps == 600_000_000.0
        assert config.metrics["disk_io"].interval_s == 2.0
        assert config.metrics["disk_io"].threshold == 1_048_576.0
