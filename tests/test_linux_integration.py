"""Integration tests that sample the live Linux host."""
from __future__ import annotations

import io
import json
import sys
import time

import pytest

from status_tap.aggregator import SnapshotAggregator
from status_tap.collector import (
    CpuCollector,
    DiskCollector,
    MemoryCollector,
    build_collector_specs,
)
from status_tap.config import load_config
from status_tap.publisher import LinePublisher
from status_tap.readings import Percentage
from status_tap.scheduler import Scheduler
from status_tap.schema import validate_message

pytestmark = [
    pytest.mark.linux,
    pytest.mark.integration,
    pytest.mark.skipif(not sys.platform.startswith("linux"), reason="requires Linux"),
]


def test_cpu_collector_reads_proc_stat():
    collector = CpuCollector()

    assert collector.sample() is None
    time.sleep(0.05)
    value = collector.sample()

    # an idle sandbox may report no elapsed jiffies
    if value is not None:
        assert 0.0 <= value.percent <= 100.0


def test_memory_and_root_disk():
    memory = MemoryCollector().sample()
    disk = DiskCollector("/").sample()

    assert isinstance(memory, Percentage)
    assert 0.0 <= memory.percent <= 100.0
    assert 0.0 <= disk.percent <= 100.0


def test_single_snapshot_from_default_config():
    config = load_config()
    specs = build_collector_specs(config)
    aggregator = SnapshotAggregator(specs, config.health)
    stream = io.StringIO()
    publisher = LinePublisher(heartbeat_s=30.0, stream=stream)
    scheduler = Scheduler(
        specs,
        aggregator,
        publisher,
        timeout_s=config.health.timeout_s,
        max_workers=config.health.max_workers,
    )

    scheduler.run_once()

    [line] = stream.getvalue().splitlines()
    message = json.loads(line)
    assert message["type"] == "snapshot"
    assert set(message["metrics"]) == {spec.metric for spec in specs}
    assert validate_message(message) == []
