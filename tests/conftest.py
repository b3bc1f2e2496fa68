"""Pytest configuration and shared fixtures."""
from __future__ import annotations

import io

import pytest

from status_tap.collector import CollectorSpec
from status_tap.config import HealthConfig


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "linux: mark test as Linux-specific"
    )
    config.addinivalue_line(
        "markers", "integration: mark test as integration test"
    )


class FakeClock:
    """Manually advanced clock usable as both monotonic and wall time."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def health_config():
    """Create a health config with a three-failure degradation threshold."""
    return HealthConfig(
        degraded_after=3,
        unavailable_retry_s=60.0,
        timeout_s=2.0,
        max_workers=4,
    )


@pytest.fixture
def stream():
    return io.StringIO()


def make_spec(metric, sample=None, interval_s=1.0, threshold=0.0, blocking=False):
    return CollectorSpec(
        metric=metric,
        interval_s=interval_s,
        sample=sample or (lambda: None),
        threshold=threshold,
        blocking=blocking,
    )
