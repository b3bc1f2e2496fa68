"""Status Tap status-bar metrics feed."""

from status_tap.aggregator import Snapshot, SnapshotAggregator
from status_tap.collector import CollectorSpec, build_collector_specs
from status_tap.config import AppConfig, load_config
from status_tap.publisher import LinePublisher
from status_tap.scheduler import Scheduler
from status_tap.schema import validate_message

__all__ = [
    "AppConfig",
    "CollectorSpec",
    "LinePublisher",
    "Scheduler",
    "Snapshot",
    "SnapshotAggregator",
    "build_collector_specs",
    "load_config",
    "validate_message",
]
