from __future__ import annotations

from dataclasses import dataclass
import logging
from types import MappingProxyType
from typing import Any, Iterable, Mapping

from status_tap.collector import CollectorSpec
from status_tap.config import HealthConfig
from status_tap.health import HealthStatus, HealthTracker
from status_tap.readings import Reading, Value


@dataclass
class MetricState:
    """Last known good reading of one metric plus its health bookkeeping."""

    spec: CollectorSpec
    last_good: Reading | None = None
    failures: int = 0
    unavailable: bool = False
    published_value: Value | None = None
    published_status: HealthStatus | None = None
    last_publish_ts: float | None = None


@dataclass(frozen=True)
class MetricView:
    metric: str
    value: Value | None
    status: HealthStatus
    ts: float | None

    def to_json(self) -> dict[str, Any]:
        return {
            "metric": self.metric,
            "value": self.value.to_json() if self.value is not None else None,
            "status": self.status.value,
            "ts": int(self.ts * 1000) if self.ts is not None else None,
        }


@dataclass(frozen=True)
class Snapshot:
    ts: float
    metrics: Mapping[str, MetricView]

    def to_json(self, only: Iterable[str] | None = None) -> dict[str, dict[str, Any]]:
        names = list(self.metrics) if only is None else list(only)
        return {name: self.metrics[name].to_json() for name in names}


class SnapshotAggregator:
    """Owns every MetricState; only the scheduling thread may call into it."""

    def __init__(self, specs: Iterable[CollectorSpec], health: HealthConfig) -> None:
        self.tracker = HealthTracker(health)
        self.states: dict[str, MetricState] = {}
        for spec in specs:
            if spec.metric in self.states:
                raise ValueError(f"Duplicate collector for metric {spec.metric}")
            self.states[spec.metric] = MetricState(spec=spec)
        self.logger = logging.getLogger(self.__class__.__name__)
        self._last_snapshot_ts = 0.0
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        """Stop accepting readings; called once shutdown begins."""
        self._closed = True

    def merge(self, reading: Reading) -> bool:
        """Fold a reading into its MetricState.

        Returns True when the metric now differs significantly from what was
        last published.
        """
        if self._closed:
            self.logger.debug("Dropping %s reading after shutdown.", reading.metric)
            return False
        state = self.states.get(reading.metric)
        if state is None:
            self.logger.warning("Reading for unknown metric %s ignored.", reading.metric)
            return False
        if reading.ok:
            state.last_good = reading
        self.tracker.record(state, reading)
        return self._is_changed(state)

    def status(self, metric: str) -> HealthStatus:
        return self.tracker.status(self.states[metric])

    def next_interval(self, metric: str) -> float:
        return self.tracker.next_interval(self.states[metric])

    def _view(self, state: MetricState) -> MetricView:
        status = self.tracker.status(state)
        value = None
        ts = None
        if state.last_good is not None and status is not HealthStatus.UNAVAILABLE:
            value = state.last_good.value
            ts = state.last_good.ts
        return MetricView(metric=state.spec.metric, value=value, status=status, ts=ts)

    def _is_changed(self, state: MetricState) -> bool:
        view = self._view(state)
        if view.status is not state.published_status:
            return True
        return state.spec.significant_change(state.published_value, view.value)

    def changed(self) -> list[str]:
        return [name for name, state in self.states.items() if self._is_changed(state)]

    def snapshot(self, ts: float) -> Snapshot:
        # Snapshots never go back in time, even if the wall clock does
        ts = max(ts, self._last_snapshot_ts)
        self._last_snapshot_ts = ts
        views = {name: self._view(state) for name, state in self.states.items()}
        return Snapshot(ts=ts, metrics=MappingProxyType(views))

    def mark_published(self, snapshot: Snapshot, metrics: Iterable[str]) -> None:
        for name in metrics:
            state = self.states[name]
            view = snapshot.metrics[name]
            state.published_value = view.value
            state.published_status = view.status
            state.last_publish_ts = snapshot.ts
