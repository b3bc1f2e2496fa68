from __future__ import annotations

from datetime import datetime
from enum import Enum
import logging
from typing import TYPE_CHECKING

from status_tap.config import HealthConfig
from status_tap.readings import Failure, Reading

if TYPE_CHECKING:
    from status_tap.aggregator import MetricState


def _format_ts(ts: float | None) -> str:
    if ts is None:
        return "never"
    return datetime.fromtimestamp(ts).isoformat(timespec="seconds")


class HealthStatus(str, Enum):
    OK = "ok"
    DEGRADED = "degraded"
    UNAVAILABLE = "unavailable"
    PENDING = "pending"


class HealthTracker:
    """Tracks failure streaks per metric and derives the published status.

    Transient failures and timeouts extend the streak; once the streak reaches
    ``degraded_after`` the metric is reported as degraded while its last good
    value is still shown. A permanent-unavailable report switches the metric to
    the slow retry cadence until the collector succeeds again. Counter
    anomalies neither extend nor reset the streak: the interval is just skipped.
    """

    def __init__(self, config: HealthConfig) -> None:
        self.degraded_after = config.degraded_after
        self.unavailable_retry_s = config.unavailable_retry_s
        self.logger = logging.getLogger(self.__class__.__name__)

    def record(self, state: MetricState, reading: Reading) -> None:
        metric = reading.metric
        if reading.ok:
            if state.failures >= self.degraded_after or state.unavailable:
                self.logger.info("Metric %s recovered.", metric)
            state.failures = 0
            state.unavailable = False
            return
        if reading.failure is None:
            return
        if reading.failure is Failure.COUNTER_ANOMALY:
            self.logger.debug("Metric %s skipped interval: %s", metric, reading.detail)
            return
        if reading.failure is Failure.PERMANENT:
            if not state.unavailable:
                self.logger.warning("Metric %s unavailable: %s", metric, reading.detail)
            state.unavailable = True
            return

        state.failures += 1
        self.logger.debug(
            "Metric %s failed (%s in a row): %s", metric, state.failures, reading.detail
        )
        if state.failures == self.degraded_after:
            self.logger.warning(
                "Metric %s degraded after %s consecutive failures; last published at %s.",
                metric,
                state.failures,
                _format_ts(state.last_publish_ts),
            )

    def status(self, state: MetricState) -> HealthStatus:
        if state.unavailable:
            return HealthStatus.UNAVAILABLE
        if state.failures >= self.degraded_after:
            return HealthStatus.DEGRADED
        if state.last_good is None:
            return HealthStatus.PENDING
        return HealthStatus.OK

    def next_interval(self, state: MetricState) -> float:
        if state.unavailable:
            return max(self.unavailable_retry_s, state.spec.interval())
        return state.spec.interval()
