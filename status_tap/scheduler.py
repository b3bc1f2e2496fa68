from __future__ import annotations

from concurrent.futures import Future, wait
from dataclasses import dataclass
import logging
import math
import threading
import time
from typing import Callable, Sequence

from status_tap.aggregator import SnapshotAggregator
from status_tap.collector import CollectorSpec, take_reading
from status_tap.config import MAX_WORKERS
from status_tap.errors import SchedulerInitError
from status_tap.publisher import LinePublisher
from status_tap.readings import Failure, Reading
from status_tap.workers import WorkerPool


@dataclass
class _Job:
    spec: CollectorSpec
    future: Future[Reading]
    started: float
    deadline: float


class Scheduler:
    """Single timing authority driving every collector from one loop.

    Inline collectors run on the loop thread. Collectors flagged as blocking
    are handed to a small worker pool with a per-call deadline; their results
    are picked up and merged by the loop thread, so the aggregator only ever
    sees one writer. A call that overruns its deadline is recorded as a
    timeout and abandoned. Its collector is not resubmitted until the
    abandoned call returns; each interval that falls due meanwhile counts as
    another timeout, so a hung source degrades like any failing one.
    """

    def __init__(
        self,
        specs: Sequence[CollectorSpec],
        aggregator: SnapshotAggregator,
        publisher: LinePublisher,
        tick_s: float = 1.0,
        timeout_s: float = 2.0,
        max_workers: int = MAX_WORKERS,
        clock: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], float] = time.time,
    ) -> None:
        if not specs:
            raise SchedulerInitError("No collectors are enabled; nothing to schedule.")
        if tick_s <= 0 or timeout_s <= 0:
            raise SchedulerInitError("Tick and timeout must be positive.")
        self.specs = list(specs)
        self.aggregator = aggregator
        self.publisher = publisher
        self.tick_s = tick_s
        self.timeout_s = timeout_s
        self.clock = clock
        self.wall_clock = wall_clock
        self.logger = logging.getLogger(self.__class__.__name__)

        start = clock()
        self._next_due = {spec.metric: start for spec in self.specs}
        self._in_flight: dict[str, _Job] = {}
        self._abandoned: dict[str, Future[Reading]] = {}
        self._stop = threading.Event()
        self._shut_down = False

        self._executor: WorkerPool | None = None
        if any(spec.blocking for spec in self.specs):
            workers = max(1, min(max_workers, MAX_WORKERS))
            try:
                self._executor = WorkerPool(workers)
            except RuntimeError as exc:
                raise SchedulerInitError(f"Failed to start worker pool: {exc}") from exc

    @property
    def stopping(self) -> bool:
        return self._stop.is_set()

    def request_stop(self) -> None:
        """Ask the loop to stop after the current tick. Safe from signal handlers."""
        self._stop.set()

    def next_due(self, metric: str) -> float:
        return self._next_due[metric]

    def in_flight(self) -> list[str]:
        return list(self._in_flight)

    def _merge(self, reading: Reading, started: float) -> None:
        if self._stop.is_set():
            return
        self.aggregator.merge(reading)
        self._next_due[reading.metric] = started + self.aggregator.next_interval(
            reading.metric
        )

    def _dispatch(self, now: float) -> None:
        for spec in self.specs:
            if self._stop.is_set():
                return
            metric = spec.metric
            if metric in self._in_flight or now < self._next_due[metric]:
                continue
            if metric in self._abandoned:
                # still stuck in the previous call: count another timeout
                self._merge(
                    Reading(
                        metric,
                        self.wall_clock(),
                        failure=Failure.TIMEOUT,
                        detail="previous call still running",
                    ),
                    now,
                )
                continue
            if spec.blocking and self._executor is not None:
                future = self._executor.submit(take_reading, spec, self.wall_clock)
                self._in_flight[metric] = _Job(
                    spec=spec, future=future, started=now, deadline=now + self.timeout_s
                )
            else:
                self._merge(take_reading(spec, self.wall_clock), now)

    def _harvest(self, now: float) -> None:
        for metric, job in list(self._in_flight.items()):
            if job.future.done():
                del self._in_flight[metric]
                self._merge(job.future.result(), job.started)
            elif now >= job.deadline:
                del self._in_flight[metric]
                self._abandoned[metric] = job.future
                self.logger.debug(
                    "Collector %s exceeded its %ss deadline.", metric, self.timeout_s
                )
                self._merge(
                    Reading(
                        metric,
                        self.wall_clock(),
                        failure=Failure.TIMEOUT,
                        detail=f"no result within {self.timeout_s}s",
                    ),
                    job.deadline,
                )
        for metric, future in list(self._abandoned.items()):
            if future.done():
                # late results of abandoned calls are discarded
                del self._abandoned[metric]

    def _collect_window(self) -> float:
        return min(self.timeout_s, self.tick_s / 2)

    def tick(self) -> None:
        """Run every due collector, merge finished results and publish."""
        if self._stop.is_set():
            return
        now = self.clock()
        self._harvest(now)
        self._dispatch(now)
        if self._in_flight:
            wait(
                [job.future for job in self._in_flight.values()],
                timeout=self._collect_window(),
            )
            self._harvest(self.clock())
        if self._stop.is_set():
            return
        self.publisher.publish_cycle(self.aggregator, self.clock(), self.wall_clock())

    def run(self) -> None:
        self.logger.info(
            "Scheduling %s collectors every %ss tick.", len(self.specs), self.tick_s
        )
        try:
            while not self._stop.is_set():
                started = self.clock()
                self.tick()
                if self.publisher.closed:
                    break
                elapsed = self.clock() - started
                self._stop.wait(max(0.0, self.tick_s - elapsed))
        finally:
            self.shutdown()

    def run_once(self) -> None:
        """Sample every collector once and publish a single full snapshot."""
        try:
            now = self.clock()
            self._dispatch(now)
            if self._in_flight:
                wait(
                    [job.future for job in self._in_flight.values()],
                    timeout=self.timeout_s,
                )
                # whatever has not finished by now has missed its deadline
                self._harvest(math.inf)
            self.publisher.publish_cycle(self.aggregator, self.clock(), self.wall_clock())
        finally:
            self.shutdown()

    def shutdown(self) -> None:
        if self._shut_down:
            return
        self._shut_down = True
        self._stop.set()
        self.aggregator.close()
        self.publisher.close()
        pending = [job.future for job in self._in_flight.values()]
        pending.extend(self._abandoned.values())
        if pending:
            self.logger.debug("Waiting for %s in-flight collectors.", len(pending))
            wait(pending, timeout=self.timeout_s)
        self._in_flight.clear()
        self._abandoned.clear()
        if self._executor is not None:
            self._executor.shutdown()
        self.logger.info("Scheduler stopped.")
