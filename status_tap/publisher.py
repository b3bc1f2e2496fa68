from __future__ import annotations

import json
import logging
import sys
from typing import Any, TextIO

from status_tap.aggregator import Snapshot, SnapshotAggregator
from status_tap.logging_utils import TRACE_LEVEL
from status_tap.schema import validate_message


class LinePublisher:
    """Writes one JSON object per publish cycle to the output stream.

    The first cycle, and every cycle at least ``heartbeat_s`` after the last
    full snapshot, carries every metric so a restarted consumer can resync.
    Other cycles carry only the metrics that changed significantly and are
    skipped entirely when nothing did.
    """

    def __init__(
        self,
        heartbeat_s: float,
        stream: TextIO | None = None,
        validate_schema: bool = False,
    ) -> None:
        self.heartbeat_s = heartbeat_s
        self.stream = stream if stream is not None else sys.stdout
        self.validate_schema = validate_schema
        self.logger = logging.getLogger(self.__class__.__name__)
        self._last_full: float | None = None
        self._closed = False
        self._published = 0

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def published(self) -> int:
        return self._published

    def close(self) -> None:
        if not self._closed:
            self.logger.debug("Publisher closed after %s messages.", self._published)
        self._closed = True

    def heartbeat_due(self, now: float) -> bool:
        return self._last_full is None or now - self._last_full >= self.heartbeat_s

    def publish_cycle(
        self, aggregator: SnapshotAggregator, now: float, wall_ts: float
    ) -> dict[str, Any] | None:
        """Publish the current state if a heartbeat is due or anything changed.

        ``now`` is the monotonic scheduler time used for the heartbeat cadence,
        ``wall_ts`` the unix time stamped on the message.
        """
        if self._closed:
            return None
        full = self.heartbeat_due(now)
        metrics = None if full else aggregator.changed()
        if metrics is not None and not metrics:
            return None
        snapshot = aggregator.snapshot(wall_ts)
        if metrics is None:
            metrics = list(snapshot.metrics)
        message = self.build_message(snapshot, metrics, full)
        if not self.write(message):
            return None
        aggregator.mark_published(snapshot, metrics)
        if full:
            self._last_full = now
        return message

    @staticmethod
    def build_message(
        snapshot: Snapshot, metrics: list[str], full: bool
    ) -> dict[str, Any]:
        return {
            "type": "snapshot" if full else "delta",
            "ts": int(snapshot.ts * 1000),
            "metrics": snapshot.to_json(metrics),
        }

    def write(self, message: dict[str, Any]) -> bool:
        if self._closed:
            return False
        if self.validate_schema and self._published == 0:
            schema_errors = validate_message(message)
            if schema_errors:
                self.logger.warning(
                    "Schema validation failed with %s errors.", len(schema_errors)
                )
                self.logger.debug("Schema errors: %s", schema_errors)
            else:
                self.logger.info("Schema validation passed.")
        line = json.dumps(message, separators=(",", ":"))
        self.logger.log(TRACE_LEVEL, "Publishing %s", line)
        try:
            self.stream.write(line + "\n")
            self.stream.flush()
        except BrokenPipeError:
            self.logger.info("Output consumer went away; stopping publication.")
            self._closed = True
            return False
        self._published += 1
        return True
