from __future__ import annotations


class StatusTapError(Exception):
    """Base class for status-tap errors."""


class ConfigError(StatusTapError):
    """Raised when the configuration file holds an invalid value."""


class SchedulerInitError(StatusTapError):
    """Raised when the scheduler cannot be started at all."""


class CollectorFailure(StatusTapError):
    """Base class for failures raised by a single collector invocation."""


class TransientReadFailure(CollectorFailure):
    """A source was momentarily unreadable; retried on the next due tick."""


class PermanentUnavailable(CollectorFailure):
    """The capability is absent on this machine (no battery, no sensor)."""


class CounterAnomaly(CollectorFailure):
    """A monotonic counter went backwards; the interval is skipped."""


class TimeoutFailure(TransientReadFailure):
    """A blocking collector missed its deadline."""
