"""Errors raised by the metrics engine.

Caller errors leave stored state untouched. ``StoreUnavailable`` is the only
condition that is not the caller's fault and may be retried.
"""


class MetricsError(Exception):
    """Base class for all engine errors."""

    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidReading(MetricsError):
    status_code = 422


class InvalidPrediction(MetricsError):
    status_code = 422


class DuplicatePrediction(MetricsError):
    status_code = 409


class UnknownOrResolvedPrediction(MetricsError):
    status_code = 409


class InvalidFrequency(MetricsError):
    status_code = 422


class InvalidPattern(MetricsError):
    status_code = 422


class StoreUnavailable(MetricsError):
    """The backing store could not be reached. Safe to retry."""

    status_code = 503
