"""Error taxonomy shared by the core, the shell and the back-tester.

Insufficient history is not an error: the feature engine returns None
and callers filter those rows out.
"""


class ForecastError(Exception):
    """Base class for all forecasting errors."""


class InvalidArgumentError(ForecastError, ValueError):
    """Malformed or out-of-range input (empty arrays, negative prices, ...)."""


class NotFoundError(ForecastError, LookupError):
    """Timestamp before the known range, unknown node id, missing slot."""


class InvalidStateError(ForecastError, RuntimeError):
    """Zero-weight ensemble, unknown precision, unfitted model."""


class FeedError(ForecastError):
    """Market data feed returned a payload that could not be parsed."""
