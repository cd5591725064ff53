from __future__ import annotations


class ConfigurationError(ValueError):
    """Raised when steps, records or the explorer configuration cannot produce a graph."""


class DataUnavailableError(RuntimeError):
    """Raised when the record table has not loaded or the data source failed."""


class SelectionMiscomputedWarning(UserWarning):
    """A selection parameter resolved to nothing; callers fall back to no restriction."""
