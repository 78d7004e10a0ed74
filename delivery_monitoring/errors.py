"""
Exception hierarchy for the delivery monitoring store.

Driver-level failures (psycopg errors, sqlite errors in tests) are never wrapped:
they propagate unchanged to the caller.
"""

from __future__ import annotations


class MonitoringError(Exception):
    """Base class for errors raised by this package."""


class CriteriaError(MonitoringError, ValueError):
    """An expression node was built with an unusable key, operator or value."""


class SchemaError(MonitoringError):
    """The monitoring tables are missing or could not be introspected."""


__all__ = ["MonitoringError", "CriteriaError", "SchemaError"]
