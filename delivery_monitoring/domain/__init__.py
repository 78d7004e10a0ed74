"""
Domain package for the delivery monitoring store.

Exports the record and options models shared by the store, the CLI and the
report scheduler. Keep this package focused on data definitions and validation.
"""

from delivery_monitoring.domain.models import FindOptions, MonitoringRecord

__all__ = [
    "FindOptions",
    "MonitoringRecord",
]
