"""
Delivery Monitoring - live state store for proctored test sessions.

This package persists monitoring snapshots of delivery executions in a hybrid
relational/key-value layout and lets dashboards query them:

- A primary table with one column per known attribute
- A key/value table for attributes the schema does not know about
- A criteria language that queries both kinds of attribute uniformly
- Hand-off of irregularity report generation to a task queue
"""

from __future__ import annotations

__version__ = "0.1.0"

# Public API exports
from delivery_monitoring.config import Settings, get_settings
from delivery_monitoring.domain.models import FindOptions, MonitoringRecord
from delivery_monitoring.errors import CriteriaError, MonitoringError, SchemaError
from delivery_monitoring.infrastructure.persistence import (
    MonitoringPersistence,
    PsycopgPersistence,
)
from delivery_monitoring.monitoring.criteria import (
    And,
    Compare,
    Operator,
    Or,
    parse_criteria,
)
from delivery_monitoring.monitoring.schema import MonitoringSchema, create_tables
from delivery_monitoring.monitoring.store import DeliveryMonitoringStore
from delivery_monitoring.reports import IrregularityReportService, TaskQueue
from delivery_monitoring.utils.logging import configure_logging, get_logger

__all__ = [
    # Version info
    "__version__",
    # Configuration
    "Settings",
    "get_settings",
    # Models
    "FindOptions",
    "MonitoringRecord",
    # Errors
    "CriteriaError",
    "MonitoringError",
    "SchemaError",
    # Persistence
    "MonitoringPersistence",
    "PsycopgPersistence",
    # Store and criteria
    "And",
    "Compare",
    "DeliveryMonitoringStore",
    "MonitoringSchema",
    "Operator",
    "Or",
    "create_tables",
    "parse_criteria",
    # Reports
    "IrregularityReportService",
    "TaskQueue",
    # Logging
    "configure_logging",
    "get_logger",
]
