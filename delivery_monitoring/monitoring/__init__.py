"""
Monitoring package: the two-table store, its schema descriptor and the
criteria language used to query it.
"""

from delivery_monitoring.monitoring.criteria import (
    And,
    Compare,
    Criteria,
    Operator,
    Or,
    compile_criteria,
    parse_criteria,
)
from delivery_monitoring.monitoring.schema import MonitoringSchema, create_tables
from delivery_monitoring.monitoring.store import DeliveryMonitoringStore

__all__ = [
    "And",
    "Compare",
    "Criteria",
    "DeliveryMonitoringStore",
    "MonitoringSchema",
    "Operator",
    "Or",
    "compile_criteria",
    "create_tables",
    "parse_criteria",
]
