"""
Infrastructure package for the delivery monitoring store.

Centralizes database connectivity concerns (pooling, the persistence handle).
Keep this layer focused on I/O and resource management, decoupled from the
monitoring store's query logic.
"""

from delivery_monitoring.infrastructure.db_factory import (
    PoolManager,
    build_dsn,
    get_sync_connection,
    get_sync_pool,
)
from delivery_monitoring.infrastructure.persistence import (
    MonitoringPersistence,
    PsycopgPersistence,
)

__all__ = [
    "MonitoringPersistence",
    "PoolManager",
    "PsycopgPersistence",
    "build_dsn",
    "get_sync_connection",
    "get_sync_pool",
]
