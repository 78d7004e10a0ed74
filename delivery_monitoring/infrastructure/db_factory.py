"""
PostgreSQL connectivity for the delivery monitoring store.

`PoolManager` keeps one `ConnectionPool` per conninfo for the whole process and
closes them at interpreter exit. One-off connections (health checks, schema
creation) go through `get_sync_connection`, which retries transient failures
with tenacity.
"""

from __future__ import annotations

import atexit
import logging
import threading
from typing import Dict, Optional

import psycopg
from psycopg import Connection
from psycopg.conninfo import make_conninfo
from psycopg_pool import ConnectionPool
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from delivery_monitoring.config import Settings, get_settings
from delivery_monitoring.utils.logging import get_logger

log = get_logger(__name__)

APPLICATION_NAME = "delivery-monitoring"


def build_dsn(settings: Optional[Settings] = None) -> str:
    """Keyword/value conninfo for the configured database."""
    settings = settings or get_settings()
    return make_conninfo(
        host=settings.db_host,
        port=settings.db_port,
        dbname=settings.db_name,
        user=settings.db_user,
        password=settings.db_password,
        application_name=f"{APPLICATION_NAME}-{settings.app_env}",
    )


class PoolManager:
    """
    Process-wide registry of connection pools keyed by conninfo.

    Pools open lazily on first request. `close_all` is registered with atexit
    when the singleton is created.
    """

    _instance: Optional["PoolManager"] = None
    _lock = threading.Lock()
    _pools: Dict[str, ConnectionPool]

    def __new__(cls) -> "PoolManager":
        with cls._lock:
            if cls._instance is None:
                instance = super().__new__(cls)
                instance._pools = {}
                atexit.register(instance.close_all)
                cls._instance = instance
            return cls._instance

    def get_sync_pool(
        self,
        conninfo: Optional[str] = None,
        min_size: Optional[int] = None,
        max_size: Optional[int] = None,
    ) -> ConnectionPool:
        """
        Return the pool for `conninfo`, opening it on first use.

        Parameters
        ----------
        conninfo : str, optional
            Target database. Defaults to `build_dsn()`.
        min_size, max_size : int, optional
            Pool bounds, only used when the pool is created. Default to settings.
        """
        settings = get_settings()
        conninfo = conninfo or build_dsn(settings)
        with self._lock:
            pool = self._pools.get(conninfo)
            if pool is None:
                pool = ConnectionPool(
                    conninfo=conninfo,
                    min_size=min_size or settings.db_pool_min_size,
                    max_size=max_size or settings.db_pool_max_size,
                    check=ConnectionPool.check_connection,
                    name=f"{APPLICATION_NAME}-{len(self._pools)}",
                    open=True,
                )
                self._pools[conninfo] = pool
                log.debug(
                    "Connection pool opened",
                    extra={"pool": pool.name, "min_size": pool.min_size, "max_size": pool.max_size},
                )
            return pool

    def close_all(self) -> None:
        """Close every pool opened so far."""
        with self._lock:
            pools = list(self._pools.values())
            self._pools = {}
        for pool in pools:
            try:
                pool.close()
            except Exception:
                log.debug("Connection pool close failed", extra={"pool": pool.name}, exc_info=True)


@retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    retry=retry_if_exception_type((psycopg.OperationalError, psycopg.InterfaceError)),
    before_sleep=before_sleep_log(log, logging.WARNING),
    reraise=True,
)
def get_sync_connection(dsn: Optional[str] = None) -> Connection:
    """
    Open a dedicated connection outside the pool.

    Raises
    ------
    psycopg.OperationalError
        If the database is still unreachable after the third attempt.
    """
    return psycopg.connect(dsn or build_dsn())


def get_sync_pool(
    conninfo: Optional[str] = None,
    min_size: Optional[int] = None,
    max_size: Optional[int] = None,
) -> ConnectionPool:
    return PoolManager().get_sync_pool(conninfo=conninfo, min_size=min_size, max_size=max_size)


__all__ = [
    "APPLICATION_NAME",
    "PoolManager",
    "build_dsn",
    "get_sync_connection",
    "get_sync_pool",
]
