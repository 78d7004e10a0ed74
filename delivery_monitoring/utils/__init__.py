"""
Utilities package for the delivery monitoring store.

Exports shared helpers for logging and other cross-cutting concerns.
Keep this package lightweight and free of domain-specific logic.
"""

from delivery_monitoring.utils.logging import configure_logging, get_logger

__all__ = [
    "configure_logging",
    "get_logger",
]
