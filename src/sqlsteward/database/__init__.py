"""
Database package for sqlsteward.

This package provides:
- Async PostgreSQL connection pooling
- Clearing schemas for from-scratch rebuilds
- Deleting table data and raising sequences on test databases
"""

from .connection import ConnectionConfig, ConnectionPool
from .cleaner import DataCleaner, SchemaCleaner
from .sequences import SequenceUpdater

__all__ = [
    "ConnectionConfig",
    "ConnectionPool",
    "DataCleaner",
    "SchemaCleaner",
    "SequenceUpdater",
]
