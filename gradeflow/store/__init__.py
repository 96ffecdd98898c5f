"""
Persistence Module.

Provides the data store interface plus in-memory and SQLAlchemy backends.
"""

from gradeflow.store.base import AuditFilter, DataStore, StoreError
from gradeflow.store.memory import InMemoryDataStore
from gradeflow.store.sql import SqlDataStore

__all__ = [
    "AuditFilter",
    "DataStore",
    "InMemoryDataStore",
    "SqlDataStore",
    "StoreError",
]
