"""
Adapters for the Clinic API's external dependencies.
"""

from .record_store import COLLECTIONS, InMemoryRecordStore

__all__ = [
    "COLLECTIONS",
    "InMemoryRecordStore",
]
