"""
partner_sync.storage - Persistence module

SQLite storage for reconciled entities and the sync run ledger.
"""

from partner_sync.storage.db import SyncDatabase
from partner_sync.storage.ledger import (
    SyncLedger,
    SyncMode,
    SyncRun,
    SyncRunStatus,
    SyncType,
)

__all__ = [
    "SyncDatabase",
    "SyncLedger",
    "SyncMode",
    "SyncRun",
    "SyncRunStatus",
    "SyncType",
]
