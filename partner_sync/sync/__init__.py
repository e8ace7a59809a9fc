"""
partner_sync.sync - Reconciliation pipeline

Eligibility filtering, identity resolution, upserts, set-difference
reconciliation and the learning platform offboarding cascade.
"""

from partner_sync.sync.engine import SyncEngine, SyncResult, SyncStats
from partner_sync.sync.offboarding import Offboarder, OffboardResult

__all__ = [
    "Offboarder",
    "OffboardResult",
    "SyncEngine",
    "SyncResult",
    "SyncStats",
]
