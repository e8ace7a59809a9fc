"""
Append-only sync run ledger.

Every run appends exactly one row when it finishes, completed or failed.
Rows are never updated afterwards. The completion time of the latest
completed run of a type is the next incremental boundary for that type.
"""

import json
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from partner_sync.storage.db import (
    SyncDatabase,
    from_db_timestamp,
    to_db_timestamp,
    utc_now,
)

logger = logging.getLogger(__name__)


class SyncType(str, Enum):
    """Entity pipelines, in the order they must run."""

    ACCOUNTS = "accounts"
    CONTACTS = "contacts"
    LEADS = "leads"


class SyncMode(str, Enum):
    """Whether a run covers the whole remote dataset or recent changes only."""

    FULL = "full"
    INCREMENTAL = "incremental"


class SyncRunStatus(str, Enum):
    """Run lifecycle. RUNNING only exists on the in-memory run."""

    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


# Counter names persisted as ledger columns
COUNTER_FIELDS = (
    "processed",
    "created",
    "updated",
    "reactivated",
    "soft_deleted",
    "failed",
)


@dataclass
class SyncRun:
    """
    One sync run, from start to its ledger row.

    Attributes:
        sync_type: Entity pipeline the run covers
        mode: Effective mode (an incremental request with no boundary runs full)
        id: Opaque run identifier
        status: Current lifecycle status
        counters: Counter name to value, see COUNTER_FIELDS
        details: Free-form structured detail payload
        started_at: Run start time
        completed_at: Completion time, set only when the run completes
    """

    sync_type: SyncType
    mode: SyncMode
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    status: SyncRunStatus = SyncRunStatus.RUNNING
    counters: dict[str, int] = field(
        default_factory=lambda: dict.fromkeys(COUNTER_FIELDS, 0)
    )
    details: dict[str, Any] = field(default_factory=dict)
    started_at: datetime = field(default_factory=utc_now)
    completed_at: Optional[datetime] = None

    def complete(self) -> None:
        """Mark the run completed and stamp its completion time."""
        self.status = SyncRunStatus.COMPLETED
        self.completed_at = utc_now()

    def fail(self, error: BaseException) -> None:
        """Mark the run failed. Failed runs have no completion time."""
        self.status = SyncRunStatus.FAILED
        self.completed_at = None
        self.details["error"] = str(error)
        self.details["error_type"] = type(error).__name__

    @property
    def finished(self) -> bool:
        return self.status != SyncRunStatus.RUNNING

    def to_row(self) -> dict[str, Any]:
        """Convert to a ledger row."""
        row: dict[str, Any] = {
            "id": self.id,
            "sync_type": self.sync_type.value,
            "mode": self.mode.value,
            "status": self.status.value,
            "details": json.dumps(self.details, default=str, sort_keys=True),
            "started_at": to_db_timestamp(self.started_at),
            "completed_at": to_db_timestamp(self.completed_at),
        }
        for name in COUNTER_FIELDS:
            row[name] = int(self.counters.get(name, 0))
        return row

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "SyncRun":
        """Rebuild a run from a ledger row."""
        details = json.loads(row["details"]) if row.get("details") else {}
        started_at = from_db_timestamp(row["started_at"])
        return cls(
            sync_type=SyncType(row["sync_type"]),
            mode=SyncMode(row["mode"]),
            id=row["id"],
            status=SyncRunStatus(row["status"]),
            counters={name: int(row.get(name) or 0) for name in COUNTER_FIELDS},
            details=details,
            started_at=started_at if started_at is not None else utc_now(),
            completed_at=from_db_timestamp(row.get("completed_at")),
        )

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.completed_at is None:
            return None
        return (self.completed_at - self.started_at).total_seconds()


class SyncLedger:
    """
    Read and append access to the sync_runs table.

    Usage:
        ledger = SyncLedger(db)
        boundary = ledger.last_success(SyncType.ACCOUNTS)
        ...
        run.complete()
        ledger.log_run(run)
    """

    def __init__(self, database: SyncDatabase):
        self.database = database

    def last_success(self, sync_type: SyncType) -> Optional[datetime]:
        """
        Get the completion time of the latest completed run of a type.

        Returns:
            The incremental boundary, or None when no run ever completed
        """
        return self.database.get_last_completed_at(SyncType(sync_type).value)

    def log_run(self, run: SyncRun) -> None:
        """
        Append a finished run to the ledger.

        Raises:
            ValueError: If the run is still running
        """
        if not run.finished:
            raise ValueError("Cannot log a run that has not finished")
        self.database.insert_sync_run(run.to_row())
        logger.debug(
            f"Logged {run.sync_type.value} run {run.id} ({run.status.value})"
        )

    def recent_runs(
        self, sync_type: Optional[SyncType] = None, limit: int = 10
    ) -> list[SyncRun]:
        """Get the most recent runs, newest first."""
        type_value = SyncType(sync_type).value if sync_type else None
        rows = self.database.get_sync_runs(type_value, limit)
        return [SyncRun.from_row(row) for row in rows]

    def last_run(self, sync_type: SyncType) -> Optional[SyncRun]:
        """Get the most recent run of a type, whatever its status."""
        runs = self.recent_runs(sync_type, limit=1)
        return runs[0] if runs else None
