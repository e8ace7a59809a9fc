"""
Upsert writer for reconciled entity tables.

Writes one eligible remote record at a time. A matched row gets its
remote-owned columns replaced, is marked active and has deleted_at
cleared; local-only columns (lms_user_id) are never part of the write.
An unmatched record becomes a new row.
"""

import logging
import sqlite3
from enum import Enum
from typing import Any, Optional

from partner_sync.storage.db import SyncDatabase
from partner_sync.sync.resolver import IdentityIndex, Match, MatchKey

logger = logging.getLogger(__name__)

# Per-record failures caught by the writer
PERSISTENCE_ERRORS = (sqlite3.Error, ValueError, TypeError)


class WriteAction(str, Enum):
    """What happened to one record."""

    CREATED = "created"
    UPDATED = "updated"
    REACTIVATED = "reactivated"
    UNCHANGED = "unchanged"


def _differs(row: dict[str, Any], values: dict[str, Any]) -> bool:
    for column, value in values.items():
        stored = row.get(column)
        if stored is None and value is None:
            continue
        if stored is None or value is None or str(stored) != str(value):
            return True
    return False


class UpsertWriter:
    """
    Creates, updates and reactivates rows of one entity table.

    Attributes:
        database: Target database
        table: Entity table name
        index: The run's identity index; kept current after each write
        stats: Run statistics receiving counts and per-record errors

    Usage:
        writer = UpsertWriter(db, "partners", index, stats)
        for account in valid_accounts:
            writer.write(account.identifier, account.to_columns(),
                         account.remote_id, account.crm_id, account.name)
    """

    def __init__(
        self,
        database: SyncDatabase,
        table: str,
        index: IdentityIndex,
        stats: Any,
    ):
        self.database = database
        self.table = table
        self.index = index
        self.stats = stats

    def write(
        self,
        identifier: str,
        values: dict[str, Any],
        remote_id: str,
        crm_id: Optional[str] = None,
        natural_value: Optional[str] = None,
    ) -> Optional[WriteAction]:
        """
        Resolve and write one record.

        Failures are recorded on stats with the record's identifier and do
        not propagate.

        Args:
            identifier: Human-readable record identifier for error reports
            values: Remote-owned column values
            remote_id: Remote record ID
            crm_id: External CRM ID, if any
            natural_value: Display name or email for the last-resort match

        Returns:
            The action taken, or None if the write failed
        """
        self.stats.processed += 1
        try:
            match = self.index.resolve(remote_id, crm_id, natural_value)
            action = self._apply(values, match)
        except PERSISTENCE_ERRORS as e:
            logger.warning(f"Failed to write {self.table} record {identifier}: {e}")
            self.stats.record_failure(identifier, str(e))
            return None

        self._count(action, match)
        return action

    def _apply(self, values: dict[str, Any], match: Optional[Match]) -> WriteAction:
        if match is None:
            local_id = self.database.insert_record(self.table, values)
            self.index.record_write(local_id, values)
            return WriteAction.CREATED

        if match.was_active and not _differs(match.row, values):
            return WriteAction.UNCHANGED

        self.database.update_record(self.table, match.local_id, values)
        self.index.record_write(match.local_id, values)

        if match.key is not MatchKey.REMOTE_ID:
            logger.info(
                f"Adopted {self.table} row {match.local_id} for remote record "
                f"{values.get('remote_id')} via {match.key.value}"
            )

        return WriteAction.UPDATED if match.was_active else WriteAction.REACTIVATED

    def _count(self, action: WriteAction, match: Optional[Match]) -> None:
        if action is WriteAction.CREATED:
            self.stats.created += 1
        elif action is WriteAction.UPDATED:
            self.stats.updated += 1
        elif action is WriteAction.REACTIVATED:
            self.stats.reactivated += 1
        else:
            self.stats.unchanged += 1

        if match is not None and match.row.get("lms_user_id"):
            self.stats.lms_links_preserved += 1
