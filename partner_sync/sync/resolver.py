"""
Identity resolution between remote records and local rows.

An IdentityIndex is built once per run from a full table read and thrown
away afterwards. Candidate keys are tried in priority order:

1. exact remote ID
2. exact external CRM ID
3. 15-character prefix of an 18-character CRM ID against stored
   15-character IDs (never the reverse)
4. case-insensitive natural key (display name for partners, email for
   contacts)

Keys 2-4 only adopt rows that are not yet bound to a remote ID. They
exist so records created before remote-ID tracking are picked up instead
of duplicated; a row already bound to another remote record is never
taken over by a fallback key.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from partner_sync.utils.normalization import (
    SHORT_CRM_ID_LENGTH,
    name_key,
    short_crm_id,
)

logger = logging.getLogger(__name__)


class MatchKey(str, Enum):
    """Which candidate key produced a match."""

    REMOTE_ID = "remote_id"
    CRM_ID = "crm_id"
    CRM_ID_PREFIX = "crm_id_prefix"
    NAME = "name"
    EMAIL = "email"


@dataclass(frozen=True)
class Match:
    """A resolved local row and the key that found it."""

    row: dict[str, Any]
    key: MatchKey

    @property
    def local_id(self) -> int:
        return int(self.row["id"])

    @property
    def was_active(self) -> bool:
        return bool(self.row.get("is_active"))


class IdentityIndex:
    """
    In-memory lookup tables over one entity table.

    Rows are expected oldest/inactive first (see
    SyncDatabase.get_all_records); when several rows share a key the
    later row is preferred, so active rows win over soft-deleted ones.

    Usage:
        index = IdentityIndex(db.get_all_records("partners"),
                              natural_column="account_name",
                              natural_key=MatchKey.NAME)
        match = index.resolve(remote_id, crm_id, name)
    """

    def __init__(
        self,
        rows: list[dict[str, Any]],
        natural_column: Optional[str] = None,
        natural_key: MatchKey = MatchKey.NAME,
    ):
        self.natural_column = natural_column
        self.natural_key = natural_key
        self._rows: dict[int, dict[str, Any]] = {}
        self._by_remote_id: dict[str, int] = {}
        self._by_crm_id: dict[str, list[int]] = defaultdict(list)
        self._by_short_crm_id: dict[str, list[int]] = defaultdict(list)
        self._by_natural: dict[str, list[int]] = defaultdict(list)

        for row in rows:
            self._add(row)

    def __len__(self) -> int:
        return len(self._rows)

    def _natural_value(self, value: Any) -> Optional[str]:
        return name_key(value)

    def _add(self, row: dict[str, Any]) -> None:
        local_id = int(row["id"])
        self._rows[local_id] = row

        remote_id = row.get("remote_id")
        if remote_id:
            current = self._by_remote_id.get(str(remote_id))
            # an active row keeps the key against a later soft-deleted one
            keep_current = (
                current is not None
                and self._rows[current].get("is_active")
                and not row.get("is_active")
            )
            if not keep_current:
                self._by_remote_id[str(remote_id)] = local_id

        crm_id = row.get("crm_id")
        if crm_id:
            self._by_crm_id[crm_id].append(local_id)
            if len(crm_id) == SHORT_CRM_ID_LENGTH:
                self._by_short_crm_id[crm_id].append(local_id)

        if self.natural_column:
            key = self._natural_value(row.get(self.natural_column))
            if key:
                self._by_natural[key].append(local_id)

    def _remove_keys(self, local_id: int) -> None:
        row = self._rows.get(local_id)
        if row is None:
            return
        remote_id = row.get("remote_id")
        if remote_id and self._by_remote_id.get(str(remote_id)) == local_id:
            del self._by_remote_id[str(remote_id)]
        crm_id = row.get("crm_id")
        if crm_id:
            self._discard(self._by_crm_id, crm_id, local_id)
            self._discard(self._by_short_crm_id, crm_id, local_id)
        if self.natural_column:
            key = self._natural_value(row.get(self.natural_column))
            if key:
                self._discard(self._by_natural, key, local_id)

    @staticmethod
    def _discard(table: dict[str, list[int]], key: str, local_id: int) -> None:
        ids = table.get(key)
        if ids and local_id in ids:
            ids.remove(local_id)
            if not ids:
                del table[key]

    def _first_unbound(self, candidates: list[int]) -> Optional[dict[str, Any]]:
        for local_id in reversed(candidates):
            row = self._rows[local_id]
            if not row.get("remote_id"):
                return row
        return None

    def resolve(
        self,
        remote_id: str,
        crm_id: Optional[str] = None,
        natural_value: Optional[str] = None,
    ) -> Optional[Match]:
        """
        Find the local row for a remote record.

        Args:
            remote_id: Remote record ID
            crm_id: External CRM ID, if any
            natural_value: Display name or email, if any

        Returns:
            Match, or None when the record is new
        """
        local_id = self._by_remote_id.get(str(remote_id))
        if local_id is not None:
            return Match(self._rows[local_id], MatchKey.REMOTE_ID)

        if crm_id:
            row = self._first_unbound(self._by_crm_id.get(crm_id, []))
            if row is not None:
                return Match(row, MatchKey.CRM_ID)

            prefix = short_crm_id(crm_id)
            if prefix:
                row = self._first_unbound(self._by_short_crm_id.get(prefix, []))
                if row is not None:
                    return Match(row, MatchKey.CRM_ID_PREFIX)

        if self.natural_column and natural_value:
            key = self._natural_value(natural_value)
            candidates = self._by_natural.get(key, []) if key else []
            row = self._first_unbound(candidates)
            if row is not None:
                return Match(row, self.natural_key)
            if candidates:
                logger.debug(
                    f"{self.natural_key.value} {natural_value!r} for remote record "
                    f"{remote_id} matches rows already bound to other remote IDs"
                )

        return None

    def record_write(self, local_id: int, values: dict[str, Any]) -> None:
        """
        Reflect a write in the index so later records in the run see it.

        Args:
            local_id: Row that was inserted or updated
            values: Columns written; the row is active afterwards
        """
        row = dict(self._rows.get(local_id, {"id": local_id}))
        row.update(values)
        row["is_active"] = 1
        row["deleted_at"] = None
        self._remove_keys(local_id)
        self._add(row)


class PartnerLookup:
    """
    Resolves a child record's owning partner.

    Lookups by remote account ID come first, then case-insensitive
    account name. Active partners win over soft-deleted ones.
    """

    def __init__(self, partner_rows: list[dict[str, Any]]):
        self._by_remote_id: dict[str, int] = {}
        self._by_name: dict[str, int] = {}
        ordered = sorted(
            partner_rows, key=lambda r: (bool(r.get("is_active")), r["id"])
        )
        for row in ordered:
            if row.get("remote_id"):
                self._by_remote_id[str(row["remote_id"])] = int(row["id"])
            key = name_key(row.get("account_name"))
            if key:
                self._by_name[key] = int(row["id"])

    def resolve(
        self, account_remote_id: Optional[str], account_name: Optional[str] = None
    ) -> Optional[int]:
        """Return the owning partner's local ID, or None."""
        if account_remote_id and account_remote_id in self._by_remote_id:
            return self._by_remote_id[account_remote_id]
        key = name_key(account_name)
        if key:
            return self._by_name.get(key)
        return None
