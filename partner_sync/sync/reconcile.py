"""
Set-difference reconciliation between fetched remote IDs and active rows.

An active local row whose remote ID is not among the run's valid remote
IDs is a removal. If the remote system still returned the record but the
filter rejected it, the reason is "filtered"; if it was not returned at
all, the reason is "vanished". Vanished removals are only detected on
full runs, since an incremental fetch never returns unchanged records.
"""

from collections.abc import Iterable
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any


class RemovalReason(str, Enum):
    """Why an active row is being soft-deleted."""

    FILTERED = "filtered"
    VANISHED = "vanished"


@dataclass(frozen=True)
class Removal:
    """One active local row that no longer has an eligible remote record."""

    local_id: int
    remote_id: str
    label: str
    reason: RemovalReason

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["reason"] = self.reason.value
        return data


def find_removals(
    active_rows: Iterable[dict[str, Any]],
    valid_ids: set[str],
    filtered_ids: set[str],
    full_sync: bool = True,
    label_column: str = "remote_id",
) -> list[Removal]:
    """
    Detect active rows that must be soft-deleted.

    Rows without a remote ID are never removed here.

    Args:
        active_rows: Active rows of one entity table, read after upserts
        valid_ids: Remote IDs the run treats as present and eligible
        filtered_ids: Remote IDs fetched but rejected by the filter
        full_sync: Whether the fetch covered the whole remote collection
        label_column: Column used to label removals in logs

    Returns:
        Removals in row order
    """
    removals = []
    for row in active_rows:
        remote_id = row.get("remote_id")
        if not remote_id or remote_id in valid_ids:
            continue

        if remote_id in filtered_ids:
            reason = RemovalReason.FILTERED
        elif full_sync:
            reason = RemovalReason.VANISHED
        else:
            continue

        removals.append(
            Removal(
                local_id=int(row["id"]),
                remote_id=str(remote_id),
                label=str(row.get(label_column) or remote_id),
                reason=reason,
            )
        )
    return removals
