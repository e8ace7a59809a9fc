"""
Offboarding cascade into the learning platform.

When a partner or contact is soft-deleted locally, its learning platform
access is revoked:

- Partner: every linked contact's identity leaves the shared
  cross-partner group, then the partner's own group is deleted.
- Contact: its identity leaves its partner group and the shared group.

Every step's outcome is captured in an OffboardResult instead of raising,
so the reconciliation loop can carry on and report partial success. The
local soft-delete is never rolled back; a failed cascade can be retried
with the offboard-partner / offboard-contact commands.
"""

import logging
import sqlite3
from dataclasses import asdict, dataclass, field
from typing import Any, Optional

from partner_sync.api.http import TransportError
from partner_sync.api.lms_api import LMSClient, MembershipResult
from partner_sync.storage.db import SyncDatabase
from partner_sync.utils.logging import get_audit_logger

# Name of the group every partner user belongs to
DEFAULT_SHARED_GROUP_NAME = "All Partners"

logger = logging.getLogger(__name__)


@dataclass
class OffboardStep:
    """Outcome of one cascade step."""

    name: str
    success: bool
    detail: str = ""


@dataclass
class OffboardResult:
    """
    Outcome of offboarding one partner or contact.

    Attributes:
        entity_type: "partner" or "contact"
        local_id: Local row ID
        success: False if any step failed
        memberships_removed: Learning platform memberships revoked
        group_deleted: Whether a partner group was deleted
        steps: Per-step outcomes in execution order
    """

    entity_type: str
    local_id: int
    success: bool = True
    memberships_removed: int = 0
    group_deleted: bool = False
    steps: list[OffboardStep] = field(default_factory=list)

    def add_step(self, name: str, success: bool, detail: str = "") -> None:
        self.steps.append(OffboardStep(name, success, detail))
        if not success:
            self.success = False

    @property
    def errors(self) -> list[str]:
        return [
            f"{step.name}: {step.detail}" for step in self.steps if not step.success
        ]

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class AccessRestoreResult:
    """Outcome of re-adding contacts to the shared group."""

    added: int = 0
    skipped: list[int] = field(default_factory=list)
    failed: list[tuple[str, str]] = field(default_factory=list)


class Offboarder:
    """
    Runs offboarding cascades against the learning platform.

    Usage:
        offboarder = Offboarder(db, lms_client)
        result = offboarder.offboard_partner(partner_id)
        if not result.success:
            print(result.errors)
    """

    def __init__(
        self,
        database: SyncDatabase,
        lms_client: Optional[LMSClient],
        shared_group_name: str = DEFAULT_SHARED_GROUP_NAME,
        audit_logger: Optional[logging.Logger] = None,
    ):
        """
        Args:
            database: Local database holding contacts and the group mirror
            lms_client: Learning platform client, or None when not configured
                        (cascades with access to revoke then fail and stay
                        retryable)
            shared_group_name: Name of the shared cross-partner group
            audit_logger: Logger for step outcomes (default: audit logger)
        """
        self.database = database
        self.lms_client = lms_client
        self.shared_group_name = shared_group_name
        self.audit = audit_logger or get_audit_logger()

    # =========================================================================
    # Partner
    # =========================================================================

    def offboard_partner(self, partner_id: int) -> OffboardResult:
        """
        Revoke shared-group access for a partner's users and delete its group.

        Args:
            partner_id: Local partner ID

        Returns:
            OffboardResult with per-step outcomes
        """
        result = OffboardResult("partner", partner_id)
        partner: Optional[dict[str, Any]] = None
        try:
            partner = self.database.get_record("partners", partner_id)
            if partner is None:
                result.add_step("lookup", False, f"partner {partner_id} not found")
                return self._finish(result)

            contacts = self.database.get_lms_linked_contacts(partner_id)
            lms_user_ids = [c["lms_user_id"] for c in contacts]
            group = self.database.get_partner_lms_group(partner_id)
            if (lms_user_ids or group) and not self._has_client(result):
                return self._finish(result, partner.get("account_name"))

            self._remove_from_shared_group(result, lms_user_ids)
            self._delete_partner_group(result, group)
        except sqlite3.Error as e:
            result.add_step("database", False, str(e))

        return self._finish(result, partner.get("account_name") if partner else None)

    def _delete_partner_group(
        self, result: OffboardResult, group: Optional[dict[str, Any]]
    ) -> None:
        if group is None:
            result.add_step("partner_group", True, "no partner group mirrored")
            return

        group_id = group["lms_group_id"]
        try:
            deleted = self.lms_client.delete_group(group_id)  # type: ignore[union-attr]
        except TransportError as e:
            # keep the mirror row so a retry can find the group again
            result.add_step("partner_group", False, f"delete {group_id} failed: {e}")
            return

        self.database.delete_lms_group(group_id)
        result.group_deleted = deleted
        detail = f"deleted {group_id}" if deleted else f"{group_id} already absent"
        result.add_step("partner_group", True, detail)

    # =========================================================================
    # Contact
    # =========================================================================

    def offboard_contact(self, contact_id: int) -> OffboardResult:
        """
        Remove a contact's identity from its partner group and the shared group.

        A contact without a learning platform identity needs no cascade and
        succeeds immediately.

        Args:
            contact_id: Local contact ID

        Returns:
            OffboardResult with per-step outcomes
        """
        result = OffboardResult("contact", contact_id)
        contact: Optional[dict[str, Any]] = None
        try:
            contact = self.database.get_record("contacts", contact_id)
            if contact is None:
                result.add_step("lookup", False, f"contact {contact_id} not found")
                return self._finish(result)

            lms_user_id = contact.get("lms_user_id")
            if not lms_user_id:
                result.add_step("lms_link", True, "no learning platform identity")
                return self._finish(result, contact.get("email"))
            if not self._has_client(result):
                return self._finish(result, contact.get("email"))

            partner_id = contact.get("partner_id")
            group = (
                self.database.get_partner_lms_group(partner_id) if partner_id else None
            )
            if group is None:
                result.add_step("partner_group", True, "no partner group mirrored")
            else:
                membership = self.lms_client.remove_members(  # type: ignore[union-attr]
                    group["lms_group_id"], [lms_user_id]
                )
                self._record_membership(result, "partner_group", membership)

            self._remove_from_shared_group(result, [lms_user_id])
        except sqlite3.Error as e:
            result.add_step("database", False, str(e))

        return self._finish(result, contact.get("email") if contact else None)

    # =========================================================================
    # Maintenance
    # =========================================================================

    def restore_shared_access(self, contact_ids: list[int]) -> AccessRestoreResult:
        """
        Re-add contacts' learning platform identities to the shared group.

        Contacts that do not exist, are inactive or have no identity are
        skipped.

        Raises:
            TransportError: If the learning platform is not configured or
                            the shared group is not mirrored locally
        """
        if self.lms_client is None:
            raise TransportError("Learning platform client is not configured")
        group = self.database.get_lms_group_by_name(self.shared_group_name)
        if group is None:
            raise TransportError(
                f"Shared group {self.shared_group_name!r} is not mirrored locally"
            )

        outcome = AccessRestoreResult()
        lms_user_ids = []
        for contact_id in contact_ids:
            contact = self.database.get_record("contacts", contact_id)
            if not contact or not contact["is_active"] or not contact["lms_user_id"]:
                outcome.skipped.append(contact_id)
                continue
            lms_user_ids.append(contact["lms_user_id"])

        if lms_user_ids:
            membership = self.lms_client.add_members(
                group["lms_group_id"], lms_user_ids
            )
            outcome.added = len(membership.succeeded)
            outcome.failed = membership.failed
            self.audit.info(
                f"RESTORE shared group {group['lms_group_id']}: "
                f"added={outcome.added} failed={len(outcome.failed)}"
            )
        return outcome

    # =========================================================================
    # Helpers
    # =========================================================================

    def _has_client(self, result: OffboardResult) -> bool:
        if self.lms_client is None:
            result.add_step("lms_client", False, "learning platform not configured")
            return False
        return True

    def _remove_from_shared_group(
        self, result: OffboardResult, lms_user_ids: list[str]
    ) -> None:
        if not lms_user_ids:
            result.add_step("shared_group", True, "no linked identities")
            return

        group = self.database.get_lms_group_by_name(self.shared_group_name)
        if group is None:
            result.add_step(
                "shared_group",
                False,
                f"shared group {self.shared_group_name!r} is not mirrored locally",
            )
            return

        membership = self.lms_client.remove_members(  # type: ignore[union-attr]
            group["lms_group_id"], lms_user_ids
        )
        self._record_membership(result, "shared_group", membership)

    @staticmethod
    def _record_membership(
        result: OffboardResult, step: str, membership: MembershipResult
    ) -> None:
        result.memberships_removed += len(membership.succeeded)
        if membership.ok:
            result.add_step(step, True, f"removed {len(membership.succeeded)}")
        else:
            failed = ", ".join(pid for pid, _ in membership.failed)
            result.add_step(
                step,
                False,
                f"removed {len(membership.succeeded)}, failed for {failed}",
            )

    def _finish(
        self, result: OffboardResult, label: Optional[str] = None
    ) -> OffboardResult:
        name = f"{result.entity_type} {result.local_id}"
        if label:
            name += f" ({label})"
        for step in result.steps:
            level = logging.INFO if step.success else logging.ERROR
            self.audit.log(level, f"OFFBOARD {name} {step.name}: {step.detail}")

        if result.success:
            logger.info(
                f"Offboarded {name}: {result.memberships_removed} memberships removed"
                f"{', group deleted' if result.group_deleted else ''}"
            )
        else:
            logger.error(f"Offboarding {name} incomplete: {'; '.join(result.errors)}")
        return result
