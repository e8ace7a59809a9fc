"""
Tests for the offboarding cascade.

Uses an in-memory database and a mocked learning platform client.
"""

from unittest.mock import MagicMock

import pytest

from partner_sync.api.http import TransportError
from partner_sync.api.lms_api import LMSAPIError, LMSClient, MembershipResult
from partner_sync.storage.db import SyncDatabase
from partner_sync.sync.offboarding import Offboarder


@pytest.fixture
def db():
    database = SyncDatabase(":memory:")
    database.initialize()
    return database


@pytest.fixture
def lms():
    client = MagicMock(spec=LMSClient)
    client.remove_members.side_effect = lambda group_id, ids: MembershipResult(
        succeeded=list(ids)
    )
    client.add_members.side_effect = lambda group_id, ids: MembershipResult(
        succeeded=list(ids)
    )
    client.delete_group.return_value = True
    return client


@pytest.fixture
def partner(db):
    """A partner with two linked contacts, one unlinked, and both groups."""
    partner_id = db.insert_record(
        "partners", {"remote_id": "10", "account_name": "Acme Corp"}
    )
    for remote_id, email, lms_user_id in (
        ("c1", "jane@acme.com", "p1"),
        ("c2", "john@acme.com", "p2"),
        ("c3", "ann@acme.com", None),
    ):
        contact_id = db.insert_record(
            "contacts",
            {"remote_id": remote_id, "partner_id": partner_id, "email": email},
        )
        if lms_user_id:
            db.link_contact_lms_user(contact_id, lms_user_id)
    db.register_lms_group("g-shared", "All Partners")
    db.register_lms_group("g-acme", "Acme Corp", partner_id)
    return partner_id


def make_offboarder(db, lms_client):
    return Offboarder(db, lms_client, audit_logger=MagicMock())


def contact_id_for(db, remote_id):
    return next(
        row["id"]
        for row in db.get_all_records("contacts")
        if row["remote_id"] == remote_id
    )


class TestOffboardPartner:
    """Tests for partner offboarding."""

    def test_full_cascade(self, db, lms, partner):
        """Linked users leave the shared group and the partner group is deleted."""
        result = make_offboarder(db, lms).offboard_partner(partner)

        assert result.success
        assert result.memberships_removed == 2
        assert result.group_deleted is True
        lms.remove_members.assert_called_once_with("g-shared", ["p1", "p2"])
        lms.delete_group.assert_called_once_with("g-acme")
        assert db.get_partner_lms_group(partner) is None

    def test_lms_links_not_cleared(self, db, lms, partner):
        """Offboarding leaves contacts' identity links in place."""
        make_offboarder(db, lms).offboard_partner(partner)
        contact = db.get_record("contacts", contact_id_for(db, "c1"))
        assert contact["lms_user_id"] == "p1"

    def test_group_already_absent(self, db, lms, partner):
        """A group already gone on the platform still counts as success."""
        lms.delete_group.return_value = False
        result = make_offboarder(db, lms).offboard_partner(partner)

        assert result.success
        assert result.group_deleted is False
        assert db.get_partner_lms_group(partner) is None

    def test_group_delete_failure_keeps_mirror(self, db, lms, partner):
        """A failed deletion is reported and the mirror row kept for retry."""
        lms.delete_group.side_effect = LMSAPIError("HTTP 500")
        result = make_offboarder(db, lms).offboard_partner(partner)

        assert not result.success
        assert result.memberships_removed == 2
        assert any("partner_group" in e for e in result.errors)
        assert db.get_partner_lms_group(partner) is not None

    def test_partial_membership_failure(self, db, lms, partner):
        """Partial membership removal is counted and reported."""
        lms.remove_members.side_effect = None
        lms.remove_members.return_value = MembershipResult(
            succeeded=["p1"], failed=[("p2", "HTTP 403")]
        )
        result = make_offboarder(db, lms).offboard_partner(partner)

        assert not result.success
        assert result.memberships_removed == 1
        assert result.group_deleted is True
        assert "failed for p2" in result.errors[0]

    def test_missing_shared_group(self, db, lms, partner):
        """Linked users with no mirrored shared group is a failed step."""
        db.delete_lms_group("g-shared")
        result = make_offboarder(db, lms).offboard_partner(partner)

        assert not result.success
        lms.remove_members.assert_not_called()
        lms.delete_group.assert_called_once_with("g-acme")

    def test_nothing_to_revoke_without_client(self, db):
        """A partner with no platform footprint succeeds without a client."""
        partner_id = db.insert_record(
            "partners", {"remote_id": "10", "account_name": "Acme"}
        )
        result = make_offboarder(db, None).offboard_partner(partner_id)

        assert result.success
        assert result.memberships_removed == 0

    def test_missing_client_with_access_fails(self, db, partner):
        """Access to revoke with no platform client is a failure."""
        result = make_offboarder(db, None).offboard_partner(partner)
        assert not result.success
        assert result.errors == ["lms_client: learning platform not configured"]

    def test_unknown_partner(self, db, lms):
        """Offboarding a missing partner fails at lookup."""
        result = make_offboarder(db, lms).offboard_partner(999)
        assert not result.success
        assert result.steps[0].name == "lookup"

    def test_audit_lines_written(self, db, lms, partner):
        """Each step is written to the audit log."""
        offboarder = make_offboarder(db, lms)
        result = offboarder.offboard_partner(partner)
        assert offboarder.audit.log.call_count == len(result.steps)


class TestOffboardContact:
    """Tests for contact offboarding."""

    def test_contact_cascade(self, db, lms, partner):
        """The identity leaves the partner group and the shared group."""
        contact_id = contact_id_for(db, "c1")
        result = make_offboarder(db, lms).offboard_contact(contact_id)

        assert result.success
        assert result.memberships_removed == 2
        assert [c.args for c in lms.remove_members.call_args_list] == [
            ("g-acme", ["p1"]),
            ("g-shared", ["p1"]),
        ]
        lms.delete_group.assert_not_called()

    def test_unlinked_contact_succeeds(self, db, partner):
        """A contact without an identity needs no cascade."""
        result = make_offboarder(db, None).offboard_contact(contact_id_for(db, "c3"))
        assert result.success
        assert result.steps[0].name == "lms_link"

    def test_contact_without_partner_group(self, db, lms, partner):
        """A missing partner group is skipped, the shared group still handled."""
        db.delete_lms_group("g-acme")
        result = make_offboarder(db, lms).offboard_contact(contact_id_for(db, "c2"))

        assert result.success
        lms.remove_members.assert_called_once_with("g-shared", ["p2"])

    def test_contact_missing_client(self, db, partner):
        """A linked contact with no platform client fails."""
        result = make_offboarder(db, None).offboard_contact(contact_id_for(db, "c1"))
        assert not result.success

    def test_unknown_contact(self, db, lms):
        """Offboarding a missing contact fails at lookup."""
        assert not make_offboarder(db, lms).offboard_contact(42).success


class TestRestoreSharedAccess:
    """Tests for re-adding contacts to the shared group."""

    def test_restore(self, db, lms, partner):
        """Active linked contacts are re-added; others are skipped."""
        ids = [contact_id_for(db, r) for r in ("c1", "c2", "c3")]
        db.soft_delete_record("contacts", ids[1])

        outcome = make_offboarder(db, lms).restore_shared_access(ids + [999])

        assert outcome.added == 1
        assert outcome.skipped == [ids[1], ids[2], 999]
        lms.add_members.assert_called_once_with("g-shared", ["p1"])

    def test_restore_requires_client(self, db):
        """Restoring without a platform client raises."""
        with pytest.raises(TransportError, match="not configured"):
            make_offboarder(db, None).restore_shared_access([1])

    def test_restore_requires_shared_group(self, db, lms):
        """Restoring without a mirrored shared group raises."""
        with pytest.raises(TransportError, match="not mirrored"):
            make_offboarder(db, lms).restore_shared_access([1])
