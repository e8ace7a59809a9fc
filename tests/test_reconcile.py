"""Tests for set-difference reconciliation."""

from partner_sync.sync.reconcile import Removal, RemovalReason, find_removals


def rows(*remote_ids):
    return [
        {"id": i, "remote_id": remote_id, "account_name": f"Partner {remote_id}"}
        for i, remote_id in enumerate(remote_ids, start=1)
    ]


class TestFindRemovals:
    """Tests for removal detection."""

    def test_present_rows_kept(self):
        """Rows whose remote ID is valid are never removed."""
        assert find_removals(rows("1", "2"), {"1", "2"}, set()) == []

    def test_vanished_on_full_sync(self):
        """Rows missing from the fetch are vanished on full runs."""
        removals = find_removals(rows("1", "2"), {"1"}, set())
        assert removals == [Removal(2, "2", "2", RemovalReason.VANISHED)]

    def test_filtered_reason(self):
        """Rows fetched but rejected are removed as filtered."""
        removals = find_removals(rows("1", "2"), {"1"}, {"2"})
        assert [r.reason for r in removals] == [RemovalReason.FILTERED]

    def test_incremental_only_filtered(self):
        """Incremental runs never detect vanished rows."""
        removals = find_removals(rows("1", "2", "3"), {"1"}, {"3"}, full_sync=False)
        assert [(r.remote_id, r.reason) for r in removals] == [
            ("3", RemovalReason.FILTERED)
        ]

    def test_rows_without_remote_id_ignored(self):
        """Rows never bound to a remote record are left alone."""
        assert find_removals(rows(None, ""), set(), set()) == []

    def test_label_column(self):
        """Removals are labelled from the chosen column."""
        removals = find_removals(rows("2"), set(), set(), label_column="account_name")
        assert removals[0].label == "Partner 2"

    def test_label_falls_back_to_remote_id(self):
        """A blank label column falls back to the remote ID."""
        removals = find_removals(
            [{"id": 7, "remote_id": "9", "email": None}],
            set(),
            set(),
            label_column="email",
        )
        assert removals[0].label == "9"

    def test_to_dict(self):
        """Removals serialize with the reason as its value."""
        removal = Removal(1, "2", "Acme", RemovalReason.FILTERED)
        assert removal.to_dict() == {
            "local_id": 1,
            "remote_id": "2",
            "label": "Acme",
            "reason": "filtered",
        }
