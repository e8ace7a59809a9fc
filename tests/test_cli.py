"""
Tests for the CLI module.

Tests the command-line interface using Click's testing utilities.
Each test runs against its own configuration directory and database.
"""

from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
from click.testing import CliRunner

from partner_sync.api.http import TransportError
from partner_sync.api.lms_api import LMSClient, MembershipResult
from partner_sync.cli import (
    DEFAULT_CONFIG_DIR,
    DEFAULT_PRM_API_KEY_ENV,
    cli,
    get_config_dir,
)
from partner_sync.storage.db import SyncDatabase
from partner_sync.storage.ledger import SyncLedger, SyncMode, SyncRun, SyncType
from partner_sync.sync.engine import SyncResult, SyncStats


@pytest.fixture(autouse=True)
def quiet_logging():
    """Keep log and audit files out of the project log directory."""
    with patch("partner_sync.cli.main.setup_logging"), patch(
        "partner_sync.cli.main.cleanup_old_logs"
    ), patch("partner_sync.cli.main.setup_audit_logger"):
        yield


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in (
        "PARTNER_SYNC_PRM_API_KEY",
        "PARTNER_SYNC_LMS_API_KEY",
        "PARTNER_SYNC_CONFIG_DIR",
        "PARTNER_SYNC_CONFIG_FILE",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def config_dir(tmp_path):
    return tmp_path


@pytest.fixture
def db(config_dir):
    database = SyncDatabase(str(config_dir / "partner_sync.db"))
    database.initialize()
    return database


def invoke(config_dir, *args):
    runner = CliRunner()
    return runner.invoke(cli, ["--config-dir", str(config_dir), *args])


def completed_result(sync_type, requested_mode=SyncMode.INCREMENTAL, **counts):
    run = SyncRun(sync_type, SyncMode.FULL)
    run.complete()
    return SyncResult(sync_type, requested_mode, run, SyncStats(**counts))


class TestHelperFunctions:
    """Tests for CLI helper functions."""

    def test_default_config_dir_is_in_home(self):
        """Test that DEFAULT_CONFIG_DIR is in user's home directory."""
        assert Path.home() / ".partner-sync" == DEFAULT_CONFIG_DIR

    def test_get_config_dir_with_custom_path(self):
        """Test get_config_dir returns custom path when provided."""
        assert get_config_dir("/custom/path") == Path("/custom/path")


class TestCliGroup:
    """Tests for the main CLI group."""

    def test_cli_help(self):
        """Test that CLI shows help."""
        result = CliRunner().invoke(cli, ["--help"])
        assert result.exit_code == 0
        assert "Partner Sync" in result.output

    def test_cli_version(self):
        """Test that CLI shows version."""
        result = CliRunner().invoke(cli, ["--version"])
        assert result.exit_code == 0
        assert "partner-sync" in result.output

    def test_invalid_config_warns(self, config_dir):
        """A broken config file is reported but does not stop the CLI."""
        (config_dir / "config.yaml").write_text("prm_page_size: 0\n")
        result = invoke(config_dir, "history")
        assert result.exit_code == 0
        assert "Warning: Configuration error" in result.output


class TestInitConfigCommand:
    """Tests for the init-config command."""

    def test_creates_config_file(self, config_dir):
        """Test that init-config writes the default configuration."""
        result = invoke(config_dir, "init-config")
        assert result.exit_code == 0
        assert "Configuration file created successfully!" in result.output
        assert (config_dir / "config.yaml").exists()

    def test_refuses_to_overwrite(self, config_dir):
        """Test that an existing file is kept without --force."""
        (config_dir / "config.yaml").write_text("verbose: true\n")
        result = invoke(config_dir, "init-config")
        assert result.exit_code == 1
        assert "already exists" in result.output
        assert (config_dir / "config.yaml").read_text() == "verbose: true\n"

    def test_force_overwrites(self, config_dir):
        """Test that --force replaces an existing file."""
        (config_dir / "config.yaml").write_text("verbose: true\n")
        result = invoke(config_dir, "init-config", "--force")
        assert result.exit_code == 0
        assert "prm_tenant_id" in (config_dir / "config.yaml").read_text()


class TestSyncCommand:
    """Tests for the sync command."""

    def test_sync_help(self):
        """Test that sync command shows help."""
        result = CliRunner().invoke(cli, ["sync", "--help"])
        assert result.exit_code == 0
        assert "--full" in result.output

    def test_missing_api_key(self, config_dir):
        """Test that sync fails without a PRM API key."""
        result = invoke(config_dir, "sync")
        assert result.exit_code == 1
        assert f"Set the {DEFAULT_PRM_API_KEY_ENV} environment variable" in (
            result.output
        )

    def test_missing_tenant(self, config_dir, monkeypatch):
        """Test that sync fails without a tenant ID."""
        monkeypatch.setenv(DEFAULT_PRM_API_KEY_ENV, "secret")
        result = invoke(config_dir, "sync")
        assert result.exit_code == 1
        assert "prm_tenant_id is not configured" in result.output

    @patch("partner_sync.cli.main.build_engine")
    def test_sync_all(self, mock_build_engine, config_dir):
        """Test that sync runs every pipeline and reports each result."""
        results = [
            completed_result(SyncType.ACCOUNTS, fetched=3, created=2),
            completed_result(SyncType.CONTACTS),
            completed_result(SyncType.LEADS),
        ]

        def run_all(mode, on_result):
            for result in results:
                on_result(result)
            return results

        engine = MagicMock()
        engine.run_all.side_effect = run_all
        mock_build_engine.return_value = engine

        result = invoke(config_dir, "sync")

        assert result.exit_code == 0
        engine.run_all.assert_called_once()
        assert engine.run_all.call_args.args[0] == SyncMode.INCREMENTAL
        assert "=== Accounts (full) ===" in result.output
        assert "ran as a full sync" in result.output
        assert "=== Leads (full) ===" in result.output
        assert "Sync completed successfully!" in result.output

    @patch("partner_sync.cli.main.build_engine")
    def test_sync_single_type_full(self, mock_build_engine, config_dir):
        """Test that --type and --full select one pipeline in full mode."""
        engine = MagicMock()
        engine.run_sync.return_value = completed_result(
            SyncType.CONTACTS, SyncMode.FULL
        )
        mock_build_engine.return_value = engine

        result = invoke(config_dir, "sync", "--type", "contacts", "--full")

        assert result.exit_code == 0
        engine.run_sync.assert_called_once_with(SyncType.CONTACTS, SyncMode.FULL)
        assert "ran as a full sync" not in result.output

    @patch("partner_sync.cli.main.build_engine")
    def test_sync_with_record_failures(self, mock_build_engine, config_dir):
        """Test that failed records are reported as a warning."""
        engine = MagicMock()
        engine.run_sync.return_value = completed_result(SyncType.ACCOUNTS, failed=2)
        mock_build_engine.return_value = engine

        result = invoke(config_dir, "sync", "-t", "accounts")

        assert result.exit_code == 0
        assert "Failed:       2" in result.output
        assert "Sync completed with errors" in result.output

    @patch("partner_sync.cli.main.build_engine")
    def test_sync_exception(self, mock_build_engine, config_dir):
        """Test that a failed run exits with status 1."""
        engine = MagicMock()
        engine.run_all.side_effect = TransportError("HTTP 503")
        mock_build_engine.return_value = engine

        result = invoke(config_dir, "sync")

        assert result.exit_code == 1
        assert "Sync failed: HTTP 503" in result.output


class TestPreviewCommand:
    """Tests for the preview command."""

    @patch("partner_sync.cli.main.build_engine")
    def test_preview(self, mock_build_engine, config_dir):
        """Test that the preview summary is displayed."""
        engine = MagicMock()
        engine.preview_sync.return_value = {
            "accounts": {
                "total": 3,
                "valid": 2,
                "filtered": 1,
                "rejected": 0,
                "filter_reasons": {"invalidTier": 1},
                "current_in_db": 4,
                "would_remove": 2,
                "would_remove_by_reason": {"filtered": 1, "vanished": 1},
                "samples": [{"identifier": "Globex (2)", "reason": "invalidTier"}],
            }
        }
        mock_build_engine.return_value = engine

        result = invoke(config_dir, "preview")

        assert result.exit_code == 0
        assert "Sync Preview (no changes made)" in result.output
        assert "Would remove:     2 (filtered=1, vanished=1)" in result.output
        assert "Globex (2): invalidTier" in result.output

    @patch("partner_sync.cli.main.build_engine")
    def test_preview_transport_error(self, mock_build_engine, config_dir):
        """Test that a PRM failure during preview exits with status 1."""
        engine = MagicMock()
        engine.preview_sync.side_effect = TransportError("HTTP 401")
        mock_build_engine.return_value = engine

        result = invoke(config_dir, "preview")

        assert result.exit_code == 1
        assert "Preview failed: HTTP 401" in result.output


class TestStatusCommand:
    """Tests for the status command."""

    def test_status_empty_database(self, config_dir):
        """Test status works without PRM credentials on a fresh database."""
        result = invoke(config_dir, "status")
        assert result.exit_code == 0
        assert "Accounts (partners):" in result.output
        assert "Last run: never" in result.output
        assert "Linked contacts: 0" in result.output

    def test_status_with_data(self, config_dir, db):
        """Test status shows counts and the last run."""
        partner_id = db.insert_record(
            "partners", {"remote_id": "10", "account_name": "Acme"}
        )
        db.insert_record("partners", {"remote_id": "11", "account_name": "Globex"})
        db.soft_delete_record("partners", partner_id)
        run = SyncRun(SyncType.ACCOUNTS, SyncMode.FULL)
        run.complete()
        SyncLedger(db).log_run(run)

        result = invoke(config_dir, "status")

        assert result.exit_code == 0
        assert "Rows: 2 total, 1 active, 1 inactive" in result.output
        assert "full completed" in result.output


class TestHistoryCommand:
    """Tests for the history command."""

    def test_no_runs(self, config_dir):
        """Test history with an empty ledger."""
        result = invoke(config_dir, "history")
        assert result.exit_code == 0
        assert "No sync runs recorded." in result.output

    def test_filtered_by_type(self, config_dir, db):
        """Test that --type limits rows to one pipeline."""
        ledger = SyncLedger(db)
        for sync_type in (SyncType.ACCOUNTS, SyncType.LEADS):
            run = SyncRun(sync_type, SyncMode.FULL)
            run.complete()
            ledger.log_run(run)
        failed = SyncRun(SyncType.LEADS, SyncMode.INCREMENTAL)
        failed.fail(RuntimeError("boom"))
        ledger.log_run(failed)

        result = invoke(config_dir, "history", "--type", "leads")

        assert result.exit_code == 0
        assert "accounts" not in result.output
        assert "completed" in result.output
        assert "failed" in result.output


class TestOffboardCommands:
    """Tests for the offboard-partner and offboard-contact commands."""

    def test_offboard_partner_without_footprint(self, config_dir, db):
        """A partner with nothing to revoke succeeds without a platform key."""
        partner_id = db.insert_record(
            "partners", {"remote_id": "10", "account_name": "Acme"}
        )
        result = invoke(config_dir, "offboard-partner", str(partner_id))
        assert result.exit_code == 0
        assert f"Partner {partner_id} offboarded" in result.output

    def test_offboard_partner_needs_client(self, config_dir, db):
        """A partner with linked users fails without a platform key."""
        partner_id = db.insert_record(
            "partners", {"remote_id": "10", "account_name": "Acme"}
        )
        contact_id = db.insert_record(
            "contacts", {"remote_id": "5", "partner_id": partner_id}
        )
        db.link_contact_lms_user(contact_id, "p1")

        result = invoke(config_dir, "offboard-partner", str(partner_id))

        assert result.exit_code == 1
        assert "learning platform not configured" in result.output
        assert "offboarding incomplete" in result.output

    def test_offboard_unknown_contact(self, config_dir, db):
        """Test that a missing contact exits with status 1."""
        result = invoke(config_dir, "offboard-contact", "42")
        assert result.exit_code == 1

    @patch("partner_sync.cli.main.build_lms_client")
    def test_offboard_contact(self, mock_build_lms_client, config_dir, db):
        """Test contact offboarding with a platform client."""
        lms = MagicMock(spec=LMSClient)
        lms.remove_members.return_value = MembershipResult(succeeded=["p1"])
        mock_build_lms_client.return_value = lms
        contact_id = db.insert_record("contacts", {"remote_id": "5"})
        db.link_contact_lms_user(contact_id, "p1")
        db.register_lms_group("g-shared", "All Partners")

        result = invoke(config_dir, "offboard-contact", str(contact_id))

        assert result.exit_code == 0
        lms.remove_members.assert_called_once_with("g-shared", ["p1"])


class TestMaintenanceCommands:
    """Tests for restore-access, link-user and link-group."""

    def test_link_user(self, config_dir, db):
        """Test linking a contact to a platform identity."""
        contact_id = db.insert_record("contacts", {"remote_id": "5"})
        result = invoke(config_dir, "link-user", str(contact_id), "p1")
        assert result.exit_code == 0
        assert db.get_record("contacts", contact_id)["lms_user_id"] == "p1"

    def test_link_user_unknown_contact(self, config_dir, db):
        """Test linking a missing contact fails."""
        result = invoke(config_dir, "link-user", "42", "p1")
        assert result.exit_code == 1
        assert "Contact 42 not found" in result.output

    def test_link_shared_group(self, config_dir, db):
        """Test mirroring a shared group."""
        result = invoke(config_dir, "link-group", "g-shared", "--name", "All Partners")
        assert result.exit_code == 0
        assert db.get_lms_group_by_name("all partners")["lms_group_id"] == "g-shared"

    def test_link_group_unknown_partner(self, config_dir, db):
        """Test that a group cannot be tied to a missing partner."""
        result = invoke(
            config_dir, "link-group", "g-acme", "--name", "Acme", "--partner-id", "9"
        )
        assert result.exit_code == 1
        assert "Partner 9 not found" in result.output
        assert db.get_lms_groups() == []

    def test_restore_access_without_client(self, config_dir, db):
        """Test that restore fails without a platform key."""
        result = invoke(config_dir, "restore-access", "1")
        assert result.exit_code == 1
        assert "Restore failed" in result.output

    @patch("partner_sync.cli.main.build_lms_client")
    def test_restore_access(self, mock_build_lms_client, config_dir, db):
        """Test re-adding contacts to the shared group."""
        lms = MagicMock(spec=LMSClient)
        lms.add_members.return_value = MembershipResult(succeeded=["p1"])
        mock_build_lms_client.return_value = lms
        contact_id = db.insert_record("contacts", {"remote_id": "5"})
        db.link_contact_lms_user(contact_id, "p1")
        db.register_lms_group("g-shared", "All Partners")

        result = invoke(config_dir, "restore-access", str(contact_id), "99")

        assert result.exit_code == 0
        assert "Added to shared group: 1" in result.output
        assert "Skipped (missing, inactive or unlinked): 99" in result.output
        lms.add_members.assert_called_once_with("g-shared", ["p1"])

    @patch("partner_sync.cli.main.build_lms_client")
    def test_restore_access_failures(self, mock_build_lms_client, config_dir, db):
        """Test that per-person failures exit with status 1."""
        lms = MagicMock(spec=LMSClient)
        lms.add_members.return_value = MembershipResult(failed=[("p1", "HTTP 403")])
        mock_build_lms_client.return_value = lms
        contact_id = db.insert_record("contacts", {"remote_id": "5"})
        db.link_contact_lms_user(contact_id, "p1")
        db.register_lms_group("g-shared", "All Partners")

        result = invoke(config_dir, "restore-access", str(contact_id))

        assert result.exit_code == 1
        assert "p1: HTTP 403" in result.output
