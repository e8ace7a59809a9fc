"""
Command-line interface for partner_sync.

Provides CLI commands for running, previewing and inspecting the PRM to
local database reconciliation, and for operator maintenance of learning
platform access.

Usage:
    # Show help
    partner-sync --help

    # Run synchronization
    partner-sync sync
    partner-sync sync --type accounts --full

    # Preview without writing
    partner-sync preview

    # Check status and history
    partner-sync status
    partner-sync history --type contacts --limit 20
"""

import os
import sys
from pathlib import Path
from typing import Any, Optional

import click

from partner_sync import __version__
from partner_sync.api.http import TransportError
from partner_sync.api.lms_api import LMSClient
from partner_sync.api.prm_api import PRMClient
from partner_sync.cli.formatters import (
    show_history,
    show_offboard_result,
    show_preview,
    show_status,
    show_sync_result,
)
from partner_sync.config.filter_config import FilterConfigError, load_filter_config
from partner_sync.config.generator import save_config_file
from partner_sync.config.loader import DEFAULT_CONFIG_FILE, ConfigError, ConfigLoader
from partner_sync.storage.db import SyncDatabase
from partner_sync.storage.ledger import SyncLedger, SyncMode, SyncType
from partner_sync.sync.engine import SyncEngine
from partner_sync.sync.offboarding import DEFAULT_SHARED_GROUP_NAME, Offboarder
from partner_sync.utils import resolve_config_dir, resolve_db_path
from partner_sync.utils.logging import (
    cleanup_old_logs,
    get_audit_log_path,
    get_logger,
    setup_audit_logger,
    setup_logging,
)

# Environment variables holding API keys unless config names others
DEFAULT_PRM_API_KEY_ENV = "PARTNER_SYNC_PRM_API_KEY"
DEFAULT_LMS_API_KEY_ENV = "PARTNER_SYNC_LMS_API_KEY"

# Choices for sync --type
SYNC_TYPE_CHOICES = [t.value for t in SyncType] + ["all"]


class SetupError(Exception):
    """Raised when a command cannot build its collaborators."""

    pass


def get_config_dir(config_dir: str | None) -> Path:
    """Get the configuration directory path."""
    return resolve_config_dir(config_dir)


def get_config_file(config_file: str | None, config_dir: Path) -> Path:
    """Get the configuration file path."""
    if config_file:
        return Path(config_file)
    return config_dir / DEFAULT_CONFIG_FILE


def _retry_options(config: dict[str, Any]) -> dict[str, Any]:
    options = {}
    for key, option in (
        ("api_max_retries", "max_retries"),
        ("api_initial_retry_delay", "initial_retry_delay"),
        ("api_max_retry_delay", "max_retry_delay"),
    ):
        if key in config:
            options[option] = config[key]
    return options


def build_database(ctx: click.Context) -> SyncDatabase:
    """Open and initialize the local database."""
    config = ctx.obj["config"]
    db_path = resolve_db_path(ctx.obj["config_dir"], config.get("db_path"))
    db_path.parent.mkdir(parents=True, exist_ok=True)
    database = SyncDatabase(str(db_path))
    database.initialize()
    return database


def build_prm_client(config: dict[str, Any]) -> PRMClient:
    """
    Create the PRM client from configuration.

    Raises:
        SetupError: If the tenant ID or API key is missing
    """
    env_var = config.get("prm_api_key_env", DEFAULT_PRM_API_KEY_ENV)
    api_key = os.environ.get(env_var)
    if not api_key:
        raise SetupError(
            f"PRM API key not found. Set the {env_var} environment variable."
        )
    tenant_id = config.get("prm_tenant_id")
    if not tenant_id:
        raise SetupError(
            "prm_tenant_id is not configured. Run 'partner-sync init-config'."
        )

    options = _retry_options(config)
    for key, option in (
        ("prm_base_url", "base_url"),
        ("prm_page_size", "page_size"),
        ("prm_timeout", "timeout"),
    ):
        if key in config:
            options[option] = config[key]
    return PRMClient(api_key, str(tenant_id), **options)


def build_lms_client(config: dict[str, Any]) -> Optional[LMSClient]:
    """Create the learning platform client, or None when no API key is set."""
    env_var = config.get("lms_api_key_env", DEFAULT_LMS_API_KEY_ENV)
    api_key = os.environ.get(env_var)
    if not api_key:
        return None

    options = _retry_options(config)
    for key, option in (
        ("lms_base_url", "base_url"),
        ("lms_batch_size", "batch_size"),
        ("lms_timeout", "timeout"),
    ):
        if key in config:
            options[option] = config[key]
    return LMSClient(api_key, **options)


def build_offboarder(ctx: click.Context, database: SyncDatabase) -> Offboarder:
    config = ctx.obj["config"]
    lms_client = build_lms_client(config)
    if lms_client is None:
        get_logger(__name__).warning(
            "Learning platform API key not set; offboarding cascades will fail"
        )
    return Offboarder(
        database,
        lms_client,
        shared_group_name=config.get("shared_group_name", DEFAULT_SHARED_GROUP_NAME),
    )


def build_engine(ctx: click.Context) -> SyncEngine:
    """
    Assemble the sync engine from configuration.

    Raises:
        SetupError: If a client cannot be created or filters.json is invalid
    """
    config = ctx.obj["config"]
    prm_client = build_prm_client(config)
    try:
        filter_config = load_filter_config(ctx.obj["config_dir"])
    except FilterConfigError as e:
        raise SetupError(f"Filter configuration error: {e}") from e

    database = build_database(ctx)
    options = {}
    if "enrichment_batch_size" in config:
        options["enrichment_batch_size"] = config["enrichment_batch_size"]
    return SyncEngine(
        database,
        prm_client,
        filter_config=filter_config,
        offboarder=build_offboarder(ctx, database),
        **options,
    )


def fail(message: str) -> None:
    """Print an error in red and exit with status 1."""
    click.echo(click.style(f"Error: {message}", fg="red"), err=True)
    sys.exit(1)


@click.group()
@click.version_option(version=__version__, prog_name="partner-sync")
@click.option(
    "--verbose", "-v", is_flag=True, help="Enable verbose output with detailed logging."
)
@click.option(
    "--config-dir",
    "-c",
    type=click.Path(exists=False, file_okay=False, dir_okay=True),
    envvar="PARTNER_SYNC_CONFIG_DIR",
    help="Configuration directory path (default: ~/.partner-sync).",
)
@click.option(
    "--config-file",
    "-f",
    type=click.Path(exists=False, file_okay=True, dir_okay=False),
    envvar="PARTNER_SYNC_CONFIG_FILE",
    help="Configuration file path (default: <config-dir>/config.yaml).",
)
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: bool,
    config_dir: str | None,
    config_file: str | None,
) -> None:
    """
    Partner Sync.

    Reconciles partner accounts, contacts and leads from the PRM into a
    local database, and revokes learning platform access for partners
    and contacts that are no longer eligible.
    """
    ctx.ensure_object(dict)

    resolved_config_dir = get_config_dir(config_dir)
    resolved_config_file = get_config_file(config_file, resolved_config_dir)

    ctx.obj["config_dir"] = resolved_config_dir
    ctx.obj["config_file"] = resolved_config_file

    config = {}
    try:
        loader = ConfigLoader(config_dir=resolved_config_dir)
        config = loader.load_from_file(resolved_config_file)
        if config:
            loader.validate(config)
    except ConfigError as e:
        # Show error but don't fail - allow CLI to work without config file
        click.echo(
            click.style(f"Warning: Configuration error: {e}", fg="yellow"), err=True
        )
        config = {}

    ctx.obj["config"] = config

    effective_verbose = verbose or config.get("verbose", False)
    ctx.obj["verbose"] = effective_verbose

    log_dir = Path(config["log_dir"]).expanduser() if config.get("log_dir") else None
    ctx.obj["log_dir"] = log_dir

    setup_logging(verbose=effective_verbose, log_dir=log_dir, enable_file_logging=True)

    log_retention = config.get("log_retention_count", 10)
    if log_retention > 0:
        cleanup_old_logs(log_dir=log_dir, keep_count=log_retention)


# =============================================================================
# Sync Commands
# =============================================================================


@cli.command("sync")
@click.option(
    "--type",
    "-t",
    "sync_type",
    type=click.Choice(SYNC_TYPE_CHOICES, case_sensitive=False),
    default="all",
    help="Entity type to sync (default: all, in dependency order).",
)
@click.option(
    "--full", is_flag=True, help="Force a full sync (detects remote deletions)."
)
@click.pass_context
def sync_command(ctx: click.Context, sync_type: str, full: bool) -> None:
    """
    Synchronize PRM records into the local database.

    Incremental runs only fetch records modified since the last completed
    run of the same type; the first run of a type is always full. Only
    full runs detect records that disappeared from the PRM.

    Examples:

        # Incremental sync of everything
        partner-sync sync

        # Full accounts sync
        partner-sync sync --type accounts --full
    """
    logger = get_logger(__name__)
    verbose = ctx.obj["verbose"]
    mode = SyncMode.FULL if full else SyncMode.INCREMENTAL

    setup_audit_logger(get_audit_log_path(ctx.obj["log_dir"]))

    try:
        engine = build_engine(ctx)
    except SetupError as e:
        fail(str(e))
        return

    click.echo(f"Running {mode.value} sync ({sync_type})...")

    def report(result: Any) -> None:
        show_sync_result(result, verbose=verbose)

    try:
        if sync_type == "all":
            results = engine.run_all(mode, on_result=report)
        else:
            results = [engine.run_sync(SyncType(sync_type), mode)]
            report(results[0])
    except Exception as e:
        logger.exception(f"Sync failed: {e}")
        click.echo(click.style(f"\nSync failed: {e}", fg="red"), err=True)
        sys.exit(1)

    if any(r.stats.failed or r.stats.offboard_failures for r in results):
        click.echo(
            click.style(
                "\nSync completed with errors. See the log for details.", fg="yellow"
            )
        )
    else:
        click.echo(click.style("\nSync completed successfully!", fg="green"))


@cli.command("preview")
@click.pass_context
def preview_command(ctx: click.Context) -> None:
    """
    Preview what a full sync would do, without writing anything.

    Example:

        partner-sync preview
    """
    logger = get_logger(__name__)
    try:
        engine = build_engine(ctx)
        preview = engine.preview_sync()
    except SetupError as e:
        fail(str(e))
        return
    except TransportError as e:
        logger.error(f"Preview failed: {e}")
        fail(f"Preview failed: {e}")
        return

    show_preview(preview)


@cli.command("status")
@click.pass_context
def status_command(ctx: click.Context) -> None:
    """
    Show last-run metadata and current table counts.

    Example:

        partner-sync status
    """
    database = build_database(ctx)
    engine = SyncEngine(database, prm_client=None)
    click.echo(f"Database: {database.db_path}\n")
    show_status(engine.get_sync_status())


@cli.command("history")
@click.option(
    "--type",
    "-t",
    "sync_type",
    type=click.Choice([t.value for t in SyncType], case_sensitive=False),
    default=None,
    help="Only show runs of this type.",
)
@click.option(
    "--limit",
    "-n",
    type=click.IntRange(min=1),
    default=10,
    show_default=True,
    help="Number of runs to show.",
)
@click.pass_context
def history_command(ctx: click.Context, sync_type: str | None, limit: int) -> None:
    """
    Show recent sync runs, newest first.

    Example:

        partner-sync history --type accounts --limit 5
    """
    ledger = SyncLedger(build_database(ctx))
    runs = ledger.recent_runs(SyncType(sync_type) if sync_type else None, limit)
    show_history(runs)


# =============================================================================
# Offboarding Commands
# =============================================================================


@cli.command("offboard-partner")
@click.argument("partner_id", type=int)
@click.pass_context
def offboard_partner_command(ctx: click.Context, partner_id: int) -> None:
    """
    Revoke learning platform access for a partner.

    Removes every linked contact from the shared group and deletes the
    partner's group. Use this to retry a failed cascade.
    """
    setup_audit_logger(get_audit_log_path(ctx.obj["log_dir"]))
    database = build_database(ctx)
    result = build_offboarder(ctx, database).offboard_partner(partner_id)
    show_offboard_result(result)
    if not result.success:
        sys.exit(1)


@cli.command("offboard-contact")
@click.argument("contact_id", type=int)
@click.pass_context
def offboard_contact_command(ctx: click.Context, contact_id: int) -> None:
    """
    Revoke learning platform access for one contact.

    Removes the contact from its partner group and the shared group.
    """
    setup_audit_logger(get_audit_log_path(ctx.obj["log_dir"]))
    database = build_database(ctx)
    result = build_offboarder(ctx, database).offboard_contact(contact_id)
    show_offboard_result(result)
    if not result.success:
        sys.exit(1)


# =============================================================================
# Maintenance Commands
# =============================================================================


@cli.command("restore-access")
@click.argument("contact_ids", nargs=-1, type=int, required=True)
@click.pass_context
def restore_access_command(ctx: click.Context, contact_ids: tuple[int, ...]) -> None:
    """
    Re-add contacts to the shared learning platform group.

    Example:

        partner-sync restore-access 12 15 31
    """
    logger = get_logger(__name__)
    setup_audit_logger(get_audit_log_path(ctx.obj["log_dir"]))
    database = build_database(ctx)
    try:
        outcome = build_offboarder(ctx, database).restore_shared_access(
            list(contact_ids)
        )
    except TransportError as e:
        logger.error(f"Restore failed: {e}")
        fail(f"Restore failed: {e}")
        return

    click.echo(f"Added to shared group: {outcome.added}")
    if outcome.skipped:
        skipped = ", ".join(str(cid) for cid in outcome.skipped)
        click.echo(
            click.style(
                f"Skipped (missing, inactive or unlinked): {skipped}", fg="yellow"
            )
        )
    if outcome.failed:
        for person_id, error in outcome.failed:
            click.echo(click.style(f"  {person_id}: {error}", fg="red"), err=True)
        sys.exit(1)


@cli.command("link-user")
@click.argument("contact_id", type=int)
@click.argument("lms_user_id")
@click.pass_context
def link_user_command(ctx: click.Context, contact_id: int, lms_user_id: str) -> None:
    """
    Link a contact to a learning platform user.

    Sync never changes this link.
    """
    database = build_database(ctx)
    if not database.link_contact_lms_user(contact_id, lms_user_id):
        fail(f"Contact {contact_id} not found")
    click.echo(
        click.style(f"Contact {contact_id} linked to {lms_user_id}.", fg="green")
    )


@cli.command("link-group")
@click.argument("lms_group_id")
@click.option("--name", required=True, help="Group display name.")
@click.option(
    "--partner-id",
    type=int,
    default=None,
    help="Local partner ID owning the group (omit for shared groups).",
)
@click.pass_context
def link_group_command(
    ctx: click.Context, lms_group_id: str, name: str, partner_id: int | None
) -> None:
    """
    Mirror a learning platform group locally.

    Examples:

        # Shared group
        partner-sync link-group 7f3c-... --name "All Partners"

        # Partner group
        partner-sync link-group 9ab1-... --name "Acme Corp" --partner-id 4
    """
    database = build_database(ctx)
    if partner_id is not None and database.get_record("partners", partner_id) is None:
        fail(f"Partner {partner_id} not found")
    database.register_lms_group(lms_group_id, name, partner_id)
    click.echo(click.style(f"Group {name!r} ({lms_group_id}) registered.", fg="green"))


# =============================================================================
# Config Commands
# =============================================================================


@cli.command("init-config")
@click.option(
    "--force",
    is_flag=True,
    help="Overwrite existing configuration file if it exists.",
)
@click.pass_context
def init_config_command(ctx: click.Context, force: bool) -> None:
    """
    Generate a default configuration file.

    Creates a configuration file with all available options documented
    and commented out.

    Examples:

        # Create config file (fails if already exists)
        partner-sync init-config

        # Overwrite existing config file
        partner-sync init-config --force
    """
    logger = get_logger(__name__)
    config_file = ctx.obj["config_file"]

    click.echo(f"Creating configuration file: {config_file}")

    success, error = save_config_file(config_file, overwrite=force)

    if success:
        click.echo(click.style("Configuration file created successfully!", fg="green"))
        click.echo(f"\nLocation: {config_file}")
        click.echo("\nNext steps:")
        click.echo("1. Set prm_tenant_id and uncomment any options you want to change")
        click.echo(f"2. Export {DEFAULT_PRM_API_KEY_ENV} and {DEFAULT_LMS_API_KEY_ENV}")
        click.echo("3. Run 'partner-sync preview' to check the filters")
        logger.info(f"Created configuration file: {config_file}")
    else:
        click.echo(click.style(f"Error: {error}", fg="red"), err=True)
        logger.error(f"Failed to create configuration file: {error}")
        sys.exit(1)


if __name__ == "__main__":
    cli()
