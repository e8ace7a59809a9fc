"""CLI output formatting functions.

This module contains functions for displaying sync results, previews,
status and offboarding outcomes on the command line.
"""

from datetime import datetime
from typing import TYPE_CHECKING, Any, Optional

import click

if TYPE_CHECKING:
    from partner_sync.storage.ledger import SyncRun
    from partner_sync.sync.engine import SyncResult
    from partner_sync.sync.offboarding import OffboardResult

# Items listed before "... and N more"
MAX_LISTED = 10


def format_timestamp(value: Optional[datetime]) -> str:
    """Format an aware timestamp for display in local time."""
    if value is None:
        return "never"
    return value.astimezone().strftime("%Y-%m-%d %H:%M:%S")


def status_style(status: str) -> str:
    """Colour a run status."""
    colours = {"completed": "green", "failed": "red", "running": "yellow"}
    return click.style(status, fg=colours.get(status))


def _echo_limited(items: list[str], prefix: str = "  ") -> None:
    for item in items[:MAX_LISTED]:
        click.echo(f"{prefix}{item}")
    if len(items) > MAX_LISTED:
        click.echo(f"{prefix}... and {len(items) - MAX_LISTED} more")


def show_sync_result(result: "SyncResult", verbose: bool = False) -> None:
    """
    Display the outcome of one pipeline run.

    Args:
        result: The SyncResult to display
        verbose: Also list per-record errors and removals
    """
    stats = result.stats
    title = f"{result.sync_type.value.capitalize()} ({result.mode.value})"
    click.echo(f"\n=== {title} ===")
    if result.fell_back_to_full:
        click.echo(
            click.style(
                "  No completed run on record; ran as a full sync.", fg="cyan"
            )
        )

    click.echo(f"  Fetched:      {stats.fetched}")
    click.echo(f"  Filtered:     {stats.filtered}")
    click.echo(f"  Created:      {stats.created}")
    click.echo(f"  Updated:      {stats.updated}")
    click.echo(f"  Reactivated:  {stats.reactivated}")
    click.echo(f"  Unchanged:    {stats.unchanged}")
    click.echo(f"  Soft-deleted: {stats.soft_deleted}")
    if stats.enriched:
        click.echo(f"  Enriched:     {stats.enriched}")
    if stats.offboarded or stats.offboard_failures:
        click.echo(
            f"  Offboarded:   {stats.offboarded} "
            f"({stats.memberships_removed} memberships, "
            f"{stats.groups_deleted} groups deleted)"
        )

    if stats.failed:
        click.echo(click.style(f"  Failed:       {stats.failed}", fg="yellow"))
    if stats.offboard_failures:
        click.echo(
            click.style(
                f"  Offboarding failures: {stats.offboard_failures}", fg="yellow"
            )
        )

    if verbose and stats.filter_reasons:
        click.echo("\n  Filtered by reason:")
        for reason, count in stats.filter_reasons.items():
            click.echo(f"    {reason}: {count}")

    if verbose and stats.removals:
        click.echo("\n  Removed:")
        _echo_limited(
            [
                f"- {r['label']} ({r['remote_id']}): {r['reason']}"
                for r in stats.removals
            ],
            prefix="    ",
        )

    if verbose and stats.errors:
        click.echo("\n  Errors:")
        _echo_limited(
            [f"! {e['identifier']}: {e['message']}" for e in stats.errors],
            prefix="    ",
        )


def show_preview(preview: dict[str, dict[str, Any]]) -> None:
    """Display the dry-run summary produced by SyncEngine.preview_sync()."""
    click.echo("=== Sync Preview (no changes made) ===")
    for sync_type, data in preview.items():
        click.echo(f"\n{sync_type.capitalize()}:")
        click.echo(f"  Total from PRM:   {data['total']}")
        click.echo(f"  After filters:    {data['valid']}")
        click.echo(f"  Filtered out:     {data['filtered']}")
        if data["rejected"]:
            click.echo(
                click.style(f"  Rejected (schema): {data['rejected']}", fg="yellow")
            )
        for reason, count in data["filter_reasons"].items():
            click.echo(f"    {reason}: {count}")
        click.echo(f"  Active in DB:     {data['current_in_db']}")

        would_remove = data["would_remove"]
        line = f"  Would remove:     {would_remove}"
        if would_remove:
            reasons = ", ".join(
                f"{reason}={count}"
                for reason, count in data["would_remove_by_reason"].items()
            )
            line = click.style(f"{line} ({reasons})", fg="yellow")
        click.echo(line)

        if data["samples"]:
            click.echo("  Sample filtered records:")
            for sample in data["samples"]:
                click.echo(f"    - {sample['identifier']}: {sample['reason']}")


def show_status(status: dict[str, Any]) -> None:
    """Display the output of SyncEngine.get_sync_status()."""
    click.echo("=== Partner Sync Status ===")
    lms = status.get("lms", {})

    for sync_type, data in status.items():
        if sync_type == "lms":
            continue
        click.echo(f"\n{sync_type.capitalize()} ({data['table']}):")
        click.echo(
            f"  Rows: {data['total']} total, {data['active']} active, "
            f"{data['inactive']} inactive"
        )
        run = data["last_run"]
        if run is None:
            click.echo("  Last run: never")
        else:
            click.echo(
                f"  Last run: {format_timestamp(run.started_at)} "
                f"{run.mode.value} {status_style(run.status.value)}"
            )
            if run.details.get("error"):
                click.echo(click.style(f"    Error: {run.details['error']}", fg="red"))
        click.echo(f"  Last success: {format_timestamp(data['last_success'])}")

    click.echo("\nLearning platform:")
    click.echo(f"  Linked contacts: {lms.get('linked_contacts', 0)}")
    click.echo(f"  Mirrored groups: {lms.get('groups', 0)}")


def show_history(runs: list["SyncRun"]) -> None:
    """Display ledger rows, newest first."""
    if not runs:
        click.echo("No sync runs recorded.")
        return

    click.echo(
        f"{'Started':<20} {'Type':<9} {'Mode':<12} {'Status':<10} "
        f"{'Proc':>5} {'New':>5} {'Upd':>5} {'React':>5} {'Del':>5} {'Fail':>5}"
    )
    for run in runs:
        counters = run.counters
        # pad before styling so ANSI codes do not break alignment
        status = status_style(f"{run.status.value:<10}")
        click.echo(
            f"{format_timestamp(run.started_at):<20} {run.sync_type.value:<9} "
            f"{run.mode.value:<12} {status} "
            f"{counters['processed']:>5} {counters['created']:>5} "
            f"{counters['updated']:>5} {counters['reactivated']:>5} "
            f"{counters['soft_deleted']:>5} {counters['failed']:>5}"
        )


def show_offboard_result(result: "OffboardResult") -> None:
    """Display each cascade step and the overall outcome."""
    label = f"{result.entity_type.capitalize()} {result.local_id}"
    for step in result.steps:
        mark = click.style("ok", fg="green") if step.success else click.style(
            "FAILED", fg="red"
        )
        click.echo(f"  [{mark}] {step.name}: {step.detail}")

    if result.success:
        click.echo(
            click.style(
                f"{label} offboarded: {result.memberships_removed} memberships "
                f"removed{', group deleted' if result.group_deleted else ''}.",
                fg="green",
            )
        )
    else:
        click.echo(click.style(f"{label} offboarding incomplete.", fg="red"), err=True)
