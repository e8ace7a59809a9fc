"""
Sync engine for PRM to local database reconciliation.

Runs the accounts, contacts and leads pipelines. Each pipeline fetches
one remote collection, classifies it through the eligibility filter,
resolves and upserts the valid records, reconciles active local rows
against what was fetched, cascades removals into the learning platform
and appends one ledger row.
"""

import logging
import sqlite3
from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from partner_sync.api.http import TransportError
from partner_sync.api.prm_api import (
    ACCOUNT_COLLECTION,
    ACCOUNT_FIELDS,
    CONTACT_COLLECTION,
    CONTACT_FIELDS,
    DEFAULT_LOOKUP_BATCH_SIZE,
    LEAD_COLLECTION,
    LEAD_FIELDS,
    PRIMARY_USER_FIELDS,
    PRMClient,
)
from partner_sync.config.filter_config import FilterConfig
from partner_sync.storage.db import SyncDatabase, to_db_timestamp
from partner_sync.storage.ledger import (
    COUNTER_FIELDS,
    SyncLedger,
    SyncMode,
    SyncRun,
    SyncType,
)
from partner_sync.sync.eligibility import Classification, build_filters
from partner_sync.sync.offboarding import Offboarder, OffboardResult
from partner_sync.sync.reconcile import find_removals
from partner_sync.sync.records import (
    RemoteAccount,
    RemoteContact,
    RemoteLead,
    parse_records,
)
from partner_sync.sync.resolver import IdentityIndex, MatchKey, PartnerLookup
from partner_sync.sync.writer import UpsertWriter
from partner_sync.utils.logging import get_audit_logger

logger = logging.getLogger(__name__)

# Cap on per-record lists kept in a ledger row's details
MAX_DETAIL_ITEMS = 100

# Filtered records shown per type in a preview
PREVIEW_SAMPLE_SIZE = 5


@dataclass(frozen=True)
class Pipeline:
    """Static description of one entity pipeline."""

    table: str
    collection: str
    fields: tuple[str, ...]
    record_type: type
    label_column: str


PIPELINES: dict[SyncType, Pipeline] = {
    SyncType.ACCOUNTS: Pipeline(
        "partners", ACCOUNT_COLLECTION, ACCOUNT_FIELDS, RemoteAccount, "account_name"
    ),
    SyncType.CONTACTS: Pipeline(
        "contacts", CONTACT_COLLECTION, CONTACT_FIELDS, RemoteContact, "email"
    ),
    SyncType.LEADS: Pipeline(
        "leads", LEAD_COLLECTION, LEAD_FIELDS, RemoteLead, "company_name"
    ),
}


@dataclass
class SyncStats:
    """
    Statistics from one pipeline run.

    The first six counters are persisted as ledger columns; the rest go
    into the ledger row's details.
    """

    processed: int = 0
    created: int = 0
    updated: int = 0
    reactivated: int = 0
    soft_deleted: int = 0
    failed: int = 0

    fetched: int = 0
    filtered: int = 0
    unchanged: int = 0
    enriched: int = 0
    unlinked: int = 0
    lms_links_preserved: int = 0

    # Offboarding
    offboarded: int = 0
    offboard_failures: int = 0
    memberships_removed: int = 0
    groups_deleted: int = 0

    filter_reasons: dict[str, int] = field(default_factory=dict)
    errors: list[dict[str, str]] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    removals: list[dict[str, Any]] = field(default_factory=list)

    def record_failure(self, identifier: str, message: str) -> None:
        """Count a per-record failure and keep its identifier and message."""
        self.failed += 1
        self.errors.append({"identifier": identifier, "message": message})

    def record_offboard(self, result: OffboardResult) -> None:
        self.memberships_removed += result.memberships_removed
        if result.group_deleted:
            self.groups_deleted += 1
        if result.success:
            self.offboarded += 1
        else:
            self.offboard_failures += 1
            self.errors.append(
                {
                    "identifier": f"{result.entity_type} {result.local_id}",
                    "message": "offboarding incomplete: " + "; ".join(result.errors),
                }
            )

    def counters(self) -> dict[str, int]:
        return {name: getattr(self, name) for name in COUNTER_FIELDS}

    def to_details(self) -> dict[str, Any]:
        """Build the ledger details payload."""
        return {
            "fetched": self.fetched,
            "filtered": self.filtered,
            "unchanged": self.unchanged,
            "enriched": self.enriched,
            "unlinked": self.unlinked,
            "lms_links_preserved": self.lms_links_preserved,
            "offboarded": self.offboarded,
            "offboard_failures": self.offboard_failures,
            "memberships_removed": self.memberships_removed,
            "groups_deleted": self.groups_deleted,
            "filter_reasons": dict(self.filter_reasons),
            "errors": self.errors[:MAX_DETAIL_ITEMS],
            "error_count": len(self.errors),
            "warnings": self.warnings[:MAX_DETAIL_ITEMS],
            "removals": self.removals[:MAX_DETAIL_ITEMS],
        }

    def summary(self) -> str:
        """One-line human-readable summary."""
        parts = [
            f"fetched={self.fetched}",
            f"filtered={self.filtered}",
            f"created={self.created}",
            f"updated={self.updated}",
            f"reactivated={self.reactivated}",
            f"unchanged={self.unchanged}",
            f"deleted={self.soft_deleted}",
            f"failed={self.failed}",
        ]
        if self.offboard_failures:
            parts.append(f"offboard_failures={self.offboard_failures}")
        return ", ".join(parts)


@dataclass
class SyncResult:
    """
    Result of one pipeline run.

    Attributes:
        sync_type: Pipeline that ran
        requested_mode: Mode the caller asked for
        run: The ledger entry that was appended
        stats: Run statistics
    """

    sync_type: SyncType
    requested_mode: SyncMode
    run: SyncRun
    stats: SyncStats

    @property
    def mode(self) -> SyncMode:
        """Effective mode; incremental without a boundary runs full."""
        return self.run.mode

    @property
    def fell_back_to_full(self) -> bool:
        return self.requested_mode != self.run.mode


class SyncEngine:
    """
    Reconciliation engine between the PRM and the local database.

    Usage:
        engine = SyncEngine(
            database=SyncDatabase('/path/to/partner_sync.db'),
            prm_client=PRMClient(api_key, tenant_id),
            filter_config=FilterConfig(),
            offboarder=Offboarder(db, LMSClient(lms_key)),
        )

        # Incremental accounts sync (falls back to full on the first run)
        result = engine.run_sync(SyncType.ACCOUNTS)
        print(result.stats.summary())

        # Full sync of every pipeline, in dependency order
        results = engine.run_all(SyncMode.FULL)

        # Dry run
        preview = engine.preview_sync()
    """

    def __init__(
        self,
        database: SyncDatabase,
        prm_client: Optional[PRMClient],
        filter_config: Optional[FilterConfig] = None,
        offboarder: Optional[Offboarder] = None,
        enrichment_batch_size: int = DEFAULT_LOOKUP_BATCH_SIZE,
        audit_logger: Optional[logging.Logger] = None,
    ):
        """
        Initialize the sync engine.

        Args:
            database: SyncDatabase instance holding reconciled tables
            prm_client: Client for the PRM collections; None for read-only
                        status queries
            filter_config: Eligibility filter configuration (default rules
                           when None)
            offboarder: Offboarding cascade runner. When None, one without a
                        learning platform client is used, so removals with
                        platform access to revoke are reported as failures.
            enrichment_batch_size: User IDs per primary-user lookup request
            audit_logger: Logger for filter, removal and offboarding
                          decisions (default: audit logger)
        """
        self.database = database
        self.prm_client = prm_client
        self.filter_config = filter_config or FilterConfig()
        self.audit = audit_logger or get_audit_logger()
        self.offboarder = offboarder or Offboarder(
            database, None, audit_logger=self.audit
        )
        self.enrichment_batch_size = enrichment_batch_size
        self.ledger = SyncLedger(database)

        account_filter, contact_filter, lead_filter = build_filters(self.filter_config)
        self.filters = {
            SyncType.ACCOUNTS: account_filter,
            SyncType.CONTACTS: contact_filter,
            SyncType.LEADS: lead_filter,
        }

    def _require_prm_client(self) -> PRMClient:
        if self.prm_client is None:
            raise RuntimeError("PRM client is not configured")
        return self.prm_client

    # =========================================================================
    # Runs
    # =========================================================================

    def run_sync(
        self,
        entity_type: SyncType,
        mode: SyncMode = SyncMode.INCREMENTAL,
    ) -> SyncResult:
        """
        Run one pipeline and append its ledger row.

        An incremental request with no completed run of the same type on
        record runs, and is recorded, as a full sync.

        Args:
            entity_type: Pipeline to run
            mode: Requested mode

        Returns:
            SyncResult for the run

        Raises:
            TransportError: If the fetch fails; the run is logged as failed
        """
        sync_type = SyncType(entity_type)
        requested_mode = SyncMode(mode)

        boundary: Optional[datetime] = None
        effective_mode = requested_mode
        if requested_mode is SyncMode.INCREMENTAL:
            boundary = self.ledger.last_success(sync_type)
            if boundary is None:
                logger.info(
                    f"No completed {sync_type.value} run on record, "
                    "falling back to full sync"
                )
                effective_mode = SyncMode.FULL

        run = SyncRun(sync_type, effective_mode)
        run.details["requested_mode"] = requested_mode.value
        if boundary is not None:
            run.details["modified_after"] = to_db_timestamp(boundary)

        stats = SyncStats()
        logger.info(f"Starting {effective_mode.value} {sync_type.value} sync")
        self.audit.info(
            f"RUN {run.id} {sync_type.value} mode={effective_mode.value} "
            f"requested={requested_mode.value}"
        )

        try:
            self._run_pipeline(sync_type, effective_mode, boundary, stats)
        except Exception as e:
            run.counters = stats.counters()
            run.details.update(stats.to_details())
            run.fail(e)
            self.ledger.log_run(run)
            logger.error(f"{sync_type.value.capitalize()} sync failed: {e}")
            self.audit.error(f"RUN {run.id} failed: {e}")
            raise

        run.counters = stats.counters()
        run.details.update(stats.to_details())
        run.complete()
        self.ledger.log_run(run)

        logger.info(f"{sync_type.value.capitalize()} sync completed: {stats.summary()}")
        self.audit.info(f"RUN {run.id} completed: {stats.summary()}")
        return SyncResult(sync_type, requested_mode, run, stats)

    def run_all(
        self,
        mode: SyncMode = SyncMode.INCREMENTAL,
        on_result: Optional[Callable[[SyncResult], None]] = None,
    ) -> list[SyncResult]:
        """
        Run accounts, contacts and leads in that order.

        Contacts and leads resolve their owning partner, so accounts always
        run first. The first failed run stops the sequence.

        Args:
            mode: Requested mode for every pipeline
            on_result: Optional callback invoked after each completed run

        Returns:
            Results in run order

        Raises:
            Exception: Whatever the failing run raised
        """
        results = []
        for sync_type in SyncType:
            result = self.run_sync(sync_type, mode)
            results.append(result)
            if on_result is not None:
                on_result(result)
        return results

    def _run_pipeline(
        self,
        sync_type: SyncType,
        mode: SyncMode,
        boundary: Optional[datetime],
        stats: SyncStats,
    ) -> None:
        pipeline = PIPELINES[sync_type]
        classification, rejected_ids = self._fetch_and_classify(
            sync_type, boundary, stats
        )

        if sync_type is SyncType.ACCOUNTS:
            self._write_accounts(classification.valid, stats)
            self._enrich_primary_users(classification.valid, stats)
            cascade = self.offboarder.offboard_partner
        elif sync_type is SyncType.CONTACTS:
            self._write_contacts(classification.valid, stats)
            cascade = self.offboarder.offboard_contact
        else:
            self._write_leads(classification.valid, stats)
            cascade = None

        self._reconcile(
            pipeline,
            classification,
            rejected_ids,
            mode is SyncMode.FULL,
            stats,
            cascade,
        )

        if sync_type is SyncType.LEADS:
            changed = self.database.refresh_lead_counts()
            logger.debug(f"Refreshed lead counts on {changed} partners")

    # =========================================================================
    # Fetch and classify
    # =========================================================================

    def _fetch_and_classify(
        self,
        sync_type: SyncType,
        boundary: Optional[datetime],
        stats: SyncStats,
    ) -> tuple[Classification, set[str]]:
        """
        Fetch one collection, parse it and run the eligibility filter.

        Records that do not fit the collection schema are counted as failed.
        Their IDs are returned so reconciliation treats them as still present.
        """
        pipeline = PIPELINES[sync_type]
        raw = self._require_prm_client().fetch_all(
            pipeline.collection, pipeline.fields, modified_after=boundary
        )
        stats.fetched = len(raw)

        records, rejects = parse_records(raw, pipeline.record_type)
        for reject in rejects:
            stats.record_failure(reject["identifier"], reject["message"])
            self.audit.warning(
                f"REJECTED {sync_type.value} {reject['identifier']}: "
                f"{reject['message']}"
            )

        classification = self.filters[sync_type].classify(records)
        stats.filtered = len(classification.filtered)
        stats.filter_reasons = classification.reason_counts()
        for item in classification.filtered:
            self.audit.info(
                f"FILTERED {sync_type.value} {item.record.identifier}: "
                f"{item.reason.value}"
            )

        logger.info(
            f"{sync_type.value.capitalize()}: {len(raw)} fetched, "
            f"{len(classification.valid)} valid, {stats.filtered} filtered, "
            f"{len(rejects)} rejected"
        )
        return classification, {reject["identifier"] for reject in rejects}

    # =========================================================================
    # Writes
    # =========================================================================

    def _write_accounts(self, accounts: list[RemoteAccount], stats: SyncStats) -> None:
        index = IdentityIndex(
            self.database.get_all_records("partners"),
            natural_column="account_name",
            natural_key=MatchKey.NAME,
        )
        writer = UpsertWriter(self.database, "partners", index, stats)
        for account in accounts:
            writer.write(
                account.identifier,
                account.to_columns(),
                account.remote_id,
                account.crm_id,
                account.name,
            )

    def _write_contacts(self, contacts: list[RemoteContact], stats: SyncStats) -> None:
        partners = PartnerLookup(self.database.get_all_records("partners"))
        index = IdentityIndex(
            self.database.get_all_records("contacts"),
            natural_column="email",
            natural_key=MatchKey.EMAIL,
        )
        writer = UpsertWriter(self.database, "contacts", index, stats)
        for contact in contacts:
            partner_id = partners.resolve(
                contact.account_remote_id, contact.account_name
            )
            if partner_id is None:
                stats.unlinked += 1
                logger.debug(f"No partner found for contact {contact.identifier}")
            writer.write(
                contact.identifier,
                contact.to_columns(partner_id),
                contact.remote_id,
                contact.crm_id,
                contact.email,
            )

    def _write_leads(self, leads: list[RemoteLead], stats: SyncStats) -> None:
        partners = PartnerLookup(self.database.get_all_records("partners"))
        index = IdentityIndex(self.database.get_all_records("leads"))
        writer = UpsertWriter(self.database, "leads", index, stats)
        for lead in leads:
            partner_id = partners.resolve(lead.partner_remote_id)
            if partner_id is None:
                stats.unlinked += 1
            writer.write(
                lead.identifier,
                lead.to_columns(partner_id),
                lead.remote_id,
                lead.crm_id,
            )

    def _enrich_primary_users(
        self, accounts: list[RemoteAccount], stats: SyncStats
    ) -> None:
        """
        Fill primary-user name and email on partners.

        Users are looked up in sequential batches. A lookup failure is
        logged as a warning and does not fail the run.
        """
        accounts_by_user: dict[str, list[str]] = defaultdict(list)
        for account in accounts:
            if account.primary_user_id:
                accounts_by_user[account.primary_user_id].append(account.remote_id)
        if not accounts_by_user:
            return

        try:
            raw_users = self._require_prm_client().fetch_by_ids(
                CONTACT_COLLECTION,
                PRIMARY_USER_FIELDS,
                list(accounts_by_user),
                batch_size=self.enrichment_batch_size,
            )
        except TransportError as e:
            logger.warning(f"Primary user lookup failed: {e}")
            stats.warnings.append(f"primary user lookup failed: {e}")
            return

        users, _ = parse_records(raw_users, RemoteContact)
        partners = PartnerLookup(self.database.get_active_records("partners"))
        for user in users:
            for account_remote_id in accounts_by_user.get(user.remote_id, []):
                partner_id = partners.resolve(account_remote_id)
                if partner_id is None:
                    continue
                try:
                    changed = self.database.update_primary_user(
                        partner_id, user.full_name or None, user.email
                    )
                except sqlite3.Error as e:
                    stats.record_failure(
                        f"primary user {user.remote_id}", f"enrichment failed: {e}"
                    )
                    continue
                if changed:
                    stats.enriched += 1

        logger.debug(f"Enriched {stats.enriched} partners with primary user details")

    # =========================================================================
    # Reconciliation
    # =========================================================================

    def _reconcile(
        self,
        pipeline: Pipeline,
        classification: Classification,
        rejected_ids: set[str],
        full_sync: bool,
        stats: SyncStats,
        cascade: Optional[Callable[[int], OffboardResult]],
    ) -> None:
        """
        Soft-delete active rows that lost their eligible remote record.

        Each soft-delete is committed before its offboarding cascade runs,
        so a cascade failure leaves the local removal in place.
        """
        removals = find_removals(
            self.database.get_active_records(pipeline.table),
            classification.valid_ids() | rejected_ids,
            classification.filtered_ids(),
            full_sync=full_sync,
            label_column=pipeline.label_column,
        )

        for removal in removals:
            try:
                deleted = self.database.soft_delete_record(
                    pipeline.table, removal.local_id
                )
            except sqlite3.Error as e:
                stats.record_failure(removal.label, f"soft-delete failed: {e}")
                continue
            if not deleted:
                continue

            stats.soft_deleted += 1
            stats.removals.append(removal.to_dict())
            self.audit.info(
                f"REMOVED {pipeline.table} {removal.label} "
                f"({removal.remote_id}): {removal.reason.value}"
            )

            if cascade is not None:
                stats.record_offboard(cascade(removal.local_id))

        if removals:
            logger.info(f"Soft-deleted {stats.soft_deleted} {pipeline.table} rows")

    # =========================================================================
    # Read-only views
    # =========================================================================

    def preview_sync(self) -> dict[str, dict[str, Any]]:
        """
        Dry-run every pipeline as a full sync without writing anything.

        Returns:
            Per sync type: total fetched, valid, filtered and rejected
            counts, filtered counts by reason, active rows in the database,
            rows a full sync would soft-delete (by reason) and a few
            filtered samples.

        Raises:
            TransportError: If a fetch fails
        """
        preview: dict[str, dict[str, Any]] = {}
        for sync_type in SyncType:
            pipeline = PIPELINES[sync_type]
            raw = self._require_prm_client().fetch_all(
                pipeline.collection, pipeline.fields
            )
            records, rejects = parse_records(raw, pipeline.record_type)
            classification = self.filters[sync_type].classify(records)

            removals = find_removals(
                self.database.get_active_records(pipeline.table),
                classification.valid_ids() | {r["identifier"] for r in rejects},
                classification.filtered_ids(),
                full_sync=True,
                label_column=pipeline.label_column,
            )
            by_reason: dict[str, int] = defaultdict(int)
            for removal in removals:
                by_reason[removal.reason.value] += 1

            preview[sync_type.value] = {
                "total": len(raw),
                "valid": len(classification.valid),
                "filtered": len(classification.filtered),
                "rejected": len(rejects),
                "filter_reasons": classification.reason_counts(),
                "current_in_db": self.database.count_records(pipeline.table, True),
                "would_remove": len(removals),
                "would_remove_by_reason": dict(sorted(by_reason.items())),
                "samples": [
                    {"identifier": item.record.identifier, "reason": item.reason.value}
                    for item in classification.filtered[:PREVIEW_SAMPLE_SIZE]
                ],
            }
        return preview

    def get_sync_status(self) -> dict[str, Any]:
        """
        Get last-run metadata and current table counts.

        Returns:
            Per sync type: table name, total/active/inactive rows, the last
            run (SyncRun or None) and the last successful completion time;
            plus "lms" with linked contact and mirrored group counts.
        """
        status: dict[str, Any] = {}
        for sync_type in SyncType:
            table = PIPELINES[sync_type].table
            total = self.database.count_records(table)
            active = self.database.count_records(table, active=True)
            status[sync_type.value] = {
                "table": table,
                "total": total,
                "active": active,
                "inactive": total - active,
                "last_run": self.ledger.last_run(sync_type),
                "last_success": self.ledger.last_success(sync_type),
            }
        status["lms"] = {
            "linked_contacts": self.database.count_lms_linked_contacts(),
            "groups": len(self.database.get_lms_groups()),
        }
        return status
