"""
SQLite database module for reconciled partner data.

Provides persistent storage for partners, contacts, leads, the learning
platform group mirror and the append-only sync run ledger.
"""

import sqlite3
from collections.abc import Generator
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Optional

# SQL Schema for reconciled entity tables, LMS group mirror and sync ledger
SCHEMA = """
CREATE TABLE IF NOT EXISTS partners (
    id INTEGER PRIMARY KEY,
    remote_id TEXT,
    crm_id TEXT,
    account_name TEXT NOT NULL,
    partner_tier TEXT,
    account_status TEXT,
    partner_type TEXT,
    website TEXT,
    region TEXT,
    mailing_city TEXT,
    mailing_country TEXT,
    owner_name TEXT,
    owner_email TEXT,
    parent_remote_id TEXT,
    primary_user_id TEXT,
    primary_user_name TEXT,
    primary_user_email TEXT,
    lead_count INTEGER NOT NULL DEFAULT 0,
    remote_updated_at TIMESTAMP,
    is_active INTEGER NOT NULL DEFAULT 1,
    deleted_at TIMESTAMP,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

CREATE UNIQUE INDEX IF NOT EXISTS idx_partners_remote_active
    ON partners(remote_id) WHERE is_active = 1 AND remote_id IS NOT NULL;
CREATE INDEX IF NOT EXISTS idx_partners_name ON partners(account_name COLLATE NOCASE);
CREATE INDEX IF NOT EXISTS idx_partners_crm ON partners(crm_id);

CREATE TABLE IF NOT EXISTS contacts (
    id INTEGER PRIMARY KEY,
    remote_id TEXT,
    partner_id INTEGER REFERENCES partners(id),
    crm_id TEXT,
    email TEXT,
    first_name TEXT,
    last_name TEXT,
    title TEXT,
    phone TEXT,
    account_name TEXT,
    contact_status TEXT,
    lms_user_id TEXT,
    remote_updated_at TIMESTAMP,
    is_active INTEGER NOT NULL DEFAULT 1,
    deleted_at TIMESTAMP,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

CREATE UNIQUE INDEX IF NOT EXISTS idx_contacts_remote_active
    ON contacts(remote_id) WHERE is_active = 1 AND remote_id IS NOT NULL;
CREATE INDEX IF NOT EXISTS idx_contacts_email ON contacts(email COLLATE NOCASE);
CREATE INDEX IF NOT EXISTS idx_contacts_partner ON contacts(partner_id);

CREATE TABLE IF NOT EXISTS leads (
    id INTEGER PRIMARY KEY,
    remote_id TEXT,
    partner_id INTEGER REFERENCES partners(id),
    crm_id TEXT,
    first_name TEXT,
    last_name TEXT,
    email TEXT,
    phone TEXT,
    title TEXT,
    company_name TEXT,
    status TEXT,
    source TEXT,
    lead_created_at TIMESTAMP,
    remote_updated_at TIMESTAMP,
    is_active INTEGER NOT NULL DEFAULT 1,
    deleted_at TIMESTAMP,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

CREATE UNIQUE INDEX IF NOT EXISTS idx_leads_remote_active
    ON leads(remote_id) WHERE is_active = 1 AND remote_id IS NOT NULL;
CREATE INDEX IF NOT EXISTS idx_leads_partner ON leads(partner_id);

CREATE TABLE IF NOT EXISTS lms_groups (
    id INTEGER PRIMARY KEY,
    lms_group_id TEXT NOT NULL,
    name TEXT NOT NULL,
    partner_id INTEGER REFERENCES partners(id),
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    UNIQUE(lms_group_id)
);

CREATE INDEX IF NOT EXISTS idx_lms_groups_partner ON lms_groups(partner_id);
CREATE INDEX IF NOT EXISTS idx_lms_groups_name ON lms_groups(name COLLATE NOCASE);

CREATE TABLE IF NOT EXISTS sync_runs (
    id TEXT PRIMARY KEY,
    sync_type TEXT NOT NULL,
    mode TEXT NOT NULL,
    status TEXT NOT NULL,
    processed INTEGER NOT NULL DEFAULT 0,
    created INTEGER NOT NULL DEFAULT 0,
    updated INTEGER NOT NULL DEFAULT 0,
    reactivated INTEGER NOT NULL DEFAULT 0,
    soft_deleted INTEGER NOT NULL DEFAULT 0,
    failed INTEGER NOT NULL DEFAULT 0,
    details TEXT,
    started_at TIMESTAMP NOT NULL,
    completed_at TIMESTAMP
);

CREATE INDEX IF NOT EXISTS idx_sync_runs_type ON sync_runs(sync_type, status);
"""

# Tables holding reconciled remote entities
ENTITY_TABLES = ("partners", "contacts", "leads")

# Ledger columns in insert order
SYNC_RUN_COLUMNS = (
    "id",
    "sync_type",
    "mode",
    "status",
    "processed",
    "created",
    "updated",
    "reactivated",
    "soft_deleted",
    "failed",
    "details",
    "started_at",
    "completed_at",
)


def utc_now() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def to_db_timestamp(value: Optional[datetime]) -> Optional[str]:
    """
    Convert a datetime to the ISO-8601 text stored in the database.

    Naive datetimes are taken to be UTC.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def from_db_timestamp(value: Any) -> Optional[datetime]:
    """Parse stored ISO-8601 text back into an aware UTC datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _check_table(table: str) -> str:
    if table not in ENTITY_TABLES:
        raise ValueError(f"Unknown entity table: {table!r}")
    return table


class SyncDatabase:
    """
    SQLite database manager for reconciled partner data.

    Provides methods for:
    - Reading and writing partner, contact and lead rows
    - Soft-deleting and reactivating rows without hard deletes
    - Maintaining the learning platform group mirror
    - Appending to and querying the sync run ledger

    Usage:
        db = SyncDatabase('/path/to/partner_sync.db')
        db.initialize()

        # Or use in-memory for testing:
        db = SyncDatabase(':memory:')
        db.initialize()
    """

    def __init__(self, db_path: str):
        """
        Initialize the database manager.

        Args:
            db_path: Path to SQLite database file, or ':memory:' for in-memory database
        """
        self.db_path = db_path
        self._shared_connection: Optional[sqlite3.Connection] = None

    def _get_connection(self) -> sqlite3.Connection:
        """
        Get a database connection.

        For in-memory databases, returns a shared connection to ensure
        schema persists across operations. For file databases, creates
        a new connection each time.
        """
        if self.db_path == ":memory:":
            if self._shared_connection is None:
                self._shared_connection = sqlite3.connect(":memory:")
                self._shared_connection.row_factory = sqlite3.Row
                self._shared_connection.execute("PRAGMA foreign_keys = ON")
            return self._shared_connection

        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    @contextmanager
    def connection(self) -> Generator[sqlite3.Connection, None, None]:
        """
        Context manager for database connections.

        Each use is one transaction: committed on success, rolled back
        on any exception.

        Usage:
            with db.connection() as conn:
                conn.execute("SELECT * FROM partners")
        """
        conn = self._get_connection()
        is_shared = self.db_path == ":memory:"
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            if not is_shared:
                conn.close()

    def initialize(self) -> None:
        """
        Initialize the database schema.

        Creates all tables and indexes if they don't exist.
        """
        with self.connection() as conn:
            conn.executescript(SCHEMA)

    # =========================================================================
    # Entity Operations (partners, contacts, leads)
    # =========================================================================

    def get_record(self, table: str, record_id: int) -> Optional[dict[str, Any]]:
        """
        Get one row by local ID.

        Args:
            table: Entity table name
            record_id: Local row ID

        Returns:
            Row as a dictionary, or None if not found
        """
        with self.connection() as conn:
            row = conn.execute(
                f"SELECT * FROM {_check_table(table)} WHERE id = ?", (record_id,)
            ).fetchone()
        return dict(row) if row else None

    def get_all_records(self, table: str) -> list[dict[str, Any]]:
        """
        Get every row of an entity table, active and soft-deleted.

        Rows are ordered so that active rows, and then more recently
        updated rows, come last.
        """
        with self.connection() as conn:
            rows = conn.execute(
                f"SELECT * FROM {_check_table(table)} "
                "ORDER BY is_active ASC, updated_at ASC, id ASC"
            ).fetchall()
        return [dict(row) for row in rows]

    def get_active_records(self, table: str) -> list[dict[str, Any]]:
        """Get all active rows of an entity table."""
        with self.connection() as conn:
            rows = conn.execute(
                f"SELECT * FROM {_check_table(table)} WHERE is_active = 1 ORDER BY id"
            ).fetchall()
        return [dict(row) for row in rows]

    def insert_record(self, table: str, values: dict[str, Any]) -> int:
        """
        Insert a new active row.

        Args:
            table: Entity table name
            values: Column values; local-only columns are left NULL

        Returns:
            Local ID of the new row
        """
        now = to_db_timestamp(utc_now())
        columns = list(values) + ["is_active", "deleted_at", "created_at", "updated_at"]
        params = list(values.values()) + [1, None, now, now]
        placeholders = ", ".join("?" for _ in columns)

        with self.connection() as conn:
            cursor = conn.execute(
                f"INSERT INTO {_check_table(table)} ({', '.join(columns)}) "
                f"VALUES ({placeholders})",
                params,
            )
            return int(cursor.lastrowid)

    def update_record(
        self, table: str, record_id: int, values: dict[str, Any]
    ) -> bool:
        """
        Update remote-owned columns and mark the row active.

        Clears deleted_at. Columns not named in values are left untouched.

        Returns:
            True if a row was updated
        """
        assignments = [f"{column} = ?" for column in values]
        assignments += ["is_active = 1", "deleted_at = NULL", "updated_at = ?"]
        params = list(values.values()) + [to_db_timestamp(utc_now()), record_id]

        with self.connection() as conn:
            cursor = conn.execute(
                f"UPDATE {_check_table(table)} SET {', '.join(assignments)} "
                "WHERE id = ?",
                params,
            )
            return cursor.rowcount > 0

    def soft_delete_record(self, table: str, record_id: int) -> bool:
        """
        Mark an active row inactive and stamp deleted_at.

        Returns:
            True if the row was active and is now soft-deleted
        """
        now = to_db_timestamp(utc_now())
        with self.connection() as conn:
            cursor = conn.execute(
                f"UPDATE {_check_table(table)} "
                "SET is_active = 0, deleted_at = ?, updated_at = ? "
                "WHERE id = ? AND is_active = 1",
                (now, now, record_id),
            )
            return cursor.rowcount > 0

    def count_records(self, table: str, active: Optional[bool] = None) -> int:
        """
        Count rows in an entity table.

        Args:
            table: Entity table name
            active: True for active rows only, False for soft-deleted only,
                    None for all rows
        """
        query = f"SELECT COUNT(*) FROM {_check_table(table)}"
        params: tuple[Any, ...] = ()
        if active is not None:
            query += " WHERE is_active = ?"
            params = (1 if active else 0,)
        with self.connection() as conn:
            return int(conn.execute(query, params).fetchone()[0])

    # =========================================================================
    # Partner Operations
    # =========================================================================

    def update_primary_user(
        self, partner_id: int, name: Optional[str], email: Optional[str]
    ) -> bool:
        """
        Store primary-user details on a partner if they changed.

        Returns:
            True if the row was modified
        """
        with self.connection() as conn:
            cursor = conn.execute(
                """
                UPDATE partners
                SET primary_user_name = ?, primary_user_email = ?
                WHERE id = ?
                  AND (primary_user_name IS NOT ? OR primary_user_email IS NOT ?)
                """,
                (name, email, partner_id, name, email),
            )
            return cursor.rowcount > 0

    def refresh_lead_counts(self) -> int:
        """
        Recompute each partner's lead_count from its active leads.

        Returns:
            Number of partner rows whose count changed
        """
        with self.connection() as conn:
            cursor = conn.execute(
                """
                UPDATE partners
                SET lead_count = (
                    SELECT COUNT(*) FROM leads
                    WHERE leads.partner_id = partners.id AND leads.is_active = 1
                )
                WHERE lead_count != (
                    SELECT COUNT(*) FROM leads
                    WHERE leads.partner_id = partners.id AND leads.is_active = 1
                )
                """
            )
            return cursor.rowcount

    # =========================================================================
    # Contact LMS Link Operations
    # =========================================================================

    def link_contact_lms_user(self, contact_id: int, lms_user_id: str) -> bool:
        """
        Link a contact to a learning platform identity.

        This is the only write path for lms_user_id; sync never touches it.

        Returns:
            True if the contact exists and was linked
        """
        with self.connection() as conn:
            cursor = conn.execute(
                "UPDATE contacts SET lms_user_id = ? WHERE id = ?",
                (lms_user_id, contact_id),
            )
            return cursor.rowcount > 0

    def get_lms_linked_contacts(self, partner_id: int) -> list[dict[str, Any]]:
        """
        Get every contact of a partner that has a learning platform identity.

        Soft-deleted contacts are included since their access still needs
        revoking when the partner is offboarded.
        """
        with self.connection() as conn:
            rows = conn.execute(
                "SELECT * FROM contacts "
                "WHERE partner_id = ? AND lms_user_id IS NOT NULL ORDER BY id",
                (partner_id,),
            ).fetchall()
        return [dict(row) for row in rows]

    def count_lms_linked_contacts(self) -> int:
        """Count active contacts linked to a learning platform identity."""
        with self.connection() as conn:
            row = conn.execute(
                "SELECT COUNT(*) FROM contacts "
                "WHERE is_active = 1 AND lms_user_id IS NOT NULL"
            ).fetchone()
        return int(row[0])

    # =========================================================================
    # LMS Group Mirror Operations
    # =========================================================================

    def register_lms_group(
        self, lms_group_id: str, name: str, partner_id: Optional[int] = None
    ) -> None:
        """
        Insert or update a mirrored learning platform group.

        Args:
            lms_group_id: Group ID on the learning platform
            name: Group display name
            partner_id: Local partner the group belongs to, or None for
                        shared groups
        """
        with self.connection() as conn:
            conn.execute(
                """
                INSERT INTO lms_groups (lms_group_id, name, partner_id)
                VALUES (?, ?, ?)
                ON CONFLICT(lms_group_id) DO UPDATE SET
                    name = excluded.name,
                    partner_id = excluded.partner_id
                """,
                (lms_group_id, name, partner_id),
            )

    def get_lms_group_by_name(self, name: str) -> Optional[dict[str, Any]]:
        """Find a mirrored group by case-insensitive name."""
        with self.connection() as conn:
            row = conn.execute(
                "SELECT * FROM lms_groups WHERE LOWER(name) = LOWER(?) "
                "ORDER BY id LIMIT 1",
                (name,),
            ).fetchone()
        return dict(row) if row else None

    def get_partner_lms_group(self, partner_id: int) -> Optional[dict[str, Any]]:
        """Find the mirrored group owned by a partner."""
        with self.connection() as conn:
            row = conn.execute(
                "SELECT * FROM lms_groups WHERE partner_id = ? ORDER BY id LIMIT 1",
                (partner_id,),
            ).fetchone()
        return dict(row) if row else None

    def delete_lms_group(self, lms_group_id: str) -> bool:
        """
        Drop a mirrored group row.

        Returns:
            True if a row was deleted
        """
        with self.connection() as conn:
            cursor = conn.execute(
                "DELETE FROM lms_groups WHERE lms_group_id = ?", (lms_group_id,)
            )
            return cursor.rowcount > 0

    def get_lms_groups(self) -> list[dict[str, Any]]:
        """Get all mirrored learning platform groups."""
        with self.connection() as conn:
            rows = conn.execute("SELECT * FROM lms_groups ORDER BY name").fetchall()
        return [dict(row) for row in rows]

    # =========================================================================
    # Sync Run Ledger Operations
    # =========================================================================

    def insert_sync_run(self, values: dict[str, Any]) -> None:
        """
        Append one ledger row.

        Args:
            values: Mapping of SYNC_RUN_COLUMNS to values
        """
        placeholders = ", ".join("?" for _ in SYNC_RUN_COLUMNS)
        with self.connection() as conn:
            conn.execute(
                f"INSERT INTO sync_runs ({', '.join(SYNC_RUN_COLUMNS)}) "
                f"VALUES ({placeholders})",
                [values.get(column) for column in SYNC_RUN_COLUMNS],
            )

    def get_last_completed_at(self, sync_type: str) -> Optional[datetime]:
        """Get the latest completion time of a completed run of a type."""
        with self.connection() as conn:
            row = conn.execute(
                "SELECT MAX(completed_at) FROM sync_runs "
                "WHERE sync_type = ? AND status = 'completed'",
                (sync_type,),
            ).fetchone()
        return from_db_timestamp(row[0]) if row else None

    def get_sync_runs(
        self, sync_type: Optional[str] = None, limit: int = 10
    ) -> list[dict[str, Any]]:
        """
        Get ledger rows, newest first.

        Args:
            sync_type: Optional type to filter on
            limit: Maximum number of rows
        """
        query = "SELECT * FROM sync_runs"
        params: list[Any] = []
        if sync_type:
            query += " WHERE sync_type = ?"
            params.append(sync_type)
        query += " ORDER BY started_at DESC, rowid DESC LIMIT ?"
        params.append(limit)

        with self.connection() as conn:
            rows = conn.execute(query, params).fetchall()
        return [dict(row) for row in rows]

