"""
SQLite-based state store implementation.

Tables:
- subscriptions: Committed recurring payments (always appended)
- domains: Committed domain registrations (unique by name, merged on approval)
- receipts: One row per processed message, with the selected attachment
- pending_imports: Review queue items
- sync_log: One row per pipeline run

Every public operation runs inside a single transaction opened with
BEGIN IMMEDIATE, so a receipt is never written without its review item and a
review item is never approved without its committed entity.
"""

import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from pathlib import Path
from typing import Any

from ..errors import NotFoundError, ValidationError
from ..schemas.extraction import DomainExtraction, SubscriptionExtraction


def _now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class PendingStatus(str, Enum):
    """Review state of a pending import."""

    PENDING = "pending"
    APPROVED = "approved"  # terminal
    REJECTED = "rejected"  # terminal


class SyncStatus(str, Enum):
    """Status of a pipeline run."""

    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class ReceiptRecord:
    """Durable record of one processed message."""

    id: int
    subscription_id: int | None
    domain_id: int | None
    email_subject: str | None
    email_from: str | None
    email_date: str
    attachment_mime_type: str | None
    attachment_data: str | None  # base64
    raw_email_body: str | None
    created_at: str

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "ReceiptRecord":
        """Create from database row."""
        return cls(
            id=row["id"],
            subscription_id=row["subscription_id"],
            domain_id=row["domain_id"],
            email_subject=row["email_subject"],
            email_from=row["email_from"],
            email_date=row["email_date"],
            attachment_mime_type=row["attachment_mime_type"],
            attachment_data=row["attachment_data"],
            raw_email_body=row["raw_email_body"],
            created_at=row["created_at"],
        )


@dataclass
class PendingImportRecord:
    """A review queue item."""

    id: int
    email_subject: str | None
    email_from: str
    email_date: str | None
    classification: str | None
    confidence: float | None
    extracted_data: str  # stored verbatim
    receipt_id: int | None
    status: PendingStatus
    created_at: str

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "PendingImportRecord":
        """Create from database row."""
        return cls(
            id=row["id"],
            email_subject=row["email_subject"],
            email_from=row["email_from"],
            email_date=row["email_date"],
            classification=row["classification"],
            confidence=row["confidence"],
            extracted_data=row["extracted_data"],
            receipt_id=row["receipt_id"],
            status=PendingStatus(row["status"]),
            created_at=row["created_at"],
        )

    @property
    def is_terminal(self) -> bool:
        return self.status is not PendingStatus.PENDING


@dataclass
class SyncLogRecord:
    """One pipeline run."""

    id: int
    sync_started_at: str
    sync_completed_at: str | None
    emails_processed: int
    emails_imported: int
    status: SyncStatus
    error_message: str | None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "SyncLogRecord":
        """Create from database row."""
        return cls(
            id=row["id"],
            sync_started_at=row["sync_started_at"],
            sync_completed_at=row["sync_completed_at"],
            emails_processed=row["emails_processed"],
            emails_imported=row["emails_imported"],
            status=SyncStatus(row["status"]),
            error_message=row["error_message"],
        )


@dataclass
class SubscriptionRecord:
    """Committed subscription row."""

    id: int
    name: str
    cost: float
    currency: str
    periodicity: str
    next_date: str | None
    category: str | None
    status: str
    notes: str | None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "SubscriptionRecord":
        """Create from database row."""
        return cls(
            id=row["id"],
            name=row["name"],
            cost=row["cost"],
            currency=row["currency"],
            periodicity=row["periodicity"],
            next_date=row["next_date"],
            category=row["category"],
            status=row["status"],
            notes=row["notes"],
        )


@dataclass
class DomainRecord:
    """Committed domain row."""

    id: int
    name: str
    registrar: str | None
    cost: float | None
    currency: str | None
    registration_date: str | None
    expiry_date: str
    auto_renew: bool
    status: str
    notes: str | None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "DomainRecord":
        """Create from database row."""
        return cls(
            id=row["id"],
            name=row["name"],
            registrar=row["registrar"],
            cost=row["cost"],
            currency=row["currency"],
            registration_date=row["registration_date"],
            expiry_date=row["expiry_date"],
            auto_renew=bool(row["auto_renew"]),
            status=row["status"],
            notes=row["notes"],
        )


class StoreSession:
    """
    Unit of work over one open transaction.

    Obtained from StateStore.session(); all writes made through one session
    commit or roll back together.
    """

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    # Receipts

    def insert_receipt(
        self,
        email_subject: str | None,
        email_from: str | None,
        email_date: str,
        attachment_mime_type: str | None = None,
        attachment_data: str | None = None,
        raw_email_body: str | None = None,
    ) -> int:
        """Insert a receipt. Returns its ID."""
        cursor = self.conn.execute(
            """
            INSERT INTO receipts (email_subject, email_from, email_date,
                                  attachment_mime_type, attachment_data,
                                  raw_email_body, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
        """,
            (
                email_subject,
                email_from,
                email_date,
                attachment_mime_type,
                attachment_data,
                raw_email_body,
                _now(),
            ),
        )
        return cursor.lastrowid or 0

    def get_receipt(self, receipt_id: int) -> ReceiptRecord | None:
        row = self.conn.execute("SELECT * FROM receipts WHERE id = ?", (receipt_id,)).fetchone()
        return ReceiptRecord.from_row(row) if row else None

    def link_receipt(
        self,
        receipt_id: int,
        subscription_id: int | None = None,
        domain_id: int | None = None,
    ) -> None:
        """Point a receipt at exactly one committed entity."""
        if (subscription_id is None) == (domain_id is None):
            raise ValueError("Exactly one of subscription_id and domain_id must be set")
        self.conn.execute(
            "UPDATE receipts SET subscription_id = ?, domain_id = ? WHERE id = ?",
            (subscription_id, domain_id, receipt_id),
        )

    # Pending imports

    def insert_pending_import(
        self,
        email_subject: str | None,
        email_from: str,
        email_date: str | None,
        classification: str | None,
        confidence: float | None,
        extracted_data: str,
        receipt_id: int | None = None,
    ) -> int:
        """Insert a review item in state `pending`. Returns its ID.

        extracted_data is stored exactly as given.
        """
        cursor = self.conn.execute(
            """
            INSERT INTO pending_imports (email_subject, email_from, email_date,
                                         classification, confidence, extracted_data,
                                         receipt_id, status, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
            (
                email_subject,
                email_from,
                email_date,
                classification,
                confidence,
                extracted_data,
                receipt_id,
                PendingStatus.PENDING.value,
                _now(),
            ),
        )
        return cursor.lastrowid or 0

    def get_pending_import(self, pending_id: int) -> PendingImportRecord | None:
        row = self.conn.execute(
            "SELECT * FROM pending_imports WHERE id = ?", (pending_id,)
        ).fetchone()
        return PendingImportRecord.from_row(row) if row else None

    def set_pending_status(self, pending_id: int, status: PendingStatus) -> None:
        """Move a review item out of `pending`.

        Raises:
            ValidationError: If the item is not currently pending.
        """
        if status is PendingStatus.PENDING:
            raise ValueError("Cannot transition a review item back to pending")
        cursor = self.conn.execute(
            "UPDATE pending_imports SET status = ? WHERE id = ? AND status = ?",
            (status.value, pending_id, PendingStatus.PENDING.value),
        )
        if cursor.rowcount == 0:
            raise ValidationError(
                f"Pending import {pending_id} is not pending; cannot mark it {status.value}"
            )

    # Committed entities

    def insert_subscription(self, extraction: SubscriptionExtraction) -> int:
        """Append a new active subscription. Returns its ID."""
        now = _now()
        cursor = self.conn.execute(
            """
            INSERT INTO subscriptions (name, cost, currency, periodicity, next_date,
                                       category, status, notes, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, 'active', NULL, ?, ?)
        """,
            (
                extraction.vendor,
                extraction.amount,
                extraction.currency,
                extraction.cycle.value,
                extraction.next_billing,
                extraction.category,
                now,
                now,
            ),
        )
        return cursor.lastrowid or 0

    def find_domain_by_name(self, name: str) -> DomainRecord | None:
        """Exact, case-sensitive lookup."""
        row = self.conn.execute("SELECT * FROM domains WHERE name = ?", (name,)).fetchone()
        return DomainRecord.from_row(row) if row else None

    def insert_domain(self, extraction: DomainExtraction) -> int:
        """Insert a new active domain. auto_renew defaults to false."""
        now = _now()
        cursor = self.conn.execute(
            """
            INSERT INTO domains (name, registrar, cost, currency, registration_date,
                                 expiry_date, auto_renew, status, notes,
                                 created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, 'active', NULL, ?, ?)
        """,
            (
                extraction.domain_name,
                extraction.registrar,
                extraction.cost,
                extraction.currency,
                extraction.registration_date,
                extraction.expiry_date,
                int(bool(extraction.auto_renew)),
                now,
                now,
            ),
        )
        return cursor.lastrowid or 0

    def merge_domain(self, domain_id: int, extraction: DomainExtraction) -> None:
        """Merge an extraction into an existing domain.

        Null optional fields keep the stored value; expiry_date is always
        overwritten.
        """
        auto_renew = None if extraction.auto_renew is None else int(extraction.auto_renew)
        self.conn.execute(
            """
            UPDATE domains SET
                registrar = COALESCE(?, registrar),
                cost = COALESCE(?, cost),
                currency = COALESCE(?, currency),
                registration_date = COALESCE(?, registration_date),
                auto_renew = COALESCE(?, auto_renew),
                expiry_date = ?,
                updated_at = ?
            WHERE id = ?
        """,
            (
                extraction.registrar,
                extraction.cost,
                extraction.currency,
                extraction.registration_date,
                auto_renew,
                extraction.expiry_date,
                _now(),
                domain_id,
            ),
        )

    def get_domain(self, domain_id: int) -> DomainRecord | None:
        row = self.conn.execute("SELECT * FROM domains WHERE id = ?", (domain_id,)).fetchone()
        return DomainRecord.from_row(row) if row else None


class StateStore:
    """
    SQLite-based state store for the pipeline.

    Provides persistent tracking of:
    - Receipts and the review queue
    - Committed subscriptions and domains
    - Sync runs

    Safe to share with other writers of the same file: writes take the
    database lock at transaction start.
    """

    SCHEMA_VERSION = 1

    def __init__(self, db_path: Path | str):
        """
        Initialize state store.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _get_connection(self) -> sqlite3.Connection:
        """Get a database connection with row factory.

        Autocommit mode; transactions are opened explicitly.
        """
        conn = sqlite3.connect(str(self.db_path), timeout=30.0, isolation_level=None)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Context manager for database transactions."""
        conn = self._get_connection()
        try:
            conn.execute("BEGIN IMMEDIATE")
            yield conn
            conn.commit()
        except Exception:
            if conn.in_transaction:
                conn.rollback()
            raise
        finally:
            conn.close()

    @contextmanager
    def session(self) -> Iterator[StoreSession]:
        """Open a unit of work. Commits on exit, rolls back on exception."""
        with self._transaction() as conn:
            yield StoreSession(conn)

    def _init_db(self) -> None:
        """Initialize database schema."""
        with self._transaction() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS schema_version (
                    version INTEGER PRIMARY KEY
                )
            """
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS subscriptions (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL,
                    cost REAL NOT NULL,
                    currency TEXT NOT NULL DEFAULT 'USD',
                    periodicity TEXT NOT NULL
                        CHECK(periodicity IN ('monthly', 'yearly', 'one-time')),
                    next_date TEXT,
                    category TEXT,
                    status TEXT NOT NULL DEFAULT 'active'
                        CHECK(status IN ('active', 'paused', 'cancelled')),
                    notes TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS domains (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL UNIQUE,
                    registrar TEXT,
                    cost REAL,
                    currency TEXT,
                    registration_date TEXT,
                    expiry_date TEXT NOT NULL,
                    auto_renew INTEGER NOT NULL DEFAULT 0,
                    status TEXT NOT NULL DEFAULT 'active'
                        CHECK(status IN ('active', 'expired', 'pending-renewal')),
                    notes TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS receipts (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    subscription_id INTEGER REFERENCES subscriptions(id) ON DELETE SET NULL,
                    domain_id INTEGER REFERENCES domains(id) ON DELETE SET NULL,
                    email_subject TEXT,
                    email_from TEXT,
                    email_date TEXT NOT NULL,
                    attachment_mime_type TEXT,
                    attachment_data TEXT,  -- base64
                    raw_email_body TEXT,
                    created_at TEXT NOT NULL,
                    CHECK(subscription_id IS NULL OR domain_id IS NULL)
                )
            """
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS pending_imports (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    email_subject TEXT,
                    email_from TEXT NOT NULL,
                    email_date TEXT,
                    classification TEXT
                        CHECK(classification IN ('subscription', 'domain', 'junk')),
                    confidence REAL CHECK(confidence >= 0.0 AND confidence <= 1.0),
                    extracted_data TEXT NOT NULL,
                    receipt_id INTEGER REFERENCES receipts(id) ON DELETE SET NULL,
                    status TEXT NOT NULL DEFAULT 'pending'
                        CHECK(status IN ('pending', 'approved', 'rejected')),
                    created_at TEXT NOT NULL
                )
            """
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS sync_log (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    sync_started_at TEXT NOT NULL,
                    sync_completed_at TEXT,
                    emails_processed INTEGER NOT NULL DEFAULT 0,
                    emails_imported INTEGER NOT NULL DEFAULT 0,
                    status TEXT NOT NULL CHECK(status IN ('running', 'completed', 'failed')),
                    error_message TEXT
                )
            """
            )

            # Indexes
            conn.execute("CREATE INDEX IF NOT EXISTS idx_pending_status ON pending_imports(status)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_receipts_created ON receipts(created_at)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_domains_expiry ON domains(expiry_date)")

            conn.execute(
                "INSERT OR IGNORE INTO schema_version (version) VALUES (?)",
                (self.SCHEMA_VERSION,),
            )

    # Pending imports

    def create_pending_import(
        self,
        email_from: str,
        extracted_data: str,
        classification: str | None = None,
        confidence: float | None = None,
        email_subject: str | None = None,
        email_date: str | None = None,
    ) -> int:
        """Insert a review item that has no receipt (manual entry).

        Raises:
            ValidationError: If classification or confidence is out of domain.
        """
        if classification is not None and classification not in (
            "subscription",
            "domain",
            "junk",
        ):
            raise ValidationError(f"Unknown classification {classification!r}")
        if confidence is not None and not 0.0 <= confidence <= 1.0:
            raise ValidationError(f"confidence must be within [0.0, 1.0], got {confidence}")

        with self.session() as session:
            return session.insert_pending_import(
                email_subject=email_subject,
                email_from=email_from,
                email_date=email_date,
                classification=classification,
                confidence=confidence,
                extracted_data=extracted_data,
            )

    def get_pending_import(self, pending_id: int) -> PendingImportRecord:
        """Raises NotFoundError if absent."""
        with self.session() as session:
            record = session.get_pending_import(pending_id)
        if record is None:
            raise NotFoundError("Pending import", pending_id)
        return record

    def list_pending_imports(self) -> list[PendingImportRecord]:
        """Items still awaiting review, newest first."""
        with self._transaction() as conn:
            rows = conn.execute(
                """
                SELECT * FROM pending_imports
                WHERE status = ?
                ORDER BY created_at DESC, id DESC
            """,
                (PendingStatus.PENDING.value,),
            ).fetchall()
            return [PendingImportRecord.from_row(row) for row in rows]

    # Receipts

    def get_receipt(self, receipt_id: int) -> ReceiptRecord:
        """Raises NotFoundError if absent."""
        with self.session() as session:
            record = session.get_receipt(receipt_id)
        if record is None:
            raise NotFoundError("Receipt", receipt_id)
        return record

    def delete_old_receipts(self, retention_days: int) -> int:
        """Delete receipts created more than `retention_days` ago.

        Review items that referenced them keep a null receipt link.

        Returns:
            Number of receipts deleted.
        """
        if retention_days < 0:
            raise ValidationError("retention_days must not be negative")
        cutoff = (datetime.now(timezone.utc) - timedelta(days=retention_days)).isoformat()
        cutoff = cutoff.replace("+00:00", "Z")
        with self._transaction() as conn:
            cursor = conn.execute("DELETE FROM receipts WHERE created_at < ?", (cutoff,))
            return cursor.rowcount

    # Committed entities

    def list_subscriptions(self) -> list[SubscriptionRecord]:
        with self._transaction() as conn:
            rows = conn.execute("SELECT * FROM subscriptions ORDER BY id").fetchall()
            return [SubscriptionRecord.from_row(row) for row in rows]

    def list_domains(self) -> list[DomainRecord]:
        with self._transaction() as conn:
            rows = conn.execute("SELECT * FROM domains ORDER BY name").fetchall()
            return [DomainRecord.from_row(row) for row in rows]

    # Sync log

    def start_sync_log(self) -> int:
        """Create a run row in state `running`. Returns its ID."""
        with self._transaction() as conn:
            cursor = conn.execute(
                "INSERT INTO sync_log (sync_started_at, status) VALUES (?, ?)",
                (_now(), SyncStatus.RUNNING.value),
            )
            return cursor.lastrowid or 0

    def finish_sync_log(
        self,
        sync_log_id: int,
        status: SyncStatus,
        processed: int = 0,
        imported: int = 0,
        error_message: str | None = None,
    ) -> None:
        """Record the final state of a run. Only a running row can be finished."""
        if status is SyncStatus.RUNNING:
            raise ValueError("A run cannot be finished in state running")
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE sync_log
                SET status = ?, emails_processed = ?, emails_imported = ?,
                    error_message = ?, sync_completed_at = ?
                WHERE id = ? AND status = ?
            """,
                (
                    status.value,
                    processed,
                    imported,
                    error_message,
                    _now(),
                    sync_log_id,
                    SyncStatus.RUNNING.value,
                ),
            )
            if cursor.rowcount == 0:
                raise ValidationError(f"Sync run {sync_log_id} is not running")

    def get_sync_log(self, sync_log_id: int) -> SyncLogRecord:
        """Raises NotFoundError if absent."""
        with self._transaction() as conn:
            row = conn.execute("SELECT * FROM sync_log WHERE id = ?", (sync_log_id,)).fetchone()
        if row is None:
            raise NotFoundError("Sync run", sync_log_id)
        return SyncLogRecord.from_row(row)

    def get_last_sync_time(self) -> str | None:
        """Completion time of the most recent completed run."""
        with self._transaction() as conn:
            row = conn.execute(
                """
                SELECT sync_completed_at FROM sync_log
                WHERE status = ?
                ORDER BY sync_completed_at DESC, id DESC
                LIMIT 1
            """,
                (SyncStatus.COMPLETED.value,),
            ).fetchone()
            return row["sync_completed_at"] if row else None

    # Maintenance

    def get_stats(self) -> dict[str, Any]:
        """Get row counts for the status summary."""
        with self._transaction() as conn:
            stats: dict[str, Any] = {}

            for status in PendingStatus:
                row = conn.execute(
                    "SELECT COUNT(*) FROM pending_imports WHERE status = ?", (status.value,)
                ).fetchone()
                stats[f"pending_imports_{status.value}"] = row[0]

            for table in ("subscriptions", "domains", "receipts", "sync_log"):
                stats[table] = conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]

            return stats

    def clear(self) -> None:
        """Delete every row from every data table."""
        with self._transaction() as conn:
            conn.execute("DELETE FROM pending_imports")
            conn.execute("DELETE FROM receipts")
            conn.execute("DELETE FROM subscriptions")
            conn.execute("DELETE FROM domains")
            conn.execute("DELETE FROM sync_log")
