"""
Vault Repository.

SQLite-based storage for the vault ledger and the decision audit log.
"""

import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Generator, List, Optional

from yield_vault.core import get_logger

from ..models.decision import Decision, DecisionOutcome, DecisionType, OutcomeStatus
from ..models.state import Account, AdapterRecord, UserActivitySummary, VaultState

logger = get_logger(__name__)

DEFAULT_DB_PATH = "data/vault.db"


def _ts(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


class VaultRepository:
    """
    SQLite repository for vault state and decisions.

    Amounts are stored as TEXT because they exceed SQLite's 64-bit integers.
    Decisions are insert-only; the stored integrity hash is never recomputed
    on load, so edits made directly in the database are detectable.

    Example:
        >>> repo = VaultRepository("data/vault.db")
        >>> repo.initialize()
        >>> repo.save_state(state)
        >>> state = repo.load_state()
    """

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        """
        Initialize repository.

        Args:
            db_path: Path to SQLite database file
        """
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._initialized = False

    @property
    def db_path(self) -> Path:
        return self._db_path

    @contextmanager
    def _get_connection(self) -> Generator[sqlite3.Connection, None, None]:
        """
        Get database connection context manager.

        Yields:
            SQLite connection
        """
        conn = sqlite3.connect(str(self._db_path))
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def initialize(self) -> None:
        """Initialize database schema."""
        if self._initialized:
            return

        with self._get_connection() as conn:
            cursor = conn.cursor()

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS vault_state (
                    id INTEGER PRIMARY KEY CHECK (id = 1),
                    total_assets TEXT NOT NULL,
                    total_shares TEXT NOT NULL,
                    idle_assets TEXT NOT NULL,
                    active_adapter_id TEXT,
                    paused INTEGER NOT NULL,
                    updated_at TEXT DEFAULT CURRENT_TIMESTAMP
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS accounts (
                    account_id TEXT PRIMARY KEY,
                    shares TEXT NOT NULL,
                    principal_deposited TEXT NOT NULL,
                    first_deposit_time TEXT,
                    last_activity_time TEXT
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS activity_summaries (
                    account_id TEXT PRIMARY KEY,
                    total_deposited TEXT NOT NULL,
                    total_withdrawn TEXT NOT NULL,
                    deposit_count INTEGER NOT NULL,
                    withdrawal_count INTEGER NOT NULL,
                    emergency_withdrawal_count INTEGER NOT NULL,
                    first_activity_time TEXT,
                    last_activity_time TEXT
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS adapter_records (
                    adapter_id TEXT PRIMARY KEY,
                    label TEXT NOT NULL,
                    is_active INTEGER NOT NULL,
                    is_healthy INTEGER NOT NULL,
                    reported_assets TEXT NOT NULL,
                    allocated TEXT NOT NULL,
                    registered_at TEXT NOT NULL,
                    last_checked TEXT
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS decisions (
                    sequence_id INTEGER PRIMARY KEY,
                    timestamp TEXT NOT NULL,
                    type TEXT NOT NULL,
                    from_adapter_id TEXT,
                    to_adapter_id TEXT,
                    amount TEXT NOT NULL,
                    reason TEXT NOT NULL,
                    actor TEXT NOT NULL,
                    confidence TEXT,
                    external_refs TEXT NOT NULL,
                    integrity_hash TEXT NOT NULL,
                    bucket INTEGER NOT NULL
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS decision_outcomes (
                    sequence_id INTEGER PRIMARY KEY,
                    status TEXT NOT NULL,
                    detail TEXT NOT NULL,
                    executed_amount TEXT NOT NULL,
                    recorded_at TEXT NOT NULL
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS decision_receipts (
                    sequence_id INTEGER NOT NULL,
                    receipt TEXT NOT NULL,
                    created_at TEXT DEFAULT CURRENT_TIMESTAMP,
                    PRIMARY KEY (sequence_id, receipt)
                )
            """)

            # Create indexes
            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_decision_type
                ON decisions(type)
            """)
            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_decision_from_adapter
                ON decisions(from_adapter_id)
            """)
            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_decision_to_adapter
                ON decisions(to_adapter_id)
            """)
            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_decision_bucket
                ON decisions(bucket)
            """)

        self._initialized = True
        logger.info(f"VaultRepository initialized: {self._db_path}")

    # =========================================================================
    # Vault State
    # =========================================================================

    def save_state(self, state: VaultState) -> None:
        """
        Persist the ledger, activity summaries and adapter records in one
        transaction.
        """
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                INSERT OR REPLACE INTO vault_state
                (id, total_assets, total_shares, idle_assets, active_adapter_id, paused, updated_at)
                VALUES (1, ?, ?, ?, ?, ?, CURRENT_TIMESTAMP)
                """,
                (
                    str(state.total_assets),
                    str(state.total_shares),
                    str(state.idle_assets),
                    state.active_adapter_id,
                    1 if state.paused else 0,
                ),
            )

            cursor.executemany(
                """
                INSERT OR REPLACE INTO accounts
                (account_id, shares, principal_deposited, first_deposit_time, last_activity_time)
                VALUES (?, ?, ?, ?, ?)
                """,
                [
                    (
                        a.account_id,
                        str(a.shares),
                        str(a.principal_deposited),
                        _ts(a.first_deposit_time),
                        _ts(a.last_activity_time),
                    )
                    for a in state.accounts.values()
                ],
            )

            cursor.executemany(
                """
                INSERT OR REPLACE INTO activity_summaries
                (account_id, total_deposited, total_withdrawn, deposit_count,
                 withdrawal_count, emergency_withdrawal_count,
                 first_activity_time, last_activity_time)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        s.account_id,
                        str(s.total_deposited),
                        str(s.total_withdrawn),
                        s.deposit_count,
                        s.withdrawal_count,
                        s.emergency_withdrawal_count,
                        _ts(s.first_activity_time),
                        _ts(s.last_activity_time),
                    )
                    for s in state.activity.values()
                ],
            )

            # Unregistered adapters disappear from the table
            cursor.execute("DELETE FROM adapter_records")
            cursor.executemany(
                """
                INSERT INTO adapter_records
                (adapter_id, label, is_active, is_healthy, reported_assets,
                 allocated, registered_at, last_checked)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        r.adapter_id,
                        r.label,
                        1 if r.is_active else 0,
                        1 if r.is_healthy else 0,
                        str(r.reported_assets),
                        str(r.allocated),
                        r.registered_at.isoformat(),
                        _ts(r.last_checked),
                    )
                    for r in state.adapters.values()
                ],
            )

    def load_state(self) -> Optional[VaultState]:
        """
        Load the persisted ledger.

        Returns:
            VaultState, or None if nothing was saved yet
        """
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT * FROM vault_state WHERE id = 1")
            row = cursor.fetchone()
            if row is None:
                return None

            state = VaultState(
                total_assets=int(row["total_assets"]),
                total_shares=int(row["total_shares"]),
                idle_assets=int(row["idle_assets"]),
                active_adapter_id=row["active_adapter_id"],
                paused=bool(row["paused"]),
            )

            cursor.execute("SELECT * FROM accounts")
            for r in cursor.fetchall():
                state.accounts[r["account_id"]] = Account.from_dict(dict(r))

            cursor.execute("SELECT * FROM activity_summaries")
            for r in cursor.fetchall():
                state.activity[r["account_id"]] = UserActivitySummary.from_dict(dict(r))

            cursor.execute("SELECT * FROM adapter_records")
            for r in cursor.fetchall():
                data = dict(r)
                data["is_active"] = bool(data["is_active"])
                data["is_healthy"] = bool(data["is_healthy"])
                state.adapters[r["adapter_id"]] = AdapterRecord.from_dict(data)

        return state

    # =========================================================================
    # Decisions
    # =========================================================================

    def save_decision(self, decision: Decision, bucket: int) -> None:
        """
        Insert a sealed decision.

        Raises:
            sqlite3.IntegrityError: A decision with this sequence id exists
        """
        with self._get_connection() as conn:
            conn.execute(
                """
                INSERT INTO decisions
                (sequence_id, timestamp, type, from_adapter_id, to_adapter_id, amount,
                 reason, actor, confidence, external_refs, integrity_hash, bucket)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    decision.sequence_id,
                    decision.timestamp.isoformat(),
                    decision.decision_type.value,
                    decision.from_adapter_id,
                    decision.to_adapter_id,
                    str(decision.amount),
                    decision.reason,
                    decision.actor,
                    str(decision.confidence) if decision.confidence is not None else None,
                    json.dumps(list(decision.external_refs)),
                    decision.integrity_hash,
                    bucket,
                ),
            )

    def load_decisions(self) -> List[Decision]:
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT * FROM decisions ORDER BY sequence_id ASC")
            return [self._row_to_decision(row) for row in cursor.fetchall()]

    def get_decision(self, sequence_id: int) -> Optional[Decision]:
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT * FROM decisions WHERE sequence_id = ?", (sequence_id,))
            row = cursor.fetchone()
            return self._row_to_decision(row) if row else None

    def _row_to_decision(self, row: sqlite3.Row) -> Decision:
        """Convert database row to Decision (stored hash kept as-is)."""
        return Decision(
            sequence_id=row["sequence_id"],
            timestamp=datetime.fromisoformat(row["timestamp"]),
            decision_type=DecisionType(row["type"]),
            amount=int(row["amount"]),
            from_adapter_id=row["from_adapter_id"],
            to_adapter_id=row["to_adapter_id"],
            reason=row["reason"],
            actor=row["actor"],
            confidence=Decimal(row["confidence"]) if row["confidence"] is not None else None,
            external_refs=tuple(json.loads(row["external_refs"])),
            integrity_hash=row["integrity_hash"],
        )

    # =========================================================================
    # Outcomes and Receipts
    # =========================================================================

    def save_outcome(self, outcome: DecisionOutcome) -> None:
        with self._get_connection() as conn:
            conn.execute(
                """
                INSERT INTO decision_outcomes
                (sequence_id, status, detail, executed_amount, recorded_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    outcome.sequence_id,
                    outcome.status.value,
                    outcome.detail,
                    str(outcome.executed_amount),
                    outcome.recorded_at.isoformat(),
                ),
            )

    def load_outcomes(self) -> List[DecisionOutcome]:
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT * FROM decision_outcomes ORDER BY sequence_id ASC")
            return [
                DecisionOutcome(
                    sequence_id=row["sequence_id"],
                    status=OutcomeStatus(row["status"]),
                    detail=row["detail"],
                    executed_amount=int(row["executed_amount"]),
                    recorded_at=datetime.fromisoformat(row["recorded_at"]),
                )
                for row in cursor.fetchall()
            ]

    def save_receipt(self, sequence_id: int, receipt: str) -> None:
        with self._get_connection() as conn:
            conn.execute(
                "INSERT OR IGNORE INTO decision_receipts (sequence_id, receipt) VALUES (?, ?)",
                (sequence_id, receipt),
            )

    def load_receipts(self) -> Dict[int, List[str]]:
        receipts: Dict[int, List[str]] = {}
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                "SELECT sequence_id, receipt FROM decision_receipts ORDER BY rowid ASC"
            )
            for row in cursor.fetchall():
                receipts.setdefault(row["sequence_id"], []).append(row["receipt"])
        return receipts

    # =========================================================================
    # Statistics
    # =========================================================================

    def get_statistics(self) -> Dict[str, Any]:
        """Row counts per table and decision counts per type."""
        with self._get_connection() as conn:
            cursor = conn.cursor()
            stats: Dict[str, Any] = {}
            for table in (
                "accounts",
                "adapter_records",
                "decisions",
                "decision_outcomes",
                "decision_receipts",
            ):
                cursor.execute(f"SELECT COUNT(*) AS n FROM {table}")
                stats[table] = cursor.fetchone()["n"]

            cursor.execute("SELECT type, COUNT(*) AS n FROM decisions GROUP BY type")
            stats["decisions_by_type"] = {row["type"]: row["n"] for row in cursor.fetchall()}
            return stats
