"""
State database for the batch processor.

SQLite file (WAL mode) shared by the checkpoint store and the scheduler
bridge. Holds two tables:
- properties: string-keyed map (checkpoint keys live here)
- triggers: pending delayed re-invocations per job

Provides storage only. Business rules (cursor monotonicity, single pending
trigger per job) belong to the components built on top.
"""

import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, Optional

from .entities import Trigger


def now_iso() -> str:
    """Get current UTC time as ISO format string."""
    return datetime.now(timezone.utc).isoformat()


class StateDatabase:
    """
    SQLite-based persistence for checkpoint properties and triggers.

    Every operation opens its own connection, so instances are safe to share
    between the API thread and the trigger runner.
    """

    def __init__(self, db_path: str | Path):
        """
        Initialize state database.

        Args:
            db_path: Path to SQLite database file. Parent directories are created.
        """
        self.db_path = str(db_path)
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _get_connection(self) -> sqlite3.Connection:
        """Get a database connection with WAL mode enabled."""
        conn = sqlite3.connect(self.db_path, timeout=30.0)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        return conn

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        """Context manager for read-only database access."""
        conn = self._get_connection()
        try:
            yield conn
        finally:
            conn.close()

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Context manager for database transactions."""
        conn = self._get_connection()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_db(self) -> None:
        """Initialize database schema."""
        with self._transaction() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS properties (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS triggers (
                    trigger_id TEXT PRIMARY KEY,
                    job_name TEXT NOT NULL,
                    fire_at REAL NOT NULL,
                    created_at TEXT NOT NULL
                )
            """)

            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_triggers_fire_at
                ON triggers (fire_at ASC)
            """)

    # =========================================================================
    # Properties
    # =========================================================================

    def get_property(self, key: str) -> Optional[str]:
        """Get a property value, or None if absent."""
        with self._connection() as conn:
            row = conn.execute(
                "SELECT value FROM properties WHERE key = ?", (key,)
            ).fetchone()
        return row["value"] if row else None

    def set_properties(self, values: dict[str, Optional[str]]) -> None:
        """
        Write several properties atomically.

        A value of None deletes the key.
        """
        now = now_iso()
        with self._transaction() as conn:
            for key, value in values.items():
                if value is None:
                    conn.execute("DELETE FROM properties WHERE key = ?", (key,))
                else:
                    conn.execute(
                        """
                        INSERT INTO properties (key, value, updated_at)
                        VALUES (?, ?, ?)
                        ON CONFLICT(key) DO UPDATE SET
                            value = excluded.value,
                            updated_at = excluded.updated_at
                        """,
                        (key, value, now),
                    )

    def set_property(self, key: str, value: str) -> None:
        """Set a single property."""
        self.set_properties({key: value})

    # =========================================================================
    # Triggers
    # =========================================================================

    def _row_to_trigger(self, row: sqlite3.Row) -> Trigger:
        return Trigger(
            trigger_id=row["trigger_id"],
            job_name=row["job_name"],
            fire_at=row["fire_at"],
            created_at=row["created_at"],
        )

    def replace_triggers(self, job_name: str, fire_at: float) -> Trigger:
        """
        Replace all pending triggers of a job with a single new one.

        Delete and insert happen in one transaction so two concurrent
        registrations cannot leave two pending triggers behind.
        """
        trigger = Trigger(
            trigger_id=str(uuid.uuid4()),
            job_name=job_name,
            fire_at=fire_at,
            created_at=now_iso(),
        )
        with self._transaction() as conn:
            conn.execute("DELETE FROM triggers WHERE job_name = ?", (job_name,))
            conn.execute(
                """
                INSERT INTO triggers (trigger_id, job_name, fire_at, created_at)
                VALUES (?, ?, ?, ?)
                """,
                (trigger.trigger_id, trigger.job_name, trigger.fire_at, trigger.created_at),
            )
        return trigger

    def delete_triggers(self, job_name: str) -> int:
        """Delete all pending triggers of a job. Returns the number removed."""
        with self._transaction() as conn:
            cursor = conn.execute("DELETE FROM triggers WHERE job_name = ?", (job_name,))
            return cursor.rowcount

    def list_triggers(self, job_name: Optional[str] = None) -> list[Trigger]:
        """List pending triggers ordered by fire time."""
        with self._connection() as conn:
            if job_name is None:
                rows = conn.execute(
                    "SELECT * FROM triggers ORDER BY fire_at ASC"
                ).fetchall()
            else:
                rows = conn.execute(
                    "SELECT * FROM triggers WHERE job_name = ? ORDER BY fire_at ASC",
                    (job_name,),
                ).fetchall()
        return [self._row_to_trigger(row) for row in rows]

    def claim_due_triggers(self, now: float) -> list[Trigger]:
        """
        Atomically remove and return triggers whose fire time has passed.

        A claimed trigger is gone from the table before its job is launched,
        so a crash while launching loses the trigger rather than running the
        job twice.
        """
        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT * FROM triggers WHERE fire_at <= ? ORDER BY fire_at ASC",
                (now,),
            ).fetchall()
            triggers = [self._row_to_trigger(row) for row in rows]
            for trigger in triggers:
                conn.execute(
                    "DELETE FROM triggers WHERE trigger_id = ?", (trigger.trigger_id,)
                )
        return triggers
