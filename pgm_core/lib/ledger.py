"""
Applied-state ledger stored inside the target database.

The ledger is the only memory pgm has between runs: one row per function,
trigger, view and materialized view (with the fingerprint it was applied with),
and one row per migration sequence that has ever run.
"""

import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterator, List, Optional, Tuple

from psycopg import sql

from pgm_core.lib.errors import LockHeld
from pgm_core.lib.objects import ObjectKind
from pgm_core.lib.plan import Action, ActionKind

LEDGER_TABLE = "pgm_ledger"
DEFAULT_LOCK_TIMEOUT = 10.0


@dataclass(frozen=True)
class LedgerEntry:
    object_kind: str
    object_name: str
    fingerprint: str
    applied_at: Optional[datetime] = None
    migration_sequence: Optional[int] = None


@dataclass
class LedgerSnapshot:
    """In-memory copy of the ledger taken at the start of a run."""
    objects: Dict[Tuple[ObjectKind, str], LedgerEntry] = field(default_factory=dict)
    migrations: Dict[int, LedgerEntry] = field(default_factory=dict)

    @property
    def high_water(self) -> Optional[int]:
        """Highest applied migration sequence, None if no migration ever ran."""
        return max(self.migrations) if self.migrations else None

    def __len__(self):
        return len(self.objects) + len(self.migrations)

    @classmethod
    def from_rows(cls, rows) -> "LedgerSnapshot":
        snapshot = cls()
        for object_kind, object_name, fingerprint, applied_at, sequence in rows:
            entry = LedgerEntry(object_kind, object_name, fingerprint, applied_at, sequence)
            if object_kind == ObjectKind.MIGRATION.value:
                snapshot.migrations[sequence] = entry
                continue
            try:
                kind = ObjectKind(object_kind)
            except ValueError:
                logging.debug(f"Ignoring ledger row of unknown kind {object_kind!r}")
                continue
            snapshot.objects[(kind, object_name)] = entry
        return snapshot


class StateLedger:
    """
    Reads and writes the ledger table on an open psycopg connection.

    The connection is expected to be in autocommit mode; mutating work happens
    inside session(), which opens the single transaction of a run and holds a
    transaction-scoped advisory lock until it ends.
    """

    def __init__(self, conn, table: str = LEDGER_TABLE, lock_timeout: float = DEFAULT_LOCK_TIMEOUT,
                 poll_interval: float = 0.1):
        self.conn = conn
        self.table = table
        self.lock_timeout = lock_timeout
        self.poll_interval = poll_interval
        self._staged: List[LedgerEntry] = []
        self._in_session = False

    @property
    def in_session(self) -> bool:
        return self._in_session

    @contextmanager
    def session(self) -> Iterator["StateLedger"]:
        """Open the run's transaction, take the lock and make sure the table exists."""
        if self._in_session:
            raise RuntimeError("Ledger session already open")
        with self.conn.transaction():
            self.acquire_lock()
            self.ensure_table()
            self._in_session = True
            self._staged = []
            try:
                yield self
            finally:
                self._in_session = False
                self._staged = []

    def acquire_lock(self):
        """Take the advisory lock, polling until lock_timeout runs out."""
        deadline = time.monotonic() + self.lock_timeout
        with self.conn.cursor() as cur:
            while True:
                cur.execute("SELECT pg_try_advisory_xact_lock(hashtext(%s))", (self.table,))
                row = cur.fetchone()
                if row and row[0]:
                    logging.debug(f"Acquired ledger lock on {self.table}")
                    return
                if time.monotonic() >= deadline:
                    raise LockHeld(
                        f"Another pgm run holds the lock on {self.table}; "
                        f"gave up after {self.lock_timeout:g}s"
                    )
                time.sleep(self.poll_interval)

    def ensure_table(self):
        query = sql.SQL("""
            CREATE TABLE IF NOT EXISTS {table} (
                object_kind TEXT NOT NULL,
                object_name TEXT NOT NULL,
                fingerprint TEXT NOT NULL,
                applied_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT CURRENT_TIMESTAMP,
                migration_sequence BIGINT,
                PRIMARY KEY (object_kind, object_name)
            );
            CREATE UNIQUE INDEX IF NOT EXISTS {index} ON {table} (migration_sequence);
        """).format(
            table=sql.Identifier(self.table),
            index=sql.Identifier(f"{self.table}_migration_sequence_idx"),
        )
        with self.conn.cursor() as cur:
            cur.execute(query)

    def exists(self) -> bool:
        with self.conn.cursor() as cur:
            cur.execute("SELECT to_regclass(%s)", (self.table,))
            row = cur.fetchone()
        return bool(row and row[0])

    def load(self) -> LedgerSnapshot:
        """Read the whole ledger. A missing table is an empty ledger."""
        if not self.exists():
            logging.debug(f"Ledger table {self.table} does not exist yet")
            return LedgerSnapshot()

        query = sql.SQL(
            "SELECT object_kind, object_name, fingerprint, applied_at, migration_sequence FROM {table}"
        ).format(table=sql.Identifier(self.table))
        with self.conn.cursor() as cur:
            cur.execute(query)
            rows = cur.fetchall()

        snapshot = LedgerSnapshot.from_rows(rows)
        logging.debug(f"Loaded {len(snapshot)} ledger entries")
        return snapshot

    def record(self, action: Action):
        """Stage the ledger write that belongs to an applied action."""
        if action.kind in (ActionKind.CREATE, ActionKind.REPLACE):
            self._staged.append(LedgerEntry(action.object_kind.value, action.name, action.fingerprint))
        elif action.kind in (ActionKind.RUN_MIGRATION, ActionKind.MARK_FAKE):
            self._staged.append(LedgerEntry(
                ObjectKind.MIGRATION.value, action.name, action.fingerprint,
                migration_sequence=action.sequence,
            ))
        else:
            raise ValueError(f"Nothing to record for {action}")

    @property
    def staged(self) -> List[LedgerEntry]:
        return list(self._staged)

    def commit(self) -> int:
        """Write staged entries inside the open session's transaction."""
        if not self._in_session:
            raise RuntimeError("Ledger commit requires an open session")

        upsert = sql.SQL("""
            INSERT INTO {table} (object_kind, object_name, fingerprint, applied_at, migration_sequence)
            VALUES (%s, %s, %s, CURRENT_TIMESTAMP, NULL)
            ON CONFLICT (object_kind, object_name)
            DO UPDATE SET fingerprint = EXCLUDED.fingerprint, applied_at = EXCLUDED.applied_at
        """).format(table=sql.Identifier(self.table))
        # Migration rows are written once and never updated
        insert_once = sql.SQL("""
            INSERT INTO {table} (object_kind, object_name, fingerprint, applied_at, migration_sequence)
            VALUES (%s, %s, %s, CURRENT_TIMESTAMP, %s)
            ON CONFLICT DO NOTHING
        """).format(table=sql.Identifier(self.table))

        written = 0
        with self.conn.cursor() as cur:
            for entry in self._staged:
                if entry.migration_sequence is None:
                    cur.execute(upsert, (entry.object_kind, entry.object_name, entry.fingerprint))
                else:
                    cur.execute(insert_once, (
                        entry.object_kind, entry.object_name, entry.fingerprint, entry.migration_sequence,
                    ))
                written += 1
        self._staged = []
        logging.debug(f"Wrote {written} ledger entries")
        return written
