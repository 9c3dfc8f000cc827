"""
Shared fixtures: an in-memory stand-in for a psycopg connection and helpers
that lay out project directories on disk.
"""

import os
from contextlib import contextmanager

import psycopg
import pytest


class FakeCursor:
    def __init__(self, conn):
        self.conn = conn
        self._result = []

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def execute(self, query, params=None):
        text = query if isinstance(query, str) else repr(query)
        self.conn.executed.append((text, params))
        if self.conn.fail_on and self.conn.fail_on in text:
            error = psycopg.DatabaseError(f'syntax error at or near "{self.conn.fail_on}"')
            if self.conn.fail_once:
                self.conn.fail_on = None
            raise error
        if self.conn._pending is not None:
            self.conn._pending.append((text, params))

        if "pg_try_advisory_xact_lock" in text:
            self._result = [(self.conn.next_lock(),)]
        elif "to_regclass" in text:
            self._result = [("pgm_ledger",) if self.conn.ledger_exists else (None,)]
        elif "SELECT object_kind" in text:
            self._result = list(self.conn.rows)
        else:
            self._result = []

    def fetchone(self):
        return self._result[0] if self._result else None

    def fetchall(self):
        return list(self._result)


class FakeConnection:
    """
    Records every statement and mimics transaction semantics: statements sent
    inside transaction() only take effect on the ledger when the block exits
    cleanly, and a nested transaction() behaves like a savepoint. Ledger INSERTs
    are folded back into rows so later loads see them. With fail_once, fail_on
    only fails the first matching statement.
    """

    def __init__(self, rows=None, ledger_exists=None, locks=None, fail_on=None, fail_once=False):
        self.rows = list(rows or [])
        self.ledger_exists = bool(rows) if ledger_exists is None else ledger_exists
        self.locks = list(locks or [True])
        self.fail_on = fail_on
        self.fail_once = fail_once
        self.executed = []
        self.committed = []
        self.transactions = 0
        self.savepoints = 0
        self.rollbacks = 0
        self.closed = False
        self._pending = None

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.closed = True
        return False

    def cursor(self):
        return FakeCursor(self)

    def next_lock(self) -> bool:
        if len(self.locks) > 1:
            return self.locks.pop(0)
        return self.locks[0]

    @contextmanager
    def transaction(self):
        outer = self._pending
        if outer is not None:
            # Nested block: a savepoint that only drops its own statements on error
            self.savepoints += 1
            self._pending = []
            try:
                yield self
            except BaseException:
                self._pending = outer
                raise
            outer.extend(self._pending)
            self._pending = outer
            return

        self.transactions += 1
        self._pending = []
        try:
            yield self
        except BaseException:
            self.rollbacks += 1
            self._pending = None
            raise
        pending, self._pending = self._pending, None
        self.committed.extend(pending)
        for text, params in pending:
            self._apply(text, params)

    def _apply(self, text, params):
        if "CREATE TABLE IF NOT EXISTS" in text:
            self.ledger_exists = True
        elif "INSERT INTO" in text and "ON CONFLICT (object_kind, object_name)" in text:
            kind, name, fingerprint = params
            self.rows = [r for r in self.rows if (r[0], r[1]) != (kind, name)]
            self.rows.append((kind, name, fingerprint, None, None))
        elif "INSERT INTO" in text:
            kind, name, fingerprint, sequence = params
            if not any(r[4] == sequence or (r[0], r[1]) == (kind, name) for r in self.rows):
                self.rows.append((kind, name, fingerprint, None, sequence))

    def statements(self, committed_only=False):
        """SQL text sent to the database, in order."""
        source = self.committed if committed_only else self.executed
        return [text for text, _ in source]


def write_files(root, files):
    """Write {relative_path: content} under root and return root as a string."""
    for relative, content in files.items():
        path = os.path.join(str(root), relative)
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            f.write(content)
    return str(root)


@pytest.fixture
def fake_conn():
    return FakeConnection()


@pytest.fixture
def project(tmp_path):
    """A small project with one object of every kind and two migrations."""
    return write_files(tmp_path / "postgres", {
        "functions/touch_updated_at.sql": (
            "CREATE OR REPLACE FUNCTION touch_updated_at() RETURNS trigger\n"
            "LANGUAGE plpgsql AS $$\nBEGIN\n    NEW.updated_at := now();\n    RETURN NEW;\nEND;\n$$;\n"
        ),
        "triggers/users_touch.sql": (
            "CREATE TRIGGER users_touch BEFORE UPDATE ON users\n"
            "FOR EACH ROW EXECUTE FUNCTION touch_updated_at();\n"
        ),
        "views/active_users.sql": "CREATE OR REPLACE VIEW active_users AS SELECT * FROM users WHERE active;\n",
        "materialized-views/user_counts.sql": (
            "CREATE MATERIALIZED VIEW IF NOT EXISTS user_counts AS SELECT count(*) AS n FROM users;\n"
        ),
        "migrations/0001_init.sql": (
            "CREATE TABLE users (id serial PRIMARY KEY, active boolean, updated_at timestamptz);\n"
        ),
        "migrations/0002_add_email.sql": "ALTER TABLE users ADD COLUMN email text;\n",
        "seeds/01_users.sql": "INSERT INTO users (active) VALUES (true);\n",
    })
