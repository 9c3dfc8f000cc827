import logging
from typing import List

import psycopg

from pgm_core.lib.errors import ExecutionError
from pgm_core.lib.executor import ApplyMode, ApplyResult, Executor
from pgm_core.lib.fingerprint import normalize_sql
from pgm_core.lib.ledger import DEFAULT_LOCK_TIMEOUT, StateLedger
from pgm_core.lib.objects import Seed
from pgm_core.lib.planner import DRIFT_WARN, build_plan
from pgm_core.lib.store import load_project


def deploy(
    conn,
    path: str,
    *,
    dry_run: bool = False,
    fake: bool = False,
    drift_policy: str = DRIFT_WARN,
    lock_timeout: float = DEFAULT_LOCK_TIMEOUT,
) -> ApplyResult:
    """
    Apply a project directory to the database behind conn.

    Args:
        conn: Open psycopg connection in autocommit mode
        path: Project directory
        dry_run: Only report what would be applied; takes no lock and opens no transaction
        fake: Record pending migrations in the ledger without running them
        drift_policy: 'warn' or 'error' for applied migrations edited after the fact
        lock_timeout: Seconds to wait for a concurrent run to finish

    Returns:
        ApplyResult with the plan, the applied actions and, for dry runs, the report
    """
    store = load_project(path)
    ledger = StateLedger(conn, lock_timeout=lock_timeout)
    executor = Executor(conn, ledger)

    if dry_run:
        # Best effort: a concurrent apply may commit after this snapshot
        snapshot = ledger.load()
        plan = build_plan(store, snapshot, fake=fake, drift_policy=drift_policy)
        return executor.execute(plan, ApplyMode.DRY_RUN)

    mode = ApplyMode.FAKE if fake else ApplyMode.APPLY
    with ledger.session():
        snapshot = ledger.load()
        plan = build_plan(store, snapshot, fake=fake, drift_policy=drift_policy)
        result = executor.execute(plan, mode)

    logging.info(f"Applied {len(result.applied)} changes ({mode.value})")
    return result


def seed(conn, path: str, *, lock_timeout: float = DEFAULT_LOCK_TIMEOUT) -> List[Seed]:
    """Run every seed file in name order inside one transaction. Seeds are not tracked in the ledger."""
    store = load_project(path)
    ledger = StateLedger(conn, lock_timeout=lock_timeout)

    with ledger.session():
        with conn.cursor() as cur:
            for item in store.seeds:
                if not normalize_sql(item.source):
                    logging.info(f"Skipping empty seed {item.name}")
                    continue
                logging.info(f"Seeding {item.name}")
                try:
                    cur.execute(item.source)
                except psycopg.Error as e:
                    raise ExecutionError(item, str(e).strip()) from e

    logging.info(f"Applied {len(store.seeds)} seeds")
    return store.seeds
