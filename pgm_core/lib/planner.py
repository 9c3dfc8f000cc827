import logging
from typing import List

from pgm_core.lib.errors import DriftError, DriftWarning, OutOfOrderWarning
from pgm_core.lib.ledger import LedgerSnapshot
from pgm_core.lib.objects import ObjectKind, ObjectStore
from pgm_core.lib.plan import Action, ActionKind, Plan
from pgm_core.lib.strategy import apply_sql, fallback_sql, rank_of, rechecks_bodies

DRIFT_WARN = "warn"
DRIFT_ERROR = "error"
DRIFT_POLICIES = (DRIFT_WARN, DRIFT_ERROR)


def _plan_objects(store: ObjectStore, snapshot: LedgerSnapshot) -> List[Action]:
    actions = []
    for identity, obj in store.objects.items():
        entry = snapshot.objects.get(identity)
        if entry is None:
            kind = ActionKind.CREATE
        elif entry.fingerprint != obj.fingerprint:
            kind = ActionKind.REPLACE
        else:
            kind = ActionKind.SKIP

        actions.append(Action(
            kind=kind,
            object_kind=obj.kind,
            name=obj.name,
            fingerprint=obj.fingerprint,
            sql=None if kind == ActionKind.SKIP else apply_sql(obj, replacing=kind == ActionKind.REPLACE),
            fallback_sql=fallback_sql(obj) if kind == ActionKind.REPLACE else None,
            recheck=kind != ActionKind.SKIP and rechecks_bodies(obj),
        ))
    return actions


def _plan_migrations(store: ObjectStore, snapshot: LedgerSnapshot, fake: bool, plan: Plan) -> List[Action]:
    actions = []
    high_water = snapshot.high_water

    for migration in store.migrations:
        entry = snapshot.migrations.get(migration.sequence)

        if entry is not None:
            if entry.fingerprint != migration.fingerprint:
                plan.warnings.append(DriftWarning(
                    migration.sequence, migration.name, entry.fingerprint, migration.fingerprint,
                ))
            kind = ActionKind.SKIP
        elif high_water is not None and migration.sequence < high_water:
            plan.warnings.append(OutOfOrderWarning(migration.sequence, migration.name, high_water))
            kind = ActionKind.SKIP
        else:
            kind = ActionKind.MARK_FAKE if fake else ActionKind.RUN_MIGRATION

        actions.append(Action(
            kind=kind,
            object_kind=ObjectKind.MIGRATION,
            name=migration.name,
            fingerprint=migration.fingerprint,
            sql=migration.source if kind == ActionKind.RUN_MIGRATION else None,
            sequence=migration.sequence,
        ))
    return actions


def _sort_key(action: Action):
    if action.object_kind == ObjectKind.MIGRATION:
        return (rank_of(action.object_kind), action.sequence, "")
    return (rank_of(action.object_kind), 0, action.name)


def build_plan(
    store: ObjectStore,
    snapshot: LedgerSnapshot,
    *,
    fake: bool = False,
    drift_policy: str = DRIFT_WARN,
) -> Plan:
    """
    Diff the project against the ledger snapshot.

    Args:
        store: Desired state loaded from disk
        snapshot: Ledger contents at the start of the run
        fake: Turn every pending migration into MARK_FAKE
        drift_policy: 'warn' keeps edited applied migrations non-fatal, 'error' raises DriftError

    Returns:
        Plan with actions ordered function < trigger < migration < view < materialized view,
        by name within a kind and by sequence for migrations
    """
    if drift_policy not in DRIFT_POLICIES:
        raise ValueError(f"drift_policy must be one of {DRIFT_POLICIES}, got {drift_policy!r}")

    plan = Plan()
    actions = _plan_objects(store, snapshot)
    actions.extend(_plan_migrations(store, snapshot, fake, plan))
    plan.actions = sorted(actions, key=_sort_key)

    for warning in plan.warnings:
        logging.warning(str(warning))

    drift = [w for w in plan.warnings if isinstance(w, DriftWarning)]
    if drift and drift_policy == DRIFT_ERROR:
        names = ", ".join(w.name for w in drift)
        raise DriftError(f"Applied migrations were modified after apply: {names}")

    logging.info(f"Planned {len(plan.pending)} of {len(plan.actions)} actions")
    return plan
