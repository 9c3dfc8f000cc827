import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

import psycopg

from pgm_core.lib.errors import ExecutionError
from pgm_core.lib.fingerprint import normalize_sql
from pgm_core.lib.ledger import StateLedger
from pgm_core.lib.plan import Action, ActionKind, Plan


class ApplyMode(Enum):
    DRY_RUN = "dry_run"
    APPLY = "apply"
    FAKE = "fake"


@dataclass
class ApplyResult:
    mode: ApplyMode
    plan: Plan
    applied: List[Action] = field(default_factory=list)
    report: Optional[str] = None

    @property
    def status(self) -> str:
        return "preview" if self.mode == ApplyMode.DRY_RUN else "success"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "mode": self.mode.value,
            "changes_count": len(self.plan.pending),
            "changes_applied": len(self.applied),
            "actions": self.plan.to_dict_list(),
            "warnings": [str(w) for w in self.plan.warnings],
            "report": self.report,
        }


def render_report(plan: Plan, title: str = "DRY RUN - Changes that would be applied") -> str:
    """Human readable listing of every pending action and its SQL."""
    lines = [title, "=" * 50]
    pending = plan.pending
    if not pending:
        lines.append("Nothing to apply, database is up to date")
    for i, action in enumerate(pending, 1):
        lines.append(f"{i}. {action}")
        if action.sql:
            lines.extend(f"   {line}" for line in action.sql.rstrip().splitlines())
        elif action.kind == ActionKind.MARK_FAKE:
            lines.append("   (ledger only, SQL not executed)")
        if action.fallback_sql:
            lines.append("   (dropped and recreated if it cannot be replaced in place)")
    if any(action.recheck for action in pending):
        lines.append("Function bodies are checked again once all changes are applied")
    for warning in plan.warnings:
        lines.append(f"WARNING: {warning}")
    lines.append("=" * 50)
    lines.append(f"Total: {len(pending)} changes")
    return "\n".join(lines)


class Executor:
    """Runs a plan against the database through the ledger's open session."""

    def __init__(self, conn, ledger: StateLedger):
        self.conn = conn
        self.ledger = ledger

    def dry_run(self, plan: Plan) -> ApplyResult:
        """Report the plan without touching the database."""
        return ApplyResult(mode=ApplyMode.DRY_RUN, plan=plan, report=render_report(plan))

    def execute(self, plan: Plan, mode: ApplyMode) -> ApplyResult:
        if mode == ApplyMode.DRY_RUN:
            return self.dry_run(plan)

        if not self.ledger.in_session:
            raise RuntimeError("Applying a plan requires an open ledger session")

        applied = []
        recheck = []
        pending = plan.pending
        with self.conn.cursor() as cur:
            # Functions may reference tables that a later migration in this plan creates
            cur.execute("SET LOCAL check_function_bodies = false")

            for i, action in enumerate(pending, 1):
                ledger_only = (
                    action.kind == ActionKind.MARK_FAKE
                    or (mode == ApplyMode.FAKE and action.kind == ActionKind.RUN_MIGRATION)
                )
                if ledger_only:
                    logging.info(f"[{i}/{len(pending)}] Fake applied {action.label}")
                elif not normalize_sql(action.sql or ""):
                    logging.info(f"[{i}/{len(pending)}] {action} (empty, nothing to execute)")
                else:
                    logging.info(f"[{i}/{len(pending)}] {action}")
                    self._run(cur, action)
                    if action.recheck:
                        recheck.append(action)

                self.ledger.record(action)
                applied.append(action)

            if recheck:
                # Everything the bodies refer to exists now
                cur.execute("SET LOCAL check_function_bodies = true")
                for action in recheck:
                    logging.info(f"Checking function bodies of {action.label}")
                    self._execute(cur, action, action.sql)

        self.ledger.commit()
        return ApplyResult(mode=mode, plan=plan, applied=applied)

    def _run(self, cur, action: Action):
        if action.fallback_sql:
            try:
                with self.conn.transaction():
                    cur.execute(action.sql)
                return
            except psycopg.Error as e:
                logging.warning(f"Could not replace {action.label} in place ({str(e).strip()}), dropping and recreating it")
            self._execute(cur, action, action.fallback_sql)
            return
        self._execute(cur, action, action.sql)

    def _execute(self, cur, action: Action, sql: str):
        try:
            cur.execute(sql)
        except psycopg.Error as e:
            logging.error(f"Failed on {action.label}, rolling back")
            raise ExecutionError(action, str(e).strip()) from e
