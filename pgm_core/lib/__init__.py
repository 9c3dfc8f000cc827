"""
Core library: load a project, diff it against the ledger, apply the plan.
"""

from pgm_core.lib.objects import ObjectKind, SqlObject, Migration, Seed, ObjectStore
from pgm_core.lib.plan import Action, ActionKind, Plan
from pgm_core.lib.fingerprint import fingerprint, normalize_sql
from pgm_core.lib.store import load_project
from pgm_core.lib.ledger import StateLedger, LedgerEntry, LedgerSnapshot
from pgm_core.lib.planner import build_plan
from pgm_core.lib.executor import Executor, ApplyMode, ApplyResult
from pgm_core.lib.deploy import deploy, seed
from pgm_core.lib.pgdump import dump_schema, parse_dump, write_import

__all__ = [
    # Data model
    "ObjectKind",
    "SqlObject",
    "Migration",
    "Seed",
    "ObjectStore",
    "Action",
    "ActionKind",
    "Plan",

    # Fingerprinting and loading
    "fingerprint",
    "normalize_sql",
    "load_project",

    # Ledger, planning, execution
    "StateLedger",
    "LedgerEntry",
    "LedgerSnapshot",
    "build_plan",
    "Executor",
    "ApplyMode",
    "ApplyResult",
    "deploy",
    "seed",

    # Import
    "parse_dump",
    "dump_schema",
    "write_import",
]
