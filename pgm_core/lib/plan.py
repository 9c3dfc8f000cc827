from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional

from pgm_core.lib.objects import ObjectKind


class ActionKind(Enum):
    CREATE = "create"
    REPLACE = "replace"
    SKIP = "skip"
    RUN_MIGRATION = "run_migration"
    MARK_FAKE = "mark_fake"


@dataclass
class Action:
    """
    One step of a plan.

    Attributes:
        kind: What to do
        object_kind: Kind of the target (migration for migration actions)
        name: Object name, or the migration file stem
        fingerprint: Fingerprint of the current source, written to the ledger
        sql: SQL to execute, None when nothing is sent to the database
        sequence: Migration sequence, None for other kinds
        fallback_sql: Drop-and-recreate SQL to run if sql is rejected, for in-place replaces
        recheck: Run sql again once check_function_bodies is back on
    """
    kind: ActionKind
    object_kind: ObjectKind
    name: str
    fingerprint: str
    sql: Optional[str] = None
    sequence: Optional[int] = None
    fallback_sql: Optional[str] = None
    recheck: bool = False

    @property
    def label(self) -> str:
        if self.object_kind == ObjectKind.MIGRATION:
            return f"migration {self.name}"
        return f"{self.object_kind.value} {self.name}"

    @property
    def is_noop(self) -> bool:
        return self.kind == ActionKind.SKIP

    def to_dict(self) -> Dict[str, Any]:
        return {
            "action": self.kind.value,
            "object_kind": self.object_kind.value,
            "name": self.name,
            "sequence": self.sequence,
            "fingerprint": self.fingerprint,
            "sql": self.sql,
            "fallback_sql": self.fallback_sql,
            "recheck": self.recheck,
        }

    def __str__(self) -> str:
        return f"{self.kind.value.upper()} {self.label}"


@dataclass
class Plan:
    """Ordered actions plus the non-fatal warnings found while planning."""
    actions: List[Action] = field(default_factory=list)
    warnings: List[Warning] = field(default_factory=list)

    def __iter__(self) -> Iterator[Action]:
        return iter(self.actions)

    def __len__(self):
        return len(self.actions)

    @property
    def pending(self) -> List[Action]:
        return [action for action in self.actions if not action.is_noop]

    @property
    def is_empty(self) -> bool:
        return not self.pending

    def to_dict_list(self) -> List[dict]:
        return [action.to_dict() for action in self.pending]

    def __str__(self):
        return f"Plan({len(self.pending)} pending of {len(self.actions)} actions)"
