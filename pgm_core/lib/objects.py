from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Tuple

from pgm_core.lib.fingerprint import fingerprint


class ObjectKind(Enum):
    """Closed set of things pgm tracks in the ledger."""
    FUNCTION = "function"
    TRIGGER = "trigger"
    MIGRATION = "migration"
    VIEW = "view"
    MATERIALIZED_VIEW = "materialized_view"


# Kinds that are replaced wholesale whenever their source changes.
REPLACEABLE_KINDS = (
    ObjectKind.FUNCTION,
    ObjectKind.TRIGGER,
    ObjectKind.VIEW,
    ObjectKind.MATERIALIZED_VIEW,
)


@dataclass
class SqlObject:
    """
    A function, trigger, view or materialized view loaded from the project.

    Attributes:
        kind: Which subfolder the file came from
        name: File stem, lower-cased
        source: The SQL text exactly as read from disk
        path: Where the file lives (for error messages)
        fingerprint: Digest of the normalized source, computed when omitted
    """
    kind: ObjectKind
    name: str
    source: str
    path: Optional[str] = None
    fingerprint: Optional[str] = None

    def __post_init__(self):
        if self.kind not in REPLACEABLE_KINDS:
            raise ValueError(f"SqlObject cannot have kind {self.kind.value}")
        if self.fingerprint is None:
            self.fingerprint = fingerprint(self.source)

    @property
    def identity(self) -> Tuple[ObjectKind, str]:
        return (self.kind, self.name)

    def __str__(self) -> str:
        return f"SqlObject({self.kind.value}: {self.name})"


@dataclass
class Migration:
    """A forward-only migration script, identified by its numeric sequence."""
    sequence: int
    name: str
    source: str
    path: Optional[str] = None
    fingerprint: Optional[str] = None

    def __post_init__(self):
        if self.fingerprint is None:
            self.fingerprint = fingerprint(self.source)

    def __str__(self) -> str:
        return f"Migration({self.sequence}: {self.name})"


@dataclass
class Seed:
    name: str
    source: str
    path: Optional[str] = None

    @property
    def label(self) -> str:
        return f"seed {self.name}"


@dataclass
class ObjectStore:
    """Desired state of a project, rebuilt from disk on every run."""
    root: str
    objects: dict = field(default_factory=dict)
    migrations: list = field(default_factory=list)
    seeds: list = field(default_factory=list)

    def objects_of(self, kind: ObjectKind) -> list:
        return sorted(
            (obj for obj in self.objects.values() if obj.kind == kind),
            key=lambda obj: obj.name,
        )

    def __len__(self):
        return len(self.objects) + len(self.migrations)

    def __str__(self) -> str:
        return (f"ObjectStore({self.root}: {len(self.objects)} objects, "
                f"{len(self.migrations)} migrations, {len(self.seeds)} seeds)")
