"""
Per-kind apply semantics.

Each ObjectKind maps to one KindStrategy: where its files live, where it sorts
in a plan, and which DROP (if any) has to run before its source is executed.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from pgm_core.lib import parser
from pgm_core.lib.errors import ParseError
from pgm_core.lib.objects import ObjectKind, SqlObject
from pgm_core.lib.parser import StatementInfo, quote_ident, quote_qualified

MIGRATIONS_DIR = "migrations"
SEEDS_DIR = "seeds"


@dataclass(frozen=True)
class KindStrategy:
    """
    Attributes:
        kind: The kind this strategy handles
        directory: Project subfolder holding its files
        rank: Position of the kind in a plan
        drop: Builds the DROP for one classified statement of the source, or None
        drop_on_create: Also drop before a first-time create, not only on replace
        replace_in_place: On replace, run the source alone first and only drop and
            recreate if the database rejects it
        recheck_bodies: Run again with check_function_bodies on once the plan is applied
    """
    kind: ObjectKind
    directory: str
    rank: int
    drop: Optional[Callable[[StatementInfo], Optional[str]]] = None
    drop_on_create: bool = False
    replace_in_place: bool = False
    recheck_bodies: bool = False


def _drop_trigger(info: StatementInfo) -> Optional[str]:
    if info.kind != parser.TRIGGER or not info.relation:
        return None
    return f"DROP TRIGGER IF EXISTS {quote_ident(info.name)} ON {info.relation};"


def _drop_view(info: StatementInfo) -> Optional[str]:
    if info.kind != parser.VIEW:
        return None
    return f"DROP VIEW IF EXISTS {quote_qualified(info.schema, info.name)};"


def _drop_materialized_view(info: StatementInfo) -> Optional[str]:
    if info.kind != parser.MATERIALIZED_VIEW:
        return None
    return f"DROP MATERIALIZED VIEW IF EXISTS {quote_qualified(info.schema, info.name)};"


# Functions are expected to use CREATE OR REPLACE; dropping them would also
# drop every trigger that calls them. A changed view is first replaced in place
# so views depending on it survive; the DROP only runs when that is rejected.
# Materialized views have no OR REPLACE and are dropped on replace.
STRATEGIES: Dict[ObjectKind, KindStrategy] = {
    ObjectKind.FUNCTION: KindStrategy(ObjectKind.FUNCTION, "functions", 0, recheck_bodies=True),
    ObjectKind.TRIGGER: KindStrategy(
        ObjectKind.TRIGGER, "triggers", 1, _drop_trigger, drop_on_create=True, recheck_bodies=True
    ),
    ObjectKind.MIGRATION: KindStrategy(ObjectKind.MIGRATION, MIGRATIONS_DIR, 2),
    ObjectKind.VIEW: KindStrategy(ObjectKind.VIEW, "views", 3, _drop_view, replace_in_place=True),
    ObjectKind.MATERIALIZED_VIEW: KindStrategy(
        ObjectKind.MATERIALIZED_VIEW, "materialized-views", 4, _drop_materialized_view
    ),
}

PROJECT_DIRECTORIES: List[str] = [
    STRATEGIES[ObjectKind.FUNCTION].directory,
    STRATEGIES[ObjectKind.TRIGGER].directory,
    STRATEGIES[ObjectKind.VIEW].directory,
    STRATEGIES[ObjectKind.MATERIALIZED_VIEW].directory,
    MIGRATIONS_DIR,
    SEEDS_DIR,
]


def directory_for(kind: ObjectKind) -> str:
    return STRATEGIES[kind].directory


def rank_of(kind: ObjectKind) -> int:
    return STRATEGIES[kind].rank


def apply_sql(obj: SqlObject, replacing: bool = False) -> str:
    """SQL that (re)creates obj: any required DROPs followed by its source."""
    strategy = STRATEGIES[obj.kind]
    if strategy.drop is None or not (replacing or strategy.drop_on_create):
        return obj.source
    if replacing and strategy.replace_in_place:
        return obj.source
    return _with_drops(obj, strategy)


def fallback_sql(obj: SqlObject) -> Optional[str]:
    """DROP-and-recreate SQL for a replace that CREATE OR REPLACE could not do in place."""
    strategy = STRATEGIES[obj.kind]
    if not strategy.replace_in_place or strategy.drop is None:
        return None
    return _with_drops(obj, strategy)


def rechecks_bodies(obj: SqlObject) -> bool:
    """Whether obj's SQL can safely run a second time once check_function_bodies is back on."""
    strategy = STRATEGIES[obj.kind]
    if not strategy.recheck_bodies:
        return False

    try:
        infos = parser.classify_sql(obj.source, path=obj.path)
    except ParseError as e:
        logging.warning(f"Function bodies of {obj.kind.value} {obj.name} will not be checked: {e}")
        return False

    for info in infos:
        if info.kind == parser.FUNCTION and info.replace:
            continue
        if info.kind == parser.TRIGGER and (info.replace or strategy.drop is not None):
            continue
        logging.debug(f"Not rechecking {obj.kind.value} {obj.name}: {info.node_type} cannot run twice")
        return False
    return bool(infos)


def _with_drops(obj: SqlObject, strategy: KindStrategy) -> str:
    drops = []
    for info in parser.classify_sql(obj.source, path=obj.path):
        drop = strategy.drop(info)
        if drop:
            drops.append(drop)
    return "\n".join(drops + [obj.source])
