"""
Statement classification using pglast.

The scanner decides where statements start and end; this module decides what
each one is (function, trigger, view, ...) and which object it names.
"""

from dataclasses import dataclass
from typing import List, Optional

from pglast import parse_sql
from pglast.enums import ObjectType
from pglast.parser import ParseError as PglastParseError

from pgm_core.lib.errors import ParseError

FUNCTION = "function"
TRIGGER = "trigger"
VIEW = "view"
MATERIALIZED_VIEW = "materialized_view"
SESSION = "session"
TRANSACTION = "transaction"
DDL = "ddl"


@dataclass
class StatementInfo:
    """
    What a single SQL statement creates.

    Attributes:
        kind: One of function, trigger, view, materialized_view, session, transaction, ddl
        name: Object name for the recognized kinds, otherwise None
        schema: Schema qualifier if the statement had one
        relation: For triggers, the (qualified) table the trigger is on
        replace: Whether the statement used OR REPLACE
        node_type: pglast node class name, for diagnostics
    """
    kind: str
    name: Optional[str] = None
    schema: Optional[str] = None
    relation: Optional[str] = None
    replace: bool = False
    node_type: str = ""

    @property
    def qualified_name(self) -> str:
        if self.schema and self.name:
            return f"{self.schema}.{self.name}"
        return self.name or ""


def quote_ident(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


def quote_qualified(schema: Optional[str], name: str) -> str:
    if schema:
        return f"{quote_ident(schema)}.{quote_ident(name)}"
    return quote_ident(name)


def _relation_parts(rel) -> tuple[Optional[str], Optional[str]]:
    """Extract schema and relation name from a RangeVar node."""
    if rel is None:
        return None, None
    return getattr(rel, "schemaname", None) or None, getattr(rel, "relname", None)


def _classify_node(node) -> StatementInfo:
    typename = type(node).__name__

    if typename == "CreateFunctionStmt":
        funcname = getattr(node, "funcname", None) or []
        names = [str(part.sval) for part in funcname]
        return StatementInfo(
            kind=FUNCTION,
            name=names[-1] if names else None,
            schema=names[-2] if len(names) > 1 else None,
            replace=bool(getattr(node, "replace", False)),
            node_type=typename,
        )

    if typename == "CreateTrigStmt":
        rel_schema, rel_name = _relation_parts(getattr(node, "relation", None))
        return StatementInfo(
            kind=TRIGGER,
            name=node.trigname,
            schema=rel_schema,
            relation=quote_qualified(rel_schema, rel_name) if rel_name else None,
            replace=bool(getattr(node, "replace", False)),
            node_type=typename,
        )

    if typename == "ViewStmt":
        schema, name = _relation_parts(getattr(node, "view", None))
        return StatementInfo(
            kind=VIEW,
            name=name,
            schema=schema,
            replace=bool(getattr(node, "replace", False)),
            node_type=typename,
        )

    if typename == "CreateTableAsStmt" and getattr(node, "objtype", None) == ObjectType.OBJECT_MATVIEW:
        into = getattr(node, "into", None)
        schema, name = _relation_parts(getattr(into, "rel", None))
        return StatementInfo(kind=MATERIALIZED_VIEW, name=name, schema=schema, node_type=typename)

    if typename in ("VariableSetStmt", "SelectStmt"):
        # pg_dump preamble: SET ...; SELECT pg_catalog.set_config(...);
        return StatementInfo(kind=SESSION, node_type=typename)

    if typename == "TransactionStmt":
        # BEGIN / COMMIT / END would break the single transaction of an apply
        return StatementInfo(kind=TRANSACTION, node_type=typename)

    return StatementInfo(kind=DDL, node_type=typename)


def classify_sql(sql: str, path: Optional[str] = None) -> List[StatementInfo]:
    """Classify every statement in sql."""
    try:
        raw_stmts = parse_sql(sql)
    except PglastParseError as e:
        raise ParseError(f"Failed to parse SQL: {e}", path=path)
    return [_classify_node(raw_stmt.stmt) for raw_stmt in raw_stmts]


def classify_statement(sql: str, path: Optional[str] = None, line: Optional[int] = None) -> StatementInfo:
    """Classify a single statement, as produced by the scanner."""
    try:
        raw_stmts = parse_sql(sql)
    except PglastParseError as e:
        raise ParseError(f"Failed to parse statement: {e}", path=path, line=line)
    if len(raw_stmts) != 1:
        raise ParseError(f"Expected one statement, found {len(raw_stmts)}", path=path, line=line)
    return _classify_node(raw_stmts[0].stmt)
