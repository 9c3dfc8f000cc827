"""
Bootstrap a project from an existing database.

pg_dump --schema-only is split into statements by the scanner, each statement is
classified with pglast, and functions, triggers, views and materialized views
become one file each. Everything else that creates schema goes into a baseline
migration so the project can describe the whole database.
"""

import logging
import os
import re
import subprocess
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from pgm_core.lib import parser
from pgm_core.lib.errors import DumpError, ParseError
from pgm_core.lib.objects import ObjectKind
from pgm_core.lib.scanner import split_statements
from pgm_core.lib.strategy import MIGRATIONS_DIR, directory_for

BASELINE_MIGRATION = "00000_baseline.sql"

_KINDS = {
    parser.FUNCTION: ObjectKind.FUNCTION,
    parser.TRIGGER: ObjectKind.TRIGGER,
    parser.VIEW: ObjectKind.VIEW,
    parser.MATERIALIZED_VIEW: ObjectKind.MATERIALIZED_VIEW,
}

# pg_dump never emits OR REPLACE / IF NOT EXISTS; add them so an imported file
# can be applied to the database it came from.
_CREATE_FUNCTION = re.compile(r"^CREATE\s+(FUNCTION|PROCEDURE)\b", re.IGNORECASE)
_CREATE_VIEW = re.compile(r"^CREATE\s+(?:(RECURSIVE)\s+)?VIEW\b", re.IGNORECASE)
_CREATE_MATVIEW = re.compile(r"^CREATE\s+MATERIALIZED\s+VIEW\s+(?!IF\s+NOT\s+EXISTS\b)", re.IGNORECASE)


@dataclass
class SkippedStatement:
    line: int
    reason: str
    text: str

    @property
    def summary(self) -> str:
        first = self.text.strip().splitlines()[0] if self.text.strip() else ""
        return first[:80] + "..." if len(first) > 80 else first


@dataclass
class ImportResult:
    """Statements grouped by the project file they belong to."""
    objects: Dict[Tuple[ObjectKind, str], List[str]] = field(default_factory=dict)
    baseline: List[str] = field(default_factory=list)
    skipped: List[SkippedStatement] = field(default_factory=list)

    def add(self, kind: ObjectKind, name: str, statement: str):
        self.objects.setdefault((kind, name), []).append(statement)

    def names(self, kind: ObjectKind) -> List[str]:
        return sorted(name for k, name in self.objects if k == kind)


def run_pg_dump(dsn: Optional[str] = None, schemas: Optional[List[str]] = None) -> str:
    """Run pg_dump --schema-only and return its output. Connection details come from dsn or the PG* environment."""
    cmd = ["pg_dump", "--schema-only", "--no-owner", "--no-privileges"]

    if schemas:
        for schema in schemas:
            cmd += ["--schema", schema]

    if dsn:
        cmd += ["--dbname", dsn]

    try:
        result = subprocess.run(
            cmd,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            check=True
        )
    except FileNotFoundError:
        raise DumpError("pg_dump not found. Please ensure it is installed and in your PATH.")
    except subprocess.CalledProcessError as e:
        raise DumpError(f"pg_dump failed:\n{e.stderr.decode('utf-8', errors='replace')}")

    return result.stdout.decode("utf-8")


def _file_name(info: parser.StatementInfo) -> str:
    name = info.name.lower()
    if info.schema and info.schema != "public":
        return f"{info.schema.lower()}.{name}"
    return name


def _make_reapplicable(kind: ObjectKind, statement: str) -> str:
    if kind == ObjectKind.FUNCTION:
        return _CREATE_FUNCTION.sub(lambda m: f"CREATE OR REPLACE {m.group(1)}", statement, count=1)
    if kind == ObjectKind.VIEW:
        return _CREATE_VIEW.sub(
            lambda m: "CREATE OR REPLACE " + (f"{m.group(1)} " if m.group(1) else "") + "VIEW",
            statement, count=1,
        )
    if kind == ObjectKind.MATERIALIZED_VIEW:
        return _CREATE_MATVIEW.sub("CREATE MATERIALIZED VIEW IF NOT EXISTS ", statement, count=1)
    return statement


def parse_dump(text: str) -> ImportResult:
    """Sort the statements of a schema-only dump into project files. Never fails on a single statement."""
    result = ImportResult()

    for statement in split_statements(text):
        try:
            info = parser.classify_statement(statement.text, line=statement.line)
        except ParseError as e:
            logging.warning(f"Skipping statement: {e}")
            result.skipped.append(SkippedStatement(statement.line, str(e), statement.text))
            continue

        if info.kind == parser.SESSION:
            logging.debug(f"Skipping session statement at line {statement.line}")
            result.skipped.append(SkippedStatement(statement.line, "session setting", statement.text))
            continue

        if info.kind == parser.TRANSACTION:
            logging.warning(f"Skipping transaction control statement at line {statement.line}")
            result.skipped.append(SkippedStatement(statement.line, "transaction control", statement.text))
            continue

        kind = _KINDS.get(info.kind)
        if kind is not None and info.name:
            result.add(kind, _file_name(info), _make_reapplicable(kind, statement.text))
            continue

        if not statement.terminated:
            # A DDL fragment cut off at end of input would break the baseline
            logging.warning(f"Skipping unterminated statement at line {statement.line}")
            result.skipped.append(SkippedStatement(statement.line, "unterminated statement", statement.text))
            continue

        result.baseline.append(statement.text)

    logging.info(
        f"Imported {len(result.objects)} objects, {len(result.baseline)} baseline statements, "
        f"skipped {len(result.skipped)}"
    )
    return result


def write_import(result: ImportResult, root: str) -> List[str]:
    """Write an ImportResult into a project directory. Returns the files written."""
    written = []

    for (kind, name), statements in sorted(result.objects.items(), key=lambda item: (item[0][0].value, item[0][1])):
        directory = os.path.join(root, directory_for(kind))
        os.makedirs(directory, exist_ok=True)
        path = os.path.join(directory, f"{name}.sql")
        with open(path, "w", encoding="utf-8") as f:
            f.write("\n\n".join(statements) + "\n")
        written.append(path)

    if result.baseline:
        directory = os.path.join(root, MIGRATIONS_DIR)
        os.makedirs(directory, exist_ok=True)
        path = os.path.join(directory, BASELINE_MIGRATION)
        with open(path, "w", encoding="utf-8") as f:
            f.write("-- Baseline imported with pg_dump --schema-only\n\n")
            f.write("\n\n".join(result.baseline) + "\n")
        written.append(path)

    return written


def dump_schema(dsn: Optional[str] = None, schemas: Optional[List[str]] = None) -> ImportResult:
    """Dump the live schema and sort it into project files. Nothing is written to disk."""
    result = parse_dump(run_pg_dump(dsn, schemas=schemas))
    for skipped in result.skipped:
        logging.info(f"Skipped line {skipped.line} ({skipped.reason}): {skipped.summary}")
    return result
