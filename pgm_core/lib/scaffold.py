import logging
import os
import re
import shutil
from typing import Optional

from pgm_core.lib.errors import ConfigError
from pgm_core.lib.objects import ObjectKind
from pgm_core.lib.pgdump import ImportResult, dump_schema, write_import
from pgm_core.lib.strategy import MIGRATIONS_DIR, PROJECT_DIRECTORIES, SEEDS_DIR, directory_for

DEFAULT_SEQUENCE_WIDTH = 5

_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_.\-]*$")
_NUMBERED = re.compile(r"^(\d+)")

TEMPLATES = {
    ObjectKind.FUNCTION: """CREATE OR REPLACE FUNCTION <name_placeholder>()
RETURNS void
LANGUAGE plpgsql
AS $$
BEGIN
    -- function body
END;
$$;
""",
    ObjectKind.TRIGGER: """CREATE OR REPLACE FUNCTION <name_placeholder>_fn()
RETURNS trigger
LANGUAGE plpgsql
AS $$
BEGIN
    RETURN NEW;
END;
$$;

-- replace table_name with the table this trigger fires on
CREATE TRIGGER <name_placeholder>
BEFORE INSERT OR UPDATE ON table_name
FOR EACH ROW EXECUTE FUNCTION <name_placeholder>_fn();
""",
    ObjectKind.VIEW: """CREATE OR REPLACE VIEW <name_placeholder> AS
SELECT 1 AS placeholder;
""",
    ObjectKind.MATERIALIZED_VIEW: """CREATE MATERIALIZED VIEW IF NOT EXISTS <name_placeholder> AS
SELECT 1 AS placeholder
WITH NO DATA;
""",
}


def _require_project(root: str):
    if not os.path.isdir(root):
        raise ConfigError(f"Directory '{root}' not found. Have you run 'pgm init'?")


def _validate_name(name: str):
    if not _NAME.match(name):
        raise ConfigError(f"Invalid name '{name}': use letters, digits, '_', '-' or '.'")


def create_layout(root: str):
    for directory in PROJECT_DIRECTORIES:
        os.makedirs(os.path.join(root, directory), exist_ok=True)


def init_project(root: str, existing_db: bool = False, dsn: Optional[str] = None) -> Optional[ImportResult]:
    """
    Create a new project directory.

    Args:
        root: Directory to create; must not exist yet
        existing_db: Import functions, triggers, views and a baseline migration with pg_dump
        dsn: Connection string for pg_dump (defaults to the PG* environment)
    """
    if os.path.exists(root):
        raise ConfigError(f"Directory '{root}' already exists")

    # Dump before touching the filesystem so a failed pg_dump leaves nothing behind
    result = dump_schema(dsn) if existing_db else None

    try:
        create_layout(root)
        if result is not None:
            write_import(result, root)
    except Exception:
        shutil.rmtree(root, ignore_errors=True)
        raise
    logging.info(f"Created project layout in {root}")

    return result


def create_object(root: str, kind: ObjectKind, name: str, force: bool = False) -> str:
    """Write a template for a new function, trigger, view or materialized view."""
    _require_project(root)
    _validate_name(name)
    if kind not in TEMPLATES:
        raise ConfigError(f"Cannot create objects of kind {kind.value}")

    directory = os.path.join(root, directory_for(kind))
    os.makedirs(directory, exist_ok=True)
    path = os.path.join(directory, f"{name}.sql")
    if os.path.exists(path) and not force:
        raise ConfigError(f"{kind.value} '{name}' already exists at {path}; use --force to reset it")

    with open(path, "w", encoding="utf-8") as f:
        f.write(TEMPLATES[kind].replace("<name_placeholder>", name))
    return path


def _next_numbered_file(directory: str, name: Optional[str]) -> str:
    """Next file in a numbered series: highest prefix + 1, padded to the width already in use."""
    numbers = []
    width = DEFAULT_SEQUENCE_WIDTH
    for entry in sorted(os.listdir(directory)):
        match = _NUMBERED.match(entry)
        if match:
            numbers.append(int(match.group(1)))
            width = len(match.group(1))
    sequence = str(max(numbers, default=0) + 1).zfill(width)
    file_name = f"{sequence}_{name}.sql" if name else f"{sequence}.sql"
    return os.path.join(directory, file_name)


def create_migration(root: str, name: Optional[str] = None) -> str:
    _require_project(root)
    if name:
        _validate_name(name)
    directory = os.path.join(root, MIGRATIONS_DIR)
    os.makedirs(directory, exist_ok=True)
    path = _next_numbered_file(directory, name)
    open(path, "w", encoding="utf-8").close()
    return path


def create_seed(root: str, name: Optional[str] = None) -> str:
    _require_project(root)
    if name:
        _validate_name(name)
    directory = os.path.join(root, SEEDS_DIR)
    os.makedirs(directory, exist_ok=True)
    path = _next_numbered_file(directory, name)
    open(path, "w", encoding="utf-8").close()
    return path
