import logging
import os
import re
from typing import List

from pgm_core.lib.errors import ConfigError, DuplicateObject, InvalidMigrationName
from pgm_core.lib.objects import REPLACEABLE_KINDS, Migration, ObjectStore, Seed, SqlObject
from pgm_core.lib.strategy import MIGRATIONS_DIR, SEEDS_DIR, directory_for

MIGRATION_NAME = re.compile(r"^(?P<sequence>\d+)(?:[_-](?P<name>.+))?$")


def _sql_files(directory: str) -> List[str]:
    """List .sql files in a directory, sorted by name. Missing directory means no files."""
    if not os.path.isdir(directory):
        return []
    return sorted(
        os.path.join(directory, entry)
        for entry in os.listdir(directory)
        if entry.endswith(".sql") and os.path.isfile(os.path.join(directory, entry))
    )


def _read(path: str) -> str:
    with open(path, "r", encoding="utf-8") as f:
        return f.read()


def _stem(path: str) -> str:
    return os.path.splitext(os.path.basename(path))[0]


def parse_migration_name(path: str) -> tuple[int, str]:
    """Return (sequence, name) for a migration file, e.g. 0001_init.sql -> (1, 'init')."""
    stem = _stem(path)
    match = MIGRATION_NAME.match(stem)
    if not match:
        raise InvalidMigrationName(
            "Migration file names must start with a numeric sequence, e.g. 00001_create_users.sql",
            path=path,
        )
    return int(match.group("sequence")), match.group("name") or ""


def load_migrations(root: str) -> List[Migration]:
    migrations = []
    seen = {}
    for path in _sql_files(os.path.join(root, MIGRATIONS_DIR)):
        sequence, _ = parse_migration_name(path)
        if sequence in seen:
            raise InvalidMigrationName(
                f"Duplicate migration sequence {sequence} (also used by {seen[sequence]})",
                path=path,
            )
        seen[sequence] = path
        migrations.append(Migration(sequence=sequence, name=_stem(path), source=_read(path), path=path))
    migrations.sort(key=lambda m: m.sequence)
    return migrations


def load_project(root: str) -> ObjectStore:
    """Load functions, triggers, views, materialized views, migrations and seeds from a project directory."""
    if not os.path.isdir(root):
        raise ConfigError(f"Directory '{root}' not found. Have you run 'pgm init'?")

    store = ObjectStore(root=root)

    for kind in REPLACEABLE_KINDS:
        for path in _sql_files(os.path.join(root, directory_for(kind))):
            name = _stem(path).lower()
            if (kind, name) in store.objects:
                raise DuplicateObject(
                    f"{kind.value} '{name}' is already defined by {store.objects[(kind, name)].path}",
                    path=path,
                )
            store.objects[(kind, name)] = SqlObject(kind=kind, name=name, source=_read(path), path=path)

    store.migrations = load_migrations(root)
    store.seeds = [
        Seed(name=_stem(path), source=_read(path), path=path)
        for path in _sql_files(os.path.join(root, SEEDS_DIR))
    ]

    logging.debug(f"Loaded {store}")
    return store
