import argparse
import logging
import sys

from dotenv import find_dotenv, load_dotenv

from pgm_core.lib.config import Settings
from pgm_core.lib.connection import connect
from pgm_core.lib.deploy import deploy, seed
from pgm_core.lib.errors import PgmError
from pgm_core.lib.objects import ObjectKind
from pgm_core.lib.planner import DRIFT_ERROR
from pgm_core.lib.scaffold import create_migration, create_object, create_seed, init_project

CREATE_KINDS = {
    "function": ObjectKind.FUNCTION,
    "trigger": ObjectKind.TRIGGER,
    "view": ObjectKind.VIEW,
    "materialized-view": ObjectKind.MATERIALIZED_VIEW,
}


def _settings(args) -> Settings:
    return Settings.resolve(
        path=getattr(args, "path", None),
        dsn=getattr(args, "dsn", None),
        lock_timeout=getattr(args, "lock_timeout", None),
        drift_policy=DRIFT_ERROR if getattr(args, "strict", False) else None,
    )


def cmd_init(args) -> int:
    settings = _settings(args)
    result = init_project(settings.path, existing_db=args.existing_db, dsn=settings.dsn)
    if result is not None:
        for skipped in result.skipped:
            logging.info(f"Skipped line {skipped.line}: {skipped.reason}")
        print(f"Imported {len(result.objects)} objects and {len(result.baseline)} baseline statements "
              f"({len(result.skipped)} skipped)")
        print(f"Run 'pgm apply --fake --path {settings.path}' to record them as applied")
    print("Initialized successfully")
    return 0


def cmd_apply(args) -> int:
    settings = _settings(args)
    with connect(settings.dsn) as conn:
        result = deploy(
            conn,
            settings.path,
            dry_run=args.dry_run,
            fake=args.fake,
            drift_policy=settings.drift_policy,
            lock_timeout=settings.lock_timeout,
        )

    if args.dry_run:
        print(result.report)
    else:
        print(f"Changes applied successfully ({len(result.applied)} changes)")
    return 0


def cmd_create(args) -> int:
    settings = _settings(args)
    if args.kind == "migration":
        path = create_migration(settings.path, args.name)
    elif args.kind == "seed":
        path = create_seed(settings.path, args.name)
    else:
        path = create_object(settings.path, CREATE_KINDS[args.kind], args.name, force=args.force)
    print(f"Created {path}")
    return 0


def cmd_seed(args) -> int:
    settings = _settings(args)
    with connect(settings.dsn) as conn:
        seeds = seed(conn, settings.path, lock_timeout=settings.lock_timeout)
    print(f"Database seeded successfully ({len(seeds)} seed files)")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pgm",
        description="pgm: manage postgres migrations, triggers, views and functions"
    )
    parser.add_argument(
        "-v", "--verbose",
        action="count",
        default=0,
        help="Increase verbosity (-v for INFO, -vv for DEBUG)"
    )
    parser.add_argument(
        "--dsn",
        help="PostgreSQL connection string (default: DATABASE_URL or the PG* environment variables)"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    init = subparsers.add_parser("init", help="Initializes the directory")
    init.add_argument("path", nargs="?", help="The path to the directory where pgm will store its files")
    init.add_argument(
        "--existing-db",
        action="store_true",
        help="Initialize from an existing database using pg_dump"
    )
    init.set_defaults(handler=cmd_init)

    apply = subparsers.add_parser("apply", help="Compiles the changes and applies them to the database")
    apply.add_argument("--path", help="The path to the directory containing the database files")
    apply.add_argument(
        "--dry-run",
        action="store_true",
        help="Prints the SQL that would be applied but does not apply it"
    )
    apply.add_argument(
        "--fake",
        action="store_true",
        help="Records pending migrations in the ledger without executing them"
    )
    apply.add_argument(
        "--strict",
        action="store_true",
        help="Fail when an applied migration was modified after it ran"
    )
    apply.add_argument(
        "--lock-timeout",
        type=float,
        help="Seconds to wait for a concurrent run to release the ledger lock"
    )
    apply.set_defaults(handler=cmd_apply)

    create = subparsers.add_parser("create", help="Creates a new database object")
    create_kinds = create.add_subparsers(dest="kind", required=True)
    for kind in ("migration", "seed"):
        sub = create_kinds.add_parser(kind, help=f"Creates a new {kind}")
        sub.add_argument("name", nargs="?", help=f"Optional descriptive name for the {kind}")
        sub.add_argument("--path", help="The path to the directory containing the database files")
        sub.set_defaults(handler=cmd_create, force=False)
    for kind in CREATE_KINDS:
        sub = create_kinds.add_parser(kind, help=f"Creates a new {kind.replace('-', ' ')}")
        sub.add_argument("name", help=f"The name of the {kind.replace('-', ' ')}")
        sub.add_argument("--path", help="The path to the directory containing the database files")
        sub.add_argument("--force", action="store_true", help="Overwrite the file if it already exists")
        sub.set_defaults(handler=cmd_create)

    seed_cmd = subparsers.add_parser("seed", help="Seeds the database with data")
    seed_cmd.add_argument("--path", help="The path to the directory containing the database files")
    seed_cmd.set_defaults(handler=cmd_seed)

    return parser


def main(argv=None) -> int:
    load_dotenv(find_dotenv(usecwd=True))

    parser = build_parser()
    args = parser.parse_args(argv)

    # Set log level based on verbosity count
    if args.verbose == 0:
        log_level = logging.WARNING
    elif args.verbose == 1:
        log_level = logging.INFO
    else:
        log_level = logging.DEBUG

    logging.basicConfig(
        level=log_level,
        format='%(levelname)s: %(message)s',
        datefmt='%H:%M:%S'
    )

    try:
        return args.handler(args)
    except PgmError as e:
        print(f"Error during {args.command}:", file=sys.stderr)
        print(f"  - {e}", file=sys.stderr)
        cause = e.__cause__
        while cause is not None:
            print(f"  - {str(cause).strip()}", file=sys.stderr)
            cause = cause.__cause__
        return 1


if __name__ == "__main__":
    sys.exit(main())
