"""
Tests for diffing a project against the ledger.
"""

import pytest

from pgm_core.lib.errors import DriftError, DriftWarning, OutOfOrderWarning
from pgm_core.lib.fingerprint import fingerprint
from pgm_core.lib.ledger import LedgerEntry, LedgerSnapshot
from pgm_core.lib.objects import Migration, ObjectKind, ObjectStore, SqlObject
from pgm_core.lib.plan import ActionKind
from pgm_core.lib.planner import DRIFT_ERROR, build_plan


def make_store(objects=(), migrations=()):
    store = ObjectStore(root="postgres")
    for obj in objects:
        store.objects[obj.identity] = obj
    store.migrations = sorted(migrations, key=lambda m: m.sequence)
    return store


def function(name, body="SELECT 1"):
    return SqlObject(
        ObjectKind.FUNCTION, name,
        f"CREATE OR REPLACE FUNCTION {name}() RETURNS int AS $$ {body} $$ LANGUAGE sql;",
    )


def applied(*items):
    """Ledger snapshot in which every given object or migration is already applied."""
    snapshot = LedgerSnapshot()
    for item in items:
        if isinstance(item, Migration):
            snapshot.migrations[item.sequence] = LedgerEntry(
                "migration", item.name, item.fingerprint, migration_sequence=item.sequence,
            )
        else:
            snapshot.objects[item.identity] = LedgerEntry(item.kind.value, item.name, item.fingerprint)
    return snapshot


class TestObjectPlanning:
    """Test Create, Replace and Skip for re-appliable objects."""

    def test_create_then_skip_then_replace(self):
        """Test the lifecycle of one function across three runs."""
        f1 = function("f1")
        plan = build_plan(make_store([f1]), LedgerSnapshot())
        assert [(a.kind, a.name) for a in plan.pending] == [(ActionKind.CREATE, "f1")]

        plan = build_plan(make_store([f1]), applied(f1))
        assert plan.pending == []
        assert plan.is_empty
        assert [a.kind for a in plan] == [ActionKind.SKIP]

        edited = function("f1", body="SELECT 2")
        plan = build_plan(make_store([edited]), applied(f1))
        assert [(a.kind, a.name) for a in plan.pending] == [(ActionKind.REPLACE, "f1")]
        assert plan.pending[0].fingerprint == edited.fingerprint

    def test_whitespace_edit_is_not_a_change(self):
        """Test that reformatting a function does not replace it."""
        f1 = function("f1")
        reformatted = SqlObject(
            ObjectKind.FUNCTION, "f1", "-- formatted\n" + f1.source.replace(" RETURNS int ", "\n    RETURNS   int\n"),
        )
        plan = build_plan(make_store([reformatted]), applied(f1))
        assert plan.is_empty

    def test_skip_has_no_sql(self):
        f1 = function("f1")
        plan = build_plan(make_store([f1]), applied(f1))
        assert plan.actions[0].sql is None

    def test_replace_view_in_place_with_fallback(self):
        """Test that an edited view a that view b selects from is not dropped up front."""
        view_a = SqlObject(ObjectKind.VIEW, "a", "CREATE OR REPLACE VIEW a AS SELECT 1 AS n, 2 AS m;")
        view_b = SqlObject(ObjectKind.VIEW, "b", "CREATE OR REPLACE VIEW b AS SELECT n FROM a;")
        old = applied(view_b)
        old.objects[view_a.identity] = LedgerEntry("view", "a", fingerprint("CREATE OR REPLACE VIEW a AS SELECT 1 AS n;"))

        plan = build_plan(make_store([view_a, view_b]), old)

        [action] = plan.pending
        assert action.kind == ActionKind.REPLACE
        assert action.name == "a"
        assert "DROP" not in action.sql
        assert action.fallback_sql.startswith('DROP VIEW IF EXISTS "a";')

    def test_created_view_has_no_fallback(self):
        view = SqlObject(ObjectKind.VIEW, "totals", "CREATE VIEW totals AS SELECT 1 AS n;")
        action = build_plan(make_store([view]), LedgerSnapshot()).pending[0]
        assert action.sql == view.source
        assert action.fallback_sql is None

    def test_recheck_flags(self):
        """Test that only replaceable functions and triggers are marked for the body check."""
        plain = SqlObject(ObjectKind.FUNCTION, "plain", "CREATE FUNCTION plain() RETURNS int AS $$ SELECT 1 $$ LANGUAGE sql;")
        view = SqlObject(ObjectKind.VIEW, "v", "CREATE VIEW v AS SELECT 1;")
        plan = build_plan(make_store([function("f1"), plain, view]), LedgerSnapshot())

        assert {a.name: a.recheck for a in plan} == {"f1": True, "plain": False, "v": False}

    def test_skipped_function_is_not_rechecked(self):
        f1 = function("f1")
        plan = build_plan(make_store([f1]), applied(f1))
        assert plan.actions[0].recheck is False

    def test_removed_files_are_ignored(self):
        """Test that ledger entries without a file produce no action."""
        f1 = function("f1")
        plan = build_plan(make_store(), applied(f1))
        assert len(plan) == 0


class TestMigrationPlanning:
    """Test RunMigration, MarkFake, drift and out-of-order handling."""

    def test_pending_migrations_in_sequence_order(self):
        m2 = Migration(2, "0002_b", "SELECT 2;")
        m1 = Migration(1, "0001_a", "SELECT 1;")
        plan = build_plan(make_store(migrations=[m2, m1]), LedgerSnapshot())
        assert [(a.kind, a.sequence) for a in plan.pending] == [
            (ActionKind.RUN_MIGRATION, 1),
            (ActionKind.RUN_MIGRATION, 2),
        ]
        assert plan.pending[0].sql == "SELECT 1;"

    def test_applied_migration_is_skipped(self):
        m1 = Migration(1, "0001_a", "SELECT 1;")
        plan = build_plan(make_store(migrations=[m1]), applied(m1))
        assert plan.is_empty
        assert plan.warnings == []

    def test_edited_migration_warns_and_is_not_rerun(self):
        """Test that drift on an applied migration is a warning, not a re-run."""
        m1 = Migration(1, "0001_init", "CREATE TABLE users (id int);")
        edited = Migration(1, "0001_init", "CREATE TABLE users (id bigint);")

        plan = build_plan(make_store(migrations=[edited]), applied(m1))

        assert plan.is_empty
        assert len(plan.warnings) == 1
        warning = plan.warnings[0]
        assert isinstance(warning, DriftWarning)
        assert warning.sequence == 1
        assert "modified after apply" in str(warning)

    def test_drift_error_policy(self):
        m1 = Migration(1, "0001_init", "CREATE TABLE users (id int);")
        edited = Migration(1, "0001_init", "CREATE TABLE users (id bigint);")
        with pytest.raises(DriftError, match="0001_init"):
            build_plan(make_store(migrations=[edited]), applied(m1), drift_policy=DRIFT_ERROR)

    def test_unknown_drift_policy(self):
        with pytest.raises(ValueError):
            build_plan(make_store(), LedgerSnapshot(), drift_policy="ignore")

    def test_out_of_order_migration_is_skipped(self):
        """Test that a new migration numbered below the high-water mark is not run."""
        m1 = Migration(1, "0001_a", "SELECT 1;")
        m3 = Migration(3, "0003_c", "SELECT 3;")
        late = Migration(2, "0002_b", "SELECT 2;")

        plan = build_plan(make_store(migrations=[m1, late, m3]), applied(m1, m3))

        assert plan.is_empty
        assert len(plan.warnings) == 1
        assert isinstance(plan.warnings[0], OutOfOrderWarning)
        assert plan.warnings[0].high_water == 3

    def test_fake_marks_pending_migrations(self):
        """Test that fake turns RunMigration into MarkFake without SQL."""
        m1 = Migration(1, "0001_a", "SELECT 1;")
        m2 = Migration(2, "0002_add_col", "ALTER TABLE t ADD COLUMN c int;")
        plan = build_plan(make_store(migrations=[m1, m2]), applied(m1), fake=True)
        assert [(a.kind, a.sequence, a.sql) for a in plan.pending] == [(ActionKind.MARK_FAKE, 2, None)]

    def test_fake_does_not_affect_objects(self):
        f1 = function("f1")
        plan = build_plan(make_store([f1]), LedgerSnapshot(), fake=True)
        assert plan.pending[0].kind == ActionKind.CREATE
        assert plan.pending[0].sql is not None


def test_global_order_by_kind_then_name():
    """Test the fixed order function < trigger < migration < view < materialized view."""
    objects = [
        SqlObject(ObjectKind.MATERIALIZED_VIEW, "mv", "CREATE MATERIALIZED VIEW mv AS SELECT 1;"),
        SqlObject(ObjectKind.VIEW, "b_view", "CREATE VIEW b_view AS SELECT 1;"),
        SqlObject(ObjectKind.VIEW, "a_view", "CREATE VIEW a_view AS SELECT 1;"),
        SqlObject(ObjectKind.TRIGGER, "t", "CREATE TRIGGER t AFTER INSERT ON x FOR EACH ROW EXECUTE FUNCTION g();"),
        function("zeta"),
        function("alpha"),
    ]
    migrations = [Migration(2, "0002_b", "SELECT 2;"), Migration(1, "0001_a", "SELECT 1;")]

    plan = build_plan(make_store(objects, migrations), LedgerSnapshot())

    assert [a.label for a in plan.pending] == [
        "function alpha",
        "function zeta",
        "trigger t",
        "migration 0001_a",
        "migration 0002_b",
        "view a_view",
        "view b_view",
        "materialized_view mv",
    ]


def test_plan_to_dict_list():
    plan = build_plan(make_store([function("f1")]), LedgerSnapshot())
    data = plan.to_dict_list()
    assert data[0]["action"] == "create"
    assert data[0]["object_kind"] == "function"
    assert data[0]["name"] == "f1"
