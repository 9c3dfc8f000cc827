"""
Tests for opening database connections.
"""

import builtins

import psycopg
import pytest

from pgm_core.lib import connection, errors
from pgm_core.lib.errors import PgmConnectionError, PgmError


def test_operational_error_is_wrapped(monkeypatch):
    """Test that an unreachable database raises PgmConnectionError."""
    def refuse(dsn, autocommit):
        raise psycopg.OperationalError("connection refused\n")

    monkeypatch.setattr(connection.psycopg, "connect", refuse)

    with pytest.raises(PgmConnectionError, match="connection refused$") as exc:
        connection.connect("postgresql://nowhere/app")
    assert isinstance(exc.value, PgmError)
    assert not isinstance(exc.value, builtins.ConnectionError)


def test_builtin_connection_error_not_shadowed():
    """Test that the errors module does not rebind the ConnectionError builtin."""
    assert not hasattr(errors, "ConnectionError")
    namespace = {}
    exec("from pgm_core.lib.errors import *", namespace)
    assert "ConnectionError" not in namespace


def test_empty_dsn_uses_environment(monkeypatch):
    calls = []
    monkeypatch.setattr(connection.psycopg, "connect", lambda dsn, autocommit: calls.append((dsn, autocommit)))
    connection.connect()
    assert calls == [("", True)]
