from typing import Optional

import psycopg

from pgm_core.lib.errors import PgmConnectionError


def connect(dsn: Optional[str] = None) -> psycopg.Connection:
    """
    Open an autocommit connection. Transactions are opened explicitly by the
    ledger session, so reads outside it (dry-run) never start one.
    An empty dsn lets libpq resolve PGHOST, PGPORT, PGUSER, PGPASSWORD and PGDATABASE.
    """
    try:
        return psycopg.connect(dsn or "", autocommit=True)
    except psycopg.OperationalError as e:
        raise PgmConnectionError(f"Could not connect to the database: {str(e).strip()}") from e
