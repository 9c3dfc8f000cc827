import os
from dataclasses import dataclass
from typing import Mapping, Optional

from pgm_core.lib.errors import ConfigError
from pgm_core.lib.ledger import DEFAULT_LOCK_TIMEOUT
from pgm_core.lib.planner import DRIFT_POLICIES, DRIFT_WARN

DEFAULT_PGM_PATH = "postgres"


@dataclass
class Settings:
    """
    Run settings. Explicit values win over the environment, which wins over defaults.

    Attributes:
        path: Project directory (PGM_PATH)
        dsn: Connection string (DATABASE_URL); None lets libpq read PGHOST, PGUSER, ...
        lock_timeout: Seconds to wait for the ledger lock (PGM_LOCK_TIMEOUT)
        drift_policy: 'warn' or 'error' (PGM_DRIFT_POLICY)
    """
    path: str = DEFAULT_PGM_PATH
    dsn: Optional[str] = None
    lock_timeout: float = DEFAULT_LOCK_TIMEOUT
    drift_policy: str = DRIFT_WARN

    @classmethod
    def resolve(
        cls,
        *,
        path: Optional[str] = None,
        dsn: Optional[str] = None,
        lock_timeout: Optional[float] = None,
        drift_policy: Optional[str] = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> "Settings":
        env = os.environ if environ is None else environ

        if lock_timeout is None:
            raw = env.get("PGM_LOCK_TIMEOUT")
            try:
                lock_timeout = float(raw) if raw else DEFAULT_LOCK_TIMEOUT
            except ValueError:
                raise ConfigError(f"PGM_LOCK_TIMEOUT must be a number of seconds, got {raw!r}")
        if lock_timeout < 0:
            raise ConfigError("Lock timeout cannot be negative")

        drift_policy = drift_policy or env.get("PGM_DRIFT_POLICY") or DRIFT_WARN
        if drift_policy not in DRIFT_POLICIES:
            raise ConfigError(f"Drift policy must be one of {', '.join(DRIFT_POLICIES)}, got {drift_policy!r}")

        return cls(
            path=path or env.get("PGM_PATH") or DEFAULT_PGM_PATH,
            dsn=dsn or env.get("DATABASE_URL") or None,
            lock_timeout=lock_timeout,
            drift_policy=drift_policy,
        )
