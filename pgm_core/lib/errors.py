"""
Exception hierarchy for pgm.

Everything raised on purpose by the library derives from PgmError so that the
CLI and the API can catch one type.
"""

from typing import Optional


class PgmError(Exception):
    """Base class for all pgm errors."""


class ConfigError(PgmError):
    """Bad project path, layout or setting."""


class ParseError(PgmError):
    """A file or statement could not be understood."""

    def __init__(self, message: str, path: Optional[str] = None, line: Optional[int] = None):
        self.path = path
        self.line = line
        location = ""
        if path and line:
            location = f"{path}:{line}: "
        elif path:
            location = f"{path}: "
        super().__init__(f"{location}{message}")


class InvalidMigrationName(ParseError):
    """Migration file name has no usable sequence prefix, or reuses one."""


class DuplicateObject(ParseError):
    """Two files resolve to the same (kind, name) identity."""


class DriftError(PgmError):
    """An applied migration was modified and the drift policy is 'error'."""


class LockHeld(PgmError):
    """Another run holds the ledger lock."""


class ExecutionError(PgmError):
    """SQL failed while applying a plan. The transaction has been rolled back."""

    def __init__(self, action, db_error: str):
        self.action = action
        self.db_error = db_error
        super().__init__(f"Failed to apply {action.label}: {db_error}")


class PgmConnectionError(PgmError):
    """The database could not be reached."""


class DumpError(PgmError):
    """pg_dump is missing or exited with an error."""


class PgmWarning(Warning):
    """Base class for non-fatal findings collected while planning."""


class DriftWarning(PgmWarning):
    """An already-applied migration no longer matches its recorded fingerprint."""

    def __init__(self, sequence: int, name: str, recorded: str, current: str):
        self.sequence = sequence
        self.name = name
        self.recorded = recorded
        self.current = current
        super().__init__(f"migration {name} was modified after apply (sequence {sequence}); it will not be re-run")


class OutOfOrderWarning(PgmWarning):
    """A pending migration sorts below the highest applied sequence."""

    def __init__(self, sequence: int, name: str, high_water: int):
        self.sequence = sequence
        self.name = name
        self.high_water = high_water
        super().__init__(
            f"migration {name} (sequence {sequence}) is older than the last applied "
            f"sequence {high_water} and will not be run"
        )
