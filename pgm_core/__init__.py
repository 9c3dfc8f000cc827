"""
pgm: Core library for managing PostgreSQL migrations and re-appliable objects

This package loads a project directory of SQL files (functions, triggers, views,
materialized views, numbered migrations and seeds), compares it against a ledger
table stored in the target database, and applies only what changed.
"""

# Import core library functionality
from pgm_core.lib import (
    load_project,
    build_plan,
    deploy,
    seed,
)

# Import CLI and API interfaces
from pgm_core.cli import main
from pgm_core.api import app

__version__ = "0.3.0"
__all__ = [
    # Core library exports
    "load_project",
    "build_plan",
    "deploy",
    "seed",

    # Interface exports
    "main",
    "app"
]
