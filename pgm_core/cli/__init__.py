"""
Command line interface for pgm.
"""

from pgm_core.cli.cli import main

__all__ = ["main"]
