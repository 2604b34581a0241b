"""CLI command handlers."""

from .run import run_tool
from .batch import run_batch

__all__ = ['run_tool', 'run_batch']
