# File: src/optirollup/storage/__init__.py
from .database import Database, DatabaseError
from .rollup_state import RollupStateStore

__all__ = ['Database', 'DatabaseError', 'RollupStateStore']
