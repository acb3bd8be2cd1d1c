# src/optirollup/utils/__init__.py
from .logger import setup_logging, get_logger, short_hash
from .config import Config
from .state import ensure_transition

__all__ = ['setup_logging', 'get_logger', 'short_hash', 'Config', 'ensure_transition']
