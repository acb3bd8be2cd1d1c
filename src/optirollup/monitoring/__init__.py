from .metrics import RollupMetrics
from .logging_config import LogConfig

__all__ = ['RollupMetrics', 'LogConfig']
