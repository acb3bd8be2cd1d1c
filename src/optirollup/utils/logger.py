import logging
from typing import Optional

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def get_logger(name: str, level: Optional[int] = None) -> logging.Logger:
    """Create a logger with the given name and level"""
    logger = logging.getLogger(name)

    if not logger.handlers:  # Only add handler if none exists
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)

    if level is not None:
        logger.setLevel(level)
    elif not logger.level:  # Only set default level if none is set
        logger.setLevel(logging.INFO)

    return logger


def setup_logging(level: str = "INFO") -> logging.Logger:
    """Attach a console handler to the package logger"""
    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO
    return get_logger("optirollup", numeric_level)


def short_hash(value: Optional[str], length: int = 10) -> str:
    """Abbreviate a hex hash for log lines"""
    if not value:
        return "None"
    return f"{value[:length]}..."
