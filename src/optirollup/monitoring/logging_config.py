# File: src/optirollup/monitoring/logging_config.py

import logging
import logging.handlers
import os
from datetime import datetime

from ..utils.logger import LOG_FORMAT


class LogConfig:
    def __init__(
        self,
        log_dir: str = "logs",
        level: str = "INFO",
        max_size: int = 10 * 1024 * 1024,  # 10MB
        backup_count: int = 5
    ):
        self.log_dir = log_dir
        self.level = logging.getLevelName(level.upper())
        if not isinstance(self.level, int):
            self.level = logging.INFO
        self.max_size = max_size
        self.backup_count = backup_count

        os.makedirs(log_dir, exist_ok=True)

    @property
    def log_file(self) -> str:
        return os.path.join(
            self.log_dir,
            f'optirollup_{datetime.now().strftime("%Y%m%d")}.log'
        )

    def setup_logging(self) -> logging.Logger:
        # Create formatters
        file_formatter = logging.Formatter(LOG_FORMAT)
        console_formatter = logging.Formatter(
            '%(asctime)s - %(levelname)s - %(message)s'
        )

        # Set up file handler
        file_handler = logging.handlers.RotatingFileHandler(
            self.log_file,
            maxBytes=self.max_size,
            backupCount=self.backup_count
        )
        file_handler.setFormatter(file_formatter)
        file_handler.setLevel(logging.DEBUG)

        # Set up console handler
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(console_formatter)
        console_handler.setLevel(self.level)

        # Configure package logger
        package_logger = logging.getLogger("optirollup")
        package_logger.setLevel(logging.DEBUG)
        package_logger.addHandler(file_handler)
        package_logger.addHandler(console_handler)
        return package_logger
