# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
Logging setup for lapreplay.

Modules log through plain ``logging.getLogger("lapreplay.<component>")``
loggers. This module configures the shared ``lapreplay`` parent logger with
console output and a rotating log file, so every component inherits the
same handlers.
"""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Dict, Optional

LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}


class ReplayLogger:
    """
    Centralized logging for lapreplay components.

    Features:
    - Console and file logging
    - Automatic log rotation
    - Timestamped log format
    """

    def __init__(
        self,
        name: str = "lapreplay",
        level: str = "INFO",
        log_dir: Optional[Path] = None,
        console_output: bool = True,
        file_output: bool = True,
    ):
        self.name = name
        self.logger = logging.getLogger(name)

        # Clear any existing handlers
        self.logger.handlers.clear()

        self.logger.setLevel(self._parse_level(level))

        console_formatter = logging.Formatter(
            fmt="[%(asctime)s] [%(name)s:%(levelname)s] %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

        file_formatter = logging.Formatter(
            fmt="%(asctime)s | %(name)s | %(levelname)s | %(filename)s:%(lineno)d | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

        if console_output:
            # stderr keeps stdout clean for JSON replay output
            console_handler = logging.StreamHandler(sys.stderr)
            console_handler.setFormatter(console_formatter)
            console_handler.setLevel(self._parse_level(level))
            self.logger.addHandler(console_handler)

        if file_output:
            if log_dir is None:
                log_dir = Path.home() / ".lapreplay" / "logs"

            log_dir.mkdir(parents=True, exist_ok=True)

            log_file = log_dir / f"{name}.log"

            # Rotate after 10MB, keep 5 backup files
            file_handler = RotatingFileHandler(
                log_file,
                maxBytes=10 * 1024 * 1024,
                backupCount=5,
                encoding="utf-8",
            )
            file_handler.setFormatter(file_formatter)
            file_handler.setLevel(logging.DEBUG)  # File gets everything
            self.logger.addHandler(file_handler)

    def _parse_level(self, level: str) -> int:
        """Convert string level to logging constant"""
        return LEVELS.get(level.upper(), logging.INFO)

    def set_level(self, level: str):
        """Change log level dynamically"""
        self.logger.setLevel(self._parse_level(level))
        for handler in self.logger.handlers:
            if not isinstance(handler, RotatingFileHandler):
                handler.setLevel(self._parse_level(level))


_loggers: Dict[str, ReplayLogger] = {}


def get_logger(
    name: str = "lapreplay",
    level: Optional[str] = None,
    log_dir: Optional[Path] = None,
) -> ReplayLogger:
    """
    Get or create a logger instance.

    Args:
        name: Logger name (usually ``lapreplay``)
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_dir: Directory for the rotating log file

    Returns:
        ReplayLogger instance
    """
    if name not in _loggers:
        log_level = level or os.getenv("LAPREPLAY_LOG_LEVEL", "INFO")

        # CI/test runs turn file logging off
        disable_file_logging = (
            os.getenv("LAPREPLAY_NO_FILE_LOGS", "false").lower() == "true"
        )

        _loggers[name] = ReplayLogger(
            name=name,
            level=log_level,
            log_dir=log_dir,
            file_output=not disable_file_logging,
        )
    elif level:
        _loggers[name].set_level(level)

    return _loggers[name]
