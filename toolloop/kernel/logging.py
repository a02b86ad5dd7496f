"""
Logging System - Centralized logging management.

Provides colored console logging and optional file logging with rotation for
the ``toolloop`` logger hierarchy.
"""

from __future__ import annotations

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

import colorlog

ROOT_LOGGER = "toolloop"

CONSOLE_FORMAT = "%(log_color)s%(asctime)s | %(levelname)-8s | %(name)s%(reset)s | %(message)s"
FILE_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class LogManager:
    """
    Centralized logging configuration and management.

    Provides consistent formatting across all loggers with support for:
    - Colored console output
    - File logging with rotation
    """

    _instance: LogManager | None = None
    _initialized: bool = False

    def __new__(cls) -> LogManager:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self) -> None:
        if LogManager._initialized:
            return

        LogManager._initialized = True
        self._log_level = logging.INFO
        self._console_handler: logging.Handler | None = None
        self._file_handler: logging.Handler | None = None
        self._setup_root_logger()

    def _setup_root_logger(self) -> None:
        """Configure the package logger with colored output."""
        console_formatter = colorlog.ColoredFormatter(
            CONSOLE_FORMAT,
            datefmt=DATE_FORMAT,
            log_colors={
                "DEBUG": "cyan",
                "INFO": "green",
                "WARNING": "yellow",
                "ERROR": "red",
                "CRITICAL": "red,bg_white",
            },
        )

        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setFormatter(console_formatter)
        console_handler.setLevel(self._log_level)
        self._console_handler = console_handler

        root = logging.getLogger(ROOT_LOGGER)
        root.setLevel(logging.DEBUG)
        root.addHandler(console_handler)

    @classmethod
    def reset(cls) -> None:
        """Detach and close every handler and forget the singleton."""
        root = logging.getLogger(ROOT_LOGGER)
        for handler in list(root.handlers):
            root.removeHandler(handler)
            handler.close()
        cls._instance = None
        cls._initialized = False

    def enable_file_logging(self, log_file: str | Path) -> None:
        """Attach a rotating file handler (10 MB x 5)."""
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)

        root = logging.getLogger(ROOT_LOGGER)
        if self._file_handler is not None:
            root.removeHandler(self._file_handler)
            self._file_handler.close()

        file_handler = RotatingFileHandler(
            path,
            maxBytes=10 * 1024 * 1024,  # 10 MB
            backupCount=5,
            encoding="utf-8",
        )
        file_handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt=DATE_FORMAT))
        file_handler.setLevel(logging.DEBUG)
        root.addHandler(file_handler)
        self._file_handler = file_handler

    def get_logger(self, name: str) -> logging.Logger:
        """Get a logger below the package hierarchy."""
        if name == ROOT_LOGGER or name.startswith(ROOT_LOGGER + "."):
            return logging.getLogger(name)
        return logging.getLogger(f"{ROOT_LOGGER}.{name}")

    def set_level(self, level: int | str) -> None:
        """Set the console logging level."""
        if isinstance(level, str):
            level = getattr(logging, level.upper(), logging.INFO)

        self._log_level = level
        if self._console_handler is not None:
            self._console_handler.setLevel(level)

    @property
    def level(self) -> int:
        return self._log_level

    def configure_from_settings(self, settings: dict) -> None:
        """Configure logging from the ``logging`` config section."""
        if "level" in settings:
            self.set_level(settings["level"])
        if settings.get("file"):
            self.enable_file_logging(settings["file"])


def get_log_manager() -> LogManager:
    """Get the global log manager instance."""
    return LogManager()


def get_logger(name: str) -> logging.Logger:
    """Get a logger with the given name."""
    return get_log_manager().get_logger(name)


def setup_logging(level: int | str = logging.INFO, log_file: str | None = None) -> LogManager:
    """Configure console (and optionally file) logging in one call."""
    manager = get_log_manager()
    manager.set_level(level)
    if log_file:
        manager.enable_file_logging(log_file)
    return manager
