"""
Logging for the yield vault.

Every module logger hangs under the ``yield_vault`` package logger, which
owns a colored console handler and one rotating ``vault.log`` file. Each
line carries the correlation id of the vault operation that wrote it, so
the plain log can be joined with the JSON audit channel.
"""

import logging
import os
import sys
from contextvars import ContextVar
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

ROOT_LOGGER = "yield_vault"

# Set per vault operation by structured_logging.with_correlation_id
correlation_id_var: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)


class Colors:
    """ANSI color codes for terminal output."""
    RESET = "\033[0m"
    GRAY = "\033[90m"
    GREEN = "\033[92m"
    YELLOW = "\033[93m"
    RED = "\033[91m"
    BOLD = "\033[1m"


LEVEL_COLORS = {
    logging.DEBUG: Colors.GRAY,
    logging.INFO: Colors.GREEN,
    logging.WARNING: Colors.YELLOW,
    logging.ERROR: Colors.RED,
    logging.CRITICAL: Colors.RED + Colors.BOLD,
}

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - [%(correlation_id)s] %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
LOG_FILE_NAME = "vault.log"


class CorrelationFilter(logging.Filter):
    """Stamp records with the current correlation id, ``-`` outside an operation."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = correlation_id_var.get() or "-"
        return True


class ColoredFormatter(logging.Formatter):
    """Formatter that adds colors to terminal output."""

    def format(self, record: logging.LogRecord) -> str:
        color = LEVEL_COLORS.get(record.levelno, Colors.RESET)
        return f"{color}{super().format(record)}{Colors.RESET}"


def resolve_level(level: int | str | None = None) -> int:
    """Numeric level from an int, a level name, or the LOG_LEVEL env var."""
    if level is None:
        level = os.getenv("LOG_LEVEL", "INFO")
    if isinstance(level, str):
        return getattr(logging, level.upper(), logging.INFO)
    return level


def default_log_dir() -> Path:
    """
    Resolve the directory for file logs.

    ``LOG_DIR`` wins; otherwise ``logs/`` next to the package.
    """
    env_dir = os.getenv("LOG_DIR")
    if env_dir:
        return Path(env_dir)
    return Path(__file__).parent.parent.parent / "logs"


def configure_logging(
    level: int | str | None = None,
    log_dir: str | Path | None = None,
    console: bool = True,
) -> logging.Logger:
    """
    (Re)configure the package logger.

    Existing handlers are closed and replaced, so this can be called again
    once the application config is loaded.

    Args:
        level: Log level. Defaults to LOG_LEVEL env var or INFO
        log_dir: Directory for vault.log. Defaults to default_log_dir()
        console: Also log to stdout

    Returns:
        The ``yield_vault`` package logger

    Example:
        >>> configure_logging(config.log_level)
    """
    root = logging.getLogger(ROOT_LOGGER)
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()

    level = resolve_level(level)
    root.setLevel(level)
    correlation = CorrelationFilter()

    if console:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(ColoredFormatter(LOG_FORMAT, DATE_FORMAT))
        console_handler.addFilter(correlation)
        root.addHandler(console_handler)

    log_dir = Path(log_dir) if log_dir is not None else default_log_dir()
    log_dir.mkdir(parents=True, exist_ok=True)
    file_handler = RotatingFileHandler(
        log_dir / LOG_FILE_NAME,
        maxBytes=10 * 1024 * 1024,  # 10 MB
        backupCount=5,
        encoding="utf-8",
    )
    file_handler.setFormatter(logging.Formatter(LOG_FORMAT, DATE_FORMAT))
    file_handler.addFilter(correlation)
    root.addHandler(file_handler)

    root.propagate = False
    return root


def get_logger(name: str) -> logging.Logger:
    """
    Module logger under the package logger.

    Names outside the package are nested under it. The package logger is
    configured from the environment on first use.

    Example:
        >>> logger = get_logger(__name__)
        >>> logger.info("Adapter registered")
    """
    if not logging.getLogger(ROOT_LOGGER).handlers:
        configure_logging()
    if name != ROOT_LOGGER and not name.startswith(ROOT_LOGGER + "."):
        name = f"{ROOT_LOGGER}.{name}"
    return logging.getLogger(name)
