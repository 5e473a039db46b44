"""
Logging configuration for fund-periods.

Provides two loggers:
- main_logger: General logging to console (INFO level) and file
- background_logger: Synchronization logging to file (DEBUG level), warnings to console

Until setup_logging() is called both loggers propagate to the root logger,
so importing the package has no file-system side effects.
"""
import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

MAIN_LOGGER_NAME = "fundperiods"
BACKGROUND_LOGGER_NAME = "fundperiods.sync"

# Log file names (inside the configured log directory)
LOG_FILE_NAME = "sync.log"
MAIN_LOG_FILE_NAME = "fundperiods.log"

# Log formats
CONSOLE_FORMAT = "%(asctime)s | %(levelname)s | %(message)s"
FILE_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(funcName)s:%(lineno)d | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def setup_logging(log_dir: str | Path = "logs", console_level: int = logging.INFO):
    """Initialize logging configuration. Should be called once at startup."""
    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)

    # === Main Logger (console output + file) ===
    main_logger = logging.getLogger(MAIN_LOGGER_NAME)
    main_logger.setLevel(logging.DEBUG)  # Allow file to capture DEBUG
    main_logger.propagate = False

    # Clear existing handlers to avoid duplicates on reload
    main_logger.handlers.clear()

    console_handler = logging.StreamHandler()
    console_handler.setLevel(console_level)
    console_handler.setFormatter(logging.Formatter(CONSOLE_FORMAT, DATE_FORMAT))
    main_logger.addHandler(console_handler)

    main_file_handler = RotatingFileHandler(
        log_dir / MAIN_LOG_FILE_NAME,
        maxBytes=10 * 1024 * 1024,  # 10 MB per file
        backupCount=5,
        encoding="utf-8"
    )
    main_file_handler.setLevel(logging.DEBUG)
    main_file_handler.setFormatter(logging.Formatter(FILE_FORMAT, DATE_FORMAT))
    main_logger.addHandler(main_file_handler)

    # === Background Logger (file only + warnings to console) ===
    background_logger = logging.getLogger(BACKGROUND_LOGGER_NAME)
    background_logger.setLevel(logging.DEBUG)
    background_logger.propagate = False
    background_logger.handlers.clear()

    file_handler = RotatingFileHandler(
        log_dir / LOG_FILE_NAME,
        maxBytes=10 * 1024 * 1024,
        backupCount=5,
        encoding="utf-8"
    )
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(logging.Formatter(FILE_FORMAT, DATE_FORMAT))
    background_logger.addHandler(file_handler)

    console_error_handler = logging.StreamHandler()
    console_error_handler.setLevel(logging.WARNING)
    console_error_handler.setFormatter(logging.Formatter(CONSOLE_FORMAT, DATE_FORMAT))
    background_logger.addHandler(console_error_handler)

    return main_logger, background_logger


def get_main_logger() -> logging.Logger:
    """Get the main logger for general operations."""
    return logging.getLogger(MAIN_LOGGER_NAME)


def get_background_logger() -> logging.Logger:
    """Get the background logger for synchronization runs."""
    return logging.getLogger(BACKGROUND_LOGGER_NAME)


def log_background_start(task_name: str, details: str = ""):
    """
    Log background task start.
    Shows brief message on console + detailed entry in log file.
    """
    main = get_main_logger()
    bg = get_background_logger()

    console_msg = f"[SYNC] {task_name} started"
    if details:
        console_msg += f" ({details})"

    main.info(console_msg)
    bg.info(f"=== {task_name} STARTED === {details}")


def log_background_complete(task_name: str, summary: str = ""):
    """
    Log background task completion.
    Shows brief message on console + detailed entry in log file.
    """
    main = get_main_logger()
    bg = get_background_logger()

    console_msg = f"[SYNC] {task_name} completed"
    if summary:
        console_msg += f" - {summary}"

    main.info(console_msg)
    bg.info(f"=== {task_name} COMPLETED === {summary}")


def log_background_error(task_name: str, error: str):
    """
    Log background task error.
    Shows warning on console + error entry in log file.
    """
    main = get_main_logger()
    bg = get_background_logger()

    main.warning(f"[SYNC] {task_name} failed: {error}")
    bg.error(f"=== {task_name} FAILED === {error}")
