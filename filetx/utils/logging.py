# filetx/utils/logging.py
"""
Logging configuration for filetx.
"""
import sys
from pathlib import Path
from typing import Any, Dict, Optional

from loguru import logger

from filetx.constants import LOG_DIR, LOG_FORMAT, LOG_ROTATION, LOG_RETENTION

# Bound loggers, one per module name
_loggers: Dict[str, Any] = {}

# Records logged before setup_logging() still need a name for LOG_FORMAT
logger.configure(extra={"name": "filetx"})


def setup_logging(debug: bool = False, log_dir: Optional[Path] = None) -> None:
    """
    Configure the application logging.

    Args:
        debug: Whether to enable debug logging.
        log_dir: Directory for the log files. Defaults to LOG_DIR.
    """
    log_dir = Path(log_dir) if log_dir else LOG_DIR
    log_dir.mkdir(parents=True, exist_ok=True)

    # Remove default handlers
    logger.remove()

    log_level = "DEBUG" if debug else "INFO"
    logger.add(
        sys.stderr,
        format=LOG_FORMAT,
        level=log_level,
        diagnose=debug,  # Include variable values in traceback if debug is True
    )

    log_file = log_dir / "filetx.log"
    logger.add(
        log_file,
        format=LOG_FORMAT,
        level="INFO",
        rotation=LOG_ROTATION,
        retention=LOG_RETENTION,
        compression="zip",
    )

    # Structured JSON log for auditing applied and undone changes
    json_log_file = log_dir / "filetx_structured.log"
    logger.add(
        json_log_file,
        serialize=True,
        level="INFO",
        rotation=LOG_ROTATION,
        retention=LOG_RETENTION,
        compression="zip",
    )

    logger.debug(f"Logging initialized. Log files: {log_file}, {json_log_file}")


def get_logger(name: str = "filetx"):
    """
    Get a logger instance bound to the given name.

    Args:
        name: The name for the logger, usually the module's __name__.

    Returns:
        A loguru logger carrying ``name`` in its extra context.
    """
    if name not in _loggers:
        _loggers[name] = logger.bind(name=name)
    return _loggers[name]
