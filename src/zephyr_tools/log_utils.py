"""Logging setup for zephyr-tools.

The rotating log file under the tools directory is the append-only sink for
full diagnostic detail (command lines, captured stdout/stderr, tracebacks).
The console only ever receives the short human-readable messages emitted by
a Reporter, unless verbose mode is enabled.
"""

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

LOG_FILE_NAME = "zephyr-tools.log"
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(log_dir: Path, verbose: bool = False) -> Path:
    """Setup logging for the CLI process.

    Args:
        log_dir: Directory holding the rotating log file
        verbose: Also echo log records to stderr

    Returns:
        Path to the log file
    """
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / LOG_FILE_NAME

    logger = logging.getLogger("zephyr_tools")
    logger.setLevel(logging.DEBUG)

    # Handlers are replaced so repeated calls (tests, re-entry) don't duplicate output
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    file_handler = RotatingFileHandler(
        str(log_file),
        maxBytes=10 * 1024 * 1024,  # 10MB
        backupCount=3,
    )
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.addHandler(file_handler)

    if verbose:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(logging.INFO)
        console_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(console_handler)

    return log_file
