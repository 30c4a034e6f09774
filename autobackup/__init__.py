import os
import sys
import logging
from logging.handlers import RotatingFileHandler


__version__ = '1.0.0'

SUCCESS = 25
logging.addLevelName(SUCCESS, 'SUCCESS')

LOG_FORMAT = '%(asctime)s [%(levelname)s] - %(message)s'
LOG_DATE_FORMAT = '%Y-%m-%d %H:%M:%S'

logger = logging.getLogger('autobackup')


def configure_logging(verbose=False):
    """Configure console logging for the autobackup logger tree"""

    log_level = logging.DEBUG if verbose else logging.INFO
    logger.setLevel(log_level)

    # Console handler (replaced on reconfigure)
    for handler in list(logger.handlers):
        if getattr(handler, '_autobackup_console', False):
            logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(logging.Formatter(LOG_FORMAT, LOG_DATE_FORMAT))
    console_handler._autobackup_console = True
    logger.addHandler(console_handler)


def attach_log_file(path, max_bytes):
    """
    Start writing the run's log file, rotating it first if it is too big.

    Rotation happens at most once, here. The handler keeps maxBytes=0 so
    growth during the run is never re-checked.

    Args:
        path: Log file path; parent directories are created
        max_bytes: Rotation threshold in bytes

    Returns:
        The attached handler, or None if the log file could not be opened
    """
    try:
        os.makedirs(os.path.dirname(path) or '.', exist_ok=True)

        rotate = os.path.exists(path) and os.path.getsize(path) >= max_bytes

        file_handler = RotatingFileHandler(path, maxBytes=0, backupCount=1)
        if rotate:
            file_handler.doRollover()
    except OSError as e:
        # The backup still runs; the console is the only record left
        logger.error(f"Cannot write log file {path}: {e}")
        return None

    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(logging.Formatter(LOG_FORMAT, LOG_DATE_FORMAT))
    logger.addHandler(file_handler)

    if logger.level == logging.NOTSET:
        logger.setLevel(logging.INFO)

    if rotate:
        logger.info(f"Rotated log file to {path}.1")

    return file_handler


def detach_log_file(handler):
    """Remove and close a handler returned by attach_log_file."""
    if handler is None:
        return
    logger.removeHandler(handler)
    handler.close()
