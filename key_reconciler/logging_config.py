import logging
import os
import sys
from logging import Handler
from typing import Optional

from tqdm import tqdm

LOGGER_NAME = "key_reconciler"


class TqdmLoggingHandler(Handler):
    """
    Logging handler that writes through tqdm.write so log lines do not
    break the translation progress bar.
    """
    def __init__(self, level=logging.NOTSET):
        super().__init__(level)

    def emit(self, record):
        try:
            msg = self.format(record)
            tqdm.write(msg, file=sys.stderr)
            self.flush()
        except (KeyboardInterrupt, SystemExit):
            raise
        except Exception:
            self.handleError(record)

LOG_FORMAT = '%(asctime)s - %(levelname)s - %(name)s - %(message)s'


def _reset_handlers(logger: logging.Logger) -> None:
    """Detach and close handlers from an earlier setup, so log files are not left open."""
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()


def setup_logger(log_level_str: str, log_file_path: str, log_to_console: bool,
                 project_root: Optional[str] = None) -> logging.Logger:
    """
    Set up the package logger.

    Every module logs through a child of the ``key_reconciler`` logger, so
    configuring it here covers the whole package. Calling it again replaces
    the previous handlers.

    Args:
        log_level_str: The logging level as a string (e.g., 'INFO', 'DEBUG').
        log_file_path: The path to the log file. Empty disables file logging.
            A relative path is taken from ``project_root`` when given.
        log_to_console: Whether to also log to the console.
        project_root: Base directory for a relative ``log_file_path``.

    Returns:
        The configured logger instance.
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(getattr(logging, log_level_str.upper(), logging.INFO))
    _reset_handlers(logger)
    logger.propagate = False

    formatter = logging.Formatter(LOG_FORMAT)

    if log_file_path:
        if project_root and not os.path.isabs(log_file_path):
            log_file_path = os.path.join(project_root, log_file_path)
        log_dir = os.path.dirname(log_file_path)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        file_handler = logging.FileHandler(log_file_path, encoding='utf-8')
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    if log_to_console:
        tqdm_handler = TqdmLoggingHandler()
        tqdm_handler.setFormatter(formatter)
        logger.addHandler(tqdm_handler)

    return logger
