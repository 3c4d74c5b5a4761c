"""
Logging setup for spincirc runs.

Modules log through ``logging.getLogger(__name__)``; nothing is emitted
until the caller attaches handlers, here or in their own application.
"""
import logging
import sys
from typing import Optional, Union

FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def setup_logging(level: Union[int, str] = logging.INFO,
                  log_file: Optional[str] = None) -> logging.Logger:
    """
    Attach console (and optionally file) handlers to the ``spincirc`` logger.

    Args:
        level: Level number or name, e.g. logging.DEBUG or "DEBUG"
        log_file: Path of a log file to write alongside the console

    Returns:
        The package logger
    """
    logger = logging.getLogger(__name__.partition(".")[0])
    logger.setLevel(level)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file, mode='w', encoding='utf-8'))
    formatter = logging.Formatter(FORMAT, datefmt='%H:%M:%S')
    for handler in handlers:
        handler.setFormatter(formatter)
        logger.addHandler(handler)
    return logger
