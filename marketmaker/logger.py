# marketmaker/logger.py
import logging
import sys


def setup_console_logger(name: str, level: str = "INFO") -> logging.Logger:
    """
    Sets up the standard Python logger for console output.
    Calling it twice for the same name does not stack handlers.
    """
    logger = logging.getLogger(name)
    logger.setLevel(level)

    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        formatter = logging.Formatter('%(asctime)s | %(levelname)s | %(module)s | %(message)s')
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    return logger


def get_child_logger(parent: logging.Logger, component: str) -> logging.Logger:
    """Per-component logger sharing the parent's handlers and level."""
    return parent.getChild(component)
