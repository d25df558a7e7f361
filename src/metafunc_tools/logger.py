# metafunc_tools/logger.py
"""
Logging for metafunc_tools.

All modules log to the ``metafunc_tools`` logger. ``setup_logger`` attaches a
console handler and, optionally, a file handler; warnings raised by numpy,
scipy and statsmodels during model fitting are routed into the same log.
"""

import os
import logging

LOGGER_NAME = 'metafunc_tools'
LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def setup_logger(log_file=None, log_level=logging.INFO, capture_warnings=True):
    """
    Configure the package logger.

    Args:
        log_file: Path to log file (optional); parent directories are created
        log_level: Logging level (default: INFO)
        capture_warnings: Send ``warnings.warn`` output (lowess, spline and
            t-distribution warnings) through the package log file as well

    Returns:
        Logger instance
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(log_level)

    # repeated CLI calls in one process must not stack handlers
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(LOG_FORMAT)
    handlers = [logging.StreamHandler()]
    if log_file:
        log_dir = os.path.dirname(log_file)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    for handler in handlers:
        handler.setLevel(log_level)
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    if capture_warnings:
        logging.captureWarnings(True)
        py_warnings = logging.getLogger('py.warnings')
        for handler in list(py_warnings.handlers):
            py_warnings.removeHandler(handler)
        for handler in handlers:
            py_warnings.addHandler(handler)

    return logger


def get_logger(logger=None):
    """Return the given logger, or the package logger when None."""
    if logger is not None:
        return logger
    return logging.getLogger(LOGGER_NAME)


def log_exclusions(kind, items, reason, logger=None, limit=10):
    """
    Log a batch of excluded genes or samples as one warning.

    Args:
        kind: What was excluded ("genes", "samples")
        items: Excluded identifiers
        reason: Why they were excluded
        logger: Logger instance for logging
        limit: Maximum number of identifiers written out
    """
    items = list(items)
    if not items:
        return
    shown = ", ".join(str(i) for i in items[:limit])
    if len(items) > limit:
        shown += f", ... ({len(items) - limit} more)"
    get_logger(logger).warning(f"Excluding {len(items)} {kind} ({reason}): {shown}")


def log_print(message, level='info'):
    """
    Print message to console and log with the specified level.

    Args:
        message: Message to print and log
        level: Logging level (info, debug, warning, error, critical)
    """
    print(message)
    logger = logging.getLogger(LOGGER_NAME)
    level = level.lower()
    if level not in ('debug', 'info', 'warning', 'error', 'critical'):
        level = 'info'
    getattr(logger, level)(message)
