"""Logging configuration."""

import logging
import sys

ROOT_LOGGER = "smoothloop"


def setup_logging(
    level: str = "INFO",
    name: str | None = ROOT_LOGGER,
) -> logging.Logger:
    """Configure console logging for the application.

    Parameters
    ----------
    level : str
        Logging level (DEBUG, INFO, WARNING, ERROR).
    name : str, optional
        Logger name. Defaults to the package logger; None configures root.

    Returns
    -------
    logging.Logger
        Configured logger instance.
    """
    formatter = logging.Formatter(
        fmt="%(asctime)s | %(levelname)-8s | %(name)s:%(lineno)d | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    logger = logging.getLogger(name)
    logger.setLevel(getattr(logging, level.upper()))

    # Remove existing handlers to avoid duplicates
    logger.handlers.clear()
    logger.addHandler(handler)
    logger.propagate = False

    return logger


def get_logger(name: str = ROOT_LOGGER) -> logging.Logger:
    """Get a logger under the package namespace.

    Parameters
    ----------
    name : str
        Logger name, usually ``__name__``.

    Returns
    -------
    logging.Logger
        Logger instance.
    """
    if name != ROOT_LOGGER and not name.startswith(f"{ROOT_LOGGER}."):
        name = f"{ROOT_LOGGER}.{name}"
    return logging.getLogger(name)
