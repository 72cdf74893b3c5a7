"""Logging configuration for the KPI AI core."""

from __future__ import annotations

import logging
import sys

_PACKAGE_LOGGER = "kpi_ai"
_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(debug: bool = False) -> logging.Logger:
    """Attach a single stream handler to the package logger.

    Calling this more than once replaces the previous handler instead of
    stacking duplicates.
    """
    logger = logging.getLogger(_PACKAGE_LOGGER)
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG if debug else logging.INFO)
    return logger
