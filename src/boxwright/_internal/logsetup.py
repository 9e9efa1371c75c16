"""Root logger configuration for the CLI."""

import logging
from typing import Optional

LOG_FORMAT = "%(levelname)s:%(name)s:%(message)s"


def configure_logging(verbosity: int = 0, level_name: Optional[str] = None) -> int:
    """Configure the root logger once and return the effective level.

    ``level_name`` (from ``BOX_LOG``) wins over ``-v`` counts.
    """
    if level_name:
        level = logging.getLevelName(level_name.upper())
        if not isinstance(level, int):
            level = logging.WARNING
    elif verbosity >= 2:
        level = logging.DEBUG
    elif verbosity == 1:
        level = logging.INFO
    else:
        level = logging.WARNING
    logging.basicConfig(level=level, format=LOG_FORMAT)
    logging.getLogger().setLevel(level)
    return level
