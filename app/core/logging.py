"""
Logging setup.

Modules log through ``logging.getLogger(__name__)``; this only wires the
root handler once at startup.
"""

from __future__ import annotations

import logging
import sys

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
HANDLER_NAME = "beebuildr"


def configure_logging(level: str = "INFO") -> None:
    """Attach a stdout handler to the root logger at the given level."""
    root = logging.getLogger()
    if not any(h.get_name() == HANDLER_NAME for h in root.handlers):
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler.set_name(HANDLER_NAME)
        root.addHandler(handler)
    root.setLevel(level)

    # SQL echo is controlled by DEBUG on the engine, not by LOG_LEVEL
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
