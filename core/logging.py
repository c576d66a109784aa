"""
core/logging.py -- One-time logging setup for the service.

Every module gets its logger with logging.getLogger("idgate.<area>"); only the
process entry point (api/main.py lifespan) calls configure_logging().
"""

import logging

LOG_FORMAT = "%(asctime)s %(levelname)-5s %(name)s %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging defaults. Unknown level names fall back to INFO."""
    resolved = logging.getLevelName(level.upper())
    if not isinstance(resolved, int):
        resolved = logging.INFO
    logging.basicConfig(level=resolved, format=LOG_FORMAT, datefmt=DATE_FORMAT)
    logging.getLogger("idgate").setLevel(resolved)
