"""
Shared helpers used across features.
"""
import logging

from app.core import config


_configured = False


def _configure_root() -> None:
    global _configured
    if _configured:
        return
    logging.basicConfig(
        level=getattr(logging, config.LOG_LEVEL, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    _configured = True


def get_logger(name: str) -> logging.Logger:
    """
    Get a module logger.

    Usage:
        log = get_logger(__name__)
        log.info("Initializing server")
    """
    _configure_root()
    return logging.getLogger(name)
