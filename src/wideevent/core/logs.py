"""Logging helpers shared across wideevent modules."""

import logging

logger = logging.getLogger("wideevent")


def log_exception(message: str, **attributes: str | int | float | bool | None) -> None:
    """Log the active exception at ERROR level with structured attributes.

    Must be called from inside an ``except`` block so the traceback is attached.

    Args:
        message: Human-readable description of what failed.
        **attributes: Extra fields attached to the log record.
    """
    logger.error(message, exc_info=True, extra={"attributes": attributes})
