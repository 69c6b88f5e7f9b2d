"""Logging configuration for the imdeploy package."""
import logging

from .config import Config


def setup_logging(debug_mode: bool = False) -> logging.Logger:
    """
    Configure logging based on debug mode.

    Args:
        debug_mode: Log at DEBUG instead of the configured LOG_LEVEL

    Returns:
        The package logger
    """
    log_level = logging.DEBUG if debug_mode else Config.LOG_LEVEL
    logging.basicConfig(
        level=log_level,
        format=Config.LOG_FORMAT,
        datefmt='%Y-%m-%d %H:%M:%S',
        handlers=[
            logging.StreamHandler()
        ]
    )
    logger = logging.getLogger("imdeploy")
    logger.setLevel(log_level)

    # Disable debug logging for noisy libraries
    if not debug_mode:
        logging.getLogger('urllib3').setLevel(logging.WARNING)

    return logger
