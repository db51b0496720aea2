"""
Logging setup

Structured logging through loguru. Components grab a bound logger with
get_logger('<component>') and prefix their messages with [Component].
"""
import os
import sys
from loguru import logger
from typing import Optional


def setup_logger(
    log_level: str = 'INFO',
    log_file: Optional[str] = None,
    rotation: str = '10 MB',
    retention: str = '7 days'
) -> None:
    """
    Configure the logging sinks.

    Args:
        log_level: Log level (DEBUG, INFO, WARNING, ERROR)
        log_file: Optional log file path
        rotation: Rotation size for the file sink
        retention: Retention period for rotated files
    """
    logger.remove()

    # LOG_LEVEL in the environment wins over the configured level
    level = os.environ.get('LOG_LEVEL', log_level).upper()

    console_format = (
        "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
        "<level>{level: <8}</level> | "
        "<cyan>{extra[name]}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
        "<level>{message}</level>"
    )

    logger.configure(extra={'name': 'airsync'})
    logger.add(
        sys.stderr,
        format=console_format,
        level=level,
        colorize=True,
        backtrace=True,
        diagnose=False,
    )

    if log_file:
        file_format = (
            "{time:YYYY-MM-DD HH:mm:ss} | "
            "{level: <8} | "
            "{extra[name]}:{function}:{line} | "
            "{message}"
        )
        logger.add(
            log_file,
            format=file_format,
            level=level,
            rotation=rotation,
            retention=retention,
            compression='zip',
            encoding='utf-8',
        )

    logger.info(f"Logger initialized with level: {level}")


def get_logger(name: str = None):
    """
    Get a logger bound to a component name.

    Args:
        name: Component name

    Returns:
        loguru logger instance
    """
    if name:
        return logger.bind(name=name)
    return logger


def log_error(error: Exception, context: str = None):
    """Log an error together with its traceback."""
    if context:
        message = f"Error in {context}: {error}"
    else:
        message = f"Error: {error}"
    logger.opt(exception=error).error(message)
