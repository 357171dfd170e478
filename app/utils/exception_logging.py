"""
Utility functions for logging and describing upstream failures without ever
raising from the logging path itself.
"""

import logging

from app.utils import redact_url


def _safe_str(obj) -> str:
    """
    Convert an object to string, falling back to repr and finally to its type
    name when the object's own conversions fail.
    """
    try:
        return str(obj)
    except Exception:
        try:
            return repr(obj)
        except Exception:
            return f"<{type(obj).__name__} object (string conversion failed)>"


def _request_url(exception: Exception):
    """Return the URL of the request an httpx error belongs to, if any."""
    try:
        return str(exception.request.url)
    except Exception:
        return None


def format_exception_message(exception: Exception) -> str:
    """
    Describe an exception for a client-facing diagnostic.

    Args:
        exception: The exception to describe

    Returns:
        ``"<ExceptionType>: <message>"``, with the message left out when empty
    """
    if exception is None:
        return "None"
    try:
        name = type(exception).__name__
        message = _safe_str(exception)
        return f"{name}: {message}" if message else name
    except Exception:
        return "<exception (formatting failed)>"


def log_exception_with_details(
    logger: logging.Logger,
    prefix: str,
    exception: Exception,
    level: int = logging.ERROR,
) -> None:
    """
    Log an exception together with the upstream URL it concerns.
    Designed to never throw, even for broken exception objects or loggers.

    Args:
        logger: The logger instance to use
        prefix: Prefix for the log message (e.g., "[Proxy]")
        exception: The exception to log
        level: The logging level to use (default: ERROR)
    """
    try:
        message = f"{_safe_str(prefix)} {format_exception_message(exception)}"
        url = _request_url(exception)
        if url:
            message += f" (url: {redact_url(url)})"
        try:
            logger.log(level, message, exc_info=exception)
        except Exception:
            logger.log(level, message)
    except Exception:
        try:
            logger.log(logging.ERROR, "Exception logging failed")
        except Exception:
            # Logging itself is unusable; nothing left to report to
            return
