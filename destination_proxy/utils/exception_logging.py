"""
Helpers that log and format exceptions raised while proxying, including
exception groups raised from concurrent upstream work.
"""

import logging
from typing import Optional


def _safe_str(obj) -> str:
    """
    Safely convert an object to string, falling back to repr and then to the type name.
    """
    try:
        return str(obj)
    except Exception:
        try:
            return repr(obj)
        except Exception:
            return f"<{type(obj).__name__} object (string conversion failed)>"


def _sub_exceptions(exception) -> list:
    try:
        return list(getattr(exception, "exceptions", None) or [])
    except Exception:
        return []


def log_exception_with_details(
    logger: logging.Logger,
    prefix: str,
    exception: Optional[BaseException],
    level: int = logging.ERROR,
) -> None:
    """
    Log an exception with its type and message, one extra line per member of an
    exception group. Never raises: a failing log call must not turn a handled
    request error into a crash of the handler.

    Args:
        logger: The logger instance to use
        prefix: Prefix for the log message (e.g., "[Proxy]", "[Token]")
        exception: The exception to log
        level: The logging level to use (default: ERROR)
    """
    try:
        safe_prefix = _safe_str(prefix) if prefix is not None else ""
        if exception is None:
            logger.log(level, f"{safe_prefix} Exception: None")
            return

        sub_exceptions = _sub_exceptions(exception)
        if sub_exceptions:
            logger.log(
                level,
                f"{safe_prefix} Exception with {len(sub_exceptions)} sub-exceptions: "
                f"{_safe_str(exception)}",
            )
            for i, sub_exc in enumerate(sub_exceptions):
                logger.log(
                    level,
                    f"{safe_prefix} Sub-exception {i + 1}: "
                    f"{type(sub_exc).__name__}: {_safe_str(sub_exc)}",
                    exc_info=sub_exc,
                )
            return

        logger.log(
            level,
            f"{safe_prefix} {type(exception).__name__}: {_safe_str(exception)}",
            exc_info=exception,
        )
    except Exception:
        try:
            logger.log(logging.ERROR, "Exception logging failed")
        except Exception:
            pass


def format_exception_message(exception: Optional[BaseException]) -> str:
    """
    Format an exception as a single line, including the members of an exception group.
    """
    if exception is None:
        return "None"
    message = _safe_str(exception)
    sub_exceptions = _sub_exceptions(exception)
    if not sub_exceptions:
        return message
    joined = "; ".join(
        f"{type(sub_exc).__name__}: {_safe_str(sub_exc)}" for sub_exc in sub_exceptions
    )
    return f"{message} (Sub-exceptions: {joined})"
