"""
Exception formatting and logging helpers that never raise themselves.

Upstream failures from httpx and anyio may arrive wrapped in exception groups,
so both helpers unfold ``.exceptions`` when present.
"""

import logging


def _safe_str(obj) -> str:
    """
    Safely convert an object to string, handling cases where __str__ or __repr__ might fail.

    Args:
        obj: The object to convert to string

    Returns:
        A string representation of the object, falling back to safe alternatives
    """
    try:
        return str(obj)
    except Exception:
        try:
            return repr(obj)
        except Exception:
            try:
                return f"<{type(obj).__name__} object (string conversion failed)>"
            except Exception:
                return "<object (all string conversions failed)>"


def _safe_get_exceptions(exception_group) -> list:
    """Return the sub-exceptions of an exception group, or [] if unavailable."""
    try:
        return list(exception_group.exceptions)
    except Exception:
        return []


def _sub_exceptions(exception) -> list:
    if exception is None:
        return []
    # plain exceptions have no .exceptions; the AttributeError lands in []
    return _safe_get_exceptions(exception)


def _describe(exception) -> str:
    exc_type = type(exception).__name__ if exception is not None else "NoneType"
    return f"{exc_type}: {_safe_str(exception)}"


def log_exception_with_details(
    logger: logging.Logger,
    prefix: str,
    exception: Exception,
    level: int = logging.ERROR,
) -> None:
    """
    Log an exception with its traceback, one entry per sub-exception for groups.

    Args:
        logger: The logger instance to use
        prefix: Prefix for the log message (e.g., "[Proxy]", "[Rewrite]")
        exception: The exception to log
        level: The logging level to use (default: ERROR)
    """
    try:
        safe_prefix = _safe_str(prefix) if prefix is not None else ""
        sub_exceptions = _sub_exceptions(exception)

        if not sub_exceptions:
            logger.log(
                level,
                f"{safe_prefix} Exception: {_safe_str(exception)}",
                exc_info=exception if exception is not None else False,
            )
            return

        logger.log(
            level,
            f"{safe_prefix} Exception with {len(sub_exceptions)} sub-exceptions: "
            f"{_safe_str(exception)}",
        )
        for i, sub_exc in enumerate(sub_exceptions):
            try:
                logger.log(
                    level,
                    f"{safe_prefix} Sub-exception {i+1}: {_describe(sub_exc)}",
                    exc_info=sub_exc,
                )
            except Exception:
                logger.log(level, f"{safe_prefix} Sub-exception {i+1}: (logging failed)")
    except Exception:
        # If anything in the entire function fails, try one last minimal log attempt
        try:
            if logger is not None:
                logger.log(logging.ERROR, "Exception logging failed")
        except Exception:
            pass


def format_exception_message(exception: Exception) -> str:
    """
    Format an exception message, including sub-exceptions for exception groups.
    This function is designed to never throw exceptions itself.

    Args:
        exception: The exception to format

    Returns:
        A formatted string describing the exception
    """
    try:
        if exception is None:
            return "None"

        main_str = _safe_str(exception)
        sub_exceptions = _sub_exceptions(exception)
        if not sub_exceptions:
            return main_str

        joined = "; ".join(_describe(sub_exc) for sub_exc in sub_exceptions)
        return f"{main_str} (Sub-exceptions: {joined})"
    except Exception:
        try:
            return f"<{type(exception).__name__} (formatting failed)>"
        except Exception:
            return "<exception (all formatting failed)>"
