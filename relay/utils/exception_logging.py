"""
Exception formatting and logging for the relay failure boundary.

Both helpers are used while a request is already failing, so they must never
raise themselves, even for exceptions whose ``__str__`` is broken or for
exception groups raised out of task groups.
"""

import logging
from typing import Mapping, Optional


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
    try:
        return list(exception_group.exceptions)
    except Exception:
        return []


def _format_context(context: Optional[Mapping[str, object]]) -> str:
    if not context:
        return ""
    try:
        parts = [
            f"{_safe_str(k)}={_safe_str(v)}" for k, v in context.items() if v is not None
        ]
        return f" [{' '.join(parts)}]" if parts else ""
    except Exception:
        return " [context unavailable]"


def format_exception_message(exception: Exception) -> str:
    """
    Message reported to the caller in the ``error`` field of a failure response.

    For an ordinary exception this is exactly ``str(exception)``. Exception
    groups get their sub-exceptions appended so the cause is not lost.
    """
    try:
        if exception is None:
            return "None"

        sub_exceptions = _safe_get_exceptions(exception)
        if not sub_exceptions:
            return _safe_str(exception)

        described = []
        for sub_exc in sub_exceptions:
            try:
                described.append(f"{type(sub_exc).__name__}: {_safe_str(sub_exc)}")
            except Exception:
                described.append("(formatting failed)")
        return f"{_safe_str(exception)} (Sub-exceptions: {'; '.join(described)})"
    except Exception:
        try:
            return f"<{type(exception).__name__} (formatting failed)>"
        except Exception:
            return "<exception (all formatting failed)>"


def log_exception_with_details(
    logger: logging.Logger,
    prefix: str,
    exception: Exception,
    context: Optional[Mapping[str, object]] = None,
    level: int = logging.ERROR,
) -> None:
    """
    Log an exception together with the request it broke.

    Args:
        logger: The logger instance to use
        prefix: Prefix for the log message (e.g. "[Relay]", "[Relay-Compat]")
        exception: The exception to log
        context: Request details such as method, target and status
        level: The logging level to use (default: ERROR)
    """
    try:
        safe_prefix = _safe_str(prefix) if prefix is not None else ""
        details = _format_context(context)
        sub_exceptions = _safe_get_exceptions(exception)

        if not sub_exceptions:
            try:
                logger.log(
                    level,
                    f"{safe_prefix} Exception{details}: {_safe_str(exception)}",
                    exc_info=exception if exception is not None else False,
                )
            except Exception:
                logger.log(level, f"{safe_prefix} Exception{details} (logging failed)")
            return

        logger.log(
            level,
            f"{safe_prefix} Exception with {len(sub_exceptions)} sub-exceptions{details}: "
            f"{_safe_str(exception)}",
        )
        for i, sub_exc in enumerate(sub_exceptions):
            try:
                logger.log(
                    level,
                    f"{safe_prefix} Sub-exception {i+1}: "
                    f"{type(sub_exc).__name__}: {_safe_str(sub_exc)}",
                    exc_info=sub_exc,
                )
            except Exception:
                continue
    except Exception:
        try:
            if logger is not None:
                logger.log(logging.ERROR, "Exception logging failed")
        except Exception:
            # nothing left to report through
            pass
