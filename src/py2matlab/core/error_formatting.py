"""
Error formatting and logging helpers.

Failures reach people in two places: the CLI prints them next to the
offending input item, and sessions log them while tearing down. Both go
through ErrorFormatter so an engine failure reads the same everywhere.
"""

import json
import logging
import traceback
from datetime import datetime
from typing import Any, Dict, Optional, Union

from py2matlab.core.errors import Py2MatlabError


class ErrorFormatter:
    """Renders errors as user text, log text or JSON."""

    def format_for_user(self, error: BaseException) -> str:
        """
        Format error for end-user display.

        Py2MatlabError carries its own message and suggestions. Malformed
        input lines and OS failures get a short prefix; anything else is
        reported generically.
        """
        if isinstance(error, Py2MatlabError):
            return error.format_user_message()
        if isinstance(error, json.JSONDecodeError):
            return f"Invalid JSON at column {error.colno}: {error.msg}"
        if isinstance(error, OSError):
            return f"System error: {error.strerror or error}"
        return f"An error occurred: {error}"

    def format_for_log(self, error: BaseException, include_trace: bool = True) -> str:
        """
        Format error for technical logging.

        Args:
            error: The error to format
            include_trace: Append the traceback of standard exceptions
        """
        if isinstance(error, Py2MatlabError):
            return error.format_log_message()

        text = f"{type(error).__name__}: {error}"
        if include_trace and error.__traceback__ is not None:
            text += "\nStack trace:\n" + ''.join(traceback.format_tb(error.__traceback__))
        return text

    def format_for_json(self, error: BaseException) -> str:
        if isinstance(error, Py2MatlabError):
            data = error.to_dict()
        else:
            data = {
                'error_type': type(error).__name__,
                'message': str(error),
                'timestamp': datetime.now().isoformat(),
            }
        return json.dumps(data, indent=2, default=str)


class ErrorLogger:
    """
    Logs errors through one named logger.

    Py2MatlabError messages go out at the requested level with the
    technical detail at DEBUG; other exceptions are logged in one line
    with any extra context appended.
    """

    def __init__(self, logger_name: str = 'py2matlab.errors'):
        self.logger = logging.getLogger(logger_name)
        self.formatter = ErrorFormatter()

    def log_error(
        self,
        error: BaseException,
        level: int = logging.ERROR,
        include_trace: bool = True,
        extra_context: Optional[Dict[str, Any]] = None
    ):
        """
        Log an error.

        Args:
            error: The error to log
            level: Logging level for the main message
            include_trace: Include the stack trace in the detail
            extra_context: Values describing what was being done, e.g.
                {'step': 'close listener'}
        """
        if not isinstance(error, Py2MatlabError):
            message = self.formatter.format_for_log(error, include_trace)
            if extra_context:
                message += f" | Context: {extra_context}"
            self.logger.log(level, message)
            return

        self.logger.log(level, self.formatter.format_for_user(error))
        self.logger.debug(self.formatter.format_for_log(error, include_trace))

        context = dict(error.context)
        context.update(extra_context or {})
        if context:
            self.logger.debug(f"Error context: {json.dumps(context, default=str)}")


_error_logger: Optional[ErrorLogger] = None


def get_error_logger() -> ErrorLogger:
    """Shared ErrorLogger, created on first use."""
    global _error_logger
    if _error_logger is None:
        _error_logger = ErrorLogger()
    return _error_logger


def log_error(error: BaseException, **kwargs):
    """Log an error with the shared ErrorLogger (see ErrorLogger.log_error)."""
    get_error_logger().log_error(error, **kwargs)


def format_error(error: BaseException, format_type: str = 'user') -> Union[str, Dict]:
    """
    Format an error as 'user', 'log' or 'json' text.

    Raises:
        ValueError: For any other format_type
    """
    formatter = ErrorFormatter()
    if format_type == 'user':
        return formatter.format_for_user(error)
    if format_type == 'log':
        return formatter.format_for_log(error)
    if format_type == 'json':
        return formatter.format_for_json(error)
    raise ValueError(f"Unknown format type: {format_type}")
