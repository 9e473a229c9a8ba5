"""
Unified error handling framework for py2matlab.

This module defines the standard error hierarchy used by the engine bridge.

Error Code Ranges:
- 1000-1999: Connection errors (listener, peer socket)
- 2000-2999: Command errors (protocol, one-shot invocation)
- 3000-3999: Engine errors (executable, version, subprocess)
- 4000-4999: Data errors (scripts, serialization)
- 5000-5999: Session/state errors
- 6000-6999: Configuration errors
- 7000-7999: Validation errors
- 8000-8999: Timeout errors
- 9000-9999: Unknown/System errors
"""

from typing import Optional, Dict, Any, List
from datetime import datetime
import traceback


class Py2MatlabError(Exception):
    """
    Base exception for all py2matlab errors.

    Provides structured error information with context tracking.
    """

    DEFAULT_CODE = 9000
    CATEGORY: Optional[str] = None

    def __init__(
        self,
        message: str,
        error_code: Optional[int] = None,
        context: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
        suggestions: Optional[List[str]] = None
    ):
        """
        Initialize an error.

        Args:
            message: Human-readable error description
            error_code: Numeric error code for categorization
            context: Additional context information
            cause: Original exception if this wraps another error
            suggestions: List of possible solutions or next steps
        """
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.DEFAULT_CODE
        self.context = dict(context) if context else {}
        self.cause = cause
        self.suggestions = suggestions or []
        self.timestamp = datetime.now()

        self.stack_trace = traceback.format_exc() if cause else None

        if self.CATEGORY:
            self.context.setdefault('category', self.CATEGORY)
        if cause:
            self.context['original_error'] = str(cause)
            self.context['original_type'] = type(cause).__name__

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        return {
            'error_type': self.__class__.__name__,
            'message': self.message,
            'code': self.error_code,
            'context': self.context,
            'suggestions': self.suggestions,
            'timestamp': self.timestamp.isoformat(),
            'cause': str(self.cause) if self.cause else None,
            'stack_trace': self.stack_trace
        }

    def format_user_message(self) -> str:
        """Format error for user display (without technical details)."""
        msg = f"{self.message}"
        if self.suggestions:
            msg += "\n\nSuggestions:"
            for i, suggestion in enumerate(self.suggestions, 1):
                msg += f"\n  {i}. {suggestion}"
        return msg

    def format_log_message(self) -> str:
        """Format error for logging (with all details)."""
        parts = [
            f"[{self.error_code}] {self.__class__.__name__}: {self.message}"
        ]

        if self.context:
            parts.append(f"Context: {self.context}")

        if self.cause:
            parts.append(f"Caused by: {self.cause}")

        if self.stack_trace:
            parts.append(f"Stack trace:\n{self.stack_trace}")

        return " | ".join(parts)


class ConnectionError(Py2MatlabError):
    """Errors related to the listener and the engine peer socket."""
    DEFAULT_CODE = 1001
    CATEGORY = 'CONNECTION'


class CommandError(Py2MatlabError):
    """Errors related to protocol messages and one-shot commands."""
    DEFAULT_CODE = 2001
    CATEGORY = 'COMMAND'

    def __init__(self, message: str, request_id: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        if request_id is not None:
            self.context['request_id'] = request_id


class EngineError(Py2MatlabError):
    """Errors related to the engine executable and its process."""
    DEFAULT_CODE = 3001
    CATEGORY = 'ENGINE'

    def __init__(self, message: str, executable: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        if executable:
            self.context['executable'] = executable


class DataError(Py2MatlabError):
    """Errors related to scripts, temporary files and item serialization."""
    DEFAULT_CODE = 4001
    CATEGORY = 'DATA'

    def __init__(self, message: str, file_path: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        if file_path:
            self.context['file_path'] = str(file_path)


class SessionError(Py2MatlabError):
    """Errors related to session lifecycle and state transitions."""
    DEFAULT_CODE = 5001
    CATEGORY = 'SESSION'

    def __init__(self, message: str, state: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        if state:
            self.context['state'] = state


class ConfigurationError(Py2MatlabError):
    """Errors related to engine options and configuration files."""
    DEFAULT_CODE = 6001
    CATEGORY = 'CONFIGURATION'

    def __init__(self, message: str, setting_name: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        if setting_name:
            self.context['setting'] = setting_name


class ValidationError(Py2MatlabError):
    """Errors related to input validation and parameter checking."""
    DEFAULT_CODE = 7001
    CATEGORY = 'VALIDATION'

    def __init__(self, message: str, field_name: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        if field_name:
            self.context['field'] = field_name


class TimeoutError(Py2MatlabError):
    """Errors related to operation timeouts."""
    DEFAULT_CODE = 8001
    CATEGORY = 'TIMEOUT'

    def __init__(self, message: str, timeout_seconds: Optional[float] = None, **kwargs):
        super().__init__(message, **kwargs)
        if timeout_seconds is not None:
            self.context['timeout_seconds'] = timeout_seconds


class SystemError(Py2MatlabError):
    """Errors related to system-level failures and unknown conditions."""
    DEFAULT_CODE = 9001
    CATEGORY = 'SYSTEM'


# Error code constants for common scenarios
class ErrorCodes:
    """Standard error codes for common error scenarios."""

    # Connection errors (1000-1999)
    LISTENER_FAILED = 1001
    PORT_IN_USE = 1002
    NO_PEER = 1003
    CONNECTION_LOST = 1004
    SOCKET_ERROR = 1005

    # Command errors (2000-2999)
    COMMAND_FAILED = 2001
    PROTOCOL_ERROR = 2002
    RESPONSE_PARSE_ERROR = 2003

    # Engine errors (3000-3999)
    ENGINE_NOT_FOUND = 3001
    VERSION_PROBE_FAILED = 3002
    VERSION_TOO_OLD = 3003
    SPAWN_FAILED = 3004
    ENGINE_EXITED = 3005
    ENGINE_PROCESSING_FAILED = 3006

    # Data errors (4000-4999)
    FILE_NOT_FOUND = 4001
    FILE_WRITE_ERROR = 4002
    INVALID_SCRIPT = 4003
    SERIALIZATION_FAILED = 4004
    DESERIALIZATION_FAILED = 4005

    # Session errors (5000-5999)
    INVALID_STATE = 5001
    SESSION_CLOSED = 5002

    # Configuration errors (6000-6999)
    CONFIG_NOT_FOUND = 6001
    CONFIG_INVALID = 6002
    CONFIG_SAVE_ERROR = 6003
    UNKNOWN_SETTING = 6004

    # Validation errors (7000-7999)
    INVALID_PARAMETER = 7001

    # Timeout errors (8000-8999)
    REQUEST_TIMEOUT = 8001
    CONNECT_TIMEOUT = 8002
    COMMAND_TIMEOUT = 8003

    # System errors (9000-9999)
    UNKNOWN_ERROR = 9000
    INTERNAL_ERROR = 9001


class EngineNotFoundError(EngineError):
    """The engine executable is not on the search path."""
    DEFAULT_CODE = ErrorCodes.ENGINE_NOT_FOUND


class VersionProbeError(EngineError):
    """The engine version could not be determined."""
    DEFAULT_CODE = ErrorCodes.VERSION_PROBE_FAILED


class EngineVersionError(EngineError):
    """The engine is older than the minimum supported version."""
    DEFAULT_CODE = ErrorCodes.VERSION_TOO_OLD


class SpawnError(EngineError):
    """The engine subprocess failed to start or to connect back."""
    DEFAULT_CODE = ErrorCodes.SPAWN_FAILED


class EngineProcessingError(EngineError):
    """The engine reported a failure while processing one request."""
    DEFAULT_CODE = ErrorCodes.ENGINE_PROCESSING_FAILED


class ScriptError(DataError):
    """An engine script could not be found, validated or written."""
    DEFAULT_CODE = ErrorCodes.INVALID_SCRIPT


class SerializationError(DataError):
    """An item could not be converted to or from its structured form."""
    DEFAULT_CODE = ErrorCodes.SERIALIZATION_FAILED


class ListenerError(ConnectionError):
    """The session listener could not be bound."""
    DEFAULT_CODE = ErrorCodes.LISTENER_FAILED


class NoPeerError(ConnectionError):
    """A request was made while no engine peer is connected."""
    DEFAULT_CODE = ErrorCodes.NO_PEER


class ConnectionLostError(ConnectionError):
    """The engine peer went away while a request was outstanding."""
    DEFAULT_CODE = ErrorCodes.CONNECTION_LOST


class ProtocolError(CommandError):
    """A message from the engine could not be understood."""
    DEFAULT_CODE = ErrorCodes.PROTOCOL_ERROR


class CommandFailedError(CommandError):
    """A one-shot engine invocation failed."""
    DEFAULT_CODE = ErrorCodes.COMMAND_FAILED


class SessionStateError(SessionError):
    """An operation is not valid in the current session state."""
    DEFAULT_CODE = ErrorCodes.INVALID_STATE


class RequestTimeoutError(TimeoutError):
    """A request did not complete before its deadline."""
    DEFAULT_CODE = ErrorCodes.REQUEST_TIMEOUT


def wrap_external_error(e: Exception, message: str, error_class=SystemError, **context) -> Py2MatlabError:
    """
    Wrap an external exception in a Py2MatlabError.

    Args:
        e: The original exception
        message: Context-specific error message
        error_class: The Py2MatlabError subclass to use
        **context: Additional context information

    Returns:
        A Py2MatlabError instance wrapping the original exception
    """
    return error_class(
        message=message,
        cause=e,
        context=context
    )
