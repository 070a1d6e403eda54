"""
RevoltBot centralized error handling and exception taxonomy
"""
import threading
import time
import traceback
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Type

from .logging_utils import setup_logger

logger = setup_logger("revoltbot.error_handler", "logs/revoltbot.log")


class ErrorSeverity(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


@dataclass
class ErrorContext:
    """Context information for error tracking"""
    component: str
    operation: str
    session_id: Optional[str] = None
    connection_id: Optional[str] = None
    timestamp: datetime = field(default_factory=datetime.now)
    metadata: Dict[str, Any] = field(default_factory=dict)


class ErrorHandler:
    """Collects handled errors for logging and the server health report"""

    def __init__(self, max_history_size: int = 1000):
        self.error_count = 0
        self.error_history: List[Dict[str, Any]] = []
        self.max_history_size = max_history_size
        self.error_handlers: Dict[Type[Exception], Callable] = {}
        self.component_failures: Dict[str, int] = {}
        # Connection threads on the relay server report concurrently
        self._lock = threading.Lock()

    def register_error_handler(self, exception_type: Type[Exception], handler: Callable) -> None:
        """Register a custom error handler for a specific exception type"""
        self.error_handlers[exception_type] = handler

    def handle_error(self, error: Exception, context: ErrorContext,
                     severity: ErrorSeverity = ErrorSeverity.MEDIUM) -> Dict[str, Any]:
        """Handle an error with context and severity"""
        with self._lock:
            self.error_count += 1
            count = self.error_count

        error_details = {
            'error_id': f"ERR_{int(time.time() * 1000000)}",
            'type': error.__class__.__name__,
            'message': str(error),
            'reason': getattr(error, 'reason', None),
            'traceback': ''.join(traceback.format_exception(type(error), error, error.__traceback__)),
            'context': {
                'component': context.component,
                'operation': context.operation,
                'session_id': context.session_id,
                'connection_id': context.connection_id,
                'metadata': context.metadata,
            },
            'severity': severity.value,
            'timestamp': context.timestamp.isoformat(),
            'count': count,
        }

        custom = self.error_handlers.get(error.__class__)
        if custom is not None:
            try:
                return custom(error, context, severity)
            except Exception as handler_error:
                logger.error(f"Error in custom handler for {error.__class__.__name__}: {handler_error}")

        self._log_error(error_details, severity)

        with self._lock:
            self.error_history.append(error_details)
            if len(self.error_history) > self.max_history_size:
                self.error_history = self.error_history[-self.max_history_size:]
            if severity in (ErrorSeverity.HIGH, ErrorSeverity.CRITICAL):
                self.component_failures[context.component] = self.component_failures.get(context.component, 0) + 1

        return error_details

    def _log_error(self, error_details: Dict[str, Any], severity: ErrorSeverity) -> None:
        """Log error with appropriate level"""
        log_message = f"[{error_details['error_id']}] {error_details['type']}: {error_details['message']}"

        if severity == ErrorSeverity.CRITICAL:
            logger.critical(log_message, extra={'error_details': error_details})
        elif severity == ErrorSeverity.HIGH:
            logger.error(log_message, extra={'error_details': error_details})
        elif severity == ErrorSeverity.MEDIUM:
            logger.warning(log_message, extra={'error_details': error_details})
        else:
            logger.info(log_message, extra={'error_details': error_details})

    def get_error_stats(self) -> Dict[str, Any]:
        """Get error statistics"""
        with self._lock:
            counts: Dict[str, int] = {}
            for error in self.error_history[-100:]:
                counts[error['type']] = counts.get(error['type'], 0) + 1
            return {
                'total_errors': self.error_count,
                'recent_errors': len(self.error_history),
                'component_failures': dict(self.component_failures),
                'error_types': counts,
            }

    def clear_error_history(self) -> None:
        with self._lock:
            self.error_history.clear()
            self.component_failures.clear()
            self.error_count = 0


def get_error_handler() -> ErrorHandler:
    """Get or create error handler instance"""
    if not hasattr(get_error_handler, '_instance'):
        get_error_handler._instance = ErrorHandler()
    return get_error_handler._instance


def handle_error(error: Exception, component: str, operation: str,
                 severity: ErrorSeverity = ErrorSeverity.MEDIUM, **context_kwargs) -> Dict[str, Any]:
    """Convenience function to handle errors"""
    context = ErrorContext(component=component, operation=operation, **context_kwargs)
    return get_error_handler().handle_error(error, context, severity)


@contextmanager
def error_context(component: str, operation: str, severity: ErrorSeverity = ErrorSeverity.MEDIUM):
    """Context manager that records and re-raises errors"""
    try:
        yield
    except Exception as e:
        handle_error(e, component, operation, severity)
        raise


class RevoltBotException(Exception):
    """Base exception for RevoltBot-specific errors"""

    def __init__(self, message: str, component: str = "unknown", operation: str = "unknown", **kwargs):
        super().__init__(message)
        self.component = component
        self.operation = operation
        self.context = kwargs


class ConfigurationError(RevoltBotException):
    """Configuration-related errors, including missing credentials"""
    pass


class ProtocolError(RevoltBotException):
    """Malformed relay envelope"""
    pass


class ValidationError(RevoltBotException):
    """Input validation errors"""
    pass


class ChannelError(RevoltBotException):
    """Relay connection lost or unavailable"""
    pass


class CaptureError(RevoltBotException):
    """Speech capture failed; reason mirrors the recognizer's error code"""

    def __init__(self, reason: str, message: Optional[str] = None, **kwargs):
        super().__init__(message or f"Speech capture failed: {reason}",
                         component="speech_capture", operation="listen", **kwargs)
        self.reason = reason


class SynthesisError(RevoltBotException):
    """Speech synthesis or playback failed"""

    def __init__(self, message: str, language_tag: Optional[str] = None, **kwargs):
        super().__init__(message, component="speech_output", operation="speak", **kwargs)
        self.language_tag = language_tag


class VoiceUnavailableError(SynthesisError):
    """No synthesis voice for the requested language"""

    def __init__(self, language_tag: str):
        super().__init__(f"No voice available for {language_tag}", language_tag=language_tag)


class VoiceNotFoundError(RevoltBotException):
    """The voice catalog is empty"""

    def __init__(self, language_tag: str):
        super().__init__(f"No voices in catalog for {language_tag}",
                         component="language", operation="select_voice")
        self.language_tag = language_tag


class ProviderError(RevoltBotException):
    """Language model call failed"""

    TIMEOUT = "timeout"
    NETWORK = "network"
    QUOTA = "quota"
    MODEL = "model"
    EMPTY = "empty"
    CLOSED = "closed"

    def __init__(self, message: str, reason: str = MODEL, **kwargs):
        super().__init__(message, component="chat_session", operation="send", **kwargs)
        self.reason = reason
