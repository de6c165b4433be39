"""
Custom exceptions for the explainit workflow engine.

This module defines the exception hierarchy used by the orchestrator, the
provider layer and the persistence layer. Provider errors carry a ``retryable``
flag that the retry handler uses to decide whether another attempt is made.
"""

from typing import Optional, Any, Dict


class ExplainItError(Exception):
    """
    Base exception for all explainit errors.

    Attributes:
        message: Human-readable error message
        error_code: Machine-readable error code
        context: Additional context information
    """

    def __init__(self,
                 message: str,
                 error_code: Optional[str] = None,
                 context: Optional[Dict[str, Any]] = None,
                 cause: Optional[Exception] = None):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.context = context or {}
        self.cause = cause

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "error_code": self.error_code,
            "message": self.message,
            "context": self.context,
            "cause": str(self.cause) if self.cause else None
        }

# Configuration Related Errors

class ConfigurationError(ExplainItError):
    """Raised when there's an issue with configuration."""
    pass


class UnknownPersonaError(ConfigurationError):
    """Raised when an audience persona name is not recognised."""

    def __init__(self, persona: str, available: Optional[list] = None):
        message = f"Unknown persona '{persona}'"
        if available:
            message += f". Available personas: {', '.join(available)}"

        super().__init__(
            message=message,
            context={"persona": persona, "available": available}
        )

# Provider Related Errors

class ProviderError(ExplainItError):
    """Base class for content provider failures."""

    retryable: bool = True

    def __init__(self,
                 message: str,
                 operation: Optional[str] = None,
                 context: Optional[Dict[str, Any]] = None,
                 cause: Optional[Exception] = None):
        context = dict(context or {})
        if operation:
            context["operation"] = operation
        super().__init__(message=message, context=context, cause=cause)
        self.operation = operation


class TransientProviderError(ProviderError):
    """Network or rate-limit style failure. Retried."""
    retryable = True


class TerminalProviderError(ProviderError):
    """Failure that another attempt cannot fix (auth, bad request)."""
    retryable = False


class ResponseParseError(ProviderError):
    """Raised when no structured payload can be extracted from provider output."""

    retryable = True

    def __init__(self, message: str, raw_text: str = "", operation: Optional[str] = None):
        super().__init__(
            message=message,
            operation=operation,
            context={"raw_length": len(raw_text or "")}
        )
        self.raw_text = raw_text or ""


class RetryExhaustedError(ProviderError):
    """Raised when a provider call failed on every attempt of its budget."""

    retryable = False

    def __init__(self, operation: str, attempts: int, last_error: Exception):
        message = f"Operation '{operation}' failed after {attempts} attempt(s): {last_error}"

        super().__init__(
            message=message,
            operation=operation,
            context={"attempts": attempts, "last_error_type": type(last_error).__name__},
            cause=last_error
        )
        self.attempts = attempts
        self.last_error = last_error

# Workflow Related Errors

class NodeProcessingError(ExplainItError):
    """Raised when processing of a single concept node fails."""

    def __init__(self, topic: str, step: str, original_error: Exception):
        message = f"Node '{topic}' failed during {step}: {original_error}"

        super().__init__(
            message=message,
            context={"topic": topic, "step": step},
            cause=original_error
        )
        self.topic = topic
        self.step = step


class RootNodeError(ExplainItError):
    """Raised when the root explanation cannot be produced. Fatal to the run."""

    def __init__(self, topic: str, original_error: Exception):
        super().__init__(
            message=f"Root explanation for '{topic}' failed: {original_error}",
            context={"topic": topic},
            cause=original_error
        )
        self.topic = topic

# Persistence Related Errors

class StateError(ExplainItError):
    """Raised when persisted workflow state cannot be read or written."""
    pass


class SessionNotFoundError(ExplainItError):
    """Raised when a session id is not present in the registry."""

    def __init__(self, session_id: str):
        super().__init__(
            message=f"Session '{session_id}' not found",
            context={"session_id": session_id}
        )
        self.session_id = session_id

# Utility functions for error handling

def handle_exception(exception: Exception,
                     topic: Optional[str] = None,
                     operation: Optional[str] = None,
                     context: Optional[Dict[str, Any]] = None) -> ExplainItError:
    """
    Convert a generic exception to an appropriate ExplainItError.

    Args:
        exception: The original exception
        topic: Optional concept topic for context
        operation: Optional provider operation for context
        context: Additional context

    Returns:
        Appropriate ExplainItError subclass
    """
    context = context or {}

    if topic:
        context["topic"] = topic
    if operation:
        context["operation"] = operation

    if isinstance(exception, ExplainItError):
        exception.context.update(context)
        return exception

    if isinstance(exception, (TimeoutError, ConnectionError)):
        return TransientProviderError(
            message=f"Connection error: {exception}",
            operation=operation,
            context=context,
            cause=exception
        )

    if isinstance(exception, OSError):
        return StateError(
            message=f"File system error: {exception}",
            context=context,
            cause=exception
        )

    return ExplainItError(
        message=f"Unexpected error: {exception}",
        context=context,
        cause=exception
    )
