"""
Error handling utilities for explainit.

Provides consistent conversion, logging and statistics for errors that the
workflow contains instead of propagating (failed child nodes, misbehaving
event handlers).
"""

import traceback
from typing import Optional, Dict, Any, Callable
from loguru import logger

from explainit.exceptions import ExplainItError, handle_exception


class ErrorHandler:
    """Central error handler for the workflow engine."""

    def __init__(self, enable_detailed_logging: bool = True):
        self.enable_detailed_logging = enable_detailed_logging
        self.error_stats = {
            "total_errors": 0,
            "errors_by_type": {},
            "errors_by_component": {}
        }

    def handle_error(self,
                     error: Exception,
                     component: str = "unknown",
                     topic: Optional[str] = None,
                     operation: Optional[str] = None,
                     context: Optional[Dict[str, Any]] = None,
                     reraise: bool = True) -> Optional[ExplainItError]:
        """
        Handle an error with consistent logging and statistics tracking.

        Args:
            error: The exception that occurred
            component: Component where error occurred
            topic: Optional concept topic
            operation: Optional provider operation
            context: Additional context
            reraise: Whether to re-raise the error after handling

        Returns:
            ExplainItError if not re-raising

        Raises:
            ExplainItError: If reraise=True
        """
        converted = handle_exception(
            error,
            topic=topic,
            operation=operation,
            context=context or {}
        )

        self.error_stats["total_errors"] += 1
        error_type = type(converted).__name__
        self.error_stats["errors_by_type"][error_type] = \
            self.error_stats["errors_by_type"].get(error_type, 0) + 1
        self.error_stats["errors_by_component"][component] = \
            self.error_stats["errors_by_component"].get(component, 0) + 1

        self._log_error(converted, component)

        if reraise:
            raise converted
        return converted

    def _log_error(self, error: ExplainItError, component: str):
        """Log an error with appropriate detail level."""
        logger.error(f"[{component}] {error.message}")

        if self.enable_detailed_logging:
            if error.context:
                logger.debug(f"Error context: {error.context}")

            if error.cause is not None and error.cause.__traceback__ is not None:
                logger.debug("Traceback:")
                for line in traceback.format_exception(
                    type(error.cause), error.cause, error.cause.__traceback__
                ):
                    logger.debug(line.rstrip())

    def get_error_stats(self) -> Dict[str, Any]:
        """Get error statistics."""
        return {
            "total_errors": self.error_stats["total_errors"],
            "errors_by_type": dict(self.error_stats["errors_by_type"]),
            "errors_by_component": dict(self.error_stats["errors_by_component"]),
        }


_global_error_handler = ErrorHandler()


def get_error_handler() -> ErrorHandler:
    """Get the global error handler instance."""
    return _global_error_handler


def safe_execute(func: Callable,
                 default_return: Any = None,
                 log_errors: bool = True,
                 component: str = "safe_execute") -> Any:
    """
    Safely execute a function, returning a default value on error.

    Args:
        func: Function to execute
        default_return: Value to return on error
        log_errors: Whether to log errors
        component: Component name for logging

    Returns:
        Function result or default_return on error
    """
    try:
        return func()
    except Exception as e:
        if log_errors:
            get_error_handler().handle_error(
                error=e,
                component=component,
                reraise=False
            )
        return default_return
