"""
Content providers and the plumbing around provider calls.
"""
from .base import ContentProvider
from .litellm_provider import LiteLLMContentProvider
from .response_parser import ResponseParser, parse_response
from .retry_handler import RetryHandler, RetryContext

__all__ = [
    "ContentProvider",
    "LiteLLMContentProvider",
    "ResponseParser",
    "parse_response",
    "RetryHandler",
    "RetryContext",
]
