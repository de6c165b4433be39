"""
explainit - turns a topic into a hierarchy of generated explanation pages.
"""

__version__ = "0.1.0"

from .config import ExplainItConfig, load_config
from .core.session_registry import Session, SessionRegistry
from .exceptions import ExplainItError
from .providers.base import ContentProvider
from .workflow.orchestrator import Orchestrator

__all__ = [
    "__version__",
    "ExplainItConfig",
    "load_config",
    "Session",
    "SessionRegistry",
    "ExplainItError",
    "ContentProvider",
    "Orchestrator",
]
