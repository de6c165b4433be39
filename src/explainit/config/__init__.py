"""
Configuration package for explainit.
"""

from .config import (
    ExplainItConfig,
    LLMConfig,
    RetryConfig,
    WorkflowConfig,
    LoggingConfig,
    PathsConfig,
    load_config,
    load_yaml_overrides,
)
from .paths import RuntimePaths
from .personas import PERSONAS, DEFAULT_PERSONA, get_persona, describe_persona, list_personas

__all__ = [
    "ExplainItConfig",
    "LLMConfig",
    "RetryConfig",
    "WorkflowConfig",
    "LoggingConfig",
    "PathsConfig",
    "load_config",
    "load_yaml_overrides",
    "RuntimePaths",
    "PERSONAS",
    "DEFAULT_PERSONA",
    "get_persona",
    "describe_persona",
    "list_personas",
]
