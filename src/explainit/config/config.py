"""
Configuration system for explainit.

Settings are layered in this order, later layers winning:
- Defaults defined on the models below
- Environment variables (``EXPLAINIT_`` prefix, ``.env`` supported)
- A YAML configuration file
"""

import os
import yaml
from pathlib import Path
from typing import Optional, Dict, Any, Union
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator
from loguru import logger
from omegaconf import OmegaConf
from dotenv import load_dotenv

from explainit.exceptions import ConfigurationError, UnknownPersonaError
from .paths import RuntimePaths
from .personas import DEFAULT_PERSONA, get_persona


class LLMConfig(BaseModel):
    """Configuration for the LLM backing the content provider."""
    provider: str = "openai"
    model_id: str = "openai/gpt-4o-mini"
    temperature: float = 0.7
    max_tokens: Optional[int] = 4096
    timeout: float = 120.0
    api_key: Optional[str] = None
    api_base: Optional[str] = None

    model_config = ConfigDict(protected_namespaces=())

    @field_validator('temperature')
    @classmethod
    def validate_temperature(cls, v):
        if not 0.0 <= v <= 2.0:
            raise ValueError('Temperature must be between 0.0 and 2.0')
        return v

    @field_validator('provider')
    @classmethod
    def validate_provider(cls, v):
        valid_providers = ['openai', 'anthropic', 'openrouter', 'azure', 'ollama', 'custom']
        if v.lower() not in valid_providers:
            logger.warning(f"Provider '{v}' not in standard list: {valid_providers}")
        return v.lower()


class RetryConfig(BaseModel):
    """Retry budget for a single provider call."""
    max_attempts: int = 3
    base_delay: float = 1.0  # seconds
    max_delay: float = 60.0  # seconds
    failure_log_name: str = "llm-failures.jsonl"
    preview_chars: int = 500

    @field_validator('max_attempts')
    @classmethod
    def validate_max_attempts(cls, v):
        if v < 1:
            raise ValueError('max_attempts must be at least 1')
        return v

    @model_validator(mode='after')
    def check_delays(self):
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError('Retry delays cannot be negative')
        if self.max_delay < self.base_delay:
            raise ValueError('max_delay must be greater than or equal to base_delay')
        return self


class WorkflowConfig(BaseModel):
    """Knobs of the decomposition / generation loop."""
    max_revisions: int = 2
    confidence_threshold: float = 8.0  # below this a decomposition is validated
    default_depth: int = 2
    default_persona: str = DEFAULT_PERSONA

    @field_validator('max_revisions')
    @classmethod
    def validate_max_revisions(cls, v):
        if v < 0:
            raise ValueError('max_revisions cannot be negative')
        return v

    @field_validator('default_depth')
    @classmethod
    def validate_depth(cls, v):
        if not 1 <= v <= 5:
            raise ValueError('default_depth must be between 1 and 5')
        return v

    @field_validator('default_persona')
    @classmethod
    def validate_persona(cls, v):
        try:
            return get_persona(v)
        except UnknownPersonaError as e:
            raise ValueError(e.message) from e


class LoggingConfig(BaseModel):
    """Configuration for logging."""
    level: str = "INFO"
    file_path: Optional[str] = None  # defaults to <home>/logs/explainit.log
    file_rotation: str = "10 MB"
    file_retention: int = 3
    enable_console: bool = True
    enable_file: bool = False
    console_style: str = "clean"  # "clean", "timestamp" or "detailed"
    session_debug_log: bool = True

    @field_validator('level')
    @classmethod
    def validate_level(cls, v):
        valid_levels = ['TRACE', 'DEBUG', 'INFO', 'SUCCESS', 'WARNING', 'ERROR', 'CRITICAL']
        if v.upper() not in valid_levels:
            raise ValueError(f'Log level must be one of: {valid_levels}')
        return v.upper()

    @field_validator('console_style')
    @classmethod
    def validate_console_style(cls, v):
        valid_styles = ['clean', 'timestamp', 'detailed']
        if v not in valid_styles:
            raise ValueError(f'console_style must be one of: {valid_styles}')
        return v

    def get_log_file_path(self) -> Path:
        if self.file_path:
            return Path(self.file_path)
        return RuntimePaths.get_default().get_log_path("explainit")


class PathsConfig(BaseModel):
    """Where sessions and the session registry live."""
    output_dir: Optional[str] = None  # defaults to <home>/output
    registry_file: str = "sessions.json"

    def get_output_dir(self) -> Path:
        if self.output_dir:
            return Path(self.output_dir)
        return RuntimePaths.get_default().output_dir

    def get_registry_path(self) -> Path:
        return self.get_output_dir() / self.registry_file


class ExplainItConfig(BaseModel):
    """Main configuration for explainit."""

    llm: LLMConfig = Field(default_factory=LLMConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    workflow: WorkflowConfig = Field(default_factory=WorkflowConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    paths: PathsConfig = Field(default_factory=PathsConfig)

    config_version: str = "1.0.0"

    model_config = ConfigDict(extra="allow", validate_assignment=True)

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "ExplainItConfig":
        """
        Load configuration from a YAML file.

        Interpolations (``${oc.env:VAR}``, ``${llm.model_id}``) are resolved
        before validation.

        Raises:
            FileNotFoundError: If the config file doesn't exist
            ConfigurationError: If the file content is invalid
        """
        return cls.from_dict(load_yaml_overrides(path))

    @classmethod
    def from_env(cls, prefix: str = "EXPLAINIT_") -> Dict[str, Any]:
        """
        Collect configuration overrides from environment variables.

        Returns a nested dict holding only the variables that are set, so it
        can be merged over another configuration without clobbering it.
        """
        env_mappings = {
            f"{prefix}LLM_PROVIDER": ("llm", "provider", str),
            f"{prefix}LLM_MODEL_ID": ("llm", "model_id", str),
            f"{prefix}LLM_TEMPERATURE": ("llm", "temperature", float),
            f"{prefix}LLM_MAX_TOKENS": ("llm", "max_tokens", int),
            f"{prefix}LLM_TIMEOUT": ("llm", "timeout", float),
            f"{prefix}LLM_API_KEY": ("llm", "api_key", str),
            f"{prefix}LLM_API_BASE": ("llm", "api_base", str),
            f"{prefix}RETRY_MAX_ATTEMPTS": ("retry", "max_attempts", int),
            f"{prefix}RETRY_BASE_DELAY": ("retry", "base_delay", float),
            f"{prefix}RETRY_MAX_DELAY": ("retry", "max_delay", float),
            f"{prefix}MAX_REVISIONS": ("workflow", "max_revisions", int),
            f"{prefix}CONFIDENCE_THRESHOLD": ("workflow", "confidence_threshold", float),
            f"{prefix}DEFAULT_DEPTH": ("workflow", "default_depth", int),
            f"{prefix}DEFAULT_PERSONA": ("workflow", "default_persona", str),
            f"{prefix}LOG_LEVEL": ("logging", "level", str),
            f"{prefix}LOG_FILE": ("logging", "file_path", str),
            f"{prefix}OUTPUT_DIR": ("paths", "output_dir", str),
        }

        overrides: Dict[str, Any] = {}
        for env_var, (section, key, caster) in env_mappings.items():
            value = os.getenv(env_var)
            if value is None:
                continue
            try:
                overrides.setdefault(section, {})[key] = caster(value)
                logger.debug(f"Set config from {env_var}: {section}.{key}")
            except ValueError as e:
                logger.warning(f"Failed to set config from {env_var}: {e}")

        return overrides

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ExplainItConfig":
        try:
            return cls(**data)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid configuration: {e}", cause=e) from e

    def to_yaml(self, path: Union[str, Path]) -> None:
        """Save configuration to a YAML file."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)

        with open(path, 'w', encoding='utf-8') as f:
            yaml.safe_dump(self.to_dict(), f, default_flow_style=False, indent=2, sort_keys=True)

        logger.info(f"Configuration saved to {path}")

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)

    def merge_with(self, other: Union["ExplainItConfig", Dict[str, Any]]) -> "ExplainItConfig":
        """
        Merge this configuration with another, with other taking precedence.

        Args:
            other: Another config, or a nested dict of overrides

        Returns:
            New ExplainItConfig with merged values
        """
        overlay = other.to_dict() if isinstance(other, ExplainItConfig) else other
        merged = OmegaConf.merge(OmegaConf.create(self.to_dict()), OmegaConf.create(overlay))
        return ExplainItConfig.from_dict(OmegaConf.to_container(merged, resolve=True))

    def setup_logging(self) -> None:
        """Configure logging based on the current settings."""
        from ..core.logging_config import setup_logging
        setup_logging(self.logging)


def load_yaml_overrides(path: Union[str, Path]) -> Dict[str, Any]:
    """Read a YAML config file into a plain dict with interpolations resolved."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Configuration file not found: {path}")

    try:
        raw = OmegaConf.load(path)
        data = OmegaConf.to_container(raw, resolve=True) or {}
    except Exception as e:
        logger.error(f"Error reading configuration from {path}: {e}")
        raise ConfigurationError(f"Invalid configuration file {path}: {e}", cause=e) from e

    if not isinstance(data, dict):
        raise ConfigurationError(f"Configuration file {path} must contain a mapping")

    logger.info(f"Loaded configuration from {path}")
    return data


def load_config(
    config_file: Optional[Union[str, Path]] = None,
    use_env: bool = True,
    env_prefix: str = "EXPLAINIT_",
    configure_logging: bool = True,
) -> ExplainItConfig:
    """
    Load configuration using the standard precedence:
    1. Default configuration
    2. Environment variables (if use_env=True, ``.env`` included)
    3. Configuration file (if provided)

    Args:
        config_file: Optional path to YAML configuration file
        use_env: Whether to load from environment variables
        env_prefix: Prefix for environment variables
        configure_logging: Install the loguru handlers described by the config

    Returns:
        ExplainItConfig instance
    """
    config = ExplainItConfig()

    if use_env:
        load_dotenv()
        env_overrides = ExplainItConfig.from_env(env_prefix)
        if env_overrides:
            config = config.merge_with(env_overrides)

    if config_file:
        config = config.merge_with(load_yaml_overrides(config_file))

    if configure_logging:
        config.setup_logging()
    return config
