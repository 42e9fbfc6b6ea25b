"""
Autoship Configuration - Configuration loading and validation.

This module provides the Config class for managing agent configuration
from both global (~/.autoship/config.yaml) and local (.autoship/config.yaml)
sources, plus overrides supplied on the command line.
"""

import os
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError

DEFAULT_MODEL = "claude-sonnet-4-20250514"
DEFAULT_CREDENTIALS = ["SUPABASE_URL", "SUPABASE_SERVICE_KEY"]
CONFIG_FILENAME = "config.yaml"


class ConfigError(Exception):
    """Raised when there's a configuration error."""

    pass


class ProviderConfig(BaseModel):
    """Configuration for an LLM provider."""

    api_key: Optional[str] = None
    api_base: Optional[str] = None


class AgentConfig(BaseModel):
    """Configuration for the conversation loop."""

    model: str = DEFAULT_MODEL
    max_turns: int = Field(default=50, ge=1)
    max_tokens: int = 8096
    temperature: Optional[float] = None
    timeout: int = 120
    system_prompt: Optional[str] = None
    tool_concurrency: int = Field(default=1, ge=1)


class ServerConfig(BaseModel):
    """Configuration for the stdio tool-provider process."""

    command: List[str] = Field(default_factory=list)
    env: Dict[str, str] = Field(default_factory=dict)
    credentials: List[str] = Field(default_factory=lambda: list(DEFAULT_CREDENTIALS))
    tool_prefix: str = "mcp_"
    request_timeout: float = Field(default=30.0, gt=0)
    protocol_version: str = "2024-11-05"
    auto_setup: bool = True
    repository: str = "https://github.com/morlinbrot/autoship-mcp.git"
    repository_path: str = "mcp-servers/autoship-mcp"


class ToolsConfig(BaseModel):
    """Configuration for the built-in tools."""

    working_dir: Optional[str] = None
    bash_timeout: int = 600
    max_output_chars: int = 100_000


class AutoshipConfig(BaseModel):
    """Complete configuration schema."""

    providers: Dict[str, ProviderConfig] = Field(default_factory=dict)
    agent: AgentConfig = Field(default_factory=AgentConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    tools: ToolsConfig = Field(default_factory=ToolsConfig)
    required_env: Optional[List[str]] = None


class Config:
    """
    Configuration manager.

    Handles loading, merging, and validating configuration from:
    - Global: ~/.autoship/config.yaml
    - Local: .autoship/config.yaml (project-specific)
    - Overrides: values passed in by the caller (CLI flags)

    Later sources override earlier ones.

    Example:
        >>> config = Config.load(overrides={"agent": {"max_turns": 10}})
        >>> config.merged.agent.max_turns
        10
    """

    GLOBAL_CONFIG_DIR = Path.home() / ".autoship"
    LOCAL_CONFIG_DIR = Path(".autoship")

    API_KEY_ENV = {
        "anthropic": "ANTHROPIC_API_KEY",
        "openai": "OPENAI_API_KEY",
        "openrouter": "OPENROUTER_API_KEY",
        "groq": "GROQ_API_KEY",
    }

    def __init__(
        self,
        global_config: Optional[Dict[str, Any]] = None,
        local_config: Optional[Dict[str, Any]] = None,
        overrides: Optional[Dict[str, Any]] = None,
    ):
        self._global_config = global_config or {}
        self._local_config = local_config or {}
        self._overrides = overrides or {}
        self._merged: Optional[AutoshipConfig] = None

    @classmethod
    def load(cls, overrides: Optional[Dict[str, Any]] = None) -> "Config":
        """Read the global and nearest local config files, then apply ``overrides``."""
        return cls(
            global_config=cls._load_yaml(cls.GLOBAL_CONFIG_DIR / CONFIG_FILENAME),
            local_config=cls._load_yaml(cls._find_local_config()),
            overrides=overrides,
        )

    @classmethod
    def _load_yaml(cls, path: Optional[Path]) -> Dict[str, Any]:
        """Parse ``path``; a missing or empty file is an empty mapping."""
        if path is None or not path.is_file():
            return {}

        try:
            data = yaml.safe_load(path.read_text(encoding="utf-8"))
        except (OSError, yaml.YAMLError) as e:
            raise ConfigError(f"Cannot read {path}: {e}") from e

        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigError(f"{path} must contain a mapping, not {type(data).__name__}")
        return data

    @classmethod
    def _find_local_config(cls) -> Optional[Path]:
        """Nearest ``.autoship/config.yaml`` in the cwd or any parent."""
        cwd = Path.cwd()
        for directory in (cwd, *cwd.parents):
            candidate = directory / cls.LOCAL_CONFIG_DIR / CONFIG_FILENAME
            if candidate.is_file():
                return candidate
        return None

    def get_merged_config(self) -> Dict[str, Any]:
        """Global, then local, then overrides, as one plain dictionary."""
        merged: Dict[str, Any] = {}
        for layer in (self._global_config, self._local_config, self._overrides):
            merged = self._deep_merge(merged, layer)
        return merged

    @property
    def merged(self) -> AutoshipConfig:
        """Validated view of ``get_merged_config()``, built once."""
        if self._merged is None:
            try:
                self._merged = AutoshipConfig.model_validate(self.get_merged_config())
            except ValidationError as e:
                raise ConfigError(f"Invalid configuration: {e}") from e
        return self._merged

    def get_provider_config(self, provider_name: str) -> Optional[ProviderConfig]:
        return self.merged.providers.get(provider_name)

    def get_api_key(self, provider_name: str) -> Optional[str]:
        """A key from the provider's config section wins over its environment variable."""
        provider = self.get_provider_config(provider_name)
        if provider is not None and provider.api_key:
            return provider.api_key
        env_var = self.API_KEY_ENV.get(provider_name)
        return os.environ.get(env_var) if env_var else None

    def required_env(self, provider_name: str = "anthropic") -> List[str]:
        """Environment variables that must be set before a run starts."""
        if self.merged.required_env is not None:
            return list(self.merged.required_env)
        required = list(self.merged.server.credentials)
        env_var = self.API_KEY_ENV.get(provider_name)
        provider = self.get_provider_config(provider_name)
        if env_var and not (provider and provider.api_key):
            required.insert(0, env_var)
        return required

    def server_env(self, environ: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
        """Environment injected into the tool-provider: credentials plus explicit env."""
        environ = os.environ if environ is None else environ
        env = {name: environ[name] for name in self.merged.server.credentials if name in environ}
        env.update(self.merged.server.env)
        return env

    def _deep_merge(self, base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        """Return ``base`` updated by ``override``; nested mappings merge, anything else is replaced."""
        merged = dict(base)
        for key, value in override.items():
            current = merged.get(key)
            if isinstance(current, dict) and isinstance(value, dict):
                value = self._deep_merge(current, value)
            merged[key] = value
        return merged
