"""
Autoship Provider Base - model service clients with tool use.

This module defines the interface every LLM provider implements, the
response shape the conversation loop consumes, and a factory for creating
provider instances from a model name.
"""

import json
import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple, Type

import anthropic
import httpx
import openai

from autoship.providers.messages import (
    ContentBlock,
    Message,
    TextBlock,
    ToolInvocationBlock,
    ToolResultBlock,
)
from autoship.validation.config import Config

logger = logging.getLogger(__name__)

# Normalized stop reasons
END_TURN = "end_turn"
TOOL_USE = "tool_use"
MAX_TOKENS = "max_tokens"


@dataclass
class ModelResponse:
    """One model turn: content blocks plus a stop-reason hint."""

    content: List[ContentBlock]
    model: str
    provider: str
    stop_reason: Optional[str] = None
    token_usage: int = 0
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def tool_invocations(self) -> List[ToolInvocationBlock]:
        return [b for b in self.content if isinstance(b, ToolInvocationBlock)]

    @property
    def text(self) -> str:
        return "\n".join(b.text for b in self.content if isinstance(b, TextBlock))


class Provider(ABC):
    """
    Abstract base class for LLM providers.

    All provider implementations must inherit from this class and
    implement ``complete``.

    Example:
        >>> class MyProvider(Provider):
        ...     provider_name = "mine"
        ...     def complete(self, messages, tools, system=None, **kwargs):
        ...         return ModelResponse(content=[TextBlock(text="done")], model="m", provider="mine")
    """

    def __init__(self, model: str, config: Config):
        """
        Initialize the provider.

        Args:
            model: The model identifier.
            config: Agent configuration.
        """
        self.model = model
        self.config = config

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the provider name."""
        pass

    @abstractmethod
    def complete(
        self,
        messages: List[Message],
        tools: List[Dict[str, Any]],
        system: Optional[str] = None,
        **kwargs,
    ) -> ModelResponse:
        """
        Run one model turn over the full conversation.

        Args:
            messages: Conversation history, oldest first.
            tools: Tool definitions as ``{name, description, input_schema}``.
            system: Optional system prompt.
            **kwargs: Provider-specific overrides (max_tokens, temperature).

        Returns:
            ModelResponse with the assistant's content blocks.
        """
        pass

    def get_api_key(self) -> Optional[str]:
        """Get the API key for this provider."""
        return self.config.get_api_key(self.provider_name)

    def _max_tokens(self, kwargs: Dict[str, Any]) -> int:
        return kwargs.get("max_tokens", self.config.merged.agent.max_tokens)

    def _temperature(self, kwargs: Dict[str, Any]) -> Optional[float]:
        return kwargs.get("temperature", self.config.merged.agent.temperature)


class AnthropicProvider(Provider):
    """Anthropic Messages API with native tool use."""

    @property
    def provider_name(self) -> str:
        return "anthropic"

    def complete(
        self,
        messages: List[Message],
        tools: List[Dict[str, Any]],
        system: Optional[str] = None,
        **kwargs,
    ) -> ModelResponse:
        api_key = self.get_api_key()
        if not api_key:
            raise ValueError("Anthropic API key not configured")

        client = anthropic.Anthropic(api_key=api_key, timeout=self.config.merged.agent.timeout)

        request: Dict[str, Any] = {
            "model": self.model,
            "max_tokens": self._max_tokens(kwargs),
            "messages": [m.to_api() for m in messages],
        }
        if tools:
            request["tools"] = tools
        if system:
            request["system"] = system
        temperature = self._temperature(kwargs)
        if temperature is not None:
            request["temperature"] = temperature

        response = client.messages.create(**request)

        content: List[ContentBlock] = []
        for block in response.content:
            if block.type == "text":
                content.append(TextBlock(text=block.text))
            elif block.type == "tool_use":
                content.append(ToolInvocationBlock(id=block.id, name=block.name, input=block.input or {}))
            else:
                logger.debug("Ignoring %s block", block.type)

        return ModelResponse(
            content=content,
            model=response.model,
            provider=self.provider_name,
            stop_reason=response.stop_reason,
            token_usage=response.usage.input_tokens + response.usage.output_tokens,
        )


class OpenAICompatibleProvider(Provider):
    """
    Base for providers that expose an OpenAI-compatible chat completions API.

    Subclasses only need to set _base_url, _env_key, and provider_name.
    Tool use is mapped onto function calling.
    """

    _base_url: str = ""
    _env_key: str = ""

    _FINISH_REASONS = {
        "stop": END_TURN,
        "tool_calls": TOOL_USE,
        "function_call": TOOL_USE,
        "length": MAX_TOKENS,
    }

    @property
    def provider_name(self) -> str:
        raise NotImplementedError

    def _get_key(self) -> Optional[str]:
        return self.get_api_key() or os.environ.get(self._env_key)

    def _get_base_url(self) -> str:
        provider_config = self.config.get_provider_config(self.provider_name)
        if provider_config and provider_config.api_base:
            return provider_config.api_base.rstrip("/")
        return self._base_url

    def complete(
        self,
        messages: List[Message],
        tools: List[Dict[str, Any]],
        system: Optional[str] = None,
        **kwargs,
    ) -> ModelResponse:
        api_key = self._get_key()
        if not api_key:
            raise ValueError(
                f"{self.provider_name} API key not configured. "
                f"Set {self._env_key} or add it to config."
            )

        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": self.convert_messages(messages, system),
            "max_tokens": self._max_tokens(kwargs),
        }
        if tools:
            payload["tools"] = [
                {
                    "type": "function",
                    "function": {
                        "name": t["name"],
                        "description": t.get("description", ""),
                        "parameters": t.get("input_schema", {"type": "object", "properties": {}}),
                    },
                }
                for t in tools
            ]
        temperature = self._temperature(kwargs)
        if temperature is not None:
            payload["temperature"] = temperature

        data = self._request(payload, api_key)

        choice = data["choices"][0]
        message = choice.get("message", {})
        usage = data.get("usage") or {}

        content: List[ContentBlock] = []
        if message.get("content"):
            content.append(TextBlock(text=message["content"]))
        for index, call in enumerate(message.get("tool_calls") or []):
            function = call.get("function") or {}
            raw = function.get("arguments")
            try:
                arguments = json.loads(raw or "{}")
            except json.JSONDecodeError:
                arguments = None
            # Malformed arguments are left for tool input validation to reject.
            if not isinstance(arguments, dict):
                arguments = {"_raw_arguments": raw}
            content.append(ToolInvocationBlock(
                id=call.get("id") or f"call_{index}",
                name=function.get("name") or "",
                input=arguments,
            ))

        finish_reason = choice.get("finish_reason")
        return ModelResponse(
            content=content,
            model=data.get("model", self.model),
            provider=self.provider_name,
            stop_reason=self._FINISH_REASONS.get(finish_reason, finish_reason),
            token_usage=usage.get("total_tokens", 0),
        )

    def _request(self, payload: Dict[str, Any], api_key: str) -> Dict[str, Any]:
        response = httpx.post(
            f"{self._get_base_url()}/chat/completions",
            headers={
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
            },
            json=payload,
            timeout=self.config.merged.agent.timeout,
        )
        response.raise_for_status()
        return response.json()

    @staticmethod
    def convert_messages(messages: List[Message], system: Optional[str] = None) -> List[Dict[str, Any]]:
        """Translate block-structured history into chat-completions messages."""
        converted: List[Dict[str, Any]] = []
        if system:
            converted.append({"role": "system", "content": system})

        for message in messages:
            if message.role == "assistant":
                entry: Dict[str, Any] = {"role": "assistant", "content": message.text or None}
                calls = [
                    {
                        "id": b.id,
                        "type": "function",
                        "function": {"name": b.name, "arguments": json.dumps(b.input)},
                    }
                    for b in message.tool_invocations
                ]
                if calls:
                    entry["tool_calls"] = calls
                converted.append(entry)
                continue

            text_parts = []
            for block in message.content:
                if isinstance(block, ToolResultBlock):
                    content = block.content
                    if block.is_error:
                        content = f"ERROR: {content}"
                    converted.append({"role": "tool", "tool_call_id": block.tool_use_id, "content": content})
                elif isinstance(block, TextBlock):
                    text_parts.append(block.text)
            if text_parts:
                converted.append({"role": "user", "content": "\n".join(text_parts)})

        return converted


class OpenAIProvider(OpenAICompatibleProvider):
    """OpenAI chat completions."""

    _base_url = "https://api.openai.com/v1"
    _env_key = "OPENAI_API_KEY"

    @property
    def provider_name(self) -> str:
        return "openai"

    def _request(self, payload: Dict[str, Any], api_key: str) -> Dict[str, Any]:
        client = openai.OpenAI(
            api_key=api_key,
            base_url=self._get_base_url(),
            timeout=self.config.merged.agent.timeout,
        )
        return client.chat.completions.create(**payload).model_dump()


class OpenRouterProvider(OpenAICompatibleProvider):
    """OpenRouter - unified API for 100+ open and commercial models."""

    _base_url = "https://openrouter.ai/api/v1"
    _env_key = "OPENROUTER_API_KEY"

    @property
    def provider_name(self) -> str:
        return "openrouter"


class GroqProvider(OpenAICompatibleProvider):
    """Groq - ultra-fast inference for open models."""

    _base_url = "https://api.groq.com/openai/v1"
    _env_key = "GROQ_API_KEY"

    @property
    def provider_name(self) -> str:
        return "groq"


class ProviderFactory:
    """Factory for creating provider instances."""

    _providers: Dict[str, Type[Provider]] = {
        "anthropic": AnthropicProvider,
        "openai": OpenAIProvider,
        "openrouter": OpenRouterProvider,
        "groq": GroqProvider,
    }

    @classmethod
    def register(cls, name: str, provider_class: Type[Provider]) -> None:
        """Register a new provider."""
        cls._providers[name] = provider_class

    @classmethod
    def parse(cls, model: str) -> Tuple[str, str]:
        """Split ``provider/model`` or infer the provider from the model name."""
        if "/" in model:
            provider_name, model_name = model.split("/", 1)
            if provider_name in cls._providers:
                return provider_name, model_name
        return cls._infer_provider(model), model

    @classmethod
    def create(cls, model: str, config: Config) -> Provider:
        """
        Create a provider instance for the given model.

        Args:
            model: Model identifier (e.g., "anthropic/claude-sonnet-4-20250514" or "gpt-4o").
            config: Agent configuration.

        Returns:
            Provider instance.

        Raises:
            ValueError: If the provider is not recognized.
        """
        provider_name, model_name = cls.parse(model)

        if provider_name not in cls._providers:
            raise ValueError(f"Unknown provider: {provider_name}")

        provider_class = cls._providers[provider_name]
        return provider_class(model=model_name, config=config)

    @classmethod
    def _infer_provider(cls, model: str) -> str:
        """Infer the provider from the model name."""
        model_lower = model.lower()

        if model_lower.startswith("claude"):
            return "anthropic"
        elif model_lower.startswith(("gpt", "o1", "o3", "o4")):
            return "openai"
        elif model_lower.startswith(("llama", "mixtral", "gemma")):
            return "groq"

        # Default to openrouter (broadest model catalog)
        return "openrouter"

    @classmethod
    def available_providers(cls) -> List[str]:
        """Get list of available provider names."""
        return list(cls._providers.keys())
