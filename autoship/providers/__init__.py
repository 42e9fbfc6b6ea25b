"""
Autoship providers module.

This module provides model service clients that support tool use.
"""

from autoship.providers.base import ModelResponse, Provider, ProviderFactory
from autoship.providers.messages import (
    Message,
    TextBlock,
    ToolInvocationBlock,
    ToolResultBlock,
)

__all__ = [
    "Message",
    "ModelResponse",
    "Provider",
    "ProviderFactory",
    "TextBlock",
    "ToolInvocationBlock",
    "ToolResultBlock",
]
