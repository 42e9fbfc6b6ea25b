"""Data models for tool definitions and tool results."""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


def empty_object_schema() -> Dict[str, Any]:
    return {"type": "object", "properties": {}}


class ToolOrigin(str, Enum):
    """Where a tool runs: in this process, or in the tool-provider child."""

    BUILTIN = "builtin"
    REMOTE = "remote"


class ToolDefinition(BaseModel):
    """A tool as offered to the model service."""

    name: str
    description: str = ""
    input_schema: Dict[str, Any] = Field(default_factory=empty_object_schema)
    origin: ToolOrigin = ToolOrigin.BUILTIN
    remote_name: Optional[str] = None  # name on the tool-provider, remote only

    @classmethod
    def from_mcp(cls, raw: Dict[str, Any]) -> "ToolDefinition":
        """Build a remote definition from a ``tools/list`` entry."""
        return cls(
            name=raw["name"],
            description=raw.get("description") or "",
            input_schema=raw.get("inputSchema") or empty_object_schema(),
            origin=ToolOrigin.REMOTE,
            remote_name=raw["name"],
        )

    def to_api(self) -> Dict[str, Any]:
        """Shape expected by the model service's tool surface."""
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.input_schema,
        }


class ToolResult(BaseModel):
    """Outcome of one tool invocation, always expressed as text."""

    text: str = ""
    is_error: bool = False
    duration_ms: int = 0

    @classmethod
    def error(cls, text: str) -> "ToolResult":
        return cls(text=text, is_error=True)
