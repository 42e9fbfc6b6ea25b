"""Conversation messages and content blocks exchanged with the model service."""

from __future__ import annotations

from typing import Any, Dict, List, Literal, Union

from pydantic import BaseModel, Field


class TextBlock(BaseModel):
    type: Literal["text"] = "text"
    text: str


class ToolInvocationBlock(BaseModel):
    """A model request to run tool ``name`` with ``input``."""

    type: Literal["tool_use"] = "tool_use"
    id: str
    name: str
    input: Dict[str, Any] = Field(default_factory=dict)


class ToolResultBlock(BaseModel):
    """The answer to exactly one ``ToolInvocationBlock``."""

    type: Literal["tool_result"] = "tool_result"
    tool_use_id: str
    content: str
    is_error: bool = False


ContentBlock = Union[TextBlock, ToolInvocationBlock, ToolResultBlock]


class Message(BaseModel):
    role: Literal["user", "assistant"]
    content: List[ContentBlock]

    @classmethod
    def user_text(cls, text: str) -> "Message":
        return cls(role="user", content=[TextBlock(text=text)])

    @property
    def text(self) -> str:
        return "\n".join(b.text for b in self.content if isinstance(b, TextBlock))

    @property
    def tool_invocations(self) -> List[ToolInvocationBlock]:
        return [b for b in self.content if isinstance(b, ToolInvocationBlock)]

    def to_api(self) -> Dict[str, Any]:
        return {"role": self.role, "content": [b.model_dump() for b in self.content]}
