"""Shared fixtures."""

import sys
from pathlib import Path
from typing import List

import pytest

from autoship.providers.base import ModelResponse, Provider
from autoship.providers.messages import TextBlock, ToolInvocationBlock
from autoship.validation.config import Config

FAKE_SERVER = Path(__file__).parent / "fake_server.py"


def server_command(*modes: str) -> List[str]:
    return [sys.executable, str(FAKE_SERVER), *modes]


def text_response(text: str, stop_reason: str = "end_turn") -> ModelResponse:
    return ModelResponse(
        content=[TextBlock(text=text)],
        model="scripted",
        provider="scripted",
        stop_reason=stop_reason,
        token_usage=10,
    )


def tool_response(*calls, text: str = "", stop_reason: str = "tool_use") -> ModelResponse:
    """``calls`` are ``(id, name, input)`` triples."""
    content = [TextBlock(text=text)] if text else []
    content += [ToolInvocationBlock(id=i, name=n, input=inp) for i, n, inp in calls]
    return ModelResponse(
        content=content,
        model="scripted",
        provider="scripted",
        stop_reason=stop_reason,
        token_usage=10,
    )


class ScriptedProvider(Provider):
    """Replays canned responses and records what it was sent."""

    def __init__(self, responses, config=None):
        super().__init__("scripted", config or Config())
        self.responses = list(responses)
        self.calls = []

    @property
    def provider_name(self) -> str:
        return "scripted"

    def complete(self, messages, tools, system=None, **kwargs):
        self.calls.append({
            "messages": [m.model_copy(deep=True) for m in messages],
            "tools": tools,
            "system": system,
        })
        if not self.responses:
            raise RuntimeError("script exhausted")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


@pytest.fixture
def config_for():
    """Build a Config pointed at the fake server."""

    def _make(*modes, agent=None, **server):
        overrides = {
            "agent": agent or {},
            "server": {"command": server_command(*modes), "credentials": [], **server},
        }
        return Config(overrides=overrides)

    return _make
