"""
Autoship core module.

Provides the conversation loop and the agent run that wires it to the
tool-provider process.
"""

from autoship.core.agent import DEFAULT_PROMPT, AgentRunner, missing_credentials
from autoship.core.loop import (
    ConversationLoop,
    LoopObserver,
    LoopResult,
    LoopState,
    LoopStatus,
    ModelServiceError,
)
from autoship.core.transcript import TranscriptRecorder

__all__ = [
    "AgentRunner",
    "ConversationLoop",
    "DEFAULT_PROMPT",
    "LoopObserver",
    "LoopResult",
    "LoopState",
    "LoopStatus",
    "ModelServiceError",
    "TranscriptRecorder",
    "missing_credentials",
]
