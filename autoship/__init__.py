"""
Autoship Agent - autonomous tool-use agent for a remote task queue.

The agent launches a tool-provider process (the task-storage MCP server),
talks to it over newline-delimited JSON-RPC on stdio, and lets a language
model work through a turn-bounded conversation in which it can run shell
commands, read and write files, and call the provider's task tools.

Architecture:
    ConversationLoop -> model service -> tool invocations
        -> ToolRegistry -> BuiltinTools | RpcClient -> ProcessSupervisor child
        -> tool results -> next turn
"""

__version__ = "1.0.0"
__license__ = "Apache-2.0"

from autoship.core.agent import AgentRunner
from autoship.core.loop import ConversationLoop, LoopResult, LoopStatus

__all__ = [
    "AgentRunner",
    "ConversationLoop",
    "LoopResult",
    "LoopStatus",
    "__version__",
]
