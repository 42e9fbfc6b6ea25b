"""
Tools available to the agent.

Built-in tools (shell, files) run in-process; remote tools are delegated to
the tool-provider process. ``autoship.tools.registry`` merges both under one
namespace and routes invocations.
"""

from autoship.tools.schema import ToolDefinition, ToolOrigin, ToolResult
from autoship.tools.builtins import BuiltinTools, ToolExecutionError

__all__ = [
    "BuiltinTools",
    "ToolDefinition",
    "ToolExecutionError",
    "ToolOrigin",
    "ToolResult",
]
