"""
Stdio JSON-RPC connection to the tool-provider process.

    framing     bytes <-> newline-delimited JSON messages
    client      request/response correlation, MCP handshake and tool calls
    supervisor  child process spawn, stream pumping, teardown
    setup       locating or building the tool-provider server
"""

from autoship.mcp.framing import LineFramer, TransportError, encode_message, iter_messages
from autoship.mcp.client import CallToolResult, RpcClient, RpcClientError, RpcError, RpcTimeout
from autoship.mcp.supervisor import ProcessSupervisor, StartupError

__all__ = [
    "CallToolResult",
    "LineFramer",
    "ProcessSupervisor",
    "RpcClient",
    "RpcClientError",
    "RpcError",
    "RpcTimeout",
    "StartupError",
    "TransportError",
    "encode_message",
    "iter_messages",
]
