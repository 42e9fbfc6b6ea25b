"""JSON-RPC client for the tool-provider process."""

from __future__ import annotations

import itertools
import json
import logging
import threading
from concurrent.futures import Future, TimeoutError as FutureTimeout
from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from autoship import __version__
from autoship.mcp.framing import TransportError
from autoship.tools.schema import ToolDefinition

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0
PROTOCOL_VERSION = "2024-11-05"
CLIENT_INFO = {"name": "autoship-agent", "version": __version__}


class RpcClientError(Exception):
    """Base class for failures reported by the RPC client."""


class RpcError(RpcClientError):
    """The tool-provider answered a request with an error."""

    def __init__(self, message: str, code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.code = code


class RpcTimeout(RpcClientError):
    """No response arrived before the request deadline."""

    def __init__(self, method: str, timeout: float = DEFAULT_TIMEOUT):
        super().__init__(f"Request {method} timed out after {timeout:g}s")
        self.method = method
        self.timeout = timeout


class CallToolResult(BaseModel):
    """Result of ``tools/call``; remote tool failures arrive as ``is_error``."""

    model_config = ConfigDict(populate_by_name=True)

    content: List[Dict[str, Any]] = Field(default_factory=list)
    is_error: bool = Field(default=False, alias="isError")

    @property
    def text(self) -> str:
        parts = [
            str(part.get("text"))
            for part in self.content
            if isinstance(part, dict) and part.get("text") is not None
        ]
        if parts:
            return "\n".join(parts)
        return json.dumps(self.model_dump(by_alias=True))


class RpcClient:
    """
    Correlates JSON-RPC requests with their responses.

    Each ``send_request`` registers a pending future under a fresh id and
    blocks until ``deliver`` resolves it or the timeout expires. Several
    requests may be in flight from different threads; responses are matched
    by id, never by arrival order.
    """

    def __init__(
        self,
        writer: Callable[[Dict[str, Any]], None],
        timeout: float = DEFAULT_TIMEOUT,
    ):
        self._write = writer
        self.timeout = timeout
        self._ids = itertools.count(1)
        self._pending: Dict[int, Future] = {}
        self._lock = threading.Lock()
        self._initialized = False
        self.server_info: Dict[str, Any] = {}

    @property
    def initialized(self) -> bool:
        return self._initialized

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    # ── Wire operations ───────────────────────────────────────────────────

    def send_notification(self, method: str, params: Optional[Dict[str, Any]] = None) -> None:
        """Fire-and-forget message; no response is expected."""
        self._write({"jsonrpc": "2.0", "method": method, "params": params or {}})

    def send_request(
        self,
        method: str,
        params: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> Any:
        """Send a request and wait for its result."""
        timeout = self.timeout if timeout is None else timeout
        future: Future = Future()
        with self._lock:
            request_id = next(self._ids)
            self._pending[request_id] = future

        try:
            self._write({
                "jsonrpc": "2.0",
                "id": request_id,
                "method": method,
                "params": params or {},
            })
        except TransportError:
            with self._lock:
                self._pending.pop(request_id, None)
            raise

        try:
            return future.result(timeout=timeout)
        except FutureTimeout:
            with self._lock:
                still_pending = self._pending.pop(request_id, None) is not None
            if still_pending:
                raise RpcTimeout(method, timeout) from None
            # deliver() won the race and already settled the future
            return future.result()

    def deliver(self, message: Dict[str, Any]) -> None:
        """Route one incoming message from the framer."""
        if "method" in message:
            # Server-initiated requests and notifications are not used here
            logger.debug("Ignoring server message: %s", message.get("method"))
            return

        request_id = message.get("id")
        if not isinstance(request_id, int):
            logger.debug("Ignoring message without a usable id: %r", request_id)
            return
        with self._lock:
            future = self._pending.pop(request_id, None)
            if future is None:
                logger.debug("No pending request for response id %r", request_id)
                return
            error = message.get("error")
            if error is not None:
                if isinstance(error, dict):
                    future.set_exception(
                        RpcError(str(error.get("message", error)), error.get("code"))
                    )
                else:
                    future.set_exception(RpcError(str(error)))
            else:
                future.set_result(message.get("result"))

    # ── Protocol ──────────────────────────────────────────────────────────

    def initialize(
        self,
        protocol_version: str = PROTOCOL_VERSION,
        capabilities: Optional[Dict[str, Any]] = None,
        client_info: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Perform the handshake; must succeed before any tool request."""
        result = self.send_request("initialize", {
            "protocolVersion": protocol_version,
            "capabilities": capabilities or {},
            "clientInfo": client_info or CLIENT_INFO,
        }) or {}
        self.send_notification("notifications/initialized", {})
        self._initialized = True
        self.server_info = result.get("serverInfo", {}) if isinstance(result, dict) else {}
        return result

    def list_tools(self) -> List[ToolDefinition]:
        if not self._initialized:
            raise RpcError("tools/list called before initialize completed")
        result = self.send_request("tools/list", {}) or {}
        return [ToolDefinition.from_mcp(raw) for raw in result.get("tools", [])]

    def call_tool(self, name: str, arguments: Optional[Dict[str, Any]] = None) -> CallToolResult:
        if not self._initialized:
            raise RpcError("tools/call called before initialize completed")
        result = self.send_request("tools/call", {"name": name, "arguments": arguments or {}})
        if not isinstance(result, dict):
            return CallToolResult(content=[{"type": "text", "text": json.dumps(result)}])
        return CallToolResult.model_validate(result)
