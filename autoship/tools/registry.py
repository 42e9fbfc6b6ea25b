"""Tool registry: one namespace over built-in and remote tools, plus dispatch."""

from __future__ import annotations

import logging
import time
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Optional

from autoship.mcp.client import RpcClient, RpcClientError
from autoship.mcp.framing import TransportError
from autoship.tools.builtins import BuiltinTools
from autoship.tools.schema import ToolDefinition, ToolOrigin, ToolResult

logger = logging.getLogger(__name__)

DEFAULT_PREFIX = "mcp_"


class ToolRegistry:
    """
    Merged tool set for one agent run.

    Built at startup from the built-in tools and the tool-provider's
    ``tools/list`` answer, then never changed. Each entry carries its origin,
    so dispatch looks at the tag rather than at the name.
    """

    def __init__(
        self,
        definitions: Iterable[ToolDefinition],
        builtins: BuiltinTools,
        client: Optional[RpcClient] = None,
    ):
        entries: Dict[str, ToolDefinition] = {}
        for definition in definitions:
            if definition.name in entries:
                raise ValueError(f"Duplicate tool name: {definition.name}")
            entries[definition.name] = definition
        self._entries: Mapping[str, ToolDefinition] = MappingProxyType(entries)
        self._builtins = builtins
        self._client = client

    @classmethod
    def build(
        cls,
        builtins: BuiltinTools,
        remote_tools: Iterable[ToolDefinition] = (),
        client: Optional[RpcClient] = None,
        prefix: str = DEFAULT_PREFIX,
    ) -> "ToolRegistry":
        """Merge built-ins with ``remote_tools``, renaming the latter with ``prefix``."""
        definitions: List[ToolDefinition] = list(builtins.definitions)
        taken = {d.name for d in definitions}

        for tool in remote_tools:
            remote_name = tool.remote_name or tool.name
            name = f"{prefix}{remote_name}"
            if name in builtins:
                raise ValueError(f"Remote tool {remote_name!r} collides with built-in {name!r}")
            if name in taken:
                logger.warning("Skipping duplicate remote tool: %s", remote_name)
                continue
            taken.add(name)
            definitions.append(tool.model_copy(update={
                "name": name,
                "origin": ToolOrigin.REMOTE,
                "remote_name": remote_name,
            }))

        return cls(definitions, builtins, client)

    # ── Lookup ────────────────────────────────────────────────────────────

    def __contains__(self, name: str) -> bool:
        return name in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, name: str) -> Optional[ToolDefinition]:
        return self._entries.get(name)

    @property
    def names(self) -> List[str]:
        return list(self._entries)

    def definitions(self) -> List[Dict[str, Any]]:
        """Tool surface for the model service, built-ins first."""
        return [d.to_api() for d in self._entries.values()]

    # ── Dispatch ──────────────────────────────────────────────────────────

    def dispatch(self, name: str, tool_input: Optional[Dict[str, Any]] = None) -> ToolResult:
        """Execute tool ``name``. Never raises; failures become error results."""
        definition = self._entries.get(name)
        if definition is None:
            return ToolResult.error(f"Unknown tool: {name}")

        try:
            if definition.origin is ToolOrigin.REMOTE:
                return self._call_remote(definition, tool_input or {})
            return self._builtins.execute(definition.name, tool_input)
        except Exception as exc:
            logger.exception("Tool %s failed", name)
            return ToolResult.error(f"Tool {name} failed: {exc}")

    def _call_remote(self, definition: ToolDefinition, tool_input: Dict[str, Any]) -> ToolResult:
        if self._client is None:
            return ToolResult.error(f"MCP tool error: no tool-provider for {definition.name}")

        t0 = time.perf_counter()
        try:
            result = self._client.call_tool(definition.remote_name, tool_input)
        except (RpcClientError, TransportError) as exc:
            logger.warning("Remote tool %s failed: %s", definition.remote_name, exc)
            return ToolResult(
                text=f"MCP tool error: {exc}",
                is_error=True,
                duration_ms=int((time.perf_counter() - t0) * 1000),
            )

        return ToolResult(
            text=result.text,
            is_error=result.is_error,
            duration_ms=int((time.perf_counter() - t0) * 1000),
        )
