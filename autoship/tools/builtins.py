"""
Built-in tools executed in-process: shell commands and file access.

Every executor returns a ``ToolResult``. Failures are reported as text so the
model can see what went wrong and adapt; nothing here raises into the loop.
"""

from __future__ import annotations

import logging
import shlex
import subprocess
import time
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple, Type

from pydantic import BaseModel, ValidationError

from autoship.tools.schema import ToolDefinition, ToolResult

logger = logging.getLogger(__name__)

DEFAULT_BASH_TIMEOUT = 600
DEFAULT_MAX_OUTPUT_CHARS = 100_000


class ToolExecutionError(Exception):
    """A built-in tool could not do its job."""


# ---------------------------------------------------------------------------
# Input models
# ---------------------------------------------------------------------------

class BashInput(BaseModel):
    command: str


class ReadFileInput(BaseModel):
    path: str


class WriteFileInput(BaseModel):
    path: str
    content: str


class ListFilesInput(BaseModel):
    path: str = "."
    recursive: bool = False


BUILTIN_DEFINITIONS = [
    ToolDefinition(
        name="bash",
        description=(
            "Execute a bash command. Use this for git operations, running tests, "
            "and other shell commands."
        ),
        input_schema={
            "type": "object",
            "properties": {
                "command": {"type": "string", "description": "The bash command to execute"},
            },
            "required": ["command"],
        },
    ),
    ToolDefinition(
        name="read_file",
        description="Read the contents of a file",
        input_schema={
            "type": "object",
            "properties": {
                "path": {"type": "string", "description": "The path to the file to read"},
            },
            "required": ["path"],
        },
    ),
    ToolDefinition(
        name="write_file",
        description="Write content to a file (creates or overwrites)",
        input_schema={
            "type": "object",
            "properties": {
                "path": {"type": "string", "description": "The path to the file to write"},
                "content": {"type": "string", "description": "The content to write to the file"},
            },
            "required": ["path", "content"],
        },
    ),
    ToolDefinition(
        name="list_files",
        description="List files in a directory",
        input_schema={
            "type": "object",
            "properties": {
                "path": {
                    "type": "string",
                    "description": "The directory path to list (defaults to current directory)",
                },
                "recursive": {"type": "boolean", "description": "Whether to list recursively"},
            },
        },
    ),
]

RESERVED_NAMES = frozenset(d.name for d in BUILTIN_DEFINITIONS)


class BuiltinTools:
    """
    Executors for the reserved built-in tool names.

    Relative paths and shell commands are resolved against ``working_dir``.
    """

    def __init__(
        self,
        working_dir: Optional[Path] = None,
        bash_timeout: int = DEFAULT_BASH_TIMEOUT,
        max_output_chars: int = DEFAULT_MAX_OUTPUT_CHARS,
    ):
        self.working_dir = Path(working_dir) if working_dir else Path.cwd()
        self.bash_timeout = bash_timeout
        self.max_output_chars = max_output_chars
        self._executors: Dict[str, Tuple[Type[BaseModel], Callable[[Any], ToolResult]]] = {
            "bash": (BashInput, self._bash),
            "read_file": (ReadFileInput, self._read_file),
            "write_file": (WriteFileInput, self._write_file),
            "list_files": (ListFilesInput, self._list_files),
        }

    @property
    def definitions(self) -> List[ToolDefinition]:
        return list(BUILTIN_DEFINITIONS)

    def __contains__(self, name: str) -> bool:
        return name in self._executors

    def execute(self, name: str, tool_input: Optional[Dict[str, Any]]) -> ToolResult:
        """Run built-in ``name``; always returns a result."""
        entry = self._executors.get(name)
        if entry is None:
            return ToolResult.error(f"Unknown tool: {name}")

        model, executor = entry
        try:
            params = model.model_validate(tool_input or {})
        except ValidationError as exc:
            return ToolResult.error(f"Invalid input for {name}: {exc}")

        logger.debug("Running built-in %s", name)
        t0 = time.perf_counter()
        try:
            result = executor(params)
        except ToolExecutionError as exc:
            result = ToolResult.error(str(exc))
        result.text = self._truncate(result.text)
        result.duration_ms = int((time.perf_counter() - t0) * 1000)
        return result

    # ── Executors ─────────────────────────────────────────────────────────

    def _bash(self, params: BashInput) -> ToolResult:
        exit_code, output, failed = self.run_bash(params.command)
        return ToolResult(text=f"Exit code: {exit_code}\n{output}", is_error=failed)

    def _read_file(self, params: ReadFileInput) -> ToolResult:
        path = self._resolve(params.path)
        try:
            return ToolResult(text=path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError) as exc:
            raise ToolExecutionError(f"Error reading file: {exc}") from exc

    def _write_file(self, params: WriteFileInput) -> ToolResult:
        path = self._resolve(params.path)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(params.content, encoding="utf-8")
        except OSError as exc:
            raise ToolExecutionError(f"Error writing file: {exc}") from exc
        return ToolResult(text=f"Successfully wrote to {params.path}")

    def _list_files(self, params: ListFilesInput) -> ToolResult:
        flags = "-laR" if params.recursive else "-la"
        exit_code, output, failed = self.run_bash(f"ls {flags} {shlex.quote(params.path)}")
        return ToolResult(text=output, is_error=failed or exit_code != 0)

    # ── Helpers ───────────────────────────────────────────────────────────

    def run_bash(self, command: str) -> Tuple[int, str, bool]:
        """
        Run ``command`` under ``bash -c``.

        Returns ``(exit_code, output, failed)`` where ``failed`` is set only
        when the command could not run to completion at all.
        """
        try:
            proc = subprocess.run(
                ["bash", "-c", command],
                cwd=str(self.working_dir),
                capture_output=True,
                text=True,
                errors="replace",
                timeout=self.bash_timeout,
            )
        except subprocess.TimeoutExpired:
            return -1, f"Command timed out after {self.bash_timeout}s", True
        except OSError as exc:
            return -1, f"Error spawning process: {exc}", True

        output = proc.stdout
        if proc.stderr:
            output += f"\nSTDERR:\n{proc.stderr}"
        return proc.returncode, output or "(no output)", False

    def _resolve(self, path: str) -> Path:
        candidate = Path(path).expanduser()
        if not candidate.is_absolute():
            candidate = self.working_dir / candidate
        return candidate

    def _truncate(self, text: str) -> str:
        if len(text) <= self.max_output_chars:
            return text
        omitted = len(text) - self.max_output_chars
        return text[: self.max_output_chars] + f"\n... [{omitted} chars truncated]"
