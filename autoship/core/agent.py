"""
Autoship Agent - one autonomous run against the task queue.

Every run:
1. Resolve and launch the tool-provider process
2. Handshake over JSON-RPC and discover its tools
3. Merge them with the built-in tools
4. Drive the conversation loop until done or out of turns
5. Tear the tool-provider down, whatever happened
"""

import logging
import os
from pathlib import Path
from typing import Iterable, List, Mapping, Optional

from autoship.core.loop import ConversationLoop, LoopObserver, LoopResult
from autoship.core.transcript import TranscriptRecorder
from autoship.mcp.client import RpcClient, RpcClientError
from autoship.mcp.framing import TransportError
from autoship.mcp.setup import resolve_server_command
from autoship.mcp.supervisor import ProcessSupervisor, StartupError
from autoship.providers.base import Provider, ProviderFactory
from autoship.tools.builtins import BuiltinTools
from autoship.tools.registry import ToolRegistry
from autoship.validation.config import Config

logger = logging.getLogger(__name__)

DEFAULT_PROMPT = """You are an autonomous coding agent. Your job is to:

1. Use the mcp_list_pending_tasks tool to see available tasks
2. If there are pending tasks, pick the highest priority one
3. Use mcp_claim_task to mark it as in progress
4. Read the task description carefully and implement the requested changes
5. Create a new git branch with a descriptive name (e.g., 'agent/add-logout-button')
6. Make the necessary code changes
7. Commit your changes with a clear commit message
8. Use mcp_complete_task to mark the task as done, including the branch name
9. If you encounter an error you cannot resolve, use mcp_fail_task with a clear explanation
10. If you need clarification, use mcp_ask_question to ask and the task will be marked as needing info until answered

Important guidelines:
- Only work on ONE task per run
- Make minimal, focused changes
- Write clean, well-tested code
- If a task is unclear, use mcp_ask_question rather than guessing
- Check mcp_check_answered_questions if working on a previously blocked task

Start by listing the pending tasks."""


def missing_credentials(config: Config, environ: Optional[Mapping[str, str]] = None) -> List[str]:
    """Names of required environment variables that are unset or empty."""
    environ = os.environ if environ is None else environ
    provider_name, _ = ProviderFactory.parse(config.merged.agent.model)
    return [name for name in config.required_env(provider_name) if not environ.get(name)]


class AgentRunner:
    """
    Wires configuration, tool-provider, tools and model into one run.

    The caller validates credentials (see ``missing_credentials``) before
    calling ``run``. Startup failures raise ``StartupError``; model service
    failures raise ``ModelServiceError``. The child process is always
    closed on the way out.
    """

    def __init__(
        self,
        config: Config,
        provider: Optional[Provider] = None,
        workspace: Optional[Path] = None,
        observers: Iterable[LoopObserver] = (),
        record_transcript: bool = True,
    ):
        self.config = config
        self.workspace = Path(workspace) if workspace else Path.cwd()
        self.provider = provider or ProviderFactory.create(config.merged.agent.model, config)
        self.observers = list(observers)
        self.record_transcript = record_transcript
        self.supervisor: Optional[ProcessSupervisor] = None

    def run(self, prompt: Optional[str] = None) -> LoopResult:
        prompt = prompt or DEFAULT_PROMPT
        settings = self.config.merged

        supervisor = ProcessSupervisor(
            resolve_server_command(self.config, self.workspace),
            env=self.config.server_env(),
            cwd=str(self.workspace),
        )
        self.supervisor = supervisor
        try:
            client = RpcClient(supervisor.send, timeout=settings.server.request_timeout)
            supervisor.start(on_message=client.deliver)
            registry = self._connect(client)

            observers = list(self.observers)
            if self.record_transcript:
                try:
                    observers.append(TranscriptRecorder(
                        self.workspace / ".autoship",
                        prompt=prompt,
                        model=f"{self.provider.provider_name}/{self.provider.model}",
                    ))
                except OSError as exc:
                    logger.warning("Transcript disabled: %s", exc)

            loop = ConversationLoop(
                provider=self.provider,
                registry=registry,
                max_turns=settings.agent.max_turns,
                system_prompt=settings.agent.system_prompt,
                tool_concurrency=settings.agent.tool_concurrency,
                observers=observers,
            )
            return loop.run(prompt)
        finally:
            supervisor.close()

    def _connect(self, client: RpcClient) -> ToolRegistry:
        """Handshake and tool discovery; any failure here aborts the run."""
        settings = self.config.merged
        try:
            client.initialize(protocol_version=settings.server.protocol_version)
            remote_tools = client.list_tools()
        except (RpcClientError, TransportError) as exc:
            raise StartupError(f"Failed to connect to tool-provider: {exc}") from exc

        logger.info("Loaded %d MCP tools", len(remote_tools))

        working_dir = Path(settings.tools.working_dir) if settings.tools.working_dir else self.workspace
        builtins = BuiltinTools(
            working_dir=working_dir,
            bash_timeout=settings.tools.bash_timeout,
            max_output_chars=settings.tools.max_output_chars,
        )
        try:
            return ToolRegistry.build(builtins, remote_tools, client, prefix=settings.server.tool_prefix)
        except ValueError as exc:
            raise StartupError(str(exc)) from exc
