"""
Autoship Conversation Loop - turn-bounded tool-use conversation.

Each turn sends the full history and the merged tool set to the model,
appends the assistant's blocks, runs any requested tools, and appends one
user message holding every result. The loop ends when the model stops
asking for tools, or when the turn budget runs out.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, List, Optional

from autoship.providers.base import END_TURN, ModelResponse, Provider
from autoship.providers.messages import Message, ToolInvocationBlock, ToolResultBlock
from autoship.tools.registry import ToolRegistry
from autoship.tools.schema import ToolResult

logger = logging.getLogger(__name__)

DEFAULT_MAX_TURNS = 50


class ModelServiceError(Exception):
    """The model service could not produce a response."""


class LoopState(str, Enum):
    AWAITING_MODEL = "awaiting_model"
    MODEL_RESPONDED = "model_responded"
    EXECUTING_TOOLS = "executing_tools"
    DONE = "done"


class LoopStatus(str, Enum):
    COMPLETED = "completed"
    MAX_TURNS_REACHED = "max_turns_reached"


@dataclass
class LoopResult:
    """Final result of a conversation loop run."""

    status: LoopStatus
    turns: int
    messages: List[Message]
    final_text: str = ""
    token_usage: int = 0
    tool_calls: int = 0

    @property
    def completed(self) -> bool:
        return self.status is LoopStatus.COMPLETED


class LoopObserver:
    """Hooks for progress reporting. Every method is a no-op by default."""

    def on_turn_start(self, turn: int, max_turns: int) -> None:
        pass

    def on_model_response(self, turn: int, response: ModelResponse, messages: List[Message]) -> None:
        pass

    def on_tool_call(self, invocation: ToolInvocationBlock) -> None:
        pass

    def on_tool_result(self, invocation: ToolInvocationBlock, result: ToolResult) -> None:
        pass

    def on_turn_end(self, turn: int, messages: List[Message]) -> None:
        pass

    def on_finish(self, result: LoopResult) -> None:
        pass


@dataclass
class _RunState:
    messages: List[Message]
    turns: int = 0
    token_usage: int = 0
    tool_calls: int = 0
    response: Optional[ModelResponse] = None


class ConversationLoop:
    """
    State machine over one agent conversation.

    AWAITING_MODEL -> MODEL_RESPONDED -> (DONE | EXECUTING_TOOLS -> AWAITING_MODEL)

    The turn counter goes up once per model call. A response without tool
    invocations is treated as completion no matter what its stop reason
    says; a response with invocations is executed even if it claims
    ``end_turn``.
    """

    def __init__(
        self,
        provider: Provider,
        registry: ToolRegistry,
        max_turns: int = DEFAULT_MAX_TURNS,
        system_prompt: Optional[str] = None,
        tool_concurrency: int = 1,
        observers: Iterable[LoopObserver] = (),
    ):
        if max_turns < 1:
            raise ValueError("max_turns must be at least 1")
        self.provider = provider
        self.registry = registry
        self.max_turns = max_turns
        self.system_prompt = system_prompt
        self.tool_concurrency = max(1, tool_concurrency)
        self.observers = list(observers)

    def run(self, instruction: str) -> LoopResult:
        """Drive the conversation seeded by ``instruction`` to completion."""
        run = _RunState(messages=[Message.user_text(instruction)])
        state = LoopState.AWAITING_MODEL

        while True:
            if state is LoopState.AWAITING_MODEL:
                self._notify("on_turn_start", run.turns + 1, self.max_turns)
                run.response = self._call_model(run.messages)
                run.turns += 1
                run.token_usage += run.response.token_usage
                run.messages.append(Message(role="assistant", content=list(run.response.content)))
                self._notify("on_model_response", run.turns, run.response, run.messages)
                state = LoopState.MODEL_RESPONDED

            elif state is LoopState.MODEL_RESPONDED:
                state = self._after_response(run)
                if state is None:
                    logger.warning("Max turns reached (%d), stopping agent", self.max_turns)
                    return self._finish(run, LoopStatus.MAX_TURNS_REACHED)

            elif state is LoopState.EXECUTING_TOOLS:
                results = self._execute(run.response.tool_invocations)
                run.tool_calls += len(results)
                run.messages.append(Message(role="user", content=results))
                self._notify("on_turn_end", run.turns, run.messages)
                state = LoopState.AWAITING_MODEL

            else:
                self._notify("on_turn_end", run.turns, run.messages)
                return self._finish(run, LoopStatus.COMPLETED)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _after_response(self, run: _RunState) -> Optional[LoopState]:
        """Pick the next state; ``None`` means the turn budget is spent."""
        response = run.response
        invocations = response.tool_invocations

        if not invocations:
            if response.stop_reason not in (None, END_TURN):
                logger.debug("No tool invocations with stop reason %r; treating as done", response.stop_reason)
            return LoopState.DONE

        if response.stop_reason == END_TURN:
            logger.warning(
                "Model reported end_turn alongside %d tool invocation(s); executing them",
                len(invocations),
            )

        if run.turns >= self.max_turns:
            return None
        return LoopState.EXECUTING_TOOLS

    def _call_model(self, messages: List[Message]) -> ModelResponse:
        try:
            return self.provider.complete(
                messages=messages,
                tools=self.registry.definitions(),
                system=self.system_prompt,
            )
        except Exception as exc:
            raise ModelServiceError(f"Model call failed: {exc}") from exc

    def _execute(self, invocations: List[ToolInvocationBlock]) -> List[ToolResultBlock]:
        """Run every invocation; results keep the invocation order."""
        for invocation in invocations:
            self._notify("on_tool_call", invocation)

        if self.tool_concurrency > 1 and len(invocations) > 1:
            workers = min(self.tool_concurrency, len(invocations))
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="tool") as pool:
                results = list(pool.map(self._run_one, invocations))
        else:
            results = [self._run_one(invocation) for invocation in invocations]

        blocks = []
        for invocation, result in zip(invocations, results):
            self._notify("on_tool_result", invocation, result)
            blocks.append(ToolResultBlock(
                tool_use_id=invocation.id,
                content=result.text,
                is_error=result.is_error,
            ))
        return blocks

    def _run_one(self, invocation: ToolInvocationBlock) -> ToolResult:
        logger.info("Tool: %s", invocation.name)
        return self.registry.dispatch(invocation.name, invocation.input)

    def _finish(self, run: _RunState, status: LoopStatus) -> LoopResult:
        result = LoopResult(
            status=status,
            turns=run.turns,
            messages=run.messages,
            final_text=run.response.text if run.response else "",
            token_usage=run.token_usage,
            tool_calls=run.tool_calls,
        )
        self._notify("on_finish", result)
        return result

    def _notify(self, hook: str, *args) -> None:
        for observer in self.observers:
            try:
                getattr(observer, hook)(*args)
            except Exception:
                logger.exception("Observer %s.%s failed", type(observer).__name__, hook)
