"""Tests for the turn-bounded conversation loop."""

import threading
import time
from unittest.mock import MagicMock

import pytest

from autoship.core.loop import ConversationLoop, LoopObserver, LoopStatus, ModelServiceError
from autoship.providers.messages import TextBlock, ToolInvocationBlock, ToolResultBlock
from autoship.tools.builtins import BuiltinTools
from autoship.tools.registry import ToolRegistry
from autoship.tools.schema import ToolResult

from conftest import ScriptedProvider, text_response, tool_response


@pytest.fixture
def registry(tmp_path):
    return ToolRegistry.build(BuiltinTools(working_dir=tmp_path))


class RecordingObserver(LoopObserver):
    def __init__(self):
        self.events = []

    def on_turn_start(self, turn, max_turns):
        self.events.append(("turn_start", turn))

    def on_tool_call(self, invocation):
        self.events.append(("tool_call", invocation.id))

    def on_tool_result(self, invocation, result):
        self.events.append(("tool_result", invocation.id))

    def on_finish(self, result):
        self.events.append(("finish", result.status))


class TestCompletion:
    def test_plain_answer(self, registry):
        provider = ScriptedProvider([text_response("No pending tasks.")])
        result = ConversationLoop(provider, registry).run("Start")

        assert result.status is LoopStatus.COMPLETED
        assert result.completed
        assert result.turns == 1
        assert result.final_text == "No pending tasks."
        assert [m.role for m in result.messages] == ["user", "assistant"]

    def test_one_tool_round(self, registry):
        provider = ScriptedProvider([
            tool_response(("t1", "bash", {"command": "echo hi"})),
            text_response("Done."),
        ])
        result = ConversationLoop(provider, registry).run("Start")

        assert result.status is LoopStatus.COMPLETED
        assert result.turns == 2
        assert result.tool_calls == 1
        assert [m.role for m in result.messages] == ["user", "assistant", "user", "assistant"]

        tool_message = result.messages[2]
        assert tool_message.content == [
            ToolResultBlock(tool_use_id="t1", content="Exit code: 0\nhi\n", is_error=False)
        ]
        # second model call saw the tool result
        assert provider.calls[1]["messages"][-1] == tool_message

    def test_missing_tools_means_done_whatever_the_stop_reason(self, registry):
        provider = ScriptedProvider([text_response("cut off", stop_reason="max_tokens")])
        result = ConversationLoop(provider, registry).run("Start")
        assert result.status is LoopStatus.COMPLETED

    def test_end_turn_with_invocations_still_executes(self, registry, caplog):
        provider = ScriptedProvider([
            tool_response(("t1", "bash", {"command": "echo odd"}), stop_reason="end_turn"),
            text_response("Done."),
        ])
        result = ConversationLoop(provider, registry).run("Start")

        assert result.turns == 2
        assert result.tool_calls == 1
        assert any("end_turn" in r.getMessage() for r in caplog.records)

    def test_tools_and_system_prompt_sent(self, registry):
        provider = ScriptedProvider([text_response("ok")])
        ConversationLoop(provider, registry, system_prompt="Be brief.").run("Start")

        call = provider.calls[0]
        assert call["system"] == "Be brief."
        assert [t["name"] for t in call["tools"]] == ["bash", "read_file", "write_file", "list_files"]


class TestTurnBudget:
    def test_stops_at_max_turns(self, registry):
        provider = ScriptedProvider([
            tool_response((f"t{i}", "bash", {"command": "true"})) for i in range(5)
        ])
        result = ConversationLoop(provider, registry, max_turns=3).run("Start")

        assert result.status is LoopStatus.MAX_TURNS_REACHED
        assert not result.completed
        assert result.turns == 3
        assert len(provider.calls) == 3
        # the third turn's invocations are not executed
        assert result.tool_calls == 2
        assert result.messages[-1].role == "assistant"

    def test_single_turn_budget(self, registry):
        provider = ScriptedProvider([tool_response(("t1", "bash", {"command": "true"}))])
        result = ConversationLoop(provider, registry, max_turns=1).run("Start")

        assert result.status is LoopStatus.MAX_TURNS_REACHED
        assert result.turns == 1
        assert result.tool_calls == 0

    def test_answer_on_last_turn_completes(self, registry):
        provider = ScriptedProvider([
            tool_response(("t1", "bash", {"command": "true"})),
            text_response("Done."),
        ])
        result = ConversationLoop(provider, registry, max_turns=2).run("Start")
        assert result.status is LoopStatus.COMPLETED

    def test_invalid_budget(self, registry):
        with pytest.raises(ValueError):
            ConversationLoop(ScriptedProvider([]), registry, max_turns=0)

    def test_token_usage_summed(self, registry):
        provider = ScriptedProvider([
            tool_response(("t1", "bash", {"command": "true"})),
            text_response("Done."),
        ])
        result = ConversationLoop(provider, registry).run("Start")
        assert result.token_usage == 20


class TestToolResults:
    def test_one_result_per_invocation_in_order(self, registry):
        provider = ScriptedProvider([
            tool_response(
                ("a", "bash", {"command": "echo one"}),
                ("b", "no_such_tool", {}),
                ("c", "bash", {"command": "echo three"}),
                text="Running three tools",
            ),
            text_response("Done."),
        ])
        result = ConversationLoop(provider, registry).run("Start")

        blocks = result.messages[2].content
        assert [b.tool_use_id for b in blocks] == ["a", "b", "c"]
        assert blocks[1].is_error is True
        assert blocks[1].content == "Unknown tool: no_such_tool"
        assert blocks[2].content == "Exit code: 0\nthree\n"

    def test_concurrent_execution_keeps_order(self):
        registry = MagicMock()
        registry.definitions.return_value = []
        running = []
        peak = []
        lock = threading.Lock()

        def dispatch(name, tool_input):
            with lock:
                running.append(name)
                peak.append(len(running))
            time.sleep(0.1 if name == "slow" else 0.01)
            with lock:
                running.remove(name)
            return ToolResult(text=name)

        registry.dispatch.side_effect = dispatch
        provider = ScriptedProvider([
            tool_response(("1", "slow", {}), ("2", "fast", {}), ("3", "fast2", {})),
            text_response("Done."),
        ])

        result = ConversationLoop(provider, registry, tool_concurrency=3).run("Start")

        assert [b.content for b in result.messages[2].content] == ["slow", "fast", "fast2"]
        assert max(peak) > 1

    def test_observer_sees_calls_and_results(self, registry):
        observer = RecordingObserver()
        provider = ScriptedProvider([
            tool_response(("a", "bash", {"command": "true"}), ("b", "bash", {"command": "true"})),
            text_response("Done."),
        ])
        ConversationLoop(provider, registry, observers=[observer]).run("Start")

        assert observer.events == [
            ("turn_start", 1),
            ("tool_call", "a"),
            ("tool_call", "b"),
            ("tool_result", "a"),
            ("tool_result", "b"),
            ("turn_start", 2),
            ("finish", LoopStatus.COMPLETED),
        ]

    def test_failing_observer_does_not_stop_loop(self, registry):
        observer = MagicMock(spec=LoopObserver)
        observer.on_turn_start.side_effect = RuntimeError("display broke")
        provider = ScriptedProvider([text_response("ok")])

        result = ConversationLoop(provider, registry, observers=[observer]).run("Start")

        assert result.completed
        observer.on_finish.assert_called_once()


class TestModelFailure:
    def test_model_error_is_wrapped(self, registry):
        provider = ScriptedProvider([ConnectionError("service unavailable")])
        with pytest.raises(ModelServiceError) as exc_info:
            ConversationLoop(provider, registry).run("Start")
        assert "service unavailable" in str(exc_info.value)

    def test_failure_after_tools(self, registry):
        provider = ScriptedProvider([
            tool_response(("t1", "bash", {"command": "true"})),
            RuntimeError("rate limited"),
        ])
        with pytest.raises(ModelServiceError):
            ConversationLoop(provider, registry).run("Start")


def test_history_alternates_roles(registry):
    provider = ScriptedProvider([
        tool_response(("t1", "bash", {"command": "true"})),
        tool_response(("t2", "read_file", {"path": "missing"})),
        text_response("Done."),
    ])
    result = ConversationLoop(provider, registry).run("Start")

    roles = [m.role for m in result.messages]
    assert roles == ["user", "assistant", "user", "assistant", "user", "assistant"]
    assert isinstance(result.messages[0].content[0], TextBlock)
    for assistant, answer in zip(result.messages[1::2], result.messages[2::2]):
        ids = [b.id for b in assistant.content if isinstance(b, ToolInvocationBlock)]
        assert [b.tool_use_id for b in answer.content] == ids
