"""End-to-end runs against the fake stdio tool-provider."""

import pytest

from autoship.core.agent import DEFAULT_PROMPT, AgentRunner, missing_credentials
from autoship.core.loop import LoopStatus, ModelServiceError
from autoship.mcp.supervisor import StartupError
from autoship.validation.config import Config

from conftest import ScriptedProvider, text_response, tool_response


def _runner(config, provider, tmp_path, **kwargs):
    return AgentRunner(config, provider=provider, workspace=tmp_path, **kwargs)


class TestRun:
    def test_remote_tool_round_trip(self, config_for, tmp_path):
        provider = ScriptedProvider([
            tool_response(("t1", "mcp_list_pending_tasks", {})),
            text_response("No pending tasks."),
        ])
        runner = _runner(config_for(), provider, tmp_path, record_transcript=False)

        result = runner.run()

        assert result.status is LoopStatus.COMPLETED
        assert result.turns == 2
        answer = result.messages[2].content[0]
        assert answer.tool_use_id == "t1"
        assert answer.content == "[]"
        assert answer.is_error is False
        assert not runner.supervisor.is_running

    def test_default_prompt_and_merged_tools(self, config_for, tmp_path):
        provider = ScriptedProvider([text_response("ok")])
        _runner(config_for(), provider, tmp_path, record_transcript=False).run()

        first = provider.calls[0]
        assert first["messages"][0].text == DEFAULT_PROMPT
        assert [t["name"] for t in first["tools"]] == [
            "bash", "read_file", "write_file", "list_files",
            "mcp_list_pending_tasks", "mcp_echo", "mcp_fail_task",
        ]

    def test_mixed_builtin_and_remote(self, config_for, tmp_path):
        provider = ScriptedProvider([
            tool_response(
                ("a", "write_file", {"path": "notes.txt", "content": "hi"}),
                ("b", "mcp_echo", {"message": "claimed"}),
                ("c", "mcp_fail_task", {}),
            ),
            text_response("Done."),
        ])
        result = _runner(config_for(), provider, tmp_path, record_transcript=False).run("Work")

        blocks = result.messages[2].content
        assert [b.tool_use_id for b in blocks] == ["a", "b", "c"]
        assert blocks[0].content == "Successfully wrote to notes.txt"
        assert blocks[1].content == "claimed"
        assert blocks[2].is_error is True
        assert blocks[2].content == "task storage unavailable"
        assert (tmp_path / "notes.txt").read_text() == "hi"

    def test_unanswered_remote_call_becomes_error_result(self, config_for, tmp_path):
        provider = ScriptedProvider([
            tool_response(("t1", "mcp_echo", {"message": "hello"})),
            text_response("Gave up."),
        ])
        config = config_for("silent-call", request_timeout=1.0)

        result = _runner(config, provider, tmp_path, record_transcript=False).run("Work")

        answer = result.messages[2].content[0]
        assert answer.is_error is True
        assert answer.content.startswith("MCP tool error:")
        assert "timed out" in answer.content
        assert result.completed

    def test_max_turns(self, config_for, tmp_path):
        provider = ScriptedProvider([
            tool_response((f"t{i}", "mcp_echo", {"message": str(i)})) for i in range(3)
        ])
        config = config_for(agent={"max_turns": 2})

        result = _runner(config, provider, tmp_path, record_transcript=False).run("Loop")

        assert result.status is LoopStatus.MAX_TURNS_REACHED
        assert result.turns == 2

    def test_transcript_written(self, config_for, tmp_path):
        provider = ScriptedProvider([text_response("ok")])
        _runner(config_for(), provider, tmp_path).run("Work")

        runs = list((tmp_path / ".autoship" / "runs").glob("*.yaml"))
        assert len(runs) == 1

    def test_unwritable_transcript_dir_does_not_abort(self, config_for, tmp_path, caplog):
        (tmp_path / ".autoship").write_text("not a directory")
        provider = ScriptedProvider([text_response("ok")])

        result = _runner(config_for(), provider, tmp_path).run("Work")

        assert result.completed
        assert any("Transcript disabled" in r.getMessage() for r in caplog.records)


class TestFailures:
    def test_spawn_failure(self, tmp_path):
        config = Config(overrides={"server": {"command": ["/nonexistent/server"], "credentials": []}})
        provider = ScriptedProvider([])

        with pytest.raises(StartupError):
            _runner(config, provider, tmp_path, record_transcript=False).run()
        assert provider.calls == []

    def test_server_that_never_answers(self, tmp_path):
        config = Config(overrides={"server": {
            "command": ["bash", "-c", "cat > /dev/null"],
            "credentials": [],
            "request_timeout": 0.5,
        }})
        runner = _runner(config, ScriptedProvider([]), tmp_path, record_transcript=False)

        with pytest.raises(StartupError):
            runner.run()
        assert not runner.supervisor.is_running

    def test_model_failure_still_tears_down(self, config_for, tmp_path):
        runner = _runner(config_for(), ScriptedProvider([RuntimeError("503")]), tmp_path, record_transcript=False)

        with pytest.raises(ModelServiceError):
            runner.run()
        assert not runner.supervisor.is_running


class TestCredentials:
    def test_missing(self):
        config = Config(overrides={"agent": {"model": "claude-sonnet-4-20250514"}})
        missing = missing_credentials(config, environ={"SUPABASE_URL": "https://x.supabase.co"})
        assert missing == ["ANTHROPIC_API_KEY", "SUPABASE_SERVICE_KEY"]

    def test_empty_value_counts_as_missing(self):
        config = Config(overrides={"server": {"credentials": ["SUPABASE_URL"]}})
        missing = missing_credentials(config, environ={"ANTHROPIC_API_KEY": "k", "SUPABASE_URL": ""})
        assert missing == ["SUPABASE_URL"]

    def test_all_present(self):
        config = Config()
        environ = {"ANTHROPIC_API_KEY": "k", "SUPABASE_URL": "u", "SUPABASE_SERVICE_KEY": "s"}
        assert missing_credentials(config, environ=environ) == []

    def test_provider_key_follows_model(self):
        config = Config(overrides={"agent": {"model": "openrouter/meta-llama/llama-3-70b"}, "server": {"credentials": []}})
        assert missing_credentials(config, environ={}) == ["OPENROUTER_API_KEY"]
