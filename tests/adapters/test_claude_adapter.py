"""Tests for the Claude Code metrics adapter."""

import json
from datetime import UTC, datetime

import pytest

from codemie_sync.adapters import (
    ClaudeMetricsAdapter,
    ConversationAdapter,
    MetricsAdapter,
    get_adapter,
    register_adapter,
)
from codemie_sync.adapters import ADAPTER_REGISTRY
from codemie_sync.adapters.claude import count_lines, encode_project_dir

pytestmark = pytest.mark.unit

AGENT_SESSION_ID = "7f3c9a2e-agent-session"
PROJECT_DIR = "/home/dev/projects/webapp"


@pytest.fixture
def adapter(claude_projects_dir):
    return ClaudeMetricsAdapter(projects_dir=claude_projects_dir)


@pytest.fixture
def log_path(claude_projects_dir):
    return claude_projects_dir / encode_project_dir(PROJECT_DIR) / f"{AGENT_SESSION_ID}.jsonl"


def tool_turn(uuid, tool_uses, timestamp="2025-01-15T10:10:00Z", model="claude-sonnet-4"):
    return {
        "type": "assistant",
        "uuid": uuid,
        "sessionId": AGENT_SESSION_ID,
        "timestamp": timestamp,
        "message": {
            "model": model,
            "content": [{"type": "tool_use", **use} for use in tool_uses],
            "usage": {"input_tokens": 10, "output_tokens": 1},
        },
    }


def tool_result(uuid, tool_use_id, is_error=False, content=None):
    block = {"type": "tool_result", "tool_use_id": tool_use_id, "is_error": is_error}
    if content is not None:
        block["content"] = content
    return {
        "type": "user",
        "uuid": uuid,
        "sessionId": AGENT_SESSION_ID,
        "timestamp": "2025-01-15T10:11:00Z",
        "message": {
            "role": "user",
            "content": [block],
        },
    }


class TestHelpers:
    def test_encode_project_dir(self):
        assert encode_project_dir("/home/dev/projects/webapp") == "-home-dev-projects-webapp"
        assert encode_project_dir("/home/dev/my_app.v2/") == "-home-dev-my-app-v2"

    @pytest.mark.parametrize("text,expected", [(None, 0), ("", 0), ("a", 1), ("a\nb\n", 2)])
    def test_count_lines(self, text, expected):
        assert count_lines(text) == expected


class TestRegistry:
    def test_claude_registered(self):
        adapter = get_adapter("claude")
        assert isinstance(adapter, ClaudeMetricsAdapter)
        assert isinstance(adapter, MetricsAdapter)
        assert isinstance(adapter, ConversationAdapter)

    def test_unknown_agent(self):
        assert get_adapter("nonexistent") is None

    def test_register_adapter(self):
        try:
            register_adapter("claude-alt", ClaudeMetricsAdapter)
            assert isinstance(get_adapter("claude-alt"), ClaudeMetricsAdapter)
        finally:
            ADAPTER_REGISTRY.pop("claude-alt", None)


class TestSessionDiscovery:
    def test_read_session_info(self, adapter, log_path, write_jsonl, claude_records):
        write_jsonl(log_path, claude_records())

        info = adapter.read_session_info(log_path)

        assert info.agent_session_id == AGENT_SESSION_ID
        assert info.working_directory == PROJECT_DIR
        assert info.start_time == datetime(2025, 1, 15, 10, 0, tzinfo=UTC)

    def test_read_session_info_without_header(self, adapter, temp_dir):
        path = temp_dir / "empty.jsonl"
        path.write_text("garbage\n")
        assert adapter.read_session_info(path) is None

    def test_list_session_files_excludes_sidechains(
        self, adapter, log_path, write_jsonl, claude_records
    ):
        write_jsonl(log_path, claude_records())
        write_jsonl(log_path.parent / "agent-123.jsonl", claude_records())
        write_jsonl(adapter.sessions_dir / "-other-project" / "x.jsonl", claude_records())

        assert adapter.list_session_files(PROJECT_DIR) == [log_path]
        assert len(adapter.list_session_files()) == 2

    def test_list_session_files_missing_dir(self, temp_dir):
        adapter = ClaudeMetricsAdapter(projects_dir=temp_dir / "nope")
        assert adapter.list_session_files(PROJECT_DIR) == []


class TestIncrementalMetrics:
    @pytest.mark.asyncio
    async def test_one_delta_per_assistant_turn(self, adapter, log_path, write_jsonl, claude_records):
        write_jsonl(log_path, claude_records(count=3))

        result = await adapter.parse_incremental_metrics(log_path, set())

        assert [d.record_id for d in result.deltas] == ["a-1", "a-2", "a-3"]
        assert result.new_processed_ids == {"a-1", "a-2", "a-3"}
        assert result.last_line == 4
        first = result.deltas[0]
        assert first.agent_session_id == AGENT_SESSION_ID
        assert first.tokens.input == 100
        assert first.tokens.output == 10
        assert first.tokens.cache_read == 5
        assert first.models == ["claude-sonnet-4"]
        assert first.git_branch == "main"
        assert first.user_prompts == ["Add a login form"]
        assert result.deltas[1].user_prompts is None
        assert result.attached_prompts == ["Add a login form"]

    @pytest.mark.asyncio
    async def test_parse_is_idempotent(self, adapter, log_path, write_jsonl, claude_records):
        write_jsonl(log_path, claude_records(count=3))
        first = await adapter.parse_incremental_metrics(log_path, set())

        second = await adapter.parse_incremental_metrics(
            log_path, first.new_processed_ids, first.attached_prompts
        )

        assert second.deltas == []
        assert second.new_processed_ids == set()

    @pytest.mark.asyncio
    async def test_only_new_turns_after_growth(self, adapter, log_path, write_jsonl, claude_records):
        records = claude_records(count=5)
        write_jsonl(log_path, records[:3])
        first = await adapter.parse_incremental_metrics(log_path, set())

        write_jsonl(log_path, records)
        second = await adapter.parse_incremental_metrics(
            log_path, first.new_processed_ids, first.attached_prompts
        )

        assert [d.record_id for d in second.deltas] == ["a-3", "a-4", "a-5"]
        assert all(d.user_prompts is None for d in second.deltas)

    @pytest.mark.asyncio
    async def test_partial_trailing_line_picked_up_later(
        self, adapter, log_path, write_jsonl, claude_records
    ):
        records = claude_records(count=2)
        write_jsonl(log_path, records[:2])
        with open(log_path, "a", encoding="utf-8") as f:
            f.write(json.dumps(records[2])[:40])

        first = await adapter.parse_incremental_metrics(log_path, set())
        assert [d.record_id for d in first.deltas] == ["a-1"]

        write_jsonl(log_path, records)
        second = await adapter.parse_incremental_metrics(log_path, first.new_processed_ids)
        assert [d.record_id for d in second.deltas] == ["a-2"]

    @pytest.mark.asyncio
    async def test_tool_calls_and_file_operations(self, adapter, log_path, write_jsonl, claude_records):
        records = claude_records(count=0)
        records.append(
            tool_turn(
                "t-1",
                [
                    {"id": "tu-w", "name": "Write", "input": {"file_path": "/p/app.py", "content": "a\nb\n"}},
                    {
                        "id": "tu-e",
                        "name": "Edit",
                        "input": {"file_path": "/p/ui.tsx", "old_string": "a", "new_string": "a\nb\nc"},
                    },
                    {"id": "tu-r", "name": "Read", "input": {"file_path": "/p/README.md"}},
                    {"id": "tu-b", "name": "Bash", "input": {"command": "pytest"}},
                ],
            )
        )
        records.append(tool_result("u-2", "tu-b", is_error=True))
        write_jsonl(log_path, records)

        [delta] = (await adapter.parse_incremental_metrics(log_path, set())).deltas

        assert delta.tools == {"Write": 1, "Edit": 1, "Read": 1, "Bash": 1}
        assert delta.tool_status["Bash"].failure == 1
        assert delta.tool_status["Write"].success == 1
        ops = {op.type: op for op in delta.file_operations}
        assert len(delta.file_operations) == 3
        assert ops["write"].lines_added == 2
        assert ops["write"].language == "python"
        assert ops["edit"].lines_added == 2
        assert ops["edit"].format == "tsx"
        assert ops["read"].language == "markdown"

    @pytest.mark.asyncio
    async def test_synthetic_model_excluded(self, adapter, log_path, write_jsonl, claude_records):
        records = claude_records(count=0)
        records.append(tool_turn("t-1", [], model="<synthetic>"))
        write_jsonl(log_path, records)

        [delta] = (await adapter.parse_incremental_metrics(log_path, set())).deltas

        assert delta.models == []

    @pytest.mark.asyncio
    async def test_api_error_message(self, adapter, log_path, write_jsonl, claude_records):
        records = claude_records(count=1)
        records[1]["isApiErrorMessage"] = True
        records[1]["message"]["content"] = [{"type": "text", "text": "API Error: 529 Overloaded"}]
        write_jsonl(log_path, records)

        [delta] = (await adapter.parse_incremental_metrics(log_path, set())).deltas

        assert delta.api_error_message == "API Error: 529 Overloaded"

    @pytest.mark.asyncio
    async def test_sidechain_turns_use_main_session_id(
        self, adapter, log_path, write_jsonl, claude_records
    ):
        write_jsonl(log_path, claude_records(count=1))
        sidechain = claude_records(count=1)
        for record in sidechain:
            record["isSidechain"] = True
            record["uuid"] = f"side-{record['uuid']}"
        write_jsonl(log_path.parent / "agent-42.jsonl", sidechain)

        result = await adapter.parse_incremental_metrics(log_path, set())

        assert [d.record_id for d in result.deltas] == ["a-1", "side-a-1"]
        assert {d.agent_session_id for d in result.deltas} == {AGENT_SESSION_ID}
        assert result.deltas[1].user_prompts is None

    @pytest.mark.asyncio
    async def test_prompts_already_attached_are_not_repeated(
        self, adapter, log_path, write_jsonl, claude_records
    ):
        write_jsonl(log_path, claude_records(count=1))

        result = await adapter.parse_incremental_metrics(
            log_path, set(), attached_prompts=["Add a login form"]
        )

        assert result.deltas[0].user_prompts is None

    @pytest.mark.asyncio
    async def test_wrong_shape_records_are_skipped(
        self, adapter, log_path, write_jsonl, claude_records
    ):
        records = claude_records(count=2)
        records.insert(2, {"type": "user", "uuid": "u-bad", "message": "not-a-dict"})
        records.insert(3, {"type": "assistant", "uuid": ["a-list"], "message": {"usage": {}}})
        records.insert(4, {"type": "user", "uuid": "u-odd", "message": {"content": 42}})
        records.append(
            {
                "type": "assistant",
                "uuid": "a-odd",
                "message": {"content": "plain", "usage": "n/a"},
            }
        )
        write_jsonl(log_path, records)

        result = await adapter.parse_incremental_metrics(log_path, set())

        assert [d.record_id for d in result.deltas] == ["a-1", "a-2", "a-odd"]
        assert result.deltas[2].tokens.input == 0
        assert result.deltas[0].user_prompts == ["Add a login form"]

    @pytest.mark.asyncio
    async def test_failed_tool_results_are_kept_per_tool(
        self, adapter, log_path, write_jsonl, claude_records
    ):
        records = claude_records(count=0)
        records.append(
            tool_turn(
                "t-1",
                [
                    {"id": "tu-b", "name": "Bash", "input": {"command": "pytest"}},
                    {"id": "tu-e", "name": "Edit", "input": {"file_path": "/p/a.py"}},
                    {"id": "tu-r", "name": "Read", "input": {"file_path": "/p/b.py"}},
                ],
            )
        )
        records.append(tool_result("u-2", "tu-b", is_error=True, content="exit code 1"))
        records.append(
            tool_result(
                "u-3",
                "tu-e",
                is_error=True,
                content=[{"type": "text", "text": "String to replace not found"}],
            )
        )
        records.append(tool_result("u-4", "tu-r", content="file body"))
        write_jsonl(log_path, records)

        [delta] = (await adapter.parse_incremental_metrics(log_path, set())).deltas

        assert delta.tool_errors == {
            "Bash": ["exit code 1"],
            "Edit": ["String to replace not found"],
        }
        assert delta.tool_status["Read"].success == 1
        assert delta.tool_status["Edit"].failure == 1


class TestConversation:
    def test_parse_conversation(self, adapter, log_path, write_jsonl, claude_records):
        records = claude_records(count=2)
        records.append(tool_result("u-2", "tu-x"))
        records.append(
            {
                "type": "user",
                "uuid": "u-3",
                "timestamp": "2025-01-15T10:20:00Z",
                "message": {"role": "user", "content": "<command-name>/clear</command-name>"},
            }
        )
        write_jsonl(log_path, records)

        messages = adapter.parse_conversation(log_path)

        assert [(m.uuid, m.role) for m in messages] == [
            ("u-1", "user"),
            ("a-1", "assistant"),
            ("a-2", "assistant"),
        ]
        assert messages[1].content == "Step 1 done"
        assert messages[1].model == "claude-sonnet-4"

    def test_wrong_shape_message_skipped(self, adapter, log_path, write_jsonl, claude_records):
        records = claude_records(count=1)
        records.append({"type": "assistant", "uuid": "a-bad", "message": ["text"]})
        write_jsonl(log_path, records)

        messages = adapter.parse_conversation(log_path)

        assert [m.uuid for m in messages] == ["u-1", "a-1"]

    def test_missing_file(self, adapter, temp_dir):
        assert adapter.parse_conversation(temp_dir / "missing.jsonl") == []
