"""
Claude Code metrics adapter.

Claude Code writes one JSONL log per session under
``~/.claude/projects/{encoded cwd}/{session uuid}.jsonl``. Sub-agent
(sidechain) turns go to ``agent-*.jsonl`` files in the same directory and
carry the parent ``sessionId``.

Record shapes used here:
- {"type": "user", "uuid", "sessionId", "cwd", "gitBranch", "timestamp",
   "message": {"role": "user", "content": str | [blocks]}}
- {"type": "assistant", "uuid", "sessionId", "timestamp", "gitBranch",
   "message": {"id", "model", "content": [blocks], "usage": {...}}}

Every assistant record that carries usage becomes one delta keyed by the
record's ``uuid``.
"""

from __future__ import annotations

import json
import logging
import re
from datetime import datetime
from pathlib import Path
from typing import Any

import aiofiles

from codemie_sync.adapters.base import (
    AgentSessionInfo,
    ConversationMessage,
    IncrementalResult,
)
from codemie_sync.metrics.models import FileOperation, MetricDelta, TokenUsage, ToolStatus

logger = logging.getLogger(__name__)

SIDECHAIN_PREFIX = "agent-"
SYNTHETIC_MODEL = "<synthetic>"
HEADER_SCAN_LINES = 50

# Tool name -> file operation type
FILE_TOOLS: dict[str, str] = {
    "Read": "read",
    "Write": "write",
    "Edit": "edit",
    "MultiEdit": "edit",
    "NotebookEdit": "edit",
}

EXTENSION_LANGUAGES: dict[str, str] = {
    "py": "python",
    "js": "javascript",
    "jsx": "javascript",
    "mjs": "javascript",
    "ts": "typescript",
    "tsx": "typescript",
    "md": "markdown",
    "json": "json",
    "yaml": "yaml",
    "yml": "yaml",
    "toml": "toml",
    "html": "html",
    "css": "css",
    "sh": "shell",
    "bash": "shell",
    "go": "go",
    "rs": "rust",
    "java": "java",
    "kt": "kotlin",
    "rb": "ruby",
    "php": "php",
    "c": "c",
    "h": "c",
    "cpp": "cpp",
    "cs": "csharp",
    "swift": "swift",
    "sql": "sql",
    "ipynb": "jupyter",
}

# Prompts injected by the CLI itself rather than typed by the user
_COMMAND_PROMPT_RE = re.compile(r"^\s*<(command-|local-command-|system-reminder)")


def encode_project_dir(working_directory: str) -> str:
    """Claude's project directory name for a working directory."""
    return re.sub(r"[^A-Za-z0-9-]", "-", working_directory.rstrip("/") or "/")


def count_lines(text: str | None) -> int:
    if not text or not isinstance(text, str):
        return 0
    return text.count("\n") + (0 if text.endswith("\n") else 1)


def _join_text(blocks: list[Any]) -> str:
    """Join the text of ``text`` content blocks, ignoring anything else."""
    texts = []
    for block in blocks:
        if not isinstance(block, dict) or block.get("type") != "text":
            continue
        text = block.get("text")
        if isinstance(text, str) and text:
            texts.append(text)
    return "\n".join(texts)


def _str_or_none(value: Any) -> str | None:
    return value if isinstance(value, str) and value else None


def _tool_result_text(content: Any) -> str:
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        return _join_text(content)
    return ""


def parse_timestamp(value: Any) -> datetime | None:
    if not isinstance(value, str) or not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def _file_operation(tool_name: str, tool_input: dict[str, Any]) -> FileOperation | None:
    op_type = FILE_TOOLS.get(tool_name)
    path = tool_input.get("file_path") or tool_input.get("notebook_path")
    if op_type is None or not isinstance(path, str):
        return None

    ext = Path(path).suffix.lstrip(".").lower() or None
    op = FileOperation(
        type=op_type,  # type: ignore[arg-type]
        path=path,
        format=ext,
        language=EXTENSION_LANGUAGES.get(ext) if ext else None,
    )

    if tool_name == "Write":
        op.lines_added = count_lines(tool_input.get("content")) or None
    elif tool_name in ("Edit", "MultiEdit"):
        edits = tool_input.get("edits") if tool_name == "MultiEdit" else [tool_input]
        added = removed = 0
        for edit in edits or []:
            if not isinstance(edit, dict):
                continue
            diff = count_lines(edit.get("new_string")) - count_lines(edit.get("old_string"))
            if diff > 0:
                added += diff
            else:
                removed -= diff
        op.lines_added = added or None
        op.lines_removed = removed or None
    return op


class ClaudeMetricsAdapter:
    """Parses Claude Code session logs into metric deltas."""

    agent_name = "claude"

    def __init__(self, projects_dir: Path | None = None):
        """
        Initialize ClaudeMetricsAdapter.

        Args:
            projects_dir: Claude projects directory (default: ~/.claude/projects)
        """
        self._projects_dir = projects_dir or Path.home() / ".claude" / "projects"

    @property
    def sessions_dir(self) -> Path:
        return self._projects_dir

    def list_session_files(self, working_directory: str | None = None) -> list[Path]:
        if not self._projects_dir.exists():
            return []

        if working_directory:
            project_dir = self._projects_dir / encode_project_dir(working_directory)
            dirs = [project_dir] if project_dir.is_dir() else []
        else:
            dirs = [d for d in self._projects_dir.iterdir() if d.is_dir()]

        files: list[Path] = []
        for directory in dirs:
            files.extend(
                p for p in directory.glob("*.jsonl") if not p.name.startswith(SIDECHAIN_PREFIX)
            )
        return sorted(files)

    def read_session_info(self, path: Path) -> AgentSessionInfo | None:
        session_id: str | None = None
        start_time: datetime | None = None
        cwd: str | None = None

        try:
            with open(path, encoding="utf-8") as f:
                for index, line in enumerate(f):
                    if index >= HEADER_SCAN_LINES:
                        break
                    record = self._parse_line(line, index + 1, path)
                    if record is None:
                        continue
                    session_id = session_id or _str_or_none(record.get("sessionId"))
                    start_time = start_time or parse_timestamp(record.get("timestamp"))
                    cwd = cwd or _str_or_none(record.get("cwd"))
                    if session_id and start_time and cwd:
                        break
        except OSError as e:
            logger.warning(f"Cannot read Claude session file {path}: {e}")
            return None

        if start_time is None and cwd is None:
            return None

        return AgentSessionInfo(
            agent_session_id=session_id or path.stem,
            file_path=path,
            start_time=start_time,
            working_directory=cwd,
        )

    def related_session_files(self, path: Path) -> list[Path]:
        info = self.read_session_info(path)
        main_id = info.agent_session_id if info else path.stem

        related: list[Path] = []
        for candidate in sorted(path.parent.glob(f"{SIDECHAIN_PREFIX}*.jsonl")):
            candidate_info = self.read_session_info(candidate)
            if candidate_info and candidate_info.agent_session_id == main_id:
                related.append(candidate)
        return related

    def _parse_line(self, line: str, line_num: int, path: Path) -> dict[str, Any] | None:
        if not line.strip():
            return None
        try:
            data = json.loads(line)
        except json.JSONDecodeError:
            logger.warning(f"Invalid JSON at line {line_num} of {path.name}")
            return None
        if not isinstance(data, dict):
            logger.debug(f"Skipping non-object JSON at line {line_num} of {path.name}")
            return None
        uuid = data.get("uuid")
        if uuid is not None and not isinstance(uuid, str):
            logger.warning(f"Skipping record with invalid uuid at line {line_num} of {path.name}")
            return None
        message = data.get("message")
        if message is not None and not isinstance(message, dict):
            logger.warning(f"Ignoring non-object message at line {line_num} of {path.name}")
            data["message"] = {}
        return data

    async def _read_records(self, path: Path) -> tuple[list[dict[str, Any]], int]:
        try:
            async with aiofiles.open(path, encoding="utf-8") as f:
                content = await f.read()
        except OSError as e:
            logger.warning(f"Cannot read Claude session file {path}: {e}")
            return [], 0

        lines = content.splitlines()
        records = []
        for line_num, line in enumerate(lines, start=1):
            record = self._parse_line(line, line_num, path)
            if record is not None:
                records.append(record)
        return records, len(lines)

    @staticmethod
    def _user_prompt_text(record: dict[str, Any]) -> str | None:
        if record.get("type") != "user" or record.get("isMeta") or record.get("isSidechain"):
            return None
        message = record.get("message") or {}
        content = message.get("content")
        if isinstance(content, str):
            text = content
        elif isinstance(content, list):
            if any(isinstance(b, dict) and b.get("type") == "tool_result" for b in content):
                return None
            text = _join_text(content)
        else:
            return None
        text = text.strip()
        if not text or _COMMAND_PROMPT_RE.match(text):
            return None
        return text

    @staticmethod
    def _tool_results(records: list[dict[str, Any]]) -> dict[str, str | None]:
        """Map tool_use_id -> error text (None when the call succeeded)."""
        results: dict[str, str | None] = {}
        for record in records:
            if record.get("type") != "user":
                continue
            content = (record.get("message") or {}).get("content")
            if not isinstance(content, list):
                continue
            for block in content:
                if not isinstance(block, dict) or block.get("type") != "tool_result":
                    continue
                tool_use_id = block.get("tool_use_id")
                if not isinstance(tool_use_id, str) or not tool_use_id:
                    continue
                if block.get("is_error"):
                    results[tool_use_id] = _tool_result_text(block.get("content")) or "Tool error"
                else:
                    results[tool_use_id] = None
        return results

    def _build_delta(
        self,
        record: dict[str, Any],
        agent_session_id: str,
        tool_results: dict[str, str | None],
    ) -> MetricDelta:
        message = record.get("message") or {}
        usage = message.get("usage")
        if not isinstance(usage, dict):
            usage = {}
        model = message.get("model")
        content = message.get("content")
        blocks = content if isinstance(content, list) else []

        tools: dict[str, int] = {}
        tool_status: dict[str, ToolStatus] = {}
        tool_errors: dict[str, list[str]] = {}
        file_ops: list[FileOperation] = []
        for block in blocks:
            if not isinstance(block, dict) or block.get("type") != "tool_use":
                continue
            name = block.get("name")
            if not isinstance(name, str) or not name:
                name = "unknown"
            tools[name] = tools.get(name, 0) + 1
            status = tool_status.setdefault(name, ToolStatus())
            tool_use_id = block.get("id")
            error = tool_results.get(tool_use_id) if isinstance(tool_use_id, str) else None
            if error is not None:
                status.failure += 1
                tool_errors.setdefault(name, []).append(error)
            else:
                status.success += 1
            tool_input = block.get("input")
            if isinstance(tool_input, dict):
                op = _file_operation(name, tool_input)
                if op is not None:
                    file_ops.append(op)

        api_error: str | None = None
        if record.get("isApiErrorMessage"):
            api_error = _join_text(blocks) or "API error"

        return MetricDelta(
            record_id=record["uuid"],
            session_id="",
            agent_session_id=agent_session_id,
            timestamp=record.get("timestamp", ""),
            tokens=TokenUsage(
                input=int(usage.get("input_tokens") or 0),
                output=int(usage.get("output_tokens") or 0),
                cache_creation=usage.get("cache_creation_input_tokens"),
                cache_read=usage.get("cache_read_input_tokens"),
            ),
            models=[model] if model and model != SYNTHETIC_MODEL else [],
            tools=tools or None,
            tool_status=tool_status or None,
            tool_errors=tool_errors or None,
            file_operations=file_ops or None,
            git_branch=record.get("gitBranch") or None,
            api_error_message=api_error,
        )

    async def parse_incremental_metrics(
        self,
        log_file_path: Path,
        already_processed_ids: set[str],
        attached_prompts: list[str] | None = None,
    ) -> IncrementalResult:
        log_file_path = Path(log_file_path)
        info = self.read_session_info(log_file_path)
        agent_session_id = info.agent_session_id if info else log_file_path.stem

        attached = list(attached_prompts or [])
        attached_set = set(attached)
        result = IncrementalResult(attached_prompts=attached)

        files = [log_file_path, *self.related_session_files(log_file_path)]
        for file_path in files:
            records, line_count = await self._read_records(file_path)
            if file_path == log_file_path:
                result.last_line = line_count

            tool_results = self._tool_results(records)
            pending_prompts: list[str] = []

            for record in records:
                prompt = self._user_prompt_text(record)
                if prompt is not None:
                    pending_prompts.append(prompt)
                    continue

                if record.get("type") != "assistant":
                    continue
                record_id = record.get("uuid")
                message = record.get("message")
                if not record_id or not isinstance(message, dict) or "usage" not in message:
                    continue

                prompts, pending_prompts = pending_prompts, []
                if record_id in already_processed_ids or record_id in result.new_processed_ids:
                    continue

                try:
                    delta = self._build_delta(record, agent_session_id, tool_results)
                except (TypeError, ValueError, AttributeError) as e:
                    logger.warning(f"Skipping malformed assistant record {record_id}: {e}")
                    continue

                new_prompts = [p for p in prompts if p not in attached_set]
                if new_prompts:
                    delta.user_prompts = new_prompts
                    attached.extend(new_prompts)
                    attached_set.update(new_prompts)

                result.deltas.append(delta)
                result.new_processed_ids.add(record_id)

        logger.debug(
            f"Parsed {len(result.deltas)} new deltas from {log_file_path.name} "
            f"({len(files) - 1} sidechain files)"
        )
        return result

    def parse_conversation(self, path: Path) -> list[ConversationMessage]:
        messages: list[ConversationMessage] = []
        try:
            with open(path, encoding="utf-8") as f:
                lines = f.readlines()
        except OSError as e:
            logger.warning(f"Cannot read Claude session file {path}: {e}")
            return messages

        for line_num, line in enumerate(lines, start=1):
            record = self._parse_line(line, line_num, path)
            if record is None or not record.get("uuid"):
                continue

            prompt = self._user_prompt_text(record)
            if prompt is not None:
                messages.append(
                    ConversationMessage(
                        uuid=record["uuid"],
                        role="user",
                        content=prompt,
                        timestamp=record.get("timestamp", ""),
                    )
                )
                continue

            if record.get("type") != "assistant" or record.get("isApiErrorMessage"):
                continue
            message = record.get("message") or {}
            content = message.get("content")
            if not isinstance(content, list):
                continue
            text = _join_text(content).strip()
            if text:
                messages.append(
                    ConversationMessage(
                        uuid=record["uuid"],
                        role="assistant",
                        content=text,
                        timestamp=record.get("timestamp", ""),
                        model=message.get("model"),
                    )
                )
        return messages
