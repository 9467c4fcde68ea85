"""
Metric aggregation and post-processing.

Turns a batch of deltas into the session usage metric sent to the analytics
API, and sanitizes the fields that may carry local or noisy data (repository
path, tool error messages).
"""

from __future__ import annotations

import copy
import re
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import PurePosixPath
from typing import Any

from codemie_sync.metrics.models import MetricDelta

METRIC_NAME = "codemie_cli_usage_total"
MAX_ERROR_LENGTH = 1000
TRUNCATION_SUFFIX = "...[truncated]"

# Tools whose failures are normal control flow (non-zero exit codes etc.)
DEFAULT_EXCLUDED_ERROR_TOOLS: tuple[str, ...] = ("Bash", "Execute")

_ANSI_RE = re.compile(r"\x1b\[[0-9;]*[A-Za-z]")


@dataclass
class SessionMetric:
    name: str
    attributes: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "attributes": self.attributes}


def truncate_project_path(path: str) -> str:
    """Reduce a full path to ``parent/current`` with forward slashes."""
    if not path or not path.strip():
        return "unknown"
    parts = [p for p in path.strip().replace("\\", "/").split("/") if p]
    if not parts:
        return "unknown"
    return "/".join(parts[-2:])


def sanitize_error(message: str) -> str:
    """Strip ANSI codes, truncate, and escape quotes/backslashes/newlines."""
    text = _ANSI_RE.sub("", message)
    if len(text) > MAX_ERROR_LENGTH:
        text = text[:MAX_ERROR_LENGTH] + TRUNCATION_SUFFIX
    text = text.replace("\r\n", "\n")
    text = text.replace("\\", "\\\\").replace('"', '\\"')
    return text.replace("\n", "\\n").replace("\t", "\\t").replace("\r", "\\r")


def filter_and_sanitize_errors(
    errors: dict[str, list[str]],
    excluded_tools: tuple[str, ...] | list[str] | None = None,
) -> dict[str, list[str]]:
    excluded = set(DEFAULT_EXCLUDED_ERROR_TOOLS if excluded_tools is None else excluded_tools)
    return {
        tool: [sanitize_error(m) for m in messages]
        for tool, messages in errors.items()
        if tool not in excluded and messages
    }


def post_process_metric(
    metric: SessionMetric,
    excluded_tools: tuple[str, ...] | list[str] | None = None,
) -> SessionMetric:
    """Return a sanitized copy of a metric; the input is not modified."""
    result = copy.deepcopy(metric)
    attributes = result.attributes

    if "repository" in attributes:
        attributes["repository"] = truncate_project_path(str(attributes["repository"]))

    errors = attributes.get("errors")
    if errors:
        filtered = filter_and_sanitize_errors(errors, excluded_tools)
        if filtered:
            attributes["errors"] = filtered
        else:
            attributes.pop("errors", None)
            attributes["had_errors"] = False
    return result


def _duration_ms(deltas: list[MetricDelta]) -> int:
    stamps = []
    for delta in deltas:
        try:
            stamps.append(datetime.fromisoformat(delta.timestamp.replace("Z", "+00:00")))
        except (ValueError, AttributeError):
            continue
    if len(stamps) < 2:
        return 0
    return int((max(stamps) - min(stamps)).total_seconds() * 1000)


def aggregate_deltas(
    deltas: list[MetricDelta],
    *,
    agent: str,
    agent_version: str,
    session_id: str,
    repository: str,
    project: str | None = None,
    excluded_tools: tuple[str, ...] | list[str] | None = None,
) -> list[SessionMetric]:
    """
    Aggregate deltas into one usage metric per git branch.

    Returns:
        Post-processed SessionMetric list (empty if there are no deltas)
    """
    groups: dict[str, list[MetricDelta]] = {}
    for delta in deltas:
        groups.setdefault(delta.git_branch or "", []).append(delta)

    metrics: list[SessionMetric] = []
    for branch, group in groups.items():
        models: list[str] = []
        errors: dict[str, list[str]] = {}
        attrs: dict[str, Any] = {
            "agent": agent,
            "agent_version": agent_version,
            "session_id": session_id,
            "repository": repository,
            "branch": branch or None,
            "total_user_prompts": 0,
            "total_input_tokens": 0,
            "total_output_tokens": 0,
            "total_cache_read_input_tokens": 0,
            "total_cache_creation_tokens": 0,
            "total_tool_calls": 0,
            "successful_tool_calls": 0,
            "failed_tool_calls": 0,
            "files_created": 0,
            "files_modified": 0,
            "files_deleted": 0,
            "total_lines_added": 0,
            "total_lines_removed": 0,
            "session_duration_ms": _duration_ms(group),
            "had_errors": False,
            "count": len(group),
        }
        if project:
            attrs["project"] = project

        for delta in group:
            attrs["total_user_prompts"] += len(delta.user_prompts or [])
            attrs["total_input_tokens"] += delta.tokens.input
            attrs["total_output_tokens"] += delta.tokens.output
            attrs["total_cache_read_input_tokens"] += delta.tokens.cache_read or 0
            attrs["total_cache_creation_tokens"] += delta.tokens.cache_creation or 0
            attrs["total_tool_calls"] += sum((delta.tools or {}).values())
            for status in (delta.tool_status or {}).values():
                attrs["successful_tool_calls"] += status.success
                attrs["failed_tool_calls"] += status.failure
            for op in delta.file_operations or []:
                if op.type == "write":
                    attrs["files_created"] += 1
                elif op.type == "edit":
                    attrs["files_modified"] += 1
                elif op.type == "delete":
                    attrs["files_deleted"] += 1
                attrs["total_lines_added"] += op.lines_added or 0
                attrs["total_lines_removed"] += op.lines_removed or 0
            for model in delta.models:
                if model not in models:
                    models.append(model)
            if delta.api_error_message:
                errors.setdefault("api", []).append(delta.api_error_message)
            for tool, messages in (delta.tool_errors or {}).items():
                errors.setdefault(tool, []).extend(messages)

        attrs["llm_model"] = models[0] if models else None
        attrs["llm_models"] = models
        if errors:
            attrs["had_errors"] = True
            attrs["errors"] = errors

        metrics.append(
            post_process_metric(SessionMetric(name=METRIC_NAME, attributes=attrs), excluded_tools)
        )
    return metrics
