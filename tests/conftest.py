"""Pytest configuration and shared fixtures for codemie-sync tests."""

import json
import tempfile
from collections.abc import Callable, Iterator
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

import pytest

from codemie_sync.config.app import AppConfig
from codemie_sync.metrics.models import MetricDelta, TokenUsage
from codemie_sync.sessions.models import CorrelationResult, Session
from codemie_sync.storage.sessions import SessionStore

SESSION_START = datetime(2025, 1, 15, 10, 0, 0, tzinfo=UTC)
PROJECT_DIR = "/home/dev/projects/webapp"
AGENT_SESSION_ID = "7f3c9a2e-agent-session"


def iso(dt: datetime) -> str:
    return dt.isoformat().replace("+00:00", "Z")


@pytest.fixture
def temp_dir() -> Iterator[Path]:
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def codemie_home(temp_dir: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point CODEMIE_HOME at a temp directory."""
    home = temp_dir / ".codemie"
    home.mkdir()
    monkeypatch.setenv("CODEMIE_HOME", str(home))
    monkeypatch.delenv("CODEMIE_DEV_API_URL", raising=False)
    monkeypatch.delenv("CODEMIE_DEV_API_KEY", raising=False)
    return home


@pytest.fixture
def sessions_dir(codemie_home: Path) -> Path:
    path = codemie_home / "sessions"
    path.mkdir()
    return path


@pytest.fixture
def session_store(sessions_dir: Path) -> SessionStore:
    return SessionStore(sessions_dir)


@pytest.fixture
def claude_projects_dir(temp_dir: Path) -> Path:
    path = temp_dir / "claude" / "projects"
    path.mkdir(parents=True)
    return path


@pytest.fixture
def default_config() -> AppConfig:
    return AppConfig()


@pytest.fixture
def make_session() -> Callable[..., Session]:
    """Factory for sessions started at SESSION_START in PROJECT_DIR."""

    def _make(session_id: str = "sess-1", **overrides: Any) -> Session:
        fields: dict[str, Any] = {
            "session_id": session_id,
            "agent_name": "claude",
            "provider": "ai-run-sso",
            "start_time": int(SESSION_START.timestamp() * 1000),
            "working_directory": PROJECT_DIR,
            "correlation": CorrelationResult(),
        }
        fields.update(overrides)
        return Session(**fields)

    return _make


@pytest.fixture
def make_delta() -> Callable[..., MetricDelta]:
    def _make(record_id: str, **overrides: Any) -> MetricDelta:
        fields: dict[str, Any] = {
            "record_id": record_id,
            "session_id": "sess-1",
            "agent_session_id": AGENT_SESSION_ID,
            "timestamp": iso(SESSION_START),
            "tokens": TokenUsage(input=100, output=50),
            "models": ["claude-sonnet-4"],
        }
        fields.update(overrides)
        return MetricDelta(**fields)

    return _make


@pytest.fixture
def claude_records() -> Callable[..., list[dict[str, Any]]]:
    """Build a Claude Code log: one user prompt followed by assistant turns.

    Each assistant turn gets uuid ``a-<n>`` and a timestamp one minute after
    the previous record.
    """

    def _build(
        count: int = 3,
        session_id: str = AGENT_SESSION_ID,
        cwd: str = PROJECT_DIR,
        start: datetime = SESSION_START,
        prompt: str = "Add a login form",
        git_branch: str = "main",
    ) -> list[dict[str, Any]]:
        records: list[dict[str, Any]] = [
            {
                "type": "user",
                "uuid": "u-1",
                "sessionId": session_id,
                "cwd": cwd,
                "gitBranch": git_branch,
                "timestamp": iso(start),
                "message": {"role": "user", "content": prompt},
            }
        ]
        for n in range(1, count + 1):
            records.append(
                {
                    "type": "assistant",
                    "uuid": f"a-{n}",
                    "sessionId": session_id,
                    "cwd": cwd,
                    "gitBranch": git_branch,
                    "timestamp": iso(start + timedelta(minutes=n)),
                    "message": {
                        "id": f"msg-{n}",
                        "role": "assistant",
                        "model": "claude-sonnet-4",
                        "content": [{"type": "text", "text": f"Step {n} done"}],
                        "usage": {
                            "input_tokens": 100 * n,
                            "output_tokens": 10 * n,
                            "cache_read_input_tokens": 5,
                        },
                    },
                }
            )
        return records

    return _build


@pytest.fixture
def write_jsonl() -> Callable[[Path, list[dict[str, Any]]], Path]:
    def _write(path: Path, records: list[dict[str, Any]]) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            for record in records:
                f.write(json.dumps(record) + "\n")
        return path

    return _write
