"""Tests for the session data model serialization."""

import pytest

from codemie_sync.sessions.models import (
    ConversationsSyncState,
    CorrelationResult,
    MetricsSyncState,
    Session,
    SyncState,
)

pytestmark = pytest.mark.unit


def test_session_round_trip_uses_camel_case(make_session):
    session = make_session(
        git_branch="feature/login",
        correlation=CorrelationResult(
            status="matched", agent_session_file="/tmp/a.jsonl", agent_session_id="a", retry_count=2
        ),
    )

    data = session.to_dict()

    assert data["sessionId"] == "sess-1"
    assert data["agentName"] == "claude"
    assert data["gitBranch"] == "feature/login"
    assert data["correlation"]["agentSessionFile"] == "/tmp/a.jsonl"
    assert "endTime" not in data
    assert "sync" not in data
    assert Session.from_dict(data) == session


def test_unknown_statuses_fall_back(caplog):
    session = Session.from_dict(
        {
            "sessionId": "s",
            "agentName": "claude",
            "startTime": 1,
            "status": "exploded",
            "correlation": {"status": "weird"},
        }
    )
    assert session.status == "active"
    assert session.correlation.status == "pending"


def test_missing_required_field_raises():
    with pytest.raises(KeyError):
        Session.from_dict({"agentName": "claude", "startTime": 1})


def test_correlation_terminal_states():
    assert not CorrelationResult().is_terminal
    assert CorrelationResult(status="matched").is_terminal
    assert CorrelationResult(status="failed").is_terminal


class TestSyncState:
    def test_slices_created_on_demand(self, make_session):
        session = make_session()
        metrics = session.get_metrics_state()
        conversations = session.get_conversations_state()

        assert session.get_metrics_state() is metrics
        assert conversations.last_synced_history_index == -1
        assert set(session.to_dict()["sync"]) == {"metrics", "conversations"}

    def test_unknown_sections_preserved(self):
        data = {"metrics": {"totalDeltas": 3}, "telemetry": {"foo": 1}}
        state = SyncState.from_dict(data)

        assert state.metrics.total_deltas == 3
        assert state.conversations is None
        assert state.to_dict()["telemetry"] == {"foo": 1}

    def test_processed_ids_written_sorted(self):
        state = MetricsSyncState(processed_record_ids={"c", "a", "b"})
        assert state.to_dict()["processedRecordIds"] == ["a", "b", "c"]

    def test_conversation_state_round_trip(self):
        state = ConversationsSyncState(
            conversation_id="conv", last_synced_history_index=4, total_messages_synced=5
        )
        assert ConversationsSyncState.from_dict(state.to_dict()) == state
