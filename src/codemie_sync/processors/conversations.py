"""
Conversations processor.

Pushes the user/assistant messages of the correlated agent log that come
after ``lastSyncedHistoryIndex`` to the conversation history endpoint.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import Callable
from pathlib import Path

from codemie_sync.adapters import get_adapter
from codemie_sync.adapters.base import ConversationAdapter, ConversationMessage, MetricsAdapter
from codemie_sync.api.client import AnalyticsApiClient
from codemie_sync.errors import SyncApiError
from codemie_sync.processors.base import (
    BaseProcessor,
    ProcessingContext,
    ProcessingResult,
    create_api_client,
)
from codemie_sync.sessions.models import ConversationsSyncState, Session

logger = logging.getLogger(__name__)


class ConversationsProcessor(BaseProcessor):
    """Syncs conversation history for a correlated session."""

    name = "conversations"
    priority = 20

    def __init__(
        self,
        adapter_resolver: Callable[[str], MetricsAdapter | None] = get_adapter,
        client_factory: Callable[[ProcessingContext], AnalyticsApiClient] = create_api_client,
    ):
        self.adapter_resolver = adapter_resolver
        self.client_factory = client_factory

    def should_process(self, session: Session) -> bool:
        return (
            session.correlation.status == "matched"
            and session.correlation.agent_session_file is not None
        )

    @staticmethod
    def _resume_index(messages: list[ConversationMessage], state: ConversationsSyncState) -> int:
        """Index of the last synced message, re-anchored on its uuid when known."""
        index = state.last_synced_history_index
        uuid = state.last_synced_message_uuid
        if uuid is None:
            return index
        if 0 <= index < len(messages) and messages[index].uuid == uuid:
            return index
        for i, message in enumerate(messages):
            if message.uuid == uuid:
                return i
        logger.warning(f"Last synced message {uuid} not found, resuming from index {index}")
        return index

    async def process(self, session: Session, context: ProcessingContext) -> ProcessingResult:
        adapter = self.adapter_resolver(session.agent_name)
        if not isinstance(adapter, ConversationAdapter):
            return ProcessingResult(
                success=True,
                message=f"Agent '{session.agent_name}' does not expose conversations",
            )

        log_file = Path(session.correlation.agent_session_file or "")
        messages = await asyncio.to_thread(adapter.parse_conversation, log_file)

        state = session.get_conversations_state()
        start = self._resume_index(messages, state) + 1
        new_messages = messages[start:]
        if not new_messages:
            return ProcessingResult(success=True, message="No new messages")

        conversation_id = state.conversation_id or session.session_id
        payload = {
            "conversationId": conversation_id,
            "sessionId": session.session_id,
            "agentSessionId": session.correlation.agent_session_id,
            "agent": session.agent_name,
            "startIndex": start,
            "messages": [m.to_dict() for m in new_messages],
        }

        if context.dry_run:
            logger.info(
                f"[dry-run] Would send {len(new_messages)} messages for session "
                f"{session.session_id}: {json.dumps(payload, default=str)}"
            )
            return ProcessingResult(
                success=True,
                message=f"Dry run: {len(new_messages)} messages logged, not sent",
                metadata={"messages": len(new_messages), "dryRun": True},
            )

        state.total_sync_attempts += 1
        client = self.client_factory(context)
        try:
            await client.post_conversation_history(conversation_id, payload)
        except SyncApiError as e:
            state.last_sync_error = str(e)
            logger.warning(
                f"Failed to sync conversation for session {session.session_id}: {e}"
            )
            return ProcessingResult(success=False, message=str(e))

        state.conversation_id = conversation_id
        state.last_synced_history_index = start + len(new_messages) - 1
        state.last_synced_message_uuid = new_messages[-1].uuid
        state.total_messages_synced += len(new_messages)
        state.last_sync_at = int(time.time() * 1000)
        state.last_sync_error = None

        return ProcessingResult(
            success=True,
            message=f"Synced {len(new_messages)} messages",
            metadata={"messages": len(new_messages)},
        )
