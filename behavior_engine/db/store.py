"""Async facade over the Supabase table modules.

The table modules are synchronous (supabase-py); every call here is pushed
onto a worker thread so the event loop never blocks on PostgREST. Rows are
converted to and from the pydantic models at this boundary only.
"""

import asyncio
from typing import Any

from behavior_engine.core.schemas_behaviors import BehaviorTransition, ConversationState
from behavior_engine.core.schemas_flows import FlowContext
from behavior_engine.db import (
    behavior_transitions,
    conversation_state,
    detection_logs,
    flow_contexts,
)


class BehaviorStore:
    """Durable state for conversation state, transitions, flows and audit rows."""

    async def get_conversation_state(self, user_id: str) -> ConversationState | None:
        row = await asyncio.to_thread(conversation_state.get_conversation_state, user_id)
        return ConversationState.model_validate(row) if row else None

    async def save_conversation_state(self, state: ConversationState) -> None:
        row = state.model_dump(mode="json")
        await asyncio.to_thread(conversation_state.upsert_conversation_state, row)

    async def append_transition(self, transition: BehaviorTransition) -> None:
        await asyncio.to_thread(
            behavior_transitions.insert_transition, transition.model_dump(mode="json")
        )

    async def list_transitions(
        self,
        user_id: str,
        session_id: str | None = None,
        limit: int = 10,
    ) -> list[BehaviorTransition]:
        rows = await asyncio.to_thread(
            behavior_transitions.list_transitions, user_id, session_id, limit
        )
        return [BehaviorTransition.model_validate(r) for r in rows]

    async def get_flow_context(self, context_id: str) -> FlowContext | None:
        row = await asyncio.to_thread(flow_contexts.get_flow_context, context_id)
        return FlowContext.model_validate(row) if row else None

    async def get_active_flow(self, user_id: str, session_id: str | None = None) -> FlowContext | None:
        row = await asyncio.to_thread(flow_contexts.get_active_flow_context, user_id, session_id)
        return FlowContext.model_validate(row) if row else None

    async def save_flow_context(self, context: FlowContext) -> None:
        await asyncio.to_thread(flow_contexts.upsert_flow_context, context.model_dump(mode="json"))

    async def log_detection(self, payload: dict[str, Any]) -> None:
        await asyncio.to_thread(detection_logs.insert_detection_log, payload)

    async def store_conversation_embeddings(self, rows: list[dict[str, Any]]) -> int:
        return await asyncio.to_thread(detection_logs.insert_conversation_embeddings, rows)
