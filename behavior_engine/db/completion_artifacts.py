"""Database operations for artifacts produced by completed flows."""

import asyncio
from datetime import datetime, timezone
from typing import Any

from behavior_engine.core.logging import get_logger
from behavior_engine.db.supabase_client import get_supabase

logger = get_logger(__name__)


def insert_journal_entry(user_id: str, content: str, category: str, created_at: str) -> dict[str, Any]:
    """Persist a journal entry built from a flow's user turns."""
    supabase = get_supabase()

    try:
        response = (
            supabase.table("journal_entries")
            .insert({
                "user_id": user_id,
                "content": content,
                "category": category,
                "created_at": created_at,
            })
            .execute()
        )
        return response.data[0] if response.data else {}
    except Exception as e:
        logger.error(f"Failed to insert journal entry for user {user_id}: {e}")
        raise


def insert_user_activity(
    user_id: str,
    activity_type: str,
    data: dict[str, Any],
    completed_at: str,
) -> dict[str, Any]:
    """Persist an activity record with the flow's collected data."""
    supabase = get_supabase()

    try:
        response = (
            supabase.table("user_activities")
            .insert({
                "user_id": user_id,
                "activity_type": activity_type,
                "data": data,
                "completed_at": completed_at,
            })
            .execute()
        )
        return response.data[0] if response.data else {}
    except Exception as e:
        logger.error(f"Failed to insert activity for user {user_id}: {e}")
        raise


class SupabaseCompletionSink:
    """Completion sink writing flow artifacts to journal_entries / user_activities."""

    async def persist(self, kind: str, payload: dict[str, Any]) -> dict[str, Any]:
        """
        Persist one completion artifact.

        Args:
            kind: "journal_entry" or "activity"
            payload: Artifact fields built by the flow engine

        Returns:
            The stored row

        Raises:
            ValueError: If kind is not a known artifact type
        """
        now = datetime.now(timezone.utc).isoformat()

        if kind == "journal_entry":
            return await asyncio.to_thread(
                insert_journal_entry,
                payload["user_id"],
                payload["content"],
                payload.get("category", "prompted_reflection"),
                now,
            )
        if kind == "activity":
            return await asyncio.to_thread(
                insert_user_activity,
                payload["user_id"],
                payload.get("activity_type", "flow"),
                payload.get("data", {}),
                now,
            )
        raise ValueError(f"Unknown completion artifact kind: {kind}")
