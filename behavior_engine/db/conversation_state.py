"""Database operations for per-user conversation state."""

from typing import Any

from behavior_engine.core.logging import get_logger
from behavior_engine.db.supabase_client import get_supabase

logger = get_logger(__name__)

TABLE = "conversation_state"


def get_conversation_state(user_id: str) -> dict[str, Any] | None:
    """
    Get the conversation state row for a user.

    Args:
        user_id: User identifier

    Returns:
        Row dict, or None when the user has no state yet
    """
    supabase = get_supabase()

    try:
        response = (
            supabase.table(TABLE)
            .select("*")
            .eq("user_id", user_id)
            .limit(1)
            .execute()
        )
        return response.data[0] if response.data else None

    except Exception as e:
        logger.error(f"Failed to get conversation state for user {user_id}: {e}")
        raise


def upsert_conversation_state(row: dict[str, Any]) -> dict[str, Any]:
    """
    Insert or update the conversation state row keyed by user_id.

    Only the columns present in ``row`` are written on update.

    Args:
        row: Column values, must include user_id

    Returns:
        The stored row
    """
    supabase = get_supabase()

    try:
        response = (
            supabase.table(TABLE)
            .upsert(row, on_conflict="user_id")
            .execute()
        )
        return response.data[0] if response.data else row

    except Exception as e:
        logger.error(f"Failed to upsert conversation state for user {row.get('user_id')}: {e}")
        raise
