"""Database operations for the behavior transition audit log."""

from typing import Any

from behavior_engine.core.logging import get_logger
from behavior_engine.db.supabase_client import get_supabase

logger = get_logger(__name__)

TABLE = "behavior_transitions"


def insert_transition(payload: dict[str, Any]) -> dict[str, Any]:
    """Append one transition record. The table is append-only."""
    supabase = get_supabase()

    try:
        response = supabase.table(TABLE).insert(payload).execute()
        return response.data[0] if response.data else payload

    except Exception as e:
        logger.error(f"Failed to insert behavior transition for user {payload.get('user_id')}: {e}")
        raise


def list_transitions(
    user_id: str,
    session_id: str | None = None,
    limit: int = 10,
) -> list[dict[str, Any]]:
    """
    List a user's transitions, newest first.

    Args:
        user_id: User identifier
        session_id: Restrict to one session when given
        limit: Maximum rows returned

    Returns:
        List of transition rows
    """
    supabase = get_supabase()

    try:
        query = supabase.table(TABLE).select("*").eq("user_id", user_id)
        if session_id:
            query = query.eq("session_id", session_id)
        response = query.order("timestamp", desc=True).limit(limit).execute()
        return response.data or []

    except Exception as e:
        logger.error(f"Failed to list behavior transitions for user {user_id}: {e}")
        raise
