"""Database operations for conversation flow contexts."""

from typing import Any

from behavior_engine.core.logging import get_logger
from behavior_engine.db.supabase_client import get_supabase

logger = get_logger(__name__)

TABLE = "flow_contexts"


def get_flow_context(context_id: str) -> dict[str, Any] | None:
    """Get one flow context row by id."""
    supabase = get_supabase()

    try:
        response = supabase.table(TABLE).select("*").eq("id", context_id).limit(1).execute()
        return response.data[0] if response.data else None

    except Exception as e:
        logger.error(f"Failed to get flow context {context_id}: {e}")
        raise


def get_active_flow_context(user_id: str, session_id: str | None = None) -> dict[str, Any] | None:
    """
    Get the newest incomplete flow context for a user.

    Args:
        user_id: User identifier
        session_id: Restrict to one session when given

    Returns:
        Row dict, or None when no flow is active
    """
    supabase = get_supabase()

    try:
        query = (
            supabase.table(TABLE)
            .select("*")
            .eq("user_id", user_id)
            .is_("completed_at", "null")
        )
        if session_id:
            query = query.eq("session_id", session_id)
        response = query.order("flow_started_at", desc=True).limit(1).execute()
        return response.data[0] if response.data else None

    except Exception as e:
        logger.error(f"Failed to get active flow for user {user_id}: {e}")
        raise


def upsert_flow_context(row: dict[str, Any]) -> dict[str, Any]:
    """Insert or update a flow context keyed by id."""
    supabase = get_supabase()

    try:
        response = supabase.table(TABLE).upsert(row, on_conflict="id").execute()
        return response.data[0] if response.data else row

    except Exception as e:
        logger.error(f"Failed to upsert flow context {row.get('id')}: {e}")
        raise
