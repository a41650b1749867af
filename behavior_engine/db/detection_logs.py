"""Database operations for behavior detection audit logs and conversation embeddings."""

from typing import Any

from behavior_engine.core.logging import get_logger
from behavior_engine.db.supabase_client import get_supabase

logger = get_logger(__name__)


def insert_detection_log(payload: dict[str, Any]) -> None:
    """
    Log one behavior selection decision for offline quality review.

    Args:
        payload: user_id, user_message, previous/detected behavior ids,
            detection_method, confidence_score, vector_scores, top_candidates,
            llm_reasoning and latency fields
    """
    supabase = get_supabase()

    try:
        supabase.table("behavior_detection_logs").insert(payload).execute()
    except Exception as e:
        logger.error(f"Failed to log behavior detection for user {payload.get('user_id')}: {e}")
        raise


def insert_conversation_embeddings(rows: list[dict[str, Any]]) -> int:
    """Batch insert conversation embeddings. Returns rows written."""
    if not rows:
        return 0

    supabase = get_supabase()

    try:
        supabase.table("conversation_embeddings").insert(rows).execute()
        return len(rows)
    except Exception as e:
        logger.error(f"Failed to store {len(rows)} conversation embeddings: {e}")
        raise
