"""Database operations for behavior trigger embeddings (pgvector)."""

from typing import Any

from behavior_engine.core.logging import get_logger
from behavior_engine.db.supabase_client import get_supabase

logger = get_logger(__name__)

TABLE = "behavior_trigger_embeddings"


def upsert_trigger_vector(
    behavior_id: str,
    vector_type: str,
    embedding: list[float],
    trigger_description: str,
    metadata: dict[str, Any],
) -> dict[str, Any]:
    """
    Insert or update one trigger vector.

    Keyed by (behavior_id, vector_type, trigger_description) so re-seeding is
    idempotent.
    """
    supabase = get_supabase()

    row = {
        "behavior_id": behavior_id,
        "vector_type": vector_type,
        "embedding": embedding,
        "trigger_description": trigger_description,
        "metadata": metadata,
    }

    try:
        response = (
            supabase.table(TABLE)
            .upsert(row, on_conflict="behavior_id,vector_type,trigger_description")
            .execute()
        )
        return response.data[0] if response.data else row
    except Exception as e:
        logger.error(f"Failed to upsert trigger for {behavior_id}/{vector_type}: {e}")
        raise


def search_behavior_triggers(
    query_embedding: list[float],
    vector_type: str,
    match_count: int,
    similarity_threshold: float,
) -> list[dict[str, Any]]:
    """
    Nearest-neighbour search over one channel via the search_behavior_triggers RPC.

    Returns:
        Rows with behavior_id, trigger_description, similarity, metadata,
        ordered by descending cosine similarity
    """
    supabase = get_supabase()

    response = supabase.rpc(
        "search_behavior_triggers",
        {
            "query_embedding": query_embedding,
            "p_vector_type": vector_type,
            "match_count": match_count,
            "similarity_threshold": similarity_threshold,
        },
    ).execute()

    return response.data or []
