"""Behavior trigger vector index.

Two backends share one async interface:
- ``SupabaseTriggerIndex``: pgvector table + ``search_behavior_triggers`` RPC
- ``InMemoryTriggerIndex``: numpy cosine similarity over per-channel matrices
"""

import asyncio
from typing import Any, Protocol

import numpy as np

from behavior_engine.core.config import get_settings
from behavior_engine.core.embeddings import EmbeddingGenerator
from behavior_engine.core.logging import get_logger
from behavior_engine.core.schemas_behaviors import ChannelType, TriggerMatch

logger = get_logger(__name__)


class TriggerIndex(Protocol):
    async def upsert_trigger(
        self,
        behavior_id: str,
        channel_type: ChannelType,
        vector: list[float],
        metadata: dict[str, Any],
    ) -> None: ...

    async def search(
        self,
        vector: list[float],
        channel_type: ChannelType,
        top_k: int,
        similarity_floor: float,
    ) -> list[TriggerMatch]: ...


class SupabaseTriggerIndex:
    """Trigger index backed by the behavior_trigger_embeddings table."""

    async def upsert_trigger(
        self,
        behavior_id: str,
        channel_type: ChannelType,
        vector: list[float],
        metadata: dict[str, Any],
    ) -> None:
        from behavior_engine.db.trigger_vectors import upsert_trigger_vector

        await asyncio.to_thread(
            upsert_trigger_vector,
            behavior_id,
            channel_type.value,
            vector,
            metadata.get("trigger_description", ""),
            metadata,
        )

    async def search(
        self,
        vector: list[float],
        channel_type: ChannelType,
        top_k: int,
        similarity_floor: float,
    ) -> list[TriggerMatch]:
        from behavior_engine.db.trigger_vectors import search_behavior_triggers

        rows = await asyncio.to_thread(
            search_behavior_triggers, vector, channel_type.value, top_k, similarity_floor
        )
        matches = [
            TriggerMatch(
                behavior_id=row["behavior_id"],
                channel_type=channel_type,
                similarity=float(row["similarity"]),
                trigger_description=row.get("trigger_description") or "",
                metadata=row.get("metadata") or {},
            )
            for row in rows
        ]
        matches.sort(key=lambda m: m.similarity, reverse=True)
        return matches


class InMemoryTriggerIndex:
    """Trigger index held in process memory."""

    def __init__(self):
        # channel -> (rows, matrix of unit vectors)
        self._rows: dict[ChannelType, list[dict[str, Any]]] = {}
        self._matrices: dict[ChannelType, np.ndarray] = {}

    def __len__(self) -> int:
        return sum(len(rows) for rows in self._rows.values())

    async def upsert_trigger(
        self,
        behavior_id: str,
        channel_type: ChannelType,
        vector: list[float],
        metadata: dict[str, Any],
    ) -> None:
        description = metadata.get("trigger_description", "")
        rows = self._rows.setdefault(channel_type, [])
        row = {
            "behavior_id": behavior_id,
            "trigger_description": description,
            "metadata": dict(metadata),
            "vector": _unit(np.asarray(vector, dtype=float)),
        }

        for i, existing in enumerate(rows):
            if existing["behavior_id"] == behavior_id and existing["trigger_description"] == description:
                rows[i] = row
                break
        else:
            rows.append(row)

        self._matrices[channel_type] = np.vstack([r["vector"] for r in rows])

    async def search(
        self,
        vector: list[float],
        channel_type: ChannelType,
        top_k: int,
        similarity_floor: float,
    ) -> list[TriggerMatch]:
        rows = self._rows.get(channel_type)
        if not rows:
            return []

        query = _unit(np.asarray(vector, dtype=float))
        similarities = self._matrices[channel_type] @ query

        # Stable sort keeps insertion order among equal similarities
        order = np.argsort(-similarities, kind="stable")
        matches: list[TriggerMatch] = []
        for i in order:
            similarity = float(similarities[i])
            if similarity < similarity_floor:
                break
            row = rows[i]
            matches.append(
                TriggerMatch(
                    behavior_id=row["behavior_id"],
                    channel_type=channel_type,
                    similarity=similarity,
                    trigger_description=row["trigger_description"],
                    metadata=row["metadata"],
                )
            )
            if len(matches) >= top_k:
                break
        return matches


def _unit(vector: np.ndarray) -> np.ndarray:
    norm = np.linalg.norm(vector)
    if norm == 0:
        return vector
    return vector / norm


def create_trigger_index(mode: str | None = None) -> TriggerIndex:
    """Build the index backend named by TRIGGER_INDEX_MODE."""
    mode = mode or get_settings().TRIGGER_INDEX_MODE
    if mode == "memory":
        return InMemoryTriggerIndex()
    return SupabaseTriggerIndex()


async def seed_trigger_vectors(registry, embedder: EmbeddingGenerator, index: TriggerIndex) -> int:
    """
    Embed every catalog trigger phrase and upsert it into the index.

    Args:
        registry: BehaviorRegistry supplying behaviors and their trigger phrases
        embedder: Embedding generator
        index: Target trigger index

    Returns:
        Number of trigger vectors written
    """
    written = 0
    for behavior in registry.all():
        for channel, phrases in behavior.trigger_phrases.items():
            if not phrases:
                continue
            vectors = await embedder.embed_many(phrases)
            for phrase, vector in zip(phrases, vectors, strict=True):
                metadata = behavior.trigger_metadata()
                metadata["trigger_description"] = phrase
                await index.upsert_trigger(behavior.id, channel, vector, metadata)
                written += 1

        logger.info(f"Seeded triggers for {behavior.id}")

    logger.info(f"Seeded {written} trigger vectors")
    return written
