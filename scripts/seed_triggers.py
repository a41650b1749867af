#!/usr/bin/env python3
"""
Seed behavior trigger vectors from the behavior catalog.

Embeds every trigger phrase of every registered behavior and upserts it into
the trigger index. Safe to re-run: rows are keyed by
(behavior_id, vector_type, trigger_description).

Usage:
    python scripts/seed_triggers.py [--behavior-id BEHAVIOR_ID]

Options:
    --behavior-id: Seed only this behavior
"""

import argparse
import asyncio
import sys
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from behavior_engine.core.behavior_registry import BehaviorRegistry
from behavior_engine.core.embeddings import EmbeddingGenerator, NoOpEmbeddingCache
from behavior_engine.core.flow_templates import DEFAULT_FLOW_TEMPLATES
from behavior_engine.core.logging import get_logger
from behavior_engine.core.trigger_index import SupabaseTriggerIndex, seed_trigger_vectors

logger = get_logger(__name__)


async def seed(behavior_id: str | None = None) -> int:
    registry = BehaviorRegistry(flow_ids=[t.id for t in DEFAULT_FLOW_TEMPLATES])
    if behavior_id:
        registry = BehaviorRegistry([registry.get(behavior_id)])

    embedder = EmbeddingGenerator(cache=NoOpEmbeddingCache())
    return await seed_trigger_vectors(registry, embedder, SupabaseTriggerIndex())


def main():
    parser = argparse.ArgumentParser(description="Seed behavior trigger vectors")
    parser.add_argument("--behavior-id", help="Seed only this behavior")
    args = parser.parse_args()

    logger.info("=" * 60)
    logger.info("BEHAVIOR TRIGGER SEED")
    logger.info("=" * 60)

    try:
        total = asyncio.run(seed(args.behavior_id))
        logger.info(f"SEED COMPLETE - Wrote {total} trigger vectors")
    except Exception as e:
        logger.error(f"Seed failed: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
