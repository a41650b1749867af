"""Fuse per-channel trigger matches into one ranked list of behaviors.

Pure functions: no I/O, no clock, same input gives the same output.
"""

from collections.abc import Mapping

from behavior_engine.core.config import RankerConfig
from behavior_engine.core.schemas_behaviors import (
    CHANNEL_ORDER,
    BehaviorCandidate,
    ChannelType,
    TriggerMatch,
)


def fuse_channel_scores(
    scores: Mapping[ChannelType, float],
    weights: Mapping[ChannelType, float],
) -> float:
    """
    Weighted mean over the channels a behavior actually matched in.

    Absent channels contribute neither to the numerator nor the denominator,
    so a behavior that matched only on one low-weight channel is not dragged
    down by the channels where it did not appear.
    """
    total_weight = 0.0
    weighted = 0.0
    for channel, similarity in scores.items():
        weight = weights.get(channel, 0.0)
        weighted += similarity * weight
        total_weight += weight

    if total_weight == 0:
        return 0.0
    return weighted / total_weight


def rank_candidates(
    channel_results: Mapping[ChannelType, list[TriggerMatch]],
    config: RankerConfig | None = None,
    current_behavior_id: str | None = None,
    priorities: Mapping[str, int] | None = None,
) -> list[BehaviorCandidate]:
    """
    Rank behaviors from broadcaster output.

    Args:
        channel_results: Matches per channel, as returned by the broadcaster
        config: Channel weights and adjustment constants
        current_behavior_id: Active behavior, eligible for the continuity bonus
        priorities: Registry priorities by behavior id, used when a trigger
            carries no priority override

    Returns:
        Candidates sorted by overall_score descending. Ties keep first-seen order.
    """
    config = config or RankerConfig()
    priorities = priorities or {}

    # behavior_id -> channel -> best similarity; dict order is first-seen order
    channel_scores: dict[str, dict[ChannelType, float]] = {}
    metadata: dict[str, dict] = {}

    ordered_channels = [c for c in CHANNEL_ORDER if c in channel_results]
    ordered_channels += [c for c in channel_results if c not in ordered_channels]

    for channel in ordered_channels:
        for match in channel_results[channel]:
            scores = channel_scores.setdefault(match.behavior_id, {})
            if match.similarity > scores.get(channel, float("-inf")):
                scores[channel] = match.similarity
            metadata.setdefault(match.behavior_id, dict(match.metadata))

    candidates: list[BehaviorCandidate] = []
    for behavior_id, scores in channel_scores.items():
        fused = fuse_channel_scores(scores, config.channel_weights)

        priority = metadata[behavior_id].get("priority") or priorities.get(
            behavior_id, config.default_priority
        )
        score = fused * (priority / 10) * config.priority_scale

        if (
            current_behavior_id
            and behavior_id == current_behavior_id
            and fused > config.continuity_min_score
        ):
            score *= config.continuity_multiplier

        candidates.append(
            BehaviorCandidate(
                behavior_id=behavior_id,
                channel_scores=scores,
                fused_score=fused,
                overall_score=score,
                metadata=metadata[behavior_id],
            )
        )

    # sorted() is stable
    return sorted(candidates, key=lambda c: c.overall_score, reverse=True)
