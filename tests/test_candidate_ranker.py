"""Tests for channel fusion and candidate ranking."""

import pytest

from behavior_engine.core.candidate_ranker import fuse_channel_scores, rank_candidates
from behavior_engine.core.config import DEFAULT_CHANNEL_WEIGHTS, RankerConfig
from behavior_engine.core.schemas_behaviors import ChannelType, TriggerMatch

U = ChannelType.USER_MESSAGE
C = ChannelType.COMBINED_EXCHANGE
X = ChannelType.EXTERNAL_CONTEXT
T = ChannelType.AGENT_THOUGHT


def match(behavior_id, channel, similarity, **metadata):
    return TriggerMatch(behavior_id=behavior_id, channel_type=channel, similarity=similarity, metadata=metadata)


def test_fusion_ignores_absent_channels():
    """0.8 on user (w=1.0), 0.6 on combined (w=0.5), nothing on external context."""
    fused = fuse_channel_scores({U: 0.8, C: 0.6}, {U: 1.0, C: 0.5, X: 0.4})
    assert fused == pytest.approx(0.7333, abs=1e-4)


def test_fusion_zero_weight_is_zero():
    assert fuse_channel_scores({U: 0.9}, {U: 0.0}) == 0.0
    assert fuse_channel_scores({}, DEFAULT_CHANNEL_WEIGHTS) == 0.0


def test_rank_fuses_channels_and_applies_priority():
    results = {
        U: [match("journal-prompt", U, 0.8)],
        C: [match("journal-prompt", C, 0.6)],
        X: [],
    }
    ranked = rank_candidates(results, priorities={"journal-prompt": 6})

    assert len(ranked) == 1
    candidate = ranked[0]
    assert candidate.fused_score == pytest.approx(0.7333, abs=1e-4)
    assert candidate.overall_score == pytest.approx(0.7333 * 0.6 * 1.2, abs=1e-3)
    assert candidate.channel_scores == {U: 0.8, C: 0.6}


def test_best_match_per_channel_wins():
    results = {U: [match("gratitude-practice", U, 0.5), match("gratitude-practice", U, 0.9)]}
    ranked = rank_candidates(results)
    assert ranked[0].channel_scores[U] == 0.9


def test_trigger_priority_overrides_registry_priority():
    results = {U: [match("a", U, 0.5, priority=10), match("b", U, 0.5)]}
    ranked = rank_candidates(results, priorities={"a": 1, "b": 5})

    scores = {c.behavior_id: c.overall_score for c in ranked}
    assert scores["a"] == pytest.approx(0.5 * 1.0 * 1.2)
    assert scores["b"] == pytest.approx(0.5 * 0.5 * 1.2)


def test_unknown_priority_uses_default():
    ranked = rank_candidates({U: [match("x", U, 1.0)]}, RankerConfig(default_priority=5))
    assert ranked[0].overall_score == pytest.approx(0.6)


def test_continuity_bonus_for_current_behavior():
    results = {U: [match("weekly-review", U, 0.5), match("goal-setting", U, 0.5)]}
    ranked = rank_candidates(
        results,
        current_behavior_id="goal-setting",
        priorities={"weekly-review": 5, "goal-setting": 5},
    )

    assert ranked[0].behavior_id == "goal-setting"
    assert ranked[0].overall_score == pytest.approx(ranked[1].overall_score * 1.5)


def test_no_continuity_bonus_at_or_below_min_score():
    results = {U: [match("goal-setting", U, 0.3)]}
    ranked = rank_candidates(results, current_behavior_id="goal-setting", priorities={"goal-setting": 5})
    assert ranked[0].overall_score == pytest.approx(0.3 * 0.5 * 1.2)


def test_ties_keep_first_seen_order():
    results = {
        U: [match("first", U, 0.7)],
        T: [match("second", T, 0.7)],
    }
    ranked = rank_candidates(results, priorities={"first": 5, "second": 5})
    assert [c.behavior_id for c in ranked] == ["first", "second"]


def test_ranking_is_pure():
    results = {U: [match("a", U, 0.9), match("b", U, 0.4)], C: [match("b", C, 0.8)]}
    first = rank_candidates(results)
    second = rank_candidates(results)

    assert [c.model_dump() for c in first] == [c.model_dump() for c in second]
    assert [m.similarity for m in results[U]] == [0.9, 0.4]


def test_empty_results_rank_nothing():
    assert rank_candidates({}) == []
