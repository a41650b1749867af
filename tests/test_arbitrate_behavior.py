"""Tests for LLM behavior arbitration and its fallbacks."""

import pytest

from behavior_engine.chains.arbitrate_behavior import BehaviorArbitrator
from behavior_engine.core.config import ArbitrationConfig
from behavior_engine.core.errors import ProviderError
from behavior_engine.core.schemas_behaviors import BehaviorCandidate, ContinuityPlaceholder
from tests.fakes.fake_llm import FakeLLM


def candidate(behavior_id: str, score: float) -> BehaviorCandidate:
    return BehaviorCandidate(behavior_id=behavior_id, fused_score=score, overall_score=score)


@pytest.fixture
def candidates():
    return [candidate("journal-prompt", 0.8), candidate("gratitude-practice", 0.6), candidate("goal-setting", 0.4)]


def pick(behavior_id, confidence=0.9, reasoning="clear fit"):
    return {"behavior_id": behavior_id, "confidence": confidence, "reasoning": reasoning}


# =============================================================================
# Pool
# =============================================================================


def test_pool_adds_placeholder_for_missing_current(candidates):
    arbitrator = BehaviorArbitrator(FakeLLM())
    pool = arbitrator.build_pool(candidates, current_behavior_id="weekly-review")

    assert len(pool) == 4
    placeholder = pool[-1]
    assert isinstance(placeholder, ContinuityPlaceholder)
    assert placeholder.behavior_id == "weekly-review"
    assert placeholder.overall_score == 0.5
    assert len(candidates) == 3


def test_pool_has_no_placeholder_when_current_ranked(candidates):
    pool = BehaviorArbitrator(FakeLLM()).build_pool(candidates, current_behavior_id="goal-setting")
    assert [p.behavior_id for p in pool] == ["journal-prompt", "gratitude-practice", "goal-setting"]


@pytest.mark.parametrize("requested,effective", [(1, 5), (10, 10), (200, 50)])
def test_pool_size_is_clamped(requested, effective):
    assert ArbitrationConfig(candidate_pool_size=requested).candidate_pool_size == effective


def test_pool_truncates_to_top_n():
    ranked = [candidate(f"b{i}", 1 - i / 100) for i in range(12)]
    pool = BehaviorArbitrator(FakeLLM(), ArbitrationConfig(candidate_pool_size=5)).build_pool(ranked)
    assert [p.behavior_id for p in pool] == ["b0", "b1", "b2", "b3", "b4"]


# =============================================================================
# Arbitration
# =============================================================================


@pytest.mark.asyncio
async def test_arbitrate_returns_model_pick(candidates):
    llm = FakeLLM(tool=pick("gratitude-practice", 0.8))
    result = await BehaviorArbitrator(llm).arbitrate(candidates, "I want to notice good things")

    assert result.selected_behavior_id == "gratitude-practice"
    assert result.confidence == 0.8
    assert result.is_fallback is False

    tool = llm.tool_calls[0]["tool"]
    assert tool["input_schema"]["properties"]["behavior_id"]["enum"] == [
        "journal-prompt", "gratitude-practice", "goal-setting"
    ]


@pytest.mark.asyncio
async def test_prompt_shows_current_and_recent_turns(candidates):
    llm = FakeLLM(tool=pick("journal-prompt"))
    await BehaviorArbitrator(llm).arbitrate(
        candidates,
        "hello",
        recent_turns=[{"role": "user", "content": "earlier message"}],
        current_behavior_id="journal-prompt",
        persistence_score=0.7,
    )
    prompt = llm.tool_calls[0]["user"]
    assert "CURRENT ACTIVE BEHAVIOR: journal-prompt" in prompt
    assert "USER: earlier message" in prompt
    assert "CONTINUITY BONUS: +0.700" in prompt


@pytest.mark.asyncio
async def test_confidence_is_clamped(candidates):
    result = await BehaviorArbitrator(FakeLLM(tool=pick("journal-prompt", 1.7))).arbitrate(candidates, "hi")
    assert result.confidence == 1.0


@pytest.mark.asyncio
async def test_provider_error_falls_back_to_current(candidates):
    llm = FakeLLM(tool=ProviderError("rate limited"))
    result = await BehaviorArbitrator(llm).arbitrate(candidates, "hi", current_behavior_id="goal-setting")

    assert result.selected_behavior_id == "goal-setting"
    assert result.is_fallback is True
    assert result.confidence == 0.5
    assert result.reasoning.startswith("fallback")


@pytest.mark.asyncio
async def test_provider_error_without_current_uses_top_ranked(candidates):
    result = await BehaviorArbitrator(FakeLLM(tool=ProviderError("down"))).arbitrate(candidates, "hi")
    assert result.selected_behavior_id == "journal-prompt"
    assert result.is_fallback is True


@pytest.mark.asyncio
async def test_no_candidates_uses_default_without_llm():
    llm = FakeLLM(tool=pick("journal-prompt"))
    result = await BehaviorArbitrator(llm).arbitrate([], "hi")

    assert result.selected_behavior_id == "free-form-chat"
    assert result.is_fallback is True
    assert llm.tool_calls == []


@pytest.mark.asyncio
async def test_id_outside_pool_falls_back(candidates):
    result = await BehaviorArbitrator(FakeLLM(tool=pick("not-a-behavior"))).arbitrate(candidates, "hi")
    assert result.selected_behavior_id == "journal-prompt"
    assert result.is_fallback is True
    assert "MalformedOutputError" in result.reasoning


@pytest.mark.asyncio
async def test_timeout_falls_back(candidates):
    llm = FakeLLM(tool=pick("gratitude-practice"), delay=0.5)
    result = await BehaviorArbitrator(llm).arbitrate(candidates, "hi", deadline_s=0.01)

    assert result.is_fallback is True
    assert result.reasoning == "fallback (timeout): kept top-ranked candidate"


@pytest.mark.asyncio
async def test_exhausted_deadline_skips_llm(candidates):
    llm = FakeLLM(tool=pick("gratitude-practice"))
    result = await BehaviorArbitrator(llm).arbitrate(candidates, "hi", deadline_s=0)

    assert result.is_fallback is True
    assert llm.tool_calls == []


# =============================================================================
# Switch margin
# =============================================================================


@pytest.mark.asyncio
async def test_switch_below_margin_keeps_current():
    ranked = [candidate("journal-prompt", 0.8), candidate("free-form-chat", 0.2)]
    llm = FakeLLM(tool=pick("journal-prompt"))
    result = await BehaviorArbitrator(llm).arbitrate(
        ranked, "hi", current_behavior_id="free-form-chat", persistence_score=0.7
    )

    assert result.selected_behavior_id == "free-form-chat"
    assert result.reasoning.startswith("continuity override")
    assert result.is_fallback is False


@pytest.mark.asyncio
async def test_switch_above_margin_is_allowed():
    ranked = [candidate("journal-prompt", 0.95), candidate("free-form-chat", 0.0)]
    result = await BehaviorArbitrator(FakeLLM(tool=pick("journal-prompt"))).arbitrate(
        ranked, "hi", current_behavior_id="free-form-chat", persistence_score=0.7
    )
    assert result.selected_behavior_id == "journal-prompt"


@pytest.mark.asyncio
async def test_switch_margin_uses_placeholder_baseline(candidates):
    # weekly-review is not ranked: baseline 0.5 + persistence 0.1 + 0.2 > 0.6
    result = await BehaviorArbitrator(FakeLLM(tool=pick("gratitude-practice"))).arbitrate(
        candidates, "hi", current_behavior_id="weekly-review", persistence_score=0.1
    )
    assert result.selected_behavior_id == "weekly-review"


@pytest.mark.asyncio
async def test_switch_margin_can_be_disabled():
    ranked = [candidate("journal-prompt", 0.8), candidate("free-form-chat", 0.2)]
    arbitrator = BehaviorArbitrator(FakeLLM(tool=pick("journal-prompt")), ArbitrationConfig(enforce_switch_margin=False))
    result = await arbitrator.arbitrate(ranked, "hi", current_behavior_id="free-form-chat", persistence_score=0.7)
    assert result.selected_behavior_id == "journal-prompt"
