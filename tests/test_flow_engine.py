"""Tests for flow progression, exit conditions and completion actions."""

import asyncio

import pytest

from behavior_engine.core.config import FlowPolicyConfig
from behavior_engine.core.errors import ProviderError, UnknownFlowError
from behavior_engine.core.flow_engine import FlowEngine
from behavior_engine.core.schemas_flows import (
    CompletionAction,
    ExitCondition,
    FlowStage,
    FlowTemplate,
)
from tests.fakes.fake_llm import FakeLLM


def judge(stage: str | Exception = "no", flow: str | Exception = "no"):
    """Scripted judge: separate answers for stage and flow-completion prompts."""

    def answer(system, user):
        return flow if "naturally complete" in user else stage

    return answer


def stage(i: int, min_exchanges: int = 1, max_exchanges: int | None = None) -> FlowStage:
    return FlowStage(
        id=f"stage-{i}",
        name=f"Stage {i}",
        agent_prompt=f"Do step {i}",
        min_exchanges=min_exchanges,
        max_exchanges=max_exchanges,
    )


def four_stage_template(**overrides) -> FlowTemplate:
    fields = {
        "id": "four-step",
        "name": "Four Step",
        "target_exchange_count": 4,
        "stages": [stage(i) for i in range(4)],
        "exit_conditions": [ExitCondition(type="exchange_count", condition=4)],
    }
    fields.update(overrides)
    return FlowTemplate(**fields)


def make_engine(store, sink, llm=None, policy=None, templates=None) -> FlowEngine:
    return FlowEngine(
        store,
        llm=llm or FakeLLM(text=judge()),
        completion_sink=sink,
        policy=policy,
        templates=templates,
    )


def stage_calls(llm: FakeLLM) -> int:
    return sum("stage is complete" in c["user"] for c in llm.text_calls)


def flow_calls(llm: FakeLLM) -> int:
    return sum("naturally complete" in c["user"] for c in llm.text_calls)


# =============================================================================
# Templates
# =============================================================================


def test_default_templates_registered(store, sink):
    engine = make_engine(store, sink)
    ids = {t.id for t in engine.get_available_flows()}
    assert ids == {"journal-prompt", "guided-exercise", "progress-analysis", "weekly-planning"}


def test_register_and_get_template(store, sink):
    engine = make_engine(store, sink, templates=[])
    engine.register_flow_template(four_stage_template())

    assert engine.get_template("four-step").stage_count == 4
    with pytest.raises(UnknownFlowError):
        engine.get_template("journal-prompt")


def test_stage_prompt_lookup(store, sink):
    engine = make_engine(store, sink)
    assert engine.get_stage_prompt("journal-prompt", 0).startswith("Start with an open-ended")
    assert engine.get_stage_prompt("journal-prompt", 4) is None
    assert engine.get_stage_prompt("journal-prompt", -1) is None
    assert engine.get_stage_prompt("missing", 0) is None


# =============================================================================
# Lifecycle
# =============================================================================


@pytest.mark.asyncio
async def test_start_flow_persists_stage_zero(store, sink):
    engine = make_engine(store, sink)
    ctx = await engine.start_flow("u1", "s1", "journal-prompt")

    assert ctx.current_stage == 0
    assert ctx.exchange_count == 0
    assert store.flows[ctx.id].flow_id == "journal-prompt"
    assert (await engine.get_current_flow("u1", "s1")).id == ctx.id


@pytest.mark.asyncio
async def test_start_unknown_flow_raises(store, sink):
    with pytest.raises(UnknownFlowError):
        await make_engine(store, sink).start_flow("u1", None, "nope")


@pytest.mark.asyncio
async def test_new_flow_supersedes_incomplete_one(store, sink):
    engine = make_engine(store, sink)
    first = await engine.start_flow("u1", "s1", "journal-prompt")
    second = await engine.start_flow("u1", "s1", "guided-exercise")

    assert store.flows[first.id].exit_reason == "superseded"
    assert store.flows[first.id].completed_at is not None
    assert (await engine.get_current_flow("u1", "s1")).id == second.id


@pytest.mark.asyncio
async def test_start_flow_waits_for_in_flight_progress(store, sink):
    llm = FakeLLM(text="no", delay=0.2)
    engine = make_engine(store, sink, llm=llm, templates=[four_stage_template()])
    first = await engine.start_flow("u1", "s1", "four-step")

    progress, second = await asyncio.gather(
        engine.progress_flow(first, "hello", "hi"),
        engine.start_flow("u1", "s1", "journal-prompt"),
    )

    incomplete = [c for c in store.flows.values() if c.completed_at is None]
    assert [c.id for c in incomplete] == [second.id]
    assert store.flows[first.id].exit_reason == "superseded"
    assert store.flows[first.id].exchange_count == 1
    assert progress.should_continue is True


@pytest.mark.asyncio
async def test_exchange_on_flow_closed_mid_judgment_is_dropped(store, sink):
    engine = make_engine(store, sink, templates=[four_stage_template()])
    ctx = await engine.start_flow("u1", "s1", "four-step")

    def close_then_answer(system, user):
        row = store.flows[ctx.id]
        row.completed_at = row.flow_started_at
        row.exit_reason = "superseded"
        return "no"

    engine.llm = FakeLLM(text=close_then_answer)
    result = await engine.progress_flow(ctx, "hello", "hi")

    assert result.completed is True
    assert result.exit_reason == "superseded"
    assert store.flows[ctx.id].exchange_count == 0
    assert ctx.is_complete


@pytest.mark.asyncio
async def test_current_flow_store_error_is_none(store, sink):
    store.fail_on.add("get_active_flow")
    assert await make_engine(store, sink).get_current_flow("u1") is None


# =============================================================================
# Progression
# =============================================================================


@pytest.mark.asyncio
@pytest.mark.parametrize("stage_answer", ["yes", "no", ProviderError("down")])
async def test_four_stage_flow_completes_on_fourth_exchange(store, sink, stage_answer):
    llm = FakeLLM(text=judge(stage=stage_answer))
    engine = make_engine(store, sink, llm=llm, templates=[four_stage_template()])
    ctx = await engine.start_flow("u1", None, "four-step")

    for i in range(3):
        result = await engine.progress_flow(ctx, f"user {i}", f"agent {i}")
        assert result.should_continue is True
        assert result.completed is False

    result = await engine.progress_flow(ctx, "user 3", "agent 3")
    assert result.completed is True
    assert result.should_exit is True
    assert result.exit_reason == "Target exchange count reached"
    assert ctx.is_complete
    assert ctx.exchange_count == 4


@pytest.mark.asyncio
async def test_stage_index_stays_in_bounds_and_never_decreases(store, sink):
    template = four_stage_template(
        exit_conditions=[ExitCondition(type="exchange_count", condition=10)], target_exchange_count=10
    )
    engine = make_engine(store, sink, llm=FakeLLM(text=judge(stage="yes")), templates=[template])
    ctx = await engine.start_flow("u1", None, "four-step")

    stages = []
    for i in range(9):
        await engine.progress_flow(ctx, f"u{i}", f"a{i}")
        stages.append(ctx.current_stage)

    assert all(0 <= s < template.stage_count for s in stages)
    assert stages == sorted(stages)
    assert stages[-1] == 3


@pytest.mark.asyncio
async def test_max_exchanges_advances_without_llm(store, sink):
    template = four_stage_template(stages=[stage(i, max_exchanges=1) for i in range(4)])
    llm = FakeLLM(text=judge())
    engine = make_engine(store, sink, llm=llm, templates=[template])
    ctx = await engine.start_flow("u1", None, "four-step")

    result = await engine.progress_flow(ctx, "hello", "hi")
    assert result.next_stage == 1
    assert stage_calls(llm) == 0


@pytest.mark.asyncio
async def test_stage_waits_for_min_exchanges_then_asks_llm(store, sink):
    template = four_stage_template(stages=[stage(0, min_exchanges=2), stage(1)])
    llm = FakeLLM(text=judge(stage="yes"))
    engine = make_engine(store, sink, llm=llm, templates=[template])
    ctx = await engine.start_flow("u1", None, "four-step")

    first = await engine.progress_flow(ctx, "one", "a")
    assert first.next_stage is None
    assert stage_calls(llm) == 0

    second = await engine.progress_flow(ctx, "two", "b")
    assert second.next_stage == 1
    assert ctx.stage_exchange_count == 0
    assert stage_calls(llm) == 1


@pytest.mark.asyncio
async def test_stage_judgment_error_advances_by_default(store, sink):
    template = four_stage_template(stages=[stage(0), stage(1)])
    engine = make_engine(store, sink, llm=FakeLLM(text=judge(stage=ProviderError("down"))), templates=[template])
    ctx = await engine.start_flow("u1", None, "four-step")

    result = await engine.progress_flow(ctx, "one", "a")
    assert result.next_stage == 1


@pytest.mark.asyncio
async def test_stage_judgment_error_policy_is_configurable(store, sink):
    template = four_stage_template(stages=[stage(0), stage(1)])
    engine = make_engine(
        store,
        sink,
        llm=FakeLLM(text=judge(stage=ProviderError("down"))),
        policy=FlowPolicyConfig(advance_on_llm_error=False),
        templates=[template],
    )
    ctx = await engine.start_flow("u1", None, "four-step")

    result = await engine.progress_flow(ctx, "one", "a")
    assert result.next_stage is None
    assert ctx.current_stage == 0


@pytest.mark.asyncio
async def test_last_stage_skips_stage_judgment(store, sink):
    template = four_stage_template(
        stages=[stage(0), stage(1)],
        exit_conditions=[ExitCondition(type="exchange_count", condition=5)],
        target_exchange_count=5,
    )
    llm = FakeLLM(text=judge(stage="yes"))
    engine = make_engine(store, sink, llm=llm, templates=[template])
    ctx = await engine.start_flow("u1", None, "four-step")

    await engine.progress_flow(ctx, "one", "a")
    assert ctx.current_stage == 1
    assert stage_calls(llm) == 1

    for i in range(3):
        result = await engine.progress_flow(ctx, f"more {i}", "b")
        assert result.next_stage is None
    assert ctx.current_stage == 1
    assert stage_calls(llm) == 1


@pytest.mark.asyncio
async def test_collected_data_is_merged(store, sink):
    engine = make_engine(store, sink, templates=[four_stage_template()])
    ctx = await engine.start_flow("u1", None, "four-step")

    await engine.progress_flow(ctx, "one", "a", collected={"mood": "tired"})
    await engine.progress_flow(ctx, "two", "b", collected={"energy": 3})
    assert store.flows[ctx.id].collected_data == {"mood": "tired", "energy": 3}


# =============================================================================
# Idempotency
# =============================================================================


@pytest.mark.asyncio
async def test_retry_with_same_turn_id_is_a_no_op(store, sink):
    engine = make_engine(store, sink, templates=[four_stage_template()])
    ctx = await engine.start_flow("u1", None, "four-step")

    await engine.progress_flow(ctx, "hello", "hi", turn_id="turn-1")
    retry = await engine.progress_flow(ctx, "hello", "hi", turn_id="turn-1")

    assert retry.duplicate is True
    assert ctx.exchange_count == 1
    assert len(store.flows[ctx.id].conversation_history) == 2


@pytest.mark.asyncio
async def test_retry_with_stale_context_is_a_no_op(store, sink):
    engine = make_engine(store, sink, templates=[four_stage_template()])
    ctx = await engine.start_flow("u1", None, "four-step")
    stale = ctx.model_copy(deep=True)

    await engine.progress_flow(ctx, "hello", "hi")
    retry = await engine.progress_flow(stale, "hello", "hi")

    assert retry.duplicate is True
    assert store.flows[ctx.id].exchange_count == 1
    assert stale.exchange_count == 1


@pytest.mark.asyncio
async def test_completed_flow_is_never_resumed(store, sink):
    template = four_stage_template(exit_conditions=[ExitCondition(type="exchange_count", condition=1)])
    engine = make_engine(store, sink, templates=[template])
    ctx = await engine.start_flow("u1", None, "four-step")

    await engine.progress_flow(ctx, "one", "a")
    again = await engine.progress_flow(ctx, "two", "b")

    assert again.completed is True
    assert again.should_continue is False
    assert store.flows[ctx.id].exchange_count == 1


# =============================================================================
# Exit conditions
# =============================================================================


@pytest.mark.asyncio
async def test_user_signal_ends_journal_and_saves_entry(store, sink):
    engine = make_engine(store, sink)
    ctx = await engine.start_flow("u1", None, "journal-prompt")

    await engine.progress_flow(ctx, "Work has been a lot lately", "What stands out?")
    result = await engine.progress_flow(ctx, "I think I'm done for today", "Thank you for sharing")

    assert result.exit_reason == "User signaled completion"
    assert result.completion_data == {
        "type": "journal",
        "content": "Work has been a lot lately\n\nI think I'm done for today",
    }
    kind, payload = sink.persisted[0]
    assert kind == "journal_entry"
    assert payload["category"] == "prompted_reflection"
    assert payload["user_id"] == "u1"


@pytest.mark.asyncio
async def test_llm_eval_ends_flow_early(store, sink):
    llm = FakeLLM(text=judge(flow="yes"))
    engine = make_engine(store, sink, llm=llm)
    ctx = await engine.start_flow("u1", None, "journal-prompt")

    result = await engine.progress_flow(ctx, "Feeling settled", "Glad to hear")
    assert result.exit_reason == "LLM determined natural completion"
    assert flow_calls(llm) == 1


@pytest.mark.asyncio
async def test_exit_judgment_error_does_not_exit(store, sink):
    llm = FakeLLM(text=judge(flow=ProviderError("down")))
    engine = make_engine(store, sink, llm=llm)
    ctx = await engine.start_flow("u1", None, "journal-prompt")

    result = await engine.progress_flow(ctx, "Feeling settled", "Glad to hear")
    assert result.completed is False
    assert flow_calls(llm) == 1


@pytest.mark.asyncio
async def test_llm_eval_waits_for_target_without_early_exit(store, sink):
    template = four_stage_template(
        target_exchange_count=3,
        allow_early_exit=False,
        exit_conditions=[ExitCondition(type="llm_eval", condition="complete")],
    )
    llm = FakeLLM(text=judge(flow="yes"))
    engine = make_engine(store, sink, llm=llm, templates=[template])
    ctx = await engine.start_flow("u1", None, "four-step")

    await engine.progress_flow(ctx, "one", "a")
    await engine.progress_flow(ctx, "two", "b")
    assert flow_calls(llm) == 0

    result = await engine.progress_flow(ctx, "three", "c")
    assert result.exit_reason == "LLM determined natural completion"


@pytest.mark.asyncio
async def test_user_signal_honored_without_early_exit(store, sink):
    engine = make_engine(store, sink)
    ctx = await engine.start_flow("u1", None, "guided-exercise")

    result = await engine.progress_flow(ctx, "Can we stop here", "Of course")
    assert result.exit_reason == "User signaled completion"


# =============================================================================
# Completion actions
# =============================================================================


@pytest.mark.asyncio
async def test_activity_completion_saves_collected_data(store, sink):
    template = four_stage_template(
        exit_conditions=[ExitCondition(type="exchange_count", condition=1)],
        completion_action=CompletionAction(type="save_activity", params={"activity_type": "weekly_plan"}),
    )
    engine = make_engine(store, sink, templates=[template])
    ctx = await engine.start_flow("u1", None, "four-step")

    result = await engine.progress_flow(ctx, "Gym on Monday", "Noted", collected={"priorities": ["gym"]})

    assert result.completion_data == {"type": "activity", "data": {"priorities": ["gym"]}}
    kind, payload = sink.persisted[0]
    assert kind == "activity"
    assert payload["activity_type"] == "weekly_plan"
    assert payload["data"] == {"priorities": ["gym"]}


@pytest.mark.asyncio
async def test_no_completion_action(store, sink):
    engine = make_engine(store, sink)
    ctx = await engine.start_flow("u1", None, "progress-analysis")

    for i in range(3):
        result = await engine.progress_flow(ctx, f"u{i}", f"a{i}")

    assert result.completed is True
    assert result.completion_data is None
    assert sink.persisted == []


@pytest.mark.asyncio
async def test_completion_sink_failure_still_completes(store, sink):
    sink.fail = True
    engine = make_engine(store, sink)
    ctx = await engine.start_flow("u1", None, "journal-prompt")

    result = await engine.progress_flow(ctx, "that's all", "Take care")

    assert result.completed is True
    assert result.completion_data is None
    assert store.flows[ctx.id].is_complete


@pytest.mark.asyncio
async def test_persist_failure_does_not_raise(store, sink):
    engine = make_engine(store, sink, templates=[four_stage_template()])
    ctx = await engine.start_flow("u1", None, "four-step")
    store.fail_on.add("save_flow_context")

    result = await engine.progress_flow(ctx, "one", "a")
    assert result.should_continue is True
    assert ctx.exchange_count == 1
