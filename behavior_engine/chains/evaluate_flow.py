"""Strict yes/no judgments used by the flow engine.

Both calls raise on provider failure; the flow engine owns the policy for
what an error means (advance or not, exit or not).
"""

from behavior_engine.core.llm import LLMClient, parse_yes_no
from behavior_engine.core.schemas_flows import FlowContext, FlowMessage, FlowStage, FlowTemplate

JUDGE_SYSTEM = """You judge the progress of a short guided wellness conversation.
Respond with only "yes" or "no"."""

STAGE_COMPLETE_USER = """Evaluate if the following conversation stage is complete:

Stage: {stage_name}
Agent goal: {agent_prompt}
User expectation: {user_expectation}

Recent conversation:
{history}

Has the stage objective been met? Respond with only "yes" or "no"."""

FLOW_COMPLETE_USER = """Evaluate if this conversation flow feels naturally complete:

Flow: {flow_name}
Description: {flow_description}
Current exchange count: {exchange_count}
Target exchanges: {target}

Recent conversation:
{history}

Does this conversation feel naturally complete and ready to wrap up? Respond with only "yes" or "no"."""


def format_history(messages: list[FlowMessage]) -> str:
    return "\n".join(
        f"{'User' if m.role == 'user' else 'Agent'}: {m.content}" for m in messages
    )


async def judge_stage_complete(
    llm: LLMClient,
    context: FlowContext,
    stage: FlowStage,
    history_messages: int = 4,
) -> bool:
    """Ask whether the current stage's objective was met over the last exchanges."""
    answer = await llm.complete_text(
        system=JUDGE_SYSTEM,
        user=STAGE_COMPLETE_USER.format(
            stage_name=stage.name,
            agent_prompt=stage.agent_prompt,
            user_expectation=stage.user_expectation,
            history=format_history(context.conversation_history[-history_messages:]),
        ),
        max_tokens=10,
        temperature=0.0,
    )
    return parse_yes_no(answer)


async def judge_flow_complete(
    llm: LLMClient,
    context: FlowContext,
    template: FlowTemplate,
    history_messages: int = 6,
) -> bool:
    """Ask whether the whole flow feels naturally complete."""
    answer = await llm.complete_text(
        system=JUDGE_SYSTEM,
        user=FLOW_COMPLETE_USER.format(
            flow_name=template.name,
            flow_description=template.description,
            exchange_count=context.exchange_count,
            target=template.target_exchange_count,
            history=format_history(context.conversation_history[-history_messages:]),
        ),
        max_tokens=10,
        temperature=0.0,
    )
    return parse_yes_no(answer)
