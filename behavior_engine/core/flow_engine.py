"""Conversation flow engine.

Runs goal-oriented multi-stage flows: stage progression, exit conditions and
completion actions. States are Stage[0] -> ... -> Stage[n-1] -> Completed; a
completed flow is never resumed.
"""

import asyncio
import hashlib
import logging
import re
from collections.abc import Callable, Iterable
from datetime import datetime
from typing import Any, Protocol

from behavior_engine.chains.evaluate_flow import judge_flow_complete, judge_stage_complete
from behavior_engine.core.config import FlowPolicyConfig
from behavior_engine.core.errors import UnknownFlowError
from behavior_engine.core.flow_templates import DEFAULT_FLOW_TEMPLATES
from behavior_engine.core.llm import LLMClient
from behavior_engine.core.logging import get_logger, log_with_context
from behavior_engine.core.schemas_behaviors import utcnow
from behavior_engine.core.schemas_flows import (
    CompletionAction,
    FlowContext,
    FlowMessage,
    FlowProgressResult,
    FlowTemplate,
)
from behavior_engine.core.user_locks import UserTurnLocks

logger = get_logger(__name__)

SUPERSEDED = "superseded"


class CompletionSink(Protocol):
    async def persist(self, kind: str, payload: dict[str, Any]) -> Any: ...


class FlowEngine:
    """Owns flow templates and drives FlowContext through its stages."""

    def __init__(
        self,
        store,
        llm: LLMClient | None = None,
        completion_sink: CompletionSink | None = None,
        policy: FlowPolicyConfig | None = None,
        templates: Iterable[FlowTemplate] | None = None,
        locks: UserTurnLocks | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        if completion_sink is None:
            from behavior_engine.db.completion_artifacts import SupabaseCompletionSink

            completion_sink = SupabaseCompletionSink()
        if llm is None:
            from behavior_engine.core.config import get_settings

            llm = LLMClient(model=get_settings().FLOW_EVAL_MODEL)

        self.store = store
        self.llm = llm
        self.sink = completion_sink
        self.policy = policy or FlowPolicyConfig()
        self.locks = locks or UserTurnLocks()
        self._clock = clock
        self._templates: dict[str, FlowTemplate] = {}
        for template in DEFAULT_FLOW_TEMPLATES if templates is None else templates:
            self.register_flow_template(template)

    # =========================================================================
    # Templates
    # =========================================================================

    def register_flow_template(self, template: FlowTemplate) -> None:
        self._templates[template.id] = template

    def get_available_flows(self) -> list[FlowTemplate]:
        return list(self._templates.values())

    def get_template(self, flow_id: str) -> FlowTemplate:
        template = self._templates.get(flow_id)
        if template is None:
            raise UnknownFlowError(flow_id)
        return template

    def get_stage_prompt(self, flow_id: str, stage_index: int) -> str | None:
        """Agent instruction for a stage, or None when the index is out of range."""
        template = self._templates.get(flow_id)
        if template is None or not 0 <= stage_index < template.stage_count:
            return None
        return template.stages[stage_index].agent_prompt

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start_flow(self, user_id: str, session_id: str | None, flow_id: str) -> FlowContext:
        """
        Start a fresh flow at stage 0.

        Any incomplete flow for the same user and session is closed first with
        exit_reason "superseded", so at most one flow is active at a time.

        Raises:
            UnknownFlowError: If flow_id is not registered
        """
        self.get_template(flow_id)

        async with self.locks.hold(user_id):
            existing = await self.get_current_flow(user_id, session_id)
            if existing is not None:
                existing.completed_at = self._clock()
                existing.exit_reason = SUPERSEDED
                await self._persist(existing)
                log_with_context(
                    logger, logging.INFO,
                    f"Superseded flow {existing.flow_id} ({existing.id})",
                    user_id=user_id, flow_context_id=existing.id,
                )

            now = self._clock()
            context = FlowContext(
                user_id=user_id,
                session_id=session_id,
                flow_id=flow_id,
                stage_started_at=now,
                flow_started_at=now,
            )
            await self._persist(context)

        log_with_context(
            logger, logging.INFO, f"Started flow {flow_id}",
            user_id=user_id, flow_context_id=context.id,
        )
        return context

    async def get_current_flow(self, user_id: str, session_id: str | None = None) -> FlowContext | None:
        """Newest incomplete flow for the user, or None (also on store errors)."""
        try:
            return await self.store.get_active_flow(user_id, session_id)
        except Exception as e:
            logger.error(f"Failed to load current flow for user {user_id}: {e}")
            return None

    async def progress_flow(
        self,
        context: FlowContext,
        user_message: str,
        agent_message: str,
        collected: dict[str, Any] | None = None,
        turn_id: str | None = None,
    ) -> FlowProgressResult:
        """
        Apply one exchange to a flow and decide what happens next.

        Order: idempotency check, append exchange, exit conditions (first
        firing wins), stage advance, persist.

        Args:
            context: The flow being progressed. Updated in place to the new state.
            user_message: User's turn
            agent_message: Agent's reply for this turn
            collected: Structured data gathered this turn, merged into collected_data
            turn_id: Caller's turn identifier. When omitted, a key is derived
                from the exchange count and message text.

        Returns:
            FlowProgressResult

        Raises:
            UnknownFlowError: If the context references an unregistered flow
        """
        template = self.get_template(context.flow_id)
        turn_key = turn_id or self._derive_turn_key(context, user_message, agent_message)

        async with self.locks.hold(context.user_id):
            current = await self._load_authoritative(context)

            if current.last_turn_key == turn_key:
                logger.info(f"Ignoring replayed turn for flow {current.id}")
                _sync(context, current)
                return FlowProgressResult(
                    should_continue=not current.is_complete,
                    should_exit=current.is_complete,
                    completed=current.is_complete,
                    exit_reason=current.exit_reason,
                    duplicate=True,
                )

            if current.is_complete:
                _sync(context, current)
                return FlowProgressResult(
                    should_continue=False,
                    should_exit=True,
                    completed=True,
                    exit_reason=current.exit_reason,
                )

            result = await self._apply_exchange(
                current, template, user_message, agent_message, collected, turn_key
            )
            _sync(context, current)
            return result

    # =========================================================================
    # Internals
    # =========================================================================

    async def _apply_exchange(
        self,
        ctx: FlowContext,
        template: FlowTemplate,
        user_message: str,
        agent_message: str,
        collected: dict[str, Any] | None,
        turn_key: str,
    ) -> FlowProgressResult:
        now = self._clock()
        ctx.conversation_history.append(FlowMessage(role="user", content=user_message, timestamp=now))
        ctx.conversation_history.append(FlowMessage(role="agent", content=agent_message, timestamp=now))
        ctx.exchange_count += 1
        ctx.stage_exchange_count += 1
        if collected:
            ctx.collected_data.update(collected)
        ctx.last_turn_key = turn_key

        exit_reason = await self._evaluate_exit_conditions(ctx, template)
        advance = (
            exit_reason is None
            and ctx.current_stage < template.stage_count - 1
            and await self._should_advance_stage(ctx, template)
        )

        # The judgments above await the LLM; the row may have been closed meanwhile
        closed = await self._closed_elsewhere(ctx)
        if closed is not None:
            log_with_context(
                logger, logging.WARNING,
                f"Flow {template.id} was closed during the exchange ({closed.exit_reason}), dropping it",
                user_id=ctx.user_id, flow_context_id=ctx.id,
            )
            _sync(ctx, closed)
            return FlowProgressResult(
                should_continue=False,
                should_exit=True,
                completed=True,
                exit_reason=closed.exit_reason,
            )

        if exit_reason:
            completion_data = await self._run_completion_action(ctx, template.completion_action)
            ctx.completed_at = self._clock()
            ctx.exit_reason = exit_reason
            await self._persist(ctx)

            log_with_context(
                logger, logging.INFO,
                f"Flow {template.id} completed: {exit_reason}",
                user_id=ctx.user_id, flow_context_id=ctx.id, exchanges=ctx.exchange_count,
            )
            return FlowProgressResult(
                should_continue=False,
                should_exit=True,
                completed=True,
                exit_reason=exit_reason,
                completion_data=completion_data,
            )

        if advance:
            ctx.current_stage += 1
            ctx.stage_started_at = self._clock()
            ctx.stage_exchange_count = 0
            await self._persist(ctx)

            logger.debug(f"Flow {template.id} advanced to stage {ctx.current_stage}")
            return FlowProgressResult(should_continue=True, next_stage=ctx.current_stage)

        await self._persist(ctx)
        return FlowProgressResult(should_continue=True)

    async def _evaluate_exit_conditions(self, ctx: FlowContext, template: FlowTemplate) -> str | None:
        for condition in template.exit_conditions:
            if condition.type == "exchange_count":
                if ctx.exchange_count >= int(condition.condition):
                    return "Target exchange count reached"

            elif condition.type == "user_signal":
                last_user = ctx.last_user_message()
                if last_user and re.search(str(condition.condition), last_user, re.IGNORECASE):
                    return "User signaled completion"

            elif condition.type == "llm_eval":
                if not template.allow_early_exit and ctx.exchange_count < template.target_exchange_count:
                    continue
                if await self._judge(
                    judge_flow_complete(self.llm, ctx, template, self.policy.exit_history_messages),
                    on_error=self.policy.exit_on_llm_error,
                    what="flow completion",
                ):
                    return "LLM determined natural completion"

        return None

    async def _should_advance_stage(self, ctx: FlowContext, template: FlowTemplate) -> bool:
        stage = template.stages[ctx.current_stage]

        if stage.max_exchanges is not None and ctx.stage_exchange_count >= stage.max_exchanges:
            return True

        if ctx.stage_exchange_count >= stage.min_exchanges:
            return await self._judge(
                judge_stage_complete(self.llm, ctx, stage, self.policy.stage_history_messages),
                on_error=self.policy.advance_on_llm_error,
                what="stage completion",
            )
        return False

    async def _judge(self, call, on_error: bool, what: str) -> bool:
        try:
            return await asyncio.wait_for(call, timeout=self.policy.judgment_timeout_s)
        except Exception as e:
            logger.warning(f"LLM {what} judgment failed, defaulting to {on_error}: {e}")
            return on_error

    async def _run_completion_action(self, ctx: FlowContext, action: CompletionAction) -> dict[str, Any] | None:
        if action.type == "none":
            return None

        if action.type == "save_journal":
            content = "\n\n".join(m.content for m in ctx.conversation_history if m.role == "user")
            kind = "journal_entry"
            payload = {
                "user_id": ctx.user_id,
                "content": content,
                "category": action.params.get("category", "reflection"),
            }
            completion_data = {"type": "journal", "content": content}
        else:
            kind = "activity"
            payload = {
                "user_id": ctx.user_id,
                "activity_type": action.params.get("activity_type", "flow_completion"),
                "data": dict(ctx.collected_data),
            }
            completion_data = {"type": "activity", "data": dict(ctx.collected_data)}

        try:
            await self.sink.persist(kind, payload)
        except Exception as e:
            logger.error(f"Completion action {action.type} failed for flow {ctx.id}: {e}")
            return None
        return completion_data

    async def _load_authoritative(self, context: FlowContext) -> FlowContext:
        try:
            persisted = await self.store.get_flow_context(context.id)
        except Exception as e:
            logger.error(f"Failed to reload flow context {context.id}: {e}")
            persisted = None
        return persisted if persisted is not None else context.model_copy(deep=True)

    async def _closed_elsewhere(self, ctx: FlowContext) -> FlowContext | None:
        """Persisted copy of ctx when it is already complete, else None."""
        try:
            persisted = await self.store.get_flow_context(ctx.id)
        except Exception as e:
            logger.error(f"Failed to re-check flow context {ctx.id}: {e}")
            return None
        if persisted is not None and persisted.is_complete:
            return persisted
        return None

    async def _persist(self, ctx: FlowContext) -> None:
        try:
            await self.store.save_flow_context(ctx)
        except Exception as e:
            logger.error(f"Failed to persist flow context {ctx.id}: {e}")

    @staticmethod
    def _derive_turn_key(context: FlowContext, user_message: str, agent_message: str) -> str:
        raw = f"{context.id}:{context.exchange_count}:{user_message}:{agent_message}"
        return hashlib.sha256(raw.encode("utf-8")).hexdigest()[:32]


def _sync(target: FlowContext, source: FlowContext) -> None:
    if target is source:
        return
    for name in FlowContext.model_fields:
        setattr(target, name, getattr(source, name))
