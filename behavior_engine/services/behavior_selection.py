"""Behavior selection orchestrator.

One logical task per user turn:

    lock user -> load state -> broadcast -> rank -> persistence -> arbitrate
    -> record turn -> start flow (if a flow behavior was entered) -> audit

Broadcast, ranking and arbitration share one overall deadline. Provider and
data problems degrade the result; configuration errors propagate.
"""

import asyncio
import logging
import time

from behavior_engine.chains.arbitrate_behavior import BehaviorArbitrator
from behavior_engine.core.audit_writer import AuditWriter
from behavior_engine.core.behavior_persistence import PersistenceTracker, compute_persistence_score
from behavior_engine.core.behavior_registry import BehaviorRegistry
from behavior_engine.core.candidate_ranker import rank_candidates
from behavior_engine.core.config import EngineConfig, get_settings, load_engine_config
from behavior_engine.core.flow_engine import FlowEngine
from behavior_engine.core.logging import get_logger, log_with_context
from behavior_engine.core.schemas_behaviors import (
    ArbitrationResult,
    BehaviorCandidate,
    BroadcastResult,
    ConversationState,
    SelectionRequest,
    SelectionResult,
)
from behavior_engine.core.user_locks import UserTurnLocks
from behavior_engine.core.vector_broadcast import MultiVectorBroadcaster

logger = get_logger(__name__)


class BehaviorSelectionService:
    """Entry point for per-turn behavior selection."""

    def __init__(
        self,
        broadcaster: MultiVectorBroadcaster,
        arbitrator: BehaviorArbitrator,
        tracker: PersistenceTracker,
        flow_engine: FlowEngine,
        registry: BehaviorRegistry,
        store,
        audit: AuditWriter | None = None,
        locks: UserTurnLocks | None = None,
        config: EngineConfig | None = None,
    ):
        self.config = config or EngineConfig()
        self.broadcaster = broadcaster
        self.arbitrator = arbitrator
        self.tracker = tracker
        self.flow_engine = flow_engine
        self.registry = registry
        self.store = store
        self.audit = audit or AuditWriter()
        self.locks = locks or UserTurnLocks(reject_concurrent=self.config.selection.reject_concurrent_turns)
        if self.tracker.locks is None:
            self.tracker.locks = self.locks

    @classmethod
    def create(cls, config: EngineConfig | None = None) -> "BehaviorSelectionService":
        """Wire the production stack (Supabase, OpenAI, Anthropic) from settings."""
        from behavior_engine.core.embeddings import EmbeddingGenerator
        from behavior_engine.core.llm import LLMClient
        from behavior_engine.core.trigger_index import create_trigger_index
        from behavior_engine.db.completion_artifacts import SupabaseCompletionSink
        from behavior_engine.db.store import BehaviorStore

        settings = get_settings()
        config = config or load_engine_config()
        store = BehaviorStore()
        audit = AuditWriter()
        locks = UserTurnLocks(reject_concurrent=config.selection.reject_concurrent_turns)

        flow_engine = FlowEngine(
            store,
            llm=LLMClient(model=settings.FLOW_EVAL_MODEL, max_retries=config.arbitration.max_retries),
            completion_sink=SupabaseCompletionSink(),
            policy=config.flow_policy,
        )
        registry = BehaviorRegistry(flow_ids=[t.id for t in flow_engine.get_available_flows()])
        broadcaster = MultiVectorBroadcaster(
            embedder=EmbeddingGenerator(),
            index=create_trigger_index(settings.TRIGGER_INDEX_MODE),
            llm=LLMClient(model=settings.INNER_THOUGHT_MODEL, max_retries=0),
            config=config.broadcast,
            audit=audit,
            store=store,
        )
        arbitrator = BehaviorArbitrator(
            LLMClient(model=settings.ARBITRATION_MODEL, max_retries=config.arbitration.max_retries),
            config=config.arbitration,
            persistence=config.persistence,
        )
        return cls(
            broadcaster=broadcaster,
            arbitrator=arbitrator,
            tracker=PersistenceTracker(store, config.persistence, locks=locks),
            flow_engine=flow_engine,
            registry=registry,
            store=store,
            audit=audit,
            locks=locks,
            config=config,
        )

    async def select_behavior(self, request: SelectionRequest) -> SelectionResult:
        """
        Select the behavior for one user turn.

        Turns for the same user are serialized (queued, or rejected with
        ConcurrentTurnError when reject_concurrent_turns is set).

        Raises:
            ConcurrentTurnError: Same-user turn in progress and rejection is on
            ConfigurationError: The registry cannot produce a valid behavior
        """
        async with self.locks.hold(request.user_id):
            return await self._select(request)

    async def aclose(self) -> None:
        """Flush pending audit writes; call on shutdown."""
        await self.audit.aclose(self.config.selection.audit_flush_timeout_s)

    # =========================================================================
    # Pipeline
    # =========================================================================

    async def _select(self, request: SelectionRequest) -> SelectionResult:
        start = time.perf_counter()
        deadline = start + self.config.selection.selection_deadline_s

        def remaining() -> float:
            return max(0.0, deadline - time.perf_counter())

        state = await self.tracker.load_state(request.user_id, request.session_id)
        current = state.active_behavior_id or request.current_behavior_id
        if current and current not in self.registry:
            logger.warning(f"Active behavior {current} is not registered, ignoring it")
            current = None

        if request.turn_id and state.last_turn_id == request.turn_id:
            return self._duplicate_result(state, start)

        broadcast = await self._broadcast(request, state, current, remaining())
        candidates = self._rank(broadcast, current)

        persistence_score = 0.0
        if current and state.active_behavior_id == current:
            persistence_score = compute_persistence_score(
                state.message_count_in_behavior, self.config.persistence
            )

        arbitration = await self.arbitrator.arbitrate(
            candidates,
            request.user_message,
            recent_turns=request.conversation_history,
            current_behavior_id=current,
            persistence_score=persistence_score,
            deadline_s=remaining(),
        )
        if arbitration.selected_behavior_id not in self.registry:
            logger.warning(
                f"Arbitration returned unregistered behavior {arbitration.selected_behavior_id}, falling back"
            )
            arbitration = self.arbitrator.fallback(candidates, current, "unknown behavior id")
        # Raises UnknownBehaviorError when even the default is missing
        selected = self.registry.get(arbitration.selected_behavior_id)

        transitioned = selected.id != state.active_behavior_id
        try:
            record = await self.tracker.record_turn_unlocked(
                request.user_id,
                request.session_id,
                selected_behavior_id=selected.id,
                reason=arbitration.reasoning,
                confidence=arbitration.confidence,
                turn_id=request.turn_id,
                state_updates={
                    "last_user_message": request.user_message,
                    "last_agent_message": request.last_agent_message,
                    "recent_tool_calls": request.recent_tool_calls,
                    "external_context": request.external_context or {},
                },
            )
            transitioned = record.transitioned
        except Exception as e:
            log_with_context(
                logger, logging.ERROR, f"Failed to record turn: {e}", user_id=request.user_id
            )

        flow_context_id = None
        if transitioned and selected.flow_id:
            context = await self.flow_engine.start_flow(request.user_id, request.session_id, selected.flow_id)
            flow_context_id = context.id

        result = SelectionResult(
            selected_behavior_id=selected.id,
            previous_behavior_id=state.active_behavior_id,
            transitioned=transitioned,
            confidence=arbitration.confidence,
            reasoning=arbitration.reasoning,
            is_fallback=arbitration.is_fallback,
            candidates=candidates,
            persistence_score=persistence_score,
            channel_errors=broadcast.channel_errors,
            vector_latency_ms=broadcast.vector_latency_ms,
            search_latency_ms=broadcast.search_latency_ms,
            llm_latency_ms=arbitration.latency_ms,
            total_latency_ms=int((time.perf_counter() - start) * 1000),
            flow_context_id=flow_context_id,
        )

        self._audit(request, result, arbitration)

        log_with_context(
            logger,
            logging.INFO,
            f"Selected {result.selected_behavior_id}",
            user_id=request.user_id,
            previous=result.previous_behavior_id,
            transitioned=result.transitioned,
            fallback=result.is_fallback,
            total_ms=result.total_latency_ms,
        )
        return result

    async def _broadcast(
        self,
        request: SelectionRequest,
        state: ConversationState,
        current: str | None,
        budget_s: float,
    ) -> BroadcastResult:
        try:
            return await asyncio.wait_for(
                self.broadcaster.broadcast(
                    user_id=request.user_id,
                    user_message=request.user_message,
                    last_agent_message=request.last_agent_message,
                    external_context=request.external_context,
                    recent_tool_calls=request.recent_tool_calls,
                    current_behavior_id=current,
                    conversation_state=state,
                    session_id=request.session_id,
                ),
                timeout=budget_s,
            )
        except asyncio.TimeoutError:
            logger.warning(f"Broadcast exceeded the selection deadline for user {request.user_id}")
        except Exception as e:
            logger.error(f"Broadcast failed for user {request.user_id}: {e}")
        return BroadcastResult()

    def _rank(self, broadcast: BroadcastResult, current: str | None) -> list[BehaviorCandidate]:
        ranked = rank_candidates(
            broadcast.channel_results,
            self.config.ranker,
            current_behavior_id=current,
            priorities=self.registry.priorities(),
        )
        known = [c for c in ranked if c.behavior_id in self.registry]
        if len(known) != len(ranked):
            dropped = sorted({c.behavior_id for c in ranked} - {c.behavior_id for c in known})
            logger.warning(f"Dropping candidates for unregistered behaviors: {dropped}")
        return known

    def _duplicate_result(self, state: ConversationState, start: float) -> SelectionResult:
        logger.info(f"Turn already recorded for user {state.user_id}, returning persisted state")
        selected = state.active_behavior_id or self.config.arbitration.default_behavior_id
        return SelectionResult(
            selected_behavior_id=selected,
            previous_behavior_id=state.active_behavior_id,
            transitioned=False,
            confidence=self.config.arbitration.fallback_confidence,
            reasoning="duplicate turn: state unchanged",
            total_latency_ms=int((time.perf_counter() - start) * 1000),
        )

    def _audit(self, request: SelectionRequest, result: SelectionResult, arbitration: ArbitrationResult) -> None:
        top = result.candidates[0] if result.candidates else None
        payload = {
            "user_id": request.user_id,
            "session_id": request.session_id,
            "user_message": request.user_message,
            "previous_behavior_id": result.previous_behavior_id,
            "detected_behavior_id": result.selected_behavior_id,
            "detection_method": "fallback" if arbitration.is_fallback else "multi-vector-llm",
            "confidence_score": result.confidence,
            "vector_scores": {k.value: v for k, v in top.channel_scores.items()} if top else {},
            "top_candidates": [c.model_dump(mode="json") for c in result.candidates[:10]],
            "llm_reasoning": result.reasoning,
            "latency_ms": result.total_latency_ms,
            "embedding_latency_ms": result.vector_latency_ms,
            "search_latency_ms": result.search_latency_ms,
            "llm_latency_ms": result.llm_latency_ms,
        }
        self.audit.submit(self.store.log_detection(payload), label="detection_log")
