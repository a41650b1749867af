"""Behavior persistence (stickiness) with decay over exchanges.

Keeps the active behavior from flipping on every turn: the active behavior
gets a persistence bonus that decays per exchange, and a challenger has to
beat (current score + bonus) by a threshold to take over.
"""

import logging
from collections import Counter
from collections.abc import Callable
from contextlib import nullcontext
from datetime import datetime

from behavior_engine.core.config import PersistenceConfig
from behavior_engine.core.logging import get_logger, log_with_context
from behavior_engine.core.schemas_behaviors import (
    BehaviorTransition,
    ConversationState,
    TransitionPatterns,
    TurnRecord,
    utcnow,
)
from behavior_engine.core.user_locks import UserTurnLocks

logger = get_logger(__name__)

_EPSILON = 1e-9


def compute_persistence_score(exchanges: int, config: PersistenceConfig | None = None) -> float:
    """
    Persistence bonus for a behavior that has been active for ``exchanges`` turns.

    ``max(min, initial - exchanges * decay)``, halved once the forced-decay
    threshold is reached so no behavior can persist indefinitely.
    """
    config = config or PersistenceConfig()
    score = max(
        config.min_persistence,
        config.initial_persistence - exchanges * config.decay_per_exchange,
    )
    if exchanges >= config.max_exchanges_before_force_decay:
        score *= 0.5
    return min(1.0, max(0.0, score))


def should_transition(
    current_score: float,
    new_score: float,
    persistence_score: float,
    threshold: float = 0.2,
) -> bool:
    """
    The switch rule shared by the tracker and the arbitrator.

    With no persistence (no active behavior to protect) always switch.
    Otherwise the challenger must beat the current behavior's score plus
    its persistence bonus by more than the threshold; equality does not switch.
    """
    if persistence_score == 0:
        return True
    margin = new_score - (current_score + persistence_score)
    # Tolerance so float noise at the boundary (0.9 - 0.7) does not switch
    return margin - threshold > _EPSILON


class PersistenceTracker:
    """Reads and mutates the per-user active behavior and its exchange counter.

    Public mutations run under the user's turn lock. A caller that already
    holds that lock uses ``record_turn_unlocked``; the lock is not re-entrant.
    """

    def __init__(
        self,
        store,
        config: PersistenceConfig | None = None,
        locks: UserTurnLocks | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.config = config or PersistenceConfig()
        self.locks = locks
        self._clock = clock

    # =========================================================================
    # Reads
    # =========================================================================

    async def load_state(self, user_id: str, session_id: str | None = None) -> ConversationState:
        """Conversation state for a user, synthesizing a fresh default when missing."""
        try:
            state = await self.store.get_conversation_state(user_id)
        except Exception as e:
            logger.error(f"Failed to load conversation state for user {user_id}: {e}")
            state = None
        if state is None:
            state = ConversationState(user_id=user_id, session_id=session_id)
        return state

    async def get_persistence_score(self, user_id: str, behavior_id: str) -> float:
        """Persistence bonus for ``behavior_id``. 0 unless it is the active behavior."""
        try:
            state = await self.store.get_conversation_state(user_id)
        except Exception as e:
            logger.error(f"Error calculating persistence score for user {user_id}: {e}")
            return 0.0

        if state is None or state.active_behavior_id != behavior_id:
            return 0.0
        return compute_persistence_score(state.message_count_in_behavior, self.config)

    def should_transition(self, current_score: float, new_score: float, persistence_score: float) -> bool:
        return should_transition(
            current_score, new_score, persistence_score, self.config.transition_threshold
        )

    async def get_behavior_duration(self, user_id: str) -> int:
        """Seconds since the last behavior transition, 0 if unknown."""
        try:
            state = await self.store.get_conversation_state(user_id)
        except Exception as e:
            logger.error(f"Error calculating behavior duration for user {user_id}: {e}")
            return 0

        if state is None or state.last_behavior_transition is None:
            return 0
        return max(0, int((self._clock() - state.last_behavior_transition).total_seconds()))

    async def get_transition_history(
        self,
        user_id: str,
        session_id: str | None = None,
        limit: int = 10,
    ) -> list[BehaviorTransition]:
        """Newest-first transition history; empty on store errors."""
        try:
            return await self.store.list_transitions(user_id, session_id, limit)
        except Exception as e:
            logger.error(f"Error fetching transition history for user {user_id}: {e}")
            return []

    async def analyze_transition_patterns(self, user_id: str) -> TransitionPatterns:
        """Aggregate the last 100 transitions for debugging and tuning."""
        history = await self.get_transition_history(user_id, limit=100)
        if not history:
            return TransitionPatterns()

        avg_exchanges = sum(t.exchange_count for t in history) / len(history)

        counts = Counter((t.from_behavior_id or "start", t.to_behavior_id) for t in history)
        most_common = [
            {"from": src, "to": dst, "count": count}
            for (src, dst), count in counts.most_common(5)
        ]

        # history is newest first
        durations = [
            (newer.timestamp - older.timestamp).total_seconds()
            for newer, older in zip(history, history[1:])
        ]
        durations = [d for d in durations if d > 0]
        avg_duration = sum(durations) / len(durations) if durations else 0.0

        return TransitionPatterns(
            total_transitions=len(history),
            average_exchanges_before_transition=avg_exchanges,
            most_common_transitions=most_common,
            average_behavior_duration_s=avg_duration,
        )

    # =========================================================================
    # Mutations
    # =========================================================================

    async def record_transition(
        self,
        user_id: str,
        session_id: str | None,
        from_behavior_id: str | None,
        to_behavior_id: str,
        reason: str,
        confidence: float,
    ) -> ConversationState:
        """
        Switch the active behavior.

        Appends a BehaviorTransition carrying the exchange count reached in the
        old behavior, then resets the counter to 0 and moves the active pointer.
        This is the only place the active pointer changes.
        """
        async with self._hold(user_id):
            state = await self.load_state(user_id, session_id)
            return await self._transition(state, session_id, from_behavior_id, to_behavior_id, reason, confidence)

    async def record_turn(
        self,
        user_id: str,
        session_id: str | None,
        *,
        selected_behavior_id: str,
        reason: str = "",
        confidence: float = 0.0,
        turn_id: str | None = None,
        state_updates: dict | None = None,
    ) -> TurnRecord:
        """
        Record one completed turn.

        Applies the transition first when the selection differs from the active
        behavior, then increments the exchange counter exactly once. A call
        repeating the last recorded ``turn_id`` changes nothing.

        Args:
            user_id: User identifier
            session_id: Session identifier
            selected_behavior_id: Behavior chosen for this turn
            reason: Transition reason, stored when a transition happens
            confidence: Selection confidence
            turn_id: Idempotency key for this turn
            state_updates: Extra ConversationState fields to write with the
                turn (last messages, tool calls, external context)

        Returns:
            TurnRecord
        """
        async with self._hold(user_id):
            return await self.record_turn_unlocked(
                user_id,
                session_id,
                selected_behavior_id=selected_behavior_id,
                reason=reason,
                confidence=confidence,
                turn_id=turn_id,
                state_updates=state_updates,
            )

    async def record_turn_unlocked(
        self,
        user_id: str,
        session_id: str | None,
        *,
        selected_behavior_id: str,
        reason: str = "",
        confidence: float = 0.0,
        turn_id: str | None = None,
        state_updates: dict | None = None,
    ) -> TurnRecord:
        """``record_turn`` for callers already holding the user's turn lock."""
        state = await self.load_state(user_id, session_id)

        if turn_id is not None and state.last_turn_id == turn_id:
            logger.info(f"Ignoring replayed turn {turn_id} for user {user_id}")
            return TurnRecord(
                user_id=user_id,
                active_behavior_id=state.active_behavior_id,
                transitioned=False,
                message_count_in_behavior=state.message_count_in_behavior,
                duplicate=True,
            )

        transitioned = state.active_behavior_id != selected_behavior_id
        if transitioned:
            state = await self._transition(
                state,
                session_id,
                state.active_behavior_id,
                selected_behavior_id,
                reason,
                confidence,
                save=False,
            )

        state.message_count_in_behavior += 1
        state.last_turn_id = turn_id
        if session_id:
            state.session_id = session_id
        for field, value in (state_updates or {}).items():
            setattr(state, field, value)
        state.updated_at = self._clock()

        await self.store.save_conversation_state(state)

        return TurnRecord(
            user_id=user_id,
            active_behavior_id=state.active_behavior_id,
            transitioned=transitioned,
            message_count_in_behavior=state.message_count_in_behavior,
        )

    async def reset_persistence(self, user_id: str) -> None:
        """Clear the active behavior and its counter (user-initiated reset)."""
        async with self._hold(user_id):
            state = await self.load_state(user_id)
            state.active_behavior_id = None
            state.behavior_started_at = None
            state.message_count_in_behavior = 0
            state.last_behavior_transition = None
            state.updated_at = self._clock()
            await self.store.save_conversation_state(state)
            logger.info(f"Reset persistence for user {user_id}")

    async def _transition(
        self,
        state: ConversationState,
        session_id: str | None,
        from_behavior_id: str | None,
        to_behavior_id: str,
        reason: str,
        confidence: float,
        save: bool = True,
    ) -> ConversationState:
        now = self._clock()
        transition = BehaviorTransition(
            user_id=state.user_id,
            session_id=session_id,
            from_behavior_id=from_behavior_id,
            to_behavior_id=to_behavior_id,
            exchange_count=state.message_count_in_behavior,
            transition_reason=reason,
            confidence=min(1.0, max(0.0, confidence)),
            timestamp=now,
        )

        # Audit row only; failures are logged
        try:
            await self.store.append_transition(transition)
        except Exception as e:
            logger.error(f"Error storing transition for user {state.user_id}: {e}")

        state.active_behavior_id = to_behavior_id
        state.behavior_started_at = now
        state.last_behavior_transition = now
        state.message_count_in_behavior = 0
        if session_id:
            state.session_id = session_id
        state.updated_at = now

        if save:
            await self.store.save_conversation_state(state)

        log_with_context(
            logger,
            logging.INFO,
            f"Behavior transition {from_behavior_id or 'none'} -> {to_behavior_id}",
            user_id=state.user_id,
            exchanges=transition.exchange_count,
            confidence=f"{transition.confidence:.2f}",
        )
        return state

    def _hold(self, user_id: str):
        if self.locks is None:
            return nullcontext()
        return self.locks.hold(user_id, reject=False)

