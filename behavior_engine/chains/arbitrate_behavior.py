"""LLM arbitration over the ranked behavior candidates.

The model sees the top-N candidates (plus the current behavior when ranking
dropped it), is told the same switch rule the persistence tracker applies,
and answers through a forced tool call. Any failure falls back
deterministically: current behavior, else top-ranked, else the default.
"""

import asyncio
import time
from typing import Any

from behavior_engine.core.behavior_persistence import should_transition
from behavior_engine.core.config import ArbitrationConfig, PersistenceConfig
from behavior_engine.core.errors import MalformedOutputError
from behavior_engine.core.llm import LLMClient
from behavior_engine.core.logging import get_logger
from behavior_engine.core.schemas_behaviors import (
    ArbitrationResult,
    BehaviorCandidate,
    ContinuityPlaceholder,
    PoolEntry,
)

logger = get_logger(__name__)

ARBITRATION_SYSTEM = """You are the behavior selector for an AI wellness companion.
You choose which conversational behavior the companion should operate in for its next reply.

Rules:
- Favor continuity: stay in the CURRENT behavior unless a clear shift is needed
- Only choose a behavior id from the candidate list
- Answer by calling the select_behavior tool"""

ARBITRATION_USER = """USER MESSAGE:
"{user_message}"
{recent_turns}{current_block}
TOP BEHAVIOR CANDIDATES (scored via multi-vector similarity):
{candidates}

SWITCH RULE:
A switch away from the CURRENT behavior is only allowed when the new candidate's score exceeds
(current score + persistence bonus) by MORE than {threshold}. Otherwise keep the CURRENT behavior.

Choose the behavior that best serves the user's immediate need within that rule."""


def _select_tool(pool_ids: list[str]) -> dict[str, Any]:
    return {
        "name": "select_behavior",
        "description": "Record the selected behavior for the next reply.",
        "input_schema": {
            "type": "object",
            "properties": {
                "behavior_id": {"type": "string", "enum": pool_ids},
                "confidence": {"type": "number", "minimum": 0, "maximum": 1},
                "reasoning": {"type": "string", "description": "Brief explanation (1-2 sentences)"},
            },
            "required": ["behavior_id", "confidence", "reasoning"],
        },
    }


class BehaviorArbitrator:
    """Final behavior pick with a continuity bias and a deterministic fallback."""

    def __init__(
        self,
        llm: LLMClient,
        config: ArbitrationConfig | None = None,
        persistence: PersistenceConfig | None = None,
    ):
        self.llm = llm
        self.config = config or ArbitrationConfig()
        self.persistence = persistence or PersistenceConfig()

    def build_pool(
        self,
        candidates: list[BehaviorCandidate],
        current_behavior_id: str | None = None,
    ) -> list[PoolEntry]:
        """Top-N ranked candidates, plus a continuity placeholder when the current behavior is missing.

        The ranked list passed in is not modified.
        """
        pool: list[PoolEntry] = list(candidates[: self.config.candidate_pool_size])
        if current_behavior_id and all(c.behavior_id != current_behavior_id for c in pool):
            pool.append(
                ContinuityPlaceholder(
                    behavior_id=current_behavior_id,
                    overall_score=self.config.continuity_baseline_score,
                    metadata={
                        "name": current_behavior_id,
                        "description": "Current active behavior",
                    },
                )
            )
        return pool

    async def arbitrate(
        self,
        candidates: list[BehaviorCandidate],
        user_message: str,
        recent_turns: list[dict[str, str]] | None = None,
        current_behavior_id: str | None = None,
        persistence_score: float = 0.0,
        deadline_s: float | None = None,
    ) -> ArbitrationResult:
        """
        Pick a behavior for this turn.

        Args:
            candidates: Ranked candidates, best first
            user_message: Latest user message
            recent_turns: Recent {role, content} turns, oldest first
            current_behavior_id: Active behavior, if any
            persistence_score: Persistence bonus of the active behavior
            deadline_s: Remaining time budget; falls back when exceeded

        Returns:
            ArbitrationResult. Never raises for provider or output problems.
        """
        start = time.perf_counter()
        pool = self.build_pool(candidates, current_behavior_id)

        if not pool:
            return self._fallback(candidates, current_behavior_id, "no candidates", start)
        if deadline_s is not None and deadline_s <= 0:
            return self._fallback(candidates, current_behavior_id, "deadline exceeded", start)

        try:
            raw = await asyncio.wait_for(
                self._ask(pool, user_message, recent_turns or [], current_behavior_id, persistence_score),
                timeout=deadline_s,
            )
            selected, confidence, reasoning = self._validate(raw, pool)
        except asyncio.TimeoutError:
            logger.warning("Behavior arbitration timed out, falling back")
            return self._fallback(candidates, current_behavior_id, "timeout", start)
        except Exception as e:
            logger.warning(f"Behavior arbitration failed, falling back: {e}")
            return self._fallback(candidates, current_behavior_id, type(e).__name__, start)

        if (
            self.config.enforce_switch_margin
            and current_behavior_id
            and selected != current_behavior_id
        ):
            scores = {entry.behavior_id: entry.overall_score for entry in pool}
            if not should_transition(
                scores.get(current_behavior_id, self.config.continuity_baseline_score),
                scores[selected],
                persistence_score,
                self.persistence.transition_threshold,
            ):
                logger.info(
                    f"Arbitrator picked {selected} but switch margin not met, keeping {current_behavior_id}"
                )
                reasoning = (
                    f"continuity override: {selected} did not clear the switch margin over "
                    f"{current_behavior_id}. Model said: {reasoning}"
                )
                selected = current_behavior_id

        return ArbitrationResult(
            selected_behavior_id=selected,
            confidence=confidence,
            reasoning=reasoning,
            latency_ms=int((time.perf_counter() - start) * 1000),
        )

    def fallback(self, candidates: list[BehaviorCandidate], current_behavior_id: str | None, why: str) -> ArbitrationResult:
        """Deterministic pick used whenever the model cannot be trusted."""
        return self._fallback(candidates, current_behavior_id, why, time.perf_counter())

    async def _ask(
        self,
        pool: list[PoolEntry],
        user_message: str,
        recent_turns: list[dict[str, str]],
        current_behavior_id: str | None,
        persistence_score: float,
    ) -> dict[str, Any]:
        prompt = ARBITRATION_USER.format(
            user_message=user_message,
            recent_turns=self._format_turns(recent_turns),
            current_block=self._format_current(current_behavior_id, persistence_score),
            candidates=self._format_pool(pool, current_behavior_id, persistence_score),
            threshold=self.persistence.transition_threshold,
        )
        return await self.llm.complete_tool(
            system=ARBITRATION_SYSTEM,
            user=prompt,
            tool=_select_tool([entry.behavior_id for entry in pool]),
            max_tokens=self.config.max_tokens,
            temperature=self.config.temperature,
        )

    def _validate(self, raw: dict[str, Any], pool: list[PoolEntry]) -> tuple[str, float, str]:
        behavior_id = raw.get("behavior_id") or raw.get("behaviorId")
        pool_ids = {entry.behavior_id for entry in pool}
        if behavior_id not in pool_ids:
            raise MalformedOutputError(f"Selected behavior {behavior_id!r} is not a candidate")

        try:
            confidence = float(raw.get("confidence", self.config.fallback_confidence))
        except (TypeError, ValueError) as e:
            raise MalformedOutputError(f"Invalid confidence {raw.get('confidence')!r}") from e
        confidence = min(1.0, max(0.0, confidence))

        reasoning = str(raw.get("reasoning") or "Selected based on conversation context")
        return behavior_id, confidence, reasoning

    def _fallback(
        self,
        candidates: list[BehaviorCandidate],
        current_behavior_id: str | None,
        why: str,
        start: float,
    ) -> ArbitrationResult:
        if current_behavior_id:
            selected, source = current_behavior_id, "current behavior"
        elif candidates:
            selected, source = candidates[0].behavior_id, "top-ranked candidate"
        else:
            selected, source = self.config.default_behavior_id, "default behavior"

        return ArbitrationResult(
            selected_behavior_id=selected,
            confidence=self.config.fallback_confidence,
            reasoning=f"fallback ({why}): kept {source}",
            is_fallback=True,
            latency_ms=int((time.perf_counter() - start) * 1000),
        )

    def _format_turns(self, turns: list[dict[str, str]]) -> str:
        recent = turns[-self.config.recent_turns:] if self.config.recent_turns else []
        if not recent:
            return ""
        lines = [f"{t.get('role', 'user').upper()}: {t.get('content', '')}" for t in recent]
        return "\nRECENT CONVERSATION:\n" + "\n".join(lines) + "\n"

    @staticmethod
    def _format_current(current_behavior_id: str | None, persistence_score: float) -> str:
        if not current_behavior_id:
            return ""
        return (
            f"\nCURRENT ACTIVE BEHAVIOR: {current_behavior_id}\n"
            f"Persistence bonus: {persistence_score:.3f}\n"
        )

    @staticmethod
    def _format_pool(pool: list[PoolEntry], current_behavior_id: str | None, persistence_score: float) -> str:
        blocks = []
        for i, entry in enumerate(pool, start=1):
            is_current = entry.behavior_id == current_behavior_id
            lines = [
                f"{i}. {entry.behavior_id}{' (CURRENT)' if is_current else ''}",
                f"   Score: {entry.overall_score:.3f}",
                f"   Name: {entry.metadata.get('name') or entry.behavior_id}",
                f"   Description: {entry.metadata.get('description') or 'No description'}",
            ]
            if isinstance(entry, ContinuityPlaceholder):
                lines.append("   (not in vector ranking; baseline score)")
            if is_current:
                lines.append(f"   CONTINUITY BONUS: +{persistence_score:.3f} persistence")
            blocks.append("\n".join(lines))
        return "\n\n".join(blocks)
