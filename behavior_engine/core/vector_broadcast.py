"""Multi-vector broadcast.

Builds up to six channel texts for a turn (user message, agent message,
combined exchange, agent inner thought, external context, tool calls),
embeds them concurrently and searches the trigger index once per channel,
also concurrently. One failing channel never takes the others down.
"""

import asyncio
import json
import time
from collections.abc import Callable
from datetime import datetime
from typing import Any

from behavior_engine.chains.generate_inner_thought import fallback_thought, generate_inner_thought
from behavior_engine.core.audit_writer import AuditWriter
from behavior_engine.core.config import BroadcastConfig
from behavior_engine.core.embeddings import EmbeddingGenerator
from behavior_engine.core.llm import LLMClient
from behavior_engine.core.logging import get_logger
from behavior_engine.core.schemas_behaviors import (
    CHANNEL_ORDER,
    BroadcastResult,
    ChannelType,
    ConversationState,
    ToolCallRecord,
    TriggerMatch,
)
from behavior_engine.core.trigger_index import TriggerIndex

logger = get_logger(__name__)

# Channels captured into conversation_embeddings for later history search
CAPTURED_CHANNELS = (ChannelType.USER_MESSAGE, ChannelType.AGENT_MESSAGE, ChannelType.AGENT_THOUGHT)


def time_of_day(hour: int) -> str:
    if hour < 12:
        return "morning"
    if hour < 17:
        return "afternoon"
    return "evening"


def format_external_context(
    now: datetime,
    conversation_state: ConversationState | None = None,
    external_context: dict[str, Any] | None = None,
) -> str:
    """Render time of day, weekday, behavior state and caller context as text."""
    parts = [f"Current time: {time_of_day(now.hour)} {now.strftime('%A')}."]

    if conversation_state is not None:
        if conversation_state.active_behavior_id:
            parts.append(f"Active behavior: {conversation_state.active_behavior_id}.")
        if conversation_state.message_count_in_behavior:
            parts.append(f"Messages in current behavior: {conversation_state.message_count_in_behavior}.")

    if external_context:
        pairs = ", ".join(
            f"{key}: {value}" for key, value in external_context.items() if value not in (None, "")
        )
        if pairs:
            parts.append(f"{pairs}.")

    return " ".join(parts)


def format_tool_calls(tool_calls: list[ToolCallRecord]) -> str:
    return ". ".join(
        f"Called {call.tool} with params {json.dumps(call.params, default=str, sort_keys=True)}"
        for call in tool_calls
    )


class MultiVectorBroadcaster:
    """Generates channel embeddings and fans searches out to the trigger index."""

    def __init__(
        self,
        embedder: EmbeddingGenerator,
        index: TriggerIndex,
        llm: LLMClient | None = None,
        config: BroadcastConfig | None = None,
        audit: AuditWriter | None = None,
        store=None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.embedder = embedder
        self.index = index
        self.llm = llm
        self.config = config or BroadcastConfig()
        self.audit = audit
        self.store = store
        self._clock = clock

    async def broadcast(
        self,
        user_id: str,
        user_message: str,
        last_agent_message: str | None = None,
        external_context: dict[str, Any] | None = None,
        recent_tool_calls: list[ToolCallRecord] | None = None,
        current_behavior_id: str | None = None,
        conversation_state: ConversationState | None = None,
        session_id: str | None = None,
        top_k: int | None = None,
        similarity_floor: float | None = None,
    ) -> BroadcastResult:
        """
        Embed every available channel and search the trigger index per channel.

        Args:
            user_id: User identifier
            user_message: Latest user message
            last_agent_message: Agent's previous reply
            external_context: Caller-supplied context snapshot (mood, location, ...)
            recent_tool_calls: Tool invocations since the last turn
            current_behavior_id: Active behavior, used in the inner-thought prompt
            conversation_state: Loaded state, used for the external-context text
            session_id: Session identifier, used when capturing embeddings
            top_k: Per-request override of matches per channel
            similarity_floor: Per-request override of the similarity floor

        Returns:
            BroadcastResult. Failed channels appear in channel_errors only.
        """
        start = time.perf_counter()
        top_k = top_k or self.config.top_k
        floor = self.config.similarity_floor if similarity_floor is None else similarity_floor

        sources = self._build_sources(
            user_message, last_agent_message, external_context, recent_tool_calls, conversation_state
        )
        channels = [c for c in CHANNEL_ORDER if c in sources]
        result = BroadcastResult()

        # Embeddings, all channels concurrently
        vector_start = time.perf_counter()
        outcomes = await asyncio.gather(
            *(
                self._embed_channel(channel, sources[channel], user_message, last_agent_message, current_behavior_id)
                for channel in channels
            ),
            return_exceptions=True,
        )
        result.vector_latency_ms = int((time.perf_counter() - vector_start) * 1000)

        vectors: dict[ChannelType, list[float]] = {}
        texts: dict[ChannelType, str] = {}
        for channel, outcome in zip(channels, outcomes, strict=True):
            if isinstance(outcome, BaseException):
                result.channel_errors[channel] = _describe("embedding", outcome)
                logger.warning(f"Embedding failed for channel {channel.value}: {result.channel_errors[channel]}")
                continue
            text, vector = outcome
            vectors[channel] = vector
            texts[channel] = text
            result.generated_channels.append(channel)

        result.inner_thought = texts.get(ChannelType.AGENT_THOUGHT)

        # Searches, all channels concurrently
        search_start = time.perf_counter()
        searched = list(vectors)
        search_outcomes = await asyncio.gather(
            *(self._search_channel(channel, vectors[channel], top_k, floor) for channel in searched),
            return_exceptions=True,
        )
        result.search_latency_ms = int((time.perf_counter() - search_start) * 1000)

        for channel, outcome in zip(searched, search_outcomes, strict=True):
            if isinstance(outcome, BaseException):
                result.channel_errors[channel] = _describe("search", outcome)
                logger.warning(f"Search failed for channel {channel.value}: {result.channel_errors[channel]}")
                continue
            result.channel_results[channel] = outcome

        result.total_latency_ms = int((time.perf_counter() - start) * 1000)

        if self.config.capture_conversation_embeddings:
            self._capture_embeddings(user_id, session_id, current_behavior_id, texts, vectors)

        logger.debug(
            f"Broadcast {len(result.channel_results)}/{len(channels)} channels "
            f"(vectors {result.vector_latency_ms}ms, search {result.search_latency_ms}ms)"
        )
        return result

    def _build_sources(
        self,
        user_message: str,
        last_agent_message: str | None,
        external_context: dict[str, Any] | None,
        recent_tool_calls: list[ToolCallRecord] | None,
        conversation_state: ConversationState | None,
    ) -> dict[ChannelType, str]:
        user_text = (user_message or "").strip()
        agent_text = (last_agent_message or "").strip()
        sources: dict[ChannelType, str] = {}

        if user_text:
            sources[ChannelType.USER_MESSAGE] = user_text
        if agent_text:
            sources[ChannelType.AGENT_MESSAGE] = agent_text
        if user_text and agent_text:
            sources[ChannelType.COMBINED_EXCHANGE] = f"Agent: {agent_text}\nUser: {user_text}"
        if user_text and self.config.generate_inner_thought:
            # Placeholder; the thought itself is generated inside the channel task
            sources[ChannelType.AGENT_THOUGHT] = fallback_thought(user_text)

        context_text = format_external_context(self._clock(), conversation_state, external_context)
        if context_text.strip():
            sources[ChannelType.EXTERNAL_CONTEXT] = context_text

        if recent_tool_calls:
            tool_text = format_tool_calls(recent_tool_calls)
            if tool_text.strip():
                sources[ChannelType.TOOL_CALL] = tool_text

        return sources

    async def _embed_channel(
        self,
        channel: ChannelType,
        text: str,
        user_message: str,
        last_agent_message: str | None,
        current_behavior_id: str | None,
    ) -> tuple[str, list[float]]:
        timeout = self.config.embedding_timeout_s

        if channel == ChannelType.AGENT_THOUGHT and self.llm is not None:
            try:
                text = await asyncio.wait_for(
                    generate_inner_thought(self.llm, user_message, last_agent_message, current_behavior_id),
                    timeout=self.config.inner_thought_timeout_s,
                )
            except asyncio.TimeoutError:
                logger.warning("Inner thought timed out, using fallback")

        vector = await asyncio.wait_for(self.embedder.embed(text, channel), timeout=timeout)
        return text, vector

    async def _search_channel(
        self,
        channel: ChannelType,
        vector: list[float],
        top_k: int,
        floor: float,
    ) -> list[TriggerMatch]:
        return await asyncio.wait_for(
            self.index.search(vector, channel, top_k, floor),
            timeout=self.config.search_timeout_s,
        )

    def _capture_embeddings(
        self,
        user_id: str,
        session_id: str | None,
        current_behavior_id: str | None,
        texts: dict[ChannelType, str],
        vectors: dict[ChannelType, list[float]],
    ) -> None:
        if self.audit is None or self.store is None:
            return

        rows = [
            {
                "user_id": user_id,
                "session_id": session_id,
                "vector_type": channel.value,
                "source_text": texts[channel],
                "embedding": vectors[channel],
                "behavior_context": current_behavior_id,
            }
            for channel in CAPTURED_CHANNELS
            if channel in vectors
        ]
        if rows:
            self.audit.submit(self.store.store_conversation_embeddings(rows), label="conversation_embeddings")


def _describe(stage: str, error: BaseException) -> str:
    if isinstance(error, asyncio.TimeoutError):
        return f"{stage} timed out"
    return f"{stage} failed: {error}"
