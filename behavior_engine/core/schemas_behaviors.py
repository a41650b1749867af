"""Pydantic schemas for behavior selection."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal, Union

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ChannelType(str, Enum):
    """Signal types that get their own embedding."""

    USER_MESSAGE = "user_message"
    AGENT_MESSAGE = "agent_message"
    COMBINED_EXCHANGE = "combined_exchange"
    AGENT_THOUGHT = "agent_thought"
    EXTERNAL_CONTEXT = "external_context"
    TOOL_CALL = "tool_call"


# Fixed channel order: broadcaster output and ranker tie-breaks follow it
CHANNEL_ORDER: list[ChannelType] = list(ChannelType)


# =======================
# Configuration models
# =======================


class Behavior(BaseModel):
    """A named conversational mode. Operator-supplied, immutable at runtime."""

    model_config = {"frozen": True}

    id: str = Field(..., min_length=1, description="Stable behavior identifier")
    name: str = Field(..., description="Display name")
    description: str = Field(default="", description="Free-text description")
    category: str = Field(default="general", description="Behavior category")
    priority: int = Field(default=5, ge=1, le=10, description="1 (lowest) to 10 (highest)")
    flow_id: str | None = Field(default=None, description="Flow template run by this behavior")
    trigger_phrases: dict[ChannelType, list[str]] = Field(
        default_factory=dict, description="Seed text for trigger vectors, per channel"
    )

    @property
    def is_flow(self) -> bool:
        return self.flow_id is not None

    def trigger_metadata(self) -> dict[str, Any]:
        """Metadata copied onto every trigger vector of this behavior."""
        return {
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "priority": self.priority,
        }


class TriggerVector(BaseModel):
    """One reference embedding tagged to a behavior and channel."""

    behavior_id: str
    channel_type: ChannelType
    embedding: list[float]
    trigger_description: str = ""
    metadata: dict[str, Any] = Field(default_factory=dict)


# =======================
# Per-request models
# =======================


class TriggerMatch(BaseModel):
    """A single nearest-neighbour hit from the trigger index."""

    behavior_id: str
    channel_type: ChannelType
    similarity: float
    trigger_description: str = ""
    metadata: dict[str, Any] = Field(default_factory=dict)


class ToolCallRecord(BaseModel):
    """A recent tool invocation by the agent."""

    tool: str
    params: dict[str, Any] = Field(default_factory=dict)
    result: Any = None


class BroadcastResult(BaseModel):
    """Output of the multi-vector broadcaster."""

    channel_results: dict[ChannelType, list[TriggerMatch]] = Field(default_factory=dict)
    channel_errors: dict[ChannelType, str] = Field(default_factory=dict)
    generated_channels: list[ChannelType] = Field(default_factory=list)
    inner_thought: str | None = None
    vector_latency_ms: int = 0
    search_latency_ms: int = 0
    total_latency_ms: int = 0


class BehaviorCandidate(BaseModel):
    """A ranked behavior produced by vector search and fusion."""

    kind: Literal["ranked"] = "ranked"
    behavior_id: str
    channel_scores: dict[ChannelType, float] = Field(default_factory=dict)
    fused_score: float = 0.0
    overall_score: float = 0.0
    metadata: dict[str, Any] = Field(default_factory=dict)


class ContinuityPlaceholder(BaseModel):
    """The current behavior, added to the arbitration pool when vector ranking dropped it."""

    kind: Literal["continuity"] = "continuity"
    behavior_id: str
    overall_score: float
    metadata: dict[str, Any] = Field(default_factory=dict)


PoolEntry = Union[BehaviorCandidate, ContinuityPlaceholder]


class ArbitrationResult(BaseModel):
    """Final pick from the arbitrator."""

    selected_behavior_id: str
    confidence: float = Field(..., ge=0.0, le=1.0)
    reasoning: str
    is_fallback: bool = False
    latency_ms: int = 0


# =======================
# Durable state
# =======================


class ConversationState(BaseModel):
    """Per-user conversation state (one row per user)."""

    user_id: str
    session_id: str | None = None
    active_behavior_id: str | None = None
    behavior_started_at: datetime | None = None
    message_count_in_behavior: int = 0
    last_behavior_transition: datetime | None = None
    last_user_message: str | None = None
    last_agent_message: str | None = None
    recent_tool_calls: list[ToolCallRecord] = Field(default_factory=list)
    external_context: dict[str, Any] = Field(default_factory=dict)
    last_turn_id: str | None = None
    updated_at: datetime | None = None


class BehaviorTransition(BaseModel):
    """Append-only audit record of an active-behavior change."""

    user_id: str
    session_id: str | None = None
    from_behavior_id: str | None = None
    to_behavior_id: str
    exchange_count: int = 0
    transition_reason: str = ""
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    timestamp: datetime = Field(default_factory=utcnow)


class TurnRecord(BaseModel):
    """Outcome of recording one completed turn."""

    user_id: str
    active_behavior_id: str | None
    transitioned: bool
    message_count_in_behavior: int
    duplicate: bool = False


class TransitionPatterns(BaseModel):
    """Aggregate view over a user's transition history."""

    total_transitions: int = 0
    average_exchanges_before_transition: float = 0.0
    most_common_transitions: list[dict[str, Any]] = Field(default_factory=list)
    average_behavior_duration_s: float = 0.0


# =======================
# Selection pipeline
# =======================


class SelectionRequest(BaseModel):
    """Input for one turn of behavior selection."""

    user_id: str
    session_id: str | None = None
    user_message: str
    last_agent_message: str | None = None
    external_context: dict[str, Any] | None = None
    recent_tool_calls: list[ToolCallRecord] = Field(default_factory=list)
    conversation_history: list[dict[str, str]] = Field(default_factory=list)
    current_behavior_id: str | None = None
    turn_id: str | None = None


class SelectionResult(BaseModel):
    """Output of one behavior selection turn."""

    selected_behavior_id: str
    previous_behavior_id: str | None = None
    transitioned: bool = False
    confidence: float = 0.0
    reasoning: str = ""
    is_fallback: bool = False
    candidates: list[BehaviorCandidate] = Field(default_factory=list)
    persistence_score: float = 0.0
    channel_errors: dict[ChannelType, str] = Field(default_factory=dict)
    vector_latency_ms: int = 0
    search_latency_ms: int = 0
    llm_latency_ms: int = 0
    total_latency_ms: int = 0
    flow_context_id: str | None = None
