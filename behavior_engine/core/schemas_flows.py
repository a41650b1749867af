"""Pydantic schemas for goal-oriented conversation flows."""

import re
from datetime import datetime
from typing import Any, Literal
from uuid import uuid4

from pydantic import BaseModel, Field, model_validator

from behavior_engine.core.schemas_behaviors import utcnow

ExitConditionType = Literal["exchange_count", "user_signal", "llm_eval"]
CompletionActionType = Literal["save_journal", "save_activity", "none"]
MessageRole = Literal["user", "agent"]


# =======================
# Template (configuration)
# =======================


class FlowStage(BaseModel):
    """One ordered stage of a flow."""

    id: str
    name: str
    agent_prompt: str = Field(..., description="Instruction for the agent during this stage")
    user_expectation: str = Field(default="", description="What we expect from the user")
    min_exchanges: int = Field(default=1, ge=0)
    max_exchanges: int | None = Field(default=None, ge=1)

    @model_validator(mode="after")
    def _min_le_max(self) -> "FlowStage":
        if self.max_exchanges is not None and self.min_exchanges > self.max_exchanges:
            raise ValueError(
                f"stage {self.id}: min_exchanges {self.min_exchanges} > max_exchanges {self.max_exchanges}"
            )
        return self


class ExitCondition(BaseModel):
    """A condition that ends the flow when it fires."""

    type: ExitConditionType
    condition: int | str
    description: str = ""

    @model_validator(mode="after")
    def _check_condition(self) -> "ExitCondition":
        if self.type == "exchange_count":
            if not isinstance(self.condition, int) or self.condition < 1:
                raise ValueError("exchange_count condition must be a positive int")
        elif self.type == "user_signal":
            if not isinstance(self.condition, str):
                raise ValueError("user_signal condition must be a regex string")
            try:
                re.compile(self.condition, re.IGNORECASE)
            except re.error as e:
                raise ValueError(f"invalid user_signal regex {self.condition!r}: {e}") from e
        return self


class CompletionAction(BaseModel):
    """Durable side effect to run when a flow completes."""

    type: CompletionActionType = "none"
    params: dict[str, Any] = Field(default_factory=dict)


class FlowTemplate(BaseModel):
    """Immutable definition of a multi-stage flow."""

    model_config = {"frozen": True}

    id: str
    name: str
    description: str = ""
    stages: list[FlowStage] = Field(..., min_length=1)
    exit_conditions: list[ExitCondition] = Field(default_factory=list)
    completion_action: CompletionAction = Field(default_factory=CompletionAction)
    target_exchange_count: int = Field(default=4, ge=1)
    allow_early_exit: bool = True

    @property
    def stage_count(self) -> int:
        return len(self.stages)


# =======================
# Runtime state
# =======================


class FlowMessage(BaseModel):
    """One message of flow-scoped history."""

    role: MessageRole
    content: str
    timestamp: datetime = Field(default_factory=utcnow)


class FlowContext(BaseModel):
    """Durable state of one flow instance."""

    id: str = Field(default_factory=lambda: str(uuid4()))
    user_id: str
    session_id: str | None = None
    flow_id: str
    current_stage: int = Field(default=0, ge=0)
    stage_started_at: datetime = Field(default_factory=utcnow)
    stage_exchange_count: int = 0
    exchange_count: int = 0
    conversation_history: list[FlowMessage] = Field(default_factory=list)
    collected_data: dict[str, Any] = Field(default_factory=dict)
    flow_started_at: datetime = Field(default_factory=utcnow)
    completed_at: datetime | None = None
    exit_reason: str | None = None
    last_turn_key: str | None = None

    @property
    def is_complete(self) -> bool:
        return self.completed_at is not None

    def last_user_message(self) -> str | None:
        for msg in reversed(self.conversation_history):
            if msg.role == "user":
                return msg.content
        return None


class FlowProgressResult(BaseModel):
    """Outcome of one progress_flow call."""

    should_continue: bool
    should_exit: bool = False
    completed: bool = False
    next_stage: int | None = None
    exit_reason: str | None = None
    completion_data: dict[str, Any] | None = None
    duplicate: bool = False
