"""Configuration management for the Behavior Engine.

Two layers:
- ``Settings``: environment-driven deployment settings (keys, models, modes).
- ``EngineConfig``: versioned, validated tuning structs for each component
  (broadcaster, ranker, persistence tracker, arbitrator, flow policy,
  selection pipeline). Loaded from JSON and validated at load time.
"""

import json
from functools import lru_cache
from pathlib import Path
from typing import Literal

from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from behavior_engine.core.errors import ConfigurationError
from behavior_engine.core.schemas_behaviors import ChannelType

# Load environment variables from .env file (only if accessible)
try:
    load_dotenv()
except (PermissionError, OSError):
    # In sandboxed environments, .env might not be accessible
    # Environment variables should be set directly
    pass


CURRENT_CONFIG_VERSION = 1


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )

    # Supabase configuration (required)
    SUPABASE_URL: str = Field(..., description="Supabase project URL")
    SUPABASE_SERVICE_ROLE_KEY: str = Field(..., description="Supabase service role key")

    # Provider keys (required)
    OPENAI_API_KEY: str = Field(..., description="OpenAI API key (embeddings)")
    ANTHROPIC_API_KEY: str = Field(..., description="Anthropic API key (arbitration, flow judgments)")

    # Environment
    BEHAVIOR_ENGINE_ENV: str = Field(default="dev", description="Environment: dev, staging, prod")

    # Embedding configuration
    EMBEDDING_MODEL: str = Field(
        default="text-embedding-3-small", description="OpenAI embedding model"
    )
    EMBEDDING_DIM: int = Field(default=1536, description="Embedding vector dimension")
    EMBEDDING_CACHE_TTL_S: float = Field(default=3600.0, description="Embedding cache TTL in seconds")
    EMBEDDING_CACHE_MAX_ENTRIES: int = Field(default=2048, description="Max cached embeddings")

    # LLM configuration
    ARBITRATION_MODEL: str = Field(
        default="claude-haiku-4-5-20251001", description="Model for behavior arbitration"
    )
    FLOW_EVAL_MODEL: str = Field(
        default="claude-haiku-4-5-20251001", description="Model for flow stage/exit judgments"
    )
    INNER_THOUGHT_MODEL: str = Field(
        default="claude-haiku-4-5-20251001", description="Model for agent inner-thought generation"
    )

    # Trigger index backend
    TRIGGER_INDEX_MODE: Literal["supabase", "memory"] = Field(
        default="supabase", description="Trigger vector backend"
    )

    # Optional path to a JSON EngineConfig
    ENGINE_CONFIG_PATH: str | None = Field(default=None, description="Path to engine config JSON")


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Returns:
        Settings instance

    Raises:
        ValidationError: If required environment variables are missing
    """
    return Settings()


# =============================================================================
# Component configuration (versioned, validated at load)
# =============================================================================


DEFAULT_CHANNEL_WEIGHTS: dict[ChannelType, float] = {
    ChannelType.USER_MESSAGE: 1.0,
    ChannelType.AGENT_MESSAGE: 0.3,
    ChannelType.COMBINED_EXCHANGE: 0.5,
    ChannelType.AGENT_THOUGHT: 0.7,
    ChannelType.EXTERNAL_CONTEXT: 0.4,
    ChannelType.TOOL_CALL: 0.3,
}


class BroadcastConfig(BaseModel):
    """Multi-vector broadcaster tuning."""

    top_k: int = Field(default=5, ge=1, le=100, description="Matches per channel search")
    similarity_floor: float = Field(default=0.4, ge=-1.0, le=1.0, description="Min cosine similarity")
    embedding_timeout_s: float = Field(default=2.0, gt=0, description="Per-channel embedding deadline")
    search_timeout_s: float = Field(default=1.5, gt=0, description="Per-channel search deadline")
    generate_inner_thought: bool = Field(default=True, description="Use the LLM for the agent_thought channel")
    inner_thought_timeout_s: float = Field(default=2.0, gt=0)
    capture_conversation_embeddings: bool = Field(
        default=True, description="Persist user/agent/thought embeddings for later history search"
    )


class RankerConfig(BaseModel):
    """Candidate ranker weights and adjustment constants."""

    channel_weights: dict[ChannelType, float] = Field(
        default_factory=lambda: dict(DEFAULT_CHANNEL_WEIGHTS)
    )
    default_priority: int = Field(default=5, ge=1, le=10)
    priority_scale: float = Field(default=1.2, gt=0)
    continuity_multiplier: float = Field(default=1.5, ge=1.0)
    continuity_min_score: float = Field(default=0.3, ge=0.0)

    @field_validator("channel_weights")
    @classmethod
    def _weights_non_negative(cls, value: dict[ChannelType, float]) -> dict[ChannelType, float]:
        for channel, weight in value.items():
            if weight < 0:
                raise ValueError(f"channel weight for {channel.value} must be >= 0, got {weight}")
        # Unspecified channels keep their defaults
        merged = dict(DEFAULT_CHANNEL_WEIGHTS)
        merged.update(value)
        return merged


class PersistenceConfig(BaseModel):
    """Behavior stickiness parameters."""

    initial_persistence: float = Field(default=1.0, ge=0.0, le=1.0)
    decay_per_exchange: float = Field(default=0.15, ge=0.0)
    min_persistence: float = Field(default=0.0, ge=0.0, le=1.0)
    transition_threshold: float = Field(default=0.2, ge=0.0)
    max_exchanges_before_force_decay: int = Field(default=10, ge=1)

    @model_validator(mode="after")
    def _min_below_initial(self) -> "PersistenceConfig":
        if self.min_persistence > self.initial_persistence:
            raise ValueError("min_persistence cannot exceed initial_persistence")
        return self


class ArbitrationConfig(BaseModel):
    """LLM arbitration settings."""

    candidate_pool_size: int = Field(default=10, description="Top-N candidates shown to the model")
    default_behavior_id: str = Field(default="free-form-chat")
    continuity_baseline_score: float = Field(default=0.5, ge=0.0, le=1.0)
    fallback_confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    enforce_switch_margin: bool = Field(default=True)
    max_tokens: int = Field(default=300, ge=16)
    temperature: float = Field(default=0.0, ge=0.0, le=1.0)
    recent_turns: int = Field(default=6, ge=0, description="Conversation turns included in the prompt")
    max_retries: int = Field(default=1, ge=0)

    @field_validator("candidate_pool_size")
    @classmethod
    def _clamp_pool(cls, value: int) -> int:
        return max(5, min(50, value))


class FlowPolicyConfig(BaseModel):
    """Failure policy for flow LLM judgments."""

    advance_on_llm_error: bool = Field(default=True, description="Stage advance when the judgment fails")
    exit_on_llm_error: bool = Field(default=False, description="Flow exit when the judgment fails")
    judgment_timeout_s: float = Field(default=3.0, gt=0)
    stage_history_messages: int = Field(default=4, ge=2, description="Messages shown for stage judgment")
    exit_history_messages: int = Field(default=6, ge=2, description="Messages shown for exit judgment")


class SelectionConfig(BaseModel):
    """Whole-pipeline settings."""

    selection_deadline_s: float = Field(default=8.0, gt=0)
    reject_concurrent_turns: bool = Field(default=False)
    audit_flush_timeout_s: float = Field(default=5.0, gt=0)


class EngineConfig(BaseModel):
    """Bundle of all component configs. ``version`` gates schema changes."""

    version: int = Field(default=CURRENT_CONFIG_VERSION)
    broadcast: BroadcastConfig = Field(default_factory=BroadcastConfig)
    ranker: RankerConfig = Field(default_factory=RankerConfig)
    persistence: PersistenceConfig = Field(default_factory=PersistenceConfig)
    arbitration: ArbitrationConfig = Field(default_factory=ArbitrationConfig)
    flow_policy: FlowPolicyConfig = Field(default_factory=FlowPolicyConfig)
    selection: SelectionConfig = Field(default_factory=SelectionConfig)

    @field_validator("version")
    @classmethod
    def _supported_version(cls, value: int) -> int:
        if value != CURRENT_CONFIG_VERSION:
            raise ValueError(
                f"unsupported engine config version {value} (expected {CURRENT_CONFIG_VERSION})"
            )
        return value


def load_engine_config(source: str | Path | dict | None = None) -> EngineConfig:
    """
    Load and validate an EngineConfig.

    Args:
        source: Path to a JSON file, an already-parsed dict, or None for defaults
            (falls back to ENGINE_CONFIG_PATH when set)

    Returns:
        Validated EngineConfig

    Raises:
        ConfigurationError: If the file is unreadable or fails validation
    """
    if source is None:
        path = get_settings().ENGINE_CONFIG_PATH
        if not path:
            return EngineConfig()
        source = path

    if isinstance(source, dict):
        data = source
    else:
        try:
            data = json.loads(Path(source).read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigurationError(f"Failed to read engine config {source}: {e}") from e

    try:
        return EngineConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid engine config: {e}") from e
