"""Exception taxonomy for the Behavior Engine.

Configuration errors propagate to the caller: they mean a deployment bug.
Provider and malformed-output errors are raised by provider wrappers and
absorbed at component boundaries into degraded results.
"""


class BehaviorEngineError(Exception):
    """Base class for engine errors."""


class ConfigurationError(BehaviorEngineError):
    """Invalid or inconsistent engine configuration."""


class UnknownBehaviorError(ConfigurationError):
    """A behavior id that is not in the registry was referenced."""

    def __init__(self, behavior_id: str):
        super().__init__(f"Unknown behavior: {behavior_id}")
        self.behavior_id = behavior_id


class UnknownFlowError(ConfigurationError):
    """A flow template id that is not registered was referenced."""

    def __init__(self, flow_id: str):
        super().__init__(f"Flow template not found: {flow_id}")
        self.flow_id = flow_id


class ProviderError(BehaviorEngineError):
    """Embedding, LLM or vector index call failed or timed out."""


class MalformedOutputError(ProviderError):
    """Provider answered, but the answer is unusable (bad JSON, unknown id)."""


class ConcurrentTurnError(BehaviorEngineError):
    """A second turn for the same user arrived while one is in progress."""

    def __init__(self, user_id: str):
        super().__init__(f"Turn already in progress for user {user_id}")
        self.user_id = user_id
