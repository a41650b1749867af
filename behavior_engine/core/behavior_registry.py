"""In-process registry of configured behaviors."""

from collections.abc import Iterable

from behavior_engine.core.behavior_catalog import DEFAULT_BEHAVIORS
from behavior_engine.core.errors import ConfigurationError, UnknownBehaviorError
from behavior_engine.core.schemas_behaviors import Behavior


class BehaviorRegistry:
    """Lookup table of behaviors, validated once at construction."""

    def __init__(self, behaviors: Iterable[Behavior] | None = None, flow_ids: Iterable[str] | None = None):
        """
        Args:
            behaviors: Behaviors to register (defaults to the built-in catalog)
            flow_ids: Known flow template ids. When given, every behavior's
                flow_id must be one of them.

        Raises:
            ConfigurationError: On duplicate ids or unknown flow ids
        """
        self._behaviors: dict[str, Behavior] = {}
        known_flows = set(flow_ids) if flow_ids is not None else None

        for behavior in DEFAULT_BEHAVIORS if behaviors is None else behaviors:
            if behavior.id in self._behaviors:
                raise ConfigurationError(f"Duplicate behavior id: {behavior.id}")
            if known_flows is not None and behavior.flow_id and behavior.flow_id not in known_flows:
                raise ConfigurationError(
                    f"Behavior {behavior.id} references unknown flow {behavior.flow_id}"
                )
            self._behaviors[behavior.id] = behavior

    def __contains__(self, behavior_id: object) -> bool:
        return behavior_id in self._behaviors

    def __len__(self) -> int:
        return len(self._behaviors)

    def get(self, behavior_id: str) -> Behavior:
        try:
            return self._behaviors[behavior_id]
        except KeyError:
            raise UnknownBehaviorError(behavior_id) from None

    def all(self) -> list[Behavior]:
        return list(self._behaviors.values())

    def priorities(self) -> dict[str, int]:
        return {b.id: b.priority for b in self._behaviors.values()}

    def flow_id_for(self, behavior_id: str) -> str | None:
        """Flow template run by a behavior, or None for free-form behaviors."""
        return self.get(behavior_id).flow_id
