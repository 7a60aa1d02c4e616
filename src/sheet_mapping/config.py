"""Traversal limits shared by rule nodes, the visit ledger and the engine."""

from __future__ import annotations

from dataclasses import dataclass

CURRENT_RULE_VERSION = 1
LEGACY_RULE_VERSION = 0


@dataclass(frozen=True)
class TraversalConfig:
    """Hard caps applied to every rule node during a mapping run."""

    max_elements_cap: int = 20000
    max_levels_cap: int = 10
    default_max_elements: int = 10
    default_max_levels: int = 3
    # Safety cap for re-entering one component through reference edges.
    max_visits_per_component: int = 100

    def validate(self) -> "TraversalConfig":
        if self.max_elements_cap < 1 or self.max_levels_cap < 1:
            raise ValueError(
                f"Traversal caps must be positive, got elements={self.max_elements_cap} "
                f"levels={self.max_levels_cap}",
            )
        if not 1 <= self.default_max_elements <= self.max_elements_cap:
            raise ValueError(
                f"default_max_elements={self.default_max_elements} outside [1, {self.max_elements_cap}]",
            )
        if not 1 <= self.default_max_levels <= self.max_levels_cap:
            raise ValueError(
                f"default_max_levels={self.default_max_levels} outside [1, {self.max_levels_cap}]",
            )
        if self.max_visits_per_component < 1:
            raise ValueError("max_visits_per_component must be positive")
        return self

    def clamp_elements(self, value: int) -> int:
        return clamp(int(value), 1, self.max_elements_cap)

    def clamp_levels(self, value: int) -> int:
        return clamp(int(value), 1, self.max_levels_cap)


def clamp(value: int, low: int, high: int) -> int:
    return max(low, min(high, value))


DEFAULT_TRAVERSAL_CONFIG = TraversalConfig()
