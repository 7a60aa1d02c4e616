"""Per-run visit bookkeeping that bounds recursion over the entity graph."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Set, Tuple

from sheet_mapping.contracts import MappingSubject
from sheet_mapping.entities import Component, Instance, Parameter


class VisitLedger:
    """Visit counts keyed by (component, rule node), plus claimed leaf items.

    Created empty at the start of a run and discarded at its end.  Parameters,
    instances and (instance, geometric subject) pairs are claimed at most once
    per run.
    """

    def __init__(self):
        self._visits: Dict[int, Dict[object, int]] = {}
        self._parameters: Set[int] = set()
        self._instances: Set[int] = set()
        self._geometry: Set[Tuple[int, MappingSubject]] = set()

    def record_visit(self, component: Component, node: object) -> int:
        per_node = self._visits.setdefault(component.local_id, {})
        per_node[node] = per_node.get(node, 0) + 1
        return per_node[node]

    def visit_count(self, component: Component, node: object) -> int:
        return self._visits.get(component.local_id, {}).get(node, 0)

    def reset_contribution(
        self,
        local_counts: Mapping[int, int],
        excluded: Set[int],
        node: object,
        lower_cap: int = 0,
    ) -> int:
        """Subtract *node*'s own visits for every component it did not match.

        Returns the number of ledger entries changed.
        """
        changed = 0
        for component_id, count in local_counts.items():
            if count == 0 or component_id in excluded:
                continue
            per_node = self._visits.get(component_id)
            if per_node is None or node not in per_node:
                continue
            per_node[node] = max(per_node[node] - count, lower_cap)
            changed += 1
        return changed

    # ─── Leaf claims ─────────────────────────────────────────────────────────

    def claim_parameter(self, parameter: Parameter) -> bool:
        if parameter.local_id in self._parameters:
            return False
        self._parameters.add(parameter.local_id)
        return True

    def claim_instance(self, instance: Instance) -> bool:
        if instance.local_id in self._instances:
            return False
        self._instances.add(instance.local_id)
        return True

    def claim_geometry(self, instance: Instance, subject: MappingSubject) -> bool:
        key = (instance.local_id, subject)
        if key in self._geometry:
            return False
        self._geometry.add(key)
        return True

    @property
    def total_visits(self) -> int:
        return sum(sum(per_node.values()) for per_node in self._visits.values())


def max_references_to_chain(component: Component, levels: int) -> int:
    """Largest referenced-by count found walking back along references.

    Walks at most *levels* steps from *component* towards the components that
    reference it, each component at most once.
    """
    excluded: Set[int] = set()
    return _max_references_recursion(component, levels, excluded)


def _max_references_recursion(component: Component, levels: int, excluded: Set[int]) -> int:
    excluded.add(component.local_id)
    best = len(component.referenced_by)
    if levels > 0:
        for source in component.referenced_by:
            if source.local_id not in excluded:
                best = max(best, _max_references_recursion(source, levels - 1, excluded))
    return best


@dataclass
class VisitableElements:
    """Everything reachable from a root over both edge kinds."""
    components: List[Component] = field(default_factory=list)
    parameters: List[Parameter] = field(default_factory=list)
    instances: List[Instance] = field(default_factory=list)


def collect_visitable_elements(
    root: Component, into: Optional[VisitableElements] = None, seen: Optional[Set[int]] = None,
) -> VisitableElements:
    if into is None:
        into = VisitableElements()
    if seen is None:
        seen = set()
    if root.local_id in seen:
        return into
    seen.add(root.local_id)
    into.components.append(root)
    into.parameters.extend(root.parameters)
    into.instances.extend(root.instances)
    for child in root.sub_components:
        collect_visitable_elements(child, into, seen)
    for target in root.referenced_components:
        collect_visitable_elements(target, into, seen)
    return into
