"""Tool aggregate: root rules, unmapping rules and the run call stack.

A :class:`MappingTool` is the composition root a caller works with.  It
runs its root rules over (component, rule) pairs, keeping consecutive runs
of the same rule from writing over each other, and binds result tables back
through its unmapping rules.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from sheet_mapping.contracts import MappedRegion, Point, total_offset
from sheet_mapping.entities import Component, Parameter, Slot, ValueTable
from sheet_mapping.rule_node import RuleNode
from sheet_mapping.tracker import PlacementTracker
from sheet_mapping.unmapping import UnmappingRule

logger = logging.getLogger(__name__)

MAX_LEVEL = 3
MAX_REF_LEVEL = 1


@dataclass(frozen=True)
class MappingCandidate:
    """A component a root rule could be assigned to, with how it was reached."""
    level: int
    via_subtree: bool
    component: Component


class MappingTool:
    """Owns root rule nodes and unmapping rules.

    Index 0 of :attr:`rules` is always the "nothing" rule, so a caller can
    assign "no rule" to a component by index.
    """

    def __init__(
        self,
        name: str = "",
        rules: Optional[Iterable[RuleNode]] = None,
        unmapping_rules: Optional[Iterable[UnmappingRule]] = None,
        macro_name: str = "",
        output_ranges: Optional[Iterable[Tuple[MappedRegion, type]]] = None,
    ):
        self.name = name
        self.macro_name = macro_name
        self.rules: List[RuleNode] = [RuleNode.nothing_rule()]
        if rules is None:
            rules = [RuleNode.default_rule()]
        for rule in rules:
            self.add_rule(rule)
        self.rules[0].tool = self
        self.unmapping_rules: List[UnmappingRule] = []
        for rule in unmapping_rules or []:
            self.add_unmapping_rule(rule)
        self.output_ranges: List[Tuple[MappedRegion, type]] = list(output_ranges or [])
        self.call_stack: Optional[List[Tuple[Component, Slot]]] = None
        self.max_level = MAX_LEVEL
        self.max_ref_level = MAX_REF_LEVEL

    # ─── Rule management ─────────────────────────────────────────────────────

    def add_rule(self, rule: RuleNode) -> RuleNode:
        if rule.parent is not None:
            raise ValueError(f"Rule '{rule.name}' is not a root rule")
        rule.tool = self
        self.rules.append(rule)
        return rule

    def remove_rule(self, rule: RuleNode) -> None:
        if rule in self.rules and not rule.is_nothing():
            self.rules.remove(rule)
            rule.tool = None

    def add_unmapping_rule(self, rule: UnmappingRule) -> UnmappingRule:
        rule.tool = self
        self.unmapping_rules.append(rule)
        return rule

    def remove_unmapping_rule(self, rule: UnmappingRule) -> None:
        if rule in self.unmapping_rules:
            self.unmapping_rules.remove(rule)
            rule.tool = None

    def index_of_rule(self, rule: Optional[RuleNode]) -> int:
        if rule is None or rule not in self.rules:
            return -1
        return self.rules.index(rule)

    def move_rule_up(self, rule: RuleNode) -> None:
        idx = self.rules.index(rule)
        if idx > 0:
            self.rules[idx - 1], self.rules[idx] = self.rules[idx], self.rules[idx - 1]

    def move_rule_down(self, rule: RuleNode) -> None:
        idx = self.rules.index(rule)
        if idx < len(self.rules) - 1:
            self.rules[idx + 1], self.rules[idx] = self.rules[idx], self.rules[idx + 1]

    # ─── Mapping ─────────────────────────────────────────────────────────────

    def map_to_input(
        self,
        pairs: Optional[Sequence[Tuple[Component, RuleNode]]],
        trace=None,
    ) -> List[MappedRegion]:
        """Apply each rule to its component and concatenate the regions.

        When a rule is used more than once, each later run starts past the
        total extent of its previous run along the rule's ordering axis.
        """
        mapping: List[MappedRegion] = []
        if not pairs:
            return mapping
        total_offsets: Dict[RuleNode, Point] = {}
        for component, rule in pairs:
            if component is None or rule is None:
                continue
            previous = total_offsets.get(rule, (0, 0))
            offset = (0, 0)
            if previous[0] > 0 or previous[1] > 0:
                if rule.order_horizontally:
                    offset = (0, previous[1] - rule.offset_from_parent[1])
                else:
                    offset = (previous[0] - rule.offset_from_parent[0], 0)
            rule.reset()
            self.call_stack = []
            try:
                regions = rule.apply_rule_to(component, offset, trace=trace, call_stack=self.call_stack)
            finally:
                self.call_stack = None
            total_offsets[rule] = total_offset(regions)
            mapping.extend(regions)
            logger.debug(
                "Rule '%s' on '%s' from %s: %d regions, extent %s",
                rule.name, component.name, offset, len(regions), total_offsets[rule],
            )
        logger.info("Tool '%s' mapped %d pairs into %d regions", self.name, len(pairs), len(mapping))
        return mapping

    def mapping_candidates(
        self,
        components: Optional[Sequence[Component]],
        max_level: Optional[int] = None,
        max_ref_level: Optional[int] = None,
        max_found: Optional[int] = None,
    ) -> Tuple[List[MappingCandidate], bool]:
        """Flat list of components reachable from *components*.

        Sub-components are followed up to *max_level* below each root,
        references up to *max_ref_level* hops.  Returns the candidates and
        whether the search stopped early at *max_found*.
        """
        found: List[MappingCandidate] = []
        if not components:
            return found, False
        max_level = self.max_level if max_level is None else max_level
        max_ref_level = self.max_ref_level if max_ref_level is None else max_ref_level

        def visit(component: Component, level: int, ref_level: int, via_subtree: bool, path: set) -> bool:
            if max_found is not None and len(found) >= max_found:
                return False
            found.append(MappingCandidate(level, via_subtree, component))
            path = path | {component.local_id}
            if level < max_level:
                for sub in component.sub_components:
                    if sub.local_id not in path and not visit(sub, level + 1, ref_level, True, path):
                        return False
            if ref_level < max_ref_level:
                for target in component.referenced_components:
                    if target.local_id not in path and not visit(target, level + 1, ref_level + 1, False, path):
                        return False
            return True

        for root in components:
            if root is not None and not visit(root, 0, 0, True, set()):
                logger.warning("Candidate search stopped after %d components", len(found))
                return found, True
        return found, False

    # ─── Unmapping ───────────────────────────────────────────────────────────

    def apply_unmappings(
        self,
        tables: Mapping[str, ValueTable],
        components: Iterable[Component],
    ) -> Dict[str, List[Parameter]]:
        """Bind each unmapping rule to the table stored under its name."""
        components = list(components)
        tracker = PlacementTracker()
        bound: Dict[str, List[Parameter]] = {}
        for i, rule in enumerate(self.unmapping_rules):
            if tracker.record_region(rule, i, True, [rule.source_region]):
                logger.warning(
                    "Unmapping '%s' reads a range already used on sheet '%s'",
                    rule.name, rule.sheet_name,
                )
            table = tables.get(rule.name)
            if table is None:
                logger.warning("No result table for unmapping '%s'", rule.name)
                continue
            bound[rule.name] = rule.apply_unmapping(table, components)
        return bound

    # ─── Copies and display ──────────────────────────────────────────────────

    def copy(self, name_format: str = "{0}") -> "MappingTool":
        """Copy of every rule; the name is left empty since tools are looked up by name."""
        clone = MappingTool(
            "",
            rules=[r.copy() for r in self.rules if not r.is_nothing()],
            unmapping_rules=[r.copy(name_format) for r in self.unmapping_rules],
            macro_name=self.macro_name,
            output_ranges=self.output_ranges,
        )
        clone.max_level = self.max_level
        clone.max_ref_level = self.max_ref_level
        return clone

    def __str__(self) -> str:
        return f"{self.name} [{len(self.rules) - 1}]"
