"""Rule nodes: the hierarchical configuration of a mapping.

A rule node says what to extract (subject, filters, properties), where to
put it (sheet, offsets, ordering) and how far to search (strategy and
budgets).  It holds no run state; :meth:`RuleNode.apply_rule_to` creates a
fresh traversal context per call and keeps it on ``last_run`` for
inspection until :meth:`RuleNode.reset`.
"""

from __future__ import annotations

import copy
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from sheet_mapping import traversal
from sheet_mapping.config import (
    CURRENT_RULE_VERSION,
    DEFAULT_TRAVERSAL_CONFIG,
    LEGACY_RULE_VERSION,
    TraversalConfig,
)
from sheet_mapping.contracts import (
    MappedRegion,
    MappingRange,
    MappingSubject,
    Point,
    TraversalStrategy,
)
from sheet_mapping.entities import Component
from sheet_mapping.filters import PARAMETER_VALUE_PROPERTIES, FilterPair


NOTHING_RULE_NAME = "- - -"


class RuleNode:
    """One node of a mapping rule tree."""

    def __init__(
        self,
        name: str = "",
        sheet_name: str = "",
        subject: MappingSubject = MappingSubject.COMPONENT,
        properties: Optional[Mapping[str, type]] = None,
        filters: Optional[Iterable[FilterPair]] = None,
        range_of_values: MappingRange = MappingRange.SINGLE_VALUE,
        order_horizontally: bool = True,
        offset_from_parent: Point = (0, 0),
        offset_between_applications: Point = (0, 0),
        max_elements_to_map: Optional[int] = None,
        max_hierarchy_levels_to_traverse: Optional[int] = None,
        strategy: TraversalStrategy = TraversalStrategy.SUBTREE_ONLY,
        is_active: bool = True,
        version: int = CURRENT_RULE_VERSION,
        parent: Optional["RuleNode"] = None,
        config: TraversalConfig = DEFAULT_TRAVERSAL_CONFIG,
    ):
        self.config = config.validate()
        self.name = name
        self.sheet_name = sheet_name
        self._subject = subject
        self._properties: Dict[str, type] = dict(properties or {})
        self.filters: List[FilterPair] = list(filters or [])
        self._range_of_values = range_of_values
        self.order_horizontally = order_horizontally
        self.offset_from_parent = tuple(offset_from_parent)
        self.offset_between_applications = tuple(offset_between_applications)
        self._max_elements = self.config.clamp_elements(
            config.default_max_elements if max_elements_to_map is None else max_elements_to_map)
        self._max_levels = self.config.clamp_levels(
            config.default_max_levels if max_hierarchy_levels_to_traverse is None
            else max_hierarchy_levels_to_traverse)
        self.strategy = strategy
        self.is_active = is_active
        self._version = _checked_version(version)
        self._children: List[RuleNode] = []
        self._parent: Optional[RuleNode] = None
        self.tool = None
        self.last_run: Optional[traversal.TraversalContext] = None
        self._sync_range()
        if parent is not None:
            parent.add_child(self)

    # ─── Configuration ───────────────────────────────────────────────────────

    @property
    def subject(self) -> MappingSubject:
        return self._subject

    @subject.setter
    def subject(self, value: MappingSubject) -> None:
        if value is not self._subject:
            self._subject = value
            self._properties = {}
            self.filters = []

    @property
    def properties(self) -> Dict[str, type]:
        return self._properties

    @properties.setter
    def properties(self, value: Mapping[str, type]) -> None:
        self._properties = dict(value or {})
        self._sync_range()

    @property
    def range_of_values(self) -> MappingRange:
        return self._range_of_values

    @range_of_values.setter
    def range_of_values(self, value: MappingRange) -> None:
        self._range_of_values = value

    def _sync_range(self) -> None:
        if self._subject is MappingSubject.INSTANCE and any(
            name in PARAMETER_VALUE_PROPERTIES for name in self._properties
        ):
            self._range_of_values = MappingRange.VECTOR_VALUES

    @property
    def max_elements_to_map(self) -> int:
        return self._max_elements

    @max_elements_to_map.setter
    def max_elements_to_map(self, value: int) -> None:
        self._max_elements = self.config.clamp_elements(value)

    @property
    def max_hierarchy_levels_to_traverse(self) -> int:
        return self._max_levels

    @max_hierarchy_levels_to_traverse.setter
    def max_hierarchy_levels_to_traverse(self, value: int) -> None:
        self._max_levels = self.config.clamp_levels(value)

    @property
    def version(self) -> int:
        return self._version

    @version.setter
    def version(self, value: int) -> None:
        self._version = _checked_version(value)
        for child in self._children:
            child.version = value

    # ─── Tree structure ──────────────────────────────────────────────────────

    @property
    def parent(self) -> Optional["RuleNode"]:
        return self._parent

    @parent.setter
    def parent(self, value: Optional["RuleNode"]) -> None:
        if value is self._parent:
            return
        if self._parent is not None:
            self._parent._children.remove(self)
        self._parent = value
        if value is not None:
            value._children.append(self)

    @property
    def children(self) -> Tuple["RuleNode", ...]:
        return tuple(self._children)

    def add_child(self, child: "RuleNode") -> "RuleNode":
        if child is self or child in self.ancestors():
            raise ValueError(f"Cannot add rule '{child.name}' below itself")
        child.parent = self
        return child

    def remove_child(self, child: "RuleNode") -> None:
        if child in self._children:
            child.parent = None

    def move_child_up(self, child: "RuleNode") -> None:
        idx = self._children.index(child)
        if idx > 0:
            self._children[idx - 1], self._children[idx] = self._children[idx], self._children[idx - 1]

    def move_child_down(self, child: "RuleNode") -> None:
        idx = self._children.index(child)
        if idx < len(self._children) - 1:
            self._children[idx + 1], self._children[idx] = self._children[idx], self._children[idx + 1]

    def ancestors(self) -> List["RuleNode"]:
        out = []
        node = self._parent
        while node is not None:
            out.append(node)
            node = node._parent
        return out

    @property
    def root(self) -> "RuleNode":
        node = self
        while node._parent is not None:
            node = node._parent
        return node

    @property
    def depth(self) -> int:
        return len(self.ancestors())

    @property
    def total_traversal_levels(self) -> int:
        """Own level budget plus the budgets of all ancestors."""
        return self._max_levels + sum(a._max_levels for a in self.ancestors())

    def count_all_children(self) -> int:
        return sum(1 + child.count_all_children() for child in self._children)

    def iter_tree(self):
        yield self
        for child in self._children:
            yield from child.iter_tree()

    # ─── Running ─────────────────────────────────────────────────────────────

    def apply_rule_to(
        self,
        root: Optional[Component],
        offset: Point = (0, 0),
        trace=None,
        call_stack: Optional[list] = None,
    ) -> List[MappedRegion]:
        """Map *root* with this rule tree; see :func:`traversal.apply_rule_to`."""
        return traversal.apply_rule_to(self, root, offset, trace=trace, call_stack=call_stack)

    def reset(self) -> None:
        """Forget the context of the last run, for the whole subtree."""
        self.last_run = None
        for child in self._children:
            child.reset()

    # ─── Copies and factories ────────────────────────────────────────────────

    def copy(self, name_format: str = "{0}") -> "RuleNode":
        """Detached deep copy of the configuration, upgraded to the current version."""
        clone = RuleNode(
            name=name_format.format(self.name),
            sheet_name=self.sheet_name,
            subject=self._subject,
            properties=self._properties,
            filters=[(prop, copy.copy(pattern)) for prop, pattern in self.filters],
            range_of_values=self._range_of_values,
            order_horizontally=self.order_horizontally,
            offset_from_parent=self.offset_from_parent,
            offset_between_applications=self.offset_between_applications,
            max_elements_to_map=self._max_elements,
            max_hierarchy_levels_to_traverse=self._max_levels,
            strategy=self.strategy,
            is_active=self.is_active,
            version=CURRENT_RULE_VERSION,
            config=self.config,
        )
        for child in self._children:
            clone.add_child(child.copy(name_format))
        return clone

    @classmethod
    def nothing_rule(cls) -> "RuleNode":
        return cls(name=NOTHING_RULE_NAME, sheet_name=NOTHING_RULE_NAME)

    def is_nothing(self) -> bool:
        return self.name == NOTHING_RULE_NAME

    @classmethod
    def default_rule(cls, parent: Optional["RuleNode"] = None) -> "RuleNode":
        sheet_name = "" if parent is None else parent.sheet_name
        return cls(sheet_name=sheet_name, properties={"name": str}, parent=parent)

    # ─── Display ─────────────────────────────────────────────────────────────

    def summarize_offsets(self) -> str:
        return (
            f"from parent {self.offset_from_parent[0]};{self.offset_from_parent[1]} "
            f"between {self.offset_between_applications[0]};{self.offset_between_applications[1]}"
        )

    def __str__(self) -> str:
        return self._indented("")

    def _indented(self, indent: str) -> str:
        line = (
            f"{indent}{self.name or '<unnamed>'} [{self._subject.value}] "
            f"sheet={self.sheet_name!r} {self.summarize_offsets()}"
        )
        lines = [line]
        for child in self._children:
            lines.append(child._indented(indent + "  "))
        return "\n".join(lines)

    def __repr__(self) -> str:
        return f"RuleNode({self.name!r}, subject={self._subject.value}, children={len(self._children)})"



def _checked_version(version: int) -> int:
    if version not in (LEGACY_RULE_VERSION, CURRENT_RULE_VERSION):
        raise ValueError(
            f"Unknown rule version {version}, expected {LEGACY_RULE_VERSION} or {CURRENT_RULE_VERSION}",
        )
    return version
