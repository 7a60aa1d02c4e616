"""Traversal engine: walks the rule tree and the entity graph together.

Two mutually recursive functions carry the two recursion dimensions:

* :func:`apply_node_to_entity` evaluates one rule node against one entity,
  writes its regions and, when the node is a component rule that did not
  match, keeps searching deeper with the same node;
* :func:`apply_children_to_descendants` hands a matched entity (and the
  entities below it) to every child rule node.

All mutable state of a run lives in a :class:`TraversalContext`; rule nodes
are never written to, so repeated or parallel runs cannot interfere.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterator, List, Optional, Sequence, Set, Tuple

import numpy as np

from sheet_mapping.config import CURRENT_RULE_VERSION, DEFAULT_TRAVERSAL_CONFIG, TraversalConfig
from sheet_mapping.contracts import MappedRegion, MappingRange, MappingSubject, Point
from sheet_mapping.entities import (
    Component,
    Instance,
    InstanceState,
    InstanceType,
    Parameter,
    ReferenceEntry,
    Slot,
)
from sheet_mapping.filters import (
    PARAMETER_VALUE_PROPERTIES,
    VALUE_CURRENT,
    extract_named_values,
    extract_values,
    passes_filter,
)
from sheet_mapping.geometry import geometry_attribute
from sheet_mapping.ledger import VisitLedger, collect_visitable_elements, max_references_to_chain
from sheet_mapping.tracker import Extents, PlacementTracker

logger = logging.getLogger(__name__)

Placement = Tuple[List[MappedRegion], Point]


@dataclass
class NodeRunState:
    """Counters one rule node accumulates during a single run."""
    applications: int = 0
    mapped_elements: int = 0
    traversed_levels: int = 0
    local_visits: Dict[int, int] = field(default_factory=dict)
    matched: Set[int] = field(default_factory=set)


class TraversalContext:
    """Everything a run mutates: ledger, tracker, call stack and node counters."""

    def __init__(
        self,
        config: Optional[TraversalConfig] = None,
        trace=None,
        call_stack: Optional[List[Tuple[Component, Slot]]] = None,
    ):
        self.config = (config or DEFAULT_TRAVERSAL_CONFIG).validate()
        self.ledger = VisitLedger()
        self.tracker = PlacementTracker()
        self.call_stack: List[Tuple[Component, Slot]] = call_stack if call_stack is not None else []
        self.trace = trace
        self.activations = 0
        self._states: Dict[object, NodeRunState] = {}

    def state(self, node) -> NodeRunState:
        st = self._states.get(node)
        if st is None:
            st = NodeRunState()
            self._states[node] = st
        return st

    def clear_matched_below(self, node) -> None:
        for child in node.children:
            self.state(child).matched.clear()
            self.clear_matched_below(child)

    def step(self, node, entity, message: str) -> None:
        if self.trace is not None:
            self.trace.add_step(node.depth, node.name, _entity_info(entity), message)


# ─── Entry point ─────────────────────────────────────────────────────────────


def apply_rule_to(
    node,
    root: Optional[Component],
    offset: Point = (0, 0),
    trace=None,
    call_stack: Optional[List[Tuple[Component, Slot]]] = None,
    config: Optional[TraversalConfig] = None,
) -> List[MappedRegion]:
    """Map *root* with the rule tree below *node*, starting at *offset*.

    A fresh context is created per call and kept on ``node.last_run``.
    """
    ctx = TraversalContext(config or node.config, trace, call_stack)
    node.last_run = ctx
    if root is None:
        return []
    if logger.isEnabledFor(logging.DEBUG):
        scope = collect_visitable_elements(root)
        logger.debug(
            "Mapping scope: rule=%s components=%d parameters=%d instances=%d",
            node.name, len(scope.components), len(scope.parameters), len(scope.instances),
        )
    regions = apply_node_to_entity(node, root, tuple(offset), ctx, check_if_visited=True)
    logger.info(
        "Mapping complete: rule=%s root=%s regions=%d activations=%d visits=%d tracked=%d extent=%s",
        node.name, root.name, len(regions), ctx.activations, ctx.ledger.total_visits,
        len(ctx.tracker), ctx.tracker.full_bounding_box().describe(),
    )
    logger.debug("Tracker state:\n%s", ctx.tracker.describe())
    return regions


# ─── Recursion ───────────────────────────────────────────────────────────────


def apply_node_to_entity(
    node,
    entity: Optional[Component],
    start: Point,
    ctx: TraversalContext,
    check_if_visited: bool = True,
    anchor: Optional[Component] = None,
) -> List[MappedRegion]:
    """One activation of *node* on *entity*.

    Budgets are checked before any work.  A component rule that does not
    match searches the entity's subtree and references with the same node;
    other subjects have no fallback.  A successful match hands the entity to
    the node's children.
    """
    if not node.is_active or entity is None:
        return []
    state = ctx.state(node)
    if (state.mapped_elements >= node.max_elements_to_map
            or state.traversed_levels >= node.max_hierarchy_levels_to_traverse):
        logger.debug(
            "Budget exhausted: rule=%s elements=%d/%d levels=%d/%d",
            node.name, state.mapped_elements, node.max_elements_to_map,
            state.traversed_levels, node.max_hierarchy_levels_to_traverse,
        )
        return []

    ctx.activations += 1
    dx, dy = node.offset_between_applications
    nominal = (start[0] + state.applications * dx, start[1] + state.applications * dy)
    subject = node.subject

    if subject is MappingSubject.COMPONENT:
        outcome = _map_component(node, entity, nominal, ctx, check_if_visited)
    elif subject is MappingSubject.PARAMETER:
        outcome = _map_parameter(node, entity, nominal, ctx, anchor)
    elif subject is MappingSubject.INSTANCE:
        outcome = _map_instances(node, entity, nominal, ctx, anchor)
    else:
        outcome = _map_geometry(node, entity, nominal, ctx)

    results: List[MappedRegion] = []
    if outcome is not None:
        placed, after = outcome
        results.extend(placed)
        results.extend(apply_children_to_descendants(node, entity, after, ctx))
    elif subject is MappingSubject.COMPONENT:
        fallback = start if node.version >= CURRENT_RULE_VERSION else nominal
        results.extend(_search_deeper(node, entity, fallback, ctx))

    if subject is MappingSubject.COMPONENT:
        ctx.ledger.reset_contribution(state.local_visits, state.matched, node)
    ctx.clear_matched_below(node)
    return results


def apply_children_to_descendants(
    node,
    entity: Component,
    start: Point,
    ctx: TraversalContext,
) -> List[MappedRegion]:
    """Apply every child rule of *node* to the matched *entity* and below it.

    Component children go to the sub-entities and referenced entities their
    strategy allows.  Other children go to *entity* itself first and then to
    those same sub-entities and referenced entities, anchored at *entity*.
    """
    results: List[MappedRegion] = []
    for child in node.children:
        if child.subject is MappingSubject.COMPONENT:
            results.extend(_descend(child, entity, start, ctx, anchor=None))
        else:
            results.extend(apply_node_to_entity(child, entity, start, ctx, True, anchor=entity))
            results.extend(_descend(child, entity, start, ctx, anchor=entity))
        if node.version >= CURRENT_RULE_VERSION:
            ctx.state(child).applications = 0
    return results


def _descend(child, entity: Component, start: Point, ctx: TraversalContext, anchor) -> List[MappedRegion]:
    results: List[MappedRegion] = []
    if child.strategy.follows_subtree:
        for entry in list(entity.children):
            sub = entry.component
            with _walking(ctx, entity, entry.slot):
                if sub is None:
                    continue
                if anchor is None and ctx.ledger.visit_count(sub, child) > 0:
                    continue
                ctx.step(child, sub, "descend into subtree")
                results.extend(apply_node_to_entity(child, sub, start, ctx, True, anchor=anchor))
    if child.strategy.follows_references:
        for entry in sorted_references(entity):
            target = entry.target
            with _walking(ctx, entity, entry.slot):
                if anchor is None and ctx.ledger.visit_count(target, child) >= _reference_limit(child, target, ctx):
                    continue
                ctx.step(child, target, "descend into reference")
                results.extend(apply_node_to_entity(child, target, start, ctx, False, anchor=anchor))
    return results


def _search_deeper(node, entity: Component, start: Point, ctx: TraversalContext) -> List[MappedRegion]:
    """Re-apply *node* below an entity it did not match."""
    results: List[MappedRegion] = []
    state = ctx.state(node)
    if node.strategy.follows_subtree:
        for entry in list(entity.children):
            sub = entry.component
            with _walking(ctx, entity, entry.slot):
                if sub is None or ctx.ledger.visit_count(sub, node) != 0:
                    continue
                state.traversed_levels += 1
                results.extend(apply_node_to_entity(node, sub, start, ctx, True))
                state.traversed_levels -= 1
    if node.strategy.follows_references:
        for entry in sorted_references(entity):
            target = entry.target
            with _walking(ctx, entity, entry.slot):
                if ctx.ledger.visit_count(target, node) >= _reference_limit(node, target, ctx):
                    continue
                state.traversed_levels += 1
                results.extend(apply_node_to_entity(node, target, start, ctx, False))
                state.traversed_levels -= 1
    return results


@contextmanager
def _walking(ctx: TraversalContext, owner: Component, slot: Slot) -> Iterator[None]:
    ctx.call_stack.append((owner, slot))
    try:
        yield
    finally:
        ctx.call_stack.pop()


def sorted_references(entity: Component) -> List[ReferenceEntry]:
    """Resolved reference edges ordered by their slot text."""
    resolved = [entry for entry in entity.references if entry.target is not None]
    return sorted(resolved, key=lambda entry: str(entry.slot))


def _reference_limit(node, target: Component, ctx: TraversalContext) -> int:
    return max(
        max_references_to_chain(target, node.total_traversal_levels),
        ctx.config.max_visits_per_component,
    )


# ─── Subject-specific mapping ────────────────────────────────────────────────


def _map_component(
    node, component: Component, nominal: Point, ctx: TraversalContext, check_if_visited: bool,
) -> Optional[Placement]:
    ledger = ctx.ledger
    count = ledger.visit_count(component, node)
    if check_if_visited and count > 0:
        return None
    if count > _reference_limit(node, component, ctx):
        return None
    ledger.record_visit(component, node)
    state = ctx.state(node)
    state.local_visits[component.local_id] = state.local_visits.get(component.local_id, 0) + 1
    ctx.step(node, component, "evaluate")

    if not passes_filter(component, node.filters, ctx.call_stack):
        return None
    state.matched.add(component.local_id)
    layout, advance = _cell_layout(node, extract_values(component, node.properties))
    return _place(node, ctx, _with_parent_offset(node, nominal), layout, advance)


def _map_parameter(
    node, component: Component, nominal: Point, ctx: TraversalContext, anchor: Optional[Component],
) -> Optional[Placement]:
    if not _anchor_matched(node, component, anchor, ctx):
        return None
    parameter = None
    for candidate in component.parameters:
        if passes_filter(candidate, node.filters, ctx.call_stack) and ctx.ledger.claim_parameter(candidate):
            parameter = candidate
            break
    if parameter is None:
        return None
    ctx.state(node).matched.add(component.local_id)
    ctx.step(node, component, f"parameter {parameter.name}")

    table = _table_values(node, parameter)
    horizontal = node.order_horizontally
    layout: List[MappedRegion] = []
    cx, cy = 0, 0
    for name, value in extract_named_values(parameter, node.properties):
        if table is not None and name == VALUE_CURRENT:
            region = MappedRegion.map_numbers(node.sheet_name, (cx, cy), table)
        else:
            region = _region_for(node.sheet_name, (cx, cy), value)
        if region is None:
            continue
        layout.append(region)
        if horizontal:
            cx, cy = cx + region.width, cy + region.height - 1
        else:
            cx, cy = cx + region.width - 1, cy + region.height
    return _place(node, ctx, _with_parent_offset(node, nominal), layout, (cx, cy))


def _table_values(node, parameter: Parameter) -> Optional[np.ndarray]:
    """Row, column or whole table behind a pointer-bound parameter."""
    pointer = parameter.value_pointer
    if (node.range_of_values is MappingRange.SINGLE_VALUE
            or pointer is None
            or not pointer.is_valid
            or VALUE_CURRENT not in node.properties):
        return None
    table = pointer.table
    if node.range_of_values is MappingRange.MATRIX_VALUES:
        return table.data.copy()
    if node.order_horizontally:
        return table.column(pointer.column)
    return table.row(pointer.row)


def _map_instances(
    node, component: Component, nominal: Point, ctx: TraversalContext, anchor: Optional[Component],
) -> Optional[Placement]:
    if not _anchor_matched(node, component, anchor, ctx):
        return None
    state = ctx.state(node)
    with_values = (node.range_of_values is not MappingRange.SINGLE_VALUE
                   and any(name in PARAMETER_VALUE_PROPERTIES for name in node.properties))
    pos = _with_parent_offset(node, nominal)
    placed_all: List[MappedRegion] = []
    after = pos
    first = True
    for instance in component.instances:
        if state.mapped_elements >= node.max_elements_to_map:
            break
        if not passes_filter(instance, node.filters, ctx.call_stack):
            continue
        if not ctx.ledger.claim_instance(instance):
            continue
        ctx.step(node, component, f"instance {instance.name or instance.local_id}")
        layout, advance = _instance_layout(node, instance, with_values, header=first and with_values)
        placed, after = _place(node, ctx, pos, layout, advance)
        placed_all.extend(placed)
        pos = after
        first = False
    if first:
        return None
    state.matched.add(component.local_id)
    return placed_all, after


def _instance_layout(node, instance: Instance, with_values: bool, header: bool) -> Tuple[List[MappedRegion], Point]:
    """One record per instance; the first may carry a label header.

    Only the parameter-value labels form the header; plain properties sit on
    the value line.

    Horizontal rules write a record as a row (header row above it), vertical
    rules as a column (header column left of it).
    """
    sheet = node.sheet_name
    horizontal = node.order_horizontally
    value_line = 1 if header else 0

    def at(along: int, across: int) -> Point:
        return (along, across) if horizontal else (across, along)

    layout: List[MappedRegion] = []
    along = 0
    for name, value in extract_named_values(instance, node.properties):
        if name in PARAMETER_VALUE_PROPERTIES:
            if not with_values or not value:
                continue
            labels = list(value.keys())
            numbers = [float(v) for v in value.values()]
            if horizontal:
                label_rows, number_rows = [labels], [numbers]
            else:
                label_rows, number_rows = [[label] for label in labels], [[n] for n in numbers]
            if header:
                layout.append(MappedRegion.map_strings(sheet, at(along, 0), label_rows))
            layout.append(MappedRegion.map_numbers(sheet, at(along, value_line), number_rows))
            along += len(labels)
        else:
            layout.append(_region_for(sheet, at(along, value_line), value))
            along += 1
    return [r for r in layout if r is not None], at(0, value_line + 1)


def _map_geometry(node, component: Component, nominal: Point, ctx: TraversalContext) -> Optional[Placement]:
    if component.instance_type is not InstanceType.GEOMETRIC_SURFACE:
        return None
    instance = None
    for candidate in component.instances:
        if (passes_filter(candidate, node.filters, ctx.call_stack)
                and ctx.ledger.claim_geometry(candidate, node.subject)):
            instance = candidate
            break
    if instance is None:
        return None
    ctx.state(node).matched.add(component.local_id)
    ctx.step(node, component, f"{node.subject.value} of {instance.name or instance.local_id}")
    if node.subject is MappingSubject.GEOMETRY:
        values = extract_values(instance, node.properties)
    else:
        values = geometry_attribute(instance, node.subject)
    layout, advance = _cell_layout(node, values)
    return _place(node, ctx, _with_parent_offset(node, nominal), layout, advance)


# ─── Layout and placement ────────────────────────────────────────────────────


def _anchor_matched(node, component: Component, anchor: Optional[Component], ctx: TraversalContext) -> bool:
    if node.parent is None:
        return True
    key = (anchor or component).local_id
    return key in ctx.state(node.parent).matched


def _with_parent_offset(node, position: Point) -> Point:
    ox, oy = node.offset_from_parent
    return (position[0] + ox, position[1] + oy)


def _cell_layout(node, values: Sequence[object]) -> Tuple[List[MappedRegion], Point]:
    """One 1x1 region per value along the node's ordering axis."""
    layout = []
    for i, value in enumerate(values):
        pos = (i, 0) if node.order_horizontally else (0, i)
        layout.append(_region_for(node.sheet_name, pos, value))
    n = len(layout)
    return layout, ((n, 0) if node.order_horizontally else (0, n))


def _place(node, ctx: TraversalContext, nominal: Point, layout: List[MappedRegion], advance: Point) -> Placement:
    """Correct the position of *layout*, record it and count one application."""
    state = ctx.state(node)
    footprint = [Extents.from_region(r) for r in layout]
    x, y = ctx.tracker.correct_position(node, nominal, state.applications, footprint)
    placed = [r.offset_by(x, y) for r in layout]
    if placed:
        ctx.tracker.record_region(node, state.applications, False, placed)
    state.applications += 1
    state.mapped_elements += 1
    return placed, (x + advance[0], y + advance[1])


def is_numeric_value(value: object) -> bool:
    if isinstance(value, (bool, np.bool_)):
        return False
    return isinstance(value, (int, float, np.integer, np.floating))


def format_value(value: object) -> str:
    if isinstance(value, InstanceState):
        realized = "realized" if value.is_realized else "not realized"
        return f"{value.instance_type.name} ({realized})"
    if isinstance(value, Enum):
        return value.name or str(value)
    return str(value)


def _region_for(sheet_name: str, position: Point, value: object) -> MappedRegion:
    if is_numeric_value(value):
        return MappedRegion.map_one_number(sheet_name, position, float(value))
    return MappedRegion.map_one_string(sheet_name, position, format_value(value))


def _entity_info(entity: object) -> str:
    name = getattr(entity, "name", "")
    return f"{{{getattr(entity, 'local_id', '?')}}}{name}"
