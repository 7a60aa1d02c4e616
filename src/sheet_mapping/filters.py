"""Property lookup, filter matching and value extraction over entities.

Every entity kind registers a capability table mapping a property name to a
typed getter.  Rules refer to properties by name only, so filters and
extraction work the same way for components, parameters and instances.
Lookups resolve through the class hierarchy, so subclasses inherit the
accessors of their bases and may override them.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Flag
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from sheet_mapping.entities import (
    Category,
    Component,
    Instance,
    InstanceState,
    InstanceStateFilter,
    InstanceType,
    Parameter,
    Propagation,
    Slot,
)

logger = logging.getLogger(__name__)

CURRENT_SLOT = "current_slot"
INSTANCE_STATE = "instance_state"
VALUE_CURRENT = "value_current"
PARAMETER_VALUES_TEMPORARY = "parameter_values_temporary"
PARAMETER_VALUES_PERSISTENT = "parameter_values_persistent"
PARAMETER_VALUE_PROPERTIES = (PARAMETER_VALUES_TEMPORARY, PARAMETER_VALUES_PERSISTENT)

FilterPair = Tuple[str, object]
CallStack = Sequence[Tuple[Component, Slot]]


@dataclass(frozen=True)
class PropertyAccessor:
    name: str
    value_type: type
    getter: Callable[[object], object]


_REGISTRY: Dict[type, Dict[str, PropertyAccessor]] = {}
_RESOLVED: Dict[type, Dict[str, PropertyAccessor]] = {}


def register_accessor(kind: type, name: str, value_type: type, getter: Callable[[object], object]) -> None:
    """Expose *name* on entities of *kind* (and their subclasses)."""
    _REGISTRY.setdefault(kind, {})[name] = PropertyAccessor(name, value_type, getter)
    _RESOLVED.clear()


def accessors_for(kind: type) -> Dict[str, PropertyAccessor]:
    """The merged capability table for *kind*, built once and cached."""
    table = _RESOLVED.get(kind)
    if table is None:
        table = {}
        for base in reversed(kind.__mro__):
            table.update(_REGISTRY.get(base, {}))
        _RESOLVED[kind] = table
    return table


def get_accessor(entity: object, name: str) -> Optional[PropertyAccessor]:
    return accessors_for(type(entity)).get(name)


def _own_slot_text(component: Component) -> str:
    container = component.parent_container
    if container is None:
        return component.current_slot.base
    return str(container.slot)


for _name, _type, _getter in (
    ("name", str, lambda c: c.name),
    ("description", str, lambda c: c.description),
    ("local_id", int, lambda c: c.local_id),
    (CURRENT_SLOT, str, _own_slot_text),
    ("category", Category, lambda c: c.category),
    ("instance_type", InstanceType, lambda c: c.instance_type),
    (INSTANCE_STATE, InstanceState, lambda c: c.instance_state),
    ("is_automatically_generated", bool, lambda c: c.is_automatically_generated),
    ("is_bound_in_network", bool, lambda c: c.is_bound_in_network),
    ("nr_parameters", int, lambda c: len(c.parameters)),
):
    register_accessor(Component, _name, _type, _getter)

for _name, _type, _getter in (
    ("name", str, lambda p: p.name),
    ("unit", str, lambda p: p.unit),
    ("description", str, lambda p: p.description),
    ("text_value", str, lambda p: p.text_value),
    ("local_id", int, lambda p: p.local_id),
    (VALUE_CURRENT, float, lambda p: p.value_current),
    ("category", Category, lambda p: p.category),
    ("propagation", Propagation, lambda p: p.propagation),
):
    register_accessor(Parameter, _name, _type, _getter)

for _name, _type, _getter in (
    ("name", str, lambda i: i.name),
    ("local_id", int, lambda i: i.local_id),
    ("instance_type", InstanceType, lambda i: i.instance_type),
    (INSTANCE_STATE, InstanceState, lambda i: i.instance_state),
    ("is_realized", bool, lambda i: i.is_realized),
    (PARAMETER_VALUES_TEMPORARY, dict, lambda i: i.parameter_values_temporary),
    (PARAMETER_VALUES_PERSISTENT, dict, lambda i: i.parameter_values_persistent),
):
    register_accessor(Instance, _name, _type, _getter)


# ─── Filtering ───────────────────────────────────────────────────────────────


def passes_filter(
    entity: object,
    filters: Sequence[FilterPair],
    call_stack: Optional[CallStack] = None,
) -> bool:
    """True iff *entity* satisfies every (property, pattern) pair.

    Lookup or comparison failures count as a non-match.
    """
    for name, pattern in filters:
        if not _property_matches(entity, name, pattern, call_stack):
            return False
    return True


def _property_matches(entity: object, name: str, pattern: object, call_stack: Optional[CallStack]) -> bool:
    accessor = get_accessor(entity, name)
    if accessor is None:
        logger.debug("Filter miss: %s has no property '%s'", type(entity).__name__, name)
        return False
    if name == CURRENT_SLOT and isinstance(entity, Component):
        return slot_matches(entity, pattern, call_stack)
    try:
        value = accessor.getter(entity)
    except Exception as exc:  # a broken getter never takes the run down
        logger.debug("Filter miss: reading '%s' failed: %s", name, exc)
        return False
    if value is None:
        return False

    if isinstance(pattern, InstanceStateFilter):
        return isinstance(value, InstanceState) and pattern.matches(value)
    if isinstance(value, str):
        return str(pattern) in value
    if isinstance(value, Flag) and type(value) is type(pattern):
        return (value & pattern) == pattern
    if isinstance(value, bool) or isinstance(pattern, bool):
        return type(value) is type(pattern) and value == pattern
    try:
        return bool(value == pattern)
    except Exception as exc:
        logger.debug("Filter miss: comparing '%s' failed: %s", name, exc)
        return False


def slot_matches(component: Component, pattern: object, call_stack: Optional[CallStack] = None) -> bool:
    """Two-part slot match against the containing edge or the edge walked in.

    Top-level components compare their own slot base.  Nested components
    compare the base (and extension, when the pattern has one) of the edge
    that contains them.  Failing that, the slot of the edge on top of the
    call stack is compared against the full pattern text.
    """
    text = str(pattern)
    wanted = Slot.parse(text)
    container = component.parent_container
    if container is None:
        if component.current_slot.base == wanted.base:
            return True
    elif container.slot.base == wanted.base and (
        not wanted.extension or container.slot.extension == wanted.extension
    ):
        return True
    if call_stack:
        _, edge_slot = call_stack[-1]
        return str(edge_slot) == text
    return False


# ─── Extraction ──────────────────────────────────────────────────────────────


def extract_named_values(entity: object, properties: Mapping[str, type]) -> List[Tuple[str, object]]:
    """Read the requested properties in order, skipping unreadable ones.

    A property is only returned when its declared type is the requested type.
    ``current_slot`` is always returned and resolves to the containing edge
    for nested components.
    """
    out: List[Tuple[str, object]] = []
    for name, wanted in properties.items():
        accessor = get_accessor(entity, name)
        if accessor is None:
            continue
        if name != CURRENT_SLOT and accessor.value_type is not wanted:
            continue
        try:
            value = accessor.getter(entity)
        except Exception as exc:
            logger.debug("Skipping '%s' on %s: %s", name, type(entity).__name__, exc)
            continue
        if value is None:
            continue
        out.append((name, value))
    return out


def extract_values(entity: object, properties: Mapping[str, type]) -> List[object]:
    return [value for _, value in extract_named_values(entity, properties)]
