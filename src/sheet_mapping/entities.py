"""
Entity graph consumed by the mapping engine.

Components own child components through named subtree edges and point at
other components through named reference edges.  References may form cycles
and may leave the containment subtree.  Parameters, value tables and
instances hang off components and are what most rules end up extracting.
"""
from __future__ import annotations

import itertools
from dataclasses import dataclass, field
from enum import Enum, Flag, auto
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

Vec3 = Tuple[float, float, float]

SLOT_DELIMITER = "_0"
UNDEFINED_SLOT = "Undefined"

_ids = itertools.count(1)


def _next_id() -> int:
    return next(_ids)


class Category(Flag):
    """Discipline flags; a component carries the union of its parameters' flags."""
    NONE = 0
    GEOMETRY = auto()
    COSTS = auto()
    REGULATIONS = auto()
    HEATING = auto()
    COOLING = auto()
    HUMIDITY = auto()
    AIR = auto()
    LIGHT = auto()
    WATER = auto()
    ELECTRICITY = auto()
    FIRE = auto()
    COMMUNICATION = auto()


class InstanceType(Enum):
    NONE = "none"
    ATTRIBUTES = "attributes"
    GEOMETRIC_SURFACE = "geometric_surface"
    GEOMETRIC_VOLUME = "geometric_volume"
    NETWORK_NODE = "network_node"
    NETWORK_EDGE = "network_edge"


class Propagation(Enum):
    INPUT = "input"
    CALCULATION_WRITE = "calculation_write"
    MIXED = "mixed"
    NO_PROPAGATION = "no_propagation"


@dataclass(frozen=True)
class Slot:
    """Edge label: a base name plus an optional extension (``Base_0Ext``)."""
    base: str
    extension: str = ""

    def __str__(self) -> str:
        if self.extension:
            return f"{self.base}{SLOT_DELIMITER}{self.extension}"
        return self.base

    @classmethod
    def parse(cls, text: str) -> "Slot":
        base, sep, extension = str(text).partition(SLOT_DELIMITER)
        return cls(base, extension if sep else "")


@dataclass(frozen=True)
class InstanceState:
    instance_type: InstanceType
    is_realized: bool


@dataclass(frozen=True)
class InstanceStateFilter:
    """Filter pattern matching an :class:`InstanceState` exactly."""
    instance_type: InstanceType
    is_realized: bool

    def matches(self, state: InstanceState) -> bool:
        return state.instance_type == self.instance_type and state.is_realized == self.is_realized


class ValueTable:
    """Named 2D numeric value store that parameters can point into."""

    def __init__(self, name: str, data, unit_columns: str = "", unit_rows: str = ""):
        arr = np.asarray(data, dtype=float)
        if arr.ndim == 1:
            arr = arr.reshape(1, -1)
        if arr.ndim != 2:
            raise ValueError(f"ValueTable '{name}' needs 2D data, got shape {arr.shape}")
        self.name = name
        self.data = arr
        self.unit_columns = unit_columns
        self.unit_rows = unit_rows

    @property
    def shape(self) -> Tuple[int, int]:
        return (int(self.data.shape[0]), int(self.data.shape[1]))

    def contains(self, row: int, column: int) -> bool:
        rows, cols = self.shape
        return 0 <= row < rows and 0 <= column < cols

    def value_at(self, row: int, column: int) -> float:
        return float(self.data[row, column])

    def row(self, index: int) -> np.ndarray:
        return self.data[index:index + 1, :].copy()

    def column(self, index: int) -> np.ndarray:
        return self.data[:, index:index + 1].copy()

    def __repr__(self) -> str:
        return f"ValueTable({self.name!r}, shape={self.shape})"


@dataclass(frozen=True)
class TablePointer:
    """Zero-based (row, column) address inside a :class:`ValueTable`."""
    table: ValueTable
    row: int
    column: int

    @property
    def is_valid(self) -> bool:
        return self.table.contains(self.row, self.column)

    @property
    def value(self) -> float:
        return self.table.value_at(self.row, self.column)


@dataclass(eq=False)
class Parameter:
    """Named value on a component; may read through a table pointer."""
    name: str
    value: float = 0.0
    unit: str = ""
    description: str = ""
    text_value: str = ""
    category: Category = Category.NONE
    propagation: Propagation = Propagation.INPUT
    value_pointer: Optional[TablePointer] = None
    referenced_parameter: Optional["Parameter"] = None
    local_id: int = field(default_factory=_next_id)
    owner: Optional["Component"] = field(default=None, repr=False)

    @property
    def value_current(self) -> float:
        if self.referenced_parameter is not None:
            return self.referenced_parameter.value_current
        if self.value_pointer is not None and self.value_pointer.is_valid:
            return self.value_pointer.value
        return float(self.value)

    @property
    def value_table(self) -> Optional[ValueTable]:
        if self.value_pointer is None:
            return None
        return self.value_pointer.table


@dataclass(eq=False)
class Instance:
    """Typed placement of a component, optionally carrying a geometric path."""
    name: str = ""
    instance_type: InstanceType = InstanceType.ATTRIBUTES
    is_realized: bool = True
    path: List[Vec3] = field(default_factory=list)
    parameter_values_temporary: Dict[str, float] = field(default_factory=dict)
    parameter_values_persistent: Dict[str, float] = field(default_factory=dict)
    local_id: int = field(default_factory=_next_id)

    @property
    def instance_state(self) -> InstanceState:
        return InstanceState(self.instance_type, self.is_realized)


@dataclass(eq=False)
class ChildEntry:
    """Subtree edge: *owner* contains *component* under *slot*."""
    slot: Slot
    component: Optional["Component"]
    owner: "Component" = field(repr=False)


@dataclass(eq=False)
class ReferenceEntry:
    """Reference edge; a ``None`` target is an unresolved reference."""
    slot: Slot
    target: Optional["Component"]
    owner: "Component" = field(repr=False)


class Component:
    """A node of the entity graph."""

    def __init__(
        self,
        name: str,
        slot: str = UNDEFINED_SLOT,
        description: str = "",
        instance_type: InstanceType = InstanceType.ATTRIBUTES,
        is_realized: bool = False,
        is_automatically_generated: bool = False,
        is_bound_in_network: bool = False,
    ):
        self.name = name
        self.description = description
        self.current_slot = Slot(slot)
        self.instance_type = instance_type
        self.is_realized = is_realized
        self.is_automatically_generated = is_automatically_generated
        self.is_bound_in_network = is_bound_in_network
        self.local_id = _next_id()
        self.children: List[ChildEntry] = []
        self.references: List[ReferenceEntry] = []
        self.parameters: List[Parameter] = []
        self.instances: List[Instance] = []
        self.parent_container: Optional[ChildEntry] = None
        self.referenced_by: List["Component"] = []

    # ─── Edges ───────────────────────────────────────────────────────────────

    def add_child(self, component: "Component", extension: str = "") -> ChildEntry:
        if component.parent_container is not None:
            raise ValueError(f"Component '{component.name}' already has a parent")
        entry = ChildEntry(Slot(component.current_slot.base, extension), component, self)
        component.parent_container = entry
        self.children.append(entry)
        return entry

    def add_empty_child_slot(self, slot: Slot) -> ChildEntry:
        entry = ChildEntry(slot, None, self)
        self.children.append(entry)
        return entry

    def add_reference(self, target: Optional["Component"], slot) -> ReferenceEntry:
        if not isinstance(slot, Slot):
            slot = Slot.parse(slot)
        entry = ReferenceEntry(slot, None, self)
        self.references.append(entry)
        self.set_reference_target(entry, target)
        return entry

    def set_reference_target(self, entry: ReferenceEntry, target: Optional["Component"]) -> None:
        if entry.target is not None:
            entry.target.referenced_by.remove(self)
        entry.target = target
        if target is not None:
            target.referenced_by.append(self)

    def add_parameter(self, parameter: Parameter) -> Parameter:
        parameter.owner = self
        self.parameters.append(parameter)
        return parameter

    def add_instance(self, instance: Instance) -> Instance:
        self.instances.append(instance)
        return instance

    # ─── Derived properties ──────────────────────────────────────────────────

    @property
    def parent(self) -> Optional["Component"]:
        if self.parent_container is None:
            return None
        return self.parent_container.owner

    @property
    def sub_components(self) -> List["Component"]:
        return [entry.component for entry in self.children if entry.component is not None]

    @property
    def referenced_components(self) -> List["Component"]:
        return [entry.target for entry in self.references if entry.target is not None]

    @property
    def category(self) -> Category:
        result = Category.NONE
        for p in self.parameters:
            result |= p.category
        return result

    @property
    def instance_state(self) -> InstanceState:
        return InstanceState(self.instance_type, self.is_realized)

    def walk(self) -> List["Component"]:
        """This component and every subtree descendant, depth first."""
        out = [self]
        for child in self.sub_components:
            out.extend(child.walk())
        return out

    def __repr__(self) -> str:
        return f"Component({self.name!r}, id={self.local_id}, slot={str(self.current_slot)!r})"


def build_parameters(component: Component, values: Sequence[Tuple[str, float]], unit: str = "") -> List[Parameter]:
    """Attach plain numeric parameters to *component*."""
    return [component.add_parameter(Parameter(name=n, value=v, unit=unit)) for n, v in values]
