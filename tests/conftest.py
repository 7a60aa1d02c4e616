"""
Shared test fixtures for the mapping engine tests.
"""
import sys
from pathlib import Path

import pytest

# Add src/ to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from sheet_mapping.contracts import MappingSubject
from sheet_mapping.entities import (
    Category, Component, Instance, InstanceType, Parameter, TablePointer, ValueTable,
)
from sheet_mapping.rule_node import RuleNode


SHEET = "Sheet1"


@pytest.fixture
def example_graph():
    """C1 (slot Root) contains C2 (slot Child) which holds P1 = 42."""
    c1 = Component("C1", slot="Root")
    c2 = Component("X", slot="Child")
    c1.add_child(c2)
    p1 = c2.add_parameter(Parameter(name="P1", value=42.0))
    return c1, c2, p1


@pytest.fixture
def example_rule():
    """R1 (component, slot Root, vertical) with a parameter child R2."""
    r1 = RuleNode(
        name="R1",
        sheet_name=SHEET,
        properties={"name": str},
        filters=[("current_slot", "Root")],
        order_horizontally=False,
        offset_between_applications=(0, 1),
    )
    RuleNode(
        name="R2",
        sheet_name=SHEET,
        subject=MappingSubject.PARAMETER,
        properties={"value_current": float},
        parent=r1,
    )
    return r1


@pytest.fixture
def building():
    """Building with three rooms, each holding an area and a height."""
    root = Component("Building", slot="Root")
    for i, area in enumerate([24.5, 18.0, 31.25]):
        room = Component(f"Room {i + 1}", slot="Room")
        room.add_parameter(Parameter(name="Area", value=area, unit="m2", category=Category.GEOMETRY))
        room.add_parameter(Parameter(name="Height", value=2.8, unit="m"))
        root.add_child(room, extension=str(i + 1))
    return root


@pytest.fixture
def room_rule():
    """Rooms written one per row, first parameter (name, value) next to each."""
    rooms = RuleNode(
        name="Rooms",
        sheet_name=SHEET,
        properties={"name": str},
        filters=[("current_slot", "Room")],
        offset_between_applications=(0, 1),
    )
    RuleNode(
        name="Values",
        sheet_name=SHEET,
        subject=MappingSubject.PARAMETER,
        properties={"name": str, "value_current": float},
        parent=rooms,
    )
    return rooms


@pytest.fixture
def cyclic_pair():
    """A and B referencing each other, no containment."""
    a = Component("A", slot="Node")
    b = Component("B", slot="Node")
    a.add_reference(b, "Next")
    b.add_reference(a, "Next")
    return a, b


@pytest.fixture
def load_table():
    return ValueTable("Loads", [[1.5, 2.0, 2.5], [3.0, 3.5, 4.0]])


@pytest.fixture
def table_parameter(load_table):
    """Component holding one parameter that points at row 0, column 1."""
    comp = Component("Pump", slot="Root")
    param = comp.add_parameter(Parameter(name="Load", value_pointer=TablePointer(load_table, 0, 1)))
    return comp, param


@pytest.fixture
def wall():
    """Surface component with a 4 x 3 rectangle in the XY plane."""
    comp = Component("Wall", slot="Wall", instance_type=InstanceType.GEOMETRIC_SURFACE)
    comp.add_instance(Instance(
        name="south face",
        instance_type=InstanceType.GEOMETRIC_SURFACE,
        path=[(0.0, 0.0, 0.0), (4.0, 0.0, 0.0), (4.0, 3.0, 0.0), (0.0, 3.0, 0.0)],
    ))
    return comp
