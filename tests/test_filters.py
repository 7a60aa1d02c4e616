"""Tests for property lookup, filtering and extraction."""

from sheet_mapping.entities import (
    Category, Component, Instance, InstanceStateFilter, InstanceType, Parameter, Propagation, Slot,
)
from sheet_mapping.filters import (
    CURRENT_SLOT,
    accessors_for,
    extract_named_values,
    extract_values,
    get_accessor,
    passes_filter,
    register_accessor,
    slot_matches,
)


class TestPassesFilter:
    """String, flag, bool and equality matching."""

    def test_substring_match(self):
        """A name filter matches iff the name contains the pattern."""
        assert passes_filter(Component("Main Pump 2"), [("name", "Pump")])
        assert not passes_filter(Component("Valve"), [("name", "Pump")])

    def test_empty_filters_match_everything(self):
        assert passes_filter(Component("anything"), [])

    def test_all_pairs_must_match(self):
        comp = Component("Pump", description="primary")
        assert passes_filter(comp, [("name", "Pump"), ("description", "prim")])
        assert not passes_filter(comp, [("name", "Pump"), ("description", "secondary")])

    def test_flag_requires_all_bits(self):
        """A flag filter matches iff every bit of the pattern is set."""
        p = Parameter(name="q", category=Category.HEATING | Category.COSTS)
        assert passes_filter(p, [("category", Category.HEATING)])
        assert passes_filter(p, [("category", Category.HEATING | Category.COSTS)])
        assert not passes_filter(p, [("category", Category.WATER)])

    def test_component_category_is_union_of_parameters(self):
        comp = Component("Room")
        comp.add_parameter(Parameter(name="a", category=Category.LIGHT))
        comp.add_parameter(Parameter(name="b", category=Category.AIR))
        assert passes_filter(comp, [("category", Category.LIGHT | Category.AIR)])

    def test_missing_property_fails_closed(self):
        assert not passes_filter(Component("Pump"), [("no_such_property", "x")])

    def test_type_mismatch_fails_closed(self):
        """A string pattern against a float property is a non-match, not an error."""
        assert not passes_filter(Parameter(name="p", value=1.0), [("value_current", "1.0")])

    def test_bool_only_equals_bool(self):
        inst = Instance(name="i", is_realized=True)
        assert passes_filter(inst, [("is_realized", True)])
        assert not passes_filter(inst, [("is_realized", 1)])
        assert not passes_filter(inst, [("is_realized", False)])

    def test_network_binding_flag(self):
        assert passes_filter(Component("Node"), [("is_bound_in_network", False)])
        assert not passes_filter(Component("Node"), [("is_bound_in_network", True)])
        bound = Component("Node", is_bound_in_network=True)
        assert passes_filter(bound, [("is_bound_in_network", True)])
        assert not passes_filter(bound, [("is_bound_in_network", False)])

    def test_non_string_pattern_on_text_uses_its_text(self):
        """A number pattern against a text property matches on its string form."""
        assert passes_filter(Component("Room 1"), [("name", 1)])
        assert not passes_filter(Component("Room 2"), [("name", 1)])

    def test_enum_equality(self):
        p = Parameter(name="p", propagation=Propagation.CALCULATION_WRITE)
        assert passes_filter(p, [("propagation", Propagation.CALCULATION_WRITE)])
        assert not passes_filter(p, [("propagation", Propagation.INPUT)])

    def test_instance_state_filter(self):
        comp = Component("Wall", instance_type=InstanceType.GEOMETRIC_SURFACE, is_realized=True)
        hit = InstanceStateFilter(InstanceType.GEOMETRIC_SURFACE, True)
        miss = InstanceStateFilter(InstanceType.GEOMETRIC_SURFACE, False)
        assert passes_filter(comp, [("instance_state", hit)])
        assert not passes_filter(comp, [("instance_state", miss)])

    def test_raising_getter_fails_closed(self):
        class Broken(Component):
            pass

        def explode(_):
            raise RuntimeError("boom")

        register_accessor(Broken, "fragile", str, explode)
        assert not passes_filter(Broken("b"), [("fragile", "x")])


class TestSlotMatching:
    """Two-part slot match against containing edge or call stack."""

    def test_top_level_uses_own_slot(self):
        assert passes_filter(Component("C1", slot="Root"), [(CURRENT_SLOT, "Root")])
        assert not passes_filter(Component("C1", slot="Root"), [(CURRENT_SLOT, "Child")])

    def test_nested_uses_containing_edge(self):
        parent = Component("P", slot="Root")
        child = Component("C", slot="Room")
        parent.add_child(child, extension="3")
        assert slot_matches(child, "Room")
        assert slot_matches(child, "Room_03")
        assert not slot_matches(child, "Room_04")

    def test_call_stack_edge_used_as_fallback(self):
        """A referenced component matches the slot of the edge it was reached through."""
        source = Component("S", slot="Root")
        target = Component("T", slot="Pump")
        entry = source.add_reference(target, "Supply_01")
        assert not slot_matches(target, "Supply_01")
        assert slot_matches(target, "Supply_01", [(source, entry.slot)])

    def test_slot_parse_round_trip(self):
        slot = Slot.parse("Room_02")
        assert slot == Slot("Room", "2")
        assert str(slot) == "Room_02"
        assert Slot.parse("Room") == Slot("Room")


class TestExtraction:
    """Typed property extraction."""

    def test_values_in_requested_order(self):
        p = Parameter(name="Area", value=12.5, unit="m2")
        assert extract_values(p, {"unit": str, "name": str, "value_current": float}) == ["m2", "Area", 12.5]

    def test_type_must_match_declared_type(self):
        p = Parameter(name="Area", value=12.5)
        assert extract_values(p, {"value_current": str}) == []

    def test_unknown_property_skipped(self):
        assert extract_values(Component("C"), {"nope": str, "name": str}) == ["C"]

    def test_current_slot_resolves_to_container_edge(self):
        parent = Component("P", slot="Root")
        child = Component("C", slot="Room")
        parent.add_child(child, extension="1")
        assert extract_named_values(child, {CURRENT_SLOT: str}) == [(CURRENT_SLOT, "Room_01")]

    def test_accessors_inherited_by_subclasses(self):
        class Special(Component):
            pass

        assert set(accessors_for(Component)) <= set(accessors_for(Special))
        assert get_accessor(Special("s"), "name") is not None
