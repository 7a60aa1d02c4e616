"""Tests for the visit ledger."""

from sheet_mapping.contracts import MappingSubject
from sheet_mapping.entities import Component, Instance, Parameter
from sheet_mapping.ledger import VisitLedger, collect_visitable_elements, max_references_to_chain


class TestVisitLedger:

    def test_counts_per_component_and_node(self):
        ledger = VisitLedger()
        comp = Component("c")
        a, b = object(), object()
        ledger.record_visit(comp, a)
        ledger.record_visit(comp, a)
        ledger.record_visit(comp, b)
        assert ledger.visit_count(comp, a) == 2
        assert ledger.visit_count(comp, b) == 1
        assert ledger.total_visits == 3

    def test_unvisited_is_zero(self):
        assert VisitLedger().visit_count(Component("c"), object()) == 0

    def test_reset_contribution_skips_excluded(self):
        ledger = VisitLedger()
        node = object()
        kept, dropped = Component("kept"), Component("dropped")
        ledger.record_visit(kept, node)
        ledger.record_visit(dropped, node)
        ledger.record_visit(dropped, node)
        changed = ledger.reset_contribution(
            {kept.local_id: 1, dropped.local_id: 2}, {kept.local_id}, node,
        )
        assert changed == 1
        assert ledger.visit_count(kept, node) == 1
        assert ledger.visit_count(dropped, node) == 0

    def test_reset_contribution_respects_lower_cap(self):
        ledger = VisitLedger()
        node = object()
        comp = Component("c")
        ledger.record_visit(comp, node)
        ledger.reset_contribution({comp.local_id: 5}, set(), node, lower_cap=1)
        assert ledger.visit_count(comp, node) == 1

    def test_leaf_claims_are_once_per_run(self):
        ledger = VisitLedger()
        p, inst = Parameter(name="p"), Instance(name="i")
        assert ledger.claim_parameter(p)
        assert not ledger.claim_parameter(p)
        assert ledger.claim_instance(inst)
        assert not ledger.claim_instance(inst)

    def test_geometry_claims_per_subject(self):
        ledger = VisitLedger()
        inst = Instance(name="i")
        assert ledger.claim_geometry(inst, MappingSubject.GEOMETRY_AREA)
        assert ledger.claim_geometry(inst, MappingSubject.GEOMETRIC_INCLINE)
        assert not ledger.claim_geometry(inst, MappingSubject.GEOMETRY_AREA)


class TestReferenceChains:

    def test_max_references_walks_back(self):
        hub = Component("hub")
        sources = [Component(f"s{i}") for i in range(3)]
        for s in sources:
            s.add_reference(hub, "Uses")
        leaf = Component("leaf")
        hub.add_reference(leaf, "Uses")
        assert max_references_to_chain(leaf, 0) == 1
        assert max_references_to_chain(leaf, 1) == 3

    def test_max_references_terminates_on_cycle(self, cyclic_pair):
        a, _ = cyclic_pair
        assert max_references_to_chain(a, 10) == 1

    def test_collect_visitable_elements_is_cycle_safe(self, cyclic_pair):
        a, b = cyclic_pair
        a.add_parameter(Parameter(name="pa"))
        b.add_instance(Instance(name="ib"))
        elements = collect_visitable_elements(a)
        assert elements.components == [a, b]
        assert [p.name for p in elements.parameters] == ["pa"]
        assert [i.name for i in elements.instances] == ["ib"]
