"""Tests for mapped regions, traversal limits and the step trace."""

import json

import numpy as np
import pytest

from sheet_mapping.config import DEFAULT_TRAVERSAL_CONFIG, TraversalConfig, clamp
from sheet_mapping.contracts import MappedRegion, MappingSubject, TraversalStrategy, total_offset
from sheet_mapping.entities import Component, TablePointer, ValueTable
from sheet_mapping.trace import MappingTrace


class TestMappedRegion:

    def test_single_values(self):
        text = MappedRegion.map_one_string("S", (2, 3), "abc")
        number = MappedRegion.map_one_number("S", (2, 3), 4)
        assert text.rectangle == (2, 3, 1, 1)
        assert text.payload == "abc"
        assert not text.is_numeric
        assert number.payload == 4.0
        assert number.is_numeric

    def test_degenerate_size_clamped(self):
        region = MappedRegion("S", 0, 0, 0, -2, (("x",),))
        assert (region.width, region.height) == (1, 1)

    def test_map_numbers_from_array(self):
        region = MappedRegion.map_numbers("S", (1, 1), np.arange(6).reshape(2, 3))
        assert (region.width, region.height) == (3, 2)
        assert region.end_column == 3
        assert region.end_row == 2
        assert region.data[1] == (3.0, 4.0, 5.0)

    def test_map_numbers_rejects_non_2d(self):
        assert MappedRegion.map_numbers("S", (0, 0), [1.0, 2.0]) is None
        assert MappedRegion.map_numbers("S", (0, 0), np.zeros((0, 3))) is None

    def test_map_strings_rejects_ragged(self):
        assert MappedRegion.map_strings("S", (0, 0), [["a", "b"], ["c"]]) is None
        assert MappedRegion.map_strings("S", (0, 0), []) is None

    def test_intersects_only_on_same_sheet(self):
        a = MappedRegion.map_strings("S", (0, 0), [["a", "b"]])
        assert a.intersects(MappedRegion.map_one_string("S", (1, 0), "x"))
        assert not a.intersects(MappedRegion.map_one_string("T", (1, 0), "x"))
        assert not a.intersects(MappedRegion.map_one_string("S", (2, 0), "x"))

    def test_cells_and_offset(self):
        region = MappedRegion.map_strings("S", (0, 0), [["a", "b"]]).offset_by(1, 2)
        assert list(region.cells()) == [(1, 2, "a"), (2, 2, "b")]

    def test_to_dict_is_json_ready(self):
        region = MappedRegion.map_one_number("S", (0, 1), 2.5)
        assert json.loads(json.dumps(region.to_dict()))["data"] == [[2.5]]

    def test_total_offset(self):
        regions = [
            MappedRegion.map_one_string("S", (0, 0), "a"),
            MappedRegion.map_strings("S", (2, 1), [["b"], ["c"]]),
        ]
        assert total_offset(regions) == (3, 3)
        assert total_offset([]) == (0, 0)


class TestEnums:

    def test_geometric_subjects(self):
        assert MappingSubject.GEOMETRY_AREA.is_geometric
        assert not MappingSubject.PARAMETER.is_geometric

    def test_strategy_edges(self):
        assert TraversalStrategy.SUBTREE_ONLY.follows_subtree
        assert not TraversalStrategy.SUBTREE_ONLY.follows_references
        assert not TraversalStrategy.REFERENCES_ONLY.follows_subtree
        assert TraversalStrategy.SUBTREE_AND_REFERENCES.follows_references


class TestEntities:

    def test_child_has_single_parent(self):
        a, b, child = Component("a"), Component("b"), Component("c")
        a.add_child(child)
        with pytest.raises(ValueError):
            b.add_child(child)
        assert child.parent is a

    def test_retargeting_reference_updates_back_links(self):
        src, t1, t2 = Component("s"), Component("t1"), Component("t2")
        entry = src.add_reference(t1, "Link")
        src.set_reference_target(entry, t2)
        assert t1.referenced_by == []
        assert t2.referenced_by == [src]

    def test_table_pointer_validity(self):
        table = ValueTable("t", [[1.0, 2.0]])
        assert TablePointer(table, 0, 1).value == 2.0
        assert not TablePointer(table, 1, 0).is_valid

    def test_table_needs_2d_data(self):
        with pytest.raises(ValueError):
            ValueTable("t", np.zeros((2, 2, 2)))


class TestTraversalConfig:

    def test_defaults_valid(self):
        assert DEFAULT_TRAVERSAL_CONFIG.validate() is DEFAULT_TRAVERSAL_CONFIG

    def test_invalid_caps(self):
        with pytest.raises(ValueError):
            TraversalConfig(max_levels_cap=0).validate()
        with pytest.raises(ValueError):
            TraversalConfig(max_visits_per_component=0).validate()

    def test_clamp(self):
        assert clamp(5, 1, 3) == 3
        assert clamp(-5, 1, 3) == 1
        assert DEFAULT_TRAVERSAL_CONFIG.clamp_levels(0) == 1


class TestMappingTrace:

    def test_steps_recorded_in_order(self):
        trace = MappingTrace()
        trace.add_step(0, "root", "{1}a", "evaluate")
        trace.add_step(1, "child", "{2}b", "parameter p")
        assert [s.seq for s in trace.steps] == [1, 2]
        assert trace.steps[1].node_name == "child"
        assert trace.render().splitlines()[1] == "  [child] {2}b: parameter p"

    def test_jsonl(self):
        trace = MappingTrace()
        trace.add_step(0, "root", "{1}a", "evaluate")
        (line,) = trace.to_jsonl().splitlines()
        assert json.loads(line) == {
            "seq": 1, "depth": 0, "node_name": "root", "entity_info": "{1}a", "message": "evaluate",
        }
