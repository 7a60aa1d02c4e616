#!/usr/bin/env python3
"""
Map a small sample building graph onto sheet regions.

Builds a graph of rooms with area parameters, a wall with a surface
instance and a pair of rooms that reference each other, then runs a
two-level rule tree over it and prints every written region.

Usage:
    python scripts/run_mapping_demo.py
    python scripts/run_mapping_demo.py --output regions.json --trace
    python scripts/run_mapping_demo.py --vertical --max-elements 3 -v
"""
import sys
import json
import argparse
import logging
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from sheet_mapping import (
    Component, Instance, MappingSubject, MappingTool, MappingTrace,
    Parameter, RuleNode, TraversalStrategy, ValueTable,
)
from sheet_mapping.entities import InstanceType, TablePointer
from sheet_mapping.unmapping import UnmappingRule, table_from_region


def build_sample_graph():
    building = Component("Building", slot="Root")
    for i, area in enumerate([24.5, 18.0, 31.25]):
        room = Component(f"Room {i + 1}", slot="Room")
        room.add_parameter(Parameter(name="Area", value=area, unit="m2"))
        room.add_parameter(Parameter(name="Height", value=2.8, unit="m"))
        building.add_child(room, extension=str(i + 1))

    wall = Component("Wall", slot="Wall", instance_type=InstanceType.GEOMETRIC_SURFACE)
    wall.add_instance(Instance(
        name="south face",
        instance_type=InstanceType.GEOMETRIC_SURFACE,
        path=[(0.0, 0.0, 0.0), (4.0, 0.0, 0.0), (4.0, 3.0, 0.0), (0.0, 3.0, 0.0)],
    ))
    building.add_child(wall)

    rooms = building.sub_components[:2]
    rooms[0].add_reference(rooms[1], "Neighbour_01")
    rooms[1].add_reference(rooms[0], "Neighbour_01")

    loads = ValueTable("Loads", [[1.5, 2.0, 2.5], [3.0, 3.5, 4.0]])
    rooms[2].add_parameter(Parameter(name="Load", value_pointer=TablePointer(loads, 0, 1)))
    return building


def build_rules(vertical: bool, max_elements: int) -> RuleNode:
    root = RuleNode(
        name="Rooms",
        sheet_name="Overview",
        properties={"name": str},
        filters=[("current_slot", "Room")],
        order_horizontally=not vertical,
        offset_between_applications=(1, 0) if vertical else (0, 1),
        max_elements_to_map=max_elements,
        strategy=TraversalStrategy.SUBTREE_AND_REFERENCES,
    )
    RuleNode(
        name="Values",
        sheet_name="Overview",
        subject=MappingSubject.PARAMETER,
        properties={"name": str, "value_current": float, "unit": str},
        order_horizontally=not vertical,
        offset_from_parent=(0, 1) if vertical else (1, 0),
        max_elements_to_map=max_elements,
        parent=root,
    )
    return root


def main():
    parser = argparse.ArgumentParser(
        description="Map a sample component graph onto sheet regions.",
    )
    parser.add_argument(
        "--output", default=None,
        help="Write the regions as JSON to this path",
    )
    parser.add_argument(
        "--vertical", action="store_true",
        help="Write records as columns instead of rows",
    )
    parser.add_argument(
        "--max-elements", type=int, default=10,
        help="Element budget per rule node (default: 10)",
    )
    parser.add_argument(
        "--trace", action="store_true",
        help="Print the traversal trace",
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true",
        help="Enable verbose logging",
    )

    args = parser.parse_args()

    # Logging
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )

    building = build_sample_graph()
    rule = build_rules(args.vertical, args.max_elements)
    tool = MappingTool("Demo", rules=[rule])
    trace = MappingTrace() if args.trace else None

    regions = tool.map_to_input([(building, rule)], trace=trace)

    print(f"\nResult: {len(regions)} regions")
    for region in regions:
        col, row, width, height = region.rectangle
        print(f"  {region.sheet_name}!({col}, {row}) {width}x{height}: {region.payload}")

    if trace is not None:
        print("\nTrace:")
        print(trace.render())

    # Bind the first numeric region back into the first room's area
    numeric = [r for r in regions if r.is_numeric]
    if numeric:
        area = building.sub_components[0].parameters[0]
        unmapping = UnmappingRule.for_target("Area back", numeric[0], area)
        tool.add_unmapping_rule(unmapping)
        bound = tool.apply_unmappings({unmapping.name: table_from_region(numeric[0])}, [building])
        print(f"\nUnmapped {len(bound.get(unmapping.name, []))} parameter(s): "
              f"{area.name} = {area.value_current:g}")

    if args.output:
        with open(args.output, "w") as f:
            json.dump([r.to_dict() for r in regions], f, indent=2)
        print(f"\nRegions saved to {args.output}")

    print("\nDone.")


if __name__ == "__main__":
    main()
