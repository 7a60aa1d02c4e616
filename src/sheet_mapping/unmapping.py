"""
Unmapping rules: bind sheet values back into parameters.

A rule either names one target parameter or discovers targets with a pair
of filters (one over components, one over their parameters).  Each target
gets a table pointer at the rule's 1-based cell pointer.
"""
import logging
from typing import Iterable, List, Optional, Sequence, Tuple

import numpy as np

from sheet_mapping.contracts import MappedRegion, Point
from sheet_mapping.entities import UNDEFINED_SLOT, Component, Parameter, TablePointer, ValueTable
from sheet_mapping.filters import CURRENT_SLOT, FilterPair, passes_filter

logger = logging.getLogger(__name__)

DEFAULT_RESULT_SHEET = "Results"
DEFAULT_UNMAPPING_NAME = "New Unmapping"


class UnmappingRule:
    """Reverse binding from a sheet region into parameter value pointers."""

    def __init__(
        self,
        name: str,
        source_region: MappedRegion,
        unmap_by_filter: bool,
        component_filters: Sequence[FilterPair] = (),
        parameter_filters: Sequence[FilterPair] = (),
        target_parameter: Optional[Parameter] = None,
        cell_pointer: Point = (1, 1),
        data_type: type = float,
    ):
        if cell_pointer[0] < 1 or cell_pointer[1] < 1:
            raise ValueError(f"cell_pointer is 1-based, got {cell_pointer}")
        self.name = name
        self.source_region = source_region
        self.unmap_by_filter = unmap_by_filter
        self.component_filters: List[FilterPair] = list(component_filters)
        self.parameter_filters: List[FilterPair] = list(parameter_filters)
        self.target_parameter = target_parameter
        self.cell_pointer = (int(cell_pointer[0]), int(cell_pointer[1]))
        self.data_type = data_type
        self.tool = None

    @classmethod
    def by_filter(
        cls,
        name: str,
        source_region: MappedRegion,
        component_filters: Sequence[FilterPair],
        parameter_filters: Sequence[FilterPair],
        cell_pointer: Point = (1, 1),
    ) -> "UnmappingRule":
        return cls(name, source_region, True, component_filters, parameter_filters, cell_pointer=cell_pointer)

    @classmethod
    def for_target(
        cls,
        name: str,
        source_region: MappedRegion,
        target: Parameter,
        cell_pointer: Point = (1, 1),
    ) -> "UnmappingRule":
        return cls(name, source_region, False, target_parameter=target, cell_pointer=cell_pointer)

    @property
    def sheet_name(self) -> str:
        return self.source_region.sheet_name

    # ─── Targets ─────────────────────────────────────────────────────────────

    def unmapping_targets(self, components: Optional[Iterable[Component]]) -> List[Parameter]:
        """Parameters this rule binds when applied to *components*."""
        if components is None:
            raise ValueError("components must not be None")
        if not self.unmap_by_filter:
            return [self.target_parameter] if self.target_parameter is not None else []
        found: List[Parameter] = []
        for component in components:
            self._collect(component, found)
        return found

    def _collect(self, component: Component, found: List[Parameter]) -> None:
        if passes_filter(component, self.component_filters):
            found.extend(p for p in component.parameters if passes_filter(p, self.parameter_filters))
        for child in component.sub_components:
            self._collect(child, found)

    # ─── Binding ─────────────────────────────────────────────────────────────

    def table_pointer(self, table: ValueTable) -> TablePointer:
        x, y = self.cell_pointer
        return TablePointer(table, y - 1, x - 1)

    def apply_unmapping(self, table: ValueTable, components: Optional[Iterable[Component]]) -> List[Parameter]:
        """Point every target at the cell pointer in *table*; returns the bound targets."""
        if table is None:
            return []
        pointer = self.table_pointer(table)
        if not pointer.is_valid:
            logger.warning(
                "Unmapping '%s' skipped: pointer row=%d col=%d outside table '%s' %s",
                self.name, pointer.row, pointer.column, table.name, table.shape,
            )
            return []
        targets = self.unmapping_targets(components)
        for parameter in targets:
            parameter.value_pointer = pointer
        logger.info("Unmapping '%s' bound %d parameter(s) to '%s'", self.name, len(targets), table.name)
        return targets

    # ─── Copies and factories ────────────────────────────────────────────────

    def copy(self, name_format: str = "{0} (Copy)") -> "UnmappingRule":
        return UnmappingRule(
            name_format.format(self.name),
            self.source_region,
            self.unmap_by_filter,
            list(self.component_filters),
            list(self.parameter_filters),
            None if self.unmap_by_filter else self.target_parameter,
            self.cell_pointer,
            self.data_type,
        )

    def __str__(self) -> str:
        col, row, width, height = self.source_region.rectangle
        mode = "FILTER" if self.unmap_by_filter else "TARGET"
        return f"{self.name}[{self.sheet_name} ({col}, {row}, {width}, {height})] {mode}"


def _default_region() -> MappedRegion:
    return MappedRegion(DEFAULT_RESULT_SHEET, 1, 1, 10, 2, tuple(("",) * 10 for _ in range(2)))


def default_filter_rule() -> UnmappingRule:
    return UnmappingRule.by_filter(
        DEFAULT_UNMAPPING_NAME,
        _default_region(),
        [(CURRENT_SLOT, UNDEFINED_SLOT)],
        [("name", "pattern in name"), ("unit", "pattern in unit")],
    )


def default_target_rule(parameter: Parameter) -> UnmappingRule:
    return UnmappingRule.for_target(DEFAULT_UNMAPPING_NAME, _default_region(), parameter)


def table_from_region(region: MappedRegion, name: Optional[str] = None) -> ValueTable:
    """Numeric region as a value table, ready to be bound by unmapping."""
    if not region.is_numeric:
        raise ValueError(f"Region on '{region.sheet_name}' holds text, not numbers")
    return ValueTable(name or region.sheet_name, np.asarray(region.data, dtype=float))


def table_from_regions(regions: Sequence[MappedRegion], name: str) -> Tuple[ValueTable, Point]:
    """Dense table covering numeric *regions*; text cells and gaps become NaN.

    Returns the table and the (column, row) of its top-left cell on the sheet.
    """
    numeric = [r for r in regions if r.is_numeric]
    if not numeric:
        raise ValueError("No numeric regions to build a table from")
    x0 = min(r.start_column for r in numeric)
    y0 = min(r.start_row for r in numeric)
    x1 = max(r.end_column for r in numeric)
    y1 = max(r.end_row for r in numeric)
    data = np.full((y1 - y0 + 1, x1 - x0 + 1), np.nan)
    for region in numeric:
        for x, y, value in region.cells():
            data[y - y0, x - x0] = float(value)
    return ValueTable(name, data), (x0, y0)
