"""Contracts shared by the mapping engine: subjects, strategies and regions."""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from typing import Dict, Iterable, Iterator, Optional, Sequence, Tuple

import numpy as np

Point = Tuple[int, int]  # (column, row), zero-based
Cell = Tuple[int, int, object]


class MappingSubject(Enum):
    """What a rule node extracts from the entity it is applied to."""

    COMPONENT = "component"
    PARAMETER = "parameter"
    INSTANCE = "instance"
    GEOMETRY = "geometry"
    GEOMETRY_POINT = "geometry_point"
    GEOMETRY_AREA = "geometry_area"
    GEOMETRIC_INCLINE = "geometric_incline"
    GEOMETRIC_ORIENTATION = "geometric_orientation"

    @property
    def is_geometric(self) -> bool:
        return self in _GEOMETRIC_SUBJECTS


_GEOMETRIC_SUBJECTS = frozenset({
    MappingSubject.GEOMETRY,
    MappingSubject.GEOMETRY_POINT,
    MappingSubject.GEOMETRY_AREA,
    MappingSubject.GEOMETRIC_INCLINE,
    MappingSubject.GEOMETRIC_ORIENTATION,
})


class TraversalStrategy(Enum):
    """Which entity edges are followed when searching for descendants."""

    SUBTREE_ONLY = "subtree_only"
    REFERENCES_ONLY = "references_only"
    SUBTREE_AND_REFERENCES = "subtree_and_references"

    @property
    def follows_subtree(self) -> bool:
        return self is not TraversalStrategy.REFERENCES_ONLY

    @property
    def follows_references(self) -> bool:
        return self is not TraversalStrategy.SUBTREE_ONLY


class MappingRange(Enum):
    """Shape of the value written for a table-backed property."""

    SINGLE_VALUE = "single_value"
    VECTOR_VALUES = "vector_values"
    MATRIX_VALUES = "matrix_values"


@dataclass(frozen=True)
class MappedRegion:
    """A rectangle on a named sheet together with the values written into it.

    ``data`` is stored row-major as a tuple of row tuples.  A region is either
    all-numeric or all-text, never mixed.  Degenerate sizes are clamped to 1x1.
    """

    sheet_name: str
    start_column: int
    start_row: int
    width: int
    height: int
    data: Tuple[Tuple[object, ...], ...]
    is_numeric: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "start_column", int(self.start_column))
        object.__setattr__(self, "start_row", int(self.start_row))
        object.__setattr__(self, "width", max(1, int(self.width)))
        object.__setattr__(self, "height", max(1, int(self.height)))

    # ─── Factories ───────────────────────────────────────────────────────────

    @classmethod
    def map_one_string(cls, sheet_name: str, start: Point, value: object) -> "MappedRegion":
        return cls(sheet_name, start[0], start[1], 1, 1, ((str(value),),), is_numeric=False)

    @classmethod
    def map_one_number(cls, sheet_name: str, start: Point, value: float) -> "MappedRegion":
        return cls(sheet_name, start[0], start[1], 1, 1, ((float(value),),), is_numeric=True)

    @classmethod
    def map_strings(
        cls, sheet_name: str, start: Point, rows: Sequence[Sequence[object]],
    ) -> Optional["MappedRegion"]:
        """Map a rectangular block of text; ``None`` if *rows* is empty or ragged."""
        if not rows or not rows[0]:
            return None
        width = len(rows[0])
        if any(len(row) != width for row in rows):
            return None
        data = tuple(tuple(str(v) for v in row) for row in rows)
        return cls(sheet_name, start[0], start[1], width, len(rows), data, is_numeric=False)

    @classmethod
    def map_numbers(cls, sheet_name: str, start: Point, values) -> Optional["MappedRegion"]:
        """Map a 2D numeric block; ``None`` if *values* is empty or not 2D."""
        arr = np.asarray(values, dtype=float)
        if arr.ndim != 2 or arr.size == 0:
            return None
        data = tuple(tuple(float(v) for v in row) for row in arr)
        return cls(sheet_name, start[0], start[1], arr.shape[1], arr.shape[0], data, is_numeric=True)

    # ─── Geometry ────────────────────────────────────────────────────────────

    @property
    def end_column(self) -> int:
        return self.start_column + self.width - 1

    @property
    def end_row(self) -> int:
        return self.start_row + self.height - 1

    @property
    def rectangle(self) -> Tuple[int, int, int, int]:
        return (self.start_column, self.start_row, self.width, self.height)

    @property
    def payload(self):
        """The scalar for a 1x1 region, otherwise the row tuples."""
        if self.width == 1 and self.height == 1 and len(self.data) == 1 and len(self.data[0]) == 1:
            return self.data[0][0]
        return self.data

    def intersects(self, other: "MappedRegion") -> bool:
        if self.sheet_name != other.sheet_name:
            return False
        return not (
            self.end_column < other.start_column
            or other.end_column < self.start_column
            or self.end_row < other.start_row
            or other.end_row < self.start_row
        )

    def offset_by(self, dx: int, dy: int) -> "MappedRegion":
        return replace(self, start_column=self.start_column + dx, start_row=self.start_row + dy)

    def cells(self) -> Iterator[Cell]:
        for r, row in enumerate(self.data):
            for c, value in enumerate(row):
                yield (self.start_column + c, self.start_row + r, value)

    def to_dict(self) -> Dict[str, object]:
        return {
            "sheet": self.sheet_name,
            "column": self.start_column,
            "row": self.start_row,
            "width": self.width,
            "height": self.height,
            "numeric": self.is_numeric,
            "data": [list(row) for row in self.data],
        }


def total_offset(regions: Iterable[MappedRegion]) -> Point:
    """First column and row past every region, ``(0, 0)`` when there are none."""
    max_x, max_y = 0, 0
    for region in regions:
        max_x = max(max_x, region.start_column + region.width)
        max_y = max(max_y, region.start_row + region.height)
    return (max_x, max_y)
