"""Placement tracking: remembers every rectangle written during a run.

The tracker answers bounding-box queries per rule node and moves a nominal
position until the region about to be written no longer overlaps anything
already recorded.  Probing is local and order dependent: it reacts to the
node's last application and to its parent's footprint, not to a global
packing.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from sheet_mapping.config import CURRENT_RULE_VERSION
from sheet_mapping.contracts import MappedRegion, Point

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Extents:
    """Inclusive cell rectangle on one sheet; ``data`` is the application tag."""

    start_x: int
    start_y: int
    size_x: int = 1
    size_y: int = 1
    data: int = field(default=0, compare=False)
    sheet_name: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "size_x", max(1, int(self.size_x)))
        object.__setattr__(self, "size_y", max(1, int(self.size_y)))

    @classmethod
    def unit(cls) -> "Extents":
        return cls(0, 0, 1, 1)

    @classmethod
    def from_region(cls, region: MappedRegion, data: int = 0) -> "Extents":
        return cls(
            region.start_column, region.start_row, region.width, region.height,
            data=data, sheet_name=region.sheet_name,
        )

    @property
    def end_x(self) -> int:
        return self.start_x + self.size_x - 1

    @property
    def end_y(self) -> int:
        return self.start_y + self.size_y - 1

    def overlaps(self, other: "Extents") -> bool:
        if self.sheet_name != other.sheet_name:
            return False
        return not (
            self.end_x < other.start_x
            or other.end_x < self.start_x
            or self.end_y < other.start_y
            or other.end_y < self.start_y
        )

    def shifted(self, dx: int, dy: int) -> "Extents":
        return replace(self, start_x=self.start_x + dx, start_y=self.start_y + dy)

    def concat(self, other: "Extents") -> Optional["Extents"]:
        """Join two touching rectangles of equal cross-size, else ``None``."""
        if self.sheet_name != other.sheet_name:
            return None
        for a, b in ((self, other), (other, self)):
            if a.end_x + 1 == b.start_x and a.start_y == b.start_y and a.size_y == b.size_y:
                return replace(a, size_x=a.size_x + b.size_x)
            if a.end_y + 1 == b.start_y and a.start_x == b.start_x and a.size_x == b.size_x:
                return replace(a, size_y=a.size_y + b.size_y)
        return None

    def union(self, other: "Extents") -> "Extents":
        sx = min(self.start_x, other.start_x)
        sy = min(self.start_y, other.start_y)
        ex = max(self.end_x, other.end_x)
        ey = max(self.end_y, other.end_y)
        return Extents(sx, sy, ex - sx + 1, ey - sy + 1, sheet_name=self.sheet_name)

    def describe(self) -> str:
        return f"({self.start_x}; {self.start_y} - {self.end_x}; {self.end_y})"


def merge_extents(extents: Iterable[Extents]) -> List[Extents]:
    """Greedily join contiguous rectangles until no pair can be joined."""
    merged: List[Extents] = []
    for ext in extents:
        current = ext
        joined_any = True
        while joined_any:
            joined_any = False
            for i, other in enumerate(merged):
                joined = other.concat(current)
                if joined is not None:
                    current = joined
                    del merged[i]
                    joined_any = True
                    break
        merged.append(current)
    return merged


def bounding_box(footprint: Sequence[Extents]) -> Extents:
    """Union of *footprint*; the unit rectangle at the origin when empty."""
    if not footprint:
        return Extents.unit()
    box = footprint[0]
    for ext in footprint[1:]:
        box = box.union(ext)
    return box


class PlacementTracker:
    """Grid of recorded rectangles, each owned by the rule node that wrote it."""

    def __init__(self):
        self._grid: List[Tuple[Extents, object]] = []
        self._node_lookup: Dict[object, List[Extents]] = {}

    def __len__(self) -> int:
        return len(self._grid)

    # ─── Recording ───────────────────────────────────────────────────────────

    def record_region(
        self,
        node: object,
        application_index: int,
        allow_overlap: bool,
        regions: Sequence[MappedRegion],
    ) -> bool:
        """Record the regions of one application of *node*.

        Contiguous regions are merged first.  Returns True if any rectangle
        overlapped an existing one.  Without *allow_overlap* an overlapping
        rectangle is not recorded; with it, an identical rectangle is replaced.
        """
        if regions is None:
            raise ValueError("regions must not be None")
        extents = [Extents.from_region(r, application_index + 1) for r in regions]
        overlap = False
        for ext in merge_extents(extents):
            overlap |= self._record(node, ext, allow_overlap)
        return overlap

    def _record(self, node: object, ext: Extents, allow_overlap: bool) -> bool:
        overlap = any(existing.overlaps(ext) for existing, _ in self._grid)
        if overlap and not allow_overlap:
            logger.debug("Rejected overlapping extents %s for %s", ext.describe(), _node_label(node))
            return True
        if overlap:
            for i, (existing, owner) in enumerate(self._grid):
                if existing == ext:
                    del self._grid[i]
                    owned = self._node_lookup.get(owner, [])
                    if existing in owned:
                        owned.remove(existing)
                    if not owned:
                        self._node_lookup.pop(owner, None)
                    break
        self._grid.append((ext, node))
        self._node_lookup.setdefault(node, []).append(ext)
        return overlap

    # ─── Footprints and bounding boxes ───────────────────────────────────────

    def footprint_of(self, node: object, include_children: bool = False) -> List[Extents]:
        if node is None:
            return []
        footprint = list(self._node_lookup.get(node, []))
        if include_children:
            for child in getattr(node, "children", ()):
                footprint.extend(self.footprint_of(child, True))
        return footprint

    def last_footprint_of(self, node: object, include_children: bool = True) -> List[Extents]:
        if node is None:
            return []
        footprint: List[Extents] = []
        own = self._node_lookup.get(node, [])
        if own:
            last = max(e.data for e in own)
            footprint.extend(e for e in own if e.data == last)
        if include_children:
            for child in getattr(node, "children", ()):
                footprint.extend(self.last_footprint_of(child, True))
        return footprint

    def bounding_box_of(self, node: object, include_children: bool = False) -> Extents:
        return bounding_box(self.footprint_of(node, include_children))

    def bounding_box_of_last_application(self, node: object) -> Extents:
        return bounding_box(self.last_footprint_of(node, True))

    def bounding_box_of_parent(self, node: object, include_children: bool = True) -> Extents:
        parent = getattr(node, "parent", None)
        return bounding_box(self.footprint_of(parent, include_children))

    def full_bounding_box(self) -> Extents:
        return bounding_box([ext for ext, _ in self._grid])

    # ─── Overlap queries ─────────────────────────────────────────────────────

    def footprint_overlaps(self, footprint: Sequence[Extents], at: Point = (0, 0)) -> bool:
        dx, dy = at
        for rel in footprint:
            moved = rel.shifted(dx, dy)
            if any(ext.overlaps(moved) for ext, _ in self._grid):
                return True
        return False

    def correct_position(
        self,
        node,
        nominal: Point,
        applications: int,
        footprint: Sequence[Extents] = (),
    ) -> Point:
        """Move *nominal* so the footprint placed there overlaps nothing.

        First, current-version nodes that have a parent or have already been
        applied are pushed past the bounding box of their own last
        application along the advancing axis.  Then, while the footprint still
        collides, the position is probed in unit steps past the parent's
        bounding box along the same axis.
        """
        x, y = nominal
        horizontal = node.order_horizontally
        if node.version >= CURRENT_RULE_VERSION and (node.parent is not None or applications > 0):
            last = self.bounding_box_of_last_application(node)
            step_x = max(1, node.offset_between_applications[0])
            step_y = max(1, node.offset_between_applications[1])
            if horizontal:
                if y < last.end_y or (last.size_y > 1 and y <= last.end_y):
                    y = last.end_y + step_y
            else:
                if x < last.end_x or (last.size_x > 1 and x <= last.end_x):
                    x = last.end_x + step_x

        if not footprint:
            footprint = (Extents(0, 0, 1, 1, sheet_name=getattr(node, "sheet_name", "")),)
        if self.footprint_overlaps(footprint, (x, y)):
            parent_box = self.bounding_box_of_parent(node, True)
            i = 1
            while self.footprint_overlaps(footprint, (x, y)):
                if horizontal:
                    y = parent_box.end_y + i
                else:
                    x = parent_box.end_x + i
                i += 1
            logger.debug(
                "Probed %s from (%d, %d) to (%d, %d) after %d steps",
                _node_label(node), nominal[0], nominal[1], x, y, i - 1,
            )
        return (x, y)

    def describe(self) -> str:
        lines = [
            f"{ext.describe()} [{ext.data}] {ext.sheet_name}: {_node_label(owner)}"
            for ext, owner in self._grid
        ]
        return "\n".join(lines)


def _node_label(node: object) -> str:
    return getattr(node, "name", None) or type(node).__name__
