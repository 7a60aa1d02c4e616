"""Tests for geometric attribute derivation."""

import numpy as np
import pytest

from sheet_mapping.contracts import MappingSubject
from sheet_mapping.entities import Instance, InstanceType
from sheet_mapping.geometry import (
    geometry_attribute,
    incline_degrees,
    largest_signed_projected_area,
    newell_normal,
    orientation_degrees,
    point_text,
    signed_projected_area,
    surface_orientation,
)

SQUARE_XY = [(0.0, 0.0, 0.0), (4.0, 0.0, 0.0), (4.0, 3.0, 0.0), (0.0, 3.0, 0.0)]
FLOOR = [(0.0, 0.0, 0.0), (0.0, 0.0, 2.0), (2.0, 0.0, 2.0), (2.0, 0.0, 0.0)]


class TestAreas:

    def test_signed_area_follows_winding(self):
        assert signed_projected_area(SQUARE_XY, "xy") == pytest.approx(12.0)
        assert signed_projected_area(SQUARE_XY[::-1], "xy") == pytest.approx(-12.0)

    def test_edge_on_projection_is_zero(self):
        assert signed_projected_area(SQUARE_XY, "xz") == 0.0

    def test_largest_projection_wins(self):
        assert abs(largest_signed_projected_area(SQUARE_XY)) == pytest.approx(12.0)
        assert abs(largest_signed_projected_area(FLOOR)) == pytest.approx(4.0)

    def test_short_path_has_no_area(self):
        assert signed_projected_area(SQUARE_XY[:2], "xy") == 0.0


class TestNormals:

    def test_newell_normal_of_ccw_square(self):
        np.testing.assert_allclose(newell_normal(SQUARE_XY), [0.0, 0.0, 1.0])

    def test_degenerate_normal_is_zero(self):
        collinear = [(0.0, 0.0, 0.0), (1.0, 0.0, 0.0), (2.0, 0.0, 0.0)]
        assert not np.any(newell_normal(collinear))

    def test_incline(self):
        assert incline_degrees([0.0, 1.0, 0.0]) == pytest.approx(-90.0)
        assert incline_degrees([1.0, 0.0, 0.0]) == pytest.approx(0.0)
        assert incline_degrees([0.0, -1.0, 0.0]) == pytest.approx(90.0)

    def test_orientation_compass(self):
        assert orientation_degrees([0.0, 0.0, 1.0]) == pytest.approx(0.0)
        assert orientation_degrees([1.0, 0.0, 0.0]) == pytest.approx(270.0)
        assert orientation_degrees([-1.0, 0.0, 0.0]) == pytest.approx(90.0)
        assert orientation_degrees([0.0, 0.0, -1.0]) == pytest.approx(180.0)

    def test_horizontal_surface_has_no_orientation(self):
        assert surface_orientation(FLOOR) == 0.0


class TestGeometryAttribute:

    def _surface(self, path=SQUARE_XY, kind=InstanceType.GEOMETRIC_SURFACE):
        return Instance(name="s", instance_type=kind, path=list(path))

    def test_area(self):
        assert geometry_attribute(self._surface(), MappingSubject.GEOMETRY_AREA) == [pytest.approx(12.0)]

    def test_point_text(self):
        assert geometry_attribute(self._surface(), MappingSubject.GEOMETRY_POINT) == ["4;0;0"]
        assert point_text(SQUARE_XY, 2) == "4;3;0"

    def test_non_surface_yields_nothing(self):
        inst = self._surface(kind=InstanceType.GEOMETRIC_VOLUME)
        assert geometry_attribute(inst, MappingSubject.GEOMETRY_AREA) == []

    def test_short_path_yields_nothing(self):
        assert geometry_attribute(self._surface(SQUARE_XY[:2]), MappingSubject.GEOMETRIC_INCLINE) == []
