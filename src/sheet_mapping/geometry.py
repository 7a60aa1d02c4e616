"""
Geometric attributes derived from an instance path.

Paths are closed 3D polygons with Y pointing up and +Z as north.  Areas come
from the largest of the three axis-aligned projections; normals use Newell's
method.
"""
import logging
import math
from typing import List, Sequence

import numpy as np
from shapely.geometry import LinearRing, Polygon

from sheet_mapping.contracts import MappingSubject
from sheet_mapping.entities import Instance, InstanceType

logger = logging.getLogger(__name__)

MIN_PATH_POINTS = 3
ZERO_TOLERANCE = 1e-4
HORIZONTAL_TOLERANCE_DEG = 0.01

_PLANE_AXES = {
    "xz": (0, 2),
    "xy": (0, 1),
    "yz": (1, 2),
}

_UP = np.array([0.0, 1.0, 0.0])
_DOWN = np.array([0.0, -1.0, 0.0])
_NORTH = np.array([0.0, 0.0, 1.0])


def signed_projected_area(path: Sequence[Sequence[float]], plane: str) -> float:
    """Signed area of *path* projected onto an axis plane (positive if CCW)."""
    if path is None or len(path) < MIN_PATH_POINTS:
        return 0.0
    a, b = _PLANE_AXES[plane]
    pts = np.asarray(path, dtype=float)
    coords = [(float(p[a]), float(p[b])) for p in pts]
    try:
        area = Polygon(coords).area
        if area <= 0.0:
            return 0.0
        return area if LinearRing(coords).is_ccw else -area
    except Exception as exc:
        logger.debug("Projection onto %s failed: %s", plane, exc)
        return 0.0


def largest_signed_projected_area(path: Sequence[Sequence[float]]) -> float:
    area_xz = signed_projected_area(path, "xz")
    area_xy = signed_projected_area(path, "xy")
    area_yz = signed_projected_area(path, "yz")
    m_xz, m_xy, m_yz = abs(area_xz), abs(area_xy), abs(area_yz)
    if m_xz > m_xy and m_xz > m_yz:
        return area_xz
    if m_xy > m_xz and m_xy > m_yz:
        return area_xy
    return area_yz


def newell_normal(path: Sequence[Sequence[float]]) -> np.ndarray:
    """Unit polygon normal by Newell's method; zero vector if degenerate."""
    if path is None or len(path) < MIN_PATH_POINTS:
        return np.zeros(3)
    pts = np.asarray(path, dtype=float)
    nxt = np.roll(pts, -1, axis=0)
    normal = np.array([
        np.sum((pts[:, 1] - nxt[:, 1]) * (pts[:, 2] + nxt[:, 2])),
        np.sum((pts[:, 2] - nxt[:, 2]) * (pts[:, 0] + nxt[:, 0])),
        np.sum((pts[:, 0] - nxt[:, 0]) * (pts[:, 1] + nxt[:, 1])),
    ])
    length = np.linalg.norm(normal)
    if length < 1e-12:
        return np.zeros(3)
    return normal / length


def _is_zero(v: np.ndarray) -> bool:
    return bool(np.all(np.abs(v) < ZERO_TOLERANCE))


def incline_degrees(normal: Sequence[float]) -> float:
    """Angle of the surface relative to vertically down, in [-90, 90].

    Floors (normal up) give -90, walls give 0 and ceilings give 90.
    """
    v = np.asarray(normal, dtype=float)
    if _is_zero(v):
        return 0.0
    v = v / np.linalg.norm(v)
    cos_angle = float(np.clip(np.dot(_DOWN, -v), -1.0, 1.0))
    return math.degrees(math.acos(cos_angle)) - 90.0


def orientation_degrees(normal: Sequence[float]) -> float:
    """Compass angle of the horizontal part of *normal* from +Z, in [0, 360)."""
    v = np.asarray(normal, dtype=float)
    if _is_zero(v):
        return 0.0
    horizontal = np.array([v[0], 0.0, v[2]])
    length = np.linalg.norm(horizontal)
    if length < 1e-12:
        return 0.0
    horizontal /= length
    angle = math.degrees(math.atan2(
        float(np.dot(np.cross(horizontal, _NORTH), _UP)),
        float(np.dot(horizontal, _NORTH)),
    ))
    if angle < -ZERO_TOLERANCE:
        angle += 360.0
    return angle


def surface_orientation(path: Sequence[Sequence[float]]) -> float:
    """Orientation of a surface; horizontal surfaces have none and report 0."""
    normal = newell_normal(path)
    if abs(abs(incline_degrees(normal)) - 90.0) < HORIZONTAL_TOLERANCE_DEG:
        return 0.0
    return orientation_degrees(normal)


def point_text(path: Sequence[Sequence[float]], index: int = 1) -> str:
    x, y, z = (float(c) for c in path[index])
    return f"{x:g};{y:g};{z:g}"


def geometry_attribute(instance: Instance, subject: MappingSubject, point_index: int = 1) -> List[object]:
    """Derived values of *instance* for a geometric subject.

    Empty when the instance is not a surface or its path is too short.
    Plain ``GEOMETRY`` reads named properties instead and yields nothing here.
    """
    path = instance.path
    if len(path) < MIN_PATH_POINTS or instance.instance_type != InstanceType.GEOMETRIC_SURFACE:
        return []
    if subject == MappingSubject.GEOMETRY_AREA:
        return [abs(largest_signed_projected_area(path))]
    if subject == MappingSubject.GEOMETRIC_INCLINE:
        return [incline_degrees(newell_normal(path))]
    if subject == MappingSubject.GEOMETRIC_ORIENTATION:
        return [surface_orientation(path)]
    if subject == MappingSubject.GEOMETRY_POINT:
        if 0 <= point_index < len(path):
            return [point_text(path, point_index)]
    return []
