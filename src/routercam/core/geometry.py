"""Geometry resolver: design objects -> absolute-coordinate polylines.

Curves are flattened so that the chordal deviation never exceeds the
requested tolerance.  Closed outlines are closed exactly (first point ==
last point).  Self-intersecting outlines are passed through untouched and
reported as a warning; the offset engine decides what to do with them.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable, Mapping, Optional, Sequence

import numpy as np
from shapely.geometry import LinearRing, Polygon

from .design import (
    AnyObject,
    DesignObject,
    HeightMapObject,
    PathPoint,
    PointMarker,
    PointType,
    ShapeType,
    TextObject,
    VectorPath,
    VectorShape,
)
from .errors import ConfigurationError, WarningSink

DEFAULT_TOLERANCE = 0.01  # mm, maximum chordal deviation

_MAX_BEZIER_DEPTH = 16


@dataclass(frozen=True)
class DesignGeometry:
    """A flattened polyline in absolute millimeter coordinates.

    ``points`` is an ``(N, 2)`` read-only array.  A closed geometry repeats
    its first point at the end.
    """

    points: np.ndarray
    closed: bool
    source_id: str = ""

    def __post_init__(self):
        pts = np.array(self.points, dtype=float).reshape(-1, 2)
        pts.setflags(write=False)
        object.__setattr__(self, "points", pts)

    def __len__(self) -> int:
        return len(self.points)

    @property
    def is_point(self) -> bool:
        return len(self.points) == 1

    @property
    def length(self) -> float:
        if len(self.points) < 2:
            return 0.0
        return float(np.sum(np.hypot(*np.diff(self.points, axis=0).T)))

    @property
    def bounds(self) -> tuple[float, float, float, float]:
        mn = self.points.min(axis=0)
        mx = self.points.max(axis=0)
        return (float(mn[0]), float(mn[1]), float(mx[0]), float(mx[1]))

    def as_polygon(self) -> Polygon:
        """Polygon of a closed geometry (may be invalid if self-crossing)."""
        return Polygon(self.points)


# ---------------------------------------------------------------------------
# Curve flattening
# ---------------------------------------------------------------------------


def segments_for_arc(radius: float, sweep: float, tolerance: float) -> int:
    """Chord count keeping the sagitta of an arc below *tolerance*."""
    if radius <= tolerance:
        return 4
    max_step = 2.0 * math.acos(1.0 - tolerance / radius)
    return max(4, int(math.ceil(abs(sweep) / max_step)))


def arc_points(
    cx: float, cy: float, rx: float, ry: float,
    start: float, sweep: float, tolerance: float,
) -> np.ndarray:
    """Points along an elliptical arc, angles in radians, endpoints included."""
    n = segments_for_arc(max(rx, ry), sweep, tolerance)
    t = start + sweep * np.arange(n + 1) / n
    return np.column_stack([cx + rx * np.cos(t), cy + ry * np.sin(t)])


def flatten_cubic(p0, p1, p2, p3, tolerance: float) -> list[tuple[float, float]]:
    """Flatten a cubic Bezier by recursive subdivision.

    Returns the points after *p0* (the start point is not repeated).
    """
    out: list[tuple[float, float]] = []
    _subdivide(np.asarray(p0, float), np.asarray(p1, float),
               np.asarray(p2, float), np.asarray(p3, float),
               tolerance, 0, out)
    return out


def _subdivide(p0, p1, p2, p3, tol, depth, out) -> None:
    chord = p3 - p0
    length = math.hypot(chord[0], chord[1])
    if length < 1e-12:
        d = max(np.hypot(*(p1 - p0)), np.hypot(*(p2 - p0)))
    else:
        # Control point distances to the chord bound the curve deviation
        d1 = abs(chord[0] * (p0[1] - p1[1]) - chord[1] * (p0[0] - p1[0])) / length
        d2 = abs(chord[0] * (p0[1] - p2[1]) - chord[1] * (p0[0] - p2[0])) / length
        d = max(d1, d2)
    if d <= tol or depth >= _MAX_BEZIER_DEPTH:
        out.append((float(p3[0]), float(p3[1])))
        return
    p01 = (p0 + p1) / 2
    p12 = (p1 + p2) / 2
    p23 = (p2 + p3) / 2
    p012 = (p01 + p12) / 2
    p123 = (p12 + p23) / 2
    mid = (p012 + p123) / 2
    _subdivide(p0, p01, p012, mid, tol, depth + 1, out)
    _subdivide(mid, p123, p23, p3, tol, depth + 1, out)


def _path_subpaths(points: Sequence[PathPoint], tolerance: float) -> list[np.ndarray]:
    """Split a point list at ``move`` points and flatten curve segments."""
    subpaths: list[list[tuple[float, float]]] = []
    current: list[tuple[float, float]] = []
    prev: Optional[PathPoint] = None
    for pt in points:
        if pt.type is PointType.MOVE or prev is None:
            if current:
                subpaths.append(current)
            current = [(pt.x, pt.y)]
        elif pt.type is PointType.CURVE:
            c1 = prev.handle_out or (prev.x, prev.y)
            c2 = pt.handle_in or (pt.x, pt.y)
            current.extend(flatten_cubic((prev.x, prev.y), c1, c2, (pt.x, pt.y), tolerance))
        else:
            current.append((pt.x, pt.y))
        prev = pt
    if current:
        subpaths.append(current)
    return [np.array(s, dtype=float) for s in subpaths]


def _shape_points(shape: VectorShape, tolerance: float) -> tuple[np.ndarray, bool]:
    p = shape.params
    kind = shape.shape_type
    if kind is ShapeType.RECTANGLE:
        hw, hh = p.get("width", 0.0) / 2, p.get("height", 0.0) / 2
        r = min(p.get("corner_radius", 0.0), hw, hh)
        if r <= 0:
            return np.array([(-hw, -hh), (hw, -hh), (hw, hh), (-hw, hh)]), True
        corners = [
            (hw - r, -hh + r, -math.pi / 2),
            (hw - r, hh - r, 0.0),
            (-hw + r, hh - r, math.pi / 2),
            (-hw + r, -hh + r, math.pi),
        ]
        parts = [arc_points(cx, cy, r, r, a, math.pi / 2, tolerance) for cx, cy, a in corners]
        return np.vstack(parts), True
    if kind is ShapeType.ELLIPSE:
        rx, ry = p.get("radius_x", 0.0), p.get("radius_y", 0.0)
        return arc_points(0.0, 0.0, rx, ry, 0.0, 2 * math.pi, tolerance)[:-1], True
    if kind is ShapeType.POLYGON:
        sides = int(p.get("sides", 6))
        radius = p.get("radius", 0.0)
        a = 2 * math.pi * np.arange(sides) / sides - math.pi / 2
        return np.column_stack([radius * np.cos(a), radius * np.sin(a)]), True
    if kind is ShapeType.STAR:
        n = int(p.get("points", 5))
        ro, ri = p.get("outer_radius", 0.0), p.get("inner_radius", 0.0)
        a = math.pi * np.arange(2 * n) / n - math.pi / 2
        radii = np.where(np.arange(2 * n) % 2 == 0, ro, ri)
        return np.column_stack([radii * np.cos(a), radii * np.sin(a)]), True
    if kind is ShapeType.LINE:
        return np.array([(0.0, 0.0), (p.get("x2", 0.0), p.get("y2", 0.0))]), False
    if kind is ShapeType.ARC:
        start = math.radians(p.get("start_angle", 0.0))
        end = math.radians(p.get("end_angle", 90.0))
        r = p.get("radius", 0.0)
        return arc_points(0.0, 0.0, r, r, start, end - start, tolerance), False
    raise ConfigurationError(f"Unsupported shape type: {kind}")


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------


def _finish(
    local: np.ndarray,
    matrix: np.ndarray,
    closed: bool,
    source_id: str,
    sink: Optional[WarningSink],
) -> Optional[DesignGeometry]:
    pts = local @ matrix[:2, :2].T + matrix[:2, 2]
    if len(pts) > 1:
        keep = np.ones(len(pts), dtype=bool)
        keep[1:] = np.any(np.abs(np.diff(pts, axis=0)) > 1e-9, axis=1)
        pts = pts[keep]
    if closed:
        if len(pts) > 1 and np.allclose(pts[0], pts[-1], atol=1e-9):
            pts = pts[:-1]
        if len(pts) < 3:
            return None
        pts = np.vstack([pts, pts[:1]])
        if sink is not None and not LinearRing(pts).is_simple:
            sink.warn("self_intersection",
                      "outline crosses itself; offsets are not guaranteed",
                      source_id)
    elif len(pts) < 2:
        return None
    return DesignGeometry(pts, closed, source_id)


def resolve_object(
    obj: AnyObject,
    tolerance: float = DEFAULT_TOLERANCE,
    sink: Optional[WarningSink] = None,
) -> list[DesignGeometry]:
    """Flatten one design object into absolute-coordinate polylines."""
    matrix = obj.matrix()
    # Scaling magnifies chordal error, so flatten in local space more finely
    scale = float(np.linalg.norm(matrix[:2, :2], 2)) or 1.0
    local_tol = tolerance / scale

    if isinstance(obj, PointMarker):
        origin = matrix[:2, 2]
        return [DesignGeometry(origin.reshape(1, 2), False, obj.id)]

    raw: list[tuple[np.ndarray, bool]] = []
    if isinstance(obj, VectorPath):
        raw = [(s, obj.closed) for s in _path_subpaths(obj.points, local_tol)]
    elif isinstance(obj, TextObject):
        raw = [(s, True) for sub in obj.path_data
               for s in _path_subpaths(sub, local_tol)]
    elif isinstance(obj, VectorShape):
        raw = [_shape_points(obj, local_tol)]
    elif isinstance(obj, HeightMapObject):
        w, h = obj.width, obj.height
        raw = [(np.array([(0, 0), (w, 0), (w, h), (0, h)], dtype=float), True)]

    result = []
    for local, closed in raw:
        geom = _finish(local, matrix, closed, obj.id, sink)
        if geom is not None:
            result.append(geom)
    return result


def index_objects(objects: Iterable[DesignObject]) -> dict[str, DesignObject]:
    return {o.id: o for o in objects}


def resolve_sources(
    objects: Mapping[str, DesignObject],
    ids: Sequence[str],
    tolerance: float = DEFAULT_TOLERANCE,
    sink: Optional[WarningSink] = None,
) -> list[DesignGeometry]:
    """Resolve the selected object ids, in selection order."""
    out: list[DesignGeometry] = []
    for oid in ids:
        obj = objects.get(oid)
        if obj is None:
            raise ConfigurationError(f"Unknown source object id: {oid!r}")
        out.extend(resolve_object(obj, tolerance, sink))
    return out
