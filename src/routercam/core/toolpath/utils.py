"""Geometry helper utilities shared across toolpath strategies."""

from __future__ import annotations

import math

import numpy as np
from shapely.geometry import (
    LineString,
    MultiLineString,
    MultiPoint,
    MultiPolygon,
    Point,
    Polygon,
    GeometryCollection,
)
from shapely.ops import unary_union
from shapely.validation import make_valid


def ensure_polygon(geom) -> Polygon | MultiPolygon:
    """Return a valid Polygon or MultiPolygon, or empty Polygon on failure."""
    if geom is None or geom.is_empty:
        return Polygon()
    if not geom.is_valid:
        geom = make_valid(geom)
    if isinstance(geom, (Polygon, MultiPolygon)):
        return geom
    if isinstance(geom, GeometryCollection):
        polys = [g for g in geom.geoms if isinstance(g, (Polygon, MultiPolygon))]
        if polys:
            return unary_union(polys)
    return Polygon()


def iter_polygons(geom: Polygon | MultiPolygon):
    """Yield individual Polygon objects from a possibly Multi geometry."""
    if isinstance(geom, Polygon):
        if not geom.is_empty:
            yield geom
    elif isinstance(geom, (MultiPolygon, GeometryCollection)):
        for p in geom.geoms:
            yield from iter_polygons(p)


def iter_lines(geom):
    """Yield LineStrings from the result of a clip/intersection."""
    if geom is None or geom.is_empty:
        return
    if isinstance(geom, LineString):
        yield geom
    elif isinstance(geom, (MultiLineString, GeometryCollection)):
        for g in geom.geoms:
            yield from iter_lines(g)


def polygon_rings(poly: Polygon) -> list[np.ndarray]:
    """Exterior then interior rings of *poly* as closed ``(N, 2)`` arrays."""
    rings = [np.asarray(poly.exterior.coords)[:, :2]]
    rings.extend(np.asarray(r.coords)[:, :2] for r in poly.interiors)
    return rings


def cumulative_lengths(points: np.ndarray) -> np.ndarray:
    """Path length at each vertex of a polyline (first entry is 0)."""
    d = np.hypot(*np.diff(points[:, :2], axis=0).T)
    return np.concatenate([[0.0], np.cumsum(d)])


def point_at(points: np.ndarray, cum: np.ndarray, s: float) -> np.ndarray:
    """Interpolated point at path length *s* along a polyline."""
    s = min(max(s, 0.0), cum[-1])
    i = int(np.searchsorted(cum, s, side="right")) - 1
    i = min(max(i, 0), len(points) - 2)
    span = cum[i + 1] - cum[i]
    t = 0.0 if span <= 0 else (s - cum[i]) / span
    return points[i] + (points[i + 1] - points[i]) * t


def rotate_ring_start(ring: np.ndarray, index: int) -> np.ndarray:
    """Re-start a closed ring at vertex *index*."""
    body = ring[:-1]
    body = np.roll(body, -index, axis=0)
    return np.vstack([body, body[:1]])


def resample(points: np.ndarray, spacing: float) -> np.ndarray:
    """Insert vertices so no edge is longer than *spacing*."""
    out = [points[0]]
    for a, b in zip(points[:-1], points[1:]):
        n = max(1, int(math.ceil(np.hypot(*(b - a)[:2]) / spacing)))
        for k in range(1, n + 1):
            out.append(a + (b - a) * (k / n))
    return np.array(out)


def nearest_neighbor_order(points: list[np.ndarray]) -> list[int]:
    """Greedy nearest-neighbour visiting order starting at the first point."""
    if not points:
        return []
    remaining = list(range(1, len(points)))
    order = [0]
    while remaining:
        last = points[order[-1]]
        j = min(remaining, key=lambda k: float(np.hypot(*(points[k] - last)[:2])))
        remaining.remove(j)
        order.append(j)
    return order


def raster_lines_in_bounds(
    xmin: float,
    xmax: float,
    ymin: float,
    ymax: float,
    step_over: float,
    angle_deg: float = 0.0,
) -> list[LineString]:
    """Generate parallel raster lines covering the given bounding box.

    Parameters
    ----------
    angle_deg:
        Rotation of raster direction in degrees (0 = horizontal X lines).

    Returns a list of LineString objects that fully span the bounding box
    when projected back to the original coordinate system.
    """
    # For non-zero angles we over-extend the lines and rely on clipping
    diagonal = math.hypot(xmax - xmin, ymax - ymin)
    cx = (xmin + xmax) / 2
    cy = (ymin + ymax) / 2

    if angle_deg == 0.0:
        lines = []
        y = ymin
        while y <= ymax + 1e-9:
            lines.append(LineString([(xmin, y), (xmax, y)]))
            y += step_over
        return lines

    angle_rad = math.radians(angle_deg)
    cos_a, sin_a = math.cos(angle_rad), math.sin(angle_rad)

    # Perpendicular direction
    perp_dx, perp_dy = -sin_a, cos_a

    n = int(math.ceil(diagonal / step_over)) + 1
    lines = []
    for i in range(-n, n + 1):
        offset = i * step_over
        lx = cx + offset * perp_dx
        ly = cy + offset * perp_dy
        p1 = (lx - cos_a * diagonal, ly - sin_a * diagonal)
        p2 = (lx + cos_a * diagonal, ly + sin_a * diagonal)
        lines.append(LineString([p1, p2]))

    return lines


def zigzag_clip(region, step_over: float, angle_deg: float) -> list[np.ndarray]:
    """Clip raster lines to *region*, reversing every other line."""
    if region.is_empty:
        return []
    xmin, ymin, xmax, ymax = region.bounds
    rasters = raster_lines_in_bounds(xmin, xmax, ymin, ymax, step_over, angle_deg)
    out: list[np.ndarray] = []
    for i, line in enumerate(rasters):
        for ls in iter_lines(line.intersection(region)):
            coords = np.asarray(ls.coords)[:, :2]
            if i % 2 == 1:
                coords = coords[::-1]
            out.append(coords)
    return out


def iter_points(geom):
    """Yield Points from the result of an intersection."""
    if geom is None or geom.is_empty:
        return
    if isinstance(geom, Point):
        yield geom
    elif isinstance(geom, (MultiPoint, GeometryCollection)):
        for g in geom.geoms:
            yield from iter_points(g)
    elif isinstance(geom, (LineString, MultiLineString)):
        # Collinear overlap: both ends count as hits
        for line in iter_lines(geom):
            for x, y in (line.coords[0], line.coords[-1]):
                yield Point(x, y)
