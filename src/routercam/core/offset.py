"""Offset engine: tool-radius compensation and pocket shells.

Offsets are computed on areas (shapely buffers) rather than by moving
individual vertices, so concave corners never produce self-crossing loops.
Sign convention: positive distances grow a closed outline outward, negative
distances shrink it.  For open polylines a positive distance offsets to the
left of the direction of travel.

Self-intersecting outlines are repaired with ``make_valid`` before
offsetting and reported with a ``self_intersection`` warning.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from functools import reduce
from typing import Optional, Sequence

import numpy as np
from shapely.geometry import LineString, MultiPolygon, Polygon
from shapely.ops import polylabel

from .errors import GeometryWarning, WarningSink
from .geometry import DEFAULT_TOLERANCE, DesignGeometry, segments_for_arc
from .toolpath.utils import ensure_polygon, iter_lines, iter_polygons, polygon_rings

MAX_SHELLS = 10_000


@dataclass
class OffsetResult:
    """Zero or more offset polylines plus any warnings raised."""

    polylines: list[DesignGeometry] = field(default_factory=list)
    region: Polygon | MultiPolygon = field(default_factory=Polygon)
    warnings: list[GeometryWarning] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.polylines


@dataclass(frozen=True)
class Shell:
    """One inward pocket shell: the tool-center region at ``offset``."""

    offset: float
    region: Polygon | MultiPolygon

    def rings(self) -> list[np.ndarray]:
        out = []
        for poly in iter_polygons(self.region):
            out.extend(polygon_rings(poly))
        return out


def quad_segments(distance: float, tolerance: float = DEFAULT_TOLERANCE) -> int:
    """Buffer quadrant resolution keeping round joins within *tolerance*."""
    return max(8, segments_for_arc(abs(distance), math.pi / 2, tolerance))


def polygon_area(points: np.ndarray) -> float:
    """Unsigned shoelace area of a ring."""
    x, y = points[:, 0], points[:, 1]
    return abs(float(np.dot(x, np.roll(y, -1)) - np.dot(y, np.roll(x, -1)))) / 2.0


def inscribed_radius(region, tolerance: float = DEFAULT_TOLERANCE) -> float:
    """Radius of the largest circle that fits inside *region*."""
    best = 0.0
    for poly in iter_polygons(region):
        centre = polylabel(poly, tolerance=tolerance)
        best = max(best, float(poly.boundary.distance(centre)))
    return best


def region_from_geometries(
    geoms: Sequence[DesignGeometry],
    sink: Optional[WarningSink] = None,
) -> Polygon | MultiPolygon:
    """Combine closed outlines with the even-odd rule.

    Outlines nested inside others become holes (islands), as with lettering.
    """
    polys = []
    for g in geoms:
        if not g.closed:
            continue
        poly = Polygon(g.points)
        if not poly.is_valid:
            if sink is not None:
                sink.warn("geometry_repaired",
                          "self-intersecting outline repaired before offsetting", g.source_id)
            poly = ensure_polygon(poly)
        if not poly.is_empty:
            polys.append(poly)
    if not polys:
        return Polygon()
    return ensure_polygon(reduce(lambda a, b: a.symmetric_difference(b), polys))


def offset_region(
    region: Polygon | MultiPolygon,
    distance: float,
    tolerance: float = DEFAULT_TOLERANCE,
) -> Polygon | MultiPolygon:
    if distance == 0:
        return region
    return ensure_polygon(region.buffer(
        distance, quad_segs=quad_segments(distance, tolerance), join_style="round",
    ))


def offset_geometry(
    geom: DesignGeometry,
    distance: float,
    tolerance: float = DEFAULT_TOLERANCE,
) -> OffsetResult:
    """Offset one polyline by the signed *distance*.

    Returns an empty result and an ``offset_collapse`` warning when the
    feature is narrower than ``2 * |distance|``.
    """
    result = OffsetResult()
    sink = WarningSink(result.warnings)

    if geom.closed:
        region = region_from_geometries([geom], sink)
        if region.is_empty:
            sink.warn("offset_collapse", "outline has no area", geom.source_id)
            return result
        result.region = offset_region(region, distance, tolerance)
        for poly in iter_polygons(result.region):
            for ring in polygon_rings(poly):
                result.polylines.append(DesignGeometry(ring, True, geom.source_id))
    else:
        if distance == 0:
            result.polylines.append(geom)
            return result
        line = LineString(geom.points)
        shifted = line.offset_curve(
            distance, quad_segs=quad_segments(distance, tolerance), join_style="round",
        )
        for part in iter_lines(shifted):
            result.polylines.append(
                DesignGeometry(np.asarray(part.coords)[:, :2], False, geom.source_id)
            )

    if result.is_empty:
        sink.warn(
            "offset_collapse",
            f"feature narrower than {2 * abs(distance):.3f} mm collapsed",
            geom.source_id,
        )
    return result


def inward_shells(
    region: Polygon | MultiPolygon,
    first_offset: float,
    stepover: float,
    tolerance: float = DEFAULT_TOLERANCE,
    sink: Optional[WarningSink] = None,
    source_id: Optional[str] = None,
    max_shells: int = MAX_SHELLS,
) -> list[Shell]:
    """Successive inward shells for pocket clearing, outermost first.

    The shell count is ``floor(R / stepover)`` where ``R`` is the region's
    inscribed radius.  The first shell sits at *first_offset* and the rest
    follow at *stepover* spacing, tightened where necessary so the innermost
    shell still lies strictly inside the region.
    """
    if stepover <= 0:
        raise ValueError("stepover must be positive")
    if region.is_empty:
        return []

    r_in = inscribed_radius(region, tolerance)
    if first_offset >= r_in:
        if sink is not None:
            sink.warn(
                "tool_too_large",
                f"feature (inscribed radius {r_in:.3f} mm) too small for "
                f"offset {first_offset:.3f} mm",
                source_id,
            )
        return []

    count = max(1, int(math.floor(r_in / stepover + 1e-9)))
    if count > max_shells:
        if sink is not None:
            sink.warn("iteration_cap",
                      f"pocket needs {count} shells, capped at {max_shells}",
                      source_id)
        count = max_shells
    step = stepover if count == 1 else min(stepover, (r_in - first_offset) / count)

    shells: list[Shell] = []
    for k in range(count):
        offset = first_offset + k * step
        shell_region = offset_region(region, -offset, tolerance)
        if shell_region.is_empty:
            break
        shells.append(Shell(offset, shell_region))
    return shells
